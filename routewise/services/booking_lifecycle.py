"""
Booking Lifecycle Manager – creation, status changes, deletion, refund
requests and manual rescheduling. Trip placement is delegated to the
TripAllocator and manifest cleanup to the TripPassengerSynchronizer.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, Optional, Tuple

from routewise.config.database import Collections
from routewise.config.settings import Settings
from routewise.database.db_operations import DocumentStore, Transaction, WriteOp
from routewise.models.booking import ALLOWED_TRANSITIONS, ASSIGNABLE_STATUSES, BookingStatus
from routewise.services.errors import CapacityExceededError, NotFoundError, ValidationError
from routewise.services.hooks import PostCommitHooks
from routewise.services.notification_service import NotificationKind, NotificationSender
from routewise.services.trip_allocator import TripAllocator
from routewise.services.trip_sync import TripPassengerSynchronizer, detach_passenger
from routewise.utils.helpers import day_bounds, local_today

logger = logging.getLogger(__name__)

DELETE_MODES = ("all", "7d", "30d", "custom")


def new_booking_document(data: Dict, status: str = BookingStatus.PENDING,
                         payment_reference: Optional[str] = None,
                         booking_id: Optional[str] = None) -> Dict:
    """A booking document ready to insert; trip_id is left unset."""
    doc = {k: v for k, v in data.items() if k not in ("_id", "trip_id", "status")}
    doc.update({
        "_id": booking_id or DocumentStore.new_id(),
        "status": status,
        "created_at": datetime.now(timezone.utc),
        "rescheduled_count": 0,
    })
    doc.setdefault("allow_reschedule", True)
    if payment_reference:
        doc["payment_reference"] = payment_reference
    return doc


def range_for_mode(mode: str, today: date, start: Optional[date] = None,
                   end: Optional[date] = None) -> Tuple[Optional[date], Optional[date]]:
    """Admin bulk-delete modes to an inclusive created_at day range; (None, None) is everything."""
    if mode == "all":
        return None, None
    if mode == "7d":
        return today - timedelta(days=6), today
    if mode == "30d":
        return today - timedelta(days=29), today
    if mode == "custom":
        if not start or not end:
            raise ValidationError("Custom range needs both start and end dates")
        if start > end:
            raise ValidationError("Start date must not be after end date")
        return start, end
    raise ValidationError(f"Unknown delete mode '{mode}'. Use one of: {', '.join(DELETE_MODES)}")


def _email_context(booking: Dict) -> Dict:
    return {
        "name": booking.get("name"),
        "email": booking.get("email"),
        "booking_id": booking.get("_id"),
        "pickup": booking.get("pickup"),
        "destination": booking.get("destination"),
        "vehicle_type": booking.get("vehicle_type"),
        "intended_date": booking.get("intended_date"),
        "total_fare": booking.get("total_fare"),
        "payment_reference": booking.get("payment_reference"),
    }


class BookingLifecycleManager:

    def __init__(
        self,
        store: DocumentStore,
        allocator: TripAllocator,
        synchronizer: TripPassengerSynchronizer,
        notifier: NotificationSender,
        settings: Settings,
    ):
        self.store = store
        self.allocator = allocator
        self.synchronizer = synchronizer
        self.notifier = notifier
        self.timezone = settings.TIMEZONE

    async def get_booking(self, booking_id: str) -> Dict:
        booking = await self.store.get(Collections.BOOKINGS, booking_id)
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found")
        return booking

    # ─── creation ────────────────────────────────────────────────────────────

    async def create_booking(self, data: Dict, status: str = BookingStatus.PENDING,
                             payment_reference: Optional[str] = None) -> Dict:
        """
        Persist a Pending or Paid booking and place it on a trip before
        returning. ConfigurationError propagates (the booking is kept without
        a trip for a later resync); CapacityExceededError only leaves the
        booking unassigned.
        """
        if status not in (BookingStatus.PENDING, BookingStatus.PAID):
            raise ValidationError(f"New bookings must be Pending or Paid, not {status}")
        booking = await self.store.insert(Collections.BOOKINGS,
                                          new_booking_document(data, status, payment_reference))
        logger.info("📝 Created %s booking %s", status, booking["_id"])
        return await self.allocate_new(booking["_id"])

    async def allocate_new(self, booking_id: str) -> Dict:
        """Assign a just-created booking and return its stored state."""
        try:
            await self.allocator.assign(booking_id)
        except CapacityExceededError as exc:
            logger.warning("Booking %s saved without a trip: %s", booking_id, exc)
        return await self.get_booking(booking_id)

    # ─── status changes ──────────────────────────────────────────────────────

    async def update_status(self, booking_id: str, status: str) -> Dict:
        """Manual status change (Cancelled, Refunded) along the allowed transitions."""
        if status == BookingStatus.CONFIRMED:
            raise ValidationError("Bookings are confirmed automatically when their trip fills")

        async def body(tx: Transaction) -> Dict:
            booking = await tx.get(Collections.BOOKINGS, booking_id)
            if not booking:
                raise NotFoundError(f"Booking {booking_id} not found")
            current = booking.get("status")
            if status not in ALLOWED_TRANSITIONS.get(current, set()):
                raise ValidationError(f"Cannot change booking status from {current} to {status}")
            if status == BookingStatus.REFUNDED and not booking.get("payment_reference"):
                raise ValidationError("Only bookings paid online can be marked Refunded")
            tx.update(Collections.BOOKINGS, booking_id, {"status": status})
            booking["status"] = status
            return booking

        booking = await self.store.run_transaction(body)
        logger.info("Booking %s is now %s", booking_id, status)

        hooks = PostCommitHooks()
        if status == BookingStatus.CANCELLED:
            if booking.get("trip_id"):
                hooks.add(f"release seat {booking_id}", lambda: self.synchronizer.reconcile([booking_id]))

            async def notify():
                await self.notifier.send(NotificationKind.STATUS_CANCELLED, booking["email"], _email_context(booking))

            hooks.add(f"cancellation email {booking_id}", notify)
        await hooks.run()
        return booking

    async def request_refund(self, booking_id: str) -> None:
        """Ask operations to refund a cancelled online payment. Status is unchanged."""
        booking = await self.get_booking(booking_id)
        if booking.get("status") != BookingStatus.CANCELLED:
            raise ValidationError("Refunds can only be requested for cancelled bookings.")
        if not booking.get("payment_reference"):
            raise ValidationError(
                "This booking has no payment reference, so a refund cannot be processed automatically."
            )
        await self.notifier.send_to_operations(NotificationKind.REFUND_REQUEST, _email_context(booking))
        logger.info("💸 Refund requested for booking %s", booking_id)

    # ─── deletion ────────────────────────────────────────────────────────────

    async def delete_booking(self, booking_id: str) -> None:
        booking = await self.get_booking(booking_id)
        await self.store.delete(Collections.BOOKINGS, booking_id)
        logger.info("🗑️ Deleted booking %s", booking_id)
        if booking.get("trip_id"):
            await self._release([booking_id])

    async def delete_bookings_in_range(self, start: Optional[date], end: Optional[date]) -> int:
        """
        Delete bookings created within [start, end] (whole days, local time),
        or every booking when both are None. Returns how many were deleted.
        """
        if (start is None) != (end is None):
            raise ValidationError("Provide both start and end dates, or neither")
        query: Dict = {}
        if start and end:
            lower, upper = day_bounds(start, end, self.timezone)
            query = {"created_at": {"$gte": lower, "$lte": upper}}

        bookings = await self.store.find(Collections.BOOKINGS, query)
        if not bookings:
            return 0
        batches = await self.store.commit_in_batches(
            [WriteOp.delete(Collections.BOOKINGS, b["_id"]) for b in bookings]
        )
        logger.info("🗑️ Deleted %d booking(s) in %d batch(es)", len(bookings), batches)

        assigned = [b["_id"] for b in bookings if b.get("trip_id")]
        if assigned:
            await self._release(assigned)
        return len(bookings)

    async def _release(self, booking_ids: Iterable[str]):
        # The delete already happened; a failed cleanup is repaired by re-running reconcile
        hooks = PostCommitHooks()
        hooks.add("release seats", lambda: self.synchronizer.reconcile(booking_ids))
        await hooks.run()

    def today(self) -> date:
        return local_today(self.timezone)

    # ─── manual reschedule ───────────────────────────────────────────────────

    async def reschedule_booking(self, booking_id: str, new_date: str) -> Dict:
        """
        Move one booking to another date: leave the old trip, clear trip_id
        and reset rescheduled_count atomically, then allocate on the new date.
        Allocation errors propagate; the booking stays unassigned for resync.
        """
        async def body(tx: Transaction) -> Dict:
            booking = await tx.get(Collections.BOOKINGS, booking_id)
            if not booking:
                raise NotFoundError(f"Booking {booking_id} not found")
            if booking.get("status") not in ASSIGNABLE_STATUSES:
                raise ValidationError(f"A {booking.get('status')} booking cannot be rescheduled")
            await detach_passenger(tx, booking_id, booking.get("trip_id"))
            tx.update(Collections.BOOKINGS, booking_id,
                      {"intended_date": new_date, "rescheduled_count": 0}, unset=["trip_id"])
            return booking

        before = await self.store.run_transaction(body)
        await self.allocator.assign(booking_id)
        booking = await self.get_booking(booking_id)

        async def notify():
            await self.notifier.send(NotificationKind.RESCHEDULED, booking["email"], {
                **_email_context(booking),
                "old_date": before.get("intended_date"),
                "new_date": new_date,
            })

        hooks = PostCommitHooks()
        hooks.add(f"reschedule email {booking_id}", notify)
        await hooks.run()
        return booking
