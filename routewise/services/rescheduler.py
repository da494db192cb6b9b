"""
Rescheduler – the daily job that moves passengers off yesterday's underfilled
trips onto today's allocation pool, and the resync sweep that retries
allocation for bookings left without a trip.

Every passenger/booking is processed on its own; a failure is recorded and
the job carries on.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional

from routewise.config.database import Collections
from routewise.config.settings import Settings
from routewise.database.db_operations import DocumentStore, Transaction
from routewise.models.booking import BookingStatus
from routewise.services.errors import NotFoundError
from routewise.services.hooks import PostCommitHooks
from routewise.services.notification_service import NotificationKind, NotificationSender
from routewise.services.trip_allocator import TripAllocator
from routewise.services.trip_sync import detach_passenger
from routewise.utils.helpers import iso_day, local_today

logger = logging.getLogger(__name__)

# Bookings the resync sweep tries to place
UNASSIGNED_STATUSES = [BookingStatus.PAID, BookingStatus.PENDING]


@dataclass
class RescheduleReport:
    trips_scanned: int = 0
    passengers: int = 0
    rescheduled: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class SyncReport:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)


class Rescheduler:

    def __init__(self, store: DocumentStore, allocator: TripAllocator,
                 notifier: NotificationSender, settings: Settings):
        self.store = store
        self.allocator = allocator
        self.notifier = notifier
        self.timezone = settings.TIMEZONE

    async def reschedule_underfilled(self, today: Optional[date] = None) -> RescheduleReport:
        today = today or local_today(self.timezone)
        old_date = iso_day(today - timedelta(days=1))
        new_date = iso_day(today)
        report = RescheduleReport()

        trips = await self.store.find(
            Collections.TRIPS,
            {"date": old_date, "is_full": False},
            sort=[("price_rule_id", 1), ("vehicle_index", 1)],
        )
        report.trips_scanned = len(trips)

        for trip in trips:
            for passenger in list(trip.get("passengers", [])):
                booking_id = passenger.get("booking_id")
                report.passengers += 1
                try:
                    moved = await self._move_passenger(trip["_id"], booking_id, old_date, new_date)
                except Exception as exc:
                    report.failed += 1
                    message = f"Failed to process booking {booking_id}: {exc}"
                    report.errors.append(message)
                    logger.error("❌ %s", message)
                    continue
                if moved:
                    report.rescheduled += 1
                else:
                    report.skipped += 1

        logger.info(
            "🔁 Reschedule %s → %s: %d trip(s), %d moved, %d skipped, %d failed",
            old_date, new_date, report.trips_scanned, report.rescheduled, report.skipped, report.failed,
        )
        return report

    async def _move_passenger(self, trip_id: str, booking_id: str, old_date: str, new_date: str) -> bool:
        """Returns False when the booking is skipped (cancelled, opted out or already moved)."""
        async def body(tx: Transaction) -> Optional[Dict]:
            booking = await tx.get(Collections.BOOKINGS, booking_id)
            if not booking:
                raise NotFoundError(f"Booking {booking_id} not found during transaction.")
            if booking.get("status") in (BookingStatus.CANCELLED, BookingStatus.REFUNDED):
                return None
            if booking.get("allow_reschedule") is False:
                return None
            if booking.get("trip_id") not in (None, trip_id):
                return None
            await detach_passenger(tx, booking_id, trip_id)
            tx.update(Collections.BOOKINGS, booking_id, {
                "intended_date": new_date,
                "rescheduled_count": int(booking.get("rescheduled_count") or 0) + 1,
            }, unset=["trip_id"])
            return booking

        booking = await self.store.run_transaction(body)
        if booking is None:
            logger.info("Skipped rescheduling booking %s", booking_id)
            return False

        await self.allocator.assign(booking_id)

        async def notify():
            await self.notifier.send(NotificationKind.RESCHEDULED, booking["email"], {
                "name": booking.get("name"),
                "booking_id": booking_id,
                "pickup": booking.get("pickup"),
                "destination": booking.get("destination"),
                "old_date": old_date,
                "new_date": new_date,
            })

        hooks = PostCommitHooks()
        hooks.add(f"reschedule email {booking_id}", notify)
        await hooks.run()
        return True

    async def resync(self) -> SyncReport:
        """Retry allocation for Paid/Pending bookings that have no trip, oldest first."""
        report = SyncReport()
        bookings = await self.store.find(
            Collections.BOOKINGS,
            {"status": {"$in": UNASSIGNED_STATUSES}, "trip_id": None},
            sort=[("created_at", 1)],
        )
        report.processed = len(bookings)

        for booking in bookings:
            try:
                await self.allocator.assign(booking["_id"])
                report.succeeded += 1
            except Exception as exc:
                report.failed += 1
                report.errors.append(f"Booking {booking['_id']}: {exc}")
                logger.error("❌ Failed to assign trip for booking %s: %s", booking["_id"], exc)

        logger.info("🔄 Resync: %d processed, %d assigned, %d failed",
                    report.processed, report.succeeded, report.failed)
        return report
