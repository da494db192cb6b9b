"""
Trip Confirmation Monitor – once a trip is full, promote its passengers'
bookings to Confirmed and tell each customer.
"""
import logging
from typing import Dict, List

from routewise.config.database import Collections
from routewise.config.settings import Settings
from routewise.database.db_operations import DocumentStore, Transaction
from routewise.models.booking import BookingStatus
from routewise.models.trip import is_full
from routewise.services.hooks import PostCommitHooks
from routewise.services.notification_service import NotificationKind, NotificationSender

logger = logging.getLogger(__name__)


class TripConfirmationMonitor:

    def __init__(self, store: DocumentStore, notifier: NotificationSender, settings: Settings):
        self.store = store
        self.notifier = notifier
        self.confirm_pending = settings.CONFIRM_PENDING_BOOKINGS

    @property
    def promotable_statuses(self) -> List[str]:
        statuses = [BookingStatus.PAID]
        if self.confirm_pending:
            statuses.append(BookingStatus.PENDING)
        return statuses

    async def confirm_trip(self, trip_id: str) -> List[str]:
        """
        Promote the promotable bookings on a full trip in one transaction,
        then send one confirmation per promoted booking. Returns the promoted
        booking ids; re-running on a confirmed trip returns [].
        """
        async def promote(tx: Transaction) -> List[Dict]:
            trip = await tx.get(Collections.TRIPS, trip_id)
            if not trip:
                logger.warning("Trip %s vanished before confirmation", trip_id)
                return []
            passengers = trip.get("passengers", [])
            if not is_full(passengers, trip["capacity"]):
                return []
            booking_ids = [p["booking_id"] for p in passengers]
            bookings = await tx.find(
                Collections.BOOKINGS,
                {"_id": {"$in": booking_ids}, "status": {"$in": self.promotable_statuses}},
            )
            for booking in bookings:
                tx.update(Collections.BOOKINGS, booking["_id"], {
                    "status": BookingStatus.CONFIRMED,
                    "confirmed_date": trip["date"],
                })
                booking["confirmed_date"] = trip["date"]
            return bookings

        promoted = await self.store.run_transaction(promote)
        if not promoted:
            return []

        logger.info("✅ Trip %s is full: confirmed %d booking(s)", trip_id, len(promoted))
        hooks = PostCommitHooks()
        for booking in promoted:
            hooks.add(f"confirmation email {booking['_id']}", self._email(booking))
        await hooks.run()
        return [booking["_id"] for booking in promoted]

    def _email(self, booking: Dict):
        async def send():
            await self.notifier.send(NotificationKind.STATUS_CONFIRMED, booking["email"], {
                "name": booking.get("name"),
                "booking_id": booking["_id"],
                "pickup": booking.get("pickup"),
                "destination": booking.get("destination"),
                "vehicle_type": booking.get("vehicle_type"),
                "total_fare": booking.get("total_fare"),
                "confirmed_date": booking.get("confirmed_date"),
            })
        return send
