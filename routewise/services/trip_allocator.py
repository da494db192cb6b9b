"""
Trip Allocator – places one booking on a vehicle trip for its route,
vehicle type and date.

Everything the decision depends on (the booking, the price rule and the
group's trips) is read inside one transaction together with the writes it
produces, so two bookings racing for the last seat cannot both win: the loser
re-runs against the committed state and either takes the next vehicle or
fails with CapacityExceededError.

Fill order is first-fit by vehicle_index.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional

from routewise.config.database import Collections
from routewise.database.db_operations import DocumentStore, Transaction
from routewise.models.booking import ASSIGNABLE_STATUSES
from routewise.models.price_rule import price_rule_id
from routewise.models.trip import is_full, make_trip_id, new_trip_document, passenger_entry
from routewise.services.capacity_resolver import CapacityResolver
from routewise.services.errors import (
    CapacityExceededError,
    ConfigurationError,
    NotFoundError,
    ValidationError,
)
from routewise.services.hooks import PostCommitHooks
from routewise.services.notification_service import NotificationKind, NotificationSender
from routewise.services.trip_confirmation import TripConfirmationMonitor

logger = logging.getLogger(__name__)


@dataclass
class AllocationResult:
    booking_id: str
    trip_id: str
    vehicle_index: Optional[int] = None
    trip_full: bool = False
    created: bool = False
    already_assigned: bool = False


class TripAllocator:

    def __init__(
        self,
        store: DocumentStore,
        resolver: CapacityResolver,
        monitor: TripConfirmationMonitor,
        notifier: NotificationSender,
    ):
        self.store = store
        self.resolver = resolver
        self.monitor = monitor
        self.notifier = notifier

    async def assign(self, booking_id: str) -> AllocationResult:
        """
        Assign a booking to the first non-full trip of its group, creating the
        next vehicle when every existing one is full and the fleet allows it.
        A booking that already has a trip_id is left untouched.
        """
        try:
            result = await self.store.run_transaction(lambda tx: self._allocate(tx, booking_id))
        except (ConfigurationError, CapacityExceededError) as exc:
            await self._raise_alert(booking_id, exc)
            raise

        if result.trip_full and not result.already_assigned:
            hooks = PostCommitHooks()
            hooks.add(f"confirm trip {result.trip_id}", lambda: self.monitor.confirm_trip(result.trip_id))
            await hooks.run()
        return result

    async def _allocate(self, tx: Transaction, booking_id: str) -> AllocationResult:
        booking = await tx.get(Collections.BOOKINGS, booking_id)
        if not booking:
            raise NotFoundError(f"Booking {booking_id} not found")
        if booking.get("trip_id"):
            return AllocationResult(booking_id, booking["trip_id"], already_assigned=True)
        if booking.get("status") not in ASSIGNABLE_STATUSES:
            raise ValidationError(f"Booking {booking_id} is {booking.get('status')} and cannot be assigned to a trip")

        trip_date = booking["intended_date"]
        capacity = await self.resolver.resolve(
            booking["pickup"], booking["destination"], booking["vehicle_type"], trip_date, tx=tx
        )
        trips = await tx.find(
            Collections.TRIPS,
            {"price_rule_id": capacity.price_rule_id, "date": trip_date},
            sort=[("vehicle_index", 1)],
        )

        # Already on a manifest (e.g. trip_id lost in a partial failure): relink only
        for trip in trips:
            if any(p.get("booking_id") == booking_id for p in trip.get("passengers", [])):
                tx.update(Collections.BOOKINGS, booking_id, {"trip_id": trip["_id"]})
                return AllocationResult(booking_id, trip["_id"], trip["vehicle_index"],
                                        trip_full=trip.get("is_full", False), already_assigned=True)

        entry = passenger_entry(booking)
        for trip in trips:
            passengers = trip.get("passengers", [])
            if is_full(passengers, trip["capacity"]):
                continue
            passengers = passengers + [entry]
            full = is_full(passengers, trip["capacity"])
            tx.update(Collections.TRIPS, trip["_id"], {"passengers": passengers, "is_full": full})
            tx.update(Collections.BOOKINGS, booking_id, {"trip_id": trip["_id"]})
            return AllocationResult(booking_id, trip["_id"], trip["vehicle_index"], trip_full=full)

        if len(trips) < capacity.max_vehicles:
            vehicle_index = len(trips) + 1
            trip_id = make_trip_id(capacity.price_rule_id, trip_date, vehicle_index)
            trip = new_trip_document(capacity.price_rule_id, booking, trip_date,
                                     vehicle_index, capacity.capacity_per_vehicle)
            tx.create(Collections.TRIPS, trip_id, trip)
            tx.update(Collections.BOOKINGS, booking_id, {"trip_id": trip_id})
            return AllocationResult(booking_id, trip_id, vehicle_index,
                                    trip_full=trip["is_full"], created=True)

        raise CapacityExceededError(
            f"All {capacity.max_vehicles} vehicle(s) for {capacity.price_rule_id} on {trip_date} are full"
        )

    async def _raise_alert(self, booking_id: str, exc: Exception):
        """Record the failed allocation and tell operations. Best effort."""
        booking: Dict = {"_id": booking_id}
        try:
            booking = await self.store.get(Collections.BOOKINGS, booking_id) or booking
        except Exception as lookup_exc:
            logger.error("❌ Could not load booking %s for alert: %s", booking_id, lookup_exc)
        kind = "capacity-overflow" if isinstance(exc, CapacityExceededError) else "configuration"
        logger.warning("🚨 Allocation failed for booking %s (%s): %s", booking_id, kind, exc)

        rule_id = None
        if booking.get("pickup") and booking.get("destination") and booking.get("vehicle_type"):
            rule_id = price_rule_id(booking["pickup"], booking["destination"], booking["vehicle_type"])

        async def record():
            await self.store.insert(Collections.ALERTS, {
                "kind": kind,
                "booking_id": booking_id,
                "price_rule_id": rule_id,
                "date": booking.get("intended_date"),
                "message": str(exc),
                "created_at": datetime.now(timezone.utc),
            })

        async def notify():
            await self.notifier.send_to_operations(NotificationKind.CAPACITY_OVERFLOW_ALERT, {
                "booking_id": booking_id,
                "pickup": booking.get("pickup"),
                "destination": booking.get("destination"),
                "vehicle_type": booking.get("vehicle_type"),
                "date": booking.get("intended_date"),
                "reason": str(exc),
            })

        hooks = PostCommitHooks()
        hooks.add(f"alert record {booking_id}", record)
        hooks.add(f"alert email {booking_id}", notify)
        await hooks.run()
