"""
Trip-Passenger Synchronizer – keeps trip manifests free of deleted or
cancelled bookings, plus the two trip-wide maintenance jobs (hard reset and
retention cleanup).
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Set

from routewise.config.database import Collections
from routewise.config.settings import Settings
from routewise.database.db_operations import DocumentStore, Transaction, WriteOp
from routewise.models.trip import is_full
from routewise.utils.helpers import days_ago, iso_day, local_today

logger = logging.getLogger(__name__)


@dataclass
class ClearResult:
    cleared_trips: int
    deallocated_bookings: int


def _strip_passengers(trip: dict, booking_ids: Set[str]) -> Optional[WriteOp]:
    """Update for a trip that lists any of booking_ids, else None"""
    passengers = trip.get("passengers", [])
    kept = [p for p in passengers if p.get("booking_id") not in booking_ids]
    if len(kept) == len(passengers):
        return None
    return WriteOp.update(Collections.TRIPS, trip["_id"], {
        "passengers": kept,
        "is_full": is_full(kept, trip["capacity"]),
    })


async def detach_passenger(tx: Transaction, booking_id: str, trip_id: Optional[str]) -> bool:
    """Inside a transaction, drop one booking from a trip manifest. Returns True if it was listed."""
    if not trip_id:
        return False
    trip = await tx.get(Collections.TRIPS, trip_id)
    if not trip:
        return False
    op = _strip_passengers(trip, {booking_id})
    if op is None:
        return False
    tx.writes.append(op)
    return True


class TripPassengerSynchronizer:

    def __init__(self, store: DocumentStore, settings: Settings):
        self.store = store
        self.timezone = settings.TIMEZONE
        self.retention_days = settings.TRIP_RETENTION_DAYS

    async def reconcile(self, deleted_booking_ids: Iterable[str]) -> int:
        """
        Remove the given booking ids from every trip manifest and recompute
        is_full. Only trips that actually change are written. Returns the
        number of trips updated.
        """
        booking_ids = {b for b in deleted_booking_ids if b}
        if not booking_ids:
            return 0

        trips = await self.store.find(Collections.TRIPS)
        affected = [trip["_id"] for trip in trips if _strip_passengers(trip, booking_ids)]
        if not affected:
            return 0

        # Re-read inside the transaction: allocations may have changed these trips
        async def reconcile_chunk(trip_ids: List[str]) -> int:
            async def body(tx: Transaction) -> int:
                current = await tx.find(Collections.TRIPS, {"_id": {"$in": trip_ids}})
                for trip in current:
                    op = _strip_passengers(trip, booking_ids)
                    if op:
                        tx.writes.append(op)
                return len(tx.writes)
            return await self.store.run_transaction(body)

        limit = self.store.batch_limit
        chunks = [affected[i:i + limit] for i in range(0, len(affected), limit)]
        updated = sum(await asyncio.gather(*(reconcile_chunk(chunk) for chunk in chunks)))
        logger.info("🧹 Removed %d booking(s) from %d trip(s)", len(booking_ids), updated)
        return updated

    async def clear_all(self) -> ClearResult:
        """Delete every trip and unset trip_id on every booking they referenced."""
        trips = await self.store.find(Collections.TRIPS)
        if not trips:
            return ClearResult(0, 0)

        booking_ids: Set[str] = set()
        for trip in trips:
            for passenger in trip.get("passengers") or []:
                if passenger.get("booking_id"):
                    booking_ids.add(passenger["booking_id"])

        ops = [WriteOp.delete(Collections.TRIPS, trip["_id"]) for trip in trips]
        ops += [WriteOp.update(Collections.BOOKINGS, booking_id, unset=["trip_id"]) for booking_id in sorted(booking_ids)]
        await self.store.commit_in_batches(ops)

        logger.warning("🗑️ Cleared %d trip(s), deallocated %d booking(s)", len(trips), len(booking_ids))
        return ClearResult(cleared_trips=len(trips), deallocated_bookings=len(booking_ids))

    async def cleanup_past_trips(self) -> int:
        """Delete trips dated more than retention_days ago. Bookings are untouched."""
        cutoff = iso_day(days_ago(local_today(self.timezone), self.retention_days))
        old_trips = await self.store.find(Collections.TRIPS, {"date": {"$lt": cutoff}})
        if not old_trips:
            return 0
        await self.store.commit_in_batches([WriteOp.delete(Collections.TRIPS, t["_id"]) for t in old_trips])
        logger.info("🧹 Deleted %d trip(s) dated before %s", len(old_trips), cutoff)
        return len(old_trips)
