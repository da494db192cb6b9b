"""
Capacity Resolver – seats per vehicle and fleet size for a route, vehicle
type and date, read from the price rule.
"""
from dataclasses import dataclass
from typing import Dict, Optional

from routewise.config.database import Collections
from routewise.database.db_operations import DocumentStore, Transaction
from routewise.models.price_rule import price_rule_id, seats_for_vehicle
from routewise.services.errors import ConfigurationError


@dataclass(frozen=True)
class Capacity:
    price_rule_id: str
    capacity_per_vehicle: int
    max_vehicles: int

    @property
    def total_seats(self) -> int:
        return self.capacity_per_vehicle * self.max_vehicles


def capacity_from_rule(rule: Dict) -> Capacity:
    """Raises ConfigurationError when the rule resolves to zero seats per vehicle."""
    seats = rule.get("seats_per_vehicle")
    if seats is None:
        seats = seats_for_vehicle(rule.get("vehicle_type", ""))
    if not seats or seats <= 0:
        raise ConfigurationError(
            f"Price rule {rule.get('_id')} has no seat capacity for vehicle type '{rule.get('vehicle_type')}'"
        )
    vehicle_count = rule.get("vehicle_count")
    max_vehicles = 1 if vehicle_count is None else int(vehicle_count)
    return Capacity(price_rule_id=rule["_id"], capacity_per_vehicle=int(seats), max_vehicles=max_vehicles)


class CapacityResolver:

    def __init__(self, store: DocumentStore):
        self.store = store

    async def resolve(self, pickup: str, destination: str, vehicle_type: str, date: str,
                      tx: Optional[Transaction] = None) -> Capacity:
        """
        Look up the price rule by its deterministic key. Reads through `tx`
        when given so the rule is part of the caller's transaction.
        Rules are date-independent; `date` only appears in error messages.
        """
        rule_id = price_rule_id(pickup, destination, vehicle_type)
        reader = tx if tx is not None else self.store
        rule = await reader.get(Collections.PRICES, rule_id)
        if not rule:
            raise ConfigurationError(f"No price rule found for {rule_id} on {date}")
        return capacity_from_rule(rule)

    async def available_seats(self, pickup: str, destination: str, vehicle_type: str, date: str) -> int:
        """Seats still free across every vehicle of the group; 0 when unresolvable."""
        try:
            capacity = await self.resolve(pickup, destination, vehicle_type, date)
        except ConfigurationError:
            return 0
        trips = await self.store.find(
            Collections.TRIPS, {"price_rule_id": capacity.price_rule_id, "date": date}
        )
        booked = sum(len(trip.get("passengers", [])) for trip in trips)
        return max(capacity.total_seats - booked, 0)
