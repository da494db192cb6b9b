"""
Price rule model
Per route and vehicle type fare plus fleet size. Read-only to the trip engine.
"""
import re
from typing import Optional

from pydantic import BaseModel, Field

# Seats per vehicle, keyed by short vehicle type and by display name
VEHICLE_CAPACITY = {
    "4-seater": 4,
    "5-seater": 5,
    "7-seater": 7,
    "4-seater sienna": 4,
    "5-seater sienna": 5,
    "7-seater bus": 7,
}


def normalize_key(value: str) -> str:
    return re.sub(r"\s+", "-", value.strip().lower())


def price_rule_id(pickup: str, destination: str, vehicle_type: str) -> str:
    """Deterministic price rule key, e.g. 'abuad_lagos_4-seater'"""
    return normalize_key(f"{pickup}_{destination}_{vehicle_type}")


def seats_for_vehicle(vehicle_type: str) -> int:
    return VEHICLE_CAPACITY.get(vehicle_type.strip().lower(), 0)


class PriceRule(BaseModel):
    pickup: str = Field(..., min_length=1)
    destination: str = Field(..., min_length=1)
    vehicle_type: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    vehicle_count: int = Field(1, ge=0, description="Vehicles operable per date on this route")
    seats_per_vehicle: Optional[int] = Field(None, ge=0, description="Overrides the vehicle type default")

    @property
    def id(self) -> str:
        return price_rule_id(self.pickup, self.destination, self.vehicle_type)
