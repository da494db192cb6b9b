"""
Trip model
One vehicle instance for a route, vehicle type and date, with its manifest
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class Passenger(BaseModel):
    booking_id: str
    name: str
    phone: str


class TripResponse(BaseModel):
    id: str = Field(alias="_id")
    price_rule_id: str
    pickup: str
    destination: str
    vehicle_type: str
    date: str
    vehicle_index: int = Field(..., ge=1)
    capacity: int = Field(..., ge=1)
    passengers: List[Passenger] = []
    is_full: bool = False
    created_at: Optional[datetime] = None

    class Config:
        populate_by_name = True


class TripListResponse(BaseModel):
    trips: List[TripResponse]
    total: int


def make_trip_id(price_rule_id: str, trip_date: str, vehicle_index: int) -> str:
    return f"{price_rule_id}_{trip_date}_{vehicle_index}"


def passenger_entry(booking: Dict) -> Dict:
    """Manifest entry for a booking document"""
    return {
        "booking_id": booking["_id"],
        "name": booking.get("name", ""),
        "phone": booking.get("phone", ""),
    }


def is_full(passengers: List[Dict], capacity: int) -> bool:
    return len(passengers) >= capacity


def new_trip_document(price_rule_id: str, booking: Dict, trip_date: str,
                      vehicle_index: int, capacity: int) -> Dict:
    """A freshly created trip seeded with its first passenger"""
    passengers = [passenger_entry(booking)]
    return {
        "price_rule_id": price_rule_id,
        "pickup": booking["pickup"],
        "destination": booking["destination"],
        "vehicle_type": booking["vehicle_type"],
        "date": trip_date,
        "vehicle_index": vehicle_index,
        "capacity": capacity,
        "passengers": passengers,
        "is_full": is_full(passengers, capacity),
        "created_at": datetime.now(timezone.utc),
    }
