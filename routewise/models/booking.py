"""
Booking model and schemas
A booking request, its payment state and its (weak) link to a trip
"""
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class BookingStatus:
    PENDING = "Pending"
    PAID = "Paid"
    CONFIRMED = "Confirmed"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"


# Manual transitions; Confirmed is only ever reached through a full trip
ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.PAID: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: {BookingStatus.REFUNDED},
    BookingStatus.REFUNDED: set(),
}

# Statuses that may be placed on a trip
ASSIGNABLE_STATUSES = (BookingStatus.PENDING, BookingStatus.PAID, BookingStatus.CONFIRMED)


def _check_iso_date(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    try:
        return date.fromisoformat(value).isoformat()
    except ValueError:
        raise ValueError("Date must be in YYYY-MM-DD format")


class BookingBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., min_length=3, max_length=200)
    phone: str = Field(..., min_length=5, max_length=30)
    pickup: str = Field(..., min_length=1)
    destination: str = Field(..., min_length=1)
    intended_date: str = Field(..., description="Date in YYYY-MM-DD format")
    alternative_date: Optional[str] = Field(None, description="Date in YYYY-MM-DD format")
    vehicle_type: str = Field(..., min_length=1)
    luggage_count: int = Field(0, ge=0)
    total_fare: float = Field(..., ge=0)
    allow_reschedule: bool = True

    @field_validator("intended_date", "alternative_date")
    @classmethod
    def validate_dates(cls, value):
        return _check_iso_date(value)


class BookingCreate(BookingBase):
    pass


class BookingStatusUpdate(BaseModel):
    status: Literal["Cancelled", "Refunded"]


class BookingReschedule(BaseModel):
    new_date: str = Field(..., description="Date in YYYY-MM-DD format")

    @field_validator("new_date")
    @classmethod
    def validate_new_date(cls, value):
        return _check_iso_date(value)


class BookingResponse(BookingBase):
    id: str = Field(alias="_id")
    status: Literal["Pending", "Paid", "Confirmed", "Cancelled", "Refunded"]
    created_at: datetime
    confirmed_date: Optional[str] = None
    payment_reference: Optional[str] = None
    trip_id: Optional[str] = None
    rescheduled_count: int = 0

    class Config:
        populate_by_name = True
