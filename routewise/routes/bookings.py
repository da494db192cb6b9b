"""
Booking routes
Public endpoints: bypass/pending booking creation, lookup and seat availability
"""
from fastapi import APIRouter, Depends, status

from routewise.models.booking import BookingCreate, BookingResponse
from routewise.services.container import ServiceContainer, get_container
from routewise.utils.helpers import serialize_doc

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking: BookingCreate,
    container: ServiceContainer = Depends(get_container),
):
    """Create a Pending booking and place it on a trip"""
    created = await container.lifecycle.create_booking(booking.model_dump(mode="json"))
    return serialize_doc(created, container.settings.TIMEZONE)


@router.get("/availability", response_model=dict)
async def get_availability(
    pickup: str,
    destination: str,
    vehicle_type: str,
    date: str,
    container: ServiceContainer = Depends(get_container),
):
    """Seats still free on a route, vehicle type and date"""
    seats = await container.resolver.available_seats(pickup, destination, vehicle_type, date)
    return {"available_seats": seats, "available": seats > 0}


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    container: ServiceContainer = Depends(get_container),
):
    booking = await container.lifecycle.get_booking(booking_id)
    return serialize_doc(booking, container.settings.TIMEZONE)
