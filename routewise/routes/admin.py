"""
Admin routes
Trip manifests, booking status changes, deletions and the trip maintenance jobs.
Every endpoint needs an admin bearer token.
"""
import logging
from dataclasses import asdict
from datetime import date
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query

from routewise.config.database import Collections
from routewise.models.booking import BookingReschedule, BookingResponse, BookingStatusUpdate
from routewise.models.trip import TripListResponse
from routewise.services.booking_lifecycle import range_for_mode
from routewise.services.container import ServiceContainer, get_container
from routewise.utils.auth import get_current_admin
from routewise.utils.helpers import serialize_doc, serialize_docs

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


# ─── trips ────────────────────────────────────────────────────────────────────

@router.get("/trips", response_model=TripListResponse)
async def list_trips(
    trip_date: Optional[str] = Query(None, alias="date"),
    price_rule_id: Optional[str] = None,
    container: ServiceContainer = Depends(get_container),
    admin: Dict = Depends(get_current_admin),
):
    """Trips with their manifests, optionally filtered by date and route group"""
    filter_query = {}
    if trip_date:
        filter_query["date"] = trip_date
    if price_rule_id:
        filter_query["price_rule_id"] = price_rule_id
    trips = await container.store.find(
        Collections.TRIPS,
        filter_query,
        sort=[("date", 1), ("price_rule_id", 1), ("vehicle_index", 1)],
    )
    return {"trips": serialize_docs(trips, container.settings.TIMEZONE), "total": len(trips)}


@router.post("/trips/clear", response_model=dict)
async def clear_all_trips(
    container: ServiceContainer = Depends(get_container),
    admin: Dict = Depends(get_current_admin),
):
    """Delete every trip and unlink every booking from it"""
    logger.warning("Admin %s requested a full trip reset", admin.get("sub"))
    result = await container.synchronizer.clear_all()
    return {"success": True, **asdict(result)}


@router.post("/trips/resync", response_model=dict)
async def resync_trips(
    container: ServiceContainer = Depends(get_container),
    admin: Dict = Depends(get_current_admin),
):
    """Retry allocation for every Paid or Pending booking without a trip"""
    report = await container.rescheduler.resync()
    return {"success": True, **asdict(report)}


@router.post("/trips/reschedule", response_model=dict)
async def reschedule_trips(
    container: ServiceContainer = Depends(get_container),
    admin: Dict = Depends(get_current_admin),
):
    report = await container.rescheduler.reschedule_underfilled()
    return {"success": True, **asdict(report)}


@router.post("/trips/cleanup", response_model=dict)
async def cleanup_trips(
    container: ServiceContainer = Depends(get_container),
    admin: Dict = Depends(get_current_admin),
):
    deleted = await container.synchronizer.cleanup_past_trips()
    return {"success": True, "deleted_trips": deleted}


# ─── bookings ─────────────────────────────────────────────────────────────────

@router.patch("/bookings/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: str,
    update: BookingStatusUpdate,
    container: ServiceContainer = Depends(get_container),
    admin: Dict = Depends(get_current_admin),
):
    booking = await container.lifecycle.update_status(booking_id, update.status)
    return serialize_doc(booking, container.settings.TIMEZONE)


@router.post("/bookings/{booking_id}/refund-request", response_model=dict)
async def request_refund(
    booking_id: str,
    container: ServiceContainer = Depends(get_container),
    admin: Dict = Depends(get_current_admin),
):
    await container.lifecycle.request_refund(booking_id)
    return {"success": True, "message": "Refund request sent to the operations team."}


@router.post("/bookings/{booking_id}/reschedule", response_model=BookingResponse)
async def reschedule_booking(
    booking_id: str,
    payload: BookingReschedule,
    container: ServiceContainer = Depends(get_container),
    admin: Dict = Depends(get_current_admin),
):
    """Move a booking to another date and allocate it there"""
    booking = await container.lifecycle.reschedule_booking(booking_id, payload.new_date)
    return serialize_doc(booking, container.settings.TIMEZONE)


@router.delete("/bookings/{booking_id}", response_model=dict)
async def delete_booking(
    booking_id: str,
    container: ServiceContainer = Depends(get_container),
    admin: Dict = Depends(get_current_admin),
):
    await container.lifecycle.delete_booking(booking_id)
    return {"success": True, "deleted": 1}


@router.delete("/bookings", response_model=dict)
async def delete_bookings(
    mode: str = Query(..., description="all | 7d | 30d | custom"),
    start: Optional[date] = None,
    end: Optional[date] = None,
    container: ServiceContainer = Depends(get_container),
    admin: Dict = Depends(get_current_admin),
):
    """Bulk delete bookings by creation date"""
    lower, upper = range_for_mode(mode, container.lifecycle.today(), start, end)
    logger.warning("Admin %s deleting bookings (mode=%s)", admin.get("sub"), mode)
    deleted = await container.lifecycle.delete_bookings_in_range(lower, upper)
    return {"success": True, "deleted": deleted}
