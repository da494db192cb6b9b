"""
Payment and reservation schemas
A reservation holds the pending booking between payment initialization and
verification, keyed by the gateway reference.
"""
from typing import Optional

from pydantic import BaseModel, Field

from routewise.models.booking import BookingCreate


class PaymentInitRequest(BaseModel):
    email: str = Field(..., min_length=3)
    amount: float = Field(..., gt=0, description="Amount in the gateway's unit (kobo for Paystack, naira for OPay)")
    booking_details: BookingCreate


class PaymentInitResponse(BaseModel):
    reference: str
    checkout_url: str


class PaymentVerification(BaseModel):
    """Outcome of a gateway verification call"""
    success: bool
    reference: str
    status: str
    metadata: Optional[dict] = None


class PaymentVerifyResponse(BaseModel):
    booking_id: str
    trip_id: Optional[str] = None
    duplicate: bool = False
