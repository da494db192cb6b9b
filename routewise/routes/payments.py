"""
Payment routes
Checkout initialization and the verification callback for Paystack and OPay
"""
from fastapi import APIRouter, Depends

from routewise.models.reservation import PaymentInitRequest, PaymentInitResponse, PaymentVerifyResponse
from routewise.services.container import ServiceContainer, get_container

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/{provider}/initialize", response_model=PaymentInitResponse)
async def initialize_payment(
    provider: str,
    request: PaymentInitRequest,
    container: ServiceContainer = Depends(get_container),
):
    """
    Check the route still has seats, hold the booking details against a new
    reference and return the gateway checkout URL.
    """
    reference, checkout_url = await container.payments.initialize_payment(
        provider,
        request.email,
        request.amount,
        request.booking_details.model_dump(mode="json"),
    )
    return PaymentInitResponse(reference=reference, checkout_url=checkout_url)


@router.post("/{provider}/verify/{reference}", response_model=PaymentVerifyResponse)
async def verify_payment(
    provider: str,
    reference: str,
    container: ServiceContainer = Depends(get_container),
):
    """Verify with the gateway and create the Paid booking (idempotent per reference)"""
    booking, duplicate = await container.payments.verify_and_create_booking(provider, reference)
    return PaymentVerifyResponse(
        booking_id=booking["_id"],
        trip_id=booking.get("trip_id"),
        duplicate=duplicate,
    )
