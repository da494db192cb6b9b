"""
Notification Sender
Transactional email over the Resend HTTP API, keyed by template kind.
Every failure surfaces as ExternalServiceError; callers treat email as a
secondary effect and log instead of propagating.
"""
import html
import logging
from typing import Dict, Optional

import httpx

from routewise.config.settings import Settings
from routewise.services.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class NotificationKind:
    STATUS_CONFIRMED = "status-confirmed"
    STATUS_CANCELLED = "status-cancelled"
    BOOKING_RECEIVED = "booking-received"
    RESCHEDULED = "rescheduled"
    REFUND_REQUEST = "refund-request"
    CAPACITY_OVERFLOW_ALERT = "capacity-overflow-alert"


def _short(booking_id: Optional[str]) -> str:
    return (booking_id or "N/A")[:8]


def render(kind: str, context: Dict) -> Dict[str, str]:
    """Subject and HTML body for a template kind"""
    ctx = {k: html.escape(str(v)) for k, v in context.items() if v is not None}
    ref = _short(context.get("booking_id"))
    route = f"{ctx.get('pickup', '')} to {ctx.get('destination', '')}"

    if kind == NotificationKind.STATUS_CONFIRMED:
        subject = f"Your Booking is Confirmed! (Ref: {ref})"
        body = (
            f"<p>Hi {ctx.get('name', '')},</p>"
            f"<p>Your trip from {route} ({ctx.get('vehicle_type', '')}) is confirmed "
            f"for <strong>{ctx.get('confirmed_date', '')}</strong>.</p>"
            f"<p>Total fare: ₦{ctx.get('total_fare', '')}</p>"
        )
    elif kind == NotificationKind.STATUS_CANCELLED:
        subject = f"Your Booking has been Cancelled (Ref: {ref})"
        body = (
            f"<p>Hi {ctx.get('name', '')},</p>"
            f"<p>Your booking for {route} has been cancelled. "
            "If you paid online, our team will contact you about a refund.</p>"
        )
    elif kind == NotificationKind.BOOKING_RECEIVED:
        subject = f"We've received your booking (Ref: {ref})"
        body = (
            f"<p>Hi {ctx.get('name', '')},</p>"
            f"<p>Payment received for {route} on {ctx.get('intended_date', '')}. "
            "You will get a confirmation email once your vehicle is full.</p>"
        )
    elif kind == NotificationKind.RESCHEDULED:
        subject = f"Your trip has been rescheduled (Ref: {ref})"
        body = (
            f"<p>Hi {ctx.get('name', '')},</p>"
            f"<p>Your trip for {route} was moved from {ctx.get('old_date', '')} "
            f"to <strong>{ctx.get('new_date', '')}</strong>.</p>"
        )
    elif kind == NotificationKind.REFUND_REQUEST:
        subject = f"Refund Request: Booking {ref}"
        body = (
            f"<p>A refund has been requested for booking {ctx.get('booking_id', '')}.</p>"
            f"<p>Customer: {ctx.get('name', '')} ({ctx.get('email', '')})<br>"
            f"Amount: ₦{ctx.get('total_fare', '')}<br>"
            f"Payment reference: {ctx.get('payment_reference', '')}</p>"
            "<p>Process the refund manually in the payment gateway dashboard.</p>"
        )
    elif kind == NotificationKind.CAPACITY_OVERFLOW_ALERT:
        subject = f"ACTION REQUIRED: Booking {ref} could not be assigned"
        body = (
            f"<p>Booking {ctx.get('booking_id', '')} for {route} on {ctx.get('date', '')} "
            f"({ctx.get('vehicle_type', '')}) could not be placed on a trip.</p>"
            f"<p>Reason: {ctx.get('reason', '')}</p>"
            "<p>Add vehicles for this route or contact the customer.</p>"
        )
    else:
        raise ValueError(f"Unknown notification kind: {kind}")
    return {"subject": subject, "html": body}


class NotificationSender:
    """Fire-and-forget email dispatch"""

    def __init__(self, settings: Settings):
        self.api_key = settings.RESEND_API_KEY
        self.api_url = settings.RESEND_API_URL
        self.sender = settings.EMAIL_FROM
        self.operations_email = settings.OPERATIONS_EMAIL

    async def send(self, kind: str, to: str, context: Dict) -> None:
        if not self.api_key:
            raise ExternalServiceError("Resend API key is not configured. Cannot send email.")
        message = render(kind, context)
        payload = {"from": self.sender, "to": [to], **message}
        try:
            async with httpx.AsyncClient(timeout=15) as client:
                resp = await client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Email '{kind}' to {to} failed: {exc}") from exc
        logger.info("📧 Sent '%s' email to %s", kind, to)

    async def send_to_operations(self, kind: str, context: Dict) -> None:
        await self.send(kind, self.operations_email, context)
