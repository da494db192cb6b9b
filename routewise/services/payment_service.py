"""
Payment Verifier – Paystack and OPay checkout plus the verification callback
that turns a successful payment into a Paid booking.

Gateways only differ in how they initialize and verify a transaction; every
provider materializes bookings through the same lifecycle manager and
allocator.
"""
import hashlib
import hmac
import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

import httpx

from routewise.config.database import Collections
from routewise.config.settings import Settings
from routewise.database.db_operations import DocumentStore, Transaction
from routewise.models.booking import BookingStatus
from routewise.models.price_rule import price_rule_id
from routewise.models.reservation import PaymentVerification
from routewise.services.booking_lifecycle import BookingLifecycleManager, new_booking_document
from routewise.services.capacity_resolver import CapacityResolver
from routewise.services.errors import (
    CapacityExceededError,
    ConfigurationError,
    ExternalServiceError,
    ValidationError,
)
from routewise.services.hooks import PostCommitHooks
from routewise.services.notification_service import NotificationKind, NotificationSender

logger = logging.getLogger(__name__)

# Gateway statuses after which the payment can no longer succeed
FINAL_FAILURE_STATUSES = {"failed", "abandoned", "reversed", "fail", "close"}


def generate_reference() -> str:
    """Unique transaction reference, e.g. RW-250601-9f2c4a1b7d3e"""
    return f"RW-{datetime.now(timezone.utc).strftime('%y%m%d')}-{secrets.token_hex(6)}"


def sign_payload(payload: Dict, secret: str) -> str:
    """HMAC-SHA512 of the JSON payload, as OPay expects for status queries"""
    return hmac.new(secret.encode(), json.dumps(payload).encode(), hashlib.sha512).hexdigest()


class PaymentGateway:
    name = ""

    async def initialize(self, reference: str, email: str, amount: float,
                         metadata: Dict, callback_url: str, phone: str = "") -> str:
        """Start a checkout; returns the URL to redirect the customer to."""
        raise NotImplementedError

    async def verify(self, reference: str) -> PaymentVerification:
        raise NotImplementedError

    async def _request(self, method: str, url: str, **kwargs) -> Dict:
        try:
            async with httpx.AsyncClient(timeout=30) as client:
                resp = await client.request(method, url, **kwargs)
                resp.raise_for_status()
                return resp.json()
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"{self.name} request failed: {exc}") from exc
        except ValueError as exc:
            raise ExternalServiceError(f"{self.name} returned invalid JSON") from exc


class PaystackGateway(PaymentGateway):
    name = "paystack"

    def __init__(self, settings: Settings):
        self.secret_key = settings.PAYSTACK_SECRET_KEY
        self.api_url = settings.PAYSTACK_API_URL.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        if not self.secret_key:
            raise ExternalServiceError("PAYSTACK_SECRET_KEY is not configured.")
        return {"Authorization": f"Bearer {self.secret_key}"}

    async def initialize(self, reference: str, email: str, amount: float,
                         metadata: Dict, callback_url: str, phone: str = "") -> str:
        data = await self._request("POST", f"{self.api_url}/transaction/initialize", headers=self._headers(), json={
            "email": email,
            "amount": int(round(amount)),  # kobo
            "reference": reference,
            "metadata": metadata,
            "callback_url": callback_url,
        })
        if not data.get("status") or not (data.get("data") or {}).get("authorization_url"):
            raise ExternalServiceError(data.get("message") or "Paystack did not return a checkout URL")
        return data["data"]["authorization_url"]

    async def verify(self, reference: str) -> PaymentVerification:
        data = await self._request("GET", f"{self.api_url}/transaction/verify/{reference}", headers=self._headers())
        payload = data.get("data") or {}
        metadata = payload.get("metadata")
        if isinstance(metadata, str):
            try:
                metadata = json.loads(metadata)
            except ValueError:
                metadata = None
        status = payload.get("status") or "unknown"
        return PaymentVerification(success=status == "success", reference=reference, status=status,
                                   metadata=metadata if isinstance(metadata, dict) else None)


class OPayGateway(PaymentGateway):
    name = "opay"

    def __init__(self, settings: Settings):
        self.secret_key = settings.OPAY_SECRET_KEY
        self.merchant_id = settings.OPAY_MERCHANT_ID
        self.api_url = settings.OPAY_API_URL.rstrip("/")

    def _headers(self, bearer: str) -> Dict[str, str]:
        if not self.secret_key or not self.merchant_id:
            raise ExternalServiceError("OPay secret key or merchant ID is not configured.")
        return {"Authorization": f"Bearer {bearer}", "MerchantId": self.merchant_id}

    async def initialize(self, reference: str, email: str, amount: float,
                         metadata: Dict, callback_url: str, phone: str = "") -> str:
        payload = {
            "reference": reference,
            "mchShortName": "RouteWise",
            "productName": "Trip Booking",
            "productDesc": "Payment for RouteWise trip booking",
            "userPhone": "+" + "".join(ch for ch in phone if ch.isdigit()),
            "userRequestIp": "127.0.0.1",
            "amount": int(round(amount)),  # naira
            "currency": "NGN",
            "payTypes": ["BalancePayment", "BonusPayment", "BankCard", "BankAccount"],
            "callbackUrl": callback_url,
            "returnUrl": callback_url,
            "expireAt": 30,
        }
        data = await self._request("POST", f"{self.api_url}/cashier/initialize",
                                   headers=self._headers(self.secret_key), json=payload)
        cashier_url = (data.get("data") or {}).get("cashierUrl")
        if not cashier_url:
            raise ExternalServiceError(data.get("message") or "Failed to get cashier URL from OPay")
        return cashier_url

    async def verify(self, reference: str) -> PaymentVerification:
        payload = {"reference": reference}
        headers = self._headers(sign_payload(payload, self.secret_key or ""))
        data = await self._request("POST", f"{self.api_url}/cashier/status", headers=headers, json=payload)
        status = (data.get("data") or {}).get("status") or "UNKNOWN"
        # OPay does not echo metadata; the reservation carries the booking
        return PaymentVerification(success=status == "SUCCESS", reference=reference, status=status)


def _booking_details(metadata: Optional[Dict]) -> Optional[Dict]:
    if not metadata:
        return None
    details = metadata.get("booking_details")
    if isinstance(details, str):
        try:
            details = json.loads(details)
        except ValueError:
            return None
    return details if isinstance(details, dict) else None


class PaymentService:

    def __init__(
        self,
        store: DocumentStore,
        lifecycle: BookingLifecycleManager,
        resolver: CapacityResolver,
        notifier: NotificationSender,
        gateways: Dict[str, PaymentGateway],
        settings: Settings,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.resolver = resolver
        self.notifier = notifier
        self.gateways = gateways
        self.callback_url = f"{settings.PUBLIC_BASE_URL.rstrip('/')}/payment/callback"

    def gateway(self, provider: str) -> PaymentGateway:
        gateway = self.gateways.get(provider)
        if gateway is None:
            raise ValidationError(f"Unsupported payment provider: {provider}")
        return gateway

    async def initialize_payment(self, provider: str, email: str, amount: float,
                                 booking_details: Dict) -> Tuple[str, str]:
        """
        Last-minute availability check, a reservation keyed by the new
        reference, then the gateway checkout. Returns (reference, checkout_url).
        """
        gateway = self.gateway(provider)
        pickup, destination = booking_details["pickup"], booking_details["destination"]
        vehicle_type, trip_date = booking_details["vehicle_type"], booking_details["intended_date"]

        seats = await self.resolver.available_seats(pickup, destination, vehicle_type, trip_date)
        if seats <= 0:
            raise CapacityExceededError(
                "Sorry, all seats for this trip have just been booked. Please try another date or route."
            )

        reference = generate_reference()
        rule_id = price_rule_id(pickup, destination, vehicle_type)
        await self.store.insert(Collections.RESERVATIONS, {
            "_id": reference,
            "provider": provider,
            "price_rule_id": rule_id,
            "date": trip_date,
            "email": email,
            "amount": amount,
            "booking_details": booking_details,
            "created_at": datetime.now(timezone.utc),
        })

        metadata = {
            "reservation_id": reference,
            "price_rule_id": rule_id,
            "booking_details": json.dumps(booking_details),
        }
        try:
            checkout_url = await gateway.initialize(reference, email, amount, metadata, self.callback_url,
                                                    phone=booking_details.get("phone", ""))
        except ExternalServiceError:
            await self.store.delete(Collections.RESERVATIONS, reference)
            raise
        logger.info("💳 Initialized %s payment %s for %s", provider, reference, rule_id)
        return reference, checkout_url

    async def _existing_booking(self, reference: str) -> Optional[Dict]:
        found = await self.store.find(Collections.BOOKINGS, {"payment_reference": reference}, limit=1)
        return found[0] if found else None

    async def verify_and_create_booking(self, provider: str, reference: str) -> Tuple[Dict, bool]:
        """
        Turn a verified payment into a Paid booking. Safe to call repeatedly
        for the same reference: later calls return the first booking.
        Returns (booking, duplicate).
        """
        existing = await self._existing_booking(reference)
        if existing:
            logger.info("Duplicate booking prevented for reference %s (booking %s)", reference, existing["_id"])
            return existing, True

        verification = await self.gateway(provider).verify(reference)
        if not verification.success:
            if (verification.status or "").lower() in FINAL_FAILURE_STATUSES:
                await self.store.delete(Collections.RESERVATIONS, reference)
            raise ValidationError(f"Payment was not successful ({verification.status}).")

        reservation = await self.store.get(Collections.RESERVATIONS, reference)
        details = _booking_details(verification.metadata) or (reservation or {}).get("booking_details")
        if not details:
            # A concurrent callback may have finished and removed the reservation
            existing = await self._existing_booking(reference)
            if existing:
                return existing, True
            raise ValidationError("Booking metadata is missing from transaction.")

        new_id = self.store.new_id()

        async def claim(tx: Transaction) -> Tuple[str, bool]:
            duplicates = await tx.find(Collections.BOOKINGS, {"payment_reference": reference})
            if duplicates:
                return duplicates[0]["_id"], True
            held = await tx.get(Collections.RESERVATIONS, reference)
            if held and held.get("booking_id"):
                return held["booking_id"], True
            doc = new_booking_document(details, BookingStatus.PAID, reference, booking_id=new_id)
            tx.create(Collections.BOOKINGS, new_id, {k: v for k, v in doc.items() if k != "_id"})
            if held:
                tx.update(Collections.RESERVATIONS, reference, {"booking_id": new_id})
            return new_id, False

        booking_id, duplicate = await self.store.run_transaction(claim)
        if duplicate:
            return await self.lifecycle.get_booking(booking_id), True

        try:
            booking = await self.lifecycle.allocate_new(booking_id)
        except ConfigurationError as exc:
            # Paid already: keep the booking, operations were alerted by the allocator
            logger.error("Paid booking %s has no trip: %s", booking_id, exc)
            booking = await self.lifecycle.get_booking(booking_id)

        async def forget_reservation():
            await self.store.delete(Collections.RESERVATIONS, reference)

        async def notify():
            await self.notifier.send(NotificationKind.BOOKING_RECEIVED, booking["email"], {
                "name": booking.get("name"),
                "booking_id": booking["_id"],
                "pickup": booking.get("pickup"),
                "destination": booking.get("destination"),
                "intended_date": booking.get("intended_date"),
                "total_fare": booking.get("total_fare"),
            })

        hooks = PostCommitHooks()
        hooks.add(f"delete reservation {reference}", forget_reservation)
        hooks.add(f"booking received email {booking_id}", notify)
        await hooks.run()
        logger.info("✅ Paid booking %s created from %s payment %s", booking_id, provider, reference)
        return booking, False
