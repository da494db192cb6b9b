"""
Shared fixtures: an in-memory store, recording fakes for email and payment
gateways, and a fully wired service container.
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from routewise.config.database import Collections
from routewise.config.settings import Settings
from routewise.database.memory_store import MemoryDocumentStore
from routewise.models.booking import BookingStatus
from routewise.models.price_rule import PriceRule
from routewise.models.reservation import PaymentVerification
from routewise.services.booking_lifecycle import new_booking_document
from routewise.services.container import build_container
from routewise.services.errors import ExternalServiceError
from routewise.services.notification_service import NotificationSender
from routewise.services.payment_service import PaymentGateway

TRIP_DATE = "2025-06-01"


class RecordingNotifier(NotificationSender):
    """Keeps every email instead of calling Resend"""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.sent: List[tuple] = []
        self.fail = False

    async def send(self, kind: str, to: str, context: Dict) -> None:
        if self.fail:
            raise ExternalServiceError("email provider down")
        self.sent.append((kind, to, dict(context)))

    def of_kind(self, kind: str) -> List[tuple]:
        return [message for message in self.sent if message[0] == kind]


class FakeGateway(PaymentGateway):
    name = "fake"

    def __init__(self, echo_metadata: bool = True):
        self.echo_metadata = echo_metadata
        self.status = "success"
        self.initialized: Dict[str, Dict] = {}
        self.verify_calls = 0

    async def initialize(self, reference, email, amount, metadata, callback_url, phone=""):
        self.initialized[reference] = {"email": email, "amount": amount, "metadata": metadata}
        return f"https://checkout.example/{reference}"

    async def verify(self, reference):
        self.verify_calls += 1
        metadata = None
        if self.echo_metadata and reference in self.initialized:
            metadata = self.initialized[reference]["metadata"]
        return PaymentVerification(success=self.status == "success", reference=reference,
                                   status=self.status, metadata=metadata)


@pytest.fixture
def settings():
    return Settings(
        STORE_BACKEND="memory",
        TRANSACTION_MAX_RETRIES=200,
        SECRET_KEY="test-secret",
        CRON_SECRET="cron-test-secret",
        ENABLE_SCHEDULER=False,
        CONFIRM_PENDING_BOOKINGS=False,
        OPERATIONS_EMAIL="ops@routewise.test",
    )


@pytest.fixture
def store(settings):
    return MemoryDocumentStore(settings.BATCH_LIMIT, settings.TRANSACTION_MAX_RETRIES)


@pytest.fixture
def notifier(settings):
    return RecordingNotifier(settings)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def container(settings, store, notifier, gateway):
    return build_container(settings, store, notifier=notifier,
                           gateways={"paystack": gateway, "opay": gateway})


@pytest.fixture
def booking_data():
    def make(**overrides) -> Dict:
        data = {
            "name": "Ada Obi",
            "email": "ada@example.com",
            "phone": "+2348012345678",
            "pickup": "ABUAD",
            "destination": "Lagos",
            "intended_date": TRIP_DATE,
            "vehicle_type": "4-seater",
            "luggage_count": 1,
            "total_fare": 15000,
            "allow_reschedule": True,
        }
        data.update(overrides)
        return data
    return make


@pytest.fixture
def seed_rule(store):
    async def seed(pickup="ABUAD", destination="Lagos", vehicle_type="4-seater",
                   vehicle_count: Optional[int] = 1, **extra) -> Dict:
        rule = PriceRule(pickup=pickup, destination=destination, vehicle_type=vehicle_type,
                         price=extra.pop("price", 15000), **extra)
        doc = {"_id": rule.id, **rule.model_dump()}
        doc["vehicle_count"] = vehicle_count
        if vehicle_count is None:
            doc.pop("vehicle_count")
        return await store.insert(Collections.PRICES, doc)
    return seed


@pytest.fixture
def add_booking(store, booking_data):
    """Insert a booking directly, without allocating it"""
    async def add(status: str = BookingStatus.PAID, created_at: Optional[datetime] = None,
                  payment_reference: Optional[str] = None, **overrides) -> Dict:
        doc = new_booking_document(booking_data(**overrides), status, payment_reference)
        if created_at is not None:
            doc["created_at"] = created_at.astimezone(timezone.utc)
        return await store.insert(Collections.BOOKINGS, doc)
    return add


@pytest.fixture
def check_invariants(store):
    """Capacity, fullness and single-placement checks over the whole store"""
    async def check() -> None:
        trips = await store.find(Collections.TRIPS)
        seen = {}
        for trip in trips:
            passengers = trip["passengers"]
            assert len(passengers) <= trip["capacity"], trip["_id"]
            assert trip["is_full"] == (len(passengers) >= trip["capacity"]), trip["_id"]
            for passenger in passengers:
                assert passenger["booking_id"] not in seen, f"{passenger['booking_id']} listed twice"
                seen[passenger["booking_id"]] = trip["_id"]

        for booking in await store.find(Collections.BOOKINGS, {"trip_id": {"$exists": True}}):
            assert seen.get(booking["_id"]) == booking["trip_id"], booking["_id"]
    return check
