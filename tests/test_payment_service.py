import asyncio
import hashlib
import hmac
import json

import pytest

from routewise.config.database import Collections
from routewise.config.settings import Settings
from routewise.models.booking import BookingStatus
from routewise.services.errors import CapacityExceededError, ExternalServiceError, ValidationError
from routewise.services.notification_service import NotificationKind
from routewise.services.payment_service import OPayGateway, PaystackGateway, sign_payload


async def _initialize(container, booking_data, provider="paystack", **overrides):
    return await container.payments.initialize_payment(provider, "ada@example.com", 1500000,
                                                       booking_data(**overrides))


async def test_initialize_holds_a_reservation(container, store, gateway, seed_rule, booking_data):
    await seed_rule()
    reference, checkout_url = await _initialize(container, booking_data)

    assert checkout_url.endswith(reference)
    reservation = await store.get(Collections.RESERVATIONS, reference)
    assert reservation["price_rule_id"] == "abuad_lagos_4-seater"
    assert reservation["booking_details"]["name"] == "Ada Obi"
    metadata = gateway.initialized[reference]["metadata"]
    assert json.loads(metadata["booking_details"])["pickup"] == "ABUAD"


async def test_initialize_refuses_a_sold_out_route(container, store, seed_rule, booking_data):
    await seed_rule(vehicle_count=0)
    with pytest.raises(CapacityExceededError):
        await _initialize(container, booking_data)
    assert await store.find(Collections.RESERVATIONS) == []


async def test_unknown_provider(container, seed_rule, booking_data):
    await seed_rule()
    with pytest.raises(ValidationError):
        await _initialize(container, booking_data, provider="cash")


async def test_verify_creates_a_paid_booking_on_a_trip(container, store, notifier, seed_rule, booking_data):
    await seed_rule()
    reference, _ = await _initialize(container, booking_data)

    booking, duplicate = await container.payments.verify_and_create_booking("paystack", reference)

    assert duplicate is False
    assert booking["status"] == BookingStatus.PAID
    assert booking["payment_reference"] == reference
    assert booking["trip_id"] == "abuad_lagos_4-seater_2025-06-01_1"
    assert await store.get(Collections.RESERVATIONS, reference) is None
    assert len(notifier.of_kind(NotificationKind.BOOKING_RECEIVED)) == 1


async def test_repeated_verification_returns_the_first_booking(container, store, gateway, seed_rule, booking_data):
    await seed_rule()
    reference, _ = await _initialize(container, booking_data)

    first, _ = await container.payments.verify_and_create_booking("paystack", reference)
    second, duplicate = await container.payments.verify_and_create_booking("paystack", reference)

    assert duplicate is True
    assert second["_id"] == first["_id"]
    assert gateway.verify_calls == 1
    assert len(await store.find(Collections.BOOKINGS)) == 1


async def test_concurrent_callbacks_create_one_booking(container, store, seed_rule, booking_data, check_invariants):
    await seed_rule()
    reference, _ = await _initialize(container, booking_data)

    results = await asyncio.gather(
        container.payments.verify_and_create_booking("paystack", reference),
        container.payments.verify_and_create_booking("paystack", reference),
    )

    assert sorted(duplicate for _, duplicate in results) == [False, True]
    assert results[0][0]["_id"] == results[1][0]["_id"]
    assert len(await store.find(Collections.BOOKINGS)) == 1
    trip = await store.get(Collections.TRIPS, "abuad_lagos_4-seater_2025-06-01_1")
    assert len(trip["passengers"]) == 1
    await check_invariants()


async def test_reservation_supplies_details_when_gateway_has_no_metadata(container, gateway, seed_rule, booking_data):
    await seed_rule()
    gateway.echo_metadata = False
    reference, _ = await _initialize(container, booking_data, provider="opay")

    booking, _ = await container.payments.verify_and_create_booking("opay", reference)
    assert booking["name"] == "Ada Obi"


async def test_failed_payment_creates_nothing(container, store, gateway, seed_rule, booking_data):
    await seed_rule()
    reference, _ = await _initialize(container, booking_data)
    gateway.status = "abandoned"

    with pytest.raises(ValidationError):
        await container.payments.verify_and_create_booking("paystack", reference)
    assert await store.find(Collections.BOOKINGS) == []
    assert await store.get(Collections.RESERVATIONS, reference) is None


async def test_pending_callback_keeps_the_reservation(container, store, gateway, seed_rule, booking_data):
    await seed_rule()
    gateway.echo_metadata = False
    reference, _ = await _initialize(container, booking_data, provider="opay")
    gateway.status = "PENDING"

    with pytest.raises(ValidationError):
        await container.payments.verify_and_create_booking("opay", reference)
    assert await store.get(Collections.RESERVATIONS, reference) is not None

    gateway.status = "success"
    booking, duplicate = await container.payments.verify_and_create_booking("opay", reference)
    assert duplicate is False
    assert booking["status"] == BookingStatus.PAID
    assert booking["name"] == "Ada Obi"


async def test_unknown_reference_without_metadata(container, gateway):
    gateway.echo_metadata = False
    with pytest.raises(ValidationError):
        await container.payments.verify_and_create_booking("paystack", "RW-unknown")


async def test_paid_booking_kept_when_fleet_is_withdrawn(container, store, seed_rule, booking_data):
    await seed_rule(vehicle_count=1)
    reference, _ = await _initialize(container, booking_data)
    # Fleet withdrawn between checkout and verification
    await store.update(Collections.PRICES, "abuad_lagos_4-seater", {"vehicle_count": 0})

    booking, _ = await container.payments.verify_and_create_booking("paystack", reference)
    assert booking["status"] == BookingStatus.PAID
    assert booking.get("trip_id") is None


def test_sign_payload_is_hmac_sha512():
    payload = {"reference": "RW-1"}
    expected = hmac.new(b"secret", json.dumps(payload).encode(), hashlib.sha512).hexdigest()
    assert sign_payload(payload, "secret") == expected


async def test_gateways_need_credentials():
    with pytest.raises(ExternalServiceError):
        await PaystackGateway(Settings(PAYSTACK_SECRET_KEY="")).verify("RW-1")
    with pytest.raises(ExternalServiceError):
        await OPayGateway(Settings(OPAY_SECRET_KEY="", OPAY_MERCHANT_ID="")).verify("RW-1")
