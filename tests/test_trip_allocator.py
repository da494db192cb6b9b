import asyncio

import pytest

from routewise.config.database import Collections
from routewise.models.booking import BookingStatus
from routewise.services.errors import CapacityExceededError, ConfigurationError, NotFoundError, ValidationError
from routewise.services.notification_service import NotificationKind

TRIP_DATE = "2025-06-01"
TRIP_1 = f"abuad_lagos_4-seater_{TRIP_DATE}_1"


async def test_four_bookings_fill_the_only_vehicle_and_the_fifth_overflows(
        container, store, notifier, seed_rule, add_booking, check_invariants):
    await seed_rule(vehicle_count=1)
    bookings = [await add_booking(name=f"Passenger {i}", email=f"p{i}@example.com") for i in range(5)]

    for booking in bookings[:4]:
        result = await container.allocator.assign(booking["_id"])
        assert result.trip_id == TRIP_1
        assert result.vehicle_index == 1

    trip = await store.get(Collections.TRIPS, TRIP_1)
    assert [p["booking_id"] for p in trip["passengers"]] == [b["_id"] for b in bookings[:4]]
    assert trip["is_full"] is True

    for booking in bookings[:4]:
        stored = await store.get(Collections.BOOKINGS, booking["_id"])
        assert stored["status"] == BookingStatus.CONFIRMED
        assert stored["confirmed_date"] == TRIP_DATE
    assert len(notifier.of_kind(NotificationKind.STATUS_CONFIRMED)) == 4

    with pytest.raises(CapacityExceededError):
        await container.allocator.assign(bookings[4]["_id"])

    fifth = await store.get(Collections.BOOKINGS, bookings[4]["_id"])
    assert "trip_id" not in fifth
    alerts = await store.find(Collections.ALERTS)
    assert len(alerts) == 1
    assert alerts[0]["kind"] == "capacity-overflow"
    assert alerts[0]["booking_id"] == bookings[4]["_id"]
    overflow = notifier.of_kind(NotificationKind.CAPACITY_OVERFLOW_ALERT)
    assert len(overflow) == 1
    assert overflow[0][1] == "ops@routewise.test"
    assert len(await store.find(Collections.TRIPS)) == 1
    await check_invariants()


async def test_next_vehicle_is_created_when_first_is_full(container, store, seed_rule, add_booking):
    await seed_rule(vehicle_count=2)
    results = []
    for i in range(6):
        booking = await add_booking(name=f"P{i}")
        results.append(await container.allocator.assign(booking["_id"]))

    assert [r.vehicle_index for r in results] == [1, 1, 1, 1, 2, 2]
    assert results[0].created and results[4].created
    assert not results[1].created
    second = await store.get(Collections.TRIPS, f"abuad_lagos_4-seater_{TRIP_DATE}_2")
    assert len(second["passengers"]) == 2
    assert second["is_full"] is False


async def test_first_fit_reuses_a_freed_seat_in_the_lower_vehicle(container, store, seed_rule, add_booking):
    await seed_rule(vehicle_count=2)
    bookings = [await add_booking(name=f"P{i}") for i in range(5)]
    for booking in bookings:
        await container.allocator.assign(booking["_id"])

    await container.lifecycle.update_status(bookings[1]["_id"], BookingStatus.CANCELLED)
    late = await add_booking(name="Late")
    result = await container.allocator.assign(late["_id"])
    assert result.vehicle_index == 1


async def test_concurrent_assignments_never_oversell(container, store, seed_rule, add_booking, check_invariants):
    await seed_rule(vehicle_count=2)
    bookings = [await add_booking(name=f"P{i}") for i in range(12)]

    results = await asyncio.gather(
        *(container.allocator.assign(b["_id"]) for b in bookings), return_exceptions=True
    )

    assigned = [r for r in results if not isinstance(r, Exception)]
    overflowed = [r for r in results if isinstance(r, CapacityExceededError)]
    assert len(assigned) == 8
    assert len(overflowed) == 4
    trips = await store.find(Collections.TRIPS)
    assert len(trips) == 2
    assert sum(len(t["passengers"]) for t in trips) == 8
    await check_invariants()


async def test_reassigning_is_idempotent(container, store, seed_rule, add_booking):
    await seed_rule(vehicle_count=1)
    booking = await add_booking()

    first = await container.allocator.assign(booking["_id"])
    second = await container.allocator.assign(booking["_id"])
    assert second.already_assigned
    assert second.trip_id == first.trip_id

    trip = await store.get(Collections.TRIPS, first.trip_id)
    assert len(trip["passengers"]) == 1


async def test_concurrent_double_assign_of_one_booking(container, store, seed_rule, add_booking, check_invariants):
    await seed_rule(vehicle_count=1)
    booking = await add_booking()

    await asyncio.gather(container.allocator.assign(booking["_id"]), container.allocator.assign(booking["_id"]))

    trips = await store.find(Collections.TRIPS)
    assert len(trips) == 1
    assert len(trips[0]["passengers"]) == 1
    await check_invariants()


async def test_relinks_booking_already_on_a_manifest(container, store, seed_rule, add_booking):
    await seed_rule(vehicle_count=1)
    booking = await add_booking()
    result = await container.allocator.assign(booking["_id"])
    await store.update(Collections.BOOKINGS, booking["_id"], unset=["trip_id"])

    again = await container.allocator.assign(booking["_id"])
    assert again.already_assigned
    assert (await store.get(Collections.BOOKINGS, booking["_id"]))["trip_id"] == result.trip_id
    assert len((await store.get(Collections.TRIPS, result.trip_id))["passengers"]) == 1


async def test_missing_price_rule_raises_and_alerts(container, store, add_booking):
    booking = await add_booking(destination="Kano")
    with pytest.raises(ConfigurationError):
        await container.allocator.assign(booking["_id"])

    assert await store.find(Collections.TRIPS) == []
    alerts = await store.find(Collections.ALERTS)
    assert alerts[0]["kind"] == "configuration"


async def test_zero_vehicles_is_capacity_exceeded(container, seed_rule, add_booking):
    await seed_rule(vehicle_count=0)
    booking = await add_booking()
    with pytest.raises(CapacityExceededError):
        await container.allocator.assign(booking["_id"])


async def test_cancelled_or_missing_bookings_are_rejected(container, seed_rule, add_booking):
    await seed_rule()
    cancelled = await add_booking(status=BookingStatus.CANCELLED)
    with pytest.raises(ValidationError):
        await container.allocator.assign(cancelled["_id"])
    with pytest.raises(NotFoundError):
        await container.allocator.assign("does-not-exist")


async def test_failed_alert_email_does_not_hide_the_error(container, notifier, seed_rule, add_booking):
    await seed_rule(vehicle_count=0)
    notifier.fail = True
    booking = await add_booking()
    with pytest.raises(CapacityExceededError):
        await container.allocator.assign(booking["_id"])
