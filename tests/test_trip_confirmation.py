import asyncio

from routewise.config.database import Collections
from routewise.config.settings import Settings
from routewise.models.booking import BookingStatus
from routewise.services.notification_service import NotificationKind
from routewise.services.trip_confirmation import TripConfirmationMonitor

TRIP_DATE = "2025-06-01"
TRIP_ID = f"abuad_lagos_4-seater_{TRIP_DATE}_1"


async def _full_trip(store, add_booking, statuses):
    bookings = [await add_booking(status=status, name=f"P{i}") for i, status in enumerate(statuses)]
    await store.insert(Collections.TRIPS, {
        "_id": TRIP_ID,
        "price_rule_id": "abuad_lagos_4-seater",
        "date": TRIP_DATE,
        "vehicle_index": 1,
        "capacity": len(statuses),
        "passengers": [{"booking_id": b["_id"], "name": b["name"], "phone": b["phone"]} for b in bookings],
        "is_full": True,
    })
    return bookings


async def test_only_paid_bookings_are_promoted_by_default(store, notifier, settings, add_booking):
    bookings = await _full_trip(store, add_booking, [BookingStatus.PAID, BookingStatus.PENDING,
                                                     BookingStatus.PAID, BookingStatus.CONFIRMED])
    monitor = TripConfirmationMonitor(store, notifier, settings)

    promoted = await monitor.confirm_trip(TRIP_ID)

    assert sorted(promoted) == sorted([bookings[0]["_id"], bookings[2]["_id"]])
    pending = await store.get(Collections.BOOKINGS, bookings[1]["_id"])
    assert pending["status"] == BookingStatus.PENDING
    confirmed = await store.get(Collections.BOOKINGS, bookings[0]["_id"])
    assert confirmed["confirmed_date"] == TRIP_DATE
    assert len(notifier.of_kind(NotificationKind.STATUS_CONFIRMED)) == 2


async def test_pending_bookings_promoted_when_policy_enabled(store, notifier, add_booking):
    bookings = await _full_trip(store, add_booking, [BookingStatus.PENDING, BookingStatus.PAID])
    monitor = TripConfirmationMonitor(store, notifier, Settings(CONFIRM_PENDING_BOOKINGS=True))

    promoted = await monitor.confirm_trip(TRIP_ID)
    assert len(promoted) == 2
    assert (await store.get(Collections.BOOKINGS, bookings[0]["_id"]))["status"] == BookingStatus.CONFIRMED


async def test_rerun_sends_no_duplicate_notifications(store, notifier, settings, add_booking):
    await _full_trip(store, add_booking, [BookingStatus.PAID] * 4)
    monitor = TripConfirmationMonitor(store, notifier, settings)

    await monitor.confirm_trip(TRIP_ID)
    assert await monitor.confirm_trip(TRIP_ID) == []
    assert len(notifier.sent) == 4


async def test_concurrent_monitors_confirm_once(store, notifier, settings, add_booking):
    await _full_trip(store, add_booking, [BookingStatus.PAID] * 4)
    monitor = TripConfirmationMonitor(store, notifier, settings)

    results = await asyncio.gather(monitor.confirm_trip(TRIP_ID), monitor.confirm_trip(TRIP_ID))
    assert sorted(len(r) for r in results) == [0, 4]
    assert len(notifier.sent) == 4


async def test_not_full_or_missing_trip_is_a_no_op(store, notifier, settings, add_booking):
    bookings = await _full_trip(store, add_booking, [BookingStatus.PAID] * 2)
    await store.update(Collections.TRIPS, TRIP_ID, {"capacity": 3, "is_full": False})
    monitor = TripConfirmationMonitor(store, notifier, settings)

    assert await monitor.confirm_trip(TRIP_ID) == []
    assert await monitor.confirm_trip("missing") == []
    assert (await store.get(Collections.BOOKINGS, bookings[0]["_id"]))["status"] == BookingStatus.PAID


async def test_email_failure_keeps_promotions(store, notifier, settings, add_booking):
    bookings = await _full_trip(store, add_booking, [BookingStatus.PAID] * 2)
    notifier.fail = True
    monitor = TripConfirmationMonitor(store, notifier, settings)

    assert len(await monitor.confirm_trip(TRIP_ID)) == 2
    for booking in bookings:
        assert (await store.get(Collections.BOOKINGS, booking["_id"]))["status"] == BookingStatus.CONFIRMED
