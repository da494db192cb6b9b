from datetime import timedelta

from routewise.config.database import Collections
from routewise.services.trip_sync import TripPassengerSynchronizer
from routewise.utils.helpers import iso_day, local_today


async def _trip(store, trip_id, booking_ids, capacity=4, trip_date="2025-06-01"):
    return await store.insert(Collections.TRIPS, {
        "_id": trip_id,
        "price_rule_id": "abuad_lagos_4-seater",
        "date": trip_date,
        "vehicle_index": 1,
        "capacity": capacity,
        "passengers": [{"booking_id": b, "name": b, "phone": ""} for b in booking_ids],
        "is_full": len(booking_ids) >= capacity,
    })


async def test_reconcile_strips_deleted_ids_and_recomputes_is_full(store, settings):
    await _trip(store, "t1", ["a", "b", "c", "d"])
    await _trip(store, "t2", ["e", "a2"], capacity=2)
    await _trip(store, "t3", ["f"])
    sync = TripPassengerSynchronizer(store, settings)

    updated = await sync.reconcile(["a", "a2", "zzz"])

    assert updated == 2
    t1 = await store.get(Collections.TRIPS, "t1")
    assert [p["booking_id"] for p in t1["passengers"]] == ["b", "c", "d"]
    assert t1["is_full"] is False
    t2 = await store.get(Collections.TRIPS, "t2")
    assert t2["is_full"] is False
    assert len((await store.get(Collections.TRIPS, "t3"))["passengers"]) == 1


async def test_reconcile_writes_nothing_when_no_trip_changes(store, settings):
    await _trip(store, "t1", ["a"])
    sync = TripPassengerSynchronizer(store, settings)
    commits = store.commits

    assert await sync.reconcile(["nope"]) == 0
    assert await sync.reconcile([]) == 0
    assert store.commits == commits


async def test_reconcile_across_several_batches(store, settings):
    store.batch_limit = 2
    for i in range(5):
        await _trip(store, f"t{i}", ["gone", f"keep{i}"])
    sync = TripPassengerSynchronizer(store, settings)

    assert await sync.reconcile(["gone"]) == 5
    for trip in await store.find(Collections.TRIPS):
        assert [p["booking_id"] for p in trip["passengers"]] == [f"keep{trip['_id'][1:]}"]


async def test_clear_all_unlinks_bookings(container, store, seed_rule, booking_data):
    await seed_rule(vehicle_count=2)
    bookings = [await container.lifecycle.create_booking(booking_data(name=f"P{i}")) for i in range(5)]

    result = await container.synchronizer.clear_all()

    assert (result.cleared_trips, result.deallocated_bookings) == (2, 5)
    assert await store.find(Collections.TRIPS) == []
    for booking in bookings:
        assert "trip_id" not in await store.get(Collections.BOOKINGS, booking["_id"])


async def test_clear_all_with_no_trips(container):
    result = await container.synchronizer.clear_all()
    assert (result.cleared_trips, result.deallocated_bookings) == (0, 0)


async def test_cleanup_deletes_trips_past_retention(store, settings):
    today = local_today(settings.TIMEZONE)
    await _trip(store, "old", ["a"], trip_date=iso_day(today - timedelta(days=8)))
    await _trip(store, "edge", ["b"], trip_date=iso_day(today - timedelta(days=7)))
    await _trip(store, "current", ["c"], trip_date=iso_day(today))
    sync = TripPassengerSynchronizer(store, settings)

    assert await sync.cleanup_past_trips() == 1
    assert sorted(t["_id"] for t in await store.find(Collections.TRIPS)) == ["current", "edge"]
