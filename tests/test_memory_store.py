import asyncio

import pytest

from routewise.database.db_operations import WriteOp
from routewise.database.memory_store import MemoryDocumentStore, matches
from routewise.services.errors import ConcurrencyConflict


def test_matches_operators():
    doc = {"status": "Paid", "date": "2025-06-01", "nested": {"count": 3}}
    assert matches(doc, {"status": {"$in": ["Paid", "Pending"]}})
    assert not matches(doc, {"status": {"$nin": ["Paid"]}})
    assert matches(doc, {"date": {"$lt": "2025-06-02", "$gte": "2025-06-01"}})
    assert matches(doc, {"nested.count": {"$gt": 2}})
    assert matches(doc, {"trip_id": None})
    assert matches(doc, {"trip_id": {"$exists": False}})
    assert not matches(doc, {"status": {"$ne": "Paid"}})


async def test_insert_get_update_delete():
    store = MemoryDocumentStore()
    doc = await store.insert("things", {"name": "a"})
    assert doc["_id"]

    assert await store.update("things", doc["_id"], {"name": "b", "extra": 1})
    assert await store.update("things", doc["_id"], unset=["extra"])
    assert await store.get("things", doc["_id"]) == {"_id": doc["_id"], "name": "b"}
    assert not await store.update("things", "missing", {"name": "x"})

    assert await store.delete("things", doc["_id"])
    assert await store.get("things", doc["_id"]) is None


async def test_find_sort_and_limit():
    store = MemoryDocumentStore()
    for index in (3, 1, 2):
        await store.insert("trips", {"_id": f"t{index}", "vehicle_index": index, "date": "d"})
    found = await store.find("trips", {"date": "d"}, sort=[("vehicle_index", 1)], limit=2)
    assert [t["vehicle_index"] for t in found] == [1, 2]


async def test_duplicate_create_is_a_conflict():
    store = MemoryDocumentStore()
    await store.insert("trips", {"_id": "t1"})
    with pytest.raises(ConcurrencyConflict):
        await store.commit_batch([WriteOp.create("trips", "t1", {})])


async def test_transaction_retries_on_conflicting_write():
    store = MemoryDocumentStore(max_retries=5)
    await store.insert("counters", {"_id": "c", "value": 0})
    attempts = []

    async def increment(tx):
        attempts.append(1)
        current = await tx.get("counters", "c")
        await asyncio.sleep(0)
        tx.update("counters", "c", {"value": current["value"] + 1})

    await asyncio.gather(*(store.run_transaction(increment) for _ in range(5)))
    assert (await store.get("counters", "c"))["value"] == 5
    assert len(attempts) > 5


async def test_query_read_detects_phantom_insert():
    store = MemoryDocumentStore(max_retries=1)

    async def body(tx):
        await tx.find("trips", {"date": "d"})
        await store.insert("trips", {"_id": "new", "date": "d"})
        tx.create("trips", "other", {"date": "d"})

    with pytest.raises(ConcurrencyConflict):
        await store.run_transaction(body)
    assert await store.get("trips", "other") is None


async def test_commit_in_batches_chunks_by_limit():
    store = MemoryDocumentStore(batch_limit=2)
    ops = [WriteOp.create("things", f"t{i}", {"i": i}) for i in range(5)]
    assert await store.commit_in_batches(ops) == 3
    assert len(await store.find("things")) == 5
    assert await store.commit_in_batches([]) == 0
