"""
MongoDB document store (Motor)

Transactions need a replica set. Write conflicts, transient transaction
errors and duplicate keys (two writers creating the same trip id) are all
reported as ConcurrencyConflict so run_transaction() re-runs the body.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from pymongo.errors import DuplicateKeyError, PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from routewise.config.database import Collections, DatabaseConfig
from routewise.database.db_operations import DocumentStore, SortSpec, Transaction, TransactionBody, WriteOp
from routewise.services.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)


def _update_document(data: Dict, unset: Sequence[str]) -> Dict:
    update: Dict[str, Dict] = {}
    if data:
        update["$set"] = data
    if unset:
        update["$unset"] = {name: "" for name in unset}
    return update


def _is_conflict(exc: PyMongoError) -> bool:
    if isinstance(exc, DuplicateKeyError):
        return True
    return exc.has_error_label("TransientTransactionError") or exc.has_error_label(
        "UnknownTransactionCommitResult"
    )


class MongoTransaction(Transaction):

    def __init__(self, store: "MongoDocumentStore", session):
        super().__init__()
        self._store = store
        self._session = session

    async def get(self, collection: str, doc_id: str) -> Optional[Dict]:
        return await self._store.get(collection, doc_id, session=self._session)

    async def find(self, collection: str, filter_query: Optional[Dict] = None,
                   sort: Optional[SortSpec] = None) -> List[Dict]:
        return await self._store.find(collection, filter_query, sort=sort, session=self._session)


class MongoDocumentStore(DocumentStore):
    """Document store backed by a Motor client"""

    def __init__(self, db_config: DatabaseConfig, batch_limit: int = 500, max_retries: int = 10):
        super().__init__(batch_limit=batch_limit, max_retries=max_retries)
        self.db_config = db_config

    def _collection(self, name: str):
        return self.db_config.get_collection(name)

    # ─── plain reads / writes ────────────────────────────────────────────────

    async def get(self, collection: str, doc_id: str, session=None) -> Optional[Dict]:
        return await self._collection(collection).find_one({"_id": doc_id}, session=session)

    async def find(self, collection: str, filter_query: Optional[Dict] = None,
                   sort: Optional[SortSpec] = None, limit: Optional[int] = None,
                   session=None) -> List[Dict]:
        cursor = self._collection(collection).find(filter_query or {}, session=session)
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=None)

    async def insert(self, collection: str, document: Dict) -> Dict:
        document = dict(document)
        document.setdefault("_id", self.new_id())
        await self._collection(collection).insert_one(document)
        return document

    async def update(self, collection: str, doc_id: str, update_data: Optional[Dict] = None,
                     unset: Sequence[str] = ()) -> bool:
        update = _update_document(update_data or {}, unset)
        if not update:
            return False
        result = await self._collection(collection).update_one({"_id": doc_id}, update)
        return result.matched_count > 0

    async def delete(self, collection: str, doc_id: str) -> bool:
        result = await self._collection(collection).delete_one({"_id": doc_id})
        return result.deleted_count > 0

    async def _apply(self, op: WriteOp, session) -> None:
        coll = self._collection(op.collection)
        if op.kind == "create":
            await coll.insert_one({**op.data, "_id": op.doc_id}, session=session)
        elif op.kind == "update":
            update = _update_document(op.data, op.unset)
            if update:
                await coll.update_one({"_id": op.doc_id}, update, session=session)
        elif op.kind == "delete":
            await coll.delete_one({"_id": op.doc_id}, session=session)
        else:
            raise ValueError(f"Unknown write kind: {op.kind}")

    # ─── batches and transactions ────────────────────────────────────────────

    async def commit_batch(self, ops: List[WriteOp]) -> None:
        async def body(tx: Transaction):
            tx.writes.extend(ops)

        await self.run_transaction(body)

    async def _run_once(self, body: TransactionBody) -> Any:
        client = self.db_config.client
        if client is None:
            raise Exception("Database not connected")
        async with await client.start_session() as session:
            try:
                async with session.start_transaction(
                    read_concern=ReadConcern("snapshot"),
                    write_concern=WriteConcern("majority"),
                ):
                    tx = MongoTransaction(self, session)
                    result = await body(tx)
                    for op in tx.writes:
                        await self._apply(op, session)
                return result
            except PyMongoError as exc:
                if _is_conflict(exc):
                    raise ConcurrencyConflict(str(exc)) from exc
                raise

    async def ensure_indexes(self) -> None:
        """One booking per payment reference; trip lookups by route group and date."""
        await self._collection(Collections.BOOKINGS).create_index(
            "payment_reference",
            unique=True,
            partialFilterExpression={"payment_reference": {"$type": "string"}},
        )
        await self._collection(Collections.TRIPS).create_index([("price_rule_id", 1), ("date", 1)])
        await self._collection(Collections.BOOKINGS).create_index([("status", 1), ("trip_id", 1)])
        logger.info("Indexes ensured on %s", self.db_config.DATABASE_NAME)
