"""
In-memory document store

Used for local development (STORE_BACKEND=memory) and the test suite.
Transactions are optimistic: every document and every query result read in a
transaction is re-checked at commit, and any change made by another writer in
the meantime raises ConcurrencyConflict so the body is re-run.
"""
import asyncio
import copy
from typing import Any, Dict, List, Optional, Sequence, Tuple

from routewise.database.db_operations import DocumentStore, SortSpec, Transaction, TransactionBody, WriteOp
from routewise.services.errors import ConcurrencyConflict

_MISSING = object()


def _lookup(doc: Dict, path: str) -> Any:
    value: Any = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _matches_condition(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            present = value is not _MISSING and value is not None
            if op == "$in":
                if (None if value is _MISSING else value) not in operand:
                    return False
            elif op == "$nin":
                if (None if value is _MISSING else value) in operand:
                    return False
            elif op == "$ne":
                if (None if value is _MISSING else value) == operand:
                    return False
            elif op == "$exists":
                if (value is not _MISSING) != bool(operand):
                    return False
            elif op in ("$lt", "$lte", "$gt", "$gte"):
                if not present:
                    return False
                if op == "$lt" and not value < operand:
                    return False
                if op == "$lte" and not value <= operand:
                    return False
                if op == "$gt" and not value > operand:
                    return False
                if op == "$gte" and not value >= operand:
                    return False
            else:
                raise ValueError(f"Unsupported query operator: {op}")
        return True
    # Equality against None also matches a missing field, as in MongoDB
    if condition is None:
        return value is _MISSING or value is None
    return value is not _MISSING and value == condition


def matches(doc: Dict, filter_query: Optional[Dict]) -> bool:
    for path, condition in (filter_query or {}).items():
        if not _matches_condition(_lookup(doc, path), condition):
            return False
    return True


def _sort_docs(docs: List[Dict], sort: Optional[SortSpec]) -> List[Dict]:
    for path, direction in reversed(list(sort or [])):
        present = [d for d in docs if _lookup(d, path) not in (_MISSING, None)]
        absent = [d for d in docs if _lookup(d, path) in (_MISSING, None)]
        present.sort(key=lambda d: _lookup(d, path), reverse=direction < 0)
        docs = absent + present if direction > 0 else present + absent
    return docs


class MemoryTransaction(Transaction):

    def __init__(self, store: "MemoryDocumentStore"):
        super().__init__()
        self._store = store
        self.doc_reads: Dict[Tuple[str, str], int] = {}
        self.query_reads: List[Tuple[str, Dict, Dict[str, int]]] = []

    async def get(self, collection: str, doc_id: str) -> Optional[Dict]:
        # Yield like a network round-trip so concurrent transactions interleave
        await asyncio.sleep(0)
        version, doc = self._store._entry(collection, doc_id)
        self.doc_reads[(collection, doc_id)] = version
        return copy.deepcopy(doc)

    async def find(self, collection: str, filter_query: Optional[Dict] = None,
                   sort: Optional[SortSpec] = None) -> List[Dict]:
        await asyncio.sleep(0)
        snapshot = self._store._match(collection, filter_query)
        self.query_reads.append((collection, dict(filter_query or {}),
                                 {doc_id: version for doc_id, (version, _) in snapshot.items()}))
        docs = [copy.deepcopy(doc) for _, doc in snapshot.values()]
        return _sort_docs(docs, sort)


class MemoryDocumentStore(DocumentStore):
    """Dict-backed store: {collection: {doc_id: (version, document)}}"""

    def __init__(self, batch_limit: int = 500, max_retries: int = 10):
        super().__init__(batch_limit=batch_limit, max_retries=max_retries)
        self._collections: Dict[str, Dict[str, Tuple[int, Dict]]] = {}
        self._clock = 0
        self.commits = 0

    # ─── internals ───────────────────────────────────────────────────────────

    def _docs(self, collection: str) -> Dict[str, Tuple[int, Dict]]:
        return self._collections.setdefault(collection, {})

    def _entry(self, collection: str, doc_id: str) -> Tuple[int, Optional[Dict]]:
        return self._docs(collection).get(doc_id, (0, None))

    def _match(self, collection: str, filter_query: Optional[Dict]) -> Dict[str, Tuple[int, Dict]]:
        return {
            doc_id: (version, doc)
            for doc_id, (version, doc) in self._docs(collection).items()
            if matches(doc, filter_query)
        }

    def _tick(self) -> int:
        self._clock += 1
        return self._clock

    def _check(self, ops: List[WriteOp]):
        for op in ops:
            if op.kind == "create" and op.doc_id in self._docs(op.collection):
                raise ConcurrencyConflict(f"{op.collection}/{op.doc_id} already exists")

    def _apply(self, ops: List[WriteOp]):
        self._check(ops)
        for op in ops:
            docs = self._docs(op.collection)
            if op.kind == "create":
                document = copy.deepcopy(op.data)
                document["_id"] = op.doc_id
                docs[op.doc_id] = (self._tick(), document)
            elif op.kind == "update":
                if op.doc_id not in docs:
                    continue
                _, current = docs[op.doc_id]
                document = copy.deepcopy(current)
                document.update(copy.deepcopy(op.data))
                for name in op.unset:
                    document.pop(name, None)
                docs[op.doc_id] = (self._tick(), document)
            elif op.kind == "delete":
                docs.pop(op.doc_id, None)
            else:
                raise ValueError(f"Unknown write kind: {op.kind}")
        self.commits += 1

    # ─── plain reads / writes ────────────────────────────────────────────────

    async def get(self, collection: str, doc_id: str) -> Optional[Dict]:
        return copy.deepcopy(self._entry(collection, doc_id)[1])

    async def find(self, collection: str, filter_query: Optional[Dict] = None,
                   sort: Optional[SortSpec] = None, limit: Optional[int] = None) -> List[Dict]:
        docs = [copy.deepcopy(doc) for _, doc in self._match(collection, filter_query).values()]
        docs = _sort_docs(docs, sort)
        return docs[:limit] if limit else docs

    async def insert(self, collection: str, document: Dict) -> Dict:
        doc_id = document.get("_id") or self.new_id()
        self._apply([WriteOp.create(collection, doc_id, document)])
        return await self.get(collection, doc_id)

    async def update(self, collection: str, doc_id: str, update_data: Optional[Dict] = None,
                     unset: Sequence[str] = ()) -> bool:
        if doc_id not in self._docs(collection):
            return False
        self._apply([WriteOp.update(collection, doc_id, update_data, unset)])
        return True

    async def delete(self, collection: str, doc_id: str) -> bool:
        existed = doc_id in self._docs(collection)
        self._apply([WriteOp.delete(collection, doc_id)])
        return existed

    async def commit_batch(self, ops: List[WriteOp]) -> None:
        await asyncio.sleep(0)
        self._apply(ops)

    # ─── transactions ────────────────────────────────────────────────────────

    def _validate(self, tx: MemoryTransaction):
        for (collection, doc_id), version in tx.doc_reads.items():
            if self._entry(collection, doc_id)[0] != version:
                raise ConcurrencyConflict(f"{collection}/{doc_id} changed during transaction")
        for collection, filter_query, seen in tx.query_reads:
            current = {doc_id: version for doc_id, (version, _) in self._match(collection, filter_query).items()}
            if current != seen:
                raise ConcurrencyConflict(f"{collection} query result changed during transaction")

    async def _run_once(self, body: TransactionBody) -> Any:
        tx = MemoryTransaction(self)
        result = await body(tx)
        # Validation and apply run without awaiting, so the commit is atomic
        self._validate(tx)
        self._apply(tx.writes)
        return result
