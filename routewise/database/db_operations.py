"""
Database operations - the document store contract shared by every backend

Services talk to a DocumentStore: plain reads and writes for snapshots and
admin jobs, run_transaction() for the read-decide-write scopes that must be
serialisable, and commit_in_batches() for bulk mutations capped at the
per-batch operation limit.
"""
import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from routewise.services.errors import ConcurrencyConflict

logger = logging.getLogger(__name__)

SortSpec = Sequence[Tuple[str, int]]


@dataclass
class WriteOp:
    """A single buffered write. `kind` is one of create | update | delete."""
    kind: str
    collection: str
    doc_id: str
    data: Dict[str, Any] = field(default_factory=dict)
    unset: Tuple[str, ...] = ()

    @classmethod
    def create(cls, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteOp":
        return cls("create", collection, doc_id, dict(data))

    @classmethod
    def update(cls, collection: str, doc_id: str, data: Optional[Dict[str, Any]] = None,
               unset: Sequence[str] = ()) -> "WriteOp":
        return cls("update", collection, doc_id, dict(data or {}), tuple(unset))

    @classmethod
    def delete(cls, collection: str, doc_id: str) -> "WriteOp":
        return cls("delete", collection, doc_id)


class Transaction:
    """
    Read handle plus write buffer for one transaction attempt.
    Reads go straight to the backend; writes are applied when the
    transaction body returns.
    """

    def __init__(self):
        self.writes: List[WriteOp] = []

    async def get(self, collection: str, doc_id: str) -> Optional[Dict]:
        raise NotImplementedError

    async def find(self, collection: str, filter_query: Optional[Dict] = None,
                   sort: Optional[SortSpec] = None) -> List[Dict]:
        raise NotImplementedError

    def create(self, collection: str, doc_id: str, data: Dict[str, Any]):
        self.writes.append(WriteOp.create(collection, doc_id, data))

    def update(self, collection: str, doc_id: str, data: Optional[Dict[str, Any]] = None,
               unset: Sequence[str] = ()):
        self.writes.append(WriteOp.update(collection, doc_id, data, unset))

    def delete(self, collection: str, doc_id: str):
        self.writes.append(WriteOp.delete(collection, doc_id))


TransactionBody = Callable[[Transaction], Awaitable[Any]]


class DocumentStore:
    """Generic operations every backend provides"""

    def __init__(self, batch_limit: int = 500, max_retries: int = 10):
        self.batch_limit = batch_limit
        self.max_retries = max_retries

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    # ─── plain reads / writes ────────────────────────────────────────────────

    async def get(self, collection: str, doc_id: str) -> Optional[Dict]:
        raise NotImplementedError

    async def find(self, collection: str, filter_query: Optional[Dict] = None,
                   sort: Optional[SortSpec] = None, limit: Optional[int] = None) -> List[Dict]:
        raise NotImplementedError

    async def insert(self, collection: str, document: Dict) -> Dict:
        raise NotImplementedError

    async def update(self, collection: str, doc_id: str, update_data: Optional[Dict] = None,
                     unset: Sequence[str] = ()) -> bool:
        raise NotImplementedError

    async def delete(self, collection: str, doc_id: str) -> bool:
        raise NotImplementedError

    # ─── batches ─────────────────────────────────────────────────────────────

    async def commit_batch(self, ops: List[WriteOp]) -> None:
        """Apply up to batch_limit operations atomically."""
        raise NotImplementedError

    async def commit_in_batches(self, ops: List[WriteOp]) -> int:
        """
        Split ops into chunks of at most batch_limit and commit the chunks
        concurrently. There is no atomicity across chunks.
        """
        if not ops:
            return 0
        chunks = [ops[i:i + self.batch_limit] for i in range(0, len(ops), self.batch_limit)]
        await asyncio.gather(*(self.commit_batch(chunk) for chunk in chunks))
        return len(chunks)

    # ─── transactions ────────────────────────────────────────────────────────

    async def _run_once(self, body: TransactionBody) -> Any:
        raise NotImplementedError

    async def run_transaction(self, body: TransactionBody) -> Any:
        """
        Run `body` inside a transaction, re-running it on ConcurrencyConflict.
        The body must not have side effects beyond the Transaction handle.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._run_once(body)
            except ConcurrencyConflict:
                if attempt >= self.max_retries:
                    logger.error("Transaction gave up after %d attempts", attempt)
                    raise
                logger.debug("Transaction conflict, retrying (attempt %d)", attempt)
                await asyncio.sleep(random.uniform(0, 0.01 * attempt))
