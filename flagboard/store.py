"""
Document store on top of SQLite.

Collections hold JSON documents keyed by id. The store offers the small
surface the scoring core needs: point reads, filtered queries, inserts,
field updates with add-to-set and increment primitives, transactions and a
change feed that fires after every committed write.
"""

import asyncio
import inspect
import json
import logging
import sqlite3
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
    Union,
)

import aiosqlite

from .errors import NotFound, StorageUnavailable

logger = logging.getLogger(__name__)

Filter = Tuple[str, str, Any]
ChangeCallback = Callable[["Change"], Union[None, Awaitable[None]]]

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "==": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "<": lambda a, b: a is not None and a < b,
    "<=": lambda a, b: a is not None and a <= b,
    ">": lambda a, b: a is not None and a > b,
    ">=": lambda a, b: a is not None and a >= b,
    "in": lambda a, b: a in b,
    "array_contains": lambda a, b: isinstance(a, list) and b in a,
}


class ArrayUnion:
    """Update value that appends items to a list field if absent."""

    def __init__(self, *values: Any) -> None:
        self.values = values


class Increment:
    """Update value that adds to a numeric field (missing counts as 0)."""

    def __init__(self, amount: Union[int, float]) -> None:
        self.amount = amount


@dataclass(frozen=True)
class Snapshot:
    id: str
    data: Dict[str, Any]
    seq: int = 0

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)


@dataclass(frozen=True)
class Change:
    type: str  # "added" or "modified"
    collection: str
    document: Snapshot


def matches(
    data: Dict[str, Any],
    filters: Sequence[Filter],
) -> bool:
    """
    Check a document against a conjunction of filters.

    Missing fields compare as None, so ``("event_id", "==", None)`` selects
    documents without an event id.

    @param data: Document body
    @param filters: Sequence of (field, operator, value) tuples
    @return: True if every filter holds
    """
    for field_name, op, value in filters:
        try:
            compare = _OPERATORS[op]
        except KeyError:
            raise ValueError(f"Unsupported filter operator: {op}") from None
        try:
            if not compare(data.get(field_name), value):
                return False
        except TypeError:
            return False
    return True


def _apply_update(
    data: Dict[str, Any],
    fields: Dict[str, Any],
) -> Dict[str, Any]:
    updated = dict(data)
    for key, value in fields.items():
        if isinstance(value, ArrayUnion):
            current = list(updated.get(key) or [])
            for item in value.values:
                if item not in current:
                    current.append(item)
            updated[key] = current
        elif isinstance(value, Increment):
            updated[key] = (updated.get(key) or 0) + value.amount
        else:
            updated[key] = value
    return updated


class Transaction:
    """
    Reads and writes bound to one SQLite connection inside BEGIN IMMEDIATE.

    Obtained from ``DocumentStore.transaction()``; every write is committed
    together when the block exits without an error.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db
        self.changes: List[Change] = []

    async def get(
        self,
        collection: str,
        doc_id: str,
    ) -> Optional[Snapshot]:
        cursor = await self._db.execute(
            "SELECT seq, data FROM documents WHERE collection = ? AND doc_id = ?",
            (collection, doc_id),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return Snapshot(id=doc_id, data=json.loads(row[1]), seq=row[0])

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Snapshot]:
        cursor = await self._db.execute(
            "SELECT seq, doc_id, data FROM documents WHERE collection = ? ORDER BY seq",
            (collection,),
        )
        rows = await cursor.fetchall()

        results = []
        for seq, doc_id, raw in rows:
            data = json.loads(raw)
            if matches(data, filters):
                results.append(Snapshot(id=doc_id, data=data, seq=seq))

        if order_by is not None:
            # None sorts before any value; insertion order breaks ties
            results.sort(
                key=lambda snap: (
                    snap.data.get(order_by) is not None,
                    snap.data.get(order_by),
                    snap.seq,
                ),
                reverse=descending,
            )
        if limit is not None:
            results = results[:limit]
        return results

    async def add(
        self,
        collection: str,
        data: Dict[str, Any],
    ) -> str:
        doc_id = uuid.uuid4().hex
        await self.set(collection, doc_id, data)
        return doc_id

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
        merge: bool = False,
    ) -> None:
        existing = await self.get(collection, doc_id)

        if existing is None:
            body = _apply_update({}, data)
            cursor = await self._db.execute(
                "INSERT INTO documents (collection, doc_id, data) VALUES (?, ?, ?)",
                (collection, doc_id, json.dumps(body)),
            )
            snapshot = Snapshot(id=doc_id, data=body, seq=cursor.lastrowid or 0)
            self.changes.append(Change("added", collection, snapshot))
            return

        body = _apply_update(existing.data, data) if merge else dict(data)
        await self._write(collection, existing, body)

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
    ) -> None:
        """
        Update fields of an existing document.

        @param collection: Collection name
        @param doc_id: Document id
        @param fields: Field values, ``ArrayUnion`` or ``Increment`` sentinels
        @raise NotFound: If the document does not exist
        """
        existing = await self.get(collection, doc_id)
        if existing is None:
            raise NotFound(collection, doc_id)
        await self._write(collection, existing, _apply_update(existing.data, fields))

    async def _write(
        self,
        collection: str,
        existing: Snapshot,
        body: Dict[str, Any],
    ) -> None:
        await self._db.execute(
            "UPDATE documents SET data = ?, updated_at = CURRENT_TIMESTAMP "
            "WHERE collection = ? AND doc_id = ?",
            (json.dumps(body), collection, existing.id),
        )
        snapshot = Snapshot(id=existing.id, data=body, seq=existing.seq)
        self.changes.append(Change("modified", collection, snapshot))


class DocumentStore:
    """Async document store persisted in a single SQLite file."""

    def __init__(
        self,
        db_path: str,
        busy_timeout: float = 5.0,
    ) -> None:
        self.db_path = db_path
        self.busy_timeout = busy_timeout
        self._write_lock = asyncio.Lock()
        self._subscribers: Dict[int, Tuple[str, Tuple[Filter, ...], ChangeCallback]] = {}
        self._next_token = 0

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            async with aiosqlite.connect(
                self.db_path,
                timeout=self.busy_timeout,
                isolation_level=None,
            ) as db:
                yield db
        except sqlite3.Error as e:
            logger.error("Storage call on %s failed: %s", self.db_path, e)
            raise StorageUnavailable(f"Storage unavailable: {e}", cause=e) from e

    async def init_db(self) -> None:
        """
        Initialize the SQLite schema.

        Creates the documents table and its indexes if they do not exist.
        """
        async with self._connect() as db:
            # WAL lets readers proceed while a scoring transaction holds the write lock
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA synchronous=NORMAL")

            await db.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            await db.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_collection_doc
                ON documents(collection, doc_id)
            """)

        logger.debug("Document store ready at %s", self.db_path)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        """
        Run a block of reads and writes atomically.

        Writers are serialized: the in-process lock orders coroutines and
        BEGIN IMMEDIATE holds the SQLite write lock across processes.
        Subscribers are notified only after a successful commit.
        """
        async with self._write_lock:
            async with self._connect() as db:
                await db.execute("BEGIN IMMEDIATE")
                txn = Transaction(db)
                try:
                    yield txn
                except BaseException:
                    await db.execute("ROLLBACK")
                    raise
                await db.execute("COMMIT")

        await self._publish(txn.changes)

    async def get(
        self,
        collection: str,
        doc_id: str,
    ) -> Optional[Snapshot]:
        async with self._connect() as db:
            return await Transaction(db).get(collection, doc_id)

    async def query(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Snapshot]:
        """
        Query a collection.

        @param collection: Collection name
        @param filters: Conjunction of (field, operator, value) filters
        @param order_by: Optional field to sort on
        @param descending: Sort descending when True
        @param limit: Maximum number of documents to return
        @return: Matching snapshots, in insertion order unless sorted
        """
        async with self._connect() as db:
            return await Transaction(db).query(
                collection, filters, order_by, descending, limit
            )

    async def add(
        self,
        collection: str,
        data: Dict[str, Any],
    ) -> str:
        async with self.transaction() as txn:
            return await txn.add(collection, data)

    async def set(
        self,
        collection: str,
        doc_id: str,
        data: Dict[str, Any],
        merge: bool = False,
    ) -> None:
        async with self.transaction() as txn:
            await txn.set(collection, doc_id, data, merge=merge)

    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
    ) -> None:
        async with self.transaction() as txn:
            await txn.update(collection, doc_id, fields)

    def subscribe(
        self,
        collection: str,
        callback: ChangeCallback,
        filters: Sequence[Filter] = (),
    ) -> Callable[[], None]:
        """
        Register a change listener.

        @param collection: Collection to watch
        @param callback: Plain function or coroutine function taking a Change
        @param filters: Only changes whose document matches are delivered
        @return: Function that removes the listener
        """
        token = self._next_token
        self._next_token += 1
        self._subscribers[token] = (collection, tuple(filters), callback)

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    async def _publish(self, changes: List[Change]) -> None:
        for change in changes:
            for collection, filters, callback in list(self._subscribers.values()):
                if collection != change.collection:
                    continue
                if not matches(change.document.data, filters):
                    continue
                try:
                    outcome = callback(change)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception:
                    # Writes are committed at this point; listener errors are only logged
                    logger.exception(
                        "Change listener for %s failed on %s",
                        collection,
                        change.document.id,
                    )
