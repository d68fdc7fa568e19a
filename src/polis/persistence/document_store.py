"""Document store — JSON documents in aiosqlite with optimistic transactions.

Documents live in one table keyed by (collection, doc_id) and carry a
version counter. A transaction records the version of every document it
reads and buffers its writes; at commit time the versions are checked
again under ``BEGIN IMMEDIATE`` and any mismatch aborts the commit with
``TransactionConflict``. ``run_transaction`` then re-runs the whole
function, so every precondition is re-validated against fresh state.

Deleted documents are kept as tombstones (``data IS NULL``) so a delete
followed by a re-create still bumps the version.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiosqlite

from polis.util.errors import TransactionConflict

log = logging.getLogger(__name__)

T = TypeVar("T")

DocKey = tuple[str, str]
DocCallback = Callable[[Optional[dict]], None]
CollectionCallback = Callable[[str, Optional[dict]], None]

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS documents (
    collection TEXT NOT NULL,
    doc_id TEXT NOT NULL,
    data TEXT,
    version INTEGER NOT NULL DEFAULT 0,
    updated_at REAL NOT NULL DEFAULT 0,
    PRIMARY KEY (collection, doc_id)
);
"""

_UPSERT = """\
INSERT INTO documents (collection, doc_id, data, version, updated_at)
VALUES (?, ?, ?, 1, ?)
ON CONFLICT (collection, doc_id) DO UPDATE SET
    data = excluded.data,
    version = documents.version + 1,
    updated_at = excluded.updated_at
"""


def _encode(data: Optional[dict]) -> Optional[str]:
    if data is None:
        return None
    return json.dumps(data, separators=(",", ":"))


def _decode(raw: Optional[str]) -> Optional[dict]:
    if raw is None:
        return None
    return json.loads(raw)


class Transaction:
    """Read set and buffered writes of one transaction attempt.

    Reads go through ``get``; writes (``set``/``update``/``delete``) are
    only applied when the store commits the transaction.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self._versions: dict[DocKey, int] = {}
        self._snapshots: dict[DocKey, Optional[str]] = {}
        self._writes: dict[DocKey, Optional[str]] = {}

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        key = (collection, doc_id)
        if key in self._writes:
            return _decode(self._writes[key])
        if key not in self._snapshots:
            version, raw = await self._store._read_raw(collection, doc_id)
            self._versions[key] = version
            self._snapshots[key] = raw
        return _decode(self._snapshots[key])

    def set(self, collection: str, doc_id: str, data: dict) -> None:
        self._writes[(collection, doc_id)] = _encode(data)

    def update(self, collection: str, doc_id: str, fields: dict) -> None:
        """Merge top-level ``fields`` into a document read earlier in this transaction."""
        key = (collection, doc_id)
        if key in self._writes:
            base = _decode(self._writes[key])
        elif key in self._snapshots:
            base = _decode(self._snapshots[key])
        else:
            raise RuntimeError(f"{collection}/{doc_id} must be read before it is updated")
        if base is None:
            raise KeyError(f"{collection}/{doc_id} does not exist")
        base.update(fields)
        self._writes[key] = _encode(base)

    def delete(self, collection: str, doc_id: str) -> None:
        self._writes[(collection, doc_id)] = None

    @property
    def has_writes(self) -> bool:
        return bool(self._writes)


class DocumentStore:
    """Async transactional document store on SQLite.

    Args:
        db_path: SQLite file, or ``":memory:"``.
        clock: Source of server time (``time.time`` by default).
        max_attempts: Default bound for ``run_transaction`` retries.
    """

    def __init__(self, db_path: str = "polis.db",
                 clock: Callable[[], float] | None = None,
                 max_attempts: int = 5) -> None:
        self._db_path = db_path
        self._clock = clock or time.time
        self._max_attempts = max_attempts
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._last_time = 0.0
        self._doc_watchers: dict[DocKey, list[DocCallback]] = {}
        self._collection_watchers: dict[str, list[CollectionCallback]] = {}

    async def connect(self) -> None:
        """Open the connection (autocommit mode) and create the schema."""
        self._conn = await aiosqlite.connect(self._db_path, isolation_level=None)
        await self._conn.executescript(_SCHEMA)
        log.info("Document store connected: %s", self._db_path)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    # -- Time & ids ------------------------------------------------------

    def server_time(self) -> float:
        """Store-assigned timestamp, never earlier than one handed out before."""
        now = max(self._clock(), self._last_time)
        self._last_time = now
        return now

    @staticmethod
    def new_id() -> str:
        return uuid.uuid4().hex

    # -- Plain reads & writes --------------------------------------------

    async def _read_raw(self, collection: str, doc_id: str) -> tuple[int, Optional[str]]:
        assert self._conn is not None
        async with self._lock:
            async with self._conn.execute(
                "SELECT version, data FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            return 0, None
        return row[0], row[1]

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        _, raw = await self._read_raw(collection, doc_id)
        return _decode(raw)

    async def set(self, collection: str, doc_id: str, data: dict) -> None:
        await self._write_one(collection, doc_id, _encode(data))

    async def update(self, collection: str, doc_id: str, fields: dict) -> None:
        """Merge top-level ``fields`` into an existing document.

        Raises:
            KeyError: The document does not exist.
        """
        async def merge(txn: Transaction) -> None:
            if await txn.get(collection, doc_id) is None:
                raise KeyError(f"{collection}/{doc_id} does not exist")
            txn.update(collection, doc_id, fields)

        await self.run_transaction(merge)

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._write_one(collection, doc_id, None)

    async def _write_one(self, collection: str, doc_id: str, raw: Optional[str]) -> None:
        assert self._conn is not None
        async with self._lock:
            await self._conn.execute(_UPSERT, (collection, doc_id, raw, self.server_time()))
        self._notify({(collection, doc_id): raw})

    async def query(self, collection: str, where: Optional[dict[str, Any]] = None,
                    limit: Optional[int] = None) -> list[tuple[str, dict]]:
        """Return ``(doc_id, data)`` pairs whose top-level fields equal ``where``.

        A ``None`` value matches a null or missing field. Results are in
        insertion order.
        """
        assert self._conn is not None
        sql = "SELECT doc_id, data FROM documents WHERE collection = ? AND data IS NOT NULL"
        params: list[Any] = [collection]
        for field_name, value in (where or {}).items():
            if not field_name.isidentifier():
                raise ValueError(f"Invalid field name: {field_name!r}")
            path = f"$.{field_name}"
            if value is None:
                sql += " AND json_extract(data, ?) IS NULL"
                params.append(path)
            else:
                sql += " AND json_extract(data, ?) = ?"
                params.extend([path, int(value) if isinstance(value, bool) else value])
        sql += " ORDER BY rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        async with self._lock:
            async with self._conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        return [(row[0], json.loads(row[1])) for row in rows]

    # -- Transactions ----------------------------------------------------

    async def run_transaction(self, fn: Callable[[Transaction], Awaitable[T]],
                              max_attempts: Optional[int] = None) -> T:
        """Run ``fn`` inside a transaction, re-running it on conflicts.

        Any exception raised by ``fn`` aborts the attempt with no writes
        and propagates unchanged.

        Raises:
            TransactionConflict: Every attempt lost its race.
        """
        attempts = max_attempts or self._max_attempts
        for attempt in range(1, attempts + 1):
            txn = Transaction(self)
            result = await fn(txn)
            try:
                await self._commit(txn)
            except TransactionConflict as exc:
                if attempt >= attempts:
                    log.warning("Transaction gave up after %d attempts: %s", attempt, exc)
                    raise
                log.warning("Transaction conflict (attempt %d/%d): %s", attempt, attempts, exc)
                continue
            return result
        raise AssertionError("unreachable")

    async def _commit(self, txn: Transaction) -> None:
        if not txn._writes:
            return
        assert self._conn is not None
        async with self._lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                stale: list[DocKey] = []
                for (collection, doc_id), seen in txn._versions.items():
                    async with self._conn.execute(
                        "SELECT version FROM documents WHERE collection = ? AND doc_id = ?",
                        (collection, doc_id),
                    ) as cursor:
                        row = await cursor.fetchone()
                    current = row[0] if row else 0
                    if current != seen:
                        stale.append((collection, doc_id))
                if stale:
                    raise TransactionConflict(stale)
                stamp = self.server_time()
                for (collection, doc_id), raw in txn._writes.items():
                    await self._conn.execute(_UPSERT, (collection, doc_id, raw, stamp))
            except BaseException:
                await self._conn.execute("ROLLBACK")
                raise
            await self._conn.execute("COMMIT")
        self._notify(txn._writes)

    # -- Snapshot listeners ----------------------------------------------

    def watch(self, collection: str, doc_id: str, callback: DocCallback) -> Callable[[], None]:
        """Call ``callback(snapshot)`` after every committed write of one document.

        Returns a function that removes the listener.
        """
        key = (collection, doc_id)
        self._doc_watchers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._doc_watchers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def watch_collection(self, collection: str,
                         callback: CollectionCallback) -> Callable[[], None]:
        """Call ``callback(doc_id, snapshot)`` after every write in ``collection``."""
        self._collection_watchers.setdefault(collection, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._collection_watchers.get(collection, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def _notify(self, writes: dict[DocKey, Optional[str]]) -> None:
        for (collection, doc_id), raw in writes.items():
            for callback in list(self._doc_watchers.get((collection, doc_id), [])):
                callback(_decode(raw))
            for callback in list(self._collection_watchers.get(collection, [])):
                callback(doc_id, _decode(raw))
