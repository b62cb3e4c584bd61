"""
Serialized SQLite store for VRroom Server.

Every read and write goes through one ``Store`` instance that owns a single
SQLite connection and a process-wide mutex. Callers hand the store a closure;
the closure runs inside one ``BEGIN IMMEDIATE`` transaction while the mutex is
held, so multi-step domain operations are atomic with respect to each other.

Invariants:
    - At most one closure runs at a time (single-writer discipline)
    - A closure either commits entirely or rolls back entirely
    - Closures never await and never call the blob store
    - Domain errors raised inside a closure propagate unchanged

How to change safely:
    - Add new collections to RECORD_TYPES, not as ad-hoc tables
    - Keep closures short; long closures stall both front ends
    - Unique indexes back the uniqueness checks done inside closures;
      add one for every new uniqueness rule

Table schema (one table per collection):
    <collection>:
        - id TEXT PRIMARY KEY (UUID)
        - body TEXT (JSON document)

    files:
        - id TEXT PRIMARY KEY
        - filename TEXT
        - data BLOB
        - uploaded_at INTEGER (Unix ms)
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, Generic, TypeVar

from ..errors import InternalError, VrroomError
from .records import RECORD_TYPES, Record, StoredFile, now_ms

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)
T = TypeVar("T")

_UNIQUE_INDEXES = """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_handle
        ON accounts(json_extract(body, '$.handle'));
    CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_email
        ON accounts(json_extract(body, '$.email'));
    CREATE UNIQUE INDEX IF NOT EXISTS idx_friend_requests_pair
        ON friend_requests(json_extract(body, '$.from_id'), json_extract(body, '$.to_id'));
    CREATE UNIQUE INDEX IF NOT EXISTS idx_friendships_pair
        ON friendships(json_extract(body, '$.user1_id'), json_extract(body, '$.user2_id'));
    CREATE UNIQUE INDEX IF NOT EXISTS idx_blocks_pair
        ON blocks(json_extract(body, '$.user_id'), json_extract(body, '$.blocked_id'));
    CREATE UNIQUE INDEX IF NOT EXISTS idx_join_tokens_account
        ON join_tokens(json_extract(body, '$.account_id'));
    CREATE INDEX IF NOT EXISTS idx_contents_owner
        ON contents(json_extract(body, '$.owner_id'));
    CREATE INDEX IF NOT EXISTS idx_bundles_content
        ON bundles(json_extract(body, '$.content_id'));
    CREATE INDEX IF NOT EXISTS idx_sessions_account
        ON sessions(json_extract(body, '$.account_id'));
"""


class Collection(Generic[R]):
    """Typed view over one collection table inside a transaction.

    ``where`` keyword filters are pushed into SQL as ``json_extract``
    equality; ``predicate`` is applied in Python to the decoded records.
    """

    def __init__(self, conn: sqlite3.Connection, record_type: type[R]) -> None:
        self._conn = conn
        self._type = record_type
        self._table = record_type.collection
        self._fields = set(record_type.__dataclass_fields__)

    def _where_clause(self, where: dict[str, Any]) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for name, value in where.items():
            if name not in self._fields:
                raise ValueError(f"Unknown field '{name}' for {self._table}")
            if name == "id":
                column = "id"
            else:
                column = f"json_extract(body, '$.{name}')"
            if value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(value)
        sql = " WHERE " + " AND ".join(clauses) if clauses else ""
        return sql, params

    def _iter(self, where: dict[str, Any]) -> Iterator[R]:
        sql, params = self._where_clause(where)
        cursor = self._conn.execute(
            f"SELECT body FROM {self._table}{sql} ORDER BY rowid", params
        )
        for row in cursor.fetchall():
            yield self._type.from_dict(json.loads(row[0]))

    def get(self, record_id: str) -> R | None:
        cursor = self._conn.execute(
            f"SELECT body FROM {self._table} WHERE id = ?", (record_id,)
        )
        row = cursor.fetchone()
        return self._type.from_dict(json.loads(row[0])) if row else None

    def find(self, predicate: Callable[[R], bool] | None = None, **where: Any) -> list[R]:
        """Return matching records in insertion order."""
        return [r for r in self._iter(where) if predicate is None or predicate(r)]

    def find_one(self, predicate: Callable[[R], bool] | None = None, **where: Any) -> R | None:
        for record in self._iter(where):
            if predicate is None or predicate(record):
                return record
        return None

    def exists(self, predicate: Callable[[R], bool] | None = None, **where: Any) -> bool:
        return self.find_one(predicate, **where) is not None

    def count(self, predicate: Callable[[R], bool] | None = None, **where: Any) -> int:
        return len(self.find(predicate, **where))

    def insert(self, record: R) -> R:
        self._conn.execute(
            f"INSERT INTO {self._table} (id, body) VALUES (?, ?)",
            (record.id, json.dumps(record.to_dict())),
        )
        return record

    def update(self, record: R) -> bool:
        cursor = self._conn.execute(
            f"UPDATE {self._table} SET body = ? WHERE id = ?",
            (json.dumps(record.to_dict()), record.id),
        )
        return cursor.rowcount > 0

    def delete(self, record_id: str) -> bool:
        cursor = self._conn.execute(f"DELETE FROM {self._table} WHERE id = ?", (record_id,))
        return cursor.rowcount > 0

    def delete_many(self, predicate: Callable[[R], bool] | None = None, **where: Any) -> int:
        """Delete matching records.

        Returns:
            Number of deleted records
        """
        doomed = self.find(predicate, **where)
        for record in doomed:
            self.delete(record.id)
        return len(doomed)


class FileStorage:
    """The store's own file area, keyed by caller-chosen ids."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def upload(self, file_id: str, filename: str, data: bytes) -> StoredFile:
        """Store a file, replacing any file with the same id."""
        stored = StoredFile(id=file_id, filename=filename, data=data, uploaded_at=now_ms())
        self._conn.execute(
            "INSERT OR REPLACE INTO files (id, filename, data, uploaded_at) VALUES (?, ?, ?, ?)",
            (stored.id, stored.filename, stored.data, stored.uploaded_at),
        )
        return stored

    def find_by_id(self, file_id: str) -> StoredFile | None:
        cursor = self._conn.execute(
            "SELECT id, filename, data, uploaded_at FROM files WHERE id = ?", (file_id,)
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return StoredFile(id=row[0], filename=row[1], data=bytes(row[2]), uploaded_at=row[3])

    def delete(self, file_id: str) -> bool:
        cursor = self._conn.execute("DELETE FROM files WHERE id = ?", (file_id,))
        return cursor.rowcount > 0


class Transaction:
    """Handle passed to store closures.

    Attributes are one ``Collection`` per record type, named after the
    collection (``txn.accounts``, ``txn.contents``, ...), plus ``files``.
    """

    accounts: Collection[Any]
    profiles: Collection[Any]
    sessions: Collection[Any]
    join_tokens: Collection[Any]
    friend_requests: Collection[Any]
    friendships: Collection[Any]
    blocks: Collection[Any]
    notifications: Collection[Any]
    contents: Collection[Any]
    bundles: Collection[Any]
    share_groups: Collection[Any]
    tickets: Collection[Any]
    files: FileStorage

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self.files = FileStorage(conn)
        for record_type in RECORD_TYPES:
            setattr(self, record_type.collection, Collection(conn, record_type))


class Store:
    """Single-connection SQLite store with closure-based transactions.

    Thread safety:
        One ``threading.Lock`` serializes every closure. The async entry
        point runs closures in a worker thread so the event loop keeps
        serving other connections while a closure holds the lock.

    Example:
        >>> store = Store(":memory:")
        >>> account = await store.execute(lambda txn: txn.accounts.find_one(handle="alice"))
    """

    def __init__(
        self,
        path: str = ":memory:",
        busy_timeout_ms: int = 5000,
        wal_mode: bool = True,
    ) -> None:
        """Open the database and create the schema.

        Args:
            path: SQLite database file, or ":memory:"
            busy_timeout_ms: SQLite busy timeout
            wal_mode: Enable SQLite WAL mode (ignored for ":memory:")
        """
        self.path = path
        self._lock = threading.Lock()

        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            path,
            timeout=busy_timeout_ms / 1000.0,
            isolation_level=None,  # explicit transactions only
            check_same_thread=False,
        )
        self._conn.execute(f"PRAGMA busy_timeout = {busy_timeout_ms}")
        if wal_mode and path != ":memory:":
            self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._create_schema()
        logger.info("Opened store", extra={"database_path": path})

    def _create_schema(self) -> None:
        tables = "\n".join(
            f"CREATE TABLE IF NOT EXISTS {t.collection} "
            "(id TEXT PRIMARY KEY, body TEXT NOT NULL);"
            for t in RECORD_TYPES
        )
        with self._lock:
            self._conn.executescript(
                tables
                + """
                CREATE TABLE IF NOT EXISTS files (
                    id TEXT PRIMARY KEY,
                    filename TEXT NOT NULL,
                    data BLOB NOT NULL,
                    uploaded_at INTEGER NOT NULL
                );
                """
                + _UNIQUE_INDEXES
            )

    def run(self, fn: Callable[[Transaction], T]) -> T:
        """Run a closure in one transaction while holding the store lock.

        Args:
            fn: Closure receiving a Transaction

        Returns:
            Whatever the closure returns

        Raises:
            VrroomError: Re-raised unchanged from the closure
            InternalError: If SQLite fails
        """
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                result = fn(Transaction(self._conn))
                self._conn.execute("COMMIT")
                return result
            except VrroomError:
                self._conn.execute("ROLLBACK")
                raise
            except sqlite3.Error as e:
                self._conn.execute("ROLLBACK")
                logger.error("Store transaction failed", extra={"error": str(e)}, exc_info=True)
                raise InternalError() from e
            except Exception:
                self._conn.execute("ROLLBACK")
                raise

    async def execute(self, fn: Callable[[Transaction], T]) -> T:
        """Run a closure from async code without blocking the event loop."""
        return await asyncio.to_thread(self.run, fn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
        logger.info("Closed store", extra={"database_path": self.path})
