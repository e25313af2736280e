"""
SQLite storage engine for LinkStore.

This module provides the versioned key/value store underneath the
engine. It behaves like a browser object-store database:
- Named collections of JSON rows keyed by a key path (`__pkey__`)
- Secondary indices over dot-paths or compound key paths, optionally unique
- Exact and bounded range lookups over an index
- Structural changes only inside a versioned upgrade

Invariants:
    - One SQLite file per database name, one open connection per engine
    - Opening at a higher version runs the upgrade callback in the same
      transaction that stamps the new version
    - Opening at a lower version than stored fails
    - A batch write is one transaction; a failing row is skipped through
      its own savepoint and reported after the rest commit
    - Index entries always match the row they were computed from

How to change safely:
    - Key encoding is persisted; changing encode_key requires a rebuild
    - Keep every structural change inside UpgradeTransaction
    - Test with unique indices before changing the write path

Table schema:
    collections:
        - name TEXT PRIMARY KEY
        - key_path TEXT
    indices:
        - collection TEXT
        - name TEXT
        - key_path_json TEXT (string or list of strings)
        - is_unique INTEGER
        - PRIMARY KEY (collection, name)
    rows:
        - collection TEXT
        - pkey TEXT (encoded key)
        - value_json TEXT
        - PRIMARY KEY (collection, pkey)
    index_entries:
        - collection TEXT
        - index_name TEXT
        - index_key TEXT (encoded key)
        - pkey TEXT
        - PRIMARY KEY (collection, index_name, index_key, pkey)
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sqlite3
from collections.abc import AsyncIterator, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..errors import (
    StorageOpenError,
    StorageUnsupportedError,
    StoreDeleteError,
    StoreError,
    StoreWriteError,
)
from ..schema.types import ID_KEY
from .keys import (
    MISSING,
    collect_path_values,
    decode_key,
    encode_key,
    in_range,
    is_valid_key,
    key_sort_key,
    resolve_key_path,
)

logger = logging.getLogger(__name__)

# Savepoints need SQLite >= 3.6.8, partial upgrade safety needs 3.7
MIN_SQLITE_VERSION = (3, 7, 0)


class _RowRejected(Exception):
    """A single row cannot be written; the batch continues."""

    pass


@dataclass(frozen=True)
class IndexDef:
    """A secondary index on a collection.

    Attributes:
        name: Index name
        key_path: Dot-path or list of dot-paths (compound key)
        unique: Reject rows whose key is already used by another row
    """

    name: str
    key_path: str | tuple[str, ...]
    unique: bool = False


def _load_indices(conn: sqlite3.Connection, collection: str) -> list[IndexDef]:
    cursor = conn.execute(
        "SELECT name, key_path_json, is_unique FROM indices WHERE collection = ? ORDER BY name",
        (collection,),
    )
    result = []
    for row in cursor.fetchall():
        key_path = json.loads(row["key_path_json"])
        if isinstance(key_path, list):
            key_path = tuple(key_path)
        result.append(IndexDef(name=row["name"], key_path=key_path, unique=bool(row["is_unique"])))
    return result


def _collection_key_path(conn: sqlite3.Connection, collection: str) -> str | None:
    row = conn.execute(
        "SELECT key_path FROM collections WHERE name = ?", (collection,)
    ).fetchone()
    return row["key_path"] if row else None


def _index_entry(
    conn: sqlite3.Connection, collection: str, index: IndexDef, row: dict[str, Any], pkey: str
) -> tuple[str, str, str, str] | None:
    """Compute the entry a row contributes to an index, if any.

    Raises:
        _RowRejected: If a unique index already holds the key for another row
    """
    value = resolve_key_path(row, index.key_path)
    if value is MISSING or not is_valid_key(value):
        return None
    encoded = encode_key(value)
    if index.unique:
        clash = conn.execute(
            """
            SELECT 1 FROM index_entries
            WHERE collection = ? AND index_name = ? AND index_key = ? AND pkey != ?
            LIMIT 1
            """,
            (collection, index.name, encoded, pkey),
        ).fetchone()
        if clash:
            raise _RowRejected(
                f"Unable to add key to index '{index.name}': "
                "at least one key does not satisfy the uniqueness requirements"
            )
    return (collection, index.name, encoded, pkey)


def _write_row(
    conn: sqlite3.Connection,
    collection: str,
    key_path: str,
    row: dict[str, Any],
    indices: list[IndexDef],
) -> Any:
    """Insert or replace one row with its index entries. Returns its key."""
    key = resolve_key_path(row, key_path)
    if key is MISSING or not is_valid_key(key):
        raise _RowRejected(f"Evaluating the key path '{key_path}' did not yield a valid key")
    pkey = encode_key(key)
    try:
        value_json = json.dumps(row)
    except (TypeError, ValueError) as e:
        raise _RowRejected(f"Row is not JSON serializable: {e}") from e

    entries = []
    for index in indices:
        entry = _index_entry(conn, collection, index, row, pkey)
        if entry is not None:
            entries.append(entry)

    conn.execute(
        "DELETE FROM index_entries WHERE collection = ? AND pkey = ?", (collection, pkey)
    )
    conn.execute(
        "INSERT OR REPLACE INTO rows (collection, pkey, value_json) VALUES (?, ?, ?)",
        (collection, pkey, value_json),
    )
    conn.executemany(
        """
        INSERT OR IGNORE INTO index_entries (collection, index_name, index_key, pkey)
        VALUES (?, ?, ?, ?)
        """,
        entries,
    )
    return key


class UpgradeTransaction:
    """Structural operations available while the version is being raised.

    Only handed out by StorageEngine.open(); every call runs inside the
    upgrade transaction.
    """

    def __init__(self, conn: sqlite3.Connection, old_version: int, new_version: int) -> None:
        self._conn = conn
        self.old_version = old_version
        self.new_version = new_version

    def collection_names(self) -> list[str]:
        cursor = self._conn.execute("SELECT name FROM collections ORDER BY name")
        return [row["name"] for row in cursor.fetchall()]

    def has_collection(self, name: str) -> bool:
        return _collection_key_path(self._conn, name) is not None

    def create_collection(self, name: str, key_path: str = ID_KEY) -> None:
        if self.has_collection(name):
            raise StorageOpenError(f"Collection '{name}' already exists")
        self._conn.execute(
            "INSERT INTO collections (name, key_path) VALUES (?, ?)", (name, key_path)
        )
        logger.debug(f"Created collection {name}", extra={"key_path": key_path})

    def delete_collection(self, name: str) -> None:
        for table, column in (
            ("index_entries", "collection"),
            ("indices", "collection"),
            ("rows", "collection"),
            ("collections", "name"),
        ):
            self._conn.execute(f"DELETE FROM {table} WHERE {column} = ?", (name,))
        logger.debug(f"Deleted collection {name}")

    def index_names(self, collection: str) -> list[str]:
        return [index.name for index in _load_indices(self._conn, collection)]

    def has_index(self, collection: str, name: str) -> bool:
        return name in self.index_names(collection)

    def create_index(
        self,
        collection: str,
        name: str,
        key_path: str | list[str] | tuple[str, ...],
        unique: bool = False,
    ) -> None:
        """Create an index and fill it from the rows already stored.

        Raises:
            StorageOpenError: If the collection is missing, the index exists,
                or existing rows violate a unique index
        """
        if not self.has_collection(collection):
            raise StorageOpenError(f"Cannot index missing collection '{collection}'")
        if self.has_index(collection, name):
            raise StorageOpenError(f"Index '{name}' already exists on '{collection}'")
        stored_path = list(key_path) if isinstance(key_path, (list, tuple)) else key_path
        self._conn.execute(
            """
            INSERT INTO indices (collection, name, key_path_json, is_unique)
            VALUES (?, ?, ?, ?)
            """,
            (collection, name, json.dumps(stored_path), 1 if unique else 0),
        )
        index = IndexDef(
            name=name,
            key_path=tuple(stored_path) if isinstance(stored_path, list) else stored_path,
            unique=unique,
        )
        cursor = self._conn.execute(
            "SELECT pkey, value_json FROM rows WHERE collection = ?", (collection,)
        )
        for row in cursor.fetchall():
            try:
                entry = _index_entry(
                    self._conn, collection, index, json.loads(row["value_json"]), row["pkey"]
                )
            except _RowRejected as e:
                raise StorageOpenError(f"Cannot create index '{name}' on '{collection}': {e}")
            if entry is not None:
                self._conn.execute(
                    """
                    INSERT OR IGNORE INTO index_entries (collection, index_name, index_key, pkey)
                    VALUES (?, ?, ?, ?)
                    """,
                    entry,
                )

    def delete_index(self, collection: str, name: str) -> None:
        self._conn.execute(
            "DELETE FROM index_entries WHERE collection = ? AND index_name = ?", (collection, name)
        )
        self._conn.execute(
            "DELETE FROM indices WHERE collection = ? AND name = ?", (collection, name)
        )


UpgradeCallback = Callable[[UpgradeTransaction], None]


class StorageEngine:
    """Versioned object-store database on top of SQLite.

    Methods are async so callers can await them uniformly; the SQLite work
    inside each call is synchronous. Structural changes (open/close/delete)
    are serialized by a lock.

    Example:
        >>> engine = StorageEngine("/tmp/linkstore")
        >>> await engine.open(1, lambda tx: tx.create_collection("Person"))
        >>> await engine.put_many({"Person": [{"__pkey__": "p1", "name": "Ann"}]})
        {'Person': ['p1']}
        >>> await engine.get("Person", "p1")
        {'__pkey__': 'p1', 'name': 'Ann'}
    """

    def __init__(
        self,
        data_dir: str,
        database_name: str = "PersistentRandomData",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        cache_size_pages: int = -16000,
    ) -> None:
        """Initialize the engine without opening it.

        Args:
            data_dir: Directory for the SQLite file
            database_name: Database name, used as the file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
            cache_size_pages: SQLite cache size (negative = KB)
        """
        self.data_dir = Path(data_dir)
        self.database_name = database_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.cache_size_pages = cache_size_pages
        self._conn: sqlite3.Connection | None = None
        self._version = 0
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        safe_name = "".join(c for c in self.database_name if c.isalnum() or c in "-_")
        return self.data_dir / f"{safe_name}.db"

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def version(self) -> int:
        return self._version

    def _check_environment(self) -> None:
        if sqlite3.sqlite_version_info < MIN_SQLITE_VERSION:
            raise StorageUnsupportedError(
                f"SQLite {sqlite3.sqlite_version} is too old, "
                f"{'.'.join(map(str, MIN_SQLITE_VERSION))} or newer is required"
            )
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnsupportedError(f"Cannot create data directory {self.data_dir}: {e}")
        if not os.access(self.data_dir, os.W_OK):
            raise StorageUnsupportedError(f"Data directory {self.data_dir} is not writable")

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        conn.execute(f"PRAGMA cache_size = {self.cache_size_pages}")
        if self.wal_mode:
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS collections (
                name TEXT PRIMARY KEY,
                key_path TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS indices (
                collection TEXT NOT NULL,
                name TEXT NOT NULL,
                key_path_json TEXT NOT NULL,
                is_unique INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (collection, name)
            );

            CREATE TABLE IF NOT EXISTS rows (
                collection TEXT NOT NULL,
                pkey TEXT NOT NULL,
                value_json TEXT NOT NULL,
                PRIMARY KEY (collection, pkey)
            );

            CREATE TABLE IF NOT EXISTS index_entries (
                collection TEXT NOT NULL,
                index_name TEXT NOT NULL,
                index_key TEXT NOT NULL,
                pkey TEXT NOT NULL,
                PRIMARY KEY (collection, index_name, index_key, pkey)
            );

            CREATE INDEX IF NOT EXISTS idx_entries_row ON index_entries(collection, pkey);
        """)

    async def open(self, version: int, upgrade: UpgradeCallback | None = None) -> None:
        """Open the database at a version, upgrading if it is newer.

        Any previously open connection is closed first.

        Args:
            version: Requested structural version
            upgrade: Called with an UpgradeTransaction when `version` is
                higher than the stored one

        Raises:
            StorageUnsupportedError: If the environment cannot host the file
            StorageOpenError: If the stored version is higher or the
                upgrade fails
        """
        async with self._lock:
            self._close()
            self._check_environment()
            try:
                conn = self._connect()
                self._create_schema(conn)
            except sqlite3.Error as e:
                raise StorageOpenError(f"Cannot open database: {e}", path=str(self.path)) from e

            current = conn.execute("PRAGMA user_version").fetchone()[0]
            if version < current:
                conn.close()
                raise StorageOpenError(
                    f"Requested version ({version}) is less than the existing version ({current})",
                    path=str(self.path),
                )

            if version > current:
                conn.execute("BEGIN IMMEDIATE")
                try:
                    if upgrade is not None:
                        upgrade(UpgradeTransaction(conn, current, version))
                    conn.execute(f"PRAGMA user_version = {int(version)}")
                    conn.execute("COMMIT")
                except Exception as e:
                    conn.execute("ROLLBACK")
                    conn.close()
                    if isinstance(e, StorageOpenError):
                        raise
                    raise StorageOpenError(
                        f"Upgrade to version {version} failed: {e}", path=str(self.path)
                    ) from e
                logger.info(
                    f"Upgraded database {self.database_name}",
                    extra={"from_version": current, "to_version": version},
                )

            self._conn = conn
            self._version = version

    def _close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    async def close(self) -> None:
        """Close the connection if open."""
        async with self._lock:
            self._close()

    async def delete_database(self) -> None:
        """Close and remove the database file."""
        async with self._lock:
            self._close()
            for suffix in ("", "-wal", "-shm"):
                candidate = Path(f"{self.path}{suffix}")
                if candidate.exists():
                    candidate.unlink()
            self._version = 0
            logger.info(f"Deleted database {self.database_name}")

    def _require_open(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageOpenError("Database is not open", path=str(self.path))
        return self._conn

    def _require_collection(self, conn: sqlite3.Connection, collection: str) -> str:
        key_path = _collection_key_path(conn, collection)
        if key_path is None:
            raise StoreError(collection, "collection not found")
        return key_path

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._require_open()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise

    async def collection_names(self) -> list[str]:
        conn = self._require_open()
        cursor = conn.execute("SELECT name FROM collections ORDER BY name")
        return [row["name"] for row in cursor.fetchall()]

    async def has_collection(self, collection: str) -> bool:
        if self._conn is None:
            return False
        return _collection_key_path(self._conn, collection) is not None

    async def index_names(self, collection: str) -> list[str]:
        conn = self._require_open()
        self._require_collection(conn, collection)
        return [index.name for index in _load_indices(conn, collection)]

    async def has_index(self, collection: str, index: str) -> bool:
        if not await self.has_collection(collection):
            return False
        return index in await self.index_names(collection)

    async def count(self, collection: str) -> int:
        conn = self._require_open()
        self._require_collection(conn, collection)
        row = conn.execute(
            "SELECT COUNT(*) AS n FROM rows WHERE collection = ?", (collection,)
        ).fetchone()
        return int(row["n"])

    async def get(self, collection: str, key: Any) -> dict[str, Any] | None:
        """Get a row by primary key.

        Raises:
            StoreError: If the collection does not exist
        """
        conn = self._require_open()
        self._require_collection(conn, collection)
        if not is_valid_key(key):
            return None
        row = conn.execute(
            "SELECT value_json FROM rows WHERE collection = ? AND pkey = ?",
            (collection, encode_key(key)),
        ).fetchone()
        return json.loads(row["value_json"]) if row else None

    async def get_all(self, collection: str) -> list[dict[str, Any]]:
        """All rows of a collection in key order.

        Raises:
            StoreError: If the collection does not exist
        """
        conn = self._require_open()
        self._require_collection(conn, collection)
        cursor = conn.execute(
            "SELECT pkey, value_json FROM rows WHERE collection = ?", (collection,)
        )
        rows = [(decode_key(r["pkey"]), r["value_json"]) for r in cursor.fetchall()]
        rows.sort(key=lambda item: key_sort_key(item[0]))
        return [json.loads(value) for _, value in rows]

    async def cursor(self, collection: str) -> AsyncIterator[dict[str, Any]]:
        """Iterate over the rows of a collection in key order."""
        for row in await self.get_all(collection):
            yield row

    async def get_all_by_index(
        self, collection: str, index: str, lower: Any, upper: Any = None
    ) -> list[dict[str, Any]]:
        """Rows whose index key equals `lower`, or lies in [lower, upper].

        Results are ordered by index key, then primary key.

        Raises:
            StoreError: If the collection or index does not exist
        """
        conn = self._require_open()
        self._require_collection(conn, collection)
        if index not in {i.name for i in _load_indices(conn, collection)}:
            raise StoreError(collection, f"index '{index}' not found")

        query = """
            SELECT e.index_key, e.pkey, r.value_json
            FROM index_entries e
            JOIN rows r ON r.collection = e.collection AND r.pkey = e.pkey
            WHERE e.collection = ? AND e.index_name = ?
        """
        if upper is None:
            if not is_valid_key(lower):
                return []
            cursor = conn.execute(query + " AND e.index_key = ?", (collection, index, encode_key(lower)))
            matches = [
                (decode_key(r["index_key"]), decode_key(r["pkey"]), r["value_json"])
                for r in cursor.fetchall()
            ]
        else:
            cursor = conn.execute(query, (collection, index))
            matches = []
            for r in cursor.fetchall():
                index_key = decode_key(r["index_key"])
                if in_range(index_key, lower, upper):
                    matches.append((index_key, decode_key(r["pkey"]), r["value_json"]))

        matches.sort(key=lambda item: (key_sort_key(item[0]), key_sort_key(item[1])))
        return [json.loads(value) for _, _, value in matches]

    async def find_by_path(self, collection: str, path: str, value: Any) -> list[dict[str, Any]]:
        """Rows whose value at a dot-path equals `value`.

        Uses the index named after the path when it exists, otherwise scans.
        """
        if await self.has_index(collection, path):
            return await self.get_all_by_index(collection, path, value)
        if not is_valid_key(value):
            return []
        wanted = encode_key(value)
        matches = []
        for row in await self.get_all(collection):
            found = collect_path_values(row, path)
            if any(is_valid_key(item) and encode_key(item) == wanted for item in found):
                matches.append(row)
        return matches

    async def put_many(self, batches: dict[str, list[dict[str, Any]]]) -> dict[str, list[Any]]:
        """Write rows into several collections in one transaction.

        Collections are written in the order given. Each row is written in
        its own savepoint: a rejected row is skipped and its message
        recorded. When a collection had rejected rows, the rows written so
        far are committed and no further collections are attempted.

        Returns:
            Collection -> keys written, in order

        Raises:
            StoreError: If a collection does not exist (nothing is written)
            StoreWriteError: After commit, naming the first collection with
                rejected rows
        """
        written: dict[str, list[Any]] = {}
        failure: tuple[str, list[str]] | None = None

        with self._transaction() as conn:
            for collection, rows in batches.items():
                key_path = self._require_collection(conn, collection)
                indices = _load_indices(conn, collection)
                keys: list[Any] = []
                messages: list[str] = []
                for row in rows:
                    conn.execute("SAVEPOINT write_row")
                    try:
                        keys.append(_write_row(conn, collection, key_path, row, indices))
                        conn.execute("RELEASE write_row")
                    except _RowRejected as e:
                        conn.execute("ROLLBACK TO write_row")
                        conn.execute("RELEASE write_row")
                        messages.append(str(e))
                written[collection] = keys
                if messages:
                    failure = (collection, messages)
                    break

        for collection, keys in written.items():
            logger.debug(
                f"Wrote {len(keys)} row(s) to {collection}",
                extra={"collection": collection, "rows": len(keys)},
            )
        if failure is not None:
            raise StoreWriteError(*failure)
        return written

    async def delete_many(self, collection: str, keys: list[Any]) -> list[Any]:
        """Delete rows by primary key in one transaction.

        Deleting an absent key succeeds.

        Raises:
            StoreError: If the collection does not exist
            StoreDeleteError: If a delete statement fails
        """
        deleted: list[Any] = []
        with self._transaction() as conn:
            self._require_collection(conn, collection)
            for key in keys:
                if not is_valid_key(key):
                    raise StoreDeleteError(collection, key, "not a valid key")
                encoded = encode_key(key)
                try:
                    conn.execute(
                        "DELETE FROM index_entries WHERE collection = ? AND pkey = ?",
                        (collection, encoded),
                    )
                    conn.execute(
                        "DELETE FROM rows WHERE collection = ? AND pkey = ?", (collection, encoded)
                    )
                except sqlite3.Error as e:
                    raise StoreDeleteError(collection, key, str(e)) from e
                deleted.append(key)
        return deleted

    async def clear(self, collection: str) -> None:
        """Remove every row of a collection, keeping its structure.

        Raises:
            StoreError: If the collection does not exist
        """
        with self._transaction() as conn:
            self._require_collection(conn, collection)
            conn.execute("DELETE FROM index_entries WHERE collection = ?", (collection,))
            conn.execute("DELETE FROM rows WHERE collection = ?", (collection,))
        logger.debug(f"Cleared collection {collection}")
