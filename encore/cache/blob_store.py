"""
Persistent key/value byte store backing the durable tier.

Goals:
- SQLite + aiosqlite, async/await friendly.
- The durable tier only needs get/put/delete/list_all (+ touch for access
  bookkeeping); anything else is an implementation detail.
- Schema versioned via `PRAGMA user_version` with forward-only migrations.

The stored records are not a compatibility surface; if the schema needs a big
refactor, bump the version and start from an empty table.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Final, Protocol

import aiosqlite

from encore.cache.object_urls import DEFAULT_CONTENT_TYPE

# Bump when you change the schema and add a migration in `migrate()`.
SCHEMA_VERSION: Final[int] = 1


class BlobStoreNotOpenError(RuntimeError):
    """Raised when the store is used before `open()`."""


@dataclass(frozen=True, slots=True)
class BlobMeta:
    created_at: float
    last_accessed_at: float
    duration: float | None = None
    content_type: str = DEFAULT_CONTENT_TYPE


@dataclass(frozen=True, slots=True)
class BlobRecord:
    """Metadata of a stored blob (without the bytes)."""

    key: str
    size: int
    created_at: float
    last_accessed_at: float
    access_count: int = 1
    duration: float | None = None
    content_type: str = DEFAULT_CONTENT_TYPE


class BlobStore(Protocol):
    async def get(self, key: str) -> bytes | None: ...

    async def put(self, key: str, data: bytes, meta: BlobMeta) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def list_all(self) -> list[BlobRecord]: ...

    async def touch(self, key: str, accessed_at: float) -> None: ...

    async def clear(self) -> None: ...


async def ensure_schema(conn: aiosqlite.Connection) -> None:
    """Create or migrate schema to current version."""
    cursor = await conn.execute("PRAGMA user_version;")
    row = await cursor.fetchone()
    current = int(row[0]) if row is not None else 0

    if current > SCHEMA_VERSION:
        raise RuntimeError(
            f"Blob store schema version {current} is newer than supported {SCHEMA_VERSION}."
        )

    if current == SCHEMA_VERSION:
        return

    await migrate(conn, from_version=current, to_version=SCHEMA_VERSION)
    await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")
    await conn.commit()


async def migrate(conn: aiosqlite.Connection, *, from_version: int, to_version: int) -> None:
    """Perform forward-only migrations."""
    # v0 -> v1
    if from_version == 0 and to_version >= 1:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS blobs (
                key TEXT PRIMARY KEY,
                data BLOB NOT NULL,
                size INTEGER NOT NULL,
                created_at REAL NOT NULL,
                last_accessed_at REAL NOT NULL,
                access_count INTEGER NOT NULL DEFAULT 1,
                duration REAL,
                content_type TEXT NOT NULL DEFAULT 'audio/mpeg'
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_blobs_last_accessed ON blobs(last_accessed_at);"
        )


def _row_to_record(row: aiosqlite.Row) -> BlobRecord:
    return BlobRecord(
        key=row["key"],
        size=int(row["size"]),
        created_at=float(row["created_at"]),
        last_accessed_at=float(row["last_accessed_at"]),
        access_count=int(row["access_count"]),
        duration=row["duration"],
        content_type=row["content_type"],
    )


class SqliteBlobStore:
    """
    Async SQLite implementation of the blob store.

    Usage:
        store = SqliteBlobStore("encore-blobs.sqlite3")
        await store.open()
        ... get/put/delete/list_all ...
        await store.close()

    Connections are not pooled; a single connection is kept.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = str(db_path)
        self._conn: aiosqlite.Connection | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        if self._conn is not None:
            return
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA journal_mode = WAL;")
        await self._conn.execute("PRAGMA synchronous = NORMAL;")
        await ensure_schema(self._conn)

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None

    def _require_conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise BlobStoreNotOpenError("SqliteBlobStore is not open. Call await store.open() first.")
        return self._conn

    async def get(self, key: str) -> bytes | None:
        conn = self._require_conn()
        cursor = await conn.execute("SELECT data FROM blobs WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return None if row is None else bytes(row["data"])

    async def get_record(self, key: str) -> BlobRecord | None:
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT key, size, created_at, last_accessed_at, access_count, duration, content_type
            FROM blobs WHERE key = ?
            """,
            (key,),
        )
        row = await cursor.fetchone()
        return None if row is None else _row_to_record(row)

    async def put(self, key: str, data: bytes, meta: BlobMeta) -> None:
        conn = self._require_conn()
        await conn.execute(
            """
            INSERT INTO blobs(key, data, size, created_at, last_accessed_at, access_count,
                              duration, content_type)
            VALUES (:key, :data, :size, :created_at, :last_accessed_at, 1, :duration, :content_type)
            ON CONFLICT(key) DO UPDATE SET
                data             = excluded.data,
                size             = excluded.size,
                created_at       = excluded.created_at,
                last_accessed_at = excluded.last_accessed_at,
                duration         = COALESCE(excluded.duration, blobs.duration),
                content_type     = excluded.content_type
            """,
            {
                "key": key,
                "data": data,
                "size": len(data),
                "created_at": meta.created_at,
                "last_accessed_at": meta.last_accessed_at,
                "duration": meta.duration,
                "content_type": meta.content_type,
            },
        )
        await conn.commit()

    async def touch(self, key: str, accessed_at: float) -> None:
        conn = self._require_conn()
        await conn.execute(
            """
            UPDATE blobs
            SET last_accessed_at = ?, access_count = access_count + 1
            WHERE key = ?
            """,
            (accessed_at, key),
        )
        await conn.commit()

    async def delete(self, key: str) -> bool:
        conn = self._require_conn()
        cursor = await conn.execute("DELETE FROM blobs WHERE key = ?", (key,))
        await conn.commit()
        return cursor.rowcount > 0

    async def list_all(self) -> list[BlobRecord]:
        conn = self._require_conn()
        cursor = await conn.execute(
            """
            SELECT key, size, created_at, last_accessed_at, access_count, duration, content_type
            FROM blobs
            ORDER BY last_accessed_at ASC
            """
        )
        rows = await cursor.fetchall()
        return [_row_to_record(row) for row in rows]

    async def clear(self) -> None:
        conn = self._require_conn()
        await conn.execute("DELETE FROM blobs")
        await conn.commit()
