"""SQLite-backed cache generations.

One ``cache_generations`` row per named generation; ``cache_entries`` rows
belong to exactly one generation and are removed with it (ON DELETE CASCADE).

Write-side failures are raised as ``CacheStorageError`` so the gate can decide
per call site whether they are fatal (install) or discarded (opportunistic
refresh, stale generation cleanup). Read failures in ``CacheStore.match`` are
logged and reported as a miss; a broken read must degrade to the same
behaviour as an empty cache.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import aiosqlite
import structlog

from canemap_offline.errors import CacheStorageError
from canemap_offline.models.cache import CachedResponse
from canemap_offline.network import strip_transfer_headers

if TYPE_CHECKING:
    from collections.abc import Sequence

    import httpx

log = structlog.get_logger()

_CREATE_GENERATION_TABLE = """
CREATE TABLE IF NOT EXISTS cache_generations (
    name       TEXT PRIMARY KEY,
    created_at TEXT NOT NULL
)
"""

_CREATE_ENTRY_TABLE = """
CREATE TABLE IF NOT EXISTS cache_entries (
    generation  TEXT NOT NULL REFERENCES cache_generations(name) ON DELETE CASCADE,
    url         TEXT NOT NULL,
    status_code INTEGER NOT NULL,
    headers     TEXT NOT NULL DEFAULT '[]',
    body        BLOB NOT NULL,
    stored_at   TEXT NOT NULL,
    PRIMARY KEY (generation, url)
)
"""

_UPSERT_ENTRY = (
    "INSERT OR REPLACE INTO cache_entries "
    "(generation, url, status_code, headers, body, stored_at) "
    "VALUES (?, ?, ?, ?, ?, ?)"
)


def cache_key(request: httpx.Request) -> str:
    """Entries are keyed by absolute URL, query string included."""
    return str(request.url)


def _entry_row(
    generation: str, request: httpx.Request, response: httpx.Response, stored_at: str
) -> tuple[str, str, int, str, bytes, str]:
    headers = strip_transfer_headers(response.headers.multi_items())
    return (
        generation,
        cache_key(request),
        response.status_code,
        json.dumps(headers),
        response.content,
        stored_at,
    )


class CacheStore:
    """A handle on one named generation. Cheap to create, holds no state of its own."""

    def __init__(self, db: aiosqlite.Connection, name: str) -> None:
        self._db = db
        self.name = name

    async def add_all(self, entries: Sequence[tuple[httpx.Request, httpx.Response]]) -> None:
        """Write every entry in a single transaction: all land, or none do."""
        stored_at = datetime.now(UTC).isoformat()
        rows = [_entry_row(self.name, request, response, stored_at) for request, response in entries]
        try:
            await self._db.executemany(_UPSERT_ENTRY, rows)
            await self._db.commit()
        except aiosqlite.Error as exc:
            await self._rollback()
            raise CacheStorageError(f"Failed to populate generation {self.name!r}: {exc}") from exc

    async def put(self, request: httpx.Request, response: httpx.Response) -> None:
        try:
            await self._db.execute(
                _UPSERT_ENTRY,
                _entry_row(self.name, request, response, datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            await self._rollback()
            raise CacheStorageError(
                f"Failed to store {cache_key(request)} in generation {self.name!r}: {exc}"
            ) from exc

    async def get(self, url: str) -> CachedResponse | None:
        """Read a stored entry by URL. Returns ``None`` on miss or read failure."""
        try:
            cursor = await self._db.execute(
                "SELECT generation, url, status_code, headers, body, stored_at "
                "FROM cache_entries WHERE generation = ? AND url = ?",
                (self.name, url),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("cache_read_error", generation=self.name, url=url, exc_info=True)
            return None

        if row is None:
            return None

        return CachedResponse(
            generation=row[0],
            url=row[1],
            status_code=row[2],
            headers=[tuple(pair) for pair in json.loads(row[3])],
            body=row[4],
            stored_at=datetime.fromisoformat(row[5]),
        )

    async def match(self, request: httpx.Request) -> httpx.Response | None:
        entry = await self.get(cache_key(request))
        if entry is None:
            return None
        return entry.to_response(request)

    async def keys(self) -> list[str]:
        """URLs stored in this generation, sorted."""
        try:
            cursor = await self._db.execute(
                "SELECT url FROM cache_entries WHERE generation = ? ORDER BY url",
                (self.name,),
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise CacheStorageError(f"Failed to list generation {self.name!r}: {exc}") from exc
        return [row[0] for row in rows]

    async def _rollback(self) -> None:
        try:
            await self._db.rollback()
        except aiosqlite.Error:
            log.warning("cache_rollback_error", generation=self.name, exc_info=True)


class CacheStorage:
    """The persistent set of cache generations, implementing CacheStorageProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.execute(_CREATE_GENERATION_TABLE)
        await self._db.execute(_CREATE_ENTRY_TABLE)
        await self._db.commit()

    async def open(self, name: str) -> CacheStore:
        """Return a handle on the named generation, creating it if absent."""
        try:
            await self._db.execute(
                "INSERT OR IGNORE INTO cache_generations (name, created_at) VALUES (?, ?)",
                (name, datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise CacheStorageError(f"Failed to open generation {name!r}: {exc}") from exc
        return CacheStore(self._db, name)

    async def has(self, name: str) -> bool:
        """Whether the named generation exists."""
        try:
            cursor = await self._db.execute(
                "SELECT 1 FROM cache_generations WHERE name = ?", (name,)
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise CacheStorageError(f"Failed to look up generation {name!r}: {exc}") from exc
        return row is not None

    async def keys(self) -> list[str]:
        """Generation names in creation order."""
        try:
            cursor = await self._db.execute(
                "SELECT name FROM cache_generations ORDER BY created_at, name"
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise CacheStorageError(f"Failed to list cache generations: {exc}") from exc
        return [row[0] for row in rows]

    async def delete(self, name: str) -> bool:
        """Delete a generation and all its entries. Returns False if it did not exist."""
        try:
            cursor = await self._db.execute(
                "DELETE FROM cache_generations WHERE name = ?", (name,)
            )
            deleted = cursor.rowcount > 0
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise CacheStorageError(f"Failed to delete generation {name!r}: {exc}") from exc
        return deleted
