from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiosqlite
import asyncpg

LOGGER = logging.getLogger(__name__)

Row = dict[str, Any]

SQLITE_MEMORY = ":memory:"


@dataclass(slots=True)
class DatabaseDsn:
    driver: str
    value: str


def parse_database_dsn(url: str) -> DatabaseDsn:
    if url.startswith("sqlite:///"):
        return DatabaseDsn(driver="sqlite", value=url.replace("sqlite:///", "", 1))
    if url.startswith("postgresql://") or url.startswith("postgres://"):
        return DatabaseDsn(driver="postgresql", value=url)
    raise ValueError("Unsupported database URL. Use sqlite:/// or postgresql://")


def _qmark_to_dollar(query: str) -> str:
    """Rewrite ``?`` placeholders as ``$1..$n``, leaving quoted literals alone."""
    out: list[str] = []
    index = 0
    quote: str | None = None
    for char in query:
        if quote is not None:
            if char == quote:
                quote = None
        elif char in ("'", '"'):
            quote = char
        elif char == "?":
            index += 1
            out.append(f"${index}")
            continue
        out.append(char)
    return "".join(out)


def _rowcount_from_status(status: str) -> int:
    # asyncpg reports a command tag such as "UPDATE 1" or "INSERT 0 1".
    tail = status.rsplit(" ", 1)[-1]
    return int(tail) if tail.isdigit() else 0


class Database:
    """Async store for guild configuration and ticket records.

    Backed by SQLite through aiosqlite or by PostgreSQL through an asyncpg
    pool. Queries use ``?`` placeholders on both drivers. SQLite statements
    run one at a time under a lock, so each write is atomic with respect to
    other coroutines.
    """

    def __init__(self, url: str, timeout_seconds: int = 30, pool_min_size: int = 1, pool_max_size: int = 5) -> None:
        self._dsn = parse_database_dsn(url)
        self._timeout_seconds = timeout_seconds
        self._pool_min_size = pool_min_size
        self._pool_max_size = pool_max_size
        self._sqlite: aiosqlite.Connection | None = None
        self._pg_pool: asyncpg.Pool | None = None
        self._sqlite_lock = asyncio.Lock()

    @property
    def driver(self) -> str:
        return self._dsn.driver

    @property
    def is_connected(self) -> bool:
        return self._sqlite is not None or self._pg_pool is not None

    async def connect(self) -> None:
        if self.driver == "sqlite":
            await self._connect_sqlite(self._dsn.value)
            return
        self._pg_pool = await asyncpg.create_pool(
            dsn=self._dsn.value,
            min_size=self._pool_min_size,
            max_size=self._pool_max_size,
            timeout=self._timeout_seconds,
        )
        LOGGER.info("Connected to PostgreSQL (pool %d-%d)", self._pool_min_size, self._pool_max_size)

    async def _connect_sqlite(self, location: str) -> None:
        if location != SQLITE_MEMORY:
            Path(location).parent.mkdir(parents=True, exist_ok=True)
        self._sqlite = await aiosqlite.connect(location, timeout=self._timeout_seconds)
        self._sqlite.row_factory = aiosqlite.Row
        if location != SQLITE_MEMORY:
            await self._sqlite.execute("PRAGMA journal_mode = WAL;")
        await self._sqlite.execute("PRAGMA foreign_keys = ON;")
        await self._sqlite.commit()
        LOGGER.info("Connected to SQLite: %s", location)

    async def close(self) -> None:
        if self._sqlite:
            await self._sqlite.close()
            self._sqlite = None
        if self._pg_pool:
            await self._pg_pool.close()
            self._pg_pool = None

    @asynccontextmanager
    async def _sqlite_cursor(
        self, query: str, params: Sequence[Any] | None, *, commit: bool = False
    ) -> AsyncIterator[aiosqlite.Cursor]:
        if self._sqlite is None:
            raise RuntimeError("Database.connect() must be awaited before running queries")
        async with self._sqlite_lock:
            cursor = await self._sqlite.execute(query, tuple(params or ()))
            try:
                yield cursor
                if commit:
                    await self._sqlite.commit()
            finally:
                await cursor.close()

    @asynccontextmanager
    async def _pg_connection(self) -> AsyncIterator[asyncpg.Connection]:
        if self._pg_pool is None:
            raise RuntimeError("Database.connect() must be awaited before running queries")
        async with self._pg_pool.acquire() as conn:
            yield conn

    async def execute(self, query: str, params: Sequence[Any] | None = None) -> int:
        """Run a write statement and return the number of affected rows."""
        if self.driver == "sqlite":
            async with self._sqlite_cursor(query, params, commit=True) as cursor:
                return cursor.rowcount
        async with self._pg_connection() as conn:
            status = await conn.execute(_qmark_to_dollar(query), *(params or ()))
        return _rowcount_from_status(status)

    async def fetchone(self, query: str, params: Sequence[Any] | None = None) -> Row | None:
        if self.driver == "sqlite":
            async with self._sqlite_cursor(query, params) as cursor:
                row = await cursor.fetchone()
            return dict(row) if row is not None else None
        async with self._pg_connection() as conn:
            record = await conn.fetchrow(_qmark_to_dollar(query), *(params or ()))
        return dict(record) if record is not None else None

    async def fetchall(self, query: str, params: Sequence[Any] | None = None) -> list[Row]:
        if self.driver == "sqlite":
            async with self._sqlite_cursor(query, params) as cursor:
                rows = await cursor.fetchall()
            return [dict(row) for row in rows]
        async with self._pg_connection() as conn:
            records = await conn.fetch(_qmark_to_dollar(query), *(params or ()))
        return [dict(record) for record in records]

    async def executescript(self, sql_script: str) -> None:
        """Run a multi-statement script such as a migration file."""
        if self.driver == "sqlite":
            if self._sqlite is None:
                raise RuntimeError("Database.connect() must be awaited before running queries")
            async with self._sqlite_lock:
                await self._sqlite.executescript(sql_script)
                await self._sqlite.commit()
            return
        async with self._pg_connection() as conn:
            await conn.execute(sql_script)
