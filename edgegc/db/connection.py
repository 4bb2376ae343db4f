# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Relational store adapters.

Queries are written once with ``?`` placeholders and run unchanged on
SQLite (aiosqlite, used by tests and local runs) and PostgreSQL (asyncpg,
used in production). Every transaction owns its own connection so that
concurrent page workers never share one.
"""

import itertools
import re
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Protocol, Sequence

import aiosqlite
import structlog

from edgegc.exceptions import ConfigurationError

logger = structlog.get_logger()

Row = Dict[str, Any]


class Executor(Protocol):
    """Statement execution on a connection or inside a transaction."""

    async def fetch(self, sql: str, *args: Any) -> List[Row]:
        ...

    async def fetchval(self, sql: str, *args: Any) -> Any:
        ...

    async def execute(self, sql: str, *args: Any) -> int:
        """Execute a statement and return the number of affected rows."""
        ...


class Database(Executor, Protocol):
    """A relational store handle shared by all workers."""

    dialect: str

    def transaction(self) -> Any:
        """Async context manager yielding an Executor; commits on exit, rolls back on error."""
        ...

    async def close(self) -> None:
        ...


# ============================================================================
# SQLite
# ============================================================================


def _sqlite_params(args: Sequence[Any]) -> tuple:
    return tuple(
        value.isoformat(sep=" ") if isinstance(value, datetime) else value for value in args
    )


class _SQLiteExecutor:
    def __init__(self, conn: aiosqlite.Connection):
        self._conn = conn

    async def fetch(self, sql: str, *args: Any) -> List[Row]:
        async with self._conn.execute(sql, _sqlite_params(args)) as cursor:
            rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def fetchval(self, sql: str, *args: Any) -> Any:
        async with self._conn.execute(sql, _sqlite_params(args)) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def execute(self, sql: str, *args: Any) -> int:
        cursor = await self._conn.execute(sql, _sqlite_params(args))
        try:
            return cursor.rowcount
        finally:
            await cursor.close()


class SQLiteDatabase:
    """
    SQLite store opened per operation.

    Transactions start with BEGIN IMMEDIATE, so concurrent writers queue
    on the database lock (up to ``timeout`` seconds) instead of failing.
    """

    dialect = "sqlite"

    def __init__(self, path: Path | str, timeout: float = 30.0):
        self.path = Path(path)
        self.timeout = timeout

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(
            self.path, timeout=self.timeout, isolation_level=None
        ) as conn:
            conn.row_factory = aiosqlite.Row
            yield conn

    async def fetch(self, sql: str, *args: Any) -> List[Row]:
        async with self._connect() as conn:
            return await _SQLiteExecutor(conn).fetch(sql, *args)

    async def fetchval(self, sql: str, *args: Any) -> Any:
        async with self._connect() as conn:
            return await _SQLiteExecutor(conn).fetchval(sql, *args)

    async def execute(self, sql: str, *args: Any) -> int:
        async with self._connect() as conn:
            return await _SQLiteExecutor(conn).execute(sql, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_SQLiteExecutor]:
        async with self._connect() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield _SQLiteExecutor(conn)
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")

    async def close(self) -> None:
        # Connections are closed after every operation
        return None


# ============================================================================
# PostgreSQL
# ============================================================================

_PLACEHOLDER = re.compile(r"\?")


def to_postgres_placeholders(sql: str) -> str:
    """Rewrite ``?`` placeholders to asyncpg's ``$1, $2, ...`` style."""
    counter = itertools.count(1)
    return _PLACEHOLDER.sub(lambda _: f"${next(counter)}", sql)


def _rows_affected(status: str) -> int:
    # asyncpg returns command tags such as "DELETE 3" or "UPDATE 0"
    last = status.rsplit(" ", 1)[-1] if status else ""
    return int(last) if last.isdigit() else 0


class _PostgresExecutor:
    def __init__(self, conn: Any):
        self._conn = conn

    async def fetch(self, sql: str, *args: Any) -> List[Row]:
        rows = await self._conn.fetch(to_postgres_placeholders(sql), *args)
        return [dict(row) for row in rows]

    async def fetchval(self, sql: str, *args: Any) -> Any:
        return await self._conn.fetchval(to_postgres_placeholders(sql), *args)

    async def execute(self, sql: str, *args: Any) -> int:
        status = await self._conn.execute(to_postgres_placeholders(sql), *args)
        return _rows_affected(status)


class PostgresDatabase:
    """PostgreSQL store backed by an asyncpg connection pool."""

    dialect = "postgres"

    def __init__(self, pool: Any):
        self._pool = pool

    @classmethod
    async def connect(cls, url: str, max_connections: int = 10) -> "PostgresDatabase":
        import asyncpg

        pool = await asyncpg.create_pool(dsn=url, min_size=1, max_size=max_connections)
        return cls(pool)

    async def fetch(self, sql: str, *args: Any) -> List[Row]:
        async with self._pool.acquire() as conn:
            return await _PostgresExecutor(conn).fetch(sql, *args)

    async def fetchval(self, sql: str, *args: Any) -> Any:
        async with self._pool.acquire() as conn:
            return await _PostgresExecutor(conn).fetchval(sql, *args)

    async def execute(self, sql: str, *args: Any) -> int:
        async with self._pool.acquire() as conn:
            return await _PostgresExecutor(conn).execute(sql, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_PostgresExecutor]:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                yield _PostgresExecutor(conn)

    async def close(self) -> None:
        await self._pool.close()


async def connect_database(url: str, max_connections: int = 10) -> Database:
    """
    Open the relational store named by a URL.

    Args:
        url: ``postgresql://...``, ``postgres://...`` or ``sqlite:///path``
        max_connections: Pool size for PostgreSQL

    Returns:
        A Database adapter

    Raises:
        ConfigurationError: If the URL scheme is not supported
    """
    lower = url.lower()
    if lower.startswith("sqlite:///"):
        path = url[len("sqlite:///"):]
        logger.debug("database_opened", dialect="sqlite", path=path)
        return SQLiteDatabase(path)
    if lower.startswith(("postgres://", "postgresql://")):
        db = await PostgresDatabase.connect(url, max_connections)
        logger.debug("database_opened", dialect="postgres", max_connections=max_connections)
        return db

    from edgegc.errors import explain_unsupported_database_url

    raise ConfigurationError(explain_unsupported_database_url(url))
