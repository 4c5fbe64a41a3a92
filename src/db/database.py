# manages connections to the store db, provides helper methods internal to db package
from __future__ import annotations

import asyncio
import os.path
from contextlib import asynccontextmanager
from sqlite3 import Row
from typing import AsyncIterator, Iterable, List, Optional

import aiosqlite

from utils.config import Settings
from utils.errors import DatabaseClosed
from utils.logger import get_logger

_logger = get_logger(__name__)

_HERE = os.path.dirname(os.path.abspath(__file__))
DB_INIT_SCRIPTS = [
    os.path.join(_HERE, "prj-tables.sql"),
]


async def _init_db(conn: aiosqlite.Connection) -> None:
    for script in DB_INIT_SCRIPTS:
        if not os.path.exists(script) or os.path.getsize(script) == 0:
            continue
        _logger.info(f"Initializing database with script {os.path.basename(script)}...")
        with open(script, "r", encoding="utf-8") as f:
            await conn.executescript(f.read())


async def _table_exists(conn: aiosqlite.Connection, table_name: str) -> bool:
    row = await fetch_one(
        conn,
        """
        SELECT name
        FROM sqlite_master
        WHERE type = 'table'
          AND name = ?;
        """,
        (table_name,),
    )
    return row is not None


async def fetch_one(
    conn: aiosqlite.Connection, sql: str, params: Iterable = ()
) -> Optional[Row]:
    cur = await conn.execute(sql, tuple(params))
    row = await cur.fetchone()
    await cur.close()
    return row


async def fetch_all(
    conn: aiosqlite.Connection, sql: str, params: Iterable = ()
) -> List[Row]:
    cur = await conn.execute(sql, tuple(params))
    rows = await cur.fetchall()
    await cur.close()
    return list(rows)


class Database:
    """Handle on the store database passed to every store and service.

    ``open()`` creates the schema on first use and ``close()`` stops new
    connections from being handed out. Each operation gets its own
    connection from ``connect()``; writes that must be all-or-nothing go
    through ``transaction()``.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or Settings.from_env()
        self.path = self.settings.db_path
        self._opened = False
        self._closed = False
        self._init_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    async def open(self) -> "Database":
        if self._closed:
            raise DatabaseClosed(f"Database {self.path} has been closed.")
        if self._opened:
            return self
        async with self._init_lock:
            if self._opened:
                return self
            folder = os.path.dirname(self.path)
            if folder:
                os.makedirs(folder, exist_ok=True)
            conn = await self._raw_connect()
            try:
                if not await _table_exists(conn, "products"):
                    _logger.info(f"Initializing database at {self.path}...")
                    await _init_db(conn)
            finally:
                await conn.close()
            self._opened = True
        return self

    async def close(self) -> None:
        if not self._closed:
            _logger.debug(f"Closing database {self.path}")
        self._closed = True

    async def __aenter__(self) -> "Database":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _raw_connect(self) -> aiosqlite.Connection:
        # autocommit mode; transaction() issues BEGIN/COMMIT itself
        conn = await aiosqlite.connect(
            self.path, timeout=self.settings.db_timeout, isolation_level=None
        )
        conn.row_factory = Row
        await conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection with foreign keys enabled, opening the db if needed."""
        if self._closed:
            raise DatabaseClosed(f"Database {self.path} has been closed.")
        if not self._opened:
            await self.open()
        conn = await self._raw_connect()
        try:
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def use(
        self, conn: Optional[aiosqlite.Connection] = None
    ) -> AsyncIterator[aiosqlite.Connection]:
        """Reuse the caller's connection (and its transaction) or open a new one."""
        if conn is not None:
            yield conn
            return
        async with self.connect() as own:
            yield own

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield a connection holding the write lock for the whole block.

        Commits when the block finishes, rolls back and re-raises on any
        error. Concurrent writers wait on the lock, so reads made inside the
        block stay valid until commit.
        """
        async with self.connect() as conn:
            await conn.execute("BEGIN IMMEDIATE;")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK;")
                raise
            await conn.execute("COMMIT;")
