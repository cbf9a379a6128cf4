"""SQLite connection pool with schema migration and reconnect backoff."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Iterable

import aiosqlite

from flowbot.core.errors import DatabaseError
from flowbot.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chatbots (
    id              TEXT    PRIMARY KEY,
    user_id         TEXT    NOT NULL,
    channel_ref     TEXT    NOT NULL,
    name            TEXT    NOT NULL DEFAULT '',
    is_active       INTEGER NOT NULL DEFAULT 1,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_chatbots_channel ON chatbots(channel_ref, is_active);

CREATE TABLE IF NOT EXISTS flows (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    chatbot_id      TEXT    NOT NULL REFERENCES chatbots(id) ON DELETE CASCADE,
    user_id         TEXT    NOT NULL,
    keywords_json   TEXT    NOT NULL DEFAULT '[]',
    response_text   TEXT    NOT NULL DEFAULT '',
    media_url       TEXT,
    position        INTEGER NOT NULL DEFAULT 0,
    is_active       INTEGER NOT NULL DEFAULT 1,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_flows_chatbot ON flows(chatbot_id, is_active, position);

CREATE TABLE IF NOT EXISTS welcomes (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    chatbot_id      TEXT    NOT NULL REFERENCES chatbots(id) ON DELETE CASCADE,
    user_id         TEXT    NOT NULL,
    message         TEXT    NOT NULL DEFAULT '',
    media_url       TEXT,
    is_active       INTEGER NOT NULL DEFAULT 1,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS welcome_tracking (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    welcome_id      INTEGER NOT NULL REFERENCES welcomes(id) ON DELETE CASCADE,
    user_id         TEXT    NOT NULL,
    phone_number    TEXT    NOT NULL,
    sent_at         REAL    NOT NULL,
    expires_at      REAL    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tracking_lookup
    ON welcome_tracking(welcome_id, phone_number, user_id, expires_at);

CREATE TABLE IF NOT EXISTS blacklist (
    chatbot_id      TEXT    NOT NULL,
    phone_number    TEXT    NOT NULL,
    user_id         TEXT    NOT NULL,
    is_active       INTEGER NOT NULL DEFAULT 1,
    updated_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now')),
    PRIMARY KEY (chatbot_id, phone_number)
);

CREATE TABLE IF NOT EXISTS form_fields (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    chatbot_id      TEXT    NOT NULL REFERENCES chatbots(id) ON DELETE CASCADE,
    field_name      TEXT    NOT NULL,
    field_label     TEXT    NOT NULL,
    validation_type TEXT    NOT NULL DEFAULT 'text',
    is_required     INTEGER NOT NULL DEFAULT 1,
    order_index     INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS form_messages (
    chatbot_id      TEXT    PRIMARY KEY REFERENCES chatbots(id) ON DELETE CASCADE,
    content_json    TEXT    NOT NULL,
    is_active       INTEGER NOT NULL DEFAULT 1,
    updated_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS client_data (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT    NOT NULL,
    chatbot_id      TEXT    NOT NULL,
    phone_number    TEXT    NOT NULL,
    form_data_json  TEXT    NOT NULL,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_client_phone ON client_data(chatbot_id, phone_number);

CREATE TABLE IF NOT EXISTS chat_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT    NOT NULL,
    chatbot_id      TEXT    NOT NULL,
    phone_number    TEXT    NOT NULL,
    message         TEXT    NOT NULL,
    response        TEXT    NOT NULL DEFAULT '',
    embedding_json  TEXT,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE INDEX IF NOT EXISTS idx_history_contact ON chat_history(chatbot_id, phone_number, id);

CREATE TABLE IF NOT EXISTS behavior_prompts (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    chatbot_id      TEXT    NOT NULL,
    user_id         TEXT    NOT NULL,
    prompt_text     TEXT    NOT NULL,
    is_active       INTEGER NOT NULL DEFAULT 1,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS knowledge_prompts (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    chatbot_id      TEXT    NOT NULL,
    user_id         TEXT    NOT NULL,
    prompt_text     TEXT    NOT NULL,
    category        TEXT    NOT NULL DEFAULT 'general',
    is_active       INTEGER NOT NULL DEFAULT 1,
    created_at      TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);

CREATE TABLE IF NOT EXISTS response_cache (
    scope           TEXT    NOT NULL,
    cache_key       TEXT    NOT NULL,
    value_json      TEXT    NOT NULL,
    expires_at      REAL    NOT NULL,
    PRIMARY KEY (scope, cache_key)
);
"""


class Database:
    """Async SQLite manager handing out pooled connections.

    Connections are opened lazily up to *pool_size*. A task asking for a
    connection while all are checked out waits until one is released; other
    tasks keep running.
    """

    def __init__(
        self,
        db_path: str,
        pool_size: int = 5,
        reconnect_attempts: int = 5,
        reconnect_max_delay: float = 30.0,
        reconnect_base_delay: float = 1.0,
    ):
        self._db_path = db_path
        self._pool_size = max(1, pool_size)
        self._reconnect_attempts = max(1, reconnect_attempts)
        self._reconnect_max_delay = reconnect_max_delay
        self._reconnect_base_delay = reconnect_base_delay
        self._idle: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue()
        self._connections: list[aiosqlite.Connection] = []
        self._opening = 0
        self._initialized = False

    async def initialize(self) -> None:
        """Open the first connection and run migrations."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = await self._open()
        try:
            await conn.executescript(SCHEMA_SQL)
            await conn.commit()
        except aiosqlite.Error as e:
            raise DatabaseError(f"schema migration failed: {e}") from e
        self._idle.put_nowait(conn)
        self._initialized = True
        logger.info("database_initialized", path=self._db_path, pool_size=self._pool_size)

    async def _connect_once(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self._db_path)
        conn.row_factory = aiosqlite.Row
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA foreign_keys=ON")
        await conn.execute("PRAGMA busy_timeout=5000")
        return conn

    async def _open(self) -> aiosqlite.Connection:
        """Open a connection, retrying with exponential backoff."""
        for attempt in range(1, self._reconnect_attempts + 1):
            try:
                conn = await self._connect_once()
            except (aiosqlite.Error, OSError) as e:
                if attempt == self._reconnect_attempts:
                    logger.error("database_connect_failed", attempts=attempt, error=str(e))
                    raise DatabaseError(f"could not connect to {self._db_path}: {e}") from e
                backoff = min(self._reconnect_base_delay * 2 ** (attempt - 1), self._reconnect_max_delay)
                logger.warning("database_connect_retry", attempt=attempt, backoff=backoff, error=str(e))
                await asyncio.sleep(backoff)
            else:
                self._connections.append(conn)
                return conn
        raise DatabaseError("unreachable")

    async def _checkout(self) -> aiosqlite.Connection:
        if not self._initialized:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        try:
            return self._idle.get_nowait()
        except asyncio.QueueEmpty:
            pass
        if len(self._connections) + self._opening < self._pool_size:
            self._opening += 1
            try:
                return await self._open()
            finally:
                self._opening -= 1
        return await self._idle.get()

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        """Check a connection out of the pool for the duration of the block."""
        conn = await self._checkout()
        try:
            yield conn
        except BaseException:
            # A failed block must not leave a half-done transaction for the next user.
            try:
                await conn.rollback()
            except aiosqlite.Error as e:
                logger.warning("database_rollback_failed", error=str(e))
            raise
        finally:
            self._idle.put_nowait(conn)

    async def fetch_all(self, sql: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        try:
            async with self.acquire() as conn:
                cursor = await conn.execute(sql, tuple(params))
                return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise DatabaseError(str(e)) from e

    async def fetch_one(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Row | None:
        try:
            async with self.acquire() as conn:
                cursor = await conn.execute(sql, tuple(params))
                return await cursor.fetchone()
        except aiosqlite.Error as e:
            raise DatabaseError(str(e)) from e

    async def execute(self, sql: str, params: Iterable[Any] = ()) -> tuple[int, int]:
        """Run a write statement and commit. Returns ``(lastrowid, rowcount)``."""
        try:
            async with self.acquire() as conn:
                cursor = await conn.execute(sql, tuple(params))
                await conn.commit()
                return cursor.lastrowid or 0, cursor.rowcount
        except aiosqlite.Error as e:
            raise DatabaseError(str(e)) from e

    @property
    def size(self) -> int:
        return len(self._connections)

    async def close(self) -> None:
        for conn in self._connections:
            await conn.close()
        self._connections.clear()
        self._idle = asyncio.Queue()
        if self._initialized:
            self._initialized = False
            logger.info("database_closed")
