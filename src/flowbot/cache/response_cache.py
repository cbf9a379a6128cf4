"""Scoped TTL cache for active-record lookups and AI responses.

Entries live in an in-process map and, when a database is attached, are
mirrored in the ``response_cache`` table so they survive restarts. Keys are
``(scope, key)`` pairs; the scope is a chatbot, channel or welcome id so
invalidation stays local to one tenant.
"""

from __future__ import annotations

import json
import time
from typing import TYPE_CHECKING, Any, Callable, Optional

from flowbot.core.policies import CACHE_FAILURE_IS_MISS
from flowbot.log import get_logger

if TYPE_CHECKING:
    from flowbot.storage.database import Database

logger = get_logger(__name__)


class ResponseCache:
    """Two-tier cache. A miss is never an error; backend failures read as misses."""

    def __init__(
        self,
        default_ttl: int = 300,
        db: Optional[Database] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._default_ttl = default_ttl
        self._db = db
        self._clock = clock
        self._entries: dict[tuple[str, str], tuple[Any, float]] = {}

    async def get(self, scope: str, key: str) -> Any | None:
        now = self._clock()
        entry = self._entries.get((scope, key))
        if entry is not None:
            value, expires_at = entry
            if expires_at > now:
                return value
            del self._entries[(scope, key)]

        if self._db is None:
            return None

        try:
            row = await self._db.fetch_one(
                "SELECT value_json, expires_at FROM response_cache WHERE scope = ? AND cache_key = ?",
                (scope, key),
            )
            if row is None:
                return None
            if row["expires_at"] <= now:
                await self._db.execute(
                    "DELETE FROM response_cache WHERE scope = ? AND cache_key = ?", (scope, key)
                )
                return None
            value = json.loads(row["value_json"])
        except Exception as e:
            if not CACHE_FAILURE_IS_MISS:
                raise
            logger.warning("cache_get_failed", scope=scope, key=key, error=str(e))
            return None

        self._entries[(scope, key)] = (value, row["expires_at"])
        return value

    async def set(self, scope: str, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + (self._default_ttl if ttl is None else ttl)
        self._entries[(scope, key)] = (value, expires_at)

        if self._db is None:
            return
        try:
            await self._db.execute(
                """INSERT INTO response_cache (scope, cache_key, value_json, expires_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(scope, cache_key)
                   DO UPDATE SET value_json = excluded.value_json, expires_at = excluded.expires_at""",
                (scope, key, json.dumps(value, ensure_ascii=False), expires_at),
            )
        except Exception as e:
            logger.warning("cache_set_failed", scope=scope, key=key, error=str(e))

    async def delete(self, scope: str, key: str) -> None:
        self._entries.pop((scope, key), None)
        if self._db is None:
            return
        try:
            await self._db.execute(
                "DELETE FROM response_cache WHERE scope = ? AND cache_key = ?", (scope, key)
            )
        except Exception as e:
            logger.warning("cache_delete_failed", scope=scope, key=key, error=str(e))

    async def clear_pattern(self, scope_prefix: str) -> int:
        """Drop every entry whose scope starts with *scope_prefix*."""
        doomed = [k for k in self._entries if k[0].startswith(scope_prefix)]
        for k in doomed:
            del self._entries[k]
        if self._db is not None:
            try:
                escaped = scope_prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
                await self._db.execute(
                    "DELETE FROM response_cache WHERE scope LIKE ? ESCAPE '\\'", (escaped + "%",)
                )
            except Exception as e:
                logger.warning("cache_clear_failed", scope_prefix=scope_prefix, error=str(e))
        return len(doomed)

    async def cleanup(self) -> int:
        """Remove expired entries from both tiers. Returns in-memory removals."""
        now = self._clock()
        expired = [k for k, (_, expires_at) in self._entries.items() if expires_at <= now]
        for k in expired:
            del self._entries[k]
        if self._db is not None:
            try:
                await self._db.execute("DELETE FROM response_cache WHERE expires_at <= ?", (now,))
            except Exception as e:
                logger.warning("cache_cleanup_failed", error=str(e))
        if expired:
            logger.debug("cache_cleanup", removed=len(expired))
        return len(expired)
