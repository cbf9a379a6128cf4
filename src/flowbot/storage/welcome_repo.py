"""Welcome greetings and per-contact send tracking."""

from __future__ import annotations

import time
from dataclasses import asdict
from typing import Any, Callable, Optional

from flowbot.cache.response_cache import ResponseCache
from flowbot.core.errors import ValidationError
from flowbot.log import get_logger
from flowbot.storage.database import Database
from flowbot.storage.models import Welcome

logger = get_logger(__name__)

ACTIVE_WELCOME_KEY = "active_welcome"
_UPDATABLE = frozenset({"message", "media_url", "is_active"})


def _tracking_scope(welcome_id: int) -> str:
    return f"welcome:{welcome_id}"


class WelcomeRepository:
    """A chatbot has at most one active welcome.

    Tracking rows gate re-sending: a contact gets the greeting once per
    *window_seconds*. A cache entry mirrors an unexpired row so the check
    does not hit storage on every message.
    """

    def __init__(
        self,
        db: Database,
        cache: ResponseCache,
        window_seconds: int = 24 * 60 * 60,
        tracking_ttl: int = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ):
        self._db = db
        self._cache = cache
        self._window = window_seconds
        self._tracking_ttl = tracking_ttl
        self._clock = clock

    async def create(
        self, user_id: str, chatbot_id: str, message: str, media_url: Optional[str] = None
    ) -> Welcome:
        if not message.strip():
            raise ValidationError("welcome message cannot be empty")
        await self._db.execute(
            "UPDATE welcomes SET is_active = 0 WHERE chatbot_id = ? AND is_active = 1", (chatbot_id,)
        )
        welcome_id, _ = await self._db.execute(
            "INSERT INTO welcomes (chatbot_id, user_id, message, media_url, is_active) VALUES (?, ?, ?, ?, 1)",
            (chatbot_id, user_id, message, media_url),
        )
        await self._cache.delete(chatbot_id, ACTIVE_WELCOME_KEY)
        return Welcome(
            id=welcome_id, chatbot_id=chatbot_id, user_id=user_id, message=message, media_url=media_url
        )

    async def get_active_welcome(self, chatbot_id: str) -> Welcome | None:
        cached = await self._cache.get(chatbot_id, ACTIVE_WELCOME_KEY)
        if cached is not None:
            return Welcome(**cached)

        row = await self._db.fetch_one(
            """SELECT * FROM welcomes
               WHERE chatbot_id = ? AND is_active = 1
               ORDER BY id DESC
               LIMIT 1""",
            (chatbot_id,),
        )
        if row is None:
            return None
        welcome = self._row_to_welcome(row)
        await self._cache.set(chatbot_id, ACTIVE_WELCOME_KEY, asdict(welcome))
        return welcome

    async def get(self, welcome_id: int) -> Welcome | None:
        row = await self._db.fetch_one("SELECT * FROM welcomes WHERE id = ?", (welcome_id,))
        return self._row_to_welcome(row) if row else None

    async def update(self, welcome_id: int, user_id: str, **updates: Any) -> Welcome | None:
        unknown = set(updates) - _UPDATABLE
        if unknown:
            raise ValidationError(f"cannot update welcome fields: {', '.join(sorted(unknown))}")
        if not updates:
            return await self.get(welcome_id)

        columns = [f"{name} = ?" for name in updates]
        params = [int(v) if isinstance(v, bool) else v for v in updates.values()]
        _, rowcount = await self._db.execute(
            f"UPDATE welcomes SET {', '.join(columns)} WHERE id = ? AND user_id = ?",
            (*params, welcome_id, user_id),
        )
        if rowcount == 0:
            return None
        welcome = await self.get(welcome_id)
        if welcome is not None:
            await self._cache.delete(welcome.chatbot_id, ACTIVE_WELCOME_KEY)
        return welcome

    async def delete(self, welcome_id: int, user_id: str) -> bool:
        welcome = await self.get(welcome_id)
        _, rowcount = await self._db.execute(
            "DELETE FROM welcomes WHERE id = ? AND user_id = ?", (welcome_id, user_id)
        )
        if welcome is not None:
            await self._cache.delete(welcome.chatbot_id, ACTIVE_WELCOME_KEY)
            await self._cache.clear_pattern(_tracking_scope(welcome_id))
        return rowcount > 0

    async def track_welcome_sent(self, welcome: Welcome, contact: str) -> bool:
        """Check-and-mark. True means the caller should send the greeting now.

        Storage errors propagate; the caller decides the fallback.
        """
        scope = _tracking_scope(welcome.id)
        key = f"sent:{contact}"
        if await self._cache.get(scope, key):
            return False

        now = self._clock()
        row = await self._db.fetch_one(
            """SELECT expires_at FROM welcome_tracking
               WHERE welcome_id = ? AND phone_number = ? AND user_id = ? AND expires_at > ?
               ORDER BY expires_at DESC
               LIMIT 1""",
            (welcome.id, contact, welcome.user_id, now),
        )
        if row is not None:
            await self._cache.set(scope, key, True, ttl=self._mirror_ttl(row["expires_at"] - now))
            return False

        await self._db.execute(
            """INSERT INTO welcome_tracking (welcome_id, user_id, phone_number, sent_at, expires_at)
               VALUES (?, ?, ?, ?, ?)""",
            (welcome.id, welcome.user_id, contact, now, now + self._window),
        )
        await self._cache.set(scope, key, True, ttl=self._mirror_ttl(self._window))
        return True

    async def purge_expired_tracking(self) -> int:
        _, rowcount = await self._db.execute(
            "DELETE FROM welcome_tracking WHERE expires_at <= ?", (self._clock(),)
        )
        if rowcount:
            logger.info("welcome_tracking_purged", removed=rowcount)
        return rowcount

    def _mirror_ttl(self, remaining: float) -> int:
        # never outlive the tracking row itself
        return max(1, int(min(remaining, self._tracking_ttl)))

    @staticmethod
    def _row_to_welcome(row) -> Welcome:
        return Welcome(
            id=row["id"],
            chatbot_id=row["chatbot_id"],
            user_id=row["user_id"],
            message=row["message"],
            media_url=row["media_url"],
            is_active=bool(row["is_active"]),
        )
