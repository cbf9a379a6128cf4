"""Per-chatbot blocked contacts."""

from __future__ import annotations

from flowbot.log import get_logger
from flowbot.storage.database import Database

logger = get_logger(__name__)


class BlacklistRepository:
    """Phone numbers are stored already normalized (see ``core.text.normalize_phone``)."""

    def __init__(self, db: Database):
        self._db = db

    async def add(self, user_id: str, chatbot_id: str, phone_number: str) -> None:
        await self._db.execute(
            """INSERT INTO blacklist (chatbot_id, phone_number, user_id, is_active)
               VALUES (?, ?, ?, 1)
               ON CONFLICT(chatbot_id, phone_number)
               DO UPDATE SET is_active = 1, user_id = excluded.user_id,
                             updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')""",
            (chatbot_id, phone_number, user_id),
        )
        logger.info("blacklist_added", chatbot_id=chatbot_id, phone=phone_number)

    async def remove(self, chatbot_id: str, phone_number: str) -> bool:
        _, rowcount = await self._db.execute(
            """UPDATE blacklist
               SET is_active = 0, updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
               WHERE chatbot_id = ? AND phone_number = ?""",
            (chatbot_id, phone_number),
        )
        return rowcount > 0

    async def is_blacklisted(self, chatbot_id: str, phone_number: str) -> bool:
        row = await self._db.fetch_one(
            "SELECT is_active FROM blacklist WHERE chatbot_id = ? AND phone_number = ? AND is_active = 1",
            (chatbot_id, phone_number),
        )
        return row is not None
