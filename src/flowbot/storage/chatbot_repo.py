"""Chatbot lookups scoped by channel."""

from __future__ import annotations

import uuid
from dataclasses import asdict

from flowbot.cache.response_cache import ResponseCache
from flowbot.log import get_logger
from flowbot.storage.database import Database
from flowbot.storage.models import Chatbot

logger = get_logger(__name__)

ACTIVE_CHATBOT_KEY = "active_chatbot"


def _channel_scope(channel_ref: str) -> str:
    return f"channel:{channel_ref}"


class ChatbotRepository:
    def __init__(self, db: Database, cache: ResponseCache):
        self._db = db
        self._cache = cache

    async def create(self, user_id: str, channel_ref: str, name: str = "", chatbot_id: str | None = None) -> Chatbot:
        chatbot = Chatbot(
            id=chatbot_id or uuid.uuid4().hex[:12],
            user_id=user_id,
            channel_ref=channel_ref,
            name=name,
        )
        await self._db.execute(
            "INSERT INTO chatbots (id, user_id, channel_ref, name, is_active) VALUES (?, ?, ?, ?, 1)",
            (chatbot.id, chatbot.user_id, chatbot.channel_ref, chatbot.name),
        )
        await self._cache.delete(_channel_scope(channel_ref), ACTIVE_CHATBOT_KEY)
        logger.info("chatbot_created", chatbot_id=chatbot.id, channel=channel_ref)
        return chatbot

    async def get(self, chatbot_id: str) -> Chatbot | None:
        row = await self._db.fetch_one("SELECT * FROM chatbots WHERE id = ?", (chatbot_id,))
        return self._row_to_chatbot(row) if row else None

    async def get_active_for_channel(self, channel_ref: str) -> Chatbot | None:
        """Active chatbot bound to *channel_ref*; the newest one wins."""
        scope = _channel_scope(channel_ref)
        cached = await self._cache.get(scope, ACTIVE_CHATBOT_KEY)
        if cached is not None:
            return Chatbot(**cached)

        row = await self._db.fetch_one(
            """SELECT * FROM chatbots
               WHERE channel_ref = ? AND is_active = 1
               ORDER BY created_at DESC
               LIMIT 1""",
            (channel_ref,),
        )
        if row is None:
            return None
        chatbot = self._row_to_chatbot(row)
        await self._cache.set(scope, ACTIVE_CHATBOT_KEY, asdict(chatbot))
        return chatbot

    async def set_active(self, chatbot_id: str, is_active: bool) -> None:
        chatbot = await self.get(chatbot_id)
        if chatbot is None:
            return
        await self._db.execute(
            "UPDATE chatbots SET is_active = ? WHERE id = ?", (int(is_active), chatbot_id)
        )
        await self._cache.delete(_channel_scope(chatbot.channel_ref), ACTIVE_CHATBOT_KEY)

    @staticmethod
    def _row_to_chatbot(row) -> Chatbot:
        return Chatbot(
            id=row["id"],
            user_id=row["user_id"],
            channel_ref=row["channel_ref"],
            name=row["name"],
            is_active=bool(row["is_active"]),
        )
