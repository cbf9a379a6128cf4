"""Chat history: context window for the AI and a semantic-search corpus."""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from flowbot.core.text import strip_channel_suffix
from flowbot.log import get_logger
from flowbot.storage.database import Database
from flowbot.storage.models import ChatHistoryEntry

logger = get_logger(__name__)

Embedder = Callable[[str], Awaitable[list[float]]]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class ChatHistoryRepository:
    """Append-only message/response pairs keyed by chatbot and contact."""

    def __init__(self, db: Database, embedder: Optional[Embedder] = None):
        self._db = db
        self._embedder = embedder

    async def append(
        self, user_id: str, chatbot_id: str, contact: str, message: str, response: str
    ) -> Optional[int]:
        """Save one exchange. Blank messages are skipped and return None."""
        if not message or not message.strip():
            logger.debug("history_skip_empty", chatbot_id=chatbot_id)
            return None

        phone = strip_channel_suffix(contact)
        embedding = None
        if self._embedder is not None:
            try:
                embedding = await self._embedder(message)
            except Exception as e:
                logger.warning("history_embedding_failed", chatbot_id=chatbot_id, error=str(e))

        entry_id, _ = await self._db.execute(
            """INSERT INTO chat_history
               (user_id, chatbot_id, phone_number, message, response, embedding_json)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                user_id,
                chatbot_id,
                phone,
                message,
                response or "",
                json.dumps(embedding) if embedding is not None else None,
            ),
        )
        logger.debug("history_saved", chatbot_id=chatbot_id, phone=phone, entry_id=entry_id)
        return entry_id

    async def get_recent(self, chatbot_id: str, contact: str, limit: int = 10) -> list[ChatHistoryEntry]:
        """Most recent *limit* entries for the contact, oldest first."""
        rows = await self._db.fetch_all(
            """SELECT * FROM chat_history
               WHERE chatbot_id = ? AND phone_number = ?
               ORDER BY id DESC
               LIMIT ?""",
            (chatbot_id, strip_channel_suffix(contact), limit),
        )
        return [self._row_to_entry(row) for row in reversed(rows)]

    async def find_similar(
        self, chatbot_id: str, query: str, limit: int = 5, threshold: float = 0.7
    ) -> list[tuple[ChatHistoryEntry, float]]:
        """Entries whose stored embedding is close to *query*, best first."""
        if self._embedder is None:
            return []
        query_embedding = await self._embedder(query)
        rows = await self._db.fetch_all(
            "SELECT * FROM chat_history WHERE chatbot_id = ? AND embedding_json IS NOT NULL",
            (chatbot_id,),
        )
        scored = []
        for row in rows:
            entry = self._row_to_entry(row)
            score = cosine_similarity(query_embedding, entry.embedding or [])
            if score >= threshold:
                scored.append((entry, score))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:limit]

    async def purge_older_than(self, days: int) -> int:
        _, rowcount = await self._db.execute(
            "DELETE FROM chat_history WHERE created_at < strftime('%Y-%m-%dT%H:%M:%f', 'now', ?)",
            (f"-{int(days)} days",),
        )
        if rowcount:
            logger.info("history_purged", removed=rowcount, days=days)
        return rowcount

    @staticmethod
    def _row_to_entry(row) -> ChatHistoryEntry:
        embedding = json.loads(row["embedding_json"]) if row["embedding_json"] else None
        return ChatHistoryEntry(
            id=row["id"],
            user_id=row["user_id"],
            chatbot_id=row["chatbot_id"],
            phone_number=row["phone_number"],
            message=row["message"],
            response=row["response"],
            embedding=embedding,
            timestamp=datetime.fromisoformat(row["created_at"]).replace(tzinfo=timezone.utc),
        )
