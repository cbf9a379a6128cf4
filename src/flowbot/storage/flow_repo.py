"""Keyword flows with a per-chatbot read-through cache."""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any, Optional

from flowbot.cache.response_cache import ResponseCache
from flowbot.core.errors import ValidationError
from flowbot.log import get_logger
from flowbot.storage.database import Database
from flowbot.storage.models import Flow

logger = get_logger(__name__)

ACTIVE_FLOWS_KEY = "active_flows"
_UPDATABLE = frozenset({"keywords", "response_text", "media_url", "position", "is_active"})


def _validate_flow(keywords: Optional[list[str]], response_text: Optional[str], media_url: Optional[str]) -> None:
    errors = []
    if keywords is not None and not [k for k in keywords if k and k.strip()]:
        errors.append("at least one keyword is required")
    if response_text is not None and not response_text.strip() and not media_url:
        errors.append("a response text or media url is required")
    if media_url and not media_url.startswith(("http://", "https://", "/")):
        errors.append("media url must be absolute")
    if errors:
        raise ValidationError(", ".join(errors))


class FlowRepository:
    """CRUD over flows. Every write invalidates the chatbot's cached flow list."""

    def __init__(self, db: Database, cache: ResponseCache):
        self._db = db
        self._cache = cache

    async def create(
        self,
        user_id: str,
        chatbot_id: str,
        keywords: list[str],
        response_text: str,
        media_url: Optional[str] = None,
        position: int = 0,
    ) -> Flow:
        _validate_flow(keywords, response_text, media_url)
        flow_id, _ = await self._db.execute(
            """INSERT INTO flows (chatbot_id, user_id, keywords_json, response_text, media_url, position)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (chatbot_id, user_id, json.dumps(keywords, ensure_ascii=False), response_text, media_url, position),
        )
        await self._invalidate(chatbot_id)
        return Flow(
            id=flow_id,
            chatbot_id=chatbot_id,
            user_id=user_id,
            keywords=keywords,
            response_text=response_text,
            media_url=media_url,
            position=position,
        )

    async def get_active_flows(self, chatbot_id: str) -> list[Flow]:
        """Active flows in match order: ``position`` first, then creation."""
        cached = await self._cache.get(chatbot_id, ACTIVE_FLOWS_KEY)
        if cached is not None:
            return [Flow(**item) for item in cached]

        rows = await self._db.fetch_all(
            """SELECT * FROM flows
               WHERE chatbot_id = ? AND is_active = 1
               ORDER BY position ASC, id ASC""",
            (chatbot_id,),
        )
        flows = [self._row_to_flow(row) for row in rows]
        await self._cache.set(chatbot_id, ACTIVE_FLOWS_KEY, [asdict(f) for f in flows])
        return flows

    async def get(self, flow_id: int) -> Flow | None:
        row = await self._db.fetch_one("SELECT * FROM flows WHERE id = ?", (flow_id,))
        return self._row_to_flow(row) if row else None

    async def update(self, flow_id: int, user_id: str, **updates: Any) -> Flow | None:
        unknown = set(updates) - _UPDATABLE
        if unknown:
            raise ValidationError(f"cannot update flow fields: {', '.join(sorted(unknown))}")
        if {"keywords", "response_text", "media_url"} & set(updates):
            _validate_flow(updates.get("keywords"), updates.get("response_text"), updates.get("media_url"))
        if not updates:
            return await self.get(flow_id)

        columns = []
        params: list[Any] = []
        for name, value in updates.items():
            if name == "keywords":
                columns.append("keywords_json = ?")
                params.append(json.dumps(value, ensure_ascii=False))
            elif name == "is_active":
                columns.append("is_active = ?")
                params.append(int(bool(value)))
            else:
                columns.append(f"{name} = ?")
                params.append(value)

        _, rowcount = await self._db.execute(
            f"UPDATE flows SET {', '.join(columns)} WHERE id = ? AND user_id = ?",
            (*params, flow_id, user_id),
        )
        if rowcount == 0:
            return None
        flow = await self.get(flow_id)
        if flow is not None:
            await self._invalidate(flow.chatbot_id)
        return flow

    async def set_active(self, flow_id: int, user_id: str, is_active: bool) -> Flow | None:
        return await self.update(flow_id, user_id, is_active=is_active)

    async def delete(self, flow_id: int, user_id: str) -> bool:
        flow = await self.get(flow_id)
        _, rowcount = await self._db.execute(
            "DELETE FROM flows WHERE id = ? AND user_id = ?", (flow_id, user_id)
        )
        if flow is not None:
            await self._invalidate(flow.chatbot_id)
        return rowcount > 0

    async def _invalidate(self, chatbot_id: str) -> None:
        await self._cache.delete(chatbot_id, ACTIVE_FLOWS_KEY)
        logger.debug("flow_cache_invalidated", chatbot_id=chatbot_id)

    @staticmethod
    def _row_to_flow(row) -> Flow:
        return Flow(
            id=row["id"],
            chatbot_id=row["chatbot_id"],
            user_id=row["user_id"],
            keywords=json.loads(row["keywords_json"]),
            response_text=row["response_text"],
            media_url=row["media_url"],
            position=row["position"],
            is_active=bool(row["is_active"]),
        )
