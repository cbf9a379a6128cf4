"""Data-collection form definitions: ordered fields plus message templates."""

from __future__ import annotations

import json
from typing import Optional

import aiosqlite

from flowbot.core.errors import DatabaseError
from flowbot.core.text import normalize_text
from flowbot.log import get_logger
from flowbot.storage.database import Database
from flowbot.storage.models import FormConfig, FormField, FormMessages

logger = get_logger(__name__)


class FormRepository:
    def __init__(self, db: Database):
        self._db = db

    async def set_form_fields(self, chatbot_id: str, fields: list[FormField]) -> None:
        """Replace the chatbot's field list."""
        try:
            async with self._db.acquire() as conn:
                await conn.execute("DELETE FROM form_fields WHERE chatbot_id = ?", (chatbot_id,))
                await conn.executemany(
                    """INSERT INTO form_fields
                       (chatbot_id, field_name, field_label, validation_type, is_required, order_index)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    [
                        (chatbot_id, f.name, f.label, f.validation_type, int(f.required), f.order_index)
                        for f in fields
                    ],
                )
                await conn.commit()
        except aiosqlite.Error as e:
            raise DatabaseError(str(e)) from e
        logger.info("form_fields_set", chatbot_id=chatbot_id, count=len(fields))

    async def set_form_messages(self, chatbot_id: str, messages: FormMessages) -> None:
        content = {
            "welcome_message": messages.welcome_message,
            "success_message": messages.success_message,
            "cancel_message": messages.cancel_message,
            "trigger_words": list(messages.trigger_words),
        }
        await self._db.execute(
            """INSERT INTO form_messages (chatbot_id, content_json, is_active)
               VALUES (?, ?, 1)
               ON CONFLICT(chatbot_id)
               DO UPDATE SET content_json = excluded.content_json, is_active = 1,
                             updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')""",
            (chatbot_id, json.dumps(content, ensure_ascii=False)),
        )

    async def get_form_fields(self, chatbot_id: str) -> list[FormField]:
        rows = await self._db.fetch_all(
            "SELECT * FROM form_fields WHERE chatbot_id = ? ORDER BY order_index ASC, id ASC",
            (chatbot_id,),
        )
        return [
            FormField(
                name=row["field_name"],
                label=row["field_label"],
                validation_type=row["validation_type"],
                required=bool(row["is_required"]),
                order_index=row["order_index"],
            )
            for row in rows
        ]

    async def get_form_messages(self, chatbot_id: str) -> Optional[FormMessages]:
        row = await self._db.fetch_one(
            "SELECT content_json FROM form_messages WHERE chatbot_id = ? AND is_active = 1",
            (chatbot_id,),
        )
        if row is None:
            return None
        content = json.loads(row["content_json"])
        return FormMessages(
            welcome_message=content.get("welcome_message", ""),
            success_message=content.get("success_message", ""),
            cancel_message=content.get("cancel_message", ""),
            trigger_words=tuple(content.get("trigger_words", [])),
        )

    async def get_form_trigger_config(self, chatbot_id: str) -> Optional[FormConfig]:
        """Full form config, or None when triggers or fields are missing."""
        messages = await self.get_form_messages(chatbot_id)
        fields = await self.get_form_fields(chatbot_id)
        if messages is None or not messages.trigger_words or not fields:
            logger.debug("form_config_incomplete", chatbot_id=chatbot_id)
            return None
        triggers = tuple(t for t in (normalize_text(w) for w in messages.trigger_words) if t)
        return FormConfig(
            trigger_words=triggers,
            fields=tuple(sorted(fields, key=lambda f: f.order_index)),
            messages=messages,
        )
