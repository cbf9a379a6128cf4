"""Behavior and knowledge prompts that steer the AI responder."""

from __future__ import annotations

from typing import Optional

from flowbot.core.errors import ValidationError
from flowbot.storage.database import Database


class PromptRepository:
    def __init__(self, db: Database):
        self._db = db

    async def create_behavior_prompt(self, user_id: str, chatbot_id: str, prompt_text: str) -> int:
        """Store a behavior prompt, replacing the active one."""
        if not prompt_text.strip():
            raise ValidationError("behavior prompt cannot be empty")
        await self._db.execute(
            "UPDATE behavior_prompts SET is_active = 0 WHERE chatbot_id = ? AND is_active = 1",
            (chatbot_id,),
        )
        prompt_id, _ = await self._db.execute(
            "INSERT INTO behavior_prompts (chatbot_id, user_id, prompt_text) VALUES (?, ?, ?)",
            (chatbot_id, user_id, prompt_text),
        )
        return prompt_id

    async def create_knowledge_prompt(
        self, user_id: str, chatbot_id: str, prompt_text: str, category: str = "general"
    ) -> int:
        if not prompt_text.strip():
            raise ValidationError("knowledge prompt cannot be empty")
        prompt_id, _ = await self._db.execute(
            "INSERT INTO knowledge_prompts (chatbot_id, user_id, prompt_text, category) VALUES (?, ?, ?, ?)",
            (chatbot_id, user_id, prompt_text, category),
        )
        return prompt_id

    async def get_behavior_prompt(self, chatbot_id: str) -> Optional[str]:
        row = await self._db.fetch_one(
            """SELECT prompt_text FROM behavior_prompts
               WHERE chatbot_id = ? AND is_active = 1
               ORDER BY id DESC
               LIMIT 1""",
            (chatbot_id,),
        )
        if row is None or not row["prompt_text"].strip():
            return None
        return row["prompt_text"]

    async def get_knowledge_prompts(self, chatbot_id: str) -> list[str]:
        rows = await self._db.fetch_all(
            """SELECT prompt_text FROM knowledge_prompts
               WHERE chatbot_id = ? AND is_active = 1
               ORDER BY id ASC""",
            (chatbot_id,),
        )
        return [row["prompt_text"] for row in rows]
