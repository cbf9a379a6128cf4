"""Client records captured by data-collection forms."""

from __future__ import annotations

import json
from typing import Any

from flowbot.log import get_logger
from flowbot.storage.database import Database
from flowbot.storage.models import ClientRecord

logger = get_logger(__name__)


class ClientDataRepository:
    def __init__(self, db: Database):
        self._db = db

    async def save_form_submission(self, user_id: str, chatbot_id: str, answers: dict[str, Any]) -> ClientRecord:
        """Persist *answers*; ``phone_number`` is split out into its own column."""
        form_data = dict(answers)
        phone_number = str(form_data.pop("phone_number", ""))
        record_id, _ = await self._db.execute(
            """INSERT INTO client_data (user_id, chatbot_id, phone_number, form_data_json)
               VALUES (?, ?, ?, ?)""",
            (user_id, chatbot_id, phone_number, json.dumps(form_data, ensure_ascii=False)),
        )
        logger.info("client_data_saved", chatbot_id=chatbot_id, record_id=record_id, fields=len(form_data))
        return ClientRecord(
            id=record_id,
            user_id=user_id,
            chatbot_id=chatbot_id,
            phone_number=phone_number,
            form_data=form_data,
        )

    async def get_client_by_phone(self, chatbot_id: str, phone_number: str) -> ClientRecord | None:
        row = await self._db.fetch_one(
            """SELECT * FROM client_data
               WHERE chatbot_id = ? AND phone_number = ?
               ORDER BY id DESC
               LIMIT 1""",
            (chatbot_id, phone_number),
        )
        if row is None:
            return None
        return ClientRecord(
            id=row["id"],
            user_id=row["user_id"],
            chatbot_id=row["chatbot_id"],
            phone_number=row["phone_number"],
            form_data=json.loads(row["form_data_json"]),
        )
