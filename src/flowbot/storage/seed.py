"""Load chatbot definitions from YAML into storage.

Example document::

    chatbots:
      - id: demo
        user_id: tenant-1
        channel: wa-main
        behavior_prompt: "Eres un asistente amable."
        knowledge:
          - category: horarios
            text: "Abrimos de 8 a 18."
        welcome:
          message: "¡Bienvenido!"
        flows:
          - keywords: [precio, precios]
            response: "Nuestros precios..."
        form:
          trigger_words: [registro]
          welcome_message: "Vamos a registrarte."
          success_message: "¡Registro exitoso!"
          fields:
            - {name: nombres, label: "¿Cuál es tu nombre?", validation_type: name}
            - {name: email, label: "¿Tu correo?", validation_type: email}
        blacklist: ["3001234567"]
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from flowbot.core.errors import ValidationError
from flowbot.core.text import normalize_phone
from flowbot.log import get_logger
from flowbot.storage.blacklist_repo import BlacklistRepository
from flowbot.storage.chatbot_repo import ChatbotRepository
from flowbot.storage.flow_repo import FlowRepository
from flowbot.storage.form_repo import FormRepository
from flowbot.storage.models import FormField, FormMessages
from flowbot.storage.prompt_repo import PromptRepository
from flowbot.storage.welcome_repo import WelcomeRepository

logger = get_logger(__name__)


@dataclass
class Repositories:
    chatbots: ChatbotRepository
    flows: FlowRepository
    welcomes: WelcomeRepository
    forms: FormRepository
    prompts: PromptRepository
    blacklist: BlacklistRepository


async def seed_from_file(path: str | Path, repos: Repositories, country_code: str = "") -> int:
    """Create every chatbot in the YAML file. Returns the number seeded."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    chatbots = data.get("chatbots", [])
    for entry in chatbots:
        await seed_chatbot(entry, repos, country_code)
    return len(chatbots)


async def seed_chatbot(entry: dict[str, Any], repos: Repositories, country_code: str = "") -> str:
    try:
        user_id = entry["user_id"]
        channel = entry["channel"]
    except KeyError as e:
        raise ValidationError(f"chatbot entry missing {e.args[0]!r}") from e

    chatbot = await repos.chatbots.create(user_id, channel, name=entry.get("name", ""), chatbot_id=entry.get("id"))

    if entry.get("behavior_prompt"):
        await repos.prompts.create_behavior_prompt(user_id, chatbot.id, entry["behavior_prompt"])
    for item in entry.get("knowledge", []):
        await repos.prompts.create_knowledge_prompt(
            user_id, chatbot.id, item["text"], category=item.get("category", "general")
        )

    welcome = entry.get("welcome")
    if welcome:
        await repos.welcomes.create(user_id, chatbot.id, welcome["message"], welcome.get("media_url"))

    for position, flow in enumerate(entry.get("flows", [])):
        await repos.flows.create(
            user_id,
            chatbot.id,
            keywords=flow["keywords"],
            response_text=flow.get("response", ""),
            media_url=flow.get("media_url"),
            position=flow.get("position", position),
        )

    form = entry.get("form")
    if form:
        fields = [
            FormField(
                name=f["name"],
                label=f["label"],
                validation_type=f.get("validation_type", "text"),
                required=f.get("required", True),
                order_index=f.get("order_index", i),
            )
            for i, f in enumerate(form.get("fields", []))
        ]
        await repos.forms.set_form_fields(chatbot.id, fields)
        await repos.forms.set_form_messages(
            chatbot.id,
            FormMessages(
                welcome_message=form.get("welcome_message", ""),
                success_message=form.get("success_message", ""),
                cancel_message=form.get("cancel_message", ""),
                trigger_words=tuple(form.get("trigger_words", [])),
            ),
        )

    for phone in entry.get("blacklist", []):
        await repos.blacklist.add(user_id, chatbot.id, normalize_phone(str(phone), country_code))

    logger.info("chatbot_seeded", chatbot_id=chatbot.id, channel=channel)
    return chatbot.id
