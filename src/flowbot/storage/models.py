"""Data models for storage layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass
class Chatbot:
    id: str
    user_id: str
    channel_ref: str
    name: str = ""
    is_active: bool = True


@dataclass
class Flow:
    chatbot_id: str
    user_id: str
    keywords: list[str]
    response_text: str
    media_url: Optional[str] = None
    position: int = 0
    is_active: bool = True
    id: Optional[int] = None


@dataclass
class Welcome:
    chatbot_id: str
    user_id: str
    message: str
    media_url: Optional[str] = None
    is_active: bool = True
    id: Optional[int] = None


@dataclass(frozen=True)
class FormField:
    name: str
    label: str
    validation_type: str = "text"  # "text" | "name" | "number" | "email" | "phone"
    required: bool = True
    order_index: int = 0


@dataclass(frozen=True)
class FormMessages:
    welcome_message: str
    success_message: str
    cancel_message: str = ""
    trigger_words: tuple[str, ...] = ()


@dataclass(frozen=True)
class FormConfig:
    """Everything needed to run one data-collection form."""

    trigger_words: tuple[str, ...]  # already normalized
    fields: tuple[FormField, ...]  # sorted by order_index
    messages: FormMessages


@dataclass
class ChatHistoryEntry:
    user_id: str
    chatbot_id: str
    phone_number: str
    message: str
    response: str
    embedding: Optional[list[float]] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    id: Optional[int] = None


@dataclass
class ClientRecord:
    user_id: str
    chatbot_id: str
    phone_number: str
    form_data: dict[str, Any]
    id: Optional[int] = None
