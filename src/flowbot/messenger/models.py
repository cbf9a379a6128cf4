"""Unified message models for all messenger platforms."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional

from flowbot.core.types import Platform


@dataclass(frozen=True, slots=True)
class Attachment:
    """Binary attachment downloaded from the platform (voice notes)."""

    data: bytes
    media_type: str  # e.g. "audio/ogg"
    filename: str = "attachment"


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    platform: Platform
    channel_id: str
    contact_id: str
    message_id: str
    text: str
    timestamp: datetime
    display_name: str = ""
    audio: Optional[Attachment] = None

    @property
    def is_audio(self) -> bool:
        return self.audio is not None


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    chat_id: str
    text: str = ""
    media_url: Optional[str] = None  # remote media, sent by link
    media_path: Optional[str] = None  # local file, uploaded
    media_type: Optional[str] = None  # "audio" | "image" | "video" | "document"
    ptt: bool = False  # deliver audio as a voice note


SendFn = Callable[[OutgoingMessage], Awaitable[None]]
