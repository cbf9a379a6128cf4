"""Canned-response delivery with media fallbacks."""

from __future__ import annotations

from typing import Optional

from flowbot.log import get_logger
from flowbot.messenger.models import OutgoingMessage, SendFn

logger = get_logger(__name__)

AUDIO_EXTENSIONS = (".mp3", ".ogg", ".opus", ".m4a", ".wav", ".aac", ".amr")
IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")
VIDEO_EXTENSIONS = (".mp4", ".3gp", ".mov")


def media_type_for(url: str) -> str:
    path = url.lower().split("?", 1)[0]
    if path.endswith(AUDIO_EXTENSIONS):
        return "audio"
    if path.endswith(IMAGE_EXTENSIONS):
        return "image"
    if path.endswith(VIDEO_EXTENSIONS):
        return "video"
    return "document"


async def deliver(send: SendFn, contact: str, text: str, media_url: Optional[str] = None) -> None:
    """Send *text* with optional media.

    Audio goes out first as its own message and the text follows. Other
    media carries the text as caption. If the media send fails the text is
    sent alone.
    """
    if not media_url:
        if text:
            await send(OutgoingMessage(chat_id=contact, text=text))
        return

    kind = media_type_for(media_url)
    if kind == "audio":
        try:
            await send(OutgoingMessage(chat_id=contact, media_url=media_url, media_type="audio"))
        except Exception as e:
            logger.warning("media_send_failed", contact=contact, media_url=media_url, error=str(e))
        if text:
            await send(OutgoingMessage(chat_id=contact, text=text))
        return

    try:
        await send(OutgoingMessage(chat_id=contact, text=text, media_url=media_url, media_type=kind))
    except Exception as e:
        logger.warning("media_send_failed", contact=contact, media_url=media_url, error=str(e))
        if text:
            await send(OutgoingMessage(chat_id=contact, text=text))
