"""WhatsApp Cloud API adapter: FastAPI webhook in, Graph API out via httpx."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import httpx
import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field, ValidationError

from flowbot.config import ChannelConfig
from flowbot.core.types import Platform
from flowbot.log import get_logger
from flowbot.messenger.base import MessengerAdapter
from flowbot.messenger.gate import InboundGate
from flowbot.messenger.models import Attachment, IncomingMessage, OutgoingMessage

logger = get_logger(__name__)

GRAPH_URL = "https://graph.facebook.com"


class TextBody(BaseModel):
    body: str = ""


class AudioBody(BaseModel):
    id: str
    mime_type: str = "audio/ogg"
    voice: bool = False


class CloudMessage(BaseModel):
    from_: str = Field(alias="from")
    id: str
    timestamp: str = "0"
    type: str
    text: Optional[TextBody] = None
    audio: Optional[AudioBody] = None


class CloudProfile(BaseModel):
    name: str = ""


class CloudContact(BaseModel):
    wa_id: str
    profile: CloudProfile = Field(default_factory=CloudProfile)


class CloudValue(BaseModel):
    contacts: list[CloudContact] = Field(default_factory=list)
    messages: list[CloudMessage] = Field(default_factory=list)


class CloudChange(BaseModel):
    field: str = ""
    value: CloudValue = Field(default_factory=CloudValue)


class CloudEntry(BaseModel):
    changes: list[CloudChange] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    object: str = ""
    entry: list[CloudEntry] = Field(default_factory=list)


def parse_webhook_payload(payload: dict[str, Any]) -> list[CloudMessage]:
    """Text and audio messages carried by one webhook call.

    Status callbacks and unsupported message types are skipped.
    """
    try:
        parsed = WebhookPayload.model_validate(payload)
    except ValidationError as e:
        logger.warning("whatsapp_payload_invalid", error=str(e))
        return []

    messages: list[CloudMessage] = []
    for entry in parsed.entry:
        for change in entry.changes:
            for msg in change.value.messages:
                if msg.type == "text" and msg.text is not None:
                    messages.append(msg)
                elif msg.type == "audio" and msg.audio is not None:
                    messages.append(msg)
                else:
                    logger.debug("whatsapp_message_skipped", type=msg.type, message_id=msg.id)
    return messages


def _display_names(payload: dict[str, Any]) -> dict[str, str]:
    names: dict[str, str] = {}
    for entry in WebhookPayload.model_validate(payload).entry:
        for change in entry.changes:
            for contact in change.value.contacts:
                names[contact.wa_id] = contact.profile.name
    return names


class WhatsAppCloudAdapter(MessengerAdapter):
    """Receives webhooks on ``webhook_path`` and replies through the Graph API."""

    def __init__(self, config: ChannelConfig, gate: InboundGate, client: httpx.AsyncClient | None = None):
        super().__init__(config, gate)
        self._client = client
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task[None] | None = None
        self.app = self._build_app()

    @property
    def platform_name(self) -> str:
        return Platform.WHATSAPP

    @property
    def _base_url(self) -> str:
        return f"{GRAPH_URL}/{self.config.api_version}"

    def _build_app(self) -> FastAPI:
        app = FastAPI(title=f"flowbot-{self.channel_id}")
        path = self.config.webhook_path

        @app.get(path)
        async def verify(
            mode: str = Query("", alias="hub.mode"),
            token: str = Query("", alias="hub.verify_token"),
            challenge: str = Query("", alias="hub.challenge"),
        ) -> PlainTextResponse:
            if mode == "subscribe" and token and token == self.config.verify_token:
                logger.info("whatsapp_webhook_verified", channel=self.channel_id)
                return PlainTextResponse(challenge)
            raise HTTPException(status_code=403, detail="verification failed")

        @app.post(path)
        async def receive(request: Request) -> dict[str, str]:
            try:
                payload = await request.json()
            except ValueError:
                raise HTTPException(status_code=400, detail="invalid JSON")
            await self.handle_payload(payload)
            return {"status": "ok"}

        return app

    async def handle_payload(self, payload: dict[str, Any]) -> None:
        messages = parse_webhook_payload(payload)
        if not messages:
            return
        names = _display_names(payload)
        for msg in messages:
            audio: Attachment | None = None
            if msg.type == "audio":
                try:
                    data = await self._download_media(msg.audio.id)
                except httpx.HTTPError as e:
                    logger.warning("whatsapp_audio_download_error", message_id=msg.id, error=str(e))
                    continue
                audio = Attachment(data=data, media_type=msg.audio.mime_type, filename="voice.ogg")

            self._dispatch(
                IncomingMessage(
                    platform=Platform.WHATSAPP,
                    channel_id=self.channel_id,
                    contact_id=msg.from_,
                    message_id=msg.id,
                    text=msg.text.body if msg.text else "",
                    timestamp=datetime.fromtimestamp(int(msg.timestamp or 0), tz=timezone.utc),
                    display_name=names.get(msg.from_, ""),
                    audio=audio,
                )
            )

    async def start(self) -> None:
        if not self.config.token or not self.config.phone_number_id:
            raise ValueError(f"WhatsApp token/phone_number_id not configured for channel '{self.channel_id}'")
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)

        server_config = uvicorn.Config(
            self.app,
            host=self.config.webhook_host,
            port=self.config.webhook_port,
            log_level="warning",
        )
        self._server = uvicorn.Server(server_config)
        self._server_task = asyncio.create_task(self._server.serve())
        logger.info(
            "whatsapp_adapter_started",
            channel=self.channel_id,
            host=self.config.webhook_host,
            port=self.config.webhook_port,
        )

    async def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._server_task is not None:
            await self._server_task
        await self.drain()
        if self._client is not None:
            await self._client.aclose()
        logger.info("whatsapp_adapter_stopped", channel=self.channel_id)

    async def send_message(self, message: OutgoingMessage) -> None:
        payload: dict[str, Any] = {"messaging_product": "whatsapp", "to": message.chat_id}

        if message.media_path:
            media_id = await self._upload_media(Path(message.media_path))
            payload.update({"type": "audio", "audio": {"id": media_id}})
        elif message.media_url:
            kind = message.media_type or "document"
            body: dict[str, Any] = {"link": message.media_url}
            if message.text and kind != "audio":
                body["caption"] = message.text
            payload.update({"type": kind, kind: body})
        else:
            payload.update({"type": "text", "text": {"body": message.text}})

        response = await self._http.post(
            f"{self._base_url}/{self.config.phone_number_id}/messages",
            headers=self._headers,
            json=payload,
        )
        response.raise_for_status()
        logger.debug("whatsapp_message_sent", to=message.chat_id, type=payload["type"])

    @property
    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("WhatsApp adapter not started")
        return self._client

    @property
    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.token}"}

    async def _download_media(self, media_id: str) -> bytes:
        meta = await self._http.get(f"{self._base_url}/{media_id}", headers=self._headers)
        meta.raise_for_status()
        media = await self._http.get(meta.json()["url"], headers=self._headers)
        media.raise_for_status()
        return media.content

    async def _upload_media(self, path: Path) -> str:
        response = await self._http.post(
            f"{self._base_url}/{self.config.phone_number_id}/media",
            headers=self._headers,
            data={"messaging_product": "whatsapp", "type": "audio/ogg"},
            files={"file": (path.name, path.read_bytes(), "audio/ogg")},
        )
        response.raise_for_status()
        return response.json()["id"]
