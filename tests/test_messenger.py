import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi.testclient import TestClient

from flowbot.config import ChannelConfig, GateConfig
from flowbot.messenger.base import MessengerAdapter
from flowbot.messenger.gate import InboundGate
from flowbot.messenger.models import OutgoingMessage
from flowbot.messenger.whatsapp import WhatsAppCloudAdapter, parse_webhook_payload


class DummyAdapter(MessengerAdapter):
    async def start(self):
        pass

    async def stop(self):
        await self.drain()

    async def send_message(self, message):
        pass

    @property
    def platform_name(self):
        return "dummy"


@pytest.fixture
def adapter(clock):
    return DummyAdapter(ChannelConfig(id="wa-main", platform="dummy"), InboundGate(GateConfig(), clock=clock))


def _payload(*messages, contacts=()):
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "changes": [
                    {
                        "field": "messages",
                        "value": {"contacts": list(contacts), "messages": list(messages)},
                    }
                ]
            }
        ],
    }


def _text(msg_id, body, sender="521234567890"):
    return {"from": sender, "id": msg_id, "timestamp": "1700000000", "type": "text", "text": {"body": body}}


class TestDispatch:
    async def test_same_contact_runs_in_order(self, adapter, make_message):
        events = []

        async def handler(message):
            events.append(("start", message.text))
            await asyncio.sleep(0.01)
            events.append(("end", message.text))

        adapter.on_message(handler)
        adapter._dispatch(make_message("uno", message_id="1"))
        adapter._dispatch(make_message("dos", message_id="2"))
        await adapter.drain()
        assert events == [("start", "uno"), ("end", "uno"), ("start", "dos"), ("end", "dos")]
        assert adapter._contact_locks == {}

    async def test_different_contacts_overlap(self, adapter, make_message):
        started = []
        release = asyncio.Event()

        async def handler(message):
            started.append(message.contact_id)
            await release.wait()

        adapter.on_message(handler)
        adapter._dispatch(make_message("hola", contact="1", message_id="a"))
        adapter._dispatch(make_message("hola", contact="2", message_id="b"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert sorted(started) == ["1", "2"]
        release.set()
        await adapter.drain()

    async def test_gate_drops_duplicates(self, adapter, make_message):
        seen = []

        async def handler(message):
            seen.append(message.message_id)

        adapter.on_message(handler)
        assert adapter._dispatch(make_message("hola", message_id="1")) is not None
        assert adapter._dispatch(make_message("hola", message_id="1")) is None
        await adapter.drain()
        assert seen == ["1"]

    async def test_handler_error_is_contained(self, adapter, make_message):
        async def handler(message):
            raise RuntimeError("boom")

        adapter.on_message(handler)
        task = adapter._dispatch(make_message("hola", message_id="1"))
        await task
        assert task.exception() is None

    async def test_no_callback_drops(self, adapter, make_message):
        assert adapter._dispatch(make_message("hola")) is None


class TestParseWebhook:
    def test_text_and_audio_kept(self):
        payload = _payload(
            _text("m1", "hola"),
            {"from": "521234567890", "id": "m2", "type": "audio", "audio": {"id": "media-1", "voice": True}},
            {"from": "521234567890", "id": "m3", "type": "sticker"},
        )
        assert [m.id for m in parse_webhook_payload(payload)] == ["m1", "m2"]

    def test_status_only_payload(self):
        payload = {"entry": [{"changes": [{"value": {"statuses": [{"id": "x"}]}}]}]}
        assert parse_webhook_payload(payload) == []

    def test_malformed_payload(self):
        assert parse_webhook_payload({"entry": "nope"}) == []


def _cloud_adapter(clock, handler=None):
    config = ChannelConfig(
        id="wa-main",
        platform="whatsapp",
        token="tok",
        phone_number_id="555",
        verify_token="secret",
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler)) if handler else None
    return WhatsAppCloudAdapter(config, InboundGate(GateConfig(), clock=clock), client=client)


class TestWhatsAppWebhook:
    def test_verify_handshake(self, clock):
        client = TestClient(_cloud_adapter(clock).app)
        ok = client.get(
            "/webhook", params={"hub.mode": "subscribe", "hub.verify_token": "secret", "hub.challenge": "42"}
        )
        assert ok.status_code == 200 and ok.text == "42"
        bad = client.get(
            "/webhook", params={"hub.mode": "subscribe", "hub.verify_token": "wrong", "hub.challenge": "42"}
        )
        assert bad.status_code == 403

    def test_post_acknowledges(self, clock):
        client = TestClient(_cloud_adapter(clock).app)
        response = client.post("/webhook", json={"object": "whatsapp_business_account", "entry": []})
        assert response.json() == {"status": "ok"}

    async def test_payload_dispatched_with_display_name(self, clock):
        adapter = _cloud_adapter(clock)
        received = []

        async def handler(message):
            received.append(message)

        adapter.on_message(handler)
        await adapter.handle_payload(
            _payload(_text("m1", "hola"), contacts=[{"wa_id": "521234567890", "profile": {"name": "Ana"}}])
        )
        await adapter.drain()
        [message] = received
        assert (message.contact_id, message.text, message.display_name) == ("521234567890", "hola", "Ana")

    async def test_audio_downloaded(self, clock):
        def graph(request):
            if request.url.path.endswith("/media-1"):
                return httpx.Response(200, json={"url": "https://lookaside.test/blob"})
            return httpx.Response(200, content=b"OggS")

        adapter = _cloud_adapter(clock, graph)
        received = []

        async def handler(message):
            received.append(message)

        adapter.on_message(handler)
        await adapter.handle_payload(
            _payload({"from": "521234567890", "id": "m2", "type": "audio", "audio": {"id": "media-1"}})
        )
        await adapter.drain()
        assert received[0].audio.data == b"OggS"


class TestWhatsAppSend:
    async def _send(self, clock, message):
        sent = []

        def graph(request):
            sent.append(json.loads(request.content))
            return httpx.Response(200, json={"messages": [{"id": "wamid"}]})

        await _cloud_adapter(clock, graph).send_message(message)
        return sent[0]

    async def test_text(self, clock):
        body = await self._send(clock, OutgoingMessage(chat_id="521234567890", text="hola"))
        assert body["type"] == "text" and body["text"] == {"body": "hola"}

    async def test_image_with_caption(self, clock):
        body = await self._send(
            clock,
            OutgoingMessage(chat_id="1", text="mira", media_url="https://x.test/p.png", media_type="image"),
        )
        assert body["image"] == {"link": "https://x.test/p.png", "caption": "mira"}

    async def test_audio_link_has_no_caption(self, clock):
        body = await self._send(
            clock, OutgoingMessage(chat_id="1", text="x", media_url="https://x.test/a.mp3", media_type="audio")
        )
        assert body["audio"] == {"link": "https://x.test/a.mp3"}

    async def test_error_status_raises(self, clock):
        adapter = _cloud_adapter(clock, lambda request: httpx.Response(500))
        with pytest.raises(httpx.HTTPStatusError):
            await adapter.send_message(OutgoingMessage(chat_id="1", text="hola"))


class TestTelegram:
    def _adapter(self, clock):
        from flowbot.messenger.telegram import TelegramAdapter

        adapter = TelegramAdapter(
            ChannelConfig(id="tg-main", platform="telegram", token="t"), InboundGate(GateConfig(), clock=clock)
        )
        adapter._app = SimpleNamespace(bot=AsyncMock())
        return adapter

    async def test_text_and_media_routing(self, clock):
        adapter = self._adapter(clock)
        bot = adapter._app.bot
        await adapter.send_message(OutgoingMessage(chat_id="42", text="hola"))
        await adapter.send_message(
            OutgoingMessage(chat_id="42", text="mira", media_url="https://x.test/p.png", media_type="image")
        )
        bot.send_message.assert_awaited_once_with(chat_id=42, text="hola")
        bot.send_photo.assert_awaited_once_with(chat_id=42, photo="https://x.test/p.png", caption="mira")

    async def test_voice_reply_from_file(self, clock, tmp_path):
        adapter = self._adapter(clock)
        path = tmp_path / "reply.ogg"
        path.write_bytes(b"OggS")
        await adapter.send_message(OutgoingMessage(chat_id="42", media_path=str(path), media_type="audio", ptt=True))
        adapter._app.bot.send_voice.assert_awaited_once()

    async def test_update_dispatched(self, clock):
        adapter = self._adapter(clock)
        received = []

        async def handler(message):
            received.append(message)

        adapter.on_message(handler)
        update = SimpleNamespace(
            message=SimpleNamespace(
                chat_id=42,
                message_id=7,
                text="hola",
                caption=None,
                voice=None,
                audio=None,
                date=None,
                from_user=SimpleNamespace(full_name="Ana"),
            )
        )
        await adapter._on_update(update, None)
        await adapter.drain()
        [message] = received
        assert (message.contact_id, message.message_id, message.display_name) == ("42", "42:7", "Ana")
