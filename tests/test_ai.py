from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import openai
import pytest

from flowbot.ai.client import AIResponse, AnthropicClient, OpenAIClient
from flowbot.ai.conversation import build_system_prompts, build_turns
from flowbot.config import AIConfig, AnthropicConfig, OpenAIConfig
from flowbot.core.errors import ExternalServiceError, FilesystemError, TranscriptionError
from flowbot.speech.openai_speech import Embedder, SpeechSynthesizer, Transcriber
from flowbot.storage.models import ChatHistoryEntry

from conftest import TENANT

CONTACT = "521234567890"


def _entry(message, response):
    return ChatHistoryEntry(
        user_id=TENANT, chatbot_id="bot-1", phone_number=CONTACT, message=message, response=response
    )


class TestConversation:
    def test_turns_alternate_and_end_with_current(self):
        turns = build_turns([_entry("hola", "¡Hola!"), _entry("precio", "")], "gracias")
        assert turns == [
            {"role": "user", "content": "hola"},
            {"role": "assistant", "content": "¡Hola!"},
            {"role": "user", "content": "precio"},
            {"role": "user", "content": "gracias"},
        ]

    def test_system_prompt_order(self):
        prompts = build_system_prompts("Eres amable.", ["Abrimos a las 9.", " ", "Cerramos a las 5."], "Sin emojis.")
        assert prompts == ["Eres amable.", "Abrimos a las 9.\n\nCerramos a las 5.", "Sin emojis."]

    def test_system_prompt_without_knowledge(self):
        assert build_system_prompts("Eres amable.", []) == ["Eres amable."]


class TestAIResponder:
    async def test_declines_without_behavior_prompt(self, responder, chatbot, prompts, history, outbox, ai_client):
        await prompts.create_knowledge_prompt(TENANT, chatbot.id, "Abrimos a las 9.")
        await history.append(TENANT, chatbot.id, CONTACT, "buenas", "¡Buenas!")
        assert await responder.respond(chatbot, CONTACT, "hola", outbox) is False
        ai_client.complete.assert_not_awaited()
        assert outbox.messages == []

    async def test_replies_with_context(self, responder, chatbot, prompts, history, outbox, ai_client):
        await prompts.create_behavior_prompt(TENANT, chatbot.id, "Eres amable.")
        await prompts.create_knowledge_prompt(TENANT, chatbot.id, "Abrimos a las 9.")
        await history.append(TENANT, chatbot.id, CONTACT, "buenas", "¡Buenas!")

        assert await responder.respond(chatbot, CONTACT, "hola", outbox) is True
        system_prompts, turns = ai_client.complete.await_args.args
        assert system_prompts == ["Eres amable.", "Abrimos a las 9."]
        assert turns[-1] == {"role": "user", "content": "hola"}
        assert turns[0] == {"role": "user", "content": "buenas"}
        assert outbox.texts == ["¡Hola! ¿En qué puedo ayudarte?"]
        assert [e.message for e in await history.get_recent(chatbot.id, CONTACT)] == ["buenas", "hola"]

    async def test_cache_hit_skips_provider(self, responder, chatbot, prompts, outbox, ai_client):
        await prompts.create_behavior_prompt(TENANT, chatbot.id, "Eres amable.")
        await responder.respond(chatbot, CONTACT, "Hola", outbox)
        await responder.respond(chatbot, "529999999999", "  HOLA ", outbox)
        assert ai_client.complete.await_count == 1
        assert len(outbox.texts) == 2

    async def test_apology_on_provider_error(self, responder, chatbot, prompts, outbox, ai_client, history):
        await prompts.create_behavior_prompt(TENANT, chatbot.id, "Eres amable.")
        ai_client.complete.side_effect = ExternalServiceError("anthropic", "overloaded")
        assert await responder.respond(chatbot, CONTACT, "hola", outbox) is True
        assert outbox.texts == ["Lo siento, no pude generar una respuesta en este momento."]
        assert await history.get_recent(chatbot.id, CONTACT) == []

    async def test_empty_reply_is_an_error(self, responder, chatbot, prompts, outbox, ai_client):
        await prompts.create_behavior_prompt(TENANT, chatbot.id, "Eres amable.")
        ai_client.complete.return_value = AIResponse(text="")
        await responder.respond(chatbot, CONTACT, "hola", outbox)
        assert outbox.texts == ["Lo siento, no pude generar una respuesta en este momento."]

    async def test_voice_reply_after_text_and_file_removed(
        self, responder, chatbot, prompts, outbox, ai_client, synthesizer, tmp_path
    ):
        await prompts.create_behavior_prompt(TENANT, chatbot.id, "Eres amable.")
        await responder.respond(chatbot, CONTACT, "hola", outbox, is_audio=True)

        text_msg, voice_msg = outbox.messages
        assert text_msg.text == "¡Hola! ¿En qué puedo ayudarte?"
        assert voice_msg.ptt is True and voice_msg.media_path.endswith("reply.ogg")
        assert not (tmp_path / "reply.ogg").exists()
        system_prompts = ai_client.complete.await_args.args[0]
        assert system_prompts[-1] == AIConfig().voice_instruction

    async def test_synthesis_failure_keeps_text(self, responder, chatbot, prompts, outbox, synthesizer):
        await prompts.create_behavior_prompt(TENANT, chatbot.id, "Eres amable.")
        synthesizer.synthesize.side_effect = ExternalServiceError("tts", "down")
        assert await responder.respond(chatbot, CONTACT, "hola", outbox, is_audio=True) is True
        assert outbox.texts == ["¡Hola! ¿En qué puedo ayudarte?"]
        assert len(outbox.messages) == 1


class TestAnthropicClient:
    async def test_joins_system_and_text_blocks(self):
        client = AnthropicClient(AnthropicConfig(api_key="test"), AIConfig(model="claude-test"))
        client._client = SimpleNamespace(messages=SimpleNamespace(create=AsyncMock(return_value=SimpleNamespace(
            content=[SimpleNamespace(type="text", text="Hola "), SimpleNamespace(type="text", text="mundo")],
            usage=SimpleNamespace(input_tokens=12, output_tokens=3),
            stop_reason="end_turn",
        ))))
        response = await client.complete(["A", "B"], [{"role": "user", "content": "hola"}])
        assert response.text == "Hola mundo"
        assert response.input_tokens == 12
        kwargs = client._client.messages.create.await_args.kwargs
        assert kwargs["system"] == "A\n\nB"
        assert kwargs["model"] == "claude-test"

    async def test_api_error_wrapped(self):
        client = AnthropicClient(AnthropicConfig(api_key="test"), AIConfig())
        error = anthropic.APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com"))
        client._client = SimpleNamespace(messages=SimpleNamespace(create=AsyncMock(side_effect=error)))
        with pytest.raises(ExternalServiceError):
            await client.complete(["A"], [{"role": "user", "content": "hola"}])


class TestOpenAIClient:
    async def test_system_prompts_prepended(self):
        client = OpenAIClient(OpenAIConfig(api_key="test"), AIConfig(model="gpt-test"))
        create = AsyncMock(return_value=SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=" Hola "))],
            usage=SimpleNamespace(prompt_tokens=5, completion_tokens=1),
        ))
        client._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        response = await client.complete(["A"], [{"role": "user", "content": "hola"}])
        assert response.text == "Hola"
        assert create.await_args.kwargs["messages"] == [
            {"role": "system", "content": "A"},
            {"role": "user", "content": "hola"},
        ]


def _openai_client(**namespaces):
    return SimpleNamespace(**namespaces)


class TestSpeech:
    async def test_transcribe(self):
        create = AsyncMock(return_value=SimpleNamespace(text=" hola "))
        client = _openai_client(audio=SimpleNamespace(transcriptions=SimpleNamespace(create=create)))
        transcriber = Transcriber(client, OpenAIConfig(api_key="test"))
        assert await transcriber.transcribe(b"OggS") == "hola"
        assert create.await_args.kwargs["language"] == "es"

    @pytest.mark.parametrize("audio, text", [(b"", "hola"), (b"OggS", "  ")])
    async def test_transcription_errors(self, audio, text):
        create = AsyncMock(return_value=SimpleNamespace(text=text))
        client = _openai_client(audio=SimpleNamespace(transcriptions=SimpleNamespace(create=create)))
        with pytest.raises(TranscriptionError):
            await Transcriber(client, OpenAIConfig(api_key="test")).transcribe(audio)

    async def test_transcription_api_error(self):
        create = AsyncMock(side_effect=openai.OpenAIError("boom"))
        client = _openai_client(audio=SimpleNamespace(transcriptions=SimpleNamespace(create=create)))
        with pytest.raises(TranscriptionError):
            await Transcriber(client, OpenAIConfig(api_key="test")).transcribe(b"OggS")

    async def test_synthesize_writes_file(self, tmp_path):
        create = AsyncMock(return_value=SimpleNamespace(content=b"OggS-data"))
        client = _openai_client(audio=SimpleNamespace(speech=SimpleNamespace(create=create)))
        path = await SpeechSynthesizer(client, OpenAIConfig(api_key="test"), tmp_path / "tmp").synthesize("hola")
        assert path.parent == tmp_path / "tmp"
        assert path.read_bytes() == b"OggS-data"
        assert create.await_args.kwargs["response_format"] == "opus"

    async def test_synthesize_filesystem_error(self, tmp_path):
        blocker = tmp_path / "blocked"
        blocker.write_text("not a directory")
        create = AsyncMock(return_value=SimpleNamespace(content=b"x"))
        client = _openai_client(audio=SimpleNamespace(speech=SimpleNamespace(create=create)))
        with pytest.raises(FilesystemError):
            await SpeechSynthesizer(client, OpenAIConfig(api_key="test"), blocker).synthesize("hola")

    async def test_partial_voice_file_removed(self, tmp_path, monkeypatch):
        def short_write(self, data):
            with open(self, "wb") as fh:
                fh.write(data[:2])
            raise OSError("disk full")

        monkeypatch.setattr(Path, "write_bytes", short_write)
        create = AsyncMock(return_value=SimpleNamespace(content=b"OggS-data"))
        client = _openai_client(audio=SimpleNamespace(speech=SimpleNamespace(create=create)))
        with pytest.raises(FilesystemError):
            await SpeechSynthesizer(client, OpenAIConfig(api_key="test"), tmp_path).synthesize("hola")
        assert list(tmp_path.glob("voice_*.ogg")) == []

    async def test_embedder(self):
        create = AsyncMock(return_value=SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2])]))
        client = _openai_client(embeddings=SimpleNamespace(create=create))
        assert await Embedder(client, OpenAIConfig(api_key="test"))("hola") == [0.1, 0.2]
