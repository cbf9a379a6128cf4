"""AI fallback: answers anything no flow or form handled."""

from __future__ import annotations

import contextlib
from pathlib import Path
from typing import Optional

from flowbot.ai.client import AIClient
from flowbot.ai.conversation import build_system_prompts, build_turns
from flowbot.cache.response_cache import ResponseCache
from flowbot.config import AIConfig, MessagesConfig
from flowbot.core.policies import AI_REQUIRES_BEHAVIOR_PROMPT
from flowbot.core.text import normalize_text
from flowbot.log import get_logger
from flowbot.messenger.models import OutgoingMessage, SendFn
from flowbot.speech.openai_speech import SpeechSynthesizer
from flowbot.storage.history_repo import ChatHistoryRepository
from flowbot.storage.models import Chatbot
from flowbot.storage.prompt_repo import PromptRepository

logger = get_logger(__name__)


def _cache_scope(chatbot_id: str) -> str:
    return f"ai:{chatbot_id}"


class AIResponder:
    """Builds context from prompts and recent history, then asks the AI client.

    Replies are cached per (chatbot, normalized message) for *response_ttl*
    seconds. Voice-note senders get the reply as text and then as a
    synthesized voice note.
    """

    def __init__(
        self,
        client: AIClient,
        prompts: PromptRepository,
        history: ChatHistoryRepository,
        cache: ResponseCache,
        ai_config: AIConfig,
        messages: MessagesConfig,
        response_ttl: int = 180,
        synthesizer: Optional[SpeechSynthesizer] = None,
    ):
        self._client = client
        self._prompts = prompts
        self._history = history
        self._cache = cache
        self._ai_config = ai_config
        self._messages = messages
        self._response_ttl = response_ttl
        self._synthesizer = synthesizer

    async def respond(
        self, chatbot: Chatbot, contact: str, text: str, send: SendFn, is_audio: bool = False
    ) -> bool:
        """Reply to *text*. False means the chatbot declined and nothing was sent."""
        if not text or not text.strip():
            return False

        behavior = await self._prompts.get_behavior_prompt(chatbot.id)
        if not behavior and AI_REQUIRES_BEHAVIOR_PROMPT:
            logger.info("ai_declined_no_behavior_prompt", chatbot_id=chatbot.id)
            return False

        try:
            reply = await self._generate(chatbot, contact, text, behavior or "", is_audio)
        except Exception as e:
            logger.error("ai_error", chatbot_id=chatbot.id, contact=contact, error=str(e))
            await send(OutgoingMessage(chat_id=contact, text=self._messages.ai_apology))
            return True

        try:
            await self._history.append(chatbot.user_id, chatbot.id, contact, text, reply)
        except Exception as e:
            logger.warning("ai_history_failed", chatbot_id=chatbot.id, error=str(e))

        await send(OutgoingMessage(chat_id=contact, text=reply))
        if is_audio and self._synthesizer is not None:
            await self._send_voice(contact, reply, send)
        return True

    async def _generate(
        self, chatbot: Chatbot, contact: str, text: str, behavior: str, is_audio: bool
    ) -> str:
        scope = _cache_scope(chatbot.id)
        key = f"{'voice' if is_audio else 'text'}:{normalize_text(text)}"
        cached = await self._cache.get(scope, key)
        if cached:
            logger.debug("ai_cache_hit", chatbot_id=chatbot.id)
            return cached

        knowledge = await self._prompts.get_knowledge_prompts(chatbot.id)
        history = await self._history.get_recent(chatbot.id, contact, limit=self._ai_config.history_window)
        system_prompts = build_system_prompts(
            behavior, knowledge, self._ai_config.voice_instruction if is_audio else None
        )
        response = await self._client.complete(system_prompts, build_turns(history, text))
        if not response.text:
            raise ValueError("AI returned an empty reply")

        await self._cache.set(scope, key, response.text, ttl=self._response_ttl)
        logger.info(
            "ai_replied",
            chatbot_id=chatbot.id,
            history=len(history),
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
        )
        return response.text

    async def _send_voice(self, contact: str, reply: str, send: SendFn) -> None:
        path: Path | None = None
        try:
            path = await self._synthesizer.synthesize(reply)
            await send(
                OutgoingMessage(chat_id=contact, media_path=str(path), media_type="audio", ptt=True)
            )
        except Exception as e:
            # text already went out
            logger.error("voice_reply_failed", contact=contact, error=str(e))
        finally:
            if path is not None:
                with contextlib.suppress(FileNotFoundError):
                    path.unlink()
