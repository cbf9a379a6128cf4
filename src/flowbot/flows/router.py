"""Per-message pipeline for one channel.

Order: resolve chatbot, blacklist, welcome, in-progress form capture,
keyword flows, form trigger, AI fallback. Each stage may end the turn.
"""

from __future__ import annotations

from typing import Optional

from flowbot.ai.responder import AIResponder
from flowbot.config import MessagesConfig, RetryConfig
from flowbot.core.errors import TranscriptionError, user_message_for
from flowbot.core.retry import logging_callback, retry
from flowbot.core.types import MatchOutcome
from flowbot.flows.blacklist import BlacklistGate
from flowbot.flows.dynamic import DynamicMatcher
from flowbot.flows.welcome import WelcomeDispatcher
from flowbot.forms.engine import DataCollectionEngine
from flowbot.log import get_logger
from flowbot.messenger.models import IncomingMessage, OutgoingMessage, SendFn
from flowbot.speech.openai_speech import Transcriber
from flowbot.storage.chatbot_repo import ChatbotRepository

logger = get_logger(__name__)


class MessageRouter:
    def __init__(
        self,
        channel_ref: str,
        send: SendFn,
        chatbots: ChatbotRepository,
        blacklist: BlacklistGate,
        welcome: WelcomeDispatcher,
        dynamic: DynamicMatcher,
        forms: DataCollectionEngine,
        ai: AIResponder,
        messages: MessagesConfig,
        retry_config: RetryConfig,
        transcriber: Optional[Transcriber] = None,
    ):
        self._channel_ref = channel_ref
        self._send = send
        self._chatbots = chatbots
        self._blacklist = blacklist
        self._welcome = welcome
        self._dynamic = dynamic
        self._forms = forms
        self._ai = ai
        self._messages = messages
        self._retry = retry_config
        self._transcriber = transcriber

    async def handle(self, message: IncomingMessage) -> None:
        """Process an incoming message end-to-end."""
        contact = message.contact_id
        try:
            chatbot = await retry(
                lambda: self._chatbots.get_active_for_channel(self._channel_ref),
                max_attempts=self._retry.max_attempts,
                delay=self._retry.delay,
                on_error=logging_callback(logger, "chatbot_lookup_retry", channel=self._channel_ref),
            )
        except Exception as e:
            logger.error("chatbot_lookup_failed", channel=self._channel_ref, error=str(e))
            return
        if chatbot is None:
            logger.debug("no_active_chatbot", channel=self._channel_ref)
            return

        if await self._blacklist.is_blocked(chatbot.id, contact):
            return

        try:
            await self._welcome.maybe_send(chatbot, contact, self._send)
        except Exception as e:
            logger.warning("welcome_failed", chatbot_id=chatbot.id, contact=contact, error=str(e))

        if self._forms.is_collecting(chatbot.id, contact):
            text = message.text
            if message.is_audio:
                try:
                    text = await self._transcribe(message)
                except Exception as e:
                    await self._forms.fail(chatbot, contact, e, self._send)
                    return
            await self._forms.capture(chatbot, contact, text, self._send)
            return

        try:
            outcome = await self._dynamic.try_match(chatbot, contact, message.text, self._send)
            if outcome is not MatchOutcome.NO_MATCH:
                return
            if await self._forms.try_start(chatbot, contact, message.text, self._send):
                return

            text = message.text
            if message.is_audio:
                text = await self._transcribe(message)
            await self._ai.respond(chatbot, contact, text, self._send, is_audio=message.is_audio)
        except Exception as e:
            logger.error(
                "router_error",
                chatbot_id=chatbot.id,
                contact=contact,
                kind=getattr(e, "kind", "internal"),
                error=str(e),
            )
            await self._notify(contact, user_message_for(e, self._messages))

    async def _transcribe(self, message: IncomingMessage) -> str:
        if self._transcriber is None or message.audio is None:
            raise TranscriptionError("voice notes are not supported on this channel")
        await self._send(OutgoingMessage(chat_id=message.contact_id, text=self._messages.processing_voice))
        return await retry(
            lambda: self._transcriber.transcribe(message.audio.data, message.audio.filename),
            max_attempts=self._retry.max_attempts,
            delay=self._retry.delay,
            on_error=logging_callback(logger, "transcription_retry", contact=message.contact_id),
        )

    async def _notify(self, contact: str, text: str) -> None:
        try:
            await self._send(OutgoingMessage(chat_id=contact, text=text))
        except Exception as e:
            logger.error("error_notice_failed", contact=contact, error=str(e))
