"""Greets each contact at most once per tracking window."""

from __future__ import annotations

from flowbot.config import RetryConfig
from flowbot.core.policies import WELCOME_TRACKING_FAIL_OPEN
from flowbot.core.retry import logging_callback, retry
from flowbot.core.text import strip_channel_suffix
from flowbot.flows.delivery import deliver
from flowbot.log import get_logger
from flowbot.messenger.models import SendFn
from flowbot.storage.models import Chatbot
from flowbot.storage.welcome_repo import WelcomeRepository

logger = get_logger(__name__)


class WelcomeDispatcher:
    def __init__(self, welcomes: WelcomeRepository, retry_config: RetryConfig):
        self._welcomes = welcomes
        self._retry = retry_config

    async def maybe_send(self, chatbot: Chatbot, contact: str, send: SendFn) -> bool:
        """Send the active welcome unless this contact already got it. True if sent."""
        welcome = await retry(
            lambda: self._welcomes.get_active_welcome(chatbot.id),
            max_attempts=self._retry.max_attempts,
            delay=self._retry.delay,
            on_error=logging_callback(logger, "welcome_fetch_retry", chatbot_id=chatbot.id),
        )
        if welcome is None or not welcome.message.strip():
            return False

        phone = strip_channel_suffix(contact)
        try:
            should_send = await self._welcomes.track_welcome_sent(welcome, phone)
        except Exception as e:
            logger.warning("welcome_tracking_failed", welcome_id=welcome.id, phone=phone, error=str(e))
            should_send = WELCOME_TRACKING_FAIL_OPEN
        if not should_send:
            logger.debug("welcome_already_sent", welcome_id=welcome.id, phone=phone)
            return False

        await retry(
            lambda: deliver(send, contact, welcome.message, welcome.media_url),
            max_attempts=self._retry.max_attempts,
            delay=self._retry.delay,
            on_error=logging_callback(logger, "welcome_send_retry", welcome_id=welcome.id),
        )
        logger.info("welcome_sent", chatbot_id=chatbot.id, welcome_id=welcome.id, phone=phone)
        return True
