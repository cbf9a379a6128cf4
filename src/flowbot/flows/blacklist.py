"""First gate of the pipeline: blocked contacts get no reply at all."""

from __future__ import annotations

from flowbot.config import RetryConfig
from flowbot.core.policies import BLACKLIST_FAIL_OPEN
from flowbot.core.retry import logging_callback, retry
from flowbot.core.text import normalize_phone
from flowbot.log import get_logger
from flowbot.storage.blacklist_repo import BlacklistRepository

logger = get_logger(__name__)


class BlacklistGate:
    def __init__(self, repo: BlacklistRepository, retry_config: RetryConfig, country_code: str):
        self._repo = repo
        self._retry = retry_config
        self._country_code = country_code

    async def is_blocked(self, chatbot_id: str, contact: str) -> bool:
        phone = normalize_phone(contact, self._country_code)
        try:
            blocked = await retry(
                lambda: self._repo.is_blacklisted(chatbot_id, phone),
                max_attempts=self._retry.max_attempts,
                delay=self._retry.delay,
                on_error=logging_callback(logger, "blacklist_check_retry", chatbot_id=chatbot_id),
            )
        except Exception as e:
            logger.error("blacklist_check_failed", chatbot_id=chatbot_id, phone=phone, error=str(e))
            return not BLACKLIST_FAIL_OPEN

        if blocked:
            logger.info("contact_blacklisted", chatbot_id=chatbot_id, phone=phone)
        return blocked
