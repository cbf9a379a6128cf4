"""Keyword flows: exact match after normalization, first flow in order wins."""

from __future__ import annotations

from typing import Optional

from flowbot.config import RetryConfig
from flowbot.core.retry import logging_callback, retry
from flowbot.core.text import normalize_text
from flowbot.core.types import MatchOutcome
from flowbot.flows.delivery import deliver
from flowbot.log import get_logger
from flowbot.messenger.models import SendFn
from flowbot.storage.flow_repo import FlowRepository
from flowbot.storage.history_repo import ChatHistoryRepository
from flowbot.storage.models import Chatbot, Flow

logger = get_logger(__name__)


def find_matching_flow(flows: list[Flow], message: str) -> Optional[Flow]:
    """First flow with a keyword equal to *message*; both sides are normalized."""
    normalized = normalize_text(message)
    if not normalized:
        return None
    for flow in flows:
        if any(normalize_text(k) == normalized for k in flow.keywords if k):
            return flow
    return None


class DynamicMatcher:
    def __init__(self, flows: FlowRepository, history: ChatHistoryRepository, retry_config: RetryConfig):
        self._flows = flows
        self._history = history
        self._retry = retry_config

    async def try_match(self, chatbot: Chatbot, contact: str, text: str, send: SendFn) -> MatchOutcome:
        if not normalize_text(text):
            return MatchOutcome.NO_MATCH

        flows = await retry(
            lambda: self._flows.get_active_flows(chatbot.id),
            max_attempts=self._retry.max_attempts,
            delay=self._retry.delay,
            on_error=logging_callback(logger, "flow_fetch_retry", chatbot_id=chatbot.id),
        )
        flow = find_matching_flow(flows, text)
        if flow is None:
            return MatchOutcome.NO_MATCH

        if not flow.response_text.strip():
            logger.warning("flow_without_response", chatbot_id=chatbot.id, flow_id=flow.id)
            if flow.media_url:
                await deliver(send, contact, "", flow.media_url)
            return MatchOutcome.EMPTY

        logger.info("flow_matched", chatbot_id=chatbot.id, flow_id=flow.id, contact=contact)
        try:
            await self._history.append(chatbot.user_id, chatbot.id, contact, text, flow.response_text)
        except Exception as e:
            logger.warning("flow_history_failed", chatbot_id=chatbot.id, flow_id=flow.id, error=str(e))
        await deliver(send, contact, flow.response_text, flow.media_url)
        return MatchOutcome.MATCHED
