"""Inbound filtering at the transport boundary.

Drops redelivered message ids, immediate repeats of the same body and
messages beyond the per-contact rate limit. All state is in memory and
expires on its own.
"""

from __future__ import annotations

import time
from typing import Callable

from flowbot.config import GateConfig
from flowbot.log import get_logger
from flowbot.messenger.models import IncomingMessage

logger = get_logger(__name__)


class InboundGate:
    def __init__(self, config: GateConfig, clock: Callable[[], float] = time.monotonic):
        self._dedup_ttl = config.dedup_ttl
        self._window = config.rate_limit_window
        self._max_per_window = config.max_messages_per_window
        self._clock = clock
        self._seen_ids: dict[str, float] = {}  # message id -> expires at
        self._last_body: dict[str, tuple[str, float]] = {}  # contact -> (body, expires at)
        self._windows: dict[str, tuple[float, int]] = {}  # contact -> (window start, count)

    def admit(self, message: IncomingMessage) -> bool:
        """True when *message* should be processed."""
        now = self._clock()
        self._expire(now)
        contact = message.contact_id

        if message.message_id:
            if message.message_id in self._seen_ids:
                logger.debug("duplicate_message_dropped", contact=contact, message_id=message.message_id)
                return False
            self._seen_ids[message.message_id] = now + self._dedup_ttl

        body = message.text.strip()
        if body and not message.is_audio:
            previous = self._last_body.get(contact)
            if previous is not None and previous[0] == body:
                logger.debug("repeated_message_dropped", contact=contact)
                return False
            self._last_body[contact] = (body, now + self._dedup_ttl)

        start, count = self._windows.get(contact, (now, 0))
        if now - start >= self._window:
            start, count = now, 0
        if count >= self._max_per_window:
            logger.warning("rate_limited", contact=contact, limit=self._max_per_window, window=self._window)
            return False
        self._windows[contact] = (start, count + 1)
        return True

    def _expire(self, now: float) -> None:
        for message_id in [m for m, exp in self._seen_ids.items() if exp <= now]:
            del self._seen_ids[message_id]
        for contact in [c for c, (_, exp) in self._last_body.items() if exp <= now]:
            del self._last_body[contact]
        for contact in [c for c, (start, _) in self._windows.items() if now - start >= self._window]:
            del self._windows[contact]
