"""Abstract messenger adapter interface."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

import structlog

from flowbot.config import ChannelConfig
from flowbot.log import get_logger
from flowbot.messenger.gate import InboundGate
from flowbot.messenger.models import IncomingMessage, OutgoingMessage

logger = get_logger(__name__)


class MessengerAdapter(ABC):
    """Base class for all messenger platform adapters.

    To add a new messenger, subclass this, implement the abstract methods and
    hand every parsed inbound message to :meth:`_dispatch`. Dispatch applies
    the inbound gate and runs the callback so that messages from one contact
    are handled one at a time, in arrival order, while different contacts
    proceed concurrently.
    """

    def __init__(self, config: ChannelConfig, gate: InboundGate):
        self.channel_id = config.id
        self.config = config
        self._gate = gate
        self._message_callback: Callable[[IncomingMessage], Awaitable[None]] | None = None
        self._contact_locks: dict[str, asyncio.Lock] = {}
        self._pending: dict[str, int] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @abstractmethod
    async def start(self) -> None:
        """Connect to the platform and begin receiving messages."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Gracefully disconnect."""
        ...

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> None:
        """Send a message to a specific contact."""
        ...

    def on_message(self, callback: Callable[[IncomingMessage], Awaitable[None]]) -> None:
        """Register the callback invoked for every admitted message."""
        self._message_callback = callback

    @property
    @abstractmethod
    def platform_name(self) -> str:
        """Return platform identifier string."""
        ...

    def _dispatch(self, message: IncomingMessage) -> asyncio.Task[None] | None:
        """Schedule *message* for handling. Returns None when it was dropped."""
        if self._message_callback is None:
            return None
        if not self._gate.admit(message):
            return None
        task = asyncio.create_task(self._run(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, message: IncomingMessage) -> None:
        contact = message.contact_id
        lock = self._contact_locks.setdefault(contact, asyncio.Lock())
        self._pending[contact] = self._pending.get(contact, 0) + 1
        try:
            async with lock:
                await self._handle(message)
        finally:
            self._pending[contact] -= 1
            if self._pending[contact] == 0:
                del self._pending[contact]
                del self._contact_locks[contact]

    async def _handle(self, message: IncomingMessage) -> None:
        try:
            with structlog.contextvars.bound_contextvars(
                channel=self.channel_id, message_id=message.message_id
            ):
                await self._message_callback(message)
        except Exception as e:
            logger.error(
                "message_handler_error",
                channel=self.channel_id,
                contact=message.contact_id,
                error=str(e),
            )

    async def drain(self) -> None:
        """Wait for in-flight messages to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
