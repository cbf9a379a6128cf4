"""Running channel adapters, keyed by channel id."""

from __future__ import annotations

from typing import TYPE_CHECKING

from flowbot.core.errors import ConfigurationError, NotFoundError
from flowbot.log import get_logger

if TYPE_CHECKING:
    from flowbot.messenger.base import MessengerAdapter

logger = get_logger(__name__)


class ChannelRegistry:
    """One adapter per channel id. Chatbots find their transport through it."""

    def __init__(self) -> None:
        self._adapters: dict[str, MessengerAdapter] = {}

    def register(self, adapter: MessengerAdapter) -> None:
        if adapter.channel_id in self._adapters:
            raise ConfigurationError(f"channel '{adapter.channel_id}' registered twice")
        self._adapters[adapter.channel_id] = adapter

    def get(self, channel_id: str) -> MessengerAdapter:
        try:
            return self._adapters[channel_id]
        except KeyError:
            raise NotFoundError("channel", channel_id) from None

    async def stop_all(self) -> None:
        """Stop every adapter; one failing does not keep the others running."""
        for channel_id, adapter in list(self._adapters.items()):
            try:
                await adapter.stop()
            except Exception as e:
                logger.error("channel_stop_error", channel=channel_id, error=str(e))
        self._adapters.clear()

    def ids(self) -> list[str]:
        return list(self._adapters)

    def __len__(self) -> int:
        return len(self._adapters)
