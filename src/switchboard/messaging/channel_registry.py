"""Registry of live channel adapters used by the dispatcher, Chronos and webhooks."""

from __future__ import annotations

import asyncio

from switchboard.infrastructure.logger import logger
from switchboard.messaging.types import ChannelAdapter, DeliveryError, DeliveryFailure


class ChannelRegistry:
    """Manages registered channel adapters keyed by channel name."""

    def __init__(self) -> None:
        self._adapters: dict[str, ChannelAdapter] = {}

    def register(self, adapter: ChannelAdapter) -> None:
        if adapter.name in self._adapters:
            raise ValueError(f'Channel "{adapter.name}" is already registered')
        self._adapters[adapter.name] = adapter
        logger.info("Channel adapter registered", channel=adapter.name)

    def unregister(self, name: str) -> None:
        self._adapters.pop(name, None)

    def get(self, name: str) -> ChannelAdapter | None:
        return self._adapters.get(name)

    def get_all(self) -> list[ChannelAdapter]:
        return list(self._adapters.values())

    async def broadcast(self, text: str, channels: list[str] | None = None) -> list[DeliveryFailure]:
        """Send ``text`` to every adapter (or to the named ones), settling all of them.

        One failing adapter never prevents delivery to the others; failures are
        logged and returned.
        """
        if channels is None:
            targets = self.get_all()
            failures: list[DeliveryFailure] = []
        else:
            targets = [self._adapters[c] for c in channels if c in self._adapters]
            failures = [DeliveryFailure(c, "No adapter registered") for c in channels if c not in self._adapters]

        results = await asyncio.gather(*(a.send_message(text) for a in targets), return_exceptions=True)
        for adapter, result in zip(targets, results):
            if isinstance(result, BaseException):
                failures.append(DeliveryFailure(adapter.name, str(result) or type(result).__name__))

        for failure in failures:
            logger.error("Broadcast error", channel=failure.channel, error=failure.error)
        return failures

    async def send_to_user(self, channel: str, user_id: str, text: str) -> None:
        adapter = self._adapters.get(channel)
        if not adapter:
            raise DeliveryError(f'No adapter registered for channel "{channel}"')
        await adapter.send_message_to_user(user_id, text)

    async def disconnect_all(self) -> None:
        for adapter in self.get_all():
            try:
                await adapter.disconnect()
            except Exception:
                logger.exception("Error disconnecting channel", channel=adapter.name)
