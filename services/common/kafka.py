"""In-process stand-ins for the Kafka producer and consumer.

Messages are delivered synchronously to every subscriber of a topic, in send
order, which matches Kafka's per-partition ordering for a single key.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Sequence

_LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, Any]], Awaitable[None]]


class _InMemoryBroker:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[MessageHandler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: MessageHandler) -> None:
        handlers = self._subscribers.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                self._subscribers.pop(topic, None)

    async def publish(self, topic: str, message: dict[str, Any]) -> int:
        # Copy: handlers may unsubscribe while being called.
        handlers = list(self._subscribers.get(topic, []))
        for handler in handlers:
            await handler(message)
        return len(handlers)


_BROKER = _InMemoryBroker()


class KafkaProducerStub:
    """Producer with the connect/send/close surface of the real client."""

    def __init__(self, *, bootstrap_servers: str | None = None, **_kwargs: Any) -> None:
        self.bootstrap_servers = bootstrap_servers
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def send(self, topic: str, value: dict[str, Any], *, key: str | None = None) -> int:
        """Deliver ``value`` to current subscribers and return how many received it."""

        if not self._connected:
            raise RuntimeError("Producer not connected")
        delivered = await _BROKER.publish(topic, value)
        if not delivered:
            _LOGGER.debug("No subscribers for %s (key=%s)", topic, key)
        return delivered

    async def close(self) -> None:
        self._connected = False


class KafkaConsumerStub:
    """Consumer that registers ``handler(topic, message)`` for each topic on start."""

    def __init__(
        self,
        topics: Sequence[str],
        handler: Callable[[str, dict[str, Any]], Awaitable[None]],
    ) -> None:
        self._topics = list(topics)
        self._handler = handler
        self._registrations: list[tuple[str, MessageHandler]] = []

    @property
    def started(self) -> bool:
        return bool(self._registrations)

    async def start(self) -> None:
        if self.started:
            return
        for topic in self._topics:
            async def _callback(message: dict[str, Any], current_topic: str = topic) -> None:
                await self._handler(current_topic, message)

            _BROKER.subscribe(topic, _callback)
            self._registrations.append((topic, _callback))

    async def stop(self) -> None:
        for topic, callback in self._registrations:
            _BROKER.unsubscribe(topic, callback)
        self._registrations.clear()
