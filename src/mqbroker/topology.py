"""TopologyManager — lazy, idempotent declaration of exchanges, queues and bindings."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .exceptions import TopologyDeclarationError

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from .ports.transport import ITransport
    from .settings import MqBrokerSettings

logger = logging.getLogger("mqbroker.topology")

DIRECT_EXCHANGE = "direct"
DELAYED_EXCHANGE = "x-delayed-message"


class TopologyCache:
    """Topics whose queue and bindings have been declared.

    A topic enters the cache only after its declaration succeeded. Each topic
    has its own lock so that concurrent publishers declare it once.
    """

    def __init__(self) -> None:
        self._declared: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}

    def __contains__(self, topic: object) -> bool:
        return topic in self._declared

    def __len__(self) -> int:
        return len(self._declared)

    def topics(self) -> frozenset[str]:
        return frozenset(self._declared)

    def lock_for(self, topic: str) -> asyncio.Lock:
        lock = self._locks.get(topic)
        if lock is None:
            lock = self._locks[topic] = asyncio.Lock()
        return lock

    def add(self, topic: str) -> None:
        self._declared.add(topic)


class TopologyManager:
    """Declares the broker topology the producer and consumers rely on.

    Exchanges are declared once at startup. A topic's queue is bound to the
    primary exchange (and the delayed exchange, when enabled) with the topic
    as routing key, on first use.

    Declaration failures propagate as :class:`TopologyDeclarationError`;
    retrying is left to the caller and the broker client.
    """

    def __init__(
        self,
        transport: ITransport,
        settings: MqBrokerSettings,
        cache: TopologyCache | None = None,
    ) -> None:
        self._transport = transport
        self._settings = settings
        self._cache = cache if cache is not None else TopologyCache()
        self._exchanges_declared = False
        self._exchanges_lock = asyncio.Lock()

    @property
    def cache(self) -> TopologyCache:
        return self._cache

    @property
    def exchange_name(self) -> str:
        return self._settings.exchange_name

    @property
    def delayed_exchange_name(self) -> str | None:
        if not self._settings.enabled_delayed_message:
            return None
        return self._settings.delayed_exchange_name

    async def declare_primary_exchange(self) -> None:
        await self._declare(
            "exchange",
            self.exchange_name,
            self._transport.declare_exchange(
                self.exchange_name, DIRECT_EXCHANGE, durable=True
            ),
        )

    async def declare_delayed_exchange(self) -> None:
        """Declare the delayed-message exchange; no-op when delayed delivery is off."""
        name = self.delayed_exchange_name
        if name is None:
            return
        await self._declare(
            "exchange",
            name,
            self._transport.declare_exchange(
                name,
                DELAYED_EXCHANGE,
                durable=True,
                arguments={"x-delayed-type": DIRECT_EXCHANGE},
            ),
        )

    async def declare_exchanges(self) -> None:
        """Declare the primary and (if enabled) delayed exchanges once."""
        if self._exchanges_declared:
            return
        async with self._exchanges_lock:
            if self._exchanges_declared:
                return
            await self.declare_primary_exchange()
            await self.declare_delayed_exchange()
            self._exchanges_declared = True
        logger.info(
            "Declared exchanges %s (delayed=%s)",
            self.exchange_name,
            self.delayed_exchange_name,
        )

    async def declare_queue(self, topic: str) -> None:
        """Declare the queue for *topic* without binding it."""
        await self._declare("queue", topic, self._transport.declare_queue(topic))

    async def ensure_topic_declared(self, topic: str) -> None:
        """Declare queue and bindings for *topic* unless already done."""
        if topic in self._cache:
            return
        async with self._cache.lock_for(topic):
            if topic in self._cache:
                return
            await self.declare_queue(topic)
            await self._bind(topic, self.exchange_name)
            delayed = self.delayed_exchange_name
            if delayed is not None:
                await self._bind(topic, delayed)
            self._cache.add(topic)
        logger.debug("Declared topology for topic %s", topic)

    async def _bind(self, topic: str, exchange: str) -> None:
        await self._declare(
            "binding",
            f"{topic}->{exchange}",
            self._transport.declare_binding(topic, exchange, topic),
        )

    async def _declare(self, kind: str, name: str, declaration: Awaitable[None]) -> None:
        try:
            await declaration
        except TopologyDeclarationError:
            raise
        except Exception as e:  # noqa: BLE001
            logger.error("Failed to declare %s %s: %s", kind, name, e)
            raise TopologyDeclarationError(kind, name, str(e)) from e
