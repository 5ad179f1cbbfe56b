"""MqBroker — assembles topology, producer, confirm dispatcher and consumer bridge."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from .confirm import ConfirmDispatcher
from .consumer import ConsumerBridge
from .producer import Producer
from .registry import ListenerRegistry
from .serialization import EventSerializer
from .settings import MqBrokerSettings
from .topology import TopologyCache, TopologyManager

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from .event import Event
    from .ports.status import ISendStatusReporter
    from .ports.transport import ITransport

logger = logging.getLogger("mqbroker.broker")


class MqBroker:
    """Reliable event publishing and consumption over one transport.

    Build once at startup with every collaborator, register listeners, then
    ``await start()``. ``start`` declares the exchanges and listener queues,
    subscribes the confirm dispatcher to the transport's confirm and return
    channels (when the transport supports them) and starts the consumers.

    Usage::

        registry = ListenerRegistry()
        registry.register("orders", on_order)
        broker = MqBroker(transport, reporter, registry=registry)
        await broker.start()
        await broker.publish(Event(name="orders", key="42", payload={...}))
    """

    def __init__(
        self,
        transport: ITransport,
        reporter: ISendStatusReporter,
        *,
        registry: ListenerRegistry | None = None,
        settings: MqBrokerSettings | None = None,
        serializer: EventSerializer | None = None,
        topology_cache: TopologyCache | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._transport = transport
        self._settings = settings or MqBrokerSettings()
        self._serializer = serializer or EventSerializer()
        self._registry = registry if registry is not None else ListenerRegistry()
        self.topology = TopologyManager(transport, self._settings, topology_cache)
        self.producer = Producer(transport, self.topology, self._settings, clock=clock)
        self.dispatcher = ConfirmDispatcher(reporter)
        self.consumer = ConsumerBridge(
            transport, self._registry, self._settings, serializer=self._serializer
        )
        self._started = False
        self._listeners_registered = False
        self._start_lock = asyncio.Lock()

    @property
    def settings(self) -> MqBrokerSettings:
        return self._settings

    @property
    def registry(self) -> ListenerRegistry:
        return self._registry

    async def start(self) -> None:
        async with self._start_lock:
            if self._started:
                return
            await self.topology.declare_exchanges()
            self._register_dispatcher()
            for topic in self._registry.all_topics():
                await self.topology.declare_queue(topic)
            await self.consumer.start()
            self._started = True
        logger.info("MqBroker started with %d listener(s)", len(self._registry))

    def _register_dispatcher(self) -> None:
        # Transports never drop listeners, so a restart must not add them again.
        if self._listeners_registered:
            return
        self._listeners_registered = True
        if not self.producer.supports_delivery_confirmation():
            logger.warning(
                "Transport has publisher confirms or returns disabled; "
                "delivery outcomes will not be reported"
            )
            return
        self._transport.add_confirm_listener(self.dispatcher.on_confirm)
        self._transport.add_return_listener(
            self.dispatcher.returned_listener(self._serializer)
        )

    async def stop(self) -> None:
        async with self._start_lock:
            await self.consumer.stop()
            self._started = False

    async def publish(self, event: Event[Any]) -> None:
        """Publish *event*; see :meth:`Producer.accept`."""
        await self.producer.accept(event)

    async def health_check(self) -> bool:
        return await self._transport.health_check()
