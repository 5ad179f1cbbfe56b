"""ConsumerBridge — dispatches deliveries to listeners under an acknowledgement mode."""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from .exceptions import HandlerExecutionError, SerializationError
from .serialization import EventSerializer
from .settings import AckMode

if TYPE_CHECKING:
    from .event import Event
    from .ports.transport import Delivery, ITransport
    from .registry import ListenerRegistry
    from .settings import MqBrokerSettings

logger = logging.getLogger("mqbroker.consumer")


class DeliveryState(str, Enum):
    """Lifecycle of one delivery inside the bridge."""

    IDLE = "idle"
    HANDLER_RUNNING = "handler_running"
    ACKED = "acked"
    FAILED = "failed"


class _AutomaticAck:
    """The transport settles the delivery on its own; outcome only gets logged."""

    mode = AckMode.AUTOMATIC

    async def settle(
        self,
        transport: ITransport,  # noqa: ARG002
        delivery: Delivery,  # noqa: ARG002
        error: HandlerExecutionError | None,  # noqa: ARG002
    ) -> DeliveryState:
        return DeliveryState.IDLE


class _ManualAck:
    """Ack after the listener returned; on failure apply the reject policy."""

    mode = AckMode.MANUAL

    def __init__(self, requeue_rejected: bool) -> None:
        self._requeue_rejected = requeue_rejected

    async def settle(
        self,
        transport: ITransport,
        delivery: Delivery,
        error: HandlerExecutionError | None,
    ) -> DeliveryState:
        if error is not None:
            await transport.reject(delivery.delivery_tag, requeue=self._requeue_rejected)
            return DeliveryState.FAILED
        await transport.ack(delivery.delivery_tag)
        return DeliveryState.ACKED


class ConsumerBridge:
    """Consumes listener queues and invokes the matching listener per delivery.

    The acknowledgement strategy is chosen once from the settings:

    - automatic: ``IDLE -> HANDLER_RUNNING -> IDLE`` whatever the outcome.
    - manual: ``IDLE -> HANDLER_RUNNING -> ACKED`` when the listener returns,
      ``-> FAILED`` when it raises. Failed deliveries are never acked; they are
      rejected with ``requeue=settings.requeue_rejected``.

    A failing listener never stops a worker.
    """

    def __init__(
        self,
        transport: ITransport,
        registry: ListenerRegistry,
        settings: MqBrokerSettings,
        *,
        serializer: EventSerializer | None = None,
        restart_delay: float = 1.0,
    ) -> None:
        self._transport = transport
        self._registry = registry
        self._serializer = serializer or EventSerializer()
        self._concurrency = settings.concurrency
        self._restart_delay = restart_delay
        self._strategy: _AutomaticAck | _ManualAck
        if settings.ack_mode is AckMode.MANUAL:
            self._strategy = _ManualAck(settings.requeue_rejected)
        else:
            self._strategy = _AutomaticAck()
        self._workers: list[asyncio.Task[None]] = []
        self._running = False

    @property
    def ack_mode(self) -> AckMode:
        return self._strategy.mode

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Spawn the consumer workers; one consumer per worker on every listener queue."""
        if self._running:
            return
        queues = self._registry.all_topics()
        if not queues:
            logger.warning("No listeners registered; consumer bridge not started")
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._work(queues), name=f"mqbroker-consumer-{i}")
            for i in range(self._concurrency)
        ]
        logger.info(
            "Started %d consumer worker(s) on %s (ack mode %s)",
            self._concurrency,
            queues,
            self.ack_mode.value,
        )

    async def stop(self) -> None:
        self._running = False
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("Consumer bridge stopped")

    async def process(self, delivery: Delivery) -> DeliveryState:
        """Run the listener for one delivery and settle it. Never raises."""
        error: HandlerExecutionError | None = None
        logger.debug(
            "Delivery %s on %s: %s",
            delivery.delivery_tag,
            delivery.routing_key,
            DeliveryState.HANDLER_RUNNING.value,
        )
        try:
            await self._invoke(delivery)
        except HandlerExecutionError as e:
            error = e
            logger.error(
                "Consume failed for delivery %s on %s: %s",
                delivery.delivery_tag,
                delivery.routing_key,
                e.reason,
                exc_info=e.__cause__,
            )

        try:
            return await self._strategy.settle(self._transport, delivery, error)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to settle delivery %s on %s",
                delivery.delivery_tag,
                delivery.routing_key,
            )
            return DeliveryState.FAILED

    async def _invoke(self, delivery: Delivery) -> None:
        try:
            event: Event[Any] = self._serializer.deserialize(delivery.body)
        except SerializationError as e:
            raise HandlerExecutionError(delivery.routing_key, str(e)) from e

        handler = self._registry.get(event.name)
        if handler is None:
            raise HandlerExecutionError(event.name, "no listener registered")

        try:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as e:  # noqa: BLE001
            raise HandlerExecutionError(event.name, str(e) or type(e).__name__) from e

    async def _work(self, queues: list[str]) -> None:
        while self._running:
            try:
                async for delivery in self._transport.consume(queues, self.ack_mode):
                    await self.process(delivery)
                    if not self._running:
                        return
                return
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                logger.exception("Consumer worker interrupted; restarting")
                await asyncio.sleep(self._restart_delay)
