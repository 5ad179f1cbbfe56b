"""RabbitMQTransport — ITransport on aio-pika with publisher confirms and returns."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import aio_pika
from aio_pika.exceptions import AMQPError, DeliveryError
from pamqp.commands import Basic

from ..exceptions import TransportError
from ..ports.transport import Delivery, ITransport, ReturnedMessage
from ..serialization import EventSerializer
from ..settings import AckMode

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from aio_pika.abc import (
        AbstractChannel,
        AbstractExchange,
        AbstractIncomingMessage,
        AbstractQueue,
    )

    from ..event import Event
    from .connection import RabbitMQConnectionManager

logger = logging.getLogger("mqbroker.rabbitmq")

# RabbitMQ only returns mandatory messages that matched no queue.
NO_ROUTE_CODE = 312
NO_ROUTE_TEXT = "NO_ROUTE"


class RabbitMQTransport(ITransport):
    """RabbitMQ adapter implementing ITransport.

    Messages are published ``mandatory`` and persistent, with the correlation
    token as AMQP ``correlation_id``. With publisher confirms on, each publish
    hands the broker's answer to a background task, so ``publish`` returns
    before the confirm arrives. An unroutable message is reported to the
    return listeners first, then confirmed as accepted, as RabbitMQ does.
    """

    def __init__(
        self,
        connection: RabbitMQConnectionManager,
        *,
        serializer: EventSerializer | None = None,
        publisher_returns: bool = True,
    ) -> None:
        """Configure transport.

        Args:
            connection: Shared connection manager.
            serializer: Used to serialize events; default EventSerializer().
            publisher_returns: Publish mandatory and report unroutable messages.
        """
        self._connection = connection
        self._serializer = serializer or EventSerializer()
        self._publisher_returns = publisher_returns
        self._exchanges: dict[str, AbstractExchange] = {}
        self._queues: dict[str, AbstractQueue] = {}
        self._confirm_listeners: list[
            Callable[[str | None, bool, str | None], Awaitable[None]]
        ] = []
        self._return_listeners: list[Callable[[ReturnedMessage], Awaitable[None]]] = []
        self._unsettled: dict[int, AbstractIncomingMessage] = {}
        self._pending: set[asyncio.Task[None]] = set()
        self._returning: dict[str | None, list[asyncio.Task[None]]] = {}
        self._returns_hooked = False

    @property
    def supports_delivery_confirmation(self) -> bool:
        return self._connection.publisher_confirms and self._publisher_returns

    async def _channel(self) -> AbstractChannel:
        await self._connection.connect()
        channel = self._connection.channel
        if not self._returns_hooked:
            channel.return_callbacks.add(self._on_returned)
            self._returns_hooked = True
        return channel

    # ── Topology ─────────────────────────────────────────────────────

    async def declare_exchange(
        self,
        name: str,
        kind: str,
        *,
        durable: bool = True,
        arguments: dict[str, Any] | None = None,
    ) -> None:
        channel = await self._channel()
        self._exchanges[name] = await channel.declare_exchange(
            name,
            type=kind,
            durable=durable,
            arguments=arguments,
        )

    async def declare_queue(self, name: str) -> None:
        channel = await self._channel()
        self._queues[name] = await channel.declare_queue(name, durable=True)

    async def declare_binding(self, queue: str, exchange: str, routing_key: str) -> None:
        bound = await self._get_queue(queue)
        await bound.bind(await self._get_exchange(exchange), routing_key=routing_key)

    async def _get_exchange(self, name: str) -> AbstractExchange:
        exchange = self._exchanges.get(name)
        if exchange is None:
            channel = await self._channel()
            exchange = self._exchanges[name] = await channel.get_exchange(name)
        return exchange

    async def _get_queue(self, name: str) -> AbstractQueue:
        queue = self._queues.get(name)
        if queue is None:
            channel = await self._channel()
            queue = self._queues[name] = await channel.get_queue(name)
        return queue

    # ── Publishing ───────────────────────────────────────────────────

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        event: Event[Any],
        *,
        headers: dict[str, Any] | None = None,
        correlation_token: str | None = None,
    ) -> None:
        target = await self._get_exchange(exchange)
        message = aio_pika.Message(
            body=self._serializer.serialize(event),
            content_type=self._serializer.content_type,
            headers=dict(headers or {}),
            correlation_id=correlation_token,
            delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
        )
        publishing = target.publish(
            message,
            routing_key=routing_key,
            mandatory=self._publisher_returns,
        )
        if not self._connection.publisher_confirms:
            try:
                await publishing
            except AMQPError as e:
                raise TransportError(str(e)) from e
            return

        task = asyncio.create_task(self._await_confirm(publishing, correlation_token))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _await_confirm(
        self, publishing: Awaitable[Any], correlation_token: str | None
    ) -> None:
        acknowledged = False
        cause: str | None = None
        try:
            confirmation = await publishing
            # A returned mandatory message resolves with the message itself and
            # the broker's ack for it is dropped; only a Nack is a refusal.
            acknowledged = not isinstance(confirmation, Basic.Nack)
        except DeliveryError as e:
            cause = str(e) or None
        except (AMQPError, ConnectionError, asyncio.TimeoutError) as e:
            cause = str(e) or type(e).__name__
        returning = self._returning.pop(correlation_token, [])
        if returning:
            await asyncio.gather(*returning, return_exceptions=True)
        for listener in self._confirm_listeners:
            try:
                await listener(correlation_token, acknowledged, cause)
            except Exception:  # noqa: BLE001
                logger.exception("Confirm listener failed for %s", correlation_token)

    def _on_returned(self, _channel: Any, message: AbstractIncomingMessage) -> None:
        returned = ReturnedMessage(
            body=message.body,
            reply_code=NO_ROUTE_CODE,
            reply_text=NO_ROUTE_TEXT,
            exchange=message.exchange or "",
            routing_key=message.routing_key or "",
            correlation_token=message.correlation_id,
        )
        for listener in self._return_listeners:
            task = asyncio.create_task(listener(returned))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            if self._connection.publisher_confirms:
                # The confirm for this publish waits for its return to be reported.
                self._returning.setdefault(returned.correlation_token, []).append(task)

    def add_confirm_listener(
        self, listener: Callable[[str | None, bool, str | None], Awaitable[None]]
    ) -> None:
        self._confirm_listeners.append(listener)

    def add_return_listener(
        self, listener: Callable[[ReturnedMessage], Awaitable[None]]
    ) -> None:
        self._return_listeners.append(listener)

    # ── Consuming ────────────────────────────────────────────────────

    async def consume(
        self,
        queues: list[str],
        ack_mode: AckMode,
    ) -> AsyncIterator[Delivery]:
        """Register one consumer per queue and yield their deliveries.

        In automatic mode the consumers use ``no_ack``: the broker considers a
        message delivered as soon as it is sent.
        """
        no_ack = ack_mode is AckMode.AUTOMATIC
        buffer: asyncio.Queue[AbstractIncomingMessage] = asyncio.Queue()
        consumers: list[tuple[AbstractQueue, str]] = []
        for name in queues:
            queue = await self._get_queue(name)
            consumers.append((queue, await queue.consume(buffer.put, no_ack=no_ack)))
        try:
            while True:
                message = await buffer.get()
                tag = message.delivery_tag or 0
                if not no_ack:
                    self._unsettled[tag] = message
                yield Delivery(
                    body=message.body,
                    delivery_tag=tag,
                    routing_key=message.routing_key or "",
                    redelivered=bool(message.redelivered),
                    headers=dict(message.headers or {}),
                )
        finally:
            for queue, consumer_tag in consumers:
                try:
                    await queue.cancel(consumer_tag)
                except (AMQPError, ConnectionError) as e:
                    logger.warning("Failed to cancel consumer %s: %s", consumer_tag, e)

    async def ack(self, delivery_tag: int) -> None:
        message = self._unsettled.pop(delivery_tag, None)
        if message is None:
            raise TransportError(f"Unknown delivery tag {delivery_tag}")
        await message.ack()

    async def reject(self, delivery_tag: int, *, requeue: bool = False) -> None:
        message = self._unsettled.pop(delivery_tag, None)
        if message is None:
            raise TransportError(f"Unknown delivery tag {delivery_tag}")
        await message.reject(requeue=requeue)

    async def health_check(self) -> bool:
        """Return True if the connection is healthy."""
        return await self._connection.health_check()
