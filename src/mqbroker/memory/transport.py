"""InMemoryTransport — ITransport without a broker, for tests and local runs."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from ..ports.transport import Delivery, ITransport, ReturnedMessage
from ..serialization import EventSerializer
from ..settings import AckMode

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from ..event import Event

NO_ROUTE = 312


class InMemoryTransport(ITransport):
    """Routes published events to bound queues in process.

    Mirrors the broker behaviour the core relies on: publishing to a topic
    nobody bound emits a return (``312 NO_ROUTE``) followed by an ack, and
    every publish is confirmed when confirmations are enabled. Declarations,
    publishes, acks and rejects are recorded for assertions.
    """

    def __init__(
        self,
        *,
        serializer: EventSerializer | None = None,
        confirms: bool = True,
        returns: bool = True,
        poll_interval: float = 0.001,
    ) -> None:
        self._serializer = serializer or EventSerializer()
        self._confirms = confirms
        self._returns = returns
        self.exchanges: dict[str, tuple[str, dict[str, Any]]] = {}
        self.queues: dict[str, asyncio.Queue[Delivery]] = {}
        self.bindings: set[tuple[str, str, str]] = set()
        self.declare_calls: list[tuple[str, str]] = []
        self.published: list[tuple[str, str, Event[Any], dict[str, Any], str | None]] = []
        self.acked: list[int] = []
        self.rejected: list[tuple[int, bool]] = []
        self._confirm_listeners: list[
            Callable[[str | None, bool, str | None], Awaitable[None]]
        ] = []
        self._return_listeners: list[Callable[[ReturnedMessage], Awaitable[None]]] = []
        self._tags = itertools.count(1)
        self._unsettled: dict[int, tuple[str, Delivery]] = {}
        self._poll_interval = poll_interval

    @property
    def supports_delivery_confirmation(self) -> bool:
        return self._confirms and self._returns

    async def declare_exchange(
        self,
        name: str,
        kind: str,
        *,
        durable: bool = True,  # noqa: ARG002
        arguments: dict[str, Any] | None = None,
    ) -> None:
        self.declare_calls.append(("exchange", name))
        self.exchanges[name] = (kind, dict(arguments or {}))

    async def declare_queue(self, name: str) -> None:
        self.declare_calls.append(("queue", name))
        self.queues.setdefault(name, asyncio.Queue())

    async def declare_binding(self, queue: str, exchange: str, routing_key: str) -> None:
        self.declare_calls.append(("binding", f"{queue}->{exchange}"))
        self.bindings.add((queue, exchange, routing_key))

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        event: Event[Any],
        *,
        headers: dict[str, Any] | None = None,
        correlation_token: str | None = None,
    ) -> None:
        headers = dict(headers or {})
        body = self._serializer.serialize(event)
        self.published.append((exchange, routing_key, event, headers, correlation_token))

        kind, _ = self.exchanges.get(exchange, ("direct", {}))
        delay = headers.get("x-delay", 0) if kind == "x-delayed-message" else 0
        targets = [q for q, ex, rk in self.bindings if ex == exchange and rk == routing_key]
        for queue in targets:
            delivery = Delivery(
                body=body,
                delivery_tag=next(self._tags),
                routing_key=routing_key,
                headers=headers,
            )
            if delay > 0:
                asyncio.get_running_loop().call_later(
                    delay / 1000, self.queues[queue].put_nowait, delivery
                )
            else:
                await self.queues[queue].put(delivery)

        if not targets and self._returns:
            returned = ReturnedMessage(
                body=body,
                reply_code=NO_ROUTE,
                reply_text="NO_ROUTE",
                exchange=exchange,
                routing_key=routing_key,
                correlation_token=correlation_token,
            )
            for return_listener in self._return_listeners:
                await return_listener(returned)
        # A returned message is still accepted by the broker once its return is out.
        if self._confirms:
            for confirm_listener in self._confirm_listeners:
                await confirm_listener(correlation_token, True, None)

    def add_confirm_listener(
        self, listener: Callable[[str | None, bool, str | None], Awaitable[None]]
    ) -> None:
        self._confirm_listeners.append(listener)

    def add_return_listener(
        self, listener: Callable[[ReturnedMessage], Awaitable[None]]
    ) -> None:
        self._return_listeners.append(listener)

    async def consume(
        self,
        queues: list[str],
        ack_mode: AckMode,
    ) -> AsyncIterator[Delivery]:
        """Yield deliveries from *queues*, oldest first per queue."""
        for name in queues:
            self.queues.setdefault(name, asyncio.Queue())
        while True:
            name, delivery = await self._next(queues)
            if ack_mode is AckMode.AUTOMATIC:
                self.acked.append(delivery.delivery_tag)
            else:
                self._unsettled[delivery.delivery_tag] = (name, delivery)
            yield delivery

    async def _next(self, queues: list[str]) -> tuple[str, Delivery]:
        while True:
            for name in queues:
                queue = self.queues[name]
                if not queue.empty():
                    return name, queue.get_nowait()
            await asyncio.sleep(self._poll_interval)

    async def ack(self, delivery_tag: int) -> None:
        self._unsettled.pop(delivery_tag, None)
        self.acked.append(delivery_tag)

    async def reject(self, delivery_tag: int, *, requeue: bool = False) -> None:
        self.rejected.append((delivery_tag, requeue))
        unsettled = self._unsettled.pop(delivery_tag, None)
        if requeue and unsettled is not None:
            name, delivery = unsettled
            await self.queues[name].put(replace(delivery, redelivered=True))

    async def health_check(self) -> bool:
        return True
