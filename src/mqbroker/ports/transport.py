from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

    from ..event import Event
    from ..settings import AckMode


@dataclass(frozen=True)
class Delivery:
    """A message handed to a consumer by the transport."""

    body: bytes
    delivery_tag: int
    routing_key: str
    redelivered: bool = False
    headers: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReturnedMessage:
    """A published message the broker could not route to any queue."""

    body: bytes
    reply_code: int
    reply_text: str
    exchange: str
    routing_key: str
    correlation_token: str | None = None


@runtime_checkable
class ITransport(Protocol):
    """
    Port for the broker transport (RabbitMQ, in-memory, …).

    Publisher confirms and returns arrive asynchronously through the
    registered listeners, never through the return value of ``publish``.
    """

    @property
    def supports_delivery_confirmation(self) -> bool:
        """``True`` when both publisher confirms and returns are enabled."""
        ...

    async def declare_exchange(
        self,
        name: str,
        kind: str,
        *,
        durable: bool = True,
        arguments: dict[str, Any] | None = None,
    ) -> None: ...

    async def declare_queue(self, name: str) -> None: ...

    async def declare_binding(
        self, queue: str, exchange: str, routing_key: str
    ) -> None: ...

    async def publish(
        self,
        exchange: str,
        routing_key: str,
        event: Event[Any],
        *,
        headers: dict[str, Any] | None = None,
        correlation_token: str | None = None,
    ) -> None:
        """
        Hand *event* to the broker.

        Returns once the transport accepted the message; confirmation is
        reported later to the confirm listeners.
        """
        ...

    def add_confirm_listener(
        self, listener: Callable[[str | None, bool, str | None], Awaitable[None]]
    ) -> None:
        """Register ``listener(token, acknowledged, cause)`` for publisher confirms."""
        ...

    def add_return_listener(
        self, listener: Callable[[ReturnedMessage], Awaitable[None]]
    ) -> None:
        """Register ``listener(returned)`` for unroutable messages."""
        ...

    def consume(
        self, queues: list[str], ack_mode: AckMode
    ) -> AsyncIterator[Delivery]:
        """Yield deliveries from *queues*.

        In automatic mode the transport settles each delivery itself.
        """
        ...

    async def ack(self, delivery_tag: int) -> None: ...

    async def reject(self, delivery_tag: int, *, requeue: bool = False) -> None: ...

    async def health_check(self) -> bool: ...
