"""Topic to listener table, built at startup."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from .exceptions import ListenerRegistrationError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .event import Event

    Listener = Callable[[Event[Any]], Awaitable[None] | None]

logger = logging.getLogger("mqbroker.registry")

F = TypeVar("F")


@dataclass(frozen=True)
class ListenerMetadata:
    topic: str
    handler: Listener


class ListenerRegistry:
    """Append-only mapping ``topic -> listener``.

    Populated while the application boots; read by the consumer bridge to
    know which queues to declare and consume, and where to dispatch each
    delivery. Create one instance per application.

    Usage::

        registry = ListenerRegistry()

        @registry.listener("orders")
        async def on_order(event: Event) -> None:
            ...
    """

    def __init__(self) -> None:
        self._listeners: dict[str, ListenerMetadata] = {}

    def register(self, topic: str, handler: Listener) -> None:
        if not topic:
            raise ListenerRegistrationError("topic must not be empty")
        existing = self._listeners.get(topic)
        if existing is not None and existing.handler is not handler:
            msg = f"Duplicate listener for topic {topic!r}"
            raise ListenerRegistrationError(msg)
        self._listeners[topic] = ListenerMetadata(topic, handler)
        logger.debug("Registered listener for topic %s", topic)

    def listener(self, topic: str) -> Callable[[F], F]:
        """Decorator form of :meth:`register`."""

        def decorator(handler: F) -> F:
            self.register(topic, handler)  # type: ignore[arg-type]
            return handler

        return decorator

    def get(self, topic: str) -> Listener | None:
        metadata = self._listeners.get(topic)
        return metadata.handler if metadata is not None else None

    def all_topics(self) -> list[str]:
        """Topics in registration order."""
        return list(self._listeners)

    def all_listener_metadata(self) -> list[ListenerMetadata]:
        return list(self._listeners.values())

    def __contains__(self, topic: object) -> bool:
        return topic in self._listeners

    def __len__(self) -> int:
        return len(self._listeners)
