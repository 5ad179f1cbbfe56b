from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class ISendStatusReporter(Protocol):
    """
    Port for recording the delivery outcome of published events.

    Implementations usually persist a send-status record per ``(topic, code)``.
    """

    async def success(self, topic: str, code: str) -> None:
        """Record that the broker accepted the event."""
        ...

    async def failure(self, topic: str, code: str, cause: str) -> None:
        """
        Record that the event was not delivered.

        Args:
            topic: Event topic.
            code: Event key within the topic.
            cause: Human-readable reason (``"nack"``, return details, …).
        """
        ...
