"""InMemorySendStatusStore — ISendStatusReporter that keeps outcomes in a dict."""

from __future__ import annotations

from dataclasses import dataclass

from ..ports.status import ISendStatusReporter


@dataclass(frozen=True)
class SendStatus:
    topic: str
    code: str
    succeeded: bool
    cause: str | None = None


class InMemorySendStatusStore(ISendStatusReporter):
    """Records the latest outcome per ``(topic, code)`` and the full history."""

    def __init__(self) -> None:
        self._latest: dict[tuple[str, str], SendStatus] = {}
        self.history: list[SendStatus] = []

    async def success(self, topic: str, code: str) -> None:
        self._record(SendStatus(topic, code, succeeded=True))

    async def failure(self, topic: str, code: str, cause: str) -> None:
        self._record(SendStatus(topic, code, succeeded=False, cause=cause))

    def _record(self, status: SendStatus) -> None:
        self._latest[(status.topic, status.code)] = status
        self.history.append(status)

    def get(self, topic: str, code: str) -> SendStatus | None:
        return self._latest.get((topic, code))

    def successes(self) -> list[tuple[str, str]]:
        return [(s.topic, s.code) for s in self.history if s.succeeded]

    def failures(self) -> list[tuple[str, str, str | None]]:
        return [(s.topic, s.code, s.cause) for s in self.history if not s.succeeded]

    def clear(self) -> None:
        """Forget all outcomes (test teardown)."""
        self._latest.clear()
        self.history.clear()
