"""Exceptions for mqbroker."""

from __future__ import annotations

from dataclasses import dataclass


class MqBrokerError(Exception):
    """Root exception for the mqbroker package."""


class InvalidInputError(MqBrokerError, ValueError):
    """Raised when a topic or code cannot be encoded into a correlation token."""


class MalformedTokenError(MqBrokerError, ValueError):
    """Raised when a correlation token does not decode to ``(topic, code)``."""

    def __init__(self, token: object) -> None:
        self.token = token
        super().__init__(f"Malformed correlation token: {token!r}")


class TopologyDeclarationError(MqBrokerError):
    """Raised when the broker rejects an exchange, queue or binding declaration."""

    def __init__(self, kind: str, name: str, reason: str | None = None) -> None:
        self.kind = kind
        self.name = name
        self.reason = reason
        msg = f"Failed to declare {kind} {name!r}"
        if reason:
            msg += f" - {reason}"
        super().__init__(msg)


class HandlerExecutionError(MqBrokerError):
    """Raised when a listener fails to process a delivered event.

    Contained per delivery by the consumer bridge; never escapes a worker.
    """

    def __init__(self, topic: str | None, reason: str) -> None:
        self.topic = topic
        self.reason = reason
        super().__init__(f"Listener for topic {topic!r} failed: {reason}")


class ListenerRegistrationError(MqBrokerError):
    """Raised when a second listener is registered for the same topic."""


class SerializationError(MqBrokerError):
    """Raised when an event cannot be serialized or deserialized."""


class TransportError(MqBrokerError):
    """Base class for broker transport failures."""


class TransportConnectionError(TransportError):
    """Raised when connectivity to the message broker fails."""


@dataclass(frozen=True)
class DeliveryNotAcknowledgedError:
    """A publish outcome reported as failed (nack or return).

    Not raised: the publisher already returned when the broker answers, so the
    outcome only reaches the send-status reporter.
    """

    topic: str
    code: str
    cause: str
