"""Reliable RabbitMQ event publishing — topology, delivery confirmation, ack modes."""

from __future__ import annotations

from .broker import MqBroker
from .confirm import ConfirmDispatcher
from .consumer import ConsumerBridge, DeliveryState
from .correlation import CorrelationToken
from .event import Event
from .exceptions import (
    DeliveryNotAcknowledgedError,
    HandlerExecutionError,
    InvalidInputError,
    ListenerRegistrationError,
    MalformedTokenError,
    MqBrokerError,
    SerializationError,
    TopologyDeclarationError,
    TransportConnectionError,
    TransportError,
)
from .producer import DelayDecision, Producer
from .registry import ListenerMetadata, ListenerRegistry
from .serialization import EventSerializer
from .settings import AckMode, MqBrokerSettings
from .topology import TopologyCache, TopologyManager

__all__ = [
    "AckMode",
    "ConfirmDispatcher",
    "ConsumerBridge",
    "CorrelationToken",
    "DelayDecision",
    "DeliveryNotAcknowledgedError",
    "DeliveryState",
    "Event",
    "EventSerializer",
    "HandlerExecutionError",
    "InvalidInputError",
    "ListenerMetadata",
    "ListenerRegistrationError",
    "ListenerRegistry",
    "MalformedTokenError",
    "MqBroker",
    "MqBrokerError",
    "MqBrokerSettings",
    "Producer",
    "SerializationError",
    "TopologyCache",
    "TopologyDeclarationError",
    "TopologyManager",
    "TransportConnectionError",
    "TransportError",
]
