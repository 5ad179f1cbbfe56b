"""RabbitMQ transport adapter on aio-pika."""

from __future__ import annotations

from .connection import RabbitMQConnectionManager
from .transport import RabbitMQTransport

__all__ = [
    "RabbitMQConnectionManager",
    "RabbitMQTransport",
]
