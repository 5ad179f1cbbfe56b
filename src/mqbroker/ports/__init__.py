"""Protocols implemented by infrastructure adapters."""

from __future__ import annotations

from .status import ISendStatusReporter
from .transport import Delivery, ITransport, ReturnedMessage

__all__ = [
    "Delivery",
    "ISendStatusReporter",
    "ITransport",
    "ReturnedMessage",
]
