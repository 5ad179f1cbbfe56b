"""In-memory adapters for testing."""

from __future__ import annotations

from .status import InMemorySendStatusStore, SendStatus
from .transport import InMemoryTransport

__all__ = [
    "InMemorySendStatusStore",
    "InMemoryTransport",
    "SendStatus",
]
