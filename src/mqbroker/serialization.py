"""EventSerializer — JSON roundtrip of :class:`Event` over the wire."""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from .event import Event
from .exceptions import SerializationError


def _json_serializer(obj: Any) -> Any:
    """Serialize datetime and other non-JSON types."""
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class EventSerializer:
    """Serialize/deserialize events to/from JSON bytes.

    The wire field for the effective time is ``effectTime`` so that producers
    and consumers on other stacks read the same documents.
    """

    content_type = "application/json"

    def serialize(self, event: Event[Any]) -> bytes:
        """Encode event to JSON bytes."""
        try:
            data = event.model_dump(mode="json", by_alias=True)
            return json.dumps(data, default=_json_serializer).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise SerializationError(str(e)) from e

    def deserialize(self, raw: bytes) -> Event[Any]:
        """Decode JSON bytes to an event."""
        try:
            data = json.loads(raw.decode("utf-8"))
            return Event.model_validate(data)
        except (ValidationError, TypeError, ValueError) as e:
            raise SerializationError(str(e)) from e
