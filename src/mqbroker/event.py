"""Event model published and consumed through the broker."""

from __future__ import annotations

from datetime import datetime
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class Event(BaseModel, Generic[T]):
    """Immutable event carried between producers and listeners.

    ``name`` is the topic (queue and routing key), ``key`` identifies the event
    within its topic. When ``effective_time`` lies in the future the event is
    published through the delayed exchange.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str = Field(..., min_length=1, description="Topic, e.g. 'orders'")
    key: str = Field(..., min_length=1, description="Unique code within the topic")
    payload: T | None = None
    effective_time: datetime | None = Field(default=None, alias="effectTime")
