"""Tests for ListenerRegistry."""

from __future__ import annotations

import pytest

from mqbroker.event import Event
from mqbroker.exceptions import ListenerRegistrationError
from mqbroker.registry import ListenerMetadata, ListenerRegistry


async def on_order(event: Event) -> None:
    pass


async def on_payment(event: Event) -> None:
    pass


def test_register_and_get(registry: ListenerRegistry) -> None:
    registry.register("orders", on_order)
    assert registry.get("orders") is on_order
    assert registry.get("missing") is None
    assert "orders" in registry
    assert len(registry) == 1


def test_all_topics_in_registration_order(registry: ListenerRegistry) -> None:
    registry.register("payments", on_payment)
    registry.register("orders", on_order)
    assert registry.all_topics() == ["payments", "orders"]
    assert registry.all_listener_metadata() == [
        ListenerMetadata("payments", on_payment),
        ListenerMetadata("orders", on_order),
    ]


def test_duplicate_topic_raises(registry: ListenerRegistry) -> None:
    registry.register("orders", on_order)
    with pytest.raises(ListenerRegistrationError):
        registry.register("orders", on_payment)


def test_registering_same_handler_twice_is_idempotent(
    registry: ListenerRegistry,
) -> None:
    registry.register("orders", on_order)
    registry.register("orders", on_order)
    assert registry.all_topics() == ["orders"]


def test_empty_topic_raises(registry: ListenerRegistry) -> None:
    with pytest.raises(ListenerRegistrationError):
        registry.register("", on_order)


def test_listener_decorator(registry: ListenerRegistry) -> None:
    @registry.listener("orders")
    async def handle(event: Event) -> None:
        pass

    assert registry.get("orders") is handle


def test_registries_are_isolated() -> None:
    first = ListenerRegistry()
    second = ListenerRegistry()
    first.register("orders", on_order)
    assert "orders" not in second
