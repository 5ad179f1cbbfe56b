"""Tests for ConsumerBridge acknowledgement handling."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from mqbroker.consumer import ConsumerBridge, DeliveryState
from mqbroker.event import Event
from mqbroker.memory import InMemoryTransport
from mqbroker.ports.transport import Delivery
from mqbroker.registry import ListenerRegistry
from mqbroker.serialization import EventSerializer
from mqbroker.settings import AckMode, MqBrokerSettings

MANUAL = MqBrokerSettings(manual_acknowledge=True)
AUTOMATIC = MqBrokerSettings(manual_acknowledge=False)


def delivery_for(event: Event, tag: int = 1) -> Delivery:
    return Delivery(
        body=EventSerializer().serialize(event),
        delivery_tag=tag,
        routing_key=event.name,
    )


@pytest.fixture
def mock_transport() -> MagicMock:
    transport = MagicMock()
    transport.ack = AsyncMock()
    transport.reject = AsyncMock()
    return transport


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


# ── Strategy selection ───────────────────────────────────────────────


def test_ack_mode_chosen_from_settings(registry: ListenerRegistry) -> None:
    assert ConsumerBridge(MagicMock(), registry, MANUAL).ack_mode is AckMode.MANUAL
    assert (
        ConsumerBridge(MagicMock(), registry, AUTOMATIC).ack_mode is AckMode.AUTOMATIC
    )


# ── Manual mode ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_manual_acks_after_handler_returns(
    registry: ListenerRegistry, mock_transport: MagicMock
) -> None:
    seen: list[Event] = []

    async def handler(event: Event) -> None:
        mock_transport.ack.assert_not_called()
        seen.append(event)

    registry.register("orders", handler)
    bridge = ConsumerBridge(mock_transport, registry, MANUAL)

    state = await bridge.process(delivery_for(Event(name="orders", key="42"), tag=7))

    assert state is DeliveryState.ACKED
    assert [e.key for e in seen] == ["42"]
    mock_transport.ack.assert_awaited_once_with(7)
    mock_transport.reject.assert_not_called()


@pytest.mark.asyncio
async def test_manual_handler_error_sends_no_ack(
    registry: ListenerRegistry, mock_transport: MagicMock
) -> None:
    async def handler(event: Event) -> None:
        raise RuntimeError("boom")

    registry.register("orders", handler)
    bridge = ConsumerBridge(mock_transport, registry, MANUAL)

    state = await bridge.process(delivery_for(Event(name="orders", key="42"), tag=3))

    assert state is DeliveryState.FAILED
    mock_transport.ack.assert_not_called()
    mock_transport.reject.assert_awaited_once_with(3, requeue=False)


@pytest.mark.asyncio
async def test_manual_failure_honours_requeue_policy(
    registry: ListenerRegistry, mock_transport: MagicMock
) -> None:
    async def handler(event: Event) -> None:
        raise ValueError("bad payload")

    registry.register("orders", handler)
    settings = MqBrokerSettings(manual_acknowledge=True, requeue_rejected=True)
    bridge = ConsumerBridge(mock_transport, registry, settings)

    await bridge.process(delivery_for(Event(name="orders", key="42"), tag=5))

    mock_transport.reject.assert_awaited_once_with(5, requeue=True)


@pytest.mark.asyncio
async def test_manual_sync_handler_supported(
    registry: ListenerRegistry, mock_transport: MagicMock
) -> None:
    seen: list[str] = []
    registry.register("orders", lambda event: seen.append(event.key))
    bridge = ConsumerBridge(mock_transport, registry, MANUAL)

    state = await bridge.process(delivery_for(Event(name="orders", key="9")))

    assert state is DeliveryState.ACKED
    assert seen == ["9"]


@pytest.mark.asyncio
async def test_undecodable_body_fails_without_ack(
    registry: ListenerRegistry, mock_transport: MagicMock
) -> None:
    bridge = ConsumerBridge(mock_transport, registry, MANUAL)
    state = await bridge.process(
        Delivery(body=b"{not json", delivery_tag=1, routing_key="orders")
    )
    assert state is DeliveryState.FAILED
    mock_transport.ack.assert_not_called()


@pytest.mark.asyncio
async def test_missing_listener_fails_without_ack(
    registry: ListenerRegistry, mock_transport: MagicMock
) -> None:
    bridge = ConsumerBridge(mock_transport, registry, MANUAL)
    state = await bridge.process(delivery_for(Event(name="unknown", key="1")))
    assert state is DeliveryState.FAILED
    mock_transport.ack.assert_not_called()


@pytest.mark.asyncio
async def test_ack_failure_is_contained(
    registry: ListenerRegistry, mock_transport: MagicMock
) -> None:
    registry.register("orders", AsyncMock())
    mock_transport.ack = AsyncMock(side_effect=ConnectionError("channel closed"))
    bridge = ConsumerBridge(mock_transport, registry, MANUAL)

    state = await bridge.process(delivery_for(Event(name="orders", key="1")))

    assert state is DeliveryState.FAILED


# ── Automatic mode ───────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_automatic_returns_idle_and_never_acks(
    registry: ListenerRegistry, mock_transport: MagicMock
) -> None:
    registry.register("orders", AsyncMock(side_effect=RuntimeError("boom")))
    bridge = ConsumerBridge(mock_transport, registry, AUTOMATIC)

    state = await bridge.process(delivery_for(Event(name="orders", key="1")))

    assert state is DeliveryState.IDLE
    mock_transport.ack.assert_not_called()
    mock_transport.reject.assert_not_called()


@pytest.mark.asyncio
async def test_automatic_worker_survives_handler_errors(
    transport: InMemoryTransport, registry: ListenerRegistry
) -> None:
    processed: list[str] = []

    async def handler(event: Event) -> None:
        processed.append(event.key)
        if event.key == "1":
            raise RuntimeError("first delivery fails")

    registry.register("orders", handler)
    bridge = ConsumerBridge(transport, registry, AUTOMATIC)
    await transport.declare_queue("orders")
    await transport.declare_binding("orders", "ex", "orders")
    await bridge.start()
    try:
        for key in ("1", "2", "3"):
            await transport.publish("ex", "orders", Event(name="orders", key=key))
        await wait_for(lambda: len(processed) == 3)
    finally:
        await bridge.stop()

    assert processed == ["1", "2", "3"]
    assert len(transport.acked) == 3
    assert transport.rejected == []


# ── Workers ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_manual_workers_ack_each_successful_delivery(
    transport: InMemoryTransport, registry: ListenerRegistry
) -> None:
    async def handler(event: Event) -> None:
        if event.key == "bad":
            raise RuntimeError("boom")

    registry.register("orders", handler)
    settings = MqBrokerSettings(manual_acknowledge=True, concurrency=3)
    bridge = ConsumerBridge(transport, registry, settings)
    await transport.declare_queue("orders")
    await transport.declare_binding("orders", "ex", "orders")
    await bridge.start()
    try:
        for key in ("a", "bad", "b", "c"):
            await transport.publish("ex", "orders", Event(name="orders", key=key))
        await wait_for(lambda: len(transport.acked) + len(transport.rejected) == 4)
    finally:
        await bridge.stop()

    assert len(transport.acked) == 3
    assert len(transport.rejected) == 1
    assert transport.rejected[0][1] is False
    assert not bridge.running


@pytest.mark.asyncio
async def test_start_without_listeners_is_noop(
    transport: InMemoryTransport, registry: ListenerRegistry
) -> None:
    bridge = ConsumerBridge(transport, registry, AUTOMATIC)
    await bridge.start()
    assert not bridge.running
    await bridge.stop()
