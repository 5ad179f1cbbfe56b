"""End-to-end tests for MqBroker over the in-memory transport."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import pytest

from mqbroker import Event, ListenerRegistry, MqBroker, MqBrokerSettings
from mqbroker.memory import InMemorySendStatusStore, InMemoryTransport


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(poll(), timeout)


@pytest.mark.asyncio
async def test_publish_consume_and_report_success(
    transport: InMemoryTransport,
    store: InMemorySendStatusStore,
    registry: ListenerRegistry,
) -> None:
    received: list[Event] = []

    @registry.listener("orders")
    async def on_order(event: Event) -> None:
        received.append(event)

    broker = MqBroker(
        transport,
        store,
        registry=registry,
        settings=MqBrokerSettings(manual_acknowledge=True),
    )
    await broker.start()
    try:
        await broker.publish(Event(name="orders", key="42", payload={"amount": 10}))
        await wait_for(lambda: len(received) == 1)
        await wait_for(lambda: len(transport.acked) == 1)
    finally:
        await broker.stop()

    assert received[0].payload == {"amount": 10}
    assert store.successes() == [("orders", "42")]
    assert store.get("orders", "42").succeeded is True


@pytest.mark.asyncio
async def test_start_declares_exchanges_and_listener_queues(
    transport: InMemoryTransport,
    store: InMemorySendStatusStore,
    registry: ListenerRegistry,
) -> None:
    registry.register("orders", lambda event: None)
    broker = MqBroker(
        transport,
        store,
        registry=registry,
        settings=MqBrokerSettings(enabled_delayed_message=True),
    )
    await broker.start()
    await broker.start()
    await broker.stop()

    assert transport.declare_calls[:3] == [
        ("exchange", "mqBrokerRabbit.exchange"),
        ("exchange", "mqBrokerRabbit.delayed.exchange"),
        ("queue", "orders"),
    ]


@pytest.mark.asyncio
async def test_delayed_event_arrives_later(
    transport: InMemoryTransport,
    store: InMemorySendStatusStore,
    registry: ListenerRegistry,
) -> None:
    received: list[str] = []
    registry.register("orders", lambda event: received.append(event.key))
    now = datetime.now(timezone.utc)
    broker = MqBroker(
        transport,
        store,
        registry=registry,
        settings=MqBrokerSettings(enabled_delayed_message=True),
        clock=lambda: now,
    )
    await broker.start()
    try:
        await broker.publish(
            Event(name="orders", key="later", effective_time=now + timedelta(seconds=0.2))
        )
        await broker.publish(Event(name="orders", key="now"))
        await wait_for(lambda: received == ["now", "later"])
    finally:
        await broker.stop()

    assert transport.published[0][0] == "mqBrokerRabbit.delayed.exchange"
    assert transport.published[0][3] == {"x-delay": 200}


@pytest.mark.asyncio
async def test_unroutable_message_reports_failure_only(
    store: InMemorySendStatusStore,
) -> None:
    transport = InMemoryTransport()
    broker = MqBroker(transport, store)
    await broker.start()

    # Nothing is bound to this exchange/routing key, so the message is returned.
    await transport.publish(
        "mqBrokerRabbit.exchange",
        "orders",
        Event(name="orders", key="42"),
        correlation_token="orders,42",
    )

    assert store.successes() == []
    assert store.failures() == [
        (
            "orders",
            "42",
            "replyCode: 312, replyText: NO_ROUTE, exchange: mqBrokerRabbit.exchange",
        )
    ]


@pytest.mark.asyncio
async def test_no_reports_without_delivery_confirmation(
    store: InMemorySendStatusStore,
) -> None:
    transport = InMemoryTransport(confirms=False)
    broker = MqBroker(transport, store)
    await broker.start()
    await broker.publish(Event(name="orders", key="42"))

    assert not broker.producer.supports_delivery_confirmation()
    assert store.history == []


@pytest.mark.asyncio
async def test_health_check_delegates_to_transport(
    transport: InMemoryTransport, store: InMemorySendStatusStore
) -> None:
    assert await MqBroker(transport, store).health_check() is True


@pytest.mark.asyncio
async def test_restart_reports_each_confirm_once(
    transport: InMemoryTransport,
    store: InMemorySendStatusStore,
    registry: ListenerRegistry,
) -> None:
    registry.register("orders", lambda event: None)
    broker = MqBroker(transport, store, registry=registry)
    await broker.start()
    await broker.stop()
    await broker.start()
    try:
        await broker.publish(Event(name="orders", key="42"))
    finally:
        await broker.stop()

    assert store.successes() == [("orders", "42")]


@pytest.mark.asyncio
async def test_overlapping_starts_register_listeners_once(
    transport: InMemoryTransport,
    store: InMemorySendStatusStore,
) -> None:
    broker = MqBroker(transport, store)
    await asyncio.gather(broker.start(), broker.start())

    await transport.publish(
        "mqBrokerRabbit.exchange",
        "orders",
        Event(name="orders", key="42"),
        correlation_token="orders,42",
    )

    assert [c for c in transport.declare_calls if c[0] == "exchange"] == [
        ("exchange", "mqBrokerRabbit.exchange")
    ]
    assert len(store.failures()) == 1
    assert store.successes() == []
