"""Producer — routes events to the primary or delayed exchange with a correlation token."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from . import correlation

if TYPE_CHECKING:
    from collections.abc import Callable

    from .event import Event
    from .ports.transport import ITransport
    from .settings import MqBrokerSettings
    from .topology import TopologyManager

logger = logging.getLogger("mqbroker.producer")

DELAY_HEADER = "x-delay"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # Naive datetimes are taken to be in the system timezone.
    return value if value.tzinfo is not None else value.astimezone()


@dataclass(frozen=True)
class DelayDecision:
    """Whether an event goes through the delayed exchange, and for how long."""

    delayed: bool
    delay_millis: int = 0

    @classmethod
    def compute(cls, effective_time: datetime | None, now: datetime) -> DelayDecision:
        if effective_time is None:
            return cls(delayed=False)
        millis = (_aware(effective_time) - _aware(now)) // timedelta(milliseconds=1)
        if millis <= 0:
            return cls(delayed=False)
        return cls(delayed=True, delay_millis=millis)


class Producer:
    """Publishes events through the transport.

    ``accept`` returns once the transport took the message. The delivery
    outcome is reported later through the confirm/return channels.

    Usage::

        producer = Producer(transport, TopologyManager(transport, settings), settings)
        await producer.accept(Event(name="orders", key="42", payload={...}))
    """

    def __init__(
        self,
        transport: ITransport,
        topology: TopologyManager,
        settings: MqBrokerSettings,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._transport = transport
        self._topology = topology
        self._settings = settings
        self._clock = clock or _utcnow

    def supports_delivery_confirmation(self) -> bool:
        """Return True if confirm/return signals will arrive for published events."""
        return bool(self._transport.supports_delivery_confirmation)

    async def accept(self, event: Event[Any]) -> None:
        """Publish *event*, declaring its topic on first use.

        Raises:
            InvalidInputError: If name or key contain the token delimiter.
            TopologyDeclarationError: If the topic cannot be declared.
        """
        token = correlation.encode(event.name, event.key)
        await self._topology.ensure_topic_declared(event.name)
        decision = DelayDecision.compute(event.effective_time, self._clock())
        delayed_exchange = self._topology.delayed_exchange_name

        if decision.delayed and delayed_exchange is not None:
            logger.debug(
                "Publishing %s to %s with %dms delay",
                token,
                delayed_exchange,
                decision.delay_millis,
            )
            await self._transport.publish(
                delayed_exchange,
                event.name,
                event,
                headers={DELAY_HEADER: decision.delay_millis},
                correlation_token=token,
            )
            return

        if decision.delayed:
            logger.warning(
                "Event %s has a future effective time but delayed delivery is "
                "disabled; publishing immediately",
                token,
            )
        await self._transport.publish(
            self._topology.exchange_name,
            event.name,
            event,
            headers={},
            correlation_token=token,
        )
