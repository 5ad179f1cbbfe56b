"""ConfirmDispatcher — turns publisher confirms and returns into send-status reports."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from . import correlation
from .exceptions import (
    DeliveryNotAcknowledgedError,
    MalformedTokenError,
    SerializationError,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from .event import Event
    from .ports.status import ISendStatusReporter
    from .ports.transport import ReturnedMessage
    from .serialization import EventSerializer

logger = logging.getLogger("mqbroker.confirm")

DEFAULT_NACK_CAUSE = "nack"


def return_cause(reply_code: int, reply_text: str, exchange: str) -> str:
    return f"replyCode: {reply_code}, replyText: {reply_text}, exchange: {exchange}"


class ConfirmDispatcher:
    """Reports the broker's answer for each published event.

    Two entry points are fed by the transport, concurrently with publishing:

    - :meth:`on_confirm` — the broker accepted (ack) or refused (nack) a message.
    - :meth:`on_return` — the broker could not route a message to any queue.

    RabbitMQ confirms a returned mandatory message with an ack right after the
    return. Returns that carry their correlation token are remembered so that
    ack is not reported as a success.
    """

    def __init__(self, reporter: ISendStatusReporter) -> None:
        self._reporter = reporter
        self._returned: set[str] = set()

    async def on_confirm(
        self, token: str | None, acknowledged: bool, cause: str | None = None
    ) -> None:
        try:
            topic, code = correlation.decode(token)
        except MalformedTokenError:
            logger.error("Dropping publisher confirm with malformed token %r", token)
            return

        if token in self._returned:
            self._returned.discard(token)
            if acknowledged:
                logger.debug("Ignoring ack for returned message %s", token)
                return

        if acknowledged:
            await self._report_success(topic, code)
        else:
            await self._report_failure(
                DeliveryNotAcknowledgedError(topic, code, cause or DEFAULT_NACK_CAUSE)
            )

    async def on_return(
        self,
        event: Event[Any],
        reply_code: int,
        reply_text: str,
        exchange: str,
        routing_key: str,
        correlation_token: str | None = None,
    ) -> None:
        if correlation_token is not None:
            self._returned.add(correlation_token)
        await self._report_failure(
            DeliveryNotAcknowledgedError(
                routing_key, event.key, return_cause(reply_code, reply_text, exchange)
            )
        )

    def returned_listener(
        self, serializer: EventSerializer
    ) -> Callable[[ReturnedMessage], Awaitable[None]]:
        """Adapt :meth:`on_return` to the transport's ``ReturnedMessage`` channel."""

        async def listener(returned: ReturnedMessage) -> None:
            try:
                event = serializer.deserialize(returned.body)
            except SerializationError:
                logger.exception(
                    "Dropping returned message on %s: body is not an event",
                    returned.routing_key,
                )
                return
            await self.on_return(
                event,
                returned.reply_code,
                returned.reply_text,
                returned.exchange,
                returned.routing_key,
                correlation_token=returned.correlation_token,
            )

        return listener

    async def _report_success(self, topic: str, code: str) -> None:
        try:
            await self._reporter.success(topic, code)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to record success for %s/%s", topic, code)

    async def _report_failure(self, outcome: DeliveryNotAcknowledgedError) -> None:
        logger.warning(
            "Delivery of %s/%s failed: %s", outcome.topic, outcome.code, outcome.cause
        )
        try:
            await self._reporter.failure(outcome.topic, outcome.code, outcome.cause)
        except Exception:  # noqa: BLE001
            logger.exception(
                "Failed to record failure for %s/%s", outcome.topic, outcome.code
            )
