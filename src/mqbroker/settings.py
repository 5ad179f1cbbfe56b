"""Broker options."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_EXCHANGE_NAME = "mqBrokerRabbit.exchange"
DEFAULT_DELAYED_EXCHANGE_NAME = "mqBrokerRabbit.delayed.exchange"


class AckMode(str, Enum):
    """Consumer acknowledgement discipline."""

    AUTOMATIC = "automatic"
    MANUAL = "manual"


class MqBrokerSettings(BaseModel):
    """Immutable configuration, built once at startup.

    Accepts both snake_case names and the camelCase keys of existing
    configuration files (``manualAcknowledge``, ``enabledDelayedMessage``).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    manual_acknowledge: bool = Field(default=False, alias="manualAcknowledge")
    enabled_delayed_message: bool = Field(default=False, alias="enabledDelayedMessage")
    concurrency: int = Field(default=1, ge=1, description="Consumer worker count")
    prefetch_count: int = Field(default=10, ge=1, alias="prefetchCount")
    requeue_rejected: bool = Field(
        default=False,
        alias="requeueRejected",
        description="Requeue deliveries whose listener failed in manual mode",
    )
    exchange_name: str = Field(default=DEFAULT_EXCHANGE_NAME, alias="exchangeName")
    delayed_exchange_name: str = Field(
        default=DEFAULT_DELAYED_EXCHANGE_NAME, alias="delayedExchangeName"
    )
    publisher_confirms: bool = Field(default=True, alias="publisherConfirms")
    publisher_returns: bool = Field(default=True, alias="publisherReturns")

    @property
    def ack_mode(self) -> AckMode:
        return AckMode.MANUAL if self.manual_acknowledge else AckMode.AUTOMATIC
