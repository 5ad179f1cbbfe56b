"""Correlation tokens mapping broker confirms back to ``(topic, code)``."""

from __future__ import annotations

from typing import NamedTuple

from .exceptions import InvalidInputError, MalformedTokenError

DELIMITER = ","


def encode(topic: str, code: str) -> str:
    """Encode *topic* and *code* into a single correlation token.

    Raises:
        InvalidInputError: If either field is empty or contains the delimiter.
    """
    for field_name, value in (("topic", topic), ("code", code)):
        if not value:
            raise InvalidInputError(f"{field_name} must not be empty")
        if DELIMITER in value:
            raise InvalidInputError(
                f"{field_name} {value!r} must not contain {DELIMITER!r}"
            )
    return f"{topic}{DELIMITER}{code}"


def decode(token: str | None) -> tuple[str, str]:
    """Decode a token produced by :func:`encode` back to ``(topic, code)``.

    Raises:
        MalformedTokenError: If the token is not exactly two non-empty fields.
    """
    if not isinstance(token, str):
        raise MalformedTokenError(token)
    parts = token.split(DELIMITER)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise MalformedTokenError(token)
    return parts[0], parts[1]


class CorrelationToken(NamedTuple):
    """Decoded correlation token."""

    topic: str
    code: str

    def encode(self) -> str:
        return encode(self.topic, self.code)

    @classmethod
    def decode(cls, token: str | None) -> CorrelationToken:
        topic, code = decode(token)
        return cls(topic, code)
