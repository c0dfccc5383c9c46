"""Exception hierarchy shared by the pattern compiler, binder and router."""

from __future__ import annotations

from typing import Any


class RouteError(Exception):
    """Base for all mqttroute errors."""


class InvalidPatternError(RouteError, ValueError):
    """Raised when a topic pattern cannot be compiled.

    Fatal to the registration that triggered it only.
    """

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f"Invalid topic pattern {pattern!r}: {reason}")
        self.pattern = pattern
        self.reason = reason


class BindingError(RouteError):
    """Raised when a handler argument cannot be bound.

    During dispatch this aborts a single handler invocation.
    """


class PayloadDecodeError(RouteError):
    """Raised when a payload cannot be decoded into the requested type."""

    def __init__(self, target: Any, cause: Exception) -> None:
        name = getattr(target, "__name__", repr(target))
        super().__init__(f"Cannot decode payload as {name}: {cause}")
        self.target = target
        self.cause = cause


__all__ = ["RouteError", "InvalidPatternError", "BindingError", "PayloadDecodeError"]
