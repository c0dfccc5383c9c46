from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from mqttroute.routing.pattern import Pattern
from mqttroute.runtime.binding import HandlerSpec


@dataclass(frozen=True, slots=True)
class Route:
    """Bind a compiled pattern to the handler invoked when it matches."""

    pattern: Pattern
    spec: HandlerSpec

    @property
    def subscription_topic(self) -> str:
        return self.pattern.subscription_topic

    @property
    def handler(self) -> Callable[..., Any]:
        return self.spec.handler

    def __str__(self) -> str:
        return f"{self.pattern.text} -> {self.spec.name}"
