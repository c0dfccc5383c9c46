"""Topic pattern compilation and matching.

Patterns use MQTT topic-filter syntax extended with named placeholders::

    station/+/sensor/{sensorId}/telemetry

- ``+`` matches exactly one topic level
- ``#`` matches the remaining levels (zero or more) and must be last
- ``{name}`` matches one level and captures it under ``name``
- anything else is a literal level compared verbatim

A compiled :class:`Pattern` is immutable and can be shared across
concurrent dispatches.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from mqttroute.errors import InvalidPatternError

SEPARATOR = "/"
SINGLE_WILDCARD = "+"
MULTI_WILDCARD = "#"


class SegmentKind(str, Enum):
    LITERAL = "literal"
    SINGLE_WILDCARD = "single_wildcard"
    MULTI_WILDCARD = "multi_wildcard"
    PARAMETER = "parameter"


@dataclass(frozen=True, slots=True)
class Segment:
    """One level of a compiled pattern.

    ``value`` holds the literal text for LITERAL segments and the
    parameter name for PARAMETER segments.
    """

    kind: SegmentKind
    value: str = ""

    def render(self) -> str:
        """Render the segment as it appears in a broker subscription."""
        if self.kind is SegmentKind.LITERAL:
            return self.value
        if self.kind is SegmentKind.MULTI_WILDCARD:
            return MULTI_WILDCARD
        return SINGLE_WILDCARD


@dataclass(frozen=True, slots=True)
class Pattern:
    """A compiled topic pattern."""

    text: str
    segments: tuple[Segment, ...]
    subscription_topic: str
    parameter_names: tuple[str, ...]

    def match(self, topic: str) -> dict[str, str] | None:
        """Match *topic* against this pattern.

        Returns the captured parameters (possibly empty) on success and
        ``None`` when the topic does not match.
        """
        levels = topic.split(SEPARATOR)
        params: dict[str, str] = {}
        for index, segment in enumerate(self.segments):
            if segment.kind is SegmentKind.MULTI_WILDCARD:
                return params
            if index >= len(levels):
                return None
            level = levels[index]
            if segment.kind is SegmentKind.LITERAL:
                if level != segment.value:
                    return None
            elif segment.kind is SegmentKind.PARAMETER:
                params[segment.value] = level
        if len(levels) != len(self.segments):
            return None
        return params

    def matches(self, topic: str) -> bool:
        return self.match(topic) is not None

    def __str__(self) -> str:
        return self.text


def _parse_segment(pattern: str, raw: str) -> Segment:
    if raw == SINGLE_WILDCARD:
        return Segment(SegmentKind.SINGLE_WILDCARD)
    if raw == MULTI_WILDCARD:
        return Segment(SegmentKind.MULTI_WILDCARD)
    if len(raw) >= 2 and raw.startswith("{") and raw.endswith("}"):
        name = raw[1:-1]
        if not name.isidentifier():
            raise InvalidPatternError(pattern, f"parameter name {name!r} is not a valid identifier")
        return Segment(SegmentKind.PARAMETER, name)
    return Segment(SegmentKind.LITERAL, raw)


def compile_pattern(text: str) -> Pattern:
    """Compile a pattern string into a :class:`Pattern`.

    Raises:
        InvalidPatternError: If the pattern is empty, ``#`` is not the last
            level, or a parameter name is invalid or repeated.
    """
    if not text:
        raise InvalidPatternError(text, "pattern must not be empty")

    raw_segments = text.split(SEPARATOR)
    segments: list[Segment] = []
    names: list[str] = []
    for index, raw in enumerate(raw_segments):
        segment = _parse_segment(text, raw)
        if segment.kind is SegmentKind.MULTI_WILDCARD and index != len(raw_segments) - 1:
            raise InvalidPatternError(text, "'#' is only allowed as the last level")
        if segment.kind is SegmentKind.PARAMETER:
            if segment.value in names:
                raise InvalidPatternError(text, f"duplicate parameter {segment.value!r}")
            names.append(segment.value)
        segments.append(segment)

    return Pattern(
        text=text,
        segments=tuple(segments),
        subscription_topic=SEPARATOR.join(segment.render() for segment in segments),
        parameter_names=tuple(names),
    )


def _as_pattern(pattern: Pattern | str) -> Pattern:
    return pattern if isinstance(pattern, Pattern) else compile_pattern(pattern)


def match(pattern: Pattern | str, topic: str) -> dict[str, str] | None:
    """Match *topic* against *pattern*, compiling the pattern if needed."""
    return _as_pattern(pattern).match(topic)


def to_subscription_topic(pattern: Pattern | str) -> str:
    """Return the broker subscription topic for *pattern*.

    Named parameters collapse to ``+``; all other levels are unchanged.
    """
    return _as_pattern(pattern).subscription_topic


__all__ = [
    "SEPARATOR",
    "Segment",
    "SegmentKind",
    "Pattern",
    "compile_pattern",
    "match",
    "to_subscription_topic",
]
