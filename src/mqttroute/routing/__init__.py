"""Topic pattern compilation and matching."""

from .pattern import (
    Pattern,
    Segment,
    SegmentKind,
    compile_pattern,
    match,
    to_subscription_topic,
)

__all__ = [
    "Pattern",
    "Segment",
    "SegmentKind",
    "compile_pattern",
    "match",
    "to_subscription_topic",
]
