from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar, Optional


@dataclass(slots=True)
class DispatchContext:
    """Per-match state handed to the argument binder.

    Discarded once the handler invocation finishes.
    """

    topic: str
    payload: bytes
    params: dict[str, str] = field(default_factory=dict)
    _text: Optional[str] = field(default=None, repr=False)

    @property
    def text(self) -> str:
        """Payload decoded as UTF-8, undecodable bytes replaced."""
        if self._text is None:
            self._text = self.payload.decode("utf-8", errors="replace")
        return self._text


class CancelToken:
    """Cancellation placeholder for handlers that accept one.

    Dispatch does not propagate cancellation, so the bound token is
    always :attr:`CancelToken.NONE`, which never reports cancellation.
    """

    __slots__ = ()

    NONE: ClassVar["CancelToken"]

    @property
    def cancelled(self) -> bool:
        return False

    def raise_if_cancelled(self) -> None:
        return None

    def __repr__(self) -> str:
        return "CancelToken.NONE"


CancelToken.NONE = CancelToken()


__all__ = ["DispatchContext", "CancelToken"]
