from __future__ import annotations

from typing import Awaitable, Callable, Optional, Protocol

MessageHandler = Callable[[str, bytes], Awaitable[None]]


class Transport(Protocol):
    """Broker connection consumed by the router."""

    async def connect(
        self,
        host: str,
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        tls: Optional[bool] = None,
    ) -> None: ...

    async def publish(self, topic: str, payload: bytes) -> bool: ...

    async def subscribe(self, topic: str) -> None: ...

    def set_message_handler(self, handler: MessageHandler) -> None: ...
