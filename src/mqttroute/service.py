"""Declarative route tables and the service that hosts them.

Example:
    ```python
    routes = RouteTable()

    @routes.route("station/+/sensor/{sensorId}/telemetry")
    async def telemetry(sensorId: str, data: SensorTelemetry) -> None:
        ...

    async with RouteService(RouterSettings.from_env(), routes) as service:
        await service.publish("station/aaa/sensor/s7/command", {"action": "reset"})
        await service.wait_closed()
    ```
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Iterator, Optional, TypeVar

import orjson
from pydantic import BaseModel

from mqttroute.adapters.mqtt_client import MQTTTransport
from mqttroute.config import RouterSettings
from mqttroute.domain.ports import Transport
from mqttroute.routing.pattern import compile_pattern
from mqttroute.runtime.router import Router

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class RouteTable:
    """Ordered collection of ``(pattern, handler)`` declarations.

    Patterns are compiled when declared so malformed ones fail at import
    time rather than at startup.
    """

    def __init__(self) -> None:
        self._entries: list[tuple[str, Callable[..., Any]]] = []

    def route(self, pattern: str) -> Callable[[F], F]:
        """Decorator form of :meth:`add`."""

        def decorator(handler: F) -> F:
            self.add(pattern, handler)
            return handler

        return decorator

    def add(self, pattern: str, handler: Callable[..., Any]) -> None:
        compile_pattern(pattern)
        self._entries.append((pattern, handler))

    def include(self, other: RouteTable) -> None:
        self._entries.extend(other)

    def __iter__(self) -> Iterator[tuple[str, Callable[..., Any]]]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)


class RouteService:
    """Connect a transport, register a route table and dispatch until stopped."""

    def __init__(
        self,
        settings: Optional[RouterSettings] = None,
        table: Optional[RouteTable] = None,
        *,
        transport: Optional[Transport] = None,
    ) -> None:
        self._settings = settings or RouterSettings()
        self._table = table or RouteTable()
        self._transport: Transport = transport or MQTTTransport(
            client_id=self._settings.client_id,
            keepalive=self._settings.keepalive,
            reconnect_min_delay=self._settings.reconnect_min_delay,
            reconnect_max_delay=self._settings.reconnect_max_delay,
        )
        self.router = Router(self._transport, handler_timeout=self._settings.handler_timeout)
        self._stopped = asyncio.Event()
        self._started = False

    @property
    def transport(self) -> Transport:
        return self._transport

    async def start(self) -> None:
        """Connect to the broker, register every table route, then open dispatch.

        Messages the broker delivers while routes are still being registered
        (retained messages, typically) are replayed once all routes are in.
        """
        if self._started:
            return
        self._started = True
        self._stopped.clear()

        params = self._settings.connection
        tls = self._settings.tls if self._settings.tls is not None else (params.tls or None)
        self._transport.set_message_handler(self.router.on_message)
        await self._transport.connect(params.hostname, params.port, params.username, params.password, tls)

        for pattern, handler in self._table:
            await self.router.register_route(pattern, handler)
        self.router.freeze()
        logger.info(
            "service.started",
            extra={"routes": len(self.router.routes), "subscriptions": len(self.router.subscriptions)},
        )

    async def publish(self, topic: str, payload: Any) -> bool:
        """Publish *payload*, serializing models and JSON-able values."""
        return await self._transport.publish(topic, _encode(payload))

    async def run(self) -> None:
        """Start, then block until :meth:`stop` is called."""
        await self.start()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        await self._stopped.wait()

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.router.stop()
        disconnect = getattr(self._transport, "disconnect", None)
        if disconnect is not None:
            await disconnect()
        self._stopped.set()
        logger.info("service.stopped")

    async def __aenter__(self) -> RouteService:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()


def _encode(payload: Any) -> bytes:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    if isinstance(payload, BaseModel):
        return payload.model_dump_json().encode("utf-8")
    return orjson.dumps(payload)


__all__ = ["RouteService", "RouteTable"]
