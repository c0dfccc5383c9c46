from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Callable, Optional

from mqttroute.domain.ports import Transport
from mqttroute.errors import BindingError
from mqttroute.routing.pattern import Pattern, compile_pattern
from mqttroute.runtime.binding import HandlerSpec, bind_arguments
from mqttroute.runtime.ctx import DispatchContext
from mqttroute.runtime.logging import Logger
from mqttroute.runtime.route import Route


class Router:
    """Match inbound messages against registered patterns and run their handlers.

    Routes are registered during startup, then :meth:`freeze` closes the
    registry; from then on it is only read. Messages delivered through
    :meth:`on_message` before that are held back and replayed on freeze so
    they are matched against the complete route set. Every matching
    handler runs in its own task so a slow or failing handler never holds
    up its siblings or the next message.
    """

    def __init__(
        self,
        transport: Optional[Transport] = None,
        *,
        logger: Optional[Logger] = None,
        handler_timeout: Optional[float] = None,
    ) -> None:
        self._transport = transport
        self._logger: Logger = logger or logging.getLogger(__name__)
        self._handler_timeout = handler_timeout or None
        self._registry: dict[str, list[Route]] = {}
        self._routes: list[Route] = []
        self._frozen = False
        self._deferred: list[tuple[str, bytes]] = []
        self._inflight: set[asyncio.Task[None]] = set()

    @property
    def routes(self) -> tuple[Route, ...]:
        return tuple(self._routes)

    @property
    def subscriptions(self) -> tuple[str, ...]:
        """Subscription topics in the order they were first registered."""
        return tuple(self._registry)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def routes_for(self, subscription_topic: str) -> tuple[Route, ...]:
        return tuple(self._registry.get(subscription_topic, ()))

    async def register_route(self, pattern: str | Pattern, handler: Callable[..., Any]) -> Route:
        """Compile *pattern*, bind it to *handler* and subscribe if needed.

        The transport is asked to subscribe only the first time a given
        subscription topic appears. Registering the same pattern and handler
        twice keeps both routes.

        Raises:
            InvalidPatternError: If the pattern is malformed.
            BindingError: If the handler signature cannot be bound.
            RuntimeError: If the router has been frozen.
        """
        if self._frozen:
            raise RuntimeError("Cannot register routes after the router has been frozen")

        compiled = pattern if isinstance(pattern, Pattern) else compile_pattern(pattern)
        route = Route(compiled, HandlerSpec.from_handler(handler, compiled.parameter_names))
        topic = compiled.subscription_topic

        bucket = self._registry.get(topic)
        if bucket is None:
            bucket = self._registry[topic] = []
            if self._transport is not None:
                try:
                    await self._transport.subscribe(topic)
                except BaseException:
                    del self._registry[topic]
                    raise
        bucket.append(route)
        self._routes.append(route)

        self._logger.info(
            "router.route.registered",
            extra={"pattern": compiled.text, "subscription": topic, "handler": route.spec.name},
        )
        return route

    def freeze(self) -> list[asyncio.Task[None]]:
        """Close registration and replay messages that arrived before it closed.

        Idempotent. Returns the tasks started for the replayed messages.
        """
        if self._frozen:
            return []
        self._frozen = True
        deferred, self._deferred = self._deferred, []
        self._logger.info(
            "router.frozen",
            extra={"routes": len(self._routes), "subscriptions": len(self._registry), "deferred": len(deferred)},
        )

        tasks: list[asyncio.Task[None]] = []
        for topic, payload in deferred:
            tasks.extend(self.dispatch(topic, payload))
        return tasks

    async def on_message(self, topic: str, payload: bytes | bytearray | str) -> None:
        """Transport callback: schedule every matching handler and return.

        Until the router is frozen the message is held back instead.
        """
        if not self._frozen:
            self._deferred.append((topic, _as_bytes(payload)))
            self._logger.debug("router.message.deferred", extra={"topic": topic})
            return
        self.dispatch(topic, payload)

    def dispatch(self, topic: str, payload: bytes | bytearray | str) -> list[asyncio.Task[None]]:
        """Match *topic* against every route and start one task per match.

        Must be called from a running event loop. Returns the scheduled tasks.
        """
        data = _as_bytes(payload)

        tasks: list[asyncio.Task[None]] = []
        for route in self._routes:
            params = route.pattern.match(topic)
            if params is None:
                continue
            ctx = DispatchContext(topic=topic, payload=data, params=params)
            task = asyncio.create_task(self._invoke(route, ctx), name=f"route:{route.pattern.text}")
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            tasks.append(task)

        if not tasks:
            self._logger.debug("router.message.unmatched", extra={"topic": topic})
        return tasks

    async def drain(self) -> None:
        """Wait until every in-flight handler task has finished."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel in-flight handler tasks and wait for them to unwind."""
        pending = list(self._inflight)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._inflight.clear()

    async def _invoke(self, route: Route, ctx: DispatchContext) -> None:
        try:
            args, kwargs = bind_arguments(route.spec, ctx, logger=self._logger)
        except BindingError as exc:
            self._log_error("router.binding.error", route, ctx, str(exc))
            return

        try:
            call = self._call(route.spec, args, kwargs)
            if self._handler_timeout is not None:
                await asyncio.wait_for(call, timeout=self._handler_timeout)
            else:
                await call
        except asyncio.TimeoutError:
            self._log_error("router.handler.timeout", route, ctx, f"exceeded {self._handler_timeout}s")
        except Exception as exc:
            self._log_error("router.handler.error", route, ctx, str(exc), exc_info=True)

    @staticmethod
    async def _call(spec: HandlerSpec, args: list[Any], kwargs: dict[str, Any]) -> Any:
        if spec.is_coroutine:
            return await spec.handler(*args, **kwargs)
        result = await asyncio.to_thread(spec.handler, *args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _log_error(
        self,
        event: str,
        route: Route,
        ctx: DispatchContext,
        error: str,
        *,
        exc_info: bool = False,
    ) -> None:
        self._logger.error(
            event,
            extra={"pattern": route.pattern.text, "topic": ctx.topic, "handler": route.spec.name, "error": error},
            exc_info=exc_info,
        )


def _as_bytes(payload: bytes | bytearray | str) -> bytes:
    return payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)


__all__ = ["Router"]
