"""Handler argument binding.

A :class:`HandlerSpec` is computed once per handler at registration time
from its signature. For every matched message :func:`bind_arguments`
walks the handler spec and produces the call arguments:

1. parameters named after a pattern placeholder receive the captured
   level, converted to ``str``, ``int``, ``float`` or ``bool``
2. ``topic: str`` receives the raw topic
3. ``payload: str`` receives the decoded payload (``payload: bytes`` the
   raw bytes)
4. ``CancelToken`` parameters receive :attr:`CancelToken.NONE`
5. any other annotated type is decoded from the JSON payload with
   case-insensitive key matching; decode failures bind ``None``
6. everything else gets its default, or ``None``
"""

from __future__ import annotations

import dataclasses
import functools
import inspect
import logging
import math
import re
import types
import typing
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional, Union

import orjson
from pydantic import BaseModel, TypeAdapter

from mqttroute.errors import BindingError, PayloadDecodeError
from mqttroute.runtime.ctx import CancelToken, DispatchContext
from mqttroute.runtime.logging import Logger

_EMPTY = inspect.Parameter.empty
_TRUE = frozenset({"true", "1", "yes", "on"})
_FALSE = frozenset({"false", "0", "no", "off"})
# Plain ASCII decimal literals: no whitespace, underscores, nan or inf.
_INT_LITERAL = re.compile(r"[+-]?[0-9]+")
_FLOAT_LITERAL = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")
_PLAIN_TYPES = (str, int, float, bool, bytes, bytearray)


class BindingKind(str, Enum):
    ROUTE = "route"
    TOPIC = "topic"
    PAYLOAD_TEXT = "payload_text"
    PAYLOAD_BYTES = "payload_bytes"
    CANCEL_TOKEN = "cancel_token"
    MODEL = "model"
    UNBOUND = "unbound"


def _to_bool(value: str) -> bool:
    lowered = value.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ValueError(f"invalid boolean literal {value!r}")


def _to_int(value: str) -> int:
    if not _INT_LITERAL.fullmatch(value):
        raise ValueError(f"invalid integer literal {value!r}")
    return int(value)


def _to_float(value: str) -> float:
    if not _FLOAT_LITERAL.fullmatch(value):
        raise ValueError(f"invalid float literal {value!r}")
    result = float(value)
    if not math.isfinite(result):
        raise ValueError(f"float literal {value!r} out of range")
    return result


CONVERTERS: dict[type, Callable[[str], Any]] = {
    str: str,
    int: _to_int,
    float: _to_float,
    bool: _to_bool,
}


def _unwrap_optional(annotation: Any) -> Any:
    origin = typing.get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [arg for arg in typing.get_args(annotation) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _is_untyped(annotation: Any) -> bool:
    return annotation is _EMPTY or annotation is Any


def _is_structured(annotation: Any) -> bool:
    if _is_untyped(annotation) or annotation is CancelToken:
        return False
    return annotation not in _PLAIN_TYPES


@dataclass(frozen=True, slots=True)
class ParamBinding:
    """How one formal parameter of a handler is filled."""

    name: str
    kind: BindingKind
    target: Any = str
    default: Any = None
    positional: bool = False


@dataclass(frozen=True, slots=True)
class HandlerSpec:
    """Binding descriptor for a route handler."""

    handler: Callable[..., Any]
    params: tuple[ParamBinding, ...]
    is_coroutine: bool

    @property
    def name(self) -> str:
        return getattr(self.handler, "__qualname__", None) or repr(self.handler)

    @classmethod
    def from_handler(cls, handler: Callable[..., Any], route_params: typing.Iterable[str] = ()) -> "HandlerSpec":
        """Inspect *handler* and decide how each parameter is bound.

        Raises:
            BindingError: If the handler's annotations cannot be resolved or
                a route parameter is annotated with an unsupported type.
        """
        try:
            signature = inspect.signature(handler, eval_str=True)
        except (NameError, SyntaxError, ValueError) as exc:
            raise BindingError(f"Cannot resolve annotations of handler {handler!r}: {exc}") from exc

        names = frozenset(route_params)
        bindings: list[ParamBinding] = []
        for param in signature.parameters.values():
            if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            bindings.append(_plan(param, names))

        is_coroutine = inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
            getattr(handler, "__call__", None)
        )
        return cls(handler=handler, params=tuple(bindings), is_coroutine=is_coroutine)


def _plan(param: inspect.Parameter, route_params: frozenset[str]) -> ParamBinding:
    target = _unwrap_optional(param.annotation)
    default = None if param.default is _EMPTY else param.default
    positional = param.kind is not inspect.Parameter.KEYWORD_ONLY

    def make(kind: BindingKind, bound: Any = target) -> ParamBinding:
        return ParamBinding(param.name, kind, bound, default, positional)

    if param.name in route_params:
        if _is_untyped(target):
            return make(BindingKind.ROUTE, str)
        if target not in CONVERTERS:
            raise BindingError(
                f"Route parameter {param.name!r} has unsupported type {target!r}; "
                f"expected one of {', '.join(t.__name__ for t in CONVERTERS)}"
            )
        return make(BindingKind.ROUTE)
    if param.name == "topic" and (_is_untyped(target) or target is str):
        return make(BindingKind.TOPIC, str)
    if param.name == "payload":
        if target in (bytes, bytearray):
            return make(BindingKind.PAYLOAD_BYTES)
        if _is_untyped(target) or target is str:
            return make(BindingKind.PAYLOAD_TEXT, str)
    if target is CancelToken:
        return make(BindingKind.CANCEL_TOKEN)
    if _is_structured(target):
        return make(BindingKind.MODEL)
    return make(BindingKind.UNBOUND)


@functools.lru_cache(maxsize=256)
def _field_keys(target: Any) -> Optional[dict[str, tuple[str, Any]]]:
    """Map lower-cased input keys to (accepted key, field annotation)."""
    if isinstance(target, type) and issubclass(target, BaseModel):
        keys: dict[str, tuple[str, Any]] = {}
        for name, info in target.model_fields.items():
            accepted = info.alias or name
            keys.setdefault(name.lower(), (accepted, info.annotation))
            keys.setdefault(accepted.lower(), (accepted, info.annotation))
        return keys
    if isinstance(target, type) and dataclasses.is_dataclass(target):
        try:
            hints = typing.get_type_hints(target)
        except (NameError, TypeError):
            hints = {}
        return {f.name.lower(): (f.name, hints.get(f.name, Any)) for f in dataclasses.fields(target)}
    return None


def _fold_keys(target: Any, value: Any) -> Any:
    """Rename object keys to the target's field names, ignoring case."""
    target = _unwrap_optional(target)
    origin = typing.get_origin(target)
    args = typing.get_args(target)

    if isinstance(value, list) and origin in (list, tuple, set, frozenset):
        item_type = args[0] if args else Any
        return [_fold_keys(item_type, item) for item in value]
    if not isinstance(value, dict):
        return value
    if origin is dict and len(args) == 2:
        return {key: _fold_keys(args[1], item) for key, item in value.items()}

    try:
        fields = _field_keys(target)
    except TypeError:
        fields = None
    if fields is None:
        return value

    folded: dict[Any, Any] = {}
    for key, item in value.items():
        accepted, annotation = fields.get(key.lower(), (key, Any)) if isinstance(key, str) else (key, Any)
        converted = _fold_keys(annotation, item)
        if accepted == key:
            folded[accepted] = converted
        else:
            folded.setdefault(accepted, converted)
    return folded


@functools.lru_cache(maxsize=256)
def _adapter(target: Any) -> TypeAdapter[Any]:
    return TypeAdapter(target)


def decode_payload(payload: bytes, target: Any) -> Any:
    """Decode a JSON *payload* into *target*.

    Raises:
        PayloadDecodeError: If the payload is not valid JSON or does not
            validate against *target*.
    """
    try:
        raw = orjson.loads(payload)
        data = _fold_keys(target, raw)
        if isinstance(target, type) and issubclass(target, BaseModel):
            return target.model_validate(data)
        return _adapter(target).validate_python(data)
    except (ValueError, TypeError) as exc:
        raise PayloadDecodeError(target, exc) from exc


def _bind_one(binding: ParamBinding, ctx: DispatchContext, logger: Logger) -> Any:
    kind = binding.kind
    if kind is BindingKind.ROUTE:
        raw = ctx.params[binding.name]
        try:
            return CONVERTERS[binding.target](raw)
        except (ValueError, TypeError) as exc:
            raise BindingError(
                f"Cannot convert route parameter {binding.name!r}={raw!r} to {binding.target.__name__}"
            ) from exc
    if kind is BindingKind.TOPIC:
        return ctx.topic
    if kind is BindingKind.PAYLOAD_TEXT:
        return ctx.text
    if kind is BindingKind.PAYLOAD_BYTES:
        return bytearray(ctx.payload) if binding.target is bytearray else ctx.payload
    if kind is BindingKind.CANCEL_TOKEN:
        return CancelToken.NONE
    if kind is BindingKind.MODEL:
        try:
            return decode_payload(ctx.payload, binding.target)
        except PayloadDecodeError as exc:
            logger.warning(
                "router.payload.decode_failed",
                extra={"topic": ctx.topic, "parameter": binding.name, "target": repr(binding.target), "error": str(exc)},
            )
            return None
    return binding.default


def bind_arguments(
    spec: HandlerSpec,
    ctx: DispatchContext,
    *,
    logger: Optional[Logger] = None,
) -> tuple[list[Any], dict[str, Any]]:
    """Build ``(args, kwargs)`` for invoking ``spec.handler`` on *ctx*.

    Raises:
        BindingError: If a route parameter cannot be converted.
    """
    log = logger or logging.getLogger(__name__)
    args: list[Any] = []
    kwargs: dict[str, Any] = {}
    for binding in spec.params:
        value = _bind_one(binding, ctx, log)
        if binding.positional:
            args.append(value)
        else:
            kwargs[binding.name] = value
    return args, kwargs


__all__ = [
    "BindingKind",
    "CONVERTERS",
    "HandlerSpec",
    "ParamBinding",
    "bind_arguments",
    "decode_payload",
]
