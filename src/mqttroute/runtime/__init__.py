"""Route registry, argument binding and dispatch."""

from .binding import BindingKind, HandlerSpec, ParamBinding, bind_arguments, decode_payload
from .ctx import CancelToken, DispatchContext
from .route import Route
from .router import Router

__all__ = [
    "BindingKind",
    "CancelToken",
    "DispatchContext",
    "HandlerSpec",
    "ParamBinding",
    "Route",
    "Router",
    "bind_arguments",
    "decode_payload",
]
