"""Unit tests for handler argument binding."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import pytest
from pydantic import BaseModel, Field

from mqttroute.errors import BindingError, PayloadDecodeError
from mqttroute.runtime.binding import BindingKind, HandlerSpec, bind_arguments, decode_payload
from mqttroute.runtime.ctx import CancelToken, DispatchContext


class Reading(BaseModel):
    temperature: float
    humidity: float = 0.0


class Station(BaseModel):
    station_id: str = Field(alias="stationId")
    readings: list[Reading] = []


@dataclass
class Command:
    action: str
    level: int = 0


def _ctx(topic: str = "t", payload: bytes = b"", **params: str) -> DispatchContext:
    return DispatchContext(topic=topic, payload=payload, params=dict(params))


def _kinds(spec: HandlerSpec) -> dict[str, BindingKind]:
    return {binding.name: binding.kind for binding in spec.params}


class TestHandlerSpec:
    def test_plans_each_parameter_kind(self):
        async def handler(
            sensorId: str,
            topic: str,
            payload: str,
            token: CancelToken,
            data: Reading,
            extra: int = 5,
        ) -> None: ...

        spec = HandlerSpec.from_handler(handler, ("sensorId",))

        assert _kinds(spec) == {
            "sensorId": BindingKind.ROUTE,
            "topic": BindingKind.TOPIC,
            "payload": BindingKind.PAYLOAD_TEXT,
            "token": BindingKind.CANCEL_TOKEN,
            "data": BindingKind.MODEL,
            "extra": BindingKind.UNBOUND,
        }
        assert spec.is_coroutine

    def test_route_parameter_takes_precedence_over_topic_convention(self):
        def handler(topic: str) -> None: ...

        spec = HandlerSpec.from_handler(handler, ("topic",))

        assert spec.params[0].kind is BindingKind.ROUTE
        assert not spec.is_coroutine

    def test_payload_bytes(self):
        def handler(payload: bytes) -> None: ...

        assert HandlerSpec.from_handler(handler).params[0].kind is BindingKind.PAYLOAD_BYTES

    def test_payload_typed_as_model_is_decoded(self):
        def handler(payload: Reading) -> None: ...

        assert HandlerSpec.from_handler(handler).params[0].kind is BindingKind.MODEL

    def test_optional_route_parameter_unwrapped(self):
        def handler(floor: Optional[int]) -> None: ...

        binding = HandlerSpec.from_handler(handler, ("floor",)).params[0]
        assert binding.kind is BindingKind.ROUTE
        assert binding.target is int

    def test_unsupported_route_parameter_type_rejected(self):
        def handler(when: Reading) -> None: ...

        with pytest.raises(BindingError, match="unsupported type"):
            HandlerSpec.from_handler(handler, ("when",))

    def test_var_arguments_ignored(self):
        def handler(*args: Any, **kwargs: Any) -> None: ...

        assert HandlerSpec.from_handler(handler).params == ()

    def test_bound_method_skips_self(self):
        class Controller:
            async def handle(self, deviceId: str) -> None: ...

        spec = HandlerSpec.from_handler(Controller().handle, ("deviceId",))
        assert [b.name for b in spec.params] == ["deviceId"]
        assert spec.is_coroutine


class TestBindArguments:
    def test_binds_route_parameters_with_conversion(self):
        def handler(room: str, floor: int, ratio: float, active: bool) -> None: ...

        spec = HandlerSpec.from_handler(handler, ("room", "floor", "ratio", "active"))
        args, kwargs = bind_arguments(spec, _ctx(room="kitchen", floor="3", ratio="0.5", active="TRUE"))

        assert args == ["kitchen", 3, 0.5, True]
        assert kwargs == {}

    def test_conversion_failure_raises_binding_error(self):
        def handler(floor: int) -> None: ...

        spec = HandlerSpec.from_handler(handler, ("floor",))
        with pytest.raises(BindingError, match="'floor'='third'"):
            bind_arguments(spec, _ctx(floor="third"))

    def test_bool_conversion_rejects_unknown_literals(self):
        def handler(active: bool) -> None: ...

        spec = HandlerSpec.from_handler(handler, ("active",))
        with pytest.raises(BindingError):
            bind_arguments(spec, _ctx(active="maybe"))

    @pytest.mark.parametrize("raw", ["4_2", " 42", "42 ", "0x2a", "4.0", "", "٤٢"])
    def test_int_conversion_is_strict(self, raw):
        def handler(floor: int) -> None: ...

        spec = HandlerSpec.from_handler(handler, ("floor",))
        with pytest.raises(BindingError):
            bind_arguments(spec, _ctx(floor=raw))

    @pytest.mark.parametrize("raw", ["nan", "inf", "-Infinity", "1_000.5", " 0.5", "1e999", "."])
    def test_float_conversion_is_strict(self, raw):
        def handler(ratio: float) -> None: ...

        spec = HandlerSpec.from_handler(handler, ("ratio",))
        with pytest.raises(BindingError):
            bind_arguments(spec, _ctx(ratio=raw))

    @pytest.mark.parametrize("raw,expected", [("-7", -7), ("+7", 7), ("007", 7)])
    def test_int_conversion_accepts_signed_decimals(self, raw, expected):
        def handler(floor: int) -> None: ...

        spec = HandlerSpec.from_handler(handler, ("floor",))
        assert bind_arguments(spec, _ctx(floor=raw))[0] == [expected]

    @pytest.mark.parametrize("raw,expected", [("-0.5", -0.5), (".5", 0.5), ("2.", 2.0), ("1e3", 1000.0), ("12", 12.0)])
    def test_float_conversion_accepts_decimal_forms(self, raw, expected):
        def handler(ratio: float) -> None: ...

        spec = HandlerSpec.from_handler(handler, ("ratio",))
        assert bind_arguments(spec, _ctx(ratio=raw))[0] == [expected]

    def test_binds_topic_payload_and_token(self):
        def handler(topic: str, payload: str, raw: bytes, token: CancelToken) -> None: ...

        spec = HandlerSpec.from_handler(handler)
        args, _ = bind_arguments(spec, _ctx("a/b", "héllo".encode()))

        assert args[0] == "a/b"
        assert args[1] == "héllo"
        assert args[2] is None  # raw bytes only bind to a parameter named payload
        assert args[3] is CancelToken.NONE
        assert not args[3].cancelled

    def test_invalid_utf8_payload_text_is_replaced(self):
        def handler(payload: str) -> None: ...

        args, _ = bind_arguments(HandlerSpec.from_handler(handler), _ctx(payload=b"\xff\xfeok"))
        assert args[0].endswith("ok")

    def test_keyword_only_parameters_go_to_kwargs(self):
        def handler(*, deviceId: str, payload: bytes) -> None: ...

        spec = HandlerSpec.from_handler(handler, ("deviceId",))
        args, kwargs = bind_arguments(spec, _ctx(payload=b"raw", deviceId="d1"))

        assert args == []
        assert kwargs == {"deviceId": "d1", "payload": b"raw"}

    def test_unbound_parameter_uses_default(self):
        def handler(retries: int = 3, label: Optional[str] = None) -> None: ...

        args, _ = bind_arguments(HandlerSpec.from_handler(handler), _ctx())
        assert args == [3, None]

    def test_model_decoded_case_insensitively(self):
        def handler(data: Reading) -> None: ...

        args, _ = bind_arguments(HandlerSpec.from_handler(handler), _ctx(payload=b'{"Temperature": 21.5, "HUMIDITY": 40}'))

        assert args[0] == Reading(temperature=21.5, humidity=40)

    def test_malformed_payload_binds_none_and_logs(self, capture_logger):
        def handler(data: Reading) -> None: ...

        args, _ = bind_arguments(HandlerSpec.from_handler(handler), _ctx("t/1", b"{not json"), logger=capture_logger)

        assert args == [None]
        extras = capture_logger.extras("router.payload.decode_failed")
        assert extras and extras[0]["topic"] == "t/1"
        assert extras[0]["parameter"] == "data"

    def test_payload_failing_validation_binds_none(self, capture_logger):
        def handler(data: Reading) -> None: ...

        args, _ = bind_arguments(
            HandlerSpec.from_handler(handler), _ctx(payload=b'{"humidity": 1}'), logger=capture_logger
        )
        assert args == [None]
        assert capture_logger.events("warning") == ["router.payload.decode_failed"]


class TestDecodePayload:
    def test_nested_models_and_aliases(self):
        station = decode_payload(b'{"STATIONID": "north", "Readings": [{"TEMPERATURE": 1}]}', Station)

        assert station.station_id == "north"
        assert station.readings == [Reading(temperature=1)]

    def test_exact_key_wins_over_folded_key(self):
        reading = decode_payload(b'{"TEMPERATURE": 1, "temperature": 2}', Reading)
        assert reading.temperature == 2

    def test_dataclass_target(self):
        command = decode_payload(b'{"Action": "reset", "LEVEL": "2"}', Command)
        assert command == Command(action="reset", level=2)

    def test_generic_container_target(self):
        readings = decode_payload(b'[{"Temperature": 3}]', list[Reading])
        assert readings == [Reading(temperature=3)]

    def test_plain_dict_target(self):
        assert decode_payload(b'{"A": 1}', dict[str, Any]) == {"A": 1}

    def test_invalid_json_raises(self):
        with pytest.raises(PayloadDecodeError) as info:
            decode_payload(b"nope", Reading)
        assert info.value.target is Reading
