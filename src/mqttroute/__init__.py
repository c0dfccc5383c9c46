"""Topic-pattern routing for MQTT clients.

Declare handlers against patterns such as
``station/+/sensor/{sensorId}/telemetry``; the router subscribes to the
derived wildcard topic, matches every inbound message against every
pattern and calls each matching handler with its arguments bound from the
topic and payload.
"""

from mqttroute.config import ConnectionParams, RouterSettings, parse_mqtt_url
from mqttroute.errors import BindingError, InvalidPatternError, PayloadDecodeError, RouteError
from mqttroute.routing.pattern import Pattern, compile_pattern, match, to_subscription_topic
from mqttroute.runtime.ctx import CancelToken
from mqttroute.runtime.route import Route
from mqttroute.runtime.router import Router
from mqttroute.service import RouteService, RouteTable

__all__ = [
    "BindingError",
    "CancelToken",
    "ConnectionParams",
    "InvalidPatternError",
    "Pattern",
    "PayloadDecodeError",
    "Route",
    "RouteError",
    "RouteService",
    "RouteTable",
    "Router",
    "RouterSettings",
    "compile_pattern",
    "match",
    "parse_mqtt_url",
    "to_subscription_topic",
]
