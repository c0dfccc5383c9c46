"""Adapter implementations bridging domain ports to infrastructure."""

from .mqtt_client import BrokerAddress, MQTTTransport

__all__ = ["BrokerAddress", "MQTTTransport"]
