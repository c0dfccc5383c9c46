"""Shared pytest fixtures for mqttroute tests."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest


class CaptureLogger:
    """Logger double recording every call with its kwargs."""

    def __init__(self) -> None:
        self.records: list[dict[str, Any]] = []

    def _record(self, level: str, msg: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
        self.records.append({"level": level, "msg": msg, "args": args, "kwargs": kwargs})

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._record("debug", msg, args, kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._record("info", msg, args, kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._record("warning", msg, args, kwargs)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._record("error", msg, args, kwargs)

    def events(self, level: Optional[str] = None) -> list[str]:
        return [r["msg"] for r in self.records if level is None or r["level"] == level]

    def extras(self, event: str) -> list[dict[str, Any]]:
        return [r["kwargs"].get("extra", {}) for r in self.records if r["msg"] == event]


class RecordingTransport:
    """In-memory transport recording subscribe/publish calls."""

    def __init__(self) -> None:
        self.subscribed: list[str] = []
        self.published: list[tuple[str, bytes]] = []
        self.connected_to: Optional[tuple[Any, ...]] = None
        self.handler: Any = None
        self.disconnected = False

    async def connect(self, host, port=1883, username=None, password=None, tls=None) -> None:
        self.connected_to = (host, port, username, password, tls)

    async def publish(self, topic: str, payload: bytes) -> bool:
        self.published.append((topic, payload))
        return True

    async def subscribe(self, topic: str) -> None:
        self.subscribed.append(topic)

    def set_message_handler(self, handler) -> None:
        self.handler = handler

    async def disconnect(self) -> None:
        self.disconnected = True


@pytest.fixture
def capture_logger() -> CaptureLogger:
    return CaptureLogger()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


def make_mqtt_client() -> MagicMock:
    """Build a mock asyncio_mqtt.Client.

    ``messages()`` yields nothing by default; use :func:`with_messages` to
    feed messages into the receive loop.
    """
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    client.subscribe = AsyncMock()
    client.unsubscribe = AsyncMock()
    client.publish = AsyncMock()
    with_messages(client, [])
    return client


@pytest.fixture
def mock_mqtt_client() -> MagicMock:
    """Mock asyncio_mqtt.Client for unit testing."""
    return make_mqtt_client()


@pytest.fixture
def make_client():
    """Return the mock client builder, for tests that need several clients."""
    return make_mqtt_client


def with_messages(client: MagicMock, messages: list[Any]) -> None:
    """Make ``client.messages()`` yield *messages* and then end."""
    stream = MagicMock()

    async def iterate():
        for message in messages:
            yield message

    stream.__aenter__ = AsyncMock(return_value=iterate())
    stream.__aexit__ = AsyncMock(return_value=None)
    client.messages = MagicMock(return_value=stream)


def mqtt_message(topic: str, payload: Any) -> SimpleNamespace:
    return SimpleNamespace(topic=topic, payload=payload)


@pytest.fixture
def feed_messages():
    """Return a helper that makes a mock client yield given (topic, payload) pairs."""

    def feed(client: MagicMock, *pairs: tuple[str, Any]) -> None:
        with_messages(client, [mqtt_message(topic, payload) for topic, payload in pairs])

    return feed


@pytest.fixture(autouse=True)
def reset_env(monkeypatch):
    """Clear environment variables read by RouterSettings.from_env()."""
    for var in (
        "MQTT_URL",
        "MQTT_CLIENT_ID",
        "MQTT_KEEPALIVE",
        "MQTT_TLS",
        "ROUTER_HANDLER_TIMEOUT",
        "LOG_LEVEL",
        "MQTT_RECONNECT_MIN_DELAY",
        "MQTT_RECONNECT_MAX_DELAY",
    ):
        monkeypatch.delenv(var, raising=False)


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as unit test (no external dependencies)")
    config.addinivalue_line("markers", "integration: mark test as integration test (requires MQTT broker)")
