"""asyncio-mqtt backed transport for the router.

Connects to the broker, remembers subscriptions so they survive
reconnects, and forwards every received message to a single
``(topic, payload)`` handler, normally :meth:`Router.on_message`.

Example:
    ```python
    transport = MQTTTransport(client_id="weather-station")
    router = Router(transport)
    transport.set_message_handler(router.on_message)

    await transport.connect("broker.hivemq.com", 1883)
    await router.register_route("station/+/sensor/{sensorId}/telemetry", handle)
    router.freeze()
    ```
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from dataclasses import dataclass
from typing import Any, Optional

import asyncio_mqtt as mqtt

from mqttroute.domain.ports import MessageHandler, Transport

logger = logging.getLogger(__name__)

TLS_PORT = 8883


@dataclass(frozen=True, slots=True)
class BrokerAddress:
    host: str
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    tls: Optional[bool] = None

    @property
    def use_tls(self) -> bool:
        return self.tls if self.tls is not None else self.port == TLS_PORT

    def __repr__(self) -> str:
        password = "***REDACTED***" if self.password else None
        return (
            f"BrokerAddress(host={self.host!r}, port={self.port}, username={self.username!r}, "
            f"password={password!r}, tls={self.use_tls})"
        )


class MQTTTransport(Transport):
    """Transport implementation backed by an asyncio-mqtt client."""

    def __init__(
        self,
        *,
        client_id: Optional[str] = None,
        keepalive: int = 60,
        qos: int = 1,
        reconnect_min_delay: float = 0.5,
        reconnect_max_delay: float = 5.0,
    ) -> None:
        self._client_id = client_id
        self._keepalive = keepalive
        self._qos = qos
        self._reconnect_min_delay = reconnect_min_delay
        self._reconnect_max_delay = max(reconnect_min_delay, reconnect_max_delay)

        self._address: Optional[BrokerAddress] = None
        self._client: Optional[mqtt.Client] = None
        self._handler: Optional[MessageHandler] = None
        self._subscriptions: dict[str, None] = {}
        self._receive_task: Optional[asyncio.Task[None]] = None
        self._connect_lock = asyncio.Lock()
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def client(self) -> Optional[mqtt.Client]:
        """Underlying asyncio-mqtt client, ``None`` while disconnected."""
        return self._client

    @property
    def subscriptions(self) -> tuple[str, ...]:
        return tuple(self._subscriptions)

    def set_message_handler(self, handler: MessageHandler) -> None:
        self._handler = handler

    async def __aenter__(self) -> MQTTTransport:
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[Any],
    ) -> None:
        await self.disconnect()

    # --- Lifecycle ---

    async def connect(
        self,
        host: str,
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        tls: Optional[bool] = None,
    ) -> None:
        """Connect to the broker and start receiving.

        Concurrent calls are serialized; connecting while already connected
        is a no-op. TLS is enabled by default on port 8883. Topics subscribed
        before the connection existed are subscribed now.

        Raises:
            asyncio_mqtt.MqttError: If the broker cannot be reached.
        """
        async with self._connect_lock:
            if self._connected:
                logger.debug("Already connected, skipping connect()")
                return

            self._address = BrokerAddress(host, port, username, password, tls)
            await self._open()
            self._receive_task = asyncio.create_task(self._receive_loop())
            await self._restore_subscriptions()

    async def disconnect(self) -> None:
        """Stop receiving and close the connection. Safe when not connected."""
        if self._receive_task:
            self._receive_task.cancel()
            try:
                await asyncio.wait_for(self._receive_task, timeout=1.0)
            except (asyncio.CancelledError, asyncio.TimeoutError):
                pass
            self._receive_task = None

        if not self._connected:
            return

        await self._close()
        logger.info("Disconnected from MQTT broker")

    # --- Messaging ---

    async def subscribe(self, topic: str) -> None:
        """Subscribe to *topic*; repeated topics reach the broker only once."""
        if topic in self._subscriptions:
            return
        self._subscriptions[topic] = None

        if not self._connected or self._client is None:
            logger.debug("Subscription to %s deferred until connect", topic)
            return

        try:
            await self._client.subscribe(topic, qos=self._qos)
        except mqtt.MqttError:
            del self._subscriptions[topic]
            raise
        logger.info("Subscribed to topic: %s (qos=%d)", topic, self._qos)

    async def publish(self, topic: str, payload: bytes | bytearray | str) -> bool:
        """Publish *payload* to *topic*; returns ``False`` if it could not be sent."""
        if not self._connected or self._client is None:
            logger.warning("Cannot publish to %s: not connected to MQTT broker", topic)
            return False

        data = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
        try:
            await self._client.publish(topic, data, qos=self._qos)
        except mqtt.MqttError as e:
            logger.warning("Publish to %s failed: %s", topic, e)
            return False

        logger.debug("Published %d bytes to %s", len(data), topic)
        return True

    # --- Internals ---

    def _build_client(self, address: BrokerAddress) -> mqtt.Client:
        return mqtt.Client(
            hostname=address.host,
            port=address.port,
            username=address.username,
            password=address.password,
            client_id=self._client_id,
            keepalive=self._keepalive,
            tls_context=ssl.create_default_context() if address.use_tls else None,
        )

    async def _open(self) -> None:
        assert self._address is not None, "Broker address must be set before connecting"

        client = self._build_client(self._address)
        await client.__aenter__()
        self._client = client
        self._connected = True

        logger.info(
            "Connected to MQTT broker at %s:%d (client_id=%s, tls=%s)",
            self._address.host,
            self._address.port,
            self._client_id,
            self._address.use_tls,
        )

    async def _close(self) -> None:
        client, self._client = self._client, None
        self._connected = False
        if client is None:
            return
        try:
            await client.__aexit__(None, None, None)
        except mqtt.MqttError as e:
            logger.debug("Ignoring error while closing MQTT client: %s", e)

    async def _restore_subscriptions(self) -> None:
        assert self._client is not None, "Client must be set when connected"

        for topic in self._subscriptions:
            await self._client.subscribe(topic, qos=self._qos)
            logger.info("Subscribed to topic: %s (qos=%d)", topic, self._qos)

    async def _receive_loop(self) -> None:
        """Forward broker messages to the handler, reconnecting on connection loss."""
        while True:
            client = self._client
            if client is None:
                return
            try:
                async with client.messages() as messages:
                    async for message in messages:
                        await self._deliver(message)
                return
            except asyncio.CancelledError:
                logger.debug("Receive task cancelled")
                raise
            except mqtt.MqttError as e:
                logger.warning("Connection to MQTT broker lost: %s", e)
                self._connected = False
            await self._reconnect()

    async def _reconnect(self) -> None:
        delay = self._reconnect_min_delay
        while True:
            await asyncio.sleep(delay)
            try:
                async with self._connect_lock:
                    await self._close()
                    await self._open()
                    await self._restore_subscriptions()
            except mqtt.MqttError as e:
                logger.warning("Reconnect failed: %s (retrying in %.1fs)", e, delay)
                delay = min(delay * 2, self._reconnect_max_delay)
                continue
            logger.info("Reconnected to MQTT broker (%d subscriptions restored)", len(self._subscriptions))
            return

    async def _deliver(self, message: Any) -> None:
        topic = str(message.topic)

        payload = message.payload
        if isinstance(payload, bytearray):
            payload = bytes(payload)
        elif isinstance(payload, str):
            payload = payload.encode("utf-8")
        elif not isinstance(payload, bytes):
            logger.warning("Unexpected payload type %s on %s, skipping", type(payload).__name__, topic)
            return

        if self._handler is None:
            logger.warning("No message handler set, dropping message on topic: %s", topic)
            return

        try:
            await self._handler(topic, payload)
        except Exception as e:
            logger.error("Error in message handler for topic %s: %s", topic, e, exc_info=True)


__all__ = ["BrokerAddress", "MQTTTransport", "TLS_PORT"]
