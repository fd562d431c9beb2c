"""MQTT adapter encapsulating paho-mqtt client usage."""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Callable, Dict, List, Optional

import paho.mqtt.client as mqtt

from ..models import Credentials, Endpoint

LOGGER = logging.getLogger(__name__)
PAHO_LOGGER = logging.getLogger(f"{__name__}.paho")

MessageHandler = Callable[[str, bytes], None]

# CONNACK codes meaning "bad credentials" / "not authorised" in MQTT 3.1.1 and 5.
AUTH_REJECTION_CODES = frozenset({4, 5, 134, 135})

PROTOCOLS = {
    "3.1.1": mqtt.MQTTv311,
    "5": mqtt.MQTTv5,
}


class MQTTConnectionError(RuntimeError):
    """Raised when the MQTT client fails to establish a connection."""


class MQTTAuthError(MQTTConnectionError):
    """Raised when the broker rejects the supplied credentials."""


class MQTTTimeoutError(MQTTConnectionError):
    """Raised when the broker does not acknowledge in time."""


class MQTTSubscribeError(MQTTConnectionError):
    """Raised when the broker refuses or never acknowledges a subscription."""


class MQTTSubscriptionRefused(MQTTSubscribeError):
    """Raised when the SUBACK carries a failure reason code."""


def _code(reason_code) -> int:
    return int(getattr(reason_code, "value", reason_code))


class MQTTClient:
    """Async-friendly wrapper over the threaded paho-mqtt client.

    paho runs its network loop in a background thread; every callback is
    handed to the asyncio loop with ``call_soon_threadsafe`` so inbound
    messages reach the message handler in the order they were read.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        credentials: Optional[Credentials],
        *,
        client_id: str,
        keepalive: int = 20,
        tls_verify: bool = True,
        protocol: str = "3.1.1",
    ) -> None:
        self.endpoint = endpoint
        self.credentials = credentials
        self.client_id = client_id
        self.keepalive = keepalive
        self.tls_verify = tls_verify
        self.protocol = protocol

        self._client: Optional[mqtt.Client] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connected_event: Optional[asyncio.Event] = None
        self._disconnect_event: Optional[asyncio.Event] = None
        self._message_handler: Optional[MessageHandler] = None
        self._last_connect_rc: Optional[int] = None
        self._connect_failure: Optional[str] = None
        self._connected: bool = False
        self._pending_subscriptions: Dict[int, asyncio.Future[List[int]]] = {}
        self._disconnect_handlers: List[Callable[[int], None]] = []
        self._connect_handlers: List[Callable[[int], None]] = []

    def _create_client(self) -> mqtt.Client:
        version = PROTOCOLS[self.protocol]
        kwargs = {}
        if version != mqtt.MQTTv5:
            kwargs["clean_session"] = True
        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            protocol=version,
            transport="websockets" if self.endpoint.uses_websockets else "tcp",
            reconnect_on_failure=False,
            **kwargs,
        )
        client.enable_logger(PAHO_LOGGER)

        if self.credentials is not None:
            client.username_pw_set(self.credentials.principal, self.credentials.secret)

        if self.endpoint.uses_tls:
            try:
                client.tls_set(
                    cert_reqs=ssl.CERT_REQUIRED if self.tls_verify else ssl.CERT_NONE
                )
            except (ssl.SSLError, ValueError) as exc:
                raise MQTTConnectionError(f"TLS setup failed: {exc}") from exc
            if not self.tls_verify:
                client.tls_insecure_set(True)

        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_subscribe
        return client

    async def connect(self, timeout: float = 30.0) -> None:
        """Connect to the MQTT broker and wait for acknowledgement."""

        await self._teardown()

        self._loop = asyncio.get_running_loop()
        self._connected_event = asyncio.Event()
        self._disconnect_event = asyncio.Event()
        self._last_connect_rc = None
        self._connect_failure = None

        client = self._create_client()
        self._client = client

        LOGGER.info(
            "Connecting to MQTT broker %s as %s",
            self.endpoint,
            self.credentials.principal if self.credentials else "<anonymous>",
        )

        client.connect_async(self.endpoint.host, self.endpoint.port, self.keepalive)
        client.loop_start()

        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            await self._teardown()
            raise MQTTTimeoutError("Timed out connecting to MQTT broker") from exc
        except asyncio.CancelledError:
            await self._teardown()
            raise

        if self._connect_failure is not None:
            failure = self._connect_failure
            await self._teardown()
            raise MQTTConnectionError(f"Could not reach MQTT broker: {failure}")

        rc = self._last_connect_rc
        if rc != 0:
            await self._teardown()
            if rc in AUTH_REJECTION_CODES:
                raise MQTTAuthError(f"MQTT broker rejected credentials (rc={rc})")
            raise MQTTConnectionError(f"MQTT broker rejected connection (rc={rc})")

    async def disconnect(self, timeout: float = 5.0) -> None:
        """Gracefully disconnect from the broker."""

        if not self._client:
            return

        if not self._connected:
            await self._teardown()
            return

        assert self._disconnect_event is not None

        self._client.disconnect()

        try:
            await asyncio.wait_for(self._disconnect_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.warning("Broker did not confirm disconnect within %.1fs", timeout)
        finally:
            await self._teardown()

    def publish(
        self, topic: str, payload: bytes, qos: int = 0, retain: bool = False
    ) -> None:
        if not self._client:
            raise RuntimeError("MQTT client not connected")

        info = self._client.publish(topic, payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(f"Publish failed with rc={info.rc}")

    async def subscribe(self, topic: str, qos: int = 1, timeout: float = 10.0) -> int:
        """Subscribe and wait for the broker's SUBACK; returns the granted QoS."""

        if not self._client or self._loop is None:
            raise RuntimeError("MQTT client not connected")

        result, mid = self._client.subscribe(topic, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTSubscribeError(f"Subscribe to {topic} failed with rc={result}")

        future = self._loop.create_future()
        self._pending_subscriptions[mid] = future

        try:
            codes = await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise MQTTSubscribeError(f"No SUBACK for {topic} within {timeout}s") from exc
        finally:
            self._pending_subscriptions.pop(mid, None)

        granted = codes[0] if codes else 0x80
        if granted >= 0x80:
            raise MQTTSubscriptionRefused(f"Broker refused subscription to {topic} (rc={granted})")
        return granted

    def set_message_handler(self, handler: Optional[MessageHandler]) -> None:
        self._message_handler = handler

    def unsubscribe(self, topic: str) -> None:
        if not self._client:
            raise RuntimeError("MQTT client not connected")

        result, _ = self._client.unsubscribe(topic)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise MQTTConnectionError(f"Unsubscribe failed with rc={result}")

    def register_disconnect_handler(self, handler: Callable[[int], None]) -> None:
        self._disconnect_handlers.append(handler)

    def register_connect_handler(self, handler: Callable[[int], None]) -> None:
        self._connect_handlers.append(handler)

    def is_connected(self) -> bool:
        return self._connected

    async def _teardown(self) -> None:
        client, self._client = self._client, None
        self._connected = False
        for future in self._pending_subscriptions.values():
            if not future.done():
                future.set_exception(MQTTSubscribeError("Connection closed"))
        self._pending_subscriptions.clear()
        if client is not None:
            client.on_disconnect = None
            # loop_stop joins the network thread; keep it off the event loop.
            await asyncio.get_running_loop().run_in_executor(None, client.loop_stop)

    # ------------------------------------------------------------------
    # Internal callbacks bridging the threaded paho callbacks into asyncio
    # ------------------------------------------------------------------
    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if self._loop:
            self._loop.call_soon_threadsafe(self._handle_connect, _code(reason_code))

    def _handle_connect(self, rc: int) -> None:
        self._last_connect_rc = rc
        if rc == 0:
            LOGGER.info("Connected to MQTT broker")
            self._connected = True
            for handler in self._connect_handlers:
                handler(rc)
        else:
            LOGGER.error("MQTT connection failed with rc=%s", rc)
            self._connected = False
        if self._connected_event:
            self._connected_event.set()

    def _on_connect_fail(self, client, userdata) -> None:
        if self._loop:
            self._loop.call_soon_threadsafe(self._handle_connect_fail)

    def _handle_connect_fail(self) -> None:
        LOGGER.error("MQTT transport could not connect to %s", self.endpoint)
        self._connect_failure = "network or TLS failure"
        if self._connected_event:
            self._connected_event.set()

    def _on_disconnect(
        self, client, userdata, disconnect_flags, reason_code, properties=None
    ) -> None:
        if self._loop:
            self._loop.call_soon_threadsafe(self._handle_disconnect, _code(reason_code))

    def _handle_disconnect(self, rc: int) -> None:
        LOGGER.info("Disconnected from MQTT broker (rc=%s)", rc)
        was_connected = self._connected
        self._connected = False
        if self._disconnect_event:
            self._disconnect_event.set()
        if not was_connected:
            return
        for handler in self._disconnect_handlers:
            handler(rc)

    def _on_subscribe(self, client, userdata, mid, reason_codes, properties=None) -> None:
        if self._loop:
            codes = [_code(code) for code in reason_codes]
            self._loop.call_soon_threadsafe(self._handle_suback, mid, codes)

    def _handle_suback(self, mid: int, codes: List[int]) -> None:
        # The caller registers its mid before yielding, so an unknown mid
        # belongs to a subscribe that already timed out.
        future = self._pending_subscriptions.get(mid)
        if future is None:
            LOGGER.debug("Ignoring SUBACK for unknown mid %s", mid)
            return
        if not future.done():
            future.set_result(codes)

    def _on_message(self, client, userdata, message: mqtt.MQTTMessage) -> None:
        handler = self._message_handler
        loop = self._loop
        if not handler or not loop:
            return
        loop.call_soon_threadsafe(self._dispatch, handler, message.topic, message.payload)

    @staticmethod
    def _dispatch(handler: MessageHandler, topic: str, payload: bytes) -> None:
        try:
            handler(topic, payload)
        except Exception:
            LOGGER.exception("MQTT message handler raised an exception")
