"""Sparkplug sessions over a supervised MQTT connection.

A :class:`Session` owns one broker connection. Inbound frames are decoded,
resolved against the alias tracker and delivered as events through a single
channel, in the order the transport received them. Subscriptions survive
reconnects: the coordinator re-establishes the transport and the session
replays every subscription before it resumes delivery.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import deque
from typing import Callable, Deque, Dict, Optional, Tuple, Union

from . import constants
from .adapters.mqtt import (
    MQTTAuthError,
    MQTTClient,
    MQTTConnectionError,
    MQTTSubscribeError,
    MQTTSubscriptionRefused,
    MQTTTimeoutError,
)
from .channel import EventChannel
from .config import ClientConfig
from .connection import ConnectionCoordinator, ReconnectReason
from .errors import (
    AuthRejected,
    ConnectError,
    ConnectTimeout,
    DecodeError,
    NotConnected,
    PublishError,
    SubscribeTransportFailure,
    TransportFailure,
    UnknownAlias,
)
from .events import (
    AliasFailed,
    DecodeFailed,
    MessageEvent,
    RawMessage,
    SequenceGapEvent,
    SessionEvent,
    SessionState,
    StateChanged,
)
from .models import Credentials, Endpoint
from .sparkplug import codec
from .sparkplug.topic import Topic
from .sparkplug.tracker import AliasTracker
from .sparkplug.types import Payload

LOGGER = logging.getLogger(__name__)

_LIVE_STATES = (SessionState.CONNECTED, SessionState.SUBSCRIBING, SessionState.ACTIVE)
_DEAD_STATES = (SessionState.DISCONNECTED, SessionState.FAILED, SessionState.CLOSED)


class SubscriptionHandle:
    """A subscription registered with a session."""

    __slots__ = ("topic_filter", "qos", "active", "_session")

    def __init__(self, session: "Session", topic_filter: str, qos: int) -> None:
        self._session = session
        self.topic_filter = topic_filter
        self.qos = qos
        self.active = False  # True once the broker has acknowledged it

    async def cancel(self) -> None:
        await self._session.unsubscribe(self)

    def __repr__(self) -> str:
        return (
            f"SubscriptionHandle({self.topic_filter!r}, qos={self.qos}, "
            f"active={self.active})"
        )


class Session:
    """One supervised broker connection delivering Sparkplug events."""

    def __init__(
        self,
        *,
        mqtt_client: MQTTClient,
        coordinator: ConnectionCoordinator,
        channel: EventChannel[SessionEvent],
        alias_staleness_seconds: float = 60.0,
        tracker: Optional[AliasTracker] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._mqtt_client = mqtt_client
        self._coordinator = coordinator
        self._channel = channel
        self._staleness = alias_staleness_seconds
        self._tracker = tracker or AliasTracker()
        self._clock = clock

        self._state = SessionState.DISCONNECTED
        self._lock = asyncio.Lock()
        self._subscriptions: Dict[str, SubscriptionHandle] = {}
        self._held: Deque[Tuple[str, bytes]] = deque()
        self._lost_at: Optional[float] = None
        self._closing = False

        mqtt_client.set_message_handler(self._on_message)
        mqtt_client.register_disconnect_handler(self._on_transport_disconnect)
        coordinator.register_disconnected_callback(self._on_connection_lost)
        coordinator.register_retry_callback(self._on_retry)
        coordinator.register_reconnected_callback(self._on_reconnected)
        coordinator.register_failed_callback(self._on_failed)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def tracker(self) -> AliasTracker:
        return self._tracker

    @property
    def subscriptions(self) -> Tuple[SubscriptionHandle, ...]:
        return tuple(self._subscriptions.values())

    def events(self) -> EventChannel[SessionEvent]:
        """Return the session's event stream; it ends once the session closes or fails."""
        return self._channel

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> None:
        """Connect the transport, then flush subscriptions queued meanwhile.

        Raises:
            AuthRejected: The broker refused the credentials.
            ConnectTimeout: No CONNACK arrived in time.
            TransportFailure: Network or TLS failure.
        """
        if self._state is not SessionState.DISCONNECTED:
            raise ConnectError(f"Session cannot connect while {self._state.value}")

        self._set_state(SessionState.CONNECTING)
        try:
            await self._coordinator.connect()
        except MQTTAuthError as exc:
            self._set_state(SessionState.DISCONNECTED, str(exc))
            raise AuthRejected(str(exc)) from exc
        except MQTTTimeoutError as exc:
            self._set_state(SessionState.DISCONNECTED, str(exc))
            raise ConnectTimeout(str(exc)) from exc
        except MQTTConnectionError as exc:
            self._set_state(SessionState.DISCONNECTED, str(exc))
            raise TransportFailure(str(exc)) from exc
        except asyncio.CancelledError:
            self._set_state(SessionState.DISCONNECTED, "connect cancelled")
            raise

        self._set_state(SessionState.CONNECTED)
        try:
            self._coordinator.start_supervisor()
            async with self._lock:
                await self._activate()
        except asyncio.CancelledError:
            # Leave nothing running or held behind a connect the caller gave up on
            await self._reset("connect cancelled")
            raise
        except Exception as exc:
            await self._reset(str(exc))
            raise

    async def close(self) -> None:
        """Disconnect, stop reconnecting and end the event stream."""
        if self._state is SessionState.CLOSED:
            return

        self._closing = True
        await self._coordinator.stop_supervisor()
        await self._coordinator.disconnect()

        self._held.clear()
        for handle in self._subscriptions.values():
            handle.active = False
        self._set_state(SessionState.CLOSED)
        self._channel.close()

    async def _reset(self, detail: str) -> None:
        if self._state is SessionState.CLOSED:
            return
        await self._coordinator.stop_supervisor()
        await self._coordinator.disconnect()
        self._held.clear()
        for handle in self._subscriptions.values():
            handle.active = False
        self._set_state(SessionState.DISCONNECTED, detail)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    async def subscribe(self, topic_filter: str, qos: int = 1) -> SubscriptionHandle:
        """Subscribe to an MQTT topic filter.

        While the session is connecting or reconnecting the subscription is
        recorded and sent once the transport is back.

        Raises:
            NotConnected: The session is disconnected, failed or closed.
            SubscribeTransportFailure: The broker refused the filter or the
                transport failed while waiting for the acknowledgement.
        """
        self._require_alive()

        async with self._lock:
            self._require_alive()

            existing = self._subscriptions.get(topic_filter)
            if existing is not None:
                return existing

            handle = SubscriptionHandle(self, topic_filter, qos)
            self._subscriptions[topic_filter] = handle

            if self._state is SessionState.ACTIVE:
                try:
                    await self._send_subscription(handle)
                except MQTTSubscribeError as exc:
                    self._subscriptions.pop(topic_filter, None)
                    raise SubscribeTransportFailure(str(exc)) from exc
                except RuntimeError as exc:
                    self._subscriptions.pop(topic_filter, None)
                    raise NotConnected(str(exc)) from exc
            else:
                LOGGER.debug(
                    "Queued subscription %s while %s", topic_filter, self._state.value
                )

        return handle

    async def unsubscribe(self, handle: SubscriptionHandle) -> None:
        async with self._lock:
            if self._subscriptions.get(handle.topic_filter) is not handle:
                return
            del self._subscriptions[handle.topic_filter]
            was_active, handle.active = handle.active, False

            if was_active and self._state in _LIVE_STATES:
                try:
                    self._mqtt_client.unsubscribe(handle.topic_filter)
                except RuntimeError as exc:
                    LOGGER.warning(
                        "Unsubscribe from %s failed: %s", handle.topic_filter, exc
                    )

    async def _send_subscription(self, handle: SubscriptionHandle) -> None:
        task = asyncio.ensure_future(
            self._mqtt_client.subscribe(handle.topic_filter, qos=handle.qos)
        )
        # A cancelled caller must not leave the broker and the set disagreeing
        task.add_done_callback(lambda t: self._settle(handle, t))
        await asyncio.shield(task)

    def _settle(self, handle: SubscriptionHandle, task: asyncio.Future) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            handle.active = (
                self._state in _LIVE_STATES
                and self._subscriptions.get(handle.topic_filter) is handle
            )
            LOGGER.debug("Subscribed to %s", handle.topic_filter)
        elif isinstance(exc, MQTTSubscriptionRefused):
            if self._subscriptions.get(handle.topic_filter) is handle:
                del self._subscriptions[handle.topic_filter]
            handle.active = False

    async def _flush_subscriptions(self) -> bool:
        """Send every recorded subscription; False if any went unacknowledged."""
        complete = True
        for handle in list(self._subscriptions.values()):
            if self._state is not SessionState.SUBSCRIBING:
                return False
            try:
                await self._send_subscription(handle)
            except MQTTSubscriptionRefused as exc:
                LOGGER.warning("Dropping subscription %s: %s", handle.topic_filter, exc)
            except RuntimeError as exc:
                LOGGER.warning("Could not subscribe to %s: %s", handle.topic_filter, exc)
                complete = False
        return complete

    async def _activate(self) -> None:
        """Replay subscriptions, then release messages held meanwhile. Caller holds the lock."""
        if self._state is not SessionState.CONNECTED:
            return
        self._set_state(SessionState.SUBSCRIBING)
        if not await self._flush_subscriptions():
            if self._state is SessionState.SUBSCRIBING:
                # Replay everything on a fresh link; stay out of ACTIVE until then
                LOGGER.warning("Subscription replay incomplete, reconnecting")
                self._coordinator.request_reconnect(ReconnectReason.CONNECTION_LOST)
            return
        if self._state is not SessionState.SUBSCRIBING:
            return
        self._set_state(SessionState.ACTIVE)
        self._release_held()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------
    def publish(
        self,
        topic: Union[Topic, str],
        payload: Payload,
        qos: int = 0,
        retain: bool = False,
    ) -> None:
        """Encode ``payload`` and publish it on a Sparkplug topic.

        Raises ``ValueError`` if the topic's message type does not carry the
        payload's kind.
        """
        if not isinstance(topic, Topic):
            topic = Topic.parse(topic)
        if topic.kind is not payload.kind:
            raise ValueError(
                f"{topic.message_type.value} topics carry {topic.kind.value} payloads, "
                f"not {payload.kind.value}"
            )
        self.publish_raw(str(topic), codec.encode(payload), qos=qos, retain=retain)

    def publish_raw(
        self, topic: str, data: bytes, qos: int = 0, retain: bool = False
    ) -> None:
        if self._state not in _LIVE_STATES:
            raise NotConnected(f"Cannot publish while {self._state.value}")
        try:
            self._mqtt_client.publish(topic, data, qos=qos, retain=retain)
        except MQTTConnectionError as exc:
            raise PublishError(str(exc), topic=topic) from exc
        except RuntimeError as exc:
            raise NotConnected(str(exc)) from exc

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------
    def _on_message(self, topic: str, data: bytes) -> None:
        if self._state is SessionState.ACTIVE and not self._held:
            self._process(topic, data)
        elif self._state not in _DEAD_STATES:
            self._held.append((topic, data))

    def _release_held(self) -> None:
        while self._held and self._state is SessionState.ACTIVE:
            topic, data = self._held.popleft()
            self._process(topic, data)

    def _process(self, topic_name: str, data: bytes) -> None:
        try:
            topic = Topic.parse(topic_name)
        except ValueError:
            self._emit(RawMessage(topic_name, bytes(data)))
            return

        try:
            payload = codec.decode(data, topic.kind)
            resolved = self._tracker.observe(topic, payload)
        except UnknownAlias as exc:
            if exc.gap is not None:
                self._emit(SequenceGapEvent(topic, exc.gap))
            LOGGER.warning("Dropping message on %s: %s", topic_name, exc)
            self._emit(AliasFailed(topic, exc))
            return
        except DecodeError as exc:
            LOGGER.warning("Could not decode message on %s: %s", topic_name, exc)
            self._emit(DecodeFailed(topic_name, exc))
            return

        if resolved.gap is not None:
            self._emit(SequenceGapEvent(topic, resolved.gap))
        self._emit(MessageEvent(topic, resolved))

    def _emit(self, event: SessionEvent) -> None:
        self._channel.put(event)

    def _set_state(self, state: SessionState, detail: Optional[str] = None) -> None:
        if state is self._state and detail is None:
            return
        LOGGER.debug("Session state %s -> %s", self._state.value, state.value)
        self._state = state
        self._emit(StateChanged(state, detail))

    def _require_alive(self) -> None:
        if self._state in _DEAD_STATES:
            raise NotConnected(f"Session is {self._state.value}")

    # ------------------------------------------------------------------
    # Transport and coordinator callbacks
    # ------------------------------------------------------------------
    def _on_transport_disconnect(self, rc: int) -> None:
        if self._closing:
            return
        reason = (
            ReconnectReason.BROKER_DISCONNECT if rc != 0 else ReconnectReason.CONNECTION_LOST
        )
        LOGGER.warning("Lost broker connection (rc=%s)", rc)
        self._coordinator.request_reconnect(reason)

    def _on_connection_lost(self, reason: ReconnectReason) -> None:
        self._lost_at = self._clock()
        for handle in self._subscriptions.values():
            handle.active = False
        self._set_state(SessionState.RECONNECTING, reason.value)

    def _on_retry(self, attempt: int, delay: float, exc: Exception) -> None:
        self._set_state(
            SessionState.RECONNECTING,
            f"attempt {attempt} failed ({exc}); retrying in {delay:.1f}s",
        )

    async def _on_reconnected(self) -> None:
        async with self._lock:
            if self._closing:
                return
            if self._lost_at is not None:
                offline = self._clock() - self._lost_at
                self._lost_at = None
                if offline > self._staleness:
                    LOGGER.info(
                        "Offline for %.1fs, discarding alias tables", offline
                    )
                    self._tracker.clear()
            self._set_state(SessionState.CONNECTED)
            await self._activate()

    def _on_failed(self, exc: Exception) -> None:
        self._held.clear()
        self._set_state(SessionState.FAILED, str(exc))
        self._channel.close()


class SessionManager:
    """Builds sessions from client configuration."""

    def __init__(self, config: Optional[ClientConfig] = None) -> None:
        self.config = config or ClientConfig()

    def _client_id(self) -> str:
        if self.config.mqtt.client_id:
            return self.config.mqtt.client_id
        return f"{constants.DEFAULT_CLIENT_ID_PREFIX}-{uuid.uuid4().hex[:12]}"

    def open(
        self,
        endpoint: Endpoint,
        credentials: Optional[Credentials] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Session:
        """Create an unconnected session; subscribe once connect() has started."""
        mqtt_config = self.config.mqtt
        mqtt_client = MQTTClient(
            endpoint,
            credentials,
            client_id=self._client_id(),
            keepalive=mqtt_config.keepalive_seconds,
            tls_verify=mqtt_config.tls_verify,
            protocol=mqtt_config.protocol,
        )
        coordinator = ConnectionCoordinator(
            mqtt_client=mqtt_client,
            resilience_config=self.config.resilience,
            connect_timeout=(
                timeout if timeout is not None else mqtt_config.connect_timeout_seconds
            ),
        )
        delivery = self.config.delivery
        return Session(
            mqtt_client=mqtt_client,
            coordinator=coordinator,
            channel=EventChannel(delivery.queue_size, delivery.overflow),
            alias_staleness_seconds=self.config.resilience.alias_staleness_seconds,
        )

    async def connect(
        self,
        endpoint: Endpoint,
        credentials: Optional[Credentials] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Session:
        """Open a session and wait for the broker to accept it.

        A session whose connect fails or is cancelled is closed before the
        error propagates.
        """
        session = self.open(endpoint, credentials, timeout=timeout)
        try:
            await session.connect()
        except BaseException:
            await session.close()
            raise
        return session
