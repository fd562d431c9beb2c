import asyncio

import pytest

from factoryplus_client.adapters.mqtt import MQTTSubscriptionRefused
from factoryplus_client.config import ResilienceConfig


class FakeTransport:
    """In-memory stand-in for :class:`MQTTClient` as seen by sessions.

    ``connect_outcomes`` scripts successive connects (``None`` succeeds, an
    exception instance is raised). ``before_connect`` and ``on_subscribe``
    are optional hooks tests use to interleave events with the handshake;
    ``connect_gate`` and ``subscribe_gate`` hold those calls until set.
    """

    def __init__(self):
        self.connected = False
        self.connect_outcomes = []
        self.connect_calls = 0
        self.subscribed = []
        self.unsubscribed = []
        self.published = []
        self.refuse = set()
        self.before_connect = None
        self.on_subscribe = None
        self.connect_gate = None
        self.subscribe_gate = None
        self._message_handler = None
        self._disconnect_handlers = []

    def set_message_handler(self, handler):
        self._message_handler = handler

    def register_disconnect_handler(self, handler):
        self._disconnect_handlers.append(handler)

    async def connect(self, timeout: float = 30.0):
        self.connect_calls += 1
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.before_connect is not None:
            self.before_connect()
        outcome = self.connect_outcomes.pop(0) if self.connect_outcomes else None
        if outcome is not None:
            raise outcome
        self.connected = True

    async def disconnect(self):
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    async def subscribe(self, topic: str, qos: int = 1, timeout: float = 10.0) -> int:
        if not self.connected:
            raise RuntimeError("MQTT client not connected")
        await asyncio.sleep(0)
        if self.subscribe_gate is not None:
            await self.subscribe_gate.wait()
        if self.on_subscribe is not None:
            self.on_subscribe(topic)
        if topic in self.refuse:
            raise MQTTSubscriptionRefused(f"Broker refused subscription to {topic}")
        self.subscribed.append(topic)
        return qos

    def unsubscribe(self, topic: str) -> None:
        if not self.connected:
            raise RuntimeError("MQTT client not connected")
        self.unsubscribed.append(topic)

    def publish(self, topic, payload, qos=0, retain=False):
        if not self.connected:
            raise RuntimeError("MQTT client not connected")
        self.published.append((topic, payload, qos, retain))

    # test helpers ---------------------------------------------------
    def deliver(self, topic: str, payload: bytes) -> None:
        self._message_handler(topic, payload)

    def drop(self, rc: int = 7) -> None:
        self.connected = False
        for handler in list(self._disconnect_handlers):
            handler(rc)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def fast_resilience():
    """Reconnect policy with millisecond delays and a small attempt budget."""

    def _create(max_attempts: int = 3, staleness: float = 60.0) -> ResilienceConfig:
        return ResilienceConfig(
            reconnect_initial_seconds=0.01,
            reconnect_max_seconds=0.02,
            reconnect_jitter_ratio=0.0,
            reconnect_max_attempts=max_attempts,
            alias_staleness_seconds=staleness,
        )

    return _create
