"""Events delivered to the application through a session's channel."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .errors import DecodeError, TrackerError
from .sparkplug.topic import Topic
from .sparkplug.tracker import ResolvedPayload, SequenceGap


class SessionState(str, Enum):
    """Lifecycle of a :class:`~factoryplus_client.session.Session`."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    """Transport lost; the session is retrying on its own."""

    FAILED = "failed"
    """The reconnect policy gave up; the session will not recover."""

    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class MessageEvent:
    topic: Topic
    resolved: ResolvedPayload

    @property
    def metrics(self):
        return self.resolved.metrics


@dataclass(frozen=True, slots=True)
class DecodeFailed:
    """A single message could not be decoded; the session carries on."""

    topic: str
    error: DecodeError


@dataclass(frozen=True, slots=True)
class AliasFailed:
    """A message referenced aliases with no birth definition and was dropped."""

    topic: Topic
    error: TrackerError


@dataclass(frozen=True, slots=True)
class SequenceGapEvent:
    topic: Topic
    gap: SequenceGap


@dataclass(frozen=True, slots=True)
class RawMessage:
    """A message on a topic outside the Sparkplug B namespace."""

    topic: str
    data: bytes


@dataclass(frozen=True, slots=True)
class StateChanged:
    state: SessionState
    detail: Optional[str] = None


SessionEvent = Union[
    MessageEvent,
    DecodeFailed,
    AliasFailed,
    SequenceGapEvent,
    RawMessage,
    StateChanged,
]
