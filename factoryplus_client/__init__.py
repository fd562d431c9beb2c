"""Factory+ client: service lookup, MQTT sessions and Sparkplug B payloads."""

from .channel import ChannelClosed, EventChannel, OverflowPolicy
from .client import FactoryPlusClient
from .cmdesc import CommandEscalation
from .config import ClientConfig, load_config
from .directory import ServiceResolver, ServiceType
from .errors import (
    AuthRejected,
    CommandRejected,
    ConnectError,
    ConnectTimeout,
    DecodeError,
    DirectoryUnavailable,
    FactoryPlusError,
    MalformedPayload,
    NotConnected,
    PublishError,
    ResolveError,
    ServiceNotFound,
    ServiceRequestError,
    SubscribeError,
    SubscribeTransportFailure,
    TrackerError,
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
from .session import Session, SessionManager, SubscriptionHandle

__all__ = [
    "AliasFailed",
    "AuthRejected",
    "ChannelClosed",
    "ClientConfig",
    "CommandEscalation",
    "CommandRejected",
    "ConnectError",
    "ConnectTimeout",
    "Credentials",
    "DecodeError",
    "DecodeFailed",
    "DirectoryUnavailable",
    "Endpoint",
    "EventChannel",
    "FactoryPlusClient",
    "FactoryPlusError",
    "MalformedPayload",
    "MessageEvent",
    "NotConnected",
    "OverflowPolicy",
    "PublishError",
    "RawMessage",
    "ResolveError",
    "SequenceGapEvent",
    "ServiceNotFound",
    "ServiceRequestError",
    "ServiceResolver",
    "ServiceType",
    "Session",
    "SessionEvent",
    "SessionManager",
    "SessionState",
    "StateChanged",
    "SubscribeError",
    "SubscribeTransportFailure",
    "SubscriptionHandle",
    "TrackerError",
    "TransportFailure",
    "UnknownAlias",
    "load_config",
]

__version__ = "0.1.0"
