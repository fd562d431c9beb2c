"""Exception hierarchy for the Factory+ client.

Every error raised by the public API derives from :class:`FactoryPlusError`.
Callers that want to retry only transient directory failures can catch
:class:`DirectoryUnavailable` and let :class:`ServiceNotFound` propagate.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from .sparkplug.topic import Address
    from .sparkplug.tracker import SequenceGap


class FactoryPlusError(RuntimeError):
    """Base class for all client errors."""


# ----------------------------------------------------------------------
# Directory lookups
# ----------------------------------------------------------------------
class ResolveError(FactoryPlusError):
    """Raised when a service name cannot be turned into an endpoint."""

    def __init__(self, service: str, message: str) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service


class ServiceNotFound(ResolveError):
    """The directory has no usable registration for the service."""


class DirectoryUnavailable(ResolveError):
    """The directory lookup itself could not complete."""


# ----------------------------------------------------------------------
# Session establishment
# ----------------------------------------------------------------------
class ConnectError(FactoryPlusError):
    """Raised when a session cannot be established."""


class AuthRejected(ConnectError):
    """The broker refused the supplied credentials."""


class TransportFailure(ConnectError):
    """The network or TLS layer failed before the broker answered."""


class ConnectTimeout(ConnectError):
    """The broker did not acknowledge the connection in time."""


# ----------------------------------------------------------------------
# Payload handling
# ----------------------------------------------------------------------
class DecodeError(FactoryPlusError):
    """Raised when a payload cannot be decoded."""


class MalformedPayload(DecodeError):
    """The bytes are not a structurally valid Sparkplug payload."""


class TrackerError(FactoryPlusError):
    """Raised when a decoded payload is inconsistent with tracked state."""


class UnknownAlias(TrackerError):
    """A data payload referenced aliases that no birth has established."""

    def __init__(self, scope: "Address", aliases: Iterable[int]) -> None:
        self.scope = scope
        self.aliases: Tuple[int, ...] = tuple(sorted(set(aliases)))
        self.gap: Optional["SequenceGap"] = None
        joined = ", ".join(str(alias) for alias in self.aliases)
        super().__init__(f"Unknown alias(es) {joined} for {scope}")


# ----------------------------------------------------------------------
# Subscriptions and publishing
# ----------------------------------------------------------------------
class SubscribeError(FactoryPlusError):
    """Raised when a subscription cannot be registered."""


class NotConnected(SubscribeError):
    """The session has no usable transport connection."""


class SubscribeTransportFailure(SubscribeError):
    """The broker rejected the subscription or the transport failed."""


class PublishError(FactoryPlusError):
    """Raised when a payload cannot be handed to the transport."""

    def __init__(self, message: str, *, topic: Optional[str] = None) -> None:
        super().__init__(message)
        self.topic = topic


# ----------------------------------------------------------------------
# Other Factory+ services
# ----------------------------------------------------------------------
class ServiceRequestError(FactoryPlusError):
    """An authenticated request to a Factory+ HTTP service failed."""

    def __init__(self, service: str, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status = status


class CommandRejected(ServiceRequestError):
    """The command escalation service did not accept a command."""
