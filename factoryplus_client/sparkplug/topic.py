"""Sparkplug topic namespace: ``spBv1.0/<group>/<type>/<node>[/<device>]``."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..constants import SPARKPLUG_NAMESPACE
from .types import PayloadKind

WILDCARD = "+"


class MessageType(str, Enum):
    NBIRTH = "NBIRTH"
    NDEATH = "NDEATH"
    DBIRTH = "DBIRTH"
    DDEATH = "DDEATH"
    NDATA = "NDATA"
    DDATA = "DDATA"
    NCMD = "NCMD"
    DCMD = "DCMD"

    @property
    def is_device(self) -> bool:
        return self.value.startswith("D")

    @property
    def kind(self) -> PayloadKind:
        return _KINDS[self.value[1:]]

    @classmethod
    def for_kind(cls, kind: PayloadKind, *, device: bool) -> "MessageType":
        suffix = next(key for key, value in _KINDS.items() if value is kind)
        return cls(("D" if device else "N") + suffix)


_KINDS = {
    "BIRTH": PayloadKind.BIRTH,
    "DEATH": PayloadKind.DEATH,
    "DATA": PayloadKind.DATA,
    "CMD": PayloadKind.COMMAND,
}


@dataclass(frozen=True, slots=True)
class Address:
    """The ``group/node[/device]`` scope a message belongs to.

    Any component may be ``+`` when the address is used as a pattern.
    """

    group: str
    node: str
    device: Optional[str] = None

    @classmethod
    def parse(cls, text: str) -> "Address":
        parts = text.split("/")
        if len(parts) not in (2, 3) or not all(parts):
            raise ValueError(f"Invalid Sparkplug address: {text!r}")
        return cls(*parts)

    @property
    def is_device(self) -> bool:
        return self.device is not None

    @property
    def is_pattern(self) -> bool:
        return WILDCARD in (self.group, self.node, self.device)

    def parent_node(self) -> "Address":
        return Address(self.group, self.node)

    def child_device(self, device: str) -> "Address":
        if self.is_device:
            raise ValueError(f"{self} is already a device address")
        return Address(self.group, self.node, device)

    def is_child_of(self, parent: "Address") -> bool:
        return self.is_device and self.parent_node() == parent

    def matches(self, other: "Address") -> bool:
        """Whether ``other`` falls under this (possibly wildcarded) address."""

        def _wild(pattern: Optional[str], value: Optional[str]) -> bool:
            return pattern == value or pattern == WILDCARD

        if self.device == WILDCARD:
            device_ok = other.is_device
        else:
            device_ok = self.device == other.device
        return _wild(self.group, other.group) and _wild(self.node, other.node) and device_ok

    def topic(self, message_type: MessageType) -> "Topic":
        return Topic(self.group, message_type, self.node, self.device)

    def filter(self, message_type: Optional[MessageType] = None) -> str:
        """MQTT subscription filter for this address, any type by default."""

        kind = message_type.value if message_type is not None else WILDCARD
        parts = [SPARKPLUG_NAMESPACE, self.group, kind, self.node]
        if self.device is not None:
            parts.append(self.device)
        return "/".join(parts)

    def __str__(self) -> str:
        if self.device is None:
            return f"{self.group}/{self.node}"
        return f"{self.group}/{self.node}/{self.device}"


@dataclass(frozen=True, slots=True)
class Topic:
    group: str
    message_type: MessageType
    node: str
    device: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.message_type, MessageType):
            object.__setattr__(self, "message_type", MessageType(self.message_type))
        if self.message_type.is_device and self.device is None:
            raise ValueError(f"{self.message_type.value} topics require a device")
        if not self.message_type.is_device and self.device is not None:
            raise ValueError(f"{self.message_type.value} topics cannot name a device")

    @classmethod
    def parse(cls, text: str) -> "Topic":
        parts = text.split("/")
        if len(parts) not in (4, 5) or parts[0] != SPARKPLUG_NAMESPACE:
            raise ValueError(f"Not a Sparkplug B topic: {text!r}")
        if not all(parts) or WILDCARD in parts or "#" in parts:
            raise ValueError(f"Sparkplug topic has an empty or wildcard level: {text!r}")
        try:
            message_type = MessageType(parts[2])
        except ValueError as exc:
            raise ValueError(f"Unknown Sparkplug message type in {text!r}") from exc
        device = parts[4] if len(parts) == 5 else None
        return cls(parts[1], message_type, parts[3], device)

    @property
    def kind(self) -> PayloadKind:
        return self.message_type.kind

    @property
    def address(self) -> Address:
        return Address(self.group, self.node, self.device)

    def __str__(self) -> str:
        return self.to_string()

    def to_string(self) -> str:
        parts = [SPARKPLUG_NAMESPACE, self.group, self.message_type.value, self.node]
        if self.device is not None:
            parts.append(self.device)
        return "/".join(parts)
