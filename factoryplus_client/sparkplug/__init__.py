"""Sparkplug B payloads, topics and per-scope state tracking."""

from .codec import decode, encode
from .topic import Address, MessageType, Topic
from .tracker import (
    AliasTable,
    AliasTracker,
    MetricDefinition,
    ResolvedPayload,
    SequenceGap,
)
from .types import (
    BirthPayload,
    CommandPayload,
    DataPayload,
    DataType,
    DeathPayload,
    Metric,
    Payload,
    PayloadKind,
    now_ms,
)

__all__ = [
    "Address",
    "AliasTable",
    "AliasTracker",
    "BirthPayload",
    "CommandPayload",
    "DataPayload",
    "DataType",
    "DeathPayload",
    "MessageType",
    "Metric",
    "MetricDefinition",
    "Payload",
    "PayloadKind",
    "ResolvedPayload",
    "SequenceGap",
    "Topic",
    "decode",
    "encode",
    "now_ms",
]
