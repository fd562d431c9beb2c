"""Per-scope alias tables and sequence tracking across Sparkplug messages."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from ..constants import SEQUENCE_MODULUS
from ..errors import MalformedPayload, UnknownAlias
from .topic import Address, Topic
from .types import DataType, Metric, Payload, PayloadKind

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MetricDefinition:
    name: str
    datatype: Optional[DataType]


@dataclass(frozen=True, slots=True)
class SequenceGap:
    """Warning that one or more messages for a scope were probably lost."""

    scope: Address
    expected: int
    received: int

    @property
    def missed(self) -> int:
        return (self.received - self.expected) % SEQUENCE_MODULUS


@dataclass(frozen=True, slots=True)
class ResolvedPayload:
    """A payload whose metrics all carry their names."""

    topic: Topic
    payload: Payload
    metrics: Tuple[Metric, ...]
    gap: Optional[SequenceGap] = None

    @property
    def kind(self) -> PayloadKind:
        return self.payload.kind

    @property
    def seq(self) -> Optional[int]:
        return self.payload.seq

    def values(self) -> Dict[str, object]:
        return {metric.name: metric.value for metric in self.metrics}


class AliasTable:
    """Alias and name definitions established by one birth certificate."""

    def __init__(self) -> None:
        self._by_alias: Dict[int, MetricDefinition] = {}
        self._by_name: Dict[str, MetricDefinition] = {}

    @classmethod
    def from_birth(cls, payload: Payload) -> "AliasTable":
        table = cls()
        for metric in payload.metrics:
            if metric.name is None:
                continue
            definition = MetricDefinition(metric.name, metric.datatype)
            table._by_name[metric.name] = definition
            if metric.alias is None:
                continue
            existing = table._by_alias.get(metric.alias)
            if existing is not None and existing.name != metric.name:
                raise MalformedPayload(
                    f"Birth assigns alias {metric.alias} to both "
                    f"{existing.name!r} and {metric.name!r}"
                )
            table._by_alias[metric.alias] = definition
        return table

    def lookup_alias(self, alias: int) -> Optional[MetricDefinition]:
        return self._by_alias.get(alias)

    def lookup_name(self, name: str) -> Optional[MetricDefinition]:
        return self._by_name.get(name)

    def aliases(self) -> Mapping[int, str]:
        return {alias: definition.name for alias, definition in self._by_alias.items()}

    def __contains__(self, alias: object) -> bool:
        return alias in self._by_alias

    def __len__(self) -> int:
        return len(self._by_alias)


_EMPTY_TABLE = AliasTable()


class AliasTracker:
    """Resolves aliases and checks sequence numbers for every observed scope.

    One tracker belongs to one session; nothing here is shared between
    sessions.
    """

    def __init__(self) -> None:
        self._tables: Dict[Address, AliasTable] = {}
        self._expected: Dict[Address, int] = {}

    def observe(self, topic: Topic, payload: Payload) -> ResolvedPayload:
        """Fold ``payload`` into the tracked state and resolve its metrics.

        Raises :class:`UnknownAlias` when a metric refers to an alias the
        scope's current birth never defined; the exception's ``gap`` attribute
        carries any sequence gap the same message revealed.
        """

        if payload.kind is not topic.kind:
            raise ValueError(
                f"{payload.kind.value} payload cannot travel on {topic.message_type.value}"
            )

        scope = topic.address
        kind = payload.kind

        if kind is PayloadKind.BIRTH:
            self._tables[scope] = AliasTable.from_birth(payload)
            self._restart_sequence(scope, payload.seq)
            LOGGER.debug(
                "Birth for %s defines %d alias(es)", scope, len(self._tables[scope])
            )
            return self._resolved(topic, payload, None)

        if kind is PayloadKind.DEATH:
            try:
                return self._resolved(topic, payload, None)
            finally:
                self.forget(scope)

        gap = None
        if kind is PayloadKind.DATA:
            gap = self._check_sequence(scope, payload.seq)
        try:
            return self._resolved(topic, payload, gap)
        except UnknownAlias as exc:
            exc.gap = gap
            raise

    def forget(self, scope: Address) -> None:
        """Drop the state for ``scope``; a node scope takes its devices with it."""

        doomed = [
            tracked
            for tracked in set(self._tables) | set(self._expected)
            if tracked == scope or (not scope.is_device and tracked.is_child_of(scope))
        ]
        for tracked in doomed:
            self._tables.pop(tracked, None)
            self._expected.pop(tracked, None)
        if doomed:
            LOGGER.debug("Cleared alias state for %s", ", ".join(map(str, doomed)))

    def clear(self) -> None:
        self._tables.clear()
        self._expected.clear()

    def table(self, scope: Address) -> Optional[AliasTable]:
        return self._tables.get(scope)

    def expected_seq(self, scope: Address) -> Optional[int]:
        return self._expected.get(scope)

    def scopes(self) -> Iterator[Address]:
        return iter(list(self._tables))

    # ------------------------------------------------------------------
    def _restart_sequence(self, scope: Address, seq: Optional[int]) -> None:
        if seq is None:
            self._expected.pop(scope, None)
        else:
            self._expected[scope] = (seq + 1) % SEQUENCE_MODULUS

    def _check_sequence(self, scope: Address, seq: Optional[int]) -> Optional[SequenceGap]:
        expected = self._expected.get(scope)
        self._restart_sequence(scope, seq)
        if expected is None or seq is None or seq == expected:
            return None
        gap = SequenceGap(scope=scope, expected=expected, received=seq)
        LOGGER.warning(
            "Sequence gap on %s: expected %d, received %d", scope, expected, seq
        )
        return gap

    def _resolved(
        self, topic: Topic, payload: Payload, gap: Optional[SequenceGap]
    ) -> ResolvedPayload:
        scope = topic.address
        table = self._tables.get(scope, _EMPTY_TABLE)
        metrics: List[Metric] = []
        missing: List[int] = []

        for metric in payload.metrics:
            if metric.name is not None:
                definition = table.lookup_name(metric.name)
            else:
                definition = table.lookup_alias(metric.alias)
                if definition is None:
                    missing.append(metric.alias)
                    continue
            if definition is None:
                metrics.append(metric)
                continue
            try:
                metrics.append(metric.with_definition(definition.name, definition.datatype))
            except ValueError as exc:
                raise MalformedPayload(
                    f"Metric {definition.name!r} on {scope} does not match its birth "
                    f"definition: {exc}"
                ) from exc

        if missing:
            raise UnknownAlias(scope, missing)

        return ResolvedPayload(topic=topic, payload=payload, metrics=tuple(metrics), gap=gap)
