"""Tests for alias resolution and sequence tracking."""

import logging

import pytest

from factoryplus_client.errors import MalformedPayload, UnknownAlias
from factoryplus_client.sparkplug import codec, schema
from factoryplus_client.sparkplug.topic import Address, Topic
from factoryplus_client.sparkplug.tracker import AliasTracker
from factoryplus_client.sparkplug.types import (
    BirthPayload,
    CommandPayload,
    DataPayload,
    DataType,
    DeathPayload,
    Metric,
)

NBIRTH = Topic.parse("spBv1.0/G/NBIRTH/N")
NDATA = Topic.parse("spBv1.0/G/NDATA/N")
NDEATH = Topic.parse("spBv1.0/G/NDEATH/N")
NCMD = Topic.parse("spBv1.0/G/NCMD/N")
DBIRTH = Topic.parse("spBv1.0/G/DBIRTH/N/D")
DDATA = Topic.parse("spBv1.0/G/DDATA/N/D")
DDEATH = Topic.parse("spBv1.0/G/DDEATH/N/D")


def _birth(seq=0, **aliases):
    return BirthPayload(
        seq=seq,
        metrics=tuple(
            Metric(name=name, alias=alias, datatype=DataType.DOUBLE, value=0.0)
            for name, alias in aliases.items()
        ),
    )


def _data(seq, *aliases):
    return DataPayload(
        seq=seq,
        metrics=tuple(
            Metric(alias=alias, datatype=DataType.DOUBLE, value=1.0) for alias in aliases
        ),
    )


def test_birth_alias_resolves_subsequent_data():
    tracker = AliasTracker()
    tracker.observe(DBIRTH, _birth(temp=7))

    resolved = tracker.observe(DDATA, _data(1, 7))

    assert [metric.name for metric in resolved.metrics] == ["temp"]
    assert resolved.values() == {"temp": 1.0}
    assert resolved.gap is None


def test_unregistered_alias_raises_unknown_alias():
    tracker = AliasTracker()
    tracker.observe(DBIRTH, _birth(temp=7))

    with pytest.raises(UnknownAlias) as excinfo:
        tracker.observe(DDATA, _data(1, 7, 9))

    assert excinfo.value.aliases == (9,)
    assert excinfo.value.scope == Address("G", "N", "D")


def test_birth_resolves_its_own_metrics_against_new_table():
    tracker = AliasTracker()
    tracker.observe(NBIRTH, _birth(old=1))

    payload = BirthPayload(
        seq=0,
        metrics=(
            Metric(name="speed", alias=1, datatype=DataType.DOUBLE, value=2.0),
            Metric(alias=1, datatype=DataType.DOUBLE, value=3.0),
        ),
    )
    resolved = tracker.observe(NBIRTH, payload)

    assert [metric.name for metric in resolved.metrics] == ["speed", "speed"]


def test_birth_replaces_table_wholesale():
    tracker = AliasTracker()
    tracker.observe(NBIRTH, _birth(a=1, b=2))
    tracker.observe(NBIRTH, _birth(c=3))

    assert tracker.table(Address("G", "N")).aliases() == {3: "c"}
    with pytest.raises(UnknownAlias):
        tracker.observe(NDATA, _data(1, 1))


def test_sequence_gap_reported_once_and_resynchronised(caplog):
    tracker = AliasTracker()
    tracker.observe(NBIRTH, _birth(seq=0, temp=7))
    scope = Address("G", "N")
    # the birth consumed seq 0; data continues from 1
    gaps = []
    with caplog.at_level(logging.WARNING, logger="factoryplus_client.sparkplug.tracker"):
        for seq in (1, 2, 5, 6):
            gaps.append(tracker.observe(NDATA, _data(seq, 7)).gap)

    assert gaps[0] is None and gaps[1] is None and gaps[3] is None
    assert gaps[2].expected == 3
    assert gaps[2].received == 5
    assert gaps[2].missed == 2
    assert tracker.expected_seq(scope) == 7
    assert "Sequence gap" in caplog.text


def test_sequence_zero_one_two_five_without_birth():
    tracker = AliasTracker()
    gaps = [
        tracker.observe(NDATA, DataPayload(seq=seq, metrics=(Metric.of("x", 1.0),))).gap
        for seq in (0, 1, 2, 5)
    ]

    assert [gap is not None for gap in gaps] == [False, False, False, True]
    assert (gaps[3].expected, gaps[3].received) == (3, 5)
    assert tracker.expected_seq(Address("G", "N")) == 6


def test_sequence_wraps_at_256():
    tracker = AliasTracker()
    tracker.observe(NBIRTH, _birth(seq=254, temp=7))

    assert tracker.observe(NDATA, _data(255, 7)).gap is None
    assert tracker.observe(NDATA, _data(0, 7)).gap is None


def test_unknown_alias_carries_sequence_gap():
    tracker = AliasTracker()
    tracker.observe(NBIRTH, _birth(seq=0, temp=7))

    with pytest.raises(UnknownAlias) as excinfo:
        tracker.observe(NDATA, _data(4, 9))

    assert excinfo.value.gap is not None
    assert excinfo.value.gap.received == 4


def test_death_clears_scope_table():
    tracker = AliasTracker()
    tracker.observe(DBIRTH, _birth(temp=7, rpm=8))
    tracker.observe(DDEATH, DeathPayload(seq=1))

    with pytest.raises(UnknownAlias) as excinfo:
        tracker.observe(DDATA, _data(2, 7, 8))

    assert excinfo.value.aliases == (7, 8)
    assert tracker.expected_seq(Address("G", "N", "D")) == 3


def test_node_death_clears_its_devices():
    tracker = AliasTracker()
    tracker.observe(NBIRTH, _birth(a=1))
    tracker.observe(DBIRTH, _birth(b=2))
    other = Topic.parse("spBv1.0/G/DBIRTH/M/D")
    tracker.observe(other, _birth(c=3))

    tracker.observe(NDEATH, DeathPayload(metrics=(Metric.of("bdSeq", 0, DataType.UINT64),)))

    assert set(tracker.scopes()) == {Address("G", "M", "D")}


def test_death_resets_sequence_without_warning():
    tracker = AliasTracker()
    tracker.observe(NBIRTH, _birth(seq=0, temp=7))
    tracker.observe(NDEATH, DeathPayload())

    resolved = tracker.observe(NDATA, DataPayload(seq=9, metrics=(Metric.of("x", 1.0),)))

    assert resolved.gap is None


def test_commands_are_not_sequence_checked():
    tracker = AliasTracker()
    tracker.observe(NBIRTH, _birth(seq=0, temp=7))

    tracker.observe(NCMD, CommandPayload(seq=50, metrics=(Metric(alias=7, datatype=DataType.DOUBLE, value=1.0),)))

    assert tracker.expected_seq(Address("G", "N")) == 1


def test_untyped_metric_takes_birth_datatype():
    tracker = AliasTracker()
    tracker.observe(
        NBIRTH,
        BirthPayload(
            seq=0, metrics=(Metric(name="offset", alias=3, datatype=DataType.INT16, value=0),)
        ),
    )

    resolved = tracker.observe(NDATA, DataPayload(seq=1, metrics=(Metric(alias=3, value=65535),)))

    metric = resolved.metrics[0]
    assert metric.datatype is DataType.INT16
    assert metric.value == -1


def test_untyped_metric_out_of_range_is_malformed():
    tracker = AliasTracker()
    tracker.observe(
        NBIRTH,
        BirthPayload(
            seq=0, metrics=(Metric(name="level", alias=3, datatype=DataType.UINT8, value=0),)
        ),
    )

    with pytest.raises(MalformedPayload):
        tracker.observe(NDATA, DataPayload(seq=1, metrics=(Metric(alias=3, value=300),)))


def test_birth_with_conflicting_aliases_is_malformed():
    payload = BirthPayload(
        seq=0,
        metrics=(
            Metric(name="a", alias=1, datatype=DataType.DOUBLE, value=0.0),
            Metric(name="b", alias=1, datatype=DataType.DOUBLE, value=0.0),
        ),
    )

    with pytest.raises(MalformedPayload):
        AliasTracker().observe(NBIRTH, payload)


def test_payload_kind_must_match_topic():
    with pytest.raises(ValueError):
        AliasTracker().observe(NDATA, _birth(a=1))


def test_trackers_do_not_share_state():
    first, second = AliasTracker(), AliasTracker()
    first.observe(NBIRTH, _birth(a=1))

    with pytest.raises(UnknownAlias):
        second.observe(NDATA, _data(1, 1))


def test_clear_drops_every_scope():
    tracker = AliasTracker()
    tracker.observe(NBIRTH, _birth(a=1))
    tracker.observe(DBIRTH, _birth(b=2))

    tracker.clear()

    assert list(tracker.scopes()) == []
    assert tracker.expected_seq(Address("G", "N")) is None


def test_untyped_dataset_update_takes_birth_datatype():
    tracker = AliasTracker()
    tracker.observe(
        DBIRTH,
        BirthPayload(
            seq=0,
            metrics=(Metric(name="recipe", alias=3, datatype=DataType.DATASET, value=b""),),
        ),
    )
    message = schema.Payload(seq=1)
    message.metrics.add(alias=3, dataset_value=b"\x08\x01")

    resolved = tracker.observe(DDATA, codec.decode(message.SerializeToString()))

    metric = resolved.metrics[0]
    assert metric.name == "recipe"
    assert metric.datatype is DataType.DATASET
    assert metric.value == b"\x08\x01"
