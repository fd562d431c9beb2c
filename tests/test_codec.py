"""Tests for the Sparkplug B payload codec."""

import struct
from datetime import datetime, timezone

import pytest

from factoryplus_client.errors import MalformedPayload
from factoryplus_client.sparkplug import codec, schema
from factoryplus_client.sparkplug.types import (
    BirthPayload,
    CommandPayload,
    DataPayload,
    DataType,
    DeathPayload,
    Metric,
    PayloadKind,
    to_float32,
)


def _varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def _field(number: int, wire_type: int, value) -> bytes:
    key = _varint((number << 3) | wire_type)
    if wire_type == 0:
        return key + _varint(value)
    if wire_type == 2:
        return key + _varint(len(value)) + value
    return key + value


def _metric(*fields: bytes) -> bytes:
    return _field(2, 2, b"".join(fields))


SEQ_ZERO = _field(3, 0, 0)


def test_birth_payload_round_trips():
    payload = BirthPayload(
        timestamp=1_700_000_000_000,
        seq=0,
        metrics=(
            Metric.of("bdSeq", 3, DataType.UINT64, alias=1, timestamp=1),
            Metric.of("Temperature", 21.5, DataType.FLOAT, alias=2, timestamp=1),
            Metric.of("Pressure", 1.013, DataType.DOUBLE, alias=3, timestamp=1),
            Metric.of("Offset", -12, DataType.INT16, alias=4, timestamp=1),
            Metric.of("Running", True, alias=5, timestamp=1),
            Metric.of("Label", "line 3", DataType.TEXT, alias=6, timestamp=1),
            Metric.of("Blob", b"\x00\x01", alias=7, timestamp=1),
            Metric(name="Missing", alias=8, timestamp=1, datatype=DataType.INT32, is_null=True),
        ),
        uuid="schema-1",
        body=b"extra",
    )

    assert codec.decode(codec.encode(payload), PayloadKind.BIRTH) == payload


@pytest.mark.parametrize(
    "payload",
    [
        DataPayload(seq=255, metrics=(Metric(alias=2, timestamp=5, datatype=DataType.INT8, value=-128),)),
        DeathPayload(metrics=(Metric.of("bdSeq", 3, DataType.UINT64, timestamp=1),)),
        CommandPayload(metrics=(Metric.of("Node Control/Rebirth", True, timestamp=1),)),
    ],
)
def test_other_payload_kinds_round_trip(payload):
    assert codec.decode(codec.encode(payload), payload.kind) == payload


def test_signed_values_use_twos_complement_of_their_width():
    payload = DataPayload(
        seq=0, metrics=(Metric(name="x", datatype=DataType.INT8, value=-1),)
    )

    data = codec.encode(payload)

    # int_value (field 10) carries 255, not a 64-bit sign extension
    assert _field(10, 0, 255) in data
    assert codec.decode(data).metrics[0].value == -1


def test_int64_negative_uses_long_value():
    payload = DataPayload(
        seq=0, metrics=(Metric(name="x", datatype=DataType.INT64, value=-5),)
    )

    data = codec.encode(payload)

    assert _field(11, 0, (1 << 64) - 5) in data
    assert codec.decode(data).metrics[0].value == -5


def test_uint32_is_accepted_from_long_value():
    data = _metric(
        _field(1, 2, b"count"), _field(4, 0, int(DataType.UINT32)), _field(11, 0, 70000)
    ) + SEQ_ZERO

    assert codec.decode(data).metrics[0].value == 70000


def test_float_values_keep_32_bit_precision():
    metric = Metric.of("f", 0.1, DataType.FLOAT)

    assert metric.value == to_float32(0.1)
    assert metric.value != 0.1

    payload = DataPayload(seq=1, metrics=(metric,))
    assert codec.decode(codec.encode(payload)).metrics[0].value == metric.value


def test_unknown_field_numbers_are_skipped():
    data = _metric(_field(1, 2, b"a"), _field(4, 0, 3), _field(10, 0, 7)) + SEQ_ZERO
    data += _field(30, 0, 5)

    payload = codec.decode(data)

    assert payload.metrics[0].value == 7


def test_metadata_and_properties_are_ignored():
    data = _metric(
        _field(1, 2, b"a"),
        _field(4, 0, 3),
        _field(8, 2, b"\x0a\x00"),
        _field(9, 2, b"\x0a\x00"),
        _field(10, 0, 7),
    ) + SEQ_ZERO

    assert codec.decode(data).metrics[0].value == 7


def test_untyped_metric_keeps_raw_value():
    data = _metric(_field(2, 0, 4), _field(11, 0, 99)) + SEQ_ZERO

    metric = codec.decode(data).metrics[0]

    assert metric.alias == 4
    assert metric.datatype is None
    assert metric.value == 99


def test_death_without_sequence_number():
    payload = codec.decode(_metric(_field(1, 2, b"bdSeq"), _field(4, 0, 8), _field(11, 0, 1)), PayloadKind.DEATH)

    assert isinstance(payload, DeathPayload)
    assert payload.seq is None


def test_data_payload_requires_sequence_number():
    data = _metric(_field(1, 2, b"a"), _field(4, 0, 3), _field(10, 0, 7))

    with pytest.raises(MalformedPayload):
        codec.decode(data, PayloadKind.DATA)


@pytest.mark.parametrize(
    "data",
    [
        pytest.param(
            _metric(_field(1, 2, b"a"), _field(4, 0, 99), _field(10, 0, 1)) + SEQ_ZERO,
            id="unknown-datatype",
        ),
        pytest.param(_field(3, 0, 256), id="sequence-out-of-range"),
        pytest.param(
            _metric(_field(4, 0, 3), _field(10, 0, 1)) + SEQ_ZERO,
            id="no-name-or-alias",
        ),
        pytest.param(_metric(_field(1, 0, 1)) + SEQ_ZERO, id="mistyped-name-leaves-no-identity"),
        pytest.param(
            _metric(_field(1, 2, b"a"), _field(4, 0, 1), _field(10, 0, 300)) + SEQ_ZERO,
            id="int8-out-of-range",
        ),
        pytest.param(
            _metric(_field(1, 2, b"a"), _field(4, 0, 12), _field(10, 0, 1)) + SEQ_ZERO,
            id="value-field-mismatch",
        ),
        pytest.param(
            _metric(_field(1, 2, b"a"), _field(4, 0, 3)) + SEQ_ZERO,
            id="missing-value",
        ),
        pytest.param(
            _metric(_field(1, 2, b"a"), _field(4, 0, 3), _field(7, 0, 1), _field(10, 0, 1))
            + SEQ_ZERO,
            id="null-with-value",
        ),
        pytest.param(
            _metric(_field(1, 2, b"a"), _field(4, 0, 3), _field(10, 0, 1), _field(15, 2, b"x"))
            + SEQ_ZERO,
            id="last-value-field-mismatches-type",
        ),
        pytest.param(
            _metric(_field(1, 2, b"a"), _field(4, 0, 20), _field(16, 2, b"x")) + SEQ_ZERO,
            id="property-set-value",
        ),
        pytest.param(_metric(_field(1, 2, b"\xff"), _field(11, 0, 1)) + SEQ_ZERO, id="bad-utf8"),
        pytest.param(b"\x12\x05\x0a\x01", id="truncated-metric"),
        pytest.param(b"\x18\x80", id="truncated-varint"),
        pytest.param(b"\x1b\x00", id="group-wire-type"),
    ],
)
def test_decode_rejects_malformed_input(data):
    with pytest.raises(MalformedPayload):
        codec.decode(data)


def test_truncating_a_valid_payload_fails():
    payload = DataPayload(seq=0, metrics=(Metric.of("a", 1, timestamp=1),))
    data = codec.encode(payload)

    with pytest.raises(MalformedPayload):
        codec.decode(data[:-1])


def test_decode_rejects_non_bytes():
    with pytest.raises(MalformedPayload):
        codec.decode("not bytes")  # type: ignore[arg-type]


def test_null_property_set_is_accepted():
    data = _metric(_field(1, 2, b"props"), _field(4, 0, 20), _field(7, 0, 1)) + SEQ_ZERO

    metric = codec.decode(data).metrics[0]

    assert metric.is_null
    assert metric.datatype is DataType.PROPERTY_SET


def test_dataset_travels_as_opaque_bytes():
    payload = DataPayload(
        seq=0, metrics=(Metric(name="table", datatype=DataType.DATASET, value=b"\x08\x02"),)
    )

    data = codec.encode(payload)

    assert _field(17, 2, b"\x08\x02") in data
    assert codec.decode(data) == payload


def test_float_is_written_as_fixed32():
    payload = DataPayload(seq=0, metrics=(Metric(name="f", datatype=DataType.FLOAT, value=1.5),))

    assert _field(12, 5, struct.pack("<f", 1.5)) in codec.encode(payload)


@pytest.mark.parametrize(
    "datatype, value",
    [
        (DataType.INT8, 128),
        (DataType.UINT8, -1),
        (DataType.UINT64, 1 << 64),
        (DataType.BOOLEAN, 1),
        (DataType.STRING, b"bytes"),
        (DataType.INT32, 1.5),
        (DataType.PROPERTY_SET, b""),
    ],
)
def test_metrics_reject_values_their_type_cannot_hold(datatype, value):
    with pytest.raises(ValueError):
        Metric(name="x", datatype=datatype, value=value)


def test_metric_requires_name_or_alias():
    with pytest.raises(ValueError):
        Metric(datatype=DataType.INT32, value=1)


def test_metric_of_infers_datatypes():
    moment = datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert Metric.of("b", True).datatype is DataType.BOOLEAN
    assert Metric.of("i", 5).datatype is DataType.INT64
    assert Metric.of("f", 1.5).datatype is DataType.DOUBLE
    assert Metric.of("s", "x").datatype is DataType.STRING
    assert Metric.of("y", b"x").datatype is DataType.BYTES

    stamp = Metric.of("t", moment)
    assert stamp.datatype is DataType.DATETIME
    assert stamp.value == 1_704_067_200_000


def test_payload_sequence_must_fit_a_byte():
    with pytest.raises(ValueError):
        DataPayload(seq=256)


@pytest.mark.parametrize("field", [17, 18])
def test_untyped_dataset_and_template_values_stay_opaque(field):
    data = _metric(_field(2, 0, 3), _field(field, 2, b"\x08\x01")) + SEQ_ZERO

    metric = codec.decode(data).metrics[0]

    assert metric.datatype is None
    assert metric.value == b"\x08\x01"


def test_decodes_payload_built_with_protobuf_messages():
    message = schema.Payload(timestamp=10, seq=4, uuid=b"schema-1")
    message.metrics.add(name=b"Temperature", alias=2, datatype=int(DataType.FLOAT), float_value=21.5)
    message.metrics.add(alias=3, int_value=0xFFFF)

    payload = codec.decode(message.SerializeToString())

    assert payload.seq == 4
    assert payload.uuid == "schema-1"
    assert payload.metrics[0].value == 21.5
    assert payload.metrics[1].datatype is None
    assert payload.metrics[1].value == 0xFFFF


def test_encoded_payload_parses_as_protobuf():
    payload = DataPayload(
        seq=9, metrics=(Metric(name="x", alias=1, datatype=DataType.INT16, value=-2),)
    )

    message = schema.Payload.FromString(codec.encode(payload))

    assert message.seq == 9
    assert message.metrics[0].WhichOneof("value") == "int_value"
    assert message.metrics[0].int_value == 0xFFFE
