"""Sparkplug B protobuf codec.

Wire parsing and serialization are done by the protobuf runtime against the
messages in :mod:`.schema`. On top of that, decoding is strict: datatype tags
must be known, the populated value field must suit the datatype, and integers
must fit their declared width. A buffer either yields a complete, valid payload
or raises :class:`MalformedPayload`; callers never see partial results.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple, Union

from google.protobuf.message import DecodeError as ProtobufDecodeError

from ..errors import MalformedPayload
from . import schema
from .types import (
    BYTES_TYPES,
    INTEGER_WIDTHS,
    PAYLOAD_TYPES,
    STRING_TYPES,
    DataType,
    Metric,
    Payload,
    PayloadKind,
    from_unsigned,
    to_unsigned,
)

Buffer = Union[bytes, bytearray, memoryview]

# Opaque sub-messages are carried as their encoded bytes.
_OPAQUE_FIELDS = {
    DataType.DATASET: "dataset_value",
    DataType.TEMPLATE: "template_value",
}


def _value_fields(datatype: DataType) -> Tuple[str, ...]:
    """Oneof members that may carry a value of ``datatype``."""

    if datatype in INTEGER_WIDTHS:
        bits, _ = INTEGER_WIDTHS[datatype]
        # Publishers disagree on where 32-bit unsigned values live.
        return ("int_value", "long_value") if bits <= 32 else ("long_value",)
    if datatype is DataType.FLOAT:
        return ("float_value",)
    if datatype is DataType.DOUBLE:
        return ("double_value",)
    if datatype is DataType.BOOLEAN:
        return ("boolean_value",)
    if datatype in STRING_TYPES:
        return ("string_value",)
    if datatype in _OPAQUE_FIELDS:
        return (_OPAQUE_FIELDS[datatype],)
    if datatype in BYTES_TYPES or datatype.name.endswith("_ARRAY"):
        return ("bytes_value",)
    return ()


# ----------------------------------------------------------------------
# Decoding
# ----------------------------------------------------------------------
def _text(raw: bytes) -> str:
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedPayload(f"Invalid UTF-8 string: {exc}") from exc


def _optional(message: Any, field: str) -> Any:
    return getattr(message, field) if message.HasField(field) else None


def _decode_value(datatype: Optional[DataType], field: str, raw: Any) -> Any:
    if datatype is None:
        # Untyped values stay raw until the birth definition types them;
        # DataSet and Template values stay opaque bytes.
        if field == "extension_value":
            raise MalformedPayload("Extension values are not supported")
        if field == "string_value":
            return _text(raw)
        return raw

    if field not in _value_fields(datatype):
        raise MalformedPayload(f"Value field {field} does not match datatype {datatype.name}")

    if datatype in INTEGER_WIDTHS:
        try:
            return from_unsigned(datatype, raw)
        except ValueError as exc:
            raise MalformedPayload(str(exc)) from exc
    if field == "string_value":
        return _text(raw)
    return raw


def _decode_metric(message: Any) -> Metric:
    name = _optional(message, "name")
    raw_datatype = _optional(message, "datatype")

    datatype: Optional[DataType] = None
    if raw_datatype is not None:
        try:
            datatype = DataType(raw_datatype)
        except ValueError as exc:
            raise MalformedPayload(f"Unknown datatype tag {raw_datatype}") from exc

    label = name if name is not None else _optional(message, "alias")
    field = message.WhichOneof("value")
    value = None
    if not message.is_null:
        if field is None:
            raise MalformedPayload(f"Metric {label} has no value and is not null")
        value = _decode_value(datatype, field, getattr(message, field))
    elif field is not None:
        raise MalformedPayload(f"Null metric {label} carries a value")

    # metadata and properties are not surfaced
    try:
        return Metric(
            name=None if name is None else _text(name),
            alias=_optional(message, "alias"),
            timestamp=_optional(message, "timestamp"),
            datatype=datatype,
            value=value,
            is_null=message.is_null,
            is_historical=message.is_historical,
            is_transient=message.is_transient,
        )
    except ValueError as exc:
        raise MalformedPayload(str(exc)) from exc


def decode(data: Buffer, kind: PayloadKind = PayloadKind.DATA) -> Payload:
    """Decode a Sparkplug B payload.

    ``kind`` comes from the topic the bytes arrived on and selects the payload
    variant. Raises :class:`MalformedPayload` on any structural problem.
    """

    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise MalformedPayload(f"Expected bytes, got {type(data).__name__}")

    message = schema.Payload()
    try:
        message.ParseFromString(bytes(data))
    except ProtobufDecodeError as exc:
        raise MalformedPayload(f"Invalid protobuf payload: {exc}") from exc

    fields: Dict[str, Any] = {}
    for field in ("timestamp", "seq", "body"):
        if message.HasField(field):
            fields[field] = getattr(message, field)
    if message.HasField("uuid"):
        fields["uuid"] = _text(message.uuid)

    metrics: List[Metric] = [_decode_metric(metric) for metric in message.metrics]

    try:
        return PAYLOAD_TYPES[PayloadKind(kind)](metrics=tuple(metrics), **fields)
    except ValueError as exc:
        raise MalformedPayload(str(exc)) from exc


# ----------------------------------------------------------------------
# Encoding
# ----------------------------------------------------------------------
def _untyped_field(value: Any) -> str:
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return "boolean_value"
    if isinstance(value, int):
        return "long_value"
    if isinstance(value, float):
        return "double_value"
    if isinstance(value, str):
        return "string_value"
    return "bytes_value"


def _encode_metric(message: Any, metric: Metric) -> None:
    if metric.name is not None:
        message.name = metric.name.encode("utf-8")
    if metric.alias is not None:
        message.alias = metric.alias
    if metric.timestamp is not None:
        message.timestamp = metric.timestamp
    if metric.datatype is not None:
        message.datatype = int(metric.datatype)
    if metric.is_historical:
        message.is_historical = True
    if metric.is_transient:
        message.is_transient = True
    if metric.is_null:
        message.is_null = True
        return

    value = metric.value
    if metric.datatype is None:
        field = _untyped_field(value)
    else:
        field = _value_fields(metric.datatype)[0]
        if metric.datatype in INTEGER_WIDTHS:
            value = to_unsigned(metric.datatype, value)
    if field == "string_value":
        value = value.encode("utf-8")
    setattr(message, field, value)


def encode(payload: Payload) -> bytes:
    """Encode a payload into Sparkplug B protobuf bytes."""

    message = schema.Payload()
    if payload.timestamp is not None:
        message.timestamp = payload.timestamp
    for metric in payload.metrics:
        _encode_metric(message.metrics.add(), metric)
    if payload.seq is not None:
        message.seq = payload.seq
    if payload.uuid is not None:
        message.uuid = payload.uuid.encode("utf-8")
    if payload.body is not None:
        message.body = payload.body
    return message.SerializeToString()
