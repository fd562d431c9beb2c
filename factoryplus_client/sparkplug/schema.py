"""Protobuf message classes for the Sparkplug B payload schema.

The descriptor mirrors the ``Payload`` and ``Metric`` messages of Eclipse
Tahu's ``sparkplug_b.proto`` and is registered in a private descriptor pool
at import time. Sub-messages the client never interprets (metadata,
properties, DataSet, Template and extension values) are declared as
``bytes``; they share the length-delimited wire type, so they decode to their
encoded form and re-encode unchanged. String fields are declared as ``bytes``
as well and UTF-8 is checked by the codec.
"""

from __future__ import annotations

from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "org.eclipse.tahu.protobuf"

_Field = descriptor_pb2.FieldDescriptorProto

_PAYLOAD_FIELDS = (
    ("timestamp", 1, _Field.TYPE_UINT64, _Field.LABEL_OPTIONAL),
    ("metrics", 2, _Field.TYPE_MESSAGE, _Field.LABEL_REPEATED),
    ("seq", 3, _Field.TYPE_UINT64, _Field.LABEL_OPTIONAL),
    ("uuid", 4, _Field.TYPE_BYTES, _Field.LABEL_OPTIONAL),
    ("body", 5, _Field.TYPE_BYTES, _Field.LABEL_OPTIONAL),
)

_METRIC_FIELDS = (
    ("name", 1, _Field.TYPE_BYTES),
    ("alias", 2, _Field.TYPE_UINT64),
    ("timestamp", 3, _Field.TYPE_UINT64),
    ("datatype", 4, _Field.TYPE_UINT32),
    ("is_historical", 5, _Field.TYPE_BOOL),
    ("is_transient", 6, _Field.TYPE_BOOL),
    ("is_null", 7, _Field.TYPE_BOOL),
    ("metadata", 8, _Field.TYPE_BYTES),
    ("properties", 9, _Field.TYPE_BYTES),
)

# Members of the ``value`` oneof, in field number order.
VALUE_FIELDS = (
    ("int_value", 10, _Field.TYPE_UINT32),
    ("long_value", 11, _Field.TYPE_UINT64),
    ("float_value", 12, _Field.TYPE_FLOAT),
    ("double_value", 13, _Field.TYPE_DOUBLE),
    ("boolean_value", 14, _Field.TYPE_BOOL),
    ("string_value", 15, _Field.TYPE_BYTES),
    ("bytes_value", 16, _Field.TYPE_BYTES),
    ("dataset_value", 17, _Field.TYPE_BYTES),
    ("template_value", 18, _Field.TYPE_BYTES),
    ("extension_value", 19, _Field.TYPE_BYTES),
)


def _file_descriptor() -> descriptor_pb2.FileDescriptorProto:
    proto = descriptor_pb2.FileDescriptorProto(
        name="factoryplus_client/sparkplug_b.proto",
        package=PACKAGE,
        syntax="proto2",
    )

    payload = proto.message_type.add(name="Payload")
    for name, number, field_type, label in _PAYLOAD_FIELDS:
        field = payload.field.add(name=name, number=number, type=field_type, label=label)
        if field_type == _Field.TYPE_MESSAGE:
            field.type_name = f".{PACKAGE}.Payload.Metric"

    metric = payload.nested_type.add(name="Metric")
    for name, number, field_type in _METRIC_FIELDS:
        metric.field.add(name=name, number=number, type=field_type, label=_Field.LABEL_OPTIONAL)
    metric.oneof_decl.add(name="value")
    for name, number, field_type in VALUE_FIELDS:
        metric.field.add(
            name=name,
            number=number,
            type=field_type,
            label=_Field.LABEL_OPTIONAL,
            oneof_index=0,
        )

    return proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_file_descriptor().SerializeToString())

Payload = message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{PACKAGE}.Payload"))
Metric = message_factory.GetMessageClass(
    _POOL.FindMessageTypeByName(f"{PACKAGE}.Payload.Metric")
)
