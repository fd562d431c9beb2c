"""In-memory representation of Sparkplug B payloads."""

from __future__ import annotations

import struct
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, ClassVar, Optional, Tuple

from ..constants import SEQUENCE_MODULUS


class DataType(IntEnum):
    """Sparkplug B metric datatype tags."""

    INT8 = 1
    INT16 = 2
    INT32 = 3
    INT64 = 4
    UINT8 = 5
    UINT16 = 6
    UINT32 = 7
    UINT64 = 8
    FLOAT = 9
    DOUBLE = 10
    BOOLEAN = 11
    STRING = 12
    DATETIME = 13
    TEXT = 14
    UUID = 15
    DATASET = 16
    BYTES = 17
    FILE = 18
    TEMPLATE = 19
    PROPERTY_SET = 20
    PROPERTY_SET_LIST = 21
    INT8_ARRAY = 22
    INT16_ARRAY = 23
    INT32_ARRAY = 24
    INT64_ARRAY = 25
    UINT8_ARRAY = 26
    UINT16_ARRAY = 27
    UINT32_ARRAY = 28
    UINT64_ARRAY = 29
    FLOAT_ARRAY = 30
    DOUBLE_ARRAY = 31
    BOOLEAN_ARRAY = 32
    STRING_ARRAY = 33
    DATETIME_ARRAY = 34

    @property
    def is_scalar(self) -> bool:
        return self in _SCALAR_TYPES


# (bits, signed) for every integer-valued type.
INTEGER_WIDTHS = {
    DataType.INT8: (8, True),
    DataType.INT16: (16, True),
    DataType.INT32: (32, True),
    DataType.INT64: (64, True),
    DataType.UINT8: (8, False),
    DataType.UINT16: (16, False),
    DataType.UINT32: (32, False),
    DataType.UINT64: (64, False),
    DataType.DATETIME: (64, False),
}

STRING_TYPES = frozenset({DataType.STRING, DataType.TEXT, DataType.UUID})
BYTES_TYPES = frozenset({DataType.BYTES, DataType.FILE})

_SCALAR_TYPES = frozenset(
    set(INTEGER_WIDTHS)
    | STRING_TYPES
    | BYTES_TYPES
    | {DataType.FLOAT, DataType.DOUBLE, DataType.BOOLEAN}
)


def integer_range(datatype: DataType) -> Tuple[int, int]:
    bits, signed = INTEGER_WIDTHS[datatype]
    if signed:
        return -(1 << (bits - 1)), (1 << (bits - 1)) - 1
    return 0, (1 << bits) - 1


def to_float32(value: float) -> float:
    """Round a Python float to the nearest IEEE-754 single precision value."""

    return struct.unpack("<f", struct.pack("<f", value))[0]


def check_value(datatype: Optional[DataType], value: Any) -> Any:
    """Validate ``value`` against ``datatype`` and return its canonical form.

    Raises ``ValueError`` when the value cannot be represented exactly by the
    declared type. A metric without a datatype carries a raw value whose
    interpretation is deferred to the birth certificate that defined it.
    """

    if datatype is None:
        if isinstance(value, (bool, float, str, bytes)):
            return value
        if isinstance(value, int):
            if not 0 <= value < (1 << 64):
                raise ValueError(f"Untyped integer {value} does not fit uint64")
            return value
        raise ValueError(f"Unsupported untyped value {value!r}")

    if not datatype.is_scalar:
        # DataSet, Template and array values travel as their encoded bytes.
        if datatype in (DataType.PROPERTY_SET, DataType.PROPERTY_SET_LIST):
            raise ValueError(f"{datatype.name} cannot be a metric value")
        if not isinstance(value, (bytes, bytearray)):
            raise ValueError(f"{datatype.name} values are carried as encoded bytes")
        return bytes(value)

    if datatype in INTEGER_WIDTHS:
        if datatype is DataType.DATETIME and isinstance(value, datetime):
            value = int(value.timestamp() * 1000)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{datatype.name} requires an int, got {value!r}")
        low, high = integer_range(datatype)
        if not low <= value <= high:
            raise ValueError(f"{value} is out of range for {datatype.name}")
        return value

    if datatype in (DataType.FLOAT, DataType.DOUBLE):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"{datatype.name} requires a float, got {value!r}")
        value = float(value)
        if datatype is DataType.FLOAT:
            try:
                return to_float32(value)
            except OverflowError as exc:
                raise ValueError(f"{value} is out of range for FLOAT") from exc
        return value

    if datatype is DataType.BOOLEAN:
        if not isinstance(value, bool):
            raise ValueError(f"BOOLEAN requires a bool, got {value!r}")
        return value

    if datatype in STRING_TYPES:
        if not isinstance(value, str):
            raise ValueError(f"{datatype.name} requires a str, got {value!r}")
        return value

    if not isinstance(value, (bytes, bytearray)):
        raise ValueError(f"{datatype.name} requires bytes, got {value!r}")
    return bytes(value)


def infer_datatype(value: Any) -> DataType:
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return DataType.BOOLEAN
    if isinstance(value, int):
        return DataType.INT64
    if isinstance(value, float):
        return DataType.DOUBLE
    if isinstance(value, str):
        return DataType.STRING
    if isinstance(value, (bytes, bytearray)):
        return DataType.BYTES
    if isinstance(value, datetime):
        return DataType.DATETIME
    raise ValueError(f"Cannot infer a Sparkplug datatype for {value!r}")


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True, slots=True)
class Metric:
    """One named or aliased value inside a payload.

    A metric must carry a ``name``, an ``alias``, or both. Values are checked
    against ``datatype`` on construction so an instance always holds a value
    its declared type can encode exactly.
    """

    name: Optional[str] = None
    alias: Optional[int] = None
    timestamp: Optional[int] = None
    datatype: Optional[DataType] = None
    value: Any = None
    is_null: bool = False
    is_historical: bool = False
    is_transient: bool = False

    def __post_init__(self) -> None:
        if self.name is None and self.alias is None:
            raise ValueError("Metric requires a name or an alias")
        if self.alias is not None and not 0 <= self.alias < (1 << 64):
            raise ValueError(f"Alias {self.alias} does not fit uint64")
        if self.timestamp is not None and not 0 <= self.timestamp < (1 << 64):
            raise ValueError(f"Timestamp {self.timestamp} is not an unsigned ms value")
        if self.datatype is not None and not isinstance(self.datatype, DataType):
            object.__setattr__(self, "datatype", DataType(self.datatype))

        if self.is_null:
            if self.value is not None:
                raise ValueError("A null metric cannot carry a value")
            return
        if self.value is None:
            raise ValueError(
                f"Metric {self.name or self.alias} has no value and is not null"
            )
        object.__setattr__(self, "value", check_value(self.datatype, self.value))

    @classmethod
    def of(
        cls,
        name: Optional[str],
        value: Any,
        datatype: Optional[DataType] = None,
        *,
        alias: Optional[int] = None,
        timestamp: Optional[int] = None,
    ) -> "Metric":
        """Build a metric, inferring the datatype from the Python value."""

        if datatype is None:
            datatype = infer_datatype(value)
        return cls(
            name=name,
            alias=alias,
            timestamp=now_ms() if timestamp is None else timestamp,
            datatype=datatype,
            value=value,
            is_null=value is None,
        )

    @property
    def key(self) -> str:
        return self.name if self.name is not None else f"alias:{self.alias}"

    def with_definition(self, name: str, datatype: Optional[DataType]) -> "Metric":
        """Return a copy named and typed by a birth certificate definition."""

        if self.datatype is not None or datatype is None or self.is_null:
            return replace(self, name=name)
        value = self.value
        if datatype in INTEGER_WIDTHS and isinstance(value, int) and not isinstance(value, bool):
            value = from_unsigned(datatype, value)
        elif datatype is DataType.FLOAT and isinstance(value, float):
            value = to_float32(value)
        return replace(self, name=name, datatype=datatype, value=value)


def to_unsigned(datatype: DataType, value: int) -> int:
    """Two's-complement encode a signed value into its type's width."""

    bits, signed = INTEGER_WIDTHS[datatype]
    if signed and value < 0:
        return value + (1 << bits)
    return value


def from_unsigned(datatype: DataType, raw: int) -> int:
    bits, signed = INTEGER_WIDTHS[datatype]
    if not 0 <= raw < (1 << bits):
        raise ValueError(f"{raw} does not fit {datatype.name}")
    if signed and raw >= (1 << (bits - 1)):
        return raw - (1 << bits)
    return raw


class PayloadKind(str, Enum):
    BIRTH = "birth"
    DATA = "data"
    DEATH = "death"
    COMMAND = "command"


@dataclass(frozen=True, slots=True)
class Payload:
    """Fields shared by every Sparkplug payload variant.

    Use one of the concrete variants; the wire format does not record the kind,
    so it is taken from the topic the payload travels on.
    """

    kind: ClassVar[PayloadKind]
    requires_seq: ClassVar[bool] = False

    metrics: Tuple[Metric, ...] = ()
    seq: Optional[int] = None
    timestamp: Optional[int] = None
    uuid: Optional[str] = None
    body: Optional[bytes] = None

    def __post_init__(self) -> None:
        if type(self) is Payload:
            raise TypeError("Payload is abstract; use a concrete payload kind")
        object.__setattr__(self, "metrics", tuple(self.metrics))
        if self.seq is None:
            if self.requires_seq:
                raise ValueError(f"{type(self).__name__} requires a sequence number")
        elif not 0 <= self.seq < SEQUENCE_MODULUS:
            raise ValueError(f"Sequence number {self.seq} is outside 0..255")
        if self.timestamp is not None and not 0 <= self.timestamp < (1 << 64):
            raise ValueError(f"Timestamp {self.timestamp} is not an unsigned ms value")


@dataclass(frozen=True, slots=True)
class BirthPayload(Payload):
    """Announces a node or device and its metric definitions."""

    kind: ClassVar[PayloadKind] = PayloadKind.BIRTH
    requires_seq: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class DataPayload(Payload):
    kind: ClassVar[PayloadKind] = PayloadKind.DATA
    requires_seq: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class DeathPayload(Payload):
    kind: ClassVar[PayloadKind] = PayloadKind.DEATH


@dataclass(frozen=True, slots=True)
class CommandPayload(Payload):
    kind: ClassVar[PayloadKind] = PayloadKind.COMMAND


PAYLOAD_TYPES = {
    PayloadKind.BIRTH: BirthPayload,
    PayloadKind.DATA: DataPayload,
    PayloadKind.DEATH: DeathPayload,
    PayloadKind.COMMAND: CommandPayload,
}
