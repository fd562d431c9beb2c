"""Commands sent through the Factory+ Command Escalation service.

Clients do not publish NCMD/DCMD messages themselves. They ask the service to
issue the command on their behalf, and the service checks the principal's
permissions first.
"""

from __future__ import annotations

import logging
from typing import Union

from .directory import ServiceResolver, ServiceType
from .errors import CommandRejected
from .sparkplug.topic import Address
from .sparkplug.types import DataType

LOGGER = logging.getLogger(__name__)

# Sparkplug type names as the service expects them
TYPE_NAMES = {
    DataType.INT8: "Int8",
    DataType.INT16: "Int16",
    DataType.INT32: "Int32",
    DataType.INT64: "Int64",
    DataType.UINT8: "UInt8",
    DataType.UINT16: "UInt16",
    DataType.UINT32: "UInt32",
    DataType.UINT64: "UInt64",
    DataType.FLOAT: "Float",
    DataType.DOUBLE: "Double",
    DataType.BOOLEAN: "Boolean",
    DataType.STRING: "String",
    DataType.DATETIME: "DateTime",
    DataType.TEXT: "Text",
    DataType.UUID: "UUID",
}

CommandValue = Union[bool, int, float, str]


def type_name(datatype: Union[DataType, str]) -> str:
    if isinstance(datatype, DataType):
        try:
            return TYPE_NAMES[datatype]
        except KeyError:
            raise ValueError(f"{datatype.name} cannot be sent as a command") from None
    return datatype


class CommandEscalation:
    """Requests NCMD/DCMD commands from the Command Escalation service."""

    def __init__(self, resolver: ServiceResolver) -> None:
        self._resolver = resolver

    async def request_cmd(
        self,
        address: Address,
        name: str,
        datatype: Union[DataType, str],
        value: CommandValue,
    ) -> None:
        """Ask the service to set metric ``name`` on ``address`` to ``value``.

        ``datatype`` is a :class:`DataType` or a Sparkplug type name such as
        ``"Boolean"``.

        Raises:
            ValueError: ``address`` is a pattern or ``datatype`` cannot be sent.
            CommandRejected: The service answered with an error status.
            ServiceRequestError: The service could not be reached.
            ResolveError: The service is not registered.
        """
        if address.is_pattern:
            raise ValueError(f"Commands need a concrete address, got {address}")
        body = {"name": name, "type": type_name(datatype), "value": value}

        status, _ = await self._resolver.fetch(
            ServiceType.CMDESC, "POST", f"/v1/address/{address}", json_body=body
        )
        if status >= 300:
            raise CommandRejected(
                "cmdesc", f"{name} on {address} answered {status}", status=status
            )
        LOGGER.info("Requested %s on %s", name, address)

    async def rebirth(self, address: Address) -> None:
        """Ask the node or device at ``address`` to publish a fresh birth certificate."""
        control = "Device Control" if address.is_device else "Node Control"
        await self.request_cmd(address, f"{control}/Rebirth", DataType.BOOLEAN, True)
