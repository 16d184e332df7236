"""
Typed entities decoded from raw rows.

This module provides the decoded representations of the tables the client
understands:
- Bridge: a virtual switch
- Port: a bridge port, owning one or more interfaces
- Interface: a network device attached to a port

Relationships are kept as row UUIDs and resolved against the sibling cache at
query time. Entities are frozen, map columns included; a fresher row produces
a new object.

Invariants:
    - Each entity kind has exactly one decoder
    - Decoders raise DecodeError, never DatumError or KeyError
    - Reference order is preserved as sent by the server

Example:
    >>> bridge = decode_entity(EntityKind.BRIDGE, "6c4f...", {"name": "br0", "ports": ["set", []]})
    >>> bridge.name
    'br0'
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from .datum import (
    DatumError,
    decode_map,
    decode_optional,
    decode_set,
    decode_uuid_set,
)
from .errors import DecodeError
from .updates import Row

ROOT_TABLE = "Open_vSwitch"
BRIDGE_TABLE = "Bridge"
PORT_TABLE = "Port"
INTERFACE_TABLE = "Interface"
CONTROLLER_TABLE = "Controller"


def _freeze_maps(entity: Any, *names: str) -> None:
    for name in names:
        object.__setattr__(entity, name, MappingProxyType(dict(getattr(entity, name))))


class EntityKind(Enum):
    """Tables decoded into typed entities, by table name."""

    BRIDGE = BRIDGE_TABLE
    PORT = PORT_TABLE
    INTERFACE = INTERFACE_TABLE

    @classmethod
    def for_table(cls, table: str) -> Optional[EntityKind]:
        """Entity kind for a table name, None for tables cached raw only."""
        for kind in cls:
            if kind.value == table:
                return kind
        return None


@dataclass(frozen=True)
class Bridge:
    """A bridge row.

    Attributes:
        uuid: Row UUID
        name: Bridge name
        ports: Port row UUIDs, in recorded order
        controllers: Controller row UUIDs
        fail_mode: "standalone", "secure" or None
        datapath_type: Datapath type ("" for the default)
        external_ids: Free-form key/value pairs
    """

    uuid: str
    name: str
    ports: Tuple[str, ...] = ()
    controllers: Tuple[str, ...] = ()
    fail_mode: Optional[str] = None
    datapath_type: str = ""
    external_ids: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _freeze_maps(self, "external_ids")


@dataclass(frozen=True)
class Port:
    """A port row.

    Attributes:
        uuid: Row UUID
        name: Port name
        interfaces: Interface row UUIDs, in recorded order
        tag: VLAN tag, None when untagged
        trunks: Trunked VLANs
        external_ids: Free-form key/value pairs
    """

    uuid: str
    name: str
    interfaces: Tuple[str, ...] = ()
    tag: Optional[int] = None
    trunks: Tuple[int, ...] = ()
    external_ids: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _freeze_maps(self, "external_ids")


@dataclass(frozen=True)
class Interface:
    """An interface row.

    Attributes:
        uuid: Row UUID
        name: Interface name
        type: Interface type ("" for a system device, "internal", "patch", ...)
        ofport: OpenFlow port number, None until assigned
        options: Type-specific options (e.g. ``peer`` for patch ports)
        statistics: Counter name -> value
        admin_state: "up", "down" or None
        link_state: "up", "down" or None
        mac_in_use: MAC address or None
        external_ids: Free-form key/value pairs
    """

    uuid: str
    name: str
    type: str = ""
    ofport: Optional[int] = None
    options: Mapping[str, str] = field(default_factory=dict)
    statistics: Mapping[str, int] = field(default_factory=dict)
    admin_state: Optional[str] = None
    link_state: Optional[str] = None
    mac_in_use: Optional[str] = None
    external_ids: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _freeze_maps(self, "options", "statistics", "external_ids")


Entity = Union[Bridge, Port, Interface]


class _RowReader:
    """Column accessor that turns shape errors into DecodeError."""

    def __init__(self, table: str, uuid: str, row: Row) -> None:
        self.table = table
        self.uuid = uuid
        self.row = row

    def get(self, column: str, decode: Callable[[Any], Any], default: Any = None) -> Any:
        if column not in self.row:
            return default
        try:
            return decode(self.row[column])
        except (DatumError, TypeError, ValueError) as e:
            raise DecodeError(
                f"{self.table} {self.uuid}: bad value for column '{column}': {e}",
                table=self.table,
                uuid=self.uuid,
                column=column,
            ) from e

    def name(self) -> str:
        value = self.row.get("name")
        if not isinstance(value, str) or not value:
            raise DecodeError(
                f"{self.table} {self.uuid}: missing or invalid 'name'",
                table=self.table,
                uuid=self.uuid,
                column="name",
            )
        return value


def _str_map(value: Any) -> Dict[str, str]:
    result = decode_map(value)
    if not all(isinstance(k, str) and isinstance(v, str) for k, v in result.items()):
        raise DatumError(f"expected string map, got {value!r}")
    return result


def _int_map(value: Any) -> Dict[str, int]:
    result = decode_map(value)
    for k, v in result.items():
        if not isinstance(k, str) or isinstance(v, bool) or not isinstance(v, int):
            raise DatumError(f"expected string to integer map, got {value!r}")
    return result


def _int_set(value: Any) -> Tuple[int, ...]:
    items = decode_set(value)
    if any(isinstance(i, bool) or not isinstance(i, int) for i in items):
        raise DatumError(f"expected integer set, got {value!r}")
    return tuple(items)


def _optional_of(kind: type) -> Callable[[Any], Any]:
    def decode(value: Any) -> Any:
        result = decode_optional(value)
        if result is not None and (isinstance(result, bool) or not isinstance(result, kind)):
            raise DatumError(f"expected optional {kind.__name__}, got {value!r}")
        return result

    return decode


def _plain_str(value: Any) -> str:
    if not isinstance(value, str):
        raise DatumError(f"expected string, got {value!r}")
    return value


def decode_bridge(uuid: str, row: Row) -> Bridge:
    reader = _RowReader(BRIDGE_TABLE, uuid, row)
    return Bridge(
        uuid=uuid,
        name=reader.name(),
        ports=reader.get("ports", decode_uuid_set, ()),
        controllers=reader.get("controller", decode_uuid_set, ()),
        fail_mode=reader.get("fail_mode", _optional_of(str)),
        datapath_type=reader.get("datapath_type", _plain_str, ""),
        external_ids=reader.get("external_ids", _str_map, {}),
    )


def decode_port(uuid: str, row: Row) -> Port:
    reader = _RowReader(PORT_TABLE, uuid, row)
    return Port(
        uuid=uuid,
        name=reader.name(),
        interfaces=reader.get("interfaces", decode_uuid_set, ()),
        tag=reader.get("tag", _optional_of(int)),
        trunks=reader.get("trunks", _int_set, ()),
        external_ids=reader.get("external_ids", _str_map, {}),
    )


def decode_interface(uuid: str, row: Row) -> Interface:
    reader = _RowReader(INTERFACE_TABLE, uuid, row)
    return Interface(
        uuid=uuid,
        name=reader.name(),
        type=reader.get("type", _plain_str, ""),
        ofport=reader.get("ofport", _optional_of(int)),
        options=reader.get("options", _str_map, {}),
        statistics=reader.get("statistics", _int_map, {}),
        admin_state=reader.get("admin_state", _optional_of(str)),
        link_state=reader.get("link_state", _optional_of(str)),
        mac_in_use=reader.get("mac_in_use", _optional_of(str)),
        external_ids=reader.get("external_ids", _str_map, {}),
    )


DECODERS: Dict[EntityKind, Callable[[str, Row], Entity]] = {
    EntityKind.BRIDGE: decode_bridge,
    EntityKind.PORT: decode_port,
    EntityKind.INTERFACE: decode_interface,
}


def decode_entity(kind: EntityKind, uuid: str, row: Row) -> Entity:
    """Decode a raw row into the typed entity for its kind.

    Args:
        kind: Entity kind
        uuid: Row UUID
        row: Raw row contents

    Returns:
        Decoded entity

    Raises:
        DecodeError: If the row does not have the expected shape
    """
    return DECODERS[kind](uuid, row)
