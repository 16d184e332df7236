"""
Table update batches.

A batch is what the server sends for one monitor reply or one ``update``
notification:

    {
        "Bridge": {
            "6c4f...": {"old": {...}, "new": {...}},
        },
        "Port": {...},
    }

``new`` absent or empty means the row was deleted. The initial monitor reply
carries only ``new`` images.

Invariants:
    - A batch is applied as a unit, in the order batches were received
    - RowUpdate.after is never None; an empty dict marks a delete
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Tuple

from .errors import ProtocolError

Row = Dict[str, Any]


def _image(data: Dict[str, Any], key: str) -> Row:
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ProtocolError(f"Row '{key}' image must be an object, got {type(value).__name__}")
    return dict(value)


@dataclass(frozen=True)
class RowUpdate:
    """Before and after images of one row.

    Attributes:
        before: Row contents before the change (may be partial or empty)
        after: Row contents after the change; empty when deleted
    """

    before: Row = field(default_factory=dict)
    after: Row = field(default_factory=dict)

    @property
    def is_delete(self) -> bool:
        """Whether the after image is empty."""
        return not self.after

    @classmethod
    def from_json(cls, data: Any) -> RowUpdate:
        """Create from the ``{"old": ..., "new": ...}`` wire form."""
        if not isinstance(data, dict):
            raise ProtocolError(f"Row update must be an object, got {type(data).__name__}")
        return cls(before=_image(data, "old"), after=_image(data, "new"))

    def to_json(self) -> dict[str, Row]:
        """Convert to the wire form."""
        result: dict[str, Row] = {}
        if self.before:
            result["old"] = self.before
        if self.after:
            result["new"] = self.after
        return result


@dataclass
class TableUpdates:
    """One atomic notification of remote changes.

    Attributes:
        tables: table name -> row UUID -> RowUpdate
    """

    tables: Dict[str, Dict[str, RowUpdate]] = field(default_factory=dict)

    @classmethod
    def from_json(cls, data: Any) -> TableUpdates:
        """Create from the ``<table-updates>`` wire form.

        Raises:
            ProtocolError: If the payload is not an object of objects
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ProtocolError(f"Table updates must be an object, got {type(data).__name__}")

        tables: Dict[str, Dict[str, RowUpdate]] = {}
        for table, rows in data.items():
            if not isinstance(rows, dict):
                raise ProtocolError(f"Updates for table '{table}' must be an object")
            tables[table] = {uuid: RowUpdate.from_json(row) for uuid, row in rows.items()}
        return cls(tables=tables)

    def to_json(self) -> dict[str, dict[str, dict[str, Row]]]:
        """Convert to the wire form."""
        return {
            table: {uuid: update.to_json() for uuid, update in rows.items()}
            for table, rows in self.tables.items()
        }

    def rows(self) -> Iterator[Tuple[str, str, RowUpdate]]:
        """Iterate over (table, uuid, update) triples."""
        for table, rows in self.tables.items():
            for uuid, update in rows.items():
                yield table, uuid, update

    def __len__(self) -> int:
        return sum(len(rows) for rows in self.tables.values())

    def __bool__(self) -> bool:
        return bool(self.tables)
