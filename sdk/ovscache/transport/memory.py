"""
In-memory database transport for testing.

This module provides a small in-process stand-in for an OVSDB server for:
- Unit and integration tests
- Local development without a running ovsdb-server

It executes the same operation documents the JSON-RPC transport sends
(insert, update, mutate, delete, select), resolves named UUIDs, garbage
collects unreferenced Bridge, Port, Interface and Controller rows, enforces
unique names, and publishes every committed change as an update batch.

Invariants:
    - All data is lost when the object is dropped
    - A failed transaction changes nothing and publishes nothing
    - Update batches are published in commit order

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with OvsdbTransport protocol
    - Add failure injection helpers instead of special-casing tests
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
import uuid as uuidlib
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from ..config import DEFAULT_DATABASE
from ..datum import decode_map, decode_set, empty_set, is_tagged, ovs_map, ovs_set
from ..entities import (
    BRIDGE_TABLE,
    CONTROLLER_TABLE,
    INTERFACE_TABLE,
    PORT_TABLE,
    ROOT_TABLE,
)
from ..errors import ConnectionError, ProtocolError
from ..updates import Row, RowUpdate, TableUpdates

logger = logging.getLogger(__name__)

TABLES = (ROOT_TABLE, BRIDGE_TABLE, PORT_TABLE, INTERFACE_TABLE, CONTROLLER_TABLE)

# (child table, parent table, parent column): child rows not referenced from
# any parent row are deleted at commit.
WEAK_OWNERSHIP = (
    (BRIDGE_TABLE, ROOT_TABLE, "bridges"),
    (PORT_TABLE, BRIDGE_TABLE, "ports"),
    (INTERFACE_TABLE, PORT_TABLE, "interfaces"),
    (CONTROLLER_TABLE, BRIDGE_TABLE, "controller"),
)

UNIQUE_NAME_TABLES = (BRIDGE_TABLE, PORT_TABLE, INTERFACE_TABLE)

_END = object()


class _OperationFailed(Exception):
    def __init__(self, error: str, details: str = "") -> None:
        super().__init__(error)
        self.error = error
        self.details = details


@dataclass
class _InjectedFailure:
    replies: Optional[List[Any]] = None
    error: str = ""
    details: str = ""
    index: int = 0

    def build(self, count: int) -> List[Any]:
        if self.replies is not None:
            return self.replies
        failed = {"error": self.error, "details": self.details}
        return [{}] * self.index + [failed] + [None] * (count - self.index - 1)


def _canonical(value: Any) -> Any:
    """Normalize a datum so equal values compare equal."""
    if is_tagged(value, "set") and isinstance(value[1], list):
        if len(value[1]) == 1:
            return _canonical(value[1][0])
        return ["set", sorted((_canonical(v) for v in value[1]), key=json.dumps)]
    return value


def _same(a: Any, b: Any) -> bool:
    return _canonical(a) == _canonical(b)


def _refs(value: Any) -> set[str]:
    if value is None:
        return set()
    return {item[1] for item in decode_set(value) if is_tagged(item, "uuid")}


class InMemoryOvsdb:
    """In-memory implementation of OvsdbTransport for testing.

    Attributes:
        database: Database name accepted by monitor_all() and transact()
        tables: Committed rows, table -> uuid -> row
        root_uuid: UUID of the single Open_vSwitch row
        transactions: Every operation list received, in order (testing helper)

    Thread safety:
        Single event loop only.

    Example:
        >>> db = InMemoryOvsdb()
        >>> context = ClientContext(transport_factory=lambda target: db)
        >>> client = await context.get_client()
        >>> await client.create_bridge("br0")
        >>> await db.wait_delivered()
        >>> client.bridge_exists("br0")
        True
    """

    def __init__(self, database: str = DEFAULT_DATABASE) -> None:
        self.database = database
        self.tables: Dict[str, Dict[str, Row]] = {table: {} for table in TABLES}
        self.root_uuid = str(uuidlib.uuid4())
        self.tables[ROOT_TABLE][self.root_uuid] = {"bridges": empty_set(), "ovs_version": "3.3.0"}
        self.transactions: List[List[Dict[str, Any]]] = []
        self._connected = False
        self._ended = False
        self._connect_error: Optional[ConnectionError] = None
        self._failures: List[_InjectedFailure] = []
        self._updates: asyncio.Queue = asyncio.Queue()

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        if self._connect_error is not None:
            error, self._connect_error = self._connect_error, None
            raise error
        self._connected = True
        logger.debug("InMemoryOvsdb connected")

    async def close(self) -> None:
        self._end_stream()
        logger.debug("InMemoryOvsdb closed")

    async def monitor_all(self, database: str) -> TableUpdates:
        self._check(database)
        return TableUpdates(
            tables={
                table: {uuid: RowUpdate(after=copy.deepcopy(row)) for uuid, row in rows.items()}
                for table, rows in self.tables.items()
            }
        )

    async def transact(self, database: str, operations: List[Dict[str, Any]]) -> List[Any]:
        self._check(database)
        self.transactions.append(copy.deepcopy(operations))

        if self._failures:
            return self._failures.pop(0).build(len(operations))

        work = copy.deepcopy(self.tables)
        named = {
            op["uuid-name"]: str(uuidlib.uuid4())
            for op in operations
            if op.get("op") == "insert" and op.get("uuid-name")
        }

        results: List[Any] = []
        for i, op in enumerate(operations):
            try:
                results.append(self._execute(work, named, op))
            except _OperationFailed as e:
                results.append({"error": e.error, "details": e.details})
                results.extend([None] * (len(operations) - i - 1))
                return results

        self._collect_garbage(work)
        violation = self._check_unique(work)
        if violation:
            results.append({"error": "constraint violation", "details": violation})
            return results

        batch = self._diff(self.tables, work)
        self.tables = work
        if batch:
            self._updates.put_nowait(batch)
        return results

    async def updates(self) -> AsyncIterator[TableUpdates]:
        while not (self._ended and self._updates.empty()):
            batch = await self._updates.get()
            try:
                if batch is _END:
                    return
                yield batch
            finally:
                self._updates.task_done()

    # Testing helpers

    def fail_connect(self, message: str = "Connection refused") -> None:
        """Make the next connect() raise ConnectionError."""
        self._connect_error = ConnectionError(message, address="memory")

    def fail_next_transaction(self, error: str, details: str = "", index: int = 0) -> None:
        """Make the next transact() report an error at the given index."""
        self._failures.append(_InjectedFailure(error=error, details=details, index=index))

    def short_reply_next_transaction(self, replies: List[Any]) -> None:
        """Make the next transact() return exactly these replies."""
        self._failures.append(_InjectedFailure(replies=list(replies)))

    def push_update(self, batch: Union[TableUpdates, Dict[str, Any]]) -> None:
        """Publish an update batch without touching the stored tables."""
        if not isinstance(batch, TableUpdates):
            batch = TableUpdates.from_json(batch)
        self._updates.put_nowait(batch)

    def drop_connection(self) -> None:
        """Simulate the server going away."""
        self._end_stream()
        logger.debug("InMemoryOvsdb connection dropped")

    async def wait_delivered(self) -> None:
        """Wait until every published batch has been consumed."""
        await self._updates.join()

    def rows_named(self, table: str, name: str) -> List[Row]:
        """Committed rows of a table with the given name (testing helper)."""
        return [row for row in self.tables[table].values() if row.get("name") == name]

    # Operation execution

    def _check(self, database: str) -> None:
        if not self._connected:
            raise ConnectionError("Not connected", address="memory")
        if database != self.database:
            raise ProtocolError(f"Server returned error: unknown database '{database}'")

    def _end_stream(self) -> None:
        self._connected = False
        if not self._ended:
            self._ended = True
            self._updates.put_nowait(_END)

    def _execute(
        self, work: Dict[str, Dict[str, Row]], named: Dict[str, str], op: Dict[str, Any]
    ) -> Dict[str, Any]:
        kind = op.get("op")
        table = op.get("table")
        if table not in work:
            raise _OperationFailed("unknown table", f"No table named {table}")
        rows = work[table]

        if kind == "insert":
            new_uuid = named.get(op.get("uuid-name", "")) or str(uuidlib.uuid4())
            rows[new_uuid] = self._resolve(op.get("row", {}), named)
            return {"uuid": ["uuid", new_uuid]}

        where = self._resolve(op.get("where", []), named)
        matched = [uuid for uuid, row in rows.items() if self._matches(uuid, row, where)]

        if kind == "select":
            columns = op.get("columns")
            selected = []
            for uuid in matched:
                row = {"_uuid": ["uuid", uuid], **rows[uuid]}
                if columns is not None:
                    row = {c: row[c] for c in columns if c in row}
                selected.append(copy.deepcopy(row))
            return {"rows": selected}

        if kind == "update":
            values = self._resolve(op.get("row", {}), named)
            for uuid in matched:
                rows[uuid].update(copy.deepcopy(values))
        elif kind == "mutate":
            mutations = self._resolve(op.get("mutations", []), named)
            for uuid in matched:
                for column, mutator, value in mutations:
                    self._mutate(rows[uuid], column, mutator, value)
        elif kind == "delete":
            for uuid in matched:
                del rows[uuid]
        else:
            raise _OperationFailed("unknown operation", f"No operation named {kind}")

        return {"count": len(matched)}

    def _resolve(self, value: Any, named: Dict[str, str]) -> Any:
        """Replace named-uuid references with the UUIDs assigned to them."""
        if is_tagged(value, "named-uuid"):
            if value[1] not in named:
                raise _OperationFailed("syntax error", f"unknown named-uuid {value[1]}")
            return ["uuid", named[value[1]]]
        if isinstance(value, list):
            return [self._resolve(v, named) for v in value]
        if isinstance(value, dict):
            return {k: self._resolve(v, named) for k, v in value.items()}
        return value

    def _matches(self, uuid: str, row: Row, where: List[Any]) -> bool:
        for column, function, value in where:
            actual = ["uuid", uuid] if column == "_uuid" else row.get(column)
            if function == "==":
                if not _same(actual, value):
                    return False
            elif function == "!=":
                if _same(actual, value):
                    return False
            elif function == "includes":
                have = [_canonical(v) for v in decode_set(actual)] if actual is not None else []
                if any(_canonical(v) not in have for v in decode_set(value)):
                    return False
            else:
                raise _OperationFailed("not supported", f"function {function}")
        return True

    def _mutate(self, row: Row, column: str, mutator: str, value: Any) -> None:
        current = row.get(column)

        if is_tagged(value, "map") or is_tagged(current, "map"):
            entries = decode_map(current) if current is not None else {}
            if mutator == "insert":
                for key, item in decode_map(value).items():
                    entries.setdefault(key, item)
            elif mutator == "delete":
                keys = decode_map(value).keys() if is_tagged(value, "map") else decode_set(value)
                for key in list(keys):
                    entries.pop(key, None)
            else:
                raise _OperationFailed("not supported", f"mutator {mutator} on map")
            row[column] = ovs_map(entries)
            return

        items = decode_set(current) if current is not None else []
        if mutator == "insert":
            for item in decode_set(value):
                if not any(_same(item, existing) for existing in items):
                    items.append(item)
        elif mutator == "delete":
            doomed = decode_set(value)
            items = [item for item in items if not any(_same(item, d) for d in doomed)]
        else:
            raise _OperationFailed("not supported", f"mutator {mutator}")
        row[column] = ovs_set(items)

    def _collect_garbage(self, work: Dict[str, Dict[str, Row]]) -> None:
        changed = True
        while changed:
            changed = False
            for child, parent, column in WEAK_OWNERSHIP:
                referenced: set[str] = set()
                for row in work[parent].values():
                    referenced |= _refs(row.get(column))
                for uuid in [u for u in work[child] if u not in referenced]:
                    del work[child][uuid]
                    changed = True

    def _check_unique(self, work: Dict[str, Dict[str, Row]]) -> Optional[str]:
        for table in UNIQUE_NAME_TABLES:
            seen: set[str] = set()
            for row in work[table].values():
                name = row.get("name")
                if name in seen:
                    return (
                        f'Transaction causes multiple rows in "{table}" table to have '
                        f'identical values ("{name}") for index on column "name".'
                    )
                seen.add(name)
        return None

    def _diff(
        self, old: Dict[str, Dict[str, Row]], new: Dict[str, Dict[str, Row]]
    ) -> TableUpdates:
        tables: Dict[str, Dict[str, RowUpdate]] = {}
        for table in new:
            before, after = old.get(table, {}), new[table]
            changes: Dict[str, RowUpdate] = {}
            for uuid in before.keys() - after.keys():
                changes[uuid] = RowUpdate(before=copy.deepcopy(before[uuid]))
            for uuid, row in after.items():
                if uuid not in before:
                    changes[uuid] = RowUpdate(after=copy.deepcopy(row))
                elif before[uuid] != row:
                    changed = {c: v for c, v in before[uuid].items() if row.get(c) != v}
                    changes[uuid] = RowUpdate(
                        before=copy.deepcopy(changed), after=copy.deepcopy(row)
                    )
            if changes:
                tables[table] = changes
        return TableUpdates(tables=tables)
