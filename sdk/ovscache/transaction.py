"""
Transactions for ovscache.

This module provides:
- Condition / Mutation: where-clauses and mutations in wire form
- Operation: one insert/update/mutate/delete/select operation
- TransactionExecutor: submits operations and validates the reply
- Transaction: chainable plan builder committed through the executor

Example:
    >>> plan = client.transaction("create port eth1")
    >>> plan.insert("Interface", {"name": "eth1"}, uuid_name="intf")
    >>> plan.insert("Port", {"name": "eth1", "interfaces": named_uuid("intf")}, uuid_name="port")
    >>> plan.mutate("Bridge", [Condition.eq("name", "br0")],
    ...             [Mutation.insert("ports", ovs_set([named_uuid("port")]))])
    >>> await plan.commit()

Invariants:
    - A transaction is all-or-nothing from the caller's point of view
    - Fewer replies than operations is a failure even if every reply is clean
    - The executor never retries and never touches the cache
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Sequence

from .errors import ProtocolError, TransactionError

if TYPE_CHECKING:
    from .transport.base import OvsdbTransport

logger = logging.getLogger(__name__)

INSERT = "insert"
UPDATE = "update"
MUTATE = "mutate"
DELETE = "delete"
SELECT = "select"


@dataclass(frozen=True)
class Condition:
    """A where-clause term: ``[column, function, value]``."""

    column: str
    function: str
    value: Any

    @classmethod
    def eq(cls, column: str, value: Any) -> Condition:
        return cls(column, "==", value)

    def to_json(self) -> list[Any]:
        return [self.column, self.function, self.value]


@dataclass(frozen=True)
class Mutation:
    """A mutation: ``[column, mutator, value]``."""

    column: str
    mutator: str
    value: Any

    @classmethod
    def insert(cls, column: str, value: Any) -> Mutation:
        return cls(column, "insert", value)

    @classmethod
    def delete(cls, column: str, value: Any) -> Mutation:
        return cls(column, "delete", value)

    def to_json(self) -> list[Any]:
        return [self.column, self.mutator, self.value]


@dataclass(frozen=True)
class Operation:
    """One database operation.

    Attributes:
        op: Operation name (insert, update, mutate, delete, select)
        table: Target table
        row: Column values for insert/update
        where: Conditions for update/mutate/delete/select
        mutations: Mutations for mutate
        columns: Columns to return for select
        uuid_name: Name for referencing an inserted row later in the transaction
    """

    op: str
    table: str
    row: Optional[dict[str, Any]] = None
    where: tuple[Condition, ...] = ()
    mutations: tuple[Mutation, ...] = ()
    columns: Optional[tuple[str, ...]] = None
    uuid_name: Optional[str] = None

    @classmethod
    def insert(
        cls, table: str, row: dict[str, Any], uuid_name: Optional[str] = None
    ) -> Operation:
        return cls(INSERT, table, row=dict(row), uuid_name=uuid_name)

    @classmethod
    def update(cls, table: str, where: Sequence[Condition], row: dict[str, Any]) -> Operation:
        return cls(UPDATE, table, row=dict(row), where=tuple(where))

    @classmethod
    def mutate(
        cls, table: str, where: Sequence[Condition], mutations: Sequence[Mutation]
    ) -> Operation:
        return cls(MUTATE, table, where=tuple(where), mutations=tuple(mutations))

    @classmethod
    def delete(cls, table: str, where: Sequence[Condition]) -> Operation:
        return cls(DELETE, table, where=tuple(where))

    @classmethod
    def select(
        cls,
        table: str,
        where: Sequence[Condition] = (),
        columns: Optional[Sequence[str]] = None,
    ) -> Operation:
        return cls(
            SELECT,
            table,
            where=tuple(where),
            columns=tuple(columns) if columns is not None else None,
        )

    def to_json(self) -> dict[str, Any]:
        """Convert to the wire form."""
        doc: dict[str, Any] = {"op": self.op, "table": self.table}
        if self.op in (UPDATE, MUTATE, DELETE, SELECT):
            doc["where"] = [c.to_json() for c in self.where]
        if self.row is not None:
            doc["row"] = self.row
        if self.op == MUTATE:
            doc["mutations"] = [m.to_json() for m in self.mutations]
        if self.columns is not None:
            doc["columns"] = list(self.columns)
        if self.uuid_name:
            doc["uuid-name"] = self.uuid_name
        return doc


class TransactionExecutor:
    """Submits operations as one transaction and validates the reply.

    Retry policy belongs to the caller: only the caller knows whether a
    mutation is safe to repeat.
    """

    def __init__(self, transport: OvsdbTransport, database: str) -> None:
        self.transport = transport
        self.database = database

    async def execute(self, operations: Sequence[Operation], action: str) -> list[dict[str, Any]]:
        """Execute a transaction.

        Args:
            operations: Operations to submit
            action: Label used in errors and logs (e.g. "create bridge br0")

        Returns:
            One reply object per operation (select rows, insert uuids, counts)

        Raises:
            ConnectionError: If the transport is down
            ProtocolError: If fewer replies than operations came back
            TransactionError: On the first reply carrying an error
        """
        docs = [op.to_json() for op in operations]
        replies = await self.transport.transact(self.database, docs)
        check_replies(docs, replies, action)
        logger.debug(
            "Transaction committed",
            extra={"action": action, "operations": len(docs)},
        )
        return replies[: len(docs)]


def check_replies(
    operations: Sequence[dict[str, Any]],
    replies: Sequence[Any],
    action: str,
) -> None:
    """Validate a transaction reply against the submitted operations.

    Raises:
        ProtocolError: If fewer replies than operations came back
        TransactionError: On the first reply carrying an error
    """
    if len(replies) < len(operations):
        raise ProtocolError(
            f"{action} failed: expected {len(operations)} replies, got {len(replies)}",
            action=action,
            expected=len(operations),
            received=len(replies),
        )

    for i, reply in enumerate(replies):
        if not isinstance(reply, dict):
            # null is a valid reply for operations after a failed one
            continue
        error = reply.get("error")
        if not error:
            continue
        detail = reply.get("details")
        if i < len(operations):
            raise TransactionError(
                f"{action} transaction failed at operation {i}: {error} ({detail})",
                action=action,
                index=i,
                error=error,
                detail=detail,
                operation=dict(operations[i]),
            )
        raise TransactionError(
            f"{action} transaction failed: {error} ({detail})",
            action=action,
            index=None,
            error=error,
            detail=detail,
        )


class Transaction:
    """Chainable transaction builder.

    A Transaction collects operations and submits them together on commit().

    Example:
        >>> plan = client.transaction("delete bridge br0")
        >>> plan.delete("Bridge", [Condition.eq("name", "br0")])
        >>> await plan.commit()
    """

    def __init__(self, executor: TransactionExecutor, action: str) -> None:
        self._executor = executor
        self.action = action
        self._operations: list[Operation] = []

    @property
    def operations(self) -> list[Operation]:
        return list(self._operations)

    def add(self, operation: Operation) -> Transaction:
        self._operations.append(operation)
        return self

    def insert(
        self, table: str, row: dict[str, Any], *, uuid_name: Optional[str] = None
    ) -> Transaction:
        return self.add(Operation.insert(table, row, uuid_name))

    def update(self, table: str, where: Sequence[Condition], row: dict[str, Any]) -> Transaction:
        return self.add(Operation.update(table, where, row))

    def mutate(
        self, table: str, where: Sequence[Condition], mutations: Sequence[Mutation]
    ) -> Transaction:
        return self.add(Operation.mutate(table, where, mutations))

    def delete(self, table: str, where: Sequence[Condition]) -> Transaction:
        return self.add(Operation.delete(table, where))

    def select(
        self,
        table: str,
        where: Sequence[Condition] = (),
        columns: Optional[Sequence[str]] = None,
    ) -> Transaction:
        return self.add(Operation.select(table, where, columns))

    async def commit(self) -> list[dict[str, Any]]:
        """Commit the transaction.

        Returns:
            Replies, one per operation; empty without a round trip if no
            operations were added
        """
        if not self._operations:
            return []
        return await self._executor.execute(self._operations, self.action)
