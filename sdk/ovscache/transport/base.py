"""
Base protocol for database transports.

This module defines the OvsdbTransport protocol that every transport must
implement. A transport owns the connection to the database server and
provides:
- The initial full fetch of every table (monitor_all)
- Transaction submission (transact)
- The ordered stream of later update batches (updates)

Invariants:
    - updates() yields batches in the order the server sent them
    - updates() ends when the transport closes or the connection drops
    - transact() raises ConnectionError, never hangs, once the connection is gone

How to change safely:
    - Protocol changes require updating all implementations
    - Keep InMemoryOvsdb behaviour in line with the real server
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, AsyncIterator, Dict, List, Protocol, runtime_checkable

from ..updates import TableUpdates


@runtime_checkable
class OvsdbTransport(Protocol):
    """Protocol for database transports.

    Delivery contract:
        Update batches are delivered in order and at least once. The
        reconciler makes re-delivery harmless.

    Example:
        >>> transport = JsonRpcTransport(target)
        >>> await transport.connect()
        >>> initial = await transport.monitor_all("Open_vSwitch")
        >>> async for batch in transport.updates():
        ...     reconciler.apply(batch)
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the server.

        Raises:
            ConnectionError: If the connection cannot be established
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection and end the update stream."""
        ...

    @abstractmethod
    async def monitor_all(self, database: str) -> TableUpdates:
        """Monitor every column of every table.

        Args:
            database: Database name

        Returns:
            The current contents of all tables as one batch

        Raises:
            ConnectionError: If not connected
            ProtocolError: If the server rejects the request
        """
        ...

    @abstractmethod
    async def transact(self, database: str, operations: List[Dict[str, Any]]) -> List[Any]:
        """Submit operations as one transaction.

        Args:
            database: Database name
            operations: Operation documents

        Returns:
            The raw reply array, unvalidated

        Raises:
            ConnectionError: If not connected
            ProtocolError: If the server rejects the request
        """
        ...

    @abstractmethod
    def updates(self) -> AsyncIterator[TableUpdates]:
        """Iterate over update batches received after monitor_all()."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected."""
        ...
