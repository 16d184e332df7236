"""
Database transports for ovscache.

This module provides a pluggable transport interface supporting:
- JSON-RPC over TCP or a Unix socket (ovsdb-server)
- In-memory (for testing)

Invariants:
    - Update batches are delivered in the order the server sent them
    - A lost connection ends the update stream and fails pending requests

How to change safely:
    - New transports must implement OvsdbTransport protocol
    - Verify ordering with InMemoryOvsdb before touching the reconciler
"""

from ..config import ConnectionTarget
from .base import OvsdbTransport
from .jsonrpc import JsonRpcTransport
from .memory import InMemoryOvsdb


def create_transport(target: ConnectionTarget) -> OvsdbTransport:
    """Factory function to create a transport for a connection target.

    Args:
        target: Resolved connection target

    Returns:
        JsonRpcTransport for the target
    """
    return JsonRpcTransport(target)


__all__ = [
    # Protocol
    "OvsdbTransport",
    # Factory
    "create_transport",
    # Implementations
    "JsonRpcTransport",
    "InMemoryOvsdb",
]
