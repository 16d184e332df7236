"""
ovscache - Client-side cache and transactions for the Open vSwitch database.

This package keeps a local, queryable mirror of the switch configuration
database and submits changes to it as transactions:
- OvsCache: row cache plus typed bridge/port/interface caches
- CacheReconciler: applies update batches from the server
- TransactionExecutor / Transaction: submit and validate transactions
- ClientContext / OvsClient: connect-once client facade

Example:
    >>> from ovscache import get_client
    >>>
    >>> client = await get_client("unix")
    >>> await client.create_internal_port("br0", "vlan10", vlan_tag=10)
    >>> client.find_statistics_on_interface("vlan10")
    {'rx_packets': 0, 'tx_packets': 0}

Invariants:
    - Update batches are applied in arrival order, at least once
    - Only the reconciler writes the cache
    - Transactions are never retried by the client

Version: 1.0.0
"""

__version__ = "1.0.0"

from .cache import OvsCache, RowCache, RWLock, TypedCache
from .client import (
    ClientContext,
    ClientState,
    OvsClient,
    get_client,
    get_default_context,
)
from .config import (
    ClientSettings,
    ConnectionTarget,
    TransportKind,
    resolve_endpoint,
    setup_logging,
)
from .entities import Bridge, EntityKind, Interface, Port, decode_entity
from .errors import (
    ClientStateError,
    ConnectionError,
    DecodeError,
    NotFoundError,
    OvsCacheError,
    ProtocolError,
    TransactionError,
    ValidationError,
)
from .monitor import UpdateMonitor
from .reconciler import ApplyResult, CacheReconciler
from .transaction import (
    Condition,
    Mutation,
    Operation,
    Transaction,
    TransactionExecutor,
)
from .transport import InMemoryOvsdb, JsonRpcTransport, OvsdbTransport, create_transport
from .updates import RowUpdate, TableUpdates

__all__ = [
    # Version
    "__version__",
    # Client
    "ClientContext",
    "ClientState",
    "OvsClient",
    "get_client",
    "get_default_context",
    # Config
    "ClientSettings",
    "ConnectionTarget",
    "TransportKind",
    "resolve_endpoint",
    "setup_logging",
    # Cache
    "OvsCache",
    "RowCache",
    "TypedCache",
    "RWLock",
    "CacheReconciler",
    "ApplyResult",
    "UpdateMonitor",
    # Entities
    "Bridge",
    "Port",
    "Interface",
    "EntityKind",
    "decode_entity",
    # Updates
    "RowUpdate",
    "TableUpdates",
    # Transactions
    "Condition",
    "Mutation",
    "Operation",
    "Transaction",
    "TransactionExecutor",
    # Transports
    "OvsdbTransport",
    "JsonRpcTransport",
    "InMemoryOvsdb",
    "create_transport",
    # Errors
    "OvsCacheError",
    "ConnectionError",
    "ProtocolError",
    "TransactionError",
    "NotFoundError",
    "DecodeError",
    "ValidationError",
    "ClientStateError",
]
