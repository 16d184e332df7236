"""
Client for ovscache.

This module provides the main client interface:
- ClientContext: connection lifecycle (UNCONNECTED -> CONNECTED), injectable
- OvsClient: queries served from the cache, mutations as transactions
- get_client: connect-once access through a process-wide default context

Example:
    >>> client = await get_client("unix")
    >>> await client.create_bridge("br0")
    >>> client.find_all_ports_on_bridge("br0")
    ['br0']

Invariants:
    - A context connects at most once; CONNECTED is terminal
    - Queries never leave the process; mutations never touch the cache
    - The cache is refreshed only by update batches from the server, so a
      mutation becomes visible to queries once its batch has been applied
"""

from __future__ import annotations

import asyncio
import logging
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .cache import OvsCache
from .config import ClientSettings, ConnectionTarget, TransportKind, resolve_endpoint
from .datum import empty_set, named_uuid, ovs_map, uuid_ref
from .entities import (
    BRIDGE_TABLE,
    CONTROLLER_TABLE,
    INTERFACE_TABLE,
    PORT_TABLE,
    ROOT_TABLE,
    Bridge,
    Interface,
    Port,
)
from .errors import ClientStateError, NotFoundError, ValidationError
from .monitor import UpdateMonitor
from .reconciler import CacheReconciler
from .transaction import Condition, Mutation, Transaction, TransactionExecutor
from .transport import OvsdbTransport, create_transport
from .updates import Row

logger = logging.getLogger(__name__)

TransportFactory = Callable[[ConnectionTarget], OvsdbTransport]

MAX_VLAN_TAG = 4095


class ClientState(Enum):
    """Lifecycle states of a ClientContext."""

    UNCONNECTED = "unconnected"
    CONNECTED = "connected"


class OvsClient:
    """Connected client handle.

    Queries are plain methods and may be called from any thread. Mutations
    are coroutines; each builds one transaction and raises on failure.
    """

    def __init__(
        self,
        target: ConnectionTarget,
        database: str,
        transport: OvsdbTransport,
        cache: OvsCache,
        monitor: UpdateMonitor,
    ) -> None:
        self.target = target
        self.database = database
        self.transport = transport
        self.cache = cache
        self.monitor = monitor
        self.executor = TransactionExecutor(transport, database)

    def transaction(self, action: str) -> Transaction:
        """Start a transaction labelled with the attempted action."""
        return Transaction(self.executor, action)

    async def close(self) -> None:
        """Stop the update monitor and close the transport."""
        await self.monitor.stop()
        await self.transport.close()

    # Queries

    def root_uuid(self) -> Optional[str]:
        return self.cache.root_uuid()

    def snapshot(self) -> Dict[str, Dict[str, Row]]:
        return self.cache.snapshot()

    def list_bridges(self) -> List[str]:
        return [bridge.name for bridge in self.cache.bridges.values()]

    def get_bridge(self, name: str) -> Bridge:
        return self.cache.get_bridge(name)

    def get_port(self, name: str) -> Port:
        return self.cache.get_port(name)

    def get_interface(self, name: str) -> Interface:
        return self.cache.get_interface(name)

    def bridge_exists(self, bridge_name: str) -> bool:
        return self.cache.bridge_exists(bridge_name)

    def find_all_ports_on_bridge(self, bridge_name: str) -> List[str]:
        return self.cache.find_all_ports_on_bridge(bridge_name)

    def port_exists_on_bridge(self, port_name: str, bridge_name: str) -> bool:
        return self.cache.port_exists_on_bridge(port_name, bridge_name)

    def find_interfaces_on_port(self, port_name: str) -> List[str]:
        return self.cache.find_interfaces_on_port(port_name)

    def interface_exists(self, interface_name: str) -> bool:
        return self.cache.interface_exists(interface_name)

    def find_statistics_on_interface(self, interface_name: str) -> Dict[str, int]:
        return self.cache.find_statistics_on_interface(interface_name)

    # Bridges

    async def create_bridge(self, bridge_name: str) -> None:
        """Create a bridge with its internal port. No-op if it exists.

        Not safe to retry blindly: check bridge_exists() first.
        """
        _require_name(bridge_name, "bridge_name")
        if self.cache.bridge_exists(bridge_name):
            logger.info("Bridge already exists", extra={"bridge": bridge_name})
            return

        root = self._require_root()
        plan = self.transaction(f"create bridge {bridge_name}")
        plan.insert(
            INTERFACE_TABLE,
            {"name": bridge_name, "type": "internal"},
            uuid_name="new_interface",
        )
        plan.insert(
            PORT_TABLE,
            {"name": bridge_name, "interfaces": named_uuid("new_interface")},
            uuid_name="new_port",
        )
        plan.insert(
            BRIDGE_TABLE,
            {"name": bridge_name, "ports": named_uuid("new_port")},
            uuid_name="new_bridge",
        )
        plan.mutate(
            ROOT_TABLE,
            [Condition.eq("_uuid", uuid_ref(root))],
            [Mutation.insert("bridges", named_uuid("new_bridge"))],
        )
        await plan.commit()
        logger.info("Created bridge", extra={"bridge": bridge_name})

    async def delete_bridge(self, bridge_name: str) -> None:
        """Delete a bridge. No-op if it does not exist."""
        bridge = self.cache.bridges.find_by_name(bridge_name)
        if bridge is None:
            logger.info("Bridge does not exist", extra={"bridge": bridge_name})
            return

        plan = self.transaction(f"delete bridge {bridge_name}")
        plan.mutate(
            ROOT_TABLE,
            [Condition.eq("_uuid", uuid_ref(self._require_root()))],
            [Mutation.delete("bridges", uuid_ref(bridge.uuid))],
        )
        plan.delete(BRIDGE_TABLE, [Condition.eq("_uuid", uuid_ref(bridge.uuid))])
        await plan.commit()
        logger.info("Deleted bridge", extra={"bridge": bridge_name})

    async def update_bridge_controller(self, bridge_name: str, controller: str) -> None:
        """Point a bridge at an OpenFlow controller (e.g. "tcp:10.0.0.1:6653").

        Raises:
            NotFoundError: If the bridge does not exist
        """
        _require_name(controller, "controller")
        bridge = self.cache.get_bridge(bridge_name)

        plan = self.transaction(f"update controller of bridge {bridge_name}")
        plan.insert(CONTROLLER_TABLE, {"target": controller}, uuid_name="new_controller")
        plan.update(
            BRIDGE_TABLE,
            [Condition.eq("_uuid", uuid_ref(bridge.uuid))],
            {"controller": named_uuid("new_controller")},
        )
        await plan.commit()

    # Ports

    async def create_internal_port(
        self, bridge_name: str, port_name: str, vlan_tag: Optional[int] = None
    ) -> None:
        """Add an internal port to a bridge."""
        await self._create_port(bridge_name, port_name, vlan_tag, "internal")

    async def create_veth_port(
        self, bridge_name: str, port_name: str, vlan_tag: Optional[int] = None
    ) -> None:
        """Add an existing system device (e.g. one end of a veth pair) to a bridge."""
        await self._create_port(bridge_name, port_name, vlan_tag, "")

    async def create_patch_port(self, bridge_name: str, port_name: str, peer_name: str) -> None:
        """Add a patch port connected to the patch port named peer_name."""
        _require_name(peer_name, "peer_name")
        await self._create_port(bridge_name, port_name, None, "patch", {"peer": peer_name})

    async def delete_port(self, bridge_name: str, port_name: str) -> None:
        """Remove a port from a bridge. No-op if the port is not on it.

        Raises:
            NotFoundError: If the bridge does not exist
        """
        port = self.cache.find_port_on_bridge(port_name, bridge_name)
        if port is None:
            logger.info("Port not on bridge", extra={"bridge": bridge_name, "port": port_name})
            return
        bridge = self.cache.get_bridge(bridge_name)

        plan = self.transaction(f"delete port {port_name} from bridge {bridge_name}")
        plan.mutate(
            BRIDGE_TABLE,
            [Condition.eq("_uuid", uuid_ref(bridge.uuid))],
            [Mutation.delete("ports", uuid_ref(port.uuid))],
        )
        plan.delete(PORT_TABLE, [Condition.eq("_uuid", uuid_ref(port.uuid))])
        await plan.commit()

    async def update_port_tag(
        self, bridge_name: str, port_name: str, vlan_tag: Optional[int]
    ) -> None:
        """Set or clear (None or 0) the VLAN tag of a port.

        Raises:
            NotFoundError: If the bridge or the port does not exist
        """
        tag = _vlan_tag(vlan_tag)
        port = self.cache.find_port_on_bridge(port_name, bridge_name)
        if port is None:
            raise NotFoundError(
                f"Port '{port_name}' not found on bridge '{bridge_name}'", "port", port_name
            )

        plan = self.transaction(f"update tag of port {port_name}")
        plan.update(
            PORT_TABLE,
            [Condition.eq("_uuid", uuid_ref(port.uuid))],
            {"tag": tag if tag is not None else empty_set()},
        )
        await plan.commit()

    async def remove_interface_from_port(self, port_name: str, interface_uuid: str) -> None:
        """Detach an interface from a port.

        Raises:
            NotFoundError: If the port does not exist
        """
        port = self.cache.get_port(port_name)

        plan = self.transaction(f"remove interface {interface_uuid} from port {port_name}")
        plan.mutate(
            PORT_TABLE,
            [Condition.eq("_uuid", uuid_ref(port.uuid))],
            [Mutation.delete("interfaces", uuid_ref(interface_uuid))],
        )
        await plan.commit()

    async def _create_port(
        self,
        bridge_name: str,
        port_name: str,
        vlan_tag: Optional[int],
        interface_type: str,
        options: Optional[Dict[str, str]] = None,
    ) -> None:
        _require_name(port_name, "port_name")
        tag = _vlan_tag(vlan_tag)
        bridge = self.cache.get_bridge(bridge_name)
        if self.cache.port_exists_on_bridge(port_name, bridge_name):
            logger.info("Port already on bridge", extra={"bridge": bridge_name, "port": port_name})
            return

        interface: Dict[str, Any] = {"name": port_name, "type": interface_type}
        if options:
            interface["options"] = ovs_map(options)
        port: Dict[str, Any] = {"name": port_name, "interfaces": named_uuid("new_interface")}
        if tag is not None:
            port["tag"] = tag

        plan = self.transaction(f"create port {port_name} on bridge {bridge_name}")
        plan.insert(INTERFACE_TABLE, interface, uuid_name="new_interface")
        plan.insert(PORT_TABLE, port, uuid_name="new_port")
        plan.mutate(
            BRIDGE_TABLE,
            [Condition.eq("_uuid", uuid_ref(bridge.uuid))],
            [Mutation.insert("ports", named_uuid("new_port"))],
        )
        await plan.commit()

    def _require_root(self) -> str:
        root = self.cache.root_uuid()
        if root is None:
            raise NotFoundError(f"No {ROOT_TABLE} row in the cache", "database", self.database)
        return root


def _require_name(value: str, field_name: str) -> None:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{field_name} must be a non-empty string", field_name=field_name)


def _vlan_tag(vlan_tag: Optional[int]) -> Optional[int]:
    """Normalize a VLAN tag: None or 0 means untagged."""
    if vlan_tag is None or vlan_tag == 0:
        return None
    if isinstance(vlan_tag, bool) or not isinstance(vlan_tag, int):
        raise ValidationError(f"VLAN tag must be an integer, got {vlan_tag!r}", field_name="vlan_tag")
    if not 0 < vlan_tag <= MAX_VLAN_TAG:
        raise ValidationError(
            f"VLAN tag must be between 0 and {MAX_VLAN_TAG}, got {vlan_tag}", field_name="vlan_tag"
        )
    return vlan_tag


class ClientContext:
    """Connection lifecycle for one client.

    The context starts UNCONNECTED. The first get_client() call connects,
    loads every table into a fresh cache, starts the update monitor and moves
    to CONNECTED, where it stays. Later calls return the same OvsClient;
    calls naming a different transport or endpoint raise ClientStateError
    rather than being silently ignored.

    Example:
        >>> context = ClientContext()
        >>> client = await context.get_client("tcp", "127.0.0.1:6640")
    """

    def __init__(
        self,
        settings: Optional[ClientSettings] = None,
        *,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        """Initialize the context.

        Args:
            settings: Client settings (loaded from environment if omitted)
            transport_factory: Builds the transport for a target
        """
        self.settings = settings or ClientSettings()
        self._transport_factory = transport_factory or create_transport
        self._state = ClientState.UNCONNECTED
        self._client: Optional[OvsClient] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def client(self) -> OvsClient:
        """The connected client.

        Raises:
            ClientStateError: If get_client() has not succeeded yet
        """
        if self._client is None:
            raise ClientStateError("Client is not connected", state=self._state.value)
        return self._client

    async def get_client(
        self,
        transport: str | TransportKind | None = None,
        endpoint: str | None = None,
    ) -> OvsClient:
        """Return the client, connecting on first use.

        Args:
            transport: "unix" or "tcp" (configured default if omitted)
            endpoint: Socket path or host:port (transport default if empty)

        Returns:
            The connected OvsClient

        Raises:
            ConnectionError: If the server cannot be reached
            ClientStateError: If already connected to a different target
            ValidationError: If the endpoint cannot be parsed
        """
        async with self._lock:
            if self._client is not None:
                self._check_target(transport, endpoint)
                return self._client

            target = self.settings.target(transport, endpoint)
            self._client = await self._connect(target)
            self._state = ClientState.CONNECTED
            return self._client

    def _check_target(self, transport: str | TransportKind | None, endpoint: str | None) -> None:
        """Refuse arguments naming a target other than the connected one.

        Without an endpoint only the transport kind is compared.
        """
        assert self._client is not None
        current = self._client.target
        if endpoint is None:
            if transport is None:
                return
            requested = resolve_endpoint(transport, settings=self.settings)
            if requested.kind == current.kind:
                return
        else:
            requested = self.settings.target(
                transport if transport is not None else current.kind, endpoint
            )
            if requested == current:
                return
        raise ClientStateError(
            f"Already connected to {current.address}, refusing to connect to {requested.address}",
            state=self._state.value,
        )

    async def _connect(self, target: ConnectionTarget) -> OvsClient:
        database = self.settings.database
        transport = self._transport_factory(target)
        await transport.connect()

        cache = OvsCache()
        reconciler = CacheReconciler(cache)
        try:
            initial = await transport.monitor_all(database)
        except Exception:
            await transport.close()
            raise
        result = reconciler.apply(initial)

        monitor = UpdateMonitor(transport, reconciler)
        monitor.start()

        logger.info(
            "Client connected",
            extra={
                "address": target.address,
                "database": database,
                "rows": result.upserted,
                "decode_errors": len(result.decode_errors),
            },
        )
        return OvsClient(target, database, transport, cache, monitor)


# Process-wide default context
_default_context: Optional[ClientContext] = None
_context_lock = threading.Lock()


def get_default_context() -> ClientContext:
    """Get the process-wide default context, creating it on first use."""
    global _default_context
    with _context_lock:
        if _default_context is None:
            _default_context = ClientContext()
        return _default_context


async def get_client(
    transport: str | TransportKind | None = None,
    endpoint: str | None = None,
) -> OvsClient:
    """Connect-once access through the default context."""
    return await get_default_context().get_client(transport, endpoint)
