"""
Local cache of the remote database.

This module provides the cache owner and its pieces:
- RWLock: Reader/writer lock guarding one cache
- RowCache: table -> row UUID -> raw row, mirroring remote state
- TypedCache: row UUID -> decoded entity for one entity kind
- OvsCache: owns the row cache and the bridge/port/interface caches and
  serves all read-only queries

Only the reconciler writes, through OvsCache.write_table(). Queries take a
reader lock for one lookup at a time and resolve references lazily, so a
reference to a row that has not arrived yet (or was deleted) is skipped
rather than dangling.

Invariants:
    - All maps exist before the first batch is applied
    - A UUID present in the row cache has a non-empty row
    - Row cache and typed cache change together under one table's writer locks
    - Entities handed to callers are never mutated afterwards
"""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Dict, Generic, Iterator, List, Optional, TypeVar

from .entities import (
    ROOT_TABLE,
    Bridge,
    Entity,
    EntityKind,
    Interface,
    Port,
)
from .errors import NotFoundError
from .updates import Row

logger = logging.getLogger(__name__)

E = TypeVar("E", Bridge, Port, Interface)


class RWLock:
    """Reader/writer lock with writer preference.

    Any number of readers may hold the lock together; a writer holds it
    alone. Waiting writers block new readers so a steady read load cannot
    starve the reconciler. Not reentrant.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class RowCache:
    """Raw rows by table and UUID."""

    def __init__(self) -> None:
        self.lock = RWLock()
        self._tables: Dict[str, Dict[str, Row]] = {}

    def get(self, table: str, uuid: str) -> Optional[Row]:
        with self.lock.read():
            row = self._tables.get(table, {}).get(uuid)
            return copy.deepcopy(row)

    def rows(self, table: str) -> Dict[str, Row]:
        """Copy of all rows in a table."""
        with self.lock.read():
            return copy.deepcopy(self._tables.get(table, {}))

    def tables(self) -> List[str]:
        with self.lock.read():
            return list(self._tables)

    def first_uuid(self, table: str) -> Optional[str]:
        with self.lock.read():
            for uuid in self._tables.get(table, {}):
                return uuid
            return None

    def snapshot(self) -> Dict[str, Dict[str, Row]]:
        """Deep copy of the whole cache."""
        with self.lock.read():
            return copy.deepcopy(self._tables)

    # Writer side, called with self.lock held for writing

    def _table(self, table: str) -> Dict[str, Row]:
        return self._tables.setdefault(table, {})

    def _put(self, table: str, uuid: str, row: Row) -> None:
        self._table(table)[uuid] = dict(row)

    def _remove(self, table: str, uuid: str) -> bool:
        return self._table(table).pop(uuid, None) is not None


class TypedCache(Generic[E]):
    """Decoded entities of one kind, keyed by row UUID."""

    def __init__(self, kind: EntityKind) -> None:
        self.kind = kind
        self.lock = RWLock()
        self._entities: Dict[str, E] = {}

    def get(self, uuid: str) -> Optional[E]:
        with self.lock.read():
            return self._entities.get(uuid)

    def find_by_name(self, name: str) -> Optional[E]:
        """Linear scan for the first entity with the given name."""
        with self.lock.read():
            for entity in self._entities.values():
                if entity.name == name:
                    return entity
            return None

    def values(self) -> List[E]:
        with self.lock.read():
            return list(self._entities.values())

    def uuids(self) -> List[str]:
        with self.lock.read():
            return list(self._entities)

    def __len__(self) -> int:
        with self.lock.read():
            return len(self._entities)

    # Writer side, called with self.lock held for writing

    def _put(self, uuid: str, entity: E) -> None:
        self._entities[uuid] = entity

    def _evict(self, uuid: str) -> bool:
        return self._entities.pop(uuid, None) is not None


class TableWriter:
    """Write handle for one table, valid only inside OvsCache.write_table()."""

    def __init__(self, rows: RowCache, table: str, typed: Optional[TypedCache]) -> None:
        self._rows = rows
        self._table = table
        self._typed = typed

    def upsert(self, uuid: str, row: Row, entity: Optional[Entity]) -> None:
        """Store a row and its decoded entity.

        A None entity (decode failure) evicts any previous entity for the
        UUID so the typed cache never serves a value older than the raw row.
        """
        self._rows._put(self._table, uuid, row)
        if self._typed is None:
            return
        if entity is None:
            self._typed._evict(uuid)
        else:
            self._typed._put(uuid, entity)

    def delete(self, uuid: str) -> bool:
        """Remove a row and its entity. Returns whether the row was cached."""
        removed = self._rows._remove(self._table, uuid)
        if self._typed is not None:
            self._typed._evict(uuid)
        return removed


class OvsCache:
    """Owner of the row cache and the typed caches.

    Example:
        >>> cache = OvsCache()
        >>> CacheReconciler(cache).apply(batch)
        >>> cache.find_all_ports_on_bridge("br0")
        ['br0', 'eth1']
    """

    def __init__(self) -> None:
        self.rows = RowCache()
        self.bridges: TypedCache[Bridge] = TypedCache(EntityKind.BRIDGE)
        self.ports: TypedCache[Port] = TypedCache(EntityKind.PORT)
        self.interfaces: TypedCache[Interface] = TypedCache(EntityKind.INTERFACE)
        self._typed: Dict[EntityKind, TypedCache] = {
            EntityKind.BRIDGE: self.bridges,
            EntityKind.PORT: self.ports,
            EntityKind.INTERFACE: self.interfaces,
        }

    def typed_cache(self, kind: EntityKind) -> TypedCache:
        return self._typed[kind]

    @contextmanager
    def write_table(self, table: str) -> Iterator[TableWriter]:
        """Hold the writer locks for one table.

        The row cache lock is taken first, then the typed cache lock. Readers
        never hold two locks at once, so the ordering cannot deadlock.
        """
        kind = EntityKind.for_table(table)
        typed = self._typed[kind] if kind is not None else None
        with self.rows.lock.write():
            if typed is None:
                yield TableWriter(self.rows, table, None)
            else:
                with typed.lock.write():
                    yield TableWriter(self.rows, table, typed)

    # Queries

    def root_uuid(self) -> Optional[str]:
        """UUID of the root Open_vSwitch row, None before the first fetch."""
        return self.rows.first_uuid(ROOT_TABLE)

    def snapshot(self) -> Dict[str, Dict[str, Row]]:
        return self.rows.snapshot()

    def get_bridge(self, name: str) -> Bridge:
        bridge = self.bridges.find_by_name(name)
        if bridge is None:
            raise NotFoundError(f"Bridge '{name}' not found", "bridge", name)
        return bridge

    def get_port(self, name: str) -> Port:
        port = self.ports.find_by_name(name)
        if port is None:
            raise NotFoundError(f"Port '{name}' not found", "port", name)
        return port

    def get_interface(self, name: str) -> Interface:
        interface = self.interfaces.find_by_name(name)
        if interface is None:
            raise NotFoundError(f"Interface '{name}' not found", "interface", name)
        return interface

    def bridge_exists(self, name: str) -> bool:
        return self.bridges.find_by_name(name) is not None

    def interface_exists(self, name: str) -> bool:
        return self.interfaces.find_by_name(name) is not None

    def ports_on_bridge(self, bridge_name: str) -> List[Port]:
        """Ports referenced by a bridge, in reference order.

        References to ports not in the cache are skipped.

        Raises:
            NotFoundError: If no bridge has that name
        """
        bridge = self.get_bridge(bridge_name)
        ports = []
        for uuid in bridge.ports:
            port = self.ports.get(uuid)
            if port is not None:
                ports.append(port)
        return ports

    def find_all_ports_on_bridge(self, bridge_name: str) -> List[str]:
        """Names of the ports on a bridge, in reference order.

        Raises:
            NotFoundError: If no bridge has that name
        """
        return [port.name for port in self.ports_on_bridge(bridge_name)]

    def port_exists_on_bridge(self, port_name: str, bridge_name: str) -> bool:
        """Whether a port with that name is attached to the bridge.

        Raises:
            NotFoundError: If no bridge has that name
        """
        return any(port.name == port_name for port in self.ports_on_bridge(bridge_name))

    def find_port_on_bridge(self, port_name: str, bridge_name: str) -> Optional[Port]:
        for port in self.ports_on_bridge(bridge_name):
            if port.name == port_name:
                return port
        return None

    def find_interfaces_on_port(self, port_name: str) -> List[str]:
        """Names of the interfaces on a port, in reference order.

        Raises:
            NotFoundError: If no port has that name
        """
        port = self.get_port(port_name)
        names = []
        for uuid in port.interfaces:
            interface = self.interfaces.get(uuid)
            if interface is not None:
                names.append(interface.name)
        return names

    def find_statistics_on_interface(self, interface_name: str) -> Dict[str, int]:
        """Statistics counters of an interface.

        Raises:
            NotFoundError: If no interface has that name
        """
        return dict(self.get_interface(interface_name).statistics)
