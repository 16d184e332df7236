"""
Unit tests for the in-memory database transport.

Tests cover:
- Operation execution with named UUIDs
- Garbage collection of unreferenced rows
- Unique name enforcement
- Failure injection helpers
- Update batch publication
"""

import pytest

from ovscache.datum import empty_set, named_uuid, ovs_set, uuid_ref
from ovscache.errors import ConnectionError, ProtocolError
from ovscache.transport import InMemoryOvsdb, OvsdbTransport


def add_bridge_ops(db, name):
    return [
        {"op": "insert", "table": "Interface", "row": {"name": name, "type": "internal"},
         "uuid-name": "i"},
        {"op": "insert", "table": "Port", "row": {"name": name, "interfaces": named_uuid("i")},
         "uuid-name": "p"},
        {"op": "insert", "table": "Bridge", "row": {"name": name, "ports": named_uuid("p")},
         "uuid-name": "b"},
        {
            "op": "mutate",
            "table": "Open_vSwitch",
            "where": [["_uuid", "==", uuid_ref(db.root_uuid)]],
            "mutations": [["bridges", "insert", ovs_set([named_uuid("b")])]],
        },
    ]


@pytest.fixture
async def db():
    db = InMemoryOvsdb()
    await db.connect()
    return db


class TestInMemoryOvsdb:
    """Tests for InMemoryOvsdb."""

    def test_implements_protocol(self):
        """InMemoryOvsdb satisfies the transport protocol."""
        assert isinstance(InMemoryOvsdb(), OvsdbTransport)

    @pytest.mark.asyncio
    async def test_initial_state(self, db):
        """The root row is the only row at start."""
        batch = await db.monitor_all("Open_vSwitch")
        assert list(batch.tables["Open_vSwitch"]) == [db.root_uuid]
        assert batch.tables["Open_vSwitch"][db.root_uuid].after["bridges"] == empty_set()
        assert batch.tables["Bridge"] == {}

    @pytest.mark.asyncio
    async def test_named_uuids_resolve(self, db):
        """Rows inserted in one transaction can reference each other."""
        replies = await db.transact("Open_vSwitch", add_bridge_ops(db, "br0"))

        assert len(replies) == 4
        bridge_uuid = replies[2]["uuid"][1]
        port_uuid = replies[1]["uuid"][1]
        assert db.tables["Bridge"][bridge_uuid]["ports"] == ["uuid", port_uuid]
        assert db.tables["Open_vSwitch"][db.root_uuid]["bridges"] == [
            "set",
            [["uuid", bridge_uuid]],
        ]

    @pytest.mark.asyncio
    async def test_unreferenced_rows_are_collected(self, db):
        """An Interface not referenced by any Port is removed at commit."""
        replies = await db.transact(
            "Open_vSwitch",
            [{"op": "insert", "table": "Interface", "row": {"name": "orphan"}}],
        )
        assert replies == [{"uuid": ["uuid", replies[0]["uuid"][1]]}]
        assert db.rows_named("Interface", "orphan") == []

    @pytest.mark.asyncio
    async def test_bridge_delete_cascades(self, db):
        """Removing a bridge from the root collects its ports and interfaces."""
        replies = await db.transact("Open_vSwitch", add_bridge_ops(db, "br0"))
        bridge_uuid = replies[2]["uuid"][1]

        await db.transact(
            "Open_vSwitch",
            [
                {
                    "op": "mutate",
                    "table": "Open_vSwitch",
                    "where": [["_uuid", "==", uuid_ref(db.root_uuid)]],
                    "mutations": [["bridges", "delete", ovs_set([uuid_ref(bridge_uuid)])]],
                }
            ],
        )

        assert db.tables["Bridge"] == {}
        assert db.tables["Port"] == {}
        assert db.tables["Interface"] == {}

    @pytest.mark.asyncio
    async def test_duplicate_name_violates_constraint(self, db):
        """A second bridge with the same name fails the whole transaction."""
        await db.transact("Open_vSwitch", add_bridge_ops(db, "br0"))
        before = len(db.tables["Bridge"])

        replies = await db.transact("Open_vSwitch", add_bridge_ops(db, "br0"))

        assert len(replies) == 5
        assert replies[4]["error"] == "constraint violation"
        assert len(db.tables["Bridge"]) == before

    @pytest.mark.asyncio
    async def test_failed_operation_pads_with_null(self, db):
        """Operations after a failure get null replies."""
        replies = await db.transact(
            "Open_vSwitch",
            [
                {"op": "insert", "table": "Nope", "row": {}},
                {"op": "select", "table": "Bridge", "where": []},
            ],
        )
        assert replies[0]["error"] == "unknown table"
        assert replies[1] is None

    @pytest.mark.asyncio
    async def test_select(self, db):
        """Select returns matching rows with their _uuid."""
        await db.transact("Open_vSwitch", add_bridge_ops(db, "br0"))

        replies = await db.transact(
            "Open_vSwitch",
            [{"op": "select", "table": "Bridge", "where": [["name", "==", "br0"]],
              "columns": ["_uuid", "name"]}],
        )

        rows = replies[0]["rows"]
        assert len(rows) == 1
        assert rows[0]["name"] == "br0"
        assert rows[0]["_uuid"][0] == "uuid"

    @pytest.mark.asyncio
    async def test_commit_publishes_batch(self, db):
        """Each committed change is published as one batch."""
        await db.transact("Open_vSwitch", add_bridge_ops(db, "br0"))

        stream = db.updates()
        batch = await stream.__anext__()

        assert {"Bridge", "Port", "Interface", "Open_vSwitch"} <= set(batch.tables)
        root_update = batch.tables["Open_vSwitch"][db.root_uuid]
        assert "bridges" in root_update.before
        assert not root_update.is_delete
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_injected_failure(self, db):
        """fail_next_transaction reports the error at the given index."""
        db.fail_next_transaction("constraint violation", "duplicate", index=1)

        replies = await db.transact("Open_vSwitch", add_bridge_ops(db, "br0"))

        assert replies[0] == {}
        assert replies[1] == {"error": "constraint violation", "details": "duplicate"}
        assert replies[2:] == [None, None]
        assert db.tables["Bridge"] == {}
        assert len(db.transactions) == 1

    @pytest.mark.asyncio
    async def test_short_reply(self, db):
        """short_reply_next_transaction returns exactly the given replies."""
        db.short_reply_next_transaction([{}])
        replies = await db.transact("Open_vSwitch", add_bridge_ops(db, "br0"))
        assert replies == [{}]

    @pytest.mark.asyncio
    async def test_wrong_database(self, db):
        """Only the configured database is served."""
        with pytest.raises(ProtocolError):
            await db.monitor_all("hardware_vtep")

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        """fail_connect makes the next connect raise once."""
        db = InMemoryOvsdb()
        db.fail_connect()

        with pytest.raises(ConnectionError):
            await db.connect()
        await db.connect()
        assert db.is_connected

    @pytest.mark.asyncio
    async def test_drop_connection_ends_stream(self, db):
        """After a drop the update stream ends and calls fail."""
        db.drop_connection()

        batches = [batch async for batch in db.updates()]

        assert batches == []
        assert not db.is_connected
        with pytest.raises(ConnectionError):
            await db.transact("Open_vSwitch", [])
