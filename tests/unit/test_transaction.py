"""
Unit tests for transactions.

Tests cover:
- Operation wire form
- Reply validation (short replies, per-operation and commit-level errors)
- Executor and plan builder behaviour
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from ovscache.datum import named_uuid, ovs_set, uuid_ref
from ovscache.errors import ProtocolError, TransactionError
from ovscache.transaction import (
    Condition,
    Mutation,
    Operation,
    Transaction,
    TransactionExecutor,
    check_replies,
)


def make_ops(count):
    return [Operation.insert("Port", {"name": f"eth{i}"}).to_json() for i in range(count)]


class TestOperation:
    """Tests for Operation.to_json."""

    def test_insert(self):
        """Insert carries the row and uuid-name, no where clause."""
        doc = Operation.insert("Interface", {"name": "eth1"}, uuid_name="new_interface").to_json()
        assert doc == {
            "op": "insert",
            "table": "Interface",
            "row": {"name": "eth1"},
            "uuid-name": "new_interface",
        }

    def test_update(self):
        """Update carries where and row."""
        doc = Operation.update("Port", [Condition.eq("name", "eth1")], {"tag": 10}).to_json()
        assert doc == {
            "op": "update",
            "table": "Port",
            "where": [["name", "==", "eth1"]],
            "row": {"tag": 10},
        }

    def test_mutate(self):
        """Mutate carries where and mutations."""
        doc = Operation.mutate(
            "Bridge",
            [Condition.eq("_uuid", uuid_ref("b1"))],
            [Mutation.insert("ports", ovs_set([named_uuid("new_port")]))],
        ).to_json()
        assert doc == {
            "op": "mutate",
            "table": "Bridge",
            "where": [["_uuid", "==", ["uuid", "b1"]]],
            "mutations": [["ports", "insert", ["set", [["named-uuid", "new_port"]]]]],
        }

    def test_delete_and_select(self):
        """Delete has only a where clause; select may list columns."""
        assert Operation.delete("Port", [Condition.eq("name", "eth1")]).to_json() == {
            "op": "delete",
            "table": "Port",
            "where": [["name", "==", "eth1"]],
        }
        assert Operation.select("Bridge", columns=["name"]).to_json() == {
            "op": "select",
            "table": "Bridge",
            "where": [],
            "columns": ["name"],
        }


class TestCheckReplies:
    """Tests for check_replies."""

    def test_clean_replies(self):
        """Matching count and no errors passes."""
        check_replies(make_ops(2), [{"uuid": ["uuid", "a"]}, {"uuid": ["uuid", "b"]}], "create")

    def test_short_reply(self):
        """Fewer replies than operations is a protocol failure."""
        with pytest.raises(ProtocolError) as exc_info:
            check_replies(make_ops(3), [{}, {}], "create port eth1")
        assert exc_info.value.expected == 3
        assert exc_info.value.received == 2
        assert exc_info.value.action == "create port eth1"

    def test_error_at_index(self):
        """The first failing operation is reported with its index."""
        ops = make_ops(3)
        replies = [{}, {"error": "constraint violation", "details": "duplicate name"}, None]

        with pytest.raises(TransactionError) as exc_info:
            check_replies(ops, replies, "create port eth1")

        err = exc_info.value
        assert err.index == 1
        assert err.error == "constraint violation"
        assert err.detail == "duplicate name"
        assert err.operation == ops[1]
        assert err.code == "TRANSACTION_ERROR"

    def test_commit_level_error(self):
        """An error past the last operation has no index."""
        replies = [{}, {}, {"error": "referential integrity violation"}]

        with pytest.raises(TransactionError) as exc_info:
            check_replies(make_ops(2), replies, "delete bridge br0")

        assert exc_info.value.index is None
        assert exc_info.value.operation is None

    def test_null_replies_are_skipped(self):
        """null entries do not count as errors."""
        check_replies(make_ops(2), [{}, None], "noop")


class TestExecutor:
    """Tests for TransactionExecutor and Transaction."""

    @pytest.fixture
    def transport(self):
        transport = MagicMock()
        transport.transact = AsyncMock(return_value=[{"uuid": ["uuid", "u1"]}])
        return transport

    @pytest.mark.asyncio
    async def test_execute_submits_documents(self, transport):
        """Operations are sent in wire form to the configured database."""
        executor = TransactionExecutor(transport, "Open_vSwitch")

        replies = await executor.execute(
            [Operation.insert("Bridge", {"name": "br0"})], "create bridge br0"
        )

        assert replies == [{"uuid": ["uuid", "u1"]}]
        transport.transact.assert_awaited_once_with(
            "Open_vSwitch", [{"op": "insert", "table": "Bridge", "row": {"name": "br0"}}]
        )

    @pytest.mark.asyncio
    async def test_execute_trims_commit_level_reply(self, transport):
        """Only one reply per operation is returned."""
        transport.transact.return_value = [{"count": 1}, {}]
        executor = TransactionExecutor(transport, "Open_vSwitch")

        replies = await executor.execute(
            [Operation.delete("Port", [Condition.eq("name", "eth1")])], "delete port"
        )

        assert replies == [{"count": 1}]

    @pytest.mark.asyncio
    async def test_execute_raises_on_error(self, transport):
        """Errors surface as TransactionError."""
        transport.transact.return_value = [{"error": "constraint violation"}]
        executor = TransactionExecutor(transport, "Open_vSwitch")

        with pytest.raises(TransactionError):
            await executor.execute([Operation.insert("Bridge", {"name": "br0"})], "create")

    @pytest.mark.asyncio
    async def test_plan_builder(self, transport):
        """Transaction collects operations and commits them together."""
        transport.transact.return_value = [{}, {}]
        executor = TransactionExecutor(transport, "Open_vSwitch")

        plan = (
            Transaction(executor, "create port eth1")
            .insert("Interface", {"name": "eth1"}, uuid_name="intf")
            .insert("Port", {"name": "eth1", "interfaces": named_uuid("intf")})
        )

        assert len(plan.operations) == 2
        await plan.commit()
        docs = transport.transact.await_args.args[1]
        assert [d["table"] for d in docs] == ["Interface", "Port"]

    @pytest.mark.asyncio
    async def test_empty_commit(self, transport):
        """An empty plan commits without a round trip."""
        executor = TransactionExecutor(transport, "Open_vSwitch")

        assert await Transaction(executor, "nothing").commit() == []
        transport.transact.assert_not_awaited()
