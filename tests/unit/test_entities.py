"""
Unit tests for typed entity decoding.

Tests cover:
- Decoding bridge, port and interface rows
- Optional and one-element-set columns
- DecodeError on malformed rows
"""

import pytest

from ovscache.entities import (
    Bridge,
    EntityKind,
    Interface,
    Port,
    decode_entity,
)
from ovscache.errors import DecodeError


class TestEntityKind:
    """Tests for table name lookup."""

    def test_known_tables(self):
        """Bridge, Port and Interface have entity kinds."""
        assert EntityKind.for_table("Bridge") == EntityKind.BRIDGE
        assert EntityKind.for_table("Port") == EntityKind.PORT
        assert EntityKind.for_table("Interface") == EntityKind.INTERFACE

    def test_raw_only_tables(self):
        """Other tables are cached raw only."""
        assert EntityKind.for_table("Open_vSwitch") is None
        assert EntityKind.for_table("Controller") is None


class TestDecodeBridge:
    """Tests for bridge decoding."""

    def test_full_row(self):
        """All columns are decoded."""
        row = {
            "name": "br0",
            "ports": ["set", [["uuid", "p1"], ["uuid", "p2"]]],
            "controller": ["uuid", "c1"],
            "fail_mode": ["set", ["secure"]],
            "datapath_type": "netdev",
            "external_ids": ["map", [["owner", "test"]]],
        }

        bridge = decode_entity(EntityKind.BRIDGE, "b1", row)

        assert bridge == Bridge(
            uuid="b1",
            name="br0",
            ports=("p1", "p2"),
            controllers=("c1",),
            fail_mode="secure",
            datapath_type="netdev",
            external_ids={"owner": "test"},
        )

    def test_minimal_row(self):
        """Missing columns take defaults."""
        bridge = decode_entity(EntityKind.BRIDGE, "b1", {"name": "br0"})
        assert bridge.ports == ()
        assert bridge.fail_mode is None
        assert bridge.external_ids == {}

    def test_missing_name(self):
        """A row without a name cannot be decoded."""
        with pytest.raises(DecodeError) as exc_info:
            decode_entity(EntityKind.BRIDGE, "b1", {"ports": ["set", []]})
        assert exc_info.value.column == "name"
        assert exc_info.value.table == "Bridge"
        assert exc_info.value.uuid == "b1"

    def test_bad_reference(self):
        """Ports must be uuid references."""
        with pytest.raises(DecodeError) as exc_info:
            decode_entity(EntityKind.BRIDGE, "b1", {"name": "br0", "ports": ["set", ["p1"]]})
        assert exc_info.value.column == "ports"


class TestDecodePort:
    """Tests for port decoding."""

    def test_tagged_port(self):
        """A tag is an optional integer."""
        row = {
            "name": "eth1",
            "interfaces": ["uuid", "i1"],
            "tag": 100,
            "trunks": ["set", []],
        }

        port = decode_entity(EntityKind.PORT, "p1", row)

        assert port == Port(uuid="p1", name="eth1", interfaces=("i1",), tag=100)

    def test_untagged_port(self):
        """The empty set means untagged."""
        port = decode_entity(EntityKind.PORT, "p1", {"name": "eth1", "tag": ["set", []]})
        assert port.tag is None

    def test_bad_tag(self):
        """A string tag is rejected."""
        with pytest.raises(DecodeError):
            decode_entity(EntityKind.PORT, "p1", {"name": "eth1", "tag": "100"})

    def test_trunks(self):
        """Trunks decode to a tuple of integers."""
        port = decode_entity(EntityKind.PORT, "p1", {"name": "eth1", "trunks": ["set", [10, 20]]})
        assert port.trunks == (10, 20)


class TestDecodeInterface:
    """Tests for interface decoding."""

    def test_statistics(self):
        """Statistics decode to a string -> int dict."""
        row = {
            "name": "eth1",
            "type": "",
            "ofport": 3,
            "statistics": ["map", [["rx_packets", 5], ["tx_packets", 7]]],
            "link_state": "up",
            "mac_in_use": ["set", []],
        }

        interface = decode_entity(EntityKind.INTERFACE, "i1", row)

        assert isinstance(interface, Interface)
        assert interface.statistics == {"rx_packets": 5, "tx_packets": 7}
        assert interface.ofport == 3
        assert interface.link_state == "up"
        assert interface.mac_in_use is None

    def test_patch_options(self):
        """Options decode to a string map."""
        row = {"name": "patch0", "type": "patch", "options": ["map", [["peer", "patch1"]]]}
        interface = decode_entity(EntityKind.INTERFACE, "i1", row)
        assert interface.type == "patch"
        assert interface.options == {"peer": "patch1"}

    def test_bad_statistics(self):
        """Non-integer counters are rejected."""
        row = {"name": "eth1", "statistics": ["map", [["rx_packets", "five"]]]}
        with pytest.raises(DecodeError) as exc_info:
            decode_entity(EntityKind.INTERFACE, "i1", row)
        assert exc_info.value.column == "statistics"

    def test_maps_are_read_only(self):
        """Map columns are frozen along with the entity."""
        options = {"peer": "patch1"}
        interface = Interface(uuid="i1", name="patch0", options=options)

        options["peer"] = "other"
        assert interface.options == {"peer": "patch1"}
        with pytest.raises(TypeError):
            interface.options["peer"] = "other"
        with pytest.raises(TypeError):
            Port(uuid="p1", name="eth1").external_ids["k"] = "v"
