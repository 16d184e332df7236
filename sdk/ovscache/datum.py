"""
OVSDB JSON value notation.

The database encodes column values with a small tagged notation (RFC 7047,
section 5.1):

    "br0"                              atom
    ["uuid", "6c4f..."]                reference to an existing row
    ["named-uuid", "new_port"]         reference to a row inserted in the same transaction
    ["set", ["a", "b"]]                set (a one-element set may be sent as its bare atom)
    ["map", [["k", "v"], ...]]         map

This module converts between that notation and plain Python values.

Invariants:
    - Decoders accept both the tagged and the bare-atom form of one-element sets
    - Encoders always emit the tagged form
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping


class DatumError(ValueError):
    """A value does not have the expected OVSDB shape."""

    pass


def uuid_ref(uuid: str) -> list[str]:
    """Reference an existing row."""
    return ["uuid", uuid]


def named_uuid(name: str) -> list[str]:
    """Reference a row inserted earlier in the same transaction."""
    return ["named-uuid", name]


def ovs_set(values: Iterable[Any]) -> list[Any]:
    """Encode an iterable as an OVSDB set."""
    return ["set", list(values)]


def ovs_map(values: Mapping[Any, Any]) -> list[Any]:
    """Encode a mapping as an OVSDB map."""
    return ["map", [[k, v] for k, v in values.items()]]


def empty_set() -> list[Any]:
    """The empty set, used to clear optional columns."""
    return ["set", []]


def is_tagged(value: Any, tag: str) -> bool:
    """Whether value is a two-element ``[tag, payload]`` list."""
    return isinstance(value, list) and len(value) == 2 and value[0] == tag


def decode_uuid(value: Any) -> str:
    """Decode a ``["uuid", u]`` reference into its UUID string."""
    if is_tagged(value, "uuid") and isinstance(value[1], str):
        return value[1]
    raise DatumError(f"expected uuid reference, got {value!r}")


def decode_set(value: Any) -> list[Any]:
    """Decode a set, accepting the bare-atom form of one-element sets."""
    if is_tagged(value, "set"):
        if not isinstance(value[1], list):
            raise DatumError(f"malformed set {value!r}")
        return list(value[1])
    if is_tagged(value, "map"):
        raise DatumError(f"expected set, got map {value!r}")
    return [value]


def decode_uuid_set(value: Any) -> tuple[str, ...]:
    """Decode a set of row references, keeping the recorded order."""
    return tuple(decode_uuid(item) for item in decode_set(value))


def decode_map(value: Any) -> dict[Any, Any]:
    """Decode a map into a dict."""
    if not is_tagged(value, "map") or not isinstance(value[1], list):
        raise DatumError(f"expected map, got {value!r}")
    result: dict[Any, Any] = {}
    for pair in value[1]:
        if not isinstance(pair, list) or len(pair) != 2:
            raise DatumError(f"malformed map pair {pair!r}")
        result[pair[0]] = pair[1]
    return result


def decode_optional(value: Any) -> Any:
    """Decode an optional scalar (``min: 0, max: 1``).

    Returns None for the empty set, the atom otherwise.
    """
    if is_tagged(value, "set"):
        items = value[1]
        if not isinstance(items, list) or len(items) > 1:
            raise DatumError(f"expected at most one value, got {value!r}")
        return items[0] if items else None
    return value
