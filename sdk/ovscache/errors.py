"""
Error types for ovscache.

This module defines all exception types raised by the client:
- OvsCacheError: Base exception
- ConnectionError: Transport establishment or loss
- ProtocolError: Malformed or short replies from the server
- TransactionError: An operation inside a transaction failed
- NotFoundError: A query found no entity with the given name
- DecodeError: A row could not be decoded into its typed entity
- ValidationError: Invalid caller input
- ClientStateError: Client used in the wrong lifecycle state

Invariants:
    - All errors inherit from OvsCacheError
    - Errors include context for debugging
    - DecodeError never escapes the reconciler
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class OvsCacheError(Exception):
    """Base exception for all ovscache errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "OVSCACHE_ERROR"
        self.details = details or {}


class ConnectionError(OvsCacheError):
    """Failed to connect to the database server.

    Raised when:
    - Socket path or host is unreachable
    - The connection drops while a request is in flight
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details={"address": address},
        )
        self.address = address


class ProtocolError(OvsCacheError):
    """The server reply does not have the expected shape.

    Raised when:
    - A transaction returns fewer replies than operations submitted
    - A JSON-RPC message cannot be parsed
    """

    def __init__(
        self,
        message: str,
        action: Optional[str] = None,
        expected: Optional[int] = None,
        received: Optional[int] = None,
    ) -> None:
        super().__init__(
            message,
            code="PROTOCOL_ERROR",
            details={"action": action, "expected": expected, "received": received},
        )
        self.action = action
        self.expected = expected
        self.received = received


class TransactionError(OvsCacheError):
    """An operation inside a transaction reported an error.

    Attributes:
        action: Label of the attempted mutation
        index: Index of the failing operation, None for commit-level errors
        error: Remote error code (e.g. "constraint violation")
        detail: Remote error detail text
        operation: The failing operation document, when known
    """

    def __init__(
        self,
        message: str,
        action: str,
        index: Optional[int],
        error: str,
        detail: Optional[str] = None,
        operation: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            code="TRANSACTION_ERROR",
            details={
                "action": action,
                "index": index,
                "error": error,
                "detail": detail,
                "operation": operation,
            },
        )
        self.action = action
        self.index = index
        self.error = error
        self.detail = detail
        self.operation = operation


class NotFoundError(OvsCacheError):
    """Named entity not found in the cache.

    Raised when:
    - No bridge has the requested name
    - No port or interface has the requested name
    """

    def __init__(
        self,
        message: str,
        resource_type: str,
        name: str,
    ) -> None:
        super().__init__(
            message,
            code="NOT_FOUND",
            details={"resource_type": resource_type, "name": name},
        )
        self.resource_type = resource_type
        self.name = name


class DecodeError(OvsCacheError):
    """A row could not be decoded into its typed entity."""

    def __init__(
        self,
        message: str,
        table: str,
        uuid: str,
        column: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="DECODE_ERROR",
            details={"table": table, "uuid": uuid, "column": column},
        )
        self.table = table
        self.uuid = uuid
        self.column = column


class ValidationError(OvsCacheError):
    """Caller input failed validation.

    Raised when:
    - VLAN tag is outside 0-4095
    - A required name is empty
    - An endpoint cannot be parsed
    """

    def __init__(
        self,
        message: str,
        field_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"field": field_name},
        )
        self.field_name = field_name


class ClientStateError(OvsCacheError):
    """Client used in the wrong lifecycle state.

    Raised when:
    - get_client() is called with arguments that differ from the live connection
    - A facade is used before its context has connected
    """

    def __init__(
        self,
        message: str,
        state: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CLIENT_STATE_ERROR",
            details={"state": state},
        )
        self.state = state
