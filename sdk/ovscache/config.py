"""
Configuration for ovscache.

Uses pydantic-settings for environment variable loading. Every setting has a
default suitable for a local Open vSwitch installation.

Invariants:
    - An empty endpoint always resolves to the transport's default
    - Only "unix" and "tcp" transports are accepted
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

import json_log_formatter
from pydantic import Field
from pydantic_settings import BaseSettings

from .errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_TCP_HOST = "127.0.0.1"
DEFAULT_TCP_PORT = 6640
DEFAULT_UNIX_ENDPOINT = "/var/run/openvswitch/db.sock"
DEFAULT_DATABASE = "Open_vSwitch"


class TransportKind(Enum):
    """Supported transports to the database server."""

    UNIX = "unix"
    TCP = "tcp"


class ClientSettings(BaseSettings):
    """Client configuration loaded from environment."""

    # Connection
    transport: TransportKind = Field(default=TransportKind.UNIX, description="unix or tcp")
    endpoint: str = Field(default="", description="host:port or socket path; empty for default")
    database: str = Field(default=DEFAULT_DATABASE, description="Database to monitor")

    # Defaults used when endpoint is empty
    default_tcp_host: str = Field(default=DEFAULT_TCP_HOST, description="Default TCP host")
    default_tcp_port: int = Field(default=DEFAULT_TCP_PORT, description="Default TCP port")
    default_unix_endpoint: str = Field(
        default=DEFAULT_UNIX_ENDPOINT, description="Default Unix socket path"
    )

    # Logging
    log_level: str = Field(default="INFO", description="DEBUG, INFO, WARNING, ERROR")
    log_format: str = Field(default="text", description="json or text")

    model_config = {"env_prefix": "OVSCACHE_"}

    def target(
        self,
        transport: str | TransportKind | None = None,
        endpoint: str | None = None,
    ) -> ConnectionTarget:
        """Resolve a connection target, falling back to the configured values."""
        return resolve_endpoint(
            transport if transport is not None else self.transport,
            endpoint if endpoint is not None else self.endpoint,
            settings=self,
        )


@dataclass(frozen=True)
class ConnectionTarget:
    """A fully resolved place to connect to.

    Attributes:
        kind: Transport kind
        host: TCP host (tcp only)
        port: TCP port (tcp only)
        path: Socket path (unix only)
    """

    kind: TransportKind
    host: str | None = None
    port: int | None = None
    path: str | None = None

    @property
    def address(self) -> str:
        """Printable address, as used in log lines and errors."""
        if self.kind == TransportKind.TCP:
            return f"tcp:{self.host}:{self.port}"
        return f"unix:{self.path}"


def resolve_endpoint(
    transport: str | TransportKind,
    endpoint: str = "",
    *,
    settings: ClientSettings | None = None,
) -> ConnectionTarget:
    """Turn a transport kind and optional endpoint into a ConnectionTarget.

    Args:
        transport: "unix" or "tcp"
        endpoint: Socket path or host:port; empty selects the default
        settings: Settings supplying the defaults

    Returns:
        Resolved ConnectionTarget

    Raises:
        ValidationError: If the transport is unknown or host:port is malformed
    """
    try:
        kind = TransportKind(transport) if isinstance(transport, str) else transport
    except ValueError:
        raise ValidationError(
            f"Invalid transport '{transport}'. Must be one of: unix, tcp",
            field_name="transport",
        ) from None

    if kind == TransportKind.UNIX:
        default_path = settings.default_unix_endpoint if settings else DEFAULT_UNIX_ENDPOINT
        return ConnectionTarget(kind=kind, path=endpoint or default_path)

    if not endpoint:
        return ConnectionTarget(
            kind=kind,
            host=settings.default_tcp_host if settings else DEFAULT_TCP_HOST,
            port=settings.default_tcp_port if settings else DEFAULT_TCP_PORT,
        )

    host, sep, port_str = endpoint.rpartition(":")
    if not sep or not host:
        raise ValidationError(f"Endpoint '{endpoint}' must be host:port", field_name="endpoint")
    try:
        port = int(port_str)
    except ValueError:
        raise ValidationError(
            f"Endpoint '{endpoint}' has a non-numeric port", field_name="endpoint"
        ) from None

    # [::1]:6640
    host = host.strip("[]")
    return ConnectionTarget(kind=kind, host=host, port=port)


def setup_logging(settings: ClientSettings) -> None:
    """Configure logging based on settings.

    Args:
        settings: Client settings
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    if settings.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from asyncio
    logging.getLogger("asyncio").setLevel(logging.WARNING)
