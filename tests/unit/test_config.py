"""
Unit tests for configuration.

Tests cover:
- Endpoint resolution for unix and tcp transports
- Environment variable loading
- Logging setup
"""

import logging

import json_log_formatter
import pytest

from ovscache.config import (
    DEFAULT_TCP_PORT,
    DEFAULT_UNIX_ENDPOINT,
    ClientSettings,
    ConnectionTarget,
    TransportKind,
    resolve_endpoint,
    setup_logging,
)
from ovscache.errors import ValidationError


class TestResolveEndpoint:
    """Tests for resolve_endpoint."""

    def test_unix_default(self):
        """An empty unix endpoint uses the default socket path."""
        target = resolve_endpoint("unix")
        assert target == ConnectionTarget(kind=TransportKind.UNIX, path=DEFAULT_UNIX_ENDPOINT)
        assert target.address == f"unix:{DEFAULT_UNIX_ENDPOINT}"

    def test_unix_explicit(self):
        """An explicit path is used as-is."""
        assert resolve_endpoint("unix", "/tmp/db.sock").path == "/tmp/db.sock"

    def test_tcp_default(self):
        """An empty tcp endpoint uses the default host and port."""
        target = resolve_endpoint(TransportKind.TCP)
        assert target.host == "127.0.0.1"
        assert target.port == DEFAULT_TCP_PORT
        assert target.address == "tcp:127.0.0.1:6640"

    def test_tcp_explicit(self):
        """host:port is split on the last colon."""
        target = resolve_endpoint("tcp", "10.0.0.5:6641")
        assert (target.host, target.port) == ("10.0.0.5", 6641)

    def test_tcp_ipv6(self):
        """Bracketed IPv6 hosts are unwrapped."""
        target = resolve_endpoint("tcp", "[::1]:6640")
        assert target.host == "::1"

    @pytest.mark.parametrize("endpoint", ["10.0.0.5", ":6640", "10.0.0.5:port"])
    def test_tcp_malformed(self, endpoint):
        """Malformed host:port is rejected."""
        with pytest.raises(ValidationError) as exc_info:
            resolve_endpoint("tcp", endpoint)
        assert exc_info.value.field_name == "endpoint"

    def test_invalid_transport(self):
        """Only unix and tcp are accepted."""
        with pytest.raises(ValidationError) as exc_info:
            resolve_endpoint("ssl")
        assert exc_info.value.field_name == "transport"

    def test_settings_defaults(self):
        """Defaults come from settings when given."""
        settings = ClientSettings(default_tcp_host="ovsdb.local", default_tcp_port=7000)
        target = resolve_endpoint("tcp", settings=settings)
        assert target.address == "tcp:ovsdb.local:7000"


class TestClientSettings:
    """Tests for ClientSettings."""

    def test_env_prefix(self, monkeypatch):
        """Settings load from OVSCACHE_ variables."""
        monkeypatch.setenv("OVSCACHE_TRANSPORT", "tcp")
        monkeypatch.setenv("OVSCACHE_ENDPOINT", "192.168.1.2:6640")
        monkeypatch.setenv("OVSCACHE_LOG_LEVEL", "DEBUG")

        settings = ClientSettings()

        assert settings.transport == TransportKind.TCP
        assert settings.log_level == "DEBUG"
        assert settings.target().address == "tcp:192.168.1.2:6640"

    def test_target_overrides(self):
        """Explicit arguments win over configured values."""
        settings = ClientSettings(endpoint="/tmp/other.sock")
        assert settings.target().path == "/tmp/other.sock"
        assert settings.target("tcp", "").port == DEFAULT_TCP_PORT


class TestSetupLogging:
    """Tests for setup_logging."""

    @pytest.fixture(autouse=True)
    def restore_root_logger(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers = handlers
        root.setLevel(level)

    def test_json_format(self):
        """json selects the JSON formatter."""
        setup_logging(ClientSettings(log_format="json", log_level="debug"))

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)

    def test_text_format(self):
        """Anything else uses a plain formatter."""
        setup_logging(ClientSettings())

        root = logging.getLogger()
        assert root.level == logging.INFO
        assert not isinstance(root.handlers[0].formatter, json_log_formatter.JSONFormatter)
        assert logging.getLogger("asyncio").level == logging.WARNING
