"""
ovscache Test Suite.

This package contains:
- unit/: Unit tests (no external dependencies)
- integration/: Integration tests (in-memory database, local JSON-RPC server)
"""
