"""
EntBase Test Suite.

This package contains:
- unit/: Unit tests (mocked stores, or a temporary SQLite file)
- integration/: Integration tests (EntityClient and the HTTP gateway on SQLite)
"""
