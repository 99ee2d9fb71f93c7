"""
Storage module for EntBase server.

This module provides store adapters implementing the SDK's EntityStore
protocol:
- SqliteEntityStore: single-file SQLite store with cascading deletes

Invariants:
    - Adapters raise StoreError with Postgres-style codes
    - Batched protocol methods stay single calls

How to change safely:
    - New adapters must pass the same integration tests as SQLite
"""

from .sqlite_store import SqliteEntityStore, actor_scope, translate_sqlite_error

__all__ = [
    "SqliteEntityStore",
    "actor_scope",
    "translate_sqlite_error",
]
