"""
EntBase Server - HTTP service over the EntBase SDK.

This package hosts the EntBase SDK behind a small service:
- SQLite store adapter implementing the SDK's EntityStore protocol
- FastAPI gateway exposing schema retrieval and instance CRUD
- Schema CLI to seed entity types from YAML

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌───────────────────┐
    │ HTTP client │────▶│ FastAPI app  │────▶│ EntityClient      │
    │             │     │ (per tenant) │     │ (cache, resolvers)│
    └─────────────┘     └──────────────┘     └─────────┬─────────┘
                                                       │
                                                       ▼
                                             ┌───────────────────┐
                                             │ SqliteEntityStore │
                                             └───────────────────┘

Invariants:
    - Every request is scoped to one tenant (X-Tenant-ID)
    - One EntityClient per (tenant, options), shared across requests
    - The store enforces referential integrity and cascades

How to change safely:
    - Keep the HTTP contract in step with EntityClient
    - Store schema changes must be backward compatible
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
