"""
API module for EntBase server.

This module provides the external interface:
- FastAPI gateway over EntityClient

Invariants:
    - All instance operations require a tenant
    - Errors are JSON bodies with error, code and details

How to change safely:
    - Add new routes, don't change existing response shapes
"""

from .http_server import create_app
from .settings import Settings

__all__ = [
    "create_app",
    "Settings",
]
