"""
Client configuration for EntBase SDK.

Options are fixed when a client is constructed. They can be built in code or
loaded from environment variables.

Environment:
    ENTBASE_CACHE_ENABLED: "true" / "false" (default true)
    ENTBASE_CACHE_TTL_MS: Schema cache TTL in milliseconds (default 300000)

Invariants:
    - Options are immutable and hashable (used as registry keys)
    - TTL is a positive number of milliseconds
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

DEFAULT_CACHE_TTL_MS = 5 * 60 * 1000


@dataclass(frozen=True)
class ClientOptions:
    """Per-client options.

    Attributes:
        enable_cache: Cache entity schemas in memory
        cache_ttl_ms: How long a cached schema stays valid
    """

    enable_cache: bool = True
    cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS

    @classmethod
    def from_env(cls) -> ClientOptions:
        """Load options from environment variables."""
        options = cls(
            enable_cache=os.getenv("ENTBASE_CACHE_ENABLED", "true").lower() == "true",
            cache_ttl_ms=int(os.getenv("ENTBASE_CACHE_TTL_MS", str(DEFAULT_CACHE_TTL_MS))),
        )
        options.validate()
        return options

    def validate(self) -> None:
        """Validate option values.

        Raises:
            ValueError: If the TTL is not positive
        """
        if self.cache_ttl_ms <= 0:
            raise ValueError(f"cache_ttl_ms must be positive, got {self.cache_ttl_ms}")


@dataclass(frozen=True)
class ClientConfig:
    """Identity of a client: one instance per distinct value."""

    tenant_id: str
    options: ClientOptions = field(default_factory=ClientOptions)
