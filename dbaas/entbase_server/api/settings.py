"""
Configuration for the EntBase HTTP gateway.

Uses pydantic-settings for environment variable loading.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Gateway configuration loaded from environment."""

    # Tenant used when a request has no X-Tenant-ID header
    default_tenant_id: Optional[str] = Field(
        default=None, description="Fallback tenant ID (header required when unset)"
    )

    # CORS settings
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # Pagination defaults
    default_page_size: int = Field(default=20, description="Default items per page")
    max_page_size: int = Field(default=200, description="Maximum items per page")

    model_config = {"env_prefix": "ENTBASE_GATEWAY_"}
