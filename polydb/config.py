"""
Configuration for polydb.

All configuration is read from environment variables prefixed with
``POLYDB_``. Every setting has a default suitable for local development
and tests.

Invariants:
    - Compilers fall back to ``max_depth`` when no explicit limit is given
    - Identifier field names are applied per backend, never per entity

How to change safely:
    - Add new settings with defaults that keep existing behavior
    - Call reset_settings() in tests that patch the environment
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """polydb configuration."""

    # Schema compilation
    max_depth: int = Field(default=5, ge=0, description="Embedded recursion limit")

    # Identifier naming per backend
    document_id_field: str = Field(default="_id")
    graph_id_field: str = Field(default="id")
    relational_id_field: str = Field(default="id")

    # SQLite repository adapter
    sqlite_path: str = Field(default=":memory:")
    sqlite_busy_timeout_ms: int = Field(default=5000)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text", description="text or json")

    model_config = {"env_prefix": "POLYDB_"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the process-wide settings instance."""
    return Settings()


def reset_settings() -> None:
    """Drop the cached settings (for testing only)."""
    get_settings.cache_clear()
