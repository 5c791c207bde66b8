"""
Configuration Management for ExpenseOwl

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: The backend is chosen once, at process start, from these
settings. Nothing else in the storage core reads the environment.

Environment variables:
- STORAGE_TYPE: json | postgres (unknown values fall back to json)
- STORAGE_URL: data directory (json) or host:port/dbname (postgres)
- STORAGE_USER / STORAGE_PASS: postgres credentials
- STORAGE_SSL: disable | require | verify-full | verify-ca
"""

from enum import Enum
from functools import lru_cache
from typing import Any
from urllib.parse import quote

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SSL_MODES = ("disable", "require", "verify-full", "verify-ca")


class BackendType(str, Enum):
    """Supported storage backends."""
    JSON = "json"
    POSTGRES = "postgres"


class StorageSettings(BaseSettings):
    """
    Storage backend configuration.

    Loads from STORAGE_* environment variables and the .env file.
    """

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    backend: BackendType = Field(
        default=BackendType.JSON,
        validation_alias="STORAGE_TYPE",
        description="Which storage backend to use"
    )
    url: str = Field(
        default="data",
        description="Data directory (json) or host:port/dbname (postgres)"
    )
    user: str = Field(
        default="",
        description="PostgreSQL user"
    )
    password: str = Field(
        default="",
        validation_alias="STORAGE_PASS",
        description="PostgreSQL password"
    )
    ssl_mode: str = Field(
        default="disable",
        validation_alias="STORAGE_SSL",
        description="PostgreSQL sslmode"
    )

    # Connection pool (postgres only)
    pool_min: int = Field(
        default=1,
        ge=1,
        description="Connections opened up front"
    )
    pool_max: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Upper bound on pooled connections"
    )

    @field_validator("backend", mode="before")
    @classmethod
    def fallback_backend(cls, v: Any) -> Any:
        """Unknown backend names fall back to the JSON store."""
        if isinstance(v, BackendType):
            return v
        if isinstance(v, str) and v.strip().lower() in {b.value for b in BackendType}:
            return v.strip().lower()
        return BackendType.JSON

    @field_validator("url", mode="before")
    @classmethod
    def fallback_url(cls, v: Any) -> Any:
        return v or "data"

    @field_validator("ssl_mode", mode="before")
    @classmethod
    def fallback_ssl_mode(cls, v: Any) -> Any:
        """Unknown SSL modes fall back to 'disable'."""
        if isinstance(v, str) and v in SSL_MODES:
            return v
        return "disable"

    @property
    def postgres_dsn(self) -> str:
        """Connection URL for the PostgreSQL backend."""
        credentials = quote(self.user, safe="")
        if self.password:
            credentials += ":" + quote(self.password, safe="")
        return f"postgres://{credentials}@{self.url}?sslmode={self.ssl_mode}"


@lru_cache()
def get_settings() -> StorageSettings:
    """
    Get storage settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return StorageSettings()
