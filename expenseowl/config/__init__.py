"""Configuration package."""

from expenseowl.config.settings import (
    SSL_MODES,
    BackendType,
    StorageSettings,
    get_settings,
)

__all__ = [
    "SSL_MODES",
    "BackendType",
    "StorageSettings",
    "get_settings",
]
