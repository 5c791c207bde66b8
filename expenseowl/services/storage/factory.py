"""
Storage backend selection.

The backend is picked once, at startup, from StorageSettings. Callers only
ever see the ExpenseStorageInterface that comes back.
"""

from typing import Callable, Optional

from expenseowl.config import BackendType, StorageSettings, get_settings
from expenseowl.services.storage.interface import ExpenseStorageInterface
from expenseowl.services.storage.json_store import JSONExpenseStorage
from expenseowl.services.storage.postgres_store import PostgresExpenseStorage


def _open_json(settings: StorageSettings) -> ExpenseStorageInterface:
    return JSONExpenseStorage(settings.url)


def _open_postgres(settings: StorageSettings) -> ExpenseStorageInterface:
    return PostgresExpenseStorage.connect(settings)


_OPENERS: dict[BackendType, Callable[[StorageSettings], ExpenseStorageInterface]] = {
    BackendType.JSON: _open_json,
    BackendType.POSTGRES: _open_postgres,
}


def initialize_storage(
    settings: Optional[StorageSettings] = None,
) -> ExpenseStorageInterface:
    """
    Open the configured storage backend.

    Args:
        settings: Storage settings. If None, loads them from the environment.

    Raises:
        StorageConnectionError: If the backend cannot be opened
    """
    settings = settings or get_settings()
    return _OPENERS[settings.backend](settings)
