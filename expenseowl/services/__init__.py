"""Services package."""

from expenseowl.services.storage import (
    ExpenseStorageInterface,
    InvalidRecordError,
    JSONExpenseStorage,
    NotFoundError,
    PostgresExpenseStorage,
    StorageConnectionError,
    StorageError,
    initialize_storage,
)

__all__ = [
    "ExpenseStorageInterface",
    "InvalidRecordError",
    "JSONExpenseStorage",
    "NotFoundError",
    "PostgresExpenseStorage",
    "StorageConnectionError",
    "StorageError",
    "initialize_storage",
]
