"""
Storage Services Package

Provides the abstract storage interface and its two implementations:
JSON files for single-user setups and PostgreSQL for everything else.
"""

from expenseowl.services.storage.interface import (
    ExpenseStorageInterface,
    InvalidRecordError,
    NotFoundError,
    StorageConnectionError,
    StorageError,
    validate_record,
)
from expenseowl.services.storage.json_store import JSONExpenseStorage
from expenseowl.services.storage.postgres_store import PostgresExpenseStorage
from expenseowl.services.storage.factory import initialize_storage

__all__ = [
    # Interface
    "ExpenseStorageInterface",
    "validate_record",
    # Exceptions
    "InvalidRecordError",
    "NotFoundError",
    "StorageConnectionError",
    "StorageError",
    # Implementations
    "JSONExpenseStorage",
    "PostgresExpenseStorage",
    "initialize_storage",
]
