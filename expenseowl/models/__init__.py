"""
Data Models Package

This package contains all Pydantic models used by the ExpenseOwl storage core.
Every record a store persists must conform to these schemas.
"""

from expenseowl.models.expense import (
    DEFAULT_CATEGORIES,
    DEFAULT_CURRENCY,
    DEFAULT_START_DATE,
    MAX_AMOUNT,
    SUPPORTED_CURRENCIES,
    Amount,
    Config,
    Expense,
    Interval,
    RecurringExpense,
    sanitize_string,
    validate_amount,
    validate_category,
)
from expenseowl.models.audit import (
    AuditEvent,
    AuditSeverity,
    StorageEventType,
)

__all__ = [
    # Record models
    "Config",
    "Expense",
    "Amount",
    "Interval",
    "RecurringExpense",
    # Constants
    "DEFAULT_CATEGORIES",
    "DEFAULT_CURRENCY",
    "DEFAULT_START_DATE",
    "MAX_AMOUNT",
    "SUPPORTED_CURRENCIES",
    # Sanitizing
    "sanitize_string",
    "validate_amount",
    "validate_category",
    # Audit models
    "AuditEvent",
    "AuditSeverity",
    "StorageEventType",
]
