"""
Abstract Storage Interface

DESIGN DECISION: We define one abstract interface for all storage operations.
This allows us to:
1. Pick the JSON file store or PostgreSQL once, at startup
2. Give both backends identical observable semantics
3. Test callers against either backend
4. Keep the recurrence rules independent of the substrate

Every operation is synchronous and either returns or raises one of the
typed errors below. Records handed back to callers are copies.
"""

from abc import ABC, abstractmethod
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from expenseowl.models.expense import Config, Expense, RecurringExpense


RecordT = TypeVar("RecordT", bound=BaseModel)


class ExpenseStorageInterface(ABC):
    """
    Abstract interface for expense storage operations.

    Any storage implementation (JSON files, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    def close(self) -> None:
        """Release files, connections and other substrate resources."""
        pass

    # -------------------------------------------------------------------------
    # Config
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_config(self) -> Config:
        """
        Get the full configuration, including all recurring rules.

        Raises:
            StorageError: If the configuration cannot be read
        """
        pass

    @abstractmethod
    def get_categories(self) -> list[str]:
        """Get the configured categories."""
        pass

    @abstractmethod
    def update_categories(self, categories: list[str]) -> None:
        """
        Replace the category list.

        Each category is sanitized first.

        Raises:
            InvalidRecordError: If a category is empty after sanitizing
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def get_currency(self) -> str:
        """Get the default currency code."""
        pass

    @abstractmethod
    def update_currency(self, currency: str) -> None:
        """
        Change the default currency.

        Raises:
            InvalidRecordError: If the currency is not supported
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def get_start_date(self) -> int:
        """Get the day of month on which a budgeting month starts."""
        pass

    @abstractmethod
    def update_start_date(self, start_date: int) -> None:
        """
        Change the month start day.

        Raises:
            InvalidRecordError: If the day is outside 1-31
            StorageError: If the write fails
        """
        pass

    # -------------------------------------------------------------------------
    # Recurring expenses
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_recurring_expenses(self) -> list[RecurringExpense]:
        """Get all recurring expense rules."""
        pass

    @abstractmethod
    def get_recurring_expense(self, rule_id: str) -> RecurringExpense:
        """
        Get a recurring expense rule by ID.

        Raises:
            NotFoundError: If no rule has this ID
        """
        pass

    @abstractmethod
    def add_recurring_expense(self, rule: RecurringExpense) -> RecurringExpense:
        """
        Persist a new rule and materialize all of its occurrences.

        An empty ID is generated; an empty currency gets the store default.

        Returns:
            The rule as stored

        Raises:
            InvalidRecordError: If the rule fails validation
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def update_recurring_expense(
        self,
        rule_id: str,
        rule: RecurringExpense,
        update_all: bool,
    ) -> None:
        """
        Replace a rule and regenerate its expenses.

        Args:
            rule_id: ID of the rule to replace (kept on the new rule)
            rule: New rule contents
            update_all: If True, every generated expense is regenerated.
                If False, expenses dated up to now are kept and only
                future ones are replaced.

        Raises:
            NotFoundError: If no rule has this ID
            InvalidRecordError: If the new rule fails validation
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def remove_recurring_expense(self, rule_id: str, remove_all: bool) -> None:
        """
        Delete a rule and its expenses.

        Args:
            rule_id: ID of the rule to delete
            remove_all: If True, every generated expense is deleted.
                If False, expenses dated up to now are kept and keep
                their back-reference.

        Raises:
            NotFoundError: If no rule has this ID
            StorageError: If the write fails
        """
        pass

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    @abstractmethod
    def get_all_expenses(self) -> list[Expense]:
        """Get every stored expense."""
        pass

    @abstractmethod
    def get_expense(self, expense_id: str) -> Expense:
        """
        Get an expense by ID.

        Raises:
            NotFoundError: If no expense has this ID
        """
        pass

    @abstractmethod
    def add_expense(self, expense: Expense) -> Expense:
        """
        Persist a new expense.

        Empty ID, currency and date are filled from the store defaults.

        Returns:
            The expense as stored

        Raises:
            InvalidRecordError: If the expense fails validation
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def update_expense(self, expense_id: str, expense: Expense) -> None:
        """
        Replace an expense, keeping its ID.

        Raises:
            NotFoundError: If no expense has this ID
            InvalidRecordError: If the expense fails validation
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def remove_expense(self, expense_id: str) -> None:
        """
        Delete an expense.

        Raises:
            NotFoundError: If no expense has this ID
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def add_multiple_expenses(self, expenses: list[Expense]) -> None:
        """
        Persist several expenses at once.

        An empty list is a no-op.
        """
        pass

    @abstractmethod
    def remove_multiple_expenses(self, expense_ids: list[str]) -> None:
        """
        Delete several expenses at once.

        Unknown IDs are ignored. An empty list is a no-op.
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class InvalidRecordError(StorageError):
    """Record rejected by validation before anything was written."""
    pass


class StorageConnectionError(StorageError):
    """Could not open or connect to the storage backend."""
    pass


def validate_record(record: RecordT) -> RecordT:
    """
    Run model validation again and return a fresh, validated copy.

    Records can reach a store after being copied or mutated without
    validation, so the stores check them once more before writing.

    Raises:
        InvalidRecordError: If the record is not valid
    """
    try:
        return type(record).model_validate(record.model_dump())
    except ValidationError as e:
        messages = "; ".join(error["msg"] for error in e.errors())
        raise InvalidRecordError(messages) from e
