"""
JSON File Storage Implementation

DESIGN DECISION: The file backend keeps two documents in one directory:
- expenses.json: {"expenses": [...]}
- config.json: the Config, including every recurring rule

One reader/writer lock per store instance guards both documents. Reads take
the shared side. Every mutation holds the exclusive side for its whole
read -> modify -> write cycle, so writes are serialized and a reader never
sees a half-applied change.

TRADEOFFS:
- Documents are overwritten in place. A crash between truncating and
  rewriting a file can corrupt it; this is a known limitation.
- Bulk operations have no rollback: a failed write is reported, but a
  write that already completed is not undone.
- Every operation reads the whole document (fine for personal use)
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, ValidationError, field_validator

from expenseowl.audit import AuditLogger
from expenseowl.models.audit import StorageEventType
from expenseowl.models.expense import (
    SUPPORTED_CURRENCIES,
    Config,
    Expense,
    RecurringExpense,
    validate_category,
)
from expenseowl.recurrence import expand, partition_instances
from expenseowl.services.storage.interface import (
    ExpenseStorageInterface,
    InvalidRecordError,
    NotFoundError,
    StorageConnectionError,
    StorageError,
    validate_record,
)
from expenseowl.services.storage.rwlock import ReadWriteLock


EXPENSES_FILENAME = "expenses.json"
CONFIG_FILENAME = "config.json"


class ExpensesDocument(BaseModel):
    """On-disk wrapper around the expense list."""

    expenses: list[Expense] = Field(default_factory=list)

    @field_validator("expenses", mode="before")
    @classmethod
    def null_expenses(cls, v):
        return [] if v is None else v


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JSONExpenseStorage(ExpenseStorageInterface):
    """
    JSON file implementation of expense storage.

    Args:
        base_dir: Directory holding both documents (created if missing)
        clock: Returns the current time; defaults to UTC now
    """

    BACKEND = "json"

    def __init__(
        self,
        base_dir: Union[str, Path],
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._base_dir = Path(base_dir)
        self._expenses_path = self._base_dir / EXPENSES_FILENAME
        self._config_path = self._base_dir / CONFIG_FILENAME
        self._lock = ReadWriteLock()
        self._clock = clock or _utcnow
        self._audit = AuditLogger(self.BACKEND)

        self._initialize_files()

        # Last known defaults, used to fill empty fields on writes
        config = self._read_config()
        self._default_currency = config.currency
        self._default_start_date = config.start_date

    def _initialize_files(self) -> None:
        """Create the data directory and any missing document."""
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            created_expenses = not self._expenses_path.exists()
            if created_expenses:
                self._write_expenses(ExpensesDocument())
            created_config = not self._config_path.exists()
            if created_config:
                self._write_config(Config.default())
        except (OSError, StorageError) as e:
            raise StorageConnectionError(
                f"failed to initialize storage directory {self._base_dir}: {e}"
            ) from e

        self._audit.record(
            StorageEventType.STORE_INITIALIZED,
            f"Opened JSON store at {self._base_dir}",
            created_expenses=created_expenses,
            created_config=created_config,
        )

    # -------------------------------------------------------------------------
    # Document primitives (caller holds the lock)
    # -------------------------------------------------------------------------

    def _read_expenses(self) -> ExpensesDocument:
        try:
            content = self._expenses_path.read_text(encoding="utf-8")
            return ExpensesDocument.model_validate_json(content)
        except (OSError, ValidationError) as e:
            self._audit.storage_failed("read_expenses", str(e))
            raise StorageError(f"failed to read storage file: {e}") from e

    def _write_expenses(self, data: ExpensesDocument) -> None:
        try:
            self._expenses_path.write_text(
                data.model_dump_json(indent=4, by_alias=True),
                encoding="utf-8",
            )
        except OSError as e:
            self._audit.storage_failed("write_expenses", str(e))
            raise StorageError(f"failed to write storage file: {e}") from e

    def _read_config(self) -> Config:
        try:
            content = self._config_path.read_text(encoding="utf-8")
            return Config.model_validate_json(content)
        except (OSError, ValidationError) as e:
            self._audit.storage_failed("read_config", str(e))
            raise StorageError(f"failed to read config file: {e}") from e

    def _write_config(self, config: Config) -> None:
        try:
            self._config_path.write_text(
                config.model_dump_json(indent=4, by_alias=True),
                encoding="utf-8",
            )
        except OSError as e:
            self._audit.storage_failed("write_config", str(e))
            raise StorageError(f"failed to write config file: {e}") from e

    @contextmanager
    def _editing_expenses(self) -> Iterator[ExpensesDocument]:
        """Exclusive read -> modify -> write of the expenses document."""
        with self._lock.write_locked():
            data = self._read_expenses()
            yield data
            self._write_expenses(data)

    @contextmanager
    def _editing_config(self) -> Iterator[Config]:
        """Exclusive read -> modify -> write of the config document."""
        with self._lock.write_locked():
            config = self._read_config()
            yield config
            self._write_config(config)

    def _fill_defaults(self, expense: Expense) -> Expense:
        if not expense.id:
            expense.id = str(uuid4())
        if not expense.currency:
            expense.currency = self._default_currency
        if expense.date is None:
            expense.date = self._clock()
        return expense

    def close(self) -> None:
        self._audit.record(StorageEventType.STORE_CLOSED, "Closed JSON store")

    # -------------------------------------------------------------------------
    # Config
    # -------------------------------------------------------------------------

    def get_config(self) -> Config:
        with self._lock.read_locked():
            return self._read_config()

    def get_categories(self) -> list[str]:
        return self.get_config().categories

    def update_categories(self, categories: list[str]) -> None:
        try:
            cleaned = [validate_category(category) for category in categories]
        except ValueError as e:
            raise InvalidRecordError(str(e)) from e

        with self._editing_config() as config:
            config.categories = cleaned
        self._audit.config_updated("categories", cleaned)

    def get_currency(self) -> str:
        return self.get_config().currency

    def update_currency(self, currency: str) -> None:
        if currency not in SUPPORTED_CURRENCIES:
            raise InvalidRecordError(f"invalid currency: {currency}")

        with self._lock.write_locked():
            config = self._read_config()
            config.currency = currency
            self._write_config(config)
            self._default_currency = currency
        self._audit.config_updated("currency", currency)

    def get_start_date(self) -> int:
        return self.get_config().start_date

    def update_start_date(self, start_date: int) -> None:
        if start_date < 1 or start_date > 31:
            raise InvalidRecordError(f"invalid start date: {start_date}")

        with self._lock.write_locked():
            config = self._read_config()
            config.start_date = start_date
            self._write_config(config)
            self._default_start_date = start_date
        self._audit.config_updated("start_date", start_date)

    # -------------------------------------------------------------------------
    # Recurring expenses
    # -------------------------------------------------------------------------

    def get_recurring_expenses(self) -> list[RecurringExpense]:
        return self.get_config().recurring_expenses

    def get_recurring_expense(self, rule_id: str) -> RecurringExpense:
        for rule in self.get_recurring_expenses():
            if rule.id == rule_id:
                return rule
        raise NotFoundError(f"recurring expense with ID {rule_id} not found")

    def add_recurring_expense(self, rule: RecurringExpense) -> RecurringExpense:
        rule = validate_record(rule)

        with self._lock.write_locked():
            config = self._read_config()
            if not rule.id:
                rule.id = str(uuid4())
            elif any(r.id == rule.id for r in config.recurring_expenses):
                raise InvalidRecordError(
                    f"recurring expense with ID {rule.id} already exists"
                )
            if not rule.currency:
                rule.currency = self._default_currency

            data = self._read_expenses()
            materialized = expand(rule, from_today=False, now=self._clock())
            data.expenses.extend(materialized)
            config.recurring_expenses.append(rule)

            self._write_expenses(data)
            self._write_config(config)

        self._audit.rule_added(rule.id, materialized=len(materialized))
        return rule.model_copy(deep=True)

    def update_recurring_expense(
        self,
        rule_id: str,
        rule: RecurringExpense,
        update_all: bool,
    ) -> None:
        rule = validate_record(rule)
        rule.id = rule_id

        with self._lock.write_locked():
            config = self._read_config()
            for index, existing in enumerate(config.recurring_expenses):
                if existing.id == rule_id:
                    break
            else:
                raise NotFoundError(f"recurring expense with ID {rule_id} not found")

            if not rule.currency:
                rule.currency = self._default_currency
            config.recurring_expenses[index] = rule

            data = self._read_expenses()
            now = self._clock()
            superseded = {
                expense.id
                for expense in partition_instances(
                    data.expenses, rule_id, update_all, now
                ).superseded
            }
            data.expenses = [e for e in data.expenses if e.id not in superseded]
            materialized = expand(rule, from_today=not update_all, now=now)
            data.expenses.extend(materialized)

            self._write_expenses(data)
            self._write_config(config)

        self._audit.rule_updated(
            rule_id,
            update_all=update_all,
            materialized=len(materialized),
            removed=len(superseded),
        )

    def remove_recurring_expense(self, rule_id: str, remove_all: bool) -> None:
        with self._lock.write_locked():
            config = self._read_config()
            remaining = [r for r in config.recurring_expenses if r.id != rule_id]
            if len(remaining) == len(config.recurring_expenses):
                raise NotFoundError(f"recurring expense with ID {rule_id} not found")
            config.recurring_expenses = remaining

            data = self._read_expenses()
            superseded = {
                expense.id
                for expense in partition_instances(
                    data.expenses, rule_id, remove_all, self._clock()
                ).superseded
            }
            data.expenses = [e for e in data.expenses if e.id not in superseded]

            self._write_expenses(data)
            self._write_config(config)

        self._audit.rule_removed(rule_id, remove_all=remove_all, removed=len(superseded))

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    def get_all_expenses(self) -> list[Expense]:
        with self._lock.read_locked():
            return self._read_expenses().expenses

    def get_expense(self, expense_id: str) -> Expense:
        with self._lock.read_locked():
            data = self._read_expenses()
        for expense in data.expenses:
            if expense.id == expense_id:
                return expense
        raise NotFoundError(f"expense with ID {expense_id} not found")

    def add_expense(self, expense: Expense) -> Expense:
        expense = validate_record(expense)

        with self._editing_expenses() as data:
            self._fill_defaults(expense)
            if any(e.id == expense.id for e in data.expenses):
                raise InvalidRecordError(f"expense with ID {expense.id} already exists")
            data.expenses.append(expense)

        self._audit.expense_added(expense.id)
        return expense.model_copy(deep=True)

    def update_expense(self, expense_id: str, expense: Expense) -> None:
        expense = validate_record(expense)
        expense.id = expense_id

        with self._editing_expenses() as data:
            if not expense.currency:
                expense.currency = self._default_currency
            for index, existing in enumerate(data.expenses):
                if existing.id == expense_id:
                    break
            else:
                raise NotFoundError(f"expense with ID {expense_id} not found")
            if expense.date is None:
                expense.date = existing.date
            data.expenses[index] = expense

        self._audit.expense_updated(expense_id)

    def remove_expense(self, expense_id: str) -> None:
        with self._editing_expenses() as data:
            remaining = [e for e in data.expenses if e.id != expense_id]
            if len(remaining) == len(data.expenses):
                raise NotFoundError(f"expense with ID {expense_id} not found")
            data.expenses = remaining

        self._audit.expense_removed(expense_id)

    def add_multiple_expenses(self, expenses: list[Expense]) -> None:
        if not expenses:
            return
        validated = [validate_record(expense) for expense in expenses]

        with self._editing_expenses() as data:
            known_ids = {e.id for e in data.expenses}
            for expense in validated:
                self._fill_defaults(expense)
                if expense.id in known_ids:
                    raise InvalidRecordError(
                        f"expense with ID {expense.id} already exists"
                    )
                known_ids.add(expense.id)
            data.expenses.extend(validated)

        self._audit.expenses_added(len(validated))

    def remove_multiple_expenses(self, expense_ids: list[str]) -> None:
        if not expense_ids:
            return
        to_remove = set(expense_ids)

        with self._lock.write_locked():
            data = self._read_expenses()
            remaining = [e for e in data.expenses if e.id not in to_remove]
            removed = len(data.expenses) - len(remaining)
            if removed:
                data.expenses = remaining
                self._write_expenses(data)

        self._audit.expenses_removed(removed)
