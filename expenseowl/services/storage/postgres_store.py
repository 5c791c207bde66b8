"""
PostgreSQL Storage Implementation

DESIGN DECISION: Three tables keyed by string IDs:
- expenses: one row per expense, tags as JSON text
- recurring_expenses: one row per rule, tags as JSON text
- config: a single row with id 'default', categories as JSON text

Rule creation, update and removal run inside one transaction each: the rule
row and its dependent expense rows commit together or not at all. Generated
expenses are loaded with COPY rather than row-by-row inserts.

TRADEOFFS:
- Single-expense writes run in autocommit mode (one statement, already atomic)
- No application-level locking: concurrent edits of the same rule rely on
  PostgreSQL's isolation level
- The config row is created lazily on first read
"""

import csv
import io
import json
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional
from uuid import uuid4

import psycopg2
import psycopg2.errors
from psycopg2.pool import AbstractConnectionPool, ThreadedConnectionPool

from expenseowl.audit import AuditLogger
from expenseowl.config import StorageSettings
from expenseowl.models.audit import StorageEventType
from expenseowl.models.expense import (
    SUPPORTED_CURRENCIES,
    Config,
    Expense,
    RecurringExpense,
    validate_category,
)
from expenseowl.recurrence import expand
from expenseowl.services.storage.interface import (
    ExpenseStorageInterface,
    InvalidRecordError,
    NotFoundError,
    StorageConnectionError,
    StorageError,
    validate_record,
)


CREATE_EXPENSES_TABLE = """
    CREATE TABLE IF NOT EXISTS expenses (
        id VARCHAR(36) PRIMARY KEY,
        recurring_id VARCHAR(36),
        name VARCHAR(255) NOT NULL,
        category VARCHAR(255) NOT NULL,
        amount NUMERIC(10, 2) NOT NULL,
        currency VARCHAR(3) NOT NULL,
        date TIMESTAMPTZ NOT NULL,
        tags TEXT
    )
"""

CREATE_RECURRING_EXPENSES_TABLE = """
    CREATE TABLE IF NOT EXISTS recurring_expenses (
        id VARCHAR(36) PRIMARY KEY,
        name VARCHAR(255) NOT NULL,
        amount NUMERIC(10, 2) NOT NULL,
        currency VARCHAR(3) NOT NULL,
        category VARCHAR(255) NOT NULL,
        start_date TIMESTAMPTZ NOT NULL,
        interval VARCHAR(50) NOT NULL,
        occurrences INTEGER NOT NULL,
        tags TEXT
    )
"""

CREATE_CONFIG_TABLE = """
    CREATE TABLE IF NOT EXISTS config (
        id VARCHAR(255) PRIMARY KEY DEFAULT 'default',
        categories TEXT NOT NULL,
        currency VARCHAR(255) NOT NULL,
        start_date INTEGER NOT NULL
    )
"""

CREATE_RECURRING_ID_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_expenses_recurring_id ON expenses (recurring_id)
"""

EXPENSE_COLUMNS = "id, recurring_id, name, category, amount, currency, date, tags"
RULE_COLUMNS = "id, name, amount, currency, category, start_date, interval, occurrences, tags"

COPY_EXPENSES = f"COPY expenses ({EXPENSE_COLUMNS}) FROM STDIN WITH (FORMAT csv)"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _expense_from_row(row: tuple) -> Expense:
    expense_id, recurring_id, name, category, amount, currency, date, tags = row
    try:
        return Expense(
            id=expense_id,
            recurring_id=recurring_id or "",
            name=name,
            category=category,
            amount=amount,
            currency=currency,
            date=date,
            tags=json.loads(tags) if tags else [],
        )
    except ValueError as e:
        raise StorageError(f"failed to parse expense {expense_id}: {e}") from e


def _rule_from_row(row: tuple) -> RecurringExpense:
    rule_id, name, amount, currency, category, start_date, interval, occurrences, tags = row
    try:
        return RecurringExpense(
            id=rule_id,
            name=name,
            amount=amount,
            currency=currency,
            category=category,
            start_date=start_date,
            interval=interval,
            occurrences=occurrences,
            tags=json.loads(tags) if tags else [],
        )
    except ValueError as e:
        raise StorageError(f"failed to parse recurring expense {rule_id}: {e}") from e


class PostgresExpenseStorage(ExpenseStorageInterface):
    """
    PostgreSQL implementation of expense storage.

    Args:
        pool: psycopg2 connection pool shared by all callers
        clock: Returns the current time; defaults to UTC now
    """

    BACKEND = "postgres"

    def __init__(
        self,
        pool: AbstractConnectionPool,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._pool = pool
        self._clock = clock or _utcnow
        self._audit = AuditLogger(self.BACKEND)

        with self._failures("create_tables", "failed to create database tables"):
            with self._cursor() as cur:
                for statement in (
                    CREATE_EXPENSES_TABLE,
                    CREATE_RECURRING_EXPENSES_TABLE,
                    CREATE_CONFIG_TABLE,
                    CREATE_RECURRING_ID_INDEX,
                ):
                    cur.execute(statement)

        # Last known defaults, used to fill empty fields on writes
        config = self.get_config()
        self._default_currency = config.currency
        self._default_start_date = config.start_date

        self._audit.record(
            StorageEventType.STORE_INITIALIZED,
            "Connected to PostgreSQL database",
        )

    @classmethod
    def connect(
        cls,
        settings: StorageSettings,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> "PostgresExpenseStorage":
        """Open a connection pool from settings and initialize the schema."""
        try:
            pool = ThreadedConnectionPool(
                settings.pool_min,
                settings.pool_max,
                dsn=settings.postgres_dsn,
            )
        except psycopg2.Error as e:
            raise StorageConnectionError(
                f"failed to connect to PostgreSQL database: {e}"
            ) from e
        try:
            return cls(pool, clock=clock)
        except StorageError as e:
            pool.closeall()
            raise StorageConnectionError(str(e)) from e

    # -------------------------------------------------------------------------
    # Connection primitives
    # -------------------------------------------------------------------------

    @contextmanager
    def _cursor(self) -> Iterator:
        """Cursor on an autocommit connection; each statement commits alone."""
        conn = self._pool.getconn()
        try:
            conn.autocommit = True
            with conn.cursor() as cur:
                yield cur
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def _transaction(self) -> Iterator:
        """
        Cursor inside one transaction.

        Commits when the block completes, rolls back if it raises.
        """
        conn = self._pool.getconn()
        try:
            conn.autocommit = False
            with conn:
                with conn.cursor() as cur:
                    yield cur
        finally:
            self._pool.putconn(conn)

    @contextmanager
    def _failures(self, operation: str, message: str) -> Iterator[None]:
        """Translate driver errors into storage errors."""
        try:
            yield
        except psycopg2.errors.UniqueViolation as e:
            raise InvalidRecordError(f"{message}: duplicate ID") from e
        except psycopg2.Error as e:
            self._audit.storage_failed(operation, str(e))
            raise StorageError(f"{message}: {e}") from e

    def _copy_expenses(self, cur, expenses: list[Expense]) -> None:
        """Bulk-load expenses with COPY FROM STDIN."""
        if not expenses:
            return
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        for expense in expenses:
            writer.writerow([
                expense.id,
                expense.recurring_id,
                expense.name,
                expense.category,
                str(expense.amount),
                expense.currency,
                expense.date.isoformat(),
                json.dumps(expense.tags),
            ])
        buffer.seek(0)
        cur.copy_expert(COPY_EXPENSES, buffer)

    def _fill_defaults(self, expense: Expense) -> Expense:
        if not expense.id:
            expense.id = str(uuid4())
        if not expense.currency:
            expense.currency = self._default_currency
        if expense.date is None:
            expense.date = self._clock()
        return expense

    def close(self) -> None:
        self._pool.closeall()
        self._audit.record(StorageEventType.STORE_CLOSED, "Closed PostgreSQL pool")

    # -------------------------------------------------------------------------
    # Config
    # -------------------------------------------------------------------------

    def _save_config(self, config: Config) -> None:
        with self._failures("save_config", "failed to save config"):
            with self._cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO config (id, categories, currency, start_date)
                    VALUES ('default', %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        categories = EXCLUDED.categories,
                        currency = EXCLUDED.currency,
                        start_date = EXCLUDED.start_date
                    """,
                    (json.dumps(config.categories), config.currency, config.start_date),
                )
        self._default_currency = config.currency
        self._default_start_date = config.start_date

    def get_config(self) -> Config:
        with self._failures("get_config", "failed to get config from db"):
            with self._cursor() as cur:
                cur.execute(
                    "SELECT categories, currency, start_date FROM config WHERE id = 'default'"
                )
                row = cur.fetchone()

        if row is None:
            config = Config.default()
            self._save_config(config)
            self._audit.record(
                StorageEventType.CONFIG_CREATED,
                "Saved initial default config",
                entity_type="config",
                entity_id="default",
            )
            return config

        categories, currency, start_date = row
        try:
            config = Config(
                categories=json.loads(categories),
                currency=currency,
                start_date=start_date,
            )
        except ValueError as e:
            raise StorageError(f"failed to parse config from db: {e}") from e
        config.recurring_expenses = self.get_recurring_expenses()
        return config

    def get_categories(self) -> list[str]:
        return self.get_config().categories

    def update_categories(self, categories: list[str]) -> None:
        try:
            cleaned = [validate_category(category) for category in categories]
        except ValueError as e:
            raise InvalidRecordError(str(e)) from e

        config = self.get_config()
        config.categories = cleaned
        self._save_config(config)
        self._audit.config_updated("categories", cleaned)

    def get_currency(self) -> str:
        return self.get_config().currency

    def update_currency(self, currency: str) -> None:
        if currency not in SUPPORTED_CURRENCIES:
            raise InvalidRecordError(f"invalid currency: {currency}")

        config = self.get_config()
        config.currency = currency
        self._save_config(config)
        self._audit.config_updated("currency", currency)

    def get_start_date(self) -> int:
        return self.get_config().start_date

    def update_start_date(self, start_date: int) -> None:
        if start_date < 1 or start_date > 31:
            raise InvalidRecordError(f"invalid start date: {start_date}")

        config = self.get_config()
        config.start_date = start_date
        self._save_config(config)
        self._audit.config_updated("start_date", start_date)

    # -------------------------------------------------------------------------
    # Recurring expenses
    # -------------------------------------------------------------------------

    def get_recurring_expenses(self) -> list[RecurringExpense]:
        with self._failures("get_recurring_expenses", "failed to query recurring expenses"):
            with self._cursor() as cur:
                cur.execute(
                    f"SELECT {RULE_COLUMNS} FROM recurring_expenses ORDER BY start_date"
                )
                rows = cur.fetchall()
        return [_rule_from_row(row) for row in rows]

    def get_recurring_expense(self, rule_id: str) -> RecurringExpense:
        with self._failures("get_recurring_expense", "failed to get recurring expense"):
            with self._cursor() as cur:
                cur.execute(
                    f"SELECT {RULE_COLUMNS} FROM recurring_expenses WHERE id = %s",
                    (rule_id,),
                )
                row = cur.fetchone()
        if row is None:
            raise NotFoundError(f"recurring expense with ID {rule_id} not found")
        return _rule_from_row(row)

    def add_recurring_expense(self, rule: RecurringExpense) -> RecurringExpense:
        rule = validate_record(rule)
        if not rule.id:
            rule.id = str(uuid4())
        if not rule.currency:
            rule.currency = self._default_currency
        materialized = expand(rule, from_today=False, now=self._clock())

        with self._failures("add_recurring_expense", "failed to add recurring expense"):
            with self._transaction() as cur:
                cur.execute(
                    f"INSERT INTO recurring_expenses ({RULE_COLUMNS}) "
                    "VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)",
                    (
                        rule.id,
                        rule.name,
                        rule.amount,
                        rule.currency,
                        rule.category,
                        rule.start_date,
                        rule.interval.value,
                        rule.occurrences,
                        json.dumps(rule.tags),
                    ),
                )
                self._copy_expenses(cur, materialized)

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
        if not rule.currency:
            rule.currency = self._default_currency
        now = self._clock()

        with self._failures("update_recurring_expense", "failed to update recurring expense"):
            with self._transaction() as cur:
                cur.execute(
                    """
                    UPDATE recurring_expenses
                    SET name = %s, amount = %s, currency = %s, category = %s,
                        start_date = %s, interval = %s, occurrences = %s, tags = %s
                    WHERE id = %s
                    """,
                    (
                        rule.name,
                        rule.amount,
                        rule.currency,
                        rule.category,
                        rule.start_date,
                        rule.interval.value,
                        rule.occurrences,
                        json.dumps(rule.tags),
                        rule_id,
                    ),
                )
                if cur.rowcount == 0:
                    raise NotFoundError(f"recurring expense with ID {rule_id} not found")

                if update_all:
                    cur.execute("DELETE FROM expenses WHERE recurring_id = %s", (rule_id,))
                else:
                    cur.execute(
                        "DELETE FROM expenses WHERE recurring_id = %s AND date > %s",
                        (rule_id, now),
                    )
                removed = cur.rowcount

                materialized = expand(rule, from_today=not update_all, now=now)
                self._copy_expenses(cur, materialized)

        self._audit.rule_updated(
            rule_id,
            update_all=update_all,
            materialized=len(materialized),
            removed=removed,
        )

    def remove_recurring_expense(self, rule_id: str, remove_all: bool) -> None:
        with self._failures("remove_recurring_expense", "failed to remove recurring expense"):
            with self._transaction() as cur:
                cur.execute("DELETE FROM recurring_expenses WHERE id = %s", (rule_id,))
                if cur.rowcount == 0:
                    raise NotFoundError(f"recurring expense with ID {rule_id} not found")

                if remove_all:
                    cur.execute("DELETE FROM expenses WHERE recurring_id = %s", (rule_id,))
                else:
                    cur.execute(
                        "DELETE FROM expenses WHERE recurring_id = %s AND date > %s",
                        (rule_id, self._clock()),
                    )
                removed = cur.rowcount

        self._audit.rule_removed(rule_id, remove_all=remove_all, removed=removed)

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    def get_all_expenses(self) -> list[Expense]:
        with self._failures("get_all_expenses", "failed to query expenses"):
            with self._cursor() as cur:
                cur.execute(f"SELECT {EXPENSE_COLUMNS} FROM expenses ORDER BY date DESC")
                rows = cur.fetchall()
        return [_expense_from_row(row) for row in rows]

    def get_expense(self, expense_id: str) -> Expense:
        with self._failures("get_expense", "failed to get expense"):
            with self._cursor() as cur:
                cur.execute(
                    f"SELECT {EXPENSE_COLUMNS} FROM expenses WHERE id = %s",
                    (expense_id,),
                )
                row = cur.fetchone()
        if row is None:
            raise NotFoundError(f"expense with ID {expense_id} not found")
        return _expense_from_row(row)

    def add_expense(self, expense: Expense) -> Expense:
        expense = self._fill_defaults(validate_record(expense))

        with self._failures("add_expense", "failed to add expense"):
            with self._cursor() as cur:
                cur.execute(
                    f"INSERT INTO expenses ({EXPENSE_COLUMNS}) "
                    "VALUES (%s, %s, %s, %s, %s, %s, %s, %s)",
                    (
                        expense.id,
                        expense.recurring_id,
                        expense.name,
                        expense.category,
                        expense.amount,
                        expense.currency,
                        expense.date,
                        json.dumps(expense.tags),
                    ),
                )

        self._audit.expense_added(expense.id)
        return expense.model_copy(deep=True)

    def update_expense(self, expense_id: str, expense: Expense) -> None:
        expense = validate_record(expense)
        if not expense.currency:
            expense.currency = self._default_currency

        with self._failures("update_expense", "failed to update expense"):
            with self._cursor() as cur:
                cur.execute(
                    """
                    UPDATE expenses
                    SET recurring_id = %s, name = %s, category = %s, amount = %s,
                        currency = %s, date = COALESCE(%s, date), tags = %s
                    WHERE id = %s
                    """,
                    (
                        expense.recurring_id,
                        expense.name,
                        expense.category,
                        expense.amount,
                        expense.currency,
                        expense.date,
                        json.dumps(expense.tags),
                        expense_id,
                    ),
                )
                updated = cur.rowcount

        if updated == 0:
            raise NotFoundError(f"expense with ID {expense_id} not found")
        self._audit.expense_updated(expense_id)

    def remove_expense(self, expense_id: str) -> None:
        with self._failures("remove_expense", "failed to delete expense"):
            with self._cursor() as cur:
                cur.execute("DELETE FROM expenses WHERE id = %s", (expense_id,))
                removed = cur.rowcount

        if removed == 0:
            raise NotFoundError(f"expense with ID {expense_id} not found")
        self._audit.expense_removed(expense_id)

    def add_multiple_expenses(self, expenses: list[Expense]) -> None:
        if not expenses:
            return
        validated = [self._fill_defaults(validate_record(e)) for e in expenses]

        with self._failures("add_multiple_expenses", "failed to add expenses"):
            with self._transaction() as cur:
                self._copy_expenses(cur, validated)

        self._audit.expenses_added(len(validated))

    def remove_multiple_expenses(self, expense_ids: list[str]) -> None:
        if not expense_ids:
            return

        with self._failures("remove_multiple_expenses", "failed to delete multiple expenses"):
            with self._cursor() as cur:
                cur.execute("DELETE FROM expenses WHERE id = ANY(%s)", (list(expense_ids),))
                removed = cur.rowcount

        self._audit.expenses_removed(removed)
