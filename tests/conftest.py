"""
Shared fixtures.

Test strategy:
1. Models and the recurrence engine are tested directly
2. The JSON store runs against a temporary directory
3. The PostgreSQL store runs against a scripted fake connection pool
   (no real database in tests)
4. Time is injected, never read from the wall clock, where results depend on it
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from expenseowl.models.expense import Expense, Interval, RecurringExpense
from expenseowl.services.storage import JSONExpenseStorage, PostgresExpenseStorage


FIXED_NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def json_store(tmp_path):
    store = JSONExpenseStorage(tmp_path / "data", clock=lambda: FIXED_NOW)
    yield store
    store.close()


def make_expense(**overrides) -> Expense:
    values = {
        "name": "Coffee",
        "category": "Food",
        "amount": Decimal("4.50"),
        "currency": "usd",
        "tags": ["morning"],
        "date": datetime(2025, 6, 1, 8, 30, tzinfo=timezone.utc),
    }
    values.update(overrides)
    return Expense(**values)


def make_rule(**overrides) -> RecurringExpense:
    values = {
        "name": "Rent",
        "category": "Rent",
        "amount": Decimal("1200.00"),
        "currency": "usd",
        "tags": ["home"],
        "start_date": datetime(2024, 1, 15, tzinfo=timezone.utc),
        "interval": Interval.MONTHLY,
        "occurrences": 3,
    }
    values.update(overrides)
    return RecurringExpense(**values)


# =============================================================================
# Fake psycopg2 pool
# =============================================================================

class FakeCursor:
    """Cursor that records statements and answers from a script."""

    def __init__(self, connection: "FakeConnection"):
        self._connection = connection
        self._rows: list = []
        self.rowcount = -1

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        statement = " ".join(sql.split())
        self._connection.pool.statements.append((statement, params))
        for fragment, result in self._connection.pool.responses:
            if fragment in statement:
                if isinstance(result, Exception):
                    raise result
                rows, rowcount = result
                self._rows = list(rows)
                self.rowcount = rowcount
                return
        self._rows = []
        self.rowcount = 1

    def fetchone(self):
        return self._rows[0] if self._rows else None

    def fetchall(self):
        return list(self._rows)

    def copy_expert(self, sql, file):
        pool = self._connection.pool
        if pool.copy_error is not None:
            raise pool.copy_error
        pool.copies.append((sql, file.read()))


class FakeConnection:
    """Connection whose context manager commits or rolls back like psycopg2."""

    def __init__(self, pool: "FakePool"):
        self.pool = pool
        self.autocommit = False

    def cursor(self):
        return FakeCursor(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.pool.commits += 1
        else:
            self.pool.rollbacks += 1
        return False


class FakePool:
    """
    Stand-in for psycopg2.pool.ThreadedConnectionPool.

    `responses` is a list of (sql fragment, (rows, rowcount) or exception);
    the first fragment found in a statement decides its result.
    """

    def __init__(self):
        self.statements: list = []
        self.responses: list = []
        self.copies: list = []
        self.copy_error = None
        self.commits = 0
        self.rollbacks = 0
        self.checked_out = 0
        self.closed = False

    def getconn(self):
        self.checked_out += 1
        return FakeConnection(self)

    def putconn(self, conn):
        self.checked_out -= 1

    def closeall(self):
        self.closed = True

    def executed(self, fragment: str) -> list:
        return [(sql, params) for sql, params in self.statements if fragment in sql]

    def reset(self):
        self.statements.clear()
        self.copies.clear()
        self.commits = 0
        self.rollbacks = 0


@pytest.fixture
def fake_pool() -> FakePool:
    return FakePool()


@pytest.fixture
def pg_store(fake_pool):
    store = PostgresExpenseStorage(fake_pool, clock=lambda: FIXED_NOW)
    fake_pool.reset()
    return store
