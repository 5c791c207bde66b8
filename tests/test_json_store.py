"""
Tests for the JSON file store.
"""

import json
import threading
import pytest
from datetime import timedelta
from decimal import Decimal

from expenseowl.models import Interval
from expenseowl.services.storage import (
    InvalidRecordError,
    JSONExpenseStorage,
    NotFoundError,
    StorageError,
)
from expenseowl.services.storage.json_store import CONFIG_FILENAME, EXPENSES_FILENAME

from conftest import FIXED_NOW, make_expense, make_rule


class TestInitialization:
    """Tests for opening a store."""

    def test_creates_documents(self, tmp_path):
        """Test that a new directory gets both documents."""
        base_dir = tmp_path / "nested" / "data"
        JSONExpenseStorage(base_dir)

        expenses = json.loads((base_dir / EXPENSES_FILENAME).read_text())
        config = json.loads((base_dir / CONFIG_FILENAME).read_text())
        assert expenses == {"expenses": []}
        assert config["currency"] == "usd"
        assert config["startDate"] == 1
        assert config["recurringExpenses"] == []
        assert len(config["categories"]) == 10

    def test_keeps_existing_documents(self, json_store, tmp_path):
        """Test that reopening a store does not reset its data."""
        json_store.add_expense(make_expense())
        reopened = JSONExpenseStorage(tmp_path / "data")
        assert len(reopened.get_all_expenses()) == 1

    def test_reopen_uses_stored_currency(self, json_store, tmp_path):
        """Test that defaults come from the stored config on open."""
        json_store.update_currency("eur")
        reopened = JSONExpenseStorage(tmp_path / "data", clock=lambda: FIXED_NOW)

        added = reopened.add_expense(make_expense(currency=""))
        assert added.currency == "eur"

    def test_reads_documents_with_null_lists(self, tmp_path):
        """Test loading documents that store empty lists as null."""
        base_dir = tmp_path / "legacy"
        base_dir.mkdir()
        (base_dir / EXPENSES_FILENAME).write_text(json.dumps({
            "expenses": [{
                "id": "e1",
                "recurringID": "",
                "name": "Bus",
                "tags": None,
                "category": "Travel",
                "amount": 2.75,
                "currency": "usd",
                "date": "2024-03-01T10:00:00Z",
            }],
        }))
        (base_dir / CONFIG_FILENAME).write_text(json.dumps({
            "categories": ["Travel"],
            "currency": "gbp",
            "startDate": 1,
            "recurringExpenses": None,
        }))

        store = JSONExpenseStorage(base_dir)
        expense = store.get_expense("e1")
        assert expense.tags == []
        assert float(expense.amount) == 2.75
        assert store.get_recurring_expenses() == []
        assert store.get_currency() == "gbp"

    def test_malformed_document(self, json_store, tmp_path):
        """Test that unreadable documents raise StorageError."""
        (tmp_path / "data" / EXPENSES_FILENAME).write_text("{not json")
        with pytest.raises(StorageError):
            json_store.get_all_expenses()


class TestExpenses:
    """Tests for single expense operations."""

    def test_add_fills_defaults(self, json_store):
        """Test that ID, currency and date are filled when missing."""
        added = json_store.add_expense(make_expense(currency="", date=None))

        assert added.id
        assert added.currency == "usd"
        assert added.date == FIXED_NOW
        assert json_store.get_expense(added.id) == added

    def test_add_keeps_given_values(self, json_store):
        """Test that provided values are stored unchanged."""
        expense = make_expense(id="given-id", currency="eur")
        added = json_store.add_expense(expense)

        assert added.id == "given-id"
        assert added.currency == "eur"
        assert added.date == expense.date

    def test_add_does_not_modify_argument(self, json_store):
        """Test that the caller's record is left alone."""
        expense = make_expense()
        json_store.add_expense(expense)
        assert expense.id == ""

    def test_returned_records_are_copies(self, json_store):
        """Test that changing a returned record does not change the store."""
        added = json_store.add_expense(make_expense())
        added.name = "Changed"
        fetched = json_store.get_expense(added.id)
        fetched.tags.append("changed")

        assert json_store.get_expense(added.id).name == "Coffee"
        assert json_store.get_expense(added.id).tags == ["morning"]

    def test_add_rejects_invalid(self, json_store):
        """Test that records made without validation are rejected."""
        broken = make_expense().model_copy(update={"amount": Decimal("0")})
        with pytest.raises(InvalidRecordError):
            json_store.add_expense(broken)
        assert json_store.get_all_expenses() == []

    def test_add_rejects_duplicate_id(self, json_store):
        """Test that IDs must be unique."""
        json_store.add_expense(make_expense(id="dup"))
        with pytest.raises(InvalidRecordError, match="already exists"):
            json_store.add_expense(make_expense(id="dup"))
        assert len(json_store.get_all_expenses()) == 1

    def test_get_missing(self, json_store):
        """Test fetching an unknown expense."""
        with pytest.raises(NotFoundError):
            json_store.get_expense("missing")

    def test_update(self, json_store):
        """Test replacing an expense."""
        added = json_store.add_expense(make_expense())
        json_store.update_expense(added.id, make_expense(name="Tea", id="ignored"))

        updated = json_store.get_expense(added.id)
        assert updated.name == "Tea"
        assert updated.id == added.id
        assert len(json_store.get_all_expenses()) == 1

    def test_update_without_date_keeps_date(self, json_store):
        """Test that an update with no date keeps the stored one."""
        added = json_store.add_expense(make_expense())
        json_store.update_expense(added.id, make_expense(name="Tea", date=None))
        assert json_store.get_expense(added.id).date == added.date

    def test_update_missing(self, json_store):
        """Test updating an unknown expense."""
        with pytest.raises(NotFoundError):
            json_store.update_expense("missing", make_expense())

    def test_remove(self, json_store):
        """Test removing an expense."""
        added = json_store.add_expense(make_expense())
        json_store.remove_expense(added.id)
        assert json_store.get_all_expenses() == []

    def test_remove_missing(self, json_store):
        """Test removing an unknown expense."""
        json_store.add_expense(make_expense())
        with pytest.raises(NotFoundError):
            json_store.remove_expense("missing")
        assert len(json_store.get_all_expenses()) == 1

    def test_insertion_order(self, json_store):
        """Test that expenses come back in the order they were added."""
        for name in ["First", "Second", "Third"]:
            json_store.add_expense(make_expense(name=name))
        assert [e.name for e in json_store.get_all_expenses()] == ["First", "Second", "Third"]

    def test_on_disk_format(self, json_store, tmp_path):
        """Test the serialized key names."""
        json_store.add_expense(make_expense(id="e1"))
        raw = json.loads((tmp_path / "data" / EXPENSES_FILENAME).read_text())
        stored = raw["expenses"][0]
        assert stored["id"] == "e1"
        assert "recurringID" in stored
        assert stored["tags"] == ["morning"]
        assert stored["amount"] == 4.5

    @pytest.mark.parametrize("amount", ["4.50", "-1234.56", "0.01", "99999999.99"])
    def test_amount_round_trip(self, json_store, tmp_path, amount):
        """Test that stored amounts read back exactly, also after reopening."""
        added = json_store.add_expense(make_expense(amount=Decimal(amount)))
        assert json_store.get_expense(added.id).amount == Decimal(amount)

        reopened = JSONExpenseStorage(tmp_path / "data")
        assert reopened.get_expense(added.id).amount == Decimal(amount)

    def test_add_rejects_sub_cent_amount(self, json_store):
        """Test that amounts with more than two decimals are not stored."""
        tiny = make_expense().model_copy(update={"amount": Decimal("0.001")})
        with pytest.raises(InvalidRecordError, match="decimal places"):
            json_store.add_expense(tiny)
        assert json_store.get_all_expenses() == []


class TestBulkExpenses:
    """Tests for bulk expense operations."""

    def test_add_multiple(self, json_store):
        """Test adding several expenses at once."""
        json_store.add_multiple_expenses([
            make_expense(name="One"),
            make_expense(name="Two", currency=""),
        ])
        expenses = json_store.get_all_expenses()
        assert [e.name for e in expenses] == ["One", "Two"]
        assert all(e.id for e in expenses)
        assert expenses[1].currency == "usd"

    def test_add_multiple_empty(self, json_store):
        """Test that an empty batch is a no-op."""
        json_store.add_multiple_expenses([])
        assert json_store.get_all_expenses() == []

    def test_add_multiple_invalid_adds_nothing(self, json_store):
        """Test that one invalid record rejects the batch."""
        broken = make_expense().model_copy(update={"name": ""})
        with pytest.raises(InvalidRecordError):
            json_store.add_multiple_expenses([make_expense(), broken])
        assert json_store.get_all_expenses() == []

    def test_add_multiple_duplicate_ids(self, json_store):
        """Test that duplicate IDs within a batch are rejected."""
        with pytest.raises(InvalidRecordError):
            json_store.add_multiple_expenses([make_expense(id="a"), make_expense(id="a")])
        assert json_store.get_all_expenses() == []

    def test_remove_multiple(self, json_store):
        """Test removing several expenses, ignoring unknown IDs."""
        json_store.add_multiple_expenses([
            make_expense(id="a"),
            make_expense(id="b"),
            make_expense(id="c"),
        ])
        json_store.remove_multiple_expenses(["a", "c", "missing"])
        assert [e.id for e in json_store.get_all_expenses()] == ["b"]

    def test_remove_multiple_nothing_matches(self, json_store, tmp_path):
        """Test that the document is not rewritten when nothing matches."""
        json_store.add_expense(make_expense(id="a"))
        path = tmp_path / "data" / EXPENSES_FILENAME
        before = path.read_bytes()

        json_store.remove_multiple_expenses(["missing"])
        json_store.remove_multiple_expenses([])
        assert path.read_bytes() == before


class TestConfig:
    """Tests for configuration operations."""

    def test_defaults(self, json_store):
        """Test the configuration of a new store."""
        assert json_store.get_currency() == "usd"
        assert json_store.get_start_date() == 1
        assert "Food" in json_store.get_categories()

    def test_update_categories(self, json_store):
        """Test that categories are sanitized and stored."""
        json_store.update_categories(["  Pets ", "Kids@School"])
        assert json_store.get_categories() == ["Pets", "Kids School"]

    def test_update_categories_rejects_empty_name(self, json_store):
        """Test that an empty category rejects the whole list."""
        with pytest.raises(InvalidRecordError):
            json_store.update_categories(["Pets", "???"])
        assert len(json_store.get_categories()) == 10

    def test_update_currency(self, json_store):
        """Test that the currency becomes the default for new records."""
        json_store.update_currency("jpy")
        assert json_store.get_currency() == "jpy"
        assert json_store.add_expense(make_expense(currency="")).currency == "jpy"

    def test_update_currency_rejects_unsupported(self, json_store):
        """Test that unsupported currencies leave the config unchanged."""
        with pytest.raises(InvalidRecordError, match="invalid currency"):
            json_store.update_currency("xyz")
        assert json_store.get_currency() == "usd"

    @pytest.mark.parametrize("day", [1, 15, 31])
    def test_update_start_date(self, json_store, day):
        """Test valid start days."""
        json_store.update_start_date(day)
        assert json_store.get_start_date() == day

    @pytest.mark.parametrize("day", [0, 32])
    def test_update_start_date_out_of_range(self, json_store, day):
        """Test that out of range start days are rejected."""
        with pytest.raises(InvalidRecordError, match="invalid start date"):
            json_store.update_start_date(day)
        assert json_store.get_start_date() == 1


class TestRecurringExpenses:
    """Tests for recurring expense rules."""

    def test_add_materializes(self, json_store):
        """Test that adding a rule stores it and its expenses."""
        rule = json_store.add_recurring_expense(make_rule(currency=""))

        assert rule.id
        assert rule.currency == "usd"
        assert json_store.get_recurring_expense(rule.id) == rule

        expenses = json_store.get_all_expenses()
        assert len(expenses) == 3
        assert all(e.recurring_id == rule.id for e in expenses)
        assert all(e.currency == "usd" for e in expenses)

    def test_add_rejects_duplicate_id(self, json_store):
        """Test that rule IDs must be unique."""
        json_store.add_recurring_expense(make_rule(id="r1"))
        with pytest.raises(InvalidRecordError):
            json_store.add_recurring_expense(make_rule(id="r1"))
        assert len(json_store.get_all_expenses()) == 3

    def test_get_missing(self, json_store):
        """Test fetching an unknown rule."""
        with pytest.raises(NotFoundError):
            json_store.get_recurring_expense("missing")

    def test_update_future_only(self, json_store):
        """Test that a future-only edit keeps past expenses."""
        rule = json_store.add_recurring_expense(make_rule(
            interval=Interval.DAILY,
            occurrences=5,
            start_date=FIXED_NOW - timedelta(days=2),
        ))
        past_ids = {e.id for e in json_store.get_all_expenses() if e.date <= FIXED_NOW}

        updated = make_rule(
            name="Rent v2",
            interval=Interval.DAILY,
            occurrences=5,
            start_date=FIXED_NOW - timedelta(days=2),
        )
        json_store.update_recurring_expense(rule.id, updated, update_all=False)

        expenses = json_store.get_all_expenses()
        kept = [e for e in expenses if e.id in past_ids]
        added = [e for e in expenses if e.id not in past_ids]
        assert len(kept) == 3
        assert all(e.name == "Rent" for e in kept)
        assert len(added) == 2
        assert all(e.name == "Rent v2" and e.date > FIXED_NOW for e in added)
        assert json_store.get_recurring_expense(rule.id).name == "Rent v2"

    def test_update_all(self, json_store):
        """Test that a full edit regenerates every expense."""
        rule = json_store.add_recurring_expense(make_rule())
        json_store.update_recurring_expense(
            rule.id, make_rule(amount=Decimal("1300"), occurrences=4), update_all=True
        )

        expenses = json_store.get_all_expenses()
        assert len(expenses) == 4
        assert all(e.amount == Decimal("1300") for e in expenses)
        assert all(e.recurring_id == rule.id for e in expenses)

    def test_update_keeps_other_expenses(self, json_store):
        """Test that manual and other rules' expenses are untouched."""
        manual = json_store.add_expense(make_expense())
        rule = json_store.add_recurring_expense(make_rule())
        other = json_store.add_recurring_expense(make_rule(name="Gym"))

        json_store.update_recurring_expense(rule.id, make_rule(occurrences=2), update_all=True)

        expenses = json_store.get_all_expenses()
        assert manual.id in {e.id for e in expenses}
        assert len([e for e in expenses if e.recurring_id == other.id]) == 3
        assert len([e for e in expenses if e.recurring_id == rule.id]) == 2

    def test_update_missing(self, json_store):
        """Test updating an unknown rule changes nothing."""
        with pytest.raises(NotFoundError):
            json_store.update_recurring_expense("missing", make_rule(), update_all=True)
        assert json_store.get_all_expenses() == []

    def test_remove_all(self, json_store):
        """Test removing a rule with all its expenses."""
        rule = json_store.add_recurring_expense(make_rule())
        json_store.remove_recurring_expense(rule.id, remove_all=True)

        assert json_store.get_recurring_expenses() == []
        assert json_store.get_all_expenses() == []

    def test_remove_future_only(self, json_store):
        """Test that removing a rule can keep past expenses."""
        rule = json_store.add_recurring_expense(make_rule(
            interval=Interval.WEEKLY,
            occurrences=4,
            start_date=FIXED_NOW - timedelta(weeks=1),
        ))
        json_store.remove_recurring_expense(rule.id, remove_all=False)

        expenses = json_store.get_all_expenses()
        assert json_store.get_recurring_expenses() == []
        assert len(expenses) == 2
        assert all(e.date <= FIXED_NOW for e in expenses)

    def test_remove_missing(self, json_store):
        """Test removing an unknown rule."""
        with pytest.raises(NotFoundError):
            json_store.remove_recurring_expense("missing", remove_all=True)


class TestConcurrency:
    """Tests for concurrent access."""

    def test_concurrent_adds(self, json_store):
        """Test that parallel writers never lose an expense."""
        errors = []

        def worker(n):
            try:
                for i in range(10):
                    json_store.add_expense(make_expense(name=f"Worker {n} item {i}"))
            except Exception as e:  # surfaced through the assertion below
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        expenses = json_store.get_all_expenses()
        assert len(expenses) == 80
        assert len({e.id for e in expenses}) == 80

    def test_concurrent_currency_updates_keep_default_in_sync(self, json_store):
        """Test that the default used for new expenses matches the stored currency."""
        currencies = ["eur", "gbp", "jpy", "chf"]

        def worker(currency):
            for _ in range(10):
                json_store.update_currency(currency)

        threads = [threading.Thread(target=worker, args=(c,)) for c in currencies]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        stored = json_store.get_currency()
        assert stored in currencies
        assert json_store.add_expense(make_expense(currency="")).currency == stored

    def test_rules_expenses_and_config_interleave(self, json_store):
        """Test that rule, expense and config writers never undo each other."""
        rule_ids = [f"rule-{n}" for n in range(5)]
        errors = []

        def add_rules():
            for rule_id in rule_ids:
                json_store.add_recurring_expense(make_rule(id=rule_id))

        def add_expenses():
            for i in range(20):
                json_store.add_expense(make_expense(name=f"Manual {i}"))

        def update_config():
            for currency in ["eur", "gbp", "jpy"]:
                json_store.update_currency(currency)
                json_store.update_categories(["Rent", "Food", currency])

        def run(target):
            try:
                target()
            except Exception as e:  # surfaced through the assertion below
                errors.append(e)

        threads = [
            threading.Thread(target=run, args=(target,))
            for target in (add_rules, add_expenses, update_config)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        config = json_store.get_config()
        expenses = json_store.get_all_expenses()

        assert [rule.id for rule in config.recurring_expenses] == rule_ids
        for rule_id in rule_ids:
            assert len([e for e in expenses if e.recurring_id == rule_id]) == 3
        assert len([e for e in expenses if not e.recurring_id]) == 20
        assert len(expenses) == 35
        assert config.currency == "jpy"
        assert config.categories == ["Rent", "Food", "jpy"]
