"""
Recurrence Engine

Expands a recurring expense rule into concrete expenses and decides which
already materialized expenses a rule edit may replace.

DESIGN DECISION: Occurrence k is always computed from the rule's start date
(start + k intervals) instead of by stepping from the previous occurrence.
A monthly rule starting on the 31st therefore lands on the last day of
shorter months and returns to the 31st afterwards, without drifting.

Everything here is pure apart from reading the clock when `now` is omitted.
The stores are the only callers.
"""

from datetime import datetime, timezone
from typing import NamedTuple, Optional
from uuid import uuid4

import structlog
from dateutil.relativedelta import relativedelta

from expenseowl.models.audit import StorageEventType
from expenseowl.models.expense import Expense, Interval, RecurringExpense


logger = structlog.get_logger(__name__)

_INTERVAL_UNITS = {
    Interval.DAILY: "days",
    Interval.WEEKLY: "weeks",
    Interval.MONTHLY: "months",
    Interval.YEARLY: "years",
}


class RulePartition(NamedTuple):
    """Materialized expenses of one rule, split for an edit or removal."""
    kept: list[Expense]
    superseded: list[Expense]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def occurrence_date(start: datetime, interval: Interval, index: int) -> Optional[datetime]:
    """
    Date of the occurrence `index` intervals after `start`.

    Returns None for an interval the engine does not know.
    """
    try:
        unit = _INTERVAL_UNITS[Interval(interval)]
    except ValueError:
        return None
    return start + relativedelta(**{unit: index})


def expand(
    rule: RecurringExpense,
    from_today: bool = False,
    now: Optional[datetime] = None,
) -> list[Expense]:
    """
    Materialize a recurring rule into expenses.

    Args:
        rule: The rule to expand. Its ID must already be assigned.
        from_today: If True, skip occurrences dated at or before `now`;
            each skipped occurrence uses up one of the rule's occurrences.
        now: Reference time, defaults to the current UTC time.

    Returns:
        Expenses in date order, each with a fresh ID and the rule ID as
        back-reference. If the rule's interval is unknown, expansion stops
        and whatever was produced so far is returned.
    """
    now = now or _utcnow()
    expenses: list[Expense] = []

    index = 0
    remaining = rule.occurrences
    if from_today:
        while remaining > 0:
            current = occurrence_date(rule.start_date, rule.interval, index)
            if current is None:
                return _halt(rule, expenses)
            if current > now:
                break
            index += 1
            remaining -= 1

    for offset in range(remaining):
        current = occurrence_date(rule.start_date, rule.interval, index + offset)
        if current is None:
            return _halt(rule, expenses)
        expenses.append(
            Expense(
                id=str(uuid4()),
                recurring_id=rule.id,
                name=rule.name,
                category=rule.category,
                amount=rule.amount,
                currency=rule.currency,
                tags=list(rule.tags),
                date=current,
            )
        )
    return expenses


def _halt(rule: RecurringExpense, produced: list[Expense]) -> list[Expense]:
    # Only reachable for rules that skipped model validation
    logger.warning(
        StorageEventType.EXPANSION_HALTED.value,
        rule_id=rule.id,
        interval=str(rule.interval),
        produced=len(produced),
    )
    return produced


def partition_instances(
    expenses: list[Expense],
    rule_id: str,
    everything: bool,
    now: Optional[datetime] = None,
) -> RulePartition:
    """
    Split the expenses generated by `rule_id` into kept and superseded.

    Expenses dated after `now` are superseded. With `everything` set,
    all of the rule's expenses are superseded. Expenses belonging to
    other rules, or entered manually, appear in neither list.
    """
    now = now or _utcnow()
    kept: list[Expense] = []
    superseded: list[Expense] = []
    for expense in expenses:
        if expense.recurring_id != rule_id:
            continue
        if everything or (expense.date is not None and expense.date > now):
            superseded.append(expense)
        else:
            kept.append(expense)
    return RulePartition(kept=kept, superseded=superseded)
