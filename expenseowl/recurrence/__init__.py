"""Recurrence engine package."""

from expenseowl.recurrence.engine import (
    RulePartition,
    expand,
    occurrence_date,
    partition_instances,
)

__all__ = [
    "RulePartition",
    "expand",
    "occurrence_date",
    "partition_instances",
]
