"""Recurring rules: pure due-date arithmetic and the rule service."""

from fintrack.recurrence.calculator import (
    arrears,
    is_due_soon,
    is_expired,
    next_due,
    occurrences_due,
)
from fintrack.recurrence.service import RecurringRuleService

__all__ = [
    "RecurringRuleService",
    "arrears",
    "is_due_soon",
    "is_expired",
    "next_due",
    "occurrences_due",
]
