"""
Recurrence Calculator

Pure date arithmetic for recurring rules. Nothing here touches storage.

Month-end policy: monthly and yearly offsets are calendar-aware and clamp
to the last valid day of the target month, so 2024-01-31 + 1 month is
2024-02-29 and 2024-02-29 + 1 year is 2025-02-28. Occurrences are chained
from the previous one, so a clamped date becomes the next anchor.
"""

from datetime import date, timedelta
from typing import Iterator, Optional

from dateutil.relativedelta import relativedelta

from fintrack.models.recurrence import Frequency, RecurrenceRule

DEFAULT_DUE_SOON_WINDOW_DAYS = 7

_OFFSETS = {
    Frequency.DAILY: timedelta(days=1),
    Frequency.WEEKLY: timedelta(days=7),
    Frequency.MONTHLY: relativedelta(months=+1),
    Frequency.YEARLY: relativedelta(years=+1),
}


def next_due(frequency: Frequency, anchor: date) -> date:
    """The first occurrence strictly after `anchor`."""
    return anchor + _OFFSETS[Frequency(frequency)]


def arrears(frequency: Frequency, anchor: date, today: date) -> int:
    """Whole days the next occurrence is past due; zero if not yet due."""
    due = next_due(frequency, anchor)
    if due <= today:
        return (today - due).days
    return 0


def is_due_soon(
    due: date,
    today: date,
    window_days: int = DEFAULT_DUE_SOON_WINDOW_DAYS,
) -> bool:
    """
    True when `due` falls on or before the end of the lookahead window.

    Past-due dates count as due soon.
    """
    return due <= today + timedelta(days=window_days)


def is_expired(end_date: Optional[date], today: date) -> bool:
    return end_date is not None and end_date < today


def occurrences_due(rule: RecurrenceRule, today: date) -> Iterator[date]:
    """
    Occurrence dates of `rule` that are due on or before `today`.

    Yields nothing for rules that have not started or have expired.
    Occurrences after the rule's end date are never yielded.
    """
    if rule.start_date > today or is_expired(rule.end_date, today):
        return

    current = next_due(rule.frequency, rule.anchor)
    while current <= today:
        if rule.end_date is not None and current > rule.end_date:
            return
        yield current
        current = next_due(rule.frequency, current)
