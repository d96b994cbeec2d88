"""
Frequency Rule

Pure functions deciding whether a recurring template is due. No I/O.

Two call shapes:
- due_from_anchor: first fire, no occurrence exists yet. Compares today
  with the template's own date.
- due_from_last: cadence check once an occurrence exists. Compares the
  number of whole days since that occurrence with a fixed threshold.

Both rules are calendar-naive on purpose:
- A monthly anchor on day 31 never fires in a 30-day month.
- Monthly cadence is a fixed 28 days, not a calendar month.
Do not "fix" either without a product decision.
"""

from datetime import date
from typing import Optional, Union

from finora.models.transaction import RecurringFrequency

FrequencyLike = Union[RecurringFrequency, str, None]

# Minimum whole days between occurrences
CADENCE_DAYS = {
    RecurringFrequency.DAILY: 1,
    RecurringFrequency.WEEKLY: 7,
    RecurringFrequency.MONTHLY: 28,
}


def parse_frequency(frequency: FrequencyLike) -> Optional[RecurringFrequency]:
    """Return the frequency member, or None when missing or unknown."""
    return RecurringFrequency.parse(frequency)


def due_from_anchor(anchor_date: date, frequency: FrequencyLike, today: date) -> bool:
    """
    Should a template with no prior occurrence fire today?

    daily   -> always
    weekly  -> today falls on the anchor's weekday
    monthly -> today has the anchor's day of month
    other   -> never
    """
    freq = parse_frequency(frequency)
    if freq == RecurringFrequency.DAILY:
        return True
    if freq == RecurringFrequency.WEEKLY:
        return today.weekday() == anchor_date.weekday()
    if freq == RecurringFrequency.MONTHLY:
        return today.day == anchor_date.day
    return False


def due_from_last(days_since_last: int, frequency: FrequencyLike) -> bool:
    """Has enough time passed since the last occurrence?"""
    freq = parse_frequency(frequency)
    if freq is None:
        return False
    return days_since_last >= CADENCE_DAYS[freq]


def days_between(earlier: date, later: date) -> int:
    """Whole days from `earlier` to `later` (negative if reversed)."""
    return (later - earlier).days
