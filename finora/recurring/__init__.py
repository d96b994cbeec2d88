"""Recurring transactions engine."""

from finora.recurring.decision import DecisionEngine
from finora.recurring.errors import (
    RecurringError,
    StoreTimeoutError,
    TemplateValidationError,
)
from finora.recurring.frequency import (
    due_from_anchor,
    due_from_last,
    parse_frequency,
)
from finora.recurring.materializer import Materializer
from finora.recurring.resolver import LastOccurrenceResolver
from finora.recurring.scheduler import (
    Clock,
    DailyTrigger,
    RecurringScheduler,
    SchedulerState,
    SystemClock,
)

__all__ = [
    "Clock",
    "DailyTrigger",
    "DecisionEngine",
    "LastOccurrenceResolver",
    "Materializer",
    "RecurringError",
    "RecurringScheduler",
    "SchedulerState",
    "StoreTimeoutError",
    "SystemClock",
    "TemplateValidationError",
    "due_from_anchor",
    "due_from_last",
    "parse_frequency",
]
