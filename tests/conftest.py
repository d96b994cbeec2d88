"""
Shared fixtures for the Finora test suite.

No test touches Google Sheets or sleeps on the wall clock: stores are
in-memory and time comes from FakeClock.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal

import pytest

from finora.config import get_settings
from finora.models.transaction import RecurringFrequency, Transaction, TransactionType
from finora.recurring import Clock


class FakeClock(Clock):
    """Clock whose time only moves when a test (or sleep_until) moves it."""

    def __init__(self, now: datetime):
        self.current = now
        self.sleeps: list[datetime] = []

    def now(self) -> datetime:
        return self.current

    async def sleep_until(self, moment: datetime) -> None:
        self.sleeps.append(moment)
        if moment > self.current:
            self.current = moment
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Run every test against the in-memory backend with a fresh settings cache."""
    monkeypatch.setenv("APP_STORAGE_BACKEND", "memory")
    monkeypatch.delenv("RECURRING_TIMEZONE", raising=False)
    monkeypatch.delenv("RECURRING_MATCH_BY_TEMPLATE_ID", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 2, 5, 13, 0))


@pytest.fixture
def make_template():
    """Factory for recurring templates with sensible defaults."""

    def _make(**overrides) -> Transaction:
        fields = dict(
            user_id="U1",
            type=TransactionType.EXPENSE,
            amount=Decimal("500"),
            category="Bills",
            description="Rent",
            date=date(2024, 1, 5),
            is_recurring=True,
            recurring_frequency=RecurringFrequency.MONTHLY,
        )
        fields.update(overrides)
        return Transaction(**fields)

    return _make


@pytest.fixture
def make_occurrence():
    """Factory for concrete (non-recurring) transactions."""

    def _make(**overrides) -> Transaction:
        fields = dict(
            user_id="U1",
            type=TransactionType.EXPENSE,
            amount=Decimal("500"),
            category="Bills",
            description="Rent",
            date=date(2024, 1, 5),
            is_recurring=False,
        )
        fields.update(overrides)
        return Transaction(**fields)

    return _make
