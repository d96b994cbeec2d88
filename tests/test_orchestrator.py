"""
Integration tests for the materialization pass.

Every test runs the full flow (validate -> decide -> materialize) against
in-memory stores; failures are injected by subclassing the store.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from finora.audit import AuditLogger
from finora.models.audit import AuditEventType
from finora.models.transaction import OutcomeStatus, RecurringFrequency, TransactionType
from finora.orchestrator import RecurringMaterializationFlow, create_app_components
from finora.recurring import LastOccurrenceResolver, SchedulerState
from finora.services.storage import (
    InMemoryAuditStorage,
    InMemoryTransactionStorage,
    StorageError,
)

FEB_5 = date(2024, 2, 5)


class SlowCreateStorage(InMemoryTransactionStorage):
    """Yields to the loop between deciding and writing an occurrence."""

    async def create_occurrence(self, *args, **kwargs):
        await asyncio.sleep(0.01)
        return await super().create_occurrence(*args, **kwargs)


class FailingLookupStorage(InMemoryTransactionStorage):
    """Fails the last-occurrence lookup for one user."""

    def __init__(self, transactions, failing_user):
        super().__init__(transactions)
        self.failing_user = failing_user

    async def find_latest_matching_occurrence(self, user_id, *args, **kwargs):
        if user_id == self.failing_user:
            raise StorageError("lookup failed")
        return await super().find_latest_matching_occurrence(user_id, *args, **kwargs)


class HangingLookupStorage(InMemoryTransactionStorage):
    async def find_latest_matching_occurrence(self, *args, **kwargs):
        await asyncio.sleep(5)
        return None


class BrokenListStorage(InMemoryTransactionStorage):
    async def list_active_recurring_templates(self):
        raise StorageError("spreadsheet unavailable")


class LeakyListStorage(InMemoryTransactionStorage):
    """Returns deleted records as templates, like a misbehaving backend."""

    async def list_active_recurring_templates(self):
        return self.transactions


def _flow(store, clock, **kwargs):
    return RecurringMaterializationFlow(storage=store, clock=clock, **kwargs)


def _occurrences(store):
    return [tx for tx in store.transactions if not tx.is_recurring]


class TestMaterializationPass:
    """End-to-end behaviour of one pass."""

    def test_monthly_rent_first_fire(self, clock, make_template):
        """A monthly template anchored on Jan 5 fires on Feb 5."""
        template = make_template()
        store = InMemoryTransactionStorage([template])

        summary = asyncio.run(_flow(store, clock).run(FEB_5))

        assert summary.created_count == 1
        assert summary.error_count == 0
        occurrences = _occurrences(store)
        assert len(occurrences) == 1
        occurrence = occurrences[0]
        assert occurrence.user_id == "U1"
        assert occurrence.type == TransactionType.EXPENSE
        assert occurrence.amount == Decimal("500")
        assert occurrence.category == "Bills"
        assert occurrence.description == "Rent"
        assert occurrence.date == FEB_5
        assert occurrence.is_recurring is False
        assert summary.created_occurrence_ids == [occurrence.id]

    def test_defaults_to_clock_date(self, clock, make_template):
        store = InMemoryTransactionStorage([make_template()])
        summary = asyncio.run(_flow(store, clock).run())
        assert summary.run_date == FEB_5
        assert summary.created_count == 1

    def test_second_pass_same_day_creates_nothing(self, clock, make_template):
        store = InMemoryTransactionStorage([
            make_template(recurring_frequency=RecurringFrequency.DAILY),
        ])
        flow = _flow(store, clock)

        first = asyncio.run(flow.run(FEB_5))
        second = asyncio.run(flow.run(FEB_5))

        assert first.created_count == 1
        assert second.created_count == 0
        assert second.skipped_count == 1
        assert len(_occurrences(store)) == 1

    def test_daily_template_fires_once_per_day(self, clock, make_template):
        store = InMemoryTransactionStorage([
            make_template(recurring_frequency=RecurringFrequency.DAILY),
        ])
        flow = _flow(store, clock)
        for day in range(5, 10):
            asyncio.run(flow.run(date(2024, 2, day)))

        assert sorted(o.date.day for o in _occurrences(store)) == [5, 6, 7, 8, 9]

    def test_overlapping_passes_can_double_create(self, clock, make_template):
        """Two passes that overlap both see no occurrence and both write one."""
        store = SlowCreateStorage([make_template()])

        async def overlap():
            return await asyncio.gather(
                _flow(store, clock).run(FEB_5),
                _flow(store, clock).run(FEB_5),
            )

        first, second = asyncio.run(overlap())

        assert first.created_count == 1
        assert second.created_count == 1
        assert len(_occurrences(store)) == 2

    def test_lookup_error_is_isolated(self, clock, make_template):
        templates = [
            make_template(user_id="U1"),
            make_template(user_id="U2"),
            make_template(user_id="U3"),
        ]
        store = FailingLookupStorage(templates, failing_user="U2")

        summary = asyncio.run(_flow(store, clock).run(FEB_5))

        assert summary.template_count == 3
        assert summary.created_count == 2
        assert summary.error_count == 1
        failed = [o for o in summary.outcomes if o.status == OutcomeStatus.FAILED]
        assert failed[0].template_id == templates[1].id
        assert "lookup failed" in failed[0].error
        assert sorted(o.user_id for o in _occurrences(store)) == ["U1", "U3"]

    def test_store_timeout_is_an_error(self, clock, make_template):
        store = HangingLookupStorage([make_template()])
        flow = _flow(store, clock, store_timeout_seconds=0.05)

        summary = asyncio.run(flow.run(FEB_5))

        assert summary.error_count == 1
        assert "timed out" in summary.outcomes[0].error
        assert _occurrences(store) == []

    def test_list_failure_aborts_pass(self, clock, make_template):
        audit_store = InMemoryAuditStorage()
        store = BrokenListStorage([make_template()])
        flow = _flow(store, clock, audit_logger=AuditLogger(audit_store))

        summary = asyncio.run(flow.run(FEB_5))

        assert summary.aborted is True
        assert "spreadsheet unavailable" in summary.abort_reason
        assert summary.template_count == 0
        event_types = [e.event_type for e in audit_store.events]
        assert AuditEventType.RECURRING_PASS_FAILED in event_types
        assert AuditEventType.RECURRING_PASS_COMPLETED not in event_types

    def test_deleted_and_plain_records_are_not_templates(
        self, clock, make_template, make_occurrence
    ):
        store = InMemoryTransactionStorage([
            make_template(is_deleted=True, recurring_frequency=RecurringFrequency.DAILY),
            make_occurrence(recurring_frequency=RecurringFrequency.DAILY, date=date(2024, 1, 1)),
        ])

        summary = asyncio.run(_flow(store, clock).run(FEB_5))

        assert summary.template_count == 0
        assert len(store.transactions) == 2

    def test_invalid_template_counts_as_error(self, clock, make_template):
        store = LeakyListStorage([
            make_template(is_deleted=True),
            make_template(user_id="U2"),
        ])

        summary = asyncio.run(_flow(store, clock).run(FEB_5))

        assert summary.error_count == 1
        assert summary.created_count == 1

    def test_missing_frequency_is_skipped(self, clock, make_template):
        store = InMemoryTransactionStorage([make_template(recurring_frequency=None)])
        summary = asyncio.run(_flow(store, clock).run(FEB_5))
        assert summary.skipped_count == 1
        assert summary.error_count == 0

    def test_concurrent_processing(self, clock, make_template):
        templates = [make_template(user_id=f"U{i}") for i in range(10)]
        store = SlowCreateStorage(templates)

        summary = asyncio.run(_flow(store, clock, max_concurrency=4).run(FEB_5))

        assert summary.created_count == 10
        assert len(_occurrences(store)) == 10

    def test_match_by_template_id(self, clock, make_template, make_occurrence):
        template = make_template(recurring_frequency=RecurringFrequency.DAILY)
        # Hand-entered lookalike from today would block a field-matched pass
        store = InMemoryTransactionStorage([template, make_occurrence(date=FEB_5)])

        field_match = asyncio.run(_flow(store, clock).run(FEB_5))
        assert field_match.created_count == 0

        flow = _flow(
            store,
            clock,
            resolver=LastOccurrenceResolver(store, match_by_template_id=True),
        )
        by_link = asyncio.run(flow.run(FEB_5))
        assert by_link.created_count == 1
        assert asyncio.run(flow.run(FEB_5)).created_count == 0

    def test_audit_trail(self, clock, make_template):
        audit_store = InMemoryAuditStorage()
        store = InMemoryTransactionStorage([make_template()])
        flow = _flow(store, clock, audit_logger=AuditLogger(audit_store))

        summary = asyncio.run(flow.run(FEB_5))

        events = asyncio.run(audit_store.get_events_by_correlation_id(summary.run_id))
        assert [e.event_type for e in events] == [
            AuditEventType.RECURRING_PASS_STARTED,
            AuditEventType.OCCURRENCE_MATERIALIZED,
            AuditEventType.RECURRING_PASS_COMPLETED,
        ]
        assert events[-1].description == "Recurring transactions job completed. Created: 1, Errors: 0"


class TestCreateAppComponents:
    """Wiring from settings."""

    def test_memory_backend(self, clock, make_template):
        store = InMemoryTransactionStorage([make_template()])
        flow, scheduler, audit_logger = create_app_components(
            backend="memory", storage=store, clock=clock
        )

        assert scheduler.state == SchedulerState.IDLE
        assert scheduler.next_run_time().isoformat() == "2024-02-06T00:00:00"

        summary = asyncio.run(scheduler.run_now())
        assert summary.created_count == 1
        assert scheduler.last_summary is summary

    def test_trigger_time_from_settings(self, monkeypatch, clock):
        monkeypatch.setenv("RECURRING_RUN_HOUR", "14")
        monkeypatch.setenv("RECURRING_RUN_MINUTE", "30")
        _, scheduler, _ = create_app_components(backend="memory", clock=clock)
        assert scheduler.next_run_time().isoformat() == "2024-02-05T14:30:00"

    def test_rejects_bad_concurrency(self, monkeypatch):
        monkeypatch.setenv("RECURRING_MAX_CONCURRENCY", "0")
        with pytest.raises(ValueError):
            create_app_components(backend="memory")
