"""Tests for the in-memory store and the Google Sheets row mapping."""

import asyncio
import time
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from tenacity import wait_none

from finora.models.audit import AuditEventBuilder
from finora.models.transaction import OutcomeStatus, RecurringFrequency, TransactionType
from finora.orchestrator import RecurringMaterializationFlow
from finora.services.storage import (
    DuplicateError,
    GoogleSheetsTransactionStorage,
    InMemoryTransactionStorage,
    StorageError,
)
from finora.services.storage.google_sheets import (
    TRANSACTION_COLUMNS,
    row_to_event,
    row_to_transaction,
    transaction_to_row,
)


class TestInMemoryTransactionStorage:
    """CRUD-side operations of the in-memory store."""

    def test_list_filters_and_sorts(self, make_occurrence):
        store = InMemoryTransactionStorage([
            make_occurrence(date=date(2024, 1, 1)),
            make_occurrence(date=date(2024, 3, 1)),
            make_occurrence(date=date(2024, 2, 1), category="Food"),
            make_occurrence(date=date(2024, 2, 2), is_deleted=True),
            make_occurrence(date=date(2024, 2, 3), user_id="U2"),
        ])

        results = asyncio.run(store.list_transactions(user_id="U1"))
        assert [tx.date for tx in results] == [
            date(2024, 3, 1), date(2024, 2, 1), date(2024, 1, 1),
        ]

        food = asyncio.run(store.list_transactions(user_id="U1", category="food"))
        assert len(food) == 1

        with_deleted = asyncio.run(store.list_transactions(user_id="U1", include_deleted=True))
        assert len(with_deleted) == 4

        february = asyncio.run(store.list_transactions(
            date_from=date(2024, 2, 1), date_to=date(2024, 2, 28)
        ))
        assert [tx.date for tx in february] == [date(2024, 2, 3), date(2024, 2, 1)]

    def test_list_paginates(self, make_occurrence):
        store = InMemoryTransactionStorage([
            make_occurrence(date=date(2024, 1, day)) for day in range(1, 11)
        ])
        page = asyncio.run(store.list_transactions(limit=3, offset=3))
        assert [tx.date.day for tx in page] == [7, 6, 5]

    def test_save_rejects_duplicate_id(self, make_occurrence):
        tx = make_occurrence()
        store = InMemoryTransactionStorage([tx])
        with pytest.raises(DuplicateError):
            asyncio.run(store.save_transaction(tx))

    def test_returned_records_are_copies(self, make_template):
        template = make_template()
        store = InMemoryTransactionStorage([template])

        listed = asyncio.run(store.list_active_recurring_templates())
        listed[0].amount = Decimal("1")

        stored = asyncio.run(store.get_transaction_by_id(template.id))
        assert stored.amount == Decimal("500")

    def test_missing_id(self):
        store = InMemoryTransactionStorage()
        assert asyncio.run(store.get_transaction_by_id("nope")) is None


class TestSheetsRowMapping:
    """Conversion between Transaction and spreadsheet rows."""

    def test_row_has_every_column(self, make_template):
        row = transaction_to_row(make_template())
        assert len(row) == len(TRANSACTION_COLUMNS)
        assert row[TRANSACTION_COLUMNS.index("recurring_frequency")] == "monthly"
        assert row[TRANSACTION_COLUMNS.index("is_recurring")] == "True"

    def test_occurrence_survives_row_mapping(self, make_occurrence):
        occurrence = make_occurrence(template_id="t1", created_at=datetime(2024, 2, 5, 0, 0, 1))
        assert row_to_transaction(transaction_to_row(occurrence)) == occurrence

    def test_short_row_uses_defaults(self):
        row = ["tx1", "U1", "expense", "12.50", "Bills", "", "2024-02-05", "", "FALSE", "", "", "", "2024-02-05T00:00:00"]
        tx = row_to_transaction(row)
        assert tx.amount == Decimal("12.50")
        assert tx.is_recurring is False
        assert tx.recurring_frequency is None
        assert tx.template_id is None
        assert tx.updated_at == tx.created_at

    def test_bad_row_raises(self):
        with pytest.raises(ValueError):
            row_to_transaction(["tx1", "U1", "transfer", "1", "Bills", "", "2024-02-05"])

    def test_unknown_frequency_reads_as_none(self, make_template):
        row = transaction_to_row(make_template())
        row[TRANSACTION_COLUMNS.index("recurring_frequency")] = "yearly"

        tx = row_to_transaction(row)

        assert tx.is_recurring is True
        assert tx.recurring_frequency is None


class TestGoogleSheetsTransactionStorage:
    """Sheets store against a mocked worksheet."""

    def _storage(self, rows):
        sheet = MagicMock()
        sheet.get_all_values.side_effect = lambda: [TRANSACTION_COLUMNS] + rows
        client = MagicMock()
        client.get_transactions_sheet.return_value = sheet
        return GoogleSheetsTransactionStorage(client), sheet

    def test_malformed_rows_are_skipped(self, make_template):
        template = make_template()
        rows = [
            transaction_to_row(template),
            ["broken", "U1", "expense", "not-a-number"],
            [],
        ]
        storage, _ = self._storage(rows)

        templates = asyncio.run(storage.list_active_recurring_templates())
        assert [t.id for t in templates] == [template.id]

    def test_find_latest_matching_occurrence(self, make_template, make_occurrence):
        template = make_template(recurring_frequency=RecurringFrequency.WEEKLY)
        first = make_occurrence(created_at=datetime(2024, 1, 1))
        second = make_occurrence(created_at=datetime(2024, 1, 8))
        other = make_occurrence(type=TransactionType.INCOME, created_at=datetime(2024, 2, 1))
        storage, _ = self._storage([transaction_to_row(tx) for tx in (template, second, first, other)])

        found = asyncio.run(storage.find_latest_matching_occurrence(
            user_id="U1",
            description="Rent",
            category="Bills",
            type=TransactionType.EXPENSE,
            amount=Decimal("500"),
        ))
        assert found.id == second.id

    def test_create_occurrence_appends_row(self):
        storage, sheet = self._storage([])

        occurrence = asyncio.run(storage.create_occurrence(
            user_id="U1",
            type=TransactionType.EXPENSE,
            amount=Decimal("500"),
            category="Bills",
            description="Rent",
            date=date(2024, 2, 5),
            template_id="t1",
        ))

        sheet.append_row.assert_called_once()
        row = sheet.append_row.call_args[0][0]
        assert row[0] == occurrence.id
        assert row[TRANSACTION_COLUMNS.index("template_id")] == "t1"
        assert row[TRANSACTION_COLUMNS.index("is_recurring")] == "False"

    def test_create_occurrence_does_not_duplicate_after_lost_response(self):
        """A failed append that still reached the sheet is not written twice."""
        rows = []
        storage, sheet = self._storage(rows)
        storage._retry_wait = wait_none()

        def append_then_fail(row, value_input_option=None):
            rows.append(row)
            if sheet.append_row.call_count == 1:
                raise ConnectionError("response lost")

        sheet.append_row.side_effect = append_then_fail

        occurrence = asyncio.run(storage.create_occurrence(
            user_id="U1",
            type=TransactionType.EXPENSE,
            amount=Decimal("500"),
            category="Bills",
            description="Rent",
            date=date(2024, 2, 5),
        ))

        assert sheet.append_row.call_count == 1
        assert [row[0] for row in rows] == [occurrence.id]

    def test_unreadable_occurrence_fails_lookup(self, make_template, make_occurrence):
        template = make_template(recurring_frequency=RecurringFrequency.DAILY)
        occurrence = make_occurrence(date=date(2024, 2, 5))
        broken = transaction_to_row(occurrence)
        broken[TRANSACTION_COLUMNS.index("updated_at")] = "not-a-timestamp"
        storage, _ = self._storage([transaction_to_row(template), broken])

        with pytest.raises(StorageError):
            asyncio.run(storage.find_latest_matching_occurrence(
                user_id="U1",
                description="Rent",
                category="Bills",
                type=TransactionType.EXPENSE,
                amount=Decimal("500"),
            ))


class TestMaterializationOnSheets:
    """Full pass against a mocked worksheet."""

    def _storage(self, rows):
        sheet = MagicMock()
        sheet.get_all_values.side_effect = lambda: [TRANSACTION_COLUMNS] + rows
        client = MagicMock()
        client.get_transactions_sheet.return_value = sheet
        return GoogleSheetsTransactionStorage(client), sheet

    def test_every_template_row_is_accounted_for(self, clock, make_template):
        good = make_template()
        unknown = transaction_to_row(make_template(description="Gym"))
        unknown[TRANSACTION_COLUMNS.index("recurring_frequency")] = "yearly"
        unreadable = transaction_to_row(make_template(description="Internet"))
        unreadable[TRANSACTION_COLUMNS.index("amount")] = "five hundred"
        storage, sheet = self._storage([transaction_to_row(good), unknown, unreadable])
        flow = RecurringMaterializationFlow(storage=storage, clock=clock)

        summary = asyncio.run(flow.run(date(2024, 2, 5)))

        assert summary.template_count == 3
        assert summary.created_count == 1
        assert summary.skipped_count == 1
        assert summary.error_count == 1
        failed = [o for o in summary.outcomes if o.status == OutcomeStatus.FAILED]
        assert failed[0].template_id == unreadable[0]
        sheet.append_row.assert_called_once()

    def test_unreadable_occurrence_blocks_creation(self, clock, make_template, make_occurrence):
        template = make_template(recurring_frequency=RecurringFrequency.DAILY)
        broken = transaction_to_row(make_occurrence(date=date(2024, 2, 5)))
        broken[TRANSACTION_COLUMNS.index("updated_at")] = "not-a-timestamp"
        storage, sheet = self._storage([transaction_to_row(template), broken])
        flow = RecurringMaterializationFlow(storage=storage, clock=clock)

        summary = asyncio.run(flow.run(date(2024, 2, 5)))

        assert summary.created_count == 0
        assert summary.error_count == 1
        sheet.append_row.assert_not_called()

    def test_hung_sheet_call_times_out(self, clock, make_template):
        row = transaction_to_row(make_template())
        storage, sheet = self._storage([row])
        calls = []

        def slow_after_first():
            calls.append(1)
            if len(calls) > 1:
                time.sleep(0.5)
            return [TRANSACTION_COLUMNS, row]

        sheet.get_all_values.side_effect = slow_after_first
        flow = RecurringMaterializationFlow(storage=storage, clock=clock, store_timeout_seconds=0.1)

        summary = asyncio.run(flow.run(date(2024, 2, 5)))

        assert summary.error_count == 1
        assert "timed out" in summary.outcomes[0].error
        sheet.append_row.assert_not_called()


def test_audit_event_row_mapping():
    event = AuditEventBuilder.template_failed(
        template_id="t1",
        error_message="timeout",
        correlation_id=uuid4(),
    )
    assert row_to_event(event.to_sheets_row()) == event
