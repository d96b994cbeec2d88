"""
Google Sheets Storage Implementation

DESIGN DECISION: One worksheet holds every transaction, templates and
occurrences alike, one row each. The ledger owner can open it and edit a
template by hand, so rows are parsed defensively:
- an unreadable template row is reported to the pass and counted as a
  failed template
- an unreadable occurrence row fails last-occurrence lookups (the row may
  be the newest occurrence)
- listings skip unreadable rows with a warning

TRADEOFFS:
- Every lookup reads the whole sheet and filters in Python. Fine for a
  personal ledger, not for thousands of users.
- Nothing enforces uniqueness. Two passes running at the same time can
  both append the same occurrence.
- Appends are retried. A retry first checks for the row id, but a row
  written after that check by a slow earlier attempt can still duplicate.

The implementation follows the abstract interface, so the recurring engine
does not change if the store moves to a real database.
"""

import asyncio
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import AsyncRetrying, retry, stop_after_attempt, wait_exponential

from finora.config import get_settings
from finora.models.audit import AuditEvent, AuditEventType, AuditSeverity
from finora.models.transaction import (
    MalformedRecord,
    RecurringFrequency,
    TemplateScan,
    Transaction,
    TransactionType,
)
from finora.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    StorageError,
    TransactionStorageInterface,
)
from finora.services.storage.memory import matches_filters

logger = structlog.get_logger(__name__)


# Column mappings for Transactions sheet
TRANSACTION_COLUMNS = [
    "id",
    "user_id",
    "type",
    "amount",
    "category",
    "description",
    "date",
    "receipt_image",
    "is_recurring",
    "recurring_frequency",
    "is_deleted",
    "template_id",
    "created_at",
    "updated_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(self, title: str, columns: list[str], rows: int) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_transactions_sheet(self) -> gspread.Worksheet:
        """Get or create the Transactions worksheet."""
        return self._get_or_create_sheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=1000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000
        )


def transaction_to_row(tx: Transaction) -> list:
    """Convert a Transaction to a spreadsheet row."""
    return [
        tx.id,
        tx.user_id,
        tx.type.value,
        str(tx.amount),
        tx.category,
        tx.description,
        tx.date.isoformat(),
        tx.receipt_image or "",
        str(tx.is_recurring),
        tx.recurring_frequency.value if tx.recurring_frequency else "",
        str(tx.is_deleted),
        tx.template_id or "",
        tx.created_at.isoformat(),
        tx.updated_at.isoformat(),
    ]


def row_to_transaction(row: list) -> Transaction:
    """
    Convert a spreadsheet row to a Transaction.

    An unknown frequency value is read as no frequency, so the template
    stays visible to the pass but never fires.

    Raises ValueError (or a pydantic ValidationError) on malformed rows.
    """
    # Handle missing columns gracefully
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default

    raw_frequency = safe_get(9)
    frequency = RecurringFrequency.parse(raw_frequency)
    if raw_frequency and frequency is None:
        logger.warning("unknown_frequency", row_id=safe_get(0), frequency=raw_frequency)

    return Transaction(
        id=safe_get(0),
        user_id=safe_get(1),
        type=TransactionType(safe_get(2)),
        amount=Decimal(safe_get(3)),
        category=safe_get(4),
        description=safe_get(5),
        date=date.fromisoformat(safe_get(6)),
        receipt_image=safe_get(7) or None,
        is_recurring=safe_get(8).lower() == "true",
        recurring_frequency=frequency,
        is_deleted=safe_get(10).lower() == "true",
        template_id=safe_get(11) or None,
        created_at=datetime.fromisoformat(safe_get(12)),
        updated_at=datetime.fromisoformat(safe_get(13) or safe_get(12)),
    )


def _cell(row: list, column: str) -> str:
    """Raw cell value by column name, for rows that failed to parse."""
    index = TRANSACTION_COLUMNS.index(column)
    return row[index].strip() if index < len(row) and row[index] else ""


def _is_template_row(row: list) -> bool:
    return _cell(row, "is_recurring").lower() == "true"


class GoogleSheetsTransactionStorage(TransactionStorageInterface):
    """
    Google Sheets implementation of the transaction store.

    Templates and occurrences share one worksheet, one transaction per row.
    gspread calls block, so every worksheet call runs in a worker thread;
    a caller that stops waiting (store timeout) is not held by a hung request.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._retry_wait = wait_exponential(multiplier=1, min=2, max=10)

    def _fetch_rows(self) -> list[list]:
        sheet = self._client.get_transactions_sheet()
        # Skip header and empty rows
        return [row for row in sheet.get_all_values()[1:] if row and row[0]]

    def _append_row(self, row: list) -> None:
        sheet = self._client.get_transactions_sheet()
        sheet.append_row(row, value_input_option="RAW")

    def _has_row(self, transaction_id: str) -> bool:
        return any(row[0] == transaction_id for row in self._fetch_rows())

    async def _load(self) -> tuple[list[Transaction], list[tuple[list, Exception]]]:
        """Parse every row into (transactions, [(unreadable row, error)])."""
        transactions = []
        unreadable = []
        for row in await asyncio.to_thread(self._fetch_rows):
            try:
                transactions.append(row_to_transaction(row))
            except Exception as e:
                unreadable.append((row, e))
        return transactions, unreadable

    async def _read_all(self) -> list[Transaction]:
        """Readable rows only; the rest are logged and left out."""
        transactions, unreadable = await self._load()
        for row, error in unreadable:
            logger.warning("malformed_row_skipped", row_id=row[0], error=str(error))
        return transactions

    async def _read_occurrences(self) -> list[Transaction]:
        """
        Concrete occurrences for last-occurrence lookups.

        An unreadable non-template row raises instead of being skipped: it
        may be the newest occurrence, and missing it would fire the
        template a second time.
        """
        transactions, unreadable = await self._load()
        for row, error in unreadable:
            if not _is_template_row(row):
                raise StorageError(f"Unreadable transaction row {row[0]}: {error}")
        return [tx for tx in transactions if not tx.is_recurring]

    @staticmethod
    def _newest(candidates: list[Transaction]) -> Optional[Transaction]:
        if not candidates:
            return None
        # Later rows win ties on created_at
        return max(enumerate(candidates), key=lambda pair: (pair[1].created_at, pair[0]))[1]

    async def scan_recurring_templates(self) -> TemplateScan:
        try:
            transactions, unreadable = await self._load()
        except Exception as e:
            raise StorageError(f"Failed to list recurring templates: {e}")

        scan = TemplateScan(templates=[tx for tx in transactions if tx.is_active_template])
        for row, error in unreadable:
            if _is_template_row(row) and _cell(row, "is_deleted").lower() != "true":
                scan.malformed.append(MalformedRecord(
                    record_id=row[0],
                    user_id=_cell(row, "user_id") or None,
                    error=str(error),
                ))
            else:
                logger.warning("malformed_row_skipped", row_id=row[0], error=str(error))
        return scan

    async def list_active_recurring_templates(self) -> list[Transaction]:
        """Readable active templates. Use scan_recurring_templates to see the rest."""
        return (await self.scan_recurring_templates()).templates

    async def find_latest_matching_occurrence(
        self,
        user_id: str,
        description: str,
        category: str,
        type: TransactionType,
        amount: Decimal,
    ) -> Optional[Transaction]:
        try:
            candidates = [
                tx for tx in await self._read_occurrences()
                if tx.user_id == user_id
                and tx.description == description
                and tx.category == category
                and tx.type == type
                and tx.amount == amount
            ]
        except Exception as e:
            raise StorageError(f"Failed to look up occurrences: {e}")
        return self._newest(candidates)

    async def find_latest_occurrence_for_template(
        self,
        template_id: str,
    ) -> Optional[Transaction]:
        try:
            candidates = [
                tx for tx in await self._read_occurrences()
                if tx.template_id == template_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to look up occurrences: {e}")
        return self._newest(candidates)

    async def create_occurrence(
        self,
        user_id: str,
        type: TransactionType,
        amount: Decimal,
        category: str,
        description: str,
        date: date,
        template_id: Optional[str] = None,
    ) -> Transaction:
        occurrence = Transaction(
            user_id=user_id,
            type=type,
            amount=amount,
            category=category,
            description=description,
            date=date,
            is_recurring=False,
            recurring_frequency=None,
            template_id=template_id,
        )
        return await self._append(occurrence)

    async def _append(self, transaction: Transaction) -> Transaction:
        """
        Append one row, retrying transient failures.

        A failed append may still have reached the sheet (lost response),
        so a retry first looks for the row id and stops if it is there.
        """
        row = transaction_to_row(transaction)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(3),
            wait=self._retry_wait,
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    if await asyncio.to_thread(self._has_row, transaction.id):
                        logger.info("append_already_applied", transaction_id=transaction.id)
                        return transaction
                try:
                    await asyncio.to_thread(self._append_row, row)
                except Exception as e:
                    raise StorageError(f"Failed to save transaction: {e}")
                return transaction

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        existing = await self.get_transaction_by_id(transaction.id)
        if existing is not None:
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        return await self._append(transaction)

    async def get_transaction_by_id(self, transaction_id: str) -> Optional[Transaction]:
        try:
            for row in await asyncio.to_thread(self._fetch_rows):
                if row[0] == transaction_id:
                    return row_to_transaction(row)
            return None
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

    async def list_transactions(
        self,
        user_id: Optional[str] = None,
        type: Optional[TransactionType] = None,
        category: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        include_deleted: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Transaction]:
        try:
            results = [
                tx for tx in await self._read_all()
                if matches_filters(tx, user_id, type, category, date_from, date_to, include_deleted)
            ]
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

        # Sort by date descending (newest first)
        results.sort(key=lambda tx: tx.date, reverse=True)
        return results[offset:offset + limit]


def row_to_event(row: list) -> AuditEvent:
    """Convert an AuditLog row back to an AuditEvent."""
    cells = list(row) + [""] * (len(AUDIT_COLUMNS) - len(row))
    event_id, timestamp, event_type, severity, entity_type, entity_id, \
        correlation_id, description, details_json, error_message = cells[:len(AUDIT_COLUMNS)]

    return AuditEvent(
        event_id=UUID(event_id),
        timestamp=datetime.fromisoformat(timestamp),
        event_type=AuditEventType(event_type),
        severity=AuditSeverity(severity),
        entity_type=entity_type or None,
        entity_id=entity_id or None,
        correlation_id=UUID(correlation_id) if correlation_id else None,
        description=description,
        details=json.loads(details_json) if details_json else {},
        error_message=error_message or None,
    )


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Audit trail kept in the AuditLog worksheet.

    Rows are only ever appended.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _read_events(self) -> list[AuditEvent]:
        rows = self._client.get_audit_sheet().get_all_values()[1:]
        events = []
        for row in rows:
            if not row or not row[0]:
                continue
            try:
                events.append(row_to_event(row))
            except Exception as e:
                logger.warning("malformed_audit_row_skipped", row_id=row[0], error=str(e))
        return events

    def _append_event_row(self, row: list) -> None:
        self._client.get_audit_sheet().append_row(row, value_input_option="RAW")

    async def append_event(self, event: AuditEvent) -> bool:
        try:
            await asyncio.to_thread(self._append_event_row, event.to_sheets_row())
            return True
        except Exception as e:
            raise StorageError(f"Failed to write audit event: {e}")

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        try:
            events = await asyncio.to_thread(self._read_events)
        except Exception as e:
            raise StorageError(f"Failed to read audit events: {e}")
        return sorted(
            (e for e in events if e.correlation_id == correlation_id),
            key=lambda e: e.timestamp,
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        try:
            events = await asyncio.to_thread(self._read_events)
        except Exception as e:
            raise StorageError(f"Failed to read audit events: {e}")
        return sorted(events, key=lambda e: e.timestamp, reverse=True)[:limit]
