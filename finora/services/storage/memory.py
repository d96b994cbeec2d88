"""
In-Memory Storage Implementation

Keeps transactions and audit events in process memory. Used by the test
suite and by `run-now --backend memory` for dry runs. Nothing survives
the process.

Records are copied on the way in and out so callers can never mutate
stored state behind the store's back.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from finora.models.audit import AuditEvent
from finora.models.transaction import Transaction, TransactionType
from finora.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    TransactionStorageInterface,
)


class InMemoryTransactionStorage(TransactionStorageInterface):
    """Transaction store backed by a list, in insertion order."""

    def __init__(self, transactions: Optional[list[Transaction]] = None):
        self._rows: list[Transaction] = []
        for tx in transactions or []:
            self._rows.append(tx.model_copy(deep=True))

    @property
    def transactions(self) -> list[Transaction]:
        """Snapshot of every stored record."""
        return [tx.model_copy(deep=True) for tx in self._rows]

    def _newest(self, candidates: list[tuple[int, Transaction]]) -> Optional[Transaction]:
        # Ties on created_at go to the later insert
        if not candidates:
            return None
        _, newest = max(candidates, key=lambda pair: (pair[1].created_at, pair[0]))
        return newest.model_copy(deep=True)

    async def list_active_recurring_templates(self) -> list[Transaction]:
        return [
            tx.model_copy(deep=True)
            for tx in self._rows
            if tx.is_recurring and not tx.is_deleted
        ]

    async def find_latest_matching_occurrence(
        self,
        user_id: str,
        description: str,
        category: str,
        type: TransactionType,
        amount: Decimal,
    ) -> Optional[Transaction]:
        candidates = [
            (idx, tx)
            for idx, tx in enumerate(self._rows)
            if not tx.is_recurring
            and tx.user_id == user_id
            and tx.description == description
            and tx.category == category
            and tx.type == type
            and tx.amount == amount
        ]
        return self._newest(candidates)

    async def find_latest_occurrence_for_template(
        self,
        template_id: str,
    ) -> Optional[Transaction]:
        candidates = [
            (idx, tx)
            for idx, tx in enumerate(self._rows)
            if not tx.is_recurring and tx.template_id == template_id
        ]
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
        return await self.save_transaction(occurrence)

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        if any(tx.id == transaction.id for tx in self._rows):
            raise DuplicateError(f"Transaction already exists: {transaction.id}")
        self._rows.append(transaction.model_copy(deep=True))
        return transaction.model_copy(deep=True)

    async def get_transaction_by_id(self, transaction_id: str) -> Optional[Transaction]:
        for tx in self._rows:
            if tx.id == transaction_id:
                return tx.model_copy(deep=True)
        return None

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
        results = [
            tx for tx in self._rows
            if matches_filters(tx, user_id, type, category, date_from, date_to, include_deleted)
        ]
        results.sort(key=lambda tx: tx.date, reverse=True)
        return [tx.model_copy(deep=True) for tx in results[offset:offset + limit]]


def matches_filters(
    tx: Transaction,
    user_id: Optional[str],
    type: Optional[TransactionType],
    category: Optional[str],
    date_from: Optional[date],
    date_to: Optional[date],
    include_deleted: bool,
) -> bool:
    """Shared filter predicate for list_transactions implementations."""
    if not include_deleted and tx.is_deleted:
        return False
    if user_id and tx.user_id != user_id:
        return False
    if type and tx.type != type:
        return False
    if category and tx.category.lower() != category.lower():
        return False
    if date_from and tx.date < date_from:
        return False
    if date_to and tx.date > date_to:
        return False
    return True


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only audit log kept in a list."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = sorted(self._events, key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
