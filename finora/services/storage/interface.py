"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep the recurring engine decoupled from storage implementation

The transaction store holds both recurring templates and concrete
occurrences. The engine only ever reads templates and appends occurrences;
it never mutates an existing record.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from finora.models.transaction import TemplateScan, Transaction, TransactionType
from finora.models.audit import AuditEvent


class TransactionStorageInterface(ABC):
    """
    Abstract interface for transaction storage operations.

    Any storage implementation (Google Sheets, MongoDB, in-memory, etc.)
    must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Operations used by the recurring engine
    # -------------------------------------------------------------------------

    @abstractmethod
    async def list_active_recurring_templates(self) -> list[Transaction]:
        """
        List every template eligible for materialization.

        Returns:
            Transactions with is_recurring=True and is_deleted=False

        Raises:
            StorageError: If the store cannot be read
        """
        pass

    async def scan_recurring_templates(self) -> TemplateScan:
        """
        List active templates and report template records that cannot be read.

        Stores that validate on write never hold malformed records, so the
        default only wraps list_active_recurring_templates. Stores that can
        be edited by hand override it.

        Raises:
            StorageError: If the store cannot be read
        """
        return TemplateScan(templates=await self.list_active_recurring_templates())

    @abstractmethod
    async def find_latest_matching_occurrence(
        self,
        user_id: str,
        description: str,
        category: str,
        type: TransactionType,
        amount: Decimal,
    ) -> Optional[Transaction]:
        """
        Find the newest non-recurring transaction matching a template.

        Matching is by field equality on owner, description, category,
        type and amount. The newest is picked by created_at.

        Returns:
            The matching occurrence, or None
        """
        pass

    @abstractmethod
    async def find_latest_occurrence_for_template(
        self,
        template_id: str,
    ) -> Optional[Transaction]:
        """
        Find the newest non-recurring transaction materialized from a template.

        Returns:
            The occurrence with the given template_id, or None
        """
        pass

    @abstractmethod
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
        """
        Persist a new concrete occurrence.

        The occurrence is stored with is_recurring=False and no frequency.

        Returns:
            The stored occurrence (with its assigned id)

        Raises:
            StorageError: If save fails
        """
        pass

    # -------------------------------------------------------------------------
    # General ledger operations
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> Transaction:
        """
        Save a transaction as-is (template or occurrence).

        Raises:
            DuplicateError: If a transaction with the same id exists
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_transaction_by_id(self, transaction_id: str) -> Optional[Transaction]:
        """
        Retrieve a transaction by its ID.

        Returns:
            The transaction if found, None otherwise
        """
        pass

    @abstractmethod
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
        """
        List transactions with optional filters.

        Args:
            user_id: Filter by owner
            type: Filter by income/expense
            category: Filter by category (case-insensitive exact match)
            date_from: Filter transactions on or after this date
            date_to: Filter transactions on or before this date
            include_deleted: Include soft-deleted transactions
            limit: Maximum number of results
            offset: Number of results to skip

        Returns:
            Matching transactions, newest date first
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one materialization pass).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
