"""
Audit Models for Finora

The materialization engine has no caller-facing surface. Its only
observable effects are the occurrences it writes and its audit trail.
Every pass and every per-template outcome is recorded as an AuditEvent.

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Pass lifecycle
    RECURRING_PASS_STARTED = "recurring_pass_started"
    RECURRING_PASS_COMPLETED = "recurring_pass_completed"
    RECURRING_PASS_FAILED = "recurring_pass_failed"

    # Per template
    OCCURRENCE_MATERIALIZED = "occurrence_materialized"
    TEMPLATE_FAILED = "template_failed"

    # Scheduler
    SCHEDULER_STARTED = "scheduler_started"
    SCHEDULER_STOPPED = "scheduler_stopped"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    correlation_id ties together every event emitted by one pass.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'template', 'occurrence', 'pass')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (all events in one pass)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.pass_started(run_id, run_date)
        event = AuditEventBuilder.occurrence_materialized(...)
    """

    @staticmethod
    def pass_started(
        run_id: UUID,
        run_date: date,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_PASS_STARTED,
            entity_type="pass",
            entity_id=str(run_id),
            correlation_id=run_id,
            description=f"Recurring transactions pass started for {run_date.isoformat()}",
            details={"run_date": run_date.isoformat()},
        )

    @staticmethod
    def pass_completed(
        run_id: UUID,
        template_count: int,
        created_count: int,
        error_count: int,
    ) -> AuditEvent:
        severity = AuditSeverity.WARNING if error_count else AuditSeverity.INFO
        return AuditEvent(
            event_type=AuditEventType.RECURRING_PASS_COMPLETED,
            severity=severity,
            entity_type="pass",
            entity_id=str(run_id),
            correlation_id=run_id,
            description=(
                f"Recurring transactions job completed. "
                f"Created: {created_count}, Errors: {error_count}"
            ),
            details={
                "template_count": template_count,
                "created_count": created_count,
                "error_count": error_count,
            },
        )

    @staticmethod
    def pass_failed(
        run_id: UUID,
        error_message: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_PASS_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="pass",
            entity_id=str(run_id),
            correlation_id=run_id,
            description="Recurring transactions pass abandoned",
            error_message=error_message,
        )

    @staticmethod
    def occurrence_materialized(
        template_id: str,
        occurrence_id: str,
        user_id: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_MATERIALIZED,
            entity_type="occurrence",
            entity_id=occurrence_id,
            correlation_id=correlation_id,
            description=f"Created recurring transaction for user {user_id}",
            details={
                "template_id": template_id,
                "user_id": user_id,
                "amount": amount,
            },
        )

    @staticmethod
    def template_failed(
        template_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TEMPLATE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="template",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Error creating recurring transaction {template_id}",
            error_message=error_message,
        )

    @staticmethod
    def scheduler_started(next_run: datetime) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULER_STARTED,
            entity_type="scheduler",
            description="Recurring transactions job scheduled",
            details={"next_run": next_run.isoformat()},
        )

    @staticmethod
    def scheduler_stopped() -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCHEDULER_STOPPED,
            entity_type="scheduler",
            description="Recurring transactions scheduler stopped",
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
