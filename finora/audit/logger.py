"""
Audit Logger

DESIGN DECISION: Every pass and every per-template outcome is logged.
The engine has no user-facing surface, so this trail (together with the
occurrences it writes) is the only way to see what it did.

The audit logger:
- Is async to not block the pass
- Gracefully handles failures (a failing audit store never fails a pass)
- Uses the pass run_id as correlation ID for all events of one pass
"""

import logging
import sys
from datetime import date, datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from finora.models.audit import AuditEvent, AuditEventBuilder
from finora.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """
    Route stdlib logging (and so structlog) to stderr at `level`.

    Call once from the entrypoint.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit store, when one is configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("finora.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_pass_started(self, run_id: UUID, run_date: date) -> None:
        """Log the start of a materialization pass."""
        await self.log(AuditEventBuilder.pass_started(run_id=run_id, run_date=run_date))

    async def log_pass_completed(
        self,
        run_id: UUID,
        template_count: int,
        created_count: int,
        error_count: int,
    ) -> None:
        """Log the run summary of a finished pass."""
        event = AuditEventBuilder.pass_completed(
            run_id=run_id,
            template_count=template_count,
            created_count=created_count,
            error_count=error_count,
        )
        await self.log(event)

    async def log_pass_failed(self, run_id: UUID, error_message: str) -> None:
        """Log a pass abandoned before any template was processed."""
        await self.log(AuditEventBuilder.pass_failed(run_id=run_id, error_message=error_message))

    async def log_occurrence_materialized(
        self,
        template_id: str,
        occurrence_id: str,
        user_id: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        """Log a new occurrence written by the materializer."""
        event = AuditEventBuilder.occurrence_materialized(
            template_id=template_id,
            occurrence_id=occurrence_id,
            user_id=user_id,
            amount=amount,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_template_failed(
        self,
        template_id: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        """Log a per-template failure."""
        event = AuditEventBuilder.template_failed(
            template_id=template_id,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_scheduler_started(self, next_run: datetime) -> None:
        await self.log(AuditEventBuilder.scheduler_started(next_run=next_run))

    async def log_scheduler_stopped(self) -> None:
        await self.log(AuditEventBuilder.scheduler_stopped())

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Passes use their run_id; use this for operator actions outside a pass.
    """
    return uuid4()
