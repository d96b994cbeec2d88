"""
Main Orchestrator for the Finora Recurring Engine

This module ties together all the components and defines the
materialization pass:

    list active templates (unreadable template records count as failures)
      -> for each template: validate -> resolve + decide -> materialize
      -> run summary (created / errors)

DESIGN DECISION: The pass never fails atomically.
- A failure on one template (store error, timeout, malformed data) is
  logged with the template id, counted, and the pass moves on.
- Only a failure to list the templates abandons the pass. The scheduler
  goes back to idle and waits for the next trigger; there is no retry.

Exactly-once per day is NOT guaranteed. The decision is based on what the
store shows when a template is evaluated, so two passes that overlap (two
processes, or a manual run racing the timer) can both create the same
occurrence.
"""

import asyncio
from datetime import date, datetime
from typing import Awaitable, Optional, TypeVar

import structlog

from finora.audit import AuditLogger
from finora.config import get_settings
from finora.models.transaction import (
    OutcomeStatus,
    RunSummary,
    TemplateOutcome,
    Transaction,
)
from finora.recurring import (
    Clock,
    DailyTrigger,
    DecisionEngine,
    LastOccurrenceResolver,
    Materializer,
    RecurringScheduler,
    StoreTimeoutError,
    SystemClock,
)
from finora.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsTransactionStorage,
    InMemoryAuditStorage,
    InMemoryTransactionStorage,
    TransactionStorageInterface,
)
from finora.validation import TemplateValidator

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RecurringMaterializationFlow:
    """
    Orchestrates one materialization pass over all active templates.

    Flow per template:
    1. Validate  -> malformed templates are failures
    2. Decide    -> resolver + frequency rule
    3. Create    -> materializer writes today's occurrence

    Templates are processed one at a time unless max_concurrency > 1.
    Either way each template fails on its own.
    """

    def __init__(
        self,
        storage: TransactionStorageInterface,
        resolver: Optional[LastOccurrenceResolver] = None,
        decision_engine: Optional[DecisionEngine] = None,
        materializer: Optional[Materializer] = None,
        validator: Optional[TemplateValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        clock: Optional[Clock] = None,
        store_timeout_seconds: Optional[float] = None,
        max_concurrency: int = 1,
    ):
        self._storage = storage
        self._resolver = resolver or LastOccurrenceResolver(storage)
        self._decision_engine = decision_engine or DecisionEngine(self._resolver)
        self._materializer = materializer or Materializer(storage)
        self._validator = validator or TemplateValidator()
        self._audit_logger = audit_logger
        self._clock = clock or SystemClock()
        self._store_timeout = store_timeout_seconds
        self._max_concurrency = max(1, max_concurrency)

    async def _bounded(self, operation: str, awaitable: Awaitable[T]) -> T:
        """Await a store-bound call, converting a timeout into StoreTimeoutError."""
        if self._store_timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, timeout=self._store_timeout)
        except asyncio.TimeoutError:
            raise StoreTimeoutError(operation, self._store_timeout)

    async def _fail(
        self,
        template_id: str,
        user_id: Optional[str],
        error: str,
        summary: RunSummary,
    ) -> TemplateOutcome:
        """Audit a per-template failure and build its outcome."""
        if self._audit_logger:
            await self._audit_logger.log_template_failed(
                template_id=template_id,
                error_message=error,
                correlation_id=summary.run_id,
            )
        return TemplateOutcome(
            template_id=template_id,
            user_id=user_id,
            status=OutcomeStatus.FAILED,
            error=error,
        )

    async def process_template(
        self,
        template: Transaction,
        today: date,
        summary: RunSummary,
    ) -> TemplateOutcome:
        """
        Run one template through validate -> decide -> materialize.

        Never raises (except on cancellation): every error becomes a
        FAILED outcome.
        """
        try:
            self._validator.ensure_valid(template, today)

            decision = await self._bounded(
                "find_latest_occurrence",
                self._decision_engine.decide(template, today),
            )
            if not decision.should_create:
                return TemplateOutcome(
                    template_id=template.id,
                    user_id=template.user_id,
                    status=OutcomeStatus.SKIPPED,
                )

            occurrence = await self._bounded(
                "create_occurrence",
                self._materializer.materialize(template, today),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "template_failed",
                template_id=template.id,
                user_id=template.user_id,
                error=str(e),
                exc_info=True,
            )
            return await self._fail(template.id, template.user_id, str(e), summary)

        if self._audit_logger:
            await self._audit_logger.log_occurrence_materialized(
                template_id=template.id,
                occurrence_id=occurrence.id,
                user_id=template.user_id,
                amount=str(template.amount),
                correlation_id=summary.run_id,
            )
        return TemplateOutcome(
            template_id=template.id,
            user_id=template.user_id,
            status=OutcomeStatus.CREATED,
            occurrence_id=occurrence.id,
        )

    async def _process_all(
        self,
        templates: list[Transaction],
        today: date,
        summary: RunSummary,
    ) -> list[TemplateOutcome]:
        if self._max_concurrency == 1:
            outcomes = []
            for template in templates:
                outcomes.append(await self.process_template(template, today, summary))
            return outcomes

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def limited(template: Transaction) -> TemplateOutcome:
            async with semaphore:
                return await self.process_template(template, today, summary)

        return list(await asyncio.gather(*(limited(t) for t in templates)))

    async def run(self, today: Optional[date] = None) -> RunSummary:
        """
        Execute one materialization pass.

        Args:
            today: Date to materialize for (default: the clock's date)

        Returns:
            RunSummary with per-template outcomes. aborted=True when the
            templates could not be listed.
        """
        today = today or self._clock.today()
        summary = RunSummary(run_date=today)

        logger.info("recurring_pass_started", run_id=str(summary.run_id), run_date=today.isoformat())
        if self._audit_logger:
            await self._audit_logger.log_pass_started(run_id=summary.run_id, run_date=today)

        try:
            scan = await self._bounded(
                "scan_recurring_templates",
                self._storage.scan_recurring_templates(),
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            summary.aborted = True
            summary.abort_reason = str(e)
            summary.finished_at = datetime.utcnow()
            logger.error(
                "recurring_pass_failed",
                run_id=str(summary.run_id),
                error=str(e),
                exc_info=True,
            )
            if self._audit_logger:
                await self._audit_logger.log_pass_failed(run_id=summary.run_id, error_message=str(e))
            return summary

        summary.template_count = len(scan.templates) + len(scan.malformed)
        for record in scan.malformed:
            logger.error(
                "template_failed",
                template_id=record.record_id,
                user_id=record.user_id,
                error=record.error,
                reason="unreadable_record",
            )
            summary.record(await self._fail(record.record_id, record.user_id, record.error, summary))
        for outcome in await self._process_all(scan.templates, today, summary):
            summary.record(outcome)
        summary.finished_at = datetime.utcnow()

        logger.info(
            "recurring_pass_completed",
            run_id=str(summary.run_id),
            run_date=today.isoformat(),
            templates=summary.template_count,
            created=summary.created_count,
            skipped=summary.skipped_count,
            errors=summary.error_count,
        )
        if self._audit_logger:
            await self._audit_logger.log_pass_completed(
                run_id=summary.run_id,
                template_count=summary.template_count,
                created_count=summary.created_count,
                error_count=summary.error_count,
            )
        return summary


def create_app_components(
    backend: Optional[str] = None,
    storage: Optional[TransactionStorageInterface] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
    clock: Optional[Clock] = None,
) -> tuple[RecurringMaterializationFlow, RecurringScheduler, AuditLogger]:
    """
    Factory function to create all application components.

    Args:
        backend: "sheets" or "memory" (default: APP_STORAGE_BACKEND)
        storage: Explicit transaction store (overrides backend)
        audit_storage: Explicit audit store (overrides backend)
        clock: Clock for the pass and scheduler (default: system clock
               in RECURRING_TIMEZONE)

    Returns:
        (materialization_flow, scheduler, audit_logger)
    """
    settings = get_settings()
    recurring = settings.recurring
    backend = backend or settings.app.storage_backend

    if storage is None:
        if backend == "memory":
            storage = InMemoryTransactionStorage()
            audit_storage = audit_storage or InMemoryAuditStorage()
        else:
            sheets_client = GoogleSheetsClient()
            storage = GoogleSheetsTransactionStorage(sheets_client)
            audit_storage = audit_storage or GoogleSheetsAuditStorage(sheets_client)

    audit_logger = AuditLogger(audit_storage)
    clock = clock or SystemClock(recurring.tzinfo)

    flow = RecurringMaterializationFlow(
        storage=storage,
        resolver=LastOccurrenceResolver(
            storage, match_by_template_id=recurring.match_by_template_id
        ),
        audit_logger=audit_logger,
        clock=clock,
        store_timeout_seconds=recurring.store_timeout_seconds,
        max_concurrency=recurring.max_concurrency,
    )

    scheduler = RecurringScheduler(
        run_pass=flow.run,
        trigger=DailyTrigger(hour=recurring.run_hour, minute=recurring.run_minute),
        clock=clock,
        audit_logger=audit_logger,
    )

    return flow, scheduler, audit_logger
