"""
Materialization Decision Engine

Combines the Last-Occurrence Resolver with the Frequency Rule to answer
one question per template per day: create an occurrence today?

1. Resolve the newest matching occurrence.
2. None found  -> due_from_anchor(template.date, frequency, today)
3. Found       -> due_from_last(days since that occurrence, frequency)

No retries here. Any exception propagates to the pass, which counts it
against this template only.
"""

from datetime import date

import structlog

from finora.models.transaction import (
    MaterializationDecision,
    ReferenceKind,
    Transaction,
)
from finora.recurring.frequency import days_between, due_from_anchor, due_from_last
from finora.recurring.resolver import LastOccurrenceResolver

logger = structlog.get_logger(__name__)


class DecisionEngine:
    """Produces a create/skip verdict for a template."""

    def __init__(self, resolver: LastOccurrenceResolver):
        self._resolver = resolver

    async def decide(self, template: Transaction, today: date) -> MaterializationDecision:
        last = await self._resolver.resolve(template)

        if last is None:
            decision = MaterializationDecision(
                template_id=template.id,
                today=today,
                should_create=due_from_anchor(template.date, template.recurring_frequency, today),
                reference_kind=ReferenceKind.ANCHOR,
                reference_date=template.date,
            )
        else:
            days_since_last = days_between(last.date, today)
            decision = MaterializationDecision(
                template_id=template.id,
                today=today,
                should_create=due_from_last(days_since_last, template.recurring_frequency),
                reference_kind=ReferenceKind.LAST_OCCURRENCE,
                reference_date=last.date,
                days_since_last=days_since_last,
                last_occurrence_id=last.id,
            )

        logger.debug(
            "materialization_decided",
            template_id=template.id,
            frequency=template.recurring_frequency.value if template.recurring_frequency else None,
            should_create=decision.should_create,
            reference_kind=decision.reference_kind.value,
            reference_date=decision.reference_date.isoformat(),
            days_since_last=decision.days_since_last,
        )
        return decision
