"""
Materializer

Turns a due template into a concrete occurrence dated today. The template
is never modified; the only side effect is one new record in the store.
"""

from datetime import date

import structlog

from finora.models.transaction import Transaction
from finora.services.storage import TransactionStorageInterface

logger = structlog.get_logger(__name__)


class Materializer:
    """Persists new occurrences for due templates."""

    def __init__(self, storage: TransactionStorageInterface):
        self._storage = storage

    async def materialize(self, template: Transaction, today: date) -> Transaction:
        """
        Create today's occurrence of a template.

        The occurrence copies owner, type, amount, category and description,
        is dated `today`, is not recurring, and records the template id.
        """
        occurrence = await self._storage.create_occurrence(
            user_id=template.user_id,
            type=template.type,
            amount=template.amount,
            category=template.category,
            description=template.description,
            date=today,
            template_id=template.id,
        )
        logger.info(
            "occurrence_created",
            template_id=template.id,
            occurrence_id=occurrence.id,
            user_id=template.user_id,
            date=today.isoformat(),
        )
        return occurrence
