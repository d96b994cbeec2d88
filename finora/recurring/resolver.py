"""
Last-Occurrence Resolver

Finds the newest concrete transaction that "belongs" to a template.

By default the link is heuristic: same owner, description, category,
type and amount, with is_recurring=False. Two templates that agree on all
of those fields for the same user are indistinguishable here, and a
transaction the user typed in by hand counts as an occurrence too.

With match_by_template_id the resolver follows the template_id stamped on
occurrences by the materializer instead. Hand-entered transactions are
then ignored.
"""

from typing import Optional

from finora.models.transaction import Transaction
from finora.services.storage import TransactionStorageInterface


class LastOccurrenceResolver:
    """Looks up the most recently created occurrence of a template."""

    def __init__(
        self,
        storage: TransactionStorageInterface,
        match_by_template_id: bool = False,
    ):
        self._storage = storage
        self._match_by_template_id = match_by_template_id

    @property
    def match_by_template_id(self) -> bool:
        return self._match_by_template_id

    async def resolve(self, template: Transaction) -> Optional[Transaction]:
        """Return the newest matching occurrence, or None if it never fired."""
        if self._match_by_template_id:
            return await self._storage.find_latest_occurrence_for_template(template.id)

        return await self._storage.find_latest_matching_occurrence(
            user_id=template.user_id,
            description=template.description,
            category=template.category,
            type=template.type,
            amount=template.amount,
        )
