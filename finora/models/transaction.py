"""
Core Data Models for Finora Recurring Transactions

A single Transaction schema covers both roles a record can play:
1. Recurring template (is_recurring=True) - the definition that fires
2. Concrete occurrence (is_recurring=False) - one dated instance

DESIGN DECISION: Templates and occurrences share one shape, exactly like
the ledger's document store. The role is carried by `is_recurring`, not
by a separate type. This keeps the store contract small and lets user-entered
transactions and materialized ones be queried the same way.

The rest of the module holds the engine's own result types:
decisions, per-template outcomes and the pass summary.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

# Transaction has a field called `date`; keep an unshadowed name for the type
CalendarDate = date


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionType(str, Enum):
    """Direction of money flow."""
    INCOME = "income"
    EXPENSE = "expense"


class RecurringFrequency(str, Enum):
    """
    Supported recurrence frequencies.

    DESIGN DECISION: Only three cadences exist. Anything else found in
    storage is treated as "unknown" by the frequency rule and never fires.
    """
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @classmethod
    def parse(cls, value) -> Optional["RecurringFrequency"]:
        """Lenient lookup for stored values: None when missing or unknown."""
        if value is None or value == "":
            return None
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


class ReferenceKind(str, Enum):
    """Which date a materialization decision was measured against."""
    ANCHOR = "anchor"                    # template.date, no prior occurrence
    LAST_OCCURRENCE = "last_occurrence"  # date of newest matching occurrence


class OutcomeStatus(str, Enum):
    """Result of processing one template in a pass."""
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


# =============================================================================
# CORE TRANSACTION MODEL
# =============================================================================

def _new_id() -> str:
    return uuid4().hex


class Transaction(BaseModel):
    """
    A ledger transaction.

    Plays the template role while is_recurring is True and the occurrence
    role otherwise. Occurrences created by the materializer also carry
    template_id, the id of the template that spawned them.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: str = Field(
        default_factory=_new_id,
        description="Store-assigned transaction ID"
    )
    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of the transaction"
    )

    # REQUIRED ledger fields
    type: TransactionType = Field(
        ...,
        description="income or expense"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Amount (must be non-negative)"
    )
    category: str = Field(
        ...,
        min_length=1,
        max_length=100,
        description="Free-text category"
    )
    description: str = Field(
        default="",
        max_length=500,
    )
    date: CalendarDate = Field(
        ...,
        description="Anchor date for templates, occurrence date otherwise"
    )
    receipt_image: Optional[str] = Field(
        default=None,
        description="URL of an uploaded receipt, if any"
    )

    # Recurrence
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None
    template_id: Optional[str] = Field(
        default=None,
        description="Template that materialized this occurrence"
    )

    # Soft delete
    is_deleted: bool = False

    # Timestamps
    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the record was created"
    )
    updated_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Last update timestamp"
    )

    @field_validator('recurring_frequency', mode='before')
    @classmethod
    def blank_frequency_is_none(cls, v):
        """Stores write an empty string for 'no frequency'."""
        if v == "":
            return None
        return v

    @property
    def is_active_template(self) -> bool:
        """Eligible for materialization."""
        return self.is_recurring and not self.is_deleted


# =============================================================================
# ENGINE RESULT MODELS
# =============================================================================

class MaterializationDecision(BaseModel):
    """
    Verdict of the decision engine for one template on one day.

    reference_date is kept for observability: it is the date the
    frequency rule was evaluated against.
    """

    template_id: str
    today: date
    should_create: bool
    reference_kind: ReferenceKind
    reference_date: date
    days_since_last: Optional[int] = Field(
        default=None,
        description="Only set when a prior occurrence was found"
    )
    last_occurrence_id: Optional[str] = None


class TemplateOutcome(BaseModel):
    """What happened to one template during a pass."""

    template_id: str
    user_id: Optional[str] = None
    status: OutcomeStatus
    occurrence_id: Optional[str] = None
    error: Optional[str] = None


class RunSummary(BaseModel):
    """
    Aggregate result of one materialization pass.

    A pass never fails atomically: per-template errors are counted here.
    Only a failure to list templates sets aborted=True.
    """

    run_id: UUID = Field(default_factory=uuid4)
    run_date: date
    started_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    template_count: int = Field(default=0, ge=0)
    created_count: int = Field(default=0, ge=0)
    skipped_count: int = Field(default=0, ge=0)
    error_count: int = Field(default=0, ge=0)
    outcomes: list[TemplateOutcome] = Field(default_factory=list)

    aborted: bool = False
    abort_reason: Optional[str] = None

    def record(self, outcome: TemplateOutcome) -> None:
        """Add a template outcome and bump the matching counter."""
        self.outcomes.append(outcome)
        if outcome.status == OutcomeStatus.CREATED:
            self.created_count += 1
        elif outcome.status == OutcomeStatus.FAILED:
            self.error_count += 1
        else:
            self.skipped_count += 1

    @property
    def created_occurrence_ids(self) -> list[str]:
        return [o.occurrence_id for o in self.outcomes if o.occurrence_id]


class MalformedRecord(BaseModel):
    """
    A stored template row that could not be parsed.

    Surfaced to the pass so it is counted as a failure instead of vanishing.
    """

    record_id: str
    user_id: Optional[str] = None
    error: str


class TemplateScan(BaseModel):
    """Active templates plus the template rows that failed to parse."""

    templates: list[Transaction] = Field(default_factory=list)
    malformed: list[MalformedRecord] = Field(default_factory=list)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'inconsistent')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ValidationResult(BaseModel):
    """Result of checking a template before it is evaluated."""

    template_id: str
    validated_at: datetime = Field(
        default_factory=datetime.utcnow
    )
    is_valid: bool
    issues: list[ValidationIssue] = Field(
        default_factory=list,
        description="All validation issues found"
    )

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")
