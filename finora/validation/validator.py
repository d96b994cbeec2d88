"""
Template Validation

Recurring templates come from a store that the CRUD layer writes and the
ledger owner can edit by hand (the Sheets backend is a plain spreadsheet).
Before a template is evaluated it is checked here.

- ERROR issues make the template malformed. The pass counts it as a
  per-template failure and moves on.
- WARNING issues never block. They describe templates that will behave
  in surprising ways (never firing, firing on a shifted schedule).

IMPORTANT: Validation NEVER silently fixes issues.
It reports them so the pass can count and log them.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from finora.models.transaction import (
    RecurringFrequency,
    Transaction,
    ValidationIssue,
    ValidationResult,
)
from finora.recurring.errors import TemplateValidationError

# Shortest month length; monthly anchors past this skip some months
SHORTEST_MONTH_DAYS = 28


class TemplateValidator:
    """Checks a recurring template before the decision engine sees it."""

    def validate(
        self,
        template: Transaction,
        today: Optional[date] = None,
    ) -> ValidationResult:
        """
        Run all checks on a template.

        Args:
            template: The recurring template to check
            today: Date of the pass (used for anchor sanity checks)

        Returns:
            ValidationResult with all issues found
        """
        issues: list[ValidationIssue] = []
        today = today or date.today()

        if not template.is_recurring:
            issues.append(ValidationIssue(
                field="is_recurring",
                issue_type="not_eligible",
                message="Transaction is not a recurring template",
                severity="error",
            ))
        if template.is_deleted:
            issues.append(ValidationIssue(
                field="is_deleted",
                issue_type="not_eligible",
                message="Template has been deleted",
                severity="error",
            ))

        if not template.user_id:
            issues.append(ValidationIssue(
                field="user_id",
                issue_type="missing",
                message="Template has no owner",
                severity="error",
            ))
        if not template.category:
            issues.append(ValidationIssue(
                field="category",
                issue_type="missing",
                message="Template has no category",
                severity="error",
            ))
        if template.amount is None or Decimal(template.amount) < 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message=f"Amount must be non-negative (got {template.amount})",
                severity="error",
            ))

        # Missing frequency is not malformed: the rule simply never fires
        if template.recurring_frequency is None:
            issues.append(ValidationIssue(
                field="recurring_frequency",
                issue_type="missing",
                message="Template has no frequency and will never fire",
                severity="warning",
            ))
        elif (
            template.recurring_frequency == RecurringFrequency.MONTHLY
            and template.date.day > SHORTEST_MONTH_DAYS
        ):
            issues.append(ValidationIssue(
                field="date",
                issue_type="calendar_gap",
                message=(
                    f"Monthly anchor on day {template.date.day} does not fire "
                    "in months without that day"
                ),
                severity="warning",
            ))

        if template.date > today:
            issues.append(ValidationIssue(
                field="date",
                issue_type="future_date",
                message=f"Anchor date ({template.date}) is in the future",
                severity="warning",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)

        return ValidationResult(
            template_id=template.id,
            is_valid=is_valid,
            issues=issues,
        )

    def ensure_valid(
        self,
        template: Transaction,
        today: Optional[date] = None,
    ) -> ValidationResult:
        """Validate and raise TemplateValidationError on any error-level issue."""
        result = self.validate(template, today)
        if not result.is_valid:
            raise TemplateValidationError(
                template.id,
                [i.message for i in result.issues if i.severity == "error"],
            )
        return result
