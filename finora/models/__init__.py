"""
Data Models Package

This package contains all Pydantic models used by the Finora recurring engine.
All data flowing through the engine must conform to these schemas.
"""

from finora.models.transaction import (
    MalformedRecord,
    MaterializationDecision,
    OutcomeStatus,
    RecurringFrequency,
    ReferenceKind,
    RunSummary,
    TemplateOutcome,
    TemplateScan,
    Transaction,
    TransactionType,
    ValidationIssue,
    ValidationResult,
)
from finora.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Transaction models
    "MalformedRecord",
    "MaterializationDecision",
    "OutcomeStatus",
    "RecurringFrequency",
    "ReferenceKind",
    "RunSummary",
    "TemplateOutcome",
    "TemplateScan",
    "Transaction",
    "TransactionType",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
