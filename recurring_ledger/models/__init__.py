"""
Data Models Package

This package contains all Pydantic models used by the recurring scheduler.
All data flowing between the scheduler and its collaborators conforms to these schemas.
"""

from recurring_ledger.models.recurring import (
    Account,
    LedgerCategory,
    LedgerResult,
    LedgerTransaction,
    Occurrence,
    OperationResult,
    PaymentMethod,
    ProcessingReport,
    RecurrenceRule,
    RecurrenceRuleCreate,
    RecurrenceRuleUpdate,
    RuleOutcome,
    RuleState,
    RuleWithAccount,
    StopReason,
    TransactionDraft,
    TransactionKind,
    ValidationIssue,
    ValidationResult,
)
from recurring_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from recurring_ledger.utils.dates import Frequency

__all__ = [
    # Recurring models
    "Account",
    "Frequency",
    "LedgerCategory",
    "LedgerResult",
    "LedgerTransaction",
    "Occurrence",
    "OperationResult",
    "PaymentMethod",
    "ProcessingReport",
    "RecurrenceRule",
    "RecurrenceRuleCreate",
    "RecurrenceRuleUpdate",
    "RuleOutcome",
    "RuleState",
    "RuleWithAccount",
    "StopReason",
    "TransactionDraft",
    "TransactionKind",
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
