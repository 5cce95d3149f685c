"""
Core Data Models for Recurring Ledger

These models define the schemas for everything the recurring scheduler
reads, writes and hands to its collaborators. They are designed to:
1. Normalize every date to a calendar day on the way in
2. Round-trip cleanly through document storage (plain dicts)
3. Keep scheduling state (the cursor) explicit and inspectable

DESIGN DECISION: Rules are stored as plain documents and parsed into
RecurrenceRule at processing time. A document that does not parse is an
invalid rule - it is skipped, never repaired.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from recurring_ledger.utils.dates import Frequency, start_of_day


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TransactionKind(str, Enum):
    """Whether money comes in or goes out."""
    INCOME = "income"
    EXPENSE = "expense"


class LedgerCategory(str, Enum):
    """
    Categories the ledger accepts.

    Rule categories are free-form labels; anything outside this set is
    recorded under OTHER when materialized.
    """
    FOOD = "Food"
    TRANSPORT = "Transport"
    SHOPPING = "Shopping"
    SALARY = "Salary"
    UTILITIES = "Utilities"
    ENTERTAINMENT = "Entertainment"
    INVESTMENT = "Investment"
    GIFT = "Gift"
    REFUND = "Refund"
    OTHER = "Other"


class PaymentMethod(str, Enum):
    """Payment methods the ledger accepts."""
    CREDIT_CARD = "Credit Card"
    DEBIT_CARD = "Debit Card"
    CASH = "Cash"
    BANK_TRANSFER = "Bank Transfer"
    DIRECT_DEPOSIT = "Direct Deposit"


class RuleState(str, Enum):
    """
    Lifecycle state of a rule, derived from its fields.

    PENDING    active, cursor due (or not yet computed)
    SCHEDULED  active, cursor in the future
    EXHAUSTED  inactive - past its end date or switched off by the user
    """
    PENDING = "pending"
    SCHEDULED = "scheduled"
    EXHAUSTED = "exhausted"


class StopReason(str, Enum):
    """Why a rule's catch-up walk stopped."""
    NOT_DUE = "not_due"                # next occurrence is after today
    PAST_END = "past_end"              # next occurrence is after end_date
    CAP_REACHED = "cap_reached"        # iteration cap hit, resume next pass
    LEDGER_FAILED = "ledger_failed"    # ledger write failed, retry next pass


# =============================================================================
# ACCOUNT MODEL (display metadata only)
# =============================================================================

class Account(BaseModel):
    """An account as seen by the recurring engine - used for display only."""
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id: str
    name: str = Field(
        default="",
        description="Account display name"
    )
    currency: str = Field(
        default="USD",
        max_length=10,
        description="ISO currency code"
    )
    balance: Decimal = Field(
        default=Decimal("0"),
        description="Current balance, maintained by the ledger"
    )


# =============================================================================
# RECURRENCE RULE
# =============================================================================

_DATE_FIELDS = ("start_date", "end_date", "last_processed", "next_process_date")


class RecurrenceRule(BaseModel):
    """
    The persisted definition of one recurring obligation.

    Scheduling state lives in the cursor pair:
    - last_processed: unadjusted date of the last materialized occurrence
    - next_process_date: next unadjusted date to evaluate (None = exhausted)

    Amount and account are NOT constrained here. A rule with a
    non-positive amount or no account is still a valid document; the
    scheduler skips it instead.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    id: Optional[str] = Field(
        default=None,
        description="Opaque identifier assigned by the rule store"
    )
    owner_id: str = Field(
        ...,
        min_length=1,
        description="Data partition (user) this rule belongs to"
    )

    amount: Decimal = Field(
        ...,
        description="Amount per occurrence"
    )
    kind: TransactionKind
    description: str = Field(
        default="",
        max_length=500,
    )
    category: str = Field(
        default=LedgerCategory.OTHER.value,
        description="Free-form category label"
    )
    account_id: Optional[str] = Field(
        default=None,
        description="Account to credit/debit - required for processing"
    )

    frequency: Frequency
    start_date: date
    end_date: Optional[date] = None
    is_active: bool = True
    pay_on_weekends: bool = True

    # Cursor
    last_processed: Optional[date] = None
    next_process_date: Optional[date] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator(*_DATE_FIELDS, mode="before")
    @classmethod
    def normalize_dates(cls, v: Any) -> Any:
        """Every schedule date is a calendar day."""
        if v is None or v == "":
            return None
        return start_of_day(v)

    @field_validator("account_id", mode="before")
    @classmethod
    def blank_account_is_missing(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def anchor_day(self) -> int:
        """Day-of-month re-applied on every monthly/quarterly/yearly step."""
        return self.start_date.day

    def state_on(self, today: date) -> RuleState:
        """Derive the lifecycle state as of *today*."""
        if not self.is_active:
            return RuleState.EXHAUSTED
        if self.next_process_date is not None and self.next_process_date > today:
            return RuleState.SCHEDULED
        return RuleState.PENDING

    @classmethod
    def from_document(cls, document: dict, rule_id: Optional[str] = None) -> "RecurrenceRule":
        """
        Parse a stored document.

        Raises:
            pydantic.ValidationError: If the document is malformed
        """
        data = dict(document)
        if rule_id is not None:
            data["id"] = rule_id
        return cls.model_validate(data)

    def to_document(self) -> dict:
        """Serialize to a JSON-friendly document (without the id)."""
        return self.model_dump(mode="json", exclude={"id"})


class RuleWithAccount(RecurrenceRule):
    """A rule decorated with its account, for display."""

    account: Optional[Account] = None


class RecurrenceRuleCreate(BaseModel):
    """
    User input for a new rule.

    DESIGN DECISION: Only the account is enforced at write time.
    Everything else the scheduler copes with on its own.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Decimal
    kind: TransactionKind
    description: str = ""
    category: str = LedgerCategory.OTHER.value
    account_id: Optional[str] = None
    frequency: Frequency
    start_date: date
    end_date: Optional[date] = None
    is_active: bool = True
    pay_on_weekends: bool = True

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def normalize_dates(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        return start_of_day(v)


class RecurrenceRuleUpdate(BaseModel):
    """
    Partial user edit of a rule.

    Only fields explicitly set are written (see changes()).
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    amount: Optional[Decimal] = None
    kind: Optional[TransactionKind] = None
    description: Optional[str] = None
    category: Optional[str] = None
    account_id: Optional[str] = None
    frequency: Optional[Frequency] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None
    pay_on_weekends: Optional[bool] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def normalize_dates(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        return start_of_day(v)

    def changes(self) -> dict:
        """Fields the caller actually set, JSON-friendly."""
        return self.model_dump(mode="json", exclude_unset=True)


# =============================================================================
# OCCURRENCES AND LEDGER PAYLOADS
# =============================================================================

class Occurrence(BaseModel):
    """
    One due instance of a rule. Ephemeral - never stored.

    scheduled_date drives the cadence; materialized_date is what the
    ledger records (weekend-shifted when the rule asks for it).
    """
    model_config = ConfigDict(frozen=True)

    scheduled_date: date
    materialized_date: date

    @property
    def is_shifted(self) -> bool:
        return self.scheduled_date != self.materialized_date


class TransactionDraft(BaseModel):
    """Payload handed to the ledger for one materialized occurrence."""

    amount: Decimal = Field(..., gt=0)
    kind: TransactionKind
    category: LedgerCategory
    date: date
    description: str
    method: PaymentMethod
    account_id: str = Field(..., min_length=1)
    recurring_rule_id: Optional[str] = Field(
        default=None,
        description="Rule that produced this transaction (traceability only)"
    )

    @property
    def signed_amount(self) -> Decimal:
        """Balance effect: income adds, expense subtracts."""
        return self.amount if self.kind == TransactionKind.INCOME else -self.amount


class LedgerTransaction(TransactionDraft):
    """A transaction as stored by the ledger."""

    id: str
    owner_id: str
    created_at: datetime = Field(default_factory=utcnow)


class LedgerResult(BaseModel):
    """Outcome of a ledger write."""

    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


class OperationResult(BaseModel):
    """
    Outcome of a user-facing rule operation.

    The caller shows error as a transient notification.
    """

    success: bool
    id: Optional[str] = None
    error: Optional[str] = None


# =============================================================================
# PROCESSING REPORT
# =============================================================================

class RuleOutcome(BaseModel):
    """What one processor pass did to one rule."""

    rule_id: Optional[str] = None
    transactions_created: int = Field(default=0, ge=0)
    stop_reason: Optional[StopReason] = None
    skipped: bool = False
    deactivated: bool = False
    error: Optional[str] = None


class ProcessingReport(BaseModel):
    """
    Totals for one processor invocation.

    transactions_created is the figure process_due_occurrences() returns.
    """

    correlation_id: UUID = Field(default_factory=uuid4)
    owner_id: str
    today: date
    started_at: datetime = Field(default_factory=utcnow)
    outcomes: list[RuleOutcome] = Field(default_factory=list)

    @property
    def rules_examined(self) -> int:
        return len(self.outcomes)

    @property
    def rules_skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def rules_failed(self) -> int:
        return sum(1 for o in self.outcomes if o.error and not o.skipped)

    @property
    def rules_deactivated(self) -> int:
        return sum(1 for o in self.outcomes if o.deactivated)

    @property
    def transactions_created(self) -> int:
        return sum(o.transactions_created for o in self.outcomes)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found on a rule."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_value', 'unparseable')"
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
    """Result of checking whether a rule can be scheduled."""

    rule_id: Optional[str] = None
    validated_at: datetime = Field(default_factory=utcnow)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.has_errors

    @property
    def has_errors(self) -> bool:
        """Check if there are any error-level issues."""
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        """Count error-level issues."""
        return sum(1 for issue in self.issues if issue.severity == "error")

    @model_validator(mode="after")
    def sort_errors_first(self) -> "ValidationResult":
        order = {"error": 0, "warning": 1, "info": 2}
        self.issues.sort(key=lambda i: order[i.severity])
        return self
