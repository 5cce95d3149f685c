"""
Rule Validation

DESIGN DECISION: Validation happens in two distinct stages:

STAGE 1 - SCHEMA:
- The stored document parses into a RecurrenceRule
- Dates parse, frequency and kind are known values
- This catches corrupted or hand-edited documents

STAGE 2 - SCHEDULING:
- An account is set
- The amount is positive
- This catches rules that parse but cannot produce a ledger transaction

A rule failing either stage is an INVALID RULE: the scheduler skips it for
this pass and tries again next time. It is never deactivated and never
repaired - the data issue may be transient.

User writes are validated much more loosely (account required, the rest
only warned about), so the scheduler must cope with whatever gets stored.
"""

from typing import Optional

from pydantic import ValidationError

from recurring_ledger.models.recurring import (
    LedgerCategory,
    RecurrenceRule,
    RecurrenceRuleCreate,
    ValidationIssue,
    ValidationResult,
)


LEDGER_CATEGORY_VALUES = {c.value for c in LedgerCategory}


class InvalidRuleError(Exception):
    """A rule that cannot be scheduled in this pass."""

    def __init__(self, rule_id: Optional[str], reasons: list[str]):
        self.rule_id = rule_id
        self.reasons = reasons
        super().__init__(
            f"Invalid recurring rule {rule_id or '<unknown>'}: {'; '.join(reasons)}"
        )


class RuleValidator:
    """
    Decides whether a stored rule can be scheduled.

    Stage 1: Schema (document -> RecurrenceRule)
    Stage 2: Scheduling (account, amount)
    """

    def _parse(self, document: dict) -> tuple[Optional[RecurrenceRule], list[ValidationIssue]]:
        """Stage 1: turn the document into a rule."""
        try:
            return RecurrenceRule.from_document(document), []
        except ValidationError as e:
            issues = [
                ValidationIssue(
                    field=".".join(str(p) for p in err["loc"]) or "document",
                    issue_type="unparseable",
                    message=err["msg"],
                    severity="error",
                )
                for err in e.errors()
            ]
            return None, issues

    def _validate_scheduling(self, rule: RecurrenceRule) -> list[ValidationIssue]:
        """Stage 2: can this rule produce a ledger transaction?"""
        issues = []

        if not rule.account_id:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="missing",
                message="Rule has no account to credit or debit",
                severity="error",
            ))

        if rule.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message=f"Amount must be greater than zero (got {rule.amount})",
                severity="error",
            ))

        if rule.category not in LEDGER_CATEGORY_VALUES:
            issues.append(ValidationIssue(
                field="category",
                issue_type="unknown_category",
                message=(
                    f"Category '{rule.category}' is not a ledger category; "
                    f"transactions will be recorded as {LedgerCategory.OTHER.value}"
                ),
                severity="info",
            ))

        if rule.end_date and rule.end_date < rule.start_date:
            issues.append(ValidationIssue(
                field="end_date",
                issue_type="inconsistent",
                message="End date is before start date; the rule will never fire",
                severity="warning",
            ))

        return issues

    def validate_document(self, document: dict) -> tuple[Optional[RecurrenceRule], ValidationResult]:
        """
        Run both stages on a stored document.

        Returns:
            (rule or None if stage 1 failed, validation result)
        """
        rule, issues = self._parse(document)
        if rule is not None:
            issues.extend(self._validate_scheduling(rule))

        return rule, ValidationResult(
            rule_id=document.get("id"),
            issues=issues,
        )

    def require_schedulable(self, document: dict) -> RecurrenceRule:
        """
        Parse and check a stored rule, or refuse it.

        Raises:
            InvalidRuleError: If the rule cannot be scheduled this pass
        """
        rule, result = self.validate_document(document)
        if rule is None or result.has_errors:
            raise InvalidRuleError(
                rule_id=result.rule_id,
                reasons=[
                    f"{issue.field}: {issue.message}"
                    for issue in result.issues
                    if issue.severity == "error"
                ],
            )
        return rule

    def validate_for_write(self, draft: RecurrenceRuleCreate) -> ValidationResult:
        """
        Check user input before a rule is created.

        Only a missing account blocks the write. Everything else is a
        warning - the scheduler skips what it cannot run.
        """
        issues = []

        if not draft.account_id:
            issues.append(ValidationIssue(
                field="account_id",
                issue_type="missing",
                message="Account is required for recurring transactions",
                severity="error",
            ))

        if draft.amount <= 0:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="invalid_value",
                message="Amount should be greater than zero; the rule will not run",
                severity="warning",
            ))

        if draft.end_date and draft.end_date < draft.start_date:
            issues.append(ValidationIssue(
                field="end_date",
                issue_type="inconsistent",
                message="End date is before start date; the rule will never fire",
                severity="warning",
            ))

        return ValidationResult(issues=issues)

    def get_user_friendly_summary(self, result: ValidationResult) -> str:
        """First error message, or an empty string if the result is clean."""
        for issue in result.issues:
            if issue.severity == "error":
                return issue.message
        return ""
