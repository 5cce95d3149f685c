"""
Occurrence Materializer

Turns the due occurrences of ONE rule into ledger transactions and moves
the rule's cursor forward.

DESIGN DECISION: Writes happen in order, one at a time, and the cursor
only moves past an occurrence whose ledger write succeeded. The cursor is
persisted once, after the walk. Consequences:
- A failed write stops the rule; the next pass retries that occurrence.
- If the cursor write itself fails after transactions were created, the
  next pass creates them again. Delivery is AT-LEAST-ONCE; there is no
  idempotency key on the ledger side.
"""

from datetime import date
from typing import Optional
from uuid import UUID

import structlog

from recurring_ledger.audit import AuditLogger
from recurring_ledger.models.recurring import (
    LedgerCategory,
    LedgerResult,
    Occurrence,
    PaymentMethod,
    RecurrenceRule,
    RuleOutcome,
    StopReason,
    TransactionDraft,
    TransactionKind,
    utcnow,
)
from recurring_ledger.scheduling.scheduler import DEFAULT_MAX_ITERATIONS, ScheduleWalk
from recurring_ledger.services.storage import (
    LedgerInterface,
    RuleStoreInterface,
    StorageError,
)
from recurring_ledger.validation.validator import LEDGER_CATEGORY_VALUES


logger = structlog.get_logger("recurring_ledger.scheduling")


def ledger_category(label: str, fallback: str = LedgerCategory.OTHER.value) -> LedgerCategory:
    """Map a free-form rule category onto the ledger's category set."""
    if label in LEDGER_CATEGORY_VALUES:
        return LedgerCategory(label)
    return LedgerCategory(fallback)


def payment_method(kind: TransactionKind) -> PaymentMethod:
    """Income lands as a direct deposit, expenses leave by bank transfer."""
    if kind == TransactionKind.INCOME:
        return PaymentMethod.DIRECT_DEPOSIT
    return PaymentMethod.BANK_TRANSFER


def build_draft(
    rule: RecurrenceRule,
    occurrence: Occurrence,
    fallback_category: str = LedgerCategory.OTHER.value,
) -> TransactionDraft:
    """The ledger payload for one occurrence of *rule*."""
    return TransactionDraft(
        amount=rule.amount,
        kind=rule.kind,
        category=ledger_category(rule.category, fallback_category),
        date=occurrence.materialized_date,
        description=rule.description or f"Recurring {rule.kind.value}",
        method=payment_method(rule.kind),
        account_id=rule.account_id,
        recurring_rule_id=rule.id,
    )


class Materializer:
    """
    Catch-up for a single rule.

    Flow:
    1. Walk due occurrences from the cursor, oldest first
    2. Write each one to the ledger; stop on the first failure
    3. Persist the new cursor (and deactivate past the end date)
    """

    def __init__(
        self,
        rule_store: RuleStoreInterface,
        ledger: LedgerInterface,
        audit_logger: Optional[AuditLogger] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        fallback_category: str = LedgerCategory.OTHER.value,
    ):
        self._rule_store = rule_store
        self._ledger = ledger
        self._audit_logger = audit_logger or AuditLogger()  # Local-only logging
        self._max_iterations = max_iterations
        self._fallback_category = fallback_category

    async def _write(self, rule: RecurrenceRule, draft: TransactionDraft) -> LedgerResult:
        # A raising ledger counts as a failed write
        try:
            return await self._ledger.create_transaction(rule.owner_id, draft)
        except Exception as e:
            return LedgerResult(success=False, error=str(e) or type(e).__name__)

    @staticmethod
    def cursor_changes(
        rule: RecurrenceRule,
        walk: ScheduleWalk,
        last_processed: Optional[date],
    ) -> dict:
        """
        Fields to merge into the stored rule after a walk.

        Empty when nothing moved, so an idle pass writes nothing.
        """
        changes = {}

        if last_processed != rule.last_processed:
            changes["last_processed"] = last_processed.isoformat() if last_processed else None

        next_date = None if walk.exhausted else walk.cursor
        if next_date != rule.next_process_date:
            changes["next_process_date"] = next_date.isoformat() if next_date else None

        if walk.exhausted and rule.is_active:
            changes["is_active"] = False

        if changes:
            changes["updated_at"] = utcnow().isoformat()
        return changes

    async def materialize(
        self,
        rule: RecurrenceRule,
        today: date,
        correlation_id: UUID,
    ) -> RuleOutcome:
        """
        Create every due transaction for *rule* and advance its cursor.

        Never raises for ledger or cursor-write failures; they are reported
        on the returned outcome.
        """
        walk = ScheduleWalk(rule, today, self._max_iterations)
        outcome = RuleOutcome(rule_id=rule.id)
        last_processed = rule.last_processed

        while True:
            occurrence = walk.current()
            if occurrence is None:
                break

            draft = build_draft(rule, occurrence, self._fallback_category)
            result = await self._write(rule, draft)

            if not result.success:
                walk.fail()
                outcome.error = result.error or "Ledger write failed"
                await self._audit_logger.log_ledger_write_failed(
                    owner_id=rule.owner_id,
                    rule_id=rule.id,
                    scheduled_date=occurrence.scheduled_date.isoformat(),
                    error_message=outcome.error,
                    correlation_id=correlation_id,
                )
                break

            outcome.transactions_created += 1
            last_processed = occurrence.scheduled_date
            await self._audit_logger.log_occurrence_materialized(
                owner_id=rule.owner_id,
                rule_id=rule.id,
                transaction_id=result.id,
                scheduled_date=occurrence.scheduled_date.isoformat(),
                materialized_date=occurrence.materialized_date.isoformat(),
                amount=str(rule.amount),
                correlation_id=correlation_id,
            )
            walk.advance()

        outcome.stop_reason = walk.stop_reason

        changes = self.cursor_changes(rule, walk, last_processed)
        if changes:
            try:
                await self._rule_store.update(rule.owner_id, rule.id, changes)
            except StorageError as e:
                # Transactions above stay in the ledger; the next pass repeats them
                outcome.error = f"Cursor update failed: {e}"
                logger.error(
                    "cursor_update_failed",
                    rule_id=rule.id,
                    transactions_created=outcome.transactions_created,
                    error=str(e),
                )
                await self._audit_logger.log_external_service_error(
                    service="rule_store",
                    error_message=outcome.error,
                    owner_id=rule.owner_id,
                    correlation_id=correlation_id,
                )
                return outcome

        if changes.get("is_active") is False:
            outcome.deactivated = True
            await self._audit_logger.log_rule_deactivated(
                owner_id=rule.owner_id,
                rule_id=rule.id,
                end_date=rule.end_date.isoformat() if rule.end_date else None,
                correlation_id=correlation_id,
            )

        if walk.stop_reason == StopReason.CAP_REACHED:
            await self._audit_logger.log_catch_up_capped(
                owner_id=rule.owner_id,
                rule_id=rule.id,
                resume_from=walk.cursor.isoformat(),
                iterations=walk.steps,
                correlation_id=correlation_id,
            )

        return outcome
