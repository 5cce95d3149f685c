"""
Due-Transaction Processor

One pass over all active rules of an owner: catch each rule up to today.

DESIGN DECISION: Rules are isolated from each other. An invalid rule is
skipped, a failing rule is recorded, and the pass moves on to the next
rule. Only failing to LIST the rules aborts the pass, because then there
is nothing to process.

There is NO concurrency guard. Two passes for the same owner running at
the same time read the same cursor and both materialize the same
occurrences. Callers that can overlap (e.g. several open sessions) must
serialize passes themselves.
"""

from datetime import date
from typing import Optional

import structlog

from recurring_ledger.audit import AuditLogger
from recurring_ledger.config import get_settings
from recurring_ledger.models.recurring import ProcessingReport, RuleOutcome
from recurring_ledger.scheduling.materializer import Materializer
from recurring_ledger.services.storage import LedgerInterface, RuleStoreInterface
from recurring_ledger.utils.dates import DateLike, start_of_day
from recurring_ledger.validation import InvalidRuleError, RuleValidator


logger = structlog.get_logger("recurring_ledger.scheduling")


class DueTransactionProcessor:
    """
    Materializes every due occurrence for one owner.

    Flow:
    1. List the owner's active rules (failure here propagates)
    2. For each rule: validate -> materialize -> record outcome
    3. Log a summary under one correlation ID
    """

    def __init__(
        self,
        rule_store: RuleStoreInterface,
        ledger: LedgerInterface,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[RuleValidator] = None,
        materializer: Optional[Materializer] = None,
    ):
        scheduler_settings = get_settings().scheduler

        self._rule_store = rule_store
        self._audit_logger = audit_logger or AuditLogger()  # Local-only logging
        self._validator = validator or RuleValidator()
        self._materializer = materializer or Materializer(
            rule_store=rule_store,
            ledger=ledger,
            audit_logger=self._audit_logger,
            max_iterations=scheduler_settings.max_catch_up_iterations,
            fallback_category=scheduler_settings.fallback_category,
        )

    async def run(
        self,
        owner_id: str,
        today: Optional[DateLike] = None,
    ) -> ProcessingReport:
        """
        Process all active rules of *owner_id* as of *today*.

        Args:
            owner_id: Data partition to process
            today: Processing date; defaults to the local calendar day

        Returns:
            Per-rule outcomes and totals

        Raises:
            StorageError: If the active rules cannot be listed
        """
        day = start_of_day(today) if today is not None else date.today()
        report = ProcessingReport(owner_id=owner_id, today=day)

        documents = await self._rule_store.list_active(owner_id)

        for document in documents:
            report.outcomes.append(await self._process_one(owner_id, document, report))

        await self._audit_logger.log_processing_completed(
            owner_id=owner_id,
            rules_examined=report.rules_examined,
            transactions_created=report.transactions_created,
            rules_failed=report.rules_failed,
            correlation_id=report.correlation_id,
        )
        return report

    async def _process_one(
        self,
        owner_id: str,
        document: dict,
        report: ProcessingReport,
    ) -> RuleOutcome:
        rule_id = document.get("id")

        try:
            # The partition a rule is stored under is its owner
            rule = self._validator.require_schedulable(dict(document, owner_id=owner_id))
        except InvalidRuleError as e:
            await self._audit_logger.log_rule_skipped(
                owner_id=owner_id,
                rule_id=rule_id,
                reasons=e.reasons,
                correlation_id=report.correlation_id,
            )
            return RuleOutcome(rule_id=rule_id, skipped=True, error=str(e))

        try:
            return await self._materializer.materialize(rule, report.today, report.correlation_id)
        except Exception as e:
            # One broken rule must not stop its siblings
            logger.exception("rule_processing_failed", rule_id=rule_id)
            await self._audit_logger.log_error(
                error_type="rule_processing_failed",
                error_message=str(e),
                details={"rule_id": rule_id},
                owner_id=owner_id,
                correlation_id=report.correlation_id,
            )
            return RuleOutcome(rule_id=rule_id, error=str(e) or type(e).__name__)

    async def process_due_occurrences(
        self,
        owner_id: str,
        today: Optional[DateLike] = None,
    ) -> int:
        """Run a pass and return how many transactions it created."""
        report = await self.run(owner_id, today)
        return report.transactions_created
