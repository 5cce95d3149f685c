"""
Main Orchestrator for Recurring Ledger

This module ties together all the components and defines the
user-facing flows for recurring rules:
1. Rule CRUD (create, update, delete)
2. Read paths (list rules, get a rule, list transactions, preview)

DESIGN DECISION: Every read path first catches the owner's rules up to
today by calling ensure_processed(). Nothing runs in the background: a
rule only materializes when somebody looks.

CRUD methods never raise storage errors to the caller. They return an
OperationResult whose error the caller shows as a transient notification.
Read paths degrade to an empty answer when storage is down.
"""

from datetime import date
from typing import Optional

import structlog
from pydantic import ValidationError

from recurring_ledger.audit import AuditLogger
from recurring_ledger.config import get_settings
from recurring_ledger.models.recurring import (
    LedgerTransaction,
    Occurrence,
    OperationResult,
    ProcessingReport,
    RecurrenceRule,
    RecurrenceRuleCreate,
    RecurrenceRuleUpdate,
    RuleWithAccount,
    utcnow,
)
from recurring_ledger.scheduling import (
    DueTransactionProcessor,
    seed_process_date,
    upcoming_occurrences,
)
from recurring_ledger.services.storage import (
    AccountLookupInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedger,
    GoogleSheetsRuleStore,
    InMemoryAuditStorage,
    InMemoryLedger,
    InMemoryRuleStore,
    LedgerInterface,
    NotFoundError,
    RuleStoreInterface,
    StorageError,
)
from recurring_ledger.utils.dates import DateLike, start_of_day
from recurring_ledger.validation import RuleValidator


logger = structlog.get_logger("recurring_ledger.orchestrator")

_SCHEDULE_FIELDS = ("frequency", "start_date")


class RecurringRuleFlow:
    """
    Orchestrates recurring rules for one application instance.

    Write flow:
    1. Validate input (account required)
    2. Compute the cursor the change implies
    3. Persist, audit

    Read flow:
    1. ensure_processed(owner)  -> due transactions materialized
    2. Load, decorate, return
    """

    def __init__(
        self,
        rule_store: RuleStoreInterface,
        ledger: LedgerInterface,
        account_lookup: Optional[AccountLookupInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[RuleValidator] = None,
        processor: Optional[DueTransactionProcessor] = None,
    ):
        self._rule_store = rule_store
        self._ledger = ledger
        self._account_lookup = account_lookup
        self._audit_logger = audit_logger
        self._validator = validator or RuleValidator()
        self._processor = processor or DueTransactionProcessor(
            rule_store=rule_store,
            ledger=ledger,
            audit_logger=audit_logger,
            validator=self._validator,
        )

    # -- processing ---------------------------------------------------------

    async def ensure_processed(
        self,
        owner_id: str,
        today: Optional[DateLike] = None,
    ) -> ProcessingReport:
        """
        Materialize everything due for *owner_id* as of *today*.

        Raises:
            StorageError: If the owner's active rules cannot be listed
        """
        return await self._processor.run(owner_id, today)

    async def _catch_up(self, owner_id: str, today: Optional[DateLike]) -> None:
        # Reads still answer when processing cannot run
        try:
            await self.ensure_processed(owner_id, today)
        except StorageError as e:
            logger.error("ensure_processed_failed", owner_id=owner_id, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_external_service_error(
                    service="rule_store",
                    error_message=str(e),
                    owner_id=owner_id,
                )

    # -- writes -------------------------------------------------------------

    async def create_rule(
        self,
        owner_id: str,
        draft: RecurrenceRuleCreate,
    ) -> OperationResult:
        """
        Store a new rule.

        The cursor starts at start_date, so a rule created with a past
        start date is backfilled on the next read.
        """
        validation = self._validator.validate_for_write(draft)
        if validation.has_errors:
            return OperationResult(
                success=False,
                error=self._validator.get_user_friendly_summary(validation),
            )

        rule = RecurrenceRule(
            owner_id=owner_id,
            last_processed=None,
            next_process_date=draft.start_date,
            **draft.model_dump(),
        )

        try:
            rule_id = await self._rule_store.add(owner_id, rule.to_document())
        except StorageError as e:
            logger.error("rule_create_failed", owner_id=owner_id, error=str(e))
            return OperationResult(success=False, error=str(e))

        if self._audit_logger:
            await self._audit_logger.log_rule_created(
                owner_id=owner_id,
                rule_id=rule_id,
                frequency=rule.frequency.value,
                amount=str(rule.amount),
            )
        return OperationResult(success=True, id=rule_id)

    def _cursor_for_update(
        self,
        stored: RecurrenceRule,
        update: RecurrenceRuleUpdate,
        today: date,
    ) -> Optional[dict]:
        """
        Cursor fields implied by an edit, or None when it keeps the cursor.

        Reactivation restarts from today; a schedule change re-aligns the
        current cursor to the new cadence.
        """
        changes = update.changes()
        start = update.start_date or stored.start_date
        frequency = update.frequency or stored.frequency

        if not stored.is_active and changes.get("is_active") is True:
            return {
                "next_process_date": seed_process_date(
                    start, frequency, today
                ).isoformat(),
            }

        stays_active = changes.get("is_active", stored.is_active)
        if stays_active and any(f in changes for f in _SCHEDULE_FIELDS):
            reference = stored.next_process_date or start
            return {
                "next_process_date": seed_process_date(
                    start, frequency, reference
                ).isoformat(),
            }

        return None

    async def update_rule(
        self,
        owner_id: str,
        rule_id: str,
        update: RecurrenceRuleUpdate,
        today: Optional[DateLike] = None,
    ) -> OperationResult:
        """Apply a partial edit, recomputing the cursor when the schedule moved."""
        day = start_of_day(today) if today is not None else date.today()

        try:
            document = await self._rule_store.get(owner_id, rule_id)
            if document is None:
                return OperationResult(success=False, error=f"Recurring rule not found: {rule_id}")

            changes = update.changes()
            if "account_id" in changes and not update.account_id:
                return OperationResult(
                    success=False,
                    error="Account is required for recurring transactions",
                )

            cursor = None
            try:
                stored = RecurrenceRule.from_document(document, rule_id)
                cursor = self._cursor_for_update(stored, update, day)
            except ValidationError:
                # A broken document is still editable; the scheduler decides later
                logger.warning("rule_update_unparseable", rule_id=rule_id)

            fields = dict(changes)
            if cursor:
                fields.update(cursor)
            fields["updated_at"] = utcnow().isoformat()

            await self._rule_store.update(owner_id, rule_id, fields)
        except NotFoundError:
            return OperationResult(success=False, error=f"Recurring rule not found: {rule_id}")
        except StorageError as e:
            logger.error("rule_update_failed", rule_id=rule_id, error=str(e))
            return OperationResult(success=False, error=str(e))

        if self._audit_logger:
            await self._audit_logger.log_rule_updated(
                owner_id=owner_id,
                rule_id=rule_id,
                changed_fields=sorted(changes),
                cursor_recomputed=cursor is not None,
            )
        return OperationResult(success=True, id=rule_id)

    async def delete_rule(self, owner_id: str, rule_id: str) -> OperationResult:
        """Remove a rule. Transactions it already created stay in the ledger."""
        try:
            deleted = await self._rule_store.delete(owner_id, rule_id)
        except StorageError as e:
            logger.error("rule_delete_failed", rule_id=rule_id, error=str(e))
            return OperationResult(success=False, error=str(e))

        if not deleted:
            return OperationResult(success=False, error=f"Recurring rule not found: {rule_id}")

        if self._audit_logger:
            await self._audit_logger.log_rule_deleted(owner_id, rule_id)
        return OperationResult(success=True, id=rule_id)

    # -- reads --------------------------------------------------------------

    async def _decorate(self, owner_id: str, rule: RecurrenceRule) -> RuleWithAccount:
        decorated = RuleWithAccount(**rule.model_dump())
        if rule.account_id and self._account_lookup:
            try:
                decorated.account = await self._account_lookup.get_account(
                    owner_id, rule.account_id
                )
            except Exception as e:
                logger.warning(
                    "account_lookup_failed",
                    rule_id=rule.id,
                    account_id=rule.account_id,
                    error=str(e),
                )
        return decorated

    async def list_rules(
        self,
        owner_id: str,
        today: Optional[DateLike] = None,
    ) -> list[RuleWithAccount]:
        """All rules of the owner, newest first, with their accounts."""
        await self._catch_up(owner_id, today)

        try:
            documents = await self._rule_store.list_all(owner_id)
        except StorageError as e:
            logger.error("rule_list_failed", owner_id=owner_id, error=str(e))
            return []

        rules = []
        for document in documents:
            try:
                rule = RecurrenceRule.from_document(document)
            except ValidationError:
                logger.warning("rule_unparseable", rule_id=document.get("id"))
                continue
            rules.append(await self._decorate(owner_id, rule))
        return rules

    async def get_rule(
        self,
        owner_id: str,
        rule_id: str,
        today: Optional[DateLike] = None,
    ) -> Optional[RuleWithAccount]:
        """One rule with its account, or None if missing or unreadable."""
        await self._catch_up(owner_id, today)

        try:
            document = await self._rule_store.get(owner_id, rule_id)
        except StorageError as e:
            logger.error("rule_get_failed", rule_id=rule_id, error=str(e))
            return None
        if document is None:
            return None

        try:
            rule = RecurrenceRule.from_document(document, rule_id)
        except ValidationError:
            logger.warning("rule_unparseable", rule_id=rule_id)
            return None
        return await self._decorate(owner_id, rule)

    async def list_transactions(
        self,
        owner_id: str,
        account_id: Optional[str] = None,
        limit: int = 100,
        today: Optional[DateLike] = None,
    ) -> list[LedgerTransaction]:
        """Ledger transactions, newest first, after catching rules up."""
        await self._catch_up(owner_id, today)

        try:
            return await self._ledger.list_transactions(owner_id, account_id, limit)
        except StorageError as e:
            logger.error("transaction_list_failed", owner_id=owner_id, error=str(e))
            return []

    async def preview_rule(
        self,
        owner_id: str,
        rule_id: str,
        limit: int = 5,
        today: Optional[DateLike] = None,
    ) -> list[Occurrence]:
        """The next *limit* occurrences of a rule, after today."""
        day = start_of_day(today) if today is not None else date.today()
        rule = await self.get_rule(owner_id, rule_id, today=day)
        if rule is None:
            return []
        return upcoming_occurrences(rule, limit=limit, after=day)


def create_app_components(
    storage_backend: Optional[str] = None,
) -> tuple[RecurringRuleFlow, Optional[GoogleSheetsClient]]:
    """
    Factory function to create all application components.

    Args:
        storage_backend: "memory" or "google_sheets".
                    Defaults to the configured backend.

    Returns:
        (rule_flow, sheets_client)
    """
    backend = storage_backend or get_settings().app.storage_backend
    sheets_client = None

    if backend == "google_sheets":
        try:
            sheets_client = GoogleSheetsClient()
            rule_store = GoogleSheetsRuleStore(sheets_client)
            ledger = GoogleSheetsLedger(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - fall back to memory
            logger.warning("storage_not_configured", backend=backend, error=str(e))
            sheets_client = None
            backend = "memory"

    if backend != "google_sheets":
        rule_store = InMemoryRuleStore()
        ledger = InMemoryLedger()
        audit_logger = AuditLogger(InMemoryAuditStorage())

    rule_flow = RecurringRuleFlow(
        rule_store=rule_store,
        ledger=ledger,
        account_lookup=ledger,
        audit_logger=audit_logger,
    )
    return rule_flow, sheets_client
