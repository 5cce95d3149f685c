"""
Audit Logger

DESIGN DECISION: Every rule edit and every scheduler decision is logged.
This provides:
1. Traceability from ledger transaction back to rule and run
2. Debugging capability when a catch-up stops early
3. User-visible history of their recurring rules

The audit logger:
- Is async so it fits the scheduler's await chain
- Gracefully handles failures (a broken audit sink never stops scheduling)
- Supports correlation IDs to tie together one processor run
"""

from typing import Optional
from uuid import UUID, uuid4

import structlog

from recurring_ledger.models.audit import AuditEvent, AuditEventBuilder
from recurring_ledger.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility), if configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("recurring_ledger.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    # -- user actions -------------------------------------------------------

    async def log_rule_created(
        self,
        owner_id: str,
        rule_id: str,
        frequency: str,
        amount: str,
    ) -> None:
        await self.log(AuditEventBuilder.rule_created(
            owner_id=owner_id,
            rule_id=rule_id,
            frequency=frequency,
            amount=amount,
        ))

    async def log_rule_updated(
        self,
        owner_id: str,
        rule_id: str,
        changed_fields: list[str],
        cursor_recomputed: bool,
    ) -> None:
        await self.log(AuditEventBuilder.rule_updated(
            owner_id=owner_id,
            rule_id=rule_id,
            changed_fields=changed_fields,
            cursor_recomputed=cursor_recomputed,
        ))

    async def log_rule_deleted(self, owner_id: str, rule_id: str) -> None:
        await self.log(AuditEventBuilder.rule_deleted(owner_id, rule_id))

    # -- scheduler ----------------------------------------------------------

    async def log_occurrence_materialized(
        self,
        owner_id: str,
        rule_id: Optional[str],
        transaction_id: Optional[str],
        scheduled_date: str,
        materialized_date: str,
        amount: str,
        correlation_id: UUID,
    ) -> None:
        """Log one ledger transaction created from a rule."""
        await self.log(AuditEventBuilder.occurrence_materialized(
            owner_id=owner_id,
            rule_id=rule_id,
            transaction_id=transaction_id,
            scheduled_date=scheduled_date,
            materialized_date=materialized_date,
            amount=amount,
            correlation_id=correlation_id,
        ))

    async def log_ledger_write_failed(
        self,
        owner_id: str,
        rule_id: Optional[str],
        scheduled_date: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.ledger_write_failed(
            owner_id=owner_id,
            rule_id=rule_id,
            scheduled_date=scheduled_date,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_rule_skipped(
        self,
        owner_id: str,
        rule_id: Optional[str],
        reasons: list[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.rule_skipped(
            owner_id=owner_id,
            rule_id=rule_id,
            reasons=reasons,
            correlation_id=correlation_id,
        ))

    async def log_rule_deactivated(
        self,
        owner_id: str,
        rule_id: Optional[str],
        end_date: Optional[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.rule_deactivated(
            owner_id=owner_id,
            rule_id=rule_id,
            end_date=end_date,
            correlation_id=correlation_id,
        ))

    async def log_catch_up_capped(
        self,
        owner_id: str,
        rule_id: Optional[str],
        resume_from: str,
        iterations: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.catch_up_capped(
            owner_id=owner_id,
            rule_id=rule_id,
            resume_from=resume_from,
            iterations=iterations,
            correlation_id=correlation_id,
        ))

    async def log_processing_completed(
        self,
        owner_id: str,
        rules_examined: int,
        transactions_created: int,
        rules_failed: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.processing_completed(
            owner_id=owner_id,
            rules_examined=rules_examined,
            transactions_created=transactions_created,
            rules_failed=rules_failed,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            owner_id=owner_id,
            correlation_id=correlation_id,
        ))

    async def log_external_service_error(
        self,
        service: str,
        error_message: str,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log external service error."""
        await self.log(AuditEventBuilder.external_service_error(
            service=service,
            error_message=error_message,
            owner_id=owner_id,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a processor run and pass it through
    every rule processed in that run.
    """
    return uuid4()
