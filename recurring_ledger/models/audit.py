"""
Audit Models for Recurring Ledger

Every rule edit and every materialized occurrence is logged for audit
purposes. This provides:
1. Traceability from a ledger transaction back to the rule that produced it
2. Debugging information when a catch-up pass stops early
3. A history of user edits to each rule

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from recurring_ledger.models.recurring import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # User actions on rules
    RULE_CREATED = "recurring_rule_created"
    RULE_UPDATED = "recurring_rule_updated"
    RULE_DELETED = "recurring_rule_deleted"

    # Scheduler
    OCCURRENCE_MATERIALIZED = "occurrence_materialized"
    LEDGER_WRITE_FAILED = "ledger_write_failed"
    RULE_SKIPPED = "rule_skipped"
    RULE_DEACTIVATED = "rule_deactivated"
    CATCH_UP_CAPPED = "catch_up_capped"
    PROCESSING_COMPLETED = "processing_completed"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    owner_id: Optional[str] = Field(
        default=None,
        description="Data partition the event belongs to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'recurring_rule', 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - all events of one processor run share this
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, owner_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.owner_id or "",
            self.entity_type or "",
            self.entity_id or "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.rule_created(owner_id, rule_id, "monthly", "1200")
        event = AuditEventBuilder.ledger_write_failed(owner_id, rule_id, ...)
    """

    @staticmethod
    def rule_created(
        owner_id: str,
        rule_id: str,
        frequency: str,
        amount: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_CREATED,
            owner_id=owner_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            description=f"Recurring rule created: {amount} {frequency}",
            details={
                "frequency": frequency,
                "amount": amount,
            },
            is_user_action=True,
        )

    @staticmethod
    def rule_updated(
        owner_id: str,
        rule_id: str,
        changed_fields: list[str],
        cursor_recomputed: bool,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_UPDATED,
            owner_id=owner_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            description=f"Recurring rule updated: {', '.join(changed_fields) or 'no fields'}",
            details={
                "changed_fields": changed_fields,
                "cursor_recomputed": cursor_recomputed,
            },
            is_user_action=True,
        )

    @staticmethod
    def rule_deleted(owner_id: str, rule_id: str) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_DELETED,
            owner_id=owner_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            description="Recurring rule deleted",
            is_user_action=True,
        )

    @staticmethod
    def occurrence_materialized(
        owner_id: str,
        rule_id: Optional[str],
        transaction_id: Optional[str],
        scheduled_date: str,
        materialized_date: str,
        amount: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_MATERIALIZED,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Recurring occurrence {scheduled_date} recorded on {materialized_date}",
            details={
                "rule_id": rule_id,
                "scheduled_date": scheduled_date,
                "materialized_date": materialized_date,
                "amount": amount,
            },
        )

    @staticmethod
    def ledger_write_failed(
        owner_id: str,
        rule_id: Optional[str],
        scheduled_date: str,
        error_message: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.LEDGER_WRITE_FAILED,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Ledger write failed for occurrence {scheduled_date}",
            details={
                "scheduled_date": scheduled_date,
            },
            error_message=error_message,
        )

    @staticmethod
    def rule_skipped(
        owner_id: str,
        rule_id: Optional[str],
        reasons: list[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_SKIPPED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Rule skipped with {len(reasons)} issue(s)",
            details={
                "reasons": reasons,
            },
        )

    @staticmethod
    def rule_deactivated(
        owner_id: str,
        rule_id: Optional[str],
        end_date: Optional[str],
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_DEACTIVATED,
            owner_id=owner_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description="Rule deactivated: schedule passed its end date",
            details={
                "end_date": end_date,
            },
        )

    @staticmethod
    def catch_up_capped(
        owner_id: str,
        rule_id: Optional[str],
        resume_from: str,
        iterations: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATCH_UP_CAPPED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="recurring_rule",
            entity_id=rule_id,
            correlation_id=correlation_id,
            description=f"Catch-up stopped after {iterations} steps, resumes from {resume_from}",
            details={
                "resume_from": resume_from,
                "iterations": iterations,
            },
        )

    @staticmethod
    def processing_completed(
        owner_id: str,
        rules_examined: int,
        transactions_created: int,
        rules_failed: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROCESSING_COMPLETED,
            severity=AuditSeverity.WARNING if rules_failed else AuditSeverity.INFO,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=(
                f"Processed {rules_examined} rule(s), "
                f"created {transactions_created} transaction(s)"
            ),
            details={
                "rules_examined": rules_examined,
                "transactions_created": transactions_created,
                "rules_failed": rules_failed,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )

    @staticmethod
    def external_service_error(
        service: str,
        error_message: str,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXTERNAL_SERVICE_ERROR,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            description=f"External service error: {service}",
            error_message=error_message,
            details={
                "service": service,
            },
            correlation_id=correlation_id,
        )
