"""
Audit Models for Expense Tracker

Every mutation of the ledger or the balance is logged for audit purposes.
This provides:
1. Traceability of every balance movement
2. Debugging information when things go wrong
3. A record to reconcile against after a partial failure

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from expense_tracker.models.expense import as_utc, utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Ledger
    EXPENSE_RECORDED = "expense_recorded"
    EXPENSE_DELETED = "expense_deleted"
    VALIDATION_FAILED = "validation_failed"

    # Balance
    BALANCE_INITIALIZED = "balance_initialized"
    DEPOSIT_RECORDED = "deposit_recorded"
    BALANCE_DEBITED = "balance_debited"
    BALANCE_RESTORED = "balance_restored"

    # Two-step write failures
    COMPENSATION_APPLIED = "compensation_applied"
    PARTIAL_FAILURE = "partial_failure"
    BALANCE_RESTORE_FAILED = "balance_restore_failed"

    # System events
    SYSTEM_ERROR = "system_error"


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

    Every significant action creates one of these.
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
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity ('expense' or 'balance')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - all events of one request share this
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

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }

    def to_record(self) -> dict:
        """
        Convert to a flat record for table storage.

        Details are JSON-encoded into a single column.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp,
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details_json": json.dumps(self.details) if self.details else "",
            "error_message": self.error_message,
        }

    @classmethod
    def from_record(cls, record: dict) -> "AuditEvent":
        """Inverse of to_record."""
        return cls(
            event_id=UUID(record["event_id"]),
            timestamp=as_utc(record["timestamp"]),
            event_type=AuditEventType(record["event_type"]),
            severity=AuditSeverity(record["severity"]),
            entity_type=record.get("entity_type"),
            entity_id=record.get("entity_id"),
            correlation_id=UUID(record["correlation_id"]) if record.get("correlation_id") else None,
            description=record["description"],
            details=json.loads(record["details_json"]) if record.get("details_json") else {},
            error_message=record.get("error_message"),
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.expense_recorded(expense_id, amount, category, correlation_id)
        event = AuditEventBuilder.deposit_recorded(amount, new_balance, correlation_id)
    """

    @staticmethod
    def expense_recorded(
        expense_id: UUID,
        amount: Decimal,
        category: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_RECORDED,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description=f"Expense recorded: {category} - {amount}",
            details={
                "amount": str(amount),
                "category": category,
            },
        )

    @staticmethod
    def expense_deleted(
        expense_id: UUID,
        amount: Decimal,
        balance_restored: bool,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPENSE_DELETED,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description=f"Expense deleted: {amount}",
            details={
                "amount": str(amount),
                "balance_restored": balance_restored,
            },
        )

    @staticmethod
    def validation_failed(
        operation: str,
        issues: list[dict],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"{operation} rejected with {len(issues)} issues",
            details={
                "operation": operation,
                "issues": issues,
            },
        )

    @staticmethod
    def balance_initialized(
        balance_id: str,
        created: bool,
        current_balance: Decimal,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_INITIALIZED,
            entity_type="balance",
            entity_id=balance_id,
            description=(
                "Initial balance record created"
                if created
                else "Balance record already exists"
            ),
            details={
                "created": created,
                "current_balance": str(current_balance),
            },
        )

    @staticmethod
    def deposit_recorded(
        balance_id: str,
        amount: Decimal,
        new_balance: Decimal,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEPOSIT_RECORDED,
            entity_type="balance",
            entity_id=balance_id,
            correlation_id=correlation_id,
            description=f"Deposit of {amount} applied",
            details={
                "amount": str(amount),
                "new_balance": str(new_balance),
            },
        )

    @staticmethod
    def balance_debited(
        balance_id: str,
        amount: Decimal,
        new_balance: Decimal,
        expense_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_DEBITED,
            entity_type="balance",
            entity_id=balance_id,
            correlation_id=correlation_id,
            description=f"Balance debited by {amount}",
            details={
                "amount": str(amount),
                "new_balance": str(new_balance),
                "expense_id": str(expense_id),
            },
        )

    @staticmethod
    def balance_restored(
        balance_id: str,
        amount: Decimal,
        new_balance: Decimal,
        expense_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_RESTORED,
            entity_type="balance",
            entity_id=balance_id,
            correlation_id=correlation_id,
            description=f"Balance credited back {amount} for deleted expense",
            details={
                "amount": str(amount),
                "new_balance": str(new_balance),
                "expense_id": str(expense_id),
            },
        )

    @staticmethod
    def compensation_applied(
        expense_id: UUID,
        amount: Decimal,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMPENSATION_APPLIED,
            severity=AuditSeverity.WARNING,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description="Balance debit failed; expense removed again",
            details={
                "amount": str(amount),
            },
            error_message=error_message,
        )

    @staticmethod
    def partial_failure(
        expense_id: UUID,
        amount: Decimal,
        debit_error: str,
        compensation_error: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PARTIAL_FAILURE,
            severity=AuditSeverity.CRITICAL,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description="Expense persisted but balance not debited; manual reconciliation needed",
            details={
                "amount": str(amount),
                "compensation_error": compensation_error,
            },
            error_message=debit_error,
        )

    @staticmethod
    def balance_restore_failed(
        expense_id: UUID,
        amount: Decimal,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_RESTORE_FAILED,
            severity=AuditSeverity.CRITICAL,
            entity_type="expense",
            entity_id=str(expense_id),
            correlation_id=correlation_id,
            description="Expense deleted but its amount was not credited back; manual reconciliation needed",
            details={
                "amount": str(amount),
            },
            error_message=error_message,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
