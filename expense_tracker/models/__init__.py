"""
Data Models Package

This package contains all Pydantic models used in the Expense Tracker.
All data flowing through the system must conform to these schemas.
"""

from expense_tracker.models.expense import (
    MIN_AMOUNT,
    Balance,
    CategorySummary,
    DailySummary,
    DepositPayload,
    Expense,
    ExpenseCategory,
    ExpensePayload,
    MonthlySummary,
    ValidationIssue,
    as_utc,
    utcnow,
)
from expense_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Expense models
    "MIN_AMOUNT",
    "Balance",
    "CategorySummary",
    "DailySummary",
    "DepositPayload",
    "Expense",
    "ExpenseCategory",
    "ExpensePayload",
    "MonthlySummary",
    "ValidationIssue",
    "as_utc",
    "utcnow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
