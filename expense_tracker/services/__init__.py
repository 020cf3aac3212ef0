"""Services package."""

from expense_tracker.services.balance import BalanceRegister
from expense_tracker.services.ledger import ExpenseLedger, parse_expense_id
from expense_tracker.services.storage import (
    AuditStorageInterface,
    BalanceStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    InMemoryAuditStorage,
    InMemoryBalanceStorage,
    InMemoryExpenseStorage,
    InvalidIdError,
    NotFoundError,
    SQLAuditStorage,
    SQLBalanceStorage,
    SQLClient,
    SQLExpenseStorage,
    StorageError,
)

__all__ = [
    # Domain services
    "BalanceRegister",
    "ExpenseLedger",
    "parse_expense_id",
    # Storage interfaces
    "AuditStorageInterface",
    "BalanceStorageInterface",
    "ExpenseStorageInterface",
    # Storage implementations
    "InMemoryAuditStorage",
    "InMemoryBalanceStorage",
    "InMemoryExpenseStorage",
    "SQLAuditStorage",
    "SQLBalanceStorage",
    "SQLClient",
    "SQLExpenseStorage",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "InvalidIdError",
    "NotFoundError",
    "StorageError",
]
