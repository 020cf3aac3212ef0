"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Two backends: SQL (SQLAlchemy) for real use and in-memory for tests.
"""

from expense_tracker.services.storage.interface import (
    AuditStorageInterface,
    BalanceStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    InvalidIdError,
    NotFoundError,
    StorageError,
)
from expense_tracker.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryBalanceStorage,
    InMemoryExpenseStorage,
)
from expense_tracker.services.storage.sql import (
    SQLAuditStorage,
    SQLBalanceStorage,
    SQLClient,
    SQLExpenseStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "BalanceStorageInterface",
    "ExpenseStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "InvalidIdError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryBalanceStorage",
    "InMemoryExpenseStorage",
    # SQL implementation
    "SQLAuditStorage",
    "SQLBalanceStorage",
    "SQLClient",
    "SQLExpenseStorage",
]
