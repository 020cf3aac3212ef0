"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap the SQL database for another store later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally small - we're not building an ORM.
Every method touches exactly one record, and every balance mutation is a
single atomic increment-and-return. Nothing here exposes a raw
read-then-write on the balance.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional
from uuid import UUID

from expense_tracker.models.audit import AuditEvent
from expense_tracker.models.expense import Balance, Expense


class ExpenseStorageInterface(ABC):
    """
    Abstract interface for expense record storage.

    Any storage implementation must implement these methods.
    """

    @abstractmethod
    async def insert_expense(self, expense: Expense) -> Expense:
        """
        Persist a new expense.

        Args:
            expense: The fully validated expense to store

        Returns:
            The stored expense

        Raises:
            DuplicateError: If an expense with this id already exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        """
        Retrieve an expense by its ID.

        Returns:
            The expense if found, None otherwise
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: UUID) -> Optional[Expense]:
        """
        Atomically find and remove an expense.

        Returns:
            The removed expense, or None if there was nothing to remove
        """
        pass

    @abstractmethod
    async def list_expenses(self) -> list[Expense]:
        """
        List every expense, newest first.

        Expenses sharing a timestamp keep their insertion order.
        """
        pass


class BalanceStorageInterface(ABC):
    """
    Abstract interface for the singleton balance record.

    Implementations must make each method atomic with respect to
    concurrent calls on the same record.
    """

    @abstractmethod
    async def get_balance(self, balance_id: str) -> Optional[Balance]:
        """
        Read the balance record.

        Returns:
            The record, or None if it has never been created
        """
        pass

    @abstractmethod
    async def increment_balance(
        self,
        balance_id: str,
        delta: Decimal,
        upsert: bool,
    ) -> Balance:
        """
        Atomically add `delta` (may be negative) and stamp last_updated.

        Args:
            balance_id: Key of the balance record
            delta: Signed amount to add
            upsert: Create the record with `delta` as its value if absent

        Returns:
            The record after the increment

        Raises:
            NotFoundError: If the record is absent and upsert is False
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def create_balance_if_absent(self, balance_id: str) -> tuple[Balance, bool]:
        """
        Atomically create the record at zero unless it already exists.

        Never overwrites an existing record.

        Returns:
            (record, created) where created is False if it already existed
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (one request).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class InvalidIdError(StorageError):
    """The identifier is not well-formed for this store."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
