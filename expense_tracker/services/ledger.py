"""
Expense Ledger

Owns the lifecycle of expense records: create, list, look up, delete.
The ledger is the only component that writes expense records; it never
touches the balance.
"""

from datetime import datetime
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from expense_tracker.models.expense import Expense
from expense_tracker.services.storage import (
    ExpenseStorageInterface,
    InvalidIdError,
    NotFoundError,
)
from expense_tracker.validation import ExpenseValidator

logger = structlog.get_logger(__name__)


def parse_expense_id(expense_id: Union[str, UUID]) -> UUID:
    """
    Parse an expense id, rejecting anything that is not a UUID.

    Raises:
        InvalidIdError: If the id is malformed
    """
    if isinstance(expense_id, UUID):
        return expense_id
    try:
        return UUID(str(expense_id))
    except (ValueError, AttributeError, TypeError) as e:
        raise InvalidIdError(f"Invalid expense id: {expense_id!r}") from e


class ExpenseLedger:
    """Create, list and delete expense records."""

    def __init__(
        self,
        storage: ExpenseStorageInterface,
        validator: Optional[ExpenseValidator] = None,
    ):
        self._storage = storage
        self._validator = validator or ExpenseValidator()

    async def create(
        self,
        description: Any,
        amount: Any,
        category: Any = None,
        date: Optional[datetime] = None,
    ) -> Expense:
        """
        Validate and persist a new expense.

        Raises:
            ValidationFailedError: On bad input (nothing is written)
            StorageError: If the write fails
        """
        expense = self._validator.build_expense(description, amount, category, date)
        stored = await self._storage.insert_expense(expense)
        logger.info(
            "expense_created",
            expense_id=str(stored.id),
            amount=str(stored.amount),
            category=stored.category.value,
        )
        return stored

    async def list(self) -> list[Expense]:
        """All expenses, most recent first; a fresh snapshot on every call."""
        return await self._storage.list_expenses()

    async def get_by_id(self, expense_id: Union[str, UUID]) -> Expense:
        """
        Raises:
            InvalidIdError: If the id is malformed
            NotFoundError: If no such expense exists
        """
        parsed = parse_expense_id(expense_id)
        expense = await self._storage.get_expense(parsed)
        if expense is None:
            raise NotFoundError(f"Expense not found: {parsed}")
        return expense

    async def delete_by_id(self, expense_id: Union[str, UUID]) -> Expense:
        """
        Remove an expense and return it.

        Raises:
            InvalidIdError: If the id is malformed
            NotFoundError: If no such expense exists
        """
        parsed = parse_expense_id(expense_id)
        deleted = await self._storage.delete_expense(parsed)
        if deleted is None:
            raise NotFoundError(f"Expense not found: {parsed}")
        logger.info("expense_deleted", expense_id=str(parsed), amount=str(deleted.amount))
        return deleted
