"""
In-Memory Storage Implementation

Used by the test suite and for throwaway local runs (STORAGE_BACKEND=memory).
Nothing survives a restart.

Each operation takes a lock for the duration of a single-record
read-modify-write, which gives the same atomicity the interface promises
for the SQL backend.
"""

import threading
from decimal import Decimal
from typing import Optional
from uuid import UUID

from expense_tracker.models.audit import AuditEvent
from expense_tracker.models.expense import Balance, Expense, utcnow
from expense_tracker.services.storage.interface import (
    AuditStorageInterface,
    BalanceStorageInterface,
    DuplicateError,
    ExpenseStorageInterface,
    NotFoundError,
)


class InMemoryExpenseStorage(ExpenseStorageInterface):
    """Expenses kept in an insertion-ordered dict."""

    def __init__(self):
        self._expenses: dict[UUID, Expense] = {}
        self._lock = threading.Lock()

    async def insert_expense(self, expense: Expense) -> Expense:
        with self._lock:
            if expense.id in self._expenses:
                raise DuplicateError(f"Expense already exists: {expense.id}")
            self._expenses[expense.id] = expense
        return expense

    async def get_expense(self, expense_id: UUID) -> Optional[Expense]:
        with self._lock:
            return self._expenses.get(expense_id)

    async def delete_expense(self, expense_id: UUID) -> Optional[Expense]:
        with self._lock:
            return self._expenses.pop(expense_id, None)

    async def list_expenses(self) -> list[Expense]:
        with self._lock:
            expenses = list(self._expenses.values())
        # sort is stable, so equal dates keep insertion order
        expenses.sort(key=lambda e: e.date, reverse=True)
        return expenses


class InMemoryBalanceStorage(BalanceStorageInterface):
    """Balance records kept in a dict keyed by balance id."""

    def __init__(self):
        self._balances: dict[str, Balance] = {}
        self._lock = threading.Lock()

    async def get_balance(self, balance_id: str) -> Optional[Balance]:
        with self._lock:
            balance = self._balances.get(balance_id)
            return balance.model_copy() if balance else None

    async def increment_balance(
        self,
        balance_id: str,
        delta: Decimal,
        upsert: bool,
    ) -> Balance:
        with self._lock:
            current = self._balances.get(balance_id)
            if current is None:
                if not upsert:
                    raise NotFoundError(f"Balance record not found: {balance_id}")
                current = Balance(id=balance_id, current_balance=Decimal("0"))
            updated = Balance(
                id=balance_id,
                current_balance=current.current_balance + delta,
                last_updated=utcnow(),
            )
            self._balances[balance_id] = updated
            return updated.model_copy()

    async def create_balance_if_absent(self, balance_id: str) -> tuple[Balance, bool]:
        with self._lock:
            existing = self._balances.get(balance_id)
            if existing is not None:
                return existing.model_copy(), False
            created = Balance(id=balance_id, current_balance=Decimal("0"))
            self._balances[balance_id] = created
            return created.model_copy(), True


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []
        self._lock = threading.Lock()

    async def append_event(self, event: AuditEvent) -> bool:
        with self._lock:
            self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        with self._lock:
            events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        with self._lock:
            events = list(self._events)
        events.reverse()
        return events[:limit]
