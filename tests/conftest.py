"""
Shared fixtures.

Everything runs against in-memory storage unless a test asks for the SQL
backend explicitly. Failing storage fakes let the coordinator tests drive
the debit-failure and compensation-failure paths without a real outage.
"""

import asyncio
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from expense_tracker.audit import AuditLogger
from expense_tracker.orchestrator import AppComponents, TransactionCoordinator
from expense_tracker.queries import ReportingViews
from expense_tracker.services import (
    BalanceRegister,
    ExpenseLedger,
    InMemoryAuditStorage,
    InMemoryBalanceStorage,
    InMemoryExpenseStorage,
    SQLAuditStorage,
    SQLBalanceStorage,
    SQLClient,
    SQLExpenseStorage,
    StorageError,
)


class FailingBalanceStorage(InMemoryBalanceStorage):
    """Balance store whose increments always fail."""

    async def increment_balance(self, balance_id, delta, upsert):
        raise StorageError("balance store unavailable")


class CrashingBalanceStorage(InMemoryBalanceStorage):
    """Balance store that fails with an error the storage layer never wrapped."""

    async def increment_balance(self, balance_id, delta, upsert):
        raise RuntimeError("driver blew up")


class CrashingDeleteExpenseStorage(InMemoryExpenseStorage):
    """Expense store whose deletes fail with an unwrapped error."""

    async def delete_expense(self, expense_id):
        raise RuntimeError("connection reset during delete")


class FailingDeleteExpenseStorage(InMemoryExpenseStorage):
    """Expense store that accepts writes but cannot delete."""

    async def delete_expense(self, expense_id):
        raise StorageError("expense store unavailable for delete")


def utc(year: int, month: int, day: int, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def run_concurrently(calls, workers: int = 8) -> list:
    """
    Run coroutine factories on a thread pool, each on its own event loop.

    All workers are released together by a barrier, so calls overlap.
    """
    barrier = threading.Barrier(workers)

    def worker(chunk):
        barrier.wait()
        return [asyncio.run(call()) for call in chunk]

    chunks = [calls[i::workers] for i in range(workers)]
    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(worker, chunks))
    return [result for chunk in results for result in chunk]


def build_components(
    expense_storage=None,
    balance_storage=None,
    restore_balance_on_delete: bool = False,
) -> AppComponents:
    """Wire components around the given (default in-memory) stores."""
    audit_storage = InMemoryAuditStorage()
    audit_logger = AuditLogger(audit_storage)
    ledger = ExpenseLedger(expense_storage or InMemoryExpenseStorage())
    balance = BalanceRegister(balance_storage or InMemoryBalanceStorage())
    coordinator = TransactionCoordinator(
        ledger,
        balance,
        audit_logger=audit_logger,
        restore_balance_on_delete=restore_balance_on_delete,
    )
    return AppComponents(
        ledger=ledger,
        balance=balance,
        coordinator=coordinator,
        reports=ReportingViews(ledger),
        audit_logger=audit_logger,
        backend="memory",
    )


@pytest.fixture
def fast_thread_switching():
    """Switch threads as often as possible so unguarded read-modify-writes interleave."""
    previous = sys.getswitchinterval()
    sys.setswitchinterval(1e-6)
    yield
    sys.setswitchinterval(previous)


@pytest.fixture
def components() -> AppComponents:
    return build_components()


@pytest.fixture
def ledger(components) -> ExpenseLedger:
    return components.ledger


@pytest.fixture
def balance(components) -> BalanceRegister:
    return components.balance


@pytest.fixture
def coordinator(components) -> TransactionCoordinator:
    return components.coordinator


@pytest.fixture
def reports(components) -> ReportingViews:
    return components.reports


@pytest.fixture
def sql_client():
    client = SQLClient(database_url="sqlite://", echo=False)
    yield client
    client.dispose()


@pytest.fixture
def sql_components(sql_client) -> AppComponents:
    audit_logger = AuditLogger(SQLAuditStorage(sql_client))
    ledger = ExpenseLedger(SQLExpenseStorage(sql_client))
    balance = BalanceRegister(SQLBalanceStorage(sql_client))
    coordinator = TransactionCoordinator(ledger, balance, audit_logger=audit_logger)
    return AppComponents(
        ledger=ledger,
        balance=balance,
        coordinator=coordinator,
        reports=ReportingViews(ledger),
        audit_logger=audit_logger,
        backend="sql",
        sql_client=sql_client,
    )
