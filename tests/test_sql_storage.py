"""
Tests for the SQL storage backend.

The in-memory suite covers behaviour; these tests check the SQL backend
gives the same answers and keeps the balance exact under concurrent
writers hitting a real database file.
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from uuid import uuid4

import pytest

from expense_tracker.models.audit import AuditEventType
from expense_tracker.models.expense import ExpenseCategory
from expense_tracker.orchestrator import create_app_components
from expense_tracker.services import (
    BalanceRegister,
    InvalidIdError,
    NotFoundError,
    SQLBalanceStorage,
    SQLClient,
)
from expense_tracker.services.storage.sql import from_cents, to_cents
from expense_tracker.validation import ValidationFailedError
from tests.conftest import utc


class TestCents:

    @pytest.mark.parametrize(
        "amount, cents",
        [(Decimal("0.01"), 1), (Decimal("15.50"), 1550), (Decimal("-50"), -5000)],
    )
    def test_to_cents(self, amount, cents):
        assert to_cents(amount) == cents

    def test_from_cents_has_two_places(self):
        assert from_cents(1550) == Decimal("15.50")
        assert str(from_cents(-5000)) == "-50.00"


class TestSQLExpenses:

    @pytest.mark.asyncio
    async def test_create_and_list_order(self, sql_components):
        ledger = sql_components.ledger
        await ledger.create("January", 1, "Other", utc(2024, 1, 1))
        await ledger.create("March", Decimal("2.50"), "Food", utc(2024, 3, 5))
        await ledger.create("February", 3, "Transport", utc(2024, 2, 10))

        expenses = await ledger.list()

        assert [e.description for e in expenses] == ["March", "February", "January"]
        assert expenses[0].amount == Decimal("2.50")
        assert expenses[0].category == ExpenseCategory.FOOD
        assert expenses[0].date == utc(2024, 3, 5)

    @pytest.mark.asyncio
    async def test_equal_dates_keep_insertion_order(self, sql_components):
        ledger = sql_components.ledger
        same = utc(2024, 5, 1)
        first = await ledger.create("first", 1, "Food", same)
        second = await ledger.create("second", 1, "Food", same)
        assert [e.id for e in await ledger.list()] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_delete_returns_record(self, sql_components):
        ledger = sql_components.ledger
        expense = await ledger.create("Cinema", 12, "Entertainment")

        deleted = await ledger.delete_by_id(str(expense.id))

        assert deleted.id == expense.id
        assert deleted.amount == Decimal("12")
        assert await ledger.list() == []
        with pytest.raises(NotFoundError):
            await ledger.delete_by_id(expense.id)

    @pytest.mark.asyncio
    async def test_malformed_id(self, sql_components):
        with pytest.raises(InvalidIdError):
            await sql_components.ledger.delete_by_id("12345")


class TestSQLBalance:

    @pytest.mark.asyncio
    async def test_upsert_on_first_debit(self, sql_components):
        balance = sql_components.balance
        assert await balance.read() == Decimal("0")
        assert await balance.debit(50) == Decimal("-50")

    @pytest.mark.asyncio
    async def test_no_upsert_raises(self, sql_components):
        with pytest.raises(NotFoundError):
            await sql_components.balance.credit(5, create_if_absent=False)
        assert await sql_components.balance.read() == Decimal("0")

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, sql_components):
        balance = sql_components.balance
        _, created = await balance.initialize()
        assert created is True
        await balance.credit(Decimal("10.25"))
        record, created = await balance.initialize()
        assert created is False
        assert record.current_balance == Decimal("10.25")

    @pytest.mark.asyncio
    async def test_fraction_of_a_cent_never_reaches_storage(self, sql_components):
        coordinator = sql_components.coordinator
        await coordinator.record_deposit(10)
        with pytest.raises(ValidationFailedError):
            await coordinator.record_deposit(Decimal("10.005"))
        assert await sql_components.balance.read() == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_end_to_end_flow(self, sql_components):
        coordinator = sql_components.coordinator
        await coordinator.initialize()
        await coordinator.record_deposit(100)
        correlation_id = uuid4()
        await coordinator.record_expense("Lunch", 15, "Food", correlation_id=correlation_id)

        assert await sql_components.balance.read() == Decimal("85")
        summary = await sql_components.reports.by_category()
        assert [(s.category, s.total_spent) for s in summary] == [(ExpenseCategory.FOOD, Decimal("15"))]

        events = await sql_components.audit_logger.events_for(correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.EXPENSE_RECORDED,
            AuditEventType.BALANCE_DEBITED,
        ]


class TestSQLConcurrency:

    def test_concurrent_increments_from_threads(self, tmp_path):
        client = SQLClient(database_url=f"sqlite:///{tmp_path / 'expenses.db'}")
        try:
            register = BalanceRegister(SQLBalanceStorage(client))
            asyncio.run(register.initialize())

            def credit_then_debit(_):
                asyncio.run(register.credit(10))
                asyncio.run(register.debit(3))

            with ThreadPoolExecutor(max_workers=4) as pool:
                list(pool.map(credit_then_debit, range(40)))

            assert asyncio.run(register.read()) == Decimal("280")
        finally:
            client.dispose()


class TestComponentFactory:

    def test_memory_backend(self):
        components = create_app_components(backend="memory")
        assert components.backend == "memory"
        assert components.sql_client is None

    def test_sql_backend(self):
        components = create_app_components(backend="sql", database_url="sqlite://")
        try:
            assert components.backend == "sql"
            assert components.sql_client.database_url == "sqlite://"
        finally:
            components.sql_client.dispose()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_app_components(backend="mongo")
