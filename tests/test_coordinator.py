"""
Tests for the TransactionCoordinator.

The invariant under test: with restore_balance_on_delete enabled,
    balance == deposits - sum(live expenses)
after every completed request.
"""

import asyncio
from decimal import Decimal
from functools import partial
from uuid import uuid4

import pytest

from expense_tracker.models.audit import AuditEventType, AuditSeverity
from expense_tracker.orchestrator import BalanceUpdateError, PartialFailureError
from expense_tracker.services import InMemoryBalanceStorage
from expense_tracker.validation import ValidationFailedError
from tests.conftest import (
    CrashingBalanceStorage,
    CrashingDeleteExpenseStorage,
    FailingBalanceStorage,
    FailingDeleteExpenseStorage,
    build_components,
    run_concurrently,
)


class TestRecordExpense:

    @pytest.mark.asyncio
    async def test_deposit_then_expense(self, components):
        """Deposit 100, spend 15 on lunch, 85 is left."""
        coordinator = components.coordinator
        await coordinator.initialize()
        await coordinator.record_deposit(100)
        expense = await coordinator.record_expense("Lunch", 15, "Food")

        assert await components.balance.read() == Decimal("85")
        assert [e.id for e in await components.ledger.list()] == [expense.id]

    @pytest.mark.asyncio
    async def test_expense_before_initialization_goes_negative(self, components):
        await components.coordinator.record_expense("Taxi", 50, "Transport")
        assert await components.balance.read() == Decimal("-50")

    @pytest.mark.asyncio
    async def test_invalid_expense_changes_nothing(self, components):
        await components.coordinator.record_deposit(40)
        with pytest.raises(ValidationFailedError):
            await components.coordinator.record_expense("Lunch", -3, "Food")

        assert await components.ledger.list() == []
        assert await components.balance.read() == Decimal("40")

    @pytest.mark.asyncio
    async def test_validation_failure_is_audited(self, components):
        correlation_id = uuid4()
        with pytest.raises(ValidationFailedError):
            await components.coordinator.record_expense(
                "", 10, "Food", correlation_id=correlation_id
            )
        events = await components.audit_logger.events_for(correlation_id)
        assert [e.event_type for e in events] == [AuditEventType.VALIDATION_FAILED]

    @pytest.mark.asyncio
    async def test_success_is_audited_in_order(self, components):
        correlation_id = uuid4()
        await components.coordinator.record_expense(
            "Lunch", 15, "Food", correlation_id=correlation_id
        )
        events = await components.audit_logger.events_for(correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.EXPENSE_RECORDED,
            AuditEventType.BALANCE_DEBITED,
        ]


class TestDebitFailure:

    @pytest.mark.asyncio
    async def test_failed_debit_removes_the_expense(self):
        components = build_components(balance_storage=FailingBalanceStorage())
        with pytest.raises(BalanceUpdateError) as exc_info:
            await components.coordinator.record_expense("Lunch", 15, "Food")

        assert await components.ledger.list() == []
        assert exc_info.value.expense.description == "Lunch"

    @pytest.mark.asyncio
    async def test_compensation_is_audited(self):
        components = build_components(balance_storage=FailingBalanceStorage())
        correlation_id = uuid4()
        with pytest.raises(BalanceUpdateError):
            await components.coordinator.record_expense(
                "Lunch", 15, "Food", correlation_id=correlation_id
            )
        events = await components.audit_logger.events_for(correlation_id)
        assert events[-1].event_type == AuditEventType.COMPENSATION_APPLIED
        assert events[-1].severity == AuditSeverity.WARNING

    @pytest.mark.asyncio
    async def test_failed_compensation_is_a_partial_failure(self):
        components = build_components(
            expense_storage=FailingDeleteExpenseStorage(),
            balance_storage=FailingBalanceStorage(),
        )
        correlation_id = uuid4()
        with pytest.raises(PartialFailureError) as exc_info:
            await components.coordinator.record_expense(
                "Lunch", 15, "Food", correlation_id=correlation_id
            )

        error = exc_info.value
        assert error.operation == "record_expense"
        assert error.compensation_error is not None
        # the expense is still there and the caller is told which one
        assert [e.id for e in await components.ledger.list()] == [error.expense.id]

        events = await components.audit_logger.events_for(correlation_id)
        partial = [e for e in events if e.event_type == AuditEventType.PARTIAL_FAILURE]
        assert len(partial) == 1
        assert partial[0].severity == AuditSeverity.CRITICAL
        assert partial[0].entity_id == str(error.expense.id)

    @pytest.mark.asyncio
    async def test_unexpected_debit_error_removes_the_expense(self):
        components = build_components(balance_storage=CrashingBalanceStorage())
        correlation_id = uuid4()
        with pytest.raises(BalanceUpdateError) as exc_info:
            await components.coordinator.record_expense(
                "Lunch", 15, "Food", correlation_id=correlation_id
            )

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert await components.ledger.list() == []
        events = await components.audit_logger.events_for(correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.EXPENSE_RECORDED,
            AuditEventType.SYSTEM_ERROR,
            AuditEventType.COMPENSATION_APPLIED,
        ]
        assert events[1].details["operation"] == "record_expense"

    @pytest.mark.asyncio
    async def test_unexpected_compensation_error_is_a_partial_failure(self):
        components = build_components(
            expense_storage=CrashingDeleteExpenseStorage(),
            balance_storage=CrashingBalanceStorage(),
        )
        with pytest.raises(PartialFailureError) as exc_info:
            await components.coordinator.record_expense("Lunch", 15, "Food")

        assert isinstance(exc_info.value.compensation_error, RuntimeError)
        assert [e.id for e in await components.ledger.list()] == [exc_info.value.expense.id]


class TestDeposit:

    @pytest.mark.asyncio
    async def test_deposit_finer_than_a_cent_is_rejected(self, components):
        """A third decimal would be rounded away by cent storage."""
        await components.coordinator.record_deposit(10)
        with pytest.raises(ValidationFailedError) as exc_info:
            await components.coordinator.record_deposit(Decimal("10.005"))
        assert exc_info.value.issues[0].issue_type == "too_many_decimal_places"
        assert await components.balance.read() == Decimal("10")

    @pytest.mark.asyncio
    async def test_deposit_returns_new_balance(self, coordinator):
        assert await coordinator.record_deposit(100) == Decimal("100")
        assert await coordinator.record_deposit(Decimal("0.50")) == Decimal("100.50")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, None, "abc"])
    async def test_bad_deposit_leaves_balance_unchanged(self, components, amount):
        await components.coordinator.record_deposit(10)
        with pytest.raises(ValidationFailedError):
            await components.coordinator.record_deposit(amount)
        assert await components.balance.read() == Decimal("10")


class TestDeleteExpense:

    @pytest.mark.asyncio
    async def test_delete_keeps_debit_by_default(self, components):
        coordinator = components.coordinator
        await coordinator.record_deposit(100)
        expense = await coordinator.record_expense("Lunch", 15, "Food")

        await coordinator.delete_expense(str(expense.id))

        assert await components.ledger.list() == []
        assert await components.balance.read() == Decimal("85")

    @pytest.mark.asyncio
    async def test_delete_can_restore_balance(self):
        components = build_components(restore_balance_on_delete=True)
        coordinator = components.coordinator
        await coordinator.record_deposit(100)
        expense = await coordinator.record_expense("Lunch", 15, "Food")

        await coordinator.delete_expense(expense.id)

        assert await components.balance.read() == Decimal("100")

    @pytest.mark.asyncio
    async def test_delete_audit_records_restore_flag(self, components):
        expense = await components.coordinator.record_expense("Lunch", 15, "Food")
        correlation_id = uuid4()
        await components.coordinator.delete_expense(expense.id, correlation_id=correlation_id)
        events = await components.audit_logger.events_for(correlation_id)
        assert events[0].event_type == AuditEventType.EXPENSE_DELETED
        assert events[0].details["balance_restored"] is False

    @pytest.mark.asyncio
    async def test_failed_restore_is_a_partial_failure(self, monkeypatch):
        balance_storage = InMemoryBalanceStorage()
        components = build_components(
            balance_storage=balance_storage,
            restore_balance_on_delete=True,
        )
        coordinator = components.coordinator
        expense = await coordinator.record_expense("Lunch", 15, "Food")
        monkeypatch.setattr(
            balance_storage,
            "increment_balance",
            FailingBalanceStorage().increment_balance,
        )
        correlation_id = uuid4()

        with pytest.raises(PartialFailureError) as exc_info:
            await coordinator.delete_expense(expense.id, correlation_id=correlation_id)

        assert exc_info.value.operation == "delete_expense"
        assert await components.ledger.list() == []
        events = await components.audit_logger.events_for(correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.EXPENSE_DELETED,
            AuditEventType.BALANCE_RESTORE_FAILED,
        ]
        assert events[1].severity == AuditSeverity.CRITICAL
        assert events[1].error_message == "balance store unavailable"


class TestInvariant:

    @pytest.mark.asyncio
    async def test_balance_tracks_deposits_minus_live_expenses(self):
        components = build_components(restore_balance_on_delete=True)
        coordinator = components.coordinator
        await coordinator.initialize()

        await coordinator.record_deposit(200)
        lunch = await coordinator.record_expense("Lunch", Decimal("12.40"), "Food")
        await coordinator.record_expense("Bus", Decimal("2.60"), "Transport")
        await coordinator.record_deposit(50)
        await coordinator.record_expense("Power bill", 80, "Utilities")
        await coordinator.delete_expense(lunch.id)

        live = sum(e.amount for e in await components.ledger.list())
        assert await components.balance.read() == Decimal("250") - live
        assert await components.balance.read() == Decimal("167.40")

    def test_concurrent_requests_lose_no_updates(self, components, fast_thread_switching):
        coordinator = components.coordinator
        calls = [partial(coordinator.record_deposit, 10) for _ in range(40)]
        calls += [partial(coordinator.record_expense, f"item {i}", 4, "Other") for i in range(40)]

        run_concurrently(calls)

        assert len(asyncio.run(components.ledger.list())) == 40
        assert asyncio.run(components.balance.read()) == Decimal("240")


class TestInitialize:

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, components):
        coordinator = components.coordinator
        assert await coordinator.initialize() == Decimal("0")
        await coordinator.record_deposit(30)
        assert await coordinator.initialize() == Decimal("30")

        events = await components.audit_logger.recent_events()
        initialized = [e for e in events if e.event_type == AuditEventType.BALANCE_INITIALIZED]
        assert [e.details["created"] for e in initialized] == [False, True]
