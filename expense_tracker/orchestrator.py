"""
Transaction Coordinator for Expense Tracker

This module sequences the two dependent writes behind every balance-
affecting request and wires the components together.

FLOWS:
1. Record expense: validate → write expense → debit balance
2. Record deposit: validate → credit balance
3. Delete expense: delete → (optionally) credit the amount back

DESIGN DECISION: Expense creation and its balance debit are one logical
unit, but the store only guarantees single-record atomicity. We use a
COMPENSATING DELETE: if the debit fails, the just-written expense is
removed again and the request fails cleanly. Only if that compensation
also fails is the caller told about a PARTIAL FAILURE, and the event is
written to the audit trail at CRITICAL severity for reconciliation.
A partial failure is never reported as success.

The coordinator owns no state. It only calls the ledger and the register.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union
from uuid import UUID

import structlog

from expense_tracker.audit import AuditLogger, create_correlation_id
from expense_tracker.config import Settings, get_settings
from expense_tracker.models.audit import AuditEventBuilder
from expense_tracker.models.expense import Expense
from expense_tracker.queries import ReportingViews
from expense_tracker.services import (
    BalanceRegister,
    ExpenseLedger,
    InMemoryAuditStorage,
    InMemoryBalanceStorage,
    InMemoryExpenseStorage,
    NotFoundError,
    SQLAuditStorage,
    SQLBalanceStorage,
    SQLClient,
    SQLExpenseStorage,
    StorageError,
)
from expense_tracker.validation import ValidationFailedError

logger = structlog.get_logger(__name__)


class BalanceUpdateError(StorageError):
    """
    The balance could not be adjusted after the expense was written.

    The expense has been removed again, so nothing was persisted.
    """

    def __init__(self, message: str, expense: Expense):
        super().__init__(message)
        self.expense = expense


class PartialFailureError(Exception):
    """
    One step of a two-step write succeeded and its partner failed,
    and the first step could not be undone.

    `expense` is the record that is left in an inconsistent state.
    """

    def __init__(
        self,
        message: str,
        expense: Expense,
        operation: str,
        compensation_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.expense = expense
        self.operation = operation
        self.compensation_error = compensation_error


class TransactionCoordinator:
    """
    Sequences ledger writes and balance adjustments.

    State per mutating request:
        Received → Validated → LedgerWritten → BalanceAdjusted → Completed
        Received → Rejected                 (validation failure)
        LedgerWritten → Compensated         (debit failed, expense removed)
        LedgerWritten → PartialFailure      (debit and compensation failed)
    """

    def __init__(
        self,
        ledger: ExpenseLedger,
        balance: BalanceRegister,
        audit_logger: Optional[AuditLogger] = None,
        restore_balance_on_delete: bool = False,
    ):
        self._ledger = ledger
        self._balance = balance
        self._audit_logger = audit_logger or AuditLogger()
        self._restore_balance_on_delete = restore_balance_on_delete

    async def initialize(self) -> Decimal:
        """Make sure the balance record exists. Safe to call repeatedly."""
        record, created = await self._balance.initialize()
        await self._audit_logger.log(
            AuditEventBuilder.balance_initialized(
                balance_id=record.id,
                created=created,
                current_balance=record.current_balance,
            )
        )
        return record.current_balance

    async def record_expense(
        self,
        description: Any,
        amount: Any,
        category: Any = None,
        date: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Write an expense and debit the balance by its amount.

        Raises:
            ValidationFailedError: Bad input, nothing written
            StorageError: The expense write failed, nothing written
            BalanceUpdateError: The debit failed (for any reason) and the expense was removed
            PartialFailureError: The debit failed and the expense could not be removed
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            expense = await self._ledger.create(description, amount, category, date)
        except ValidationFailedError as e:
            await self._audit_logger.log(
                AuditEventBuilder.validation_failed(
                    operation="record_expense",
                    issues=e.issues_as_dicts(),
                    correlation_id=correlation_id,
                )
            )
            raise

        await self._audit_logger.log(
            AuditEventBuilder.expense_recorded(
                expense_id=expense.id,
                amount=expense.amount,
                category=expense.category.value,
                correlation_id=correlation_id,
            )
        )

        try:
            new_balance = await self._balance.debit(expense.amount)
        except Exception as debit_error:
            if not isinstance(debit_error, StorageError):
                await self._audit_logger.log(
                    AuditEventBuilder.system_error(
                        error_type=type(debit_error).__name__,
                        error_message=str(debit_error),
                        details={"operation": "record_expense", "expense_id": str(expense.id)},
                        correlation_id=correlation_id,
                    )
                )
            error = await self._compensate(expense, debit_error, correlation_id)
            raise error from debit_error

        await self._audit_logger.log(
            AuditEventBuilder.balance_debited(
                balance_id=self._balance.balance_id,
                amount=expense.amount,
                new_balance=new_balance,
                expense_id=expense.id,
                correlation_id=correlation_id,
            )
        )
        return expense

    async def _compensate(
        self,
        expense: Expense,
        debit_error: Exception,
        correlation_id: UUID,
    ) -> Exception:
        """Undo the expense write; return the error the caller should see."""
        logger.warning(
            "balance_debit_failed",
            expense_id=str(expense.id),
            error=str(debit_error),
        )
        try:
            await self._ledger.delete_by_id(expense.id)
        except NotFoundError:
            # someone else already removed it; ledger and balance agree again
            pass
        except Exception as compensation_error:
            await self._audit_logger.log(
                AuditEventBuilder.partial_failure(
                    expense_id=expense.id,
                    amount=expense.amount,
                    debit_error=str(debit_error),
                    compensation_error=str(compensation_error),
                    correlation_id=correlation_id,
                )
            )
            return PartialFailureError(
                "Expense was saved but the balance could not be updated: "
                f"{debit_error}",
                expense=expense,
                operation="record_expense",
                compensation_error=compensation_error,
            )

        await self._audit_logger.log(
            AuditEventBuilder.compensation_applied(
                expense_id=expense.id,
                amount=expense.amount,
                error_message=str(debit_error),
                correlation_id=correlation_id,
            )
        )
        return BalanceUpdateError(
            f"Balance update failed, expense was not recorded: {debit_error}",
            expense=expense,
        )

    async def record_deposit(
        self,
        amount: Any,
        correlation_id: Optional[UUID] = None,
    ) -> Decimal:
        """
        Credit the balance. There is no paired ledger write.

        Raises:
            ValidationFailedError: If amount <= 0 (balance untouched)
            StorageError: If the credit fails
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            new_balance = await self._balance.credit(amount)
        except ValidationFailedError as e:
            await self._audit_logger.log(
                AuditEventBuilder.validation_failed(
                    operation="record_deposit",
                    issues=e.issues_as_dicts(),
                    correlation_id=correlation_id,
                )
            )
            raise

        await self._audit_logger.log(
            AuditEventBuilder.deposit_recorded(
                balance_id=self._balance.balance_id,
                amount=Decimal(str(amount)),
                new_balance=new_balance,
                correlation_id=correlation_id,
            )
        )
        return new_balance

    async def delete_expense(
        self,
        expense_id: Union[str, UUID],
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Delete an expense.

        By default the balance is left alone (the debit stays applied).
        With restore_balance_on_delete the amount is credited back.

        Raises:
            InvalidIdError: Malformed id
            NotFoundError: No such expense
            PartialFailureError: Deleted, but the credit-back failed
        """
        correlation_id = correlation_id or create_correlation_id()

        deleted = await self._ledger.delete_by_id(expense_id)
        await self._audit_logger.log(
            AuditEventBuilder.expense_deleted(
                expense_id=deleted.id,
                amount=deleted.amount,
                balance_restored=self._restore_balance_on_delete,
                correlation_id=correlation_id,
            )
        )

        if not self._restore_balance_on_delete:
            return deleted

        try:
            new_balance = await self._balance.credit(deleted.amount)
        except Exception as e:
            await self._audit_logger.log(
                AuditEventBuilder.balance_restore_failed(
                    expense_id=deleted.id,
                    amount=deleted.amount,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            )
            raise PartialFailureError(
                f"Expense was deleted but the balance could not be restored: {e}",
                expense=deleted,
                operation="delete_expense",
            ) from e

        await self._audit_logger.log(
            AuditEventBuilder.balance_restored(
                balance_id=self._balance.balance_id,
                amount=deleted.amount,
                new_balance=new_balance,
                expense_id=deleted.id,
                correlation_id=correlation_id,
            )
        )
        return deleted


@dataclass
class AppComponents:
    """Everything the HTTP layer needs, wired to one storage backend."""

    ledger: ExpenseLedger
    balance: BalanceRegister
    coordinator: TransactionCoordinator
    reports: ReportingViews
    audit_logger: AuditLogger
    backend: str
    sql_client: Optional[SQLClient] = None


def create_app_components(
    settings: Optional[Settings] = None,
    backend: Optional[str] = None,
    database_url: Optional[str] = None,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        settings: Settings to use (defaults to the cached global settings)
        backend: Override STORAGE_BACKEND ("memory" or "sql")
        database_url: Override STORAGE_DATABASE_URL

    Returns:
        Wired AppComponents
    """
    settings = settings or get_settings()
    storage_settings = settings.storage
    app_settings = settings.app
    backend = backend or storage_settings.backend

    sql_client = None
    if backend == "sql":
        sql_client = SQLClient(database_url=database_url, echo=storage_settings.echo_sql)
        expense_storage = SQLExpenseStorage(sql_client)
        balance_storage = SQLBalanceStorage(sql_client)
        audit_storage = SQLAuditStorage(sql_client) if storage_settings.persist_audit else None
    elif backend == "memory":
        expense_storage = InMemoryExpenseStorage()
        balance_storage = InMemoryBalanceStorage()
        audit_storage = InMemoryAuditStorage() if storage_settings.persist_audit else None
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    audit_logger = AuditLogger(audit_storage)
    ledger = ExpenseLedger(expense_storage)
    balance = BalanceRegister(
        balance_storage,
        balance_id=app_settings.balance_record_id,
        create_if_absent=app_settings.auto_create_balance,
    )
    coordinator = TransactionCoordinator(
        ledger,
        balance,
        audit_logger=audit_logger,
        restore_balance_on_delete=app_settings.restore_balance_on_delete,
    )

    logger.info("components_created", backend=backend)

    return AppComponents(
        ledger=ledger,
        balance=balance,
        coordinator=coordinator,
        reports=ReportingViews(ledger),
        audit_logger=audit_logger,
        backend=backend,
        sql_client=sql_client,
    )
