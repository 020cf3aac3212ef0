"""
Balance Register

Owns the single running-balance record. It is the only component that
mutates the balance, and it only ever does so through the store's atomic
increment; callers never get a read-then-write path.

Whether a missing record is created on first credit/debit is an explicit
per-call flag (`create_if_absent`). When omitted it falls back to the
register's default, which comes from AppSettings.auto_create_balance.
"""

from decimal import Decimal
from typing import Any, Optional

import structlog

from expense_tracker.models.expense import Balance
from expense_tracker.services.storage import BalanceStorageInterface
from expense_tracker.validation import ExpenseValidator

logger = structlog.get_logger(__name__)


class BalanceRegister:
    """Atomic read / credit / debit / initialize on the singleton balance."""

    def __init__(
        self,
        storage: BalanceStorageInterface,
        balance_id: str = "running_balance",
        create_if_absent: bool = True,
        validator: Optional[ExpenseValidator] = None,
    ):
        self._storage = storage
        self._balance_id = balance_id
        self._create_if_absent = create_if_absent
        self._validator = validator or ExpenseValidator()

    @property
    def balance_id(self) -> str:
        return self._balance_id

    async def read(self) -> Decimal:
        """Current balance; 0 if the record was never created."""
        balance = await self._storage.get_balance(self._balance_id)
        if balance is None:
            return Decimal("0")
        return balance.current_balance

    async def snapshot(self) -> Balance:
        """The full record, or an unsaved zero record if it doesn't exist yet."""
        balance = await self._storage.get_balance(self._balance_id)
        return balance or Balance(id=self._balance_id)

    async def credit(self, amount: Any, create_if_absent: Optional[bool] = None) -> Decimal:
        """
        Atomically add a positive amount.

        Raises:
            ValidationFailedError: If amount <= 0 (balance untouched)
            NotFoundError: If the record is absent and creation is disabled
        """
        value = self._validator.validate_amount(amount)
        balance = await self._apply(value, create_if_absent)
        logger.info("balance_credited", amount=str(value), new_balance=str(balance.current_balance))
        return balance.current_balance

    async def debit(self, amount: Any, create_if_absent: Optional[bool] = None) -> Decimal:
        """
        Atomically subtract a positive amount. No floor: may go negative.

        An absent record with creation enabled starts at -amount.

        Raises:
            ValidationFailedError: If amount <= 0 (balance untouched)
            NotFoundError: If the record is absent and creation is disabled
        """
        value = self._validator.validate_amount(amount)
        balance = await self._apply(-value, create_if_absent)
        logger.info("balance_debited", amount=str(value), new_balance=str(balance.current_balance))
        return balance.current_balance

    async def initialize(self) -> tuple[Balance, bool]:
        """
        Create the record at zero unless it exists. Idempotent.

        Returns:
            (record, created)
        """
        balance, created = await self._storage.create_balance_if_absent(self._balance_id)
        if created:
            logger.info("balance_initialized", balance_id=self._balance_id)
        else:
            logger.info(
                "balance_already_exists",
                balance_id=self._balance_id,
                current_balance=str(balance.current_balance),
            )
        return balance, created

    async def _apply(self, delta: Decimal, create_if_absent: Optional[bool]) -> Balance:
        upsert = self._create_if_absent if create_if_absent is None else create_if_absent
        return await self._storage.increment_balance(self._balance_id, delta, upsert=upsert)
