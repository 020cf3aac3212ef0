"""Validation package."""

from expense_tracker.validation.validator import ExpenseValidator, ValidationFailedError

__all__ = ["ExpenseValidator", "ValidationFailedError"]
