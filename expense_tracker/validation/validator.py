"""
Input Validation

DESIGN DECISION: Validation happens once, at the ledger/register boundary,
not in the HTTP layer. Programmatic callers and HTTP callers therefore get
the same checks and the same error shape.

Checks are limited to type and range:
- description present and non-empty after trimming
- amount present, numeric, at least 0.01, at most two decimal places
- category one of the closed set (omitted means Other)

IMPORTANT: Validation NEVER silently fixes issues beyond trimming
whitespace. It reports them.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError

from expense_tracker.models.expense import (
    MIN_AMOUNT,
    Expense,
    ExpenseCategory,
    ValidationIssue,
)


class ValidationFailedError(Exception):
    """Input rejected before anything was written."""

    def __init__(self, message: str, issues: Optional[list[ValidationIssue]] = None):
        super().__init__(message)
        self.message = message
        self.issues = issues or []

    def issues_as_dicts(self) -> list[dict]:
        return [issue.model_dump() for issue in self.issues]


class ExpenseValidator:
    """Builds validated Expense records and checks monetary amounts."""

    def validate_amount(self, amount: Any, field: str = "amount") -> Decimal:
        """
        Check that a monetary amount is a positive number.

        Returns the amount as Decimal.

        Raises:
            ValidationFailedError: If missing, non-numeric, <= 0 or finer than a cent
        """
        issue = self._amount_issue(amount, field)
        if issue:
            raise ValidationFailedError(issue.message, [issue])
        return Decimal(str(amount))

    def build_expense(
        self,
        description: Any,
        amount: Any,
        category: Any = None,
        date: Optional[datetime] = None,
    ) -> Expense:
        """
        Validate raw input and build an Expense (id and date assigned).

        Raises:
            ValidationFailedError: With one issue per bad field
        """
        issues: list[ValidationIssue] = []

        if description is None or not str(description).strip():
            issues.append(ValidationIssue(
                field="description",
                issue_type="missing",
                message="Description is required.",
            ))

        amount_issue = self._amount_issue(amount, "amount")
        if amount_issue:
            issues.append(amount_issue)

        if category is not None and not self._is_known_category(category):
            allowed = ", ".join(c.value for c in ExpenseCategory)
            issues.append(ValidationIssue(
                field="category",
                issue_type="unknown_category",
                message=f"Unknown category '{category}'. Allowed: {allowed}.",
            ))

        if issues:
            raise ValidationFailedError(self._summary(issues), issues)

        fields: dict[str, Any] = {
            "description": str(description),
            "amount": Decimal(str(amount)),
            "category": ExpenseCategory(category) if category is not None else ExpenseCategory.OTHER,
        }
        if date is not None:
            fields["date"] = date

        try:
            return Expense(**fields)
        except PydanticValidationError as e:
            issues = [
                ValidationIssue(
                    field=".".join(str(part) for part in err["loc"]) or "expense",
                    issue_type=err["type"],
                    message=err["msg"],
                )
                for err in e.errors()
            ]
            raise ValidationFailedError(self._summary(issues), issues) from e

    def _amount_issue(self, amount: Any, field: str) -> Optional[ValidationIssue]:
        if amount is None or isinstance(amount, bool):
            return ValidationIssue(
                field=field,
                issue_type="missing",
                message=f"{field.capitalize()} must be a positive number.",
            )
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            return ValidationIssue(
                field=field,
                issue_type="not_a_number",
                message=f"{field.capitalize()} must be a positive number.",
            )
        if not value.is_finite():
            return ValidationIssue(
                field=field,
                issue_type="not_a_number",
                message=f"{field.capitalize()} must be a positive number.",
            )
        if value <= 0:
            return ValidationIssue(
                field=field,
                issue_type="not_positive",
                message=f"{field.capitalize()} must be a positive number.",
            )
        if value < MIN_AMOUNT:
            return ValidationIssue(
                field=field,
                issue_type="below_minimum",
                message=f"{field.capitalize()} must be at least {MIN_AMOUNT}.",
            )
        # stored as whole cents; a third decimal would be rounded away
        if value.normalize().as_tuple().exponent < -2:
            return ValidationIssue(
                field=field,
                issue_type="too_many_decimal_places",
                message=f"{field.capitalize()} must have at most two decimal places.",
            )
        return None

    def _is_known_category(self, category: Any) -> bool:
        try:
            ExpenseCategory(category)
            return True
        except ValueError:
            return False

    def _summary(self, issues: list[ValidationIssue]) -> str:
        return "; ".join(issue.message for issue in issues)
