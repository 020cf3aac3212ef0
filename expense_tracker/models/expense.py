"""
Core Data Models for Expense Tracker

These models define the strict schemas for all data flowing through the system.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Be serializable for storage and for the JSON API

DESIGN DECISION: Money is always Decimal inside the system and only becomes
a JSON number at the API boundary. Field aliases (`_id`, `currentBalance`,
`totalSpent`) keep the wire format the front end already consumes.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


MIN_AMOUNT = Decimal("0.01")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ExpenseCategory(str, Enum):
    """
    Supported expense categories.

    DESIGN DECISION: A closed set rather than free text, so the category
    summary never splits "food" and "Food" into two rows.
    """
    FOOD = "Food"
    TRANSPORT = "Transport"
    GROCERIES = "Groceries"
    UTILITIES = "Utilities"
    ENTERTAINMENT = "Entertainment"
    OTHER = "Other"


# =============================================================================
# CORE RECORDS
# =============================================================================

class Expense(BaseModel):
    """
    One recorded spending event.

    Expenses are immutable once stored; the only lifecycle step after
    creation is deletion.
    """
    model_config = ConfigDict(
        str_strip_whitespace=True,
        populate_by_name=True,
        frozen=True,
    )

    id: UUID = Field(
        default_factory=uuid4,
        alias="_id",
        description="Unique expense ID"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="What the money was spent on"
    )
    amount: Annotated[
        Decimal,
        Field(ge=MIN_AMOUNT, decimal_places=2, description="Amount spent (always positive)")
    ]
    category: ExpenseCategory = Field(
        default=ExpenseCategory.OTHER,
        description="Expense category"
    )
    date: datetime = Field(
        default_factory=utcnow,
        description="When the expense happened (UTC)"
    )

    @field_validator('date')
    @classmethod
    def normalize_date(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_serializer('amount', when_used='json')
    def serialize_amount(self, v: Decimal) -> float:
        return float(v)

    def to_api_dict(self) -> dict:
        """Serialize using the wire field names."""
        return self.model_dump(mode="json", by_alias=True)


class Balance(BaseModel):
    """
    The singleton running balance.

    Exactly one record exists per deployment, keyed by a fixed id.
    The balance may go negative; no floor is enforced.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(
        default="running_balance",
        alias="_id",
        description="Fixed key of the singleton"
    )
    current_balance: Decimal = Field(
        default=Decimal("0"),
        alias="currentBalance",
        description="Signed running total"
    )
    last_updated: datetime = Field(
        default_factory=utcnow,
        alias="lastUpdated",
        description="Timestamp of the most recent mutation"
    )

    @field_validator('last_updated')
    @classmethod
    def normalize_last_updated(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_serializer('current_balance', when_used='json')
    def serialize_balance(self, v: Decimal) -> float:
        return float(v)


# =============================================================================
# REPORTING MODELS
# =============================================================================

class CategorySummary(BaseModel):
    """Total spent and number of expenses for one category."""
    model_config = ConfigDict(populate_by_name=True)

    category: ExpenseCategory = Field(..., alias="_id")
    total_spent: Decimal = Field(..., alias="totalSpent")
    count: int = Field(..., ge=0)

    @field_serializer('total_spent', when_used='json')
    def serialize_total(self, v: Decimal) -> float:
        return float(v)


class DailySummary(BaseModel):
    """Total spent on one calendar day (YYYY-MM-DD)."""
    model_config = ConfigDict(populate_by_name=True)

    day: str = Field(..., alias="_id", pattern=r"^\d{4}-\d{2}-\d{2}$")
    total_spent: Decimal = Field(..., alias="totalSpent")

    @field_serializer('total_spent', when_used='json')
    def serialize_total(self, v: Decimal) -> float:
        return float(v)


class MonthlySummary(BaseModel):
    """Total spent in one (year, month)."""
    model_config = ConfigDict(populate_by_name=True)

    year: int
    month: int = Field(..., ge=1, le=12)
    total_spent: Decimal = Field(..., alias="totalSpent")

    @field_serializer('total_spent', when_used='json')
    def serialize_total(self, v: Decimal) -> float:
        return float(v)


# =============================================================================
# VALIDATION MODELS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single validation issue found."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'not_positive', 'unknown_category')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )


# =============================================================================
# REQUEST MODELS (HTTP bodies)
# =============================================================================

class ExpensePayload(BaseModel):
    """
    Body of POST /api/expenses.

    Everything is optional here on purpose: the ledger does the real
    validation so HTTP and programmatic callers get the same errors.
    """

    description: Optional[str] = None
    amount: Optional[Decimal] = None
    category: Optional[str] = None
    date: Optional[datetime] = None


class DepositPayload(BaseModel):
    """Body of POST /api/balance/deposit."""

    amount: Optional[Decimal] = None
