"""
Reporting Views

DESIGN DECISION: Reports are DERIVED, never stored.
Every call re-reads the ledger and groups in Python. There is no cache
and no incrementally maintained total that could drift from the records.

Grouping keys use the stored UTC timestamp as-is.
"""

from collections import defaultdict
from decimal import Decimal

from expense_tracker.models.expense import (
    CategorySummary,
    DailySummary,
    Expense,
    ExpenseCategory,
    MonthlySummary,
)
from expense_tracker.services.ledger import ExpenseLedger


class ReportingViews:
    """Read-only aggregations over the expense ledger."""

    def __init__(self, ledger: ExpenseLedger):
        self._ledger = ledger

    async def by_category(self) -> list[CategorySummary]:
        """Total and count per category, largest total first."""
        expenses = await self._ledger.list()
        totals: dict[ExpenseCategory, Decimal] = defaultdict(Decimal)
        counts: dict[ExpenseCategory, int] = defaultdict(int)

        for expense in expenses:
            totals[expense.category] += expense.amount
            counts[expense.category] += 1

        summaries = [
            CategorySummary(category=category, total_spent=total, count=counts[category])
            for category, total in totals.items()
        ]
        summaries.sort(key=lambda s: s.total_spent, reverse=True)
        return summaries

    async def by_day(self) -> list[DailySummary]:
        """Total per calendar day, most recent day first."""
        expenses = await self._ledger.list()
        totals = self._group(expenses, lambda e: e.date.strftime("%Y-%m-%d"))
        return [
            DailySummary(day=day, total_spent=totals[day])
            for day in sorted(totals, reverse=True)
        ]

    async def by_month(self) -> list[MonthlySummary]:
        """Total per (year, month), oldest month first."""
        expenses = await self._ledger.list()
        totals = self._group(expenses, lambda e: (e.date.year, e.date.month))
        return [
            MonthlySummary(year=year, month=month, total_spent=totals[(year, month)])
            for year, month in sorted(totals)
        ]

    def _group(self, expenses: list[Expense], key) -> dict:
        totals: dict = defaultdict(Decimal)
        for expense in expenses:
            totals[key(expense)] += expense.amount
        return totals
