"""Reporting package."""

from expense_tracker.queries.reports import ReportingViews

__all__ = ["ReportingViews"]
