"""
Expense Tracker - Source Package

A small personal expense-tracking backend: records expenses, keeps one
running balance in step with them, and answers summary questions.

DESIGN PRINCIPLES:
1. The balance only ever moves through atomic increments
2. Fail early, fail visibly
3. A half-applied change is never reported as success
4. Every mutation is auditable
5. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Expense Tracker Team"
