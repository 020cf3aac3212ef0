"""HTTP API package."""

from expense_tracker.api.routes import create_application, register_exception_handlers

__all__ = ["create_application", "register_exception_handlers"]
