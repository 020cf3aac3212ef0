"""
HTTP API for Expense Tracker

JSON over HTTP. The paths and response shapes are the ones the existing
front end already talks to, so field names like `_id`, `totalSpent` and
`currentBalance` are part of the contract.

Mutating routes go through the TransactionCoordinator. Pure reads go
straight to the ledger, the balance register or the reporting views.

Errors are mapped centrally by exception type:
    ValidationFailedError, InvalidIdError, malformed body → 400
    NotFoundError                                         → 404
    BalanceUpdateError, PartialFailureError, StorageError → 500
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from expense_tracker import __version__
from expense_tracker.audit import configure_logging
from expense_tracker.config import Settings, get_settings
from expense_tracker.models.expense import DepositPayload, ExpensePayload
from expense_tracker.orchestrator import (
    AppComponents,
    BalanceUpdateError,
    PartialFailureError,
    create_app_components,
)
from expense_tracker.services import InvalidIdError, NotFoundError, StorageError
from expense_tracker.validation import ValidationFailedError

logger = structlog.get_logger(__name__)


def _error_body(message: str, error: str, exc: Optional[BaseException] = None, **extra) -> dict:
    body = {"message": message, "error": error}
    cause = exc.__cause__ if exc is not None else None
    if cause is not None:
        body["details"] = str(cause)
    body.update(extra)
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain and storage exceptions to HTTP responses."""

    @app.exception_handler(ValidationFailedError)
    async def handle_validation_failed(request: Request, exc: ValidationFailedError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "message": exc.message,
                "error": "validation_error",
                "issues": exc.issues_as_dicts(),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        issues = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
                "issue_type": err.get("type", "invalid"),
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={
                "message": "Malformed request body.",
                "error": "validation_error",
                "issues": issues,
            },
        )

    @app.exception_handler(InvalidIdError)
    async def handle_invalid_id(request: Request, exc: InvalidIdError) -> JSONResponse:
        return JSONResponse(status_code=400, content=_error_body(str(exc), "invalid_id"))

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content=_error_body(str(exc), "not_found"))

    @app.exception_handler(PartialFailureError)
    async def handle_partial_failure(request: Request, exc: PartialFailureError) -> JSONResponse:
        logger.error(
            "partial_failure",
            operation=exc.operation,
            expense_id=str(exc.expense.id),
            error=exc.message,
        )
        return JSONResponse(
            status_code=500,
            content=_error_body(
                exc.message,
                "partial_failure",
                exc,
                operation=exc.operation,
                expense=exc.expense.to_api_dict(),
            ),
        )

    @app.exception_handler(BalanceUpdateError)
    async def handle_balance_update(request: Request, exc: BalanceUpdateError) -> JSONResponse:
        return JSONResponse(
            status_code=500,
            content=_error_body(str(exc), "balance_update_failed", exc),
        )

    @app.exception_handler(StorageError)
    async def handle_storage_error(request: Request, exc: StorageError) -> JSONResponse:
        logger.error("storage_error", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content=_error_body(str(exc), "storage_error", exc),
        )


def create_application(
    components: Optional[AppComponents] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Create the FastAPI application with routes and dependencies.

    Args:
        components: Pre-wired components (tests pass in-memory ones).
                    Built from settings when omitted.
        settings: Settings to use (defaults to the cached global settings)
    """
    settings = settings or get_settings()
    app_settings = settings.app
    configure_logging(app_settings.log_level)

    components = components or create_app_components(settings)
    coordinator = components.coordinator
    ledger = components.ledger
    balance = components.balance
    reports = components.reports
    currency = app_settings.currency_symbol

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            await coordinator.initialize()
        except StorageError as e:
            # first credit/debit will still create the record (or fail visibly)
            logger.error("balance_initialization_failed", error=str(e))
        yield
        if components.sql_client is not None:
            components.sql_client.dispose()

    app = FastAPI(
        title="Expense Tracker",
        version=__version__,
        debug=app_settings.debug_mode,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_exception_handlers(app)
    app.state.components = components

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "storage": components.backend}

    # ----------------------------------------------------------------------
    # Expenses
    # ----------------------------------------------------------------------

    @app.get("/api/expenses")
    async def list_expenses() -> JSONResponse:
        """All expenses, most recent first."""
        expenses = await ledger.list()
        return JSONResponse([expense.to_api_dict() for expense in expenses])

    @app.post("/api/expenses", status_code=201)
    async def create_expense(payload: ExpensePayload) -> JSONResponse:
        """Record an expense and debit the balance."""
        expense = await coordinator.record_expense(
            description=payload.description,
            amount=payload.amount,
            category=payload.category,
            date=payload.date,
        )
        return JSONResponse(status_code=201, content=expense.to_api_dict())

    @app.delete("/api/expenses/{expense_id}")
    async def delete_expense(expense_id: str) -> JSONResponse:
        """Delete one expense by id."""
        deleted = await coordinator.delete_expense(expense_id)
        return JSONResponse(deleted.to_api_dict())

    # ----------------------------------------------------------------------
    # Summaries
    # ----------------------------------------------------------------------

    @app.get("/api/expenses/summary/category")
    async def category_summary() -> JSONResponse:
        summary = await reports.by_category()
        return JSONResponse([row.model_dump(mode="json", by_alias=True) for row in summary])

    @app.get("/api/expenses/summary/daily")
    async def daily_summary() -> JSONResponse:
        summary = await reports.by_day()
        return JSONResponse([row.model_dump(mode="json", by_alias=True) for row in summary])

    @app.get("/api/expenses/summary/monthly")
    async def monthly_summary() -> JSONResponse:
        summary = await reports.by_month()
        return JSONResponse([row.model_dump(mode="json", by_alias=True) for row in summary])

    # ----------------------------------------------------------------------
    # Balance
    # ----------------------------------------------------------------------

    @app.get("/api/balance")
    async def get_balance() -> dict:
        """Current balance; 0 before anything was ever recorded."""
        current = await balance.read()
        return {"currentBalance": float(current)}

    @app.post("/api/balance/deposit")
    async def deposit(payload: DepositPayload) -> dict:
        """Add income to the balance."""
        new_balance = await coordinator.record_deposit(payload.amount)
        return {
            "message": f"Successfully added {currency}{payload.amount} to balance.",
            "newBalance": float(new_balance),
        }

    return app
