"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

BASE_ERROR_URI = "https://leave.example.com/errors"


# ── Exception hierarchy ─────────────────────────────────────────────

class AppException(Exception):
    """Base for all application exceptions → RFC 7807 JSON."""

    def __init__(
        self,
        status_code: int,
        error_type: str,
        title: str,
        detail: str,
        errors: Optional[dict[str, Any]] = None,
    ) -> None:
        self.status_code = status_code
        self.error_type = error_type
        self.title = title
        self.detail = detail
        self.errors = errors
        super().__init__(detail)


class NotFound(AppException):
    """404: entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class NotAuthorized(AppException):
    """403: actor may not perform this action."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="not-authorized",
            title="Not Authorized",
            detail=detail,
        )


class InvalidTransition(AppException):
    """409: the request's current status does not allow this action."""

    def __init__(self, action: str, status: Any) -> None:
        status_value = getattr(status, "value", status)
        super().__init__(
            status_code=409,
            error_type="invalid-transition",
            title="Invalid Transition",
            detail=f"Cannot {action} a leave request with status '{status_value}'.",
            errors={"status": [str(status_value)]},
        )


class InvalidDateRange(AppException):
    """422: start date after end date."""

    def __init__(self, detail: str = "Start date must be on or before end date.") -> None:
        super().__init__(
            status_code=422,
            error_type="invalid-date-range",
            title="Invalid Date Range",
            detail=detail,
        )


class ProbationRestriction(AppException):
    """422: unconfirmed employees may only apply for sick leave."""

    def __init__(self) -> None:
        super().__init__(
            status_code=422,
            error_type="probation-restriction",
            title="Probation Restriction",
            detail="Employees on probation can only apply for sick leave.",
        )


class PastDateNotAllowed(AppException):
    """422: leave may not start before yesterday (except emergency leave)."""

    def __init__(self) -> None:
        super().__init__(
            status_code=422,
            error_type="past-date-not-allowed",
            title="Past Date Not Allowed",
            detail="Cannot apply for leave in the past.",
        )


class InsufficientBalance(AppException):
    """422: the ledger cannot cover the requested duration."""

    def __init__(self, available: Decimal, requested: Decimal) -> None:
        super().__init__(
            status_code=422,
            error_type="insufficient-balance",
            title="Insufficient Balance",
            detail=(
                f"Insufficient balance. Available: {available}, "
                f"Requested: {requested}."
            ),
            errors={"balance": [str(available)], "requested": [str(requested)]},
        )
        self.available = available
        self.requested = requested


class LeavePolicyViolation(AppException):
    """422: a per-leave-type policy rule rejected the submission."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(
            status_code=422,
            error_type="policy-violation",
            title="Leave Policy Violation",
            detail=message,
            errors={field: [message]},
        )


class ConfigurationMissing(AppException):
    """No configuration row for a leave type.

    Callers on the submit/approve path catch this and degrade to the built-in
    defaults; it only reaches an HTTP client from the admin config endpoints.
    """

    def __init__(self, leave_type: Any) -> None:
        lt_value = getattr(leave_type, "value", leave_type)
        super().__init__(
            status_code=404,
            error_type="configuration-missing",
            title="Configuration Missing",
            detail=f"No entitlement configuration exists for leave type '{lt_value}'.",
        )
        self.leave_type = leave_type


# ── RFC 7807 builder ────────────────────────────────────────────────

def _build_problem_detail(exc: AppException, request: Request) -> dict[str, Any]:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{exc.error_type}",
        "title": exc.title,
        "status": exc.status_code,
        "detail": exc.detail,
        "instance": str(request.url.path),
    }
    if exc.errors:
        body["errors"] = exc.errors
    return body


# ── FastAPI handlers ────────────────────────────────────────────────

async def _handle_app_exception(
    request: Request,
    exc: AppException,
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_build_problem_detail(exc, request),
        media_type="application/problem+json",
    )


async def _handle_validation_error(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = (
            ".".join(str(p) for p in loc[1:])
            if len(loc) > 1
            else str(loc[0]) if loc else "unknown"
        )
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return JSONResponse(
        status_code=422,
        content={
            "type": f"{BASE_ERROR_URI}/validation-error",
            "title": "Validation Error",
            "status": 422,
            "detail": "Request validation failed.",
            "instance": str(request.url.path),
            "errors": field_errors,
        },
        media_type="application/problem+json",
    )


# ── Registration helper (called from main.py) ──────────────────────

def register_exception_handlers(app: FastAPI) -> None:
    """Attach all custom exception handlers to the FastAPI app."""
    app.add_exception_handler(AppException, _handle_app_exception)          # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
