"""Custom exceptions and RFC 7807 Problem Detail error handlers."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

BASE_ERROR_URI = "https://ledger.hr.local/errors"


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


class NotFoundException(AppException):
    """404 — entity not found."""

    def __init__(self, entity_type: str, entity_id: Any) -> None:
        super().__init__(
            status_code=404,
            error_type="not-found",
            title=f"{entity_type} Not Found",
            detail=f"{entity_type} with id '{entity_id}' does not exist.",
        )


class ConflictError(AppException):
    """409 — duplicate or concurrent write."""

    def __init__(
        self,
        field: str,
        value: Any,
        *,
        detail: Optional[str] = None,
    ) -> None:
        message = detail or f"An entry with {field}='{value}' already exists."
        super().__init__(
            status_code=409,
            error_type="conflict",
            title="Conflict",
            detail=message,
            errors={field: [message if detail else f"'{value}' is already in use."]},
        )


class ForbiddenException(AppException):
    """403 — insufficient permissions."""

    def __init__(
        self,
        detail: str = "You do not have permission to perform this action.",
    ) -> None:
        super().__init__(
            status_code=403,
            error_type="forbidden",
            title="Forbidden",
            detail=detail,
        )


class ValidationException(AppException):
    """422 — business-logic validation failures."""

    def __init__(
        self,
        errors: dict[str, list[str]],
        *,
        detail: Optional[str] = None,
    ) -> None:
        if detail is None:
            messages = [m for msgs in errors.values() for m in msgs]
            detail = (
                messages[0] if len(messages) == 1
                else "One or more fields failed validation."
            )
        super().__init__(
            status_code=422,
            error_type="validation-error",
            title="Validation Error",
            detail=detail,
            errors=errors,
        )


class InvalidStateException(AppException):
    """409 — operation not allowed in the entity's current state."""

    def __init__(self, detail: str, *, state: Optional[str] = None) -> None:
        super().__init__(
            status_code=409,
            error_type="invalid-state",
            title="Invalid State",
            detail=detail,
            errors={"status": [state]} if state else None,
        )


class InsufficientBalanceException(AppException):
    """422 — leave request exceeds the policy-enforced balance."""

    def __init__(self, requested: Any, available: Any) -> None:
        super().__init__(
            status_code=422,
            error_type="insufficient-balance",
            title="Insufficient Balance",
            detail=(
                f"Insufficient leave balance: requested {requested} day(s), "
                f"available {available}."
            ),
            errors={"total_days": [f"Only {available} day(s) available."]},
        )


# ── Named ledger failures ───────────────────────────────────────────

class AlreadyCheckedIn(ConflictError):
    def __init__(self) -> None:
        super().__init__("check_in", None, detail="You have already checked in today.")


class AlreadyCheckedOut(ConflictError):
    def __init__(self) -> None:
        super().__init__("check_out", None, detail="You have already checked out today.")


class DuplicatePendingRequest(ConflictError):
    def __init__(self) -> None:
        super().__init__(
            "date", None,
            detail="You already have a pending correction request for this date.",
        )


class NoActiveCheckIn(InvalidStateException):
    def __init__(self) -> None:
        super().__init__("No check-in found for today. Please check in first.")


class AlreadyResolved(InvalidStateException):
    def __init__(self, entity: str, state: str) -> None:
        super().__init__(f"{entity} is already {state}.", state=state)


class InvalidTransition(InvalidStateException):
    def __init__(self, entity: str, source: str, target: str) -> None:
        super().__init__(
            f"{entity} cannot move from '{source}' to '{target}'.", state=source,
        )


class RecordLocked(InvalidStateException):
    def __init__(self) -> None:
        super().__init__("Attendance record is locked.", state="locked")


class InvalidProposal(ValidationException):
    """Regularization request without a usable correction."""


class Unauthorized(ForbiddenException):
    """Caller lacks the capability required for a ledger transition."""


# ── Problem details (RFC 7807) ──────────────────────────────────────

def _problem(
    request: Request,
    status: int,
    error_type: str,
    title: str,
    detail: str,
    errors: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    body: dict[str, Any] = {
        "type": f"{BASE_ERROR_URI}/{error_type}",
        "title": title,
        "status": status,
        "detail": detail,
        "instance": request.url.path,
    }
    if errors:
        body["errors"] = errors
    return JSONResponse(
        status_code=status,
        content=body,
        media_type="application/problem+json",
        headers=headers,
    )


async def _handle_app_exception(request: Request, exc: AppException) -> JSONResponse:
    return _problem(request, exc.status_code, exc.error_type, exc.title, exc.detail, exc.errors)


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Framework-raised errors (401 from auth, unknown routes) in the same envelope."""
    try:
        title = HTTPStatus(exc.status_code).phrase
    except ValueError:
        title = "Error"
    return _problem(
        request,
        exc.status_code,
        title.lower().replace(" ", "-"),
        title,
        str(exc.detail),
        headers=getattr(exc, "headers", None),
    )


async def _handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    # loc is ("body" | "query" | "path", field, ...); the source prefix is dropped
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc", ())
        name = ".".join(str(p) for p in loc[1:]) if len(loc) > 1 else str(loc[0]) if loc else "unknown"
        field_errors.setdefault(name, []).append(err.get("msg", "Invalid value"))

    return _problem(
        request, 422, "validation-error", "Validation Error",
        "Request validation failed.", field_errors,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, _handle_app_exception)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_validation_error)  # type: ignore[arg-type]
