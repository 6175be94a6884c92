"""
Custom exceptions and error handlers for consistent error responses.

Billing errors fall into four families:
    ValidationError     malformed input, rejected before any write
    NotFoundError       client, order, invoice or payment absent
    StateConflictError  the request is valid but the current state forbids it
    PersistenceError    a storage write failed partway through a sequence
"""

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from typing import Any, Dict
import logging

logger = logging.getLogger("dentallab")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


# Families

class ValidationError(AppException):
    """Raised for malformed input (non-positive amount, bad id)."""

    def __init__(self, message: str, error_code: str = "ERR_VALIDATION_001", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class NotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None, error_code: str = "ERR_NOT_FOUND_001"):
        message = f"{resource} not found"
        if resource_id is not None:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class StateConflictError(AppException):
    """Raised when the current state of a resource forbids the operation."""

    def __init__(self, message: str, error_code: str = "ERR_CONFLICT_001", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details=details
        )


class PersistenceError(AppException):
    """Raised when a write against the store fails mid-sequence."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERSISTENCE_001",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details=details
        )


# Validation

class NonPositiveAmount(ValidationError):
    def __init__(self, amount: Any):
        super().__init__(
            message="Amount must be greater than zero",
            error_code="ERR_VALIDATION_AMOUNT",
            details={"amount": str(amount)}
        )


class InvalidAmount(ValidationError):
    def __init__(self, amount: Any):
        super().__init__(
            message="Invalid amount",
            error_code="ERR_VALIDATION_AMOUNT",
            details={"amount": str(amount)}
        )


class NoteTooLong(ValidationError):
    def __init__(self, length: int, max_length: int):
        super().__init__(
            message=f"Note must be at most {max_length} characters",
            error_code="ERR_VALIDATION_NOTE",
            details={"length": length, "max_length": max_length}
        )


# Not found

class OrderNotFound(NotFoundError):
    def __init__(self, order_id: Any):
        super().__init__("Work order", order_id, error_code="ERR_NOT_FOUND_ORDER")


class ClientNotFound(NotFoundError):
    def __init__(self, client_id: Any):
        super().__init__("Client", client_id, error_code="ERR_NOT_FOUND_CLIENT")


class InvoiceNotFound(NotFoundError):
    def __init__(self, invoice_id: Any):
        super().__init__("Invoice", invoice_id, error_code="ERR_NOT_FOUND_INVOICE")


class PaymentNotFound(NotFoundError):
    def __init__(self, payment_id: Any):
        super().__init__("Payment", payment_id, error_code="ERR_NOT_FOUND_PAYMENT")


# State conflicts

class BillingPartyMissing(StateConflictError):
    def __init__(self, order_id: Any):
        super().__init__(
            message=f"Work order {order_id} has no dentist or client to bill",
            error_code="ERR_BILLING_PARTY_MISSING",
            details={"order_id": order_id}
        )


class OrderNotReady(StateConflictError):
    def __init__(self, order_id: Any, order_status: str):
        super().__init__(
            message=f"Work order {order_id} is not finished. Current status: {order_status}",
            error_code="ERR_ORDER_NOT_READY",
            details={"order_id": order_id, "status": order_status}
        )


class DuplicateInvoice(StateConflictError):
    def __init__(self, order_id: Any, invoice_id: Any):
        super().__init__(
            message=f"Work order {order_id} already has invoice {invoice_id}",
            error_code="ERR_DUPLICATE_INVOICE",
            details={"order_id": order_id, "invoice_id": invoice_id}
        )


class AmountUndetermined(StateConflictError):
    def __init__(self, order_id: Any):
        super().__init__(
            message=f"Could not determine the price of work order {order_id}",
            error_code="ERR_AMOUNT_UNDETERMINED",
            details={"order_id": order_id}
        )


class AmountBelowPayments(StateConflictError):
    def __init__(self, invoice_id: Any, amount: Any, total_paid: Any):
        super().__init__(
            message=f"New amount {amount} is below the {total_paid} already received for invoice {invoice_id}",
            error_code="ERR_AMOUNT_BELOW_PAYMENTS",
            details={"invoice_id": invoice_id, "amount": str(amount), "total_paid": str(total_paid)}
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


# Global Exception Handlers

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": exc.error_code,
            "message": exc.message,
            "details": exc.details
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    error_code_map = {
        400: "ERR_BAD_REQUEST",
        401: "ERR_UNAUTHORIZED",
        403: "ERR_FORBIDDEN",
        404: "ERR_NOT_FOUND",
        409: "ERR_CONFLICT",
        500: "ERR_INTERNAL_SERVER"
    }

    error_code = error_code_map.get(exc.status_code, "ERR_UNKNOWN")

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error_code": error_code,
            "message": exc.detail,
            "details": {}
        },
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for Pydantic validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "ERR_VALIDATION",
            "message": "Validation error",
            "details": {
                "errors": jsonable_errors(exc)
            }
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Pydantic error dicts can carry Decimal or exception objects in ctx."""
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        if "input" in error:
            error["input"] = str(error["input"])
        errors.append(error)
    return errors


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception", extra={"path": request.url.path})

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error_code": "ERR_INTERNAL_SERVER",
            "message": "An internal server error occurred",
            "details": {}
        }
    )
