"""
Custom exception classes and FastAPI exception handlers.

Why custom exceptions?
  The ledger raises domain-specific errors (like InsufficientFundsError)
  without importing HTTP concepts. The handler layer then translates these
  into HTTP responses, so service code stays testable without a web server.

Exception hierarchy:
    LedgerAPIError (base)
    ├── LedgerValidationError       400 — malformed amount, self-transfer
    │   └── BalanceLimitError           credit would overflow the balance column
    ├── UnauthorizedAccessError     403 — caller does not own the resource
    ├── NotFoundError               404 — unknown account or transaction
    ├── AccountClosedError          409 — write against a CLOSED account
    ├── AccountAlreadyClosedError   409 — closing twice
    ├── AccountHasBalanceError      409 — close policy forbids nonzero balance
    ├── IdempotencyKeyReuseError    409 — same key, different request
    ├── InsufficientFundsError      402 — debit would make the balance negative
    └── TransientLedgerError        503 — safe to retry the whole request
        ├── VersionConflictError        (retried inside the ledger first)
        ├── ConcurrentModificationError (retries exhausted)
        └── StorageTimeoutError

Storage failures (any SQLAlchemyError) are not part of the hierarchy; they
are logged and returned as 500 by handle_storage_error.
"""

import logging
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class LedgerAPIError(Exception):
    """Base exception for all ledger domain errors."""

    status_code: int = 400
    error_type: str = "ledger_error"
    retryable: bool = False

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Validation (400)
# ---------------------------------------------------------------------------

class LedgerValidationError(LedgerAPIError):
    """Raised when a request is malformed; detected before any side effect."""

    status_code = 400
    error_type = "validation_error"


class InvalidAmountError(LedgerValidationError):
    """Zero, negative, non-finite or over-precise monetary amount."""

    error_type = "invalid_amount"


class SelfTransferError(LedgerValidationError):
    """Source and destination of a transfer are the same account."""

    error_type = "self_transfer"

    def __init__(self, account_id: uuid.UUID):
        self.account_id = account_id
        super().__init__("Cannot transfer to the same account")


class BalanceLimitError(LedgerValidationError):
    """A credit would push a balance past what storage can hold."""

    error_type = "balance_limit_exceeded"

    def __init__(self, account_id: uuid.UUID):
        self.account_id = account_id
        super().__init__(f"Credit would exceed the maximum balance of account {account_id}")


# ---------------------------------------------------------------------------
# Access and lookup
# ---------------------------------------------------------------------------

class UnauthorizedAccessError(LedgerAPIError):
    """Raised when a caller attempts to access a resource they don't own."""

    status_code = 403
    error_type = "unauthorized_access"

    def __init__(self, detail: str = "You do not have access to this resource"):
        super().__init__(detail)


class NotFoundError(LedgerAPIError):
    status_code = 404
    error_type = "not_found"


class AccountNotFoundError(NotFoundError):
    """Raised when a requested account does not exist."""

    error_type = "account_not_found"

    def __init__(self, account_ref: uuid.UUID | str):
        self.account_ref = account_ref
        super().__init__(f"Account {account_ref} not found")


class TransactionNotFoundError(NotFoundError):
    error_type = "transaction_not_found"

    def __init__(self, transaction_id: uuid.UUID):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")


# ---------------------------------------------------------------------------
# Account state conflicts (409)
# ---------------------------------------------------------------------------

class AccountClosedError(LedgerAPIError):
    """Raised when a write targets an account whose status is CLOSED."""

    status_code = 409
    error_type = "account_closed"

    def __init__(self, account_id: uuid.UUID):
        self.account_id = account_id
        super().__init__(f"Account {account_id} is closed")


class AccountAlreadyClosedError(LedgerAPIError):
    status_code = 409
    error_type = "already_closed"

    def __init__(self, account_id: uuid.UUID):
        self.account_id = account_id
        super().__init__(f"Account {account_id} is already closed")


class AccountHasBalanceError(LedgerAPIError):
    """Raised by the require_zero_balance close policy."""

    status_code = 409
    error_type = "account_has_balance"

    def __init__(self, account_id: uuid.UUID, balance_cents: int):
        self.account_id = account_id
        self.balance_cents = balance_cents
        super().__init__(
            f"Account {account_id} still holds {balance_cents} cents and cannot be closed"
        )


class IdempotencyKeyReuseError(LedgerAPIError):
    status_code = 409
    error_type = "idempotency_key_reuse"

    def __init__(self, key: str):
        self.key = key
        super().__init__(
            f"Idempotency key {key!r} was already used for a different request"
        )


# ---------------------------------------------------------------------------
# Funds (402)
# ---------------------------------------------------------------------------

class InsufficientFundsError(LedgerAPIError):
    """
    Raised when a debit or transfer would cause a negative balance.

    Attributes:
        account_id: The account that lacks sufficient funds.
        requested_cents: The amount the caller tried to debit.
        available_cents: The current balance of the account.
    """

    status_code = 402
    error_type = "insufficient_funds"

    def __init__(
        self,
        account_id: uuid.UUID,
        requested_cents: int,
        available_cents: int,
    ):
        self.account_id = account_id
        self.requested_cents = requested_cents
        self.available_cents = available_cents
        super().__init__(
            f"Insufficient funds: requested {requested_cents} cents, "
            f"available {available_cents} cents"
        )


# ---------------------------------------------------------------------------
# Transient failures (503)
# ---------------------------------------------------------------------------

class TransientLedgerError(LedgerAPIError):
    """The operation did not take effect and the whole request may be retried."""

    status_code = 503
    error_type = "transient_failure"
    retryable = True


class VersionConflictError(TransientLedgerError):
    """An account changed between read and compare-and-set."""

    error_type = "version_conflict"

    def __init__(self, account_id: uuid.UUID, expected_version: int, actual_version: int):
        self.account_id = account_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Account {account_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


class ConcurrentModificationError(TransientLedgerError):
    error_type = "concurrent_modification"

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(
            f"Gave up after {attempts} attempts due to concurrent updates; retry the request"
        )


class StorageTimeoutError(TransientLedgerError):
    error_type = "storage_timeout"

    def __init__(self, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Storage did not respond within {timeout_seconds} seconds; retry the request"
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Every handler returns the same JSON shape:
        {"detail": "error message", "error_type": "machine_readable_code"}

    Starlette picks the handler registered for the most specific class in the
    exception's MRO, so InsufficientFundsError gets its own richer body while
    every other LedgerAPIError falls through to the base handler.
    """
    # app.money imports this module
    from app.money import to_major_units

    @app.exception_handler(LedgerAPIError)
    async def ledger_error_handler(
        request: Request, exc: LedgerAPIError
    ) -> JSONResponse:
        content = {"detail": exc.detail, "error_type": exc.error_type}
        headers = None
        if exc.retryable:
            content["retryable"] = True
            headers = {"Retry-After": "1"}
        return JSONResponse(status_code=exc.status_code, content=content, headers=headers)

    @app.exception_handler(InsufficientFundsError)
    async def insufficient_funds_handler(
        request: Request, exc: InsufficientFundsError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,  # 402 Payment Required
            content={
                "detail": exc.detail,
                "error_type": exc.error_type,
                "requested": float(to_major_units(exc.requested_cents)),
                "available": float(to_major_units(exc.available_cents)),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # One contract for malformed input: 400, whether pydantic or the
        # ledger caught it.
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={
                "detail": "Request validation failed",
                "error_type": "validation_error",
                "errors": errors,
            },
        )

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(
        request: Request, exc: SQLAlchemyError
    ) -> JSONResponse:
        logger.exception("Storage error while handling %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal storage error", "error_type": "storage_error"},
        )
