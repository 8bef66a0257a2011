"""
Custom exceptions for PrintQuotaWeb.

Exception Hierarchy:
    PrintQuotaWebError (base)
    ├── StorageUnavailableError    - Database cannot be opened (startup failure)
    ├── NotAuthenticatedError      - No identity for the request (401)
    ├── AccessDeniedError          - Record belongs to someone else (403)
    ├── RecordNotFoundError        - Job record or stored file missing (404)
    ├── UploadError                - Bad or missing request input (runtime, 400)
    │   └── InvalidPrintOptionsError - Copies / sides out of range
    ├── DocumentError              - Uploaded file cannot be made printable
    │   ├── PageCountError           - Page structure unreadable
    │   └── ConversionError          - External converter failed or timed out
    ├── LedgerError                - Account / money constraints
    │   ├── AccountNotFoundError
    │   └── LimitViolationError
    │       ├── InsufficientBalanceError
    │       ├── MonthlyLimitExceededError
    │       └── YearlyLimitExceededError
    ├── DispatchError              - Print backend rejected the job (post-debit)
    └── CompensationError          - Refund transaction failed

Usage:
    Startup errors (StorageUnavailableError) cause the app to fail fast.
    Everything else is rendered by the API error handler as JSON using the
    ``status_code`` and ``reason`` class attributes.
"""

from typing import Optional, Dict, Any


class PrintQuotaWebError(Exception):
    """
    Base exception for all PrintQuotaWeb errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    status_code = 500
    reason = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# STARTUP ERRORS - Application will not start if these occur
# =============================================================================

class StorageUnavailableError(PrintQuotaWebError):
    """
    The relational store could not be opened or migrated.

    This is a FATAL error - without the ledger no print can be billed.
    """

    reason = "storage_unavailable"

    def __init__(self, database_url: str, cause: str):
        message = f"Cannot open database: {cause}"
        details = {
            "database_url": database_url,
            "resolution": "Check DATABASE_URL in .env and that the data directory is writable",
        }
        super().__init__(message, details)
        self.database_url = database_url


# =============================================================================
# ACCESS ERRORS - Identity missing or not allowed
# =============================================================================

class NotAuthenticatedError(PrintQuotaWebError):
    """No verified identity was supplied for the request."""

    status_code = 401
    reason = "unauthorized"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AccessDeniedError(PrintQuotaWebError):
    """The caller may not access the requested record."""

    status_code = 403
    reason = "forbidden"


class RecordNotFoundError(PrintQuotaWebError):
    """A requested job record or its stored file does not exist."""

    status_code = 404
    reason = "not_found"


# =============================================================================
# INPUT ERRORS - Reported to caller, nothing persisted
# =============================================================================

class UploadError(PrintQuotaWebError):
    """A required form field is missing or malformed."""

    status_code = 400
    reason = "invalid_request"


class InvalidPrintOptionsError(UploadError):
    """Print options (copies, sides) are outside the accepted range."""

    reason = "invalid_print_options"

    def __init__(self, field_name: str, value: Any, allowed: str):
        message = f"Invalid {field_name}: {value!r} (allowed: {allowed})"
        super().__init__(message, {"field": field_name, "value": value})
        self.field_name = field_name


class DocumentError(PrintQuotaWebError):
    """Base class for failures turning an upload into a printable document."""

    status_code = 400
    reason = "document_error"

    def __init__(self, message: str, filename: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        error_details = details or {}
        if filename:
            error_details["filename"] = filename
        super().__init__(message, error_details)
        self.filename = filename


class PageCountError(DocumentError):
    """The page structure of the document could not be read."""

    reason = "page_count_failed"


class ConversionError(DocumentError):
    """
    The external converter failed.

    Raised on non-zero exit, timeout, cancellation, or when the converter
    finished without leaving a PDF behind.
    """

    status_code = 422
    reason = "conversion_failed"


# =============================================================================
# LEDGER ERRORS - No debit, no job row
# =============================================================================

class LedgerError(PrintQuotaWebError):
    """Base class for ledger failures."""

    reason = "ledger_error"


class AccountNotFoundError(LedgerError):
    """The account referenced by the identity no longer exists."""

    status_code = 404
    reason = "account_not_found"

    def __init__(self, user_id: int):
        super().__init__(f"Account {user_id} not found", {"user_id": user_id})
        self.user_id = user_id


class LimitViolationError(LedgerError):
    """
    Base class for constraint violations detected before a debit.

    Attributes carry the numbers the caller needs to explain the rejection.
    """

    status_code = 402
    reason = "limit_violation"
    label = "limit"

    def __init__(self, cost_cents: int, available_cents: int, user_id: Optional[int] = None):
        message = (
            f"{self.label[0].upper()}{self.label[1:]} exceeded: "
            f"cost {cost_cents}, available {available_cents}"
        )
        details = {"cost_cents": cost_cents, "available_cents": available_cents}
        if user_id is not None:
            details["user_id"] = user_id
        super().__init__(message, details)
        self.cost_cents = cost_cents
        self.available_cents = available_cents


class InsufficientBalanceError(LimitViolationError):
    """Balance is lower than the job cost."""

    reason = "insufficient_balance"
    label = "balance"


class MonthlyLimitExceededError(LimitViolationError):
    """The job would push monthly spend past the monthly limit."""

    status_code = 403
    reason = "monthly_limit_exceeded"
    label = "monthly limit"


class YearlyLimitExceededError(LimitViolationError):
    """The job would push yearly spend past the yearly limit."""

    status_code = 403
    reason = "yearly_limit_exceeded"
    label = "yearly limit"


# =============================================================================
# POST-DEBIT ERRORS - Money has moved
# =============================================================================

class DispatchError(PrintQuotaWebError):
    """
    The print backend did not accept the job.

    When raised after the ledger committed, the submission service refunds
    the account and marks the job failed before surfacing this error.
    """

    status_code = 502
    reason = "dispatch_failed"

    def __init__(self, message: str, printer: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        error_details = details or {}
        if printer:
            error_details["printer"] = printer
        super().__init__(message, error_details)
        self.printer = printer


class CompensationError(PrintQuotaWebError):
    """
    The refund transaction failed.

    This is the one state in which the account balance and the job record
    can disagree; it is logged at CRITICAL for manual reconciliation.
    """

    reason = "compensation_failed"

    def __init__(self, job_id: int, cause: str):
        super().__init__(f"Refund for job {job_id} failed: {cause}", {"job_id": job_id})
        self.job_id = job_id
