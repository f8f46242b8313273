"""
Error taxonomy and classification shared by services and route handlers.

Services normalize any data-source failure into an AppError with create_app_error;
the handlers registered in app.main turn it into a JSON response carrying a
user-facing sentence.
"""

import builtins
import logging
from enum import Enum
from typing import Any, Dict, Optional

import httpx
from postgrest.exceptions import APIError

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "An unexpected error occurred. Please try again."

# PostgREST / Postgres error codes -> user-facing sentences
DB_ERROR_MESSAGES = {
    "PGRST116": "The requested record was not found.",
    "23505": "This record already exists.",
    "23503": "Cannot delete this record because it is referenced by other records.",
    "42501": "You do not have permission to perform this action.",
    "42P01": "Database table not found. Please contact support.",
}

DB_STATUS_CODES = {
    "PGRST116": 404,
    "PGRST301": 403,
    "23505": 409,
    "23503": 400,
    "42501": 403,
}

ERROR_CODES = {
    # Authentication
    "AUTH_001": "Invalid credentials",
    "AUTH_002": "Token expired",
    "AUTH_003": "Account suspended",
    "AUTH_004": "Email not verified",
    "AUTH_005": "Session expired",
    # Transactions
    "TXN_001": "Insufficient funds",
    "TXN_002": "Transaction limit exceeded",
    "TXN_003": "Invalid transaction type",
    "TXN_004": "Transaction not found",
    "TXN_005": "Transaction already processed",
    # Members
    "MBR_001": "Member not found",
    "MBR_002": "Duplicate phone number",
    "MBR_003": "Invalid member status",
    # Groups
    "GRP_001": "Group not found",
    "GRP_002": "Group is closed",
    "GRP_003": "Member already in group",
    # General
    "GEN_001": "Internal server error",
    "GEN_002": "Invalid request",
    "GEN_003": "Resource not found",
    "GEN_004": "Permission denied",
    "GEN_005": "Rate limit exceeded",
}


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    NETWORK = "network"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    DUPLICATE_KEY = "duplicate_key"
    FOREIGN_KEY_VIOLATION = "foreign_key_violation"
    UNKNOWN = "unknown"


KIND_MESSAGES = {
    ErrorKind.TIMEOUT: "The request took too long. Please try again.",
    ErrorKind.NETWORK: "Unable to connect. Please check your internet connection.",
    ErrorKind.NOT_FOUND: DB_ERROR_MESSAGES["PGRST116"],
    ErrorKind.PERMISSION_DENIED: DB_ERROR_MESSAGES["42501"],
    ErrorKind.DUPLICATE_KEY: DB_ERROR_MESSAGES["23505"],
    ErrorKind.FOREIGN_KEY_VIOLATION: DB_ERROR_MESSAGES["23503"],
}

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please sign in again."


class AppError(Exception):
    """Base error carrying an HTTP status and a stable machine-readable code."""

    status_code = 500
    code = "INTERNAL_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        if retryable is not None:
            self.retryable = retryable
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "detail": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None):
        super().__init__(message, details={"fields": fields} if fields else None)
        self.fields = fields or {}


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource_type: str, resource_id: Optional[str] = None):
        if resource_id:
            message = f'{resource_type} with ID "{resource_id}" not found'
        else:
            message = f"{resource_type} not found"
        super().__init__(message, details={"resource_type": resource_type, "resource_id": resource_id})


class UnauthorizedError(AppError):
    status_code = 401
    code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(AppError):
    status_code = 403
    code = "FORBIDDEN"

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message)


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class RateLimitError(AppError):
    status_code = 429
    code = "RATE_LIMIT"
    retryable = True

    def __init__(self, message: str = "Too many requests", retry_after: Optional[int] = None,
                 headers: Optional[Dict[str, str]] = None):
        super().__init__(message, details={"retry_after": retry_after} if retry_after else None)
        self.retry_after = retry_after
        self.headers = headers or {}


class NetworkError(AppError):
    status_code = 503
    code = "NETWORK_ERROR"
    retryable = True

    def __init__(self, message: str = "Network error occurred"):
        super().__init__(message)


class TimeoutError(AppError):
    status_code = 408
    code = "TIMEOUT"
    retryable = True

    def __init__(self, operation: str = "Request", timeout_ms: Optional[int] = None):
        if timeout_ms is not None:
            message = f"{operation} timed out after {timeout_ms}ms"
        else:
            message = f"{operation} timed out"
        super().__init__(message, details={"operation": operation, "timeout_ms": timeout_ms})
        self.operation = operation
        self.timeout_ms = timeout_ms


class DatabaseError(AppError):
    """PostgREST/Postgres failure; status follows the database error code."""

    def __init__(self, message: str, db_code: Optional[str] = None, hint: Optional[str] = None,
                 raw_message: Optional[str] = None):
        status_code = DB_STATUS_CODES.get(db_code or "", 500)
        super().__init__(
            message,
            code=f"DB_{db_code}" if db_code else "DB_ERROR",
            status_code=status_code,
            retryable=False,
            details={"hint": hint} if hint else None,
        )
        self.db_code = db_code
        self.hint = hint
        # Postgres text, e.g. the violated constraint name; never shown to users
        self.raw_message = raw_message or message


class ApiError(Exception):
    """Error with a user-facing message and the error it was derived from."""

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None,
                 original_error: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.original_error = original_error


def _error_code(error: Any) -> Optional[str]:
    if isinstance(error, DatabaseError):
        return error.db_code
    if isinstance(error, APIError):
        return error.code
    if isinstance(error, dict):
        return error.get("code")
    return getattr(error, "code", None)


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or "")
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error)


def _status_of(error: Any) -> Optional[int]:
    if isinstance(error, dict):
        return error.get("status") or error.get("status_code")
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    return getattr(error, "status_code", None) or getattr(error, "status", None)


def handle_db_error(error: Any) -> str:
    """Map a database error to a user-facing sentence."""
    if error is None:
        return GENERIC_MESSAGE
    if not isinstance(error, (Exception, dict)):
        return GENERIC_MESSAGE
    code = _error_code(error)
    if code and code in DB_ERROR_MESSAGES:
        return DB_ERROR_MESSAGES[code]
    return _error_message(error) or GENERIC_MESSAGE


def create_api_error(error: Any) -> ApiError:
    code = _error_code(error) if error is not None else None
    return ApiError(
        handle_db_error(error),
        code=code,
        status_code=DB_STATUS_CODES.get(code or "") or _status_of(error),
        original_error=error,
    )


def is_network_error(error: Any) -> bool:
    if isinstance(error, (NetworkError, httpx.TransportError, ConnectionError)) \
            and not isinstance(error, httpx.TimeoutException):
        return True
    message = _error_message(error).lower()
    return any(word in message for word in ("network", "fetch", "connection"))


def is_auth_error(error: Any) -> bool:
    if isinstance(error, (UnauthorizedError, ForbiddenError)):
        return True
    if _status_of(error) in (401, 403):
        return True
    message = _error_message(error).lower()
    return any(word in message for word in ("unauthorized", "forbidden", "jwt"))


def is_timeout_error(error: Any) -> bool:
    if isinstance(error, (TimeoutError, builtins.TimeoutError, httpx.TimeoutException)):
        return True
    message = _error_message(error).lower()
    return "timeout" in message or "timed out" in message


def is_retryable_error(error: Any) -> bool:
    if isinstance(error, AppError):
        return error.retryable or (error.status_code >= 500 and not isinstance(error, DatabaseError))
    if is_timeout_error(error) or is_network_error(error):
        return True
    status_code = _status_of(error)
    return isinstance(status_code, int) and status_code >= 500


def classify_error(error: Any) -> ErrorKind:
    if is_timeout_error(error):
        return ErrorKind.TIMEOUT
    code = _error_code(error)
    if code == "PGRST116" or isinstance(error, NotFoundError):
        return ErrorKind.NOT_FOUND
    if code == "23505" or isinstance(error, ConflictError):
        return ErrorKind.DUPLICATE_KEY
    if code == "23503":
        return ErrorKind.FOREIGN_KEY_VIOLATION
    if code in ("42501", "PGRST301") or isinstance(error, ForbiddenError) or _status_of(error) == 403:
        return ErrorKind.PERMISSION_DENIED
    if is_network_error(error):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def user_message(error: Any) -> str:
    """One sentence suitable for showing to a dashboard user."""
    if error is None:
        return GENERIC_MESSAGE
    message = _error_message(error)
    if "jwt expired" in message.lower():
        return SESSION_EXPIRED_MESSAGE
    if isinstance(error, RateLimitError):
        return "Too many requests. Please wait a moment and try again."
    if isinstance(error, UnauthorizedError):
        return "Please sign in to continue."
    # Messages written by services for client errors are already user-facing
    if isinstance(error, AppError) and not isinstance(error, DatabaseError) \
            and not error.retryable and error.status_code < 500:
        return error.message
    kind = classify_error(error)
    if kind in KIND_MESSAGES:
        return KIND_MESSAGES[kind]
    if isinstance(error, DatabaseError) and error.status_code < 500:
        return error.message
    return GENERIC_MESSAGE


def create_app_error(error: Exception, context: str = "") -> AppError:
    """Normalize any exception raised by a data source into an AppError."""
    if isinstance(error, AppError):
        return error
    prefix = f"{context}: " if context else ""
    if isinstance(error, APIError):
        logger.warning(f"{prefix}database error code={error.code} message={error.message}")
        return DatabaseError(handle_db_error(error), db_code=error.code, hint=error.hint,
                             raw_message=error.message)
    if is_timeout_error(error):
        return TimeoutError(context or "Request")
    if is_network_error(error):
        return NetworkError(f"{prefix}{_error_message(error)}")
    logger.error(f"{prefix}unexpected error: {error}")
    return AppError(f"{prefix}{_error_message(error)}")
