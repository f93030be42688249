"""
CreditShare Backend - Custom Exception Hierarchy
=================================================

What:  Application-specific exceptions for every error class the core raises.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by services and the identity dependency; caught by handlers.
When:  During request processing.

Exception Hierarchy:
    CreditShareError (base)
    ├── InvalidInputError          → 400 Bad Request (malformed identifier, bad filter)
    ├── AuthenticationError        → 401 Unauthorized (no identity supplied)
    ├── ForbiddenError             → 403 Forbidden (report without prior download)
    ├── InsufficientCreditsError   → 403 Forbidden (debit exceeds balance)
    ├── NotFoundError              → 404 Not Found (user/file/blob missing)
    └── InternalError              → 500 Internal Server Error
        ├── DatabaseError          → unit of work rolled back
        └── FileStorageError       → blob write/read failed or timed out

Retry policy:
    Everything except InternalError is a policy decision and is terminal for
    the request. InternalError means the unit of work was rolled back; the
    core never retries on its own, callers may re-issue the request.
"""

from typing import Any, Dict, Optional


class CreditShareError(Exception):
    """
    Base exception for all CreditShare application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned for 5xx errors)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class InvalidInputError(CreditShareError):
    """
    Raised when client input fails validation.

    When:    Malformed file identifier, blank issue type, unknown sort option,
             oversized upload, non-positive ledger amount.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Invalid input",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(CreditShareError):
    """Raised when a request arrives without an identity from the auth collaborator."""

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(CreditShareError):
    """
    Raised when a requested resource does not exist.

    When:    Unknown user, unknown file id, blob missing from the store.
    HTTP:    404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)
        self.resource = resource
        self.resource_id = resource_id


class ForbiddenError(CreditShareError):
    """
    Raised when a user attempts an action their history does not allow.

    When:    Reporting an issue on a file the user never downloaded.
    HTTP:    403 Forbidden
    """

    def __init__(
        self,
        message: str = "You are not allowed to perform this action",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InsufficientCreditsError(CreditShareError):
    """
    Raised when a debit would take a balance below zero.

    No state changes accompany this error: the download gate checks before
    writing, and the ledger's conditional debit rolls back the unit of work
    when it loses a race.

    HTTP:    403 Forbidden
    """

    def __init__(
        self,
        required: int,
        available: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"Insufficient credits: {required} required, {available} available."
        ctx = context or {}
        ctx.update(required=required, available=available)
        super().__init__(message=message, context=ctx)
        self.required = required
        self.available = available


class InternalError(CreditShareError):
    """
    Storage or transaction failure.

    The message returned to the client is always generic; details are
    logged server-side only.

    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "An internal error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(InternalError):
    """A query or commit failed; the enclosing unit of work was rolled back."""

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class FileStorageError(InternalError):
    """
    Raised when blob store operations fail.

    When:    Disk full, permission denied, I/O error, or the operation
             exceeded blob_io_timeout.
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
