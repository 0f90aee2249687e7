"""
Client Portal Backend — Custom Exception Hierarchy
===================================================

What:  Application-specific exceptions for the error scenarios of the proxy.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with correct HTTP status codes.
Who:   Raised by services and route dependencies; caught by global handlers.

Exception Hierarchy:
    PortalError (base)
    ├── ValidationError          → 400 Bad Request
    ├── AuthenticationError      → 401 Unauthorized
    ├── AccessDeniedError        → 403 Forbidden
    ├── NotFoundError            → 404 Not Found
    ├── RateLimitExceededError   → 429 Too Many Requests
    ├── ConfigurationError       → 500 Internal Server Error
    ├── NotionAPIError           → 500 Internal Server Error (upstream failure)
    └── CircuitBreakerOpenError  → 503 Service Unavailable
"""

from typing import Any, Dict, List, Optional


class PortalError(Exception):
    """
    Base exception for all Client Portal errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(PortalError):
    """
    Raised when the request is well-formed but cannot be served as asked.

    When:    Missing required query parameter, admin without client context.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(PortalError):
    """
    Raised when the caller's credential is missing, malformed or wrong.

    HTTP:    401 Unauthorized

    The message never says which part of the credential failed; that detail
    goes to the server log only.
    """

    def __init__(
        self,
        message: str = "Invalid access credentials",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class AccessDeniedError(PortalError):
    """
    Raised when an authenticated caller asks for a client they may not see.

    HTTP:    403 Forbidden
    """

    def __init__(
        self,
        message: str = "Client access denied for user",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(PortalError):
    """
    Raised when a route or resource is not available.

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


class ConfigurationError(PortalError):
    """
    Raised when the deployment lacks settings a route needs.

    When:    NOTION_TOKEN / NOTION_DATABASE_ID / AUTH_SECRET unset.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        missing: Optional[List[str]] = None,
        message: str = "Server configuration error - missing environment variables",
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if missing:
            ctx["missing"] = list(missing)
        super().__init__(message=message, context=ctx)
        self.missing = list(missing or [])


class NotionAPIError(PortalError):
    """
    Raised when Notion answers a request with a non-2xx status.

    HTTP:    500 Internal Server Error

    Attributes:
        status_code: Status returned by Notion (0 for transport failures)
        page:        1-based page of a paginated query that failed, if any
        details:     Raw upstream body, logged server-side only
    """

    def __init__(
        self,
        status_code: int,
        details: str = "",
        page: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        reason = str(status_code) if status_code else "unreachable"
        if page is not None:
            message = f"Notion API error on page {page}: {reason}"
        else:
            message = f"Notion API error: {reason}"
        ctx = context or {}
        ctx["notion_status"] = status_code
        if page is not None:
            ctx["page"] = page
        super().__init__(message=message, context=ctx)
        self.status_code = status_code
        self.details = details
        self.page = page


class CircuitBreakerOpenError(PortalError):
    """
    Raised when the Notion circuit breaker is in OPEN state.

    When:    After cb_failure_threshold consecutive Notion failures.
    HTTP:    503 Service Unavailable
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Notion is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


class RateLimitExceededError(PortalError):
    """
    Raised when a client exceeds the per-IP request rate limit.

    HTTP:    429 Too Many Requests
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
