"""
Verse Library — Custom Exception Hierarchy
============================================

What:  Application-specific exceptions for the cache, gateway and storage layers.
How:   Each exception carries a user-safe message and an optional context dict.
       The HTTP layer (main.py) maps them to status codes; the Catalog Cache
       catches gateway errors at its boundary and turns them into an error flag.

Exception Hierarchy:
    VerseLibraryError (base)
    ├── ValidationError             → 400 Bad Request
    ├── NotFoundError               → 404 Not Found
    ├── GatewayError                → 502 Bad Gateway
    │   ├── GatewayAuthError        → 401 Unauthorized
    │   ├── GatewayUnavailableError → 503 Service Unavailable (retried)
    │   └── CircuitBreakerOpenError → 503 Service Unavailable (circuit open)
    ├── CacheSerializationError     → never surfaced (cold cache on load)
    └── StorageError                → 500 Internal Server Error
"""

from typing import Any, Dict, Optional


class VerseLibraryError(Exception):
    """
    Base exception for all Verse Library errors.

    Attributes:
        message:  User-facing error description
        context:  Additional debug info (logged, not shown to users)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(VerseLibraryError):
    """
    Raised when consumer input fails validation.

    When:    Unknown filter id, negative reading time, empty verse id.
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


class NotFoundError(VerseLibraryError):
    """Raised when a chapter or verse is not present in the catalog."""

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


class GatewayError(VerseLibraryError):
    """
    Raised when the Remote Content Gateway cannot complete a call.

    What:    Transport failure, unexpected HTTP status, or malformed payload,
             after the retry policy has been exhausted.
    Recovery:
        - fetch paths: Catalog Cache keeps stale data and sets an error flag
        - mark-as-read: propagates to the caller; local state is untouched
    """

    def __init__(
        self,
        message: str = "The content service could not be reached",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if status_code is not None:
            ctx["status_code"] = status_code
        super().__init__(message=message, context=ctx)
        self.status_code = status_code


class GatewayAuthError(GatewayError):
    """
    Raised when the gateway rejects our credentials or no user is signed in.

    Not retried: repeating the call with the same token cannot succeed.
    """

    def __init__(
        self,
        message: str = "You need to sign in again to sync your progress",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, status_code=status_code, context=context)


class GatewayUnavailableError(GatewayError):
    """Raised on 5xx responses and transport failures (retryable)."""

    def __init__(
        self,
        message: str = "The content service is temporarily unavailable",
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, status_code=status_code, context=context)


class CircuitBreakerOpenError(GatewayError):
    """
    Raised when the gateway circuit breaker is OPEN.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all calls for M seconds)
        → After M seconds → HALF-OPEN (allow one test call)
        → If test succeeds → CLOSED
        → If test fails → OPEN again
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"The content service is temporarily unavailable due to repeated failures. "
            f"Retrying in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


class CacheSerializationError(VerseLibraryError):
    """
    Raised when a persisted cache record cannot be decoded.

    Never fatal: loaders catch it and start from an empty (cold) cache.
    """

    def __init__(
        self,
        message: str = "Persisted cache could not be decoded",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class StorageError(VerseLibraryError):
    """
    Raised when a cache record cannot be written to durable storage.

    When:    Disk full, permission denied, storage root not writable.
    """

    def __init__(
        self,
        message: str = "Could not save the library cache",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
