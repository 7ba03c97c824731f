"""
Vitali Backend — Custom Exception Hierarchy
=============================================

What:  Application-specific exceptions for the state store and the HTTP surface.
How:   Each exception carries a human-readable message and an optional context
       dict. The HTTP-facing ones are mapped to status codes by the handlers
       registered in main.py; the store-facing ones are either fatal at startup
       or handled inside the store and only logged.

Exception Hierarchy:
    VitaliError (base)
    ├── ValidationError            → 400 Bad Request
    ├── NotFoundError              → 404 Not Found
    ├── StoreConfigurationError    → fatal, aborts startup
    ├── StoreUnavailableError      → backend read failed
    ├── SnapshotWriteError         → one upsert failed (logged, never surfaced)
    ├── BucketRegistrationError    → programming error: duplicate/invalid bucket
    └── UnknownBucketError         → programming error: unregistered bucket name

Failure Policy:
    Durable-backend failures after startup never become request failures: the
    in-memory bucket is authoritative, only cross-restart durability is at risk.
    Programming errors are raised immediately and are never caught or retried.
"""

from typing import Any, Dict, Optional


class VitaliError(Exception):
    """
    Base exception for all Vitali application errors.

    Attributes:
        message:  Human-readable description (safe to return in API responses)
        context:  Additional debug info (logged but NOT returned to clients)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(VitaliError):
    """
    Raised when client input fails validation.

    HTTP:    400 Bad Request

    Example response:
        {
            "error": "validation_error",
            "message": "senderType must be patient or doctor",
            "details": {"field": "senderType"}
        }
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


class NotFoundError(VitaliError):
    """
    Raised when a requested resource does not exist.

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


class StoreConfigurationError(VitaliError):
    """
    Raised when a durable backend is configured but cannot be used at startup.

    When:    Hydration could not reach the database after all attempts, or a
             stored snapshot does not match its bucket's kind.
    Effect:  Aborts application startup. Starting with defaults while a backend
             is configured would hide data loss.
    """

    def __init__(
        self,
        message: str = "The durable state store could not be initialized",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class StoreUnavailableError(VitaliError):
    """Raised by a backend when reading snapshots fails."""

    def __init__(
        self,
        message: str = "The durable state store is unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class SnapshotWriteError(VitaliError):
    """
    Raised by a backend when a single snapshot upsert fails.

    Recovery:
        The debounce scheduler logs it and marks the bucket clean. The next
        mutation to the bucket schedules a fresh attempt; there is no
        automatic retry of the failed write itself.
    """

    def __init__(
        self,
        bucket: str,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["bucket"] = bucket
        super().__init__(
            message=message or f"Could not persist snapshot for bucket '{bucket}'",
            context=ctx,
        )
        self.bucket = bucket


class BucketRegistrationError(VitaliError):
    """Raised when a bucket is registered twice or with an unusable default."""

    def __init__(self, bucket: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Bucket '{bucket}' is already registered",
            context={"bucket": bucket},
        )
        self.bucket = bucket


class UnknownBucketError(VitaliError, KeyError):
    """Raised when code asks for a bucket that was never registered."""

    def __init__(self, bucket: str):
        super().__init__(
            message=f"Bucket '{bucket}' is not registered",
            context={"bucket": bucket},
        )
        self.bucket = bucket

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return self.message
