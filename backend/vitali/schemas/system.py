"""
Vitali Backend — Service-Level Schemas
========================================

What:  Health check and error response models shared by all routes.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Example:
        {
            "error": "validation_error",
            "message": "senderType and message are required",
            "details": {"field": "senderType"},
            "request_id": "a1b2c3d4"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """
    What:  Health of the process and of the durable state store.

    `database` is `degraded` in pure-memory mode: the service works, but
    nothing survives a restart.
    """
    status: str = Field(description="Overall service status: ok, degraded, unhealthy")
    version: str = Field(description="Application version")
    store_mode: str = Field(description="State store mode: memory or postgres")
    database: str = Field(description="Snapshot store: ok, degraded, unreachable")
    pending_flushes: List[str] = Field(
        default_factory=list,
        description="Buckets with changes not yet written to the database",
    )
    uptime_seconds: float = Field(description="Seconds since service started")
