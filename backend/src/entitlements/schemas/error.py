"""Structured error response schemas."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from entitlements.models.base import utcnow


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Field that caused the error (for validation errors)")
    value: Any | None = Field(default=None, description="Invalid value (for validation errors)")


class ErrorResponse(BaseModel):
    """Standard error response structure.

    Infrastructure failures (store outages, exhausted counter retries) use
    this shape; business denials are returned as decisions instead.
    """

    error: str = Field(..., description="Error type (e.g., 'ValidationError', 'StoreUnavailable')")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(default=None, description="Detailed error information")
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=utcnow, description="Error timestamp")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "StoreUnavailable",
                "message": "Subscription store did not respond before the deadline",
                "details": [{"code": "store_unavailable", "message": "timeout after 2.0s"}],
                "remediation": "Treat the request as denied and retry later.",
                "request_id": "req_1234567890",
                "timestamp": "2024-01-15T10:30:00Z",
            }
        }
    )


# Error codes enum for consistency
class ErrorCode:
    """Standard error codes used across the API."""

    # Validation errors (400/422)
    MISSING_TENANT = "missing_tenant"
    INVALID_AMOUNT = "invalid_amount"
    VALIDATION_ERROR = "validation_error"

    # Not found errors (404)
    PLAN_NOT_FOUND = "plan_not_found"

    # Authorization errors (403)
    ADMIN_TOKEN_REQUIRED = "admin_token_required"

    # Infrastructure errors (409, 503)
    TRANSIENT_CONFLICT = "transient_conflict"
    STORE_UNAVAILABLE = "store_unavailable"

    # Internal errors (500)
    INTERNAL_ERROR = "internal_error"


# Remediation hints for common errors
REMEDIATION_HINTS = {
    ErrorCode.MISSING_TENANT: "Send the resolved tenant identifier in the X-Tenant-ID header.",
    ErrorCode.INVALID_AMOUNT: "Provide a positive integer amount.",
    ErrorCode.PLAN_NOT_FOUND: "Verify the plan identifier against GET /v1/plans.",
    ErrorCode.ADMIN_TOKEN_REQUIRED: "Administrative routes require a valid X-Admin-Token header.",
    ErrorCode.TRANSIENT_CONFLICT: "Concurrent updates raced on the same counter. Retry the whole request.",
    ErrorCode.STORE_UNAVAILABLE: "Treat the request as denied and retry in a few moments.",
}
