"""Structured error response schemas."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Field that caused the error (for validation errors)")
    value: Any | None = Field(default=None, description="Invalid value (for validation errors)")


class ErrorResponse(BaseModel):
    """Standard error response structure."""

    error: str = Field(..., description="Error type (e.g., 'ValidationError', 'NotFound', 'PaymentDeclined')")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(default=None, description="Detailed error information")
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "ValidationError",
                "message": "Missing necessary fields for payment transaction.",
                "details": [
                    {
                        "code": "missing_required_field",
                        "message": "Missing necessary fields for payment transaction.",
                        "field": "phone",
                    }
                ],
                "request_id": "5b0c2a0e-2f0c-4a53-9a0e-7f9b2d1c4e11",
                "timestamp": "2025-01-15T10:30:00Z",
            }
        }
    }


class ErrorCode:
    """Standard error codes used across the API."""

    # Validation errors (422)
    MISSING_REQUIRED_FIELD = "missing_required_field"
    INVALID_AMOUNT = "invalid_amount"
    MISSING_PAYMENT_TOKEN = "missing_payment_token"

    # Payment errors (402)
    PAYMENT_DECLINED = "payment_declined"

    # Not found errors (404)
    FORM_NOT_FOUND = "form_not_found"
    PAYMENT_NOT_FOUND = "payment_not_found"

    # External service errors (502, 503)
    GATEWAY_ERROR = "gateway_error"
    GATEWAY_NOT_READY = "gateway_not_ready"

    # Internal errors (500)
    INTERNAL_ERROR = "internal_error"


REMEDIATION_HINTS = {
    ErrorCode.MISSING_REQUIRED_FIELD: "Contact the administrator to update the form configuration.",
    ErrorCode.INVALID_AMOUNT: "Provide an amount of at least 1.00.",
    ErrorCode.MISSING_PAYMENT_TOKEN: "Enter the card details again and resubmit.",
    ErrorCode.GATEWAY_ERROR: "The payment processor is temporarily unavailable. Please try again later.",
    ErrorCode.GATEWAY_NOT_READY: "The payment processor is not configured. Contact the administrator.",
}
