"""Pydantic schemas for API request/response validation."""

from donations.schemas.payment import (
    CheckoutResponse,
    FlexKeyResponse,
    PaymentDetailResponse,
    PaymentResponse,
)
from donations.schemas.submission import (
    DonationSubmission,
    GalaSubmission,
    SubmissionKind,
)

__all__ = [
    "CheckoutResponse",
    "DonationSubmission",
    "FlexKeyResponse",
    "GalaSubmission",
    "PaymentDetailResponse",
    "PaymentResponse",
    "SubmissionKind",
]
