"""Pydantic schemas for payment records."""
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentResponse(BaseModel):
    """Schema for payment response."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    uuid: str
    code: str
    form_id: Optional[str] = None
    payment_id: Optional[str] = Field(None, description="Gateway transaction ID")
    authorized_amount: Decimal
    currency: str
    status: str
    submitted: Optional[datetime] = None
    environment: str
    order_details_long: Optional[str] = None
    recurring: bool
    recurring_active: bool
    recurring_max: int
    recurring_next: Optional[datetime] = None
    parent_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime


class PaymentDetailResponse(PaymentResponse):
    """Payment with the charges chained to its recurring series."""

    recurring_payments: List[PaymentResponse] = Field(default_factory=list)


class CheckoutResponse(BaseModel):
    """Schema for a completed checkout."""

    payment: PaymentResponse
    code: str
    status: str
    confirmation_message: Optional[str] = None
    receipt_sent: bool = False
    submission: dict[str, Any] = Field(default_factory=dict, description="Stored submission without personal data")


class FlexKeyResponse(BaseModel):
    """One-time key for the card capture widget."""

    key_id: str
    environment: str
