"""SQLAlchemy ORM models for the donations service."""
# Import all models here so they are registered on the metadata

from donations.models.base import Base
from donations.models.payment import Payment
from donations.models.receipt_job import ReceiptJob

__all__ = [
    "Base",
    "Payment",
    "ReceiptJob",
]
