"""Payment model for gateway charge attempts."""
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from donations.models.base import Base


class Payment(Base):
    """
    One charge made through the payment gateway.

    The root of a recurring series carries ``recurring=True`` and owns the
    chained charges in ``recurring_payments``. Chained charges point back to
    the root through ``parent_id`` and are never recurring themselves.
    """

    __tablename__ = "payments"
    __table_args__ = (
        # Scheduler scan: active recurring roots ordered by next charge
        Index("ix_payments_recurring_due", "recurring", "recurring_active", "recurring_next"),
    )

    uuid = Column(String(36), nullable=False, unique=True, default=lambda: str(uuid4()))
    code = Column(String(64), nullable=False, index=True)  # <prefix>-<4 digits>-<4 digits>
    form_id = Column(String, nullable=True)
    payment_id = Column(String, nullable=True, index=True)  # Gateway transaction ID
    customer_id = Column(String, nullable=True)  # Gateway customer token, recurring roots only
    authorized_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(64), nullable=False, index=True)  # Gateway status, passed through
    submitted = Column(DateTime, nullable=True)
    environment = Column(String(32), nullable=False)
    order_details_long = Column(Text, nullable=True)

    recurring = Column(Boolean, nullable=False, default=False)
    recurring_active = Column(Boolean, nullable=False, default=False)
    recurring_max = Column(Integer, nullable=False, default=12)
    recurring_next = Column(DateTime, nullable=True, index=True)

    parent_id = Column(Integer, ForeignKey("payments.id"), nullable=True, index=True)

    # Relationships
    parent = relationship(
        "Payment",
        remote_side="Payment.id",
        back_populates="recurring_payments",
        lazy="noload",
    )
    recurring_payments = relationship(
        "Payment",
        back_populates="parent",
        order_by="Payment.id",
        lazy="selectin",
        join_depth=1,
    )

    @property
    def donation_type(self) -> str:
        """Receipt category inferred from the order code."""
        return "GALA" if "GALA" in (self.code or "") else "DONATION"

    def __repr__(self) -> str:
        """String representation."""
        return f"<Payment(id={self.id}, code={self.code}, status={self.status}, amount={self.authorized_amount})>"
