"""Receipt job model for queued receipt delivery."""
from sqlalchemy import Column, Integer, String, Text

from donations.models.base import Base


class ReceiptJob(Base):
    """
    A receipt that could not be delivered synchronously.

    Rows are deleted once the receipt is sent. Duplicate rows for the same
    payment are avoided by a check before enqueueing, not by a constraint.
    """

    __tablename__ = "receipt_jobs"

    queue_name = Column(String, nullable=False, default="receipt_queue", index=True)
    environment = Column(String(32), nullable=False)
    payment_record_id = Column(Integer, nullable=False, index=True)
    mail_key = Column(String, nullable=False, default="receipt")
    recipient_override = Column(String, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)

    def __repr__(self) -> str:
        """String representation."""
        return f"<ReceiptJob(id={self.id}, payment_record_id={self.payment_record_id}, attempts={self.attempts})>"
