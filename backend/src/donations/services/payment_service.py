"""Payment service for storing and scheduling gateway charges."""
from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from donations.models.payment import Payment

logger = structlog.get_logger(__name__)


class PaymentService:
    """Service for payment records and their recurring series."""

    def __init__(self, db: AsyncSession):
        """Initialize payment service."""
        self.db = db

    async def create_payment(self, **fields) -> Payment:
        """
        Persist a new payment record.

        Args:
            **fields: Column values for the record

        Returns:
            Created payment
        """
        # New records start with an empty series so the collection never lazy loads.
        payment = Payment(recurring_payments=[], **fields)

        self.db.add(payment)
        await self.db.flush()

        logger.info(
            "payment_recorded",
            payment_record_id=payment.id,
            code=payment.code,
            status=payment.status,
            recurring=payment.recurring,
            environment=payment.environment,
        )

        return payment

    async def get_payment(self, payment_record_id: int) -> Optional[Payment]:
        """
        Get payment by ID.

        Args:
            payment_record_id: Payment record ID

        Returns:
            Payment with its chained charges if found, None otherwise
        """
        result = await self.db.execute(
            select(Payment)
            .options(selectinload(Payment.recurring_payments))
            .where(Payment.id == payment_record_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_due_recurring(self, now: Optional[datetime] = None) -> List[Payment]:
        """
        Find recurring series due for their next charge.

        A series is due if it is recurring and active, holds both the gateway
        transaction and customer IDs, and ``recurring_next`` is in the past.

        Args:
            now: Reference time, defaults to the current UTC time

        Returns:
            Due root payments, oldest schedule first
        """
        now = now or datetime.utcnow()

        result = await self.db.execute(
            select(Payment)
            .options(selectinload(Payment.recurring_payments))
            .where(
                and_(
                    Payment.recurring.is_(True),
                    Payment.recurring_active.is_(True),
                    Payment.payment_id.isnot(None),
                    Payment.customer_id.isnot(None),
                    Payment.recurring_next < now,
                )
            )
            .order_by(Payment.recurring_next, Payment.id)
        )
        return list(result.scalars().all())

    async def claim_recurring(self, payment: Payment, lease_until: datetime) -> bool:
        """
        Claim a due series for one scheduler run.

        ``recurring_next`` is moved to ``lease_until`` only if it still holds
        the value this run read, so overlapping runs charge a series once.

        Args:
            payment: Root payment as read by this run
            lease_until: Time the claim expires

        Returns:
            True if this run owns the series
        """
        result = await self.db.execute(
            update(Payment)
            .where(
                Payment.id == payment.id,
                Payment.recurring_active.is_(True),
                Payment.recurring_next == payment.recurring_next,
            )
            .values(recurring_next=lease_until)
        )
        return result.rowcount == 1

    async def release_recurring(self, payment: Payment, recurring_next: datetime) -> None:
        """Give a claimed series back, restoring its schedule."""
        payment.recurring_next = recurring_next
        await self.db.flush()

    async def append_recurring_payment(self, parent: Payment, child: Payment) -> None:
        """Chain a charge onto the end of its series."""
        parent.recurring_payments.append(child)
        child.parent_id = parent.id
        await self.db.flush()

    async def disable_recurring(self, payment: Payment) -> None:
        """Stop charging a series."""
        payment.recurring_active = False
        await self.db.flush()

        logger.info(
            "recurring_disabled",
            payment_record_id=payment.id,
            code=payment.code,
            charges=len(payment.recurring_payments) + 1,
            recurring_max=payment.recurring_max,
        )
