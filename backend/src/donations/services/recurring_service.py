"""Recurring billing for monthly donation series."""
from datetime import datetime, timedelta
from typing import List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from donations.adapters.cybersource_adapter import CybersourceAdapter
from donations.config import Settings, settings
from donations.metrics import payments_attempted_total, payments_declined_total
from donations.models.payment import Payment
from donations.schemas.gateway import GatewayError
from donations.services.checkout_service import DECLINE_MESSAGES
from donations.services.payment_service import PaymentService
from donations.services.receipt_service import ReceiptService
from donations.utils.amounts import normalize_amount
from donations.utils.dates import add_months, parse_gateway_time

logger = structlog.get_logger(__name__)

RECURRING_RECEIPT_KEY = "recurring_receipt"


class RecurringBillingScheduler:
    """
    Charges due recurring series against their stored customer tokens.

    Each charge references the first transaction of the series and is
    recorded as a non-recurring child appended to the root payment.
    """

    # Outcomes of a single series in one run
    CHARGED = "charged"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    def __init__(
        self,
        db: AsyncSession,
        client: CybersourceAdapter,
        config: Settings = settings,
        receipts: Optional[ReceiptService] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            db: Database session
            client: Gateway client, its environment is switched per series
            config: Application settings
            receipts: Receipt service, defaults to one on the same session
        """
        self.db = db
        self.client = client
        self.config = config
        self.payments = PaymentService(db)
        self.receipts = receipts or ReceiptService(db, config)

    async def find_due(self, now: Optional[datetime] = None) -> List[Payment]:
        """Root payments due for a charge."""
        return await self.payments.find_due_recurring(now)

    async def charge(self, payment: Payment, now: Optional[datetime] = None) -> str:
        """
        Charge the next installment of one series.

        Args:
            payment: Root payment of the series
            now: Reference time, defaults to the current UTC time

        Returns:
            One of ``charged``, ``completed``, ``failed`` or ``skipped``
        """
        now = now or datetime.utcnow()
        charge_count = len(payment.recurring_payments)

        if charge_count + 1 >= payment.recurring_max:
            logger.warning(
                "recurring_max_reached",
                payment_record_id=payment.id,
                code=payment.code,
                recurring_max=payment.recurring_max,
            )
            await self.payments.disable_recurring(payment)
            return self.COMPLETED

        scheduled = payment.recurring_next
        lease_until = now + timedelta(minutes=self.config.recurring_claim_lease_minutes)
        if not await self.payments.claim_recurring(payment, lease_until):
            logger.info("recurring_claim_lost", payment_record_id=payment.id, code=payment.code)
            return self.SKIPPED

        self.client.set_environment(payment.environment)

        index = charge_count + 1
        code = f"{payment.code}-{index}"
        amount = normalize_amount(str(payment.authorized_amount))

        request = self.client.create_payment_request(
            client_reference_information=self.client.create_client_reference_information(code),
            order_information=self.client.create_order_information(
                self.client.create_order_information_amount_details(amount, payment.currency),
            ),
            payment_information=self.client.create_payment_information(
                self.client.create_payment_information_customer(payment.customer_id),
            ),
            processing_information=self.client.create_processing_options(payment.payment_id),
        )

        result = await self.client.create_payment(request)

        if isinstance(result, GatewayError):
            payments_attempted_total.labels(status="ERROR", kind="recurring").inc()
            # Leave the series exactly as it was so the next run retries it.
            await self.payments.release_recurring(payment, scheduled)
            logger.warning(
                "recurring_payment_gateway_error",
                payment_record_id=payment.id,
                code=code,
                status_code=result.status_code,
            )
            return self.FAILED

        payments_attempted_total.labels(status=result.status, kind="recurring").inc()

        if result.status in DECLINE_MESSAGES:
            payments_declined_total.labels(status=result.status).inc()
            # The installment is skipped, the series moves on to next month.
            await self.payments.release_recurring(payment, add_months(scheduled or now))
            logger.warning(
                "recurring_payment_declined",
                payment_record_id=payment.id,
                code=code,
                status=result.status,
            )
            return self.FAILED

        child = await self.payments.create_payment(
            code=code,
            form_id=payment.form_id,
            payment_id=result.id,
            authorized_amount=payment.authorized_amount,
            currency=payment.currency,
            status=result.status,
            submitted=parse_gateway_time(result.submit_time_utc),
            environment=payment.environment,
            recurring=False,
            recurring_active=False,
            recurring_max=payment.recurring_max,
            parent_id=payment.id,
        )
        await self.payments.append_recurring_payment(payment, child)

        if len(payment.recurring_payments) + 1 >= payment.recurring_max:
            await self.payments.disable_recurring(payment)
        else:
            payment.recurring_next = add_months(child.created_at or now)
            await self.db.flush()

        logger.info(
            "recurring_payment_charged",
            payment_record_id=payment.id,
            child_record_id=child.id,
            code=code,
            status=result.status,
        )

        # A charged installment stays recorded whatever happens to its receipt.
        await self.db.commit()
        await self.receipts.send_receipt_now(self.client, child, key=RECURRING_RECEIPT_KEY)

        return self.CHARGED
