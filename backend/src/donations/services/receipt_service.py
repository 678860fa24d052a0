"""Receipt service for emailing payment receipts and queueing retries."""
import asyncio
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import structlog
from jinja2 import Environment, FileSystemLoader
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from donations.adapters.cybersource_adapter import CybersourceAdapter
from donations.config import Settings, settings
from donations.integrations.mailer import Mailer
from donations.metrics import receipts_queued_total, receipts_sent_total
from donations.models.payment import Payment
from donations.models.receipt_job import ReceiptJob
from donations.schemas.gateway import Address, TransactionCard, TransactionDetails
from donations.utils.amounts import format_amount
from donations.utils.card_types import card_type_label
from donations.utils.dates import parse_gateway_time

logger = structlog.get_logger(__name__)

RECEIPT_QUEUE = "receipt_queue"
ORDER_DETAILS_SEPARATOR = "; "


class ReceiptService:
    """
    Builds and sends receipts for recorded payments.

    Receipts are rendered from the gateway's copy of the transaction, which
    may not be readable for a few seconds after a charge. When the lookup or
    the mail delivery fails, the receipt is queued for the receipt worker
    instead of failing the caller.
    """

    def __init__(self, db: AsyncSession, config: Settings = settings, mailer: Optional[Mailer] = None):
        """
        Initialize receipt service.

        Args:
            db: Database session
            config: Settings holding subjects, messages and lookup timing
            mailer: Mail integration, defaults to one built from ``config``
        """
        self.db = db
        self.config = config
        self.mailer = mailer or Mailer(config)

        templates_dir = Path(__file__).parent.parent / "templates"
        self.env = Environment(
            loader=FileSystemLoader(str(templates_dir)),
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            finalize=lambda value: "" if value is None else value,
        )

    async def try_send_receipt(
        self,
        client: CybersourceAdapter,
        payment: Payment,
        key: str = "receipt",
        to: Optional[str] = None,
        wait: bool = False,
        path: str = "checkout",
    ) -> bool:
        """
        Attempt to send a receipt, queueing it when that is not possible.

        Args:
            client: Gateway client set to the payment's environment
            payment: Recorded payment
            key: Mail key
            to: Recipient, defaults to the billing email of the transaction
            wait: Retry the transaction lookup with backoff before giving up
            path: Metrics label for the delivery path

        Returns:
            True if the receipt was sent
        """
        if wait:
            transaction = await self.wait_for_transaction(client, payment.payment_id)
        else:
            transaction = await self._lookup(client, payment.payment_id)

        if transaction is None:
            logger.info(
                "receipt_transaction_unavailable",
                payment_record_id=payment.id,
                code=payment.code,
            )
            await self.send_to_queue(payment, key, to)
            return False

        sent = await self.send_receipt(payment, transaction, key, to, path=path)

        if not sent:
            await self.send_to_queue(payment, key, to)

        return sent

    async def send_receipt_now(
        self,
        client: CybersourceAdapter,
        payment: Payment,
        key: str = "receipt",
        to: Optional[str] = None,
    ) -> bool:
        """
        Send a receipt directly, without the queue.

        Args:
            client: Gateway client set to the payment's environment
            payment: Recorded payment
            key: Mail key
            to: Recipient override

        Returns:
            True if the receipt was sent
        """
        transaction = await self.wait_for_transaction(client, payment.payment_id)
        if transaction is None:
            logger.warning(
                "receipt_not_sent",
                payment_record_id=payment.id,
                code=payment.code,
                reason="transaction_unavailable",
            )
            return False

        return await self.send_receipt(payment, transaction, key, to, path="recurring")

    async def wait_for_transaction(
        self,
        client: CybersourceAdapter,
        payment_id: Optional[str],
        attempts: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> Optional[TransactionDetails]:
        """
        Look up a transaction, retrying while the gateway catches up.

        The delay doubles after every miss. No delay follows the last attempt.

        Args:
            client: Gateway client
            payment_id: Gateway transaction ID
            attempts: Number of lookups, defaults to ``receipt_lookup_attempts``
            delay: Initial delay in seconds, defaults to ``receipt_lookup_delay_seconds``

        Returns:
            Transaction details, or None if every lookup missed
        """
        attempts = attempts if attempts is not None else self.config.receipt_lookup_attempts
        delay = delay if delay is not None else self.config.receipt_lookup_delay_seconds

        for attempt in range(1, max(attempts, 1) + 1):
            transaction = await self._lookup(client, payment_id)
            if transaction is not None:
                return transaction

            if attempt < attempts:
                logger.debug("receipt_lookup_retry", payment_id=payment_id, attempt=attempt, delay=delay)
                await asyncio.sleep(delay)
                delay *= 2

        return None

    async def send_receipt(
        self,
        payment: Payment,
        transaction: TransactionDetails,
        key: str = "receipt",
        to: Optional[str] = None,
        path: str = "checkout",
    ) -> bool:
        """
        Render and mail a receipt for a transaction.

        Args:
            payment: Recorded payment
            transaction: Gateway transaction details
            key: Mail key
            to: Recipient, defaults to the billing email of the transaction
            path: Metrics label for the delivery path

        Returns:
            True if the mailer accepted the message
        """
        bill_to = transaction.order_information.bill_to or Address()
        recipient = to or bill_to.email

        try:
            result = await self.mailer.send_mail(
                key,
                recipient,
                self.build_subject(payment),
                self.render_receipt(payment, transaction),
            )
        except Exception as e:
            # Delivery problems never reach the payer, the receipt is retried instead.
            logger.exception("receipt_delivery_error", payment_record_id=payment.id, code=payment.code, exc_info=e)
            result = {"send": False}

        sent = result.get("send") is True

        if sent:
            receipts_sent_total.labels(path=path).inc()
            logger.info("receipt_emailed", payment_record_id=payment.id, code=payment.code, key=key)
        else:
            logger.warning("receipt_send_failed", payment_record_id=payment.id, code=payment.code, key=key)

        return sent

    def build_subject(self, payment: Payment) -> str:
        if payment.donation_type == "GALA":
            return self.config.receipt_subject_gala
        return self.config.receipt_subject_donation

    def render_receipt(self, payment: Payment, transaction: TransactionDetails) -> str:
        """
        Render the plain text receipt body.

        Args:
            payment: Recorded payment
            transaction: Gateway transaction details

        Returns:
            Receipt body
        """
        card = transaction.payment_information.card or TransactionCard()
        amount_details = transaction.order_information.amount_details
        amount = None
        if amount_details is not None:
            amount = amount_details.authorized_amount or amount_details.total_amount

        if payment.donation_type == "GALA":
            message = self.config.receipt_message_gala
        else:
            message = self.config.receipt_message_donation

        template = self.env.get_template("receipt_email.txt.j2")
        return template.render(
            message=message,
            date=_format_date(parse_gateway_time(transaction.submit_time_utc) or payment.submitted),
            code=payment.code,
            bill_to=transaction.order_information.bill_to or Address(),
            card=card,
            card_type=card_type_label(card.type),
            order_details=self.order_details(payment),
            amount=format_amount(amount if amount is not None else payment.authorized_amount),
        )

    @staticmethod
    def order_details(payment: Payment) -> List[str]:
        """Itemized order lines shown on gala receipts and annotated donations."""
        if payment.order_details_long:
            return payment.order_details_long.split(ORDER_DETAILS_SEPARATOR)
        return []

    async def list_pending(self, queue_name: str = RECEIPT_QUEUE) -> List[ReceiptJob]:
        """Jobs waiting in a receipt queue, oldest first."""
        result = await self.db.execute(
            select(ReceiptJob)
            .where(ReceiptJob.queue_name == queue_name)
            .order_by(ReceiptJob.id)
        )
        return list(result.scalars().all())

    async def is_payment_in_queue(self, payment_record_id: int) -> bool:
        """
        Check the receipt queue for a job referencing a payment.

        This scan and the insert that follows it are not atomic, two callers
        racing on the same payment can both enqueue.
        """
        for job in await self.list_pending():
            if job.payment_record_id == payment_record_id:
                return True
        return False

    async def send_to_queue(
        self,
        payment: Payment,
        key: str = "receipt",
        to: Optional[str] = None,
    ) -> Optional[ReceiptJob]:
        """
        Queue a receipt for the receipt worker unless one is already queued.

        Args:
            payment: Recorded payment
            key: Mail key
            to: Recipient override

        Returns:
            The new job, or None if the payment was already queued
        """
        if await self.is_payment_in_queue(payment.id):
            logger.info("receipt_already_queued", payment_record_id=payment.id, code=payment.code)
            return None

        job = ReceiptJob(
            queue_name=RECEIPT_QUEUE,
            environment=payment.environment,
            payment_record_id=payment.id,
            mail_key=key,
            recipient_override=to,
            attempts=0,
        )
        self.db.add(job)
        await self.db.flush()

        receipts_queued_total.inc()
        logger.info(
            "receipt_queued",
            job_id=job.id,
            payment_record_id=payment.id,
            code=payment.code,
            environment=payment.environment,
        )

        return job

    async def _lookup(self, client: CybersourceAdapter, payment_id: Optional[str]) -> Optional[TransactionDetails]:
        if not payment_id:
            return None
        return await client.get_transaction(payment_id)


def _format_date(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return f"{value:%B} {value.day}, {value:%Y - %H:%M}"
