"""Receipt queue worker for receipts that could not be sent at checkout.

Jobs are consumed at least once: a job whose receipt still cannot be sent
stays queued, records the failure and raises so the host retries it.

Usage (with ARQ):
    arq donations.workers.receipt_queue.WorkerSettings
"""
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from donations.adapters.cybersource_adapter import CybersourceAdapter
from donations.config import Settings, settings
from donations.database import AsyncSessionLocal
from donations.exceptions import ReceiptNotSentError
from donations.integrations.mailer import Mailer
from donations.models.receipt_job import ReceiptJob
from donations.services.payment_service import PaymentService
from donations.services.receipt_service import ReceiptService

logger = structlog.get_logger(__name__)


class ReceiptQueue:
    """Processes queued receipt jobs."""

    def __init__(
        self,
        db: AsyncSession,
        client: CybersourceAdapter,
        config: Settings = settings,
        mailer: Optional[Mailer] = None,
    ):
        self.db = db
        self.client = client
        self.receipts = ReceiptService(db, config, mailer=mailer)
        self.payments = PaymentService(db)

    async def process_item(self, job: ReceiptJob) -> None:
        """
        Send the receipt for one queued job.

        Args:
            job: Queued receipt job

        Raises:
            ReceiptNotSentError: If the receipt still could not be sent
        """
        self.client.set_environment(job.environment)

        payment = await self.payments.get_payment(job.payment_record_id)
        if payment is None:
            logger.warning(
                "receipt_job_payment_missing",
                job_id=job.id,
                payment_record_id=job.payment_record_id,
            )
            await self.db.delete(job)
            await self.db.flush()
            return

        # A failed attempt finds this job in the queue and does not enqueue again.
        sent = await self.receipts.try_send_receipt(
            self.client,
            payment,
            key=job.mail_key,
            to=job.recipient_override,
            path="queue",
        )

        if not sent:
            job.attempts = (job.attempts or 0) + 1
            job.last_error = f"Email was not sent. Payment code {payment.code}."
            await self.db.flush()
            logger.warning(
                "receipt_job_failed",
                job_id=job.id,
                payment_record_id=payment.id,
                code=payment.code,
                attempts=job.attempts,
            )
            raise ReceiptNotSentError(payment.code)

        await self.db.delete(job)
        await self.db.flush()
        logger.info("receipt_job_completed", job_id=job.id, payment_record_id=payment.id, code=payment.code)


def _dependencies(ctx: dict):
    config = ctx.get("config", settings)
    session_factory = ctx.get("session_factory", AsyncSessionLocal)
    client = ctx.get("gateway_client") or CybersourceAdapter(config)
    return config, session_factory, client


async def send_queued_receipt(ctx: dict, job_id: int) -> bool:
    """
    Process a single queued receipt.

    Args:
        ctx: ARQ context
        job_id: Receipt job ID

    Returns:
        True if the receipt was sent or the job no longer exists

    Raises:
        ReceiptNotSentError: If the receipt still could not be sent
    """
    config, session_factory, client = _dependencies(ctx)

    async with session_factory() as db:
        result = await db.execute(select(ReceiptJob).where(ReceiptJob.id == job_id))
        job = result.scalar_one_or_none()
        if job is None:
            return True

        queue = ReceiptQueue(db, client, config=config, mailer=ctx.get("mailer"))
        try:
            await queue.process_item(job)
        finally:
            # Keep the attempt count whether or not the receipt went out.
            await db.commit()

    return True


async def process_receipt_queue(ctx: dict) -> dict[str, int]:
    """
    Process every pending receipt job.

    Failures are isolated per job and left in the queue for the next run.

    Args:
        ctx: ARQ context

    Returns:
        Dict with counts of pending, sent and failed jobs
    """
    config, session_factory, client = _dependencies(ctx)

    async with session_factory() as db:
        try:
            queue = ReceiptQueue(db, client, config=config, mailer=ctx.get("mailer"))
            job_ids = [job.id for job in await queue.receipts.list_pending()]

            logger.info("receipt_queue_started", pending=len(job_ids))

            sent = 0
            failed = 0
            errors = 0

            for job_id in job_ids:
                try:
                    result = await db.execute(select(ReceiptJob).where(ReceiptJob.id == job_id))
                    job = result.scalar_one_or_none()
                    if job is None:
                        continue

                    await queue.process_item(job)
                    await db.commit()
                    sent += 1

                except ReceiptNotSentError:
                    await db.commit()
                    failed += 1

                except Exception as e:
                    await db.rollback()
                    errors += 1
                    logger.exception("receipt_job_error", job_id=job_id, exc_info=e)

            logger.info("receipt_queue_completed", sent=sent, failed=failed, errors=errors)

            return {
                "pending": len(job_ids),
                "sent": sent,
                "failed": failed,
                "errors": errors,
            }

        except Exception as e:
            await db.rollback()
            logger.exception("receipt_queue_job_error", exc_info=e)
            raise


class WorkerSettings:
    """
    ARQ worker settings for the receipt queue.

    Schedule:
    - Receipt queue sweep: Every 15 minutes

    Usage:
        arq donations.workers.receipt_queue.WorkerSettings
    """

    functions = [send_queued_receipt, process_receipt_queue]

    cron_jobs = [
        {
            "function": process_receipt_queue,
            "cron": "*/15 * * * *",  # Every 15 minutes
            "timeout": 600,
        },
    ]

    max_jobs = 10
    job_timeout = 600
