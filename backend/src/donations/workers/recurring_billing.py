"""Recurring billing worker for monthly donation series.

This worker runs periodically to:
1. Find recurring series whose next charge is due
2. Charge each one against its stored customer token
3. Chain the charge to its series and email a receipt

Usage (with ARQ):
    arq donations.workers.recurring_billing.WorkerSettings
"""
from datetime import datetime
from typing import Optional

import structlog

from donations.adapters.cybersource_adapter import CybersourceAdapter
from donations.config import settings
from donations.database import AsyncSessionLocal
from donations.metrics import recurring_charges_total
from donations.services.receipt_service import ReceiptService
from donations.services.recurring_service import RecurringBillingScheduler

logger = structlog.get_logger(__name__)


async def process_recurring_payments(ctx: dict, now: Optional[datetime] = None) -> dict[str, int]:
    """
    Charge every due recurring series once.

    Each series is committed on its own; a failure rolls back only that
    series, which is then retried on the next run.

    Args:
        ctx: ARQ context. ``session_factory``, ``gateway_client``, ``mailer``
            and ``config`` override the defaults when present.
        now: Reference time, defaults to the current UTC time

    Returns:
        Dict with counts of due, charged, completed, failed and skipped series
    """
    config = ctx.get("config", settings)
    session_factory = ctx.get("session_factory", AsyncSessionLocal)
    client = ctx.get("gateway_client") or CybersourceAdapter(config)
    now = now or datetime.utcnow()

    async with session_factory() as db:
        try:
            scheduler = RecurringBillingScheduler(
                db,
                client,
                config=config,
                receipts=ReceiptService(db, config, mailer=ctx.get("mailer")),
            )
            due_ids = [payment.id for payment in await scheduler.find_due(now)]

            logger.info("recurring_billing_started", due=len(due_ids))

            counts = {
                "due": len(due_ids),
                "charged": 0,
                "completed": 0,
                "failed": 0,
                "skipped": 0,
            }

            for payment_record_id in due_ids:
                try:
                    payment = await scheduler.payments.get_payment(payment_record_id)
                    if payment is None:
                        counts["skipped"] += 1
                        continue

                    outcome = await scheduler.charge(payment, now)
                    await db.commit()

                except Exception as e:
                    await db.rollback()
                    outcome = "failed"
                    logger.exception(
                        "recurring_payment_error",
                        payment_record_id=payment_record_id,
                        exc_info=e,
                    )

                counts[outcome] += 1
                recurring_charges_total.labels(outcome=outcome).inc()

            logger.info("recurring_billing_completed", **counts)
            return counts

        except Exception as e:
            await db.rollback()
            logger.exception("recurring_billing_job_error", exc_info=e)
            raise


class WorkerSettings:
    """
    ARQ worker settings for recurring billing.

    Schedule:
    - Recurring charges: Daily at 06:00 UTC

    Usage:
        arq donations.workers.recurring_billing.WorkerSettings
    """

    functions = [process_recurring_payments]

    cron_jobs = [
        {
            "function": process_recurring_payments,
            "cron": "0 6 * * *",  # Daily at 06:00
            "timeout": 1800,  # 30 minutes timeout
        },
    ]

    max_jobs = 1
    job_timeout = 1800
