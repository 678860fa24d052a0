"""Integration tests for receipt rendering, delivery and the receipt queue."""
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from donations.adapters.cybersource_adapter import CybersourceAdapter
from donations.config import Settings
from donations.exceptions import ReceiptNotSentError
from donations.integrations.mailer import Mailer
from donations.models.payment import Payment
from donations.models.receipt_job import ReceiptJob
from donations.schemas.gateway import TransactionDetails
from donations.services.payment_service import PaymentService
from donations.services.receipt_service import ReceiptService
from tests.utils.factories import DEFAULT_BILLING_EMAIL, FakeGateway, FakeMailer


def _transaction(card_type: str = "002", **bill_to) -> TransactionDetails:
    billing = {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "company": "Analytical Engines",
        "address1": "12 St James's Square",
        "locality": "London",
        "administrativeArea": "LND",
        "postalCode": "SW1Y 4JH",
        "email": "ada@example.org",
        "phoneNumber": "555-010-1815",
    }
    billing.update(bill_to)
    return TransactionDetails.model_validate(
        {
            "id": "6000000000000000000001",
            "submitTimeUTC": "2025-03-01T10:15:00Z",
            "orderInformation": {
                "billTo": billing,
                "amountDetails": {"totalAmount": "100.00", "authorizedAmount": "100.00", "currency": "USD"},
            },
            "paymentInformation": {
                "card": {"suffix": "4242", "type": card_type, "expirationMonth": "07", "expirationYear": "2031"},
            },
        }
    )


async def _payment(db_session: AsyncSession, **overrides) -> Payment:
    fields = dict(
        code="AAA-1234-5678",
        form_id="donation_form",
        payment_id="6000000000000000000001",
        authorized_amount=Decimal("100.00"),
        currency="USD",
        status="AUTHORIZED",
        environment="development",
    )
    fields.update(overrides)
    return await PaymentService(db_session).create_payment(**fields)


@pytest.mark.asyncio
async def test_render_receipt_body(db_session: AsyncSession, test_settings: Settings, mailer: FakeMailer) -> None:
    """Test the plain text receipt sections."""
    payment = await _payment(db_session)
    service = ReceiptService(db_session, test_settings, mailer=mailer)

    body = service.render_receipt(payment, _transaction())

    assert body.startswith(test_settings.receipt_message_donation)
    assert "Date: March 1, 2025 - 10:15" in body
    assert "Order Number: AAA-1234-5678" in body
    assert "Ada Lovelace" in body
    assert "Analytical Engines" in body
    assert "12 St James's Square" in body
    assert "ada@example.org" in body
    assert "Card Type Mastercard" in body
    assert "Card Number xxxxxxxxxxxx4242" in body
    assert "Expiration 07-2031" in body
    assert "$ 100.00" in body
    assert "ORDER DETAILS" not in body
    assert "None" not in body


@pytest.mark.asyncio
async def test_render_receipt_order_details(
    db_session: AsyncSession,
    test_settings: Settings,
    mailer: FakeMailer,
) -> None:
    """Test that stored order notes are itemized on the receipt."""
    payment = await _payment(
        db_session,
        code="GALA-1234-5678",
        order_details_long="Patron Table: 1 x $500.00; Single Seat: 1 x $150.00",
    )
    service = ReceiptService(db_session, test_settings, mailer=mailer)

    body = service.render_receipt(payment, _transaction())

    assert body.startswith(test_settings.receipt_message_gala)
    assert "ORDER DETAILS" in body
    assert "Patron Table: 1 x $500.00" in body
    assert "Single Seat: 1 x $150.00" in body
    assert service.build_subject(payment) == test_settings.receipt_subject_gala


@pytest.mark.asyncio
async def test_render_receipt_unknown_card_type(
    db_session: AsyncSession,
    test_settings: Settings,
    mailer: FakeMailer,
) -> None:
    """Test that unmapped card codes render an explicit label."""
    payment = await _payment(db_session)
    service = ReceiptService(db_session, test_settings, mailer=mailer)

    body = service.render_receipt(payment, _transaction(card_type="999"))

    assert "Card Type Unknown" in body


@pytest.mark.asyncio
async def test_render_receipt_falls_back_to_recorded_amount(
    db_session: AsyncSession,
    test_settings: Settings,
    mailer: FakeMailer,
) -> None:
    """Test that the recorded amount is shown when the gateway omits it."""
    payment = await _payment(db_session, authorized_amount=Decimal("42.00"))
    transaction = TransactionDetails.model_validate({"id": "6000000000000000000001"})
    service = ReceiptService(db_session, test_settings, mailer=mailer)

    body = service.render_receipt(payment, transaction)

    assert "$ 42.00" in body
    assert "Card Type Unknown" in body


@pytest.mark.asyncio
async def test_send_receipt_defaults_to_billing_email(
    db_session: AsyncSession,
    test_settings: Settings,
    mailer: FakeMailer,
) -> None:
    """Test that the recipient is the transaction's billing email unless overridden."""
    payment = await _payment(db_session)
    service = ReceiptService(db_session, test_settings, mailer=mailer)

    assert await service.send_receipt(payment, _transaction()) is True
    assert await service.send_receipt(payment, _transaction(), to="override@example.org") is True

    assert mailer.messages[0]["to"] == "ada@example.org"
    assert mailer.messages[0]["key"] == "receipt"
    assert mailer.messages[0]["subject"] == test_settings.receipt_subject_donation
    assert mailer.messages[1]["to"] == "override@example.org"


@pytest.mark.asyncio
async def test_try_send_receipt_queues_on_mail_failure(
    db_session: AsyncSession,
    gateway: FakeGateway,
    gateway_client: CybersourceAdapter,
    test_settings: Settings,
) -> None:
    """Test that a rejected email puts the receipt on the queue."""
    mailer = FakeMailer(test_settings, succeed=False)
    payment = await _payment(db_session)
    gateway.add_transaction(payment.payment_id)
    service = ReceiptService(db_session, test_settings, mailer=mailer)

    sent = await service.try_send_receipt(gateway_client, payment, key="donation_form_receipt")

    assert sent is False
    assert len(mailer.messages) == 1
    jobs = await service.list_pending()
    assert len(jobs) == 1
    assert jobs[0].payment_record_id == payment.id
    assert jobs[0].mail_key == "donation_form_receipt"
    assert jobs[0].attempts == 0


@pytest.mark.asyncio
async def test_try_send_receipt_queues_when_mailer_raises(
    db_session: AsyncSession,
    gateway: FakeGateway,
    gateway_client: CybersourceAdapter,
    test_settings: Settings,
) -> None:
    """Test that a delivery exception is treated like a rejected email."""
    mailer = FakeMailer(test_settings, error=ConnectionResetError("relay closed the connection"))
    payment = await _payment(db_session)
    gateway.add_transaction(payment.payment_id)
    service = ReceiptService(db_session, test_settings, mailer=mailer)

    sent = await service.try_send_receipt(gateway_client, payment, key="donation_form_receipt")

    assert sent is False
    jobs = await service.list_pending()
    assert [job.payment_record_id for job in jobs] == [payment.id]


@pytest.mark.asyncio
async def test_mailer_refuses_recipient_with_line_breaks(test_settings: Settings) -> None:
    """Test that a recipient carrying extra headers is not sent and does not raise."""
    mailer = Mailer(test_settings)

    result = await mailer.send_mail(
        "donation_form_receipt",
        "donor@example.org\r\nBcc: someone@example.org",
        test_settings.receipt_subject_donation,
        "Thank you.",
    )

    assert result == {"send": False}
    assert await mailer.send_mail("donation_form_receipt", "donor@example.org", "Receipt", "Thank you.") == {"send": True}


@pytest.mark.asyncio
async def test_receipt_queue_deduplicates_payments(
    db_session: AsyncSession,
    gateway: FakeGateway,
    gateway_client: CybersourceAdapter,
    test_settings: Settings,
    mailer: FakeMailer,
) -> None:
    """Test that a payment is queued at most once."""
    payment = await _payment(db_session)
    other = await _payment(db_session, code="AAA-9999-0000", payment_id="6000000000000000000002")
    service = ReceiptService(db_session, test_settings, mailer=mailer)

    # No transaction is readable, so both attempts fall back to the queue
    assert await service.try_send_receipt(gateway_client, payment) is False
    assert await service.try_send_receipt(gateway_client, payment) is False
    assert await service.send_to_queue(payment) is None
    assert await service.send_to_queue(other) is not None

    jobs = await service.list_pending()
    assert [job.payment_record_id for job in jobs] == [payment.id, other.id]
    assert await service.is_payment_in_queue(payment.id) is True
    assert mailer.messages == []


@pytest.mark.asyncio
async def test_wait_for_transaction_retries(
    db_session: AsyncSession,
    gateway: FakeGateway,
    gateway_client: CybersourceAdapter,
    test_settings: Settings,
    mailer: FakeMailer,
) -> None:
    """Test that lookups are retried until the transaction becomes readable."""
    gateway.add_transaction("6000000000000000000001")
    gateway.transaction_misses = 2
    service = ReceiptService(db_session, test_settings, mailer=mailer)

    transaction = await service.wait_for_transaction(gateway_client, "6000000000000000000001", attempts=3, delay=0)

    assert transaction is not None
    assert transaction.id == "6000000000000000000001"
    assert len(gateway.transaction_lookups) == 3


@pytest.mark.asyncio
async def test_wait_for_transaction_gives_up(
    db_session: AsyncSession,
    gateway: FakeGateway,
    gateway_client: CybersourceAdapter,
    test_settings: Settings,
    mailer: FakeMailer,
) -> None:
    """Test that a bounded number of lookups is made."""
    service = ReceiptService(db_session, test_settings, mailer=mailer)

    transaction = await service.wait_for_transaction(gateway_client, "missing", attempts=2, delay=0)

    assert transaction is None
    assert len(gateway.transaction_lookups) == 2


async def _queued_payment(
    session_factory,
    gateway: FakeGateway,
    readable: bool = True,
    **job_fields,
) -> tuple[int, int]:
    """Commit a payment with a queued receipt job and return their IDs."""
    async with session_factory() as db:
        payment = await _payment(db, payment_id=uuid4().hex)
        if readable:
            gateway.add_transaction(payment.payment_id)
        job = ReceiptJob(
            environment="development",
            payment_record_id=payment.id,
            mail_key=job_fields.get("mail_key", "donation_form_receipt"),
            recipient_override=job_fields.get("recipient_override"),
        )
        db.add(job)
        await db.commit()
        return payment.id, job.id


async def _get_job(session_factory, job_id: int):
    async with session_factory() as db:
        result = await db.execute(select(ReceiptJob).where(ReceiptJob.id == job_id))
        return result.scalar_one_or_none()


@pytest.mark.asyncio
async def test_send_queued_receipt_deletes_job(
    session_factory,
    gateway: FakeGateway,
    mailer: FakeMailer,
    worker_ctx: dict,
) -> None:
    """Test that a delivered receipt leaves the queue."""
    from donations.workers.receipt_queue import send_queued_receipt

    _, job_id = await _queued_payment(session_factory, gateway)

    assert await send_queued_receipt(worker_ctx, job_id) is True

    assert await _get_job(session_factory, job_id) is None
    assert len(mailer.messages) == 1
    assert mailer.messages[0]["to"] == DEFAULT_BILLING_EMAIL
    assert mailer.messages[0]["key"] == "donation_form_receipt"


@pytest.mark.asyncio
async def test_send_queued_receipt_uses_recipient_override(
    session_factory,
    gateway: FakeGateway,
    mailer: FakeMailer,
    worker_ctx: dict,
) -> None:
    """Test that the recipient stored with the job is used."""
    from donations.workers.receipt_queue import send_queued_receipt

    _, job_id = await _queued_payment(session_factory, gateway, recipient_override="donor@example.org")

    await send_queued_receipt(worker_ctx, job_id)

    assert mailer.messages[0]["to"] == "donor@example.org"


@pytest.mark.asyncio
async def test_send_queued_receipt_failure_keeps_job(
    session_factory,
    gateway: FakeGateway,
    mailer: FakeMailer,
    worker_ctx: dict,
) -> None:
    """Test that an undeliverable receipt raises and stays queued."""
    from donations.workers.receipt_queue import send_queued_receipt

    mailer.succeed = False
    _, job_id = await _queued_payment(session_factory, gateway)

    with pytest.raises(ReceiptNotSentError) as exc_info:
        await send_queued_receipt(worker_ctx, job_id)

    assert str(exc_info.value) == "Email was not sent. Payment code AAA-1234-5678."

    job = await _get_job(session_factory, job_id)
    assert job is not None
    assert job.attempts == 1
    assert job.last_error == "Email was not sent. Payment code AAA-1234-5678."

    # The failed attempt did not enqueue a second job for the payment
    async with session_factory() as db:
        jobs = (await db.execute(select(ReceiptJob))).scalars().all()
    assert len(jobs) == 1


@pytest.mark.asyncio
async def test_process_receipt_queue_counts(
    session_factory,
    gateway: FakeGateway,
    mailer: FakeMailer,
    worker_ctx: dict,
) -> None:
    """Test that one failing job does not stop the sweep."""
    from donations.workers.receipt_queue import process_receipt_queue

    _, sent_job_id = await _queued_payment(session_factory, gateway, readable=True)
    _, failed_job_id = await _queued_payment(session_factory, gateway, readable=False)

    result = await process_receipt_queue(worker_ctx)

    assert result == {"pending": 2, "sent": 1, "failed": 1, "errors": 0}
    assert await _get_job(session_factory, sent_job_id) is None

    failed = await _get_job(session_factory, failed_job_id)
    assert failed is not None
    assert failed.attempts == 1


@pytest.mark.asyncio
async def test_process_receipt_queue_drops_jobs_without_payment(
    session_factory,
    worker_ctx: dict,
    mailer: FakeMailer,
) -> None:
    """Test that jobs pointing at a deleted payment are discarded."""
    from donations.workers.receipt_queue import process_receipt_queue

    async with session_factory() as db:
        job = ReceiptJob(environment="development", payment_record_id=999, mail_key="receipt")
        db.add(job)
        await db.commit()
        job_id = job.id

    result = await process_receipt_queue(worker_ctx)

    assert result["pending"] == 1
    assert result["errors"] == 0
    assert await _get_job(session_factory, job_id) is None
    assert mailer.messages == []
