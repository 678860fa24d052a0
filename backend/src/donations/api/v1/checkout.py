"""Checkout endpoints for payment webform submissions."""
from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from donations.adapters.cybersource_adapter import CybersourceAdapter
from donations.api.deps import get_db, get_gateway_client, get_mailer, get_settings
from donations.config import Settings
from donations.exceptions import FormNotFoundError, GatewayNotReadyError, GatewayRequestError
from donations.integrations.mailer import Mailer
from donations.schemas.payment import CheckoutResponse, FlexKeyResponse, PaymentResponse
from donations.services.checkout_service import CheckoutOrchestrator
from donations.services.receipt_service import ReceiptService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/forms", tags=["checkout"])


@router.post("/{form_id}/submissions", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def submit_form(
    form_id: str,
    submission: dict[str, Any] = Body(..., description="Webform submission values"),
    db: AsyncSession = Depends(get_db),
    client: CybersourceAdapter = Depends(get_gateway_client),
    config: Settings = Depends(get_settings),
    mailer: Mailer = Depends(get_mailer),
) -> CheckoutResponse:
    """
    Charge a webform submission.

    - **form_id**: Configured payment webform
    - **submission**: Billing details, amount, card expiration and the
      transient token captured by the card widget under ``microform_container.token``

    Declined charges are not recorded and answer 402.
    """
    form = config.get_form(form_id)
    if form is None:
        raise FormNotFoundError(form_id)

    orchestrator = CheckoutOrchestrator(
        db,
        client,
        form,
        config=config,
        receipts=ReceiptService(db, config, mailer=mailer),
    )
    result = await orchestrator.checkout(submission)

    return CheckoutResponse(
        payment=PaymentResponse.model_validate(result.payment),
        code=result.code,
        status=result.status,
        confirmation_message=result.confirmation_message,
        receipt_sent=result.receipt_sent,
        submission=result.submission_data,
    )


@router.get("/{form_id}/flex-key", response_model=FlexKeyResponse)
async def get_flex_key(
    form_id: str,
    target_origin: str = Query(..., description="Origin of the page embedding the card widget"),
    client: CybersourceAdapter = Depends(get_gateway_client),
    config: Settings = Depends(get_settings),
) -> FlexKeyResponse:
    """
    Generate a one-time key for the card capture widget of a form.
    """
    form = config.get_form(form_id)
    if form is None:
        raise FormNotFoundError(form_id)

    if not client.is_ready():
        raise GatewayNotReadyError()

    client.set_environment(config.form_environment(form))
    key_id = await client.get_flex_key(target_origin)
    if not key_id:
        raise GatewayRequestError("Could not generate a card capture key.")

    return FlexKeyResponse(key_id=key_id, environment=client.get_environment())
