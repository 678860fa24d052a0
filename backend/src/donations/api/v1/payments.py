"""Payment endpoints for recorded charges."""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from donations.api.deps import get_db
from donations.schemas.payment import PaymentDetailResponse
from donations.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/{payment_record_id}", response_model=PaymentDetailResponse)
async def get_payment(
    payment_record_id: int,
    db: AsyncSession = Depends(get_db),
) -> PaymentDetailResponse:
    """
    Get payment details by ID.

    Recurring series include their chained charges in ``recurring_payments``.
    """
    service = PaymentService(db)
    payment = await service.get_payment(payment_record_id)

    if not payment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Payment {payment_record_id} not found",
        )

    return PaymentDetailResponse.model_validate(payment)
