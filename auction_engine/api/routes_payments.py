from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from auction_engine.api.deps import get_db, get_runtime
from auction_engine.auth import get_current_user_id, require_service
from auction_engine.db import crud
from auction_engine.schemas.payment import (
    PaymentConfirmation, PaymentConfirmationResponse, PaymentResponse, PaymentStatusResponse,
)
from auction_engine.services.runtime import AuctionRuntime

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.post("/confirm", response_model=PaymentConfirmationResponse)
async def confirm_payment(
    confirmation: PaymentConfirmation,
    _service: str = Depends(require_service),
    runtime: AuctionRuntime = Depends(get_runtime),
):
    """Called by the payment gateway once the winner's payment was captured."""
    result = await runtime.resolver.confirm_payment(confirmation)
    return PaymentConfirmationResponse(
        auction_id=result.auction_id,
        status=result.status,
        already_confirmed=result.already_confirmed,
    )


@router.get("/status/{auction_id}", response_model=PaymentStatusResponse)
async def payment_status(
    auction_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    payment = await crud.get_payment(db, auction_id, user_id)
    return PaymentStatusResponse(
        auction_id=auction_id,
        has_paid=payment is not None,
        payment=PaymentResponse.model_validate(payment) if payment else None,
    )
