"""Direct credit purchase intake for non-Stripe payment collaborators."""

from fastapi import APIRouter, Request

from src.api.core.decorators.admin import admin
from src.api.core.dependencies import PaymentServiceDep
from src.api.core.messages import APIResponse, MessageCode
from .schemas import (
    CreditsPurchasedRequest,
    PurchaseAppliedModel,
    PurchaseAppliedResponse,
)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/credits-purchased", response_model=PurchaseAppliedResponse)
@admin()
async def credits_purchased(
    request: Request,
    body: CreditsPurchasedRequest,
    payment_service: PaymentServiceDep,
) -> PurchaseAppliedResponse:
    """Apply a completed purchase; redelivery of the same reference is a no-op."""
    applied = await payment_service.apply_credits_purchased(body)
    return APIResponse.success(
        message_code=(
            MessageCode.CREDITS_ADDED if applied else MessageCode.DUPLICATE_EVENT_IGNORED
        ),
        data=PurchaseAppliedModel(reference=body.reference, applied=applied),
    )
