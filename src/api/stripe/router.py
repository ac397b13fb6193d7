"""Stripe webhook endpoint."""

from fastapi import APIRouter, Request, status

from src.api.core.dependencies import PaymentServiceDep
from src.api.core.exceptions.base import WedAIException
from src.api.core.messages import MessageCode
from src.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/stripe", tags=["stripe"])

MAX_WEBHOOK_PAYLOAD_BYTES = 1024 * 1024


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    payment_service: PaymentServiceDep,
):
    """Verify a Stripe delivery and credit completed checkouts exactly once."""
    payload = await request.body()

    if not payload:
        raise WedAIException(
            MessageCode.BAD_REQUEST,
            status.HTTP_400_BAD_REQUEST,
            details={"description": "Empty webhook payload"},
        )

    if len(payload) > MAX_WEBHOOK_PAYLOAD_BYTES:
        raise WedAIException(
            MessageCode.BAD_REQUEST,
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            details={"description": "Webhook payload too large"},
        )

    signature = request.headers.get("stripe-signature")
    if not signature:
        raise WedAIException(
            MessageCode.BAD_REQUEST,
            status.HTTP_400_BAD_REQUEST,
            details={"description": "Missing stripe-signature header"},
        )

    if not signature.startswith("t=") or ",v" not in signature:
        raise WedAIException(
            MessageCode.BAD_REQUEST,
            status.HTTP_400_BAD_REQUEST,
            details={"description": "Invalid stripe-signature format"},
        )

    # construct_event rejects signatures older than STRIPE_WEBHOOK_TOLERANCE_SECONDS
    try:
        event = payment_service.validate_webhook_signature(payload, signature)
    except ValueError as e:
        logger.warning("stripe.invalid_webhook", error=str(e))
        raise WedAIException(
            MessageCode.BAD_REQUEST,
            status.HTTP_400_BAD_REQUEST,
            details={"description": "Invalid webhook data"},
        )

    applied = await payment_service.handle_webhook_event(event)
    if applied:
        logger.info("stripe.event_applied", event_type=event["type"], event_id=event["id"])
        return {"status": "success"}

    logger.debug("stripe.event_ignored", event_type=event.get("type"))
    return {"status": "ignored"}
