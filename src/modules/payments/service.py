"""Credit purchase intake from Stripe and other payment collaborators."""

import stripe  # type: ignore
from pydantic import BaseModel, Field
from stripe import SignatureVerificationError  # type: ignore
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.base import BaseService
from src.database.models import TransactionKind
from src.modules.credits.ledger import CreditLedger
from src.modules.identity.resolver import account_identity_key
from src.utils.settings.stripe import StripeSettings

CHECKOUT_COMPLETED = "checkout.session.completed"


class CreditsPurchased(BaseModel):
    """A completed payment, delivered at least once."""

    identity_key: str = Field(min_length=1, max_length=128)
    amount: int = Field(gt=0)
    reference: str = Field(min_length=1, max_length=255)


class PaymentService(BaseService):
    def __init__(
        self,
        db: AsyncSession,
        ledger: CreditLedger | None = None,
        settings: StripeSettings | None = None,
    ):
        super().__init__(db)
        self.ledger = ledger or CreditLedger(db)
        self.settings = settings or StripeSettings()
        stripe.api_key = self.settings.STRIPE_SECRET_KEY.get_secret_value()

    async def apply_credits_purchased(self, event: CreditsPurchased) -> bool:
        """Credit the purchase once; a repeated ``reference`` returns False."""
        applied = await self.ledger.add_credits(
            event.identity_key,
            event.amount,
            TransactionKind.PURCHASE,
            reference=event.reference,
            description="Credit pack purchase",
        )
        if not applied:
            self.logger.info(
                "payment.duplicate",
                identity_key=event.identity_key,
                reference=event.reference,
            )
        return applied

    def validate_webhook_signature(self, payload: bytes, signature: str) -> dict:
        """Validate the Stripe signature and return the event."""
        try:
            return stripe.Webhook.construct_event(
                payload,
                signature,
                self.settings.STRIPE_WEBHOOK_SECRET,
                tolerance=self.settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
            )
        except ValueError:
            raise ValueError("Invalid payload")
        except SignatureVerificationError:
            raise ValueError("Invalid signature")

    def credits_purchased_from_event(self, event: dict) -> CreditsPurchased | None:
        """Map a Stripe checkout event to a purchase, or None if it grants nothing."""
        if event.get("type") != CHECKOUT_COMPLETED:
            return None

        session_data = event["data"]["object"]
        if session_data.get("payment_status", "paid") != "paid":
            self.logger.info(
                "Checkout not paid yet",
                session_id=session_data.get("id"),
                payment_status=session_data.get("payment_status"),
            )
            return None

        metadata = session_data.get("metadata") or {}
        identity_key = metadata.get("identity_key")
        if not identity_key:
            account_id = metadata.get("user_id") or session_data.get(
                "client_reference_id"
            )
            identity_key = account_identity_key(account_id) if account_id else None
        if not identity_key:
            self.logger.warning(
                "No identity in checkout session", session_id=session_data.get("id")
            )
            return None

        credits = self._credits_for_session(session_data, metadata)
        if not credits:
            self.logger.warning(
                "No credit package matches checkout session",
                session_id=session_data.get("id"),
                amount_total=session_data.get("amount_total"),
            )
            return None

        return CreditsPurchased(
            identity_key=identity_key, amount=credits, reference=event["id"]
        )

    def _credits_for_session(self, session_data: dict, metadata: dict) -> int | None:
        if metadata.get("credits"):
            try:
                return int(metadata["credits"])
            except (TypeError, ValueError):
                self.logger.warning("Invalid credits in metadata", value=metadata["credits"])

        price_id = metadata.get("price_id")
        if price_id and price_id in self.settings.STRIPE_PRICE_CREDITS:
            return self.settings.STRIPE_PRICE_CREDITS[price_id]

        amount_total = session_data.get("amount_total")
        if amount_total is not None:
            return self.settings.STRIPE_AMOUNT_CREDITS.get(int(amount_total))
        return None

    async def handle_webhook_event(self, event: dict) -> bool:
        """Apply a verified Stripe event; False if it was ignored or a duplicate."""
        purchase = self.credits_purchased_from_event(event)
        if purchase is None:
            return False
        return await self.apply_credits_purchased(purchase)
