"""Caller identity resolution: account, session token, then device signals."""

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from src.core.base import BaseService
from src.core.context import Identity, RequestContext
from src.core.enums import Tier
from src.database.models import CreditBalance
from src.utils.hashing import HashingService

ACCOUNT_KEY_PREFIX = "acct"
SESSION_KEY_PREFIX = "sess"
DEVICE_KEY_PREFIX = "dev"

PREMIUM_PLANS = frozenset({"premium", "pro"})


def account_identity_key(account_id: str) -> str:
    return f"{ACCOUNT_KEY_PREFIX}:{account_id}"


def session_identity_key(session_token: str) -> str:
    return f"{SESSION_KEY_PREFIX}:{HashingService.hash_session_token(session_token)}"


def classify_user_agent(user_agent: str | None) -> str:
    """Reduce a User-Agent header to a coarse ``device:browser`` class."""
    if not user_agent:
        return "unknown"
    ua = user_agent.lower()

    if any(marker in ua for marker in ("bot", "crawler", "spider", "curl", "python")):
        device = "bot"
    elif "ipad" in ua or "tablet" in ua:
        device = "tablet"
    elif "mobi" in ua or "iphone" in ua or "android" in ua:
        device = "mobile"
    else:
        device = "desktop"

    # Order matters: Edge and Chrome both claim Safari, Edge also claims Chrome
    if "edg/" in ua:
        browser = "edge"
    elif "firefox" in ua:
        browser = "firefox"
    elif "chrome" in ua or "crios" in ua:
        browser = "chrome"
    elif "safari" in ua:
        browser = "safari"
    else:
        browser = "other"

    return f"{device}:{browser}"


class IdentityResolver(BaseService):
    """
    Map a request context to a stable identity key and tier.

    Resolution never rejects a caller. Account ids win over session tokens,
    which win over the device-signal hash. A caller with neither gets a
    freshly minted session token alongside a device-keyed identity for the
    current request; the token becomes the key from the next request on.
    """

    async def resolve(self, context: RequestContext) -> Identity:
        if context.account_id:
            key = account_identity_key(context.account_id)
            tier = await self._account_tier(key, context.plan)
            return Identity(key=key, tier=tier)

        signals = context.signals
        device_hash = HashingService.hash_device_signals(
            signals.ip_address,
            signals.user_agent_class,
            signals.viewport,
            signals.timezone,
        )
        device_key = f"{DEVICE_KEY_PREFIX}:{device_hash}"

        if context.session_token:
            return Identity(
                key=session_identity_key(context.session_token),
                tier=Tier.ANONYMOUS,
                device_key=device_key,
            )

        minted = HashingService.mint_session_token()
        self.logger.info("identity.session_minted", device_hash=device_hash[:12])
        return Identity(
            key=device_key,
            tier=Tier.ANONYMOUS,
            minted_session_token=minted,
            device_key=device_key,
        )

    async def _account_tier(self, identity_key: str, plan: str | None) -> Tier:
        if plan and plan.lower() in PREMIUM_PLANS:
            return Tier.PREMIUM

        try:
            paid_credits = await self.db.scalar(
                select(CreditBalance.paid_credits).where(
                    CreditBalance.identity_key == identity_key
                )
            )
        except SQLAlchemyError as e:
            # Tier lookup is best effort; the account is still known
            await self.db.rollback()
            self.logger.warning(
                "identity.tier_lookup_failed",
                identity_key=identity_key,
                error_type=type(e).__name__,
            )
            return Tier.REGISTERED

        if paid_credits:
            return Tier.PAID
        return Tier.REGISTERED
