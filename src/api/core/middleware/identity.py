"""Request context extraction and session token hand-back."""

from fastapi import Request, Response
from jose import JWTError, jwt

from src.api.core.constants import (
    JWT_ALGORITHM,
    SESSION_COOKIE_MAX_AGE_SECONDS,
    SESSION_COOKIE_NAME,
    SESSION_TOKEN_HEADER,
    TIMEZONE_HEADER,
    VIEWPORT_HEADER,
)
from src.core.context import ClientSignals, Identity, RequestContext
from src.modules.identity.resolver import classify_user_agent
from src.utils.logger import get_client_ip, get_logger
from src.utils.settings.app import AppSettings
from src.utils.settings.auth import AuthSettings

logger = get_logger(__name__)


def decode_account_claims(authorization: str | None) -> dict | None:
    """
    Verified claims of a ``Bearer`` token, or None.

    A missing or invalid token does not reject the request; the caller
    simply continues as anonymous.
    """
    if not authorization:
        return None
    auth_parts = authorization.split(" ")
    if len(auth_parts) != 2 or auth_parts[0].lower() != "bearer":
        logger.info("Ignoring malformed authorization header")
        return None

    settings = AuthSettings()
    if not settings.SUPABASE_JWT_SECRET:
        logger.warning("JWT secret not configured; treating caller as anonymous")
        return None

    try:
        payload = jwt.decode(
            auth_parts[1],
            settings.SUPABASE_JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
        )
    except JWTError as e:
        logger.info("JWT decoding failed", error=str(e))
        return None

    # Supabase issues role=anon tokens to signed-out clients
    if payload.get("role") == "anon" or not payload.get("sub"):
        return None
    return payload


def _plan_claim(payload: dict) -> str | None:
    for source in (payload.get("app_metadata") or {}, payload):
        plan = source.get("plan")
        if isinstance(plan, str) and plan:
            return plan
    return None


def build_request_context(request: Request) -> RequestContext:
    """Everything identity resolution needs, read from one HTTP request."""
    payload = decode_account_claims(request.headers.get("Authorization"))
    session_token = request.headers.get(SESSION_TOKEN_HEADER) or request.cookies.get(
        SESSION_COOKIE_NAME
    )

    return RequestContext(
        account_id=payload["sub"] if payload else None,
        session_token=session_token or None,
        plan=_plan_claim(payload) if payload else None,
        signals=ClientSignals(
            ip_address=get_client_ip(request),
            user_agent_class=classify_user_agent(request.headers.get("User-Agent")),
            viewport=request.headers.get(VIEWPORT_HEADER),
            timezone=request.headers.get(TIMEZONE_HEADER),
        ),
    )


def attach_session_token(response: Response, identity: Identity) -> None:
    """Hand a freshly minted session token back to the client."""
    token = identity.minted_session_token
    if not token:
        return
    response.headers[SESSION_TOKEN_HEADER] = token
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=SESSION_COOKIE_MAX_AGE_SECONDS,
        httponly=True,
        secure=AppSettings().ENVIRONMENT.upper() == "PROD",
        samesite="lax",
    )


def session_token_headers(identity: Identity | None) -> dict[str, str]:
    """Token header and cookie for an error response, if a token was minted."""
    if identity is None or not identity.minted_session_token:
        return {}
    carrier = Response()
    attach_session_token(carrier, identity)
    return {
        key: value
        for key, value in carrier.headers.items()
        if key != "content-length"
    }
