"""Per-request identity context."""

from dataclasses import dataclass, field

from src.core.enums import Tier


@dataclass(frozen=True)
class ClientSignals:
    """Low-entropy client hints, combined only when no session token exists."""

    ip_address: str | None = None
    user_agent_class: str | None = None
    viewport: str | None = None
    timezone: str | None = None


@dataclass(frozen=True)
class RequestContext:
    """What the identity collaborator knows about a caller."""

    account_id: str | None = None
    session_token: str | None = None
    signals: ClientSignals = field(default_factory=ClientSignals)
    # Plan claim carried in the auth token, if any
    plan: str | None = None


@dataclass(frozen=True)
class Identity:
    """A resolved caller: stable key plus trust tier."""

    key: str
    tier: Tier
    # Set only when a new session token was minted for this request
    minted_session_token: str | None = None
    # Anonymous callers only; every session token from one device shares its windows
    device_key: str | None = None

    def __post_init__(self):
        if not self.key:
            raise ValueError("Identity key is required")

    @property
    def is_anonymous(self) -> bool:
        return self.tier == Tier.ANONYMOUS
