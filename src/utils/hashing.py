import hashlib
import secrets

SESSION_TOKEN_BYTES: int = 32


class HashingService:
    """Hashing helpers for identity keys and abuse-analysis fingerprints."""

    @staticmethod
    def mint_session_token() -> str:
        """Create a new opaque session token for a first-time caller."""
        return secrets.token_urlsafe(SESSION_TOKEN_BYTES)

    @staticmethod
    def hash_session_token(token: str) -> str:
        """
        Stable key for a session token.

        The raw token never appears in storage keys or logs; only its
        truncated SHA-256 digest does.
        """
        return hashlib.sha256(token.encode("utf-8")).hexdigest()[:32]

    @staticmethod
    def hash_device_signals(*signals: str | None) -> str:
        """Combine low-entropy client signals into one stable digest."""
        joined = "|".join((signal or "").strip().lower() for signal in signals)
        return hashlib.sha256(joined.encode("utf-8")).hexdigest()[:32]

    @staticmethod
    def hash_prompt(prompt: str) -> str:
        return hashlib.sha256(prompt.encode("utf-8")).hexdigest()
