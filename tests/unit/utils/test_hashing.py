"""Tests for hashing utilities."""

from src.utils.hashing import HashingService


def test_minted_session_tokens_are_unique_and_url_safe():
    tokens = {HashingService.mint_session_token() for _ in range(50)}

    assert len(tokens) == 50
    for token in tokens:
        assert len(token) >= 40
        assert all(c.isalnum() or c in "-_" for c in token)


def test_session_token_hash_is_stable_and_hides_token():
    token = "my-secret-session-token"

    first = HashingService.hash_session_token(token)
    second = HashingService.hash_session_token(token)

    assert first == second
    assert len(first) == 32
    assert token not in first


def test_device_signal_hash_ignores_case_and_whitespace():
    a = HashingService.hash_device_signals("1.2.3.4", "Mobile:Safari", "390x844", "Europe/Lisbon")
    b = HashingService.hash_device_signals(" 1.2.3.4", "mobile:safari ", "390x844", "europe/lisbon")

    assert a == b


def test_device_signal_hash_distinguishes_missing_signals():
    a = HashingService.hash_device_signals("1.2.3.4", None, "390x844", None)
    b = HashingService.hash_device_signals("1.2.3.4", "390x844", None, None)

    assert a != b
