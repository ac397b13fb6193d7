"""Tests for the generation request flow: admit, reserve, generate, settle."""

import asyncio
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from src.api.core.exceptions.errors import (
    InsufficientCreditError,
    ProviderPermanentError,
    ProviderTransientError,
    RateLimitedError,
    RequestIdConflictError,
    RequestInProgressError,
    UsageRequestNotFoundError,
)
from src.api.core.messages import MessageCode
from src.core.context import RequestContext
from src.database.models import (
    CreditReservation,
    CreditTransaction,
    ReservationState,
    UsageRequest,
    UsageStatus,
)
from src.modules.credits.ledger import CreditLedger
from src.modules.identity.resolver import IdentityResolver
from src.modules.usage.orchestrator import (
    GenerationCommand,
    GenerationOutcome,
    UsageOrchestrator,
)

from tests.factories import UsageRequestFactory
from tests.utils.fakes import FakeGenerationProvider


def command(request_id: str | None = None, count: int = 1) -> GenerationCommand:
    return GenerationCommand(
        request_id=request_id or f"req-{uuid4().hex}",
        prompt="a bride and groom under cherry blossoms, film photo",
        count=count,
    )


async def transaction_count(db, identity_key: str) -> int:
    count = await db.scalar(
        select(func.count())
        .select_from(CreditTransaction)
        .where(CreditTransaction.identity_key == identity_key)
    )
    await db.commit()
    return count


async def usage_row(db, request_id: str) -> UsageRequest:
    usage = await db.scalar(
        select(UsageRequest)
        .where(UsageRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    await db.commit()
    return usage


async def reservation_state(db, request_id: str) -> str | None:
    state = await db.scalar(
        select(CreditReservation.state).where(CreditReservation.id == request_id)
    )
    await db.commit()
    return state


@pytest.fixture
def account_context() -> RequestContext:
    return RequestContext(account_id=str(uuid4()))


@pytest.mark.asyncio
async def test_successful_generation_commits_charge(
    orchestrator, ledger, db_session, fake_provider, account_context
):
    cmd = command(count=2)

    outcome = await orchestrator.handle(cmd, account_context)

    assert outcome.credits_charged == 2
    assert len(outcome.outputs) == 2
    assert not outcome.replayed
    assert outcome.rate.remaining_hourly == 4
    assert fake_provider.calls == [(cmd.prompt, 2)]

    usage = await usage_row(db_session, cmd.request_id)
    assert usage.status == UsageStatus.COMMITTED.value
    assert usage.result == outcome.outputs
    assert usage.identity_key == outcome.identity.key
    assert usage.prompt_hash and cmd.prompt not in usage.prompt_hash
    assert await reservation_state(db_session, cmd.request_id) == ReservationState.COMMITTED.value

    state = await ledger.balance(outcome.identity.key)
    assert state.total(ledger.free_daily) == 1


@pytest.mark.asyncio
async def test_provider_timeout_refunds_and_records_failure(
    orchestrator, ledger, db_session, fake_provider, account_context
):
    fake_provider.delay = 2.0
    cmd = command()

    with pytest.raises(ProviderTransientError) as exc_info:
        await orchestrator.handle(cmd, account_context)

    assert exc_info.value.reason == "timeout"
    usage = await usage_row(db_session, cmd.request_id)
    assert usage.status == UsageStatus.RELEASED.value
    assert usage.error_code == MessageCode.GENERATION_TEMPORARILY_FAILED.value
    assert await reservation_state(db_session, cmd.request_id) == ReservationState.RELEASED.value
    state = await ledger.balance(usage.identity_key)
    assert state.total(ledger.free_daily) == 3


@pytest.mark.asyncio
async def test_permanent_failure_refunds_and_replays_without_provider(
    orchestrator, ledger, db_session, fake_provider, account_context
):
    fake_provider.will_raise(ProviderPermanentError("content_blocked"))
    cmd = command()

    with pytest.raises(ProviderPermanentError):
        await orchestrator.handle(cmd, account_context)

    usage = await usage_row(db_session, cmd.request_id)
    txns_before = await transaction_count(db_session, usage.identity_key)

    with pytest.raises(ProviderPermanentError):
        await orchestrator.handle(cmd, account_context)

    assert len(fake_provider.calls) == 1
    assert await transaction_count(db_session, usage.identity_key) == txns_before
    state = await ledger.balance(usage.identity_key)
    assert state.total(ledger.free_daily) == 3


@pytest.mark.asyncio
async def test_unexpected_provider_error_is_transient_and_refunded(
    orchestrator, ledger, fake_provider, account_context
):
    fake_provider.will_raise(RuntimeError("boom"))

    with pytest.raises(ProviderTransientError):
        await orchestrator.handle(command(), account_context)

    identity = await IdentityResolver(ledger.db).resolve(account_context)
    state = await ledger.balance(identity.key)
    assert state.total(ledger.free_daily) == 3


@pytest.mark.asyncio
async def test_repeated_request_id_replays_stored_outcome(
    orchestrator, rate_limiter, db_session, fake_provider, account_context
):
    cmd = command()
    first = await orchestrator.handle(cmd, account_context)
    txns = await transaction_count(db_session, first.identity.key)

    second = await orchestrator.handle(cmd, account_context)

    assert second.replayed
    assert second.outputs == first.outputs
    assert second.credits_charged == first.credits_charged
    assert len(fake_provider.calls) == 1
    assert await transaction_count(db_session, first.identity.key) == txns
    # Replays do not consume rate quota either
    peek = await rate_limiter.peek(first.identity)
    assert peek.remaining_hourly == 4


@pytest.mark.asyncio
async def test_request_id_of_another_identity_is_rejected(orchestrator, fake_provider):
    cmd = command()
    await orchestrator.handle(cmd, RequestContext(account_id="owner"))

    with pytest.raises(RequestIdConflictError):
        await orchestrator.handle(cmd, RequestContext(account_id="intruder"))

    assert len(fake_provider.calls) == 1


@pytest.mark.asyncio
async def test_in_flight_request_id_is_reported_in_progress(
    orchestrator, db_session, fake_provider
):
    await UsageRequestFactory.create_async(
        db_session, id="req-inflight", identity_key="acct:busy"
    )

    with pytest.raises(RequestInProgressError):
        await orchestrator.handle(command("req-inflight"), RequestContext(account_id="busy"))

    assert fake_provider.calls == []


@pytest.mark.asyncio
async def test_insufficient_credit_still_counts_against_rate_window(
    orchestrator, rate_limiter, db_session, fake_provider, account_context
):
    """Rate check precedes the credit check, so the attempt is counted."""
    cmd = command(count=4)

    with pytest.raises(InsufficientCreditError):
        await orchestrator.handle(cmd, account_context)

    identity = await IdentityResolver(db_session).resolve(account_context)
    peek = await rate_limiter.peek(identity)
    assert peek.remaining_hourly == 4
    assert fake_provider.calls == []
    assert await usage_row(db_session, cmd.request_id) is None


@pytest.mark.asyncio
async def test_rate_limited_request_never_touches_credit(
    orchestrator, db_session, fake_provider
):
    """Anonymous callers get 3 per hour; the 4th is refused before the ledger."""
    context = RequestContext(session_token="anon-session-token")
    outcomes = [await orchestrator.handle(command(), context) for _ in range(3)]
    identity_key = outcomes[0].identity.key
    txns = await transaction_count(db_session, identity_key)

    with pytest.raises(RateLimitedError) as exc_info:
        await orchestrator.handle(command(), context)

    assert exc_info.value.retry_after >= 1
    assert exc_info.value.headers["Retry-After"] == str(exc_info.value.retry_after)
    assert await transaction_count(db_session, identity_key) == txns
    assert len(fake_provider.calls) == 3


@pytest.mark.asyncio
async def test_count_out_of_range_is_rejected(orchestrator, account_context):
    with pytest.raises(ValueError):
        await orchestrator.handle(command(count=5), account_context)


@pytest.mark.asyncio
async def test_lookup_is_scoped_to_the_owner(orchestrator, account_context):
    cmd = command()
    outcome = await orchestrator.handle(cmd, account_context)

    usage = await orchestrator.lookup(cmd.request_id, outcome.identity)
    assert usage.status == UsageStatus.COMMITTED.value

    stranger = await IdentityResolver(orchestrator.db).resolve(
        RequestContext(account_id="stranger")
    )
    with pytest.raises(UsageRequestNotFoundError):
        await orchestrator.lookup(cmd.request_id, stranger)
    with pytest.raises(UsageRequestNotFoundError):
        await orchestrator.lookup("req-missing", outcome.identity)


@pytest.mark.asyncio
async def test_concurrent_submissions_of_one_id_use_one_rate_slot(
    session_factory, rate_limiter, quota_settings, provider_settings, account_context
):
    """Two racing copies of one request: one generation, one slot, one charge."""
    provider = FakeGenerationProvider(delay=0.05)

    async def submit(cmd: GenerationCommand):
        async with session_factory() as session:
            orchestrator = UsageOrchestrator(
                session,
                IdentityResolver(session),
                rate_limiter,
                CreditLedger(session, quota_settings),
                provider,
                provider_settings,
            )
            return await orchestrator.handle(cmd, account_context)

    cmd = command("req-raced")
    results = await asyncio.gather(submit(cmd), submit(cmd), return_exceptions=True)

    fresh = [r for r in results if isinstance(r, GenerationOutcome) and not r.replayed]
    others = [r for r in results if r not in fresh]
    assert len(fresh) == 1
    assert all(
        isinstance(r, RequestInProgressError)
        or (isinstance(r, GenerationOutcome) and r.replayed)
        for r in others
    )
    assert len(provider.calls) == 1
    peek = await rate_limiter.peek(fresh[0].identity)
    assert peek.remaining_hourly == 4
    assert peek.remaining_daily == 14


@pytest.mark.asyncio
async def test_errors_carry_the_resolved_identity(orchestrator, fake_provider):
    fake_provider.will_raise(ProviderPermanentError("content_policy"))

    with pytest.raises(ProviderPermanentError) as exc_info:
        await orchestrator.handle(command(), RequestContext())

    identity = exc_info.value.identity
    assert identity.key.startswith("dev:")
    assert identity.minted_session_token
