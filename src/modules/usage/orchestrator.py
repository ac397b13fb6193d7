"""Admission, charging and settlement for one generation request."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.core.exceptions.base import WedAIException
from src.api.core.exceptions.errors import (
    ProviderPermanentError,
    ProviderTransientError,
    RateLimitedError,
    RequestIdConflictError,
    RequestInProgressError,
    ReservationConflictError,
    StorageUnavailableError,
    UsageRequestNotFoundError,
    error_for_stored_code,
)
from src.api.core.models.rate_limit import RateDecision
from src.core.base import BaseService
from src.core.context import Identity, RequestContext
from src.core.enums import Resource
from src.database.models import UsageRequest, UsageStatus
from src.modules.credits.ledger import CreditLedger, DuplicateReservationError
from src.modules.identity.resolver import IdentityResolver
from src.modules.rate_limit.limiter import RateLimiter
from src.modules.usage.provider import GenerationProvider, GenerationResult
from src.utils.hashing import HashingService
from src.utils.settings.provider import ProviderSettings
from src.utils.time_windows import utc_now

CREDITS_PER_OUTPUT = 1


class RequestPhase(str, Enum):
    START = "start"
    IDENTITY_RESOLVED = "identity_resolved"
    RATE_CHECKED = "rate_checked"
    CREDIT_RESERVED = "credit_reserved"
    PROVIDER_CALLED = "provider_called"
    SETTLED_OK = "settled_ok"
    SETTLED_FAILED = "settled_failed"


@dataclass(frozen=True)
class GenerationCommand:
    request_id: str
    prompt: str
    count: int = 1
    resource: Resource = Resource.GENERATION


@dataclass(frozen=True)
class GenerationOutcome:
    request_id: str
    identity: Identity
    outputs: list[str] = field(default_factory=list)
    credits_charged: int = 0
    replayed: bool = False
    rate: RateDecision | None = None


class UsageOrchestrator(BaseService):
    """
    Runs one generation request through identity, rate limit, credit
    reservation, the provider call and settlement.

    The caller-supplied request id is the idempotency key: a request id that
    already reached a terminal state replays its stored outcome without
    touching the rate limiter or the ledger.
    """

    def __init__(
        self,
        db: AsyncSession,
        resolver: IdentityResolver,
        limiter: RateLimiter,
        ledger: CreditLedger,
        provider: GenerationProvider,
        settings: ProviderSettings | None = None,
    ):
        super().__init__(db)
        self.resolver = resolver
        self.limiter = limiter
        self.ledger = ledger
        self.provider = provider
        self.settings = settings or ProviderSettings()

    def _phase(self, request_id: str, phase: RequestPhase) -> None:
        structlog.contextvars.bind_contextvars(phase=phase.value)
        self.logger.debug("usage.phase", request_id=request_id, phase=phase.value)

    async def _find(self, request_id: str) -> UsageRequest | None:
        return await self.db.scalar(
            select(UsageRequest)
            .where(UsageRequest.id == request_id)
            .execution_options(populate_existing=True)
        )

    def _replay(self, usage: UsageRequest, identity: Identity) -> GenerationOutcome:
        if usage.identity_key != identity.key:
            raise RequestIdConflictError(usage.id)

        status = UsageStatus(usage.status)
        if status == UsageStatus.RESERVED:
            raise RequestInProgressError(usage.id)

        self.logger.info("usage.replayed", request_id=usage.id, status=status.value)
        if status == UsageStatus.COMMITTED:
            return GenerationOutcome(
                request_id=usage.id,
                identity=identity,
                outputs=list(usage.result or []),
                credits_charged=usage.credits_reserved,
                replayed=True,
            )
        raise error_for_stored_code(usage.error_code or "")

    async def handle(
        self, command: GenerationCommand, context: RequestContext
    ) -> GenerationOutcome:
        if command.count < 1 or command.count > self.settings.MAX_OUTPUTS_PER_REQUEST:
            raise ValueError("count out of range")
        request_id = command.request_id
        self._phase(request_id, RequestPhase.START)

        existing = await self._find(request_id)
        identity = await self.resolver.resolve(context)
        # End the read transaction before touching other stores
        await self.db.commit()
        structlog.contextvars.bind_contextvars(identity_key=identity.key)
        try:
            if existing is not None:
                return self._replay(existing, identity)
            return await self._admit_and_run(command, identity)
        except WedAIException as e:
            # Read by the router to return a minted session token
            e.identity = identity
            raise

    async def _admit_and_run(
        self, command: GenerationCommand, identity: Identity
    ) -> GenerationOutcome:
        request_id = command.request_id
        self._phase(request_id, RequestPhase.IDENTITY_RESOLVED)

        admitted_at = utc_now()
        decision = await self.limiter.check_and_increment(
            identity, command.resource, now=admitted_at
        )
        if not decision.allowed:
            raise RateLimitedError(
                retry_after=decision.retry_after or 1,
                remaining_hourly=decision.remaining_hourly,
                remaining_daily=decision.remaining_daily,
                limit_hourly=decision.limit_hourly,
                limit_daily=decision.limit_daily,
            )
        self._phase(request_id, RequestPhase.RATE_CHECKED)

        amount = command.count * CREDITS_PER_OUTPUT
        try:
            await self.ledger.reserve(identity.key, amount, request_id)
        except DuplicateReservationError:
            # A concurrent submission of the same id got there first and
            # holds the only rate slot this request id may use
            await self.limiter.give_back(identity, command.resource, now=admitted_at)
            existing = await self._find(request_id)
            await self.db.commit()
            if existing is None:
                raise RequestInProgressError(request_id)
            return self._replay(existing, identity)

        await self._record_reserved(command, identity, amount)
        self._phase(request_id, RequestPhase.CREDIT_RESERVED)

        try:
            self._phase(request_id, RequestPhase.PROVIDER_CALLED)
            result = await asyncio.wait_for(
                self.provider.generate(command.prompt, command.count),
                timeout=self.settings.PROVIDER_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            await self._settle_failed(request_id, ProviderTransientError("timeout"))
        except (ProviderTransientError, ProviderPermanentError) as e:
            await self._settle_failed(request_id, e)
        except Exception as e:
            self.logger.exception("usage.provider_error", request_id=request_id)
            await self._settle_failed(
                request_id, ProviderTransientError(type(e).__name__)
            )

        return await self._settle_ok(request_id, identity, amount, result, decision)

    async def _record_reserved(
        self, command: GenerationCommand, identity: Identity, amount: int
    ) -> None:
        self.db.add(
            UsageRequest(
                id=command.request_id,
                identity_key=identity.key,
                resource=command.resource.value,
                status=UsageStatus.RESERVED.value,
                credits_reserved=amount,
                requested_count=command.count,
                prompt_hash=HashingService.hash_prompt(command.prompt),
                created_at=utc_now(),
            )
        )
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            self.logger.error(
                "usage.record_failed",
                request_id=command.request_id,
                error_type=type(e).__name__,
            )
            await self._release_quietly(command.request_id, "usage_record_failed")
            raise StorageUnavailableError("usage") from e

    async def _transition(
        self,
        request_id: str,
        status: UsageStatus,
        result: list[str] | None = None,
        error_code: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Move a reserved usage request to ``status``; False if it already left reserved."""
        try:
            res = await self.db.execute(
                update(UsageRequest)
                .where(
                    UsageRequest.id == request_id,
                    UsageRequest.status == UsageStatus.RESERVED.value,
                )
                .values(
                    status=status.value,
                    result=result,
                    error_code=error_code,
                    settled_at=now or utc_now(),
                )
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            self.logger.error(
                "usage.transition_failed",
                request_id=request_id,
                status=status.value,
                error_type=type(e).__name__,
            )
            raise StorageUnavailableError("usage") from e
        return res.rowcount == 1

    async def _release_quietly(self, request_id: str, reason: str) -> None:
        """Best-effort release; the reconciler finishes anything left held."""
        try:
            await self.ledger.release(request_id, reason=reason)
        except (StorageUnavailableError, ReservationConflictError) as e:
            self.logger.warning(
                "usage.release_deferred",
                request_id=request_id,
                reason=reason,
                error_type=type(e).__name__,
            )

    async def _settle_ok(
        self,
        request_id: str,
        identity: Identity,
        amount: int,
        result: GenerationResult,
        decision: RateDecision,
    ) -> GenerationOutcome:
        won = await self._transition(
            request_id, UsageStatus.COMMITTED, result=list(result.outputs)
        )
        if not won:
            # Expired and refunded while the provider was working
            self.logger.warning(
                "settlement.conflict",
                request_id=request_id,
                attempted="commit",
                outputs_discarded=len(result.outputs),
            )
            raise ProviderTransientError("expired_before_settlement")

        try:
            await self.ledger.commit(request_id)
        except ReservationConflictError as e:
            self.logger.error(
                "settlement.conflict",
                request_id=request_id,
                attempted="commit",
                reservation_state=e.current_state,
            )
        except StorageUnavailableError:
            # Usage is committed; the reconciler commits the held reservation
            self.logger.warning("usage.commit_deferred", request_id=request_id)

        self._phase(request_id, RequestPhase.SETTLED_OK)
        self.logger.info(
            "usage.completed",
            request_id=request_id,
            credits_charged=amount,
            outputs=len(result.outputs),
        )
        return GenerationOutcome(
            request_id=request_id,
            identity=identity,
            outputs=list(result.outputs),
            credits_charged=amount,
            rate=decision,
        )

    async def _settle_failed(
        self,
        request_id: str,
        error: ProviderTransientError | ProviderPermanentError,
    ) -> None:
        """Refund and record a failed attempt, then raise ``error``."""
        self.logger.warning(
            "usage.provider_failed",
            request_id=request_id,
            error_type=type(error).__name__,
            reason=error.reason,
        )
        try:
            won = await self._transition(
                request_id,
                UsageStatus.RELEASED,
                error_code=error.message_code.value,
            )
            if not won:
                self.logger.info("usage.already_expired", request_id=request_id)
        finally:
            await self._release_quietly(request_id, error.reason)

        self._phase(request_id, RequestPhase.SETTLED_FAILED)
        raise error

    async def lookup(self, request_id: str, identity: Identity) -> UsageRequest:
        """A usage request owned by ``identity``."""
        usage = await self._find(request_id)
        if usage is None or usage.identity_key != identity.key:
            raise UsageRequestNotFoundError(request_id)
        return usage

