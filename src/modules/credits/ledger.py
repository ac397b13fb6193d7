"""Credit ledger: reservations, settlement and grants over per-identity balances."""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.core.exceptions.errors import (
    InsufficientCreditError,
    ReservationConflictError,
    StorageUnavailableError,
)
from src.core.base import BaseService
from src.core.enums import CreditPool
from src.database.models import (
    CreditBalance,
    CreditReceipt,
    CreditReservation,
    CreditTransaction,
    ReservationState,
    TransactionKind,
)
from src.modules.credits.pools import BalanceState, Draw, plan_draw
from src.utils.settings.quota import QuotaSettings
from src.utils.time_windows import ledger_date, next_daily_reset, utc_now

# Pools that externally granted credits land in
GRANT_POOLS: dict[TransactionKind, CreditPool] = {
    TransactionKind.PURCHASE: CreditPool.PAID,
    TransactionKind.REFUND: CreditPool.PAID,
    TransactionKind.BONUS_GRANT: CreditPool.BONUS,
}


class DuplicateReservationError(Exception):
    """A reservation already exists under this reference."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"reservation {reference} already exists")


@dataclass(frozen=True)
class CreditSummary:
    identity_key: str
    total_available: int
    free_remaining: int
    free_daily_allowance: int
    free_used_today: int
    bonus_credits: int
    paid_credits: int
    total_purchased: int
    total_consumed: int
    next_free_reset: datetime


@dataclass(frozen=True)
class ReconciliationReport:
    identity_key: str
    stored_total: int
    replayed_total: int

    @property
    def consistent(self) -> bool:
        return self.stored_total == self.replayed_total


class CreditLedger(BaseService):
    """
    Per-identity credit balance with reserve/commit/release semantics.

    Every balance write is a compare-and-swap on ``CreditBalance.version``
    and is paired with exactly one ``CreditTransaction`` in the same
    database transaction, so replaying an identity's transaction deltas
    always reproduces its stored balance. Each public operation owns and
    commits its own transaction.
    """

    def __init__(self, db: AsyncSession, settings: QuotaSettings | None = None):
        super().__init__(db)
        self.settings = settings or QuotaSettings()

    @property
    def free_daily(self) -> int:
        return self.settings.FREE_DAILY_CREDITS

    def _today(self, now: datetime):
        return ledger_date(now, self.settings.DAILY_RESET_HOUR_UTC)

    # Storage plumbing

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except SQLAlchemyError as e:
            self.logger.warning("ledger.rollback_failed", error=str(e))

    @asynccontextmanager
    async def _transaction(self, operation: str):
        try:
            yield
        except IntegrityError:
            await self._rollback()
            raise
        except SQLAlchemyError as e:
            await self._rollback()
            self.logger.error(
                "ledger.storage_unavailable",
                operation=operation,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise StorageUnavailableError("ledger") from e
        except Exception:
            await self._rollback()
            raise

    async def _load(self, identity_key: str) -> BalanceState | None:
        row = (
            await self.db.execute(
                select(
                    CreditBalance.identity_key,
                    CreditBalance.free_used_today,
                    CreditBalance.free_reset_date,
                    CreditBalance.bonus_credits,
                    CreditBalance.paid_credits,
                    CreditBalance.version,
                ).where(CreditBalance.identity_key == identity_key)
            )
        ).first()
        if row is None:
            return None
        return BalanceState(**row._mapping)

    async def _ensure_balance(self, identity_key: str, now: datetime) -> None:
        """Create the balance row, with its first free grant, if missing."""
        if await self._load(identity_key) is not None:
            return

        self.db.add(
            CreditBalance(
                identity_key=identity_key,
                free_used_today=0,
                free_reset_date=self._today(now),
                bonus_credits=0,
                paid_credits=0,
                version=0,
                created_at=now,
                updated_at=now,
            )
        )
        self.db.add(
            CreditTransaction(
                identity_key=identity_key,
                kind=TransactionKind.FREE_GRANT,
                delta=self.free_daily,
                balance_after=self.free_daily,
                description="Daily free credits",
                created_at=now,
            )
        )
        try:
            await self.db.commit()
        except IntegrityError:
            # Another request created it first
            await self._rollback()
            return
        self.logger.info("ledger.balance_created", identity_key=identity_key)

    async def _swap(
        self,
        identity_key: str,
        change: Callable[[BalanceState], BalanceState],
        now: datetime,
    ) -> tuple[BalanceState, BalanceState]:
        """
        Apply ``change`` to the balance with optimistic concurrency.

        A pending free-pool rollover is folded into the same write and
        logged as its own grant. Returns the state ``change`` saw and the
        state written. Does not commit.
        """
        today = self._today(now)
        for attempt in range(1, self.settings.LEDGER_MAX_CAS_ATTEMPTS + 1):
            stored = await self._load(identity_key)
            if stored is None:
                raise LookupError(f"no balance for {identity_key}")

            current = stored.rolled_over(today)
            updated = change(current)

            result = await self.db.execute(
                update(CreditBalance)
                .where(
                    CreditBalance.identity_key == identity_key,
                    CreditBalance.version == stored.version,
                )
                .values(
                    free_used_today=updated.free_used_today,
                    free_reset_date=updated.free_reset_date,
                    bonus_credits=updated.bonus_credits,
                    paid_credits=updated.paid_credits,
                    version=stored.version + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                if current is not stored:
                    self._record_rollover(stored, current, now)
                return current, updated

            self.logger.debug(
                "ledger.cas_retry", identity_key=identity_key, attempt=attempt
            )

        self.logger.error(
            "ledger.cas_exhausted",
            identity_key=identity_key,
            attempts=self.settings.LEDGER_MAX_CAS_ATTEMPTS,
        )
        raise StorageUnavailableError("ledger")

    def _record_rollover(
        self, stored: BalanceState, current: BalanceState, now: datetime
    ) -> None:
        restored = stored.free_used_today
        self.logger.info(
            "ledger.daily_reset",
            identity_key=stored.identity_key,
            previous_date=stored.free_reset_date.isoformat(),
            restored=restored,
        )
        if restored:
            self.db.add(
                CreditTransaction(
                    identity_key=stored.identity_key,
                    kind=TransactionKind.FREE_GRANT,
                    delta=restored,
                    balance_after=current.total(self.free_daily),
                    description="Daily free credits",
                    created_at=now,
                )
            )

    async def _refresh(self, identity_key: str, now: datetime) -> BalanceState:
        """Current balance with any due daily reset applied and committed."""
        await self._ensure_balance(identity_key, now)
        stored = await self._load(identity_key)
        if stored is not None and stored.rolled_over(self._today(now)) is stored:
            await self.db.rollback()
            return stored

        _, updated = await self._swap(identity_key, lambda state: state, now)
        await self.db.commit()
        return updated

    async def _settled_state(
        self, reservation_id: str, target: ReservationState, attempted: str
    ) -> bool:
        """Outcome for a settlement that found the reservation not held."""
        current = await self.db.scalar(
            select(CreditReservation.state).where(
                CreditReservation.id == reservation_id
            )
        )
        await self.db.rollback()
        if current is None:
            raise ReservationConflictError(reservation_id, "missing", attempted)
        if current == target.value:
            return False
        raise ReservationConflictError(reservation_id, current, attempted)

    # Public operations

    async def reserve(
        self,
        identity_key: str,
        amount: int,
        reference: str,
        now: datetime | None = None,
    ) -> CreditReservation:
        """
        Provisionally deduct ``amount`` credits in pool priority order.

        Raises InsufficientCreditError when the pools cannot cover it and
        DuplicateReservationError when ``reference`` was already reserved.
        """
        if amount <= 0:
            raise ValueError("amount must be positive")
        now = now or utc_now()
        priority = self.settings.POOL_PRIORITY

        def withdraw(state: BalanceState) -> BalanceState:
            draw = plan_draw(state, amount, priority, self.free_daily)
            if draw is None:
                raise InsufficientCreditError(amount, state.total(self.free_daily))
            return state.withdraw(draw)

        async with self._transaction("reserve"):
            await self._ensure_balance(identity_key, now)
            try:
                before, after = await self._swap(identity_key, withdraw, now)
            except InsufficientCreditError as e:
                self.logger.info(
                    "ledger.insufficient",
                    identity_key=identity_key,
                    requested=amount,
                    available=e.available,
                )
                raise

            drawn = Draw(
                bonus=before.bonus_credits - after.bonus_credits,
                free=after.free_used_today - before.free_used_today,
                paid=before.paid_credits - after.paid_credits,
            )
            reservation = CreditReservation(
                id=reference,
                identity_key=identity_key,
                amount=amount,
                bonus_drawn=drawn.bonus,
                free_drawn=drawn.free,
                paid_drawn=drawn.paid,
                free_date=after.free_reset_date,
                state=ReservationState.HELD.value,
                created_at=now,
            )
            self.db.add(reservation)
            self.db.add(
                CreditTransaction(
                    identity_key=identity_key,
                    kind=TransactionKind.RESERVATION,
                    delta=-amount,
                    balance_after=after.total(self.free_daily),
                    reference=reference,
                    created_at=now,
                )
            )
            try:
                await self.db.commit()
            except IntegrityError as e:
                await self._rollback()
                raise DuplicateReservationError(reference) from e

        self.logger.info(
            "ledger.reserved",
            identity_key=identity_key,
            reservation_id=reference,
            amount=amount,
            bonus=drawn.bonus,
            free=drawn.free,
            paid=drawn.paid,
        )
        return reservation

    async def commit(self, reservation_id: str, now: datetime | None = None) -> bool:
        """
        Make a held reservation permanent.

        Returns False if it was already committed. Raises
        ReservationConflictError if it was released or never existed.
        """
        now = now or utc_now()
        async with self._transaction("commit"):
            result = await self.db.execute(
                update(CreditReservation)
                .where(
                    CreditReservation.id == reservation_id,
                    CreditReservation.state == ReservationState.HELD.value,
                )
                .values(state=ReservationState.COMMITTED.value, settled_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                return await self._settled_state(
                    reservation_id, ReservationState.COMMITTED, "commit"
                )

            identity_key = await self.db.scalar(
                select(CreditReservation.identity_key).where(
                    CreditReservation.id == reservation_id
                )
            )
            state = await self._load(identity_key)
            self.db.add(
                CreditTransaction(
                    identity_key=identity_key,
                    kind=TransactionKind.COMMIT,
                    delta=0,
                    balance_after=state.total(self.free_daily),
                    reference=reservation_id,
                    created_at=now,
                )
            )
            await self.db.commit()

        self.logger.info(
            "ledger.committed", identity_key=identity_key, reservation_id=reservation_id
        )
        return True

    async def release(
        self,
        reservation_id: str,
        reason: str = "released",
        now: datetime | None = None,
    ) -> bool:
        """
        Refund a held reservation to the pools it was drawn from.

        Free credits drawn on an earlier free-credit day are not refunded;
        that day's allowance has already been replaced. Returns False if it
        was already released. Raises ReservationConflictError if it was
        committed or never existed.
        """
        now = now or utc_now()
        async with self._transaction("release"):
            result = await self.db.execute(
                update(CreditReservation)
                .where(
                    CreditReservation.id == reservation_id,
                    CreditReservation.state == ReservationState.HELD.value,
                )
                .values(state=ReservationState.RELEASED.value, settled_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                return await self._settled_state(
                    reservation_id, ReservationState.RELEASED, "release"
                )

            held = (
                await self.db.execute(
                    select(
                        CreditReservation.identity_key,
                        CreditReservation.bonus_drawn,
                        CreditReservation.free_drawn,
                        CreditReservation.paid_drawn,
                        CreditReservation.free_date,
                    ).where(CreditReservation.id == reservation_id)
                )
            ).one()

            def refund(state: BalanceState) -> BalanceState:
                same_day = state.free_reset_date == held.free_date
                return state.deposit(
                    Draw(
                        bonus=held.bonus_drawn,
                        free=held.free_drawn if same_day else 0,
                        paid=held.paid_drawn,
                    )
                )

            before, after = await self._swap(held.identity_key, refund, now)
            refunded = after.total(self.free_daily) - before.total(self.free_daily)
            refunded_free = before.free_used_today - after.free_used_today
            self.db.add(
                CreditTransaction(
                    identity_key=held.identity_key,
                    kind=TransactionKind.RELEASE,
                    delta=refunded,
                    balance_after=after.total(self.free_daily),
                    reference=reservation_id,
                    description=reason[:255],
                    created_at=now,
                )
            )
            await self.db.commit()

        self.logger.info(
            "ledger.released",
            identity_key=held.identity_key,
            reservation_id=reservation_id,
            refunded=refunded,
            forfeited_free=held.free_drawn - refunded_free,
            reason=reason,
        )
        return True

    async def add_credits(
        self,
        identity_key: str,
        amount: int,
        kind: TransactionKind,
        reference: str | None = None,
        description: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """
        Grant credits outside the reservation flow.

        Purchases and refunds land in the paid pool, bonus grants in the
        bonus pool. A ``reference`` seen before is ignored and returns False.
        """
        kind = TransactionKind(kind)
        pool = GRANT_POOLS.get(kind)
        if pool is None:
            raise ValueError(f"{kind.value} credits cannot be added directly")
        if amount <= 0:
            raise ValueError("amount must be positive")
        now = now or utc_now()

        async with self._transaction("add_credits"):
            await self._ensure_balance(identity_key, now)

            if reference is not None:
                self.db.add(
                    CreditReceipt(
                        reference=reference,
                        identity_key=identity_key,
                        kind=kind.value,
                        amount=amount,
                        created_at=now,
                    )
                )
                try:
                    await self.db.flush()
                except IntegrityError:
                    await self._rollback()
                    self.logger.info(
                        "ledger.duplicate_grant",
                        identity_key=identity_key,
                        reference=reference,
                        kind=kind.value,
                    )
                    return False

            grant = Draw(**{pool.value: amount})
            _, after = await self._swap(
                identity_key, lambda state: state.deposit(grant), now
            )
            self.db.add(
                CreditTransaction(
                    identity_key=identity_key,
                    kind=kind,
                    delta=amount,
                    balance_after=after.total(self.free_daily),
                    reference=reference,
                    description=description,
                    created_at=now,
                )
            )
            await self.db.commit()

        self.logger.info(
            "ledger.credits_added",
            identity_key=identity_key,
            amount=amount,
            kind=kind.value,
            reference=reference,
        )
        return True

    async def balance(
        self, identity_key: str, now: datetime | None = None
    ) -> BalanceState:
        now = now or utc_now()
        async with self._transaction("balance"):
            return await self._refresh(identity_key, now)

    async def summary(
        self, identity_key: str, now: datetime | None = None
    ) -> CreditSummary:
        now = now or utc_now()
        state = await self.balance(identity_key, now)
        totals = dict(
            (
                await self.db.execute(
                    select(
                        CreditTransaction.kind,
                        func.coalesce(func.sum(CreditTransaction.delta), 0),
                    )
                    .where(CreditTransaction.identity_key == identity_key)
                    .group_by(CreditTransaction.kind)
                )
            ).all()
        )
        consumed = totals.get(TransactionKind.RESERVATION.value, 0) + totals.get(
            TransactionKind.RELEASE.value, 0
        )
        return CreditSummary(
            identity_key=identity_key,
            total_available=state.total(self.free_daily),
            free_remaining=state.free_remaining(self.free_daily),
            free_daily_allowance=self.free_daily,
            free_used_today=state.free_used_today,
            bonus_credits=state.bonus_credits,
            paid_credits=state.paid_credits,
            total_purchased=int(totals.get(TransactionKind.PURCHASE.value, 0)),
            total_consumed=-int(consumed),
            next_free_reset=next_daily_reset(now, self.settings.DAILY_RESET_HOUR_UTC),
        )

    async def transactions(
        self, identity_key: str, limit: int = 50, offset: int = 0
    ) -> tuple[list[CreditTransaction], int]:
        """One page of an identity's transactions, newest first, plus the total."""
        total = await self.db.scalar(
            select(func.count())
            .select_from(CreditTransaction)
            .where(CreditTransaction.identity_key == identity_key)
        )
        result = await self.db.execute(
            select(CreditTransaction)
            .where(CreditTransaction.identity_key == identity_key)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def reconcile_check(self, identity_key: str) -> ReconciliationReport:
        """Compare the stored balance with the sum of logged deltas."""
        state = await self._load(identity_key)
        replayed = await self.db.scalar(
            select(func.coalesce(func.sum(CreditTransaction.delta), 0)).where(
                CreditTransaction.identity_key == identity_key
            )
        )
        return ReconciliationReport(
            identity_key=identity_key,
            stored_total=state.total(self.free_daily) if state else 0,
            replayed_total=int(replayed or 0),
        )
