"""Periodic settlement of reservations whose request never finished."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.api.core.exceptions.errors import (
    ReservationConflictError,
    StorageUnavailableError,
)
from src.api.core.messages import MessageCode
from src.core.base import BaseService
from src.database.models import (
    CreditReservation,
    ReservationState,
    UsageRequest,
    UsageStatus,
)
from src.modules.credits.ledger import CreditLedger
from src.utils.logger import get_logger
from src.utils.settings.quota import QuotaSettings
from src.utils.settings.settlement import SettlementSettings
from src.utils.time_windows import utc_now

logger = get_logger(__name__)

# Usage status implied by a reservation that was settled without one
_STATUS_FOR_RESERVATION = {
    ReservationState.COMMITTED.value: UsageStatus.COMMITTED,
    ReservationState.RELEASED.value: UsageStatus.RELEASED,
}


@dataclass
class ReconcileReport:
    expired: int = 0
    repaired: int = 0
    orphans_released: int = 0
    conflicts: int = 0

    @property
    def touched(self) -> int:
        return self.expired + self.repaired + self.orphans_released


class SettlementReconciler(BaseService):
    """
    Finishes what a crashed or timed-out orchestrator left behind.

    Three passes per sweep: usage requests still reserved after the grace
    period are expired and refunded; held reservations whose usage request
    already reached a terminal status are settled to match it; held
    reservations with no usage request at all are released. A usage request
    the reconciler expired can never be committed afterwards.
    """

    def __init__(
        self,
        db: AsyncSession,
        ledger: CreditLedger | None = None,
        settings: SettlementSettings | None = None,
    ):
        super().__init__(db)
        self.ledger = ledger or CreditLedger(db)
        self.settings = settings or SettlementSettings()

    async def sweep(self, now: datetime | None = None) -> ReconcileReport:
        now = now or utc_now()
        cutoff = now - timedelta(seconds=self.settings.RESERVATION_GRACE_SECONDS)
        report = ReconcileReport()

        await self._expire_stale(cutoff, now, report)
        await self._repair_settled(now, report)
        await self._release_orphans(cutoff, now, report)

        if report.touched or report.conflicts:
            self.logger.info(
                "settlement.sweep",
                expired=report.expired,
                repaired=report.repaired,
                orphans_released=report.orphans_released,
                conflicts=report.conflicts,
            )
        return report

    async def _expire_stale(
        self, cutoff: datetime, now: datetime, report: ReconcileReport
    ) -> None:
        rows = (
            await self.db.execute(
                select(UsageRequest.id, CreditReservation.state)
                .outerjoin(CreditReservation, CreditReservation.id == UsageRequest.id)
                .where(
                    UsageRequest.status == UsageStatus.RESERVED.value,
                    UsageRequest.created_at < cutoff,
                )
                .order_by(UsageRequest.created_at)
                .limit(self.settings.RECONCILE_BATCH_SIZE)
            )
        ).all()
        await self.db.commit()

        for request_id, reservation_state in rows:
            # The ledger already settled; only the usage row lags behind
            if reservation_state in _STATUS_FOR_RESERVATION:
                status = _STATUS_FOR_RESERVATION[reservation_state]
                if await self._mark(request_id, status, now):
                    report.repaired += 1
                continue

            if not await self._mark(request_id, UsageStatus.EXPIRED, now):
                # Settled by the orchestrator since the query
                continue

            self.logger.warning("settlement.expired", request_id=request_id)
            report.expired += 1
            if reservation_state is not None:
                await self._settle(request_id, ReservationState.RELEASED, now, report)

    async def _repair_settled(self, now: datetime, report: ReconcileReport) -> None:
        rows = (
            await self.db.execute(
                select(UsageRequest.id, UsageRequest.status)
                .join(CreditReservation, CreditReservation.id == UsageRequest.id)
                .where(
                    CreditReservation.state == ReservationState.HELD.value,
                    UsageRequest.status != UsageStatus.RESERVED.value,
                )
                .limit(self.settings.RECONCILE_BATCH_SIZE)
            )
        ).all()
        await self.db.commit()

        for request_id, status in rows:
            target = (
                ReservationState.COMMITTED
                if status == UsageStatus.COMMITTED.value
                else ReservationState.RELEASED
            )
            if await self._settle(request_id, target, now, report):
                report.repaired += 1

    async def _release_orphans(
        self, cutoff: datetime, now: datetime, report: ReconcileReport
    ) -> None:
        rows = (
            await self.db.execute(
                select(CreditReservation.id)
                .outerjoin(UsageRequest, UsageRequest.id == CreditReservation.id)
                .where(
                    and_(
                        CreditReservation.state == ReservationState.HELD.value,
                        CreditReservation.created_at < cutoff,
                        UsageRequest.id.is_(None),
                    )
                )
                .limit(self.settings.RECONCILE_BATCH_SIZE)
            )
        ).scalars().all()
        await self.db.commit()

        for reservation_id in rows:
            if await self._settle(reservation_id, ReservationState.RELEASED, now, report):
                report.orphans_released += 1

    async def _mark(self, request_id: str, status: UsageStatus, now: datetime) -> bool:
        values = {"status": status.value, "settled_at": now}
        if status == UsageStatus.EXPIRED:
            values["error_code"] = MessageCode.GENERATION_TEMPORARILY_FAILED.value
        try:
            result = await self.db.execute(
                update(UsageRequest)
                .where(
                    UsageRequest.id == request_id,
                    UsageRequest.status == UsageStatus.RESERVED.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageUnavailableError("usage") from e
        return result.rowcount == 1

    async def _settle(
        self,
        reservation_id: str,
        target: ReservationState,
        now: datetime,
        report: ReconcileReport,
    ) -> bool:
        try:
            if target == ReservationState.COMMITTED:
                return await self.ledger.commit(reservation_id, now=now)
            return await self.ledger.release(
                reservation_id, reason="reconciler", now=now
            )
        except ReservationConflictError as e:
            report.conflicts += 1
            self.logger.error(
                "settlement.conflict",
                reservation_id=reservation_id,
                attempted=e.attempted,
                current_state=e.current_state,
            )
            return False


async def run_forever(
    session_factory: async_sessionmaker[AsyncSession],
    settings: SettlementSettings | None = None,
    quota_settings: QuotaSettings | None = None,
) -> None:
    """Sweep on an interval until cancelled."""
    settings = settings or SettlementSettings()
    logger.info(
        "Settlement reconciler started",
        interval_seconds=settings.RECONCILE_INTERVAL_SECONDS,
        grace_seconds=settings.RESERVATION_GRACE_SECONDS,
    )
    while True:
        try:
            async with session_factory() as db:
                reconciler = SettlementReconciler(
                    db, CreditLedger(db, quota_settings), settings
                )
                await reconciler.sweep()
        except (StorageUnavailableError, SQLAlchemyError) as e:
            logger.error("Settlement sweep failed", error_type=type(e).__name__)
        await asyncio.sleep(settings.RECONCILE_INTERVAL_SECONDS)


async def _run_once() -> None:
    from src.database.connection import AsyncSessionLocal, async_engine

    try:
        async with AsyncSessionLocal() as db:
            report = await SettlementReconciler(db).sweep()
        logger.info(
            "Settlement sweep finished",
            expired=report.expired,
            repaired=report.repaired,
            orphans_released=report.orphans_released,
            conflicts=report.conflicts,
        )
    finally:
        await async_engine.dispose()


if __name__ == "__main__":
    from src.utils.logger import setup_logging
    from src.utils.settings.app import AppSettings

    setup_logging(is_production=AppSettings().ENVIRONMENT.upper() == "PROD")
    asyncio.run(_run_once())
