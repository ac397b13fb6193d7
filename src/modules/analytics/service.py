from datetime import datetime, timedelta

from sqlalchemy import func, select

from src.core.base import BaseService
from src.database.models import (
    CreditBalance,
    CreditTransaction,
    TransactionKind,
    UsageRequest,
    UsageStatus,
)
from src.utils.time_windows import utc_now, window_bounds
from src.core.enums import WindowKind


class AnalyticsService(BaseService):
    """Read-only reporting over the ledger and usage tables."""

    async def list_transactions(
        self,
        identity_key: str | None = None,
        kind: TransactionKind | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[CreditTransaction], int]:
        filters = []
        if identity_key:
            filters.append(CreditTransaction.identity_key == identity_key)
        if kind:
            filters.append(CreditTransaction.kind == kind.value)

        total = await self.db.scalar(
            select(func.count()).select_from(CreditTransaction).where(*filters)
        )
        result = await self.db.execute(
            select(CreditTransaction)
            .where(*filters)
            .order_by(CreditTransaction.created_at.desc(), CreditTransaction.id)
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def list_usage_requests(
        self,
        status: UsageStatus | None = None,
        identity_key: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[UsageRequest], int]:
        filters = []
        if status:
            filters.append(UsageRequest.status == status.value)
        if identity_key:
            filters.append(UsageRequest.identity_key == identity_key)

        total = await self.db.scalar(
            select(func.count()).select_from(UsageRequest).where(*filters)
        )
        result = await self.db.execute(
            select(UsageRequest)
            .where(*filters)
            .order_by(UsageRequest.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), total or 0

    async def _net_consumed_since(self, since: datetime) -> int:
        """Credits reserved minus credits handed back since ``since``."""
        net = await self.db.scalar(
            select(func.coalesce(func.sum(CreditTransaction.delta), 0)).where(
                CreditTransaction.kind.in_(
                    [TransactionKind.RESERVATION.value, TransactionKind.RELEASE.value]
                ),
                CreditTransaction.created_at >= since,
            )
        )
        return -int(net or 0)

    async def credit_stats(self, now: datetime | None = None) -> dict:
        """Aggregate credit and usage figures for the admin dashboard."""
        now = now or utc_now()
        day_start, _ = window_bounds(WindowKind.DAILY, now)

        paying_identities = await self.db.scalar(
            select(func.count())
            .select_from(CreditBalance)
            .where(CreditBalance.paid_credits > 0)
        )
        outstanding = (
            await self.db.execute(
                select(
                    func.coalesce(func.sum(CreditBalance.paid_credits), 0),
                    func.coalesce(func.sum(CreditBalance.bonus_credits), 0),
                )
            )
        ).one()
        credits_sold_30d = await self.db.scalar(
            select(func.coalesce(func.sum(CreditTransaction.delta), 0)).where(
                CreditTransaction.kind == TransactionKind.PURCHASE.value,
                CreditTransaction.created_at >= now - timedelta(days=30),
            )
        )
        status_rows = (
            await self.db.execute(
                select(UsageRequest.status, func.count()).group_by(UsageRequest.status)
            )
        ).all()

        return {
            "paying_identities": paying_identities or 0,
            "outstanding_paid_credits": int(outstanding[0]),
            "outstanding_bonus_credits": int(outstanding[1]),
            "credits_sold_30d": int(credits_sold_30d or 0),
            "credits_used_today": await self._net_consumed_since(day_start),
            "credits_used_7d": await self._net_consumed_since(now - timedelta(days=7)),
            "requests_by_status": {status: count for status, count in status_rows},
        }
