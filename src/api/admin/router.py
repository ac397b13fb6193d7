"""Read-only operator views over the ledger, plus bonus grants."""

from fastapi import APIRouter, Query, Request

from src.api.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from src.api.core.decorators.admin import admin
from src.api.core.dependencies import (
    AnalyticsServiceDep,
    CreditLedgerDep,
    SettlementReconcilerDep,
    WindowCounterStoreDep,
)
from src.api.core.messages import APIResponse, MessageCode, Paginated, PaginationInfo
from src.database.models import TransactionKind, UsageStatus
from .schemas import (
    AdminTransactionModel,
    AdminTransactionsResponse,
    AdminUsageRequestModel,
    AdminUsageRequestsResponse,
    BonusGrantModel,
    BonusGrantRequest,
    BonusGrantResponse,
    CreditStatsModel,
    CreditStatsResponse,
    RateWindowsResponse,
    ReconciliationModel,
    ReconciliationResponse,
    SweepReportModel,
    SweepReportResponse,
)

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
)


def _pagination(total: int, limit: int, offset: int, page_size: int) -> PaginationInfo:
    return PaginationInfo(
        total=total,
        limit=limit,
        offset=offset,
        has_more=offset + page_size < total,
    )


@router.get("/transactions", response_model=AdminTransactionsResponse)
@admin()
async def list_transactions(
    request: Request,
    analytics_service: AnalyticsServiceDep,
    identity_key: str | None = Query(default=None, max_length=128),
    kind: TransactionKind | None = Query(default=None),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
) -> AdminTransactionsResponse:
    records, total = await analytics_service.list_transactions(
        identity_key=identity_key, kind=kind, limit=limit, offset=offset
    )
    items = [AdminTransactionModel.model_validate(r) for r in records]
    return APIResponse.success(
        data=Paginated[AdminTransactionModel](
            items=items, pagination=_pagination(total, limit, offset, len(items))
        )
    )


@router.get("/usage-requests", response_model=AdminUsageRequestsResponse)
@admin()
async def list_usage_requests(
    request: Request,
    analytics_service: AnalyticsServiceDep,
    status: UsageStatus | None = Query(default=None),
    identity_key: str | None = Query(default=None, max_length=128),
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
) -> AdminUsageRequestsResponse:
    """Usage requests by status; ``status=reserved`` lists in-flight work."""
    records, total = await analytics_service.list_usage_requests(
        status=status, identity_key=identity_key, limit=limit, offset=offset
    )
    items = [AdminUsageRequestModel.model_validate(r) for r in records]
    return APIResponse.success(
        data=Paginated[AdminUsageRequestModel](
            items=items, pagination=_pagination(total, limit, offset, len(items))
        )
    )


@router.get("/rate-windows/{identity_key}", response_model=RateWindowsResponse)
@admin()
async def get_rate_windows(
    request: Request,
    identity_key: str,
    store: WindowCounterStoreDep,
) -> RateWindowsResponse:
    return APIResponse.success(data=await store.snapshot(identity_key))


@router.get("/stats", response_model=CreditStatsResponse)
@admin()
async def get_credit_stats(
    request: Request,
    analytics_service: AnalyticsServiceDep,
) -> CreditStatsResponse:
    stats = await analytics_service.credit_stats()
    return APIResponse.success(data=CreditStatsModel(**stats))


@router.get("/reconciliation/{identity_key}", response_model=ReconciliationResponse)
@admin()
async def get_reconciliation(
    request: Request,
    identity_key: str,
    ledger: CreditLedgerDep,
) -> ReconciliationResponse:
    """Stored balance against the replayed transaction log."""
    report = await ledger.reconcile_check(identity_key)
    return APIResponse.success(
        data=ReconciliationModel(
            identity_key=report.identity_key,
            stored_total=report.stored_total,
            replayed_total=report.replayed_total,
            consistent=report.consistent,
        )
    )


@router.post("/credits/bonus", response_model=BonusGrantResponse)
@admin()
async def grant_bonus_credits(
    request: Request,
    body: BonusGrantRequest,
    ledger: CreditLedgerDep,
) -> BonusGrantResponse:
    applied = await ledger.add_credits(
        body.identity_key,
        body.amount,
        TransactionKind.BONUS_GRANT,
        reference=body.reference,
        description=body.description or "Bonus credits",
    )
    return APIResponse.success(
        message_code=(
            MessageCode.CREDITS_ADDED if applied else MessageCode.DUPLICATE_EVENT_IGNORED
        ),
        data=BonusGrantModel(
            identity_key=body.identity_key, reference=body.reference, applied=applied
        ),
    )


@router.post("/settlement/sweep", response_model=SweepReportResponse)
@admin()
async def run_settlement_sweep(
    request: Request,
    reconciler: SettlementReconcilerDep,
) -> SweepReportResponse:
    """Run one reconciliation pass now instead of waiting for the worker."""
    report = await reconciler.sweep()
    return APIResponse.success(
        data=SweepReportModel(
            expired=report.expired,
            repaired=report.repaired,
            orphans_released=report.orphans_released,
            conflicts=report.conflicts,
        )
    )
