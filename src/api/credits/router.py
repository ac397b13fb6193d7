"""Credits domain router."""

from fastapi import APIRouter, Query, Response

from src.api.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from src.api.core.dependencies import CreditLedgerDep, CurrentIdentityDep
from src.api.core.messages import APIResponse, MessageCode, Paginated, PaginationInfo
from src.api.core.middleware.identity import attach_session_token
from .schemas import (
    CreditTransactionModel,
    CreditTransactionsResponse,
    CreditsSummaryModel,
    CreditsSummaryResponse,
)

router = APIRouter(
    prefix="/credits",
    tags=["credits"],
)


@router.get("/balance", response_model=CreditsSummaryResponse)
async def get_credits_balance(
    response: Response,
    identity: CurrentIdentityDep,
    ledger: CreditLedgerDep,
) -> CreditsSummaryResponse:
    """Credit summary for the caller, with today's free allowance applied."""
    summary = await ledger.summary(identity.key)
    attach_session_token(response, identity)
    return APIResponse.success(
        message_code=MessageCode.SUCCESS,
        data=CreditsSummaryModel(
            identity_key=summary.identity_key,
            total_available=summary.total_available,
            free_remaining=summary.free_remaining,
            free_daily_allowance=summary.free_daily_allowance,
            used_today=summary.free_used_today,
            bonus_credits=summary.bonus_credits,
            paid_credits=summary.paid_credits,
            total_purchased=summary.total_purchased,
            total_consumed=summary.total_consumed,
            next_free_reset=summary.next_free_reset,
        ),
    )


@router.get("/transactions", response_model=CreditTransactionsResponse)
async def get_credit_transactions(
    identity: CurrentIdentityDep,
    ledger: CreditLedgerDep,
    limit: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
) -> CreditTransactionsResponse:
    """Ledger history for the caller, newest first."""
    records, total_records = await ledger.transactions(identity.key, limit, offset)
    records_data = [CreditTransactionModel.model_validate(r) for r in records]
    pagination_info = PaginationInfo(
        total=total_records,
        limit=limit,
        offset=offset,
        has_more=offset + len(records_data) < total_records,
    )
    paginated_data = Paginated[CreditTransactionModel](
        items=records_data,
        pagination=pagination_info,
    )
    return APIResponse.success(message_code=MessageCode.SUCCESS, data=paginated_data)
