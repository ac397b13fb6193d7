"""Generation domain router."""

from fastapi import APIRouter, Response

from src.api.core.dependencies import (
    CurrentIdentityDep,
    RateLimiterDep,
    RequestContextDep,
    UsageOrchestratorDep,
)
from src.api.core.messages import APIResponse, MessageCode
from src.api.core.exceptions.base import WedAIException
from src.api.core.middleware.identity import attach_session_token, session_token_headers
from src.database.models import UsageStatus
from src.modules.usage.orchestrator import GenerationCommand
from .schemas import (
    GenerationRequest,
    GenerationResponse,
    GenerationResultModel,
    RateLimitStatusModel,
    RateLimitStatusResponse,
    UsageRequestModel,
    UsageRequestResponse,
)

router = APIRouter(
    prefix="/generation",
    tags=["generation"],
)


@router.post("", response_model=GenerationResponse)
async def generate(
    response: Response,
    body: GenerationRequest,
    context: RequestContextDep,
    orchestrator: UsageOrchestratorDep,
) -> GenerationResponse:
    """Admit, charge and run one generation request."""
    try:
        outcome = await orchestrator.handle(
            GenerationCommand(
                request_id=body.request_id,
                prompt=body.prompt,
                count=body.count,
            ),
            context,
        )
    except WedAIException as e:
        e.headers.update(session_token_headers(e.identity))
        raise
    attach_session_token(response, outcome.identity)
    if outcome.rate is not None:
        response.headers["X-RateLimit-Remaining-Hourly"] = str(
            outcome.rate.remaining_hourly
        )
        response.headers["X-RateLimit-Remaining-Daily"] = str(
            outcome.rate.remaining_daily
        )

    return APIResponse.success(
        message_code=MessageCode.GENERATION_COMPLETED,
        data=GenerationResultModel(
            request_id=outcome.request_id,
            status=UsageStatus.COMMITTED.value,
            outputs=outcome.outputs,
            credits_charged=outcome.credits_charged,
            replayed=outcome.replayed,
        ),
    )


@router.get("/limits", response_model=RateLimitStatusResponse)
async def get_limits(
    response: Response,
    identity: CurrentIdentityDep,
    limiter: RateLimiterDep,
) -> RateLimitStatusResponse:
    """Remaining hourly and daily allowance, without consuming any."""
    decision = await limiter.peek(identity)
    attach_session_token(response, identity)
    return APIResponse.success(
        data=RateLimitStatusModel(
            tier=identity.tier.value,
            limit_hourly=decision.limit_hourly,
            limit_daily=decision.limit_daily,
            remaining_hourly=decision.remaining_hourly,
            remaining_daily=decision.remaining_daily,
            hourly_reset_at=decision.hourly_reset_at,
            daily_reset_at=decision.daily_reset_at,
        )
    )


@router.get("/{request_id}", response_model=UsageRequestResponse)
async def get_usage_request(
    request_id: str,
    identity: CurrentIdentityDep,
    orchestrator: UsageOrchestratorDep,
) -> UsageRequestResponse:
    usage = await orchestrator.lookup(request_id, identity)
    return APIResponse.success(data=UsageRequestModel.model_validate(usage))
