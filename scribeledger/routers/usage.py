"""
Usage and quota endpoints.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from scribeledger.auth import AuthenticatedUser, get_authenticated_user
from scribeledger.billing.quota import QuotaDecision, QuotaEvaluator
from scribeledger.billing.usage_tracking import UsageRecorder
from scribeledger.dependencies import get_quota_evaluator, get_usage_recorder

router = APIRouter(prefix="/usage", tags=["Usage"])


class QuotaCheckRequest(BaseModel):
    required_minutes: int = Field(..., ge=0)
    allow_byok: bool = False


class UsageResponse(BaseModel):
    """Current billing period usage."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_minutes: int
    event_count: int
    billing_period: str
    tier: str
    limit: int
    remaining_minutes: int
    is_over_limit: bool


@router.post("/check", response_model=QuotaDecision)
async def check_quota(
    body: QuotaCheckRequest,
    user: AuthenticatedUser = Depends(get_authenticated_user),
    evaluator: QuotaEvaluator = Depends(get_quota_evaluator),
) -> QuotaDecision:
    """
    Decide whether the caller may start an operation.

    A denial is a normal 200 response with ``allowed: false``.
    """
    return await evaluator.check_quota(
        user.user_id, body.required_minutes, allow_byok=body.allow_byok
    )


@router.get("/current", response_model=UsageResponse)
async def get_current_usage(
    user: AuthenticatedUser = Depends(get_authenticated_user),
    recorder: UsageRecorder = Depends(get_usage_recorder),
) -> UsageResponse:
    summary = await recorder.get_usage_summary(user.user_id)
    return UsageResponse(**summary.model_dump())
