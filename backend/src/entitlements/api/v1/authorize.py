"""Authorization endpoints used by product services before metered work."""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from entitlements.api.deps import get_quota_gate, get_tenant_id
from entitlements.schemas.decision import AuthorizeRequest, Decision
from entitlements.schemas.usage import DenialReason
from entitlements.services.quota_gate import QuotaGate

router = APIRouter(prefix="/authorize", tags=["Authorization"])

# Limit denials are retryable after an upgrade or reset; everything else is a hard refusal
DENIAL_STATUS = {
    DenialReason.LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    DenialReason.FEATURE_DISABLED: status.HTTP_403_FORBIDDEN,
    DenialReason.NO_SUBSCRIPTION: status.HTTP_403_FORBIDDEN,
}


def decision_response(decision: Decision) -> JSONResponse:
    """Render a decision with the status code matching its outcome."""
    status_code = status.HTTP_200_OK
    if not decision.allowed:
        status_code = DENIAL_STATUS.get(decision.reason, status.HTTP_403_FORBIDDEN)
    return JSONResponse(status_code=status_code, content=decision.model_dump(mode="json"))


@router.post(
    "",
    response_model=Decision,
    responses={403: {"model": Decision}, 429: {"model": Decision}},
)
async def authorize(
    body: AuthorizeRequest,
    tenant_id: str = Depends(get_tenant_id),
    gate: QuotaGate = Depends(get_quota_gate),
) -> JSONResponse:
    """
    Authorize a request and record its usage.

    - **feature**: Feature that must be enabled (optional)
    - **usage**: Usage type to admit and count (optional)
    - **amount**: Units consumed (default: 1)
    - **metadata**: Stored on the usage audit record

    Returns 200 when committed, 429 when a usage limit is reached and 403
    for any other denial.
    """
    decision = await gate.authorize(
        tenant_id,
        feature=body.feature,
        usage=body.usage,
        amount=body.amount,
        metadata=body.metadata,
    )
    return decision_response(decision)


@router.post(
    "/check",
    response_model=Decision,
    responses={403: {"model": Decision}, 429: {"model": Decision}},
)
async def check(
    body: AuthorizeRequest,
    tenant_id: str = Depends(get_tenant_id),
    gate: QuotaGate = Depends(get_quota_gate),
) -> JSONResponse:
    """Pre-flight check with the same rules as authorize; nothing is recorded."""
    decision = await gate.check(tenant_id, feature=body.feature, usage=body.usage, amount=body.amount)
    return decision_response(decision)
