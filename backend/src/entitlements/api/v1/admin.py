"""Administrative endpoints for usage resets."""
from fastapi import APIRouter, Depends

from entitlements.api.deps import get_quota_gate, require_admin
from entitlements.schemas.usage import UsageResetRequest, UsageResetResponse
from entitlements.services.quota_gate import QuotaGate

router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin)])


@router.post("/usage/reset", response_model=UsageResetResponse)
async def reset_tenant_usage(
    body: UsageResetRequest,
    gate: QuotaGate = Depends(get_quota_gate),
) -> UsageResetResponse:
    """
    Zero a tenant's usage counters without moving its billing period.

    Returns ``reset: false`` when the tenant has no subscription.
    """
    subscription = await gate.reset_tenant_usage(body.tenant_id, actor=body.actor)
    if subscription is None:
        return UsageResetResponse(tenant_id=body.tenant_id, reset=False)
    return UsageResetResponse(
        tenant_id=body.tenant_id,
        reset=True,
        subscription_id=str(subscription.id),
        usage=dict(subscription.usage_counts or {}),
    )


@router.post("/resets/run")
async def run_scheduled_resets(gate: QuotaGate = Depends(get_quota_gate)) -> dict:
    """Run the period reset sweep now and return its report."""
    report = await gate.run_scheduled_resets()
    return report.to_dict()
