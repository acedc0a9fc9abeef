"""Usage dashboard endpoint."""
from fastapi import APIRouter, Depends

from entitlements.api.deps import get_quota_gate, get_tenant_id
from entitlements.schemas.usage import UsageSnapshot
from entitlements.services.quota_gate import QuotaGate

router = APIRouter(prefix="/usage", tags=["Usage"])


@router.get("", response_model=UsageSnapshot)
async def get_usage(
    tenant_id: str = Depends(get_tenant_id),
    gate: QuotaGate = Depends(get_quota_gate),
) -> UsageSnapshot:
    """
    Current usage against plan limits for every usage type.

    Unlimited dimensions report ``limit = -1`` and ``percentage = 0``.
    """
    return await gate.get_usage_summary(tenant_id)
