"""Feature availability endpoint."""
from fastapi import APIRouter, Depends

from entitlements.api.deps import get_quota_gate, get_tenant_id
from entitlements.schemas.feature import FeatureCheckResult
from entitlements.services.quota_gate import QuotaGate

router = APIRouter(prefix="/features", tags=["Features"])


@router.get("/{feature_key}", response_model=FeatureCheckResult)
async def check_feature(
    feature_key: str,
    tenant_id: str = Depends(get_tenant_id),
    gate: QuotaGate = Depends(get_quota_gate),
) -> FeatureCheckResult:
    """Whether the tenant's effective plan includes a feature, and at which level."""
    return await gate.check_feature(tenant_id, feature_key)
