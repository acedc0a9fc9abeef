"""Plan catalog endpoints."""
from fastapi import APIRouter, Depends, HTTPException, status

from entitlements.api.deps import get_quota_gate
from entitlements.exceptions import PlanNotFoundError
from entitlements.schemas.plan import Plan, PlanList
from entitlements.services.quota_gate import QuotaGate

router = APIRouter(prefix="/plans", tags=["Plans"])


@router.get("", response_model=PlanList)
async def list_plans(gate: QuotaGate = Depends(get_quota_gate)) -> PlanList:
    """List all plans ordered by tier."""
    plans = gate.catalog.list_plans()
    return PlanList(items=plans, total=len(plans))


@router.get("/{plan_id}", response_model=Plan)
async def get_plan(plan_id: str, gate: QuotaGate = Depends(get_quota_gate)) -> Plan:
    """Get a plan by its slug."""
    try:
        return gate.catalog.get_plan(plan_id)
    except PlanNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.to_dict()) from e
