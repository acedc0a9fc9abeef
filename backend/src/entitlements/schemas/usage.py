"""Transient value objects returned by usage accounting."""
import enum

from pydantic import BaseModel, Field

from entitlements.models.usage_type import UsageType


class DenialReason(str, enum.Enum):
    """Why a request was not admitted."""

    LIMIT_EXCEEDED = "limit_exceeded"
    FEATURE_DISABLED = "feature_disabled"
    NO_SUBSCRIPTION = "no_subscription"
    TRANSIENT_CONFLICT = "transient_conflict"
    STORE_UNAVAILABLE = "store_unavailable"


class UsageCheckResult(BaseModel):
    """Outcome of a usage check or record, with numbers for "X of Y" messages."""

    allowed: bool
    usage_type: UsageType
    reason: DenialReason | None = None
    current: int = Field(default=0, description="Consumed amount after this call")
    limit: int = Field(default=0, description="Plan limit, -1 when unlimited")
    remaining: int | None = Field(default=None, description="Remaining amount, None when unlimited")
    unlimited: bool = False
    plan_id: str | None = None
    feature: str | None = Field(default=None, description="Gating feature when denied as feature_disabled")
    bypassed_limits: bool = False


class UsageSnapshotEntry(BaseModel):
    """Dashboard view of one usage dimension."""

    current: int
    limit: int
    percentage: float
    unlimited: bool = False


class UsageSnapshot(BaseModel):
    """Usage of every dimension for one tenant."""

    tenant_id: str
    plan_id: str
    usage: dict[UsageType, UsageSnapshotEntry]


class UsageResetRequest(BaseModel):
    """Administrative request to zero a tenant's counters."""

    tenant_id: str = Field(..., min_length=1)
    actor: str | None = Field(default=None, description="Operator performing the reset, recorded in logs")


class UsageResetResponse(BaseModel):
    """Result of an administrative reset."""

    tenant_id: str
    reset: bool
    subscription_id: str | None = None
    usage: dict[str, int] = Field(default_factory=dict)
