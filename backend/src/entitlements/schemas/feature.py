"""Feature gate result schema."""
from pydantic import BaseModel

from entitlements.models.subscription import SubscriptionStatus


class FeatureCheckResult(BaseModel):
    """Resolved availability of one feature for one tenant."""

    feature: str
    enabled: bool
    level: str | None = None
    plan_id: str
    subscription_plan_id: str | None = None
    status: SubscriptionStatus
