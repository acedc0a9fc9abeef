"""Authorization decision returned by the request-gating facade."""
import enum
from typing import Any

from pydantic import BaseModel, Field

from entitlements.models.usage_type import UsageType
from entitlements.schemas.usage import DenialReason, UsageCheckResult


class DecisionOutcome(str, enum.Enum):
    """Terminal states of one authorization."""

    COMMITTED = "committed"
    DENIED = "denied"


class AuthorizeRequest(BaseModel):
    """Body of an authorization request."""

    feature: str | None = Field(default=None, description="Feature that must be enabled")
    usage: UsageType | None = Field(default=None, description="Usage type to admit and record")
    amount: int = Field(default=1, gt=0, description="Units consumed by this request")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Stored on the usage audit record")


class Decision(BaseModel):
    """Combined feature and usage outcome for one request."""

    outcome: DecisionOutcome
    reason: DenialReason | None = None
    feature: str | None = None
    usage: UsageCheckResult | None = None
    message: str

    @property
    def allowed(self) -> bool:
        """Whether the request may proceed."""
        return self.outcome is DecisionOutcome.COMMITTED

    @classmethod
    def committed(cls, usage: UsageCheckResult | None = None, feature: str | None = None) -> "Decision":
        """Build a committed decision."""
        if usage is None or usage.unlimited:
            message = "Allowed"
        else:
            message = f"{usage.current} of {usage.limit} used"
        return cls(outcome=DecisionOutcome.COMMITTED, usage=usage, feature=feature, message=message)

    @classmethod
    def denied(
        cls,
        reason: DenialReason,
        usage: UsageCheckResult | None = None,
        feature: str | None = None,
    ) -> "Decision":
        """Build a denied decision with a user-facing message."""
        if reason is DenialReason.FEATURE_DISABLED:
            message = f"Feature '{feature}' is not available on your current plan. Upgrade to continue."
        elif reason is DenialReason.LIMIT_EXCEEDED and usage is not None:
            message = (
                f"{usage.usage_type.value} limit reached: {usage.current} of {usage.limit} used this period. "
                "Upgrade to continue."
            )
        elif reason is DenialReason.NO_SUBSCRIPTION:
            message = "No subscription could be resolved for this account."
        else:
            message = "Request denied."
        return cls(outcome=DecisionOutcome.DENIED, reason=reason, usage=usage, feature=feature, message=message)
