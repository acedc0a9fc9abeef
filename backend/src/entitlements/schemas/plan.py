"""Pydantic schemas for plan definitions."""
import enum
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from entitlements.models.usage_type import UsageType

# Limit sentinel meaning "no cap"
UNLIMITED = -1

# Feature levels that count as "off"
DISABLED_LEVELS = frozenset({"none", "false", ""})


class PlanInterval(enum.Enum):
    """Billing interval for plans."""

    MONTH = "month"
    YEAR = "year"


FeatureValue = bool | str


class Plan(BaseModel):
    """
    Immutable plan definition.

    ``features`` maps a feature key to a boolean or a level name
    (``basic``/``enhanced``/``premium``...). ``limits`` maps usage types to
    an integer cap or :data:`UNLIMITED`; a usage type absent from the map is
    capped at zero.

    Both maps are read-only views; a plan cannot be changed after it is
    built, including in place.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Plan slug (free, pro, business...)")
    name: str = Field(..., min_length=1, description="Human readable plan name")
    tier: int = Field(..., ge=0, description="Ordered rank, higher is more capable")
    interval: PlanInterval = Field(default=PlanInterval.MONTH, description="Billing period length")
    trial_days: int = Field(default=0, ge=0, description="Trial length for new subscriptions")
    features: Mapping[str, FeatureValue] = Field(default_factory=dict)
    limits: Mapping[UsageType, int] = Field(default_factory=dict)

    @field_validator("limits")
    @classmethod
    def validate_limits(cls, v: Mapping[UsageType, int]) -> Mapping[UsageType, int]:
        """Reject negative limits other than the unlimited sentinel."""
        for usage_type, limit in v.items():
            if limit < 0 and limit != UNLIMITED:
                raise ValueError(f"limit for {usage_type.value} must be >= 0 or {UNLIMITED} (unlimited)")
        return v

    @field_validator("features", "limits", mode="after")
    @classmethod
    def freeze_mapping(cls, v: Mapping[Any, Any]) -> Mapping[Any, Any]:
        """Store a private copy behind a read-only view."""
        return MappingProxyType(dict(v))

    @field_serializer("features", "limits")
    def serialize_mapping(self, v: Mapping[Any, Any]) -> dict:
        return dict(v)

    def limit_for(self, usage_type: UsageType) -> int:
        """Numeric limit for a usage type; missing entries are a hard deny."""
        return self.limits.get(usage_type, 0)

    def is_unlimited(self, usage_type: UsageType) -> bool:
        """Whether the usage type has no cap on this plan."""
        return self.limit_for(usage_type) == UNLIMITED

    def feature_level(self, feature_key: str) -> str | None:
        """Level name for a feature, ``None`` when the feature is off or unknown."""
        value = self.features.get(feature_key)
        if value is None or value is False:
            return None
        if value is True:
            return "enabled"
        if str(value).lower() in DISABLED_LEVELS:
            return None
        return str(value)

    def has_feature(self, feature_key: str) -> bool:
        """Whether a feature is on; unknown keys are off."""
        return self.feature_level(feature_key) is not None


class PlanCatalogFile(BaseModel):
    """Shape of the optional JSON catalog file."""

    plans: list[Plan] = Field(..., min_length=1)


class PlanList(BaseModel):
    """Schema for the plan listing endpoint."""

    items: list[Plan]
    total: int
