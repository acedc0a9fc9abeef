"""SQLAlchemy ORM models for the entitlements service."""
# Import all models here to ensure they are registered with Alembic

from entitlements.models.base import Base, utcnow
from entitlements.models.subscription import LIVE_STATUSES, Subscription, SubscriptionStatus
from entitlements.models.usage_record import UsageRecord
from entitlements.models.usage_type import UsageType

__all__ = [
    "Base",
    "LIVE_STATUSES",
    "Subscription",
    "SubscriptionStatus",
    "UsageRecord",
    "UsageType",
    "utcnow",
]
