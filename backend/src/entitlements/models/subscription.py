"""Subscription model holding a tenant's plan reference and usage counters."""
import enum

from sqlalchemy import Column, DateTime, Enum as SQLEnum, Index, Integer, String, text
from sqlalchemy.orm import relationship

from entitlements.models.base import Base, JSONType, utcnow


class SubscriptionStatus(enum.Enum):
    """Subscription lifecycle status."""

    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INACTIVE = "inactive"

    @property
    def is_live(self) -> bool:
        """Live subscriptions keep their plan's features; at most one per tenant."""
        return self in LIVE_STATUSES


LIVE_STATUSES = frozenset(
    {SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE, SubscriptionStatus.PAST_DUE}
)

_LIVE_PREDICATE = text("status IN ('TRIALING', 'ACTIVE', 'PAST_DUE')")


class Subscription(Base):
    """
    A tenant's subscription to a plan.

    ``usage_counts`` is the authoritative per-period consumption map and
    ``version`` is the optimistic-concurrency token every counter write
    is conditioned on.
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        Index(
            "uq_subscriptions_live_tenant",
            "tenant_id",
            unique=True,
            postgresql_where=_LIVE_PREDICATE,
            sqlite_where=_LIVE_PREDICATE,
        ),
        Index("ix_subscriptions_status_period_end", "status", "current_period_end"),
    )

    tenant_id = Column(String, nullable=False, index=True)
    plan_id = Column(String, nullable=False)
    status = Column(SQLEnum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.ACTIVE, index=True)
    trial_end = Column(DateTime, nullable=True)
    current_period_start = Column(DateTime, nullable=False, default=utcnow)
    current_period_end = Column(DateTime, nullable=False, index=True)
    usage_counts = Column(JSONType, nullable=False, default=dict)
    last_reset_at = Column(DateTime, nullable=True)
    version = Column(Integer, nullable=False, default=1)

    # Relationships
    usage_records = relationship("UsageRecord", back_populates="subscription")

    def usage_for(self, usage_type: str) -> int:
        """Consumed amount for a usage type in the current period."""
        key = getattr(usage_type, "value", usage_type)
        return int((self.usage_counts or {}).get(key, 0))

    def __repr__(self) -> str:
        """String representation."""
        return f"<Subscription(id={self.id}, tenant_id={self.tenant_id}, plan_id={self.plan_id}, status={self.status.value})>"
