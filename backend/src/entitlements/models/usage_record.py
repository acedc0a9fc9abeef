"""Append-only usage audit trail."""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import relationship

from entitlements.models.base import Base, JSONType, utcnow


class UsageRecord(Base):
    """
    One recorded usage event.

    Written in the same transaction as the subscription counter it mirrors;
    admission decisions never read it.
    """

    __tablename__ = "usage_records"

    tenant_id = Column(String, nullable=False, index=True)
    subscription_id = Column(Uuid(as_uuid=True), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    usage_type = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow, index=True)
    bypassed_limits = Column(Boolean, nullable=False, default=False)
    extra_metadata = Column(JSONType, nullable=False, default=dict)

    # Relationships
    subscription = relationship("Subscription", back_populates="usage_records")

    def __repr__(self) -> str:
        """String representation."""
        return f"<UsageRecord(id={self.id}, tenant_id={self.tenant_id}, usage_type={self.usage_type}, amount={self.amount})>"
