"""Subscription lifecycle writes driven by the billing provider integration."""
from datetime import timedelta

import structlog

from entitlements.models.base import utcnow
from entitlements.models.subscription import Subscription, SubscriptionStatus
from entitlements.services.plan_catalog import PlanCatalog
from entitlements.services.subscription_store import SubscriptionStore
from entitlements.utils.periods import period_end_for

logger = structlog.get_logger(__name__)


class SubscriptionService:
    """Service layer for subscription plan and status changes."""

    def __init__(self, store: SubscriptionStore, catalog: PlanCatalog):
        """Initialize subscription service with the store and plan catalog."""
        self.store = store
        self.catalog = catalog

    async def create_subscription(
        self,
        tenant_id: str,
        plan_id: str,
        status: SubscriptionStatus | None = None,
        trial_days: int | None = None,
    ) -> Subscription:
        """
        Create a new subscription.

        Args:
            tenant_id: Tenant identifier
            plan_id: Plan from the catalog
            status: Initial status; trialing when the plan has trial days, else active
            trial_days: Overrides the plan's trial length

        Returns:
            Created subscription

        Raises:
            PlanNotFoundError: If the plan is not in the catalog
            ValueError: If the tenant already has a live subscription
        """
        plan = self.catalog.get_plan(plan_id)

        existing = await self.store.get_active_subscription(tenant_id)
        if existing is not None and existing.status.is_live:
            raise ValueError(f"Tenant {tenant_id} already has a live subscription {existing.id}")

        now = utcnow()
        trial_days = plan.trial_days if trial_days is None else trial_days
        trial_end = now + timedelta(days=trial_days) if trial_days > 0 else None
        if status is None:
            status = SubscriptionStatus.TRIALING if trial_end else SubscriptionStatus.ACTIVE

        subscription = Subscription(
            tenant_id=tenant_id,
            plan_id=plan.id,
            status=status,
            trial_end=trial_end if status is SubscriptionStatus.TRIALING else None,
            current_period_start=now,
            current_period_end=period_end_for(now, plan.interval),
            usage_counts={},
            version=1,
        )
        subscription = await self.store.add_subscription(subscription)

        logger.info(
            "subscription_created",
            tenant_id=tenant_id,
            subscription_id=str(subscription.id),
            plan_id=plan.id,
            status=status.value,
        )
        return subscription

    async def change_plan(self, tenant_id: str, plan_id: str) -> Subscription:
        """
        Move a tenant's subscription to another plan.

        Usage counters are kept; the new plan's limits apply from the next
        admission decision.

        Raises:
            PlanNotFoundError: If the plan is not in the catalog
            ValueError: If the tenant has no subscription
            ConflictError: If the subscription changed concurrently
        """
        plan = self.catalog.get_plan(plan_id)
        subscription = await self._require(tenant_id)
        old_plan_id = subscription.plan_id

        updated = await self.store.update_subscription(subscription.id, subscription.version, plan_id=plan.id)
        logger.info(
            "subscription_plan_changed",
            tenant_id=tenant_id,
            subscription_id=str(subscription.id),
            old_plan_id=old_plan_id,
            new_plan_id=plan.id,
        )
        return updated

    async def set_status(self, tenant_id: str, status: SubscriptionStatus) -> Subscription:
        """
        Change a tenant's subscription status.

        Raises:
            ValueError: If the tenant has no subscription
            ConflictError: If the subscription changed concurrently
        """
        subscription = await self._require(tenant_id)
        old_status = subscription.status

        values = {"status": status}
        if old_status is SubscriptionStatus.TRIALING and status is not SubscriptionStatus.TRIALING:
            values["trial_end"] = None

        updated = await self.store.update_subscription(subscription.id, subscription.version, **values)
        logger.info(
            "subscription_status_changed",
            tenant_id=tenant_id,
            subscription_id=str(subscription.id),
            old_status=old_status.value,
            new_status=status.value,
        )
        return updated

    async def _require(self, tenant_id: str) -> Subscription:
        subscription = await self.store.get_active_subscription(tenant_id)
        if subscription is None:
            raise ValueError(f"Tenant {tenant_id} has no subscription")
        return subscription
