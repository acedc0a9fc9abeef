"""Feature gate: plan-based feature availability for a tenant."""
from dataclasses import dataclass
from datetime import datetime

import structlog

from entitlements.exceptions import DuplicateSubscriptionError
from entitlements.metrics import feature_checks_total
from entitlements.models.base import utcnow
from entitlements.models.subscription import Subscription, SubscriptionStatus
from entitlements.schemas.feature import FeatureCheckResult
from entitlements.schemas.plan import Plan
from entitlements.services.plan_catalog import PlanCatalog
from entitlements.services.subscription_store import SubscriptionStore

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EffectivePlan:
    """The plan and status that actually govern a tenant right now."""

    tenant_id: str
    subscription: Subscription | None  # None when the tenant has no row
    plan: Plan
    status: SubscriptionStatus

    @property
    def is_fallback(self) -> bool:
        """True when no persisted subscription backs this resolution."""
        return self.subscription is None or self.subscription.id is None

    @property
    def subscription_plan_id(self) -> str | None:
        return self.subscription.plan_id if self.subscription is not None else None


def resolve_effective_plan(
    tenant_id: str,
    subscription: Subscription | None,
    catalog: PlanCatalog,
    now: datetime | None = None,
) -> EffectivePlan:
    """
    Work out which plan's features and limits apply to a subscription.

    Canceled and inactive subscriptions, and trials whose end has passed,
    fall back to the free plan. So does a subscription naming a plan the
    catalog does not know.
    """
    free = catalog.free_plan()
    if subscription is None:
        return EffectivePlan(tenant_id, None, free, SubscriptionStatus.ACTIVE)

    now = now or utcnow()
    status = subscription.status
    if (
        status is SubscriptionStatus.TRIALING
        and subscription.trial_end is not None
        and subscription.trial_end <= now
    ):
        status = SubscriptionStatus.INACTIVE

    if not status.is_live:
        return EffectivePlan(tenant_id, subscription, free, status)

    plan = catalog.find_plan(subscription.plan_id)
    if plan is None:
        logger.warning(
            "subscription_plan_unknown",
            tenant_id=tenant_id,
            subscription_id=str(subscription.id),
            plan_id=subscription.plan_id,
        )
        return EffectivePlan(tenant_id, subscription, free, status)

    return EffectivePlan(tenant_id, subscription, plan, status)


class FeatureGate:
    """Answers whether a tenant's plan includes a feature. Fails closed."""

    def __init__(self, store: SubscriptionStore, catalog: PlanCatalog):
        """Initialize feature gate with the subscription store and plan catalog."""
        self.store = store
        self.catalog = catalog

    async def resolve(self, tenant_id: str) -> EffectivePlan:
        """
        Resolve the effective plan for a tenant.

        A tenant with several live subscriptions resolves to the free plan
        with status ``inactive``.

        Raises:
            StoreUnavailableError: If the store fails or times out
        """
        try:
            subscription = await self.store.get_active_subscription(tenant_id)
        except DuplicateSubscriptionError:
            return EffectivePlan(tenant_id, None, self.catalog.free_plan(), SubscriptionStatus.INACTIVE)
        return resolve_effective_plan(tenant_id, subscription, self.catalog)

    async def check_feature(self, tenant_id: str, feature_key: str) -> FeatureCheckResult:
        """
        Evaluate one feature for a tenant.

        Args:
            tenant_id: Tenant identifier
            feature_key: Feature key from the plan catalog

        Returns:
            Feature check result with the effective plan and status
        """
        effective = await self.resolve(tenant_id)
        return self.evaluate(effective, feature_key)

    def evaluate(self, effective: EffectivePlan, feature_key: str) -> FeatureCheckResult:
        """Evaluate a feature against an already resolved plan."""
        level = effective.plan.feature_level(feature_key)
        enabled = level is not None
        label = feature_key if feature_key in self.catalog.feature_keys() else "unknown"
        feature_checks_total.labels(feature=label, enabled=str(enabled).lower()).inc()

        return FeatureCheckResult(
            feature=feature_key,
            enabled=enabled,
            level=level,
            plan_id=effective.plan.id,
            subscription_plan_id=effective.subscription_plan_id,
            status=effective.status,
        )

    async def is_enabled(self, tenant_id: str, feature_key: str) -> bool:
        """Whether the tenant's effective plan includes the feature."""
        result = await self.check_feature(tenant_id, feature_key)
        return result.enabled

    async def get_feature_level(self, tenant_id: str, feature_key: str) -> str | None:
        """Tier label of the feature (e.g. ``basic``, ``premium``), None when disabled."""
        result = await self.check_feature(tenant_id, feature_key)
        return result.level
