"""Usage accounting: limit checks and concurrency-safe counter increments."""
from datetime import datetime
from typing import Any

import structlog

from entitlements.exceptions import ConflictError, DuplicateSubscriptionError, TransientConflictError
from entitlements.metrics import quota_bypass_total, quota_cas_conflicts_total, quota_decisions_total
from entitlements.models.base import utcnow
from entitlements.models.subscription import Subscription
from entitlements.models.usage_type import UsageType
from entitlements.schemas.plan import UNLIMITED, Plan
from entitlements.schemas.usage import DenialReason, UsageCheckResult
from entitlements.services.feature_gate import EffectivePlan, resolve_effective_plan
from entitlements.services.plan_catalog import PlanCatalog
from entitlements.services.subscription_store import SubscriptionStore
from entitlements.utils.periods import next_period

logger = structlog.get_logger(__name__)


def validate_amount(amount: int) -> None:
    """Raise ValueError unless amount is a positive integer."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"Usage amount must be a positive integer, got {amount!r}")


def build_result(
    plan: Plan,
    usage_type: UsageType,
    current: int,
    allowed: bool,
    reason: DenialReason | None = None,
    bypassed_limits: bool = False,
) -> UsageCheckResult:
    """Assemble a usage result with limit and remaining figures from the plan."""
    limit = plan.limit_for(usage_type)
    unlimited = limit == UNLIMITED
    return UsageCheckResult(
        allowed=allowed,
        usage_type=usage_type,
        reason=reason,
        current=current,
        limit=limit,
        remaining=None if unlimited else max(0, limit - current),
        unlimited=unlimited,
        plan_id=plan.id,
        feature=usage_type.feature_key if reason is DenialReason.FEATURE_DISABLED else None,
        bypassed_limits=bypassed_limits,
    )


def current_usage(subscription: Subscription, usage_type: UsageType, now: datetime) -> int:
    """Consumed amount in the current period; an ended but not yet reset period counts as empty."""
    if subscription.current_period_end <= now:
        return 0
    return subscription.usage_for(usage_type)


class UsageAccounting:
    """
    Admits and records metered usage against a tenant's plan limits.

    The authoritative counter lives on the subscription row. Every
    increment is a read, an evaluation against the plan, and a
    version-conditioned write; a lost race restarts the whole sequence.
    """

    def __init__(self, store: SubscriptionStore, catalog: PlanCatalog, max_attempts: int = 3):
        """
        Initialize usage accounting.

        Args:
            store: Subscription record accessor
            catalog: Plan catalog
            max_attempts: Read-evaluate-increment attempts before escalating a conflict
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.store = store
        self.catalog = catalog
        self.max_attempts = max_attempts

    async def check_limit(
        self, tenant_id: str, usage_type: UsageType, requested_amount: int = 1
    ) -> UsageCheckResult:
        """
        Check whether ``requested_amount`` more units would be admitted, without recording anything.

        Args:
            tenant_id: Tenant identifier
            usage_type: Usage dimension
            requested_amount: Units the caller intends to consume

        Returns:
            Usage check result; ``current`` is the amount consumed so far

        Raises:
            ValueError: If requested_amount is not a positive integer
            StoreUnavailableError: If the store fails or times out
        """
        validate_amount(requested_amount)
        try:
            subscription = await self.store.effective_subscription(tenant_id)
        except DuplicateSubscriptionError:
            return self._no_subscription(usage_type)

        now = utcnow()
        effective = resolve_effective_plan(tenant_id, subscription, self.catalog, now)
        current = current_usage(subscription, usage_type, now)
        denial = self._evaluate(effective, usage_type, current, requested_amount, enforce_limit=True)
        if denial is not None:
            return denial
        return build_result(effective.plan, usage_type, current, allowed=True)

    async def record_usage(
        self,
        tenant_id: str,
        usage_type: UsageType,
        amount: int = 1,
        metadata: dict[str, Any] | None = None,
        bypass_limits: bool = False,
        actor: str | None = None,
    ) -> UsageCheckResult:
        """
        Admit and record usage.

        The associated feature is checked first, then the limit, then the
        counter is incremented with a version-conditioned write. Unlimited
        usage types skip the limit evaluation but are still counted.

        Args:
            tenant_id: Tenant identifier
            usage_type: Usage dimension
            amount: Units consumed
            metadata: Stored on the usage audit record
            bypass_limits: Privileged path that skips the limit evaluation
            actor: Who requested the bypass; required when bypass_limits is set

        Returns:
            Usage check result; on success ``current`` is the amount after this increment

        Raises:
            ValueError: If amount is not a positive integer, or a bypass has no actor
            TransientConflictError: If the counter kept changing across all attempts
            StoreUnavailableError: If the store fails or times out
        """
        validate_amount(amount)
        if bypass_limits and not actor:
            raise ValueError("An actor is required to bypass usage limits")

        audit_metadata = dict(metadata or {})
        if bypass_limits:
            audit_metadata["bypass_actor"] = actor

        for attempt in range(1, self.max_attempts + 1):
            try:
                subscription = await self.store.ensure_subscription(tenant_id)
            except DuplicateSubscriptionError:
                return self._deny(tenant_id, self._no_subscription(usage_type))

            now = utcnow()
            if subscription.current_period_end <= now:
                subscription = await self._roll_over(subscription, now)

            effective = resolve_effective_plan(tenant_id, subscription, self.catalog, now)
            current = subscription.usage_for(usage_type)
            denial = self._evaluate(effective, usage_type, current, amount, enforce_limit=not bypass_limits)
            if denial is not None:
                return self._deny(tenant_id, denial)

            try:
                updated = await self.store.compare_and_increment(
                    subscription.id,
                    usage_type,
                    amount,
                    expected_version=subscription.version,
                    audit={"bypassed_limits": bypass_limits, "metadata": audit_metadata},
                )
            except ConflictError:
                quota_cas_conflicts_total.labels(usage_type=usage_type.value).inc()
                logger.info(
                    "usage_cas_conflict",
                    tenant_id=tenant_id,
                    usage_type=usage_type.value,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                )
                continue

            result = build_result(
                effective.plan,
                usage_type,
                updated.usage_for(usage_type),
                allowed=True,
                bypassed_limits=bypass_limits,
            )
            quota_decisions_total.labels(usage_type=usage_type.value, outcome="committed", reason="none").inc()
            if bypass_limits:
                quota_bypass_total.labels(usage_type=usage_type.value).inc()
                logger.warning(
                    "usage_limits_bypassed",
                    tenant_id=tenant_id,
                    usage_type=usage_type.value,
                    amount=amount,
                    actor=actor,
                    current=result.current,
                    limit=result.limit,
                )
            else:
                logger.info(
                    "usage_recorded",
                    tenant_id=tenant_id,
                    usage_type=usage_type.value,
                    amount=amount,
                    current=result.current,
                    limit=result.limit,
                )
            return result

        return await self._after_conflicts(tenant_id, usage_type, amount, bypass_limits)

    async def _after_conflicts(
        self, tenant_id: str, usage_type: UsageType, amount: int, bypass_limits: bool
    ) -> UsageCheckResult:
        # Every conflict means another writer committed; if they filled the
        # counter the honest answer is a limit denial, not a retryable error.
        subscription = await self.store.get_active_subscription(tenant_id)
        if subscription is not None and not bypass_limits:
            now = utcnow()
            effective = resolve_effective_plan(tenant_id, subscription, self.catalog, now)
            current = current_usage(subscription, usage_type, now)
            denial = self._evaluate(effective, usage_type, current, amount, enforce_limit=True)
            if denial is not None and denial.reason is DenialReason.LIMIT_EXCEEDED:
                return self._deny(tenant_id, denial)

        logger.warning(
            "usage_conflict_exhausted",
            tenant_id=tenant_id,
            usage_type=usage_type.value,
            attempts=self.max_attempts,
        )
        quota_decisions_total.labels(
            usage_type=usage_type.value, outcome="denied", reason=DenialReason.TRANSIENT_CONFLICT.value
        ).inc()
        raise TransientConflictError(tenant_id, usage_type.value, self.max_attempts)

    async def _roll_over(self, subscription: Subscription, now: datetime) -> Subscription:
        plan = self.catalog.find_plan(subscription.plan_id) or self.catalog.free_plan()
        start, end = next_period(subscription.current_period_end, now, plan.interval)
        logger.info(
            "usage_period_rollover",
            tenant_id=subscription.tenant_id,
            subscription_id=str(subscription.id),
            previous_period_end=subscription.current_period_end.isoformat(),
        )
        return await self.store.reset_usage_for_period(subscription.id, start, end)

    @staticmethod
    def _evaluate(
        effective: EffectivePlan,
        usage_type: UsageType,
        current: int,
        amount: int,
        enforce_limit: bool,
    ) -> UsageCheckResult | None:
        """Return a denial result, or None when the usage is admitted."""
        plan = effective.plan
        feature = usage_type.feature_key
        if feature is not None and not plan.has_feature(feature):
            return build_result(plan, usage_type, current, allowed=False, reason=DenialReason.FEATURE_DISABLED)

        if not enforce_limit or plan.is_unlimited(usage_type):
            return None

        if current + amount > plan.limit_for(usage_type):
            return build_result(plan, usage_type, current, allowed=False, reason=DenialReason.LIMIT_EXCEEDED)
        return None

    def _no_subscription(self, usage_type: UsageType) -> UsageCheckResult:
        return UsageCheckResult(
            allowed=False,
            usage_type=usage_type,
            reason=DenialReason.NO_SUBSCRIPTION,
            remaining=0,
        )

    def _deny(self, tenant_id: str, result: UsageCheckResult) -> UsageCheckResult:
        quota_decisions_total.labels(
            usage_type=result.usage_type.value, outcome="denied", reason=result.reason.value
        ).inc()
        logger.info(
            "usage_denied",
            tenant_id=tenant_id,
            usage_type=result.usage_type.value,
            reason=result.reason.value,
            current=result.current,
            limit=result.limit,
            plan_id=result.plan_id,
        )
        return result
