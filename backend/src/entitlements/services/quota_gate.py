"""Request-gating facade combining the feature gate and usage accounting."""
import asyncio
import time
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from entitlements.config import Settings
from entitlements.exceptions import DuplicateSubscriptionError, StoreUnavailableError
from entitlements.metrics import authorize_duration_seconds, quota_decisions_total, quota_resets_total
from entitlements.models.base import utcnow
from entitlements.models.subscription import Subscription
from entitlements.models.usage_type import UsageType
from entitlements.schemas.decision import Decision
from entitlements.schemas.feature import FeatureCheckResult
from entitlements.schemas.usage import DenialReason, UsageSnapshot, UsageSnapshotEntry
from entitlements.services.feature_gate import EffectivePlan, FeatureGate, resolve_effective_plan
from entitlements.services.plan_catalog import PlanCatalog
from entitlements.services.subscription_store import SubscriptionStore
from entitlements.services.usage_service import UsageAccounting, current_usage, validate_amount
from entitlements.tracing import get_tracer
from entitlements.workers.quota_reset import QuotaResetScheduler, ResetSweepReport

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)


class QuotaGate:
    """
    Single entry point request handlers call before doing metered work.

    ``authorize`` checks the requested feature, then admits and records the
    requested usage, and returns a :class:`Decision`. Business denials are
    decisions; store failures and missed deadlines raise
    :class:`StoreUnavailableError` and must be treated as a denial.
    """

    def __init__(
        self,
        store: SubscriptionStore,
        catalog: PlanCatalog,
        feature_gate: FeatureGate,
        accounting: UsageAccounting,
        scheduler: QuotaResetScheduler,
        authorize_timeout: float = 5.0,
    ):
        """Initialize the facade with its collaborators."""
        self.store = store
        self.catalog = catalog
        self.feature_gate = feature_gate
        self.accounting = accounting
        self.scheduler = scheduler
        self.authorize_timeout = authorize_timeout

    async def authorize(
        self,
        tenant_id: str,
        feature: str | None = None,
        usage: UsageType | None = None,
        amount: int = 1,
        metadata: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> Decision:
        """
        Authorize one request and record its usage.

        Args:
            tenant_id: Tenant identifier
            feature: Feature that must be enabled, if any
            usage: Usage type to admit and record, if any
            amount: Units consumed
            metadata: Stored on the usage audit record
            timeout: Deadline in seconds, defaults to the configured authorize timeout

        Returns:
            Committed or denied decision

        Raises:
            ValueError: If amount is not a positive integer
            TransientConflictError: If the usage counter kept conflicting
            StoreUnavailableError: If the store failed or the deadline passed
        """
        validate_amount(amount)
        deadline = timeout if timeout is not None else self.authorize_timeout
        started = time.perf_counter()
        try:
            return await asyncio.wait_for(
                self._authorize(tenant_id, feature, usage, amount, metadata),
                timeout=deadline,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                "authorize_deadline_exceeded",
                tenant_id=tenant_id,
                feature=feature,
                usage_type=usage.value if usage else None,
                deadline=deadline,
            )
            if usage is not None:
                quota_decisions_total.labels(
                    usage_type=usage.value, outcome="denied", reason=DenialReason.STORE_UNAVAILABLE.value
                ).inc()
            raise StoreUnavailableError(
                "authorize", f"deadline of {deadline}s exceeded", outcome_unknown=usage is not None
            ) from e
        finally:
            authorize_duration_seconds.observe(time.perf_counter() - started)

    async def _authorize(
        self,
        tenant_id: str,
        feature: str | None,
        usage: UsageType | None,
        amount: int,
        metadata: dict[str, Any] | None,
    ) -> Decision:
        with tracer.start_as_current_span("quota.authorize") as span:
            span.set_attribute("tenant.id", tenant_id)
            if usage is not None:
                span.set_attribute("quota.usage_type", usage.value)
            decision = await self._decide(tenant_id, feature, usage, amount, metadata)
            span.set_attribute("quota.outcome", decision.outcome.value)
            return decision

    async def _decide(
        self,
        tenant_id: str,
        feature: str | None,
        usage: UsageType | None,
        amount: int,
        metadata: dict[str, Any] | None,
    ) -> Decision:
        if feature is not None:
            feature_result = await self.feature_gate.check_feature(tenant_id, feature)
            if not feature_result.enabled:
                logger.info("feature_denied", tenant_id=tenant_id, feature=feature, plan_id=feature_result.plan_id)
                return Decision.denied(DenialReason.FEATURE_DISABLED, feature=feature)

        if usage is None:
            return Decision.committed(feature=feature)

        result = await self.accounting.record_usage(tenant_id, usage, amount, metadata)
        if not result.allowed:
            return Decision.denied(result.reason, usage=result, feature=result.feature or feature)
        return Decision.committed(usage=result, feature=feature)

    async def check(
        self,
        tenant_id: str,
        feature: str | None = None,
        usage: UsageType | None = None,
        amount: int = 1,
    ) -> Decision:
        """Pre-flight version of :meth:`authorize` that records nothing."""
        if feature is not None:
            feature_result = await self.feature_gate.check_feature(tenant_id, feature)
            if not feature_result.enabled:
                return Decision.denied(DenialReason.FEATURE_DISABLED, feature=feature)

        if usage is None:
            return Decision.committed(feature=feature)

        result = await self.accounting.check_limit(tenant_id, usage, amount)
        if not result.allowed:
            return Decision.denied(result.reason, usage=result, feature=result.feature or feature)
        return Decision.committed(usage=result, feature=feature)

    async def record_privileged_usage(
        self,
        tenant_id: str,
        usage: UsageType,
        amount: int,
        actor: str,
        metadata: dict[str, Any] | None = None,
    ) -> Decision:
        """
        Record usage without enforcing the plan limit.

        For administrative corrections and system jobs. The audit record is
        flagged and the bypass is logged with the actor.
        """
        result = await self.accounting.record_usage(
            tenant_id, usage, amount, metadata, bypass_limits=True, actor=actor
        )
        if not result.allowed:
            return Decision.denied(result.reason, usage=result, feature=result.feature)
        return Decision.committed(usage=result)

    async def get_usage_snapshot(self, tenant_id: str) -> dict[UsageType, UsageSnapshotEntry]:
        """
        Current consumption against limits for every usage type.

        ``percentage`` is capped at 100, is 0 for unlimited usage types and
        100 when the limit is 0.
        """
        _, snapshot = await self._usage_snapshot(tenant_id)
        return snapshot

    async def get_usage_summary(self, tenant_id: str) -> UsageSnapshot:
        """Usage snapshot together with the plan its limits come from, taken from one read."""
        effective, snapshot = await self._usage_snapshot(tenant_id)
        return UsageSnapshot(tenant_id=tenant_id, plan_id=effective.plan.id, usage=snapshot)

    async def _usage_snapshot(self, tenant_id: str) -> tuple[EffectivePlan, dict[UsageType, UsageSnapshotEntry]]:
        try:
            subscription = await self.store.effective_subscription(tenant_id)
        except DuplicateSubscriptionError:
            subscription = None

        now = utcnow()
        effective = resolve_effective_plan(tenant_id, subscription, self.catalog, now)
        snapshot: dict[UsageType, UsageSnapshotEntry] = {}
        for usage_type in UsageType:
            current = current_usage(subscription, usage_type, now) if subscription is not None else 0
            limit = effective.plan.limit_for(usage_type)
            unlimited = effective.plan.is_unlimited(usage_type)
            if unlimited:
                percentage = 0.0
            elif limit == 0:
                percentage = 100.0
            else:
                percentage = round(min(100.0, current / limit * 100), 2)
            snapshot[usage_type] = UsageSnapshotEntry(
                current=current, limit=limit, percentage=percentage, unlimited=unlimited
            )
        return effective, snapshot

    async def reset_tenant_usage(self, tenant_id: str, actor: str | None = None) -> Subscription | None:
        """
        Zero a tenant's counters without moving the billing period.

        Returns:
            Updated subscription, or None when the tenant has no subscription
        """
        subscription = await self.store.get_active_subscription(tenant_id)
        if subscription is None:
            logger.info("manual_usage_reset_skipped", tenant_id=tenant_id, reason="no_subscription")
            return None

        updated = await self.store.reset_usage_counters(subscription.id)
        quota_resets_total.labels(result="manual").inc()
        logger.warning(
            "usage_manually_reset",
            tenant_id=tenant_id,
            subscription_id=str(subscription.id),
            actor=actor,
            previous_usage=subscription.usage_counts,
        )
        return updated

    async def run_scheduled_resets(self, now: datetime | None = None) -> ResetSweepReport:
        """Reset every subscription whose billing period ended."""
        return await self.scheduler.run_scheduled_resets(now)

    async def check_feature(self, tenant_id: str, feature_key: str) -> FeatureCheckResult:
        return await self.feature_gate.check_feature(tenant_id, feature_key)

    async def is_feature_enabled(self, tenant_id: str, feature_key: str) -> bool:
        return await self.feature_gate.is_enabled(tenant_id, feature_key)

    async def get_feature_level(self, tenant_id: str, feature_key: str) -> str | None:
        return await self.feature_gate.get_feature_level(tenant_id, feature_key)


def build_quota_gate(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    catalog: PlanCatalog | None = None,
) -> QuotaGate:
    """
    Wire the facade and its collaborators.

    Args:
        settings: Application settings
        session_factory: Session factory on the subscription database
        catalog: Plan catalog, loaded from settings when omitted

    Returns:
        Ready-to-use quota gate
    """
    catalog = catalog or PlanCatalog.from_settings(settings)
    store = SubscriptionStore(session_factory, catalog, timeout=settings.store_timeout_seconds)
    return QuotaGate(
        store=store,
        catalog=catalog,
        feature_gate=FeatureGate(store, catalog),
        accounting=UsageAccounting(store, catalog, max_attempts=settings.usage_max_attempts),
        scheduler=QuotaResetScheduler(store, catalog, batch_size=settings.reset_sweep_batch_size),
        authorize_timeout=settings.authorize_timeout_seconds,
    )
