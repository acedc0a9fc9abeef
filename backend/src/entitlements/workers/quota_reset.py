"""
Quota reset worker.

Runs daily to:
1. Roll every subscription whose billing period ended into its next period,
   zeroing its usage counters
2. Move trials whose end date passed to inactive

Both sweeps are idempotent: running them twice, or concurrently with the
lazy rollover done on the request path, leaves each row reset exactly once.

Usage (with ARQ):
    arq entitlements.workers.quota_reset.WorkerSettings

One-off run:
    python -m entitlements.workers.quota_reset
"""
import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime
from uuid import UUID

import structlog
from arq import cron
from arq.connections import RedisSettings

from entitlements.config import settings
from entitlements.database import AsyncSessionLocal, engine
from entitlements.exceptions import ConflictError
from entitlements.metrics import quota_resets_total, trial_expirations_total
from entitlements.models.base import utcnow
from entitlements.models.subscription import SubscriptionStatus
from entitlements.services.plan_catalog import PlanCatalog
from entitlements.services.subscription_store import SubscriptionStore
from entitlements.utils.periods import next_period

logger = structlog.get_logger(__name__)


@dataclass
class ResetFailure:
    """One subscription the sweep could not process."""

    subscription_id: str
    tenant_id: str
    error: str


@dataclass
class ResetSweepReport:
    """Outcome of one sweep run."""

    started_at: datetime
    processed: int = 0
    reset: int = 0
    skipped: int = 0
    failed: list[ResetFailure] = field(default_factory=list)
    completed_at: datetime | None = None

    def to_dict(self) -> dict:
        """Serialize for ARQ job results and logs."""
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["completed_at"] = self.completed_at.isoformat() if self.completed_at else None
        return data


class QuotaResetScheduler:
    """Periodic counter resets and trial expiration over all subscriptions."""

    def __init__(self, store: SubscriptionStore, catalog: PlanCatalog, batch_size: int = 200):
        """Initialize the scheduler with the subscription store and plan catalog."""
        self.store = store
        self.catalog = catalog
        self.batch_size = batch_size

    async def run_scheduled_resets(self, now: datetime | None = None) -> ResetSweepReport:
        """
        Reset every subscription whose billing period has ended.

        The next period starts at the later of ``now`` and the previous
        period end and lasts one plan interval. Failures are logged and
        collected in the report; one tenant's failure never stops the sweep.

        Args:
            now: Sweep time, defaults to the current UTC time

        Returns:
            Sweep report with reset, skipped and failed subscriptions
        """
        now = now or utcnow()
        report = ResetSweepReport(started_at=now)
        logger.info("quota_reset_sweep_started", now=now.isoformat())

        after_id: UUID | None = None
        while True:
            batch = await self.store.list_due_for_reset(now, self.batch_size, after_id=after_id)
            if not batch:
                break
            after_id = batch[-1].id

            for subscription in batch:
                report.processed += 1
                plan = self.catalog.find_plan(subscription.plan_id) or self.catalog.free_plan()
                start, end = next_period(subscription.current_period_end, now, plan.interval)
                try:
                    updated = await self.store.reset_usage_for_period(subscription.id, start, end)
                except Exception as e:
                    report.failed.append(ResetFailure(str(subscription.id), subscription.tenant_id, str(e)))
                    quota_resets_total.labels(result="failed").inc()
                    logger.exception(
                        "quota_reset_failed",
                        tenant_id=subscription.tenant_id,
                        subscription_id=str(subscription.id),
                        exc_info=e,
                    )
                    continue

                if updated.current_period_start == start and updated.current_period_end == end:
                    report.reset += 1
                    quota_resets_total.labels(result="reset").inc()
                else:
                    report.skipped += 1
                    quota_resets_total.labels(result="skipped").inc()

            if len(batch) < self.batch_size:
                break

        report.completed_at = utcnow()
        logger.info(
            "quota_reset_sweep_completed",
            processed=report.processed,
            reset=report.reset,
            skipped=report.skipped,
            failed=len(report.failed),
        )
        return report

    async def expire_trials(self, now: datetime | None = None) -> ResetSweepReport:
        """
        Move trialing subscriptions whose trial ended to ``inactive``.

        Each change is conditional on the version read, so a subscription
        converted to paid in the meantime is skipped.
        """
        now = now or utcnow()
        report = ResetSweepReport(started_at=now)

        after_id: UUID | None = None
        while True:
            batch = await self.store.list_expired_trials(now, self.batch_size, after_id=after_id)
            if not batch:
                break
            after_id = batch[-1].id

            for subscription in batch:
                report.processed += 1
                try:
                    await self.store.update_subscription(
                        subscription.id,
                        subscription.version,
                        status=SubscriptionStatus.INACTIVE,
                    )
                except ConflictError:
                    report.skipped += 1
                    trial_expirations_total.labels(result="skipped").inc()
                    continue
                except Exception as e:
                    report.failed.append(ResetFailure(str(subscription.id), subscription.tenant_id, str(e)))
                    trial_expirations_total.labels(result="failed").inc()
                    logger.exception(
                        "trial_expiration_failed",
                        tenant_id=subscription.tenant_id,
                        subscription_id=str(subscription.id),
                        exc_info=e,
                    )
                    continue

                report.reset += 1
                trial_expirations_total.labels(result="expired").inc()
                logger.info(
                    "trial_expired",
                    tenant_id=subscription.tenant_id,
                    subscription_id=str(subscription.id),
                    plan_id=subscription.plan_id,
                )

            if len(batch) < self.batch_size:
                break

        report.completed_at = utcnow()
        logger.info(
            "trial_expiration_completed",
            processed=report.processed,
            expired=report.reset,
            skipped=report.skipped,
            failed=len(report.failed),
        )
        return report


def build_scheduler() -> QuotaResetScheduler:
    """Build a scheduler on the application database."""
    catalog = PlanCatalog.from_settings(settings)
    store = SubscriptionStore(AsyncSessionLocal, catalog, timeout=settings.store_timeout_seconds)
    return QuotaResetScheduler(store, catalog, batch_size=settings.reset_sweep_batch_size)


async def run_quota_reset_sweep(ctx: dict) -> dict:
    """
    ARQ task resetting usage for subscriptions whose period ended.

    Args:
        ctx: ARQ context

    Returns:
        Sweep report as a dict
    """
    scheduler = ctx.get("scheduler") or build_scheduler()
    report = await scheduler.run_scheduled_resets()
    return report.to_dict()


async def expire_trials(ctx: dict) -> dict:
    """ARQ task expiring ended trials."""
    scheduler = ctx.get("scheduler") or build_scheduler()
    report = await scheduler.expire_trials()
    return report.to_dict()


async def startup(ctx: dict) -> None:
    """ARQ startup hook."""
    ctx["scheduler"] = build_scheduler()
    logger.info("quota_reset_worker_started")


async def shutdown(ctx: dict) -> None:
    """ARQ shutdown hook."""
    await engine.dispose()
    logger.info("quota_reset_worker_stopped")


class WorkerSettings:
    """
    ARQ worker settings for quota maintenance.

    Schedule:
    - Usage reset sweep: daily at ``reset_sweep_hour``:00 UTC
    - Trial expiration: daily at ``reset_sweep_hour``:30 UTC

    Usage:
        arq entitlements.workers.quota_reset.WorkerSettings
    """

    functions = [run_quota_reset_sweep, expire_trials]

    cron_jobs = [
        cron(run_quota_reset_sweep, hour={settings.reset_sweep_hour}, minute={0}, timeout=600),
        cron(expire_trials, hour={settings.reset_sweep_hour}, minute={30}, timeout=600),
    ]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = RedisSettings.from_dsn(str(settings.arq_redis_url))


async def _run_once() -> None:
    scheduler = build_scheduler()
    try:
        await scheduler.expire_trials()
        await scheduler.run_scheduled_resets()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(_run_once())
