"""Subscription record accessor: the only code that reads or writes subscription rows."""
import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, TypeVar
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.attributes import set_committed_value

from entitlements.exceptions import ConflictError, DuplicateSubscriptionError, StoreUnavailableError
from entitlements.metrics import quota_store_errors_total
from entitlements.models.base import utcnow
from entitlements.models.subscription import LIVE_STATUSES, Subscription, SubscriptionStatus
from entitlements.models.usage_record import UsageRecord
from entitlements.models.usage_type import UsageType
from entitlements.services.plan_catalog import PlanCatalog
from entitlements.utils.periods import period_end_for

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SubscriptionStore:
    """
    Async accessor over the ``subscriptions`` table.

    Every public call runs in its own short transaction on a fresh session,
    is bounded by ``timeout`` seconds and surfaces database failures as
    ``StoreUnavailableError``. Counter writes are conditional on the row's
    ``version`` so concurrent writers never lose an increment.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: PlanCatalog,
        timeout: float = 2.0,
    ):
        """
        Initialize the store.

        Args:
            session_factory: Factory producing sessions on the subscription database
            catalog: Plan catalog used for default rows
            timeout: Per-operation deadline in seconds
        """
        self.session_factory = session_factory
        self.catalog = catalog
        self.timeout = timeout

    async def _run(self, operation: str, fn: Callable[[], Awaitable[T]], write: bool = False) -> T:
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            quota_store_errors_total.labels(operation=operation).inc()
            logger.error("store_unavailable", operation=operation, reason="timeout", timeout=self.timeout)
            raise StoreUnavailableError(operation, f"timed out after {self.timeout}s", outcome_unknown=write) from e
        except SQLAlchemyError as e:
            quota_store_errors_total.labels(operation=operation).inc()
            logger.error("store_unavailable", operation=operation, reason=type(e).__name__, error=str(e))
            raise StoreUnavailableError(operation, type(e).__name__, outcome_unknown=write) from e

    # Reads

    async def get_active_subscription(self, tenant_id: str) -> Subscription | None:
        """
        Get the tenant's current subscription.

        Returns the live row when one exists, otherwise the most recently
        updated non-live row so canceled and inactive tenants stay visible.

        Args:
            tenant_id: Tenant identifier

        Returns:
            Subscription or None when the tenant never had one

        Raises:
            DuplicateSubscriptionError: If more than one live row exists
            StoreUnavailableError: If the store fails or times out
        """

        async def _load() -> Subscription | None:
            async with self.session_factory() as session:
                return await self._load_current(session, tenant_id)

        return await self._run("get_active_subscription", _load)

    async def get_subscription(self, subscription_id: UUID) -> Subscription | None:
        """Get a subscription row by id."""

        async def _load() -> Subscription | None:
            async with self.session_factory() as session:
                return await session.get(Subscription, subscription_id)

        return await self._run("get_subscription", _load)

    async def effective_subscription(self, tenant_id: str) -> Subscription:
        """
        Get the tenant's subscription, or a transient free-plan stand-in.

        The stand-in is never persisted: it has no id, status ``active``,
        the default plan and zero usage, so callers treat a tenant without
        a row exactly like a fresh free-plan tenant.
        """
        subscription = await self.get_active_subscription(tenant_id)
        if subscription is not None:
            return subscription
        return self.build_default(tenant_id)

    def build_default(self, tenant_id: str, now: datetime | None = None) -> Subscription:
        """Build an unsaved default-plan subscription for a tenant."""
        now = now or utcnow()
        plan = self.catalog.free_plan()
        return Subscription(
            tenant_id=tenant_id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE,
            current_period_start=now,
            current_period_end=period_end_for(now, plan.interval),
            usage_counts={},
            version=0,
        )

    async def list_due_for_reset(
        self, now: datetime, limit: int, after_id: UUID | None = None
    ) -> list[Subscription]:
        """
        List subscriptions whose billing period has ended.

        Pages by id so rows that fail to reset do not block later pages.
        """

        async def _load() -> list[Subscription]:
            async with self.session_factory() as session:
                query = select(Subscription).where(Subscription.current_period_end <= now)
                if after_id is not None:
                    query = query.where(Subscription.id > after_id)
                result = await session.execute(query.order_by(Subscription.id).limit(limit))
                return list(result.scalars().all())

        return await self._run("list_due_for_reset", _load)

    async def list_expired_trials(
        self, now: datetime, limit: int, after_id: UUID | None = None
    ) -> list[Subscription]:
        """List trialing subscriptions whose trial has ended."""

        async def _load() -> list[Subscription]:
            async with self.session_factory() as session:
                query = select(Subscription).where(
                    Subscription.status == SubscriptionStatus.TRIALING,
                    Subscription.trial_end.is_not(None),
                    Subscription.trial_end <= now,
                )
                if after_id is not None:
                    query = query.where(Subscription.id > after_id)
                result = await session.execute(query.order_by(Subscription.id).limit(limit))
                return list(result.scalars().all())

        return await self._run("list_expired_trials", _load)

    async def list_usage_records(self, tenant_id: str, usage_type: UsageType | None = None) -> list[UsageRecord]:
        """List a tenant's usage audit records, newest first."""

        async def _load() -> list[UsageRecord]:
            async with self.session_factory() as session:
                query = select(UsageRecord).where(UsageRecord.tenant_id == tenant_id)
                if usage_type is not None:
                    query = query.where(UsageRecord.usage_type == usage_type.value)
                result = await session.execute(query.order_by(UsageRecord.timestamp.desc()))
                return list(result.scalars().all())

        return await self._run("list_usage_records", _load)

    # Writes

    async def ensure_subscription(self, tenant_id: str) -> Subscription:
        """
        Get the tenant's subscription, creating the default-plan row on first use.

        A concurrent creator losing the unique-index race re-reads the
        winner's row instead of failing.
        """

        async def _ensure() -> Subscription:
            async with self.session_factory() as session:
                existing = await self._load_current(session, tenant_id)
                if existing is not None:
                    return existing

                subscription = self.build_default(tenant_id)
                subscription.version = 1
                session.add(subscription)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    logger.info("default_subscription_race_lost", tenant_id=tenant_id)
                    winner = await self._load_current(session, tenant_id)
                    if winner is None:
                        raise
                    return winner

                logger.info(
                    "default_subscription_created",
                    tenant_id=tenant_id,
                    subscription_id=str(subscription.id),
                    plan_id=subscription.plan_id,
                )
                return subscription

        return await self._run("ensure_subscription", _ensure, write=True)

    async def add_subscription(self, subscription: Subscription) -> Subscription:
        """
        Persist a new subscription row.

        Raises:
            ValueError: If the tenant already has a live subscription
        """

        async def _add() -> Subscription:
            async with self.session_factory() as session:
                session.add(subscription)
                try:
                    await session.commit()
                except IntegrityError as e:
                    await session.rollback()
                    raise ValueError(f"Tenant {subscription.tenant_id} already has a live subscription") from e
                return subscription

        return await self._run("add_subscription", _add, write=True)

    async def compare_and_increment(
        self,
        subscription_id: UUID,
        usage_type: UsageType,
        delta: int,
        expected_version: int,
        audit: dict[str, Any] | None = None,
    ) -> Subscription:
        """
        Increment one usage counter if the row is still at ``expected_version``.

        The counter map and version are written by a single conditional
        UPDATE; the optional audit record is inserted in the same
        transaction.

        Args:
            subscription_id: Subscription to update
            usage_type: Counter to increment
            delta: Positive amount to add
            expected_version: Version the caller evaluated the limit against
            audit: Optional ``{"bypassed_limits": bool, "metadata": dict}`` for the usage record

        Returns:
            The updated subscription

        Raises:
            ConflictError: If the row changed since ``expected_version``
            StoreUnavailableError: If the store fails; ``outcome_unknown`` is set
        """

        async def _increment() -> Subscription:
            async with self.session_factory() as session:
                async with session.begin():
                    subscription = await session.get(Subscription, subscription_id)
                    if subscription is None:
                        raise ValueError(f"Subscription {subscription_id} not found")
                    if subscription.version != expected_version:
                        raise ConflictError(subscription_id, expected_version)

                    counts = dict(subscription.usage_counts or {})
                    counts[usage_type.value] = int(counts.get(usage_type.value, 0)) + delta
                    updated_at = utcnow()

                    result = await session.execute(
                        update(Subscription)
                        .where(Subscription.id == subscription_id, Subscription.version == expected_version)
                        .values(usage_counts=counts, version=expected_version + 1, updated_at=updated_at)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise ConflictError(subscription_id, expected_version)

                    if audit is not None:
                        session.add(
                            UsageRecord(
                                tenant_id=subscription.tenant_id,
                                subscription_id=subscription_id,
                                usage_type=usage_type.value,
                                amount=delta,
                                bypassed_limits=bool(audit.get("bypassed_limits", False)),
                                extra_metadata=audit.get("metadata") or {},
                            )
                        )

                # Report exactly what this write committed; a re-read could see a later writer
                set_committed_value(subscription, "usage_counts", counts)
                set_committed_value(subscription, "version", expected_version + 1)
                set_committed_value(subscription, "updated_at", updated_at)
                return subscription

        return await self._run("compare_and_increment", _increment, write=True)

    async def reset_usage_for_period(
        self,
        subscription_id: UUID,
        new_period_start: datetime,
        new_period_end: datetime,
    ) -> Subscription:
        """
        Zero all counters and move the subscription into a new billing period.

        Applied only while the stored period ended at or before
        ``new_period_start``, so repeating the call for the same target
        period leaves the row untouched and returns it as is.

        Raises:
            ValueError: If the subscription does not exist
            StoreUnavailableError: If the store fails or times out
        """

        async def _reset() -> Subscription:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(Subscription)
                        .where(
                            Subscription.id == subscription_id,
                            Subscription.current_period_end <= new_period_start,
                        )
                        .values(
                            usage_counts={},
                            current_period_start=new_period_start,
                            current_period_end=new_period_end,
                            last_reset_at=utcnow(),
                            version=Subscription.version + 1,
                            updated_at=utcnow(),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    applied = result.rowcount == 1

                subscription = await session.get(Subscription, subscription_id, populate_existing=True)
                if subscription is None:
                    raise ValueError(f"Subscription {subscription_id} not found")

                if applied:
                    logger.info(
                        "usage_period_reset",
                        tenant_id=subscription.tenant_id,
                        subscription_id=str(subscription_id),
                        period_start=new_period_start.isoformat(),
                        period_end=new_period_end.isoformat(),
                    )
                else:
                    logger.debug("usage_period_reset_skipped", subscription_id=str(subscription_id))
                return subscription

        return await self._run("reset_usage_for_period", _reset, write=True)

    async def reset_usage_counters(self, subscription_id: UUID) -> Subscription:
        """Zero all counters without moving the billing period."""

        async def _reset() -> Subscription:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(Subscription)
                        .where(Subscription.id == subscription_id)
                        .values(
                            usage_counts={},
                            last_reset_at=utcnow(),
                            version=Subscription.version + 1,
                            updated_at=utcnow(),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise ValueError(f"Subscription {subscription_id} not found")

                return await session.get(Subscription, subscription_id, populate_existing=True)

        return await self._run("reset_usage_counters", _reset, write=True)

    async def update_subscription(
        self,
        subscription_id: UUID,
        expected_version: int,
        **values: Any,
    ) -> Subscription:
        """
        Apply column changes if the row is still at ``expected_version``.

        Raises:
            ConflictError: If the row changed concurrently
            ValueError: If the change would create a second live subscription
        """

        async def _update() -> Subscription:
            async with self.session_factory() as session:
                try:
                    async with session.begin():
                        result = await session.execute(
                            update(Subscription)
                            .where(Subscription.id == subscription_id, Subscription.version == expected_version)
                            .values(version=expected_version + 1, updated_at=utcnow(), **values)
                            .execution_options(synchronize_session=False)
                        )
                        if result.rowcount != 1:
                            raise ConflictError(subscription_id, expected_version)
                except IntegrityError as e:
                    raise ValueError(f"Subscription {subscription_id} would duplicate a live subscription") from e

                return await session.get(Subscription, subscription_id, populate_existing=True)

        return await self._run("update_subscription", _update, write=True)

    async def _load_current(self, session: AsyncSession, tenant_id: str) -> Subscription | None:
        live_result = await session.execute(
            select(Subscription)
            .where(Subscription.tenant_id == tenant_id, Subscription.status.in_(list(LIVE_STATUSES)))
            .limit(2)
        )
        live = list(live_result.scalars().all())
        if len(live) > 1:
            logger.error("duplicate_live_subscriptions", tenant_id=tenant_id)
            raise DuplicateSubscriptionError(tenant_id, len(live))
        if live:
            return live[0]

        latest_result = await session.execute(
            select(Subscription)
            .where(Subscription.tenant_id == tenant_id)
            .order_by(Subscription.updated_at.desc(), Subscription.created_at.desc())
            .limit(1)
        )
        return latest_result.scalar_one_or_none()
