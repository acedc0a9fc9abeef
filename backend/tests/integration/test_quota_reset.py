"""Integration tests for period resets, manual resets and trial expiration."""
import asyncio
from datetime import timedelta

import pytest

from entitlements.exceptions import StoreUnavailableError
from entitlements.models import SubscriptionStatus, UsageType, utcnow
from entitlements.services.quota_gate import QuotaGate
from utils.factories import tenant_id


@pytest.mark.asyncio
async def test_reset_for_period_is_idempotent(gate: QuotaGate, make_subscription) -> None:
    """Applying the same period reset twice changes the row once."""
    now = utcnow()
    subscription = await make_subscription(
        current_period_start=now - timedelta(days=30),
        current_period_end=now - timedelta(minutes=5),
        usage_counts={"receipts_per_month": 4, "storage_mb": 40},
    )
    new_start, new_end = now, now + timedelta(days=30)

    first = await gate.store.reset_usage_for_period(subscription.id, new_start, new_end)

    assert first.usage_counts == {}
    assert first.current_period_start == new_start
    assert first.current_period_end == new_end
    assert first.version == subscription.version + 1

    # Usage recorded in the new period survives a repeated reset
    await gate.accounting.record_usage(subscription.tenant_id, UsageType.RECEIPTS_PER_MONTH)
    second = await gate.store.reset_usage_for_period(subscription.id, new_start, new_end)

    assert second.usage_for(UsageType.RECEIPTS_PER_MONTH) == 1
    assert second.current_period_end == new_end
    assert second.version == first.version + 1


@pytest.mark.asyncio
async def test_scheduled_sweep_resets_only_ended_periods(gate: QuotaGate, make_subscription) -> None:
    now = utcnow()
    ended = await make_subscription(
        current_period_start=now - timedelta(days=31),
        current_period_end=now - timedelta(hours=3),
        usage_counts={"receipts_per_month": 5},
    )
    running = await make_subscription(usage_counts={"receipts_per_month": 3})

    report = await gate.run_scheduled_resets(now)

    assert report.processed == 1
    assert report.reset == 1
    assert report.failed == []

    ended_after = await gate.store.get_active_subscription(ended.tenant_id)
    assert ended_after.usage_counts == {}
    assert ended_after.current_period_start == now
    assert ended_after.current_period_end > now

    running_after = await gate.store.get_active_subscription(running.tenant_id)
    assert running_after.usage_for(UsageType.RECEIPTS_PER_MONTH) == 3

    # A second sweep at the same instant finds nothing due
    again = await gate.run_scheduled_resets(now)
    assert again.processed == 0
    assert again.reset == 0


@pytest.mark.asyncio
async def test_sweep_continues_past_failing_tenant(gate: QuotaGate, make_subscription, monkeypatch) -> None:
    """One tenant's store failure is collected in the report; the others are still reset."""
    now = utcnow()
    due = [
        await make_subscription(
            current_period_start=now - timedelta(days=31),
            current_period_end=now - timedelta(hours=1),
            usage_counts={"invoices_per_month": 2},
        )
        for _ in range(3)
    ]
    broken = due[1]
    real_reset = gate.store.reset_usage_for_period

    async def flaky_reset(subscription_id, new_period_start, new_period_end):  # noqa: ANN001
        if subscription_id == broken.id:
            raise StoreUnavailableError("reset_usage_for_period", "connection reset")
        return await real_reset(subscription_id, new_period_start, new_period_end)

    monkeypatch.setattr(gate.store, "reset_usage_for_period", flaky_reset)
    gate.scheduler.batch_size = 2

    report = await gate.run_scheduled_resets(now)

    assert report.processed == 3
    assert report.reset == 2
    assert len(report.failed) == 1
    assert report.failed[0].tenant_id == broken.tenant_id
    assert "connection reset" in report.failed[0].error

    for subscription in due:
        stored = await gate.store.get_active_subscription(subscription.tenant_id)
        expected = 2 if subscription.id == broken.id else 0
        assert stored.usage_for(UsageType.INVOICES_PER_MONTH) == expected

    assert report.to_dict()["failed"][0]["subscription_id"] == str(broken.id)


@pytest.mark.asyncio
async def test_manual_reset_keeps_period(gate: QuotaGate, make_subscription) -> None:
    subscription = await make_subscription(usage_counts={"receipts_per_month": 5, "exports_per_month": 2})

    updated = await gate.reset_tenant_usage(subscription.tenant_id, actor="ops@example.com")

    assert updated.usage_counts == {}
    assert updated.current_period_end == subscription.current_period_end
    assert updated.last_reset_at is not None
    assert updated.version == subscription.version + 1

    result = await gate.accounting.record_usage(subscription.tenant_id, UsageType.RECEIPTS_PER_MONTH)
    assert result.allowed


@pytest.mark.asyncio
async def test_manual_reset_without_subscription_is_a_noop(gate: QuotaGate) -> None:
    tenant = tenant_id()

    assert await gate.reset_tenant_usage(tenant) is None
    assert await gate.store.get_active_subscription(tenant) is None


@pytest.mark.asyncio
async def test_expire_trials_moves_ended_trials_to_inactive(gate: QuotaGate, make_subscription) -> None:
    now = utcnow()
    ended = await make_subscription(
        plan_id="pro",
        status=SubscriptionStatus.TRIALING,
        trial_end=now - timedelta(days=1),
    )
    running = await make_subscription(
        plan_id="pro",
        status=SubscriptionStatus.TRIALING,
        trial_end=now + timedelta(days=5),
    )

    report = await gate.scheduler.expire_trials(now)

    assert report.processed == 1
    assert report.reset == 1

    assert (await gate.store.get_active_subscription(ended.tenant_id)).status is SubscriptionStatus.INACTIVE
    assert (await gate.store.get_active_subscription(running.tenant_id)).status is SubscriptionStatus.TRIALING
    assert await gate.is_feature_enabled(ended.tenant_id, "ai_chat") is False

    again = await gate.scheduler.expire_trials(now)
    assert again.processed == 0


@pytest.mark.asyncio
async def test_sweep_racing_usage_resets_each_period_once(gate: QuotaGate, make_subscription) -> None:
    """A sweep and request-path rollovers on the same rows reset each period once and keep every increment."""
    now = utcnow()
    ended = [
        await make_subscription(
            current_period_start=now - timedelta(days=31),
            current_period_end=now - timedelta(minutes=10),
            usage_counts={"receipts_per_month": 5, "exports_per_month": 3},
        )
        for _ in range(4)
    ]

    results = await asyncio.gather(
        gate.run_scheduled_resets(now),
        *[gate.accounting.record_usage(s.tenant_id, UsageType.RECEIPTS_PER_MONTH) for s in ended],
    )
    report, usage_results = results[0], results[1:]

    assert report.failed == []
    assert all(result.allowed for result in usage_results)
    assert all(result.current == 1 for result in usage_results)

    for subscription in ended:
        stored = await gate.store.get_active_subscription(subscription.tenant_id)
        assert stored.usage_counts == {"receipts_per_month": 1}
        assert stored.current_period_end > now
        assert len(await gate.store.list_usage_records(subscription.tenant_id)) == 1

    # Nothing is left for a later sweep to reset again
    again = await gate.run_scheduled_resets(now)
    assert again.processed == 0
