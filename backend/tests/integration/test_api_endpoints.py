"""Integration tests for the HTTP API."""
import pytest
from httpx import AsyncClient

from entitlements.exceptions import StoreUnavailableError, TransientConflictError
from entitlements.services.quota_gate import QuotaGate
from utils.factories import ADMIN_TOKEN, tenant_id


@pytest.mark.asyncio
async def test_authorize_commits(async_client: AsyncClient, make_subscription) -> None:
    subscription = await make_subscription(usage_counts={"receipts_per_month": 1})

    response = await async_client.post(
        "/v1/authorize",
        json={"feature": "ocr_processing", "usage": "receipts_per_month", "metadata": {"receipt_id": "r-9"}},
        headers={"X-Tenant-ID": subscription.tenant_id},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["outcome"] == "committed"
    assert data["usage"]["current"] == 2
    assert data["usage"]["remaining"] == 3
    assert data["message"] == "2 of 5 used"


@pytest.mark.asyncio
async def test_authorize_limit_reached_returns_429(async_client: AsyncClient, make_subscription) -> None:
    subscription = await make_subscription(usage_counts={"invoices_per_month": 2})

    response = await async_client.post(
        "/v1/authorize",
        json={"usage": "invoices_per_month"},
        headers={"X-Tenant-ID": subscription.tenant_id},
    )

    assert response.status_code == 429
    data = response.json()
    assert data["outcome"] == "denied"
    assert data["reason"] == "limit_exceeded"
    assert data["usage"]["current"] == 2
    assert data["usage"]["limit"] == 2
    assert "2 of 2 used" in data["message"]


@pytest.mark.asyncio
async def test_authorize_disabled_feature_returns_403(async_client: AsyncClient, make_subscription) -> None:
    subscription = await make_subscription()

    response = await async_client.post(
        "/v1/authorize",
        json={"feature": "custom_branding"},
        headers={"X-Tenant-ID": subscription.tenant_id},
    )

    assert response.status_code == 403
    data = response.json()
    assert data["reason"] == "feature_disabled"
    assert data["feature"] == "custom_branding"


@pytest.mark.asyncio
async def test_authorize_requires_tenant_header(async_client: AsyncClient) -> None:
    response = await async_client.post("/v1/authorize", json={"usage": "receipts_per_month"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "missing_tenant"


@pytest.mark.asyncio
async def test_authorize_rejects_non_positive_amount(async_client: AsyncClient) -> None:
    response = await async_client.post(
        "/v1/authorize",
        json={"usage": "receipts_per_month", "amount": 0},
        headers={"X-Tenant-ID": tenant_id()},
    )

    assert response.status_code == 422
    data = response.json()
    assert data["error"] == "ValidationError"
    assert data["details"][0]["code"] == "invalid_amount"


@pytest.mark.asyncio
async def test_check_endpoint_records_nothing(async_client: AsyncClient, gate: QuotaGate, make_subscription) -> None:
    subscription = await make_subscription(usage_counts={"exports_per_month": 4})

    response = await async_client.post(
        "/v1/authorize/check",
        json={"usage": "exports_per_month"},
        headers={"X-Tenant-ID": subscription.tenant_id},
    )

    assert response.status_code == 200
    assert response.json()["usage"]["current"] == 4
    stored = await gate.store.get_active_subscription(subscription.tenant_id)
    assert stored.version == subscription.version


@pytest.mark.asyncio
async def test_store_failure_maps_to_503(async_client: AsyncClient, gate: QuotaGate, monkeypatch) -> None:
    async def unavailable(*args, **kwargs):  # noqa: ANN002, ANN003
        raise StoreUnavailableError("authorize", "deadline of 5.0s exceeded", outcome_unknown=True)

    monkeypatch.setattr(gate, "authorize", unavailable)

    response = await async_client.post(
        "/v1/authorize",
        json={"usage": "receipts_per_month"},
        headers={"X-Tenant-ID": tenant_id()},
    )

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "5"
    data = response.json()
    assert data["error"] == "StoreUnavailable"
    assert data["details"][0]["code"] == "store_unavailable"


@pytest.mark.asyncio
async def test_conflict_exhaustion_maps_to_409(async_client: AsyncClient, gate: QuotaGate, monkeypatch) -> None:
    async def conflicted(tenant, *args, **kwargs):  # noqa: ANN001, ANN002, ANN003
        raise TransientConflictError(tenant, "receipts_per_month", 3)

    monkeypatch.setattr(gate, "authorize", conflicted)

    response = await async_client.post(
        "/v1/authorize",
        json={"usage": "receipts_per_month"},
        headers={"X-Tenant-ID": tenant_id()},
    )

    assert response.status_code == 409
    assert response.headers["Retry-After"] == "1"
    assert response.json()["details"][0]["code"] == "transient_conflict"


@pytest.mark.asyncio
async def test_usage_snapshot_endpoint(async_client: AsyncClient, make_subscription) -> None:
    subscription = await make_subscription(plan_id="pro", usage_counts={"receipts_per_month": 50})

    response = await async_client.get("/v1/usage", headers={"X-Tenant-ID": subscription.tenant_id})

    assert response.status_code == 200
    data = response.json()
    assert data["plan_id"] == "pro"
    assert data["usage"]["receipts_per_month"] == {
        "current": 50,
        "limit": 500,
        "percentage": 10.0,
        "unlimited": False,
    }
    assert data["usage"]["api_calls_per_day"]["limit"] == -1
    assert data["usage"]["api_calls_per_day"]["percentage"] == 0


@pytest.mark.asyncio
async def test_feature_endpoint(async_client: AsyncClient, make_subscription) -> None:
    subscription = await make_subscription(plan_id="business")

    response = await async_client.get("/v1/features/ocr_processing", headers={"X-Tenant-ID": subscription.tenant_id})

    assert response.status_code == 200
    data = response.json()
    assert data["enabled"] is True
    assert data["level"] == "premium"
    assert data["plan_id"] == "business"


@pytest.mark.asyncio
async def test_list_and_get_plans(async_client: AsyncClient) -> None:
    response = await async_client.get("/v1/plans")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 4
    assert [plan["id"] for plan in data["items"]] == ["free", "pro", "business", "enterprise"]

    pro = await async_client.get("/v1/plans/pro")
    assert pro.status_code == 200
    assert pro.json()["limits"]["api_calls_per_day"] == -1

    missing = await async_client.get("/v1/plans/platinum")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "plan_not_found"


@pytest.mark.asyncio
async def test_admin_routes_require_token(async_client: AsyncClient) -> None:
    response = await async_client.post("/v1/admin/resets/run")
    assert response.status_code == 403

    wrong = await async_client.post(
        "/v1/admin/usage/reset",
        json={"tenant_id": tenant_id()},
        headers={"X-Admin-Token": "not-the-token"},
    )
    assert wrong.status_code == 403
    assert wrong.json()["detail"]["code"] == "admin_token_required"


@pytest.mark.asyncio
async def test_admin_usage_reset(async_client: AsyncClient, make_subscription) -> None:
    subscription = await make_subscription(usage_counts={"receipts_per_month": 5})

    response = await async_client.post(
        "/v1/admin/usage/reset",
        json={"tenant_id": subscription.tenant_id, "actor": "ops@example.com"},
        headers={"X-Admin-Token": ADMIN_TOKEN},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["reset"] is True
    assert data["subscription_id"] == str(subscription.id)
    assert data["usage"] == {}

    missing = await async_client.post(
        "/v1/admin/usage/reset",
        json={"tenant_id": tenant_id()},
        headers={"X-Admin-Token": ADMIN_TOKEN},
    )
    assert missing.json()["reset"] is False


@pytest.mark.asyncio
async def test_admin_run_resets(async_client: AsyncClient) -> None:
    response = await async_client.post("/v1/admin/resets/run", headers={"X-Admin-Token": ADMIN_TOKEN})

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 0
    assert data["failed"] == []


@pytest.mark.asyncio
async def test_health_endpoints(async_client: AsyncClient) -> None:
    live = await async_client.get("/health")
    assert live.status_code == 200
    assert live.json()["status"] == "healthy"

    ready = await async_client.get("/health/ready")
    assert ready.status_code == 200
    assert ready.json()["checks"]["database"] == "connected"


@pytest.mark.asyncio
async def test_usage_snapshot_plan_and_limits_come_from_one_read(
    async_client: AsyncClient, gate: QuotaGate, make_subscription, monkeypatch
) -> None:
    """The reported plan and the limits beside it are taken from the same subscription read."""
    subscription = await make_subscription(plan_id="pro", usage_counts={"invoices_per_month": 5})
    real_read = gate.store.get_active_subscription
    reads = []

    async def counting_read(tenant):  # noqa: ANN001
        reads.append(tenant)
        return await real_read(tenant)

    monkeypatch.setattr(gate.store, "get_active_subscription", counting_read)

    response = await async_client.get("/v1/usage", headers={"X-Tenant-ID": subscription.tenant_id})

    assert response.status_code == 200
    assert reads == [subscription.tenant_id]
    data = response.json()
    assert data["plan_id"] == "pro"
    assert data["usage"]["invoices_per_month"]["limit"] == 50
    assert data["usage"]["invoices_per_month"]["percentage"] == 10.0
