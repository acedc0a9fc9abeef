"""Plan catalog: immutable plan definitions loaded once at startup."""
from pathlib import Path

import structlog

from entitlements.exceptions import PlanNotFoundError
from entitlements.models.usage_type import UsageType
from entitlements.schemas.plan import UNLIMITED, Plan, PlanCatalogFile, PlanInterval

logger = structlog.get_logger(__name__)


DEFAULT_PLANS: tuple[Plan, ...] = (
    Plan(
        id="free",
        name="Free",
        tier=1,
        interval=PlanInterval.MONTH,
        features={
            "ocr_processing": "basic",
            "email_templates": False,
            "analytics": "basic",
            "multi_user": False,
            "api_access": "none",
            "ai_chat": False,
            "receipt_storage": True,
            "priority_support": False,
            "custom_branding": False,
        },
        limits={
            UsageType.RECEIPTS_PER_MONTH: 5,
            UsageType.INVOICES_PER_MONTH: 2,
            UsageType.OCR_PAGES_PER_MONTH: 10,
            UsageType.STORAGE_MB: 100,
            UsageType.USERS_MAX: 1,
            UsageType.API_CALLS_PER_DAY: 0,
            UsageType.AI_MESSAGES_PER_DAY: 0,
            UsageType.EXPORTS_PER_MONTH: 5,
            UsageType.EMAILS_PER_MONTH: 0,
        },
    ),
    Plan(
        id="pro",
        name="Pro",
        tier=2,
        interval=PlanInterval.MONTH,
        trial_days=14,
        features={
            "ocr_processing": "enhanced",
            "email_templates": True,
            "analytics": "advanced",
            "multi_user": False,
            "api_access": "basic",
            "ai_chat": "advanced",
            "receipt_storage": True,
            "priority_support": True,
            "custom_branding": True,
        },
        limits={
            UsageType.RECEIPTS_PER_MONTH: 500,
            UsageType.INVOICES_PER_MONTH: 50,
            UsageType.OCR_PAGES_PER_MONTH: 1500,
            UsageType.STORAGE_MB: 5000,
            UsageType.USERS_MAX: 1,
            UsageType.API_CALLS_PER_DAY: UNLIMITED,
            UsageType.AI_MESSAGES_PER_DAY: 100,
            UsageType.EXPORTS_PER_MONTH: 100,
            UsageType.EMAILS_PER_MONTH: 500,
        },
    ),
    Plan(
        id="business",
        name="Business",
        tier=3,
        interval=PlanInterval.MONTH,
        trial_days=14,
        features={
            "ocr_processing": "premium",
            "email_templates": True,
            "analytics": "premium",
            "multi_user": True,
            "api_access": "full",
            "ai_chat": "premium",
            "receipt_storage": True,
            "priority_support": True,
            "custom_branding": True,
            "advanced_reporting": True,
            "integrations": True,
        },
        limits={
            UsageType.RECEIPTS_PER_MONTH: UNLIMITED,
            UsageType.INVOICES_PER_MONTH: UNLIMITED,
            UsageType.OCR_PAGES_PER_MONTH: UNLIMITED,
            UsageType.STORAGE_MB: 25000,
            UsageType.USERS_MAX: 10,
            UsageType.API_CALLS_PER_DAY: UNLIMITED,
            UsageType.AI_MESSAGES_PER_DAY: UNLIMITED,
            UsageType.EXPORTS_PER_MONTH: UNLIMITED,
            UsageType.EMAILS_PER_MONTH: 5000,
        },
    ),
    Plan(
        id="enterprise",
        name="Enterprise",
        tier=4,
        interval=PlanInterval.YEAR,
        features={
            "ocr_processing": "premium",
            "email_templates": True,
            "analytics": "premium",
            "multi_user": True,
            "api_access": "full",
            "ai_chat": "premium",
            "receipt_storage": True,
            "priority_support": True,
            "custom_branding": True,
            "advanced_reporting": True,
            "integrations": True,
            "dedicated_support": True,
            "sla_guarantee": True,
            "custom_features": True,
        },
        limits={usage_type: UNLIMITED for usage_type in UsageType},
    ),
)


class PlanCatalog:
    """Read-only lookup over the configured plans."""

    def __init__(self, plans: list[Plan] | tuple[Plan, ...] = DEFAULT_PLANS, default_plan_id: str = "free"):
        """
        Initialize the catalog.

        Raises:
            ValueError: If plan ids repeat or the default plan is missing
        """
        by_id: dict[str, Plan] = {}
        for plan in plans:
            if plan.id in by_id:
                raise ValueError(f"Duplicate plan id {plan.id} in catalog")
            by_id[plan.id] = plan

        if default_plan_id not in by_id:
            raise ValueError(f"Default plan {default_plan_id} is not defined in the catalog")

        self._plans = by_id
        self._ordered = tuple(sorted(by_id.values(), key=lambda p: (p.tier, p.id)))
        self._feature_keys = frozenset(key for plan in by_id.values() for key in plan.features)
        self.default_plan_id = default_plan_id

    @classmethod
    def from_file(cls, path: str | Path, default_plan_id: str = "free") -> "PlanCatalog":
        """Load plans from a JSON file shaped like ``{"plans": [...]}``."""
        raw = Path(path).read_text(encoding="utf-8")
        catalog_file = PlanCatalogFile.model_validate_json(raw)
        logger.info("plan_catalog_loaded", path=str(path), plans=len(catalog_file.plans))
        return cls(catalog_file.plans, default_plan_id=default_plan_id)

    @classmethod
    def from_settings(cls, settings) -> "PlanCatalog":  # noqa: ANN001
        """Build the catalog from application settings."""
        if settings.plan_catalog_path:
            return cls.from_file(settings.plan_catalog_path, default_plan_id=settings.default_plan_id)
        return cls(DEFAULT_PLANS, default_plan_id=settings.default_plan_id)

    def get_plan(self, plan_id: str) -> Plan:
        """
        Get plan by id.

        Raises:
            PlanNotFoundError: If the plan is not in the catalog
        """
        plan = self._plans.get(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    def find_plan(self, plan_id: str) -> Plan | None:
        """Get plan by id, or None."""
        return self._plans.get(plan_id)

    def list_plans(self) -> list[Plan]:
        """All plans ordered by tier."""
        return list(self._ordered)

    def feature_keys(self) -> frozenset[str]:
        """Every feature key named by at least one plan."""
        return self._feature_keys

    def free_plan(self) -> Plan:
        """The plan applied to tenants without a resolvable subscription."""
        return self._plans[self.default_plan_id]
