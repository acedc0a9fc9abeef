"""Unit tests for plan definitions and the plan catalog."""
import json

import pytest
from pydantic import ValidationError

from entitlements.exceptions import PlanNotFoundError
from entitlements.models import UsageType
from entitlements.schemas.plan import UNLIMITED, Plan, PlanInterval
from entitlements.services.plan_catalog import DEFAULT_PLANS, PlanCatalog


def test_default_catalog_is_ordered_by_tier() -> None:
    """Plans are listed from the cheapest tier up."""
    catalog = PlanCatalog()

    assert [plan.id for plan in catalog.list_plans()] == ["free", "pro", "business", "enterprise"]
    assert catalog.free_plan().id == "free"


def test_get_plan_unknown_id_raises() -> None:
    """Unknown plan ids raise PlanNotFoundError with the id attached."""
    catalog = PlanCatalog()

    with pytest.raises(PlanNotFoundError) as exc_info:
        catalog.get_plan("platinum")

    assert exc_info.value.plan_id == "platinum"
    assert exc_info.value.to_dict()["code"] == "plan_not_found"
    assert catalog.find_plan("platinum") is None


def test_catalog_rejects_duplicate_ids_and_missing_default() -> None:
    """Catalog construction validates ids and the default plan."""
    free = DEFAULT_PLANS[0]

    with pytest.raises(ValueError, match="Duplicate plan id"):
        PlanCatalog([free, free])

    with pytest.raises(ValueError, match="Default plan"):
        PlanCatalog([DEFAULT_PLANS[1]], default_plan_id="free")


def test_seed_plan_values() -> None:
    """Seed values the quota scenarios rely on."""
    catalog = PlanCatalog()

    assert catalog.get_plan("free").limit_for(UsageType.RECEIPTS_PER_MONTH) == 5
    assert catalog.get_plan("pro").is_unlimited(UsageType.API_CALLS_PER_DAY)
    assert catalog.get_plan("business").has_feature("advanced_reporting")
    assert not catalog.get_plan("pro").has_feature("advanced_reporting")
    assert not catalog.get_plan("free").has_feature("advanced_reporting")
    assert catalog.get_plan("enterprise").interval is PlanInterval.YEAR


def test_negative_limit_other_than_unlimited_is_rejected() -> None:
    """Only -1 may be negative."""
    with pytest.raises(ValidationError):
        Plan(id="broken", name="Broken", tier=1, limits={UsageType.STORAGE_MB: -5})

    plan = Plan(id="ok", name="Ok", tier=1, limits={UsageType.STORAGE_MB: UNLIMITED})
    assert plan.is_unlimited(UsageType.STORAGE_MB)


def test_missing_limit_is_a_hard_deny() -> None:
    """A usage type absent from the limits map is capped at zero."""
    plan = Plan(id="tiny", name="Tiny", tier=0, limits={UsageType.RECEIPTS_PER_MONTH: 3})

    assert plan.limit_for(UsageType.INVOICES_PER_MONTH) == 0
    assert not plan.is_unlimited(UsageType.INVOICES_PER_MONTH)


@pytest.mark.parametrize(
    "value,expected",
    [
        (True, "enabled"),
        (False, None),
        ("premium", "premium"),
        ("none", None),
        ("", None),
    ],
)
def test_feature_level(value, expected) -> None:  # noqa: ANN001
    """Booleans and level names map to a level or to disabled."""
    plan = Plan(id="p", name="P", tier=1, features={"ocr_processing": value})

    assert plan.feature_level("ocr_processing") == expected
    assert plan.feature_level("not_a_feature") is None


def test_catalog_from_json_file(tmp_path) -> None:  # noqa: ANN001
    """A JSON catalog replaces the built-in plans."""
    path = tmp_path / "plans.json"
    path.write_text(
        json.dumps(
            {
                "plans": [
                    {
                        "id": "starter",
                        "name": "Starter",
                        "tier": 1,
                        "features": {"ocr_processing": "basic"},
                        "limits": {"receipts_per_month": 20},
                    },
                    {
                        "id": "scale",
                        "name": "Scale",
                        "tier": 2,
                        "interval": "year",
                        "limits": {"receipts_per_month": -1},
                    },
                ]
            }
        )
    )

    catalog = PlanCatalog.from_file(path, default_plan_id="starter")

    assert catalog.free_plan().id == "starter"
    assert catalog.get_plan("starter").limit_for(UsageType.RECEIPTS_PER_MONTH) == 20
    assert catalog.get_plan("scale").interval is PlanInterval.YEAR
    assert catalog.feature_keys() == frozenset({"ocr_processing"})


def test_plans_cannot_be_changed_in_place() -> None:
    """Editing a plan's maps through one catalog is rejected and never reaches another catalog."""
    catalog = PlanCatalog()
    free = catalog.get_plan("free")

    with pytest.raises(TypeError):
        free.limits[UsageType.RECEIPTS_PER_MONTH] = 1000  # type: ignore[index]
    with pytest.raises(TypeError):
        free.features["advanced_reporting"] = True  # type: ignore[index]
    with pytest.raises(ValidationError):
        free.tier = 9

    assert PlanCatalog().get_plan("free").limit_for(UsageType.RECEIPTS_PER_MONTH) == 5
    assert DEFAULT_PLANS[0].limit_for(UsageType.RECEIPTS_PER_MONTH) == 5


def test_plan_keeps_its_own_copy_of_input_maps() -> None:
    """Mutating the dict a plan was built from does not change the plan."""
    limits = {UsageType.RECEIPTS_PER_MONTH: 3}
    plan = Plan(id="copy", name="Copy", tier=1, limits=limits)

    limits[UsageType.RECEIPTS_PER_MONTH] = 300

    assert plan.limit_for(UsageType.RECEIPTS_PER_MONTH) == 3
    assert plan.model_dump(mode="json")["limits"] == {"receipts_per_month": 3}
