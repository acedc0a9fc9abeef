"""Unit tests for decision construction and messages."""
from entitlements.models import UsageType
from entitlements.schemas.decision import Decision, DecisionOutcome
from entitlements.schemas.usage import DenialReason, UsageCheckResult


def _usage(current: int, limit: int, **kwargs) -> UsageCheckResult:
    return UsageCheckResult(
        allowed=kwargs.pop("allowed", True),
        usage_type=UsageType.RECEIPTS_PER_MONTH,
        current=current,
        limit=limit,
        remaining=None if limit == -1 else max(0, limit - current),
        unlimited=limit == -1,
        **kwargs,
    )


def test_committed_message_reports_usage() -> None:
    decision = Decision.committed(usage=_usage(5, 5))

    assert decision.allowed
    assert decision.outcome is DecisionOutcome.COMMITTED
    assert decision.message == "5 of 5 used"


def test_committed_unlimited_and_featureless() -> None:
    assert Decision.committed(usage=_usage(12, -1)).message == "Allowed"
    assert Decision.committed(feature="analytics").message == "Allowed"


def test_denied_limit_message_names_usage_type() -> None:
    usage = _usage(5, 5, allowed=False, reason=DenialReason.LIMIT_EXCEEDED)

    decision = Decision.denied(DenialReason.LIMIT_EXCEEDED, usage=usage)

    assert not decision.allowed
    assert decision.reason is DenialReason.LIMIT_EXCEEDED
    assert "receipts_per_month limit reached: 5 of 5" in decision.message


def test_denied_feature_message_suggests_upgrade() -> None:
    decision = Decision.denied(DenialReason.FEATURE_DISABLED, feature="ai_chat")

    assert decision.feature == "ai_chat"
    assert "'ai_chat' is not available" in decision.message


def test_decision_serializes_to_json() -> None:
    decision = Decision.denied(DenialReason.NO_SUBSCRIPTION)

    payload = decision.model_dump(mode="json")

    assert payload["outcome"] == "denied"
    assert payload["reason"] == "no_subscription"
