"""Pydantic schemas for request/response validation and transient results."""

from entitlements.schemas.decision import AuthorizeRequest, Decision, DecisionOutcome
from entitlements.schemas.error import ErrorCode, ErrorDetail, ErrorResponse
from entitlements.schemas.feature import FeatureCheckResult
from entitlements.schemas.plan import UNLIMITED, Plan, PlanCatalogFile, PlanInterval, PlanList
from entitlements.schemas.usage import (
    DenialReason,
    UsageCheckResult,
    UsageResetRequest,
    UsageResetResponse,
    UsageSnapshot,
    UsageSnapshotEntry,
)

__all__ = [
    "AuthorizeRequest",
    "Decision",
    "DecisionOutcome",
    "DenialReason",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "FeatureCheckResult",
    "Plan",
    "PlanCatalogFile",
    "PlanInterval",
    "PlanList",
    "UNLIMITED",
    "UsageCheckResult",
    "UsageResetRequest",
    "UsageResetResponse",
    "UsageSnapshot",
    "UsageSnapshotEntry",
]
