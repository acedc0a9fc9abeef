"""Exception classes for infrastructure-level failures.

Business-rule denials (feature disabled, limit exceeded, no subscription)
are returned as decisions and never raised.
"""


class EntitlementsError(Exception):
    """
    Base exception for all entitlements errors.

    Attributes:
        code: Error code for client identification
        message: Human-readable error message
        details: Optional additional error details
    """

    def __init__(self, message: str, code: str = "entitlements_error", details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert exception to dictionary for JSON response."""
        result = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class PlanNotFoundError(EntitlementsError):
    """Raised when a plan id is not in the catalog."""

    def __init__(self, plan_id: str):
        super().__init__(f"Plan {plan_id} not found", "plan_not_found", {"plan_id": plan_id})
        self.plan_id = plan_id


class ConflictError(EntitlementsError):
    """Raised by a conditional write whose expected version no longer matches."""

    def __init__(self, subscription_id, expected_version: int):
        super().__init__(
            f"Subscription {subscription_id} changed concurrently (expected version {expected_version})",
            "version_conflict",
            {"subscription_id": str(subscription_id), "expected_version": expected_version},
        )
        self.subscription_id = subscription_id
        self.expected_version = expected_version


class TransientConflictError(EntitlementsError):
    """Raised when counter conflicts persist after the bounded retries."""

    def __init__(self, tenant_id: str, usage_type: str, attempts: int):
        super().__init__(
            f"Usage counter {usage_type} for tenant {tenant_id} kept conflicting after {attempts} attempts",
            "transient_conflict",
            {"tenant_id": tenant_id, "usage_type": usage_type, "attempts": attempts},
        )
        self.attempts = attempts


class StoreUnavailableError(EntitlementsError):
    """
    Raised when the subscription store errors or misses its deadline.

    ``outcome_unknown`` is set when a write may or may not have been applied;
    callers must treat the request as denied either way.
    """

    def __init__(self, operation: str, reason: str, outcome_unknown: bool = False):
        super().__init__(
            f"Subscription store unavailable during {operation}: {reason}",
            "store_unavailable",
            {"operation": operation, "outcome_unknown": outcome_unknown},
        )
        self.operation = operation
        self.outcome_unknown = outcome_unknown


class DuplicateSubscriptionError(EntitlementsError):
    """Raised when a tenant has more than one live subscription row."""

    def __init__(self, tenant_id: str, count: int):
        super().__init__(
            f"Tenant {tenant_id} has {count} live subscriptions",
            "duplicate_subscription",
            {"tenant_id": tenant_id, "live_subscriptions": count},
        )
        self.tenant_id = tenant_id
