"""Business metrics for Prometheus monitoring."""
from prometheus_client import Counter, Histogram

# Admission metrics
quota_decisions_total = Counter(
    "quota_decisions_total",
    "Total usage admission decisions",
    labelnames=["usage_type", "outcome", "reason"],  # outcome: committed, denied
)

quota_cas_conflicts_total = Counter(
    "quota_cas_conflicts_total",
    "Counter writes rejected because the subscription version moved",
    labelnames=["usage_type"],
)

quota_bypass_total = Counter(
    "quota_bypass_total",
    "Usage recorded through the privileged limit bypass",
    labelnames=["usage_type"],
)

authorize_duration_seconds = Histogram(
    "authorize_duration_seconds",
    "Duration of one authorize call",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# Feature gate metrics
feature_checks_total = Counter(
    "feature_checks_total",
    "Total feature gate evaluations",
    labelnames=["feature", "enabled"],
)

# Reset metrics
quota_resets_total = Counter(
    "quota_resets_total",
    "Usage counter resets by result",
    labelnames=["result"],  # result: reset, skipped, failed, manual
)

trial_expirations_total = Counter(
    "trial_expirations_total",
    "Trials moved to inactive by the sweep",
    labelnames=["result"],
)

# Store metrics
quota_store_errors_total = Counter(
    "quota_store_errors_total",
    "Subscription store failures by operation",
    labelnames=["operation"],
)
