"""Closed set of metered usage dimensions."""
import enum


class UsageType(str, enum.Enum):
    """Usage dimension tracked and limited independently per tenant."""

    RECEIPTS_PER_MONTH = "receipts_per_month"
    INVOICES_PER_MONTH = "invoices_per_month"
    OCR_PAGES_PER_MONTH = "ocr_pages_per_month"
    STORAGE_MB = "storage_mb"
    USERS_MAX = "users_max"
    API_CALLS_PER_DAY = "api_calls_per_day"
    AI_MESSAGES_PER_DAY = "ai_messages_per_day"
    EXPORTS_PER_MONTH = "exports_per_month"
    EMAILS_PER_MONTH = "emails_per_month"

    @property
    def feature_key(self) -> str | None:
        """Feature that must be enabled before this usage can be consumed (None = ungated)."""
        return _GATING_FEATURES.get(self)


_GATING_FEATURES: dict[UsageType, str] = {
    UsageType.RECEIPTS_PER_MONTH: "ocr_processing",
    UsageType.OCR_PAGES_PER_MONTH: "ocr_processing",
    UsageType.API_CALLS_PER_DAY: "api_access",
    UsageType.AI_MESSAGES_PER_DAY: "ai_chat",
    UsageType.STORAGE_MB: "receipt_storage",
    UsageType.EXPORTS_PER_MONTH: "analytics",
    UsageType.EMAILS_PER_MONTH: "email_templates",
}
