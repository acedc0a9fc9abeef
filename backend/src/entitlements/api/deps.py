"""FastAPI dependencies for the quota gate, tenant identity and admin access."""
import hmac

import structlog
from fastapi import Depends, Header, HTTPException, Request, status

from entitlements.config import Settings, settings as app_settings
from entitlements.schemas.error import ErrorCode, REMEDIATION_HINTS
from entitlements.services.quota_gate import QuotaGate

logger = structlog.get_logger(__name__)


def get_settings() -> Settings:
    """Settings dependency, overridable in tests."""
    return app_settings


def get_quota_gate(request: Request) -> QuotaGate:
    """The quota gate built at application startup."""
    return request.app.state.quota_gate


async def get_tenant_id(x_tenant_id: str | None = Header(default=None)) -> str:
    """
    Tenant identifier resolved by the upstream auth layer.

    Raises:
        HTTPException: 400 if the X-Tenant-ID header is missing or blank
    """
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": ErrorCode.MISSING_TENANT, "message": REMEDIATION_HINTS[ErrorCode.MISSING_TENANT]},
        )
    return x_tenant_id.strip()


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    Guard administrative routes with the shared admin token.

    Raises:
        HTTPException: 403 if the token is missing or wrong
    """
    if not x_admin_token or not hmac.compare_digest(x_admin_token, settings.admin_token):
        logger.warning("admin_token_rejected", token_present=bool(x_admin_token))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": ErrorCode.ADMIN_TOKEN_REQUIRED,
                "message": REMEDIATION_HINTS[ErrorCode.ADMIN_TOKEN_REQUIRED],
            },
        )
