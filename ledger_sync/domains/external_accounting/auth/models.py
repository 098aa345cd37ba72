# ledger_sync/domains/external_accounting/auth/models.py
from datetime import datetime, timedelta
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..base.types import Platform


class TokenResponse(BaseModel):
    """Token endpoint payload shared by QuickBooks and Xero."""

    access_token: str = Field(..., description="Bearer token for API calls")
    refresh_token: str = Field(..., description="Token used to obtain new access tokens")
    expires_in: int = Field(1800, description="Access token lifetime in seconds")
    token_type: str = Field("Bearer", description="Token type")
    scope: Optional[str] = Field(None, description="Granted scopes")
    x_refresh_token_expires_in: Optional[int] = Field(
        None, description="QuickBooks refresh token lifetime in seconds"
    )


class Credential(BaseModel):
    """Immutable snapshot of a platform's stored OAuth credential."""

    model_config = ConfigDict(frozen=True)

    platform: Platform
    tenant_id: str = Field(..., description="QuickBooks realm id or Xero tenant id")
    access_token: str
    refresh_token: str
    expires_at: datetime = Field(..., description="Access token expiry (UTC)")
    scope: Optional[str] = None
    last_refreshed_at: Optional[datetime] = None

    def needs_refresh(self, now: datetime, skew_seconds: int) -> bool:
        return now >= self.expires_at - timedelta(seconds=skew_seconds)


class StatePayload(BaseModel):
    """Claims carried in the signed OAuth state parameter."""

    platform: Platform
    csrf_token: str
    issued_at: datetime
    expires_at: datetime


class AuthorizationUrl(BaseModel):
    """Authorization URL handed to the user agent."""

    platform: Platform
    auth_url: str = Field(..., description="Platform OAuth authorization URL")
    state: str = Field(..., description="Signed state token echoed on callback")
    expires_at: datetime = Field(..., description="When the state token expires")


class XeroTenantInfo(BaseModel):
    """One entry of the Xero connections endpoint."""

    tenantId: str
    tenantName: Optional[str] = None
    tenantType: Optional[str] = None
