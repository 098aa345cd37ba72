# ledger_sync/domains/external_accounting/auth/service.py
import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
import jwt
from pydantic import BaseModel, ValidationError

from ledger_sync.core.settings import settings
from ledger_sync.shared.exceptions import (
    AuthExchangeFailed,
    AuthExpired,
    AuthMissing,
)

from ..base.types import Platform
from .credential_store import CredentialStore
from .models import (
    AuthorizationUrl,
    Credential,
    StatePayload,
    TokenResponse,
    XeroTenantInfo,
)

logger = logging.getLogger(__name__)

XERO_CONNECTIONS_URL = "https://api.xero.com/connections"


class OAuthProviderConfig(BaseModel):
    """OAuth endpoints and client registration of one platform."""

    authorize_url: str
    token_url: str
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None
    scopes: str
    # QuickBooks authenticates the client with HTTP Basic, Xero with form fields
    basic_auth: bool = False


def _provider_config(platform: Platform) -> OAuthProviderConfig:
    if platform == Platform.QUICKBOOKS:
        return OAuthProviderConfig(
            authorize_url="https://appcenter.intuit.com/connect/oauth2",
            token_url="https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer",
            client_id=settings.QUICKBOOKS_CLIENT_ID,
            client_secret=settings.QUICKBOOKS_CLIENT_SECRET,
            redirect_uri=settings.QUICKBOOKS_REDIRECT_URI,
            scopes=settings.QUICKBOOKS_SCOPES,
            basic_auth=True,
        )
    return OAuthProviderConfig(
        authorize_url="https://login.xero.com/identity/connect/authorize",
        token_url="https://identity.xero.com/connect/token",
        client_id=settings.XERO_CLIENT_ID,
        client_secret=settings.XERO_CLIENT_SECRET,
        redirect_uri=settings.XERO_REDIRECT_URI,
        scopes=settings.XERO_SCOPES,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """
    Owns the OAuth credential lifecycle of every platform.

    Expiry check, refresh and persistence of a platform's credential happen
    under that platform's lock, so concurrent callers cause at most one
    refresh and all of them see the rotated tokens.
    """

    def __init__(self, credential_store: CredentialStore):
        self.credential_store = credential_store
        self._locks: Dict[Platform, asyncio.Lock] = {
            platform: asyncio.Lock() for platform in Platform
        }

    async def get_valid_credential(self, platform: Platform) -> Credential:
        """
        Return a credential whose access token is usable right now.

        Args:
            platform: Platform whose credential is needed

        Returns:
            Immutable credential snapshot, refreshed if it was about to expire

        Raises:
            AuthMissing: If the platform was never authorized
            AuthExpired: If the refresh token was rejected or unreachable
        """
        async with self._locks[platform]:
            credential = await self.credential_store.get_active(platform)
            if credential is None:
                raise AuthMissing(platform.value)

            if not credential.needs_refresh(
                _utcnow(), settings.TOKEN_REFRESH_SKEW_SECONDS
            ):
                return credential

            return await self._refresh(credential)

    def build_authorization_url(self, platform: Platform) -> AuthorizationUrl:
        """Build the consent URL together with a signed, expiring state token."""
        config = _provider_config(platform)
        expires_at = _utcnow() + timedelta(minutes=settings.OAUTH_STATE_TTL_MINUTES)
        state = self._generate_state_token(platform, expires_at)

        auth_params = {
            "response_type": "code",
            "client_id": config.client_id,
            "redirect_uri": config.redirect_uri,
            "scope": config.scopes,
            "state": state,
        }

        return AuthorizationUrl(
            platform=platform,
            auth_url=f"{config.authorize_url}?{urlencode(auth_params)}",
            state=state,
            expires_at=expires_at,
        )

    async def exchange_code(
        self,
        platform: Platform,
        code: str,
        state: str,
        realm_id: Optional[str] = None,
    ) -> Credential:
        """
        Complete the authorization code flow and store the resulting credential.

        Args:
            platform: Platform that issued the code
            code: Authorization code from the callback
            state: State token from the callback
            realm_id: QuickBooks company id from the callback (ignored for Xero)

        Returns:
            The stored credential

        Raises:
            AuthExchangeFailed: For an invalid state, a rejected code or a
                missing tenant
        """
        if not code:
            raise AuthExchangeFailed(platform.value, "Missing authorization code")

        self._validate_state_token(platform, state)
        config = _provider_config(platform)

        try:
            token = await self._token_request(
                config,
                {
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": config.redirect_uri,
                },
            )
        except httpx.HTTPStatusError as e:
            raise AuthExchangeFailed(platform.value, e.response.text)
        except (httpx.RequestError, ValidationError, ValueError, TypeError) as e:
            raise AuthExchangeFailed(platform.value, str(e))

        if platform == Platform.QUICKBOOKS:
            if not realm_id:
                raise AuthExchangeFailed(platform.value, "Missing realmId")
            tenant_id = realm_id
        else:
            tenant_id = (await self._get_xero_tenant(token.access_token)).tenantId

        now = _utcnow()
        credential = Credential(
            platform=platform,
            tenant_id=tenant_id,
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            expires_at=now + timedelta(seconds=token.expires_in),
            scope=token.scope or config.scopes,
            last_refreshed_at=now,
        )
        return await self.credential_store.save(credential)

    async def logout(self, platform: Platform) -> bool:
        """Forget the platform's credential. Returns False if there was none."""
        async with self._locks[platform]:
            removed = await self.credential_store.delete(platform)
        logger.info("Logged out of %s (credential removed: %s)", platform.value, removed)
        return removed

    async def _refresh(self, credential: Credential) -> Credential:
        """Exchange the refresh token and persist the rotated pair."""
        platform = credential.platform
        config = _provider_config(platform)

        try:
            token = await self._token_request(
                config,
                {
                    "grant_type": "refresh_token",
                    "refresh_token": credential.refresh_token,
                },
            )
        except httpx.HTTPStatusError as e:
            await self.credential_store.record_refresh_failure(platform)
            logger.warning("%s token refresh rejected: %s", platform.value, e.response.text)
            raise AuthExpired(platform.value, f"Token refresh failed: {e.response.text}")
        except (httpx.RequestError, ValidationError, ValueError, TypeError) as e:
            await self.credential_store.record_refresh_failure(platform)
            logger.warning("%s token refresh request failed: %s", platform.value, e)
            raise AuthExpired(platform.value, f"Token refresh request failed: {e}")

        now = _utcnow()
        refreshed = Credential(
            platform=platform,
            tenant_id=credential.tenant_id,
            access_token=token.access_token,
            refresh_token=token.refresh_token,
            expires_at=now + timedelta(seconds=token.expires_in),
            scope=token.scope or credential.scope,
            last_refreshed_at=now,
        )
        await self.credential_store.save(refreshed)
        logger.info("Refreshed %s access token", platform.value)
        return refreshed

    async def _token_request(
        self, config: OAuthProviderConfig, data: Dict[str, Any]
    ) -> TokenResponse:
        form = dict(data)
        auth = None
        if config.basic_auth:
            auth = httpx.BasicAuth(config.client_id or "", config.client_secret or "")
        else:
            form["client_id"] = config.client_id
            form["client_secret"] = config.client_secret

        async with httpx.AsyncClient(timeout=settings.REMOTE_TIMEOUT_SECONDS) as client:
            response = await client.post(
                config.token_url,
                data=form,
                auth=auth,
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
            )
            response.raise_for_status()
            return TokenResponse(**response.json())

    async def _get_xero_tenant(self, access_token: str) -> XeroTenantInfo:
        """Get tenant information from the Xero connections endpoint."""
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

        async with httpx.AsyncClient(timeout=settings.REMOTE_TIMEOUT_SECONDS) as client:
            try:
                response = await client.get(XERO_CONNECTIONS_URL, headers=headers)
                response.raise_for_status()
                connections = response.json()
            except ValueError as e:
                raise AuthExchangeFailed(
                    Platform.XERO.value, f"Invalid tenant info response: {e}"
                )
            except httpx.HTTPStatusError as e:
                raise AuthExchangeFailed(
                    Platform.XERO.value, f"Failed to get tenant info: {e.response.text}"
                )
            except httpx.RequestError as e:
                raise AuthExchangeFailed(
                    Platform.XERO.value, f"Tenant info request failed: {e}"
                )

        if not connections:
            raise AuthExchangeFailed(
                Platform.XERO.value, "No Xero tenant found for this connection"
            )

        # A fresh consent yields exactly one connection
        return XeroTenantInfo(**connections[0])

    def _generate_state_token(self, platform: Platform, expires_at: datetime) -> str:
        """Generate JWT state token for OAuth flow."""
        if not settings.JWT_SECRET:
            raise AuthExchangeFailed(platform.value, "JWT secret not configured")

        payload = StatePayload(
            platform=platform,
            csrf_token=secrets.token_urlsafe(32),
            issued_at=_utcnow(),
            expires_at=expires_at,
        )

        return jwt.encode(
            payload.model_dump(mode="json"),
            settings.JWT_SECRET,
            algorithm="HS256",
        )

    def _validate_state_token(self, platform: Platform, token: str) -> StatePayload:
        """Validate and decode JWT state token."""
        if not settings.JWT_SECRET:
            raise AuthExchangeFailed(platform.value, "JWT secret not configured")

        try:
            payload = jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
            state_payload = StatePayload(**payload)
        except (jwt.InvalidTokenError, ValidationError) as e:
            raise AuthExchangeFailed(platform.value, f"Invalid OAuth state token: {e}")

        if state_payload.platform != platform:
            raise AuthExchangeFailed(platform.value, "OAuth state issued for another platform")

        if _utcnow() > state_payload.expires_at:
            raise AuthExchangeFailed(platform.value, "OAuth session expired")

        return state_payload
