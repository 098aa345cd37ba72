"""
Tests for TokenService credential lifecycle and OAuth code exchange.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import jwt
import pytest
from sqlalchemy import select

from ledger_sync.domains.external_accounting.auth.credential_store import CredentialStore
from ledger_sync.domains.external_accounting.auth.service import TokenService
from ledger_sync.domains.external_accounting.base.types import Platform
from ledger_sync.domains.ledger.tables import CredentialRow
from ledger_sync.shared.exceptions import AuthExchangeFailed, AuthExpired, AuthMissing
from tests.fixtures.ledger_fixtures import build_credential
from tests.helpers.http import make_response, patch_async_client

JWT_SECRET = "test-secret-key-for-testing-only-32-chars"


def token_payload(access_token: str = "new-access", refresh_token: str = "new-refresh") -> dict:
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "expires_in": 3600,
        "token_type": "Bearer",
        "x_refresh_token_expires_in": 8726400,
    }


@pytest.fixture
def token_service(credential_store: CredentialStore) -> TokenService:
    return TokenService(credential_store)


class TestGetValidCredential:
    """Test suite for expiry checks and refresh."""

    @pytest.mark.asyncio
    async def test_valid_credential_is_returned_without_refresh(
        self, token_service, credential_store
    ) -> None:
        # Arrange
        await credential_store.save(build_credential())
        patcher, client = patch_async_client([])

        # Act
        with patcher:
            credential = await token_service.get_valid_credential(Platform.QUICKBOOKS)

        # Assert
        assert credential.access_token == "test-access-token"
        client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_credential_raises(self, token_service) -> None:
        with pytest.raises(AuthMissing) as exc_info:
            await token_service.get_valid_credential(Platform.XERO)

        assert exc_info.value.platform == "xero"

    @pytest.mark.asyncio
    async def test_credential_inside_skew_window_is_refreshed(
        self, token_service, credential_store
    ) -> None:
        # Arrange
        await credential_store.save(build_credential(expires_in=timedelta(seconds=30)))
        patcher, client = patch_async_client([make_response(json=token_payload())])

        # Act
        with patcher:
            credential = await token_service.get_valid_credential(Platform.QUICKBOOKS)

        # Assert
        assert credential.access_token == "new-access"
        assert credential.refresh_token == "new-refresh"
        assert credential.expires_at > datetime.now(timezone.utc) + timedelta(minutes=59)
        assert credential.tenant_id == "9130355377"

        stored = await credential_store.get_active(Platform.QUICKBOOKS)
        assert stored.refresh_token == "new-refresh"

        call = client.post.call_args
        assert call.args == ("https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer",)
        assert call.kwargs["data"] == {
            "grant_type": "refresh_token",
            "refresh_token": "test-refresh-token",
        }
        assert isinstance(call.kwargs["auth"], httpx.BasicAuth)

    @pytest.mark.asyncio
    async def test_xero_refresh_sends_client_credentials_in_form(
        self, token_service, credential_store
    ) -> None:
        await credential_store.save(
            build_credential(Platform.XERO, expires_in=timedelta(minutes=-5))
        )
        patcher, client = patch_async_client([make_response(json=token_payload())])

        with patcher:
            await token_service.get_valid_credential(Platform.XERO)

        call = client.post.call_args
        assert call.args == ("https://identity.xero.com/connect/token",)
        assert call.kwargs["data"]["client_id"] == "xero-client-id"
        assert call.kwargs["data"]["client_secret"] == "xero-client-secret"
        assert call.kwargs["auth"] is None

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(
        self, token_service, credential_store
    ) -> None:
        # Arrange
        await credential_store.save(build_credential(expires_in=timedelta(minutes=-1)))
        patcher, client = patch_async_client([make_response(json=token_payload())])

        # Act
        with patcher:
            results = await asyncio.gather(
                *(token_service.get_valid_credential(Platform.QUICKBOOKS) for _ in range(5))
            )

        # Assert
        assert client.post.call_count == 1
        assert {credential.access_token for credential in results} == {"new-access"}

    @pytest.mark.asyncio
    async def test_rejected_refresh_raises_auth_expired(
        self, token_service, credential_store, session_factory
    ) -> None:
        # Arrange
        await credential_store.save(build_credential(expires_in=timedelta(minutes=-1)))
        patcher, _ = patch_async_client(
            [make_response(400, json={"error": "invalid_grant"}, method="POST")]
        )

        # Act
        with patcher:
            with pytest.raises(AuthExpired) as exc_info:
                await token_service.get_valid_credential(Platform.QUICKBOOKS)

        # Assert
        assert "invalid_grant" in exc_info.value.reason
        async with session_factory() as session:
            row = (await session.execute(select(CredentialRow))).scalar_one()
        assert row.refresh_attempts == 1
        assert row.refresh_token == "test-refresh-token"

    @pytest.mark.asyncio
    async def test_unreachable_token_endpoint_raises_auth_expired(
        self, token_service, credential_store
    ) -> None:
        await credential_store.save(build_credential(expires_in=timedelta(minutes=-1)))
        patcher, _ = patch_async_client([httpx.ConnectTimeout("connect timed out")])

        with patcher:
            with pytest.raises(AuthExpired):
                await token_service.get_valid_credential(Platform.QUICKBOOKS)

    @pytest.mark.asyncio
    async def test_non_json_refresh_response_raises_auth_expired(
        self, token_service, credential_store, session_factory
    ) -> None:
        # Arrange
        await credential_store.save(build_credential(expires_in=timedelta(minutes=-1)))
        patcher, _ = patch_async_client(
            [make_response(200, text="<html>Down for maintenance</html>", method="POST")]
        )

        # Act
        with patcher:
            with pytest.raises(AuthExpired):
                await token_service.get_valid_credential(Platform.QUICKBOOKS)

        # Assert
        async with session_factory() as session:
            row = (await session.execute(select(CredentialRow))).scalar_one()
        assert row.refresh_attempts == 1


class TestAuthorizationFlow:
    """Test suite for the authorization code flow."""

    def test_build_authorization_url(self, token_service) -> None:
        # Act
        result = token_service.build_authorization_url(Platform.XERO)

        # Assert
        parsed = urlparse(result.auth_url)
        params = parse_qs(parsed.query)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == (
            "https://login.xero.com/identity/connect/authorize"
        )
        assert params["response_type"] == ["code"]
        assert params["client_id"] == ["xero-client-id"]
        assert params["redirect_uri"] == ["http://localhost:8001/callback/xero"]
        assert params["state"] == [result.state]

        claims = jwt.decode(result.state, JWT_SECRET, algorithms=["HS256"])
        assert claims["platform"] == "xero"
        assert result.expires_at > datetime.now(timezone.utc) + timedelta(minutes=29)

    @pytest.mark.asyncio
    async def test_exchange_code_quickbooks(self, token_service, credential_store) -> None:
        # Arrange
        state = token_service.build_authorization_url(Platform.QUICKBOOKS).state
        patcher, client = patch_async_client([make_response(json=token_payload())])

        # Act
        with patcher:
            credential = await token_service.exchange_code(
                Platform.QUICKBOOKS, "auth-code", state, realm_id="4620816365"
            )

        # Assert
        assert credential.tenant_id == "4620816365"
        assert credential.access_token == "new-access"
        assert await credential_store.get_active(Platform.QUICKBOOKS) == credential
        assert client.post.call_args.kwargs["data"] == {
            "grant_type": "authorization_code",
            "code": "auth-code",
            "redirect_uri": "http://localhost:8001/callback/quickbooks",
        }

    @pytest.mark.asyncio
    async def test_exchange_code_quickbooks_requires_realm(self, token_service) -> None:
        state = token_service.build_authorization_url(Platform.QUICKBOOKS).state
        patcher, _ = patch_async_client([make_response(json=token_payload())])

        with patcher:
            with pytest.raises(AuthExchangeFailed) as exc_info:
                await token_service.exchange_code(Platform.QUICKBOOKS, "auth-code", state)

        assert "realmId" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_exchange_code_xero_resolves_tenant(
        self, token_service, credential_store
    ) -> None:
        # Arrange
        state = token_service.build_authorization_url(Platform.XERO).state
        connections = [
            {"tenantId": "tenant-abc", "tenantName": "Demo Company", "tenantType": "ORGANISATION"}
        ]
        patcher, client = patch_async_client(
            [make_response(json=token_payload()), make_response(json=connections)]
        )

        # Act
        with patcher:
            credential = await token_service.exchange_code(Platform.XERO, "auth-code", state)

        # Assert
        assert credential.tenant_id == "tenant-abc"
        assert client.get.call_args.args == ("https://api.xero.com/connections",)
        assert client.get.call_args.kwargs["headers"]["Authorization"] == "Bearer new-access"
        stored = await credential_store.get_active(Platform.XERO)
        assert stored.tenant_id == "tenant-abc"

    @pytest.mark.asyncio
    async def test_exchange_code_xero_without_tenant(self, token_service) -> None:
        state = token_service.build_authorization_url(Platform.XERO).state
        patcher, _ = patch_async_client(
            [make_response(json=token_payload()), make_response(json=[])]
        )

        with patcher:
            with pytest.raises(AuthExchangeFailed):
                await token_service.exchange_code(Platform.XERO, "auth-code", state)

    @pytest.mark.asyncio
    async def test_rejected_code_raises(self, token_service, credential_store) -> None:
        state = token_service.build_authorization_url(Platform.XERO).state
        patcher, _ = patch_async_client(
            [make_response(400, json={"error": "invalid_grant"}, method="POST")]
        )

        with patcher:
            with pytest.raises(AuthExchangeFailed):
                await token_service.exchange_code(Platform.XERO, "bad-code", state)

        assert await credential_store.get_active(Platform.XERO) is None

    @pytest.mark.asyncio
    async def test_non_json_token_response_raises(self, token_service, credential_store) -> None:
        state = token_service.build_authorization_url(Platform.QUICKBOOKS).state
        patcher, _ = patch_async_client(
            [make_response(200, text="<html>Bad gateway</html>", method="POST")]
        )

        with patcher:
            with pytest.raises(AuthExchangeFailed):
                await token_service.exchange_code(
                    Platform.QUICKBOOKS, "auth-code", state, realm_id="9130"
                )

        assert await credential_store.get_active(Platform.QUICKBOOKS) is None

    @pytest.mark.asyncio
    async def test_non_json_connections_response_raises(self, token_service) -> None:
        state = token_service.build_authorization_url(Platform.XERO).state
        patcher, _ = patch_async_client(
            [
                make_response(200, json=token_payload(), method="POST"),
                make_response(200, text="not json"),
            ]
        )

        with patcher:
            with pytest.raises(AuthExchangeFailed) as exc_info:
                await token_service.exchange_code(Platform.XERO, "auth-code", state)

        assert "Invalid tenant info response" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_tampered_state_is_rejected(self, token_service) -> None:
        forged = jwt.encode(
            {"platform": "xero"}, "another-secret-key-that-is-long-enough", algorithm="HS256"
        )

        with pytest.raises(AuthExchangeFailed) as exc_info:
            await token_service.exchange_code(Platform.XERO, "auth-code", forged)

        assert "Invalid OAuth state" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_state_for_other_platform_is_rejected(self, token_service) -> None:
        state = token_service.build_authorization_url(Platform.QUICKBOOKS).state

        with pytest.raises(AuthExchangeFailed):
            await token_service.exchange_code(Platform.XERO, "auth-code", state)

    @pytest.mark.asyncio
    async def test_expired_state_is_rejected(self, token_service) -> None:
        state = token_service._generate_state_token(
            Platform.XERO, datetime.now(timezone.utc) - timedelta(minutes=1)
        )

        with pytest.raises(AuthExchangeFailed) as exc_info:
            await token_service.exchange_code(Platform.XERO, "auth-code", state)

        assert exc_info.value.reason == "OAuth session expired"

    @pytest.mark.asyncio
    async def test_logout(self, token_service, credential_store) -> None:
        await credential_store.save(build_credential(Platform.XERO))

        assert await token_service.logout(Platform.XERO) is True
        assert await token_service.logout(Platform.XERO) is False
        with pytest.raises(AuthMissing):
            await token_service.get_valid_credential(Platform.XERO)
