import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, FrozenSet, Optional

import httpx

from ledger_sync.core.settings import settings
from ledger_sync.shared.exceptions import AuthExpired, RemoteApiError

from ..auth.models import Credential
from .types import EntityKind, FetchFilters, Platform, RawRecord

logger = logging.getLogger(__name__)

# Statuses worth another attempt; everything else non-2xx fails fast
RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


def _retry_delay(response: Optional[httpx.Response], attempt: int) -> float:
    """Seconds to wait before the next attempt, honouring Retry-After."""
    if response is not None:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return max(float(retry_after), 0.0)
            except ValueError:
                pass
    return float(2**attempt)


class BaseRemoteDataService(ABC):
    """Handles all remote reads and writes for one accounting platform."""

    platform: Platform
    supported_kinds: FrozenSet[EntityKind] = frozenset()

    def __init__(self, base_url: str, max_retries: Optional[int] = None):
        self.base_url = base_url.rstrip("/")
        self.max_retries = (
            settings.REMOTE_MAX_RETRIES if max_retries is None else max_retries
        )

    @abstractmethod
    def fetch(
        self,
        kind: EntityKind,
        credential: Credential,
        filters: Optional[FetchFilters] = None,
    ) -> AsyncIterator[RawRecord]:
        """
        Lazily yield raw records of one entity kind.

        Every call restarts from the first page. Nothing is requested until
        the iterator is first awaited.

        Args:
            kind: Entity kind to fetch
            credential: Valid credential of this platform
            filters: Optional narrowing (modified since, date range, single id)

        Returns:
            Async iterator of raw JSON records

        Raises:
            AuthExpired: If the platform rejects the access token
            RemoteApiError: For any other failed request
        """
        pass

    @abstractmethod
    async def delete_invoice(
        self, credential: Credential, remote_id: str, sync_token: Optional[str]
    ) -> RawRecord:
        """Delete an invoice remotely and return the platform's response record."""
        pass

    @abstractmethod
    async def void_invoice(
        self, credential: Credential, remote_id: str, sync_token: Optional[str]
    ) -> RawRecord:
        """Void an invoice remotely and return the voided record."""
        pass

    @abstractmethod
    def _auth_headers(self, credential: Credential) -> Dict[str, str]:
        """Platform-specific authentication and tenant headers."""
        pass

    async def _make_request(
        self,
        method: str,
        url: str,
        credential: Credential,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """
        Make authenticated request with retry logic.

        429 and 5xx responses and transport failures are retried with
        exponential backoff up to ``max_retries`` extra attempts.

        Returns:
            Parsed JSON body (empty dict for an empty body)

        Raises:
            AuthExpired: On 401
            RemoteApiError: On any other non-2xx status, or with ``status=None``
                when no response was received
        """
        request_headers = {
            "Accept": "application/json",
            **self._auth_headers(credential),
        }
        if headers:
            request_headers.update(headers)

        last_error: Optional[RemoteApiError] = None

        for attempt in range(self.max_retries + 1):
            response: Optional[httpx.Response] = None
            try:
                async with httpx.AsyncClient(
                    timeout=settings.REMOTE_TIMEOUT_SECONDS
                ) as client:
                    response = await client.request(
                        method, url, params=params, json=json, headers=request_headers
                    )
            except httpx.TimeoutException as e:
                last_error = RemoteApiError(None, f"Request timed out: {e}")
            except httpx.RequestError as e:
                last_error = RemoteApiError(None, f"Request error: {e}")

            if response is not None:
                if response.status_code == 401:
                    raise AuthExpired(self.platform.value, "Access token rejected")

                if response.is_success:
                    return self._parse_body(response)

                last_error = RemoteApiError(response.status_code, response.text)
                if response.status_code not in RETRYABLE_STATUSES:
                    raise last_error

            if attempt < self.max_retries:
                delay = _retry_delay(response, attempt)
                logger.warning(
                    "%s %s failed (%s), retrying in %.1fs",
                    method,
                    url,
                    last_error,
                    delay,
                )
                await asyncio.sleep(delay)

        raise last_error or RemoteApiError(None, "Max retries exceeded")

    @staticmethod
    def _parse_body(response: httpx.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            raise RemoteApiError(
                response.status_code, f"Invalid JSON body: {response.text}"
            )
        if not isinstance(body, dict):
            raise RemoteApiError(
                response.status_code, f"Unexpected response body: {response.text}"
            )
        return body
