import logging
from datetime import date
from typing import Any, AsyncIterator, Dict, List, Optional

from pydantic import BaseModel

from ledger_sync.core.settings import settings
from ledger_sync.shared.exceptions import RemoteApiError, SyncConflict

from ..auth.models import Credential
from ..base.data_service import BaseRemoteDataService
from ..base.types import EntityKind, FetchFilters, Platform, RawRecord

logger = logging.getLogger(__name__)

# Paged Xero endpoints return at most this many records per page
XERO_PAGE_SIZE = 100


class XeroEndpoint(BaseModel):
    """How one entity kind is read from the Xero accounting API."""

    path: str
    container: str
    paged: bool = False
    where: Optional[str] = None
    dated: bool = False


XERO_ENDPOINTS: Dict[EntityKind, XeroEndpoint] = {
    EntityKind.VENDOR: XeroEndpoint(
        path="Contacts", container="Contacts", paged=True, where="IsSupplier==true"
    ),
    EntityKind.ACCOUNT: XeroEndpoint(path="Accounts", container="Accounts"),
    EntityKind.PRODUCT: XeroEndpoint(path="Items", container="Items"),
    EntityKind.INVOICE: XeroEndpoint(
        path="Invoices", container="Invoices", paged=True, where='Type=="ACCREC"', dated=True
    ),
    EntityKind.BILL: XeroEndpoint(
        path="Invoices", container="Invoices", paged=True, where='Type=="ACCPAY"', dated=True
    ),
}


def _xero_date(value: date) -> str:
    # Xero filter syntax: DateTime(year,month,day)
    return f"DateTime({value.year},{value.month},{value.day})"


class XeroDataService(BaseRemoteDataService):
    """Xero-specific API implementation."""

    platform = Platform.XERO
    supported_kinds = frozenset(XERO_ENDPOINTS)

    def __init__(self, base_url: Optional[str] = None, max_retries: Optional[int] = None):
        super().__init__(base_url or settings.XERO_BASE_URL, max_retries)

    async def fetch(
        self,
        kind: EntityKind,
        credential: Credential,
        filters: Optional[FetchFilters] = None,
    ) -> AsyncIterator[RawRecord]:
        endpoint = XERO_ENDPOINTS[kind]
        filters = filters or FetchFilters()

        # Single record fetch
        if filters.remote_id:
            response = await self._make_request(
                "GET", f"{self.base_url}/{endpoint.path}/{filters.remote_id}", credential
            )
            for record in response.get(endpoint.container) or []:
                yield record
            return

        params: Dict[str, Any] = {}
        where = self._where_clause(endpoint, filters)
        if where:
            params["where"] = where

        headers = {}
        if filters.modified_since:
            headers["If-Modified-Since"] = filters.modified_since.strftime("%Y-%m-%dT%H:%M:%S")

        page = 1
        while True:
            if endpoint.paged:
                params["page"] = page

            response = await self._make_request(
                "GET",
                f"{self.base_url}/{endpoint.path}",
                credential,
                params=dict(params),
                headers=headers or None,
            )

            # A missing container means nothing matched
            records = response.get(endpoint.container) or []
            logger.debug("Fetched %d %s records (page %d)", len(records), endpoint.path, page)
            for record in records:
                yield record

            if not endpoint.paged or len(records) < XERO_PAGE_SIZE:
                break
            page += 1

    async def void_invoice(
        self, credential: Credential, remote_id: str, sync_token: Optional[str]
    ) -> RawRecord:
        """Void an authorised invoice or bill."""
        return await self._set_invoice_status(credential, remote_id, "VOIDED", sync_token)

    async def delete_invoice(
        self, credential: Credential, remote_id: str, sync_token: Optional[str]
    ) -> RawRecord:
        """Delete a draft invoice or bill (Xero keeps it with status DELETED)."""
        return await self._set_invoice_status(credential, remote_id, "DELETED", sync_token)

    def _auth_headers(self, credential: Credential) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {credential.access_token}",
            "Xero-Tenant-Id": credential.tenant_id,
        }

    @staticmethod
    def _where_clause(endpoint: XeroEndpoint, filters: FetchFilters) -> str:
        clauses: List[str] = []
        if endpoint.where:
            clauses.append(endpoint.where)
        if endpoint.dated:
            if filters.date_from:
                clauses.append(f"Date>={_xero_date(filters.date_from)}")
            if filters.date_to:
                clauses.append(f"Date<={_xero_date(filters.date_to)}")
        return " AND ".join(clauses)

    async def _set_invoice_status(
        self,
        credential: Credential,
        remote_id: str,
        status: str,
        sync_token: Optional[str],
    ) -> RawRecord:
        try:
            response = await self._make_request(
                "POST",
                f"{self.base_url}/Invoices/{remote_id}",
                credential,
                json={"InvoiceID": remote_id, "Status": status},
            )
        except RemoteApiError as e:
            if e.status in (409, 412):
                raise SyncConflict(expected_token=sync_token, actual_token=None) from e
            raise

        invoices = response.get("Invoices") or []
        if not invoices or not isinstance(invoices[0], dict):
            raise RemoteApiError(200, f"Response has no Invoices: {response}")
        return invoices[0]
