import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from ledger_sync.core.settings import settings
from ledger_sync.shared.exceptions import RemoteApiError, SyncConflict

from ..auth.models import Credential
from ..base.data_service import BaseRemoteDataService
from ..base.parsing import nested
from ..base.types import EntityKind, FetchFilters, Platform, RawRecord

logger = logging.getLogger(__name__)

QUICKBOOKS_ENTITIES: Dict[EntityKind, str] = {
    EntityKind.VENDOR: "Vendor",
    EntityKind.ACCOUNT: "Account",
    EntityKind.INVOICE: "Invoice",
    EntityKind.BILL: "Bill",
}

# Entities that carry a transaction date
_TRANSACTION_ENTITIES = {EntityKind.INVOICE, EntityKind.BILL}

# Fault code QuickBooks returns when the SyncToken is stale
STALE_OBJECT_CODE = "5010"


def _quote(value: str) -> str:
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


def _stale_object_fault(error: RemoteApiError) -> bool:
    if error.status in (409, 412):
        return True
    try:
        body = json.loads(error.body)
    except ValueError:
        return False
    errors = nested(body, "Fault", "Error") or []
    return any(
        isinstance(item, dict) and str(item.get("code")) == STALE_OBJECT_CODE
        for item in errors
    )


class QuickBooksDataService(BaseRemoteDataService):
    """QuickBooks Online query and mutation calls."""

    platform = Platform.QUICKBOOKS
    supported_kinds = frozenset(QUICKBOOKS_ENTITIES)

    def __init__(
        self,
        base_url: Optional[str] = None,
        page_size: Optional[int] = None,
        max_retries: Optional[int] = None,
    ):
        super().__init__(base_url or settings.QUICKBOOKS_BASE_URL, max_retries)
        self.page_size = page_size or settings.QUICKBOOKS_PAGE_SIZE
        self.minor_version = settings.QUICKBOOKS_MINOR_VERSION

    async def fetch(
        self,
        kind: EntityKind,
        credential: Credential,
        filters: Optional[FetchFilters] = None,
    ) -> AsyncIterator[RawRecord]:
        entity = QUICKBOOKS_ENTITIES[kind]
        where = self._where_clause(kind, filters or FetchFilters())
        start_position = 1

        while True:
            query = f"select * from {entity}"
            if where:
                query = f"{query} where {where}"
            query = f"{query} STARTPOSITION {start_position} MAXRESULTS {self.page_size}"

            response = await self._make_request(
                "GET",
                self._company_url(credential, "query"),
                credential,
                params={"query": query, "minorversion": self.minor_version},
            )

            # An empty result set omits the entity key entirely
            records = nested(response, "QueryResponse", entity) or []
            logger.debug("Fetched %d %s records at %d", len(records), entity, start_position)
            for record in records:
                yield record

            if len(records) < self.page_size:
                break
            start_position += self.page_size

    async def create_vendor(self, credential: Credential, payload: Dict[str, Any]) -> RawRecord:
        response = await self._post_entity(credential, "vendor", payload)
        return self._unwrap(response, "Vendor")

    async def update_vendor(
        self,
        credential: Credential,
        remote_id: str,
        sync_token: Optional[str],
        changes: Dict[str, Any],
    ) -> RawRecord:
        """Sparse update; only the given fields change remotely."""
        payload = {**changes, "Id": remote_id, "SyncToken": sync_token, "sparse": True}
        response = await self._post_entity(
            credential, "vendor", payload, sync_token=sync_token
        )
        return self._unwrap(response, "Vendor")

    async def delete_invoice(
        self, credential: Credential, remote_id: str, sync_token: Optional[str]
    ) -> RawRecord:
        response = await self._post_entity(
            credential,
            "invoice",
            {"Id": remote_id, "SyncToken": sync_token},
            operation="delete",
            sync_token=sync_token,
        )
        return self._unwrap(response, "Invoice")

    async def void_invoice(
        self, credential: Credential, remote_id: str, sync_token: Optional[str]
    ) -> RawRecord:
        response = await self._post_entity(
            credential,
            "invoice",
            {"Id": remote_id, "SyncToken": sync_token},
            operation="void",
            sync_token=sync_token,
        )
        return self._unwrap(response, "Invoice")

    def _auth_headers(self, credential: Credential) -> Dict[str, str]:
        return {"Authorization": f"Bearer {credential.access_token}"}

    def _company_url(self, credential: Credential, path: str) -> str:
        return f"{self.base_url}/{credential.tenant_id}/{path}"

    def _where_clause(self, kind: EntityKind, filters: FetchFilters) -> str:
        clauses: List[str] = []
        if filters.remote_id:
            clauses.append(f"Id = {_quote(filters.remote_id)}")
        if filters.modified_since:
            clauses.append(
                f"MetaData.LastUpdatedTime > {_quote(filters.modified_since.isoformat())}"
            )
        if kind in _TRANSACTION_ENTITIES:
            if filters.date_from:
                clauses.append(f"TxnDate >= {_quote(filters.date_from.isoformat())}")
            if filters.date_to:
                clauses.append(f"TxnDate <= {_quote(filters.date_to.isoformat())}")
        return " and ".join(clauses)

    async def _post_entity(
        self,
        credential: Credential,
        entity_path: str,
        payload: Dict[str, Any],
        operation: Optional[str] = None,
        sync_token: Optional[str] = None,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {"minorversion": self.minor_version}
        if operation:
            params["operation"] = operation

        try:
            return await self._make_request(
                "POST",
                self._company_url(credential, entity_path),
                credential,
                params=params,
                json=payload,
            )
        except RemoteApiError as e:
            if _stale_object_fault(e):
                raise SyncConflict(expected_token=sync_token, actual_token=None) from e
            raise

    @staticmethod
    def _unwrap(response: Dict[str, Any], entity: str) -> RawRecord:
        record = response.get(entity)
        if not isinstance(record, dict):
            raise RemoteApiError(200, f"Response has no {entity} object: {response}")
        return record
