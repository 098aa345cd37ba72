# ledger_sync/domains/external_accounting/service.py
import asyncio
import logging
import time
from typing import List, Optional, cast

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger_sync.domains.ledger.store import LocalStore
from ledger_sync.shared.exceptions import (
    AuthExpired,
    AuthMissing,
    PersistenceError,
    RecordNotFound,
    SyncConflict,
)

from .auth.credential_store import CredentialStore
from .auth.service import TokenService
from .base.models import SyncResult
from .base.registry import AdapterRegistry, build_default_registry
from .base.sync_orchestrator import SyncOrchestrator, aborted_result
from .base.types import (
    CanonicalEntity,
    CanonicalInvoice,
    CanonicalVendor,
    EntityKind,
    Platform,
    ProductKind,
    RawRecord,
    Scope,
    VendorChanges,
    VendorDraft,
)
from .quickbooks.data_service import QuickBooksDataService
from .quickbooks.mappers import vendor_payload

logger = logging.getLogger(__name__)


class AccountingSyncService:
    """
    Sync entry points exposed to the rest of the application.

    Scope syncs never raise for remote, credential or storage failures; they
    come back as an aborted ``SyncResult``. Targeted operations raise.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        token_service: Optional[TokenService] = None,
        registry: Optional[AdapterRegistry] = None,
    ):
        self.store = LocalStore(session_factory)
        self.token_service = token_service or TokenService(
            CredentialStore(session_factory)
        )
        self.registry = registry or build_default_registry()
        self.orchestrator = SyncOrchestrator(self.store)

    # ------------------------------------------------------------------
    # Scope syncs
    # ------------------------------------------------------------------

    async def sync_vendors(self, platform: Platform = Platform.QUICKBOOKS) -> SyncResult:
        return await self._sync(platform, EntityKind.VENDOR)

    async def sync_accounts(self, platform: Platform = Platform.QUICKBOOKS) -> SyncResult:
        return await self._sync(platform, EntityKind.ACCOUNT)

    async def sync_products(
        self,
        kind: ProductKind = ProductKind.ALL,
        platform: Platform = Platform.XERO,
    ) -> SyncResult:
        """Sync products, optionally only the inventory or service subset."""
        return await self._sync(platform, EntityKind.PRODUCT, kind)

    async def sync_invoices(self, platform: Platform) -> SyncResult:
        return await self._sync(platform, EntityKind.INVOICE)

    async def sync_bills(self, platform: Platform = Platform.QUICKBOOKS) -> SyncResult:
        return await self._sync(platform, EntityKind.BILL)

    async def sync_platform(self, platform: Platform) -> List[SyncResult]:
        """
        Sync every supported scope of a platform concurrently.

        A scope that fails unexpectedly is reported as aborted; the other
        scopes still run to completion.
        """
        start_time = time.time()
        kinds = [kind for scope, kind in self.registry.scopes() if scope == platform]
        outcomes = await asyncio.gather(
            *(self._sync(platform, kind) for kind in kinds), return_exceptions=True
        )

        results: List[SyncResult] = []
        for kind, outcome in zip(kinds, outcomes):
            if isinstance(outcome, SyncResult):
                results.append(outcome)
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            scope = Scope(platform=platform, kind=kind)
            logger.error("Sync of %s failed: %s", scope, outcome, exc_info=outcome)
            results.append(aborted_result(scope, outcome, start_time))
        return results

    async def _sync(
        self,
        platform: Platform,
        kind: EntityKind,
        product_kind: ProductKind = ProductKind.ALL,
    ) -> SyncResult:
        start_time = time.time()
        adapter = self.registry.get(platform, kind)

        try:
            credential = await self.token_service.get_valid_credential(platform)
        except (AuthMissing, AuthExpired, PersistenceError) as e:
            scope = Scope(platform=platform, kind=kind, product_kind=product_kind)
            logger.error("Sync of %s aborted before fetch: %s", scope, e)
            return aborted_result(scope, e, start_time, adapter.strategy)

        return await self.orchestrator.reconcile(adapter, credential, product_kind)

    # ------------------------------------------------------------------
    # Targeted operations
    # ------------------------------------------------------------------

    async def create_vendor(self, draft: VendorDraft) -> CanonicalVendor:
        """Create a vendor in QuickBooks and mirror the created record locally."""
        credential = await self.token_service.get_valid_credential(Platform.QUICKBOOKS)
        raw = await self._quickbooks().create_vendor(credential, vendor_payload(draft))
        vendor = cast(CanonicalVendor, self._map(Platform.QUICKBOOKS, EntityKind.VENDOR, raw))
        await self.store.upsert(EntityKind.VENDOR, [vendor])
        logger.info("Created QuickBooks vendor %s", vendor.remote_id)
        return vendor

    async def update_vendor(
        self, remote_id: str, changes: VendorChanges, sync_token: Optional[str]
    ) -> CanonicalVendor:
        """
        Apply a sparse vendor update in QuickBooks.

        Raises:
            RecordNotFound: If the vendor is not mirrored locally
            SyncConflict: If ``sync_token`` is not the locally known token, or
                QuickBooks reports the record changed since
        """
        await self._check_sync_token(
            EntityKind.VENDOR, Platform.QUICKBOOKS, remote_id, sync_token
        )

        credential = await self.token_service.get_valid_credential(Platform.QUICKBOOKS)
        raw = await self._quickbooks().update_vendor(
            credential, remote_id, sync_token, vendor_payload(changes)
        )
        vendor = cast(CanonicalVendor, self._map(Platform.QUICKBOOKS, EntityKind.VENDOR, raw))
        await self.store.upsert(EntityKind.VENDOR, [vendor])
        return vendor

    async def delete_invoice(
        self,
        remote_id: str,
        sync_token: Optional[str],
        platform: Platform = Platform.QUICKBOOKS,
    ) -> None:
        """Delete an invoice remotely, then soft-delete the local copy."""
        await self._check_sync_token(EntityKind.INVOICE, platform, remote_id, sync_token)

        credential = await self.token_service.get_valid_credential(platform)
        await self.registry.data_service(platform).delete_invoice(
            credential, remote_id, sync_token
        )
        await self.store.soft_delete(EntityKind.INVOICE, [(platform, remote_id)])
        logger.info("Deleted %s invoice %s", platform.value, remote_id)

    async def void_invoice(
        self,
        remote_id: str,
        sync_token: Optional[str],
        platform: Platform = Platform.XERO,
    ) -> CanonicalInvoice:
        """Void an invoice remotely and store the voided record."""
        await self._check_sync_token(EntityKind.INVOICE, platform, remote_id, sync_token)

        credential = await self.token_service.get_valid_credential(platform)
        raw = await self.registry.data_service(platform).void_invoice(
            credential, remote_id, sync_token
        )
        invoice = cast(CanonicalInvoice, self._map(platform, EntityKind.INVOICE, raw))
        await self.store.upsert(EntityKind.INVOICE, [invoice])
        logger.info("Voided %s invoice %s", platform.value, remote_id)
        return invoice

    async def _check_sync_token(
        self,
        kind: EntityKind,
        platform: Platform,
        remote_id: str,
        sync_token: Optional[str],
    ) -> None:
        row = await self.store.get(kind, (platform, remote_id))
        if row is None:
            raise RecordNotFound(kind.value, remote_id)
        if row.sync_token != sync_token:
            raise SyncConflict(expected_token=sync_token, actual_token=row.sync_token)

    def _map(self, platform: Platform, kind: EntityKind, raw: RawRecord) -> CanonicalEntity:
        return self.registry.get(platform, kind).map(raw)

    def _quickbooks(self) -> QuickBooksDataService:
        return cast(QuickBooksDataService, self.registry.data_service(Platform.QUICKBOOKS))
