from typing import Dict, List, Optional, Tuple

from ledger_sync.shared.exceptions import LedgerSyncError

from .adapter import PlatformAdapter
from .data_service import BaseRemoteDataService
from .types import EntityKind, Platform, ReconcileStrategy


class UnsupportedScope(LedgerSyncError):
    def __init__(self, platform: Platform, kind: Optional[EntityKind] = None) -> None:
        what = kind.value if kind else "anything"
        super().__init__(f"Syncing {what} from {platform.value} is not supported")
        self.platform = platform
        self.kind = kind


class AdapterRegistry:
    """Registry of platform adapters keyed by (platform, entity kind)."""

    def __init__(self) -> None:
        self._adapters: Dict[Tuple[Platform, EntityKind], PlatformAdapter] = {}
        self._data_services: Dict[Platform, BaseRemoteDataService] = {}

    def register(self, adapter: PlatformAdapter) -> None:
        self._adapters[(adapter.platform, adapter.kind)] = adapter
        self._data_services.setdefault(adapter.platform, adapter.data_service)

    def get(self, platform: Platform, kind: EntityKind) -> PlatformAdapter:
        adapter = self._adapters.get((platform, kind))
        if adapter is None:
            raise UnsupportedScope(platform, kind)
        return adapter

    def data_service(self, platform: Platform) -> BaseRemoteDataService:
        service = self._data_services.get(platform)
        if service is None:
            raise UnsupportedScope(platform)
        return service

    def scopes(self) -> List[Tuple[Platform, EntityKind]]:
        return list(self._adapters)


def build_default_registry(
    quickbooks: Optional[BaseRemoteDataService] = None,
    xero: Optional[BaseRemoteDataService] = None,
) -> AdapterRegistry:
    """
    Build the registry of every supported scope and its strategy.

    Xero products, invoices and bills carry local-only state (pricing
    overrides, tracked status) and are merged incrementally. Every other
    scope is replaced wholesale on each sync.
    """
    from ..quickbooks import mappers as qbo_mappers
    from ..quickbooks.data_service import QuickBooksDataService
    from ..xero import mappers as xero_mappers
    from ..xero.data_service import XeroDataService

    quickbooks = quickbooks or QuickBooksDataService()
    xero = xero or XeroDataService()

    full = ReconcileStrategy.FULL_REFRESH
    merge = ReconcileStrategy.INCREMENTAL_MERGE

    # (kind, mapper, strategy, id field)
    quickbooks_scopes = [
        (EntityKind.VENDOR, qbo_mappers.map_vendor, full, "Id"),
        (EntityKind.ACCOUNT, qbo_mappers.map_account, full, "Id"),
        (EntityKind.INVOICE, qbo_mappers.map_invoice, full, "Id"),
        (EntityKind.BILL, qbo_mappers.map_bill, full, "Id"),
    ]
    xero_scopes = [
        (EntityKind.VENDOR, xero_mappers.map_vendor, full, "ContactID"),
        (EntityKind.ACCOUNT, xero_mappers.map_account, full, "AccountID"),
        (EntityKind.PRODUCT, xero_mappers.map_product, merge, "ItemID"),
        (EntityKind.INVOICE, xero_mappers.map_invoice, merge, "InvoiceID"),
        (EntityKind.BILL, xero_mappers.map_bill, merge, "InvoiceID"),
    ]

    registry = AdapterRegistry()
    for platform, data_service, scopes in (
        (Platform.QUICKBOOKS, quickbooks, quickbooks_scopes),
        (Platform.XERO, xero, xero_scopes),
    ):
        for kind, mapper, strategy, id_field in scopes:
            registry.register(
                PlatformAdapter(platform, kind, data_service, mapper, strategy, id_field)
            )

    return registry
