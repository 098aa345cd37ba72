"""Generic type definitions for external accounting integrations."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Platform(str, Enum):
    """Supported accounting platforms."""

    QUICKBOOKS = "quickbooks"
    XERO = "xero"


class EntityKind(str, Enum):
    """Entity kinds mirrored into the local store."""

    VENDOR = "vendor"
    ACCOUNT = "account"
    PRODUCT = "product"
    INVOICE = "invoice"
    BILL = "bill"


class ProductKind(str, Enum):
    """Product subset selector for product syncs."""

    ALL = "all"
    INVENTORY = "inventory"
    SERVICE = "service"


class ReconcileStrategy(str, Enum):
    """How a scope is reconciled against the remote snapshot."""

    FULL_REFRESH = "full_refresh"
    INCREMENTAL_MERGE = "incremental_merge"


class Lifecycle(str, Enum):
    """Lifecycle of invoice and bill aggregates."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    VOIDED = "voided"


NaturalKey = Tuple[Platform, str]


class Scope(BaseModel):
    """Unit of reconciliation: one entity kind on one platform."""

    model_config = ConfigDict(frozen=True)

    platform: Platform
    kind: EntityKind
    product_kind: ProductKind = ProductKind.ALL

    def __str__(self) -> str:
        label = f"{self.platform.value}/{self.kind.value}"
        if self.product_kind != ProductKind.ALL:
            label = f"{label}[{self.product_kind.value}]"
        return label


# Fetch filters
class FetchFilters(BaseModel):
    """Optional narrowing of a remote fetch. All fields are optional."""

    modified_since: Optional[datetime] = Field(
        None, description="Only records modified after this instant"
    )
    date_from: Optional[date] = Field(None, description="Transaction date lower bound")
    date_to: Optional[date] = Field(None, description="Transaction date upper bound")
    remote_id: Optional[str] = Field(None, description="Fetch a single record by id")


# Canonical entities
class CanonicalEntity(BaseModel):
    """Fields every canonical entity carries. All fields are remote-owned."""

    platform: Platform = Field(..., description="Platform of record")
    remote_id: str = Field(..., description="Identifier assigned by the platform")
    sync_token: Optional[str] = Field(
        None, description="Optimistic concurrency marker issued by the platform"
    )
    remote_updated_at: Optional[datetime] = Field(
        None, description="Last modification time reported by the platform"
    )

    @property
    def natural_key(self) -> NaturalKey:
        return (self.platform, self.remote_id)


class CanonicalVendor(CanonicalEntity):
    display_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    address_line1: Optional[str] = None
    address_city: Optional[str] = None
    address_postal_code: Optional[str] = None
    currency_code: Optional[str] = None
    balance: Decimal = Decimal("0")
    is_1099: bool = False
    active: bool = True
    remote_created_at: Optional[datetime] = None


class CanonicalAccount(CanonicalEntity):
    name: str
    code: Optional[str] = None
    account_type: Optional[str] = None
    account_sub_type: Optional[str] = None
    classification: Optional[str] = None
    currency_code: Optional[str] = None
    current_balance: Decimal = Decimal("0")
    active: bool = True


class CanonicalProduct(CanonicalEntity):
    name: str
    code: Optional[str] = None
    description: Optional[str] = None
    product_kind: ProductKind
    quantity_on_hand: Decimal = Decimal("0")
    sales_unit_price: Decimal = Decimal("0")
    purchase_unit_price: Decimal = Decimal("0")
    sales_account_code: Optional[str] = None
    purchase_account_code: Optional[str] = None
    asset_account_code: Optional[str] = None
    sales_tax_type: Optional[str] = None
    purchase_tax_type: Optional[str] = None
    active: bool = True


class CanonicalLineItem(BaseModel):
    """One line of an invoice or bill. Position is 1-based and stable."""

    line_number: int = Field(..., ge=1)
    remote_line_id: Optional[str] = None
    detail_type: Optional[str] = None
    description: Optional[str] = None
    item_remote_id: Optional[str] = None
    item_name: Optional[str] = None
    account_code: Optional[str] = None
    quantity: Decimal = Decimal("0")
    unit_price: Decimal = Decimal("0")
    amount: Decimal = Decimal("0")
    tax_type: Optional[str] = None
    tax_amount: Decimal = Decimal("0")
    discount_rate: Decimal = Decimal("0")


class CanonicalDocument(CanonicalEntity):
    """Aggregate root shared by invoices and bills."""

    doc_number: Optional[str] = None
    txn_date: Optional[date] = None
    due_date: Optional[date] = None
    currency_code: Optional[str] = None
    total: Decimal = Decimal("0")
    total_tax: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    remote_status: Optional[str] = None
    lifecycle: Lifecycle = Lifecycle.ACTIVE
    line_items: List[CanonicalLineItem] = Field(default_factory=list)


class CanonicalInvoice(CanonicalDocument):
    customer_remote_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    subtotal: Decimal = Decimal("0")
    memo: Optional[str] = None


class CanonicalBill(CanonicalDocument):
    vendor_remote_id: Optional[str] = None
    vendor_name: Optional[str] = None
    vendor_address: Optional[str] = None
    ap_account_name: Optional[str] = None


CANONICAL_TYPES = {
    EntityKind.VENDOR: CanonicalVendor,
    EntityKind.ACCOUNT: CanonicalAccount,
    EntityKind.PRODUCT: CanonicalProduct,
    EntityKind.INVOICE: CanonicalInvoice,
    EntityKind.BILL: CanonicalBill,
}

# Raw remote payloads are left as parsed JSON; mappers own the shape knowledge.
RawRecord = dict


# Outbound vendor payloads
class VendorDraft(BaseModel):
    """Fields accepted when creating a vendor on a platform."""

    display_name: str = Field(..., min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    address_line1: Optional[str] = None
    address_city: Optional[str] = None
    address_postal_code: Optional[str] = None
    currency_code: Optional[str] = None


class VendorChanges(BaseModel):
    """Sparse vendor update. Unset fields are left unchanged remotely."""

    display_name: Optional[str] = Field(None, min_length=1)
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    address_line1: Optional[str] = None
    address_city: Optional[str] = None
    address_postal_code: Optional[str] = None
    active: Optional[bool] = None
