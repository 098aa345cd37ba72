"""SQLAlchemy 2.0 ORM tables for the local canonical ledger.

Every mirrored entity has a surrogate ``id`` plus a unique
``(platform, remote_id)`` natural key. Columns that do not appear on the
matching canonical model are local-only and are never written by a sync.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_sync.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Stores naive UTC, hands back aware UTC datetimes on every dialect."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect: Any) -> Optional[datetime]:
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class _DecimalText(TypeDecorator):
    """Exact decimal storage for SQLite, which only has float NUMERIC."""

    impl = String(48)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Optional[str]:
        if value is None:
            return None
        return str(Decimal(value))

    def process_result_value(self, value: Optional[str], dialect: Any) -> Optional[Decimal]:
        if value is None:
            return None
        return Decimal(value)


def _decimal(scale: int = 2) -> Any:
    return Numeric(18, scale, asdecimal=True).with_variant(_DecimalText(), "sqlite")


Money = _decimal(2)
Quantity = _decimal(6)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=_utcnow, onupdate=_utcnow, nullable=False
    )


class RemoteEntityMixin(TimestampMixin):
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    platform: Mapped[str] = mapped_column(String(32), nullable=False)
    remote_id: Mapped[str] = mapped_column(String(128), nullable=False)
    sync_token: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    remote_updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


class CredentialRow(TimestampMixin, Base):
    """The single active OAuth credential of a platform."""

    __tablename__ = "credentials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    platform: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    tenant_id: Mapped[str] = mapped_column(String(128), nullable=False)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    scope: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    last_refreshed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    refresh_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


# ---------------------------------------------------------------------------
# Flat master data
# ---------------------------------------------------------------------------


class VendorRow(RemoteEntityMixin, Base):
    __tablename__ = "vendors"

    display_name: Mapped[str] = mapped_column(String(512), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    address_line1: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    address_city: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    address_postal_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    currency_code: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    is_1099: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    remote_created_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (UniqueConstraint("platform", "remote_id", name="uq_vendors_natural_key"),)


class AccountRow(RemoteEntityMixin, Base):
    __tablename__ = "accounts"

    name: Mapped[str] = mapped_column(String(512), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    account_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    account_sub_type: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    classification: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    currency_code: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    current_balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (UniqueConstraint("platform", "remote_id", name="uq_accounts_natural_key"),)


class ProductRow(RemoteEntityMixin, Base):
    __tablename__ = "products"

    name: Mapped[str] = mapped_column(String(512), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    product_kind: Mapped[str] = mapped_column(String(16), nullable=False)
    quantity_on_hand: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal("0"))
    sales_unit_price: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal("0"))
    purchase_unit_price: Mapped[Decimal] = mapped_column(
        Quantity, nullable=False, default=Decimal("0")
    )
    sales_account_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    purchase_account_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    asset_account_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sales_tax_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    purchase_tax_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Local-only
    price_override: Mapped[Optional[Decimal]] = mapped_column(Quantity, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("platform", "remote_id", name="uq_products_natural_key"),
        Index("ix_products_platform_kind", "platform", "product_kind"),
    )


# ---------------------------------------------------------------------------
# Documents and their line items
# ---------------------------------------------------------------------------


class LineItemMixin:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    remote_line_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    detail_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    item_remote_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    item_name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    account_code: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    quantity: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal("0"))
    unit_price: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal("0"))
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    tax_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    discount_rate: Mapped[Decimal] = mapped_column(Quantity, nullable=False, default=Decimal("0"))


class DocumentMixin(RemoteEntityMixin):
    doc_number: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    txn_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    currency_code: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    total: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_tax: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    balance: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    remote_status: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    lifecycle: Mapped[str] = mapped_column(String(16), nullable=False, default="active")

    # Local-only
    local_status: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class InvoiceRow(DocumentMixin, Base):
    __tablename__ = "invoices"

    customer_remote_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    customer_name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    subtotal: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    memo: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    line_items: Mapped[List["InvoiceLineItemRow"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItemRow.line_number",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("platform", "remote_id", name="uq_invoices_natural_key"),
        # Xero rejects duplicate numbers among live invoices; QuickBooks only warns
        Index(
            "uq_invoices_xero_doc_number",
            "platform",
            "doc_number",
            unique=True,
            sqlite_where=text("platform = 'xero' AND lifecycle = 'active'"),
            postgresql_where=text("platform = 'xero' AND lifecycle = 'active'"),
        ),
    )


class InvoiceLineItemRow(LineItemMixin, Base):
    __tablename__ = "invoice_line_items"

    invoice_id: Mapped[int] = mapped_column(
        ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    invoice: Mapped[InvoiceRow] = relationship(back_populates="line_items")

    __table_args__ = (
        UniqueConstraint("invoice_id", "line_number", name="uq_invoice_line_position"),
    )


class BillRow(DocumentMixin, Base):
    __tablename__ = "bills"

    vendor_remote_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    vendor_name: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    vendor_address: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    ap_account_name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)

    line_items: Mapped[List["BillLineItemRow"]] = relationship(
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillLineItemRow.line_number",
        passive_deletes=True,
    )

    __table_args__ = (UniqueConstraint("platform", "remote_id", name="uq_bills_natural_key"),)


class BillLineItemRow(LineItemMixin, Base):
    __tablename__ = "bill_line_items"

    bill_id: Mapped[int] = mapped_column(
        ForeignKey("bills.id", ondelete="CASCADE"), nullable=False, index=True
    )
    bill: Mapped[BillRow] = relationship(back_populates="line_items")

    __table_args__ = (UniqueConstraint("bill_id", "line_number", name="uq_bill_line_position"),)
