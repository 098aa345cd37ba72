"""
Tests for Xero → canonical field mapping.
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from ledger_sync.domains.external_accounting.base.types import (
    Lifecycle,
    Platform,
    ProductKind,
)
from ledger_sync.domains.external_accounting.xero.mappers import (
    map_account,
    map_bill,
    map_invoice,
    map_product,
    map_vendor,
)
from ledger_sync.shared.exceptions import MappingError
from tests.fixtures.xero_fixtures import xero_account, xero_contact, xero_invoice, xero_item


class TestMapVendor:
    def test_maps_supplier_contact(self) -> None:
        # Act
        vendor = map_vendor(xero_contact())

        # Assert
        assert vendor.platform == Platform.XERO
        assert vendor.remote_id == "bd2270c3-8706-4c11-9cfb-000b551c3f51"
        assert vendor.display_name == "ABC Furniture"
        assert vendor.email == "info@abcfurniture.example.com"
        assert vendor.phone == "61 02 1234567"
        assert vendor.address_line1 == "PO Box 123"
        assert vendor.address_postal_code == "2000"
        assert vendor.currency_code == "AUD"
        assert vendor.balance == Decimal("760.0")
        assert vendor.active is True

    def test_updated_date_is_the_sync_token(self) -> None:
        vendor = map_vendor(xero_contact())

        assert vendor.sync_token == "/Date(1704067200000+0000)/"
        assert vendor.remote_updated_at == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_archived_contact_is_inactive(self) -> None:
        assert map_vendor(xero_contact(ContactStatus="ARCHIVED")).active is False

    def test_absent_optional_fields(self) -> None:
        vendor = map_vendor({"ContactID": "c-1", "Name": "Bare"})

        assert vendor.phone is None
        assert vendor.address_line1 is None
        assert vendor.balance == Decimal("0")
        assert vendor.sync_token is None
        assert vendor.active is True

    def test_missing_name_raises(self) -> None:
        with pytest.raises(MappingError) as exc_info:
            map_vendor(xero_contact(Name=""))

        assert exc_info.value.field == "Name"


class TestMapAccount:
    def test_maps_account(self) -> None:
        account = map_account(xero_account())

        assert account.code == "090"
        assert account.account_type == "BANK"
        assert account.classification == "ASSET"
        assert account.current_balance == Decimal("0")

    def test_archived_account(self) -> None:
        assert map_account(xero_account(Status="ARCHIVED")).active is False


class TestMapProduct:
    def test_tracked_item_is_inventory(self) -> None:
        product = map_product(xero_item(tracked=True))

        assert product.product_kind == ProductKind.INVENTORY
        assert product.quantity_on_hand == Decimal("12.5")
        assert product.sales_unit_price == Decimal("49.95")
        assert product.purchase_unit_price == Decimal("21.25")
        assert product.purchase_account_code == "310"
        assert product.asset_account_code == "630"
        assert product.sales_tax_type == "OUTPUT"

    def test_untracked_item_is_service(self) -> None:
        product = map_product(xero_item(tracked=False))

        assert product.product_kind == ProductKind.SERVICE
        assert product.quantity_on_hand == Decimal("0")
        assert product.purchase_account_code == "300"
        assert product.asset_account_code is None

    def test_malformed_price_raises(self) -> None:
        raw = xero_item(SalesDetails={"UnitPrice": "cheap"})

        with pytest.raises(MappingError) as exc_info:
            map_product(raw)

        assert exc_info.value.field == "SalesDetails.UnitPrice"


class TestMapInvoice:
    def test_maps_receivable_invoice(self) -> None:
        # Act
        invoice = map_invoice(xero_invoice())

        # Assert
        assert invoice.remote_id == "test-invoice-123"
        assert invoice.doc_number == "INV-001"
        assert invoice.txn_date == date(2024, 1, 1)
        assert invoice.due_date == date(2024, 2, 1)
        assert invoice.total == Decimal("110.0")
        assert invoice.subtotal == Decimal("100.0")
        assert invoice.balance == Decimal("110.0")
        assert invoice.customer_name == "Test Customer"
        assert invoice.memo == "Ref 42"
        assert invoice.remote_status == "AUTHORISED"
        assert invoice.lifecycle == Lifecycle.ACTIVE

        line = invoice.line_items[0]
        assert line.line_number == 1
        assert line.remote_line_id == "line-1"
        assert line.account_code == "200"
        assert line.tax_amount == Decimal("10.0")

    @pytest.mark.parametrize(
        "status,lifecycle",
        [("VOIDED", Lifecycle.VOIDED), ("DELETED", Lifecycle.INACTIVE), ("PAID", Lifecycle.ACTIVE)],
    )
    def test_status_drives_lifecycle(self, status: str, lifecycle: Lifecycle) -> None:
        assert map_invoice(xero_invoice(Status=status)).lifecycle == lifecycle

    def test_payable_document_is_rejected(self) -> None:
        with pytest.raises(MappingError) as exc_info:
            map_invoice(xero_invoice(doc_type="ACCPAY"))

        assert exc_info.value.field == "Type"

    def test_malformed_date_raises(self) -> None:
        with pytest.raises(MappingError):
            map_invoice(xero_invoice(Date="not-a-date"))


class TestMapBill:
    def test_maps_payable_invoice(self, xero_bill_payload: dict) -> None:
        bill = map_bill(xero_bill_payload)

        assert bill.remote_id == "test-bill-456"
        assert bill.doc_number == "BILL-9"
        assert bill.vendor_remote_id == "test-contact-123"
        assert bill.vendor_name == "Test Customer"
        assert bill.vendor_address == "PO Box 9"
        assert len(bill.line_items) == 1

    def test_malformed_contact_raises(self) -> None:
        with pytest.raises(MappingError) as exc_info:
            map_bill(xero_invoice(doc_type="ACCPAY", Contact="supplier"))

        assert exc_info.value.field == "Contact"
