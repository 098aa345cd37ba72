"""
Xero JSON → canonical models.

Xero has no sync token; ``UpdatedDateUTC`` is echoed back as the concurrency
marker. Dates arrive either as ``/Date(ms+zzzz)/`` or ISO strings, both of
which ``base.parsing`` accepts.
"""

from typing import Any, Dict, List, Optional

from ledger_sync.shared.exceptions import MappingError

from ..base.parsing import (
    nested,
    optional_str,
    parse_bool,
    parse_date,
    parse_datetime,
    parse_decimal,
    require_str,
)
from ..base.types import (
    CanonicalAccount,
    CanonicalBill,
    CanonicalInvoice,
    CanonicalLineItem,
    CanonicalProduct,
    CanonicalVendor,
    Lifecycle,
    Platform,
    ProductKind,
    RawRecord,
)

_LIFECYCLE_BY_STATUS = {
    "VOIDED": Lifecycle.VOIDED,
    "DELETED": Lifecycle.INACTIVE,
}


def _base_fields(raw: RawRecord, id_field: str) -> Dict[str, Any]:
    updated = optional_str(raw.get("UpdatedDateUTC"), "UpdatedDateUTC")
    return {
        "platform": Platform.XERO,
        "remote_id": require_str(raw.get(id_field), id_field),
        "sync_token": updated,
        "remote_updated_at": parse_datetime(updated, "UpdatedDateUTC"),
    }


def _first_of_type(entries: Any, type_field: str, preferred: str, field: str) -> Dict[str, Any]:
    """Pick the preferred typed entry (phone, address) or fall back to the first."""
    if entries is None:
        return {}
    if not isinstance(entries, list):
        raise MappingError(field, entries)
    candidates = [entry for entry in entries if isinstance(entry, dict)]
    for entry in candidates:
        if entry.get(type_field) == preferred:
            return entry
    return candidates[0] if candidates else {}


def _phone_number(raw: RawRecord) -> Optional[str]:
    phone = _first_of_type(raw.get("Phones"), "PhoneType", "DEFAULT", "Phones")
    parts = [
        optional_str(phone.get(key), f"Phones.{key}")
        for key in ("PhoneCountryCode", "PhoneAreaCode", "PhoneNumber")
    ]
    if not parts[-1]:
        return None
    return " ".join(part for part in parts if part)


def _is_active(raw: RawRecord, status_field: str) -> bool:
    status = optional_str(raw.get(status_field), status_field)
    return status is None or status.upper() == "ACTIVE"


def map_vendor(raw: RawRecord) -> CanonicalVendor:
    address = _first_of_type(raw.get("Addresses"), "AddressType", "POBOX", "Addresses")

    return CanonicalVendor(
        **_base_fields(raw, "ContactID"),
        display_name=require_str(raw.get("Name"), "Name"),
        email=optional_str(raw.get("EmailAddress"), "EmailAddress"),
        phone=_phone_number(raw),
        website=optional_str(raw.get("Website"), "Website"),
        address_line1=optional_str(address.get("AddressLine1"), "Addresses.AddressLine1"),
        address_city=optional_str(address.get("City"), "Addresses.City"),
        address_postal_code=optional_str(address.get("PostalCode"), "Addresses.PostalCode"),
        currency_code=optional_str(raw.get("DefaultCurrency"), "DefaultCurrency"),
        balance=parse_decimal(
            nested(raw, "Balances", "AccountsPayable", "Outstanding"),
            "Balances.AccountsPayable.Outstanding",
        ),
        active=_is_active(raw, "ContactStatus"),
    )


def map_account(raw: RawRecord) -> CanonicalAccount:
    return CanonicalAccount(
        **_base_fields(raw, "AccountID"),
        name=require_str(raw.get("Name"), "Name"),
        code=optional_str(raw.get("Code"), "Code"),
        account_type=optional_str(raw.get("Type"), "Type"),
        account_sub_type=optional_str(raw.get("BankAccountType"), "BankAccountType"),
        classification=optional_str(raw.get("Class"), "Class"),
        currency_code=optional_str(raw.get("CurrencyCode"), "CurrencyCode"),
        active=_is_active(raw, "Status"),
    )


def map_product(raw: RawRecord) -> CanonicalProduct:
    tracked = parse_bool(raw.get("IsTrackedAsInventory"), "IsTrackedAsInventory")
    purchase_account = nested(raw, "PurchaseDetails", "COGSAccountCode") if tracked else None

    return CanonicalProduct(
        **_base_fields(raw, "ItemID"),
        name=require_str(raw.get("Name") or raw.get("Code"), "Name"),
        code=optional_str(raw.get("Code"), "Code"),
        description=optional_str(raw.get("Description"), "Description"),
        product_kind=ProductKind.INVENTORY if tracked else ProductKind.SERVICE,
        quantity_on_hand=parse_decimal(raw.get("QuantityOnHand"), "QuantityOnHand"),
        sales_unit_price=parse_decimal(
            nested(raw, "SalesDetails", "UnitPrice"), "SalesDetails.UnitPrice"
        ),
        purchase_unit_price=parse_decimal(
            nested(raw, "PurchaseDetails", "UnitPrice"), "PurchaseDetails.UnitPrice"
        ),
        sales_account_code=optional_str(
            nested(raw, "SalesDetails", "AccountCode"), "SalesDetails.AccountCode"
        ),
        purchase_account_code=optional_str(
            purchase_account or nested(raw, "PurchaseDetails", "AccountCode"),
            "PurchaseDetails.AccountCode",
        ),
        asset_account_code=optional_str(
            raw.get("InventoryAssetAccountCode"), "InventoryAssetAccountCode"
        ),
        sales_tax_type=optional_str(
            nested(raw, "SalesDetails", "TaxType"), "SalesDetails.TaxType"
        ),
        purchase_tax_type=optional_str(
            nested(raw, "PurchaseDetails", "TaxType"), "PurchaseDetails.TaxType"
        ),
    )


def _map_lines(raw: RawRecord) -> List[CanonicalLineItem]:
    lines = raw.get("LineItems") or []
    if not isinstance(lines, list):
        raise MappingError("LineItems", lines)

    mapped = []
    for position, line in enumerate(lines, start=1):
        if not isinstance(line, dict):
            raise MappingError("LineItems", line)
        mapped.append(
            CanonicalLineItem(
                line_number=position,
                remote_line_id=optional_str(line.get("LineItemID"), "LineItemID"),
                description=optional_str(line.get("Description"), "Description"),
                item_remote_id=optional_str(nested(line, "Item", "ItemID"), "Item.ItemID"),
                item_name=optional_str(
                    nested(line, "Item", "Name") or line.get("ItemCode"), "ItemCode"
                ),
                account_code=optional_str(line.get("AccountCode"), "AccountCode"),
                quantity=parse_decimal(line.get("Quantity"), "Quantity"),
                unit_price=parse_decimal(line.get("UnitAmount"), "UnitAmount"),
                amount=parse_decimal(line.get("LineAmount"), "LineAmount"),
                tax_type=optional_str(line.get("TaxType"), "TaxType"),
                tax_amount=parse_decimal(line.get("TaxAmount"), "TaxAmount"),
                discount_rate=parse_decimal(line.get("DiscountRate"), "DiscountRate"),
            )
        )
    return mapped


def _document_fields(raw: RawRecord, expected_type: str) -> Dict[str, Any]:
    doc_type = raw.get("Type")
    if doc_type != expected_type:
        raise MappingError("Type", doc_type)

    status = optional_str(raw.get("Status"), "Status")
    return {
        **_base_fields(raw, "InvoiceID"),
        "doc_number": optional_str(raw.get("InvoiceNumber"), "InvoiceNumber"),
        "txn_date": parse_date(raw.get("DateString") or raw.get("Date"), "Date"),
        "due_date": parse_date(raw.get("DueDateString") or raw.get("DueDate"), "DueDate"),
        "currency_code": optional_str(raw.get("CurrencyCode"), "CurrencyCode"),
        "total": parse_decimal(raw.get("Total"), "Total"),
        "total_tax": parse_decimal(raw.get("TotalTax"), "TotalTax"),
        "balance": parse_decimal(raw.get("AmountDue"), "AmountDue"),
        "remote_status": status,
        "lifecycle": _LIFECYCLE_BY_STATUS.get((status or "").upper(), Lifecycle.ACTIVE),
        "line_items": _map_lines(raw),
    }


def map_invoice(raw: RawRecord) -> CanonicalInvoice:
    return CanonicalInvoice(
        **_document_fields(raw, "ACCREC"),
        customer_remote_id=optional_str(nested(raw, "Contact", "ContactID"), "Contact.ContactID"),
        customer_name=optional_str(nested(raw, "Contact", "Name"), "Contact.Name"),
        customer_email=optional_str(
            nested(raw, "Contact", "EmailAddress"), "Contact.EmailAddress"
        ),
        subtotal=parse_decimal(raw.get("SubTotal"), "SubTotal"),
        memo=optional_str(raw.get("Reference"), "Reference"),
    )


def map_bill(raw: RawRecord) -> CanonicalBill:
    contact = raw.get("Contact") or {}
    if not isinstance(contact, dict):
        raise MappingError("Contact", contact)
    address = _first_of_type(
        contact.get("Addresses"), "AddressType", "POBOX", "Contact.Addresses"
    )

    return CanonicalBill(
        **_document_fields(raw, "ACCPAY"),
        vendor_remote_id=optional_str(contact.get("ContactID"), "Contact.ContactID"),
        vendor_name=optional_str(contact.get("Name"), "Contact.Name"),
        vendor_address=optional_str(address.get("AddressLine1"), "Contact.Addresses"),
    )
