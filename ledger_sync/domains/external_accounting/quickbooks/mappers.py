"""
QuickBooks Online JSON → canonical models.

QuickBooks wraps most scalar references in objects (``CurrencyRef.value``,
``PrimaryEmailAddr.Address``); ``nested`` walks them and yields ``None`` when
any level is absent. Defaults follow ``base.parsing``.
"""

from decimal import Decimal
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
    CanonicalVendor,
    Lifecycle,
    Platform,
    RawRecord,
    VendorChanges,
    VendorDraft,
)

# Line detail types that are totals, not billable lines
_SUMMARY_LINE_TYPES = {"SubTotalLineDetail"}

# QuickBooks keeps voided invoices, zeroes them and prefixes the private note
_VOID_NOTE_PREFIX = "Voided"


def _base_fields(raw: RawRecord) -> Dict[str, Any]:
    return {
        "platform": Platform.QUICKBOOKS,
        "remote_id": require_str(raw.get("Id"), "Id"),
        "sync_token": optional_str(raw.get("SyncToken"), "SyncToken"),
        "remote_updated_at": parse_datetime(
            nested(raw, "MetaData", "LastUpdatedTime"), "MetaData.LastUpdatedTime"
        ),
    }


def map_vendor(raw: RawRecord) -> CanonicalVendor:
    return CanonicalVendor(
        **_base_fields(raw),
        display_name=require_str(raw.get("DisplayName"), "DisplayName"),
        email=optional_str(nested(raw, "PrimaryEmailAddr", "Address"), "PrimaryEmailAddr"),
        phone=optional_str(nested(raw, "PrimaryPhone", "FreeFormNumber"), "PrimaryPhone"),
        website=optional_str(nested(raw, "WebAddr", "URI"), "WebAddr"),
        address_line1=optional_str(nested(raw, "BillAddr", "Line1"), "BillAddr.Line1"),
        address_city=optional_str(nested(raw, "BillAddr", "City"), "BillAddr.City"),
        address_postal_code=optional_str(
            nested(raw, "BillAddr", "PostalCode"), "BillAddr.PostalCode"
        ),
        currency_code=optional_str(nested(raw, "CurrencyRef", "value"), "CurrencyRef"),
        balance=parse_decimal(raw.get("Balance"), "Balance"),
        is_1099=parse_bool(raw.get("Vendor1099"), "Vendor1099"),
        active=parse_bool(raw.get("Active"), "Active", default=True),
        remote_created_at=parse_datetime(
            nested(raw, "MetaData", "CreateTime"), "MetaData.CreateTime"
        ),
    )


def map_account(raw: RawRecord) -> CanonicalAccount:
    return CanonicalAccount(
        **_base_fields(raw),
        name=require_str(raw.get("Name"), "Name"),
        code=optional_str(raw.get("AcctNum"), "AcctNum"),
        account_type=optional_str(raw.get("AccountType"), "AccountType"),
        account_sub_type=optional_str(raw.get("AccountSubType"), "AccountSubType"),
        classification=optional_str(raw.get("Classification"), "Classification"),
        currency_code=optional_str(nested(raw, "CurrencyRef", "value"), "CurrencyRef"),
        current_balance=parse_decimal(raw.get("CurrentBalance"), "CurrentBalance"),
        active=parse_bool(raw.get("Active"), "Active", default=True),
    )


def _ref(detail: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = detail.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise MappingError(f"Line.{key}", value)
    return value


def _map_lines(raw: RawRecord) -> List[CanonicalLineItem]:
    lines = raw.get("Line") or []
    if not isinstance(lines, list):
        raise MappingError("Line", lines)

    mapped = []
    for line in lines:
        if not isinstance(line, dict):
            raise MappingError("Line", line)
        detail_type = optional_str(line.get("DetailType"), "Line.DetailType")
        if detail_type in _SUMMARY_LINE_TYPES:
            continue

        detail = line.get(detail_type) if detail_type else None
        detail = detail if isinstance(detail, dict) else {}
        item_ref = _ref(detail, "ItemRef")
        account_ref = _ref(detail, "AccountRef")

        mapped.append(
            CanonicalLineItem(
                line_number=len(mapped) + 1,
                remote_line_id=optional_str(line.get("Id"), "Line.Id"),
                detail_type=detail_type,
                description=optional_str(line.get("Description"), "Line.Description"),
                item_remote_id=optional_str(item_ref.get("value"), "ItemRef.value"),
                item_name=optional_str(item_ref.get("name"), "ItemRef.name"),
                account_code=optional_str(account_ref.get("value"), "AccountRef.value"),
                quantity=parse_decimal(detail.get("Qty"), "Line.Qty"),
                unit_price=parse_decimal(detail.get("UnitPrice"), "Line.UnitPrice"),
                amount=parse_decimal(line.get("Amount"), "Line.Amount"),
                tax_type=optional_str(nested(detail, "TaxCodeRef", "value"), "TaxCodeRef"),
                discount_rate=parse_decimal(
                    detail.get("DiscountPercent"), "Line.DiscountPercent"
                ),
            )
        )
    return mapped


def _subtotal(raw: RawRecord, total: Decimal, total_tax: Decimal) -> Decimal:
    for line in raw.get("Line") or []:
        if isinstance(line, dict) and line.get("DetailType") in _SUMMARY_LINE_TYPES:
            return parse_decimal(line.get("Amount"), "Line.Amount")
    return total - total_tax


def _payment_status(balance: Decimal) -> str:
    return "Paid" if balance == 0 else "Open"


def map_invoice(raw: RawRecord) -> CanonicalInvoice:
    total = parse_decimal(raw.get("TotalAmt"), "TotalAmt")
    total_tax = parse_decimal(nested(raw, "TxnTaxDetail", "TotalTax"), "TxnTaxDetail.TotalTax")
    balance = parse_decimal(raw.get("Balance"), "Balance")
    private_note = optional_str(raw.get("PrivateNote"), "PrivateNote")

    voided = bool(private_note and private_note.startswith(_VOID_NOTE_PREFIX))

    return CanonicalInvoice(
        **_base_fields(raw),
        doc_number=optional_str(raw.get("DocNumber"), "DocNumber"),
        txn_date=parse_date(raw.get("TxnDate"), "TxnDate"),
        due_date=parse_date(raw.get("DueDate"), "DueDate"),
        currency_code=optional_str(nested(raw, "CurrencyRef", "value"), "CurrencyRef"),
        total=total,
        total_tax=total_tax,
        balance=balance,
        remote_status="Voided" if voided else _payment_status(balance),
        lifecycle=Lifecycle.VOIDED if voided else Lifecycle.ACTIVE,
        line_items=_map_lines(raw),
        customer_remote_id=optional_str(nested(raw, "CustomerRef", "value"), "CustomerRef"),
        customer_name=optional_str(nested(raw, "CustomerRef", "name"), "CustomerRef.name"),
        customer_email=optional_str(nested(raw, "BillEmail", "Address"), "BillEmail"),
        subtotal=_subtotal(raw, total, total_tax),
        memo=optional_str(nested(raw, "CustomerMemo", "value"), "CustomerMemo"),
    )


def map_bill(raw: RawRecord) -> CanonicalBill:
    balance = parse_decimal(raw.get("Balance"), "Balance")

    return CanonicalBill(
        **_base_fields(raw),
        doc_number=optional_str(raw.get("DocNumber"), "DocNumber"),
        txn_date=parse_date(raw.get("TxnDate"), "TxnDate"),
        due_date=parse_date(raw.get("DueDate"), "DueDate"),
        currency_code=optional_str(nested(raw, "CurrencyRef", "value"), "CurrencyRef"),
        total=parse_decimal(raw.get("TotalAmt"), "TotalAmt"),
        total_tax=parse_decimal(
            nested(raw, "TxnTaxDetail", "TotalTax"), "TxnTaxDetail.TotalTax"
        ),
        balance=balance,
        remote_status=_payment_status(balance),
        lifecycle=Lifecycle.ACTIVE,
        line_items=_map_lines(raw),
        vendor_remote_id=optional_str(nested(raw, "VendorRef", "value"), "VendorRef"),
        vendor_name=optional_str(nested(raw, "VendorRef", "name"), "VendorRef.name"),
        vendor_address=optional_str(nested(raw, "VendorAddr", "Line1"), "VendorAddr.Line1"),
        ap_account_name=optional_str(nested(raw, "APAccountRef", "name"), "APAccountRef"),
    )


def vendor_payload(fields: VendorDraft | VendorChanges) -> Dict[str, Any]:
    """Canonical vendor fields → QuickBooks Vendor body. Unset fields are omitted."""
    values = fields.model_dump(exclude_none=True)
    payload: Dict[str, Any] = {}

    if "display_name" in values:
        payload["DisplayName"] = values["display_name"]
    if "email" in values:
        payload["PrimaryEmailAddr"] = {"Address": values["email"]}
    if "phone" in values:
        payload["PrimaryPhone"] = {"FreeFormNumber": values["phone"]}
    if "website" in values:
        payload["WebAddr"] = {"URI": values["website"]}
    if "currency_code" in values:
        payload["CurrencyRef"] = {"value": values["currency_code"]}
    if "active" in values:
        payload["Active"] = values["active"]

    address: Dict[str, Optional[str]] = {}
    for field, remote_field in (
        ("address_line1", "Line1"),
        ("address_city", "City"),
        ("address_postal_code", "PostalCode"),
    ):
        if field in values:
            address[remote_field] = values[field]
    if address:
        payload["BillAddr"] = address

    return payload
