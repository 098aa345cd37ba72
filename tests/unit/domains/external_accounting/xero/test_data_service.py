"""
Tests for XeroDataService reads and invoice status changes.
"""

from datetime import date, datetime, timezone

import pytest

from ledger_sync.domains.external_accounting.base.types import (
    EntityKind,
    FetchFilters,
    Platform,
)
from ledger_sync.domains.external_accounting.xero.data_service import (
    XERO_PAGE_SIZE,
    XeroDataService,
)
from ledger_sync.shared.exceptions import RemoteApiError, SyncConflict
from tests.fixtures.ledger_fixtures import build_credential
from tests.fixtures.xero_fixtures import xero_account, xero_contact, xero_invoice, xero_item
from tests.helpers.fakes import collect
from tests.helpers.http import make_response, patch_async_client

BASE_URL = "https://xero.test/api.xro/2.0"


@pytest.fixture
def credential():
    return build_credential(Platform.XERO)


@pytest.fixture
def data_service() -> XeroDataService:
    return XeroDataService(base_url=BASE_URL, max_retries=0)


class TestXeroFetch:
    """Test suite for XeroDataService bulk reads."""

    @pytest.mark.asyncio
    async def test_contacts_are_paged_and_filtered_to_suppliers(
        self, data_service, credential
    ) -> None:
        # Arrange
        full_page = [xero_contact(f"contact-{i}") for i in range(XERO_PAGE_SIZE)]
        patcher, client = patch_async_client(
            [
                make_response(json={"Contacts": full_page}),
                make_response(json={"Contacts": [xero_contact("contact-last")]}),
            ]
        )

        # Act
        with patcher:
            records = await collect(data_service.fetch(EntityKind.VENDOR, credential))

        # Assert
        assert len(records) == XERO_PAGE_SIZE + 1
        first_call, second_call = client.request.call_args_list
        assert first_call.args == ("GET", f"{BASE_URL}/Contacts")
        assert first_call.kwargs["params"] == {"where": "IsSupplier==true", "page": 1}
        assert second_call.kwargs["params"]["page"] == 2

        headers = first_call.kwargs["headers"]
        assert headers["Authorization"] == "Bearer test-access-token"
        assert headers["Xero-Tenant-Id"] == "test-tenant-id"
        assert headers["Accept"] == "application/json"

    @pytest.mark.asyncio
    async def test_unpaged_endpoint_makes_single_request(self, data_service, credential) -> None:
        patcher, client = patch_async_client(
            [make_response(json={"Accounts": [xero_account("a-1"), xero_account("a-2")]})]
        )

        with patcher:
            records = await collect(data_service.fetch(EntityKind.ACCOUNT, credential))

        assert len(records) == 2
        client.request.assert_called_once()
        assert client.request.call_args.kwargs["params"] == {}

    @pytest.mark.asyncio
    async def test_items_missing_container_is_empty(self, data_service, credential) -> None:
        patcher, _ = patch_async_client([make_response(json={"Status": "OK"})])

        with patcher:
            records = await collect(data_service.fetch(EntityKind.PRODUCT, credential))

        assert records == []

    @pytest.mark.asyncio
    async def test_bills_filter_on_type_and_date(self, data_service, credential) -> None:
        patcher, client = patch_async_client(
            [make_response(json={"Invoices": [xero_invoice("b-1", doc_type="ACCPAY")]})]
        )
        filters = FetchFilters(
            date_from=date(2024, 1, 1),
            modified_since=datetime(2024, 1, 5, 8, 30, tzinfo=timezone.utc),
        )

        with patcher:
            await collect(data_service.fetch(EntityKind.BILL, credential, filters))

        call = client.request.call_args
        assert call.kwargs["params"]["where"] == 'Type=="ACCPAY" AND Date>=DateTime(2024,1,1)'
        assert call.kwargs["headers"]["If-Modified-Since"] == "2024-01-05T08:30:00"

    @pytest.mark.asyncio
    async def test_single_record_by_id(self, data_service, credential) -> None:
        patcher, client = patch_async_client(
            [make_response(json={"Items": [xero_item("item-1")]})]
        )

        with patcher:
            records = await collect(
                data_service.fetch(
                    EntityKind.PRODUCT, credential, FetchFilters(remote_id="item-1")
                )
            )

        assert [record["ItemID"] for record in records] == ["item-1"]
        assert client.request.call_args.args == ("GET", f"{BASE_URL}/Items/item-1")


class TestXeroInvoiceStatus:
    @pytest.mark.asyncio
    async def test_void_invoice(self, data_service, credential) -> None:
        # Arrange
        voided = xero_invoice("inv-1", Status="VOIDED")
        patcher, client = patch_async_client([make_response(json={"Invoices": [voided]})])

        # Act
        with patcher:
            result = await data_service.void_invoice(credential, "inv-1", "token")

        # Assert
        assert result["Status"] == "VOIDED"
        call = client.request.call_args
        assert call.args == ("POST", f"{BASE_URL}/Invoices/inv-1")
        assert call.kwargs["json"] == {"InvoiceID": "inv-1", "Status": "VOIDED"}

    @pytest.mark.asyncio
    async def test_delete_invoice_sets_deleted_status(self, data_service, credential) -> None:
        patcher, client = patch_async_client(
            [make_response(json={"Invoices": [xero_invoice("inv-1", Status="DELETED")]})]
        )

        with patcher:
            await data_service.delete_invoice(credential, "inv-1", "token")

        assert client.request.call_args.kwargs["json"]["Status"] == "DELETED"

    @pytest.mark.asyncio
    async def test_conflict_status_raises_sync_conflict(self, data_service, credential) -> None:
        patcher, _ = patch_async_client([make_response(409, text="Conflict")])

        with patcher:
            with pytest.raises(SyncConflict):
                await data_service.void_invoice(credential, "inv-1", "token")

    @pytest.mark.asyncio
    async def test_validation_error_is_remote_api_error(self, data_service, credential) -> None:
        patcher, _ = patch_async_client(
            [make_response(400, json={"Message": "Invoice not of valid status for modification"})]
        )

        with patcher:
            with pytest.raises(RemoteApiError) as exc_info:
                await data_service.void_invoice(credential, "inv-1", "token")

        assert exc_info.value.status == 400
        assert "not of valid status" in exc_info.value.body
