"""Tests for entity adapters and the adapter registry."""

from __future__ import annotations

from datetime import date

import pytest

from qbolink.storage import Customer, Invoice
from qbolink.sync import AdapterRegistry, CustomerAdapter, InvoiceAdapter, default_registry

MOCK_REMOTE_CUSTOMER = {
    "Id": "58",
    "SyncToken": "2",
    "DisplayName": "Widget Co",
    "CompanyName": "Widget Company LLC",
    "PrimaryEmailAddr": {"Address": "ap@widget.example"},
    "PrimaryPhone": {"FreeFormNumber": "(555) 555-0100"},
    "BillAddr": {
        "Line1": "1 Main St",
        "City": "Springfield",
        "CountrySubDivisionCode": "IL",
        "PostalCode": "62701",
        "Country": "US",
    },
}

MOCK_REMOTE_INVOICE = {
    "Id": "301",
    "SyncToken": "0",
    "DocNumber": "INV-001",
    "TxnDate": "2025-01-10",
    "DueDate": "2025-02-10",
    "TotalAmt": 3500.00,
    "Balance": 1500.00,
    "EmailStatus": "EmailSent",
    "CustomerRef": {"name": "Widget Co", "value": "58"},
    "CustomerMemo": {"value": "Thanks for your business"},
    "Line": [
        {
            "DetailType": "SalesItemLineDetail",
            "Amount": 3500.00,
            "Description": "Consulting services - January",
            "SalesItemLineDetail": {
                "ItemRef": {"name": "Consulting", "value": "5"},
                "Qty": 35,
                "UnitPrice": 100.00,
            },
        },
        {"DetailType": "SubTotalLineDetail", "Amount": 3500.00, "SubTotalLineDetail": {}},
    ],
}


class TestCustomerAdapter:
    def test_to_remote_payload(self) -> None:
        customer = Customer(
            user_id="user-1",
            name="Widget Co",
            email="ap@widget.example",
            billing_address_line1="1 Main St",
            billing_address_city="Springfield",
            billing_address_state="IL",
        )
        payload = CustomerAdapter().to_remote_payload(customer)

        assert payload["DisplayName"] == "Widget Co"
        assert payload["PrimaryEmailAddr"] == {"Address": "ap@widget.example"}
        assert payload["BillAddr"] == {"Line1": "1 Main St", "City": "Springfield", "CountrySubDivisionCode": "IL"}
        assert "ShipAddr" not in payload
        assert "PrimaryPhone" not in payload
        assert "Id" not in payload

    def test_from_remote_payload(self) -> None:
        fields = CustomerAdapter().from_remote_payload(MOCK_REMOTE_CUSTOMER)

        assert fields["name"] == "Widget Co"
        assert fields["company_name"] == "Widget Company LLC"
        assert fields["email"] == "ap@widget.example"
        assert fields["phone"] == "(555) 555-0100"
        assert fields["billing_address_city"] == "Springfield"
        assert fields["billing_address_state"] == "IL"
        assert "shipping_address_city" not in fields


class TestInvoiceAdapter:
    def test_to_remote_payload(self) -> None:
        invoice = Invoice(
            user_id="user-1",
            quickbooks_customer_id="58",
            invoice_number="INV-002",
            txn_date=date(2025, 3, 1),
            due_date=date(2025, 3, 31),
            line_items=[
                {"description": "Widgets", "quantity": 10, "unit_price": 5.0, "amount": 50.0, "item_id": "7"},
            ],
        )
        payload = InvoiceAdapter().to_remote_payload(invoice)

        assert payload["CustomerRef"] == {"value": "58"}
        assert payload["DocNumber"] == "INV-002"
        assert payload["TxnDate"] == "2025-03-01"
        assert payload["DueDate"] == "2025-03-31"
        line = payload["Line"][0]
        assert line["DetailType"] == "SalesItemLineDetail"
        assert line["Amount"] == 50.0
        assert line["Description"] == "Widgets"
        assert line["SalesItemLineDetail"] == {"Qty": 10, "UnitPrice": 5.0, "ItemRef": {"value": "7"}}

    def test_from_remote_payload(self) -> None:
        fields = InvoiceAdapter().from_remote_payload(MOCK_REMOTE_INVOICE)

        assert fields["quickbooks_customer_id"] == "58"
        assert fields["invoice_number"] == "INV-001"
        assert fields["txn_date"] == date(2025, 1, 10)
        assert fields["due_date"] == date(2025, 2, 10)
        assert fields["total_amount"] == 3500.00
        assert fields["balance"] == 1500.00
        assert fields["status"] == "sent"
        assert fields["customer_memo"] == "Thanks for your business"
        assert fields["line_items"] == [{
            "description": "Consulting services - January",
            "quantity": 35.0,
            "unit_price": 100.0,
            "amount": 3500.0,
            "item_id": "5",
        }]

    @pytest.mark.parametrize(
        ("email_status", "expected"),
        [("EmailSent", "sent"), ("NeedToSend", "pending"), ("NotSet", "draft"), (None, "draft")],
    )
    def test_status_mapping(self, email_status: str | None, expected: str) -> None:
        remote = {**MOCK_REMOTE_INVOICE}
        if email_status is None:
            remote.pop("EmailStatus")
        else:
            remote["EmailStatus"] = email_status
        assert InvoiceAdapter().from_remote_payload(remote)["status"] == expected


class TestInvoiceHelpers:
    def test_calculate_totals(self) -> None:
        invoice = Invoice(
            user_id="user-1",
            tax_amount=5.0,
            line_items=[{"amount": 10.0}, {"amount": 15.5}],
        )
        invoice.calculate_totals()
        assert invoice.subtotal == 25.5
        assert invoice.total_amount == 30.5

    def test_overdue(self) -> None:
        invoice = Invoice(user_id="user-1", due_date=date(2025, 1, 1), balance=10.0)
        assert invoice.is_overdue(date(2025, 1, 2))
        assert not invoice.is_overdue(date(2024, 12, 31))
        invoice.balance = 0.0
        assert not invoice.is_overdue(date(2025, 1, 2))


class TestAdapterRegistry:
    def test_default_registry(self) -> None:
        registry = default_registry()
        assert len(registry) == 2
        assert registry.entity_types == ["customer", "invoice"]
        assert isinstance(registry.get("customer"), CustomerAdapter)
        assert isinstance(registry.get("Invoice"), InvoiceAdapter)

    def test_unknown_entity(self) -> None:
        with pytest.raises(KeyError, match="No adapter registered"):
            default_registry().get("vendor")

    def test_for_record(self) -> None:
        registry = default_registry()
        assert registry.for_record(Invoice(user_id="u")).entity_type == "invoice"

    def test_empty_registry(self) -> None:
        registry = AdapterRegistry()
        assert len(registry) == 0
        assert "customer" not in registry
        registry.register(CustomerAdapter())
        assert "customer" in registry

    def test_register_normalises_entity_type(self) -> None:
        class VendorAdapter(CustomerAdapter):
            entity_type = "Vendor"
            remote_type_name = "Vendor"

        registry = AdapterRegistry()
        registry.register(VendorAdapter())
        assert registry.entity_types == ["vendor"]
        assert "Vendor" in registry
        assert isinstance(registry.get("vendor"), VendorAdapter)
        assert isinstance(registry.get("VENDOR"), VendorAdapter)
