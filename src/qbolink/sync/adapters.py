"""
Entity adapters — how a local table maps onto a QuickBooks entity.

Each adapter is registered under an entity-type key in an
``AdapterRegistry`` built once at startup; the sync engine looks adapters
up there instead of inspecting model classes at runtime.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any

from qbolink.clients.base import RemoteEntity
from qbolink.storage.entities import Customer, Invoice, SyncedRecordMixin

logger = logging.getLogger("qbolink.sync.adapters")


class EntityAdapter(ABC):
    """Abstract base class for entity adapters.

    To sync a new table, subclass this and set:
    - ``entity_type``: Registry key (e.g. ``"vendor"``).
    - ``remote_type_name``: QuickBooks entity name (e.g. ``"Vendor"``).
    - ``model``: The SQLAlchemy class using ``SyncedRecordMixin``.

    and implement ``to_remote_payload()`` / ``from_remote_payload()``.
    """

    entity_type: str = "base"
    remote_type_name: str = ""
    model: type[SyncedRecordMixin]

    @abstractmethod
    def to_remote_payload(self, record: Any) -> RemoteEntity:
        """Local record -> QuickBooks fields (without Id/SyncToken)."""
        ...

    @abstractmethod
    def from_remote_payload(self, remote: RemoteEntity) -> dict[str, Any]:
        """QuickBooks entity -> local column values (partial record)."""
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _address_to_remote(line1: str | None, line2: str | None, city: str | None,
                       state: str | None, postal_code: str | None, country: str | None) -> dict[str, Any]:
    fields = {
        "Line1": line1,
        "Line2": line2,
        "City": city,
        "CountrySubDivisionCode": state,
        "PostalCode": postal_code,
        "Country": country,
    }
    return {k: v for k, v in fields.items() if v}


def _address_from_remote(prefix: str, address: dict[str, Any] | None) -> dict[str, Any]:
    if not address:
        return {}
    return {
        f"{prefix}_line1": address.get("Line1"),
        f"{prefix}_line2": address.get("Line2"),
        f"{prefix}_city": address.get("City"),
        f"{prefix}_state": address.get("CountrySubDivisionCode"),
        f"{prefix}_postal_code": address.get("PostalCode"),
        f"{prefix}_country": address.get("Country"),
    }


def _parse_date(raw: str | None) -> date | None:
    """Parse a QBO date string (YYYY-MM-DD)."""
    if not raw:
        return None
    return datetime.strptime(raw[:10], "%Y-%m-%d").date()


# ---------------------------------------------------------------------------
# Built-in adapters
# ---------------------------------------------------------------------------

class CustomerAdapter(EntityAdapter):
    entity_type = "customer"
    remote_type_name = "Customer"
    model = Customer

    def to_remote_payload(self, record: Customer) -> RemoteEntity:
        payload: RemoteEntity = {"DisplayName": record.name}
        if record.company_name:
            payload["CompanyName"] = record.company_name
        if record.email:
            payload["PrimaryEmailAddr"] = {"Address": record.email}
        if record.phone:
            payload["PrimaryPhone"] = {"FreeFormNumber": record.phone}
        if record.has_billing_address:
            payload["BillAddr"] = _address_to_remote(
                record.billing_address_line1, record.billing_address_line2,
                record.billing_address_city, record.billing_address_state,
                record.billing_address_postal_code, record.billing_address_country,
            )
        if record.has_shipping_address:
            payload["ShipAddr"] = _address_to_remote(
                record.shipping_address_line1, record.shipping_address_line2,
                record.shipping_address_city, record.shipping_address_state,
                record.shipping_address_postal_code, record.shipping_address_country,
            )
        return payload

    def from_remote_payload(self, remote: RemoteEntity) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "name": remote.get("DisplayName") or remote.get("FullyQualifiedName") or "",
            "company_name": remote.get("CompanyName"),
        }
        if remote.get("PrimaryEmailAddr"):
            fields["email"] = remote["PrimaryEmailAddr"].get("Address")
        if remote.get("PrimaryPhone"):
            fields["phone"] = remote["PrimaryPhone"].get("FreeFormNumber")
        fields.update(_address_from_remote("billing_address", remote.get("BillAddr")))
        fields.update(_address_from_remote("shipping_address", remote.get("ShipAddr")))
        return fields


_INVOICE_STATUS_MAP: dict[str, str] = {
    "EmailSent": "sent",
    "NeedToSend": "pending",
}


class InvoiceAdapter(EntityAdapter):
    entity_type = "invoice"
    remote_type_name = "Invoice"
    model = Invoice

    def to_remote_payload(self, record: Invoice) -> RemoteEntity:
        payload: RemoteEntity = {}
        if record.quickbooks_customer_id:
            payload["CustomerRef"] = {"value": record.quickbooks_customer_id}
        if record.invoice_number:
            payload["DocNumber"] = record.invoice_number
        if record.txn_date:
            payload["TxnDate"] = record.txn_date.isoformat()
        if record.due_date:
            payload["DueDate"] = record.due_date.isoformat()
        if record.private_note:
            payload["PrivateNote"] = record.private_note
        if record.customer_memo:
            payload["CustomerMemo"] = {"value": record.customer_memo}

        lines: list[dict[str, Any]] = []
        for index, item in enumerate(record.line_items or [], start=1):
            detail: dict[str, Any] = {
                "Qty": item.get("quantity", 1),
                "UnitPrice": item.get("unit_price", 0),
            }
            if item.get("item_id"):
                detail["ItemRef"] = {"value": item["item_id"]}
            line: dict[str, Any] = {
                "LineNum": index,
                "Amount": item.get("amount", 0),
                "DetailType": "SalesItemLineDetail",
                "SalesItemLineDetail": detail,
            }
            if item.get("description"):
                line["Description"] = item["description"]
            lines.append(line)
        payload["Line"] = lines
        return payload

    def from_remote_payload(self, remote: RemoteEntity) -> dict[str, Any]:
        customer_ref = remote.get("CustomerRef") or {}
        memo = remote.get("CustomerMemo") or {}
        total = float(remote.get("TotalAmt", 0) or 0)

        line_items: list[dict[str, Any]] = []
        for line in remote.get("Line", []):
            if line.get("DetailType") != "SalesItemLineDetail":
                continue
            detail = line.get("SalesItemLineDetail", {})
            item_ref = detail.get("ItemRef", {})
            line_items.append({
                "description": line.get("Description", item_ref.get("name", "")),
                "quantity": float(detail.get("Qty", 1)),
                "unit_price": float(detail.get("UnitPrice", 0)),
                "amount": float(line.get("Amount", 0)),
                "item_id": item_ref.get("value"),
            })

        return {
            "quickbooks_customer_id": customer_ref.get("value"),
            "invoice_number": remote.get("DocNumber"),
            "txn_date": _parse_date(remote.get("TxnDate")),
            "due_date": _parse_date(remote.get("DueDate")),
            "subtotal": total,
            "total_amount": total,
            "balance": float(remote.get("Balance", 0) or 0),
            "private_note": remote.get("PrivateNote"),
            "customer_memo": memo.get("value") if isinstance(memo, dict) else memo,
            "status": _INVOICE_STATUS_MAP.get(remote.get("EmailStatus", ""), "draft"),
            "line_items": line_items,
        }


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class AdapterRegistry:
    """Lookup table of entity adapters, keyed by entity type and model."""

    def __init__(self, adapters: list[EntityAdapter] | None = None) -> None:
        self._adapters: dict[str, EntityAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def __len__(self) -> int:
        return len(self._adapters)

    def __contains__(self, entity_type: str) -> bool:
        return entity_type.lower() in self._adapters

    @property
    def entity_types(self) -> list[str]:
        return sorted(self._adapters)

    def register(self, adapter: EntityAdapter) -> None:
        """Register an adapter instance."""
        self._adapters[adapter.entity_type.lower()] = adapter
        logger.debug("Registered adapter: %s -> %s", adapter.entity_type, adapter.remote_type_name)

    def get(self, entity_type: str) -> EntityAdapter:
        try:
            return self._adapters[entity_type.lower()]
        except KeyError:
            raise KeyError(
                f"No adapter registered for '{entity_type}'. Known: {', '.join(self.entity_types) or 'none'}"
            ) from None

    def for_record(self, record: SyncedRecordMixin) -> EntityAdapter:
        for adapter in self._adapters.values():
            if type(record) is adapter.model:
                return adapter
        raise KeyError(f"No adapter registered for model {type(record).__name__}")


def default_registry() -> AdapterRegistry:
    """Registry with the built-in Customer and Invoice adapters."""
    return AdapterRegistry([CustomerAdapter(), InvoiceAdapter()])
