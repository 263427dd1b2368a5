"""
Synchronized entity tables.

``SyncedRecordMixin`` adds the QuickBooks bookkeeping columns to any table;
``Customer`` and ``Invoice`` are ready-to-use examples of synced entities.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import JSON, Date, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, declared_attr, mapped_column
from sqlalchemy.orm.attributes import flag_modified

from qbolink.storage.database import Base, UTCDateTime


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncedRecordMixin:
    """Columns and helpers shared by every record synced with QuickBooks.

    A record is *synced* once it has a ``quickbooks_id``; it *needs sync*
    when unsynced or modified locally after ``last_synced_at``.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    quickbooks_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sync_token: Mapped[str | None] = mapped_column(String(32), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now, onupdate=_now)

    @declared_attr.directive
    def __table_args__(cls) -> tuple[Any, ...]:
        return (UniqueConstraint("user_id", "quickbooks_id", name=f"uq_{cls.__tablename__}_user_qbo"),)

    @property
    def is_synced(self) -> bool:
        return self.quickbooks_id is not None

    @property
    def needs_sync(self) -> bool:
        if not self.is_synced or self.last_synced_at is None:
            return True
        return self.updated_at > self.last_synced_at

    def is_out_of_sync(self, hours: int = 24, now: datetime | None = None) -> bool:
        """True when the last successful sync is older than ``hours``."""
        if self.last_synced_at is None:
            return True
        return self.last_synced_at < (now or _now()) - timedelta(hours=hours)

    def mark_synced(self, *, quickbooks_id: str | None, sync_token: str | None, at: datetime) -> None:
        """Record sync bookkeeping without making the row look locally modified."""
        self.quickbooks_id = quickbooks_id
        self.sync_token = sync_token
        self.last_synced_at = at
        self.updated_at = at
        # Always written explicitly so the onupdate default never fires here.
        flag_modified(self, "updated_at")


class Customer(SyncedRecordMixin, Base):
    __tablename__ = "quickbooks_customers"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    company_name: Mapped[str | None] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(64))

    billing_address_line1: Mapped[str | None] = mapped_column(String(255))
    billing_address_line2: Mapped[str | None] = mapped_column(String(255))
    billing_address_city: Mapped[str | None] = mapped_column(String(128))
    billing_address_state: Mapped[str | None] = mapped_column(String(64))
    billing_address_postal_code: Mapped[str | None] = mapped_column(String(32))
    billing_address_country: Mapped[str | None] = mapped_column(String(64))

    shipping_address_line1: Mapped[str | None] = mapped_column(String(255))
    shipping_address_line2: Mapped[str | None] = mapped_column(String(255))
    shipping_address_city: Mapped[str | None] = mapped_column(String(128))
    shipping_address_state: Mapped[str | None] = mapped_column(String(64))
    shipping_address_postal_code: Mapped[str | None] = mapped_column(String(32))
    shipping_address_country: Mapped[str | None] = mapped_column(String(64))

    @property
    def has_billing_address(self) -> bool:
        return bool(self.billing_address_line1 or self.billing_address_city)

    @property
    def has_shipping_address(self) -> bool:
        return bool(self.shipping_address_line1 or self.shipping_address_city)

    @property
    def full_billing_address(self) -> str:
        parts = [
            self.billing_address_line1,
            self.billing_address_line2,
            self.billing_address_city,
            self.billing_address_state,
            self.billing_address_postal_code,
            self.billing_address_country,
        ]
        return ", ".join(p for p in parts if p)


class Invoice(SyncedRecordMixin, Base):
    __tablename__ = "quickbooks_invoices"

    quickbooks_customer_id: Mapped[str | None] = mapped_column(String(64))
    invoice_number: Mapped[str | None] = mapped_column(String(64))
    txn_date: Mapped[date | None] = mapped_column(Date)
    due_date: Mapped[date | None] = mapped_column(Date)
    subtotal: Mapped[float] = mapped_column(Float, default=0.0)
    tax_amount: Mapped[float] = mapped_column(Float, default=0.0)
    total_amount: Mapped[float] = mapped_column(Float, default=0.0)
    balance: Mapped[float] = mapped_column(Float, default=0.0)
    status: Mapped[str] = mapped_column(String(32), default="draft")
    private_note: Mapped[str | None] = mapped_column(Text)
    customer_memo: Mapped[str | None] = mapped_column(Text)
    # [{"description", "quantity", "unit_price", "amount", "item_id"}]
    line_items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)

    @property
    def is_paid(self) -> bool:
        return self.balance <= 0

    def is_overdue(self, today: date | None = None) -> bool:
        if self.due_date is None or self.is_paid:
            return False
        return self.due_date < (today or date.today())

    def calculate_totals(self) -> None:
        self.subtotal = round(sum(float(li.get("amount", 0)) for li in self.line_items or []), 2)
        self.total_amount = round(self.subtotal + (self.tax_amount or 0.0), 2)
