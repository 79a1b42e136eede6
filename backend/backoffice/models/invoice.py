from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import Date, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice.core.enums import VoucherStatus
from backoffice.models.amounts import MONEY, AmountBreakdownMixin
from backoffice.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from backoffice.models.sql_enums import voucher_status_enum


class Invoice(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint(
            "agency_id",
            "point_of_sale",
            "voucher_type",
            "voucher_number",
            name="uq_invoice_agency_pos_type_number",
        ),
        UniqueConstraint("agency_id", "agency_invoice_id", name="uq_invoice_agency_sequence"),
    )

    agency_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("agencies.id"), nullable=False, index=True)
    agency_invoice_id: Mapped[int] = mapped_column(Integer, nullable=False)
    booking_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("bookings.id"), nullable=False, index=True)
    client_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("clients.id"), nullable=False)

    point_of_sale: Mapped[int] = mapped_column(Integer, nullable=False)
    voucher_type: Mapped[int] = mapped_column(Integer, nullable=False)
    voucher_number: Mapped[str] = mapped_column(String(32), nullable=False)
    display_number: Mapped[str] = mapped_column(String(32), nullable=False)
    legacy_number: Mapped[str] = mapped_column(String(32), nullable=False)

    cae: Mapped[str] = mapped_column(String(32), nullable=False)
    cae_due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(14, 6), nullable=False, default=Decimal("1"))
    status: Mapped[VoucherStatus] = mapped_column(voucher_status_enum, nullable=False, default=VoucherStatus.AUTHORIZED)
    recipient: Mapped[str] = mapped_column(String(200), nullable=False)

    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)

    items: Mapped[list["InvoiceItem"]] = relationship(
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.position",
    )

    @property
    def qr_url(self) -> str | None:
        value = (self.payload or {}).get("qr_url")
        return str(value) if value else None

    @property
    def qr_base64(self) -> str | None:
        value = (self.payload or {}).get("qr_base64")
        return str(value) if value else None


class InvoiceItem(UUIDPrimaryKeyMixin, AmountBreakdownMixin, Base):
    __tablename__ = "invoice_items"

    invoice_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    service_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), ForeignKey("services.id"), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    invoice: Mapped[Invoice] = relationship(back_populates="items")
