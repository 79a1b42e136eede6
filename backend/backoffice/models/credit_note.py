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


class CreditNote(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "credit_notes"
    __table_args__ = (
        UniqueConstraint(
            "agency_id",
            "point_of_sale",
            "voucher_type",
            "voucher_number",
            name="uq_credit_note_agency_pos_type_number",
        ),
        UniqueConstraint("agency_id", "agency_credit_note_id", name="uq_credit_note_agency_sequence"),
    )

    agency_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("agencies.id"), nullable=False, index=True)
    agency_credit_note_id: Mapped[int] = mapped_column(Integer, nullable=False)
    invoice_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("invoices.id"), nullable=False, index=True)

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

    # [{"Tipo": 1, "PtoVta": 1, "Nro": 123}]
    associated_vouchers: Mapped[list[dict[str, Any]]] = mapped_column(JSONB, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)

    items: Mapped[list["CreditNoteItem"]] = relationship(
        back_populates="credit_note",
        cascade="all, delete-orphan",
        order_by="CreditNoteItem.position",
    )

    @property
    def qr_url(self) -> str | None:
        value = (self.payload or {}).get("qr_url")
        return str(value) if value else None

    @property
    def qr_base64(self) -> str | None:
        value = (self.payload or {}).get("qr_base64")
        return str(value) if value else None


class CreditNoteItem(UUIDPrimaryKeyMixin, AmountBreakdownMixin, Base):
    __tablename__ = "credit_note_items"

    credit_note_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("credit_notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    credit_note: Mapped[CreditNote] = relationship(back_populates="items")
