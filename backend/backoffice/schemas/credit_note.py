from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backoffice.core.enums import CREDIT_NOTE_VOUCHER_TYPES, VoucherStatus, VoucherType
from backoffice.schemas.amounts import AmountBreakdownOut, ManualTotalsIn


class CreditNoteCreate(BaseModel):
    invoice_id: UUID
    voucher_type: VoucherType
    exchange_rate: Decimal | None = Field(default=None, gt=0)
    credit_note_date: date | None = None
    manual_totals: ManualTotalsIn | None = None

    @field_validator("voucher_type")
    @classmethod
    def _credit_note_types_only(cls, v: VoucherType) -> VoucherType:
        if v not in CREDIT_NOTE_VOUCHER_TYPES:
            raise ValueError("voucher_type must be 3 (Nota de Crédito A) or 8 (Nota de Crédito B)")
        return v


class CreditNoteItemOut(AmountBreakdownOut):
    id: UUID
    position: int
    description: str


class CreditNoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    agency_id: UUID
    agency_credit_note_id: int
    invoice_id: UUID
    point_of_sale: int
    voucher_type: int
    voucher_number: str
    display_number: str
    legacy_number: str
    cae: str
    cae_due_date: date | None
    issue_date: date
    total_amount: Decimal
    currency: str
    exchange_rate: Decimal
    status: VoucherStatus
    recipient: str
    associated_vouchers: list[dict[str, Any]]
    qr_url: str | None
    qr_base64: str | None
    created_at: datetime
    updated_at: datetime
    items: list[CreditNoteItemOut]


class CreditNoteResultOut(BaseModel):
    success: bool
    message: str
    credit_note: CreditNoteOut | None = None
