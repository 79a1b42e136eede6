from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from backoffice.core.enums import INVOICE_VOUCHER_TYPES, VoucherStatus, VoucherType
from backoffice.schemas.amounts import AmountBreakdownOut, ManualTotalsIn


class InvoiceCreate(BaseModel):
    booking_id: UUID
    service_ids: list[UUID] = Field(min_length=1)
    payer_ids: list[UUID] = Field(min_length=1)
    payer_shares: list[float] | None = None
    voucher_type: VoucherType
    exchange_rate: Decimal | None = Field(default=None, gt=0)
    invoice_date: date | None = None
    manual_totals: ManualTotalsIn | None = None

    description_21: list[str] = Field(default_factory=list)
    description_10_5: list[str] = Field(default_factory=list)
    description_non_computable: list[str] = Field(default_factory=list)

    @field_validator("voucher_type")
    @classmethod
    def _invoice_types_only(cls, v: VoucherType) -> VoucherType:
        if v not in INVOICE_VOUCHER_TYPES:
            raise ValueError("voucher_type must be 1 (Factura A) or 6 (Factura B)")
        return v

    @field_validator("payer_ids")
    @classmethod
    def _unique_payers(cls, v: list[UUID]) -> list[UUID]:
        if len(set(v)) != len(v):
            raise ValueError("payer_ids must not repeat")
        return v


class InvoiceItemOut(AmountBreakdownOut):
    id: UUID
    service_id: UUID | None
    position: int
    description: str


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    agency_id: UUID
    agency_invoice_id: int
    booking_id: UUID
    client_id: UUID
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
    qr_url: str | None
    qr_base64: str | None
    created_at: datetime
    updated_at: datetime
    items: list[InvoiceItemOut]


class InvoiceBatchOut(BaseModel):
    success: bool
    message: str
    invoices: list[InvoiceOut]
    errors: list[str]
    reconciliation_errors: list[str]
