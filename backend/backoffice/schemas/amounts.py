from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class AmountBreakdownOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sale_price: Decimal
    taxable_base_21: Decimal
    commission_21: Decimal
    tax_21: Decimal
    vat_on_commission_21: Decimal
    taxable_base_10_5: Decimal
    commission_10_5: Decimal
    tax_10_5: Decimal
    vat_on_commission_10_5: Decimal
    taxable_card_interest: Decimal
    vat_on_card_interest: Decimal
    non_computable: Decimal


class ManualTotalsIn(BaseModel):
    """Operator override of the VAT buckets; omitted fields are "not entered"."""

    total: Decimal | None = None
    base_21: Decimal | None = None
    vat_21: Decimal | None = None
    base_10_5: Decimal | None = None
    vat_10_5: Decimal | None = None
    exempt: Decimal | None = None
    card_interest_base: Decimal | None = None
    card_interest_vat: Decimal | None = None
