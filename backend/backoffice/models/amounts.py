from __future__ import annotations

from decimal import Decimal

from sqlalchemy import Numeric
from sqlalchemy.orm import Mapped, mapped_column


MONEY = Numeric(14, 2)

# Order matters: it is the column order of every breakdown table and of the split output.
AMOUNT_FIELDS: tuple[str, ...] = (
    "sale_price",
    "taxable_base_21",
    "commission_21",
    "tax_21",
    "vat_on_commission_21",
    "taxable_base_10_5",
    "commission_10_5",
    "tax_10_5",
    "vat_on_commission_10_5",
    "taxable_card_interest",
    "vat_on_card_interest",
    "non_computable",
)


class AmountBreakdownMixin:
    """Monetary breakdown shared by booked services and voucher items."""

    sale_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    taxable_base_21: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    commission_21: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    tax_21: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    vat_on_commission_21: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    taxable_base_10_5: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    commission_10_5: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    tax_10_5: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    vat_on_commission_10_5: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    taxable_card_interest: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    vat_on_card_interest: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    non_computable: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
