from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from backoffice.core.enums import VatCategory
from backoffice.services.errors import ManualTotalsError
from backoffice.services.money import ZERO, round2, sum2, to_decimal
from backoffice.services.splitting import ManualTotals, ServiceLine


logger = logging.getLogger(__name__)

VAT_RATE_21 = Decimal("0.21")
VAT_RATE_10_5 = Decimal("0.105")

# AFIP accepts cent-level differences; operator input gets a little more slack.
ROUNDING_TOLERANCE = Decimal("0.01")
MANUAL_TOLERANCE = Decimal("0.05")

BUCKET_ORDER: tuple[VatCategory, ...] = (VatCategory.RATE_21, VatCategory.RATE_10_5, VatCategory.EXEMPT)

DEFAULT_BUCKET_LABELS: dict[VatCategory, str] = {
    VatCategory.RATE_21: "IVA 21%",
    VatCategory.RATE_10_5: "IVA 10.5%",
    VatCategory.EXEMPT: "Exento",
}


@dataclass(frozen=True, slots=True)
class VatBucket:
    category: VatCategory
    base: Decimal
    amount: Decimal

    def to_afip(self) -> dict[str, Any]:
        return {"Id": int(self.category), "BaseImp": float(self.base), "Importe": float(self.amount)}


@dataclass(frozen=True, slots=True)
class VatBreakdown:
    buckets: tuple[VatBucket, ...]
    net: Decimal
    vat: Decimal
    total: Decimal

    def bucket(self, category: VatCategory) -> VatBucket | None:
        for b in self.buckets:
            if b.category == category:
                return b
        return None


def merge_buckets(buckets: Iterable[VatBucket]) -> tuple[VatBucket, ...]:
    """Merge buckets by category, drop empty ones, order 21% / 10.5% / exempt."""
    bases: dict[VatCategory, Decimal] = {}
    amounts: dict[VatCategory, Decimal] = {}
    for b in buckets:
        bases[b.category] = bases.get(b.category, ZERO) + b.base
        amounts[b.category] = amounts.get(b.category, ZERO) + b.amount

    out: list[VatBucket] = []
    for category in BUCKET_ORDER:
        if category not in bases:
            continue
        base = round2(bases[category])
        amount = round2(amounts[category])
        if base == 0 and amount == 0:
            continue
        out.append(VatBucket(category=category, base=base, amount=amount))
    return tuple(out)


def breakdown_from_buckets(buckets: Iterable[VatBucket]) -> VatBreakdown:
    merged = merge_buckets(buckets)
    net = sum2(b.base for b in merged)
    vat = sum2(b.amount for b in merged)
    return VatBreakdown(buckets=merged, net=net, vat=vat, total=round2(net + vat))


def breakdown_from_lines(lines: Sequence[ServiceLine]) -> VatBreakdown:
    """
    Aggregate service lines into the AFIP VAT array.

    Card interest is charged on top of the sale price, taxed at 21%, and lands in
    that bucket. Whatever part of the sale price is not covered by bases, taxes and
    the non-computable amount is disclosed as exempt.
    """
    base21 = sum2(l.taxable_base_21 + l.commission_21 for l in lines)
    vat21 = sum2(l.tax_21 + l.vat_on_commission_21 for l in lines)
    base10 = sum2(l.taxable_base_10_5 + l.commission_10_5 for l in lines)
    vat10 = sum2(l.tax_10_5 + l.vat_on_commission_10_5 for l in lines)
    interest_base = sum2(l.taxable_card_interest for l in lines)
    interest_vat = sum2(l.vat_on_card_interest for l in lines)
    non_computable = sum2(l.non_computable for l in lines)
    sale_total = sum2(l.sale_price for l in lines)

    gap = round2(sale_total - (base21 + vat21 + base10 + vat10 + non_computable))
    exempt = non_computable
    if gap > ROUNDING_TOLERANCE:
        exempt = round2(exempt + gap)
    elif gap < -ROUNDING_TOLERANCE:
        logger.warning(
            "Service lines exceed their sale price; voucher total follows the VAT buckets",
            extra={"gap": str(gap), "service_ids": [str(l.service_id) for l in lines]},
        )

    return breakdown_from_buckets(
        [
            VatBucket(VatCategory.RATE_21, base21, vat21),
            VatBucket(VatCategory.RATE_21, interest_base, interest_vat),
            VatBucket(VatCategory.RATE_10_5, base10, vat10),
            VatBucket(VatCategory.EXEMPT, exempt, ZERO),
        ]
    )


def buckets_from_afip(raw: Any) -> list[VatBucket]:
    """Rebuild buckets from a stored AFIP `Iva` array; unknown ids are ignored."""
    if not isinstance(raw, list):
        return []
    out: list[VatBucket] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        try:
            category = VatCategory(int(entry.get("Id")))
        except (TypeError, ValueError):
            continue
        out.append(
            VatBucket(
                category=category,
                base=round2(entry.get("BaseImp")),
                amount=ZERO if category == VatCategory.EXEMPT else round2(entry.get("Importe")),
            )
        )
    return out


def compute_manual_totals(totals: ManualTotals) -> VatBreakdown:
    """Validate operator-entered totals and turn them into VAT buckets."""
    total_input = totals.total
    base21 = round2(to_decimal(totals.base_21) + to_decimal(totals.card_interest_base))
    vat21 = round2(to_decimal(totals.vat_21) + to_decimal(totals.card_interest_vat))
    base10 = round2(totals.base_10_5)
    vat10 = round2(totals.vat_10_5)
    exempt_input = round2(totals.exempt)

    entered = list(totals.entered().values())
    if any(v < 0 for v in entered):
        raise ManualTotalsError("Manual totals cannot be negative")
    if not any(v > 0 for v in entered):
        raise ManualTotalsError("Manual totals are empty")

    if (base21 > 0) != (vat21 > 0):
        raise ManualTotalsError("Manual totals: 21% base and VAT must be entered together")
    if (base10 > 0) != (vat10 > 0):
        raise ManualTotalsError("Manual totals: 10.5% base and VAT must be entered together")

    if base21 > 0 and abs(vat21 - round2(base21 * VAT_RATE_21)) > MANUAL_TOLERANCE:
        raise ManualTotalsError("Manual totals: 21% VAT does not match its taxable base")
    if base10 > 0 and abs(vat10 - round2(base10 * VAT_RATE_10_5)) > MANUAL_TOLERANCE:
        raise ManualTotalsError("Manual totals: 10.5% VAT does not match its taxable base")

    vat_sum = round2(vat21 + vat10)
    base_sum = round2(base21 + base10)
    total_from_parts = round2(base_sum + exempt_input + vat_sum)
    has_parts = base_sum > 0 or vat_sum > 0 or exempt_input > 0

    explicit_total = total_input is not None and total_input > 0
    total = round2(total_input) if explicit_total else total_from_parts
    if total <= 0:
        raise ManualTotalsError("Manual totals: invalid total amount")
    if explicit_total and has_parts and abs(total - total_from_parts) > MANUAL_TOLERANCE:
        raise ManualTotalsError("Manual totals: total does not match bases, VAT and exempt amount")

    if vat_sum - total > ROUNDING_TOLERANCE:
        raise ManualTotalsError("Manual totals: total is lower than the VAT amount")

    net = round2(total - vat_sum)
    if net + ROUNDING_TOLERANCE < base_sum:
        raise ManualTotalsError("Manual totals: taxable bases exceed the net amount")

    diff = round2(net - base_sum - exempt_input)
    if diff < -ROUNDING_TOLERANCE:
        raise ManualTotalsError("Manual totals: exempt amount exceeds the net amount")
    exempt = round2(exempt_input + max(diff, ZERO))

    buckets = merge_buckets(
        [
            VatBucket(VatCategory.RATE_21, base21, vat21),
            VatBucket(VatCategory.RATE_10_5, base10, vat10),
            VatBucket(VatCategory.EXEMPT, exempt, ZERO),
        ]
    )
    return VatBreakdown(buckets=buckets, net=net, vat=vat_sum, total=total)
