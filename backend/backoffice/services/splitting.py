from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, fields, replace
from datetime import date
from decimal import Decimal
from typing import Any

from backoffice.models.amounts import AMOUNT_FIELDS
from backoffice.services.errors import ManualTotalsError
from backoffice.services.money import ZERO, round2, to_decimal
from backoffice.services.shares import normalize_shares, split_amount


@dataclass(frozen=True, slots=True)
class ServiceLine:
    service_id: uuid.UUID | None
    description: str
    currency: str
    departure_date: date | None = None
    return_date: date | None = None

    sale_price: Decimal = ZERO
    taxable_base_21: Decimal = ZERO
    commission_21: Decimal = ZERO
    tax_21: Decimal = ZERO
    vat_on_commission_21: Decimal = ZERO
    taxable_base_10_5: Decimal = ZERO
    commission_10_5: Decimal = ZERO
    tax_10_5: Decimal = ZERO
    vat_on_commission_10_5: Decimal = ZERO
    taxable_card_interest: Decimal = ZERO
    vat_on_card_interest: Decimal = ZERO
    non_computable: Decimal = ZERO

    @classmethod
    def from_service(cls, service: Any) -> "ServiceLine":
        """Snapshot a persisted `Service` row; missing amounts count as zero."""
        amounts = {name: round2(getattr(service, name, None)) for name in AMOUNT_FIELDS}
        for name, value in amounts.items():
            if value < 0:
                raise ValueError(f"Service {service.id}: {name} must be >= 0")
        return cls(
            service_id=service.id,
            description=service.description or "",
            currency=(service.currency or "").strip().upper(),
            departure_date=service.departure_date,
            return_date=service.return_date,
            **amounts,
        )

    def amounts(self) -> dict[str, Decimal]:
        return {name: getattr(self, name) for name in AMOUNT_FIELDS}


@dataclass(frozen=True, slots=True)
class ManualTotals:
    """
    Hand-entered VAT buckets replacing the computed service-line aggregation.

    `None` means "not entered"; it is different from an explicit zero for `total`.
    """

    total: Decimal | None = None
    base_21: Decimal | None = None
    vat_21: Decimal | None = None
    base_10_5: Decimal | None = None
    vat_10_5: Decimal | None = None
    exempt: Decimal | None = None
    card_interest_base: Decimal | None = None
    card_interest_vat: Decimal | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "ManualTotals | None":
        if not raw:
            return None
        values: dict[str, Decimal | None] = {}
        for f in fields(cls):
            v = raw.get(f.name)
            values[f.name] = None if v is None else to_decimal(v)
        if all(v is None for v in values.values()):
            return None
        return cls(**values)

    def to_payload(self) -> dict[str, str | None]:
        return {f.name: (None if getattr(self, f.name) is None else str(getattr(self, f.name))) for f in fields(self)}

    def entered(self) -> dict[str, Decimal]:
        return {f.name: getattr(self, f.name) for f in fields(self) if getattr(self, f.name) is not None}


def split_service_lines(lines: Sequence[ServiceLine], shares: Sequence[float]) -> list[list[ServiceLine]]:
    """
    Split every monetary field of every line across payers.

    Returns one list per payer, each parallel to `lines`. Fields are split
    independently; a payer's `sale_price` slice is not reconciled against its
    tax/commission slices.
    """
    normalized = normalize_shares(shares)
    per_payer: list[list[ServiceLine]] = [[] for _ in normalized]

    for line in lines:
        chunks = {name: split_amount(value, normalized) for name, value in line.amounts().items()}
        for idx, payer_lines in enumerate(per_payer):
            payer_lines.append(replace(line, **{name: parts[idx] for name, parts in chunks.items()}))

    return per_payer


def line_currencies(lines: Sequence[ServiceLine]) -> list[str]:
    seen: list[str] = []
    for line in lines:
        cur = line.currency.strip().upper()
        if cur not in seen:
            seen.append(cur)
    return seen


def ensure_single_currency(lines: Sequence[ServiceLine]) -> str:
    currencies = line_currencies(lines)
    if len(currencies) != 1:
        raise ManualTotalsError("Manual totals require a single currency across all services")
    return currencies[0]


def split_manual_totals(totals: ManualTotals, shares: Sequence[float]) -> list[ManualTotals]:
    normalized = normalize_shares(shares)
    if len(normalized) == 1:
        return [totals]

    per_payer: list[dict[str, Decimal | None]] = [{} for _ in normalized]
    for f in fields(totals):
        raw = getattr(totals, f.name)
        chunks = [None] * len(normalized) if raw is None else split_amount(raw, normalized)
        for idx, value in enumerate(chunks):
            per_payer[idx][f.name] = value
    return [ManualTotals(**values) for values in per_payer]
