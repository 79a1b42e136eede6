from __future__ import annotations

import math
from collections.abc import Sequence
from decimal import Decimal

from backoffice.services.money import round2, to_decimal


def _clean_weight(value: object) -> float:
    try:
        w = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(w) or w <= 0:
        return 0.0
    return w


def normalize_shares(weights: Sequence[object]) -> list[float]:
    """
    Turn payer weights into fractions that sum to 1.

    - No weights: a single payer owning everything.
    - Non-finite / non-positive weights count as zero.
    - Nothing usable left: equal split across all entries.
    """
    n = len(weights)
    if n == 0:
        return [1.0]

    cleaned = [_clean_weight(w) for w in weights]
    total = math.fsum(cleaned)
    if total <= 0:
        return [1.0 / n] * n
    return [w / total for w in cleaned]


def validate_payer_shares(shares: Sequence[object] | None, *, payer_count: int) -> list[float]:
    """
    Validate operator-entered shares before they reach `normalize_shares()`.

    Missing shares mean an equal split.
    """
    if payer_count <= 0:
        raise ValueError("At least one payer is required")
    if shares is None or len(shares) == 0:
        return [1.0 / payer_count] * payer_count
    if len(shares) != payer_count:
        raise ValueError(f"Expected {payer_count} payer shares, got {len(shares)}")

    out: list[float] = []
    for idx, raw in enumerate(shares):
        w = _clean_weight(raw)
        if w <= 0:
            raise ValueError(f"Payer share #{idx + 1} must be a positive number")
        out.append(w)
    return normalize_shares(out)


def split_amount(amount: object, shares: Sequence[float]) -> list[Decimal]:
    """
    Split `amount` by `shares`, each part rounded to cents.

    The rounding difference is absorbed by the last part so that
    `sum(result) == round2(amount)` always holds.
    """
    normalized = normalize_shares(shares)
    total = round2(amount)
    if len(normalized) == 1:
        return [total]

    parts = [round2(total * to_decimal(share)) for share in normalized]
    diff = round2(total - sum(parts))
    if diff:
        parts[-1] = round2(parts[-1] + diff)
    return parts
