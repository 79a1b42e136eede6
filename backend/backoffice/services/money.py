from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP


CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value: object) -> Decimal:
    """
    Coerce ORM/JSON/user values into `Decimal`.

    Floats go through `str()` so `0.1` stays `0.1` instead of its binary expansion.
    `None` and non-finite floats become zero.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    if isinstance(value, bool):
        raise ValueError("Boolean is not a monetary amount")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return ZERO
        return Decimal(str(value))
    s = str(value).strip()
    if not s:
        return ZERO
    try:
        out = Decimal(s)
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e
    return out if out.is_finite() else ZERO


def round2(value: object) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def sum2(values) -> Decimal:
    return round2(sum((to_decimal(v) for v in values), ZERO))

