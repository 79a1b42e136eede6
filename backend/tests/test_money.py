from __future__ import annotations

from decimal import Decimal

import pytest

from backoffice.services.money import round2, sum2, to_decimal


def test_to_decimal_keeps_float_literals() -> None:
    assert to_decimal(0.1) == Decimal("0.1")
    assert to_decimal("12.50") == Decimal("12.50")
    assert to_decimal(7) == Decimal("7")


@pytest.mark.parametrize("value", [None, "", float("nan"), float("inf")])
def test_to_decimal_treats_missing_and_non_finite_as_zero(value) -> None:
    assert to_decimal(value) == 0


def test_to_decimal_rejects_garbage_and_booleans() -> None:
    with pytest.raises(ValueError):
        to_decimal("12,50")
    with pytest.raises(ValueError):
        to_decimal(True)


def test_round2_is_half_up() -> None:
    assert round2("0.005") == Decimal("0.01")
    assert round2("2.675") == Decimal("2.68")
    assert round2("-0.005") == Decimal("-0.01")


def test_sum2() -> None:
    assert sum2(["0.10", 0.2, Decimal("0.3")]) == Decimal("0.60")
    assert sum2([]) == Decimal("0.00")

