from decimal import Decimal

import pytest

from workflow_engines.deliberation import compute_amounts, validate_inputs


def test_medlar_and_total():
    amounts = compute_amounts(Decimal("1000.00"), Decimal("10"))
    assert amounts.medlar_amount == Decimal("100")
    assert amounts.total_value == Decimal("1100")


def test_fractional_percentage_is_exact():
    amounts = compute_amounts(Decimal("333.33"), Decimal("7.5"))
    assert amounts.medlar_amount == Decimal("24.99975")
    assert amounts.total_value == Decimal("358.32975")


def test_zero_percentage():
    amounts = compute_amounts(Decimal("500"), Decimal("0"))
    assert amounts.medlar_amount == 0
    assert amounts.total_value == Decimal("500")


@pytest.mark.parametrize(
    "value,pct,expected",
    [
        (Decimal("-1"), Decimal("10"), ["negotiated_value must not be negative"]),
        (Decimal("10"), Decimal("-0.01"), ["medlar_percentage must be between 0 and 100"]),
        (Decimal("10"), Decimal("100.01"), ["medlar_percentage must be between 0 and 100"]),
    ],
)
def test_invalid_inputs(value, pct, expected):
    assert validate_inputs(value, pct) == expected


def test_boundaries_are_valid():
    assert validate_inputs(Decimal("0"), Decimal("0")) == []
    assert validate_inputs(Decimal("0"), Decimal("100")) == []
