"""
workflow_engines.deliberation -- Deliberation amount calculation.

A deliberation settles a negotiated price plus the "medlar" surcharge, a
percentage of the negotiated value.  Amounts are computed once, at
creation, and frozen on the instance.

    medlar_amount = negotiated_value * (medlar_percentage / 100)
    total_value   = negotiated_value + medlar_amount

Arithmetic runs under a 60-digit decimal context so realistic amounts are
exact; nothing is rounded here.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, localcontext

HUNDRED = Decimal(100)


@dataclass(frozen=True)
class DeliberationAmounts:
    negotiated_value: Decimal
    medlar_percentage: Decimal
    medlar_amount: Decimal
    total_value: Decimal


def validate_inputs(negotiated_value: Decimal, medlar_percentage: Decimal) -> list[str]:
    errors: list[str] = []
    if negotiated_value < 0:
        errors.append("negotiated_value must not be negative")
    if medlar_percentage < 0 or medlar_percentage > HUNDRED:
        errors.append("medlar_percentage must be between 0 and 100")
    return errors


def compute_amounts(
    negotiated_value: Decimal,
    medlar_percentage: Decimal,
) -> DeliberationAmounts:
    """Compute medlar and total.  Inputs must already be validated."""
    with localcontext() as ctx:
        ctx.prec = 60
        medlar_amount = negotiated_value * (medlar_percentage / HUNDRED)
        total_value = negotiated_value + medlar_amount
    return DeliberationAmounts(
        negotiated_value=negotiated_value,
        medlar_percentage=medlar_percentage,
        medlar_amount=medlar_amount,
        total_value=total_value,
    )
