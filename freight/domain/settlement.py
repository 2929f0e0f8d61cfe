"""
Settlement Calculator
=====================

Formula
-------
Commission = round_half_up(Final_Price x Rate / 100, 2)
Net        = Final_Price - Commission

The final price is rounded to the minor unit first, so the two parts always
add back up to the settled amount with no rounding leakage.

Complexity: O(1) per settlement.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from .entities import Money
from .result import ErrorKind, Result

Number = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class Settlement:
    amount: Money
    commission_amount: Money
    net_amount: Money


def settle(
    final_price: Money,
    commission_rate_percent: Number,
    currency: Optional[str] = None,
) -> Result[Settlement]:
    """Split *final_price* into the marketplace commission and the net payable."""
    rate = Decimal(str(commission_rate_percent))
    if not Decimal("0") <= rate <= Decimal("100"):
        return Result.fail(
            ErrorKind.INVALID_CONFIGURATION,
            f"Commission rate must be within [0, 100], got {rate}",
        )

    if currency is not None and currency.strip().upper() != final_price.currency:
        return Result.fail(
            ErrorKind.CURRENCY_MISMATCH,
            f"Price is in {final_price.currency}, settlement expects {currency}",
        )

    amount = final_price.rounded()
    commission = amount.multiply(rate / Decimal("100")).rounded()
    net = amount - commission
    return Result.success(Settlement(amount, commission, net))
