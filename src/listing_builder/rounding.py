"""
Money rounding shared by the allocation engine and the spreadsheet literals.

Half away from zero on the shortest decimal representation of the float, the
same result a spreadsheet ROUND(x, 2) gives.
"""

import math
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal('0.01')


def round2(value) -> float:
    value = float(value or 0)
    if not math.isfinite(value):
        return 0.0
    return float(Decimal(repr(value)).quantize(CENT, rounding=ROUND_HALF_UP))
