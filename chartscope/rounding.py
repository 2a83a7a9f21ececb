"""Half-up rounding shared by scoring and position statistics."""

import math


def round_half_up(value: float, digits: int = 0) -> float:
    """Round *value* to *digits* decimals, halves away towards +inf.

    ``round_half_up(12.5) == 13`` and ``round_half_up(1.125, 2) == 1.13``,
    where the built-in ``round`` gives 12 and 1.12.
    """
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor
