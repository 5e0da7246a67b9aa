"""Minor-unit money helpers.

All amounts handled by the engine are integers in the currency's minor unit
(cents). Decimal arithmetic is only used transiently for rates.
"""

import decimal
from decimal import Decimal

MINOR_UNITS_PER_MAJOR = 100

ROUNDING_MODES = {
    "ROUND_HALF_UP": decimal.ROUND_HALF_UP,
    "ROUND_HALF_EVEN": decimal.ROUND_HALF_EVEN,
    "ROUND_HALF_DOWN": decimal.ROUND_HALF_DOWN,
    "ROUND_DOWN": decimal.ROUND_DOWN,
    "ROUND_UP": decimal.ROUND_UP,
    "ROUND_FLOOR": decimal.ROUND_FLOOR,
    "ROUND_CEILING": decimal.ROUND_CEILING,
}


def to_minor(major: Decimal | int | str) -> int:
    """Convert a major-unit amount ("180.00") to minor units (18000)."""
    return int((Decimal(str(major)) * MINOR_UNITS_PER_MAJOR).quantize(Decimal(1)))


def format_minor(amount: int) -> str:
    """Render minor units with two decimals, e.g. 137000 -> "1370.00"."""
    sign = "-" if amount < 0 else ""
    whole, cents = divmod(abs(amount), MINOR_UNITS_PER_MAJOR)
    return f"{sign}{whole}.{cents:02d}"


def apply_rate(
    amount: int,
    rate: Decimal,
    *,
    increment: int = 1,
    mode: str = "ROUND_HALF_UP",
) -> int:
    """Multiply a minor-unit amount by a rate and round to an increment.

    Args:
        amount: Base amount in minor units
        rate: Multiplier (0.08 for 8%)
        increment: Rounding quantum in minor units (100 rounds to whole units)
        mode: Name of a decimal rounding mode

    Returns:
        Rounded amount in minor units

    Raises:
        ValueError: If the rounding mode is unknown
    """
    if mode not in ROUNDING_MODES:
        raise ValueError(f"Unknown rounding mode: {mode}")

    raw = Decimal(amount) * rate / Decimal(increment)
    steps = raw.quantize(Decimal(1), rounding=ROUNDING_MODES[mode])
    return int(steps) * increment
