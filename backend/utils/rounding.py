from decimal import Decimal, ROUND_HALF_UP


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves away from zero (2.25 -> 2.3), unlike the built-in round()."""
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def percent_of(value: float, scale: float) -> int:
    """value/scale as a whole-number percentage."""
    if scale <= 0:
        return 0
    return int(round_half_up(value / scale * 100))
