from typing import Optional

# rate with an empty denominator
NO_DATA = None


def win_rate(wins: int, total: int) -> Optional[float]:
    """Percentage rounded to one decimal, or NO_DATA when ``total`` is zero."""
    if total <= 0:
        return NO_DATA
    return round(100.0 * wins / total, 1)
