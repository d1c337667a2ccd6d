# soulscore/utils/scoring_math.py
import math
from typing import Union


def round_half_up(value: float, digits: int = 0) -> Union[int, float]:
    """
    Round with ties going up (2.5 → 3, 62.5 → 63).

    Stored scores were historically produced with this rule, so every
    score uses it instead of the built-in round() (ties to even).
    With digits=0 an int is returned.
    """
    if digits == 0:
        return int(math.floor(value + 0.5))
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor
