"""
Clamping helpers shared by budget, scoring and policy code.
"""

from __future__ import annotations

import math
from typing import Any


def as_finite_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def clamp_int(value: Any, fallback: int, minimum: int, maximum: int) -> int:
    number = as_finite_float(value)
    if number is None:
        return fallback
    # Half-up rounding so 2.5 -> 3 like the stored settings expect.
    return min(max(int(math.floor(number + 0.5)), minimum), maximum)


def clamp_float(value: Any, minimum: float, maximum: float, fallback: float | None = None) -> float:
    number = as_finite_float(value)
    if number is None:
        return minimum if fallback is None else fallback
    return min(max(number, minimum), maximum)
