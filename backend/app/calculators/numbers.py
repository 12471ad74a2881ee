"""Exact arithmetic helpers shared by the calculators."""
from __future__ import annotations

import math
from fractions import Fraction
from typing import Union


def exact(value: float) -> Fraction:
    """Convert an entered number to an exact fraction (0.1 stays 1/10)."""
    return Fraction(str(value))


def round_half_up(value: Fraction) -> int:
    """四捨五入（端数0.5は切り上げ）。"""
    return math.floor(value + Fraction(1, 2))


def as_number(value: Fraction) -> Union[int, float]:
    return int(value) if value.denominator == 1 else float(value)
