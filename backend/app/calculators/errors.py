"""Errors raised by the calculators."""
from __future__ import annotations

from typing import List, Sequence


class CalculationValidationError(ValueError):
    """Raised when required inputs are missing; lists every missing field at once."""

    def __init__(self, fields: Sequence[str], labels: Sequence[str]) -> None:
        self.fields: List[str] = list(fields)
        self.labels: List[str] = list(labels)
        super().__init__(f"{'、'.join(self.labels)}が未入力です。入力してください。")


class ZeroDenominatorError(ArithmeticError):
    """Raised when land and building assessed values are both zero."""

    def __init__(self) -> None:
        super().__init__("固定資産税評価額の合計が0円です")


class InvalidRateError(ValueError):
    """Raised when the consumption tax rate is negative."""

    def __init__(self, rate: float) -> None:
        self.rate = rate
        super().__init__(f"消費税率が不正です: {rate}%")
