"""売買代金の土地・建物按分（固定資産税評価額比）。"""
from __future__ import annotations

from fractions import Fraction
from typing import List

from .errors import CalculationValidationError, InvalidRateError, ZeroDenominatorError
from .numbers import as_number, exact, round_half_up
from .types import (
    ApportionmentInputs,
    ApportionmentResult,
    ApportionmentSnapshot,
    TaxMode,
)

DEFAULT_TAX_RATE = 10.0

FIELD_LABELS = {
    "salePrice": "売買代金",
    "landAssessedValue": "土地の固定資産税評価額",
    "buildingAssessedValue": "建物の固定資産税評価額",
}


def building_ratio(land_assessed_value: float, building_assessed_value: float) -> Fraction:
    land = exact(land_assessed_value)
    building = exact(building_assessed_value)
    denominator = land + building
    if denominator == 0:
        raise ZeroDenominatorError()
    return building / denominator


def _collect_missing(inputs: ApportionmentInputs) -> List[str]:
    missing: List[str] = []
    if inputs.sale_price is None:
        missing.append("salePrice")
    if inputs.land_assessed_value is None:
        missing.append("landAssessedValue")
    if inputs.building_assessed_value is None:
        missing.append("buildingAssessedValue")
    return missing


def calculate(inputs: ApportionmentInputs) -> ApportionmentResult:
    missing = _collect_missing(inputs)
    if missing:
        raise CalculationValidationError(missing, [FIELD_LABELS[name] for name in missing])

    ratio = building_ratio(inputs.land_assessed_value, inputs.building_assessed_value)
    tax_rate = inputs.tax_rate if inputs.tax_rate is not None else DEFAULT_TAX_RATE
    if tax_rate < 0:
        raise InvalidRateError(tax_rate)
    multiplier = 1 + exact(tax_rate) / 100
    sale_price = exact(inputs.sale_price)

    # 土地価格は必ず総額からの差引で求める
    if inputs.tax_mode == TaxMode.INCLUDE:
        building_incl = round_half_up(sale_price * ratio)
        land_price = sale_price - building_incl
        building_excl = round_half_up(building_incl / multiplier)
    else:
        building_excl = round_half_up(sale_price * ratio)
        land_price = sale_price - building_excl
        building_incl = round_half_up(building_excl * multiplier)

    snapshot = ApportionmentSnapshot(
        sale_price=inputs.sale_price,
        tax_mode=inputs.tax_mode,
        land_assessed_value=inputs.land_assessed_value,
        building_assessed_value=inputs.building_assessed_value,
        tax_rate=tax_rate,
    )
    return ApportionmentResult(
        land_price=as_number(land_price),
        building_price_incl=building_incl,
        building_price_excl=building_excl,
        consumption_tax=building_incl - building_excl,
        building_ratio=float(ratio * 100),
        snapshot=snapshot,
    )
