"""積算評価（土地価格＋建物価格）の計算。"""
from __future__ import annotations

import math
from fractions import Fraction
from typing import List, Optional, Tuple

from .errors import CalculationValidationError
from .numbers import exact
from .types import (
    LandMethod,
    RoadPriceUnit,
    StructureType,
    ValuationInputs,
    ValuationResult,
    ValuationSnapshot,
)

FIELD_LABELS = {
    "roadPrice": "路線価",
    "landArea": "土地面積",
    "fixedAssetTaxValue": "固定資産税評価額",
    "multiplier": "評価倍率",
    "age": "築年数",
    "floorArea": "延床面積",
    "usefulLife": "法定耐用年数",
}


def match_structure(text: Optional[str]) -> Optional[StructureType]:
    """構造名を4分類に寄せる。完全一致を優先し、次に部分一致。"""
    if not text:
        return None
    candidate = text.strip()
    for structure in StructureType:
        if candidate == structure.value:
            return structure
    for structure in StructureType:
        if structure.value in candidate:
            return structure
    return None


def resolve_method(inputs: ValuationInputs) -> LandMethod:
    """auto は計算時点で路線価が入力済みなら路線価方式、なければ倍率方式。"""
    if inputs.land_method != LandMethod.AUTO:
        return inputs.land_method
    return LandMethod.ROAD if inputs.road_price is not None else LandMethod.MULTIPLIER


def _collect_missing(inputs: ValuationInputs, method: LandMethod) -> List[str]:
    missing: List[str] = []
    if method == LandMethod.ROAD:
        if inputs.road_price is None:
            missing.append("roadPrice")
        if inputs.land_area is None:
            missing.append("landArea")
    else:
        if inputs.fixed_asset_tax_value is None:
            missing.append("fixedAssetTaxValue")
        if inputs.multiplier is None:
            missing.append("multiplier")
    if inputs.building_age is None:
        missing.append("age")
    if inputs.floor_area is None:
        missing.append("floorArea")
    useful_life = _resolve_preset(inputs)[1]
    if useful_life <= 0:
        missing.append("usefulLife")
    return missing


def _resolve_preset(inputs: ValuationInputs) -> Tuple[float, float]:
    unit_price = inputs.unit_price if inputs.unit_price is not None else inputs.structure.unit_price
    useful_life = inputs.useful_life if inputs.useful_life is not None else inputs.structure.useful_life
    return unit_price, useful_life


def road_price_in_yen(road_price: float, unit: RoadPriceUnit) -> Fraction:
    value = exact(road_price)
    return value * 1000 if unit == RoadPriceUnit.THOUSAND else value


def depreciated_building_value(
    unit_price: float,
    floor_area: float,
    useful_life: float,
    age: float,
) -> Fraction:
    """定額法: 再調達単価 × 延床面積 × 残存年数 ÷ 法定耐用年数（経過後は0）"""
    life = exact(useful_life)
    remaining = max(Fraction(0), life - exact(age))
    return exact(unit_price) * exact(floor_area) * remaining / life


def calculate(inputs: ValuationInputs) -> ValuationResult:
    method = resolve_method(inputs)
    missing = _collect_missing(inputs, method)
    if missing:
        raise CalculationValidationError(missing, [FIELD_LABELS[name] for name in missing])

    unit_price, useful_life = _resolve_preset(inputs)
    road_price = inputs.road_price if inputs.road_price is not None else 0
    land_area = inputs.land_area if inputs.land_area is not None else 0
    tax_value = inputs.fixed_asset_tax_value if inputs.fixed_asset_tax_value is not None else 0
    multiplier = inputs.multiplier if inputs.multiplier is not None else 0
    road_in_yen = road_price_in_yen(road_price, inputs.road_price_unit)

    if method == LandMethod.ROAD:
        raw_land = road_in_yen * exact(land_area)
    else:
        raw_land = exact(tax_value) * exact(multiplier)
    raw_building = depreciated_building_value(
        unit_price, inputs.floor_area, useful_life, inputs.building_age
    )

    # 切り捨ては各価格ごと。合計は切り捨て後の和。
    land_price = math.trunc(raw_land)
    building_price = math.trunc(raw_building)

    snapshot = ValuationSnapshot(
        method=method,
        road_price=road_price,
        road_price_unit=inputs.road_price_unit,
        road_price_in_yen=float(road_in_yen),
        land_area=land_area,
        fixed_asset_tax_value=tax_value,
        multiplier=multiplier,
        structure=inputs.structure,
        unit_price=unit_price,
        useful_life=useful_life,
        age=inputs.building_age,
        floor_area=inputs.floor_area,
    )
    return ValuationResult(
        land_price=land_price,
        building_price=building_price,
        total=land_price + building_price,
        method=method,
        method_was_auto=inputs.land_method == LandMethod.AUTO,
        snapshot=snapshot,
    )


def _yen(value: float) -> str:
    return f"{int(value):,}円"


def _num(value: float) -> str:
    return f"{value:,.2f}".rstrip("0").rstrip(".")


def formula_lines(result: ValuationResult) -> List[str]:
    """計算式の表示用文字列（土地・建物・合計の3行）"""
    snap = result.snapshot
    if result.method == LandMethod.ROAD:
        land = (
            f"土地価格 ＝ 路線価（{_yen(snap.road_price_in_yen)}） × "
            f"土地面積（{_num(snap.land_area)}㎡） ＝ {_yen(result.land_price)}"
        )
    else:
        land = (
            f"土地価格 ＝ 固定資産税評価額（{_yen(snap.fixed_asset_tax_value)}） × "
            f"評価倍率（{_num(snap.multiplier)}） ＝ {_yen(result.land_price)}"
        )
    building = (
        f"建物価格 ＝ 再調達単価（{_yen(snap.unit_price)}） × 延床面積（{_num(snap.floor_area)}㎡） "
        f"× {{ (法定耐用年数 {_num(snap.useful_life)}年 − 築年数 {_num(snap.age)}年) ÷ "
        f"法定耐用年数 {_num(snap.useful_life)}年 }} ＝ {_yen(result.building_price)}"
    )
    total = (
        f"参考積算価格 ＝ 土地価格（{_yen(result.land_price)}） ＋ "
        f"建物価格（{_yen(result.building_price)}） ＝ {_yen(result.total)}"
    )
    return [land, building, total]
