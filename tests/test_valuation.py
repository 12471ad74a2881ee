"""Tests for the valuation (積算評価) calculator."""
import pytest

from backend.app.calculators import (
    CalculationValidationError,
    LandMethod,
    RoadPriceUnit,
    StructureType,
    ValuationInputs,
    valuation,
)


def _wood_house(**overrides):
    params = dict(
        land_method=LandMethod.ROAD,
        road_price=100000,
        land_area=120,
        structure=StructureType.WOOD,
        building_age=10,
        floor_area=80,
    )
    params.update(overrides)
    return ValuationInputs(**params)


class TestValuationCalculate:
    """路線価方式・倍率方式と建物の定額法償却"""

    def test_end_to_end_example(self):
        """路線価10万円×120㎡、木造築10年80㎡ → 18,545,454円"""
        result = valuation.calculate(_wood_house())
        assert result.land_price == 12_000_000
        assert result.building_price == 6_545_454
        assert result.total == 18_545_454
        assert result.method == LandMethod.ROAD
        assert result.method_was_auto is False

    def test_thousand_yen_unit_is_scaled(self):
        """千円単位の路線価は×1000して計算する"""
        result = valuation.calculate(
            _wood_house(road_price=100, road_price_unit=RoadPriceUnit.THOUSAND)
        )
        assert result.land_price == 12_000_000
        assert result.snapshot.road_price_in_yen == 100_000

    def test_multiplier_method(self):
        """倍率方式: 固定資産税評価額 × 倍率"""
        result = valuation.calculate(
            _wood_house(
                land_method=LandMethod.MULTIPLIER,
                road_price=None,
                land_area=None,
                fixed_asset_tax_value=10_000_000,
                multiplier=1.1,
            )
        )
        assert result.land_price == 11_000_000
        assert result.total == 11_000_000 + 6_545_454

    def test_each_price_is_truncated_before_summing(self):
        """合計は切り捨て後の土地・建物の和（和を切り捨てない）"""
        result = valuation.calculate(
            _wood_house(
                road_price=100.5,
                land_area=1,
                unit_price=1,
                useful_life=1,
                building_age=0,
                floor_area=0.7,
            )
        )
        assert result.land_price == 100
        assert result.building_price == 0
        assert result.total == 100

    def test_presets_and_overrides(self):
        result = valuation.calculate(_wood_house(unit_price=200000, useful_life=20))
        assert result.snapshot.unit_price == 200000
        assert result.snapshot.useful_life == 20
        assert result.building_price == 8_000_000


class TestBuildingDepreciation:
    """建物価格は耐用年数経過後0円、負にならない"""

    @pytest.mark.parametrize("age", [47, 48, 100])
    def test_rc_beyond_useful_life_is_zero(self, age):
        result = valuation.calculate(
            _wood_house(structure=StructureType.RC_SRC, building_age=age, floor_area=100)
        )
        assert result.building_price == 0

    def test_rc_new_building_is_full_cost(self):
        result = valuation.calculate(
            _wood_house(structure=StructureType.RC_SRC, building_age=0, floor_area=100)
        )
        assert result.building_price == 20_000_000

    def test_decreases_with_age(self):
        prices = [
            valuation.calculate(_wood_house(building_age=age)).building_price
            for age in range(0, 23)
        ]
        assert all(later < earlier for earlier, later in zip(prices, prices[1:]))
        assert prices[-1] == 0


class TestMethodResolution:
    """auto は計算時点の路線価入力で方式が決まる"""

    def test_auto_uses_road_when_road_price_entered(self):
        result = valuation.calculate(_wood_house(land_method=LandMethod.AUTO))
        assert result.method == LandMethod.ROAD
        assert result.method_was_auto is True

    def test_auto_falls_back_to_multiplier(self):
        inputs = _wood_house(
            land_method=LandMethod.AUTO,
            road_price=None,
            fixed_asset_tax_value=5_000_000,
            multiplier=1.2,
        )
        assert valuation.resolve_method(inputs) == LandMethod.MULTIPLIER
        result = valuation.calculate(inputs)
        assert result.method == LandMethod.MULTIPLIER
        assert result.land_price == 6_000_000

    def test_explicit_method_is_kept(self):
        inputs = _wood_house(land_method=LandMethod.MULTIPLIER)
        assert valuation.resolve_method(inputs) == LandMethod.MULTIPLIER


class TestValuationValidation:
    """未入力項目はまとめて1つのエラーで報告する"""

    def test_missing_fields_are_batched_in_order(self):
        with pytest.raises(CalculationValidationError) as excinfo:
            valuation.calculate(ValuationInputs())
        assert excinfo.value.fields == ["fixedAssetTaxValue", "multiplier", "age", "floorArea"]
        assert str(excinfo.value) == "固定資産税評価額、評価倍率、築年数、延床面積が未入力です。入力してください。"

    def test_road_method_requires_road_fields(self):
        with pytest.raises(CalculationValidationError) as excinfo:
            valuation.calculate(
                ValuationInputs(land_method=LandMethod.ROAD, building_age=5, floor_area=50)
            )
        assert excinfo.value.fields == ["roadPrice", "landArea"]
        assert excinfo.value.labels == ["路線価", "土地面積"]

    def test_non_positive_useful_life(self):
        with pytest.raises(CalculationValidationError) as excinfo:
            valuation.calculate(_wood_house(useful_life=0))
        assert excinfo.value.fields == ["usefulLife"]


class TestStructureMatching:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("木造", StructureType.WOOD),
            ("木造2階建", StructureType.WOOD),
            ("重量鉄骨造", StructureType.HEAVY_STEEL),
            (" RC造・SRC造 ", StructureType.RC_SRC),
            ("不明", None),
            (None, None),
        ],
    )
    def test_match_structure(self, text, expected):
        assert valuation.match_structure(text) == expected

    def test_presets(self):
        assert (StructureType.WOOD.unit_price, StructureType.WOOD.useful_life) == (150000, 22)
        assert (StructureType.LIGHT_STEEL.unit_price, StructureType.LIGHT_STEEL.useful_life) == (150000, 19)
        assert (StructureType.HEAVY_STEEL.unit_price, StructureType.HEAVY_STEEL.useful_life) == (180000, 34)
        assert (StructureType.RC_SRC.unit_price, StructureType.RC_SRC.useful_life) == (200000, 47)


def test_formula_lines():
    lines = valuation.formula_lines(valuation.calculate(_wood_house()))
    assert len(lines) == 3
    assert "12,000,000円" in lines[0]
    assert "6,545,454円" in lines[1]
    assert lines[2].endswith("18,545,454円")
