"""Type definitions for the valuation calculators."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Optional, Tuple, Union


class StructureType(str, Enum):
    """建物構造（再調達単価・法定耐用年数のプリセット付き）"""
    WOOD = "木造"
    LIGHT_STEEL = "軽量鉄骨造"
    HEAVY_STEEL = "重量鉄骨造"
    RC_SRC = "RC造・SRC造"

    @property
    def unit_price(self) -> int:
        return STRUCTURE_PRESETS[self][0]

    @property
    def useful_life(self) -> int:
        return STRUCTURE_PRESETS[self][1]


# (再調達単価 円/㎡, 法定耐用年数)
STRUCTURE_PRESETS = {
    StructureType.WOOD: (150000, 22),
    StructureType.LIGHT_STEEL: (150000, 19),
    StructureType.HEAVY_STEEL: (180000, 34),
    StructureType.RC_SRC: (200000, 47),
}


class LandMethod(str, Enum):
    """土地評価方式"""
    AUTO = "auto"              # 路線価の入力有無で自動判定
    ROAD = "road"              # 路線価方式
    MULTIPLIER = "multiplier"  # 倍率方式


class RoadPriceUnit(str, Enum):
    YEN = "yen"
    THOUSAND = "thousand"  # 路線価図の表記（千円単位）


class TaxMode(str, Enum):
    """売買代金の入力モード"""
    INCLUDE = "include"  # 税込
    EXCLUDE = "exclude"  # 税抜


class FiscalStart(str, Enum):
    """固定資産税の起算日"""
    CALENDAR_YEAR = "calendarYear"         # 1月1日起算（関東式）
    FISCAL_APRIL_START = "fiscalAprilStart"  # 4月1日起算（関西式）


@dataclass(frozen=True)
class ValuationInputs:
    """積算評価の入力値（未入力は None）"""
    land_method: LandMethod = LandMethod.AUTO
    road_price: Optional[float] = None
    road_price_unit: RoadPriceUnit = RoadPriceUnit.YEN
    land_area: Optional[float] = None
    fixed_asset_tax_value: Optional[float] = None
    multiplier: Optional[float] = None
    structure: StructureType = StructureType.WOOD
    building_age: Optional[float] = None
    floor_area: Optional[float] = None
    unit_price: Optional[float] = None   # 未指定なら構造プリセット
    useful_life: Optional[float] = None  # 未指定なら構造プリセット


@dataclass(frozen=True)
class ValuationSnapshot:
    """計算に使用した数値（表示・監査用）"""
    method: LandMethod
    road_price: float
    road_price_unit: RoadPriceUnit
    road_price_in_yen: float
    land_area: float
    fixed_asset_tax_value: float
    multiplier: float
    structure: StructureType
    unit_price: float
    useful_life: float
    age: float
    floor_area: float


@dataclass(frozen=True)
class ValuationResult:
    land_price: int
    building_price: int
    total: int
    method: LandMethod
    method_was_auto: bool
    snapshot: ValuationSnapshot


@dataclass(frozen=True)
class ApportionmentInputs:
    sale_price: Optional[float] = None
    tax_mode: TaxMode = TaxMode.INCLUDE
    land_assessed_value: Optional[float] = None
    building_assessed_value: Optional[float] = None
    tax_rate: Optional[float] = 10.0  # パーセント


@dataclass(frozen=True)
class ApportionmentSnapshot:
    sale_price: float
    tax_mode: TaxMode
    land_assessed_value: float
    building_assessed_value: float
    tax_rate: float


@dataclass(frozen=True)
class ApportionmentResult:
    land_price: Union[int, float]  # 売買代金が円未満を含む場合のみ float
    building_price_incl: int
    building_price_excl: int
    consumption_tax: int
    building_ratio: float  # パーセント表示用
    snapshot: ApportionmentSnapshot


@dataclass(frozen=True)
class ProrationInputs:
    land_fixed_asset_tax: Optional[float] = None
    land_city_planning_tax: Optional[float] = None
    building_fixed_asset_tax: Optional[float] = None
    building_city_planning_tax: Optional[float] = None
    settlement_date: Optional[date] = None
    fiscal_start: FiscalStart = FiscalStart.CALENDAR_YEAR
    taxable: bool = False


@dataclass(frozen=True)
class ProrationSnapshot:
    annual_land_tax: Union[int, float]
    annual_building_tax: Union[int, float]
    settlement_date: date
    fiscal_start: FiscalStart
    fiscal_start_date: date
    period_end_date: date
    taxable: bool
    consumption_tax_rate: float


@dataclass(frozen=True)
class ProrationShare:
    """土地・建物いずれか一方の按分結果"""
    annual_amount: Union[int, float]
    seller_share: int
    buyer_share: Union[int, float]


@dataclass(frozen=True)
class ProrationResult:
    seller_days: int
    buyer_days: int
    land: ProrationShare
    building: ProrationShare
    buyer_consumption_tax: int
    seller_total: int
    buyer_total: Union[int, float]
    daily_rate_land: int
    daily_rate_building: int
    seller_period: str
    buyer_period: str
    snapshot: ProrationSnapshot

    @property
    def day_counts(self) -> Tuple[int, int]:
        return self.seller_days, self.buyer_days
