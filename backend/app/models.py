"""Pydantic models for document extraction and calculator endpoints."""
from __future__ import annotations

import math
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .calculators.types import (
    ApportionmentInputs,
    ApportionmentResult,
    FiscalStart,
    LandMethod,
    ProrationInputs,
    ProrationResult,
    RoadPriceUnit,
    StructureType,
    TaxMode,
    ValuationInputs,
    ValuationResult,
)

NORMALIZED_MAX = 1000

FieldValue = Union[float, str, None]


class FieldKey(str, Enum):
    """Fields the extraction service may return (closed set)."""
    LAND_AREA = "landArea"
    FLOOR_AREA = "floorArea"
    STRUCTURE = "structure"
    ADDRESS = "address"
    ROAD_PRICE = "roadPrice"
    AGE = "age"
    USEFUL_LIFE = "usefulLife"
    PROJECT_NAME = "projectName"
    BUILDING_NAME = "buildingName"
    LAND_TAX_VALUE = "landTaxValue"
    BUILDING_TAX_VALUE = "buildingTaxValue"
    LAND_FIXED_ASSET_TAX = "landFixedAssetTax"
    LAND_CITY_PLANNING_TAX = "landCityPlanningTax"
    BUILDING_FIXED_ASSET_TAX = "buildingFixedAssetTax"
    BUILDING_CITY_PLANNING_TAX = "buildingCityPlanningTax"


class BoundingBox(BaseModel):
    """Box in the 0-1000 normalized space of a canvas page (page is 1-based)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    y_min: float = Field(alias="yMin", ge=0, le=NORMALIZED_MAX)
    x_min: float = Field(alias="xMin", ge=0, le=NORMALIZED_MAX)
    y_max: float = Field(alias="yMax", ge=0, le=NORMALIZED_MAX)
    x_max: float = Field(alias="xMax", ge=0, le=NORMALIZED_MAX)
    page: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _check_order(self) -> "BoundingBox":
        if self.y_min > self.y_max or self.x_min > self.x_max:
            raise ValueError("bounding box min must not exceed max")
        return self

    @property
    def is_degenerate(self) -> bool:
        return self.y_min == self.y_max or self.x_min == self.x_max

    def as_list(self) -> List[float]:
        return [self.y_min, self.x_min, self.y_max, self.x_max]

    @classmethod
    def from_list(cls, values: Sequence[float], page: int = 1) -> "BoundingBox":
        if len(values) != 4:
            raise ValueError(f"bounding box needs 4 values, got {len(values)}")
        y_min, x_min, y_max, x_max = (float(value) for value in values)
        return cls(y_min=y_min, x_min=x_min, y_max=y_max, x_max=x_max, page=page)


class ExtractedField(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: FieldKey
    value: FieldValue = None
    box: Optional[BoundingBox] = None
    refined: bool = False


class PageGeometry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page: int
    source_width: int = Field(alias="sourceWidth")
    source_height: int = Field(alias="sourceHeight")
    canvas_size: int = Field(alias="canvasSize")
    scale: float
    offset_x: float = Field(alias="offsetX")
    offset_y: float = Field(alias="offsetY")


class ExtractionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: Literal["ok"]
    document_id: str = Field(alias="documentId")
    pages: List[PageGeometry]
    fields: List[ExtractedField]
    address_candidates: List[str] = Field(default_factory=list, alias="addressCandidates")
    warnings: List[str] = Field(default_factory=list)


class HighlightRect(BaseModel):
    key: FieldKey
    label: str
    page: int
    left: float
    top: float
    right: float
    bottom: float


class HighlightResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(alias="documentId")
    highlights: List[HighlightRect]


class CalculatorRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def non_finite_fields(self) -> List[str]:
        """Aliases of numeric inputs holding Infinity or NaN."""
        names: List[str] = []
        for name, info in type(self).model_fields.items():
            value = getattr(self, name)
            if isinstance(value, float) and not math.isfinite(value):
                names.append(info.alias or name)
        return names


class ValuationRequest(CalculatorRequest):
    land_method: LandMethod = Field(default=LandMethod.AUTO, alias="landMethod")
    road_price: Optional[float] = Field(default=None, alias="roadPrice")
    road_price_unit: RoadPriceUnit = Field(default=RoadPriceUnit.YEN, alias="roadPriceUnit")
    land_area: Optional[float] = Field(default=None, alias="landArea")
    fixed_asset_tax_value: Optional[float] = Field(default=None, alias="fixedAssetTaxValue")
    multiplier: Optional[float] = None
    structure: StructureType = StructureType.WOOD
    age: Optional[float] = None
    floor_area: Optional[float] = Field(default=None, alias="floorArea")
    unit_price: Optional[float] = Field(default=None, alias="unitPrice")
    useful_life: Optional[float] = Field(default=None, alias="usefulLife")

    def to_inputs(self) -> ValuationInputs:
        return ValuationInputs(
            land_method=self.land_method,
            road_price=self.road_price,
            road_price_unit=self.road_price_unit,
            land_area=self.land_area,
            fixed_asset_tax_value=self.fixed_asset_tax_value,
            multiplier=self.multiplier,
            structure=self.structure,
            building_age=self.age,
            floor_area=self.floor_area,
            unit_price=self.unit_price,
            useful_life=self.useful_life,
        )


class ValuationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    land_price: int = Field(alias="landPrice")
    building_price: int = Field(alias="buildingPrice")
    total: int
    method: LandMethod
    method_was_auto: bool = Field(alias="methodWasAuto")
    formula: List[str]
    snapshot: Dict[str, Any]

    @classmethod
    def from_result(cls, result: ValuationResult, formula: List[str]) -> "ValuationResponse":
        snap = result.snapshot
        return cls(
            land_price=result.land_price,
            building_price=result.building_price,
            total=result.total,
            method=result.method,
            method_was_auto=result.method_was_auto,
            formula=formula,
            snapshot={
                "method": snap.method.value,
                "roadPrice": snap.road_price,
                "roadPriceUnit": snap.road_price_unit.value,
                "roadPriceInYen": snap.road_price_in_yen,
                "landArea": snap.land_area,
                "fixedAssetTaxValue": snap.fixed_asset_tax_value,
                "multiplier": snap.multiplier,
                "structure": snap.structure.value,
                "unitPrice": snap.unit_price,
                "usefulLife": snap.useful_life,
                "age": snap.age,
                "floorArea": snap.floor_area,
            },
        )


class ApportionmentRequest(CalculatorRequest):
    sale_price: Optional[float] = Field(default=None, alias="salePrice")
    tax_mode: TaxMode = Field(default=TaxMode.INCLUDE, alias="taxMode")
    land_assessed_value: Optional[float] = Field(default=None, alias="landAssessedValue")
    building_assessed_value: Optional[float] = Field(default=None, alias="buildingAssessedValue")
    tax_rate: Optional[float] = Field(default=10.0, alias="taxRate")

    def to_inputs(self) -> ApportionmentInputs:
        return ApportionmentInputs(
            sale_price=self.sale_price,
            tax_mode=self.tax_mode,
            land_assessed_value=self.land_assessed_value,
            building_assessed_value=self.building_assessed_value,
            tax_rate=self.tax_rate,
        )


class ApportionmentResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    land_price: Union[int, float] = Field(alias="landPrice")
    building_price_incl: int = Field(alias="buildingPriceIncl")
    building_price_excl: int = Field(alias="buildingPriceExcl")
    consumption_tax: int = Field(alias="consumptionTax")
    building_ratio: float = Field(alias="buildingRatio")
    snapshot: Dict[str, Any]

    @classmethod
    def from_result(cls, result: ApportionmentResult) -> "ApportionmentResponse":
        snap = result.snapshot
        return cls(
            land_price=result.land_price,
            building_price_incl=result.building_price_incl,
            building_price_excl=result.building_price_excl,
            consumption_tax=result.consumption_tax,
            building_ratio=result.building_ratio,
            snapshot={
                "salePrice": snap.sale_price,
                "taxMode": snap.tax_mode.value,
                "landAssessedValue": snap.land_assessed_value,
                "buildingAssessedValue": snap.building_assessed_value,
                "taxRate": snap.tax_rate,
            },
        )


class TaxProrationRequest(CalculatorRequest):
    land_fixed_asset_tax: Optional[float] = Field(default=None, alias="landFixedAssetTax")
    land_city_planning_tax: Optional[float] = Field(default=None, alias="landCityPlanningTax")
    building_fixed_asset_tax: Optional[float] = Field(default=None, alias="buildingFixedAssetTax")
    building_city_planning_tax: Optional[float] = Field(default=None, alias="buildingCityPlanningTax")
    settlement_date: Optional[date] = Field(default=None, alias="settlementDate")
    fiscal_start: FiscalStart = Field(default=FiscalStart.CALENDAR_YEAR, alias="fiscalStart")
    taxable: bool = False

    def to_inputs(self) -> ProrationInputs:
        return ProrationInputs(
            land_fixed_asset_tax=self.land_fixed_asset_tax,
            land_city_planning_tax=self.land_city_planning_tax,
            building_fixed_asset_tax=self.building_fixed_asset_tax,
            building_city_planning_tax=self.building_city_planning_tax,
            settlement_date=self.settlement_date,
            fiscal_start=self.fiscal_start,
            taxable=self.taxable,
        )


class TaxProrationResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    seller_days: int = Field(alias="sellerDays")
    buyer_days: int = Field(alias="buyerDays")
    seller_land: int = Field(alias="sellerLand")
    buyer_land: Union[int, float] = Field(alias="buyerLand")
    seller_building: int = Field(alias="sellerBuilding")
    buyer_building: Union[int, float] = Field(alias="buyerBuilding")
    buyer_consumption_tax: int = Field(alias="buyerConsumptionTax")
    seller_total: int = Field(alias="sellerTotal")
    buyer_total: Union[int, float] = Field(alias="buyerTotal")
    daily_rate_land: int = Field(alias="dailyRateLand")
    daily_rate_building: int = Field(alias="dailyRateBuilding")
    seller_period: str = Field(alias="sellerPeriod")
    buyer_period: str = Field(alias="buyerPeriod")
    snapshot: Dict[str, Any]

    @classmethod
    def from_result(cls, result: ProrationResult) -> "TaxProrationResponse":
        snap = result.snapshot
        return cls(
            seller_days=result.seller_days,
            buyer_days=result.buyer_days,
            seller_land=result.land.seller_share,
            buyer_land=result.land.buyer_share,
            seller_building=result.building.seller_share,
            buyer_building=result.building.buyer_share,
            buyer_consumption_tax=result.buyer_consumption_tax,
            seller_total=result.seller_total,
            buyer_total=result.buyer_total,
            daily_rate_land=result.daily_rate_land,
            daily_rate_building=result.daily_rate_building,
            seller_period=result.seller_period,
            buyer_period=result.buyer_period,
            snapshot={
                "annualLandTax": snap.annual_land_tax,
                "annualBuildingTax": snap.annual_building_tax,
                "settlementDate": snap.settlement_date.isoformat(),
                "fiscalStart": snap.fiscal_start.value,
                "fiscalStartDate": snap.fiscal_start_date.isoformat(),
                "periodEndDate": snap.period_end_date.isoformat(),
                "taxable": snap.taxable,
                "consumptionTaxRate": snap.consumption_tax_rate,
            },
        )
