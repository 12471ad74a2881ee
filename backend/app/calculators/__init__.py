"""Pure valuation, apportionment and tax proration calculators."""
from . import apportionment, proration, valuation
from .errors import CalculationValidationError, InvalidRateError, ZeroDenominatorError
from .types import (
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

__all__ = [
    "apportionment",
    "proration",
    "valuation",
    "CalculationValidationError",
    "InvalidRateError",
    "ZeroDenominatorError",
    "ApportionmentInputs",
    "ApportionmentResult",
    "FiscalStart",
    "LandMethod",
    "ProrationInputs",
    "ProrationResult",
    "RoadPriceUnit",
    "StructureType",
    "TaxMode",
    "ValuationInputs",
    "ValuationResult",
]
