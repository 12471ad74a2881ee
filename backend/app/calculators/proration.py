"""固定資産税・都市計画税の日割り精算。

起算日から決済日前日までを売主、決済日以降を買主の負担とする。
1年は常に365日として扱う（閏年でも366日にしない）。
"""
from __future__ import annotations

import math
from datetime import date, timedelta
from fractions import Fraction
from typing import Optional

from .errors import CalculationValidationError
from .numbers import as_number, exact
from .types import (
    FiscalStart,
    ProrationInputs,
    ProrationResult,
    ProrationShare,
    ProrationSnapshot,
)

DAYS_PER_YEAR = 365
CONSUMPTION_TAX_RATE = Fraction(10, 100)
NO_PERIOD = "該当なし"


def fiscal_start_date(settlement_date: date, fiscal_start: FiscalStart) -> date:
    """起算日: 1月1日起算は決済年の1月1日、4月1日起算は1〜3月なら前年の4月1日。"""
    if fiscal_start == FiscalStart.CALENDAR_YEAR:
        return date(settlement_date.year, 1, 1)
    if settlement_date.month < 4:
        return date(settlement_date.year - 1, 4, 1)
    return date(settlement_date.year, 4, 1)


def period_end_date(start: date) -> date:
    """起算日の1年後の前日。"""
    return date(start.year + 1, start.month, start.day) - timedelta(days=1)


def _amount(value: Optional[float]) -> Fraction:
    return exact(value) if value is not None else Fraction(0)


def split_annual_amount(annual_amount: Fraction, seller_days: int) -> ProrationShare:
    seller_share = math.floor(annual_amount * seller_days / DAYS_PER_YEAR)
    return ProrationShare(
        annual_amount=as_number(annual_amount),
        seller_share=seller_share,
        # 買主分は差引で求め、合計が年税額と必ず一致するようにする
        buyer_share=as_number(annual_amount - seller_share),
    )


def format_month_day(value: date) -> str:
    return f"{value.month}月{value.day}日"


def calculate(inputs: ProrationInputs) -> ProrationResult:
    if inputs.settlement_date is None:
        raise CalculationValidationError(["settlementDate"], ["決済日"])

    settlement = inputs.settlement_date
    start = fiscal_start_date(settlement, inputs.fiscal_start)
    end = period_end_date(start)

    seller_days = max(0, (settlement - start).days)
    buyer_days = DAYS_PER_YEAR - seller_days

    land_total = _amount(inputs.land_fixed_asset_tax) + _amount(inputs.land_city_planning_tax)
    building_total = _amount(inputs.building_fixed_asset_tax) + _amount(inputs.building_city_planning_tax)
    land = split_annual_amount(land_total, seller_days)
    building = split_annual_amount(building_total, seller_days)

    consumption_tax = 0
    if inputs.taxable:
        consumption_tax = math.floor(exact(building.buyer_share) * CONSUMPTION_TAX_RATE)

    if seller_days > 0:
        seller_period = f"{format_month_day(start)} ～ {format_month_day(settlement - timedelta(days=1))}"
    else:
        seller_period = NO_PERIOD
    if buyer_days > 0:
        buyer_period = f"{format_month_day(settlement)} ～ {format_month_day(end)}"
    else:
        buyer_period = NO_PERIOD

    snapshot = ProrationSnapshot(
        annual_land_tax=as_number(land_total),
        annual_building_tax=as_number(building_total),
        settlement_date=settlement,
        fiscal_start=inputs.fiscal_start,
        fiscal_start_date=start,
        period_end_date=end,
        taxable=inputs.taxable,
        consumption_tax_rate=float(CONSUMPTION_TAX_RATE),
    )
    return ProrationResult(
        seller_days=seller_days,
        buyer_days=buyer_days,
        land=land,
        building=building,
        buyer_consumption_tax=consumption_tax,
        seller_total=land.seller_share + building.seller_share,
        buyer_total=as_number(exact(land.buyer_share) + exact(building.buyer_share) + consumption_tax),
        daily_rate_land=math.floor(land_total / DAYS_PER_YEAR),
        daily_rate_building=math.floor(building_total / DAYS_PER_YEAR),
        seller_period=seller_period,
        buyer_period=buyer_period,
        snapshot=snapshot,
    )
