"""
Chart data transformations for multi-fund overlay comparison.

Everything here is pure: inputs are never mutated and new point
objects are returned.
"""
import logging
import math
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from mf_data.models.portfolio import (
    ChartViewMode,
    DateRangePreset,
    FundChartSeries,
    FundComparison,
    NavPoint,
)
from mf_data.services.performance_stats import calculate_performance_metrics

logger = logging.getLogger(__name__)

DEFAULT_PALETTE = [
    "#3b82f6",  # Blue
    "#ef4444",  # Red
    "#10b981",  # Green
    "#f59e0b",  # Amber
    "#8b5cf6",  # Purple
    "#ec4899",  # Pink
    "#06b6d4",  # Cyan
    "#f97316",  # Orange
]

PRESET_MONTHS = {
    DateRangePreset.ONE_MONTH: (1, "1 Month"),
    DateRangePreset.THREE_MONTHS: (3, "3 Months"),
    DateRangePreset.SIX_MONTHS: (6, "6 Months"),
    DateRangePreset.ONE_YEAR: (12, "1 Year"),
    DateRangePreset.THREE_YEARS: (36, "3 Years"),
    DateRangePreset.FIVE_YEARS: (60, "5 Years"),
    DateRangePreset.TEN_YEARS: (120, "10 Years"),
}


def _rescale(nav_history: List[NavPoint], transform) -> List[NavPoint]:
    if not nav_history:
        return []
    starting_nav = nav_history[0].nav
    if starting_nav == 0:
        return list(nav_history)
    return [point.model_copy(update={"nav": transform(point.nav, starting_nav)}) for point in nav_history]


def normalize_nav_data(nav_history: List[NavPoint]) -> List[NavPoint]:
    """Rescale so the first point is exactly 100."""
    # the first point is set explicitly so it is 100 without float drift
    return _rescale(nav_history, lambda nav, start: 100.0 if nav == start else nav * (100 / start))


def calculate_percentage_change(nav_history: List[NavPoint]) -> List[NavPoint]:
    """Percent change of every point against the first one."""
    return _rescale(nav_history, lambda nav, start: (nav - start) / start * 100)


def _apply_view_mode(nav_history: List[NavPoint], view_mode: ChartViewMode) -> List[NavPoint]:
    if view_mode == ChartViewMode.NORMALIZED:
        return normalize_nav_data(nav_history)
    if view_mode == ChartViewMode.PERCENTAGE:
        return calculate_percentage_change(nav_history)
    return list(nav_history)


def fund_key(scheme_code: str) -> str:
    return f"nav_{scheme_code}"


def merge_nav_histories(
    funds: List[FundChartSeries],
    view_mode: ChartViewMode = ChartViewMode.ABSOLUTE,
) -> List[Dict[str, Any]]:
    """
    Align several funds on one calendar.

    Every day between the earliest and the latest date of any fund gets a
    row; a fund without a NAV on that exact day gets None (no forward fill).
    """
    if not funds:
        return []

    values_by_fund: List[Tuple[str, Dict[date, float]]] = []
    all_dates: List[date] = []
    for fund in funds:
        history = _apply_view_mode(fund.nav_history, view_mode)
        by_date = {point.date: point.nav for point in history}  # last one wins on duplicate dates
        values_by_fund.append((fund_key(fund.scheme_code), by_date))
        all_dates.extend(by_date)

    if not all_dates:
        return []

    calendar = pd.date_range(start=min(all_dates), end=max(all_dates), freq="D")

    merged = []
    for ts in calendar:
        day = ts.date()
        row: Dict[str, Any] = {
            "date": day.isoformat(),
            "timestamp": int(ts.tz_localize("UTC").timestamp() * 1000),
        }
        for key, by_date in values_by_fund:
            row[key] = by_date.get(day)
        merged.append(row)
    return merged


def get_default_color(index: int) -> str:
    return DEFAULT_PALETTE[index % len(DEFAULT_PALETTE)]


def create_chart_dataset(
    funds: List[FundChartSeries],
    view_mode: ChartViewMode = ChartViewMode.ABSOLUTE,
) -> Dict[str, Any]:
    return {
        "data": merge_nav_histories(funds, view_mode),
        "fundKeys": [
            {
                "code": fund.scheme_code,
                "key": fund_key(fund.scheme_code),
                "name": fund.scheme_name,
                "color": fund.color or get_default_color(index),
            }
            for index, fund in enumerate(funds)
        ],
    }


def compare_funds(funds: List[FundChartSeries]) -> List[FundComparison]:
    """
    Rank funds by total return percentage, best first.

    The sort is stable, so equal returns keep input order. Funds whose
    return is undefined (too few points, zero starting NAV) go last.
    """
    comparisons = [
        FundComparison(
            scheme_code=fund.scheme_code,
            scheme_name=fund.scheme_name,
            stats=calculate_performance_metrics(fund.nav_history),
        )
        for fund in funds
    ]

    def sort_key(item: FundComparison):
        pct = item.stats.percent_return if item.stats else None
        return (1, 0.0) if pct is None else (0, -pct)

    ranked = sorted(comparisons, key=sort_key)
    for position, item in enumerate(ranked, start=1):
        item.rank = position
    return ranked


def filter_by_date_range(
    nav_history: Iterable[NavPoint],
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> List[NavPoint]:
    """Inclusive on both ends; a missing bound is open."""
    return [
        point for point in nav_history
        if (start_date is None or point.date >= start_date)
        and (end_date is None or point.date <= end_date)
    ]


def get_date_range_preset(preset: DateRangePreset, today: Optional[date] = None) -> Dict[str, Any]:
    end_date = today or date.today()
    months, label = PRESET_MONTHS.get(preset, PRESET_MONTHS[DateRangePreset.ONE_YEAR])
    start_date = (pd.Timestamp(end_date) - pd.DateOffset(months=months)).date()
    return {"start_date": start_date, "end_date": end_date, "label": label}


def format_chart_value(value: Optional[float], view_mode: ChartViewMode) -> str:
    if value is None or math.isnan(value):
        return "N/A"
    if view_mode in (ChartViewMode.NORMALIZED, ChartViewMode.PERCENTAGE):
        sign = "+" if value >= 0 else ""
        return f"{sign}{value:.2f}%"
    return f"₹{value:.2f}"
