# mf_data/services/performance_stats.py

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from mf_data.models.portfolio import NavPoint, PerformanceMetrics, PeriodReturn

logger = logging.getLogger(__name__)

TRADING_DAYS_PER_YEAR = 252
DAYS_PER_YEAR = 365

# (label, calendar months back); CAGR is reported for periods of a year or more
TRAILING_PERIODS = [
    ("1M", 1),
    ("3M", 3),
    ("6M", 6),
    ("1Y", 12),
    ("3Y", 36),
    ("5Y", 60),
    ("10Y", 120),
]


def sort_nav_points(points: Iterable[NavPoint]) -> List[NavPoint]:
    """
    Ascending by date, one point per date.

    When several points share a date the one that came last in the input
    wins.
    """
    by_date: Dict[date, NavPoint] = {}
    for point in points:
        by_date[point.date] = point
    return [by_date[d] for d in sorted(by_date)]


def calculate_performance_metrics(points: Iterable[NavPoint]) -> Optional[PerformanceMetrics]:
    """
    Return, CAGR, annualised volatility and range for a NAV series.
    Returns None when fewer than two distinct dates are available.
    """
    ordered = sort_nav_points(points)
    if len(ordered) < 2:
        return None

    first, last = ordered[0], ordered[-1]
    navs = np.array([p.nav for p in ordered], dtype=float)

    absolute_return = last.nav - first.nav
    percent_return: Optional[float] = None
    cagr: Optional[float] = None

    if first.nav == 0:
        logger.debug("First NAV is zero; percent return and CAGR are undefined")
    else:
        percent_return = absolute_return / first.nav * 100
        years = (last.date - first.date).days / DAYS_PER_YEAR
        cagr = ((last.nav / first.nav) ** (1 / years) - 1) * 100 if years > 0 else 0.0

    # daily returns, skipping steps that start from a zero NAV
    previous, current = navs[:-1], navs[1:]
    valid = previous > 0
    daily_returns = (current[valid] - previous[valid]) / previous[valid]
    volatility = 0.0
    if daily_returns.size:
        # population standard deviation (ddof=0)
        volatility = float(np.std(daily_returns) * np.sqrt(TRADING_DAYS_PER_YEAR) * 100)

    return PerformanceMetrics(
        first_nav=first.nav,
        last_nav=last.nav,
        high_nav=float(navs.max()),
        low_nav=float(navs.min()),
        average_nav=float(navs.mean()),
        absolute_return=absolute_return,
        percent_return=percent_return,
        cagr=cagr,
        volatility=volatility,
        data_points=len(ordered),
        start_date=first.date,
        end_date=last.date,
    )


def calculate_period_returns(points: Iterable[NavPoint], as_of: Optional[date] = None) -> List[PeriodReturn]:
    """
    Trailing returns for the standard periods.

    The base NAV for a period is the last NAV on or before
    ``latest_date - period``. Periods the history does not reach back to
    come back with empty values.
    """
    ordered = sort_nav_points(points)
    if as_of is not None:
        ordered = [p for p in ordered if p.date <= as_of]
    if not ordered:
        return [PeriodReturn(period=label) for label, _ in TRAILING_PERIODS]

    latest = ordered[-1]
    results = []
    for label, months in TRAILING_PERIODS:
        target = (pd.Timestamp(latest.date) - pd.DateOffset(months=months)).date()
        base = None
        for point in ordered:
            if point.date > target:
                break
            base = point

        if base is None or base.nav == 0:
            results.append(PeriodReturn(period=label))
            continue

        absolute = (latest.nav / base.nav - 1) * 100
        cagr = None
        if months >= 12:
            years = months / 12
            cagr = ((latest.nav / base.nav) ** (1 / years) - 1) * 100
        results.append(PeriodReturn(period=label, base_date=base.date, absolute_return=absolute, cagr=cagr))

    return results

