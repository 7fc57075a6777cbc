from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import List, Dict, Optional, Any
from datetime import date, datetime
from enum import Enum

from mf_data.utils.dates import parse_nav_date


class ApiModel(BaseModel):
    """camelCase on the wire, snake_case in Python"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class ChartViewMode(str, Enum):
    ABSOLUTE = "absolute"
    NORMALIZED = "normalized"
    PERCENTAGE = "percentage"


class DateRangePreset(str, Enum):
    ONE_MONTH = "1M"
    THREE_MONTHS = "3M"
    SIX_MONTHS = "6M"
    ONE_YEAR = "1Y"
    THREE_YEARS = "3Y"
    FIVE_YEARS = "5Y"
    TEN_YEARS = "10Y"


# ---------------------------------------------------------------------------
# NAV data
# ---------------------------------------------------------------------------

class NavPoint(BaseModel):
    date: date
    nav: float = Field(..., ge=0, description="Net asset value per unit")

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v):
        return parse_nav_date(v)


class FundPreview(ApiModel):
    scheme_code: str
    scheme_name: str
    fund_house: Optional[str] = None
    scheme_category: Optional[str] = None
    scheme_type: Optional[str] = None

    @field_validator("scheme_code", mode="before")
    @classmethod
    def coerce_code(cls, v):
        # MFapi.in returns numeric codes in the fund list
        return str(v) if isinstance(v, int) else v


class FundsSnapshotMeta(ApiModel):
    """Sidecar stored next to a funds snapshot."""
    disclaimer: Optional[str] = None
    source: Optional[str] = None
    fetched_at: Optional[str] = None


class FundsSnapshot(ApiModel):
    funds: List[FundPreview] = Field(default_factory=list)
    meta: Optional[FundsSnapshotMeta] = None


class CachedNavRecord(ApiModel):
    scheme_code: str
    nav_date: str
    nav_value: float
    cached_at: Optional[datetime] = None

    def to_point(self) -> NavPoint:
        return NavPoint(date=self.nav_date, nav=self.nav_value)


class NavHistory(ApiModel):
    """Provider payload for one scheme: meta plus raw rows."""
    meta: Dict[str, Any] = Field(default_factory=dict)
    data: List[Dict[str, Any]] = Field(default_factory=list)
    status: Optional[str] = None


# ---------------------------------------------------------------------------
# SIP
# ---------------------------------------------------------------------------

class SipInput(ApiModel):
    monthly_contribution: float = Field(..., gt=0, description="Amount invested every month (INR)")
    duration_years: float = Field(..., gt=0, description="Investment horizon in years, fractions allowed")
    expected_rate: float = Field(..., ge=0, description="Expected annual return in percent")


class SipProjection(ApiModel):
    total_investment: float
    maturity_value: float
    gains: float


class SipScheduleRow(ApiModel):
    year: int
    month: int
    contributions: float
    total_value: float
    gains: float


# ---------------------------------------------------------------------------
# Portfolio and watchlist
# ---------------------------------------------------------------------------

class PortfolioHoldingInput(ApiModel):
    scheme_code: str = Field(..., min_length=1)
    scheme_name: str
    fund_house: Optional[str] = None
    units: float = Field(..., gt=0)
    avg_nav: float = Field(..., gt=0)
    notes: Optional[str] = None


class PortfolioHolding(PortfolioHoldingInput):
    # stored rows are read back without re-validating positivity
    units: float
    avg_nav: float
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PortfolioSummary(ApiModel):
    total_holdings: int = 0
    total_units: float = 0.0
    total_invested: float = 0.0
    average_cost: float = 0.0


class WatchlistItemInput(ApiModel):
    scheme_code: str = Field(..., min_length=1)
    scheme_name: str
    fund_house: Optional[str] = None
    scheme_category: Optional[str] = None


class WatchlistItem(WatchlistItemInput):
    id: Optional[int] = None
    added_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Statistics and charts
# ---------------------------------------------------------------------------

class PerformanceMetrics(ApiModel):
    first_nav: float
    last_nav: float
    high_nav: float
    low_nav: float
    average_nav: float
    absolute_return: float
    percent_return: Optional[float] = Field(None, description="None when the first NAV is zero")
    cagr: Optional[float] = Field(None, description="None when the first NAV is zero")
    volatility: float
    data_points: int
    start_date: date
    end_date: date


class PeriodReturn(ApiModel):
    period: str
    base_date: Optional[date] = None
    absolute_return: Optional[float] = None
    cagr: Optional[float] = None


class FundChartSeries(ApiModel):
    scheme_code: str
    scheme_name: str
    nav_history: List[NavPoint] = Field(default_factory=list)
    color: Optional[str] = None


class FundComparison(ApiModel):
    scheme_code: str
    scheme_name: str
    stats: Optional[PerformanceMetrics] = None
    rank: int = 0


class CompareRequest(ApiModel):
    scheme_codes: List[str] = Field(..., min_length=1, max_length=3)
    view_mode: ChartViewMode = ChartViewMode.ABSOLUTE
    preset: Optional[DateRangePreset] = Field(None, description="Restrict every series to a trailing window")
