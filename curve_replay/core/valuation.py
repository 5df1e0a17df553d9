"""
Valuation summaries
Reduces a replayed ValuationSeries to launch / ATH / ATL / current figures
"""

from dataclasses import dataclass
from typing import List, Optional

from curve_replay.core.replay_engine import PricePoint, ValuationSeries


def format_time_difference(seconds: float) -> str:
    """
    Human label for a duration

    Examples:
        45 * 60        -> "45 minutes"
        90 * 60        -> "1 hour 30 minutes"
        26 * 3600      -> "1 day 2 hours"
    """
    total_minutes = int(max(seconds, 0) // 60)
    total_hours = total_minutes // 60
    days = total_hours // 24

    def plural(value: int, unit: str) -> str:
        return f"{value} {unit}{'s' if value != 1 else ''}"

    if days > 0:
        return f"{plural(days, 'day')} {plural(total_hours % 24, 'hour')}"
    if total_hours > 0:
        return f"{plural(total_hours, 'hour')} {plural(total_minutes % 60, 'minute')}"
    return plural(total_minutes, 'minute')


def percent_change(current: float, baseline: float) -> float:
    """(current - baseline) / baseline * 100, or 0 without a baseline"""
    if baseline == 0:
        return 0.0
    return (current - baseline) / baseline * 100


@dataclass(frozen=True)
class CurveValuationSummary:
    """Launch, extremes and current valuation of one curve"""
    curve_address: str
    launch: PricePoint
    all_time_high: PricePoint
    all_time_low: PricePoint
    current: PricePoint
    percent_from_ath: float
    percent_from_launch: float
    time_to_ath: int  # seconds from launch to the ATH point

    @property
    def time_to_ath_minutes(self) -> float:
        return self.time_to_ath / 60

    @property
    def time_to_ath_label(self) -> str:
        return format_time_difference(self.time_to_ath)

    @property
    def gain_to_ath(self) -> float:
        """Percent gain from launch to the ATH"""
        return percent_change(self.all_time_high.market_cap_usd, self.launch.market_cap_usd)

    def to_dict(self) -> dict:
        """Convert to dictionary"""
        return {
            "curve_address": self.curve_address,
            "launch": self.launch.to_dict(),
            "all_time_high": self.all_time_high.to_dict(),
            "all_time_low": self.all_time_low.to_dict(),
            "current": self.current.to_dict(),
            "percent_from_ath": self.percent_from_ath,
            "percent_from_launch": self.percent_from_launch,
            "time_to_ath": self.time_to_ath,
            "time_to_ath_label": self.time_to_ath_label
        }


def summarize(series: ValuationSeries) -> CurveValuationSummary:
    """
    Summarize a valuation series

    ATH and ATL pick the first point reaching the extreme, so a later equal
    peak is not a new high.

    Args:
        series: Replayed series (launch point first)

    Returns:
        CurveValuationSummary

    Raises:
        ValueError: If the series has no points
    """
    points = series.points
    if not points:
        raise ValueError(f"Cannot summarize empty series for {series.curve_address}")

    launch = points[0]
    current = points[-1]
    ath = launch
    atl = launch
    for point in points[1:]:
        if point.market_cap_usd > ath.market_cap_usd:
            ath = point
        if point.market_cap_usd < atl.market_cap_usd:
            atl = point

    return CurveValuationSummary(
        curve_address=series.curve_address,
        launch=launch,
        all_time_high=ath,
        all_time_low=atl,
        current=current,
        percent_from_ath=percent_change(current.market_cap_usd, ath.market_cap_usd),
        percent_from_launch=percent_change(current.market_cap_usd, launch.market_cap_usd),
        time_to_ath=ath.timestamp - launch.timestamp
    )


@dataclass(frozen=True)
class PriceWindowMetrics:
    """Price extremes plus a recent average"""
    high: PricePoint
    low: PricePoint
    average_price_sol: float
    window_samples: int  # points inside the lookback window (0 = fallback used)
    samples: int


def price_window_metrics(
    series: ValuationSeries,
    lookback_seconds: int = 3600,
    min_samples: int = 5,
    now: Optional[int] = None
) -> PriceWindowMetrics:
    """
    Price-based high/low and the average price over a trailing window

    When no point falls in the window, the last `min_samples` points are
    averaged instead.

    Args:
        series: Replayed series
        lookback_seconds: Window length ending at `now`
        min_samples: Fallback sample count
        now: Window end; defaults to the last point's timestamp

    Raises:
        ValueError: If the series has no points
    """
    points: List[PricePoint] = series.points
    if not points:
        raise ValueError(f"Cannot compute price metrics for empty series {series.curve_address}")

    high = points[0]
    low = points[0]
    for point in points[1:]:
        if point.price_sol > high.price_sol:
            high = point
        if point.price_sol < low.price_sol:
            low = point

    end = points[-1].timestamp if now is None else now
    since = end - lookback_seconds
    window = [p for p in points if since <= p.timestamp <= end]

    sample = window or points[-max(min_samples, 1):]
    average = sum(p.price_sol for p in sample) / len(sample)

    return PriceWindowMetrics(
        high=high,
        low=low,
        average_price_sol=average,
        window_samples=len(window),
        samples=len(points)
    )
