"""
Cross-curve cohort analysis
Aggregates per-curve summaries into rankings, performance buckets and totals
"""

import statistics
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from curve_replay.core.valuation import CurveValuationSummary


# (label, lower bound inclusive, upper bound exclusive) on percent_from_launch
PERFORMANCE_BUCKETS = [
    ("mega_gainers", 1000.0, float("inf")),
    ("high_gainers", 100.0, 1000.0),
    ("moderate_gainers", 10.0, 100.0),
    ("slight_gainers", 1.0, 10.0),
]
LOSER_BUCKETS = [
    # (label, upper bound inclusive, lower bound exclusive)
    ("slight_losers", -1.0, -10.0),
    ("moderate_losers", -10.0, -50.0),
    ("big_losers", -50.0, -90.0),
    ("total_losers", -90.0, float("-inf")),
]
NEUTRAL_BAND = 1.0
TOP_N = 5


@dataclass
class MarketCapStats:
    """Current market cap totals across curves (USD)"""
    curve_count: int = 0
    total_market_cap_usd: float = 0.0
    total_market_cap_sol: float = 0.0
    average_market_cap_usd: float = 0.0
    median_market_cap_usd: float = 0.0


@dataclass
class CohortReport:
    """Aggregate performance of a set of replayed curves"""
    total_curves: int
    average_gain_to_ath: float
    average_gain_to_current: float
    median_gain_to_ath: float
    median_gain_to_current: float
    gainers_from_launch: int
    losers_from_launch: int
    neutral_from_launch: int
    performance_categories: Dict[str, int]
    average_time_to_ath_minutes: float
    fastest_time_to_ath_minutes: float
    slowest_time_to_ath_minutes: float
    total_launch_market_cap_usd: float
    total_ath_market_cap_usd: float
    total_current_market_cap_usd: float
    top_performers: List[CurveValuationSummary] = field(default_factory=list)
    worst_performers: List[CurveValuationSummary] = field(default_factory=list)
    fastest_risers: List[CurveValuationSummary] = field(default_factory=list)

    @property
    def total_value_change_usd(self) -> float:
        return self.total_current_market_cap_usd - self.total_launch_market_cap_usd

    @property
    def success_rate(self) -> float:
        """Percent of curves above their launch valuation"""
        if self.total_curves == 0:
            return 0.0
        return self.gainers_from_launch / self.total_curves * 100


def rank_by_ath(summaries: Sequence[CurveValuationSummary]) -> List[CurveValuationSummary]:
    """Summaries ordered by ATH market cap, highest first"""
    return sorted(summaries, key=lambda s: s.all_time_high.market_cap_usd, reverse=True)


def fastest_to_ath(
    summaries: Sequence[CurveValuationSummary],
    min_launch_price_usd: float = 0.01,
    max_launch_price_usd: float = 1.0,
    sol_usd_rate: float = 1.0,
    limit: int = 10
) -> List[CurveValuationSummary]:
    """
    Curves that peaked soonest, restricted to plausible launch prices

    Args:
        summaries: Per-curve summaries
        min_launch_price_usd: Lower bound on launch price per token (USD)
        max_launch_price_usd: Upper bound on launch price per token (USD)
        sol_usd_rate: Rate used to convert launch price_sol to USD
        limit: Maximum number of results
    """
    eligible = [
        s for s in summaries
        if min_launch_price_usd <= s.launch.price_sol * sol_usd_rate <= max_launch_price_usd
    ]
    return sorted(eligible, key=lambda s: s.time_to_ath)[:limit]


def market_cap_stats(summaries: Sequence[CurveValuationSummary]) -> MarketCapStats:
    """Totals, mean and median of the current market caps"""
    if not summaries:
        return MarketCapStats()

    usd = [s.current.market_cap_usd for s in summaries]
    return MarketCapStats(
        curve_count=len(summaries),
        total_market_cap_usd=sum(usd),
        total_market_cap_sol=sum(s.current.market_cap_sol for s in summaries),
        average_market_cap_usd=statistics.mean(usd),
        median_market_cap_usd=statistics.median(usd)
    )


def categorize(percent: float) -> str:
    """Performance bucket label for a percent change from launch"""
    for label, lower, upper in PERFORMANCE_BUCKETS:
        if lower <= percent < upper:
            return label
    for label, upper, lower in LOSER_BUCKETS:
        if lower < percent <= upper:
            return label
    return "neutral"


def analyze_cohort(summaries: Sequence[CurveValuationSummary]) -> CohortReport:
    """
    Build a cohort report

    Args:
        summaries: One summary per curve

    Returns:
        CohortReport

    Raises:
        ValueError: If no summaries are given
    """
    if not summaries:
        raise ValueError("No curve summaries to analyze")

    gains_to_ath = [s.gain_to_ath for s in summaries]
    gains_to_current = [s.percent_from_launch for s in summaries]

    categories = {label: 0 for label, _, _ in PERFORMANCE_BUCKETS}
    categories["neutral"] = 0
    categories.update({label: 0 for label, _, _ in LOSER_BUCKETS})
    for gain in gains_to_current:
        categories[categorize(gain)] += 1

    # Curves whose launch point is the ATH carry no rise time
    rise_times = [s.time_to_ath_minutes for s in summaries if s.time_to_ath > 0]

    by_gain = sorted(summaries, key=lambda s: s.percent_from_launch, reverse=True)

    return CohortReport(
        total_curves=len(summaries),
        average_gain_to_ath=statistics.mean(gains_to_ath),
        average_gain_to_current=statistics.mean(gains_to_current),
        median_gain_to_ath=statistics.median(gains_to_ath),
        median_gain_to_current=statistics.median(gains_to_current),
        gainers_from_launch=sum(1 for g in gains_to_current if g > 0),
        losers_from_launch=sum(1 for g in gains_to_current if g < 0),
        neutral_from_launch=sum(1 for g in gains_to_current if -NEUTRAL_BAND <= g <= NEUTRAL_BAND),
        performance_categories=categories,
        average_time_to_ath_minutes=statistics.mean(rise_times) if rise_times else 0.0,
        fastest_time_to_ath_minutes=min(rise_times) if rise_times else 0.0,
        slowest_time_to_ath_minutes=max(rise_times) if rise_times else 0.0,
        total_launch_market_cap_usd=sum(s.launch.market_cap_usd for s in summaries),
        total_ath_market_cap_usd=sum(s.all_time_high.market_cap_usd for s in summaries),
        total_current_market_cap_usd=sum(s.current.market_cap_usd for s in summaries),
        top_performers=by_gain[:TOP_N],
        worst_performers=sorted(summaries, key=lambda s: s.percent_from_launch)[:TOP_N],
        fastest_risers=sorted(
            (s for s in summaries if s.time_to_ath > 0),
            key=lambda s: s.time_to_ath
        )[:TOP_N]
    )
