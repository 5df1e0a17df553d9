"""
SOL/USD rate holder
Keeps the last known rate and falls back to it when a refresh fails
"""

from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from curve_replay.core.config import DEFAULT_SOL_USD_RATE
from curve_replay.core.logger import get_logger
from curve_replay.core.metrics import get_metrics


logger = get_logger(__name__)


RateFetcher = Callable[[], Awaitable[float]]


class SolPriceOracle:
    """
    Last-known SOL -> USD rate

    The provider is injected; a failing or nonsensical refresh leaves the
    previous rate in place so valuation never fails for lack of a fresh quote.

    Usage:
        oracle = SolPriceOracle(initial_rate=172.0)
        await oracle.refresh(fetch_from_provider)
        usd = market_cap_sol * oracle.rate
    """

    def __init__(self, initial_rate: float = DEFAULT_SOL_USD_RATE):
        if initial_rate <= 0:
            raise ValueError("initial_rate must be positive")
        self._rate = float(initial_rate)
        self.updated_at: Optional[datetime] = None
        self.is_stale = True

    @property
    def rate(self) -> float:
        return self._rate

    async def refresh(self, fetch: RateFetcher) -> float:
        """
        Try to refresh the rate

        Args:
            fetch: Async callable returning the current SOL price in USD

        Returns:
            The rate now in effect (fresh or previous)
        """
        try:
            value = float(await fetch())
        except Exception as e:
            get_metrics().increment_counter("sol_rate_refresh_failed")
            logger.warning("sol_rate_refresh_failed", error=str(e), fallback_rate=self._rate)
            self.is_stale = True
            return self._rate

        if value <= 0:
            get_metrics().increment_counter("sol_rate_refresh_failed")
            logger.warning("sol_rate_rejected", value=value, fallback_rate=self._rate)
            self.is_stale = True
            return self._rate

        self._rate = value
        self.updated_at = datetime.now(timezone.utc)
        self.is_stale = False
        get_metrics().set_gauge("sol_usd_rate", value)
        logger.info("sol_rate_updated", rate=value)
        return self._rate
