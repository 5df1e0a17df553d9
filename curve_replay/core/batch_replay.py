"""
Batch replay across many curves
One task per curve, bounded concurrency, failures isolated per curve
"""

import asyncio
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from curve_replay.core.account_codec import decode_curve_account
from curve_replay.core.config import ReplayConfig
from curve_replay.core.errors import CurveReplayError
from curve_replay.core.logger import get_logger
from curve_replay.core.metrics import get_metrics
from curve_replay.core.replay_engine import ReplayEngine, ValuationSeries
from curve_replay.core.trade_classifier import TradeEvent, order_events
from curve_replay.core.valuation import CurveValuationSummary, summarize


logger = get_logger(__name__)


@dataclass
class CurveJob:
    """Everything needed to replay one curve offline"""
    curve_address: str
    account_data: bytes
    events: List[TradeEvent] = field(default_factory=list)
    token_decimals: Optional[int] = None  # falls back to ReplayConfig.decimals_for
    launch_time: Optional[int] = None


@dataclass
class CurveReplayResult:
    """Outcome of one curve; exactly one of summary/error is set"""
    curve_address: str
    series: Optional[ValuationSeries] = None
    summary: Optional[CurveValuationSummary] = None
    error: Optional[CurveReplayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BatchReplayer:
    """
    Replays independent curves concurrently

    The per-curve fold is CPU-only and runs in an executor; an
    asyncio.Semaphore bounds how many curves are in flight at once.

    Usage:
        replayer = BatchReplayer(ReplayConfig(max_concurrency=4))
        results = await replayer.run(jobs, sol_usd_rate=oracle.rate)
    """

    def __init__(
        self,
        config: Optional[ReplayConfig] = None,
        executor: Optional[Executor] = None
    ):
        """
        Args:
            config: Replay configuration (decimals, concurrency)
            executor: Executor for the folds; the loop default when None
        """
        self.config = config or ReplayConfig()
        self.executor = executor
        self.engine = ReplayEngine(token_decimals=self.config.token_decimals)

    async def run(
        self,
        jobs: Sequence[CurveJob],
        sol_usd_rate: Optional[float] = None
    ) -> List[CurveReplayResult]:
        """
        Replay every job

        Args:
            jobs: One job per curve address
            sol_usd_rate: Rate for USD values (config rate when None)

        Returns:
            Results in job order
        """
        rate = self.config.sol_usd_rate if sol_usd_rate is None else sol_usd_rate
        semaphore = asyncio.Semaphore(self.config.max_concurrency)

        async def bounded(job: CurveJob) -> CurveReplayResult:
            async with semaphore:
                return await self.run_one(job, rate)

        results = await asyncio.gather(*(bounded(job) for job in jobs))

        failed = sum(1 for r in results if not r.ok)
        get_metrics().set_gauge("batch_curves_failed", failed)
        logger.info("batch_replay_completed", curves=len(results), failed=failed)
        return list(results)

    async def run_one(self, job: CurveJob, sol_usd_rate: float) -> CurveReplayResult:
        """Replay one curve in the executor, converting curve errors into a result"""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(self.executor, self.replay_job, job, sol_usd_rate)
        except CurveReplayError as e:
            e.curve_address = e.curve_address or job.curve_address
            get_metrics().increment_counter("curve_replay_failed", labels={"error": type(e).__name__})
            logger.error("curve_replay_failed", **e.to_dict())
            return CurveReplayResult(curve_address=job.curve_address, error=e)

    def replay_job(self, job: CurveJob, sol_usd_rate: float) -> CurveReplayResult:
        """
        Decode, order, replay and summarize one curve synchronously

        Raises:
            CurveReplayError: Decode or seed failures for this curve
        """
        seed = decode_curve_account(job.account_data)
        decimals = job.token_decimals
        if decimals is None:
            decimals = self.config.decimals_for(job.curve_address)

        series = self.engine.replay(
            seed,
            order_events(job.events),
            job.curve_address,
            sol_usd_rate,
            token_decimals=decimals,
            launch_time=job.launch_time
        )
        return CurveReplayResult(
            curve_address=job.curve_address,
            series=series,
            summary=summarize(series)
        )
