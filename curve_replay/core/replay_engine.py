"""
Replay engine for bonding curve valuation history
Folds an ordered trade-event log over a seed snapshot and derives a
price / market-cap series

Price model:
    price = (virtual_sol / 1e9) / (virtual_token / 10**decimals)
    market_cap = price * token_total_supply / 10**decimals

Each trade is valued at the pre-trade marginal price (linear approximation):
    sol_delta = |token_diff| / 10**decimals * price_before * 1e9
This understates impact for large trades compared to integrating x * y = k.
Series must stay comparable with existing ATH reports: do not swap in the integral.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, List, Optional, Set, Tuple

from curve_replay.core.account_codec import LAMPORTS_PER_SOL, CurveSnapshot
from curve_replay.core.config import DEFAULT_TOKEN_DECIMALS
from curve_replay.core.errors import InvalidReserveStateError, OutOfOrderEventError
from curve_replay.core.logger import get_logger
from curve_replay.core.metrics import LatencyTimer, get_metrics
from curve_replay.core.trade_classifier import TradeEvent, compare_ordering


logger = get_logger(__name__)


SKIP_OUT_OF_ORDER = "out_of_order"
SKIP_INVALID_RESERVES = "invalid_reserve_state"
SKIP_CURVE_COMPLETED = "curve_completed"
SKIP_DUPLICATE = "duplicate_signature"


class ReplayStatus(Enum):
    """Lifecycle of one curve's replay"""
    AWAITING_SEED = "awaiting_seed"
    ACTIVE = "active"
    COMPLETED = "completed"


@dataclass(frozen=True)
class PricePoint:
    """Valuation observed right after the seed or one applied event"""
    timestamp: int  # unix seconds
    price_sol: float  # SOL per whole token
    market_cap_sol: float
    market_cap_usd: float
    signature: Optional[str] = None  # None for the launch point

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "price_sol": self.price_sol,
            "market_cap_sol": self.market_cap_sol,
            "market_cap_usd": self.market_cap_usd,
            "signature": self.signature
        }


@dataclass(frozen=True)
class SkippedEvent:
    """An event that was seen but not applied"""
    signature: str
    reason: str
    detail: str = ""


@dataclass
class ReplayState:
    """Running reserves for one curve during one replay run

    running_virtual_sol is a float lamport accumulator (trades add fractional
    lamports); it is rounded to whole lamports whenever a price is computed.
    """
    curve_address: str
    token_total_supply: int
    token_decimals: int
    running_virtual_sol: float = 0.0
    running_virtual_token: int = 0
    status: ReplayStatus = ReplayStatus.AWAITING_SEED
    last_ordering_key: Optional[Tuple[Optional[int], int]] = None
    last_timestamp: int = 0
    applied_signatures: Set[str] = field(default_factory=set)

    @classmethod
    def from_seed(
        cls,
        seed: CurveSnapshot,
        curve_address: str,
        token_decimals: int
    ) -> "ReplayState":
        """
        Build an ACTIVE (or COMPLETED) state from a seed snapshot

        Raises:
            InvalidReserveStateError: If the seed cannot be priced
        """
        seed.require_valid_reserves(curve_address)
        return cls(
            curve_address=curve_address,
            token_total_supply=seed.token_total_supply,
            token_decimals=token_decimals,
            running_virtual_sol=float(seed.virtual_sol_reserves),
            running_virtual_token=seed.virtual_token_reserves,
            status=ReplayStatus.COMPLETED if seed.complete else ReplayStatus.ACTIVE
        )

    def copy(self) -> "ReplayState":
        return replace(self, applied_signatures=set(self.applied_signatures))


@dataclass
class ValuationSeries:
    """Ordered price points for one curve plus everything that was skipped"""
    curve_address: str
    points: List[PricePoint] = field(default_factory=list)
    skipped: List[SkippedEvent] = field(default_factory=list)
    final_state: Optional[ReplayState] = None

    @property
    def status(self) -> ReplayStatus:
        if self.final_state is None:
            return ReplayStatus.AWAITING_SEED
        return self.final_state.status

    @property
    def launch(self) -> Optional[PricePoint]:
        return self.points[0] if self.points else None

    @property
    def current(self) -> Optional[PricePoint]:
        return self.points[-1] if self.points else None

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self):
        return iter(self.points)


def compute_price(
    virtual_sol_lamports: int,
    virtual_token_reserves: int,
    token_total_supply: int,
    token_decimals: int
) -> Tuple[float, float]:
    """
    Price and market cap from raw reserves

    Args:
        virtual_sol_lamports: Virtual SOL reserves (lamports)
        virtual_token_reserves: Virtual token reserves (raw units)
        token_total_supply: Total supply (raw units)
        token_decimals: Mint decimals

    Returns:
        (price_sol, market_cap_sol); (0.0, 0.0) when any input is non-positive
    """
    if virtual_sol_lamports <= 0 or virtual_token_reserves <= 0:
        return 0.0, 0.0

    scale = 10 ** token_decimals
    virtual_sol = virtual_sol_lamports / LAMPORTS_PER_SOL
    virtual_tokens = virtual_token_reserves / scale
    total_supply_tokens = token_total_supply / scale

    if virtual_tokens <= 0 or total_supply_tokens <= 0:
        return 0.0, 0.0

    price_sol = virtual_sol / virtual_tokens
    return price_sol, price_sol * total_supply_tokens


class ReplayEngine:
    """
    Replays trade events over a seed snapshot

    Each call owns a fresh ReplayState; nothing is shared between curves or
    runs, so distinct curves can be replayed concurrently.

    Usage:
        engine = ReplayEngine(token_decimals=9)
        series = engine.replay(seed, events, curve_address, sol_usd_rate=172.0)
        print(series.current.market_cap_usd)
    """

    def __init__(self, token_decimals: int = DEFAULT_TOKEN_DECIMALS):
        """
        Args:
            token_decimals: Default mint decimals when a replay does not pass its own
        """
        self.token_decimals = token_decimals

    def replay(
        self,
        seed: CurveSnapshot,
        events: Iterable[TradeEvent],
        curve_address: str,
        sol_usd_rate: float,
        token_decimals: Optional[int] = None,
        launch_time: Optional[int] = None
    ) -> ValuationSeries:
        """
        Replay one curve from its seed snapshot

        Args:
            seed: Decoded snapshot the replay starts from
            events: Events in replay order (see order_events)
            curve_address: Curve being replayed
            sol_usd_rate: SOL -> USD rate for market_cap_usd
            token_decimals: Mint decimals (engine default if None)
            launch_time: Timestamp of the launch point; defaults to the first
                event block time, else 0

        Returns:
            ValuationSeries starting with the launch point

        Raises:
            InvalidReserveStateError: If the seed has non-positive virtual reserves
        """
        decimals = self.token_decimals if token_decimals is None else token_decimals
        events = list(events)

        state = ReplayState.from_seed(seed, curve_address, decimals)

        if launch_time is None:
            launch_time = next(
                (e.block_time for e in events if e.block_time is not None), 0
            )
        state.last_timestamp = launch_time

        series = ValuationSeries(curve_address=curve_address, final_state=state)
        series.points.append(self._price_point(state, launch_time, sol_usd_rate, None))

        if state.status is ReplayStatus.COMPLETED:
            logger.info("curve_already_complete", curve=curve_address, events=len(events))

        with LatencyTimer(get_metrics(), "curve_replay"):
            self._fold(state, events, series, sol_usd_rate)

        logger.info(
            "curve_replayed",
            curve=curve_address,
            points=len(series.points),
            skipped=len(series.skipped),
            status=state.status.value
        )
        return series

    def extend(
        self,
        series: ValuationSeries,
        events: Iterable[TradeEvent],
        sol_usd_rate: float
    ) -> ValuationSeries:
        """
        Continue a finished replay with a superset of its events

        Events whose signature was already applied or skipped are ignored;
        existing points are carried over unchanged. The input series is not
        modified.

        Raises:
            ValueError: If the series carries no final state
        """
        if series.final_state is None:
            raise ValueError("Series has no replay state to extend")

        state = series.final_state.copy()
        known = set(state.applied_signatures)
        known.update(skip.signature for skip in series.skipped)

        extended = ValuationSeries(
            curve_address=series.curve_address,
            points=list(series.points),
            skipped=list(series.skipped),
            final_state=state
        )
        fresh = [event for event in events if event.signature not in known]
        self._fold(state, fresh, extended, sol_usd_rate)

        logger.info(
            "curve_replay_extended",
            curve=series.curve_address,
            new_events=len(fresh),
            points=len(extended.points)
        )
        return extended

    def apply_event(
        self,
        state: ReplayState,
        event: TradeEvent,
        sol_usd_rate: float
    ) -> Tuple[Optional[PricePoint], Optional[SkippedEvent]]:
        """
        Apply one event to the running state

        Returns:
            (point, None) when applied, (None, skip) when the event was skipped
        """
        if state.status is ReplayStatus.COMPLETED:
            return None, self._skip(state, event, SKIP_CURVE_COMPLETED, "curve already migrated")

        if event.signature in state.applied_signatures:
            return None, self._skip(state, event, SKIP_DUPLICATE, "signature already applied")

        if state.last_ordering_key is not None and \
                compare_ordering(event.ordering_key, state.last_ordering_key) < 0:
            error = OutOfOrderEventError(
                f"Event key {event.ordering_key} precedes last applied {state.last_ordering_key}",
                curve_address=state.curve_address,
                signature=event.signature
            )
            return None, self._skip(state, event, SKIP_OUT_OF_ORDER, str(error))

        if state.running_virtual_sol <= 0 or state.running_virtual_token <= 0:
            error = InvalidReserveStateError(
                "Running reserves are not positive",
                curve_address=state.curve_address,
                signature=event.signature
            )
            return None, self._skip(state, event, SKIP_INVALID_RESERVES, str(error))

        timestamp = state.last_timestamp
        if event.block_time is not None:
            timestamp = max(event.block_time, state.last_timestamp)

        if event.token_diff != 0:
            price_before, _ = compute_price(
                round(state.running_virtual_sol),
                state.running_virtual_token,
                state.token_total_supply,
                state.token_decimals
            )
            sol_delta = (
                abs(event.token_diff) / 10 ** state.token_decimals
            ) * price_before * LAMPORTS_PER_SOL

            if event.token_diff > 0:
                new_sol = state.running_virtual_sol + sol_delta
                new_token = state.running_virtual_token - event.token_diff
            else:
                new_sol = state.running_virtual_sol - sol_delta
                new_token = state.running_virtual_token + abs(event.token_diff)

            if new_sol <= 0 or new_token <= 0:
                return None, self._skip(
                    state,
                    event,
                    SKIP_INVALID_RESERVES,
                    f"resulting reserves sol={new_sol:.0f} token={new_token}"
                )

            state.running_virtual_sol = new_sol
            state.running_virtual_token = new_token

        state.last_ordering_key = event.ordering_key
        state.last_timestamp = timestamp
        state.applied_signatures.add(event.signature)
        if event.complete:
            state.status = ReplayStatus.COMPLETED
            logger.info("curve_completed", curve=state.curve_address, signature=event.signature)

        get_metrics().increment_counter("replay_events_applied")
        return self._price_point(state, timestamp, sol_usd_rate, event.signature), None

    def _fold(
        self,
        state: ReplayState,
        events: List[TradeEvent],
        series: ValuationSeries,
        sol_usd_rate: float
    ) -> None:
        for event in events:
            point, skipped = self.apply_event(state, event, sol_usd_rate)
            if point is not None:
                series.points.append(point)
            if skipped is not None:
                series.skipped.append(skipped)

    def _price_point(
        self,
        state: ReplayState,
        timestamp: int,
        sol_usd_rate: float,
        signature: Optional[str]
    ) -> PricePoint:
        price_sol, market_cap_sol = compute_price(
            round(state.running_virtual_sol),
            state.running_virtual_token,
            state.token_total_supply,
            state.token_decimals
        )
        return PricePoint(
            timestamp=timestamp,
            price_sol=price_sol,
            market_cap_sol=market_cap_sol,
            market_cap_usd=market_cap_sol * sol_usd_rate,
            signature=signature
        )

    def _skip(
        self,
        state: ReplayState,
        event: TradeEvent,
        reason: str,
        detail: str
    ) -> SkippedEvent:
        get_metrics().increment_counter("replay_events_skipped", labels={"reason": reason})
        # Completed curves keep receiving routine events, so only log those at debug
        log = logger.debug if reason == SKIP_CURVE_COMPLETED else logger.warning
        log(
            "replay_event_skipped",
            curve=state.curve_address,
            signature=event.signature,
            reason=reason,
            detail=detail
        )
        return SkippedEvent(signature=event.signature, reason=reason, detail=detail)


# Example usage
if __name__ == "__main__":
    from curve_replay.core.logger import setup_logging

    setup_logging(level="DEBUG", format="console")

    seed = CurveSnapshot(
        virtual_token_reserves=1_000_000_000_000,  # 1000 tokens (9 decimals)
        virtual_sol_reserves=30_000_000_000,  # 30 SOL
        real_token_reserves=800_000_000_000,
        real_sol_reserves=0,
        token_total_supply=1_000_000_000_000_000,  # 1M tokens
        complete=False
    )
    buy = TradeEvent(
        signature="example-buy",
        curve_address="example-curve",
        token_diff=10_000_000_000,  # 10 tokens
        block_time=1_700_000_060,
        sequence_hint=1
    )

    engine = ReplayEngine(token_decimals=9)
    result = engine.replay(seed, [buy], "example-curve", sol_usd_rate=172.0, launch_time=1_700_000_000)

    for p in result.points:
        print(f"{p.timestamp}: price={p.price_sol:.6f} SOL  mcap={p.market_cap_sol:,.2f} SOL")
