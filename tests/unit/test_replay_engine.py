"""
Unit tests for the replay engine
Tests the price model, event application, skip reasons, timestamps and extension
"""

import pytest

from curve_replay.core.account_codec import CurveSnapshot
from curve_replay.core.errors import InvalidReserveStateError
from curve_replay.core.replay_engine import (
    SKIP_CURVE_COMPLETED,
    SKIP_DUPLICATE,
    SKIP_INVALID_RESERVES,
    SKIP_OUT_OF_ORDER,
    ReplayEngine,
    ReplayState,
    ReplayStatus,
    ValuationSeries,
    compute_price,
)
from curve_replay.core.trade_classifier import dedupe_by_signature
from curve_replay.core.valuation import summarize


RATE = 100.0
LAUNCH = 1_700_000_000
TEN_TOKENS = 10_000_000_000


@pytest.fixture
def engine():
    """Engine with 9 decimal default"""
    return ReplayEngine(token_decimals=9)


def replay(engine, seed, events, curve_address, **kwargs):
    kwargs.setdefault("launch_time", LAUNCH)
    return engine.replay(seed, events, curve_address, sol_usd_rate=RATE, **kwargs)


# =============================================================================
# PRICE MODEL
# =============================================================================

def test_compute_price_launch_values():
    """30 SOL over 1000 tokens, 1M supply"""
    price, market_cap = compute_price(30_000_000_000, 1_000_000_000_000, 1_000_000_000_000_000, 9)

    assert price == pytest.approx(0.03)
    assert market_cap == pytest.approx(30_000.0)


@pytest.mark.parametrize("sol,token,supply", [
    (0, 1_000, 1_000),
    (1_000, 0, 1_000),
    (-5, 1_000, 1_000),
    (1_000, 1_000, 0),
])
def test_compute_price_non_positive_inputs(sol, token, supply):
    """Degenerate reserves price to zero instead of raising"""
    assert compute_price(sol, token, supply, 9) == (0.0, 0.0)


# =============================================================================
# REPLAY BASICS
# =============================================================================

def test_launch_point(engine, seed_snapshot, curve_address):
    """The first point values the seed at launch_time"""
    series = replay(engine, seed_snapshot, [], curve_address)

    assert len(series) == 1
    launch = series.launch
    assert launch.timestamp == LAUNCH
    assert launch.price_sol == pytest.approx(0.03)
    assert launch.market_cap_sol == pytest.approx(30_000.0)
    assert launch.market_cap_usd == pytest.approx(30_000.0 * RATE)
    assert launch.signature is None
    assert series.status is ReplayStatus.ACTIVE


def test_example_buy_sets_new_high(engine, seed_snapshot, curve_address, make_event):
    """A 10 token buy at 0.03 adds 0.3 SOL and removes 10 tokens"""
    buy = make_event("buy_1", TEN_TOKENS, block_time=LAUNCH + 60)

    series = replay(engine, seed_snapshot, [buy], curve_address)

    assert len(series) == 2
    point = series.current
    assert point.signature == "buy_1"
    assert point.timestamp == LAUNCH + 60
    assert point.price_sol == pytest.approx(30.3 / 990)
    assert point.market_cap_sol == pytest.approx(30.3 / 990 * 1_000_000)
    assert point.market_cap_usd == pytest.approx(point.market_cap_sol * RATE)

    state = series.final_state
    assert state.running_virtual_sol == pytest.approx(30_300_000_000)
    assert state.running_virtual_token == 990_000_000_000

    summary = summarize(series)
    assert summary.all_time_high is point
    assert summary.time_to_ath == 60


def test_sell_after_buy(engine, seed_snapshot, curve_address, make_event):
    """A sell is valued at the post-buy price and lowers the price"""
    events = [
        make_event("buy", TEN_TOKENS, block_time=LAUNCH + 10),
        make_event("sell", -TEN_TOKENS, block_time=LAUNCH + 20),
    ]

    series = replay(engine, seed_snapshot, events, curve_address)

    price_after_buy = 30.3 / 990
    expected_sol = 30.3 - 10 * price_after_buy
    assert series.final_state.running_virtual_token == 1_000_000_000_000
    assert series.final_state.running_virtual_sol == pytest.approx(expected_sol * 1e9)
    assert series.current.price_sol == pytest.approx(expected_sol / 1000)
    assert series.current.price_sol < series.launch.price_sol


def test_replay_is_deterministic(engine, seed_snapshot, curve_address, make_event):
    """Same inputs give identical series"""
    events = [
        make_event("a", TEN_TOKENS, block_time=LAUNCH + 1),
        make_event("b", -3_000_000_000, block_time=LAUNCH + 2),
        make_event("c", 25_000_000_000, block_time=LAUNCH + 3),
    ]

    first = replay(engine, seed_snapshot, events, curve_address)
    second = replay(engine, seed_snapshot, events, curve_address)

    assert first.points == second.points
    assert first.final_state == second.final_state


def test_replays_do_not_share_state(engine, seed_snapshot, curve_address, make_event):
    """A replay of one curve never leaks into the next"""
    replay(engine, seed_snapshot, [make_event("x", TEN_TOKENS, block_time=LAUNCH + 1)], curve_address)
    fresh = replay(engine, seed_snapshot, [], curve_address)

    assert fresh.final_state.running_virtual_sol == 30_000_000_000
    assert fresh.final_state.applied_signatures == set()


def test_per_call_decimals(engine, seed_snapshot, curve_address):
    """Decimals passed to replay override the engine default"""
    series = replay(engine, seed_snapshot, [], curve_address, token_decimals=6)

    assert series.final_state.token_decimals == 6
    assert series.launch.price_sol == pytest.approx(0.03 / 1000)
    assert series.launch.market_cap_sol == pytest.approx(30_000.0)


def test_invalid_seed_raises(engine, curve_address):
    seed = CurveSnapshot(
        virtual_token_reserves=0,
        virtual_sol_reserves=30_000_000_000,
        real_token_reserves=0,
        real_sol_reserves=0,
        token_total_supply=1_000_000_000_000_000,
        complete=False
    )

    with pytest.raises(InvalidReserveStateError) as exc_info:
        replay(engine, seed, [], curve_address)

    assert exc_info.value.curve_address == curve_address


# =============================================================================
# TIMESTAMPS
# =============================================================================

def test_launch_time_defaults_to_first_block_time(engine, seed_snapshot, curve_address, make_event):
    events = [
        make_event("no_time", TEN_TOKENS, block_time=None, sequence_hint=1),
        make_event("timed", TEN_TOKENS, block_time=LAUNCH + 500, sequence_hint=2),
    ]

    series = engine.replay(seed_snapshot, events, curve_address, sol_usd_rate=RATE)

    assert series.launch.timestamp == LAUNCH + 500


def test_launch_time_defaults_to_zero_without_block_times(engine, seed_snapshot, curve_address):
    series = engine.replay(seed_snapshot, [], curve_address, sol_usd_rate=RATE)

    assert series.launch.timestamp == 0


def test_missing_block_time_reuses_last_timestamp(engine, seed_snapshot, curve_address, make_event):
    events = [
        make_event("timed", TEN_TOKENS, block_time=LAUNCH + 30, sequence_hint=1),
        make_event("untimed", TEN_TOKENS, block_time=None, sequence_hint=2),
    ]

    series = replay(engine, seed_snapshot, events, curve_address)

    assert [p.timestamp for p in series] == [LAUNCH, LAUNCH + 30, LAUNCH + 30]


def test_timestamps_never_decrease(engine, seed_snapshot, curve_address, make_event):
    """An earlier block time ordered after a later one by sequence is clamped"""
    events = [
        make_event("a", TEN_TOKENS, block_time=LAUNCH + 300, sequence_hint=1),
        make_event("b", TEN_TOKENS, block_time=None, sequence_hint=2),
        make_event("c", TEN_TOKENS, block_time=LAUNCH + 250, sequence_hint=3),
    ]

    series = replay(engine, seed_snapshot, events, curve_address)

    timestamps = [p.timestamp for p in series]
    assert timestamps == [LAUNCH, LAUNCH + 300, LAUNCH + 300, LAUNCH + 300]
    assert series.skipped == []


# =============================================================================
# SKIPS
# =============================================================================

def test_out_of_order_event_skipped(engine, seed_snapshot, curve_address, make_event, global_metrics):
    events = [
        make_event("later", TEN_TOKENS, block_time=LAUNCH + 200, sequence_hint=1),
        make_event("earlier", TEN_TOKENS, block_time=LAUNCH + 100, sequence_hint=2),
    ]

    series = replay(engine, seed_snapshot, events, curve_address)

    assert len(series) == 2
    assert [(s.signature, s.reason) for s in series.skipped] == [("earlier", SKIP_OUT_OF_ORDER)]
    assert global_metrics.get_counter(
        "replay_events_skipped", labels={"reason": SKIP_OUT_OF_ORDER}
    ) == 1


def test_sell_draining_sol_skipped(engine, seed_snapshot, curve_address, make_event):
    """A sell worth more than the virtual SOL leaves state untouched"""
    events = [
        make_event("huge_sell", -1_000_000_000_000_000, block_time=LAUNCH + 1),
        make_event("buy", TEN_TOKENS, block_time=LAUNCH + 2),
    ]

    series = replay(engine, seed_snapshot, events, curve_address)

    assert series.skipped[0].signature == "huge_sell"
    assert series.skipped[0].reason == SKIP_INVALID_RESERVES
    assert series.current.signature == "buy"
    assert series.current.price_sol == pytest.approx(30.3 / 990)


def test_buy_draining_tokens_skipped(engine, seed_snapshot, curve_address, make_event):
    events = [make_event("drain", 1_000_000_000_000, block_time=LAUNCH + 1)]

    series = replay(engine, seed_snapshot, events, curve_address)

    assert len(series) == 1
    assert series.skipped[0].reason == SKIP_INVALID_RESERVES
    assert series.final_state.running_virtual_token == 1_000_000_000_000


def test_duplicate_signature_skipped(engine, seed_snapshot, curve_address, make_event):
    events = [
        make_event("dup", TEN_TOKENS, block_time=LAUNCH + 1),
        make_event("dup", TEN_TOKENS, block_time=LAUNCH + 2),
    ]

    series = replay(engine, seed_snapshot, events, curve_address)

    assert len(series) == 2
    assert [(s.signature, s.reason) for s in series.skipped] == [("dup", SKIP_DUPLICATE)]


def test_completed_seed_skips_everything(engine, seed_snapshot, curve_address, make_event):
    seed = CurveSnapshot(
        virtual_token_reserves=seed_snapshot.virtual_token_reserves,
        virtual_sol_reserves=seed_snapshot.virtual_sol_reserves,
        real_token_reserves=0,
        real_sol_reserves=0,
        token_total_supply=seed_snapshot.token_total_supply,
        complete=True
    )
    events = [make_event(f"sig{i}", TEN_TOKENS, block_time=LAUNCH + i) for i in range(3)]

    series = replay(engine, seed, events, curve_address)

    assert len(series) == 1
    assert series.status is ReplayStatus.COMPLETED
    assert {s.reason for s in series.skipped} == {SKIP_CURVE_COMPLETED}
    assert len(series.skipped) == 3


def test_completing_event_is_last_applied(engine, seed_snapshot, curve_address, make_event):
    events = [
        make_event("migrating_buy", TEN_TOKENS, block_time=LAUNCH + 1, complete=True),
        make_event("after", TEN_TOKENS, block_time=LAUNCH + 2),
    ]

    series = replay(engine, seed_snapshot, events, curve_address)

    assert series.current.signature == "migrating_buy"
    assert series.status is ReplayStatus.COMPLETED
    assert series.skipped[0].reason == SKIP_CURVE_COMPLETED


def test_zero_diff_event_emits_unchanged_point(engine, seed_snapshot, curve_address, make_event):
    """A zero diff still produces a point equal in value to the previous one"""
    series = replay(engine, seed_snapshot, [make_event("noop", 0, block_time=LAUNCH + 5)], curve_address)

    assert len(series) == 2
    assert series.current.timestamp == LAUNCH + 5
    assert series.current.price_sol == series.launch.price_sol
    assert series.current.market_cap_usd == series.launch.market_cap_usd


def test_apply_event_returns_point_or_skip(engine, seed_snapshot, curve_address, make_event):
    state = ReplayState.from_seed(seed_snapshot, curve_address, 9)

    point, skip = engine.apply_event(state, make_event("a", TEN_TOKENS, block_time=LAUNCH), RATE)
    assert point is not None and skip is None

    point, skip = engine.apply_event(state, make_event("a", TEN_TOKENS, block_time=LAUNCH), RATE)
    assert point is None and skip.reason == SKIP_DUPLICATE


def test_replay_metrics(engine, seed_snapshot, curve_address, make_event, global_metrics):
    events = [
        make_event("a", TEN_TOKENS, block_time=LAUNCH + 1),
        make_event("a", TEN_TOKENS, block_time=LAUNCH + 2),
    ]

    replay(engine, seed_snapshot, events, curve_address)

    assert global_metrics.get_counter("replay_events_applied") == 1
    assert global_metrics.get_counter("replay_events_skipped", labels={"reason": SKIP_DUPLICATE}) == 1
    assert global_metrics.get_histogram_stats("curve_replay").count == 1


# =============================================================================
# IDEMPOTENT INGESTION AND EXTENSION
# =============================================================================

def test_deduplicated_ingestion_matches_clean_log(engine, seed_snapshot, curve_address, make_event):
    """Ingesting the same signature twice changes nothing once deduplicated"""
    a = make_event("a", TEN_TOKENS, block_time=LAUNCH + 1)
    b = make_event("b", -2_000_000_000, block_time=LAUNCH + 2)

    clean = replay(engine, seed_snapshot, [a, b], curve_address)
    noisy = replay(engine, seed_snapshot, dedupe_by_signature([a, a, b, b]), curve_address)

    assert clean.points == noisy.points


def test_extend_appends_only_new_events(engine, seed_snapshot, curve_address, make_event):
    a = make_event("a", TEN_TOKENS, block_time=LAUNCH + 1)
    b = make_event("b", -2_000_000_000, block_time=LAUNCH + 2)
    c = make_event("c", 5_000_000_000, block_time=LAUNCH + 3)

    partial = replay(engine, seed_snapshot, [a, b], curve_address)
    extended = engine.extend(partial, [a, b, c], sol_usd_rate=RATE)
    full = replay(engine, seed_snapshot, [a, b, c], curve_address)

    assert extended.points[:len(partial)] == partial.points
    assert extended.points == full.points
    assert extended.final_state == full.final_state
    # input series untouched
    assert len(partial) == 3
    assert partial.final_state.applied_signatures == {"a", "b"}


def test_extend_does_not_retry_skipped(engine, seed_snapshot, curve_address, make_event):
    later = make_event("later", TEN_TOKENS, block_time=LAUNCH + 200, sequence_hint=1)
    earlier = make_event("earlier", TEN_TOKENS, block_time=LAUNCH + 100, sequence_hint=2)

    series = replay(engine, seed_snapshot, [later, earlier], curve_address)
    extended = engine.extend(series, [later, earlier], sol_usd_rate=RATE)

    assert extended.points == series.points
    assert len(extended.skipped) == 1


def test_extend_requires_state(engine, curve_address):
    with pytest.raises(ValueError):
        engine.extend(ValuationSeries(curve_address=curve_address), [], sol_usd_rate=RATE)
