"""
Pytest configuration and shared fixtures
These fixtures are available to all test files
"""

import pytest
from typing import Dict, Any

from solders.pubkey import Pubkey

from curve_replay.core.account_codec import CurveSnapshot, encode_curve_account
from curve_replay.core.config import ReplayConfig
from curve_replay.core.metrics import MetricsCollector, init_metrics
from curve_replay.core.trade_classifier import TradeEvent


CURVE_ADDRESS = "7xKXtg2CW87d97TXJSDpbD5jBkheTqA83TZRuJosgAsU"
LAUNCH_TIME = 1_700_000_000


@pytest.fixture(autouse=True)
def global_metrics() -> MetricsCollector:
    """
    Fresh process-wide metrics collector for each test

    Modules record into get_metrics(); replacing it keeps counters isolated
    """
    collector = init_metrics(enable_histogram=True)
    yield collector
    collector.reset()


@pytest.fixture
def metrics_collector() -> MetricsCollector:
    """
    Create fresh metrics collector for each test

    Returns clean MetricsCollector instance
    """
    collector = MetricsCollector(enable_histogram=True)
    yield collector
    collector.reset()


@pytest.fixture
def test_config_dict() -> Dict[str, Any]:
    """
    Sample configuration dictionary for testing

    Returns valid config that can be modified per test
    """
    return {
        "replay": {
            "token_decimals": 9,
            "dust_threshold": 1,
            "sol_usd_rate": 150.0,
            "max_concurrency": 4,
            "curve_decimals": {
                "SixDecimalCurve111111111111111111111111111": 6
            }
        },
        "rpc": {
            "endpoints": [
                {
                    "url": "https://api.testnet.solana.com",
                    "priority": 1,
                    "label": "solana_labs_testnet",
                    "timeout_s": 5.0
                },
                {
                    "url": "https://api.devnet.solana.com",
                    "priority": 0,
                    "label": "solana_labs_devnet",
                    "timeout_s": 5.0
                }
            ],
            "signature_page_limit": 50
        },
        "logging": {
            "level": "DEBUG",
            "format": "json",
            "output_file": None
        },
        "metrics": {
            "enable_histogram": True
        }
    }


@pytest.fixture
def test_config_file(test_config_dict, tmp_path):
    """
    Create a temporary config file for testing

    Returns path to temporary YAML config file
    """
    import yaml

    config_file = tmp_path / "test_config.yml"
    with open(config_file, 'w') as f:
        yaml.dump(test_config_dict, f)

    return str(config_file)


@pytest.fixture
def replay_config() -> ReplayConfig:
    return ReplayConfig(token_decimals=9, sol_usd_rate=100.0, max_concurrency=2)


@pytest.fixture
def curve_address() -> str:
    return CURVE_ADDRESS


@pytest.fixture
def seed_snapshot() -> CurveSnapshot:
    """
    30 SOL / 1000 tokens virtual reserves, 1M token supply (9 decimals)

    Launch price 0.03 SOL, launch market cap 30,000 SOL
    """
    return CurveSnapshot(
        virtual_token_reserves=1_000_000_000_000,
        virtual_sol_reserves=30_000_000_000,
        real_token_reserves=800_000_000_000,
        real_sol_reserves=0,
        token_total_supply=1_000_000_000_000_000,
        complete=False
    )


@pytest.fixture
def creator_pubkey() -> Pubkey:
    return Pubkey.from_string("11111111111111111111111111111112")


@pytest.fixture
def seed_account_bytes(seed_snapshot) -> bytes:
    """Old-layout (49 byte) encoding of seed_snapshot"""
    return encode_curve_account(seed_snapshot)


@pytest.fixture
def make_event(curve_address):
    """
    Factory for TradeEvents on the test curve

    Usage:
        event = make_event("sig1", 10_000_000_000, block_time=LAUNCH_TIME + 60)
    """
    counter = {"seq": 0}

    def _make(
        signature: str,
        token_diff: int,
        block_time=None,
        sequence_hint=None,
        complete: bool = False
    ) -> TradeEvent:
        counter["seq"] += 1
        return TradeEvent(
            signature=signature,
            curve_address=curve_address,
            token_diff=token_diff,
            block_time=block_time,
            sequence_hint=counter["seq"] if sequence_hint is None else sequence_hint,
            complete=complete
        )

    return _make


def pytest_configure(config):
    """Register custom pytest markers"""
    config.addinivalue_line(
        "markers", "slow: mark test as slow running (>5 seconds)"
    )
