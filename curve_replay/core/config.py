"""
Configuration Manager for curve replay
Loads configuration from YAML files with environment variable support
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


DEFAULT_TOKEN_DECIMALS = 9
DEFAULT_SOL_USD_RATE = 172.0


@dataclass
class RPCEndpoint:
    """RPC endpoint for the chain data source"""
    url: str
    priority: int
    label: str
    timeout_s: float = 10.0


@dataclass
class RPCConfig:
    """Chain data source configuration"""
    endpoints: List[RPCEndpoint]
    signature_page_limit: int = 100


@dataclass
class LogConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "json"
    output_file: Optional[str] = None


@dataclass
class MetricsConfig:
    """Metrics configuration"""
    enable_histogram: bool = True


@dataclass
class ReplayConfig:
    """Replay engine configuration"""
    token_decimals: int = DEFAULT_TOKEN_DECIMALS
    dust_threshold: int = 1
    sol_usd_rate: float = DEFAULT_SOL_USD_RATE
    max_concurrency: int = 8
    # curve address -> decimals, for mints that do not use the default
    curve_decimals: Dict[str, int] = field(default_factory=dict)

    def decimals_for(self, curve_address: str) -> int:
        """Token decimals to use for one curve"""
        return self.curve_decimals.get(curve_address, self.token_decimals)


@dataclass
class AppConfig:
    """Complete application configuration"""
    replay_config: ReplayConfig
    log_config: LogConfig
    metrics_config: MetricsConfig
    rpc_config: Optional[RPCConfig] = None


class ConfigurationManager:
    """Manages configuration from YAML files and environment variables"""

    def __init__(self, config_path: str):
        """
        Initialize configuration manager

        Args:
            config_path: Path to YAML configuration file
        """
        self.config_path = Path(config_path)
        self._config_data: Optional[Dict[str, Any]] = None
        self._app_config: Optional[AppConfig] = None

    def load_config(self) -> AppConfig:
        """
        Load and validate configuration from file

        Returns:
            AppConfig: Validated configuration object

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not self.config_path.exists():
            raise FileNotFoundError(
                f"Configuration file not found: {self.config_path}"
            )

        with open(self.config_path, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        self._config_data = self._substitute_env_vars(raw_config)
        self._app_config = self._parse_config(self._config_data)

        return self._app_config

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation key

        Args:
            key: Dot-notation key (e.g., "replay.token_decimals")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if self._config_data is None:
            raise RuntimeError("Configuration not loaded. Call load_config() first.")

        value = self._config_data
        for k in key.split('.'):
            if not isinstance(value, dict):
                return default
            value = value.get(k)
            if value is None:
                return default

        return value

    def _substitute_env_vars(self, config: Any) -> Any:
        """
        Recursively substitute ${VAR_NAME} patterns with environment values

        Raises:
            ValueError: If a referenced variable is not set
        """
        if isinstance(config, dict):
            return {k: self._substitute_env_vars(v) for k, v in config.items()}
        if isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        if isinstance(config, str):
            def replace_var(match):
                var_name = match.group(1)
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(
                        f"Environment variable {var_name} not found"
                    )
                return value

            return re.sub(r'\$\{([^}]+)\}', replace_var, config)
        return config

    def _parse_config(self, config: Dict[str, Any]) -> AppConfig:
        """
        Parse raw configuration into typed objects

        Raises:
            ValueError: If configuration is invalid
        """
        replay_data = config.get('replay', {})
        curve_decimals = {
            str(address): int(decimals)
            for address, decimals in (replay_data.get('curve_decimals') or {}).items()
        }
        replay_config = ReplayConfig(
            token_decimals=int(replay_data.get('token_decimals', DEFAULT_TOKEN_DECIMALS)),
            dust_threshold=int(replay_data.get('dust_threshold', 1)),
            sol_usd_rate=float(replay_data.get('sol_usd_rate', DEFAULT_SOL_USD_RATE)),
            max_concurrency=int(replay_data.get('max_concurrency', 8)),
            curve_decimals=curve_decimals
        )

        if replay_config.token_decimals < 0:
            raise ValueError("token_decimals must be >= 0")
        if any(d < 0 for d in curve_decimals.values()):
            raise ValueError("curve_decimals entries must be >= 0")
        if replay_config.dust_threshold < 0:
            raise ValueError("dust_threshold must be >= 0")
        if replay_config.sol_usd_rate <= 0:
            raise ValueError("sol_usd_rate must be positive")
        if replay_config.max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")

        log_data = config.get('logging', {})
        log_config = LogConfig(
            level=log_data.get('level', 'INFO'),
            format=log_data.get('format', 'json'),
            output_file=log_data.get('output_file')
        )

        metrics_data = config.get('metrics', {})
        metrics_config = MetricsConfig(
            enable_histogram=metrics_data.get('enable_histogram', True)
        )

        # The chain data source is optional; offline replays only need bytes and events
        rpc_config = None
        if 'rpc' in config:
            rpc_data = config['rpc']
            endpoints_data = rpc_data.get('endpoints', [])
            if not endpoints_data:
                raise ValueError("No RPC endpoints configured")

            endpoints = [
                RPCEndpoint(
                    url=ep['url'],
                    priority=ep.get('priority', index),
                    label=ep.get('label', f"endpoint_{index}"),
                    timeout_s=float(ep.get('timeout_s', 10.0))
                )
                for index, ep in enumerate(endpoints_data)
            ]
            # Sort by priority (0 = highest)
            endpoints.sort(key=lambda x: x.priority)

            rpc_config = RPCConfig(
                endpoints=endpoints,
                signature_page_limit=int(rpc_data.get('signature_page_limit', 100))
            )

        return AppConfig(
            replay_config=replay_config,
            log_config=log_config,
            metrics_config=metrics_config,
            rpc_config=rpc_config
        )
