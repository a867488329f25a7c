"""
Configuration Module

Typed engine settings with YAML loading. Values in a file override the
defaults section by section; unknown keys are rejected.
"""

import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigError
from .signals import StrategyName

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "STATARB_CONFIG"


@dataclass
class LedgerConfig:
    initial_balance: float = 100000.0


@dataclass
class SizingConfig:
    max_position_pct: float = 0.10
    kelly_fraction: float = 0.33
    max_kelly_pct: float = 0.25
    drawdown_threshold: float = 0.15
    max_drawdown_scale: float = 0.50
    kelly_window: int = 50
    kelly_min_trades: int = 10


@dataclass
class MomentumConfig:
    lookback: int = 10
    vol_window: int = 10
    fast_ma: int = 5
    slow_ma: int = 20
    target_risk: float = 0.02
    entry_threshold: float = 0.0


@dataclass
class MeanReversionConfig:
    z_period: int = 20
    entry_z: float = 2.0
    exit_z: float = 0.5
    stop_z: float = 3.5
    bb_period: int = 20
    bb_std: float = 2.0
    hurst_max_lag: int = 20


@dataclass
class TechnicalConfig:
    rsi_period: int = 14
    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9
    bb_period: int = 20
    bb_std: float = 2.0
    max_score: float = 10.0


@dataclass
class PairsConfig:
    entry_z: float = 2.0
    exit_z: float = 0.5
    stop_z: float = 3.5
    z_window: int = 20
    non_cointegrated_confidence_cap: float = 0.2
    k_ar_diff: int = 1
    min_samples: int = 50


@dataclass
class KalmanConfig:
    process_noise: float = 1e-4
    measurement_noise: float = 1.0
    initial_covariance: float = 1.0
    z_window: int = 30


@dataclass
class ScannerConfig:
    min_samples: int = 30
    min_correlation: float = 0.5
    use_log_returns: bool = True
    with_cointegration: bool = False
    max_results: int = 10


@dataclass
class BacktestConfig:
    initial_balance: float = 100000.0
    max_position_pct: float = 0.10
    close_out: bool = True
    buffer_capacity: int = 200
    symbol: str = "ASSET"
    symbol_b: str = "ASSET_B"


@dataclass
class EngineConfig:
    """Complete engine configuration."""

    strategy: str = StrategyName.ENSEMBLE.value
    buffer_capacity: int = 200
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    sizing: SizingConfig = field(default_factory=SizingConfig)
    momentum: MomentumConfig = field(default_factory=MomentumConfig)
    mean_reversion: MeanReversionConfig = field(default_factory=MeanReversionConfig)
    technical: TechnicalConfig = field(default_factory=TechnicalConfig)
    pairs: PairsConfig = field(default_factory=PairsConfig)
    kalman: KalmanConfig = field(default_factory=KalmanConfig)
    scanner: ScannerConfig = field(default_factory=ScannerConfig)
    backtest: BacktestConfig = field(default_factory=BacktestConfig)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'EngineConfig':
        """
        Build a configuration from a (possibly partial) mapping.

        Args:
            data: Mapping shaped like ``to_dict()``; missing keys keep defaults

        Returns:
            Validated EngineConfig

        Raises:
            ConfigError: On unknown keys, wrong section types or invalid values
        """
        data = dict(data or {})
        sections = {f.name: f for f in fields(cls)}
        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {sorted(unknown)}")

        kwargs = {}
        for name, value in data.items():
            default = getattr(cls(), name)
            if hasattr(default, '__dataclass_fields__'):
                kwargs[name] = _build_section(type(default), name, value)
            else:
                kwargs[name] = value

        config = cls(**kwargs)
        config.validate()
        return config

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def validate(self) -> None:
        """Raise ConfigError if any value is out of range."""
        try:
            StrategyName(self.strategy)
        except ValueError:
            raise ConfigError(f"Unknown strategy {self.strategy!r}") from None

        try:
            checks = self._range_checks()
        except TypeError as exc:
            raise ConfigError(f"Invalid configuration value type: {exc}") from exc
        for ok, message in checks:
            if not ok:
                raise ConfigError(message)

    def _range_checks(self):
        return [
            (self.ledger.initial_balance > 0, "ledger.initial_balance must be positive"),
            (0 < self.sizing.max_position_pct <= 1, "sizing.max_position_pct must be in (0, 1]"),
            (0 < self.sizing.kelly_fraction <= 1, "sizing.kelly_fraction must be in (0, 1]"),
            (0 < self.sizing.max_kelly_pct <= 1, "sizing.max_kelly_pct must be in (0, 1]"),
            (self.sizing.drawdown_threshold > 0, "sizing.drawdown_threshold must be positive"),
            (0 <= self.sizing.max_drawdown_scale <= 1, "sizing.max_drawdown_scale must be in [0, 1]"),
            (self.sizing.kelly_window >= 1, "sizing.kelly_window must be positive"),
            (self.sizing.kelly_min_trades >= 2, "sizing.kelly_min_trades must be at least 2"),
            (self.momentum.fast_ma < self.momentum.slow_ma, "momentum requires fast_ma < slow_ma"),
            (0 <= self.mean_reversion.exit_z < self.mean_reversion.entry_z < self.mean_reversion.stop_z,
             "mean_reversion requires 0 <= exit_z < entry_z < stop_z"),
            (self.technical.macd_fast < self.technical.macd_slow, "technical requires macd_fast < macd_slow"),
            (self.technical.max_score > 0, "technical.max_score must be positive"),
            (0 <= self.pairs.exit_z < self.pairs.entry_z, "pairs requires 0 <= exit_z < entry_z"),
            (self.pairs.z_window >= 2, "pairs.z_window must be at least 2"),
            (0 <= self.pairs.non_cointegrated_confidence_cap <= 1,
             "pairs.non_cointegrated_confidence_cap must be in [0, 1]"),
            (self.pairs.k_ar_diff >= 0, "pairs.k_ar_diff must be non-negative"),
            (self.kalman.process_noise > 0, "kalman.process_noise must be positive"),
            (self.kalman.measurement_noise > 0, "kalman.measurement_noise must be positive"),
            (self.kalman.initial_covariance > 0, "kalman.initial_covariance must be positive"),
            (self.kalman.z_window >= 2, "kalman.z_window must be at least 2"),
            (-1 <= self.scanner.min_correlation <= 1, "scanner.min_correlation must be in [-1, 1]"),
            (self.scanner.min_samples >= 3, "scanner.min_samples must be at least 3"),
            (self.scanner.max_results >= 0, "scanner.max_results must be non-negative"),
            (self.backtest.initial_balance > 0, "backtest.initial_balance must be positive"),
            (0 < self.backtest.max_position_pct <= 1, "backtest.max_position_pct must be in (0, 1]"),
            (self.buffer_capacity >= 1, "buffer_capacity must be positive"),
            (self.backtest.buffer_capacity >= 1, "backtest.buffer_capacity must be positive"),
        ]


def _build_section(section_cls, name: str, value: Any):
    if value is None:
        return section_cls()
    if not isinstance(value, dict):
        raise ConfigError(f"Section {name!r} must be a mapping, got {type(value).__name__}")
    known = {f.name for f in fields(section_cls)}
    unknown = set(value) - known
    if unknown:
        raise ConfigError(f"Unknown keys in section {name!r}: {sorted(unknown)}")
    return section_cls(**value)


def load_yaml_config(path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load a YAML configuration file into a dictionary.

    Args:
        path: File system path to the YAML document

    Returns:
        Parsed configuration mapping (empty for an empty file)

    Raises:
        ConfigError: If the file is missing, unparseable or not a mapping
    """
    config_path = Path(path)
    if not config_path.is_file():
        raise ConfigError(f"Config file not found at {config_path.resolve()}")

    try:
        with config_path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse YAML config {config_path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config {config_path} must define a mapping at the top level")
    return data


def load_engine_config(path: Optional[Union[str, Path]] = None) -> EngineConfig:
    """
    Load the engine configuration.

    Args:
        path: YAML file; falls back to ``$STATARB_CONFIG``, then to defaults

    Returns:
        Validated EngineConfig
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return EngineConfig()
    logger.info("Loading engine configuration from %s", path)
    return EngineConfig.from_dict(load_yaml_config(path))
