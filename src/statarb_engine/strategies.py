"""
Strategy Registry Module

Enum-keyed factory table mapping strategy names to constructors.
"""

from dataclasses import asdict
from typing import Callable, Dict, Optional, Union

from .cointegration import JohansenTest
from .config import EngineConfig
from .ensemble import EnsembleStrategy
from .errors import UnknownStrategy
from .kalman_filter import HedgeFilterStore
from .mean_reversion import MeanReversionStrategy
from .momentum import MomentumStrategy
from .pairs_trading import PairsTradingStrategy
from .signals import SignalStrategy, StrategyName, TechnicalStrategy


def _momentum(config: EngineConfig, **_) -> MomentumStrategy:
    return MomentumStrategy(**asdict(config.momentum))


def _mean_reversion(config: EngineConfig, **_) -> MeanReversionStrategy:
    return MeanReversionStrategy(**asdict(config.mean_reversion))


def _technical(config: EngineConfig, **_) -> TechnicalStrategy:
    return TechnicalStrategy(**asdict(config.technical))


def _ensemble(config: EngineConfig, **_) -> EnsembleStrategy:
    return EnsembleStrategy(
        momentum=_momentum(config),
        mean_reversion=_mean_reversion(config),
        technical=_technical(config),
    )


def _pairs(config: EngineConfig, filter_store: Optional[HedgeFilterStore] = None) -> PairsTradingStrategy:
    pairs = config.pairs
    kalman = config.kalman
    if filter_store is None:
        filter_store = HedgeFilterStore(
            process_noise=kalman.process_noise,
            measurement_noise=kalman.measurement_noise,
            initial_covariance=kalman.initial_covariance,
            z_window=kalman.z_window,
        )
    return PairsTradingStrategy(
        entry_z=pairs.entry_z,
        exit_z=pairs.exit_z,
        z_window=pairs.z_window,
        stop_z=pairs.stop_z,
        non_cointegrated_confidence_cap=pairs.non_cointegrated_confidence_cap,
        johansen=JohansenTest(k_ar_diff=pairs.k_ar_diff, min_samples=pairs.min_samples),
        filter_store=filter_store,
    )


STRATEGY_FACTORIES: Dict[StrategyName, Callable[..., SignalStrategy]] = {
    StrategyName.MOMENTUM: _momentum,
    StrategyName.MEAN_REVERSION: _mean_reversion,
    StrategyName.TECHNICAL: _technical,
    StrategyName.ENSEMBLE: _ensemble,
    StrategyName.PAIRS: _pairs,
}

STRATEGY_DESCRIPTIONS: Dict[StrategyName, str] = {
    StrategyName.MOMENTUM: "Time-series momentum with volatility scaling and MA crossover confirmation",
    StrategyName.MEAN_REVERSION: "Price z-score mean reversion with Bollinger %B and Hurst filter",
    StrategyName.TECHNICAL: "RSI, MACD and Bollinger Band indicator scoring",
    StrategyName.ENSEMBLE: "Regime-weighted vote of momentum, mean reversion and technical signals",
    StrategyName.PAIRS: "Johansen-cointegrated pairs trading on the spread z-score",
}

SINGLE_ASSET_STRATEGIES = frozenset({
    StrategyName.MOMENTUM,
    StrategyName.MEAN_REVERSION,
    StrategyName.TECHNICAL,
    StrategyName.ENSEMBLE,
})


def resolve_strategy_name(name: Union[str, StrategyName]) -> StrategyName:
    """Map a user-supplied name to a StrategyName, raising UnknownStrategy."""
    if isinstance(name, StrategyName):
        return name
    try:
        return StrategyName(str(name).strip().lower())
    except ValueError:
        raise UnknownStrategy(str(name)) from None


def create_strategy(name: Union[str, StrategyName], config: Optional[EngineConfig] = None,
                    **kwargs) -> SignalStrategy:
    """
    Instantiate a strategy by name.

    Args:
        name: Strategy name or StrategyName
        config: Engine configuration supplying strategy parameters
        **kwargs: Extra collaborators (``filter_store`` for pairs)

    Returns:
        A fresh strategy instance
    """
    key = resolve_strategy_name(name)
    return STRATEGY_FACTORIES[key](config if config is not None else EngineConfig(), **kwargs)


def describe_strategy(name: Union[str, StrategyName]) -> str:
    return STRATEGY_DESCRIPTIONS[resolve_strategy_name(name)]
