"""
Tests for the signal strategies: indicators, momentum, mean reversion,
technical scoring, the ensemble vote, pairs trading and the strategy registry.
"""

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

import dataclasses
import unittest
from unittest import mock

import numpy as np

from statarb_engine.config import (EngineConfig, MeanReversionConfig, MomentumConfig,
                                   TechnicalConfig)
from statarb_engine.data_manager import generate_cointegrated_pair
from statarb_engine.ensemble import EnsembleStrategy, detect_regime
from statarb_engine.errors import UnknownStrategy
from statarb_engine.kalman_filter import HedgeFilterStore
from statarb_engine.mean_reversion import MeanReversionStrategy, hurst_exponent, latest_z_score
from statarb_engine.momentum import MomentumStrategy
from statarb_engine.pairs_trading import PairInput, PairsTradingStrategy
from statarb_engine.signals import (Action, Signal, SignalStrategy, StrategyName,
                                    TechnicalStrategy, compute_rsi)
from statarb_engine.strategies import create_strategy, describe_strategy, resolve_strategy_name


def alternating_trend(n, step):
    """Prices whose simple returns alternate between step + 0.005 and step - 0.005."""
    returns = np.where(np.arange(n) % 2 == 0, step + 0.005, step - 0.005)
    return list(100.0 * np.cumprod(1 + returns))


class FixedStrategy(SignalStrategy):
    """Strategy returning a preset signal."""

    name = StrategyName.MOMENTUM

    def __init__(self, action, confidence=0.6):
        self.signal = Signal(action, confidence)

    def evaluate(self, data):
        return self.signal


class TestSignal(unittest.TestCase):
    """Signal value object."""

    def test_confidence_bounds(self):
        with self.assertRaises(ValueError):
            Signal(Action.BUY, 1.5)
        with self.assertRaises(ValueError):
            Signal(Action.BUY, -0.1)

    def test_hold(self):
        signal = Signal.hold("Nothing to do", z=1.0)
        self.assertEqual(signal.action, Action.HOLD)
        self.assertEqual(signal.confidence, 0.0)
        self.assertEqual(signal.to_dict()['stats'], {'z': 1.0})


class TestIndicators(unittest.TestCase):
    """RSI and helpers."""

    def test_rsi_flat_series(self):
        self.assertEqual(compute_rsi([100.0] * 30), 50.0)

    def test_rsi_extremes(self):
        self.assertEqual(compute_rsi([float(i) for i in range(1, 31)]), 100.0)
        self.assertEqual(compute_rsi([float(i) for i in range(30, 0, -1)]), 0.0)
        self.assertIsNone(compute_rsi([1.0, 2.0]))

    def test_latest_z_score(self):
        self.assertEqual(latest_z_score([5.0] * 20, 20), 0.0)
        self.assertIsNone(latest_z_score([1.0, 2.0], 20))

    def test_hurst_of_alternating_returns_is_low(self):
        prices = [100.0 if i % 2 == 0 else 101.0 for i in range(60)]
        self.assertLess(hurst_exponent(prices), 0.5)
        self.assertIsNone(hurst_exponent(prices[:20]))


class TestMomentumStrategy(unittest.TestCase):
    """Time-series momentum."""

    def setUp(self):
        self.strategy = MomentumStrategy()

    def test_uptrend_buys(self):
        signal = self.strategy.evaluate(alternating_trend(40, 0.01))
        self.assertEqual(signal.action, Action.BUY)
        self.assertGreater(signal.confidence, 0.5)

    def test_downtrend_sells(self):
        signal = self.strategy.evaluate(alternating_trend(40, -0.01))
        self.assertEqual(signal.action, Action.SELL)

    def test_flat_series_holds(self):
        signal = self.strategy.evaluate([100.0] * 40)
        self.assertEqual(signal.action, Action.HOLD)
        self.assertEqual(signal.confidence, 0.0)

    def test_insufficient_data(self):
        self.assertEqual(self.strategy.evaluate([100.0, 101.0]).action, Action.HOLD)


class TestMeanReversionStrategy(unittest.TestCase):
    """Single-asset mean reversion on an oscillating series."""

    def setUp(self):
        self.strategy = MeanReversionStrategy()
        self.base = [100.0 if i % 2 == 0 else 101.0 for i in range(59)]

    def test_drop_below_band_buys(self):
        signal = self.strategy.evaluate(self.base + [98.5])
        self.assertEqual(signal.action, Action.BUY)
        self.assertLess(signal.stats['z_score'], -2.0)
        self.assertGreater(signal.confidence, 0.0)

    def test_spike_above_band_sells(self):
        signal = self.strategy.evaluate(self.base + [102.5])
        self.assertEqual(signal.action, Action.SELL)

    def test_flat_series_holds(self):
        signal = self.strategy.evaluate([100.0] * 60)
        self.assertEqual(signal.action, Action.HOLD)
        self.assertEqual(signal.confidence, 0.0)

    def test_insufficient_data(self):
        self.assertEqual(self.strategy.evaluate([100.0] * 10).action, Action.HOLD)


class TestTechnicalStrategy(unittest.TestCase):
    """Indicator scoring."""

    def setUp(self):
        self.strategy = TechnicalStrategy()

    def test_steady_decline_is_oversold(self):
        signal = self.strategy.evaluate([200.0 - i for i in range(60)])
        self.assertEqual(signal.action, Action.BUY)
        self.assertEqual(signal.stats['score'], 2)
        self.assertAlmostEqual(signal.confidence, 0.2)

    def test_steady_rise_is_overbought(self):
        signal = self.strategy.evaluate([100.0 + i for i in range(60)])
        self.assertEqual(signal.action, Action.SELL)
        self.assertEqual(signal.stats['score'], -2)

    def test_flat_series_holds(self):
        signal = self.strategy.evaluate([100.0] * 60)
        self.assertEqual(signal.action, Action.HOLD)
        self.assertEqual(signal.stats['score'], 0)
        self.assertEqual(signal.stats['rsi'], 50.0)


class TestEnsembleStrategy(unittest.TestCase):
    """Weighted vote."""

    def test_flat_series_holds(self):
        signal = EnsembleStrategy().evaluate([100.0] * 80)
        self.assertEqual(signal.action, Action.HOLD)
        self.assertEqual(signal.confidence, 0.0)

    def test_tie_holds(self):
        ensemble = EnsembleStrategy(momentum=FixedStrategy(Action.BUY),
                                    mean_reversion=FixedStrategy(Action.SELL),
                                    technical=FixedStrategy(Action.HOLD))
        signal = ensemble.evaluate([100.0] * 30)
        self.assertEqual(signal.stats['regime'], 'unknown')
        self.assertEqual(signal.action, Action.HOLD)

    def test_majority_wins(self):
        ensemble = EnsembleStrategy(momentum=FixedStrategy(Action.BUY, 0.9),
                                    mean_reversion=FixedStrategy(Action.BUY, 0.6),
                                    technical=FixedStrategy(Action.SELL, 0.8))
        signal = ensemble.evaluate([100.0] * 30)
        self.assertEqual(signal.action, Action.BUY)
        self.assertAlmostEqual(signal.confidence, 0.5)

    def test_regime_needs_history(self):
        self.assertEqual(detect_regime([100.0] * 30), 'unknown')
        self.assertEqual(detect_regime([100.0] * 80), 'range_bound')


class TestPairsTradingStrategy(unittest.TestCase):
    """Spread z-score signals."""

    def setUp(self):
        pair = generate_cointegrated_pair(n=200, hedge_ratio=1.5, intercept=10.0,
                                          noise_std=0.5, seed=3)
        self.a = pair['A'].to_numpy()
        self.b = pair['B'].to_numpy()
        self.strategy = PairsTradingStrategy()

    def test_rich_spread_sells(self):
        a = self.a.copy()
        a[-1] += 8.0
        signal = self.strategy.evaluate(PairInput(a, self.b))
        self.assertEqual(signal.action, Action.SELL)
        self.assertGreater(signal.stats['z_score'], 2.0)
        self.assertTrue(signal.stats['johansen']['is_cointegrated'])
        self.assertGreaterEqual(signal.confidence, 0.5)

    def test_cheap_spread_buys(self):
        a = self.a.copy()
        a[-1] -= 8.0
        signal = self.strategy.evaluate(PairInput(a, self.b))
        self.assertEqual(signal.action, Action.BUY)
        self.assertLess(signal.stats['z_score'], -2.0)

    def test_confidence_capped_without_cointegration(self):
        a = self.a.copy()
        a[-1] += 8.0
        real = self.strategy.johansen.test(a, self.b)
        rejected = dataclasses.replace(real, is_cointegrated=False)
        with mock.patch.object(self.strategy.johansen, 'test', return_value=rejected):
            signal = self.strategy.evaluate(PairInput(a, self.b))
        self.assertEqual(signal.action, Action.SELL)
        self.assertLessEqual(signal.confidence, 0.2)

    def test_degenerate_pair_holds(self):
        signal = self.strategy.evaluate(PairInput([50.0] * 100, self.b[:100]))
        self.assertEqual(signal.action, Action.HOLD)
        self.assertEqual(signal.confidence, 0.0)
        self.assertEqual(signal.stats['error'], 'DegenerateSeries')

    def test_short_history_holds(self):
        signal = self.strategy.evaluate(PairInput(self.a[:20], self.b[:20]))
        self.assertEqual(signal.action, Action.HOLD)
        self.assertEqual(signal.stats['error'], 'InsufficientSamples')

    def test_kalman_hedge_ratio(self):
        signal = self.strategy.evaluate(PairInput(self.a, self.b, use_kalman=True))
        self.assertIn('kalman', signal.stats)
        self.assertAlmostEqual(signal.stats['hedge_ratio'], 1.5, delta=0.1)

    def test_persistent_filter_takes_one_bar_per_call(self):
        store = HedgeFilterStore()
        strategy = PairsTradingStrategy(filter_store=store)

        strategy.evaluate(PairInput(self.a[:-1], self.b[:-1], use_kalman=True, pair_id='A/B'))
        seen = store.get('A/B').state.n_updates
        self.assertEqual(seen, len(self.a) - 1)

        strategy.evaluate(PairInput(self.a, self.b, use_kalman=True, pair_id='A/B'))
        self.assertEqual(store.get('A/B').state.n_updates, seen + 1)

    def test_fresh_filter_without_pair_id(self):
        store = HedgeFilterStore()
        strategy = PairsTradingStrategy(filter_store=store)
        strategy.evaluate(PairInput(self.a, self.b, use_kalman=True))
        self.assertEqual(len(store), 0)

    def test_invalid_thresholds(self):
        with self.assertRaises(ValueError):
            PairsTradingStrategy(entry_z=1.0, exit_z=1.5)


class TestStrategyRegistry(unittest.TestCase):
    """Name to strategy dispatch."""

    def test_create_by_name(self):
        self.assertIsInstance(create_strategy('momentum'), MomentumStrategy)
        self.assertIsInstance(create_strategy(' Mean_Reversion '), MeanReversionStrategy)
        self.assertIsInstance(create_strategy(StrategyName.PAIRS), PairsTradingStrategy)

    def test_every_name_is_registered(self):
        for name in StrategyName:
            self.assertEqual(create_strategy(name).name, name)
            self.assertTrue(describe_strategy(name))

    def test_pairs_keeps_injected_empty_store(self):
        store = HedgeFilterStore()
        self.assertEqual(len(store), 0)
        self.assertIs(PairsTradingStrategy(filter_store=store).filter_store, store)
        self.assertIs(create_strategy('pairs', filter_store=store).filter_store, store)

    def test_single_asset_strategies_follow_config(self):
        config = EngineConfig(
            momentum=MomentumConfig(lookback=15, slow_ma=30),
            mean_reversion=MeanReversionConfig(entry_z=1.5),
            technical=TechnicalConfig(rsi_period=7),
        )
        self.assertEqual(create_strategy('momentum', config).lookback, 15)
        self.assertEqual(create_strategy('mean_reversion', config).entry_z, 1.5)
        self.assertEqual(create_strategy('technical', config).rsi_period, 7)

        ensemble = create_strategy('ensemble', config)
        self.assertEqual(ensemble.constituents['momentum'].slow_ma, 30)
        self.assertEqual(ensemble.constituents['mean_reversion'].entry_z, 1.5)
        self.assertEqual(ensemble.constituents['technical'].rsi_period, 7)

    def test_single_asset_factories_ignore_filter_store(self):
        strategy = create_strategy('momentum', filter_store=HedgeFilterStore())
        self.assertIsInstance(strategy, MomentumStrategy)

    def test_unknown_name(self):
        with self.assertRaises(UnknownStrategy) as ctx:
            resolve_strategy_name('bogus')
        self.assertIsInstance(ctx.exception, KeyError)
        self.assertIn('bogus', str(ctx.exception))


if __name__ == '__main__':
    unittest.main()
