"""
Tests for the bar-by-bar backtest harness.
"""

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

import json
import unittest

import numpy as np
import pandas as pd

from statarb_engine.backtesting import BacktestEngine, BacktestState
from statarb_engine.config import BacktestConfig
from statarb_engine.data_manager import generate_cointegrated_pair
from statarb_engine.ensemble import EnsembleStrategy
from statarb_engine.momentum import MomentumStrategy
from statarb_engine.pairs_trading import PairsTradingStrategy
from statarb_engine.risk_management import PositionSizer
from statarb_engine.signals import Action, Signal, SignalStrategy, StrategyName, TechnicalStrategy


def uptrend(n):
    returns = np.where(np.arange(n) % 2 == 0, 0.015, 0.005)
    return list(100.0 * np.cumprod(1 + returns))


class AlwaysBuy(SignalStrategy):
    name = StrategyName.MOMENTUM

    def evaluate(self, data):
        return Signal(Action.BUY, 1.0)


class StopAfter(SignalStrategy):
    """Holds, and asks its backtest to stop after a number of bars."""

    name = StrategyName.MOMENTUM

    def __init__(self, bars):
        self.bars = bars
        self.calls = 0
        self.backtest = None

    def evaluate(self, data):
        self.calls += 1
        if self.calls == self.bars:
            self.backtest.request_stop()
        return Signal.hold("waiting")


class HugeSizer(PositionSizer):
    def size(self, price, confidence, equity, max_position_pct=None):
        return 10 ** 9


class TestSingleAssetBacktest(unittest.TestCase):
    """Single-series replay."""

    def test_flat_prices_never_trade(self):
        for strategy in (MomentumStrategy(), TechnicalStrategy(), EnsembleStrategy()):
            report = BacktestEngine(strategy).run([100.0] * 100)
            self.assertEqual(report.trade_count, 0)
            self.assertEqual(report.total_return, 0.0)
            self.assertEqual(report.final_value, 100000.0)
            self.assertEqual(report.max_drawdown, 0.0)
            self.assertEqual(report.state, BacktestState.DONE)

    def test_uptrend_is_bought_and_closed_out(self):
        engine = BacktestEngine(MomentumStrategy())
        report = engine.run(uptrend(80))

        self.assertGreaterEqual(report.trade_count, 2)
        self.assertEqual(report.trades[0].action, 'buy')
        self.assertEqual(report.trades[-1].action, 'sell')
        self.assertEqual(engine.ledger.positions, {})
        self.assertAlmostEqual(report.final_value, engine.ledger.cash)
        self.assertGreater(report.total_return, 0.0)
        self.assertEqual(report.steps, 80)
        self.assertEqual(len(report.equity_curve), 80)

    def test_without_close_out_position_stays_open(self):
        engine = BacktestEngine(MomentumStrategy(), BacktestConfig(close_out=False))
        report = engine.run(uptrend(80))
        self.assertIn('ASSET', engine.ledger.positions)
        self.assertGreater(report.final_value, engine.ledger.cash)

    def test_position_never_exceeds_allocation(self):
        engine = BacktestEngine(AlwaysBuy(), BacktestConfig(max_position_pct=0.05))
        report = engine.run(uptrend(30))
        first = report.trades[0]
        self.assertLessEqual(first.quantity * first.price, 100000.0 * 0.05)

    def test_rejected_orders_are_counted(self):
        engine = BacktestEngine(AlwaysBuy(), sizer=HugeSizer())
        report = engine.run([100.0] * 25)
        self.assertEqual(report.skipped_steps, 25)
        self.assertEqual(report.trade_count, 0)
        self.assertEqual(report.final_value, 100000.0)

    def test_trade_timestamps_follow_index(self):
        closes = pd.Series(uptrend(40), index=pd.bdate_range('2021-03-01', periods=40))
        report = BacktestEngine(MomentumStrategy()).run(closes)
        stamps = {ts.to_pydatetime() for ts in closes.index}
        for trade in report.trades:
            self.assertIn(trade.timestamp, stamps)

    def test_report_is_json_serialisable(self):
        report = BacktestEngine(MomentumStrategy()).run(uptrend(50))
        record = report.to_dict()
        json.dumps(record)
        self.assertEqual(record['state'], 'DONE')
        self.assertNotIn('trades', report.to_dict(include_trades=False))


class TestBacktestLifecycle(unittest.TestCase):
    """State machine."""

    def test_single_use(self):
        engine = BacktestEngine(MomentumStrategy())
        self.assertEqual(engine.state, BacktestState.IDLE)
        engine.run([100.0] * 10)
        self.assertEqual(engine.state, BacktestState.DONE)
        with self.assertRaises(RuntimeError):
            engine.run([100.0] * 10)

    def test_request_stop(self):
        strategy = StopAfter(5)
        engine = BacktestEngine(strategy)
        strategy.backtest = engine

        report = engine.run([100.0] * 50)

        self.assertEqual(report.state, BacktestState.STOPPED)
        self.assertEqual(report.steps, 5)
        self.assertEqual(strategy.calls, 5)

    def test_mode_mismatch(self):
        with self.assertRaises(ValueError):
            BacktestEngine(MomentumStrategy()).run([100.0] * 10, closes_b=[50.0] * 10)
        with self.assertRaises(ValueError):
            BacktestEngine(PairsTradingStrategy()).run([100.0] * 10)


class TestPairsBacktest(unittest.TestCase):
    """Long-only rotation between the legs."""

    def setUp(self):
        pair = generate_cointegrated_pair(n=250, seed=5)
        self.a = pair['A']
        self.b = pair['B']

    def check_report(self, engine, report):
        self.assertEqual(report.state, BacktestState.DONE)
        self.assertEqual(engine.ledger.positions, {})
        buys = [t for t in report.trades if t.action == 'buy']
        sells = [t for t in report.trades if t.action == 'sell']
        self.assertEqual(len(buys), len(sells))
        self.assertTrue(0.0 <= report.max_drawdown <= 1.0)
        self.assertTrue(0.0 <= report.win_rate <= 1.0)
        self.assertTrue({t.symbol for t in report.trades} <= {'ASSET', 'ASSET_B'})

    def test_static_hedge(self):
        engine = BacktestEngine(PairsTradingStrategy())
        report = engine.run(self.a, closes_b=self.b)
        self.check_report(engine, report)

    def test_kalman_hedge(self):
        engine = BacktestEngine(PairsTradingStrategy())
        report = engine.run(self.a, closes_b=self.b, use_kalman=True)
        self.check_report(engine, report)

    def test_flat_pair_never_trades(self):
        report = BacktestEngine(PairsTradingStrategy()).run([100.0] * 80, closes_b=[50.0] * 80)
        self.assertEqual(report.trade_count, 0)
        self.assertEqual(report.final_value, 100000.0)


if __name__ == '__main__':
    unittest.main()
