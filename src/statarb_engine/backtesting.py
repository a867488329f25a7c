"""
Backtesting Framework Module

Replays historical closes through a strategy, the position sizer and a paper
ledger, one bar at a time. Supports single-asset strategies and long-only
pair rotation driven by the pairs strategy.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import BacktestConfig
from .ledger import Ledger, Trade
from .pairs_trading import PairInput, PairsTradingStrategy
from .performance_metrics import PerformanceAnalyzer
from .price_buffer import PriceBuffer
from .risk_management import PositionSizer
from .signals import Action, Signal, SignalStrategy

logger = logging.getLogger(__name__)

PriceInput = Union[Sequence[float], pd.Series]
_EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)


class BacktestState(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    DONE = "DONE"
    STOPPED = "STOPPED"


@dataclass
class BacktestReport:
    """Summary of a completed (or interrupted) backtest."""

    final_value: float
    total_return: float
    trade_count: int
    win_rate: float
    max_drawdown: float
    sharpe_ratio: float
    sortino_ratio: float
    skipped_steps: int
    equity_curve: List[float] = field(default_factory=list)
    trades: List[Trade] = field(default_factory=list)
    state: BacktestState = BacktestState.DONE
    steps: int = 0
    profit_factor: Optional[float] = None
    calmar_ratio: Optional[float] = None

    def to_dict(self, include_trades: bool = True) -> Dict:
        record = {
            'state': self.state.value,
            'steps': self.steps,
            'final_value': round(self.final_value, 2),
            'total_return': round(self.total_return, 6),
            'trade_count': self.trade_count,
            'win_rate': round(self.win_rate, 4),
            'profit_factor': round(self.profit_factor, 4) if self.profit_factor is not None else None,
            'max_drawdown': round(self.max_drawdown, 6),
            'sharpe_ratio': round(self.sharpe_ratio, 4),
            'sortino_ratio': round(self.sortino_ratio, 4),
            'calmar_ratio': round(self.calmar_ratio, 4) if self.calmar_ratio is not None else None,
            'skipped_steps': self.skipped_steps,
            'equity_curve': [round(v, 2) for v in self.equity_curve],
        }
        if include_trades:
            record['trades'] = [t.to_dict() for t in self.trades]
        return record


def _timestamps(closes: PriceInput, n: int) -> List[datetime]:
    if isinstance(closes, pd.Series) and isinstance(closes.index, pd.DatetimeIndex):
        return [ts.to_pydatetime() for ts in closes.index[-n:]]
    return [_EPOCH + timedelta(days=i) for i in range(n)]


class BacktestEngine:
    """Single-use, deterministic bar-by-bar backtest."""

    def __init__(self, strategy: SignalStrategy, config: Optional[BacktestConfig] = None,
                 sizer: Optional[PositionSizer] = None,
                 analyzer: Optional[PerformanceAnalyzer] = None):
        """
        Initialize backtesting engine.

        Args:
            strategy: Strategy evaluated on every bar
            config: Backtest settings
            sizer: Position sizer, defaults to the configured allocation cap
            analyzer: Performance analyzer for the report
        """
        self.strategy = strategy
        self.config = config if config is not None else BacktestConfig()
        self.sizer = sizer if sizer is not None else PositionSizer(self.config.max_position_pct)
        self.analyzer = analyzer if analyzer is not None else PerformanceAnalyzer()
        self.state = BacktestState.IDLE
        self._stop = threading.Event()
        self._step = 0
        self._timestamps: List[datetime] = []
        self.ledger = Ledger(self.config.initial_balance, clock=self._clock)
        self.buffer = PriceBuffer(self.config.buffer_capacity)
        self.skipped_steps = 0
        self.equity_curve: List[float] = []

    def _clock(self) -> datetime:
        if self._timestamps:
            return self._timestamps[min(self._step, len(self._timestamps) - 1)]
        return _EPOCH + timedelta(days=self._step)

    def request_stop(self) -> None:
        """Ask a running backtest to stop before its next bar."""
        self._stop.set()

    def _buy(self, symbol: str, price: float, confidence: float) -> None:
        equity = self.ledger.portfolio_value()
        quantity = self.sizer.size(price, confidence, equity)
        if quantity <= 0:
            return
        result = self.ledger.buy(symbol, quantity, price)
        if not result.success:
            self.skipped_steps += 1

    def _sell_all(self, symbol: str, price: float) -> None:
        position = self.ledger.get_position(symbol)
        if position is None:
            return
        result = self.ledger.sell(symbol, position.quantity, price)
        if not result.success:
            self.skipped_steps += 1

    def _apply_single(self, signal: Signal, symbol: str, price: float) -> None:
        holding = self.ledger.get_position(symbol) is not None
        if signal.action is Action.BUY and not holding:
            self._buy(symbol, price, signal.confidence)
        elif signal.action is Action.SELL and holding:
            self._sell_all(symbol, price)

    def _apply_pair(self, signal: Signal, symbol_a: str, price_a: float,
                    symbol_b: str, price_b: float) -> None:
        if signal.action is Action.BUY:
            self._sell_all(symbol_b, price_b)
            if self.ledger.get_position(symbol_a) is None:
                self._buy(symbol_a, price_a, signal.confidence)
        elif signal.action is Action.SELL:
            self._sell_all(symbol_a, price_a)
            if self.ledger.get_position(symbol_b) is None:
                self._buy(symbol_b, price_b, signal.confidence)

    def run(self, closes: PriceInput, closes_b: Optional[PriceInput] = None,
            use_kalman: bool = False) -> BacktestReport:
        """
        Run the backtest.

        Args:
            closes: Closing prices of the traded asset (leg A in pairs mode)
            closes_b: Closing prices of leg B; enables pairs mode
            use_kalman: Use the Kalman hedge ratio in pairs mode

        Returns:
            BacktestReport; ``state`` is STOPPED if ``request_stop`` interrupted it
        """
        if self.state is not BacktestState.IDLE:
            raise RuntimeError(f"Backtest already {self.state.value.lower()}")

        a = np.asarray(closes, dtype=float).ravel()
        pairs_mode = closes_b is not None
        if pairs_mode:
            if not isinstance(self.strategy, PairsTradingStrategy):
                raise ValueError("Two price series require the pairs strategy")
            b = np.asarray(closes_b, dtype=float).ravel()
            n = min(len(a), len(b))
            a, b = a[len(a) - n:], b[len(b) - n:]
        elif isinstance(self.strategy, PairsTradingStrategy):
            raise ValueError("The pairs strategy requires closes_b")
        n = len(a)

        symbol_a = self.config.symbol
        symbol_b = self.config.symbol_b
        pair_id = f"backtest:{symbol_a}/{symbol_b}"
        if pairs_mode and use_kalman:
            self.strategy.filter_store.reset(pair_id)

        self._timestamps = _timestamps(closes, n)
        self.state = BacktestState.RUNNING
        logger.info("Backtest started: %d bars, strategy=%s, pairs=%s",
                    n, self.strategy.name.value, pairs_mode)

        for step in range(n):
            if self._stop.is_set():
                self.state = BacktestState.STOPPED
                logger.info("Backtest stopped at bar %d of %d", step, n)
                break
            self._step = step
            price_a = float(a[step])
            self.buffer.push(symbol_a, price_a)
            marks = {symbol_a: price_a}

            if pairs_mode:
                price_b = float(b[step])
                self.buffer.push(symbol_b, price_b)
                marks[symbol_b] = price_b
                signal = self.strategy.evaluate(PairInput(
                    self.buffer.closes(symbol_a), self.buffer.closes(symbol_b),
                    use_kalman=use_kalman, pair_id=pair_id if use_kalman else None,
                ))
                self._apply_pair(signal, symbol_a, price_a, symbol_b, price_b)
            else:
                signal = self.strategy.evaluate(self.buffer.closes(symbol_a))
                self._apply_single(signal, symbol_a, price_a)

            logger.debug("Bar %d: %s (%.2f)", step, signal.action.value, signal.confidence)
            self.ledger.mark_prices(marks)
            self.equity_curve.append(self.ledger.portfolio_value())

        if self.state is BacktestState.RUNNING:
            if self.config.close_out and n > 0:
                self._step = n - 1
                self._sell_all(symbol_a, float(a[-1]))
                if pairs_mode:
                    self._sell_all(symbol_b, float(b[-1]))
            self.state = BacktestState.DONE

        report = self._report(steps=len(self.equity_curve))
        logger.info("Backtest %s: final value %.2f, return %.2f%%, %d trades",
                    self.state.value.lower(), report.final_value,
                    report.total_return * 100, report.trade_count)
        return report

    def _report(self, steps: int) -> BacktestReport:
        initial = self.ledger.initial_balance
        final_value = self.ledger.portfolio_value()
        curve = [initial] + self.equity_curve
        trades = self.ledger.history()
        metrics = self.analyzer.generate_performance_report(curve, trades)
        return BacktestReport(
            final_value=final_value,
            total_return=final_value / initial - 1,
            trade_count=len(trades),
            win_rate=metrics['win_rate'],
            max_drawdown=metrics['max_drawdown'],
            sharpe_ratio=metrics['sharpe_ratio'],
            sortino_ratio=metrics['sortino_ratio'],
            skipped_steps=self.skipped_steps,
            equity_curve=list(self.equity_curve),
            trades=trades,
            state=self.state,
            steps=steps,
            profit_factor=metrics['profit_factor'],
            calmar_ratio=metrics['calmar_ratio'],
        )
