"""
Trading Engine Module

Session facade exposing the engine's operations to a request/response
dispatcher. Every method returns JSON-serialisable dictionaries.
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from .backtesting import BacktestEngine, PriceInput
from .config import BacktestConfig, EngineConfig
from .errors import ConfigError
from .kalman_filter import HedgeFilterStore
from .ledger import Ledger
from .pairs_identification import PairScanner
from .pairs_trading import PairInput
from .price_buffer import PriceBuffer
from .risk_management import PositionSizer
from .signals import SignalStrategy, StrategyName
from .strategies import (SINGLE_ASSET_STRATEGIES, create_strategy, describe_strategy,
                         resolve_strategy_name)

logger = logging.getLogger(__name__)

SeriesOrSymbol = Union[str, Sequence[float]]


class TradingEngine:
    """One paper-trading session: ledger, price buffer, strategies and filters."""

    def __init__(self, config: Optional[EngineConfig] = None, ledger: Optional[Ledger] = None,
                 buffer: Optional[PriceBuffer] = None):
        """
        Initialize the session.

        Args:
            config: Engine configuration, defaults when omitted
            ledger: Existing ledger to trade on
            buffer: Existing price buffer to read from
        """
        self.config = config if config is not None else EngineConfig()
        self.config.validate()
        self.ledger = ledger if ledger is not None else Ledger(self.config.ledger.initial_balance)
        self.buffer = buffer if buffer is not None else PriceBuffer(self.config.buffer_capacity)
        sizing = self.config.sizing
        self.sizer = PositionSizer(
            max_position_pct=sizing.max_position_pct,
            kelly_fraction=sizing.kelly_fraction,
            max_kelly_pct=sizing.max_kelly_pct,
            drawdown_threshold=sizing.drawdown_threshold,
            max_drawdown_scale=sizing.max_drawdown_scale,
        )
        kalman = self.config.kalman
        self.filter_store = HedgeFilterStore(
            process_noise=kalman.process_noise,
            measurement_noise=kalman.measurement_noise,
            initial_covariance=kalman.initial_covariance,
            z_window=kalman.z_window,
        )
        scanner = self.config.scanner
        self.scanner = PairScanner(
            min_samples=scanner.min_samples,
            min_correlation=scanner.min_correlation,
            use_log_returns=scanner.use_log_returns,
            with_cointegration=scanner.with_cointegration,
            max_results=scanner.max_results,
        )
        self._active = resolve_strategy_name(self.config.strategy)
        self._strategies: Dict[StrategyName, SignalStrategy] = {}
        self._lock = threading.Lock()

    @property
    def active_strategy(self) -> StrategyName:
        return self._active

    def _strategy(self, name: StrategyName) -> SignalStrategy:
        with self._lock:
            strategy = self._strategies.get(name)
            if strategy is None:
                strategy = create_strategy(name, self.config, filter_store=self.filter_store)
                self._strategies[name] = strategy
            return strategy

    def feed_price(self, symbol: str, price: float, timestamp: Optional[datetime] = None) -> None:
        """Record a close from the market-data collaborator."""
        self.buffer.push(symbol, price)
        self.ledger.mark_prices({symbol: price})
        logger.debug("Tick %s %.6f at %s", symbol, price, timestamp)

    def get_portfolio(self) -> Dict[str, Any]:
        return self.ledger.summary(price_lookup=self.buffer.latest)

    def execute_trade(self, action: str, symbol: str, quantity: float, price: float) -> Dict[str, Any]:
        """
        Execute a paper buy or sell.

        Args:
            action: 'buy' or 'sell'
            symbol: Instrument identifier
            quantity: Units, positive
            price: Execution price, positive

        Returns:
            Trade confirmation, or ``success: False`` with the rejection reason
        """
        side = str(action).strip().lower()
        if side == 'buy':
            result = self.ledger.buy(symbol, quantity, price)
        elif side == 'sell':
            result = self.ledger.sell(symbol, quantity, price)
        else:
            return {'success': False, 'reason': 'InvalidOrder',
                    'message': f"Unknown action {action!r}; expected 'buy' or 'sell'"}

        if not result.success:
            return result.to_dict()

        trade = result.trade
        response = {
            'success': True,
            'action': side,
            'symbol': symbol,
            'quantity': trade.quantity,
            'price': trade.price,
            'remaining_cash': round(trade.cash_after, 2),
        }
        if side == 'buy':
            response['cost'] = round(-trade.cash_delta, 2)
        else:
            response['proceeds'] = round(trade.cash_delta, 2)
            response['realized_pnl'] = round(trade.realized_pnl, 2)
        return response

    def generate_signal(self, symbol: str, closes: Optional[Sequence[float]] = None) -> Dict[str, Any]:
        """
        Evaluate the active single-asset strategy.

        Args:
            symbol: Instrument identifier
            closes: Closing prices; the session buffer is used when omitted

        Returns:
            Symbol, strategy name and signal
        """
        if self._active not in SINGLE_ASSET_STRATEGIES:
            raise ValueError("The pairs strategy needs two series; use pairs_signal")
        prices = list(closes) if closes is not None else self.buffer.closes(symbol)
        signal = self._strategy(self._active).evaluate(prices)
        logger.debug("Signal %s via %s: %s", symbol, self._active.value, signal.action.value)
        return {'symbol': symbol, 'strategy': self._active.value, 'signal': signal.to_dict()}

    def switch_strategy(self, name: str) -> Dict[str, Any]:
        """Make ``name`` the active strategy; unknown names raise UnknownStrategy."""
        new = resolve_strategy_name(name)
        previous = self._active
        self._active = new
        logger.info("Strategy switched from %s to %s", previous.value, new.value)
        return {
            'switched': True,
            'previous': previous.value,
            'active': new.value,
            'description': describe_strategy(new),
        }

    def _resolve_series(self, series: SeriesOrSymbol) -> Sequence[float]:
        if isinstance(series, str):
            return self.buffer.closes(series)
        return series

    def pairs_signal(self, closes_a: SeriesOrSymbol, closes_b: SeriesOrSymbol,
                     use_kalman: bool = False, pair_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Evaluate the pairs strategy on two series.

        Args:
            closes_a: Closes of leg A, or a symbol held in the session buffer
            closes_b: Closes of leg B, or a symbol held in the session buffer
            use_kalman: Use the dynamic hedge ratio and innovation z-score
            pair_id: Persist the Kalman filter for this pair across calls

        Returns:
            Action, confidence, z-score, hedge ratio and the test details
        """
        if pair_id is None and use_kalman and isinstance(closes_a, str) and isinstance(closes_b, str):
            pair_id = f"{closes_a}/{closes_b}"
        strategy = self._strategy(StrategyName.PAIRS)
        signal = strategy.evaluate(PairInput(
            self._resolve_series(closes_a), self._resolve_series(closes_b),
            use_kalman=use_kalman, pair_id=pair_id,
        ))

        stats = signal.stats
        response = {
            'action': signal.action.value,
            'confidence': round(signal.confidence, 4),
            'z_score': stats.get('z_score'),
            'hedge_ratio': stats.get('hedge_ratio'),
            'johansen': stats.get('johansen'),
            'adf_pvalue': stats.get('adf_pvalue'),
            'half_life': stats.get('half_life'),
            'reasons': list(signal.reasons),
        }
        if 'kalman' in stats:
            response['kalman'] = stats['kalman']
        if 'error' in stats:
            response['error'] = stats['error']
        return response

    def scan_pairs(self, universe: Optional[Mapping[str, Sequence[float]]] = None,
                   min_correlation: Optional[float] = None, max_results: Optional[int] = None,
                   with_cointegration: Optional[bool] = None) -> Dict[str, Any]:
        """Scan ``universe`` (or every buffered symbol) for correlated pairs."""
        data = universe if universe is not None else self.buffer.snapshot()
        result = self.scanner.scan(data, min_correlation=min_correlation,
                                   max_results=max_results, with_cointegration=with_cointegration)
        return result.to_dict()

    def position_size(self, price: float, confidence: float,
                      equity: Optional[float] = None) -> Dict[str, Any]:
        """Units to trade for ``price`` at ``confidence``; equity defaults to portfolio value."""
        if equity is None:
            equity = self.ledger.portfolio_value(self.buffer.latest)
        return self.sizer.decide(price, confidence, equity).to_dict()

    def kelly_position_size(self, price: float, regime: Optional[str] = None,
                            current_drawdown: float = 0.0,
                            equity: Optional[float] = None) -> Dict[str, Any]:
        """
        Size an order by fractional Kelly estimated from the session's closed trades.

        Args:
            price: Current price, positive
            regime: Ensemble regime selecting the Kelly multiplier
            current_drawdown: Account drawdown as a positive fraction
            equity: Sizing equity; defaults to portfolio value

        Returns:
            Sizing decision plus the Kelly estimate, or ``qty`` 0 and a
            ``reason`` when the history cannot support an estimate
        """
        if equity is None:
            equity = self.ledger.portfolio_value(self.buffer.latest)
        sizing = self.config.sizing
        estimate = self.sizer.rolling_kelly_estimate(
            self.ledger.history(), window=sizing.kelly_window, min_trades=sizing.kelly_min_trades)
        if estimate is None:
            return {'qty': 0, 'equity': round(equity, 2), 'kelly': None,
                    'reason': "Not enough closed wins and losses for a Kelly estimate"}

        kelly_pct = self.sizer.kelly_size(estimate.win_rate, estimate.avg_win,
                                          estimate.avg_loss, regime=regime)
        decision = self.sizer.kelly_decide(price, equity, kelly_pct, current_drawdown)
        response = decision.to_dict()
        response['kelly'] = dict(estimate.to_dict(), kelly_pct=round(kelly_pct, 6))
        response['regime'] = regime
        return response

    def trade_history(self, limit: int = 50) -> Dict[str, Any]:
        trades = self.ledger.history(limit)
        return {
            'total_trades': self.ledger.trade_count,
            'showing': len(trades),
            'trades': [t.to_dict() for t in trades],
        }

    def run_backtest(self, closes: PriceInput, strategy: Optional[str] = None,
                     config: Optional[Union[BacktestConfig, Mapping[str, Any]]] = None,
                     closes_b: Optional[PriceInput] = None, symbol: Optional[str] = None,
                     use_kalman: bool = False) -> Dict[str, Any]:
        """
        Backtest a strategy on historical closes with a fresh ledger.

        Args:
            closes: Closes of the traded asset (leg A for pairs)
            strategy: Strategy name, the active strategy when omitted
            config: BacktestConfig or a mapping overriding the configured one
            closes_b: Closes of leg B for pairs backtests
            symbol: Symbol recorded on the trades
            use_kalman: Kalman hedge ratio for pairs backtests

        Returns:
            Performance summary with trades
        """
        name = resolve_strategy_name(strategy) if strategy is not None else self._active
        backtest_config = self._backtest_config(config)
        if symbol is not None:
            backtest_config = replace(backtest_config, symbol=symbol)

        # Fresh filters so a backtest never touches the session's live pair state
        store = HedgeFilterStore(
            process_noise=self.config.kalman.process_noise,
            measurement_noise=self.config.kalman.measurement_noise,
            initial_covariance=self.config.kalman.initial_covariance,
            z_window=self.config.kalman.z_window,
        )
        engine = BacktestEngine(create_strategy(name, self.config, filter_store=store),
                                backtest_config)
        report = engine.run(closes, closes_b=closes_b, use_kalman=use_kalman)
        summary = report.to_dict()
        summary['strategy'] = name.value
        summary['symbol'] = backtest_config.symbol
        return summary

    def _backtest_config(self, config: Optional[Union[BacktestConfig, Mapping[str, Any]]]) -> BacktestConfig:
        if config is None:
            return self.config.backtest
        if isinstance(config, BacktestConfig):
            return config
        try:
            merged = replace(self.config.backtest, **dict(config))
        except TypeError as exc:
            raise ConfigError(f"Invalid backtest configuration: {exc}") from exc
        EngineConfig(backtest=merged).validate()
        return merged
