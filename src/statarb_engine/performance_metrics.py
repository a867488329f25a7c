"""
Performance Metrics Module

Performance analysis of an equity curve and the trades that produced it:
returns, drawdown, risk-adjusted ratios and trade statistics.
"""

import logging
from typing import Dict, Iterable, Optional, Sequence

import numpy as np
import pandas as pd

from .ledger import Trade

logger = logging.getLogger(__name__)

PERIODS_PER_YEAR = 252


def _finite_or_none(value: float) -> Optional[float]:
    return float(value) if np.isfinite(value) else None


class PerformanceAnalyzer:
    """Performance analysis for backtest equity curves."""

    def __init__(self, risk_free_rate: float = 0.0, periods_per_year: int = PERIODS_PER_YEAR):
        """
        Initialize performance analyzer.

        Args:
            risk_free_rate: Annualized risk-free rate subtracted in the ratios
            periods_per_year: Bars per year used for annualization
        """
        self.risk_free_rate = risk_free_rate
        self.periods_per_year = periods_per_year

    def _excess_returns(self, equity: pd.Series) -> pd.Series:
        returns = equity.pct_change().replace([np.inf, -np.inf], np.nan).dropna()
        return returns - self.risk_free_rate / self.periods_per_year

    def total_return(self, equity: Sequence[float]) -> float:
        values = pd.Series(equity, dtype=float)
        if len(values) < 2 or values.iloc[0] == 0:
            return 0.0
        return float(values.iloc[-1] / values.iloc[0] - 1)

    def max_drawdown(self, equity: Sequence[float]) -> float:
        """
        Largest peak-to-trough decline.

        Args:
            equity: Portfolio values in time order

        Returns:
            Drawdown as a positive fraction of the running peak
        """
        values = pd.Series(equity, dtype=float)
        if values.empty:
            return 0.0
        running_max = values.cummax()
        drawdown = (running_max - values) / running_max
        return float(drawdown.max())

    def sharpe_ratio(self, equity: Sequence[float]) -> float:
        returns = self._excess_returns(pd.Series(equity, dtype=float))
        if len(returns) < 2:
            return 0.0
        std = returns.std()
        if not std > 0:
            return 0.0
        return float(returns.mean() / std * np.sqrt(self.periods_per_year))

    def sortino_ratio(self, equity: Sequence[float]) -> float:
        """Mean excess return over downside deviation; 0.0 without losing bars."""
        returns = self._excess_returns(pd.Series(equity, dtype=float))
        if len(returns) < 2:
            return 0.0
        downside = returns[returns < 0]
        if downside.empty:
            return 0.0
        downside_dev = np.sqrt((downside ** 2).sum() / len(returns))
        if downside_dev == 0:
            return 0.0
        return float(returns.mean() / downside_dev * np.sqrt(self.periods_per_year))

    def calmar_ratio(self, equity: Sequence[float]) -> Optional[float]:
        """
        Annualized return over maximum drawdown.

        Args:
            equity: Portfolio values in time order

        Returns:
            Calmar ratio; None when a gaining curve never draws down
        """
        values = list(equity)
        if len(values) < 2:
            return 0.0
        annualized = self.total_return(values) * self.periods_per_year / (len(values) - 1)
        drawdown = self.max_drawdown(values)
        if drawdown == 0:
            return None if annualized > 0 else 0.0
        return float(annualized / drawdown)

    @staticmethod
    def trade_statistics(trades: Iterable[Trade]) -> Dict[str, Optional[float]]:
        """
        Win rate and profit factor over closing (sell) trades.

        Args:
            trades: Executed trades

        Returns:
            Dictionary with closed trade count, win rate and profit factor
        """
        pnls = np.array([t.realized_pnl for t in trades
                         if t.action == 'sell' and t.realized_pnl is not None], dtype=float)
        if pnls.size == 0:
            return {'closed_trades': 0, 'win_rate': 0.0, 'profit_factor': None,
                    'average_win': 0.0, 'average_loss': 0.0}

        wins = pnls[pnls > 0]
        losses = pnls[pnls < 0]
        gross_loss = abs(losses.sum())
        profit_factor = wins.sum() / gross_loss if gross_loss > 0 else np.inf
        return {
            'closed_trades': int(pnls.size),
            'win_rate': float(wins.size / pnls.size),
            'profit_factor': _finite_or_none(profit_factor),
            'average_win': float(wins.mean()) if wins.size else 0.0,
            'average_loss': float(losses.mean()) if losses.size else 0.0,
        }

    def generate_performance_report(self, equity: Sequence[float],
                                    trades: Iterable[Trade] = ()) -> Dict[str, Optional[float]]:
        """
        Generate a performance summary.

        Args:
            equity: Portfolio values in time order
            trades: Executed trades

        Returns:
            Dictionary of metrics
        """
        values = list(equity)
        report = {
            'total_return': self.total_return(values),
            'max_drawdown': self.max_drawdown(values),
            'sharpe_ratio': self.sharpe_ratio(values),
            'sortino_ratio': self.sortino_ratio(values),
            'calmar_ratio': self.calmar_ratio(values),
        }
        report.update(self.trade_statistics(trades))
        return report
