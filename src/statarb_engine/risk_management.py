"""
Risk Management Module

Confidence-scaled position sizing under a maximum per-position allocation,
plus fractional Kelly sizing estimated from closed trades and scaled down
during drawdowns.
"""

import logging
import math
import numbers
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

import numpy as np

from .ledger import Trade

logger = logging.getLogger(__name__)

# Kelly multipliers per ensemble regime
REGIME_KELLY_FRACTIONS: Dict[str, float] = {
    'trending': 0.50,
    'range_bound': 0.40,
    'unknown': 0.20,
}


@dataclass(frozen=True)
class SizingDecision:
    """Whole-unit order size with the inputs that produced it."""

    quantity: int
    notional: float
    equity: float
    max_position_pct: float
    confidence: float

    def to_dict(self) -> Dict:
        return {
            'qty': self.quantity,
            'notional': round(self.notional, 2),
            'equity': round(self.equity, 2),
            'max_position_pct': self.max_position_pct,
            'confidence': round(self.confidence, 4),
        }


@dataclass(frozen=True)
class KellyEstimate:
    """Kelly inputs estimated from recent closed trades."""

    win_rate: float
    avg_win: float
    avg_loss: float
    kelly_pct: float
    sample_size: int

    def to_dict(self) -> Dict:
        return {
            'win_rate': round(self.win_rate, 4),
            'avg_win': round(self.avg_win, 6),
            'avg_loss': round(self.avg_loss, 6),
            'kelly_pct': round(self.kelly_pct, 6),
            'sample_size': self.sample_size,
        }


def trade_return(trade: Trade) -> Optional[float]:
    """Fractional return of a closing trade on its cost basis, None for buys."""
    if trade.action != 'sell' or trade.realized_pnl is None:
        return None
    cost_basis = trade.quantity * trade.price - trade.realized_pnl
    if cost_basis <= 0:
        return None
    return trade.realized_pnl / cost_basis


class PositionSizer:
    """Sizes orders as a confidence-weighted fraction of equity."""

    def __init__(self, max_position_pct: float = 0.10, kelly_fraction: float = 0.33,
                 max_kelly_pct: float = 0.25, drawdown_threshold: float = 0.15,
                 max_drawdown_scale: float = 0.50):
        """
        Initialize position sizer.

        Args:
            max_position_pct: Maximum allocation per position as fraction of equity
            kelly_fraction: Share of the full Kelly bet actually taken
            max_kelly_pct: Upper bound on any Kelly allocation
            drawdown_threshold: Drawdown at which Kelly scaling bottoms out
            max_drawdown_scale: Kelly multiplier at or beyond the threshold
        """
        self._check_pct(max_position_pct)
        if not 0 < kelly_fraction <= 1:
            raise ValueError(f"kelly_fraction must be in (0, 1], got {kelly_fraction!r}")
        if not 0 < max_kelly_pct <= 1:
            raise ValueError(f"max_kelly_pct must be in (0, 1], got {max_kelly_pct!r}")
        if drawdown_threshold <= 0:
            raise ValueError(f"drawdown_threshold must be positive, got {drawdown_threshold!r}")
        if not 0 <= max_drawdown_scale <= 1:
            raise ValueError(f"max_drawdown_scale must be in [0, 1], got {max_drawdown_scale!r}")
        self.max_position_pct = max_position_pct
        self.kelly_fraction = kelly_fraction
        self.max_kelly_pct = max_kelly_pct
        self.drawdown_threshold = drawdown_threshold
        self.max_drawdown_scale = max_drawdown_scale

    @staticmethod
    def _check_pct(pct: float) -> None:
        if not (isinstance(pct, (int, float)) and 0 < pct <= 1):
            raise ValueError(f"max_position_pct must be in (0, 1], got {pct!r}")

    @staticmethod
    def _check_price(price: float) -> None:
        if (isinstance(price, bool) or not isinstance(price, numbers.Real)
                or not math.isfinite(price) or price <= 0):
            raise ValueError(f"price must be a positive finite number, got {price!r}")

    def size(self, price: float, confidence: float, equity: float,
             max_position_pct: Optional[float] = None) -> int:
        """
        Number of whole units to trade.

        Args:
            price: Current price, positive
            confidence: Signal confidence, clipped to [0, 1]
            equity: Account equity; non-positive equity sizes to zero
            max_position_pct: Per-call override of the allocation cap

        Returns:
            floor(equity * pct * confidence / price), never negative
        """
        return self.decide(price, confidence, equity, max_position_pct).quantity

    def decide(self, price: float, confidence: float, equity: float,
               max_position_pct: Optional[float] = None) -> SizingDecision:
        """Like ``size`` but returns the full SizingDecision."""
        pct = self.max_position_pct if max_position_pct is None else max_position_pct
        self._check_pct(pct)
        self._check_price(price)

        confidence = 0.0 if not math.isfinite(confidence) else min(max(confidence, 0.0), 1.0)
        budget = max(equity, 0.0) * pct * confidence
        quantity = max(int(math.floor(budget / price)), 0)

        logger.debug("Sized %d units at %.4f (equity %.2f, pct %.3f, conf %.3f)",
                     quantity, price, equity, pct, confidence)
        return SizingDecision(
            quantity=quantity,
            notional=quantity * price,
            equity=float(equity),
            max_position_pct=pct,
            confidence=confidence,
        )

    @staticmethod
    def _full_kelly(win_rate: float, avg_win: float, avg_loss: float) -> float:
        if avg_win <= 0 or avg_loss <= 0:
            return 0.0
        return (win_rate * avg_win - (1 - win_rate) * avg_loss) / avg_win

    def kelly_size(self, win_rate: float, avg_win: float, avg_loss: float,
                   regime: Optional[str] = None) -> float:
        """
        Fractional Kelly allocation.

        Args:
            win_rate: Probability of a winning trade, in [0, 1]
            avg_win: Average winning return, positive
            avg_loss: Average losing return as a positive number
            regime: Ensemble regime selecting the Kelly multiplier; the
                configured fraction is used when omitted or unknown

        Returns:
            Fraction of equity in [0, max_kelly_pct]; 0.0 for a losing edge
        """
        if not 0 <= win_rate <= 1:
            raise ValueError(f"win_rate must be in [0, 1], got {win_rate!r}")
        full = self._full_kelly(win_rate, avg_win, avg_loss)
        if full <= 0:
            return 0.0
        fraction = REGIME_KELLY_FRACTIONS.get(regime, self.kelly_fraction)
        return min(full * fraction, self.max_kelly_pct)

    def drawdown_adjusted(self, kelly_pct: float, current_drawdown: float) -> float:
        """
        Scale an allocation down while the account is in drawdown.

        The multiplier falls linearly from 1 at no drawdown to
        ``max_drawdown_scale`` at ``drawdown_threshold`` and stays there.
        """
        if current_drawdown <= 0 or kelly_pct <= 0:
            return kelly_pct
        ratio = min(current_drawdown / self.drawdown_threshold, 1.0)
        return kelly_pct * (1 - ratio * (1 - self.max_drawdown_scale))

    def rolling_kelly_estimate(self, trades: Iterable[Trade], window: int = 50,
                               min_trades: int = 10) -> Optional[KellyEstimate]:
        """
        Estimate Kelly inputs from the most recent closing trades.

        Args:
            trades: Ledger trades in execution order; buys are ignored
            window: Number of most recent closing trades considered
            min_trades: Fewer closing trades than this give no estimate

        Returns:
            KellyEstimate, or None without enough trades or without both
            wins and losses
        """
        returns = [r for r in (trade_return(t) for t in trades) if r is not None]
        if len(returns) < min_trades:
            return None
        recent = np.array(returns[-window:], dtype=float)
        wins = recent[recent > 0]
        losses = recent[recent <= 0]
        if wins.size == 0 or losses.size == 0:
            return None

        win_rate = wins.size / recent.size
        avg_win = float(wins.mean())
        avg_loss = float(abs(losses.mean()))
        kelly_pct = self.kelly_size(win_rate, avg_win, avg_loss)
        return KellyEstimate(win_rate=float(win_rate), avg_win=avg_win, avg_loss=avg_loss,
                             kelly_pct=kelly_pct, sample_size=int(recent.size))

    def kelly_decide(self, price: float, equity: float, kelly_pct: float,
                     current_drawdown: float = 0.0) -> SizingDecision:
        """
        Whole units for a Kelly allocation after drawdown scaling.

        The allocation is applied as the position cap at full confidence, so
        the result never exceeds ``max_kelly_pct`` of equity.
        """
        self._check_price(price)
        pct = self.drawdown_adjusted(kelly_pct, current_drawdown)
        if pct <= 0:
            return SizingDecision(0, 0.0, float(equity), 0.0, 1.0)
        return self.decide(price, 1.0, equity, max_position_pct=min(pct, self.max_kelly_pct))
