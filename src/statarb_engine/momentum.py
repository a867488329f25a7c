"""
Momentum Strategy Module

Time-series momentum with volatility scaling and a moving-average crossover
filter. A trend is traded only when the crossover agrees with its direction.
"""

import logging
from typing import Sequence

import numpy as np

from .signals import Action, Signal, SignalStrategy, StrategyName, as_array, clip_confidence

logger = logging.getLogger(__name__)


class MomentumStrategy(SignalStrategy):
    """Risk-managed momentum on a single price series."""

    name = StrategyName.MOMENTUM

    def __init__(self, lookback: int = 10, vol_window: int = 10, fast_ma: int = 5,
                 slow_ma: int = 20, target_risk: float = 0.02, entry_threshold: float = 0.0):
        """
        Initialize momentum strategy.

        Args:
            lookback: Bars over which momentum is measured
            vol_window: Bars of returns used for the volatility estimate
            fast_ma: Fast moving-average window
            slow_ma: Slow moving-average window
            target_risk: Per-bar risk target used for the volatility scale
            entry_threshold: Minimum absolute momentum to act on
        """
        if fast_ma >= slow_ma:
            raise ValueError("fast_ma must be shorter than slow_ma")
        self.lookback = lookback
        self.vol_window = vol_window
        self.fast_ma = fast_ma
        self.slow_ma = slow_ma
        self.target_risk = target_risk
        self.entry_threshold = entry_threshold

    @property
    def min_points(self) -> int:
        return max(self.slow_ma, self.lookback + 1, self.vol_window + 1)

    def evaluate(self, data: Sequence[float]) -> Signal:
        """
        Evaluate the latest bar.

        Args:
            data: Closing prices, oldest first

        Returns:
            Signal whose confidence is the momentum z-score over 3, capped at 1
        """
        prices = as_array(data)
        if len(prices) < self.min_points:
            return Signal.hold("Insufficient data")

        current = prices[-1]
        past = prices[-1 - self.lookback]
        momentum = (current - past) / past

        window = prices[-self.vol_window - 1:]
        returns = np.diff(window) / window[:-1]
        volatility = float(returns.std())

        fast = float(prices[-self.fast_ma:].mean())
        slow = float(prices[-self.slow_ma:].mean())

        stats = {
            'momentum': round(float(momentum), 6),
            'volatility': round(volatility, 6),
            'fast_ma': round(fast, 6),
            'slow_ma': round(slow, 6),
        }
        if volatility == 0:
            return Signal.hold("Zero volatility", **stats)

        vol_scale = min(self.target_risk / volatility, 2.0)
        confidence = clip_confidence(abs(momentum) / volatility / 3)
        stats['vol_scale'] = round(vol_scale, 4)

        reasons = [
            f"{'Positive' if momentum > 0 else 'Negative'} {self.lookback}-bar momentum: {momentum * 100:.2f}%",
            f"Volatility: {volatility * 100:.2f}%, scale: {vol_scale:.2f}",
        ]

        if momentum > self.entry_threshold and fast > slow:
            reasons.append(f"MA crossover confirms uptrend ({fast:.2f} > {slow:.2f})")
            return Signal(Action.BUY, confidence, stats, tuple(reasons))
        if momentum < -self.entry_threshold and fast < slow:
            reasons.append(f"MA crossover confirms downtrend ({fast:.2f} < {slow:.2f})")
            return Signal(Action.SELL, confidence, stats, tuple(reasons))

        reasons.append("Momentum not confirmed by MA crossover")
        return Signal(Action.HOLD, confidence, stats, tuple(reasons))
