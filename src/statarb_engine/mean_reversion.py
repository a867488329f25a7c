"""
Mean Reversion Strategy Module

Single-asset mean reversion on the price z-score, confirmed by Bollinger %B
and gated by a rescaled-range Hurst exponent. Also hosts the z-score helpers
reused by the pairs strategy.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from .signals import (Action, Signal, SignalStrategy, StrategyName, as_array,
                      clip_confidence, compute_bollinger_bands, percent_b)

logger = logging.getLogger(__name__)


def latest_z_score(values: Sequence[float], window: int) -> Optional[float]:
    """Z-score of the last value against the trailing window; 0.0 for a flat window."""
    data = as_array(values)
    if len(data) < window:
        return None
    tail = data[-window:]
    std = tail.std()
    if std == 0:
        return 0.0
    return float((data[-1] - tail.mean()) / std)


def hurst_exponent(closes: Sequence[float], max_lag: int = 20) -> Optional[float]:
    """
    Hurst exponent of log returns by rescaled-range analysis.

    Args:
        closes: Positive prices
        max_lag: Largest chunk size; chunk sizes run 10, 12, ..., max_lag

    Returns:
        Slope of log(R/S) on log(lag); 0.5 when it cannot be fitted; None
        with fewer than ``2 * max_lag`` closes
    """
    prices = as_array(closes)
    if len(prices) < max_lag * 2:
        return None
    returns = np.diff(np.log(prices))

    log_lags = []
    log_rs = []
    for lag in range(10, max_lag + 1, 2):
        chunks = len(returns) // lag
        ratios = []
        for c in range(chunks):
            chunk = returns[c * lag:(c + 1) * lag]
            deviations = np.cumsum(chunk - chunk.mean())
            std = chunk.std()
            if std > 0:
                ratios.append((deviations.max() - deviations.min()) / std)
        if ratios and np.mean(ratios) > 0:
            log_lags.append(np.log(lag))
            log_rs.append(np.log(np.mean(ratios)))

    if len(log_lags) < 2:
        return 0.5
    slope = np.polyfit(log_lags, log_rs, 1)[0]
    return float(slope)


class MeanReversionStrategy(SignalStrategy):
    """Fades price extremes when the series behaves as mean-reverting."""

    name = StrategyName.MEAN_REVERSION

    def __init__(self, z_period: int = 20, entry_z: float = 2.0, exit_z: float = 0.5,
                 stop_z: float = 3.5, bb_period: int = 20, bb_std: float = 2.0,
                 hurst_max_lag: int = 20):
        """
        Initialize mean reversion strategy.

        Args:
            z_period: Window for the price z-score
            entry_z: Z-score threshold for entering positions
            exit_z: Z-score threshold for exiting positions
            stop_z: Z-score threshold for stop-loss
            bb_period: Bollinger Band window
            bb_std: Bollinger Band width in standard deviations
            hurst_max_lag: Largest chunk size for the Hurst estimate
        """
        if not 0 <= exit_z < entry_z < stop_z:
            raise ValueError("Thresholds must satisfy 0 <= exit_z < entry_z < stop_z")
        self.z_period = z_period
        self.entry_z = entry_z
        self.exit_z = exit_z
        self.stop_z = stop_z
        self.bb_period = bb_period
        self.bb_std = bb_std
        self.hurst_max_lag = hurst_max_lag

    def evaluate(self, data: Sequence[float]) -> Signal:
        prices = as_array(data)
        if len(prices) < max(self.z_period, self.bb_period) + 10:
            return Signal.hold("Insufficient data")

        z = latest_z_score(prices, self.z_period)
        bands = compute_bollinger_bands(prices, self.bb_period, self.bb_std)
        pct_b = percent_b(float(prices[-1]), bands)
        hurst = hurst_exponent(prices, self.hurst_max_lag)

        stats = {
            'z_score': round(z, 4),
            'percent_b': round(pct_b, 4),
            'hurst': round(hurst, 4) if hurst is not None else None,
        }

        if hurst is None or hurst >= 0.6:
            label = f"{hurst:.2f}" if hurst is not None else "N/A"
            return Signal.hold(f"Hurst {label} indicates a trending series, skipping", **stats)
        hurst_penalty = 1.0 if hurst < 0.5 else 0.5

        reasons = []
        action = Action.HOLD
        if z <= -self.entry_z:
            action = Action.BUY
            reasons.append(f"Z-score {z:.2f} <= -{self.entry_z}: oversold")
        elif z >= self.entry_z:
            action = Action.SELL
            reasons.append(f"Z-score {z:.2f} >= {self.entry_z}: overbought")
        elif abs(z) <= self.exit_z:
            reasons.append(f"Z-score {z:.2f} near mean")
        else:
            reasons.append(f"Z-score {z:.2f} in no-trade zone")

        if abs(z) >= self.stop_z:
            action = Action.HOLD
            reasons.append(f"Z-score {z:.2f} hit stop at {self.stop_z}")

        if action is Action.BUY and pct_b < 0:
            reasons.append("Confirmed: below lower Bollinger Band")
        elif action is Action.SELL and pct_b > 1:
            reasons.append("Confirmed: above upper Bollinger Band")

        abs_z = abs(z)
        if abs_z >= self.entry_z:
            raw = min((abs_z - self.entry_z) / (self.stop_z - self.entry_z), 0.95)
        else:
            raw = abs_z / self.entry_z * 0.3
        reasons.append(f"Hurst {hurst:.2f} ({'mean-reverting' if hurst_penalty == 1.0 else 'borderline'})")

        return Signal(action, clip_confidence(raw * hurst_penalty), stats, tuple(reasons))
