"""
Signal Module

Common signal types, the strategy interface and the technical indicators
(RSI, MACD, Bollinger Bands) shared by the single-asset strategies.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple

import numpy as np

logger = logging.getLogger(__name__)


class Action(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class StrategyName(str, Enum):
    """Names accepted by the strategy dispatch table."""

    MOMENTUM = "momentum"
    MEAN_REVERSION = "mean_reversion"
    TECHNICAL = "technical"
    ENSEMBLE = "ensemble"
    PAIRS = "pairs"


@dataclass(frozen=True)
class Signal:
    """Trading decision with a confidence in [0, 1]."""

    action: Action
    confidence: float
    stats: Dict[str, Any] = field(default_factory=dict)
    reasons: Tuple[str, ...] = ()

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")

    @classmethod
    def hold(cls, reason: str, **stats) -> 'Signal':
        return cls(Action.HOLD, 0.0, dict(stats), (reason,))

    def to_dict(self) -> Dict:
        return {
            'action': self.action.value,
            'confidence': round(self.confidence, 4),
            'stats': dict(self.stats),
            'reasons': list(self.reasons),
        }


class SignalStrategy(ABC):
    """A strategy turns market data into a Signal."""

    name: StrategyName

    @abstractmethod
    def evaluate(self, data) -> Signal:
        """Evaluate the latest bar of ``data`` and return a Signal."""


def clip_confidence(value: float) -> float:
    if not np.isfinite(value):
        return 0.0
    return float(min(max(value, 0.0), 1.0))


def as_array(closes: Sequence[float]) -> np.ndarray:
    return np.asarray(closes, dtype=float).ravel()


def ema(values: np.ndarray, period: int) -> np.ndarray:
    """Exponential moving average seeded with the first value."""
    k = 2.0 / (period + 1)
    result = np.empty(len(values))
    result[0] = values[0]
    for i in range(1, len(values)):
        result[i] = values[i] * k + result[i - 1] * (1 - k)
    return result


def compute_rsi(closes: Sequence[float], period: int = 14) -> Optional[float]:
    """
    Wilder-smoothed Relative Strength Index.

    Args:
        closes: Closing prices
        period: RSI period

    Returns:
        RSI in [0, 100], 50.0 when there was no movement at all, None when
        fewer than ``period + 1`` closes are available
    """
    prices = as_array(closes)
    if len(prices) < period + 1:
        return None

    diffs = np.diff(prices)
    gains = np.clip(diffs, 0, None)
    losses = np.clip(-diffs, 0, None)
    avg_gain = gains[:period].mean()
    avg_loss = losses[:period].mean()
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_gain == 0 and avg_loss == 0:
        return 50.0
    if avg_loss == 0:
        return 100.0
    rs = avg_gain / avg_loss
    return float(100 - 100 / (1 + rs))


def compute_macd(closes: Sequence[float], fast: int = 12, slow: int = 26,
                 signal: int = 9) -> Optional[Dict[str, float]]:
    """MACD line, signal line and histogram of the latest bar."""
    prices = as_array(closes)
    if len(prices) < slow:
        return None
    macd_line = ema(prices, fast) - ema(prices, slow)
    signal_line = ema(macd_line[slow - fast:], signal)
    return {
        'macd': float(macd_line[-1]),
        'signal': float(signal_line[-1]),
        'histogram': float(macd_line[-1] - signal_line[-1]),
    }


def compute_bollinger_bands(closes: Sequence[float], period: int = 20,
                            num_std: float = 2.0) -> Optional[Dict[str, float]]:
    """Bollinger Bands over the last ``period`` closes (population std)."""
    prices = as_array(closes)
    if len(prices) < period:
        return None
    window = prices[-period:]
    mean = window.mean()
    sd = window.std()
    return {
        'upper': float(mean + num_std * sd),
        'middle': float(mean),
        'lower': float(mean - num_std * sd),
        'bandwidth': float(2 * num_std * sd / mean) if mean != 0 else 0.0,
    }


def percent_b(price: float, bands: Dict[str, float]) -> float:
    """Position of ``price`` within the bands, 0.5 when the bands are flat."""
    width = bands['upper'] - bands['lower']
    if width == 0:
        return 0.5
    return (price - bands['lower']) / width


class TechnicalStrategy(SignalStrategy):
    """Indicator scoring: RSI, MACD and Bollinger Bands vote into one score."""

    name = StrategyName.TECHNICAL

    def __init__(self, rsi_period: int = 14, macd_fast: int = 12, macd_slow: int = 26,
                 macd_signal: int = 9, bb_period: int = 20, bb_std: float = 2.0,
                 max_score: float = 10.0):
        self.rsi_period = rsi_period
        self.macd_fast = macd_fast
        self.macd_slow = macd_slow
        self.macd_signal = macd_signal
        self.bb_period = bb_period
        self.bb_std = bb_std
        self.max_score = max_score

    def evaluate(self, data: Sequence[float]) -> Signal:
        prices = as_array(data)
        if len(prices) < self.rsi_period + 1:
            return Signal.hold("Insufficient data")

        price = float(prices[-1])
        rsi = compute_rsi(prices, self.rsi_period)
        macd = compute_macd(prices, self.macd_fast, self.macd_slow, self.macd_signal)
        bands = compute_bollinger_bands(prices, self.bb_period, self.bb_std)

        score = 0
        reasons = []

        if rsi is not None:
            if rsi < 30:
                score += 2
                reasons.append(f"RSI oversold ({rsi:.1f})")
            elif rsi < 40:
                score += 1
                reasons.append(f"RSI low ({rsi:.1f})")
            elif rsi > 70:
                score -= 2
                reasons.append(f"RSI overbought ({rsi:.1f})")
            elif rsi > 60:
                score -= 1
                reasons.append(f"RSI high ({rsi:.1f})")

        if macd is not None:
            if macd['histogram'] > 0 and macd['macd'] > macd['signal']:
                score += 1
                reasons.append("MACD bullish crossover")
            elif macd['histogram'] < 0 and macd['macd'] < macd['signal']:
                score -= 1
                reasons.append("MACD bearish crossover")

        if bands is not None:
            if price < bands['lower']:
                score += 2
                reasons.append("Price below lower Bollinger Band")
            elif price > bands['upper']:
                score -= 2
                reasons.append("Price above upper Bollinger Band")
            if bands['upper'] > bands['lower']:
                position = percent_b(price, bands)
                if position < 0.2:
                    score += 1
                    reasons.append("Price near lower Bollinger Band")
                elif position > 0.8:
                    score -= 1
                    reasons.append("Price near upper Bollinger Band")

        if score >= 2:
            action = Action.BUY
        elif score <= -2:
            action = Action.SELL
        else:
            action = Action.HOLD

        stats = {
            'score': score,
            'rsi': round(rsi, 2) if rsi is not None else None,
            'macd_histogram': round(macd['histogram'], 6) if macd is not None else None,
            'percent_b': round(percent_b(price, bands), 4) if bands is not None else None,
        }
        return Signal(action, clip_confidence(abs(score) / self.max_score), stats, tuple(reasons))
