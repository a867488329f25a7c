"""
Ensemble Strategy Module

Weighted vote over the momentum, mean reversion and technical strategies.
Weights depend on a simple volatility/trend regime classification.
"""

import logging
from typing import Dict, Optional, Sequence

import numpy as np

from .mean_reversion import MeanReversionStrategy
from .momentum import MomentumStrategy
from .signals import (Action, Signal, SignalStrategy, StrategyName, TechnicalStrategy,
                      as_array, clip_confidence)

logger = logging.getLogger(__name__)

REGIME_WEIGHTS: Dict[str, Dict[str, float]] = {
    'trending': {'momentum': 0.5, 'mean_reversion': 0.2, 'technical': 0.3},
    'range_bound': {'momentum': 0.2, 'mean_reversion': 0.5, 'technical': 0.3},
    'unknown': {'momentum': 1 / 3, 'mean_reversion': 1 / 3, 'technical': 1 / 3},
}
_TIE_TOLERANCE = 1e-9


def detect_regime(closes: Sequence[float]) -> str:
    """
    Classify the recent market regime.

    Args:
        closes: Closing prices, at least 61 for a classification

    Returns:
        'trending', 'range_bound' or 'unknown'
    """
    prices = as_array(closes)
    if len(prices) < 61:
        return 'unknown'

    returns = np.diff(prices[-61:]) / prices[-61:-1]
    recent_vol = returns[-20:].std()
    long_vol = returns.std()
    vol_ratio = recent_vol / (long_vol or 1.0)
    trend = abs((prices[-1] - prices[-31]) / prices[-31])

    if vol_ratio > 1.5 and trend > 0.15:
        return 'trending'
    if vol_ratio < 0.8 and trend < 0.05:
        return 'range_bound'
    if trend > 0.10:
        return 'trending'
    return 'range_bound'


class EnsembleStrategy(SignalStrategy):
    """Combines constituent signals by regime-weighted vote."""

    name = StrategyName.ENSEMBLE

    def __init__(self, momentum: Optional[MomentumStrategy] = None,
                 mean_reversion: Optional[MeanReversionStrategy] = None,
                 technical: Optional[TechnicalStrategy] = None,
                 regime_weights: Optional[Dict[str, Dict[str, float]]] = None):
        self.constituents: Dict[str, SignalStrategy] = {
            'momentum': momentum if momentum is not None else MomentumStrategy(),
            'mean_reversion': (mean_reversion if mean_reversion is not None
                               else MeanReversionStrategy()),
            'technical': technical if technical is not None else TechnicalStrategy(),
        }
        self.regime_weights = regime_weights if regime_weights is not None else REGIME_WEIGHTS

    def evaluate(self, data: Sequence[float]) -> Signal:
        """
        Evaluate all constituents and combine their votes.

        The action with the largest total weight wins; when the two heaviest
        actions carry equal weight the result is HOLD.
        """
        prices = as_array(data)
        regime = detect_regime(prices)
        weights = self.regime_weights.get(regime, self.regime_weights['unknown'])

        votes = {action: 0.0 for action in Action}
        components = {}
        for key, strategy in self.constituents.items():
            signal = strategy.evaluate(prices)
            votes[signal.action] += weights[key]
            components[key] = signal

        ranked = sorted(votes.items(), key=lambda item: item[1], reverse=True)
        (top_action, top_weight), (_, second_weight) = ranked[0], ranked[1]

        total_weight = sum(weights[key] for key in self.constituents)
        reasons = [f"Regime: {regime}"]
        reasons.extend(f"{key}: {signal.action.value} ({signal.confidence:.2f})"
                       for key, signal in components.items())

        if abs(top_weight - second_weight) <= _TIE_TOLERANCE:
            action = Action.HOLD
            reasons.append("Vote tied, holding")
        else:
            action = top_action

        agreeing = sum(weights[key] * signal.confidence
                       for key, signal in components.items() if signal.action is action)
        confidence = clip_confidence(agreeing / total_weight) if total_weight > 0 else 0.0

        stats = {
            'regime': regime,
            'votes': {a.value: round(w, 4) for a, w in votes.items()},
            'components': {key: signal.action.value for key, signal in components.items()},
        }
        logger.debug("Ensemble vote %s -> %s", stats['votes'], action.value)
        return Signal(action, confidence, stats, tuple(reasons))
