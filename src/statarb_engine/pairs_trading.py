"""
Pairs Trading Strategy Module

Spread z-score signals for a cointegrated pair. The Johansen test supplies the
static hedge ratio and the cointegration verdict; optionally a Kalman filter
supplies a live hedge ratio and innovation z-score.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from .cointegration import JohansenTest, adf_pvalue, align_series, calculate_half_life
from .errors import InsufficientSamples, StatisticalError
from .kalman_filter import DynamicHedgeEstimator, HedgeEstimate, HedgeFilterStore
from .mean_reversion import latest_z_score
from .signals import Action, Signal, SignalStrategy, StrategyName, clip_confidence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PairInput:
    """Aligned closes of the two legs; A is the dependent leg."""

    closes_a: Sequence[float]
    closes_b: Sequence[float]
    use_kalman: bool = False
    pair_id: Optional[str] = None


class PairsTradingStrategy(SignalStrategy):
    """Mean reversion on the spread A - beta * B."""

    name = StrategyName.PAIRS

    def __init__(self, entry_z: float = 2.0, exit_z: float = 0.5, z_window: int = 20,
                 stop_z: float = 3.5, non_cointegrated_confidence_cap: float = 0.2,
                 johansen: Optional[JohansenTest] = None,
                 filter_store: Optional[HedgeFilterStore] = None):
        """
        Initialize pairs strategy.

        Args:
            entry_z: |z| beyond which the spread is traded
            exit_z: |z| below which the spread is considered back at the mean
            z_window: Window for the spread z-score when no filter is used
            stop_z: |z| at which confidence saturates
            non_cointegrated_confidence_cap: Confidence ceiling when the
                Johansen test does not reject the no-cointegration null
            johansen: Cointegration test instance
            filter_store: Per-pair Kalman filters used for ``pair_id`` requests
        """
        if not 0 <= exit_z < entry_z:
            raise ValueError("Thresholds must satisfy 0 <= exit_z < entry_z")
        self.entry_z = entry_z
        self.exit_z = exit_z
        self.z_window = z_window
        self.stop_z = max(stop_z, entry_z + 1e-6)
        self.cap = non_cointegrated_confidence_cap
        self.johansen = johansen if johansen is not None else JohansenTest()
        self.filter_store = filter_store if filter_store is not None else HedgeFilterStore()

    def _kalman_estimate(self, a: np.ndarray, b: np.ndarray, beta: float,
                         intercept: float, pair_id: Optional[str]) -> HedgeEstimate:
        if pair_id is None:
            estimator = DynamicHedgeEstimator(
                initial_beta=beta,
                initial_intercept=intercept,
                process_noise=self.filter_store.process_noise,
                measurement_noise=self.filter_store.measurement_noise,
                initial_covariance=self.filter_store.initial_covariance,
                z_window=self.filter_store.z_window,
            )
        else:
            estimator = self.filter_store.get(pair_id, beta, intercept)

        # A persistent filter has already seen the history and only needs the latest bar
        if estimator.state.n_updates > 0:
            return estimator.update(float(a[-1]), float(b[-1]))
        estimate = None
        for price_a, price_b in zip(a, b):
            estimate = estimator.update(float(price_a), float(price_b))
        return estimate

    def _confidence(self, z: float) -> float:
        abs_z = abs(z)
        if abs_z >= self.entry_z:
            return min(0.5 + 0.45 * (abs_z - self.entry_z) / (self.stop_z - self.entry_z), 0.95)
        return abs_z / self.entry_z * 0.3

    def evaluate(self, data: PairInput) -> Signal:
        """
        Evaluate the latest bar of a pair.

        Args:
            data: PairInput with both legs' closes

        Returns:
            Signal: BUY the spread when z < -entry, SELL when z > entry,
            otherwise HOLD. Statistical failures yield HOLD with zero confidence.
        """
        a, b = align_series(data.closes_a, data.closes_b)
        try:
            result = self.johansen.test(a, b)
        except InsufficientSamples as exc:
            logger.debug("Pairs signal unavailable: %s", exc)
            return Signal.hold(f"{type(exc).__name__}: {exc}",
                               error=type(exc).__name__, message=str(exc))
        except StatisticalError as exc:
            logger.warning("Pairs signal unavailable: %s", exc)
            return Signal.hold(f"{type(exc).__name__}: {exc}",
                               error=type(exc).__name__, message=str(exc))

        beta = result.hedge_ratio
        spread = a - beta * b - result.intercept
        stats = {
            'hedge_ratio': round(beta, 6),
            'intercept': round(result.intercept, 6),
            'johansen': result.to_dict(),
            'adf_pvalue': round(adf_pvalue(spread), 6),
        }
        half_life = calculate_half_life(spread)
        stats['half_life'] = round(half_life, 4) if np.isfinite(half_life) else None

        if data.use_kalman:
            estimate = self._kalman_estimate(a, b, beta, result.intercept, data.pair_id)
            z = estimate.z_score
            stats['kalman'] = estimate.to_dict()
            stats['hedge_ratio'] = round(estimate.beta, 6)
        else:
            z = latest_z_score(spread, min(self.z_window, len(spread)))
        stats['z_score'] = round(z, 4)

        reasons = []
        if z > self.entry_z:
            action = Action.SELL
            reasons.append(f"Spread z {z:.2f} > {self.entry_z}: sell A, buy B")
        elif z < -self.entry_z:
            action = Action.BUY
            reasons.append(f"Spread z {z:.2f} < -{self.entry_z}: buy A, sell B")
        elif abs(z) < self.exit_z:
            action = Action.HOLD
            reasons.append(f"Spread z {z:.2f} near mean: flat")
        else:
            action = Action.HOLD
            reasons.append(f"Spread z {z:.2f} in no-trade zone")

        confidence = self._confidence(z)
        if not result.is_cointegrated:
            confidence = min(confidence, self.cap)
            reasons.append(
                f"Not cointegrated (trace {result.trace_statistic:.2f} <= "
                f"{result.critical_value_95:.2f}), confidence capped at {self.cap}"
            )
        else:
            reasons.append(f"Cointegrated (trace {result.trace_statistic:.2f})")

        return Signal(action, clip_confidence(confidence), stats, tuple(reasons))
