"""
Kalman Filter Module

Recursive estimation of a time-varying hedge ratio for a pair of assets.
The state [beta, intercept] follows a random walk and is observed through
A_t = beta_t * B_t + intercept_t + e_t. Each update is a single predict /
correct step of ``pykalman.KalmanFilter.filter_update``.
"""

import logging
import math
import threading
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from pykalman import KalmanFilter
from scipy.stats import norm

logger = logging.getLogger(__name__)

DEFAULT_PROCESS_NOISE = 1e-4
DEFAULT_MEASUREMENT_NOISE = 1.0
DEFAULT_INITIAL_COVARIANCE = 1.0
DEFAULT_Z_WINDOW = 30
_MIN_INNOVATION_VARIANCE = 1e-12


@dataclass(frozen=True)
class FilterState:
    """Filter state after ``n_updates`` observations. Replaced, never mutated."""

    beta: float
    intercept: float
    covariance: Tuple[Tuple[float, float], Tuple[float, float]]
    last_innovation: float = 0.0
    innovation_variance: float = 0.0
    recent_innovations: Tuple[float, ...] = field(default_factory=tuple)
    n_updates: int = 0
    diverged: bool = False

    @property
    def mean(self) -> np.ndarray:
        return np.array([self.beta, self.intercept])

    @property
    def covariance_matrix(self) -> np.ndarray:
        return np.array(self.covariance, dtype=float)


@dataclass(frozen=True)
class HedgeEstimate:
    """Output of one filter step."""

    beta: float
    intercept: float
    innovation: float
    innovation_variance: float
    z_score: float
    beta_std: float
    diverged: bool = False

    def to_dict(self) -> Dict:
        return {
            'beta': round(self.beta, 6),
            'intercept': round(self.intercept, 6),
            'innovation': round(self.innovation, 6),
            'innovation_variance': round(self.innovation_variance, 6),
            'z_score': round(self.z_score, 4),
            'beta_std': round(self.beta_std, 6),
            'diverged': self.diverged,
        }


def _as_tuple(matrix: np.ndarray) -> Tuple[Tuple[float, float], Tuple[float, float]]:
    return ((float(matrix[0, 0]), float(matrix[0, 1])),
            (float(matrix[1, 0]), float(matrix[1, 1])))


class DynamicHedgeEstimator:
    """Kalman filter tracking the hedge ratio and intercept of one pair."""

    def __init__(self, initial_beta: float = 1.0, initial_intercept: float = 0.0,
                 process_noise: float = DEFAULT_PROCESS_NOISE,
                 measurement_noise: float = DEFAULT_MEASUREMENT_NOISE,
                 initial_covariance: float = DEFAULT_INITIAL_COVARIANCE,
                 z_window: int = DEFAULT_Z_WINDOW):
        """
        Initialize the estimator.

        Args:
            initial_beta: Seed hedge ratio, typically from a cointegration test
            initial_intercept: Seed intercept
            process_noise: Diagonal transition covariance (delta)
            measurement_noise: Observation noise variance R
            initial_covariance: Diagonal of the initial state covariance, > 0
            z_window: Number of recent innovations used for the z-score
        """
        if not initial_covariance > 0:
            raise ValueError(f"initial_covariance must be positive, got {initial_covariance}")
        if process_noise < 0 or measurement_noise < 0:
            raise ValueError("Noise variances must be non-negative")
        if z_window < 2:
            raise ValueError(f"z_window must be at least 2, got {z_window}")

        self.process_noise = process_noise
        self.measurement_noise = measurement_noise
        self.initial_covariance = initial_covariance
        self.z_window = z_window
        self._kf = KalmanFilter(n_dim_state=2, n_dim_obs=1)
        self._transition_covariance = process_noise * np.eye(2)
        self._state = FilterState(
            beta=float(initial_beta),
            intercept=float(initial_intercept),
            covariance=_as_tuple(initial_covariance * np.eye(2)),
        )

    @property
    def state(self) -> FilterState:
        return self._state

    @property
    def beta(self) -> float:
        return self._state.beta

    def update(self, price_a: float, price_b: float) -> HedgeEstimate:
        """
        Incorporate one aligned observation.

        Args:
            price_a: Price of the dependent leg
            price_b: Price of the hedge leg

        Returns:
            HedgeEstimate after the step; ``diverged`` is set and the state kept
            when the innovation variance is not usable
        """
        if not (math.isfinite(price_a) and math.isfinite(price_b)):
            raise ValueError(f"Non-finite observation: ({price_a}, {price_b})")

        state = self._state
        mean = state.mean
        covariance = state.covariance_matrix
        h = np.array([price_b, 1.0])

        with np.errstate(over='ignore', invalid='ignore'):
            predicted_cov = covariance + self._transition_covariance
            innovation = float(price_a - h @ mean)
            innovation_variance = float(h @ predicted_cov @ h + self.measurement_noise)

        if not math.isfinite(innovation_variance) or innovation_variance <= _MIN_INNOVATION_VARIANCE:
            logger.warning("Hedge filter diverged (S=%s) at update %d; keeping state",
                           innovation_variance, state.n_updates)
            self._state = replace(state, diverged=True)
            return self._estimate(self._state, innovation, innovation_variance, 0.0)

        new_mean, new_cov = self._kf.filter_update(
            mean,
            covariance,
            observation=np.array([price_a]),
            transition_matrix=np.eye(2),
            transition_offset=np.zeros(2),
            transition_covariance=self._transition_covariance,
            observation_matrix=h[np.newaxis, :],
            observation_offset=np.zeros(1),
            observation_covariance=np.array([[self.measurement_noise]]),
        )
        new_cov = (new_cov + new_cov.T) / 2.0

        recent = (state.recent_innovations + (innovation,))[-self.z_window:]
        z_score = 0.0
        if len(recent) >= 2:
            std = float(np.std(recent, ddof=1))
            if std > 0:
                z_score = innovation / std

        self._state = FilterState(
            beta=float(new_mean[0]),
            intercept=float(new_mean[1]),
            covariance=_as_tuple(new_cov),
            last_innovation=innovation,
            innovation_variance=innovation_variance,
            recent_innovations=recent,
            n_updates=state.n_updates + 1,
            diverged=False,
        )
        return self._estimate(self._state, innovation, innovation_variance, z_score)

    @staticmethod
    def _estimate(state: FilterState, innovation: float, innovation_variance: float,
                  z_score: float) -> HedgeEstimate:
        return HedgeEstimate(
            beta=state.beta,
            intercept=state.intercept,
            innovation=innovation,
            innovation_variance=innovation_variance,
            z_score=z_score,
            beta_std=math.sqrt(max(state.covariance[0][0], 0.0)),
            diverged=state.diverged,
        )

    def filter(self, closes_a: Sequence[float], closes_b: Sequence[float]) -> pd.DataFrame:
        """
        Run the filter over a whole aligned history.

        Args:
            closes_a: Prices of the dependent leg
            closes_b: Prices of the hedge leg

        Returns:
            DataFrame with one row per observation
        """
        a = np.asarray(closes_a, dtype=float)
        b = np.asarray(closes_b, dtype=float)
        n = min(len(a), len(b))
        a, b = a[len(a) - n:], b[len(b) - n:]

        rows: List[Dict] = []
        for price_a, price_b in zip(a, b):
            estimate = self.update(float(price_a), float(price_b))
            rows.append({
                'beta': estimate.beta,
                'intercept': estimate.intercept,
                'innovation': estimate.innovation,
                'z_score': estimate.z_score,
                'beta_std': estimate.beta_std,
                'diverged': estimate.diverged,
            })
        return pd.DataFrame(rows, columns=['beta', 'intercept', 'innovation',
                                           'z_score', 'beta_std', 'diverged'])

    def confidence_interval(self, confidence: float = 0.95) -> Tuple[float, float]:
        """
        Confidence interval for the current hedge ratio.

        Args:
            confidence: Confidence level (default 0.95)

        Returns:
            Tuple of (lower_bound, upper_bound)
        """
        if not 0 < confidence < 1:
            raise ValueError(f"confidence must be in (0, 1), got {confidence}")
        z = norm.ppf(1 - (1 - confidence) / 2)
        std_error = math.sqrt(max(self._state.covariance[0][0], 0.0))
        return self._state.beta - z * std_error, self._state.beta + z * std_error


class HedgeFilterStore:
    """Per-pair estimators, created on first use."""

    def __init__(self, process_noise: float = DEFAULT_PROCESS_NOISE,
                 measurement_noise: float = DEFAULT_MEASUREMENT_NOISE,
                 initial_covariance: float = DEFAULT_INITIAL_COVARIANCE,
                 z_window: int = DEFAULT_Z_WINDOW):
        self.process_noise = process_noise
        self.measurement_noise = measurement_noise
        self.initial_covariance = initial_covariance
        self.z_window = z_window
        self._filters: Dict[str, DynamicHedgeEstimator] = {}
        self._lock = threading.Lock()

    def get(self, pair_id: str, initial_beta: float = 1.0,
            initial_intercept: float = 0.0) -> DynamicHedgeEstimator:
        """Return the estimator for ``pair_id``, seeding a new one if absent."""
        with self._lock:
            estimator = self._filters.get(pair_id)
            if estimator is None:
                estimator = DynamicHedgeEstimator(
                    initial_beta=initial_beta,
                    initial_intercept=initial_intercept,
                    process_noise=self.process_noise,
                    measurement_noise=self.measurement_noise,
                    initial_covariance=self.initial_covariance,
                    z_window=self.z_window,
                )
                self._filters[pair_id] = estimator
                logger.debug("Created hedge filter for %s (beta0=%.4f)", pair_id, initial_beta)
            return estimator

    def reset(self, pair_id: Optional[str] = None) -> None:
        """Drop one pair's estimator, or all of them."""
        with self._lock:
            if pair_id is None:
                self._filters.clear()
            else:
                self._filters.pop(pair_id, None)

    def pair_ids(self) -> List[str]:
        with self._lock:
            return list(self._filters)

    def __contains__(self, pair_id: object) -> bool:
        with self._lock:
            return pair_id in self._filters

    def __len__(self) -> int:
        with self._lock:
            return len(self._filters)
