"""
Cointegration Module

Two-asset Johansen cointegration test with a closed-form 2x2 eigen solution,
plus stationarity diagnostics for the resulting spread.

The test fits the vector error-correction model

    dX_t = Pi X_{t-1} + Gamma_1 dX_{t-1} + ... + mu + e_t

and solves the reduced-rank problem S10 S00^-1 S01 v = lambda S11 v. Critical
values come from the asymptotic trace table shipped with statsmodels
(Osterwald-Lenum / MacKinnon), constant term, two variables.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Sequence, Tuple

import numpy as np
from statsmodels.tsa.coint_tables import c_sjt
from statsmodels.tsa.stattools import adfuller

from .errors import DegenerateSeries, InsufficientSamples

logger = logging.getLogger(__name__)

CONFIDENCE_LEVELS = ('90%', '95%', '99%')
_SINGULAR_TOLERANCE = 1e-12
_FLAT_TOLERANCE = 1e-10


@dataclass(frozen=True)
class CointegrationResult:
    """Outcome of one Johansen evaluation; derived fresh, never persisted."""

    eigenvalues: Tuple[float, float]
    eigenvector: Tuple[float, float]
    hedge_ratio: float
    intercept: float
    trace_statistic: float
    max_eigen_statistic: float
    critical_values: Dict[str, float] = field(default_factory=dict)
    is_cointegrated: bool = False
    n_obs: int = 0

    @property
    def critical_value_95(self) -> float:
        return self.critical_values['95%']

    def to_dict(self) -> Dict:
        return {
            'is_cointegrated': self.is_cointegrated,
            'rank': 1 if self.is_cointegrated else 0,
            'trace_statistic': round(self.trace_statistic, 4),
            'max_eigen_statistic': round(self.max_eigen_statistic, 4),
            'critical_values': dict(self.critical_values),
            'eigenvalues': [round(v, 6) for v in self.eigenvalues],
            'eigenvector': [round(v, 6) for v in self.eigenvector],
            'hedge_ratio': round(self.hedge_ratio, 6),
            'intercept': round(self.intercept, 6),
            'n_obs': self.n_obs,
        }


def _demean(x: np.ndarray) -> np.ndarray:
    return x - x.mean(axis=0)


def _residualize(y: np.ndarray, z: np.ndarray) -> np.ndarray:
    """Residuals of regressing ``y`` on ``z`` (``y`` itself when ``z`` is empty)."""
    if z.size == 0:
        return y
    coeffs = np.linalg.lstsq(z, y, rcond=None)[0]
    return y - z @ coeffs


def _is_near_singular(m: np.ndarray) -> bool:
    scale = m[0, 0] * m[1, 1]
    if not np.all(np.isfinite(m)) or scale <= 0:
        return True
    det = m[0, 0] * m[1, 1] - m[0, 1] * m[1, 0]
    return det <= _SINGULAR_TOLERANCE * scale


def align_series(series_a: Sequence[float], series_b: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    """Truncate both series to their common (most recent) length."""
    a = np.asarray(series_a, dtype=float).ravel()
    b = np.asarray(series_b, dtype=float).ravel()
    n = min(len(a), len(b))
    return a[len(a) - n:], b[len(b) - n:]


class JohansenTest:
    """Johansen trace test for a pair of price series."""

    def __init__(self, k_ar_diff: int = 1, min_samples: int = 50,
                 significance: str = '95%'):
        """
        Initialize the test.

        Args:
            k_ar_diff: Number of lagged differences in the VECM
            min_samples: Minimum aligned observations required
            significance: Critical-value column deciding ``is_cointegrated``
        """
        if k_ar_diff < 0:
            raise ValueError(f"k_ar_diff must be non-negative, got {k_ar_diff}")
        if significance not in CONFIDENCE_LEVELS:
            raise ValueError(f"significance must be one of {CONFIDENCE_LEVELS}")
        self.k_ar_diff = k_ar_diff
        self.min_samples = max(min_samples, k_ar_diff + 4)
        self.significance = significance

    @staticmethod
    def critical_values() -> Dict[str, float]:
        """Trace critical values for the r = 0 null with two variables and a constant."""
        values = c_sjt(2, 0)
        return {level: float(v) for level, v in zip(CONFIDENCE_LEVELS, values)}

    def _moment_matrices(self, levels: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray, int]:
        k = self.k_ar_diff
        x = _demean(levels)
        dx = np.diff(x, axis=0)
        n_diff = dx.shape[0]

        if k > 0:
            z = np.hstack([dx[k - i - 1:n_diff - i - 1] for i in range(k)])
            z = _demean(z)
        else:
            z = np.empty((n_diff, 0))

        r0 = _residualize(_demean(dx[k:]), z)
        r1 = _residualize(_demean(x[k:-1]), z)

        t = r1.shape[0]
        s00 = r0.T @ r0 / t
        s01 = r0.T @ r1 / t
        s11 = r1.T @ r1 / t
        return s00, s01, s11, t

    def test(self, series_a: Sequence[float], series_b: Sequence[float]) -> CointegrationResult:
        """
        Run the test on two price series.

        Args:
            series_a: Prices of the dependent leg A
            series_b: Prices of the hedge leg B

        Returns:
            CointegrationResult with hedge ratio such that A - beta*B is stationary

        Raises:
            InsufficientSamples: Fewer than ``min_samples`` aligned observations
            DegenerateSeries: Near-constant, collinear or non-finite input
        """
        a, b = align_series(series_a, series_b)
        if len(a) < self.min_samples:
            raise InsufficientSamples(
                f"Need at least {self.min_samples} aligned observations, got {len(a)}"
            )
        if not (np.all(np.isfinite(a)) and np.all(np.isfinite(b))):
            raise DegenerateSeries("Price series contain non-finite values")

        for label, series in (('A', a), ('B', b)):
            if series.std() <= _FLAT_TOLERANCE * max(1.0, abs(series.mean())):
                raise DegenerateSeries(f"Series {label} is near-constant")

        s00, s01, s11, t = self._moment_matrices(np.column_stack([a, b]))
        if _is_near_singular(s11):
            raise DegenerateSeries("Level moment matrix S11 is near-singular")
        if _is_near_singular(s00):
            raise DegenerateSeries("Difference moment matrix S00 is near-singular")

        m = np.linalg.solve(s11, s01.T @ np.linalg.solve(s00, s01))
        eigenvalues, vector = self._leading_eigenpair(m, s11)
        lambda_1, lambda_2 = eigenvalues

        trace_stat = -t * (math.log(1.0 - lambda_1) + math.log(1.0 - lambda_2))
        max_eigen_stat = -t * math.log(1.0 - lambda_1)

        hedge_ratio = -vector[1] / vector[0]
        intercept = float(np.mean(a - hedge_ratio * b))
        critical = self.critical_values()
        is_coint = trace_stat > critical[self.significance]

        logger.debug("Johansen: T=%d lambda=(%.5f, %.5f) trace=%.3f beta=%.5f coint=%s",
                     t, lambda_1, lambda_2, trace_stat, hedge_ratio, is_coint)

        return CointegrationResult(
            eigenvalues=(lambda_1, lambda_2),
            eigenvector=(1.0, float(vector[1] / vector[0])),
            hedge_ratio=float(hedge_ratio),
            intercept=intercept,
            trace_statistic=float(trace_stat),
            max_eigen_statistic=float(max_eigen_stat),
            critical_values=critical,
            is_cointegrated=bool(is_coint),
            n_obs=len(a),
        )

    @staticmethod
    def _leading_eigenpair(m: np.ndarray, s11: np.ndarray) -> Tuple[Tuple[float, float], np.ndarray]:
        """
        Solve the 2x2 eigenproblem of ``m`` through its characteristic quadratic.

        The eigenvalues of S11^-1 S10 S00^-1 S01 are real and lie in [0, 1); tiny
        negative discriminants and eigenvalues from rounding are clipped.
        """
        trace = m[0, 0] + m[1, 1]
        det = m[0, 0] * m[1, 1] - m[0, 1] * m[1, 0]
        disc = trace * trace - 4.0 * det
        tolerance = 1e-10 * max(1.0, trace * trace)
        if disc < -tolerance or not math.isfinite(disc):
            raise DegenerateSeries("Eigenproblem has complex roots")
        root = math.sqrt(max(disc, 0.0))
        lambda_1 = (trace + root) / 2.0
        lambda_2 = (trace - root) / 2.0

        if not (math.isfinite(lambda_1) and lambda_1 < 1.0 and lambda_2 > -1e-8):
            raise DegenerateSeries(f"Eigenvalues out of range: ({lambda_1}, {lambda_2})")
        lambda_1 = max(lambda_1, 0.0)
        lambda_2 = min(max(lambda_2, 0.0), lambda_1)

        # Null space of (M - lambda_1 I) from whichever row is better conditioned
        candidate_1 = np.array([m[0, 1], lambda_1 - m[0, 0]])
        candidate_2 = np.array([lambda_1 - m[1, 1], m[1, 0]])
        vector = candidate_1 if np.linalg.norm(candidate_1) >= np.linalg.norm(candidate_2) else candidate_2
        norm = float(vector @ s11 @ vector)
        if not norm > 0:
            raise DegenerateSeries("Leading eigenvector is not identified")
        vector = vector / math.sqrt(norm)

        if abs(vector[0]) <= _SINGULAR_TOLERANCE * np.linalg.norm(vector):
            raise DegenerateSeries("Leading eigenvector has no weight on series A")
        return (lambda_1, lambda_2), vector


def calculate_half_life(spread: Sequence[float]) -> float:
    """
    Half-life of mean reversion from an AR(1) fit of the spread.

    Args:
        spread: Spread observations

    Returns:
        Half-life in bars, ``inf`` when the spread is not mean-reverting
    """
    values = np.asarray(spread, dtype=float)
    if len(values) < 10:
        return float('inf')

    lagged = values[:-1]
    diffs = np.diff(values)
    X = np.column_stack([np.ones(len(lagged)), lagged])
    coeffs = np.linalg.lstsq(X, diffs, rcond=None)[0]
    beta = coeffs[1]

    if beta >= 0 or beta <= -1:
        return float('inf')
    return float(-np.log(2) / np.log(1 + beta))


def adf_pvalue(spread: Sequence[float]) -> float:
    """Augmented Dickey-Fuller p-value of the spread (1.0 if it cannot be computed)."""
    values = np.asarray(spread, dtype=float)
    if len(values) < 20 or values.std() == 0:
        return 1.0
    try:
        result = adfuller(values, autolag='AIC')
    except (ValueError, np.linalg.LinAlgError) as exc:
        logger.debug("ADF test failed: %s", exc)
        return 1.0
    # Newer statsmodels return a results object; older ones a tuple
    pvalue = getattr(result, 'pvalue', None)
    return float(result[1] if pvalue is None else pvalue)
