"""
Pairs Identification Module

Scans a universe of price series for correlated pairs and, optionally, runs
the Johansen test on each qualifying pair to flag cointegration.
"""

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .cointegration import JohansenTest, align_series
from .errors import StatisticalError

logger = logging.getLogger(__name__)

Universe = Union[Mapping[str, Sequence[float]], pd.DataFrame]


@dataclass
class PairCandidate:
    """A pair whose return correlation cleared the threshold."""

    symbol_a: str
    symbol_b: str
    correlation: float
    n_obs: int
    cointegration: Optional[Dict] = None

    @property
    def pair_id(self) -> str:
        return f"{self.symbol_a}/{self.symbol_b}"

    def to_dict(self) -> Dict:
        record = {
            'pair': [self.symbol_a, self.symbol_b],
            'correlation': round(self.correlation, 4),
            'n_obs': self.n_obs,
        }
        if self.cointegration is not None:
            record['cointegration'] = self.cointegration
        return record


@dataclass
class ScanResult:
    """Summary of a universe scan."""

    total_pairs_scanned: int
    qualified_pairs: int
    skipped_pairs: int = 0
    top_pairs: List[PairCandidate] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'total_pairs_scanned': self.total_pairs_scanned,
            'qualified_pairs': self.qualified_pairs,
            'skipped_pairs': self.skipped_pairs,
            'top_pairs': [pair.to_dict() for pair in self.top_pairs],
        }


def _returns(prices: np.ndarray, use_log_returns: bool) -> Optional[np.ndarray]:
    if np.any(prices <= 0) or not np.all(np.isfinite(prices)):
        return None
    if use_log_returns:
        return np.diff(np.log(prices))
    return np.diff(prices) / prices[:-1]


def return_correlation(returns_a: np.ndarray, returns_b: np.ndarray) -> float:
    """Pearson correlation, 0.0 when either side has zero variance."""
    if len(returns_a) < 2 or returns_a.std() == 0 or returns_b.std() == 0:
        return 0.0
    corr = float(np.corrcoef(returns_a, returns_b)[0, 1])
    return corr if np.isfinite(corr) else 0.0


class PairScanner:
    """Identifies correlated (and optionally cointegrated) pairs in a universe."""

    def __init__(self, min_samples: int = 30, min_correlation: float = 0.5,
                 use_log_returns: bool = True, with_cointegration: bool = False,
                 max_results: int = 10, johansen: Optional[JohansenTest] = None):
        """
        Initialize PairScanner.

        Args:
            min_samples: Minimum aligned closes for a pair to be evaluated
            min_correlation: Threshold on absolute return correlation, in [-1, 1]
            use_log_returns: Correlate log returns instead of simple returns
            with_cointegration: Run the Johansen test on qualifying pairs
            max_results: Number of top pairs reported
            johansen: Test instance used when ``with_cointegration`` is set
        """
        self._check_threshold(min_correlation)
        if min_samples < 3:
            raise ValueError(f"min_samples must be at least 3, got {min_samples}")
        self.min_samples = min_samples
        self.min_correlation = min_correlation
        self.use_log_returns = use_log_returns
        self.with_cointegration = with_cointegration
        self.max_results = max_results
        self.johansen = johansen if johansen is not None else JohansenTest()

    @staticmethod
    def _check_threshold(min_correlation: float) -> None:
        if not -1.0 <= min_correlation <= 1.0:
            raise ValueError(f"min_correlation must be in [-1, 1], got {min_correlation}")

    @staticmethod
    def _as_mapping(universe: Universe) -> Dict[str, np.ndarray]:
        if isinstance(universe, pd.DataFrame):
            return {str(col): universe[col].dropna().to_numpy(dtype=float) for col in universe.columns}
        return {symbol: np.asarray(closes, dtype=float) for symbol, closes in universe.items()}

    def _cointegration(self, a: np.ndarray, b: np.ndarray, pair_id: str) -> Dict:
        try:
            return self.johansen.test(a, b).to_dict()
        except StatisticalError as exc:
            logger.warning("Cointegration skipped for %s: %s", pair_id, exc)
            return {'error': type(exc).__name__, 'message': str(exc)}

    def scan(self, universe: Universe, min_correlation: Optional[float] = None,
             max_results: Optional[int] = None,
             with_cointegration: Optional[bool] = None) -> ScanResult:
        """
        Evaluate every unordered pair of the universe.

        Args:
            universe: Symbol to closes mapping, or a close-price DataFrame
            min_correlation: Per-call override of the threshold
            max_results: Per-call override of the result count
            with_cointegration: Per-call override of the cointegration flag

        Returns:
            ScanResult with pairs sorted by descending absolute correlation
        """
        threshold = self.min_correlation if min_correlation is None else min_correlation
        self._check_threshold(threshold)
        limit = self.max_results if max_results is None else max_results
        test_coint = self.with_cointegration if with_cointegration is None else with_cointegration

        series = self._as_mapping(universe)
        symbols = list(series)
        total = 0
        skipped = 0
        qualified: List[PairCandidate] = []

        for symbol_a, symbol_b in combinations(symbols, 2):
            total += 1
            a, b = align_series(series[symbol_a], series[symbol_b])
            if len(a) < self.min_samples:
                skipped += 1
                continue

            returns_a = _returns(a, self.use_log_returns)
            returns_b = _returns(b, self.use_log_returns)
            if returns_a is None or returns_b is None:
                skipped += 1
                continue

            corr = return_correlation(returns_a, returns_b)
            if abs(corr) < threshold:
                continue

            candidate = PairCandidate(symbol_a, symbol_b, corr, len(a))
            if test_coint:
                candidate.cointegration = self._cointegration(a, b, candidate.pair_id)
            qualified.append(candidate)

        qualified.sort(key=lambda pair: abs(pair.correlation), reverse=True)
        logger.info("Scanned %d pairs: %d qualified, %d skipped", total, len(qualified), skipped)

        return ScanResult(
            total_pairs_scanned=total,
            qualified_pairs=len(qualified),
            skipped_pairs=skipped,
            top_pairs=qualified[:max(limit, 0)],
        )
