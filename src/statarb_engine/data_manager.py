"""
Data Manager Module

Boundary between market data and the engine: turns close-price frames into
ordered ticks, computes returns and alignments, and generates seeded
synthetic series for demonstrations and tests.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Tick:
    """One validated close delivered by the market-data collaborator."""

    symbol: str
    price: float
    timestamp: datetime


class DataManager:
    """Manages close-price data and its delivery to an engine."""

    def __init__(self, price_data: pd.DataFrame):
        """
        Initialize DataManager.

        Args:
            price_data: Close prices, one column per symbol, indexed by time
        """
        if not isinstance(price_data, pd.DataFrame):
            raise TypeError("price_data must be a pandas DataFrame")
        self.price_data = price_data.sort_index().ffill().dropna(how='all')
        self.returns_data: Optional[pd.DataFrame] = None

    @property
    def symbols(self) -> List[str]:
        return [str(c) for c in self.price_data.columns]

    def calculate_returns(self, method: str = 'log') -> pd.DataFrame:
        """
        Calculate returns from price data.

        Args:
            method: 'log' for log returns or 'simple' for simple returns

        Returns:
            DataFrame with returns
        """
        if method == 'log':
            returns = np.log(self.price_data / self.price_data.shift(1))
        elif method == 'simple':
            returns = self.price_data.pct_change()
        else:
            raise ValueError("Method must be 'log' or 'simple'")

        self.returns_data = returns.dropna(how='all')
        return self.returns_data

    def get_correlation_matrix(self, method: str = 'log') -> pd.DataFrame:
        """Correlation matrix of returns."""
        if self.returns_data is None:
            self.calculate_returns(method)
        return self.returns_data.corr()

    def universe(self) -> dict:
        """Symbol to closes mapping suitable for the pair scanner."""
        return {str(col): self.price_data[col].dropna().tolist() for col in self.price_data.columns}

    def iter_ticks(self) -> Iterator[Tick]:
        """Yield ticks in time order, symbols in column order within a bar."""
        for ts, row in self.price_data.iterrows():
            if isinstance(ts, pd.Timestamp):
                timestamp = ts.to_pydatetime()
            else:
                timestamp = datetime.now(timezone.utc)
            for symbol, price in row.items():
                if pd.notna(price):
                    yield Tick(str(symbol), float(price), timestamp)

    def feed(self, engine) -> int:
        """
        Push every tick into ``engine.feed_price``.

        Returns:
            Number of ticks delivered
        """
        count = 0
        for tick in self.iter_ticks():
            engine.feed_price(tick.symbol, tick.price, tick.timestamp)
            count += 1
        logger.info("Fed %d ticks for %d symbols", count, len(self.symbols))
        return count


def align_pair(closes_a: Sequence[float], closes_b: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    """Keep the most recent common length of two series."""
    a = np.asarray(closes_a, dtype=float)
    b = np.asarray(closes_b, dtype=float)
    n = min(len(a), len(b))
    return a[len(a) - n:], b[len(b) - n:]


def generate_random_walk(n: int = 250, start: float = 100.0, volatility: float = 0.01,
                         drift: float = 0.0, seed: Optional[int] = None,
                         name: str = 'price') -> pd.Series:
    """
    Geometric random walk of closes.

    Args:
        n: Number of bars
        start: First price
        volatility: Per-bar log-return standard deviation
        drift: Per-bar log-return mean
        seed: Seed for the numpy generator
        name: Series name

    Returns:
        Series indexed by business days
    """
    rng = np.random.default_rng(seed)
    steps = rng.normal(drift, volatility, n)
    steps[0] = 0.0
    prices = start * np.exp(np.cumsum(steps))
    index = pd.bdate_range('2020-01-01', periods=n)
    return pd.Series(prices, index=index, name=name)


def generate_cointegrated_pair(n: int = 250, hedge_ratio: float = 1.5, intercept: float = 10.0,
                               noise_std: float = 0.5, start: float = 100.0,
                               volatility: float = 0.01, seed: Optional[int] = None) -> pd.DataFrame:
    """
    Pair with A = intercept + hedge_ratio * B + noise, B a geometric random walk.

    Args:
        n: Number of bars
        hedge_ratio: True beta
        intercept: True intercept
        noise_std: Standard deviation of the stationary spread noise
        start: First price of B
        volatility: Per-bar volatility of B
        seed: Seed for the numpy generator

    Returns:
        DataFrame with columns 'A' and 'B'
    """
    rng = np.random.default_rng(seed)
    b = generate_random_walk(n, start, volatility, seed=rng.integers(0, 2**32 - 1), name='B')
    noise = rng.normal(0.0, noise_std, n)
    a = intercept + hedge_ratio * b.to_numpy() + noise
    return pd.DataFrame({'A': a, 'B': b.to_numpy()}, index=b.index)
