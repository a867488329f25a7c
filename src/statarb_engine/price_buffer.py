"""
Price Buffer Module

Bounded per-symbol history of closing prices fed by the market-data
collaborator. One buffer is owned by each trading session.
"""

import logging
import math
from collections import deque
from typing import Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 200


class PriceBuffer:
    """Per-symbol rolling window of closes, oldest evicted first."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        """
        Initialize the buffer.

        Args:
            capacity: Maximum number of closes kept per symbol
        """
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._series: Dict[str, Deque[float]] = {}

    def push(self, symbol: str, price: float) -> None:
        """
        Append a close for ``symbol``, creating its series on first use.

        Args:
            symbol: Instrument identifier
            price: Closing price, finite and positive
        """
        price = float(price)
        if not math.isfinite(price) or price <= 0:
            raise ValueError(f"Invalid price for {symbol}: {price}")

        series = self._series.get(symbol)
        if series is None:
            series = deque(maxlen=self.capacity)
            self._series[symbol] = series
            logger.debug("Created price series for %s", symbol)
        series.append(price)

    def closes(self, symbol: str) -> List[float]:
        """Return the ordered closes for ``symbol`` (empty if unknown)."""
        series = self._series.get(symbol)
        return list(series) if series is not None else []

    def latest(self, symbol: str) -> Optional[float]:
        series = self._series.get(symbol)
        if not series:
            return None
        return series[-1]

    def symbols(self) -> List[str]:
        return list(self._series.keys())

    def snapshot(self) -> Dict[str, List[float]]:
        """Copy of every series, keyed by symbol."""
        return {symbol: list(series) for symbol, series in self._series.items()}

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._series

    def __len__(self) -> int:
        return len(self._series)
