"""
Paper Trading Ledger Module

Cash, position and trade-history bookkeeping for a simulated long-only account.
Orders are all-or-nothing: a rejected order leaves the ledger untouched and is
reported through ``OrderResult`` rather than raised.
"""

import logging
import math
import numbers
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional, Union

from .errors import OrderRejection

logger = logging.getLogger(__name__)

PriceLookup = Union[Mapping[str, float], Callable[[str], Optional[float]], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Position:
    """Open long holding in one symbol."""

    symbol: str
    quantity: float
    average_price: float
    side: str = "long"

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class Trade:
    """Immutable record of an executed order."""

    symbol: str
    action: str
    quantity: float
    price: float
    cash_delta: float
    cash_after: float
    timestamp: datetime
    realized_pnl: Optional[float] = None

    def to_dict(self) -> Dict:
        record = asdict(self)
        record['timestamp'] = self.timestamp.isoformat()
        return record


@dataclass(frozen=True)
class OrderResult:
    """Outcome of a buy or sell request."""

    success: bool
    trade: Optional[Trade] = None
    reason: Optional[OrderRejection] = None
    message: str = ""

    def to_dict(self) -> Dict:
        if not self.success:
            return {
                'success': False,
                'reason': self.reason.value if self.reason else None,
                'message': self.message,
            }
        return {'success': True, 'trade': self.trade.to_dict()}


@dataclass
class LedgerSnapshot:
    """Consistent read-only view of the ledger taken under its lock."""

    cash: float
    initial_balance: float
    positions: Dict[str, Position] = field(default_factory=dict)
    trade_count: int = 0
    realized_pnl: float = 0.0


class Ledger:
    """Paper-trading account with average-cost accounting."""

    def __init__(self, initial_balance: float = 100000.0,
                 clock: Callable[[], datetime] = _utcnow):
        """
        Initialize ledger.

        Args:
            initial_balance: Starting cash
            clock: Timestamp source for trade records
        """
        if not initial_balance > 0:
            raise ValueError(f"initial_balance must be positive, got {initial_balance}")

        self.initial_balance = float(initial_balance)
        self._cash = float(initial_balance)
        self._positions: Dict[str, Position] = {}
        self._history: List[Trade] = []
        self._last_prices: Dict[str, float] = {}
        self._clock = clock
        self._lock = threading.RLock()

    @property
    def cash(self) -> float:
        with self._lock:
            return self._cash

    @property
    def positions(self) -> Dict[str, Position]:
        """Copies of the open positions keyed by symbol."""
        with self._lock:
            return {symbol: Position(**asdict(pos)) for symbol, pos in self._positions.items()}

    def get_position(self, symbol: str) -> Optional[Position]:
        with self._lock:
            pos = self._positions.get(symbol)
            return Position(**asdict(pos)) if pos is not None else None

    @staticmethod
    def _validate(symbol: str, quantity: float, price: float) -> Optional[OrderResult]:
        if not symbol:
            return OrderResult(False, reason=OrderRejection.INVALID_ORDER,
                               message="Symbol must be non-empty")
        for label, value in (('quantity', quantity), ('price', price)):
            if (isinstance(value, bool) or not isinstance(value, numbers.Real)
                    or not math.isfinite(value) or value <= 0):
                return OrderResult(False, reason=OrderRejection.INVALID_ORDER,
                                   message=f"{label} must be a positive number, got {value!r}")
        return None

    @staticmethod
    def _plain(value: numbers.Real) -> Union[int, float]:
        # numpy and pandas scalars become builtins so trades stay JSON-serialisable
        return int(value) if isinstance(value, numbers.Integral) else float(value)

    def buy(self, symbol: str, quantity: float, price: float) -> OrderResult:
        """
        Buy ``quantity`` units of ``symbol`` at ``price``.

        Args:
            symbol: Instrument identifier
            quantity: Units to buy, positive
            price: Execution price, positive

        Returns:
            OrderResult with the Trade on success or a rejection reason
        """
        invalid = self._validate(symbol, quantity, price)
        if invalid is not None:
            return invalid
        quantity, price = self._plain(quantity), self._plain(price)

        with self._lock:
            cost = quantity * price
            if cost > self._cash:
                logger.warning("Rejected buy %s x%s @ %.4f: cost %.2f exceeds cash %.2f",
                               symbol, quantity, price, cost, self._cash)
                return OrderResult(False, reason=OrderRejection.INSUFFICIENT_FUNDS,
                                   message=f"Cost {cost:.2f} exceeds cash {self._cash:.2f}")

            self._cash -= cost
            existing = self._positions.get(symbol)
            if existing is None:
                self._positions[symbol] = Position(symbol, quantity, price)
            else:
                total_qty = existing.quantity + quantity
                existing.average_price = (
                    existing.quantity * existing.average_price + quantity * price
                ) / total_qty
                existing.quantity = total_qty

            self._last_prices[symbol] = price
            trade = Trade(symbol=symbol, action='buy', quantity=quantity, price=price,
                          cash_delta=-cost, cash_after=self._cash, timestamp=self._clock())
            self._history.append(trade)

        logger.info("Bought %s x%s @ %.4f (cash %.2f)", symbol, quantity, price, trade.cash_after)
        return OrderResult(True, trade=trade)

    def sell(self, symbol: str, quantity: float, price: float) -> OrderResult:
        """
        Sell ``quantity`` units of an existing ``symbol`` position at ``price``.

        Args:
            symbol: Instrument identifier
            quantity: Units to sell, positive and at most the held quantity
            price: Execution price, positive

        Returns:
            OrderResult whose Trade carries the realized P&L
        """
        invalid = self._validate(symbol, quantity, price)
        if invalid is not None:
            return invalid
        quantity, price = self._plain(quantity), self._plain(price)

        with self._lock:
            position = self._positions.get(symbol)
            if position is None:
                logger.warning("Rejected sell %s: no position", symbol)
                return OrderResult(False, reason=OrderRejection.NO_POSITION,
                                   message=f"No position in {symbol}")
            if quantity > position.quantity:
                logger.warning("Rejected sell %s x%s: only %s held",
                               symbol, quantity, position.quantity)
                return OrderResult(False, reason=OrderRejection.INSUFFICIENT_QUANTITY,
                                   message=f"Holding {position.quantity} {symbol}, asked {quantity}")

            proceeds = quantity * price
            realized = (price - position.average_price) * quantity
            self._cash += proceeds
            position.quantity -= quantity
            if position.quantity <= 0:
                del self._positions[symbol]

            self._last_prices[symbol] = price
            trade = Trade(symbol=symbol, action='sell', quantity=quantity, price=price,
                          cash_delta=proceeds, cash_after=self._cash,
                          timestamp=self._clock(), realized_pnl=realized)
            self._history.append(trade)

        logger.info("Sold %s x%s @ %.4f, realized %.2f (cash %.2f)",
                    symbol, quantity, price, realized, trade.cash_after)
        return OrderResult(True, trade=trade)

    def mark_prices(self, prices: Mapping[str, float]) -> None:
        """Record last-known market prices used for valuation."""
        with self._lock:
            for symbol, price in prices.items():
                self._last_prices[symbol] = float(price)

    def _mark(self, position: Position, price_lookup: PriceLookup) -> float:
        price = None
        if callable(price_lookup):
            price = price_lookup(position.symbol)
        elif price_lookup is not None:
            price = price_lookup.get(position.symbol)
        if price is None:
            price = self._last_prices.get(position.symbol, position.average_price)
        return float(price)

    def portfolio_value(self, price_lookup: PriceLookup = None) -> float:
        """
        Cash plus the marked value of every open position.

        Args:
            price_lookup: Mapping or callable returning a price per symbol; missing
                prices fall back to the last traded price, then to average cost

        Returns:
            Total account value
        """
        with self._lock:
            return self._cash + sum(
                pos.quantity * self._mark(pos, price_lookup) for pos in self._positions.values()
            )

    def pnl(self, price_lookup: PriceLookup = None) -> float:
        return self.portfolio_value(price_lookup) - self.initial_balance

    def realized_pnl(self) -> float:
        with self._lock:
            return sum(t.realized_pnl for t in self._history if t.realized_pnl is not None)

    def snapshot(self) -> LedgerSnapshot:
        with self._lock:
            return LedgerSnapshot(
                cash=self._cash,
                initial_balance=self.initial_balance,
                positions=self.positions,
                trade_count=len(self._history),
                realized_pnl=self.realized_pnl(),
            )

    def summary(self, price_lookup: PriceLookup = None) -> Dict:
        """
        Read-only projection of the account.

        Returns:
            Dictionary with cash, value, P&L, positions and trade count
        """
        with self._lock:
            value = self.portfolio_value(price_lookup)
            pnl = value - self.initial_balance
            return {
                'cash': round(self._cash, 2),
                'portfolio_value': round(value, 2),
                'pnl': round(pnl, 2),
                'pnl_pct': round(pnl / self.initial_balance * 100, 2),
                'realized_pnl': round(self.realized_pnl(), 2),
                'positions': [pos.to_dict() for pos in self._positions.values()],
                'trade_count': len(self._history),
            }

    def history(self, limit: Optional[int] = None) -> List[Trade]:
        """Most recent ``limit`` trades in execution order (all if None)."""
        with self._lock:
            if limit is None:
                return list(self._history)
            if limit <= 0:
                return []
            return self._history[-limit:]

    @property
    def trade_count(self) -> int:
        with self._lock:
            return len(self._history)
