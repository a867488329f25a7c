"""
Error Taxonomy Module

Exceptions and rejection codes shared across the engine. Ledger violations are
reported as ``OrderRejection`` codes inside an order result; statistical
degeneracy and configuration mistakes are raised as exceptions.
"""

from enum import Enum


class OrderRejection(str, Enum):
    """Reasons a ledger order can be rejected without changing any state."""

    INSUFFICIENT_FUNDS = "InsufficientFunds"
    NO_POSITION = "NoPosition"
    INSUFFICIENT_QUANTITY = "InsufficientQuantity"
    INVALID_ORDER = "InvalidOrder"


class StatArbError(Exception):
    """Base class for all engine exceptions."""


class StatisticalError(StatArbError):
    """Raised when a statistical estimate cannot be produced from the data."""


class InsufficientSamples(StatisticalError):
    """Too few aligned observations for a stable estimate."""


class DegenerateSeries(StatisticalError):
    """Near-constant or collinear input makes the estimate numerically meaningless."""


class ConfigError(StatArbError):
    """Raised when configuration files cannot be loaded, parsed or validated."""


class UnknownStrategy(StatArbError, KeyError):
    """Raised when a strategy name is not present in the dispatch table."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Unknown strategy: {self.name!r}"
