"""
Statistical Arbitrage Paper-Trading Engine

Pairs discovery, Johansen cointegration, Kalman hedge ratios, spread signals,
position sizing and backtesting on a paper-trading ledger.
"""

__version__ = "1.0.0"

from .backtesting import BacktestEngine, BacktestReport, BacktestState
from .cointegration import CointegrationResult, JohansenTest
from .config import EngineConfig, load_engine_config
from .data_manager import DataManager, Tick, generate_cointegrated_pair, generate_random_walk
from .engine import TradingEngine
from .errors import (ConfigError, DegenerateSeries, InsufficientSamples, OrderRejection,
                     StatArbError, StatisticalError, UnknownStrategy)
from .kalman_filter import DynamicHedgeEstimator, FilterState, HedgeEstimate, HedgeFilterStore
from .ledger import Ledger, OrderResult, Position, Trade
from .pairs_identification import PairCandidate, PairScanner, ScanResult
from .pairs_trading import PairInput, PairsTradingStrategy
from .performance_metrics import PerformanceAnalyzer
from .price_buffer import PriceBuffer
from .risk_management import PositionSizer
from .signals import Action, Signal, SignalStrategy, StrategyName
