"""
Statistical Arbitrage Engine - Main Example

Demonstrates a paper-trading session on synthetic data: pair scanning,
Johansen cointegration, Kalman hedge ratios, signals, sizing and backtests.
"""

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), 'src'))

import pandas as pd

from statarb_engine import (DataManager, TradingEngine, generate_cointegrated_pair,
                            generate_random_walk, load_engine_config)
from statarb_engine.logging_utils import configure_logging


def main():
    """
    Run the demonstration session.
    """
    configure_logging(os.environ.get("STATARB_LOG_LEVEL", "WARNING"))

    print("=" * 60)
    print("Statistical Arbitrage Paper-Trading Engine")
    print("=" * 60)

    config = load_engine_config()
    engine = TradingEngine(config)

    # Step 1: Market data
    print("\n1. Generating synthetic market data...")
    pair = generate_cointegrated_pair(n=200, hedge_ratio=1.5, intercept=10.0, seed=7)
    prices = pd.DataFrame({
        'AAA': pair['A'],
        'BBB': pair['B'],
        'CCC': generate_random_walk(200, start=50.0, seed=11).to_numpy(),
    }, index=pair.index)
    ticks = DataManager(prices).feed(engine)
    print(f"Fed {ticks} ticks for {len(prices.columns)} symbols")

    # Step 2: Pair scan
    print("\n2. Scanning for correlated pairs...")
    scan = engine.scan_pairs(min_correlation=0.3, with_cointegration=True)
    print(f"Scanned {scan['total_pairs_scanned']} pairs, {scan['qualified_pairs']} qualified")
    for candidate in scan['top_pairs']:
        coint = candidate.get('cointegration', {})
        print(f"  {candidate['pair'][0]}/{candidate['pair'][1]}: corr {candidate['correlation']:.3f}, "
              f"cointegrated {coint.get('is_cointegrated')}")

    # Step 3: Pair signal
    print("\n3. Pair signal for AAA/BBB...")
    static = engine.pairs_signal('AAA', 'BBB')
    dynamic = engine.pairs_signal('AAA', 'BBB', use_kalman=True)
    print(f"Static:  {static['action']} (conf {static['confidence']:.2f}), "
          f"beta {static['hedge_ratio']}, z {static['z_score']}")
    print(f"Kalman:  {dynamic['action']} (conf {dynamic['confidence']:.2f}), "
          f"beta {dynamic['hedge_ratio']}, z {dynamic['z_score']}")

    # Step 4: Single-asset signal and sizing
    print("\n4. Single-asset signal for CCC...")
    signal = engine.generate_signal('CCC')['signal']
    print(f"{engine.active_strategy.value}: {signal['action']} (conf {signal['confidence']:.2f})")
    last_price = prices['CCC'].iloc[-1]
    sizing = engine.position_size(last_price, max(signal['confidence'], 0.5))
    print(f"Suggested size: {sizing['qty']} units (${sizing['notional']:,.2f})")

    # Step 5: Backtests
    print("\n5. Running backtests...")
    pairs_report = engine.run_backtest(pair['A'], strategy='pairs', closes_b=pair['B'], symbol='AAA')
    momentum_report = engine.run_backtest(prices['CCC'], strategy='momentum', symbol='CCC')

    for label, report in (('Pairs', pairs_report), ('Momentum', momentum_report)):
        print(f"\n{label} backtest:")
        print(f"  Final value:     ${report['final_value']:,.2f}")
        print(f"  Total return:    {report['total_return']:.2%}")
        print(f"  Trades:          {report['trade_count']}")
        print(f"  Win rate:        {report['win_rate']:.2%}")
        print(f"  Max drawdown:    {report['max_drawdown']:.2%}")
        print(f"  Sharpe ratio:    {report['sharpe_ratio']:.2f}")
        calmar = report['calmar_ratio']
        print(f"  Calmar ratio:    {calmar:.2f}" if calmar is not None else "  Calmar ratio:    n/a")

    print("\n" + "=" * 60)
    print(f"Session portfolio: {engine.get_portfolio()}")
    print("=" * 60)


if __name__ == "__main__":
    main()
