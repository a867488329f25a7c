"""
Tests for the correlation pair scanner.
"""

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

import unittest

import numpy as np
import pandas as pd

from statarb_engine.data_manager import generate_cointegrated_pair, generate_random_walk
from statarb_engine.pairs_identification import PairScanner, return_correlation


class TestPairScanner(unittest.TestCase):
    """Pair enumeration and thresholds."""

    def setUp(self):
        pair = generate_cointegrated_pair(n=200, seed=21)
        self.universe = {
            'AAA': pair['A'].tolist(),
            'BBB': pair['B'].tolist(),
            'CCC': generate_random_walk(200, seed=99).tolist(),
        }
        self.scanner = PairScanner()

    def test_scans_every_unordered_pair(self):
        result = self.scanner.scan(self.universe)
        self.assertEqual(result.total_pairs_scanned, 3)
        self.assertEqual(result.skipped_pairs, 0)

    def test_correlated_pair_qualifies(self):
        result = self.scanner.scan(self.universe, min_correlation=0.7)
        pairs = [(p.symbol_a, p.symbol_b) for p in result.top_pairs]
        self.assertEqual(pairs, [('AAA', 'BBB')])
        self.assertGreater(result.top_pairs[0].correlation, 0.7)

    def test_qualified_set_shrinks_with_threshold(self):
        previous = None
        for threshold in (0.0, 0.3, 0.6, 0.9, 1.0):
            result = self.scanner.scan(self.universe, min_correlation=threshold)
            current = {p.pair_id for p in result.top_pairs}
            if previous is not None:
                self.assertTrue(current <= previous)
            previous = current

    def test_sorted_by_absolute_correlation(self):
        result = self.scanner.scan(self.universe, min_correlation=0.0)
        correlations = [abs(p.correlation) for p in result.top_pairs]
        self.assertEqual(correlations, sorted(correlations, reverse=True))
        self.assertEqual(result.qualified_pairs, 3)

    def test_max_results(self):
        result = self.scanner.scan(self.universe, min_correlation=0.0, max_results=1)
        self.assertEqual(len(result.top_pairs), 1)
        self.assertEqual(result.qualified_pairs, 3)

    def test_fewer_than_two_symbols(self):
        self.assertEqual(self.scanner.scan({'AAA': self.universe['AAA']}).total_pairs_scanned, 0)
        self.assertEqual(self.scanner.scan({}).total_pairs_scanned, 0)

    def test_short_series_skipped(self):
        universe = dict(self.universe, DDD=[100.0 + i for i in range(10)])
        result = self.scanner.scan(universe, min_correlation=0.0)
        self.assertEqual(result.total_pairs_scanned, 6)
        self.assertEqual(result.skipped_pairs, 3)
        self.assertTrue(all('DDD' not in p.pair_id for p in result.top_pairs))

    def test_accepts_dataframe(self):
        frame = pd.DataFrame(self.universe)
        result = self.scanner.scan(frame, min_correlation=0.7)
        self.assertEqual(result.top_pairs[0].pair_id, 'AAA/BBB')

    def test_cointegration_annotation(self):
        result = self.scanner.scan(self.universe, min_correlation=0.7, with_cointegration=True)
        coint = result.top_pairs[0].cointegration
        self.assertTrue(coint['is_cointegrated'])
        self.assertIn('trace_statistic', coint)

    def test_cointegration_failure_is_recorded(self):
        universe = {'AAA': self.universe['AAA'], 'FLAT': [50.0] * 200}
        result = self.scanner.scan(universe, min_correlation=0.0, with_cointegration=True)
        self.assertEqual(result.qualified_pairs, 1)
        record = result.top_pairs[0].to_dict()
        self.assertEqual(record['correlation'], 0.0)
        self.assertEqual(record['cointegration']['error'], 'DegenerateSeries')

    def test_invalid_threshold(self):
        with self.assertRaises(ValueError):
            PairScanner(min_correlation=1.5)

    def test_invalid_threshold_override(self):
        for bad in (5.0, -1.5):
            with self.assertRaises(ValueError):
                self.scanner.scan(self.universe, min_correlation=bad)
        self.assertEqual(self.scanner.scan(self.universe, min_correlation=-1.0).qualified_pairs, 3)


class TestReturnCorrelation(unittest.TestCase):
    """Correlation helper edge cases."""

    def test_zero_variance_is_zero(self):
        self.assertEqual(return_correlation(np.zeros(10), np.arange(10.0)), 0.0)

    def test_perfect_correlation(self):
        x = np.array([0.01, -0.02, 0.03, 0.0, 0.01])
        self.assertAlmostEqual(return_correlation(x, 2 * x), 1.0)
        self.assertAlmostEqual(return_correlation(x, -x), -1.0)


if __name__ == '__main__':
    unittest.main()
