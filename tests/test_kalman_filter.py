"""
Tests for the Kalman dynamic hedge estimator.
"""

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', 'src'))

import dataclasses
import threading
import unittest

import numpy as np

from statarb_engine.data_manager import generate_cointegrated_pair
from statarb_engine.kalman_filter import DynamicHedgeEstimator, HedgeFilterStore


class TestDynamicHedgeEstimator(unittest.TestCase):
    """Recursive beta estimation."""

    def setUp(self):
        pair = generate_cointegrated_pair(n=300, hedge_ratio=1.5, intercept=10.0,
                                          noise_std=0.5, seed=11)
        self.a = pair['A'].to_numpy()
        self.b = pair['B'].to_numpy()

    def test_converges_to_true_hedge_ratio(self):
        """With a static state the filter approaches the regression beta."""
        estimator = DynamicHedgeEstimator(process_noise=0.0, measurement_noise=0.25,
                                          initial_covariance=1e3)
        previous_variance = estimator.state.covariance[0][0]
        for price_a, price_b in zip(self.a, self.b):
            estimator.update(float(price_a), float(price_b))
            variance = estimator.state.covariance[0][0]
            self.assertLessEqual(variance, previous_variance + 1e-12)
            previous_variance = variance

        self.assertAlmostEqual(estimator.beta, 1.5, delta=0.05)
        self.assertEqual(estimator.state.n_updates, len(self.a))

    def test_first_update_has_zero_z_score(self):
        estimator = DynamicHedgeEstimator(initial_beta=1.5, initial_intercept=10.0)
        estimate = estimator.update(float(self.a[0]), float(self.b[0]))
        self.assertEqual(estimate.z_score, 0.0)
        self.assertFalse(estimate.diverged)

    def test_divergence_keeps_state(self):
        estimator = DynamicHedgeEstimator(initial_beta=1.2)
        estimator.update(100.0, 80.0)
        before = estimator.state

        estimate = estimator.update(1.0, 1e200)

        self.assertTrue(estimate.diverged)
        self.assertTrue(estimator.state.diverged)
        self.assertEqual(estimator.beta, before.beta)
        self.assertEqual(estimator.state.n_updates, before.n_updates)

        recovered = estimator.update(100.0, 80.0)
        self.assertFalse(recovered.diverged)
        self.assertEqual(estimator.state.n_updates, before.n_updates + 1)

    def test_rejects_non_finite_observation(self):
        estimator = DynamicHedgeEstimator()
        with self.assertRaises(ValueError):
            estimator.update(float('nan'), 1.0)
        with self.assertRaises(ValueError):
            estimator.update(1.0, float('inf'))
        self.assertEqual(estimator.state.n_updates, 0)

    def test_invalid_parameters(self):
        with self.assertRaises(ValueError):
            DynamicHedgeEstimator(initial_covariance=0.0)
        with self.assertRaises(ValueError):
            DynamicHedgeEstimator(process_noise=-1.0)
        with self.assertRaises(ValueError):
            DynamicHedgeEstimator(z_window=1)

    def test_filter_returns_frame(self):
        estimator = DynamicHedgeEstimator(initial_beta=1.5, initial_intercept=10.0)
        frame = estimator.filter(self.a[:50], self.b[:50])
        self.assertEqual(len(frame), 50)
        self.assertEqual(list(frame.columns),
                         ['beta', 'intercept', 'innovation', 'z_score', 'beta_std', 'diverged'])
        self.assertTrue(np.all(np.isfinite(frame['beta'])))

    def test_confidence_interval(self):
        estimator = DynamicHedgeEstimator(initial_beta=1.5, initial_intercept=10.0)
        estimator.filter(self.a[:100], self.b[:100])

        lower_90, upper_90 = estimator.confidence_interval(0.90)
        lower_99, upper_99 = estimator.confidence_interval(0.99)
        self.assertLess(lower_90, estimator.beta)
        self.assertGreater(upper_90, estimator.beta)
        self.assertLess(lower_99, lower_90)
        self.assertGreater(upper_99, upper_90)
        with self.assertRaises(ValueError):
            estimator.confidence_interval(1.5)

    def test_state_is_immutable(self):
        estimator = DynamicHedgeEstimator()
        with self.assertRaises(dataclasses.FrozenInstanceError):
            estimator.state.beta = 2.0


class TestHedgeFilterStore(unittest.TestCase):
    """Per-pair filter registry."""

    def test_get_creates_once(self):
        store = HedgeFilterStore()
        first = store.get('A/B', initial_beta=1.5)
        self.assertIs(store.get('A/B', initial_beta=9.9), first)
        self.assertEqual(first.beta, 1.5)
        self.assertIsNot(store.get('C/D'), first)
        self.assertEqual(len(store), 2)

    def test_reset(self):
        store = HedgeFilterStore()
        store.get('A/B')
        store.get('C/D')
        store.reset('A/B')
        self.assertNotIn('A/B', store)
        self.assertIn('C/D', store)
        store.reset()
        self.assertEqual(store.pair_ids(), [])

    def test_store_settings_reach_estimators(self):
        store = HedgeFilterStore(process_noise=1e-3, measurement_noise=2.0, z_window=10)
        estimator = store.get('A/B')
        self.assertEqual(estimator.process_noise, 1e-3)
        self.assertEqual(estimator.measurement_noise, 2.0)
        self.assertEqual(estimator.z_window, 10)

    def test_concurrent_get_returns_single_instance(self):
        store = HedgeFilterStore()
        seen = []

        def worker():
            seen.append(store.get('A/B'))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len({id(e) for e in seen}), 1)


if __name__ == '__main__':
    unittest.main()
