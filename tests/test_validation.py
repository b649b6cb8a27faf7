"""
Validation Suite Tests
======================
"""

import os
import sys
import unittest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from cohort_impact.overlap import OverlapCell, OverlapReport, compute_overlap
from cohort_impact.validation import AnalysisValidator, check_partition


class TestCheckPartition(unittest.TestCase):

    def test_valid_report(self):
        cohorts = {'A': [1, 2, 3], 'B': [2, 3, 4], 'C': [3, 4, 5]}
        self.assertEqual(check_partition(compute_overlap(cohorts), cohorts), [])

    def test_detects_double_counting(self):
        cohorts = {'A': [1, 2], 'B': [2]}
        a, ab = frozenset(['A']), frozenset(['A', 'B'])
        broken = OverlapReport(
            cohort_names=('A', 'B'),
            cohort_sizes={'A': 2, 'B': 1},
            union_size=2,
            cells={
                a: OverlapCell(a, ('A',), 2, frozenset({1, 2})),
                ab: OverlapCell(ab, ('A', 'B'), 1, frozenset({2})),
            }
        )

        problems = check_partition(broken, cohorts)

        self.assertTrue(problems)
        self.assertTrue(any('sum to 3' in p for p in problems))


class TestAnalysisValidator(unittest.TestCase):

    def setUp(self):
        self.validator = AnalysisValidator(n_simulations=2, n_draws=100)

    def test_overlap_invariants(self):
        result = self.validator.validate_overlap_invariants(n_trials=25, verbose=False)
        self.assertTrue(result['passed'], result['failures'])

    def test_lift_recovery_structure(self):
        results = self.validator.validate_lift_recovery(
            true_lifts=[0.10], n_simulations=2, verbose=False
        )
        self.assertIn(0.10, results)
        self.assertEqual(results[0.10].n_simulations, 2)
        self.assertLess(abs(results[0.10].lift_bias), 0.07)

    def test_type_i_error_structure(self):
        result = self.validator.validate_type_i_error(n_simulations=3, verbose=False)

        for key in ('type_i_error', 'target', 'binomial_pvalue', 'passed', 'n_simulations'):
            self.assertIn(key, result)
        self.assertEqual(result['n_simulations'], 3)
        self.assertEqual(result['target'], 0.05)
        self.assertGreaterEqual(result['type_i_error'], 0)
        self.assertLessEqual(result['type_i_error'], 1)
        self.assertGreaterEqual(result['binomial_pvalue'], 0)
        self.assertLessEqual(result['binomial_pvalue'], 1)
        self.assertIsInstance(result['passed'], bool)

    def test_full_validation_aggregates(self):
        results = self.validator.run_full_validation(n_simulations=2, verbose=False)

        for key in ('overlap', 'type_i', 'lift_recovery', 'all_passed'):
            self.assertIn(key, results)
        self.assertIn('0.1', results['lift_recovery'])
        self.assertLessEqual(results['type_i']['type_i_error'], 1)
        expected = (
            results['overlap']['passed']
            and results['type_i']['passed']
            and all(v['passed'] for v in results['lift_recovery'].values())
        )
        self.assertEqual(results['all_passed'], expected)


if __name__ == '__main__':
    unittest.main()
