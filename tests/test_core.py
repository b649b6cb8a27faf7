"""
Core Module Tests
=================

Unit tests for the overlap analyzer, causal impact analyzer and runner.
"""

import json
import os
import sys
import tempfile
import unittest
from unittest import mock

import numpy as np
import pandas as pd

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from cohort_impact.causal_impact import (
    CausalImpactAnalyzer, CausalImpactResult, periods_from_split
)
from cohort_impact.exceptions import InvalidInputError
from cohort_impact.overlap import (
    Cohort, OverlapReport, compute_overlap, cohorts_from_frame, merge_overlap_counts
)
from cohort_impact.reporting_client import ReportingClient
from cohort_impact.runner import AnalysisConfig, CohortImpactRunner
from cohort_impact.synthetic import create_synthetic_cohorts, create_synthetic_impact_data


def cell_counts(report):
    return {frozenset(key): cell.count for key, cell in report.cells.items()}


class TestOverlap(unittest.TestCase):
    """Tests for compute_overlap."""

    def setUp(self):
        self.two = {'A': {1, 2, 3, 4, 5}, 'B': {4, 5, 6, 7}}
        self.three = {'A': {1, 2, 3}, 'B': {2, 3, 4}, 'C': {3, 4, 5}}

    def test_two_cohort_scenario(self):
        """A={1..5}, B={4..7} gives 3/2/2 with union 7."""
        report = compute_overlap(self.two)

        self.assertEqual(report.members('A'), frozenset({1, 2, 3}))
        self.assertEqual(report.members('B'), frozenset({6, 7}))
        self.assertEqual(report.members('A', 'B'), frozenset({4, 5}))
        self.assertEqual(report.count('A'), 3)
        self.assertEqual(report.count('B'), 2)
        self.assertEqual(report.count('B', 'A'), 2)
        self.assertEqual(report.union_size, 7)
        self.assertEqual(len(report), 3)

    def test_three_cohort_scenario(self):
        """Three chained cohorts omit the {B} and {A,C} cells."""
        report = compute_overlap(self.three)

        expected = {
            frozenset('A'): 1,
            frozenset('C'): 1,
            frozenset('AB'): 1,
            frozenset('BC'): 1,
            frozenset('ABC'): 1,
        }
        self.assertEqual(cell_counts(report), expected)
        self.assertEqual(report.members('A', 'B', 'C'), frozenset({3}))
        self.assertEqual(report.count('B'), 0)
        self.assertEqual(report.count('A', 'C'), 0)
        self.assertEqual(report.members('A', 'C'), frozenset())
        self.assertEqual(report.union_size, 5)

    def test_counts_sum_to_union(self):
        """Cell counts sum to the union size."""
        pairs = create_synthetic_cohorts(n_cohorts=5, population=500, random_state=7)
        cohorts = cohorts_from_frame(pairs)
        report = compute_overlap(cohorts)

        union = set(pairs['identifier'])
        self.assertEqual(sum(c.count for c in report.cells.values()), len(union))
        self.assertEqual(report.union_size, len(union))

    def test_every_identifier_in_exactly_one_cell(self):
        """Cells partition the union."""
        report = compute_overlap(self.three)

        seen = []
        for cell in report.cells.values():
            seen.extend(cell.members)
        self.assertEqual(sorted(seen), [1, 2, 3, 4, 5])

    def test_invariant_to_order_and_duplicates(self):
        """Reordering cohorts or repeating identifiers changes nothing."""
        report = compute_overlap(self.three)
        reordered = compute_overlap({'C': [3, 4, 5], 'A': [1, 2, 3], 'B': [2, 3, 4]})
        duplicated = compute_overlap({'A': [1, 1, 2, 3, 3], 'B': [2, 3, 4, 4], 'C': [3, 4, 5]})

        self.assertEqual(cell_counts(reordered), cell_counts(report))
        self.assertEqual(cell_counts(duplicated), cell_counts(report))

    def test_disjoint_cohorts(self):
        """Disjoint cohorts give only singleton cells."""
        report = compute_overlap({'A': ['a', 'b', 'c'], 'B': ['x', 'y']})

        self.assertEqual(cell_counts(report), {frozenset('A'): 3, frozenset('B'): 2})
        self.assertEqual(report.count('A', 'B'), 0)

    def test_identical_cohorts(self):
        """Identical cohorts give a single joint cell."""
        report = compute_overlap({'A': {1, 2, 3}, 'B': {3, 2, 1}})

        self.assertEqual(cell_counts(report), {frozenset('AB'): 3})

    def test_empty_cohort_contributes_no_cells(self):
        """Empty cohorts are valid."""
        report = compute_overlap({'A': [1, 2], 'Empty': []})

        self.assertEqual(report.cohort_sizes['Empty'], 0)
        self.assertEqual(cell_counts(report), {frozenset(['A']): 2})

    def test_single_cohort(self):
        report = compute_overlap([Cohort('only', ['u1', 'u2', 'u2'])])

        self.assertEqual(report.count('only'), 2)
        self.assertEqual(report.union_size, 2)

    def test_zero_cohorts_rejected(self):
        with self.assertRaises(InvalidInputError):
            compute_overlap({})
        with self.assertRaises(InvalidInputError):
            compute_overlap([])

    def test_duplicate_names_rejected(self):
        with self.assertRaises(InvalidInputError):
            compute_overlap([Cohort('A', [1]), Cohort('A', [2])])

    def test_unhashable_identifiers_rejected(self):
        with self.assertRaises(InvalidInputError):
            compute_overlap({'A': [[1, 2], [3]]})

    def test_string_members_rejected(self):
        with self.assertRaises(InvalidInputError):
            compute_overlap({'A': 'abc'})

    def test_unknown_cohort_lookup_raises(self):
        report = compute_overlap(self.two)
        with self.assertRaises(KeyError):
            report.count('Z')

    def test_counts_only(self):
        """keep_members=False keeps counts but no member sets."""
        report = compute_overlap(self.two, keep_members=False)

        self.assertEqual(report.count('A', 'B'), 2)
        with self.assertRaises(ValueError):
            report.members('A')

    def test_sharded_matches_serial(self):
        """Sharding across processes gives the serial result."""
        pairs = create_synthetic_cohorts(n_cohorts=4, population=400, random_state=3)
        cohorts = cohorts_from_frame(pairs)

        serial = compute_overlap(cohorts)
        sharded = compute_overlap(cohorts, n_jobs=2)

        self.assertEqual(
            {k: c.members for k, c in sharded.cells.items()},
            {k: c.members for k, c in serial.cells.items()}
        )

    def test_merge_is_order_independent(self):
        first = {('A',): (2, {1, 2}), ('A', 'B'): (1, {3})}
        second = {('A',): (1, {4}), ('B',): (1, {5})}

        forward = merge_overlap_counts([first, second])
        backward = merge_overlap_counts([second, first])

        self.assertEqual(forward, backward)
        self.assertEqual(forward[('A',)], (3, {1, 2, 4}))

    def test_to_frame(self):
        frame = compute_overlap(self.three).to_frame()

        self.assertEqual(list(frame.columns[:3]), ['A', 'B', 'C'])
        self.assertEqual(frame['count'].sum(), 5)
        self.assertAlmostEqual(frame['share'].sum(), 1.0)
        # Singletons come first
        self.assertEqual(frame['degree'].tolist(), sorted(frame['degree'].tolist()))

    def test_pairwise_intersections(self):
        matrix = compute_overlap(self.three).pairwise_intersections()

        self.assertEqual(matrix.loc['A', 'A'], 3)
        self.assertEqual(matrix.loc['A', 'B'], 2)
        self.assertEqual(matrix.loc['A', 'C'], 1)
        self.assertEqual(matrix.loc['B', 'C'], 2)
        self.assertTrue((matrix.values == matrix.values.T).all())

    def test_cohorts_from_frame(self):
        frame = pd.DataFrame({
            'segment': ['blog', 'blog', 'docs', 'blog', 'docs'],
            'identifier': ['u1', 'u2', 'u2', 'u1', None]
        })
        cohorts = cohorts_from_frame(frame)

        self.assertEqual([c.name for c in cohorts], ['blog', 'docs'])
        self.assertEqual(cohorts[0].members, frozenset({'u1', 'u2'}))
        self.assertEqual(cohorts[1].members, frozenset({'u2'}))

    def test_cohorts_from_frame_missing_column(self):
        with self.assertRaises(InvalidInputError):
            cohorts_from_frame(pd.DataFrame({'segment': ['a']}))


class TestCausalImpact(unittest.TestCase):
    """Tests for CausalImpactAnalyzer class."""

    @classmethod
    def setUpClass(cls):
        cls.intervention = 70
        cls.true_lift = 0.10
        cls.data = create_synthetic_impact_data(
            n_periods=100, intervention=cls.intervention, lift=cls.true_lift,
            random_state=42
        )
        cls.null_data = create_synthetic_impact_data(
            n_periods=100, intervention=cls.intervention, lift=0.0,
            random_state=42
        )
        cls.analyzer = CausalImpactAnalyzer(n_simulations=300)
        cls.pre, cls.post = periods_from_split(
            cls.data.index, cls.data.index[cls.intervention]
        )
        cls.result = cls.analyzer.analyze(cls.data, cls.pre, cls.post)

    def test_returns_result(self):
        self.assertIsInstance(self.result, CausalImpactResult)
        self.assertEqual(self.result.response_col, 'y')
        self.assertEqual(self.result.predictor_cols, ['x1', 'x2'])

    def test_effect_direction_correct(self):
        """Effect direction matches the true lift."""
        self.assertGreater(self.result.cumulative_effect, 0)
        self.assertGreater(self.result.relative_effect, 0)

    def test_effect_magnitude_reasonable(self):
        self.assertLess(abs(self.result.relative_effect - self.true_lift), 0.07)

    def test_effect_significant(self):
        self.assertTrue(self.result.significant)
        self.assertLess(self.result.p_value, 0.05)

    def test_intervals_contain_point_estimates(self):
        r = self.result
        self.assertLessEqual(r.cumulative_effect_lower, r.cumulative_effect)
        self.assertGreaterEqual(r.cumulative_effect_upper, r.cumulative_effect)
        self.assertLessEqual(r.average_effect_lower, r.average_effect)
        self.assertGreaterEqual(r.average_effect_upper, r.average_effect)
        self.assertLessEqual(r.relative_effect_lower, r.relative_effect)
        self.assertGreaterEqual(r.relative_effect_upper, r.relative_effect)

    def test_p_value_in_range(self):
        self.assertGreater(self.result.p_value, 0)
        self.assertLessEqual(self.result.p_value, 1)

    def test_significant_is_plain_bool(self):
        self.assertIs(type(self.result.significant), bool)

    def test_simulations_reproducible_without_global_seed(self):
        """Same random_state gives the same draws and leaves np.random alone."""
        np.random.seed(123)
        first = self.analyzer.analyze(self.data, self.pre, self.post)
        after = np.random.rand()

        np.random.seed(123)
        expected = np.random.rand()
        second = self.analyzer.analyze(self.data, self.pre, self.post)

        self.assertEqual(after, expected)
        self.assertEqual(first.p_value, second.p_value)
        self.assertEqual(first.cumulative_effect_lower, second.cumulative_effect_lower)
        self.assertEqual(first.cumulative_effect_upper, second.cumulative_effect_upper)

    def test_series_aligned_with_data(self):
        r = self.result
        self.assertTrue(r.predicted.index.equals(self.data.index))
        post = r.point_effect.iloc[self.intervention:]
        self.assertFalse(post.isna().any())
        self.assertAlmostEqual(
            r.cumulative_effect_series.iloc[-1], r.cumulative_effect, places=6
        )
        self.assertTrue(r.cumulative_effect_series.iloc[:self.intervention].isna().all())
        self.assertTrue(
            (r.predicted_lower.iloc[self.intervention:] <= r.predicted_upper.iloc[self.intervention:]).all()
        )

    def test_sums_and_averages_consistent(self):
        r = self.result
        n_post = len(self.data) - self.intervention
        self.assertAlmostEqual(r.average_effect * n_post, r.cumulative_effect, places=6)
        self.assertAlmostEqual(
            r.cumulative_actual, self.data['y'].iloc[self.intervention:].sum(), places=6
        )

    def test_no_lift_small_effect(self):
        result = self.analyzer.analyze(self.null_data, self.pre, self.post)
        self.assertLess(abs(result.relative_effect), 0.05)

    def test_pre_period_fit(self):
        self.assertLess(self.result.pre_period_mape, 10)
        self.assertGreater(self.result.pre_period_rmse, 0)

    def test_summary_and_report(self):
        summary = self.result.summary()
        self.assertEqual(list(summary.columns), ['Average', 'Cumulative'])
        self.assertEqual(len(summary), 10)
        self.assertAlmostEqual(
            summary.loc['Absolute effect', 'Cumulative'], self.result.cumulative_effect
        )

        report = self.result.report()
        self.assertIn('post-intervention period', report)
        self.assertIn('statistically significant', report)

    def test_response_only(self):
        """A model without predictors still runs."""
        result = self.analyzer.analyze(self.data[['y']], self.pre, self.post)
        self.assertEqual(result.predictor_cols, [])
        self.assertTrue(np.isfinite(result.cumulative_effect))

    def test_gap_between_periods_excluded(self):
        pre = (self.data.index[0], self.data.index[59])
        result = self.analyzer.analyze(self.data, pre, self.post)
        self.assertEqual(result.diagnostics['n_post'], 30)
        self.assertTrue(np.isfinite(result.predicted.iloc[65]))

    def test_string_period_labels(self):
        pre = ('2024-01-01', '2024-03-10')
        post = ('2024-03-11', '2024-04-09')
        result = self.analyzer.analyze(self.data, pre, post)
        self.assertEqual(result.post_period[0], pd.Timestamp('2024-03-11'))

    def test_overlapping_periods_rejected(self):
        with self.assertRaises(InvalidInputError):
            self.analyzer.analyze(
                self.data, self.pre, (self.data.index[60], self.data.index[-1])
            )

    def test_short_pre_period_rejected(self):
        with self.assertRaises(InvalidInputError):
            self.analyzer.analyze(
                self.data,
                (self.data.index[0], self.data.index[1]),
                (self.data.index[2], self.data.index[-1])
            )

    def test_missing_column_rejected(self):
        with self.assertRaises(InvalidInputError):
            self.analyzer.analyze(self.data, self.pre, self.post, response_col='revenue')

    def test_missing_predictor_values_rejected(self):
        data = self.data.copy()
        data.iloc[5, 1] = np.nan
        with self.assertRaises(InvalidInputError):
            self.analyzer.analyze(data, self.pre, self.post)

    def test_unsorted_index_rejected(self):
        with self.assertRaises(InvalidInputError):
            self.analyzer.analyze(self.data.iloc[::-1], self.pre, self.post)

    def test_periods_from_split(self):
        pre, post = periods_from_split(self.data.index, '2024-03-11')
        self.assertEqual(pre, (self.data.index[0], self.data.index[69]))
        self.assertEqual(post, (self.data.index[70], self.data.index[-1]))

        with self.assertRaises(InvalidInputError):
            periods_from_split(self.data.index, '2023-01-01')

    def test_placebo_test(self):
        placebo = self.analyzer.run_placebo_test(self.data, self.pre)

        self.assertIn('placebo_passed', placebo)
        self.assertGreater(placebo['placebo_pvalue'], 0)
        self.assertLessEqual(placebo['placebo_pvalue'], 1)
        self.assertLess(placebo['placebo_start'], self.data.index[self.intervention])


class TestSyntheticData(unittest.TestCase):

    def test_lift_scales_post_period(self):
        """Lift multiplies the post-intervention response."""
        base = create_synthetic_impact_data(n_periods=50, intervention=30, lift=0.0, random_state=3)
        lifted = create_synthetic_impact_data(n_periods=50, intervention=30, lift=0.2, random_state=3)

        np.testing.assert_allclose(lifted['y'].values[:30], base['y'].values[:30])
        np.testing.assert_allclose(lifted['y'].values[30:], base['y'].values[30:] * 1.2)
        np.testing.assert_allclose(lifted['x1'].values, base['x1'].values)


class TestIntegration(unittest.TestCase):
    """Integration tests for full workflow."""

    def test_end_to_end_workflow(self):
        """Complete workflow with a stubbed reporting client."""
        client = mock.MagicMock(spec=ReportingClient)
        client.fetch_cohorts.return_value = [
            Cohort('blog', ['u1', 'u2', 'u3']),
            Cohort('pricing', ['u2', 'u3', 'u4']),
        ]
        series = create_synthetic_impact_data(
            n_periods=90, intervention=60, lift=0.12, random_state=1
        ).rename(columns={'y': 'response'})
        client.fetch_timeseries.return_value = series

        config = AnalysisConfig(
            name='Integration Test',
            start_date='2024-01-01',
            end_date='2024-03-30',
            cohort_filters={'blog': 'ga:pagePath=~^/blog/', 'pricing': 'ga:pagePath==/pricing'},
            response_filter='ga:country==Germany',
            predictor_filters={'x1': 'ga:country==France', 'x2': 'ga:country==Spain'},
            intervention_date=str(series.index[60].date()),
            n_simulations=200,
            nseasons=None
        )
        runner = CohortImpactRunner(config, client, verbose=False)
        result = runner.run_full_analysis()

        self.assertIsInstance(result.overlap, OverlapReport)
        self.assertEqual(result.overlap.count('blog', 'pricing'), 2)
        self.assertGreater(result.causal_result.relative_effect, 0)
        self.assertIsNotNone(result.placebo)
        self.assertEqual(result.summary['overlap']['shared_by_all'], 2)
        self.assertIn(result.summary['causal_impact']['conclusion'],
                      ('POSITIVE_SIGNIFICANT', 'NOT_SIGNIFICANT'))

        args, kwargs = client.fetch_timeseries.call_args
        self.assertEqual(list(args[2]), ['response', 'x1', 'x2'])

        with tempfile.TemporaryDirectory() as tmp:
            path = runner.export_results(result, tmp)
            with open(path) as f:
                exported = json.load(f)
        self.assertEqual(exported['config']['name'], 'Integration Test')
        self.assertEqual(exported['overlap']['union_size'], 4)
        self.assertIn('Cumulative', exported['causal_impact'])
        self.assertIsInstance(exported['summary']['causal_impact']['significant'], bool)

    def test_causal_step_requires_intervention(self):
        client = mock.MagicMock(spec=ReportingClient)
        config = AnalysisConfig(name='x', start_date='2024-01-01', end_date='2024-01-31')
        runner = CohortImpactRunner(config, client, verbose=False)

        with self.assertRaises(ValueError):
            runner.run_causal_impact()


if __name__ == '__main__':
    unittest.main()
