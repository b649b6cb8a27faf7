"""
Statistical Validation Suite
============================

Validates the overlap analyzer and the causal impact analyzer against
known ground truth.

Key Validations:
- Overlap partition invariants on random cohorts
- Order and duplicate invariance, sharded == serial
- Type I error control (false positive rate not above alpha)
- Lift recovery accuracy on series with a known lift
"""

import random
from dataclasses import dataclass
from typing import Dict, Hashable, Iterable, List, Mapping, Optional

import numpy as np
from scipy import stats

from ..causal_impact import CausalImpactAnalyzer
from ..overlap import OverlapReport, compute_overlap
from ..synthetic import create_synthetic_impact_data


def check_partition(
    report: OverlapReport,
    cohorts: Mapping[str, Iterable[Hashable]]
) -> List[str]:
    """
    List every overlap invariant ``report`` violates for ``cohorts``.

    An empty list means the report is a valid partition.
    """
    sets = {name: set(members) for name, members in cohorts.items()}
    union = set().union(*sets.values()) if sets else set()
    problems = []

    total = sum(cell.count for cell in report.cells.values())
    if total != len(union):
        problems.append(f"cell counts sum to {total}, union has {len(union)}")
    if report.union_size != len(union):
        problems.append(f"union_size is {report.union_size}, expected {len(union)}")

    seen = set()
    for key, cell in report.cells.items():
        if cell.count <= 0:
            problems.append(f"empty cell {sorted(key)}")
        if cell.members is None:
            continue
        if len(cell.members) != cell.count:
            problems.append(f"cell {sorted(key)} count does not match its members")
        overlap = seen & cell.members
        if overlap:
            problems.append(f"{len(overlap)} identifier(s) in more than one cell")
        seen |= cell.members
        for identifier in cell.members:
            signature = frozenset(n for n, s in sets.items() if identifier in s)
            if signature != key:
                problems.append(f"{identifier!r} filed under {sorted(key)}")
                break

    if seen and seen != union:
        problems.append(f"{len(union - seen)} identifier(s) missing from every cell")

    return problems


@dataclass
class ValidationResult:
    """Container for lift recovery results."""
    true_lift: float
    mean_estimated_lift: float
    lift_bias: float
    lift_rmse: float
    coverage_probability: float
    detection_rate: float
    n_simulations: int


class AnalysisValidator:
    """
    Validates the analysis methodology via simulation.

    Parameters
    ----------
    n_simulations : int
        Number of simulated experiments per check
    n_periods : int
        Length of each simulated series
    intervention : int
        Row where the intervention starts
    alpha : float
        Significance level
    n_draws : int
        Posterior-predictive draws per analysis
    """

    def __init__(
        self,
        n_simulations: int = 50,
        n_periods: int = 100,
        intervention: int = 70,
        alpha: float = 0.05,
        n_draws: int = 300,
        random_state: int = 42
    ):
        self.n_simulations = n_simulations
        self.n_periods = n_periods
        self.intervention = intervention
        self.alpha = alpha
        self.random_state = random_state

        self.analyzer = CausalImpactAnalyzer(
            credible_interval=1 - alpha,
            n_simulations=n_draws,
            random_state=random_state
        )

    def validate_overlap_invariants(
        self,
        n_trials: int = 100,
        max_cohorts: int = 6,
        population: int = 200,
        check_sharded: bool = False,
        verbose: bool = True
    ) -> Dict:
        """
        Check partition, order and duplicate invariance on random cohorts.
        """
        rng = random.Random(self.random_state)
        failures = []

        for trial in range(n_trials):
            n_cohorts = rng.randint(1, max_cohorts)
            cohorts = {}
            for i in range(n_cohorts):
                size = rng.randint(0, population // 2)
                members = [rng.randrange(population) for _ in range(size)]
                cohorts[f'c{i}'] = members

            report = compute_overlap(cohorts)
            problems = check_partition(report, cohorts)

            reordered = dict(reversed(list(cohorts.items())))
            doubled = {name: list(members) * 2 for name, members in cohorts.items()}
            for variant in (reordered, doubled):
                other = compute_overlap(variant)
                if {k: c.count for k, c in other.cells.items()} != \
                        {k: c.count for k, c in report.cells.items()}:
                    problems.append("result depends on input order or duplicates")

            if check_sharded:
                sharded = compute_overlap(cohorts, n_jobs=2)
                if {k: c.members for k, c in sharded.cells.items()} != \
                        {k: c.members for k, c in report.cells.items()}:
                    problems.append("sharded result differs from serial result")

            if problems:
                failures.append({'trial': trial, 'problems': problems})

        passed = not failures
        if verbose:
            status = "[PASS]" if passed else "[FAIL]"
            print(f"  Overlap invariants: {n_trials - len(failures)}/{n_trials} trials {status}")

        return {
            'passed': passed,
            'n_trials': n_trials,
            'failures': failures
        }

    def _simulate(self, lift: float, seed: int):
        data = create_synthetic_impact_data(
            n_periods=self.n_periods,
            intervention=self.intervention,
            lift=lift,
            random_state=seed
        )
        return self.analyzer.analyze_split(data, data.index[self.intervention])

    def validate_type_i_error(
        self,
        n_simulations: Optional[int] = None,
        verbose: bool = True
    ) -> Dict:
        """
        Validate Type I error control (false positive rate <= alpha).

        Runs analyses with no true lift and tests whether the rejection
        rate is significantly above alpha (one-sided binomial test).
        """
        n_sims = n_simulations or self.n_simulations

        if verbose:
            print(f"Validating Type I error control ({n_sims} simulations)...")

        significant_count = 0
        for sim in range(n_sims):
            result = self._simulate(0.0, self.random_state + sim * 100)
            if result.significant:
                significant_count += 1

        type_i_error = significant_count / n_sims
        test = stats.binomtest(significant_count, n_sims, self.alpha, alternative='greater')
        passed = bool(test.pvalue >= 0.01)

        if verbose:
            status = "[PASS]" if passed else "[FAIL]"
            print(f"  Type I error: {type_i_error:.2%} (target: <={self.alpha:.0%}) {status}")

        return {
            'type_i_error': type_i_error,
            'target': self.alpha,
            'binomial_pvalue': test.pvalue,
            'passed': passed,
            'n_simulations': n_sims
        }

    def validate_lift_recovery(
        self,
        true_lifts: Iterable[float] = (0.05, 0.10),
        n_simulations: Optional[int] = None,
        tolerance: float = 0.02,
        verbose: bool = True
    ) -> Dict[float, ValidationResult]:
        """
        Validate lift recovery accuracy across effect sizes.

        For each true lift: bias, RMSE, interval coverage and the share
        of runs flagged significant.
        """
        n_sims = n_simulations or self.n_simulations
        results = {}

        for true_lift in true_lifts:
            if verbose:
                print(f"Validating lift = {true_lift:.0%}...", end=" ")

            estimates, covered, detected = [], [], []
            for sim in range(n_sims):
                result = self._simulate(true_lift, self.random_state + sim)
                # Lift is applied multiplicatively, so relative effect estimates it directly
                estimates.append(result.relative_effect)
                covered.append(
                    result.relative_effect_lower <= true_lift <= result.relative_effect_upper
                )
                detected.append(result.significant)

            estimates = np.array(estimates)
            bias = np.mean(estimates) - true_lift

            results[true_lift] = ValidationResult(
                true_lift=true_lift,
                mean_estimated_lift=float(np.mean(estimates)),
                lift_bias=float(bias),
                lift_rmse=float(np.sqrt(np.mean((estimates - true_lift) ** 2))),
                coverage_probability=float(np.mean(covered)),
                detection_rate=float(np.mean(detected)),
                n_simulations=n_sims
            )

            if verbose:
                status = "[PASS]" if abs(bias) < tolerance else "[FAIL]"
                print(f"Bias: {bias:+.2%} {status}")

        return results

    def run_full_validation(
        self,
        n_simulations: Optional[int] = None,
        verbose: bool = True
    ) -> Dict:
        """
        Run comprehensive validation suite.

        Returns summary of all validation checks.
        """
        n_sims = n_simulations or self.n_simulations

        if verbose:
            print("=" * 60)
            print("COHORT IMPACT VALIDATION SUITE")
            print(f"Simulations per test: {n_sims}")
            print("=" * 60)

        results = {}

        if verbose:
            print("\n[1/3] Overlap Invariants")
        results['overlap'] = self.validate_overlap_invariants(verbose=verbose)

        if verbose:
            print("\n[2/3] Type I Error Control")
        results['type_i'] = self.validate_type_i_error(n_sims, verbose=verbose)

        if verbose:
            print("\n[3/3] Lift Recovery Accuracy")
        lift_results = self.validate_lift_recovery(
            true_lifts=[0.10],
            n_simulations=max(1, n_sims // 2),
            verbose=verbose
        )
        results['lift_recovery'] = {
            str(k): {
                'bias': v.lift_bias,
                'rmse': v.lift_rmse,
                'coverage': v.coverage_probability,
                'passed': abs(v.lift_bias) < 0.02
            }
            for k, v in lift_results.items()
        }

        all_passed = (
            results['overlap']['passed'] and
            results['type_i']['passed'] and
            all(v['passed'] for v in results['lift_recovery'].values())
        )

        if verbose:
            print("\n" + "=" * 60)
            print("VALIDATION SUMMARY")
            print("=" * 60)
            print(f"\n  Overlap:       {'[PASS]' if results['overlap']['passed'] else '[FAIL]'}")
            print(f"  Type I Error:  {'[PASS]' if results['type_i']['passed'] else '[FAIL]'}")
            print(f"  Lift Recovery: {'[PASS]' if all(v['passed'] for v in results['lift_recovery'].values()) else '[FAIL]'}")
            print(f"\n  OVERALL: {'[PASS] ALL TESTS PASSED' if all_passed else '[FAIL] SOME TESTS FAILED'}")
            print("\n" + "=" * 60)

        results['all_passed'] = all_passed

        return results


if __name__ == '__main__':
    validator = AnalysisValidator(n_simulations=20)
    validator.run_full_validation()
