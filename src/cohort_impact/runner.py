"""
Cohort Impact Runner
====================

Unified interface for the two analyses: cohort overlap and the causal
impact of an intervention on a tracked metric.

Key Features:
- Fetches cohorts and metric series through a ReportingClient
- Overlap partition, Venn/bar rendering
- Structural time series causal impact with placebo check
- JSON export of results
"""

import json
import os
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

import pandas as pd

from .causal_impact import CausalImpactAnalyzer, CausalImpactResult, periods_from_split
from .overlap import OverlapReport, compute_overlap
from .reporting_client import ReportingClient


@dataclass
class AnalysisConfig:
    """Configuration for a cohort impact analysis."""
    # Basic settings
    name: str
    start_date: str
    end_date: str
    description: str = ""

    # Overlap settings: {cohort name: filters expression}
    cohort_filters: Dict[str, Optional[str]] = field(default_factory=dict)
    id_dimension: str = 'ga:clientId'
    cohort_metric: str = 'ga:sessions'
    n_jobs: int = 1

    # Causal impact settings
    response_filter: Optional[str] = None
    predictor_filters: Dict[str, Optional[str]] = field(default_factory=dict)
    metric: str = 'ga:sessions'
    intervention_date: Optional[str] = None
    credible_interval: float = 0.95
    n_simulations: int = 1000
    nseasons: Optional[int] = 7
    run_placebo: bool = True

    # Output
    output_dir: Optional[str] = None


@dataclass
class AnalysisResult:
    """Container for complete analysis results."""
    config: AnalysisConfig
    overlap: Optional[OverlapReport]
    causal_result: Optional[CausalImpactResult]
    placebo: Optional[Dict]
    summary: Dict
    run_timestamp: str
    runtime_seconds: float


class CohortImpactRunner:
    """
    End-to-End Cohort Impact Workflow

    Orchestrates:
    1. Cohort fetch and overlap partition
    2. Metric series fetch
    3. Causal impact analysis and placebo check
    4. Summary and export

    Parameters
    ----------
    config : AnalysisConfig
        Analysis configuration
    client : ReportingClient
        Reporting-API client used for every fetch
    verbose : bool
        Print progress messages
    """

    RESPONSE_COL = 'response'

    def __init__(
        self,
        config: AnalysisConfig,
        client: ReportingClient,
        verbose: bool = True
    ):
        self.config = config
        self.client = client
        self.verbose = verbose

        self.causal_analyzer = CausalImpactAnalyzer(
            credible_interval=config.credible_interval,
            n_simulations=config.n_simulations,
            nseasons=config.nseasons
        )

    def run_overlap(self) -> OverlapReport:
        """Fetch every configured cohort and compute their overlap."""
        if self.verbose:
            print("Fetching cohorts...")

        cohorts = self.client.fetch_cohorts(
            self.config.cohort_filters,
            self.config.start_date,
            self.config.end_date,
            id_dimension=self.config.id_dimension,
            metric=self.config.cohort_metric
        )
        report = compute_overlap(cohorts, n_jobs=self.config.n_jobs)

        if self.verbose:
            for name, size in report.cohort_sizes.items():
                print(f"  {name}: {size:,} members")
            print(f"  Distinct members: {report.union_size:,}")
            for cell in report:
                print(f"    - {cell.label}: {cell.count:,}")

        return report

    def fetch_series(self) -> pd.DataFrame:
        """Fetch the response and predictor series as one frame."""
        series = {self.RESPONSE_COL: self.config.response_filter}
        series.update(self.config.predictor_filters)
        return self.client.fetch_timeseries(
            self.config.start_date,
            self.config.end_date,
            series,
            metric=self.config.metric
        )

    def run_causal_impact(self, data: Optional[pd.DataFrame] = None):
        """
        Analyze the causal impact of the configured intervention.

        Returns the result and the placebo check (``None`` when disabled).
        """
        if self.config.intervention_date is None:
            raise ValueError("intervention_date is required for causal impact analysis")

        if data is None:
            if self.verbose:
                print("Fetching metric series...")
            data = self.fetch_series()

        if self.verbose:
            print("Analyzing causal impact...")

        pre_period, post_period = periods_from_split(data.index, self.config.intervention_date)
        result = self.causal_analyzer.analyze(data, pre_period, post_period)

        placebo = None
        if self.config.run_placebo:
            placebo = self.causal_analyzer.run_placebo_test(data, pre_period)

        if self.verbose:
            print(f"  Causal estimates:")
            print(f"    - Average effect: {result.average_effect:,.2f}")
            print(f"    - Cumulative effect: {result.cumulative_effect:,.2f}")
            print(f"    - Relative effect: {result.relative_effect:.1%}")
            print(f"    - P-value: {result.p_value:.4f}")
            print(f"    - Significant: {result.significant}")
            if placebo is not None:
                print(f"    - Placebo passed: {placebo['placebo_passed']}")

        return result, placebo

    def run_full_analysis(
        self,
        series_data: Optional[pd.DataFrame] = None
    ) -> AnalysisResult:
        """
        Run every configured analysis.

        The overlap step runs when ``cohort_filters`` is set and the
        causal step when ``intervention_date`` is set.
        """
        start_time = time.time()

        if self.verbose:
            print("=" * 60)
            print(f"COHORT IMPACT ANALYSIS: {self.config.name}")
            print("=" * 60)

        overlap = None
        if self.config.cohort_filters:
            if self.verbose:
                print("\n[1/2] Cohort Overlap")
            overlap = self.run_overlap()

        causal_result, placebo = None, None
        if self.config.intervention_date is not None:
            if self.verbose:
                print("\n[2/2] Causal Impact")
            causal_result, placebo = self.run_causal_impact(series_data)

        summary = self._generate_summary(overlap, causal_result, placebo)
        runtime = time.time() - start_time

        if self.verbose:
            print("\n" + "=" * 60)
            print("ANALYSIS COMPLETE")
            print(f"Runtime: {runtime:.1f}s")
            print("=" * 60)

        return AnalysisResult(
            config=self.config,
            overlap=overlap,
            causal_result=causal_result,
            placebo=placebo,
            summary=summary,
            run_timestamp=datetime.now().isoformat(),
            runtime_seconds=runtime
        )

    def _generate_summary(
        self,
        overlap: Optional[OverlapReport],
        causal: Optional[CausalImpactResult],
        placebo: Optional[Dict]
    ) -> Dict:
        """Generate executive summary of results."""
        summary = {}

        if overlap is not None:
            largest = max(overlap.cells.values(), key=lambda c: c.count, default=None)
            summary['overlap'] = {
                'cohorts': dict(overlap.cohort_sizes),
                'union_size': overlap.union_size,
                'n_cells': len(overlap),
                'largest_cell': largest.label if largest else None,
                'shared_by_all': overlap.count(*overlap.cohort_names)
            }

        if causal is not None:
            if causal.significant and causal.cumulative_effect > 0:
                conclusion = 'POSITIVE_SIGNIFICANT'
            elif causal.significant:
                conclusion = 'NEGATIVE_SIGNIFICANT'
            else:
                conclusion = 'NOT_SIGNIFICANT'

            summary['causal_impact'] = {
                'conclusion': conclusion,
                'relative_effect': f"{causal.relative_effect:.1%}",
                'cumulative_effect': causal.cumulative_effect,
                'p_value': f"{causal.p_value:.4f}",
                'significant': bool(causal.significant),
                'placebo_passed': placebo['placebo_passed'] if placebo else None
            }

        return summary

    def export_results(
        self,
        result: AnalysisResult,
        output_dir: Optional[str] = None
    ) -> str:
        """Export results to JSON file."""
        output_dir = output_dir or self.config.output_dir or '.'
        os.makedirs(output_dir, exist_ok=True)

        filename = f"{self.config.name.replace(' ', '_')}_{result.run_timestamp[:10]}.json"
        filepath = os.path.join(output_dir, filename)

        export_data = {
            'config': {
                'name': self.config.name,
                'description': self.config.description,
                'start_date': self.config.start_date,
                'end_date': self.config.end_date,
                'intervention_date': self.config.intervention_date
            },
            'summary': result.summary,
            'timestamp': result.run_timestamp
        }
        if result.overlap is not None:
            export_data['overlap'] = result.overlap.summary()
        if result.causal_result is not None:
            export_data['causal_impact'] = result.causal_result.summary().to_dict()

        with open(filepath, 'w') as f:
            json.dump(export_data, f, indent=2, default=str)

        if self.verbose:
            print(f"Results exported to: {filepath}")

        return filepath


def run_demo():
    """Run the workflow offline on synthetic data."""
    from .overlap import cohorts_from_frame
    from .synthetic import create_synthetic_cohorts, create_synthetic_impact_data

    print("=" * 70)
    print("COHORT IMPACT DEMONSTRATION")
    print("=" * 70)

    print("\n1. COHORT OVERLAP")
    print("-" * 40)
    pairs = create_synthetic_cohorts(n_cohorts=3, population=2000, random_state=42)
    report = compute_overlap(cohorts_from_frame(pairs))
    print(report.to_frame().to_string(index=False))
    print(f"\n   Pairwise intersections:\n{report.pairwise_intersections()}")

    print("\n2. CAUSAL IMPACT")
    print("-" * 40)
    true_lift = 0.10
    data = create_synthetic_impact_data(n_periods=100, intervention=70, lift=true_lift)
    analyzer = CausalImpactAnalyzer(n_simulations=500)
    result = analyzer.analyze_split(data, data.index[70])
    print(result.summary().round(2).to_string())
    print(f"\n   True lift: {true_lift:.0%}")
    print(f"   Estimated lift: {result.relative_effect:.1%}")
    print(f"\n{result.report()}")

    print("\n" + "=" * 70)
    print("DEMONSTRATION COMPLETE")
    print("=" * 70)

    return report, result


if __name__ == '__main__':
    run_demo()
