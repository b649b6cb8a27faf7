"""
Complete Cohort Impact Example
==============================

Demonstrates the full workflow on synthetic data:
- Overlap between blog, pricing and docs visitors
- Five-cohort overlap, where a Venn diagram stops being legible
- Causal impact of a site redesign on daily sessions

Run: python examples/complete_example.py
"""

import os
import sys

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from cohort_impact.causal_impact import CausalImpactAnalyzer, periods_from_split
from cohort_impact.overlap import compute_overlap, cohorts_from_frame
from cohort_impact.rendering import plot_causal_impact, plot_overlap
from cohort_impact.synthetic import create_synthetic_cohorts, create_synthetic_impact_data

OUTPUT_DIR = os.path.join(os.path.dirname(__file__), 'output')


def example_1_three_cohorts():
    """
    Example 1: Three-Cohort Overlap

    Which visitors read the blog, looked at pricing, or opened the docs,
    and how many did several of those?
    """
    print("\n" + "=" * 70)
    print("EXAMPLE 1: THREE-COHORT OVERLAP")
    print("=" * 70)

    pairs = create_synthetic_cohorts(n_cohorts=3, population=5000, random_state=42)
    pairs['segment'] = pairs['segment'].map({
        'cohort_A': 'blog', 'cohort_B': 'pricing', 'cohort_C': 'docs'
    })
    report = compute_overlap(cohorts_from_frame(pairs))

    print(f"\nCOHORT SIZES:")
    for name, size in report.cohort_sizes.items():
        print(f"  ├─ {name}: {size:,}")
    print(f"  └─ Distinct visitors: {report.union_size:,}")

    print(f"\nOVERLAP CELLS:")
    print(report.to_frame()[['label', 'count', 'share']].to_string(index=False))

    print(f"\nPAIRWISE INTERSECTIONS:")
    print(report.pairwise_intersections())

    ax = plot_overlap(report, title='Blog / pricing / docs visitors')
    ax.figure.savefig(os.path.join(OUTPUT_DIR, 'overlap_3.png'), dpi=150)
    plt.close(ax.figure)

    return report


def example_2_many_cohorts():
    """
    Example 2: Five Cohorts

    The data model handles any number of cohorts; only the drawing
    changes, from a Venn diagram to a bar chart of cells.
    """
    print("\n" + "=" * 70)
    print("EXAMPLE 2: FIVE-COHORT OVERLAP")
    print("=" * 70)

    pairs = create_synthetic_cohorts(n_cohorts=5, population=5000, random_state=7)
    report = compute_overlap(cohorts_from_frame(pairs), keep_members=False)

    print(f"\n  ├─ Non-empty cells: {len(report)} of {2 ** 5 - 1} possible")
    print(f"  └─ Shared by all five: {report.count(*report.cohort_names):,}")

    ax = plot_overlap(report, max_bars=12)
    ax.figure.savefig(os.path.join(OUTPUT_DIR, 'overlap_5.png'), dpi=150, bbox_inches='tight')
    plt.close(ax.figure)

    return report


def example_3_causal_impact():
    """
    Example 3: Causal Impact with Known Ground Truth

    Sessions on the redesigned site are compared against a counterfactual
    built from two unaffected control properties.
    """
    print("\n" + "=" * 70)
    print("EXAMPLE 3: CAUSAL IMPACT")
    print("=" * 70)

    true_lift = 0.08
    data = create_synthetic_impact_data(
        n_periods=120, intervention=90, lift=true_lift, random_state=42
    )
    data = data.rename(columns={'y': 'sessions', 'x1': 'control_a', 'x2': 'control_b'})
    pre_period, post_period = periods_from_split(data.index, data.index[90])

    print(f"  ├─ Pre-period: {pre_period[0].date()} to {pre_period[1].date()}")
    print(f"  ├─ Post-period: {post_period[0].date()} to {post_period[1].date()}")
    print(f"  └─ True lift: {true_lift:.0%}")

    analyzer = CausalImpactAnalyzer(n_simulations=1000, nseasons=7)
    result = analyzer.analyze(data, pre_period, post_period)

    print(f"\nSUMMARY:")
    print(result.summary().round(2).to_string())

    print(f"\nDIAGNOSTICS:")
    print(f"  ├─ Pre-period MAPE: {result.pre_period_mape:.2f}%")
    print(f"  ├─ Estimated lift: {result.relative_effect:.1%}")
    print(f"  └─ P-value: {result.p_value:.4f}")

    placebo = analyzer.run_placebo_test(data, pre_period)
    print(f"\nPLACEBO (fake intervention {placebo['placebo_start'].date()}):")
    print(f"  └─ Passed: {placebo['placebo_passed']} (p = {placebo['placebo_pvalue']:.3f})")

    print(f"\nREPORT:\n{result.report()}")

    fig = plot_causal_impact(result, save_path=os.path.join(OUTPUT_DIR, 'causal_impact.png'))
    plt.close(fig)

    return result


if __name__ == '__main__':
    os.makedirs(OUTPUT_DIR, exist_ok=True)

    example_1_three_cohorts()
    example_2_many_cohorts()
    example_3_causal_impact()

    print("\n" + "=" * 70)
    print(f"ALL EXAMPLES COMPLETE (plots in {OUTPUT_DIR})")
    print("=" * 70)
