"""
Plotting for overlap reports and causal impact results.

Area-proportional Venn diagrams only work for two or three cohorts, so
any other cohort count (or a degenerate report) is drawn as a bar chart
of overlap cells instead.
"""

from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
from matplotlib_venn import venn2, venn3

from .causal_impact import CausalImpactResult
from .overlap import OverlapReport

# Region order expected by matplotlib-venn, as cohort-position bitmasks
_VENN2_REGIONS = ['10', '01', '11']
_VENN3_REGIONS = ['100', '010', '110', '001', '101', '011', '111']


def venn_subsets(report: OverlapReport) -> tuple:
    """Cell counts in the region order used by ``venn2``/``venn3``."""
    names = report.cohort_names
    if len(names) == 2:
        regions = _VENN2_REGIONS
    elif len(names) == 3:
        regions = _VENN3_REGIONS
    else:
        raise ValueError(f"Venn subsets need 2 or 3 cohorts, got {len(names)}")

    subsets = []
    for mask in regions:
        selected = [name for name, bit in zip(names, mask) if bit == '1']
        subsets.append(report.count(*selected))
    return tuple(subsets)


def _can_draw_venn(report: OverlapReport) -> bool:
    return (
        len(report.cohort_names) in (2, 3)
        and all(size > 0 for size in report.cohort_sizes.values())
    )


def plot_overlap(
    report: OverlapReport,
    ax=None,
    title: Optional[str] = None,
    max_bars: Optional[int] = None
):
    """
    Draw an overlap report.

    Parameters
    ----------
    report : OverlapReport
        Output of ``compute_overlap``
    ax : matplotlib Axes, optional
        Axes to draw on (default: a new figure)
    title : str, optional
        Plot title
    max_bars : int, optional
        Show only the largest cells in the bar chart fallback

    Returns
    -------
    matplotlib Axes
    """
    if ax is None:
        _, ax = plt.subplots(figsize=(8, 6))

    if _can_draw_venn(report):
        subsets = venn_subsets(report)
        draw = venn2 if len(report.cohort_names) == 2 else venn3
        draw(subsets=subsets, set_labels=report.cohort_names, ax=ax)
    else:
        cells = sorted(report.cells.values(), key=lambda c: c.count, reverse=True)
        if max_bars is not None:
            cells = cells[:max_bars]

        labels = [cell.label for cell in cells]
        counts = [cell.count for cell in cells]
        positions = np.arange(len(cells))

        ax.barh(positions, counts, color='#2E86AB', alpha=0.8)
        ax.set_yticks(positions)
        ax.set_yticklabels(labels)
        ax.invert_yaxis()
        ax.set_xlabel('Members in exactly these cohorts')
        for pos, count in zip(positions, counts):
            ax.annotate(f'{count:,}', (count, pos), xytext=(3, 0),
                        textcoords='offset points', va='center', fontsize=9)
        ax.grid(True, axis='x', alpha=0.3)

    ax.set_title(title or f'Cohort overlap ({report.union_size:,} distinct members)')
    return ax


def plot_causal_impact(
    result: CausalImpactResult,
    figsize=(14, 10),
    save_path: Optional[str] = None
):
    """
    Three-panel causal impact plot.

    Observed vs counterfactual, pointwise effect and cumulative effect,
    each with its interval band and the intervention marked.
    """
    fig, axes = plt.subplots(3, 1, figsize=figsize, sharex=True)
    index = result.actual.index
    intervention = result.post_period[0]
    level = f'{result.credible_interval:.0%} interval'

    ax1 = axes[0]
    ax1.plot(index, result.actual, '-', color='black', linewidth=1.5, label='Observed')
    ax1.plot(index, result.predicted, '--', color='#2E86AB', linewidth=1.5,
             label='Counterfactual')
    ax1.fill_between(index, result.predicted_lower, result.predicted_upper,
                     color='#2E86AB', alpha=0.2, label=level)
    ax1.set_ylabel(result.response_col)
    ax1.set_title('Observed vs. counterfactual')
    ax1.legend(loc='best')

    ax2 = axes[1]
    ax2.plot(index, result.point_effect, '--', color='#F18F01', linewidth=1.5,
             label='Pointwise effect')
    ax2.fill_between(index, result.point_effect_lower, result.point_effect_upper,
                     color='#F18F01', alpha=0.2, label=level)
    ax2.axhline(0, color='black', linewidth=0.8, alpha=0.5)
    ax2.set_ylabel('Pointwise effect')
    ax2.legend(loc='best')

    ax3 = axes[2]
    ax3.plot(index, result.cumulative_effect_series, '-', color='#06A77D', linewidth=1.5,
             label='Cumulative effect')
    ax3.axhline(0, color='black', linewidth=0.8, alpha=0.5)
    ax3.set_ylabel('Cumulative effect')
    ax3.legend(loc='best')

    for ax in axes:
        ax.axvline(intervention, color='red', linestyle=':', linewidth=2, alpha=0.7)
        ax.grid(True, alpha=0.3)

    fig.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')

    return fig
