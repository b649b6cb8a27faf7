# Cohort Impact Core Module
"""
Cohort Overlap and Causal Impact Analysis

Core components:
- compute_overlap: Exact overlap partition between labelled cohorts
- ReportingClient: Reporting-API client for cohorts and metric series
- CausalImpactAnalyzer: Structural time series causal impact
- plot_overlap / plot_causal_impact: Venn diagrams and impact plots
- CohortImpactRunner: Unified interface for the full workflow
"""

from .exceptions import InvalidInputError
from .overlap import Cohort, OverlapCell, OverlapReport, compute_overlap, cohorts_from_frame
from .config import ReportingConfig
from .reporting_client import ReportingClient
from .causal_impact import CausalImpactAnalyzer, CausalImpactResult, periods_from_split
from .runner import CohortImpactRunner, AnalysisConfig, AnalysisResult

__all__ = [
    'InvalidInputError',
    'Cohort',
    'OverlapCell',
    'OverlapReport',
    'compute_overlap',
    'cohorts_from_frame',
    'ReportingConfig',
    'ReportingClient',
    'CausalImpactAnalyzer',
    'CausalImpactResult',
    'periods_from_split',
    'CohortImpactRunner',
    'AnalysisConfig',
    'AnalysisResult'
]

__version__ = '1.0.0'
