"""Simulation-based validation of the overlap and causal impact analyses."""

from .validator import AnalysisValidator, ValidationResult, check_partition

__all__ = ['AnalysisValidator', 'ValidationResult', 'check_partition']
