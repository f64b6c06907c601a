"""
Statistical analysis tools for molecular evolution.

This module provides the sitewise analysis of selection: per-site estimates
of omega, support intervals and likelihood ratio tests against neutral
evolution.
"""

from .sitewise import calculate_selection, create_grid
from .results import FitResult, SitewiseResult
from .lrt import bonferroni_adjust, calculate_lrt

__all__ = [
    "calculate_selection",
    "create_grid",
    "FitResult",
    "SitewiseResult",
    "bonferroni_adjust",
    "calculate_lrt",
]
