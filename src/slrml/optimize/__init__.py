"""
Optimization routines for maximum likelihood parameter estimation.

This module provides:

- **Bound-constrained optimizer**: quasi-Newton trust-region method with
  an active set for parameters at their bounds
- **Univariate routines**: Brent minimization and root finding

Objectives implement ``evaluate(x)`` and ``gradient(x)``.
"""

from slrml.optimize.objective import DifferentiableObjective, FunctionObjective
from slrml.optimize.optimizer import OptimizeResult, StepFlag, optimize
from slrml.optimize.univariate import brent_minimize, find_root, minimize_in_interval

__all__ = [
    "DifferentiableObjective",
    "FunctionObjective",
    "OptimizeResult",
    "StepFlag",
    "optimize",
    "brent_minimize",
    "find_root",
    "minimize_in_interval",
]
