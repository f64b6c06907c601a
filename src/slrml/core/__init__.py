"""
Core algorithms for phylogenetic likelihood calculation.

This module provides low-level computational routines:

- **Likelihood calculation**: Felsenstein's pruning algorithm with rescaling
- **Gradients**: analytic derivatives from a forward and a backward pass
- **Matrix operations**: Eigendecomposition and matrix exponential

These are expert-level functions typically not needed by end users.
The high-level API (:mod:`slrml.api`) provides easier access.
"""

from slrml.core.likelihood import (
    LikelihoodEngine,
    LikelihoodResult,
    TreeBuffers,
    TreeLikelihoodObjective,
)
from slrml.core.matrix import eigen_decompose_rev, matrix_exponential

__all__ = [
    "LikelihoodEngine",
    "LikelihoodResult",
    "TreeBuffers",
    "TreeLikelihoodObjective",
    "matrix_exponential",
    "eigen_decompose_rev",
]
