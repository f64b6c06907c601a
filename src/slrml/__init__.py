"""
slrml: Sitewise likelihood ratio tests for selection on codon alignments.

A maximum likelihood toolkit that fits a codon substitution model to an
alignment on a fixed tree, then estimates the dN/dS ratio (omega) at every
alignment column and tests it against neutral evolution.

Quick Start
-----------
Fit the codon model:

>>> from slrml import fit_model
>>> fit = fit_model("alignment.fasta", "tree.nwk")
>>> print(fit.summary())
>>> print(f"omega = {fit.omega:.4f}")

Test every site for selection:

>>> from slrml import sitewise
>>> result = sitewise("alignment.fasta", "tree.nwk")
>>> print(result.summary())
>>> result.to_tsv("sites.tsv")

Examples
--------
>>> # Only look for positive selection, without support intervals
>>> result = sitewise("data.fasta", "tree.nwk", positive_only=True, ldiff=0.0)
>>> print(result.selected_sites(alpha=0.05, adjusted=True))
"""

__version__ = "0.1.0"

# High-level API (simple interface)
from .api import fit_model, sitewise

# Result objects
from .analysis import FitResult, SitewiseResult, calculate_selection

# I/O classes (for advanced users)
from .io.sequences import Alignment
from .io.trees import Tree
from .io.patterns import SitePatterns

# Core likelihood engine and optimizer (expert use)
from .core.likelihood import LikelihoodEngine, TreeLikelihoodObjective
from .optimize import optimize

__all__ = [
    # Simple API - Start here!
    "fit_model",
    "sitewise",

    # Result objects
    "FitResult",
    "SitewiseResult",

    # Analysis
    "calculate_selection",

    # I/O (advanced)
    "Alignment",
    "Tree",
    "SitePatterns",

    # Core (expert)
    "LikelihoodEngine",
    "TreeLikelihoodObjective",
    "optimize",

    # Version
    "__version__",
]
