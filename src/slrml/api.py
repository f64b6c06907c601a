"""
High-level API for slrml.

This module provides a simplified interface for fitting the codon model to
an alignment and running the sitewise likelihood ratio analysis, with
automatic file loading and result objects.
"""

from pathlib import Path
from typing import Optional, Union

import numpy as np

from .analysis.results import FitResult, SitewiseResult
from .analysis.sitewise import DEFAULT_LDIFF, calculate_selection
from .core.likelihood import BRANCH_OPTIONS, LikelihoodEngine, TreeLikelihoodObjective
from .io.patterns import SitePatterns
from .io.sequences import Alignment
from .io.trees import Tree
from .models.codon import (
    CodonModel,
    compute_codon_frequencies_f1x4,
    compute_codon_frequencies_f3x4,
    compute_codon_frequencies_f61,
)
from .optimize.optimizer import optimize

CODON_FREQUENCIES = {
    'f1x4': compute_codon_frequencies_f1x4,
    'f3x4': compute_codon_frequencies_f3x4,
    'f61': compute_codon_frequencies_f61,
}

# Bounds for every parameter of the global fit
LOWER_BOUND = 1e-8
UPPER_BOUND = 50.0

# Means of the exponential draws replacing unset starting values
RANDOM_KAPPA_MEAN = 2.0
RANDOM_OMEGA_MEAN = 0.1
RANDOM_BRANCH_MEAN = 0.1


# =============================================================================
# File loading helpers
# =============================================================================

def load_alignment(alignment: Union[str, Path, Alignment]) -> Alignment:
    """
    Load a codon alignment.

    The format (FASTA or PHYLIP) is detected from the file contents.

    Parameters
    ----------
    alignment : str, Path, or Alignment
        Path to alignment file or Alignment object

    Raises
    ------
    FileNotFoundError
        If the alignment file doesn't exist
    ValueError
        If parsing fails
    """
    if isinstance(alignment, Alignment):
        return alignment

    path = Path(alignment)
    if not path.exists():
        raise FileNotFoundError(f"Alignment file not found: {path}")

    try:
        return Alignment.from_file(path, seqtype='codon')
    except ValueError as e:
        raise ValueError(f"Failed to load alignment from {path}: {e}") from e


def load_tree(tree: Union[str, Path, Tree]) -> Tree:
    """
    Load tree from Newick file or string.

    Parameters
    ----------
    tree : str, Path, or Tree
        Path to tree file, Newick string, or Tree object

    Raises
    ------
    ValueError
        If tree parsing fails
    """
    if isinstance(tree, Tree):
        return tree

    path_or_str = str(tree)
    path = Path(path_or_str)
    if not path_or_str.lstrip().startswith('(') and path.exists():
        with open(path) as f:
            newick_str = f.read().strip()
    else:
        newick_str = path_or_str.strip()

    try:
        return Tree.from_newick(newick_str)
    except (ValueError, IndexError) as e:
        raise ValueError(f"Failed to parse tree: {e}") from e


def codon_frequencies(patterns: SitePatterns, method: str = 'f3x4') -> np.ndarray:
    """Estimate codon frequencies by name ('f1x4', 'f3x4' or 'f61')."""
    try:
        estimator = CODON_FREQUENCIES[method.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown codon frequency method: {method}. "
            f"Choose from {sorted(CODON_FREQUENCIES)}"
        )
    return estimator(patterns)


# =============================================================================
# Main API functions
# =============================================================================

def fit_model(
    alignment: Union[str, Path, Alignment],
    tree: Union[str, Path, Tree],
    kappa: float = 2.0,
    omega: float = 0.1,
    codon_freq: str = 'f3x4',
    branches: str = 'variable',
    reoptimise: bool = True,
    seed: Optional[int] = None,
    tol: float = 3e-8,
    verbose: int = 0,
) -> FitResult:
    """
    Fit the codon model to an alignment by maximum likelihood.

    Parameters
    ----------
    alignment : str, Path, or Alignment
        Codon alignment (FASTA or PHYLIP)
    tree : str, Path, or Tree
        Newick tree; the object passed in is not modified
    kappa, omega : float
        Starting values. A negative value is replaced by a random draw.
    codon_freq : str
        Codon frequency estimator, 'f1x4', 'f3x4' or 'f61'
    branches : str
        "variable" to estimate every branch length, "proportional" to
        estimate one factor multiplying all of them, "fixed" to keep them
    reoptimise : bool
        Optimize the parameters. If False the starting values are only
        evaluated, unless the tree has branches without lengths.
    seed : int, optional
        Seed for the random draws
    tol : float
        Optimizer convergence tolerance
    verbose : int
        Verbosity level passed to the optimizer

    Returns
    -------
    FitResult

    Raises
    ------
    ValueError
        If the inputs are inconsistent or cannot be parsed
    FileNotFoundError
        If an input file doesn't exist

    Examples
    --------
    >>> from slrml import fit_model
    >>> fit = fit_model("alignment.fasta", "tree.nwk")
    >>> print(fit.summary())
    """
    if branches not in BRANCH_OPTIONS:
        raise ValueError(f"branches must be one of {BRANCH_OPTIONS}, got {branches!r}")

    alignment = load_alignment(alignment)
    tree = load_tree(tree).copy()
    patterns = SitePatterns.from_alignment(alignment)
    pi = codon_frequencies(patterns, codon_freq)
    rng = np.random.default_rng(seed)

    n_random = tree.randomize_unset_branch_lengths(rng, mean=RANDOM_BRANCH_MEAN)
    if n_random > 0:
        if verbose:
            print(
                "Found branch of undetermined or invalid length. "
                "Set to random value and will optimise branch lengths"
            )
        reoptimise = True
        branches = 'variable'

    if kappa < 0.0:
        kappa = rng.exponential(RANDOM_KAPPA_MEAN)
    if omega < 0.0:
        omega = rng.exponential(RANDOM_OMEGA_MEAN)

    model = CodonModel(kappa=kappa, omega=omega, pi=pi)
    engine = LikelihoodEngine(tree, patterns, model)

    if not reoptimise:
        lnL = engine.evaluate().log_likelihood
        return FitResult(
            lnL=lnL, kappa=model.kappa, omega=model.omega, tree=tree, pi=model.pi,
            branches=branches, converged=True, n_eval=1, optimized=False,
        )

    objective = TreeLikelihoodObjective(engine, branches=branches)
    lower, upper = objective.bounds(LOWER_BOUND, UPPER_BOUND)
    x0 = np.clip(objective.x0(), lower, upper)

    if verbose:
        print(f"Starting optimization of {objective.n_params} parameters")
        print(f"Initial: kappa={model.kappa:.4f}, omega={model.omega:.4f}")

    result = optimize(objective, x0, lower, upper, tol=tol, verbose=verbose)
    objective.apply(result.x)

    if verbose:
        print(f"lnL = {-result.fun:.3f}")

    return FitResult(
        lnL=-result.fun,
        kappa=model.kappa,
        omega=model.omega,
        tree=tree,
        pi=model.pi,
        branches=branches,
        converged=result.converged,
        n_eval=result.n_eval,
        diagnostics=result.diagnostics,
        optimized=True,
    )


def sitewise(
    alignment: Union[str, Path, Alignment],
    tree: Union[str, Path, Tree],
    kappa: float = 2.0,
    omega: float = 0.1,
    codon_freq: str = 'f3x4',
    branches: str = 'variable',
    reoptimise: bool = True,
    positive_only: bool = False,
    ldiff: float = DEFAULT_LDIFF,
    seed: Optional[int] = None,
    verbose: int = 0,
) -> SitewiseResult:
    """
    Fit the codon model, then estimate and test omega at every site.

    Parameters are as for :func:`fit_model`, plus:

    positive_only : bool
        Only look for positive selection (omega >= 1)
    ldiff : float
        Log-likelihood drop defining the support interval of each site's
        omega; 0 disables support intervals

    Returns
    -------
    SitewiseResult
        Per-site results, with the global fit in its ``fit`` attribute

    Examples
    --------
    >>> from slrml import sitewise
    >>> result = sitewise("alignment.fasta", "tree.nwk")
    >>> result.to_tsv("sites.tsv")
    >>> result.selected_sites(0.05)
    """
    alignment = load_alignment(alignment)
    fit = fit_model(
        alignment, tree, kappa=kappa, omega=omega, codon_freq=codon_freq,
        branches=branches, reoptimise=reoptimise, seed=seed, verbose=verbose,
    )
    patterns = SitePatterns.from_alignment(alignment)
    result = calculate_selection(
        fit.tree, patterns, fit.kappa, fit.omega, fit.pi,
        ldiff=ldiff, positive_only=positive_only, verbose=bool(verbose),
    )
    result.fit = fit
    return result
