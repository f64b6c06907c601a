"""
Sitewise estimation of selection.

With the tree and kappa fixed at their global estimates, omega is estimated
separately for every alignment column and compared against neutral
evolution (omega = 1) by a likelihood ratio test.

Starting values come from a grid: the likelihood of every site pattern is
computed for each omega on the grid in one pass over the tree, which is far
cheaper than evaluating patterns one at a time. Each pattern is then
optimized individually from its best grid point.
"""

import numpy as np

from ..core.likelihood import LikelihoodEngine
from ..io.patterns import ALL_GAP, SitePatterns
from ..io.sequences import codon_amino_acid
from ..io.trees import Tree
from ..models.codon import CodonModel
from ..optimize.univariate import find_root, minimize_in_interval
from .lrt import bonferroni_adjust, calculate_lrt
from .results import (
    SITE_ALL_GAPS,
    SITE_CONSTANT,
    SITE_SINGLE_CHAR,
    SITE_SYNONYMOUS,
    SITE_VARIABLE,
    SitewiseResult,
)

GRID_SIZE = 50
OMEGA_MAX_GRID = 50.0
OMEGA_EXP_CONST = 0.5
OMEGA_MAX = 99.0
SUPPORT_TOL = 1e-3
DEFAULT_LDIFF = 3.841459


def create_grid(length: int = GRID_SIZE, positive: bool = False) -> np.ndarray:
    """
    Omega values for the initial grid search.

    Points are spaced exponentially from 0 (or 1 when only positive
    selection is of interest) up to 50, dense near the lower end.

    Parameters
    ----------
    length : int
        Number of grid points (at least 2)
    positive : bool
        Start the grid at 1 instead of 0
    """
    if length < 2:
        raise ValueError("Grid needs at least two points")
    offset = 1.0 if positive else 0.0
    expconst = (OMEGA_MAX_GRID - offset) / np.expm1(OMEGA_EXP_CONST * (length - 1))
    return expconst * np.expm1(OMEGA_EXP_CONST * np.arange(length)) + offset


def neutral_scale_factor(kappa: float, omega: float, pi: np.ndarray) -> float:
    """
    Factor converting branch lengths fitted at omega to neutral units.

    Branch lengths of the global fit are expected substitutions per codon at
    the fitted omega; the sitewise model measures time by the substitution
    rate at omega = 1.
    """
    fitted = CodonModel(kappa=kappa, omega=omega, pi=pi)
    return fitted.rate_scale_at(1.0) / fitted.rate_scale()


def classify_column(observed: np.ndarray) -> int:
    """Classify an alignment column of observed codon indices."""
    if len(set(observed.tolist())) == 1:
        return SITE_CONSTANT
    if len({codon_amino_acid(int(c)) for c in observed}) == 1:
        return SITE_SYNONYMOUS
    return SITE_VARIABLE


class SitewiseEstimator:
    """
    Per-pattern estimation of omega on a fixed tree.

    Parameters
    ----------
    tree : Tree
        Tree with branch lengths in neutral units (not modified)
    patterns : SitePatterns
        Compressed codon alignment
    model : CodonModel
        Site model; its omega is varied, its normalization must be fixed
    positive_only : bool
        Restrict omega to [1, 99]
    tol : float
        Relative tolerance of the omega estimates
    """

    def __init__(
        self,
        tree: Tree,
        patterns: SitePatterns,
        model: CodonModel,
        positive_only: bool = False,
        tol: float = 1e-5,
    ):
        self.tree = tree
        self.patterns = patterns
        self.model = model
        self.positive_only = positive_only
        self.tol = tol
        self.lower_bound = 1.0 if positive_only else 0.0
        self.upper_bound = OMEGA_MAX
        self.engine = LikelihoodEngine(tree, patterns, model)

    def pattern_objective(self, omega: float) -> np.ndarray:
        """Negated log-likelihood of every pattern at one omega."""
        self.model.set_param(1, omega)
        result = self.engine.evaluate()
        return -result.pattern_log_likelihood

    def grid_objective(self, grid: np.ndarray) -> np.ndarray:
        """
        Negated pattern log-likelihoods over a grid of omega values.

        Returns
        -------
        ndarray, shape (n_patterns, len(grid))
        """
        values = np.empty((self.patterns.n_patterns, len(grid)))
        for row, omega in enumerate(grid):
            values[:, row] = self.pattern_objective(omega)
        return values

    def single_pattern_objective(self, pattern_id: int):
        """Negated log-likelihood of one pattern as a function of omega."""
        engine = LikelihoodEngine(self.tree, self.patterns.subset([pattern_id]), self.model)

        def objective(omega: float) -> float:
            self.model.set_param(1, omega)
            value = -engine.evaluate().pattern_log_likelihood[0]
            return value if np.isfinite(value) else np.inf

        return objective

    def estimate(self, pattern_id: int, grid: np.ndarray, grid_values: np.ndarray, ldiff: float):
        """
        Maximum likelihood omega of one pattern, with a support interval.

        Returns
        -------
        omega : float
            Estimate
        f_max : float
            Negated log-likelihood at the estimate
        lower, upper : float
            Support interval (NaN when ldiff is zero)
        """
        fun = self.single_pattern_objective(pattern_id)
        start = int(np.argmin(grid_values))
        lb = grid[start - 1] if start > 0 else self.lower_bound
        ub = grid[start + 1] if start < len(grid) - 1 else self.upper_bound
        res = minimize_in_interval(fun, lb, ub, grid[start], tol=self.tol)
        omega, f_max = res.x, res.fun

        lower = upper = np.nan
        if ldiff > 0.0:
            target = f_max + ldiff / 2.0
            f_lower = fun(self.lower_bound)
            if f_lower - f_max <= ldiff / 2.0:
                lower = self.lower_bound
            else:
                lower = find_root(
                    fun, self.lower_bound, omega, target=target, tol=SUPPORT_TOL,
                    f_lb=f_lower, f_ub=f_max,
                ).x
            f_upper = fun(self.upper_bound)
            if f_upper - f_max <= ldiff / 2.0:
                upper = self.upper_bound
            else:
                upper = find_root(
                    fun, omega, self.upper_bound, target=target, tol=SUPPORT_TOL,
                    f_lb=f_max, f_ub=f_upper,
                ).x

        # Leave the shared model at the estimate for callers inspecting it
        self.model.set_param(1, omega)
        return omega, f_max, lower, upper


def calculate_selection(
    tree: Tree,
    patterns: SitePatterns,
    kappa: float,
    omega: float,
    pi: np.ndarray,
    ldiff: float = DEFAULT_LDIFF,
    positive_only: bool = False,
    grid_size: int = GRID_SIZE,
    tol: float = 1e-5,
    verbose: bool = False,
) -> SitewiseResult:
    """
    Estimate omega at every alignment column and test it against omega = 1.

    Parameters
    ----------
    tree : Tree
        Tree with branch lengths from the global fit (not modified)
    patterns : SitePatterns
        Compressed codon alignment
    kappa, omega : float
        Global estimates
    pi : np.ndarray
        Codon frequencies
    ldiff : float
        Log-likelihood drop defining the support interval; 0 disables
        support intervals
    positive_only : bool
        Only look for positive selection (omega restricted to [1, 99],
        mixture null distribution for the test)
    grid_size : int
        Number of points in the starting-value grid
    tol : float
        Relative tolerance of the omega estimates
    verbose : bool
        Print progress

    Returns
    -------
    SitewiseResult
    """
    if patterns.n_states != CodonModel.n_states:
        raise ValueError("Sitewise analysis requires a codon alignment")
    if kappa < 0.0 or omega < 0.0:
        raise ValueError("kappa and omega must be non-negative")
    if ldiff < 0.0:
        raise ValueError("ldiff must be non-negative")

    fitted = CodonModel(kappa=kappa, omega=omega, pi=pi)
    neutral_rate = fitted.rate_scale_at(1.0)
    factor = neutral_scale_factor(kappa, omega, fitted.pi)

    site_tree = tree.copy()
    site_tree.scale(factor)
    if verbose:
        print(f"Scaling tree to neutral evolution. Factor = {factor:3.2f}")

    model = CodonModel(kappa=kappa, omega=1.0, pi=fitted.pi, normalization=neutral_rate)
    estimator = SitewiseEstimator(site_tree, patterns, model, positive_only=positive_only, tol=tol)

    grid = create_grid(grid_size, positive_only)
    if verbose:
        print("Calculating initial estimates of sitewise conservation")
    grid_values = estimator.grid_objective(grid)
    neutral_values = estimator.pattern_objective(1.0)

    n_sites = patterns.n_sites
    lnL_neutral = np.zeros(n_sites)
    lnL_max = np.zeros(n_sites)
    omega_site = np.ones(n_sites)
    lower = np.full(n_sites, np.nan)
    upper = np.full(n_sites, np.nan)
    site_type = np.zeros(n_sites, dtype=int)

    log_pi = np.log(model.pi)
    solved = {}

    if verbose:
        print("Calculating conservation at each site. This may take a while.")

    for site in range(n_sites):
        idx = int(patterns.index[site])
        if idx == ALL_GAP:
            site_type[site] = SITE_ALL_GAPS
            if ldiff > 0.0:
                lower[site], upper[site] = estimator.lower_bound, estimator.upper_bound
        elif idx < 0:
            lnL_neutral[site] = lnL_max[site] = log_pi[-idx - 1]
            site_type[site] = SITE_SINGLE_CHAR
            if ldiff > 0.0:
                lower[site], upper[site] = estimator.lower_bound, estimator.upper_bound
        else:
            if idx not in solved:
                omega_hat, f_max, lb, ub = estimator.estimate(idx, grid, grid_values[idx], ldiff)
                solved[idx] = (
                    -neutral_values[idx], -f_max, omega_hat, lb, ub,
                    classify_column(patterns.column(site)),
                )
            (lnL_neutral[site], lnL_max[site], omega_site[site],
             lower[site], upper[site], site_type[site]) = solved[idx]

        if verbose:
            if site % 50 == 0:
                print(f"\n{site + 1:4d}:  ", end="")
            print(".", end="", flush=True)

    if verbose:
        print()

    lrt, pvalue = calculate_lrt(lnL_neutral, lnL_max, df=1, mixture=positive_only)
    adjusted = bonferroni_adjust(pvalue, tested=patterns.index >= 0)

    return SitewiseResult(
        kappa=float(kappa),
        omega=float(omega),
        tree_scale=float(factor),
        lnL_neutral=lnL_neutral,
        lnL_max=lnL_max,
        omega_site=omega_site,
        lower=lower,
        upper=upper,
        site_type=site_type,
        lrt=lrt,
        pvalue=pvalue,
        adjusted_pvalue=adjusted,
        positive_only=positive_only,
        ldiff=float(ldiff),
    )
