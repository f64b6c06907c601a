"""
Likelihood ratio test utilities for sitewise selection.
"""

import warnings

import numpy as np
from scipy.stats import chi2

# Negative statistics above this are numerical noise and are clamped silently
NEGATIVE_LRT_TOL = 1e-3


def calculate_lrt(lnL_null, lnL_alt, df=1, mixture=False):
    """
    Calculate likelihood ratio test statistics and p-values.

    The likelihood ratio test statistic is:
        LRT = 2 * (lnL_alt - lnL_null)

    Under the null hypothesis, LRT follows a chi-square distribution with
    ``df`` degrees of freedom. When the null value lies on the boundary of
    the parameter space (testing omega > 1 against omega = 1 with omega
    restricted to [1, inf)), the null distribution is a 50:50 mixture of a
    point mass at zero and chi-square(df), and p-values below one are
    halved.

    Parameters
    ----------
    lnL_null : float or array-like
        Log-likelihood(s) under the null model
    lnL_alt : float or array-like
        Log-likelihood(s) under the alternative model
    df : int
        Degrees of freedom
    mixture : bool
        Use the 50:50 mixture null distribution

    Returns
    -------
    lrt_statistic : ndarray
        LRT statistics, clamped at zero
    pvalue : ndarray
        P-values

    Notes
    -----
    A negative statistic means the alternative fitted worse than the null,
    which happens only through numerical error or a failed optimization. It
    is set to zero (p-value 1); a warning is issued when it is larger than
    rounding noise.
    """
    lnL_null = np.asarray(lnL_null, dtype=float)
    lnL_alt = np.asarray(lnL_alt, dtype=float)
    lrt_statistic = 2.0 * (lnL_alt - lnL_null)

    n_negative = int(np.count_nonzero(lrt_statistic < -NEGATIVE_LRT_TOL))
    if n_negative > 0:
        warnings.warn(
            f"Negative LRT detected at {n_negative} site(s) "
            f"(minimum {lrt_statistic.min():.6f}). "
            "This suggests the null model fits better than the alternative. "
            "Setting LRT=0 and p-value=1.0. Check optimization convergence.",
            UserWarning
        )
    lrt_statistic = np.where(lrt_statistic > 0.0, lrt_statistic, 0.0)

    pvalue = chi2.sf(lrt_statistic, df)
    if mixture:
        pvalue = np.where(pvalue + np.finfo(float).eps < 1.0, 0.5 * pvalue, pvalue)

    return lrt_statistic, pvalue


def bonferroni_adjust(pvalues, tested=None):
    """
    Bonferroni adjustment for multiple testing.

    Parameters
    ----------
    pvalues : array-like
        Unadjusted p-values
    tested : array-like of bool, optional
        Which p-values belong to real tests. Untested entries (columns with
        no information about selection) get an adjusted p-value of one and
        do not count towards the number of tests.

    Returns
    -------
    ndarray
        Adjusted p-values, min(1, n_tests * p)
    """
    pvalues = np.asarray(pvalues, dtype=float)
    if tested is None:
        tested = np.ones(len(pvalues), dtype=bool)
    tested = np.asarray(tested, dtype=bool)

    n_tests = int(np.count_nonzero(tested))
    adjusted = np.ones(len(pvalues))
    adjusted[tested] = np.minimum(1.0, pvalues[tested] * n_tests)
    return adjusted
