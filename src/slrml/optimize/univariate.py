"""
One-dimensional minimization and root finding.

``brent_minimize`` is Brent's method on a bracketed minimum: inverse
parabolic interpolation safeguarded by golden-section steps. It is used on
its own for per-site estimates and as the line search of the multivariate
optimizer. ``find_root`` locates the end points of support intervals.
"""

from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

GOLDEN_RATIO = 0.3819660112501051
INITIAL_TOL = 3e-8
EPSILON = np.finfo(float).eps


@dataclass
class UnivariateResult:
    """Best point found by a one-dimensional minimization."""

    x: float
    fun: float
    n_eval: int
    converged: bool


@dataclass
class RootResult:
    """Approximate solution of fun(x) = target."""

    x: float
    fun: float
    n_eval: int
    converged: bool


class _Counted:
    def __init__(self, fun: Callable[[float], float]):
        self.fun = fun
        self.n_eval = 0

    def __call__(self, x: float) -> float:
        self.n_eval += 1
        return float(self.fun(x))


def _parabolic_step(a: float, b: float, c: float, fa: float, fb: float, fc: float) -> float:
    """Abscissa of the vertex of the parabola through three points."""
    dba = b - a
    dbc = b - c
    dfba = dbc * (fb - fa)
    dfbc = dba * (fb - fc)
    with np.errstate(divide='ignore', invalid='ignore'):
        return b - 0.5 * (dba * dfbc - dbc * dfba) / np.float64(dfbc - dfba)


def brent_minimize(
    fun: Callable[[float], float],
    lb: float,
    ub: float,
    x: float,
    tol: float = 1e-5,
    f_lb: Optional[float] = None,
    f_ub: Optional[float] = None,
    f_x: Optional[float] = None,
    max_iter: int = 500,
) -> UnivariateResult:
    """
    Minimize a function on a bracket by Brent's method.

    Parameters
    ----------
    fun : callable
        Function of one variable
    lb, ub : float
        Bracket ends
    x : float
        Interior point with fun(x) no greater than at either end
    tol : float
        Relative tolerance on x
    f_lb, f_ub, f_x : float, optional
        Known function values, used instead of evaluating
    max_iter : int
        Maximum number of new evaluations

    Returns
    -------
    UnivariateResult
        Best point, its function value, number of evaluations and whether
        the bracket shrank to tolerance

    Raises
    ------
    ValueError
        If x is outside [lb, ub] or the points do not bracket a minimum
    """
    if not lb <= x <= ub:
        raise ValueError(f"Point {x} not within bracket [{lb}, {ub}]")

    f = _Counted(fun)
    flb = f(lb) if f_lb is None else float(f_lb)
    fub = f(ub) if f_ub is None else float(f_ub)
    fx = f(x) if f_x is None else float(f_x)

    if not (fx <= flb and fx <= fub):
        raise ValueError(
            f"Points do not bracket a minimum: f({lb})={flb}, f({x})={fx}, f({ub})={fub}"
        )

    diff_old2 = 0.0
    diff_old = 0.0
    fractol = tol * abs(x) + INITIAL_TOL
    converged = True
    n_iter = 0

    while abs(x - 0.5 * (ub + lb)) + 0.5 * (ub - lb) > 2.0 * fractol:
        if n_iter >= max_iter:
            converged = False
            break
        n_iter += 1

        x_new = _parabolic_step(lb, x, ub, flb, fx, fub)
        diff = abs(x - x_new)
        if (
            np.isnan(x_new)
            or diff_old < fractol
            or diff <= 0.5 * diff_old2
            or x_new < lb
            or x_new > ub
        ):
            # Golden section into the larger part of the bracket
            x_new = x + GOLDEN_RATIO * ((lb - x) if 2.0 * x > lb + ub else (ub - x))
            diff = abs(x_new - x)

        if diff < fractol:
            direction = 1.0 if x_new >= x else -1.0
            if not lb <= x + direction * fractol <= ub:
                direction = -direction
            x_new = x + direction * fractol

        f_new = f(x_new)
        if f_new < fx:
            if x_new >= x:
                lb, flb = x, fx
            else:
                ub, fub = x, fx
            x, fx = x_new, f_new
        else:
            if x_new >= x:
                ub, fub = x_new, f_new
            else:
                lb, flb = x_new, f_new

        diff_old2 = diff_old
        diff_old = diff
        fractol = tol * abs(x) + EPSILON

    return UnivariateResult(x=float(x), fun=float(fx), n_eval=f.n_eval, converged=converged)


def find_root(
    fun: Callable[[float], float],
    lb: float,
    ub: float,
    target: float = 0.0,
    tol: float = 1e-3,
    f_lb: Optional[float] = None,
    f_ub: Optional[float] = None,
    max_iter: int = 200,
) -> RootResult:
    """
    Solve fun(x) = target on a bracketing interval.

    Regula falsi with the Illinois modification, falling back to bisection
    whenever an iteration fails to halve the bracket. The function is
    assumed monotone on the interval. ``fun`` in the result is the residual
    fun(x) - target at the returned point.

    Raises
    ------
    ValueError
        If fun(lb) - target and fun(ub) - target have the same sign
    """
    if lb > ub:
        raise ValueError(f"Invalid interval [{lb}, {ub}]")

    f = _Counted(lambda x: fun(x) - target)
    fa = f(lb) if f_lb is None else float(f_lb) - target
    fb = f(ub) if f_ub is None else float(f_ub) - target
    a, b = float(lb), float(ub)

    if fa == 0.0:
        return RootResult(x=a, fun=0.0, n_eval=f.n_eval, converged=True)
    if fb == 0.0:
        return RootResult(x=b, fun=0.0, n_eval=f.n_eval, converged=True)
    if np.sign(fa) == np.sign(fb):
        raise ValueError(
            f"Root not bracketed: residuals {fa} at {lb} and {fb} at {ub} have the same sign"
        )

    # Values used for interpolation; halved by the Illinois rule
    ga, gb = fa, fb
    last_side = 0
    bisect = False
    converged = False

    for _ in range(max_iter):
        x_best = a if abs(fa) < abs(fb) else b
        if b - a < tol * (1.0 + abs(x_best)):
            converged = True
            break

        width = b - a
        c = 0.5 * (a + b)
        if not bisect:
            trial = (ga * b - gb * a) / (ga - gb)
            if a < trial < b:
                c = trial

        fc = f(c)
        if fc == 0.0:
            return RootResult(x=c, fun=0.0, n_eval=f.n_eval, converged=True)

        if np.sign(fc) == np.sign(fb):
            b, fb, gb = c, fc, fc
            if last_side == 1:
                ga *= 0.5
            last_side = 1
        else:
            a, fa, ga = c, fc, fc
            if last_side == -1:
                gb *= 0.5
            last_side = -1

        bisect = (b - a) > 0.5 * width

    x_best, f_best = (a, fa) if abs(fa) < abs(fb) else (b, fb)
    return RootResult(x=x_best, fun=float(f_best), n_eval=f.n_eval, converged=converged)


def minimize_in_interval(
    fun: Callable[[float], float],
    lb: float,
    ub: float,
    x0: float,
    tol: float = 1e-5,
    max_iter: int = 500,
) -> UnivariateResult:
    """
    Minimize on [lb, ub] starting from x0, which need not bracket a minimum.

    When one end of the interval is lower than x0, golden-section points are
    placed between x0 and that end until one falls below both; the end is
    returned as a boundary minimum if the search collapses onto it.
    """
    if not lb <= x0 <= ub:
        raise ValueError(f"Starting point {x0} not within [{lb}, {ub}]")

    f = _Counted(fun)
    flb, fub, fx = f(lb), f(ub), f(x0)
    x = float(x0)

    if fx <= flb and fx <= fub:
        res = brent_minimize(fun, lb, ub, x, tol=tol, f_lb=flb, f_ub=fub, f_x=fx, max_iter=max_iter)
        res.n_eval += f.n_eval
        return res

    end, fend = (lb, flb) if flb <= fub else (ub, fub)
    for _ in range(max_iter):
        if abs(x - end) <= tol * abs(end) + INITIAL_TOL:
            return UnivariateResult(x=float(end), fun=float(fend), n_eval=f.n_eval, converged=True)
        xm = end + GOLDEN_RATIO * (x - end)
        fm = f(xm)
        if fm < fend:
            lo, hi = (end, x) if end < x else (x, end)
            flo, fhi = (fend, fx) if end < x else (fx, fend)
            res = brent_minimize(
                fun, lo, hi, xm, tol=tol, f_lb=flo, f_ub=fhi, f_x=fm, max_iter=max_iter
            )
            res.n_eval += f.n_eval
            return res
        x, fx = xm, fm

    return UnivariateResult(x=float(end), fun=float(fend), n_eval=f.n_eval, converged=False)
