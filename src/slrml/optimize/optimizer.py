"""
Bound-constrained quasi-Newton optimization.

The optimizer minimizes a differentiable objective inside a box. Each step
takes a Newton direction from a BFGS inverse-Hessian approximation over the
free parameters, limits it to a trust radius and to the box, and falls back
to a backtracking line search when the step does not improve. Parameters at
a bound whose step points out of the box are held in an active set. All
work happens in rescaled coordinates ``y = x / scale`` where the scale
vector is adjusted after every BFGS update so that the inverse Hessian has
a unit diagonal.
"""

import warnings
from dataclasses import dataclass, field
from enum import IntFlag
from typing import Optional

import numpy as np

from ..core.matrix import invert_matrix
from .objective import DifferentiableObjective
from .univariate import brent_minimize

BOUND_TOL = 1e-5
MAX_TRUST = 10.0
MIN_TRUST = 1e-4
INITIAL_TRUST = 0.1
MIN_SCALE = 1e-3
MAX_SCALE = 1e3
BFGS_CURVATURE_TOL = 1e-5
LINE_SEARCH_TOL = 1e-5
STEEPEST_DESCENT_TOL = 1e-12
MAX_HALVINGS = 40
EPSILON = np.finfo(float).eps


class StepFlag(IntFlag):
    """Conditions met while taking one optimization step."""

    NONE = 0
    HESSIAN_NONPD = 1
    BOUNDARY = 2
    LINE_SEARCH = 4
    TRIMMED = 8
    INVALID_STEP = 16
    BAD_STEP = 32
    REARRANGED = 64
    DOG_LEG = 128

    def describe(self) -> str:
        """One character per condition, in a fixed order."""
        return ''.join(char for flag, char in _FLAG_CHARS if flag in self)


_FLAG_CHARS = (
    (StepFlag.HESSIAN_NONPD, '-'),
    (StepFlag.BOUNDARY, 'B'),
    (StepFlag.LINE_SEARCH, 'N'),
    (StepFlag.TRIMMED, 'T'),
    (StepFlag.INVALID_STEP, 'V'),
    (StepFlag.BAD_STEP, 'W'),
    (StepFlag.REARRANGED, 'R'),
    (StepFlag.DOG_LEG, 'D'),
)


@dataclass
class OptimizerState:
    """
    Working state of the optimizer.

    ``y`` and ``grad`` are in scaled coordinates: the objective is evaluated
    at ``y * scale`` and ``grad`` is the gradient with respect to ``y``.
    """

    y: np.ndarray
    grad: np.ndarray
    inv_hessian: np.ndarray
    active: np.ndarray
    scale: np.ndarray
    fun: float
    trust: float = INITIAL_TRUST
    n_eval: int = 0
    flags: StepFlag = StepFlag.NONE

    @property
    def x(self) -> np.ndarray:
        return self.y * self.scale


@dataclass
class OptimizeResult:
    """
    Result of a bound-constrained optimization.

    Attributes
    ----------
    x : ndarray
        Best point found, inside the bounds
    fun : float
        Objective value at x
    grad : ndarray
        Gradient at x in the caller's units
    projected_grad : ndarray
        Gradient with components of active parameters set to zero
    active : ndarray of bool
        Parameters held at a bound
    converged : bool
        False if the restart limit was reached
    n_eval : int
        Number of objective evaluations
    n_steps : int
        Number of optimization steps
    n_restarts : int
        Number of Hessian restarts (outer iterations)
    diagnostics : list[str]
        Flag string of each step
    """

    x: np.ndarray
    fun: float
    grad: np.ndarray
    projected_grad: np.ndarray
    active: np.ndarray
    converged: bool
    n_eval: int
    n_steps: int
    n_restarts: int
    diagnostics: list = field(default_factory=list)


class ConstrainedOptimizer:
    """
    Trust-region BFGS optimizer with an active set for box constraints.

    Parameters
    ----------
    objective : DifferentiableObjective
        Function to minimize
    x0 : ndarray
        Starting point, inside the bounds
    lower, upper : ndarray
        Finite bounds
    fx : float, optional
        Objective value at x0, if already known
    tol : float
        Improvement below which a step or restart counts as stalled
    max_restarts : int
        Maximum number of outer iterations
    max_steps : int
        Maximum number of steps per outer iteration
    verbose : int
        0 silent, 1 summary per restart, 2 one line per step
    """

    def __init__(
        self,
        objective: DifferentiableObjective,
        x0: np.ndarray,
        lower: np.ndarray,
        upper: np.ndarray,
        fx: Optional[float] = None,
        tol: float = 3e-8,
        max_restarts: int = 20,
        max_steps: int = 100,
        verbose: int = 0,
    ):
        x0 = np.asarray(x0, dtype=float).copy()
        lower = np.asarray(lower, dtype=float)
        upper = np.asarray(upper, dtype=float)

        if x0.ndim != 1 or len(x0) == 0:
            raise ValueError("x0 must be a non-empty vector")
        if lower.shape != x0.shape or upper.shape != x0.shape:
            raise ValueError(
                f"Bounds have shapes {lower.shape} and {upper.shape}, expected {x0.shape}"
            )
        if not (np.all(np.isfinite(lower)) and np.all(np.isfinite(upper))):
            raise ValueError("Bounds must be finite")
        if np.any(lower > upper):
            raise ValueError("Lower bounds must not exceed upper bounds")
        if np.any(x0 < lower) or np.any(x0 > upper):
            raise ValueError("Starting point is outside the bounds")

        self.objective = objective
        self.lower = lower
        self.upper = upper
        self.n = len(x0)
        self.tol = tol
        self.max_restarts = max_restarts
        self.max_steps = max_steps
        self.verbose = verbose
        self.n_steps = 0
        self.diagnostics = []

        scale = np.ones(self.n)
        self.state = OptimizerState(
            y=x0,
            grad=np.zeros(self.n),
            inv_hessian=np.eye(self.n),
            active=np.zeros(self.n, dtype=bool),
            scale=scale,
            fun=np.inf,
        )
        st = self.state
        st.fun = self._f(x0) if fx is None else float(fx)
        if not np.isfinite(st.fun):
            raise ValueError("Objective is not finite at the starting point")
        st.grad = self._df(x0)
        st.active = ((x0 <= lower) & (st.grad >= 0.0)) | ((x0 >= upper) & (st.grad <= 0.0))
        st.flags = StepFlag.NONE

    def _f(self, y: np.ndarray) -> float:
        """Objective at scaled point y; non-finite values become +inf."""
        st = self.state
        st.n_eval += 1
        x = np.clip(y * st.scale, self.lower, self.upper)
        value = float(self.objective.evaluate(x))
        if not np.isfinite(value):
            st.flags |= StepFlag.INVALID_STEP
            return np.inf
        return value

    def _df(self, y: np.ndarray) -> np.ndarray:
        """Gradient with respect to the scaled coordinates."""
        st = self.state
        x = np.clip(y * st.scale, self.lower, self.upper)
        grad = np.array(self.objective.gradient(x), dtype=float)
        if not np.all(np.isfinite(grad)):
            st.flags |= StepFlag.INVALID_STEP
            grad[~np.isfinite(grad)] = 0.0
        return grad * st.scale

    def reset_hessian(self) -> None:
        self.state.inv_hessian = np.eye(self.n)

    def newton_direction(self) -> np.ndarray:
        st = self.state
        free = ~st.active
        direct = -(st.inv_hessian[:, free] @ st.grad[free])
        direct[st.active] = 0.0
        return direct

    def _fix_parameter(self, i: int) -> None:
        """
        Remove parameter i from the curvature model.

        The Hessian (the inverse of the approximation) has row and column i
        cleared, keeping the magnitude of the old diagonal, and is inverted
        back.
        """
        st = self.state
        H = st.inv_hessian
        diag = H[i, i]
        try:
            invert_matrix(H)
            H[i, :] = 0.0
            H[:, i] = 0.0
            H[i, i] = abs(diag)
            invert_matrix(H)
        except np.linalg.LinAlgError:
            st.flags |= StepFlag.HESSIAN_NONPD
            self.reset_hessian()
            return
        if not np.all(np.isfinite(H)):
            st.flags |= StepFlag.HESSIAN_NONPD
            self.reset_hessian()

    def update_active_set(self, y: np.ndarray, direct: np.ndarray) -> int:
        """
        Hold parameters at a bound when ``direct`` points out of the box.

        ``direct`` is zeroed for active parameters. Parameters no longer
        satisfying the test are released.

        Returns
        -------
        int
            Number of newly active parameters
        """
        st = self.state
        x = y * st.scale
        n_added = 0
        for i in range(self.n):
            at_lower = x[i] - self.lower[i] < BOUND_TOL and direct[i] <= 0.0
            at_upper = self.upper[i] - x[i] < BOUND_TOL and direct[i] >= 0.0
            if at_lower or at_upper:
                if not st.active[i]:
                    n_added += 1
                    self._fix_parameter(i)
                st.active[i] = True
                direct[i] = 0.0
            else:
                st.active[i] = False
        return n_added

    def trim_at_boundaries(self, y: np.ndarray, direct: np.ndarray) -> float:
        """
        Largest multiple of ``direct`` keeping every free parameter feasible.

        Returns inf if no free parameter moves.
        """
        st = self.state
        moving = ~st.active & (np.abs(direct) > EPSILON)
        if not np.any(moving):
            return np.inf

        bound = np.where(direct > 0.0, self.upper, self.lower) / st.scale
        with np.errstate(divide='ignore', invalid='ignore'):
            factors = np.where(moving, (bound - y) / direct, np.inf)
        i = int(np.argmin(factors))
        max_factor = factors[i]
        err = (abs(bound[i]) + abs(y[i])) / abs(direct[i])

        # Rounding slack so the bound is never crossed
        max_factor -= (err + max_factor) * EPSILON
        return max(max_factor, 0.0)

    def line_search(self, direct: np.ndarray, upper: float, tol: float) -> tuple[np.ndarray, float]:
        """
        Backtracking line search along ``direct`` on [0, upper].

        The step is halved from ``upper`` until the objective improves, then
        refined by Brent's method. Returns the current point if no
        improvement is found.
        """
        st = self.state
        y0 = st.y.copy()
        fc = st.fun

        def along(alpha: float) -> float:
            return self._f(y0 + alpha * direct)

        alpha = upper
        f_alpha = along(alpha)
        previous = None
        for _ in range(MAX_HALVINGS):
            if f_alpha < fc:
                break
            previous = (alpha, f_alpha)
            alpha *= 0.5
            f_alpha = along(alpha)

        if not f_alpha < fc:
            return y0, fc

        hi, f_hi = previous if previous is not None else (alpha, f_alpha)
        res = brent_minimize(along, 0.0, hi, alpha, tol=tol, f_lb=fc, f_ub=f_hi, f_x=f_alpha)
        if res.fun < f_alpha:
            alpha, f_alpha = res.x, res.fun
        return y0 + alpha * direct, f_alpha

    def update_bfgs(self, y_new: np.ndarray, grad_new: np.ndarray) -> None:
        """
        BFGS update of the inverse Hessian over the free parameters.

        Resets to the identity when the curvature condition fails; otherwise
        rescales coordinates so the inverse Hessian has a unit diagonal,
        modifying ``y_new``, ``grad_new`` and the scale vector in place.
        """
        st = self.state
        free = ~st.active
        d = np.where(free, y_new - st.y, 0.0)
        g = np.where(free, grad_new - st.grad, 0.0)
        gd = float(g @ d)

        if gd <= BFGS_CURVATURE_TOL:
            st.flags |= StepFlag.HESSIAN_NONPD
            self.reset_hessian()
            return

        H = st.inv_hessian
        Hg = np.zeros(self.n)
        Hg[free] = H[np.ix_(free, free)] @ g[free]
        gHg = float(g @ Hg)

        f = 1.0 + gHg / gd
        update = (f * np.outer(d, d) - np.outer(d, Hg) - np.outer(Hg, d)) / gd
        block = np.ix_(free, free)
        H[block] += update[block]

        # Lower triangle is authoritative
        H = np.tril(H) + np.tril(H, -1).T

        factor = np.sqrt(np.maximum(np.diag(H), 0.0))
        factor = np.clip(factor, MIN_SCALE, MAX_SCALE)
        H /= np.outer(factor, factor)
        y_new /= factor
        grad_new *= factor
        st.scale *= factor
        st.inv_hessian = H

    def take_step(self) -> tuple[float, int]:
        """
        Take one optimization step.

        Returns
        -------
        norm : float
            Norm of the gradient over the free parameters
        n_added : int
            Number of parameters that became active
        """
        st = self.state
        active_before = st.active.copy()
        n_added = 0

        while True:
            direct = self.newton_direction()
            added = self.update_active_set(st.y, direct)
            n_added += added
            if added == 0:
                break

        norm = float(np.linalg.norm(direct))
        if norm > st.trust:
            direct *= st.trust / norm
            st.flags |= StepFlag.DOG_LEG

        max_factor = self.trim_at_boundaries(st.y, direct)
        if max_factor <= 1.0:
            st.flags |= StepFlag.TRIMMED
            y_new = st.y + max_factor * direct
            f_new = self._f(y_new)
            accepted = False
            if f_new <= st.fun:
                f_near = self._f(st.y + max_factor * (1.0 - BOUND_TOL) * direct)
                if f_near > f_new:
                    accepted = True
                    st.flags |= StepFlag.BOUNDARY
            if not accepted:
                st.flags |= StepFlag.LINE_SEARCH
                y_new, f_new = self.line_search(direct, max_factor, LINE_SEARCH_TOL)
                st.trust = max(st.trust / 2.0, MIN_TRUST)
        else:
            y_new = st.y + direct
            f_new = self._f(y_new)
            if st.fun < f_new:
                st.flags |= StepFlag.LINE_SEARCH
                y_new, f_new = self.line_search(direct, 1.0, LINE_SEARCH_TOL)
                st.trust = max(st.trust / 2.0, MIN_TRUST)
            else:
                st.trust = min(2.0 * st.trust, MAX_TRUST)

        if not f_new < st.fun:
            st.flags |= StepFlag.BAD_STEP
            if n_added > 0 or np.any(st.active != active_before):
                st.flags |= StepFlag.REARRANGED
            return float(np.linalg.norm(st.grad[~st.active])), n_added

        grad_new = self._df(y_new)
        n_added += self.update_active_set(y_new, -grad_new)
        self.update_bfgs(y_new, grad_new)

        st.fun = f_new
        st.y = y_new
        st.grad = grad_new
        if n_added > 0 or np.any(st.active != active_before):
            st.flags |= StepFlag.REARRANGED
        return float(np.linalg.norm(st.grad[~st.active])), n_added

    def steepest_descent_step(self) -> int:
        """
        Line search along the negative gradient, then reset the curvature.

        Returns the number of parameters that became active.
        """
        st = self.state
        direct = np.where(st.active, 0.0, -st.grad)
        if np.any(direct != 0.0):
            max_factor = self.trim_at_boundaries(st.y, direct)
            upper = max_factor if np.isfinite(max_factor) else 1.0
            if upper > 0.0:
                st.y, st.fun = self.line_search(direct, upper, STEEPEST_DESCENT_TOL)
        st.grad = self._df(st.y)
        n_added = self.update_active_set(st.y, -st.grad)
        self.reset_hessian()
        return n_added

    def run(self) -> OptimizeResult:
        st = self.state
        restarts = 0
        converged = False

        if self.verbose >= 2:
            print(f"Initial\tf: {st.fun:8.6f}\nStep     f(x)      delta")

        while True:
            f_outer = st.fun
            self.reset_hessian()
            for _ in range(self.max_steps):
                f_step = st.fun
                st.flags = StepFlag.NONE
                norm, n_added = self.take_step()
                self.n_steps += 1
                if f_step - st.fun <= self.tol:
                    n_added += self.steepest_descent_step()
                self.diagnostics.append(st.flags.describe())
                if self.verbose >= 2:
                    print(
                        f"{self.n_steps:3d}: {st.fun:9f} {abs(st.fun - f_step):10.5e} "
                        f"{st.n_eval:4d} {st.flags.describe()}\t{norm:9.3f}"
                    )
                if not (f_step - st.fun > self.tol or n_added > 0):
                    break

            restarts += 1
            if self.verbose >= 1:
                print(f"Restart {restarts}: f = {st.fun:.6f} ({st.n_eval} evaluations)")
            if f_outer - st.fun <= self.tol:
                converged = True
                break
            if restarts >= self.max_restarts:
                break

        if not converged:
            warnings.warn(
                f"Optimization did not converge after {restarts} restarts; returning best point",
                UserWarning,
            )

        x = np.clip(st.x, self.lower, self.upper)
        grad = st.grad / st.scale
        projected = np.where(st.active, 0.0, grad)
        return OptimizeResult(
            x=x,
            fun=float(st.fun),
            grad=grad,
            projected_grad=projected,
            active=st.active.copy(),
            converged=converged,
            n_eval=st.n_eval,
            n_steps=self.n_steps,
            n_restarts=restarts,
            diagnostics=list(self.diagnostics),
        )


def optimize(
    objective: DifferentiableObjective,
    x0: np.ndarray,
    lower: np.ndarray,
    upper: np.ndarray,
    fx: Optional[float] = None,
    tol: float = 3e-8,
    max_restarts: int = 20,
    max_steps: int = 100,
    verbose: int = 0,
) -> OptimizeResult:
    """
    Minimize a differentiable objective inside a box.

    Parameters
    ----------
    objective : DifferentiableObjective
        Object with ``evaluate(x)`` and ``gradient(x)``
    x0 : array-like
        Starting point within [lower, upper]
    lower, upper : array-like
        Finite bounds
    fx : float, optional
        Objective value at x0, if already known
    tol : float
        Convergence tolerance on the objective improvement
    max_restarts : int
        Maximum number of Hessian restarts
    max_steps : int
        Maximum number of steps between restarts
    verbose : int
        0 silent, 1 summary per restart, 2 one line per step

    Returns
    -------
    OptimizeResult

    Raises
    ------
    ValueError
        On mismatched lengths, non-finite or inverted bounds, or a starting
        point outside the bounds
    """
    optimizer = ConstrainedOptimizer(
        objective, x0, lower, upper,
        fx=fx, tol=tol, max_restarts=max_restarts, max_steps=max_steps, verbose=verbose,
    )
    return optimizer.run()
