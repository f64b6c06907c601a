"""
Base class for reversible substitution models.
"""

from typing import Optional, Sequence

import numpy as np

from ..core.matrix import (
    create_reversible_Q,
    eigen_decompose_rev,
    expected_rate,
    transition_matrix,
    transition_matrix_derivative,
    transition_matrix_dt,
)


class SubstitutionModel:
    """
    Time-reversible continuous-time Markov substitution model.

    A model is defined by a symmetric exchangeability matrix S(θ), depending
    on the shape parameters θ, and equilibrium frequencies π. The
    unnormalized rate matrix is R[i,j] = S[i,j] π_j and the rate matrix used
    for likelihood calculations is Q = R / c, where c is either the expected
    rate of R (one substitution per unit time at the current parameters) or
    a fixed normalization constant supplied by the caller.

    Subclasses implement ``_exchangeability`` and
    ``_exchangeability_derivative``.

    Parameters
    ----------
    pi : np.ndarray
        Equilibrium frequencies, normalized to sum to one
    params : sequence of float
        Shape parameter values, in ``param_names`` order
    normalization : float, optional
        Fixed normalization constant. If None, Q is normalized to expected
        rate one for the current parameters.
    """

    param_names: tuple[str, ...] = ()
    n_states: int = 0

    def __init__(
        self,
        pi: np.ndarray,
        params: Sequence[float] = (),
        normalization: Optional[float] = None,
    ):
        pi = np.asarray(pi, dtype=float)
        if pi.shape != (self.n_states,):
            raise ValueError(f"pi must have length {self.n_states}, got {pi.shape}")
        if np.any(pi <= 0.0) or not np.all(np.isfinite(pi)):
            raise ValueError("Equilibrium frequencies must be positive and finite")
        self.pi = pi / pi.sum()

        self.params = np.zeros(len(self.param_names))
        self.normalization = normalization
        self._cache = {}
        self.set_params(params)

    @property
    def n_params(self) -> int:
        return len(self.param_names)

    def set_params(self, values: Sequence[float]) -> None:
        values = np.asarray(values, dtype=float)
        if values.shape != (self.n_params,):
            raise ValueError(
                f"{type(self).__name__} takes {self.n_params} parameter(s), got {values.shape}"
            )
        self.params = values.copy()
        self._cache.clear()

    def set_param(self, i: int, value: float) -> None:
        self.params[i] = value
        self._cache.clear()

    def get_param(self, name: str) -> float:
        return float(self.params[self.param_names.index(name)])

    def _exchangeability(self) -> np.ndarray:
        raise NotImplementedError

    def _exchangeability_derivative(self, i: int) -> np.ndarray:
        raise NotImplementedError

    def unnormalized_rate_matrix(self) -> np.ndarray:
        if 'R' not in self._cache:
            self._cache['R'] = create_reversible_Q(self._exchangeability(), self.pi, normalize=False)
        return self._cache['R']

    def rate_scale(self) -> float:
        """Expected substitution rate of the unnormalized rate matrix."""
        return expected_rate(self.unnormalized_rate_matrix(), self.pi)

    def normalization_constant(self) -> float:
        if self.normalization is not None:
            return self.normalization
        return self.rate_scale()

    def rate_matrix(self) -> np.ndarray:
        """Rate matrix Q used for transition probabilities."""
        if 'Q' not in self._cache:
            self._cache['Q'] = self.unnormalized_rate_matrix() / self.normalization_constant()
        return self._cache['Q']

    def rate_matrix_derivative(self, i: int) -> np.ndarray:
        """
        Derivative of Q with respect to shape parameter i.

        With Q = R / c the quotient rule gives dQ = dR / c - R dc / c², the
        second term vanishing when c is a fixed normalization constant.
        """
        key = ('dQ', i)
        if key not in self._cache:
            dR = create_reversible_Q(self._exchangeability_derivative(i), self.pi, normalize=False)
            c = self.normalization_constant()
            dQ = dR / c
            if self.normalization is None:
                dc = expected_rate(dR, self.pi)
                dQ -= self.unnormalized_rate_matrix() * (dc / c ** 2)
            self._cache[key] = dQ
        return self._cache[key]

    def eigen(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        if 'eigen' not in self._cache:
            self._cache['eigen'] = eigen_decompose_rev(self.rate_matrix(), self.pi)
        return self._cache['eigen']

    def transition_matrix(self, t: float) -> np.ndarray:
        """P(t) = exp(tQ)."""
        return transition_matrix(*self.eigen(), t)

    def transition_matrix_dt(self, t: float) -> np.ndarray:
        """dP(t)/dt."""
        return transition_matrix_dt(*self.eigen(), t)

    def transition_matrix_dparam(self, t: float, i: int) -> np.ndarray:
        """dP(t)/dθ_i for shape parameter i."""
        eigenvalues, U, V = self.eigen()
        return transition_matrix_derivative(eigenvalues, U, V, self.rate_matrix_derivative(i), t)

    def __repr__(self) -> str:
        values = ', '.join(f"{name}={value:.6g}" for name, value in zip(self.param_names, self.params))
        return f"{type(self).__name__}({values})"
