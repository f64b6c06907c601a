"""
Dense matrix operations for substitution models and likelihood calculations.

Matrices here are small (one row/column per state, at most 64) so everything
is plain dense numpy.
"""

import numpy as np
from scipy.linalg import expm


def matrix_exponential(Q: np.ndarray, t: float) -> np.ndarray:
    """
    Compute transition probability matrix P(t) = exp(Q*t).

    Uses scipy's Padé approximation with scaling and squaring. The likelihood
    engine uses the eigen-decomposition route instead; this is the reference
    implementation it is checked against.

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Rate matrix (instantaneous substitution rate matrix)
    t : float
        Branch length (time)

    Returns
    -------
    P : ndarray, shape (n, n)
        Transition probability matrix where P[i,j] is the probability
        of state i transitioning to state j over time t
    """
    return expm(Q * t)


def eigen_decompose_rev(Q: np.ndarray, pi: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Eigendecompose reversible rate matrix Q = U @ diag(eigenvalues) @ V.

    Uses symmetrization trick for reversible rate matrices: transform Q to
    the symmetric matrix Q' = √D @ Q @ √D^(-1), where D = diag(pi), then
    eigendecompose Q' and transform back.

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Reversible rate matrix satisfying detailed balance
    pi : ndarray, shape (n,)
        Stationary distribution (equilibrium frequencies)

    Returns
    -------
    eigenvalues : ndarray, shape (n,)
        Eigenvalues of Q, sorted in ascending order
    U : ndarray, shape (n, n)
        Right eigenvector matrix
    V : ndarray, shape (n, n)
        Left eigenvector matrix, V = U^(-1)
    """
    sqrt_pi = np.sqrt(pi)

    Q_sym = Q * sqrt_pi[:, np.newaxis] / sqrt_pi[np.newaxis, :]
    # Remove rounding asymmetry before eigh
    Q_sym = 0.5 * (Q_sym + Q_sym.T)

    eigenvalues, eigenvectors = np.linalg.eigh(Q_sym)

    U = eigenvectors / sqrt_pi[:, np.newaxis]
    V = eigenvectors.T * sqrt_pi[np.newaxis, :]

    return eigenvalues, U, V


def create_reversible_Q(
    rates: np.ndarray, pi: np.ndarray, normalize: bool = True
) -> np.ndarray:
    """
    Create a reversible rate matrix from exchangeability rates and stationary distribution.

    Parameters
    ----------
    rates : ndarray, shape (n, n)
        Symmetric exchangeability matrix (r[i,j] = r[j,i])
    pi : ndarray, shape (n,)
        Stationary distribution (equilibrium frequencies)
    normalize : bool, default=True
        If True, scale Q so that expected rate is 1 substitution per time unit

    Returns
    -------
    Q : ndarray, shape (n, n)
        Reversible rate matrix, Q[i,j] = r[i,j] * pi[j] off the diagonal
    """
    Q = rates * pi[np.newaxis, :]

    np.fill_diagonal(Q, 0.0)
    np.fill_diagonal(Q, -Q.sum(axis=1))

    if normalize:
        Q /= expected_rate(Q, pi)

    return Q


def expected_rate(Q: np.ndarray, pi: np.ndarray) -> float:
    """Expected number of substitutions per unit time, -sum(pi_i * Q[i,i])."""
    return -float(np.dot(pi, Q.diagonal()))


def check_detailed_balance(Q: np.ndarray, pi: np.ndarray, rtol: float = 1e-10) -> bool:
    """
    Test if rate matrix Q satisfies detailed balance with stationary distribution pi.

    Detailed balance: π_i * Q[i,j] = π_j * Q[j,i] for all i, j
    """
    flux = pi[:, np.newaxis] * Q
    return bool(np.allclose(flux, flux.T, rtol=rtol, atol=0.0))


def mult_transpose(A: np.ndarray, B: np.ndarray, out: np.ndarray = None) -> np.ndarray:
    """
    Compute A @ B.T, optionally into a preallocated output array.

    Partial likelihoods are stored one pattern per row, so propagating them
    along a branch with transition matrix P is ``plik @ P.T``.
    """
    return np.matmul(A, B.T, out=out)


def invert_matrix(A: np.ndarray) -> np.ndarray:
    """
    Invert a square matrix in place.

    Raises
    ------
    numpy.linalg.LinAlgError
        If the matrix is singular. A is left unchanged in that case.
    """
    A[:] = np.linalg.inv(A)
    return A


def transition_matrix(eigenvalues: np.ndarray, U: np.ndarray, V: np.ndarray, t: float) -> np.ndarray:
    """P(t) = U diag(exp(λ t)) V from a cached eigen-decomposition."""
    return (U * np.exp(eigenvalues * t)[np.newaxis, :]) @ V


def transition_matrix_dt(eigenvalues: np.ndarray, U: np.ndarray, V: np.ndarray, t: float) -> np.ndarray:
    """dP/dt = Q P(t) = U diag(λ exp(λ t)) V."""
    return (U * (eigenvalues * np.exp(eigenvalues * t))[np.newaxis, :]) @ V


def transition_matrix_derivative(
    eigenvalues: np.ndarray,
    U: np.ndarray,
    V: np.ndarray,
    dQ: np.ndarray,
    t: float,
) -> np.ndarray:
    """
    Derivative of P(t) = exp(tQ) when Q moves in direction dQ.

    This is the Fréchet derivative of the matrix exponential evaluated with
    the eigen-decomposition of Q:

        dP = U [ (V dQ U) ∘ J ] V,
        J[i,j] = t exp(λ_i t)                              if λ_i == λ_j
               = (exp(λ_i t) - exp(λ_j t)) / (λ_i - λ_j)   otherwise

    Parameters
    ----------
    eigenvalues, U, V : ndarray
        Decomposition Q = U diag(eigenvalues) V
    dQ : ndarray, shape (n, n)
        Derivative of the rate matrix with respect to one parameter
    t : float
        Branch length

    Returns
    -------
    ndarray, shape (n, n)
        dP(t)/dθ
    """
    exp_lt = np.exp(eigenvalues * t)
    diff = eigenvalues[:, np.newaxis] - eigenvalues[np.newaxis, :]
    close = np.abs(diff) <= 1e-10 * np.maximum(1.0, np.abs(eigenvalues)[:, np.newaxis])

    with np.errstate(divide='ignore', invalid='ignore'):
        J = (exp_lt[:, np.newaxis] - exp_lt[np.newaxis, :]) / diff
    J = np.where(close, t * exp_lt[:, np.newaxis], J)

    return U @ ((V @ dQ @ U) * J) @ V
