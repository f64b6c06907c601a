"""
Objective functions for the bound-constrained optimizer.
"""

from typing import Callable, Protocol, runtime_checkable

import numpy as np


@runtime_checkable
class DifferentiableObjective(Protocol):
    """
    A scalar function to be minimized together with its gradient.

    Both methods take the parameter vector in the caller's units. Implementations
    may return +inf (or any non-finite value) from ``evaluate`` where the
    function cannot be computed; the optimizer treats such points as invalid.
    """

    def evaluate(self, x: np.ndarray) -> float:
        ...

    def gradient(self, x: np.ndarray) -> np.ndarray:
        ...


class FunctionObjective:
    """
    Wrap plain callables as a DifferentiableObjective.

    Parameters
    ----------
    fun : callable
        f(x) -> float
    grad : callable
        g(x) -> array of the same length as x
    """

    def __init__(self, fun: Callable[[np.ndarray], float], grad: Callable[[np.ndarray], np.ndarray]):
        self.fun = fun
        self.grad = grad
        self.n_evaluations = 0
        self.n_gradients = 0

    def evaluate(self, x: np.ndarray) -> float:
        self.n_evaluations += 1
        return float(self.fun(np.asarray(x, dtype=float)))

    def gradient(self, x: np.ndarray) -> np.ndarray:
        self.n_gradients += 1
        return np.asarray(self.grad(np.asarray(x, dtype=float)), dtype=float)
