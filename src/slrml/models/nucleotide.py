"""
Nucleotide substitution models.

States are ordered T, C, A, G.
"""

import numpy as np

from .base import SubstitutionModel

# T<->C and A<->G
_TRANSITIONS = np.zeros((4, 4))
_TRANSITIONS[0, 1] = _TRANSITIONS[1, 0] = 1.0
_TRANSITIONS[2, 3] = _TRANSITIONS[3, 2] = 1.0
_OFF_DIAGONAL = np.ones((4, 4)) - np.eye(4)


class JC69Model(SubstitutionModel):
    """Jukes-Cantor model: equal frequencies and exchangeabilities, no parameters."""

    n_states = 4

    def __init__(self):
        super().__init__(np.full(4, 0.25))

    def _exchangeability(self) -> np.ndarray:
        return _OFF_DIAGONAL.copy()


class HKY85Model(SubstitutionModel):
    """
    HKY85 model with a transition/transversion ratio kappa.

    Parameters
    ----------
    kappa : float
        Transition/transversion rate ratio
    pi : np.ndarray, shape (4,), optional
        Nucleotide frequencies (uniform if None)
    """

    n_states = 4
    param_names = ('kappa',)

    def __init__(self, kappa: float = 2.0, pi: np.ndarray = None, normalization: float = None):
        if pi is None:
            pi = np.full(4, 0.25)
        super().__init__(pi, [kappa], normalization=normalization)

    def _exchangeability(self) -> np.ndarray:
        kappa = self.params[0]
        return _OFF_DIAGONAL + (kappa - 1.0) * _TRANSITIONS

    def _exchangeability_derivative(self, i: int) -> np.ndarray:
        return _TRANSITIONS.copy()
