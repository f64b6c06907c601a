"""
Codon substitution models.
"""

from functools import lru_cache

import numpy as np

from ..io.patterns import SitePatterns
from ..io.sequences import CODONS, GENETIC_CODE, N_CODONS, NUCLEOTIDE_TO_INDEX
from .base import SubstitutionModel


def compute_codon_frequencies_f3x4(patterns: SitePatterns, include_trivial: bool = True) -> np.ndarray:
    """
    Compute F3X4 codon frequencies.

    F3X4 estimates codon frequencies from the nucleotide frequencies
    at each of the three codon positions.

    Parameters
    ----------
    patterns : SitePatterns
        Compressed codon alignment
    include_trivial : bool
        Also count codons from single-observation columns

    Returns
    -------
    np.ndarray, shape (61,)
        Codon frequencies
    """
    counts = _codon_counts(patterns, include_trivial)

    # 3 positions x 4 nucleotides (T, C, A, G)
    nuc_counts = np.zeros((3, 4))
    for idx, codon in enumerate(CODONS):
        for pos, nuc in enumerate(codon):
            nuc_counts[pos, NUCLEOTIDE_TO_INDEX[nuc]] += counts[idx]

    # Unobserved nucleotides would give zero-frequency codons
    nuc_counts += 0.5
    pi_nuc = nuc_counts / nuc_counts.sum(axis=1, keepdims=True)

    pi_codon = np.array([
        pi_nuc[0, NUCLEOTIDE_TO_INDEX[codon[0]]]
        * pi_nuc[1, NUCLEOTIDE_TO_INDEX[codon[1]]]
        * pi_nuc[2, NUCLEOTIDE_TO_INDEX[codon[2]]]
        for codon in CODONS
    ])

    return pi_codon / pi_codon.sum()


def compute_codon_frequencies_f1x4(patterns: SitePatterns, include_trivial: bool = True) -> np.ndarray:
    """
    Compute F1X4 codon frequencies.

    Nucleotide counts are pooled over all three codon positions and each
    sense codon gets the product of its nucleotide frequencies.
    """
    counts = _codon_counts(patterns, include_trivial)

    nuc_counts = np.zeros(4)
    for idx, codon in enumerate(CODONS):
        for nuc in codon:
            nuc_counts[NUCLEOTIDE_TO_INDEX[nuc]] += counts[idx]

    nuc_counts += 0.5
    pi_nuc = nuc_counts / nuc_counts.sum()

    pi_codon = np.array([
        np.prod([pi_nuc[NUCLEOTIDE_TO_INDEX[nuc]] for nuc in codon])
        for codon in CODONS
    ])

    return pi_codon / pi_codon.sum()


def compute_codon_frequencies_f61(patterns: SitePatterns, include_trivial: bool = True) -> np.ndarray:
    """
    Compute empirical (F61) codon frequencies.

    Each sense codon's frequency is its observed count, with a pseudocount of
    one half so that unobserved codons keep a positive frequency.
    """
    counts = _codon_counts(patterns, include_trivial) + 0.5
    return counts / counts.sum()


def _codon_counts(patterns: SitePatterns, include_trivial: bool) -> np.ndarray:
    if patterns.n_states != N_CODONS:
        raise ValueError("Codon frequencies require a codon alignment")

    counts = np.zeros(N_CODONS)
    for k in range(patterns.n_patterns):
        observed = patterns.states[:, k]
        observed = observed[observed >= 0]
        np.add.at(counts, observed, patterns.weights[k])
    if include_trivial:
        np.add.at(counts, patterns.single_observation_states(), 1.0)
    return counts


def is_transition(nuc1: str, nuc2: str) -> bool:
    """Check if nucleotide change is a transition (A<->G or C<->T)."""
    transitions = {('A', 'G'), ('G', 'A'), ('C', 'T'), ('T', 'C')}
    return (nuc1, nuc2) in transitions


def is_synonymous(codon1: str, codon2: str) -> bool:
    """Check if two codons code for the same amino acid."""
    return GENETIC_CODE[codon1] == GENETIC_CODE[codon2]


@lru_cache(maxsize=None)
def codon_change_masks() -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Classify every pair of sense codons.

    Returns
    -------
    single : ndarray, shape (61, 61)
        1 where the codons differ at exactly one position
    transition : ndarray, shape (61, 61)
        1 where that single difference is a transition
    nonsynonymous : ndarray, shape (61, 61)
        1 where that single difference changes the amino acid
    """
    single = np.zeros((N_CODONS, N_CODONS))
    transition = np.zeros((N_CODONS, N_CODONS))
    nonsynonymous = np.zeros((N_CODONS, N_CODONS))

    for i, codon_i in enumerate(CODONS):
        for j, codon_j in enumerate(CODONS):
            diff_pos = [k for k in range(3) if codon_i[k] != codon_j[k]]
            if len(diff_pos) != 1:
                continue
            single[i, j] = 1.0
            if is_transition(codon_i[diff_pos[0]], codon_j[diff_pos[0]]):
                transition[i, j] = 1.0
            if not is_synonymous(codon_i, codon_j):
                nonsynonymous[i, j] = 1.0

    for mask in (single, transition, nonsynonymous):
        mask.flags.writeable = False
    return single, transition, nonsynonymous


class CodonModel(SubstitutionModel):
    """
    Codon substitution model with one dN/dS ratio.

    The substitution rate between codons differing at a single position is
    proportional to the target codon's frequency, multiplied by kappa for a
    transition and by omega for a non-synonymous change. Codons differing at
    more than one position do not exchange directly.

    Parameters
    ----------
    kappa : float
        Transition/transversion rate ratio (default 2.0)
    omega : float
        dN/dS ratio (default 0.1)
    pi : np.ndarray, shape (61,), optional
        Codon equilibrium frequencies. If None, uniform frequencies are used.
    normalization : float, optional
        Fixed normalization constant (see SubstitutionModel)
    """

    n_states = N_CODONS
    param_names = ('kappa', 'omega')

    def __init__(
        self,
        kappa: float = 2.0,
        omega: float = 0.1,
        pi: np.ndarray = None,
        normalization: float = None,
    ):
        if pi is None:
            pi = np.ones(N_CODONS) / N_CODONS
        super().__init__(pi, [kappa, omega], normalization=normalization)

    @property
    def kappa(self) -> float:
        return float(self.params[0])

    @property
    def omega(self) -> float:
        return float(self.params[1])

    def _exchangeability(self) -> np.ndarray:
        single, transition, nonsynonymous = codon_change_masks()
        kappa, omega = self.params
        return single * np.where(transition > 0, kappa, 1.0) * np.where(nonsynonymous > 0, omega, 1.0)

    def _exchangeability_derivative(self, i: int) -> np.ndarray:
        single, transition, nonsynonymous = codon_change_masks()
        kappa, omega = self.params
        if i == 0:
            return single * transition * np.where(nonsynonymous > 0, omega, 1.0)
        return single * nonsynonymous * np.where(transition > 0, kappa, 1.0)

    def rate_scale_at(self, omega: float) -> float:
        """Expected rate of the unnormalized matrix with omega replaced."""
        other = CodonModel(kappa=self.kappa, omega=omega, pi=self.pi)
        return other.rate_scale()
