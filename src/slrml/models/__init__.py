"""
Molecular evolution models for sequence analysis.

This module provides time-reversible substitution models:

- **Nucleotide models**: JC69 and HKY85
- **Codon model**: one kappa and one omega for all sites and branches

Each model computes transition probability matrices and their derivatives
with respect to branch length and to the model's own parameters.
"""

from slrml.models.base import SubstitutionModel
from slrml.models.codon import (
    CodonModel,
    compute_codon_frequencies_f1x4,
    compute_codon_frequencies_f3x4,
    compute_codon_frequencies_f61,
)
from slrml.models.nucleotide import HKY85Model, JC69Model

__all__ = [
    "SubstitutionModel",
    "CodonModel",
    "HKY85Model",
    "JC69Model",
    "compute_codon_frequencies_f1x4",
    "compute_codon_frequencies_f3x4",
    "compute_codon_frequencies_f61",
]
