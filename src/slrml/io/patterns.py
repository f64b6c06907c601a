"""
Compression of alignment columns into unique site patterns.

Identical columns only need their likelihood computed once. Columns with a
single observed character or with no observed characters at all have a
trivial likelihood and are kept out of the pattern set entirely; the column
index records what happened to each column:

- ``index[site] >= 0``: id of the unique pattern for the column
- ``index[site] == -(state + 1)``: single observation of ``state``
- ``index[site] == ALL_GAP``: no observation
"""

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from .sequences import Alignment

GAP = -1
ALL_GAP = np.iinfo(np.int32).min


@dataclass
class SitePatterns:
    """
    Unique alignment columns with their multiplicities.

    Attributes
    ----------
    names : list[str]
        Species names, one per row of ``states``
    states : ndarray, shape (n_species, n_patterns)
        Observed state per species and pattern, GAP for missing data
    weights : ndarray, shape (n_patterns,)
        Number of alignment columns sharing each pattern
    index : ndarray, shape (n_sites,)
        Per-column pattern id or trivial-column sentinel (see module docs)
    n_states : int
        Size of the state alphabet
    seqtype : str
        Sequence type of the source alignment
    """

    names: list[str]
    states: np.ndarray
    weights: np.ndarray
    index: np.ndarray
    n_states: int
    seqtype: str = "codon"

    @property
    def n_patterns(self) -> int:
        return self.states.shape[1]

    @property
    def n_sites(self) -> int:
        return len(self.index)

    @property
    def n_species(self) -> int:
        return len(self.names)

    @classmethod
    def from_alignment(cls, alignment: Alignment) -> "SitePatterns":
        """
        Compress an alignment.

        Raises
        ------
        ValueError
            If a codon alignment contains stop codons.
        """
        if alignment.seqtype == 'codon' and alignment.count_stop_codons() > 0:
            raise ValueError(
                f"Alignment contains {alignment.count_stop_codons()} stop codon(s)"
            )
        return cls.from_states(
            alignment.names, alignment.sequences, alignment.n_states, alignment.seqtype
        )

    @classmethod
    def from_states(
        cls,
        names: Sequence[str],
        sequences: np.ndarray,
        n_states: int,
        seqtype: str = "codon",
    ) -> "SitePatterns":
        """Compress an encoded (n_species, n_sites) state matrix."""
        sequences = np.asarray(sequences, dtype=np.int64)
        if sequences.ndim != 2 or sequences.shape[0] != len(names):
            raise ValueError("Sequences must be a (n_species, n_sites) array")

        cleaned = np.where((sequences >= 0) & (sequences < n_states), sequences, GAP)
        n_observed = np.count_nonzero(cleaned != GAP, axis=0)

        index = np.empty(cleaned.shape[1], dtype=np.int64)
        index[n_observed == 0] = ALL_GAP

        single = np.flatnonzero(n_observed == 1)
        for site in single:
            state = cleaned[cleaned[:, site] != GAP, site][0]
            index[site] = -(state + 1)

        informative = np.flatnonzero(n_observed > 1)
        if len(informative) > 0:
            unique, inverse, counts = np.unique(
                cleaned[:, informative], axis=1, return_inverse=True, return_counts=True
            )
            index[informative] = inverse.reshape(-1)
        else:
            unique = np.empty((cleaned.shape[0], 0), dtype=np.int64)
            counts = np.empty(0, dtype=np.int64)

        return cls(
            names=list(names),
            states=unique,
            weights=counts.astype(float),
            index=index,
            n_states=n_states,
            seqtype=seqtype,
        )

    def subset(self, pattern_ids: Sequence[int]) -> "SitePatterns":
        """
        Patterns restricted to the given ids, each with weight one.

        The column index of the subset maps column k to pattern k.
        """
        pattern_ids = np.asarray(pattern_ids, dtype=np.int64)
        return SitePatterns(
            names=self.names,
            states=self.states[:, pattern_ids],
            weights=np.ones(len(pattern_ids)),
            index=np.arange(len(pattern_ids)),
            n_states=self.n_states,
            seqtype=self.seqtype,
        )

    def single_observation_states(self) -> np.ndarray:
        """States observed in single-observation columns, one per such column."""
        trivial = self.index[(self.index < 0) & (self.index != ALL_GAP)]
        return -trivial - 1

    def column(self, site: int) -> np.ndarray:
        """Observed states (gaps removed) of an original alignment column."""
        idx = self.index[site]
        if idx == ALL_GAP:
            return np.empty(0, dtype=np.int64)
        if idx < 0:
            return np.array([-idx - 1])
        states = self.states[:, idx]
        return states[states != GAP]

    def leaf_states(self, name: str) -> np.ndarray:
        """Per-pattern observed states of one species."""
        return self.states[self.names.index(name)]
