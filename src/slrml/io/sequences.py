"""
Sequence file parsing and alignment handling.
"""

import re
from dataclasses import dataclass
from pathlib import Path

import numpy as np


# Genetic code tables (standard code)
GENETIC_CODE = {
    'TTT': 'F', 'TTC': 'F', 'TTA': 'L', 'TTG': 'L',
    'TCT': 'S', 'TCC': 'S', 'TCA': 'S', 'TCG': 'S',
    'TAT': 'Y', 'TAC': 'Y', 'TAA': '*', 'TAG': '*',
    'TGT': 'C', 'TGC': 'C', 'TGA': '*', 'TGG': 'W',
    'CTT': 'L', 'CTC': 'L', 'CTA': 'L', 'CTG': 'L',
    'CCT': 'P', 'CCC': 'P', 'CCA': 'P', 'CCG': 'P',
    'CAT': 'H', 'CAC': 'H', 'CAA': 'Q', 'CAG': 'Q',
    'CGT': 'R', 'CGC': 'R', 'CGA': 'R', 'CGG': 'R',
    'ATT': 'I', 'ATC': 'I', 'ATA': 'I', 'ATG': 'M',
    'ACT': 'T', 'ACC': 'T', 'ACA': 'T', 'ACG': 'T',
    'AAT': 'N', 'AAC': 'N', 'AAA': 'K', 'AAG': 'K',
    'AGT': 'S', 'AGC': 'S', 'AGA': 'R', 'AGG': 'R',
    'GTT': 'V', 'GTC': 'V', 'GTA': 'V', 'GTG': 'V',
    'GCT': 'A', 'GCC': 'A', 'GCA': 'A', 'GCG': 'A',
    'GAT': 'D', 'GAC': 'D', 'GAA': 'E', 'GAG': 'E',
    'GGT': 'G', 'GGC': 'G', 'GGA': 'G', 'GGG': 'G',
}

# Sense codons in TCAG order: codon index n0*16 + n1*4 + n2 with stops removed
_INDEX_TO_NUCLEOTIDE = {0: 'T', 1: 'C', 2: 'A', 3: 'G'}
CODONS = []
for i in range(64):
    codon = (
        _INDEX_TO_NUCLEOTIDE[i // 16]
        + _INDEX_TO_NUCLEOTIDE[(i // 4) % 4]
        + _INDEX_TO_NUCLEOTIDE[i % 4]
    )
    if GENETIC_CODE[codon] != '*':
        CODONS.append(codon)

CODON_TO_INDEX = {codon: i for i, codon in enumerate(CODONS)}
INDEX_TO_CODON = {i: codon for i, codon in enumerate(CODONS)}
N_CODONS = len(CODONS)

# Special codes for missing/ambiguous data
GAP_CODE = -1  # Gap or ambiguous character, treated as missing
STOP_CODE = -2  # Stop codon

NUCLEOTIDES = 'TCAG'
NUCLEOTIDE_TO_INDEX = {nuc: i for i, nuc in enumerate(NUCLEOTIDES)}
INDEX_TO_NUCLEOTIDE = dict(_INDEX_TO_NUCLEOTIDE)

SEQTYPE_STATES = {'codon': N_CODONS, 'dna': 4}


def codon_amino_acid(index: int) -> str:
    """Amino acid encoded by sense codon index."""
    return GENETIC_CODE[INDEX_TO_CODON[index]]


@dataclass
class Alignment:
    """
    Multiple sequence alignment.

    Attributes
    ----------
    names : list[str]
        Sequence names/labels
    sequences : ndarray, shape (n_species, n_sites)
        Encoded sequences as integer arrays. Missing data is GAP_CODE.
    n_species : int
        Number of sequences
    n_sites : int
        Number of sites (alignment columns, codons for codon data)
    seqtype : str
        Sequence type ('codon' or 'dna')
    """

    names: list[str]
    sequences: np.ndarray
    n_species: int
    n_sites: int
    seqtype: str

    @property
    def n_states(self) -> int:
        return SEQTYPE_STATES[self.seqtype]

    @classmethod
    def from_file(cls, filepath: Path | str, seqtype: str = "codon") -> "Alignment":
        """Read a FASTA or PHYLIP alignment, detected from the first character."""
        with open(filepath, 'r') as f:
            first = f.read(1024).lstrip()
        if first.startswith('>'):
            return cls.from_fasta(filepath, seqtype=seqtype)
        return cls.from_phylip(filepath, seqtype=seqtype)

    @classmethod
    def from_phylip(
        cls, filepath: Path | str, seqtype: str = "codon"
    ) -> "Alignment":
        """
        Parse PHYLIP format alignment file.

        Custom parser for PAML-style PHYLIP format (sequential).
        The first line contains n_sequences and sequence_length.
        Each sequence starts with a name line, followed by sequence data.
        A name followed by its sequence on the same line is also accepted.

        Parameters
        ----------
        filepath : Path or str
            Path to PHYLIP format file
        seqtype : str
            Sequence type: 'codon' or 'dna'

        Returns
        -------
        Alignment
            Parsed alignment
        """
        filepath = Path(filepath)

        with open(filepath, 'r') as f:
            lines = [line.rstrip() for line in f.readlines()]

        while lines and not lines[0].strip():
            lines.pop(0)
        if not lines:
            raise ValueError(f"Empty alignment file: {filepath}")

        header = lines[0].strip().split()
        try:
            n_species = int(header[0])
            n_chars = int(header[1])
        except (IndexError, ValueError):
            raise ValueError(f"Invalid PHYLIP header: {lines[0]!r}")

        names = []
        sequences_raw = []

        i = 1
        while i < len(lines) and len(names) < n_species:
            line = lines[i].strip()
            i += 1

            if not line:
                continue

            # "name  SEQUENCE" on one line, or the name alone
            parts = line.split(None, 1)
            names.append(parts[0])
            seq_data = re.sub(r'\s', '', parts[1]).upper() if len(parts) > 1 else ""

            while i < len(lines) and len(seq_data) < n_chars:
                line = lines[i].strip()
                i += 1
                if not line:
                    continue
                seq_data += re.sub(r'\s', '', line).upper()

            sequences_raw.append(seq_data)

        if len(names) != n_species:
            raise ValueError(f"Expected {n_species} sequences, found {len(names)}")

        for name, seq in zip(names, sequences_raw):
            if len(seq) != n_chars:
                raise ValueError(
                    f"Sequence {name} has length {len(seq)}, expected {n_chars}"
                )

        return cls.from_sequences(names, sequences_raw, seqtype=seqtype)

    @classmethod
    def from_fasta(
        cls, filepath: Path | str, seqtype: str = "codon"
    ) -> "Alignment":
        """
        Parse FASTA format alignment file.

        Parameters
        ----------
        filepath : Path or str
            Path to FASTA format file
        seqtype : str
            Sequence type: 'codon' or 'dna'

        Returns
        -------
        Alignment
            Parsed alignment
        """
        filepath = Path(filepath)

        names = []
        sequences_raw = []

        with open(filepath, 'r') as f:
            current_name = None
            current_seq = []

            for line in f:
                line = line.strip()

                if not line:
                    continue

                if line.startswith('>'):
                    if current_name is not None:
                        names.append(current_name)
                        sequences_raw.append(''.join(current_seq))
                    current_name = line[1:].strip()
                    current_seq = []
                else:
                    current_seq.append(line.upper())

            if current_name is not None:
                names.append(current_name)
                sequences_raw.append(''.join(current_seq))

        if not names:
            raise ValueError("No sequences found in FASTA file")

        sequences_clean = [re.sub(r'\s', '', seq) for seq in sequences_raw]
        return cls.from_sequences(names, sequences_clean, seqtype=seqtype)

    @classmethod
    def from_sequences(
        cls, names: list[str], sequences: list[str], seqtype: str = "codon"
    ) -> "Alignment":
        """
        Build an alignment from raw nucleotide strings.

        Raises
        ------
        ValueError
            If the sequences have different lengths, a codon alignment length
            is not a multiple of three, or the sequence type is unknown.
        """
        if seqtype not in SEQTYPE_STATES:
            raise ValueError(f"Unknown seqtype: {seqtype}")
        if len(names) != len(sequences):
            raise ValueError("Number of names and sequences differ")
        if not sequences:
            raise ValueError("Alignment has no sequences")

        sequences = [seq.upper() for seq in sequences]
        seq_lengths = {len(seq) for seq in sequences}
        if len(seq_lengths) > 1:
            raise ValueError(f"Sequences have different lengths: {seq_lengths}")
        n_chars = seq_lengths.pop()

        if seqtype == 'codon':
            if n_chars % 3 != 0:
                raise ValueError(f"Codon sequence length {n_chars} not divisible by 3")
            encoded = cls._encode_codons(sequences)
        else:
            encoded = cls._encode_nucleotides(sequences)

        return cls(
            names=list(names),
            sequences=encoded,
            n_species=len(names),
            n_sites=encoded.shape[1],
            seqtype=seqtype,
        )

    @staticmethod
    def _encode_codons(sequences: list[str]) -> np.ndarray:
        """
        Encode codon sequences as integer arrays.

        Sense codons map to 0-60, stop codons to STOP_CODE, anything containing
        a gap or ambiguity character to GAP_CODE.
        """
        n_sequences = len(sequences)
        n_codons = len(sequences[0]) // 3

        encoded = np.full((n_sequences, n_codons), GAP_CODE, dtype=np.int16)

        for i, seq in enumerate(sequences):
            for j in range(n_codons):
                codon = seq[j * 3 : j * 3 + 3].replace('U', 'T')
                if codon in CODON_TO_INDEX:
                    encoded[i, j] = CODON_TO_INDEX[codon]
                elif GENETIC_CODE.get(codon) == '*':
                    encoded[i, j] = STOP_CODE

        return encoded

    @staticmethod
    def _encode_nucleotides(sequences: list[str]) -> np.ndarray:
        """Encode DNA sequences as integer arrays (0=T, 1=C, 2=A, 3=G)."""
        n_sequences = len(sequences)
        n_sites = len(sequences[0])

        encoded = np.full((n_sequences, n_sites), GAP_CODE, dtype=np.int16)

        for i, seq in enumerate(sequences):
            for j, nucleotide in enumerate(seq.replace('U', 'T')):
                if nucleotide in NUCLEOTIDE_TO_INDEX:
                    encoded[i, j] = NUCLEOTIDE_TO_INDEX[nucleotide]

        return encoded

    def count_stop_codons(self) -> int:
        return int(np.count_nonzero(self.sequences == STOP_CODE))

    def __repr__(self) -> str:
        return (
            f"Alignment(n_species={self.n_species}, n_sites={self.n_sites}, "
            f"seqtype='{self.seqtype}')"
        )
