"""
Pytest configuration and shared fixtures.
"""

import numpy as np
import pytest
from typer.testing import CliRunner

from slrml.io.patterns import SitePatterns
from slrml.io.sequences import Alignment
from slrml.io.trees import Tree

# Fourteen codon columns:
#  1 constant, 2 synonymous, 3 variable, 4-7 synonymous, 8 single character,
#  9 constant, 10-11 variable, 12 synonymous, 13 same as 2, 14 all gaps
PRIMATE_CODONS = {
    "Human":   ["ATG", "GCT", "AAA", "TTT", "CTG", "GGA", "CCC", "---", "TGG", "CAT", "GAA", "ACC", "GCT", "---"],
    "Chimp":   ["ATG", "GCC", "AAA", "TTC", "CTG", "GGA", "CCC", "---", "TGG", "CAT", "GAT", "ACC", "GCC", "---"],
    "Gorilla": ["ATG", "GCA", "AAG", "TTT", "CTA", "GGG", "CCA", "---", "TGG", "CGT", "GAA", "ACC", "GCA", "---"],
    "Orang":   ["ATG", "GCT", "AGA", "TTT", "TTG", "GGA", "CCC", "---", "TGG", "CAT", "GAA", "ACT", "GCT", "---"],
    "Macaque": ["ATG", "GCG", "AGG", "TTT", "CTG", "GGT", "CCT", "AAA", "TGG", "CAC", "GAC", "ACC", "GCG", "---"],
}

PRIMATE_TREE = "((Human:0.05,Chimp:0.04):0.02,Gorilla:0.07,(Orang:0.1,Macaque:0.2):0.05);"


@pytest.fixture
def cli_runner():
    """CLI test runner for Typer apps."""
    return CliRunner()


@pytest.fixture
def primate_sequences():
    """Species names and nucleotide strings of the small primate alignment."""
    names = list(PRIMATE_CODONS)
    return names, ["".join(PRIMATE_CODONS[name]) for name in names]


@pytest.fixture
def primate_alignment(primate_sequences):
    names, sequences = primate_sequences
    return Alignment.from_sequences(names, sequences, seqtype="codon")


@pytest.fixture
def primate_patterns(primate_alignment):
    return SitePatterns.from_alignment(primate_alignment)


@pytest.fixture
def primate_tree():
    return Tree.from_newick(PRIMATE_TREE)


@pytest.fixture
def primate_fasta_file(tmp_path, primate_sequences):
    """Primate alignment written as FASTA, sequences wrapped over two lines."""
    names, sequences = primate_sequences
    fasta_file = tmp_path / "primates.fasta"
    with open(fasta_file, "w") as f:
        for name, seq in zip(names, sequences):
            f.write(f">{name}\n{seq[:21]}\n{seq[21:]}\n")
    return fasta_file


@pytest.fixture
def primate_phylip_file(tmp_path, primate_sequences):
    """Primate alignment written as PAML-style sequential PHYLIP."""
    names, sequences = primate_sequences
    phylip_file = tmp_path / "primates.phy"
    with open(phylip_file, "w") as f:
        f.write(f"  {len(names)}   {len(sequences[0])}\n\n")
        for name, seq in zip(names, sequences):
            f.write(f"{name}\n{seq}\n")
    return phylip_file


@pytest.fixture
def primate_tree_file(tmp_path):
    tree_file = tmp_path / "primates.nwk"
    tree_file.write_text(PRIMATE_TREE + "\n")
    return tree_file


@pytest.fixture
def dna_patterns():
    """Four nucleotide columns for a three-taxon tree (states T=0, C=1, A=2, G=3)."""
    states = np.array([
        [0, 0, 1, 2],
        [0, 1, 1, 3],
        [0, 2, 1, 0],
    ])
    return SitePatterns.from_states(["A", "B", "C"], states, n_states=4, seqtype="dna")
