"""
Unit tests for alignment, tree and site pattern handling.
"""

import numpy as np
import pytest

from slrml.io.patterns import ALL_GAP, GAP, SitePatterns
from slrml.io.sequences import (
    CODON_TO_INDEX,
    CODONS,
    GAP_CODE,
    N_CODONS,
    STOP_CODE,
    Alignment,
    codon_amino_acid,
)
from slrml.io.trees import UNSET_LENGTH, Tree


class TestGeneticCode:
    """Test the codon tables."""

    def test_sense_codons(self):
        """Test that the 61 sense codons are numbered in TCAG order."""
        assert N_CODONS == 61
        assert len(CODONS) == 61
        assert CODONS[0] == "TTT"
        assert CODONS[-1] == "GGG"
        assert "TAA" not in CODON_TO_INDEX
        assert "TAG" not in CODON_TO_INDEX
        assert "TGA" not in CODON_TO_INDEX

    def test_amino_acids(self):
        assert codon_amino_acid(CODON_TO_INDEX["ATG"]) == "M"
        assert codon_amino_acid(CODON_TO_INDEX["TGG"]) == "W"
        assert codon_amino_acid(CODON_TO_INDEX["AGA"]) == codon_amino_acid(CODON_TO_INDEX["CGT"])


class TestSequenceParsing:
    """Test FASTA and PHYLIP parsing."""

    def test_read_phylip(self, primate_phylip_file):
        """Test parsing a sequential PHYLIP file."""
        aln = Alignment.from_phylip(primate_phylip_file, seqtype="codon")

        assert aln.n_species == 5
        assert aln.n_sites == 14
        assert aln.names == ["Human", "Chimp", "Gorilla", "Orang", "Macaque"]
        assert aln.sequences.shape == (5, 14)
        assert aln.sequences[0, 0] == CODON_TO_INDEX["ATG"]

    def test_read_fasta(self, primate_fasta_file, primate_phylip_file):
        """Test that FASTA and PHYLIP give the same alignment."""
        fasta = Alignment.from_fasta(primate_fasta_file)
        phylip = Alignment.from_phylip(primate_phylip_file)

        assert fasta.names == phylip.names
        np.testing.assert_array_equal(fasta.sequences, phylip.sequences)

    def test_format_detection(self, primate_fasta_file, primate_phylip_file):
        assert Alignment.from_file(primate_fasta_file).n_species == 5
        assert Alignment.from_file(primate_phylip_file).n_species == 5

    def test_gaps_are_missing(self, primate_alignment):
        """Test that gap codons are encoded as missing data."""
        assert np.all(primate_alignment.sequences[:, 13] == GAP_CODE)
        assert primate_alignment.sequences[4, 7] == CODON_TO_INDEX["AAA"]

    def test_stop_codons_encoded(self):
        aln = Alignment.from_sequences(["a", "b"], ["ATGTAA", "ATGTGG"])
        assert aln.sequences[0, 1] == STOP_CODE
        assert aln.count_stop_codons() == 1

    def test_invalid_codon_length(self, tmp_path):
        """Test error handling for sequences not divisible by 3."""
        test_file = tmp_path / "invalid.txt"
        with open(test_file, "w") as f:
            f.write("  2   10\n")
            f.write("seq1\nATGATGATGA\n")
            f.write("seq2\nTTTTTTTTTT\n")

        with pytest.raises(ValueError, match="not divisible by 3"):
            Alignment.from_phylip(test_file, seqtype="codon")

    def test_unequal_lengths(self):
        with pytest.raises(ValueError, match="different lengths"):
            Alignment.from_sequences(["a", "b"], ["ATGATG", "ATG"])

    def test_missing_sequences(self, tmp_path):
        test_file = tmp_path / "short.phy"
        test_file.write_text("3 6\nseq1\nATGATG\nseq2\nATGATG\n")
        with pytest.raises(ValueError, match="Expected 3 sequences"):
            Alignment.from_phylip(test_file)

    def test_nucleotide_alignment(self):
        aln = Alignment.from_sequences(["a", "b"], ["TCAG", "TC-N"], seqtype="dna")
        assert aln.n_states == 4
        np.testing.assert_array_equal(aln.sequences[0], [0, 1, 2, 3])
        np.testing.assert_array_equal(aln.sequences[1], [0, 1, GAP_CODE, GAP_CODE])

    def test_repr(self, primate_alignment):
        repr_str = repr(primate_alignment)
        assert "n_species=5" in repr_str
        assert "n_sites=14" in repr_str
        assert "seqtype='codon'" in repr_str


class TestTreeParsing:
    """Test Newick format tree parsing."""

    def test_simple_tree(self):
        """Test parsing a simple 3-taxon tree."""
        tree = Tree.from_newick("((1,2),3);")

        assert tree.n_nodes == 5
        assert tree.n_leaves == 3
        assert tree.n_branches == 4
        assert tree.leaf_names == ["1", "2", "3"]
        assert not tree.root.is_leaf
        assert len(tree.root.children) == 2

    def test_branch_lengths(self):
        """Test parsing tree with branch lengths."""
        tree = Tree.from_newick("((1:0.1, 2:0.2):0.12, 3:0.3, 4:0.4);")

        leaves = {node.name: node for node in tree.postorder() if node.is_leaf}
        assert leaves["1"].branch_length == pytest.approx(0.1)
        assert leaves["4"].branch_length == pytest.approx(0.4)
        assert leaves["1"].parent.branch_length == pytest.approx(0.12)
        assert tree.total_length == pytest.approx(1.12)

    def test_unset_lengths(self):
        """Test that missing branch lengths are marked unset."""
        tree = Tree.from_newick("((a:0.1,b),c:0.2);")

        assert tree.has_unset_lengths()
        lengths = tree.branch_lengths()
        assert np.count_nonzero(lengths == UNSET_LENGTH) == 2

    def test_randomize_unset_lengths(self):
        tree = Tree.from_newick("((a:0.1,b),c:0.2);")
        n_replaced = tree.randomize_unset_branch_lengths(np.random.default_rng(1))

        assert n_replaced == 2
        assert not tree.has_unset_lengths()
        leaves = {node.name: node for node in tree.postorder() if node.is_leaf}
        assert leaves["a"].branch_length == pytest.approx(0.1)

    def test_tree_with_branch_marks(self):
        """Test that PAML branch marks are skipped."""
        tree = Tree.from_newick("((1,2) #1, ((3,4), 5), (6,7));")
        assert tree.n_leaves == 7

        marked = Tree.from_newick("((a:0.1,b:0.2) #1:0.3,c#2:0.4);")
        assert marked.leaf_names == ["a", "b", "c"]
        np.testing.assert_allclose(marked.branch_lengths(), [0.1, 0.2, 0.3, 0.4])
        assert "#" not in marked.to_newick()

    def test_branch_order(self):
        """Test that branch vectors follow post-order without the root."""
        tree = Tree.from_newick("((a:1,b:2):3,c:4);")
        np.testing.assert_allclose(tree.branch_lengths(), [1.0, 2.0, 3.0, 4.0])

        tree.set_branch_lengths([0.5, 0.6, 0.7, 0.8])
        np.testing.assert_allclose(tree.branch_lengths(), [0.5, 0.6, 0.7, 0.8])

        with pytest.raises(ValueError, match="Expected 4 branch lengths"):
            tree.set_branch_lengths([1.0, 2.0])

    def test_postorder_and_preorder(self):
        tree = Tree.from_newick("((1,2),3);")

        post = tree.postorder()
        pre = tree.preorder()
        assert post[-1] is tree.root
        assert pre[0] is tree.root
        for node in post:
            for child in node.children:
                assert post.index(child) < post.index(node)
                assert pre.index(child) > pre.index(node)

    def test_copy_is_independent(self, primate_tree):
        copy = primate_tree.copy()
        copy.scale(2.0)

        assert copy.leaf_names == primate_tree.leaf_names
        np.testing.assert_allclose(copy.branch_lengths(), 2.0 * primate_tree.branch_lengths())

    def test_newick_round_trip(self):
        tree = Tree.from_newick("((a:0.1,b:0.2) #1:0.3,c:0.4);")
        again = Tree.from_newick(tree.to_newick())

        assert again.leaf_names == tree.leaf_names
        np.testing.assert_allclose(again.branch_lengths(), tree.branch_lengths())

    def test_comments_and_header(self):
        """Test that comments and a PAML header line are skipped."""
        tree = Tree.from_newick("  3  1\n\n((1,2),3); // this is a comment")
        assert tree.n_leaves == 3

    def test_invalid_trees(self):
        with pytest.raises(ValueError, match="missing semicolon"):
            Tree.from_newick("((1,2),3)")
        with pytest.raises(ValueError, match="duplicate leaf names"):
            Tree.from_newick("((1,2),1);")
        with pytest.raises(ValueError, match="Invalid branch length"):
            Tree.from_newick("((1:x,2),3);")


class TestSitePatterns:
    """Test compression of alignment columns."""

    def test_compression(self, primate_patterns):
        """Test that identical informative columns share a pattern."""
        # 12 informative columns, two of them identical
        assert primate_patterns.n_sites == 14
        assert primate_patterns.n_patterns == 11
        assert primate_patterns.weights.sum() == 12
        assert primate_patterns.index[1] == primate_patterns.index[12]

    def test_trivial_columns(self, primate_patterns):
        """Test the sentinels of single-observation and all-gap columns."""
        assert primate_patterns.index[13] == ALL_GAP
        assert primate_patterns.index[7] == -(CODON_TO_INDEX["AAA"] + 1)
        np.testing.assert_array_equal(
            primate_patterns.single_observation_states(), [CODON_TO_INDEX["AAA"]]
        )

    def test_column(self, primate_patterns):
        assert len(primate_patterns.column(13)) == 0
        np.testing.assert_array_equal(primate_patterns.column(7), [CODON_TO_INDEX["AAA"]])
        np.testing.assert_array_equal(
            primate_patterns.column(0), [CODON_TO_INDEX["ATG"]] * 5
        )

    def test_gaps_in_patterns(self):
        patterns = SitePatterns.from_states(
            ["a", "b", "c"], np.array([[0, -1], [1, 2], [-1, 3]]), n_states=4
        )
        assert patterns.n_patterns == 2
        assert np.count_nonzero(patterns.states == GAP) == 2

    def test_subset(self, primate_patterns):
        pid = int(primate_patterns.index[2])
        subset = primate_patterns.subset([pid])

        assert subset.n_patterns == 1
        assert subset.weights[0] == 1.0
        np.testing.assert_array_equal(subset.states[:, 0], primate_patterns.states[:, pid])

    def test_stop_codons_rejected(self):
        aln = Alignment.from_sequences(["a", "b"], ["ATGTAA", "ATGTGG"])
        with pytest.raises(ValueError, match="stop codon"):
            SitePatterns.from_alignment(aln)
