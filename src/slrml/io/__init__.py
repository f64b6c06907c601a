"""
Input/Output modules for sequence alignments and phylogenetic trees.

This module provides classes for reading and working with:

- **Sequence alignments**: FASTA and PHYLIP formats
- **Phylogenetic trees**: Newick format
- **Site patterns**: alignment columns compressed into unique patterns

The main classes handle file parsing, format detection, and data validation.
"""

from slrml.io.sequences import Alignment
from slrml.io.trees import Tree, TreeNode
from slrml.io.patterns import SitePatterns

__all__ = ["Alignment", "Tree", "TreeNode", "SitePatterns"]
