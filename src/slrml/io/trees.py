"""
Phylogenetic tree parsing and manipulation.
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np

# Branch length for a branch whose length was not given (or is invalid) and
# must be estimated.
UNSET_LENGTH = -1.0


@dataclass
class TreeNode:
    """
    Phylogenetic tree node.

    Attributes
    ----------
    id : int
        Node identifier
    name : Optional[str]
        Node name (for leaves)
    parent : Optional[TreeNode]
        Parent node
    children : list[TreeNode]
        Child nodes
    branch_length : float
        Length of the branch to the parent. Negative means unset.
    """

    id: int
    name: Optional[str] = None
    parent: Optional["TreeNode"] = None
    children: list["TreeNode"] = field(default_factory=list)
    branch_length: float = UNSET_LENGTH

    @property
    def is_leaf(self) -> bool:
        """Check if node is a leaf."""
        return len(self.children) == 0


@dataclass
class Tree:
    """
    Phylogenetic tree.

    An unrooted tree is represented with a trifurcating root. The topology is
    fixed once parsed; only branch lengths change.

    Attributes
    ----------
    root : TreeNode
        Root node of the tree
    n_nodes : int
        Total number of nodes
    n_leaves : int
        Number of leaf nodes
    leaf_names : list[str]
        Names of leaf nodes
    """

    root: TreeNode
    n_nodes: int
    n_leaves: int
    leaf_names: list[str]

    @classmethod
    def from_file(cls, filepath: Path | str) -> "Tree":
        """Read the first Newick tree from a file."""
        with open(filepath, 'r') as f:
            return cls.from_newick(f.read())

    @classmethod
    def from_newick(cls, newick_string: str) -> "Tree":
        """
        Parse Newick format tree string.

        Accepts PAML-style tree files: comments are stripped and a leading
        "n_species n_trees" header line is skipped.

        Parameters
        ----------
        newick_string : str
            Newick format tree

        Returns
        -------
        Tree
            Parsed tree. Branches without a length are marked unset.
        """
        newick = re.sub(r'//.*', '', newick_string)
        newick = re.sub(r'/\s*\*.*?\*\s*/', '', newick)
        newick = newick.strip()

        if ';' not in newick:
            raise ValueError("Invalid Newick format: missing semicolon")

        lines = newick.split('\n')
        tree_lines = []
        for line in lines:
            # Skip lines that look like PAML headers (just numbers)
            if line.strip() and not re.match(r'^\s*\d+\s+\d+\s*$', line):
                tree_lines.append(line)
                if ';' in line:
                    break

        if not tree_lines:
            raise ValueError("Invalid Newick format: no tree found")

        tree_line = ''.join(tree_lines)
        tree_line = tree_line.replace('\n', '').replace('\t', '').replace('\r', '')

        node_id_counter = [0]

        def skip_whitespace(s: str, pos: int) -> int:
            while pos < len(s) and s[pos] in ' \t\n\r':
                pos += 1
            return pos

        def parse_node(s: str, start: int, parent: Optional[TreeNode] = None) -> tuple[TreeNode, int]:
            """Parse a node from position start in string s."""
            node = TreeNode(id=node_id_counter[0])
            node_id_counter[0] += 1
            node.parent = parent
            pos = skip_whitespace(s, start)

            if pos < len(s) and s[pos] == '(':
                pos = skip_whitespace(s, pos + 1)
                while True:
                    child, pos = parse_node(s, pos, node)
                    node.children.append(child)
                    pos = skip_whitespace(s, pos)

                    if pos < len(s) and s[pos] == ',':
                        pos = skip_whitespace(s, pos + 1)
                        continue
                    elif pos < len(s) and s[pos] == ')':
                        pos = skip_whitespace(s, pos + 1)
                        break
                    else:
                        raise ValueError(f"Expected ',' or ')' at position {pos}")

            name_start = pos
            while pos < len(s) and s[pos] not in ',:();# \t\n\r':
                pos += 1
            if pos > name_start:
                node.name = s[name_start:pos]

            pos = skip_whitespace(s, pos)

            # PAML branch marks such as #1 are skipped
            if pos < len(s) and s[pos] == '#':
                while pos < len(s) and s[pos] not in ',:(); \t\n\r':
                    pos += 1

            pos = skip_whitespace(s, pos)

            if pos < len(s) and s[pos] == ':':
                pos += 1
                pos = skip_whitespace(s, pos)
                length_start = pos
                while pos < len(s) and s[pos] not in ',(); \t\n\r':
                    pos += 1
                try:
                    node.branch_length = float(s[length_start:pos])
                except ValueError:
                    raise ValueError(f"Invalid branch length: {s[length_start:pos]}")

            return node, pos

        root, pos = parse_node(tree_line, 0, None)
        pos = skip_whitespace(tree_line, pos)
        if pos >= len(tree_line) or tree_line[pos] != ';':
            raise ValueError(f"Unexpected character at position {pos} in tree")

        def count_nodes(node: TreeNode) -> tuple[int, int, list[str]]:
            """Count total nodes, leaves, and collect leaf names."""
            if node.is_leaf:
                leaf_name = node.name if node.name else str(node.id)
                return 1, 1, [leaf_name]
            total_nodes = 1
            total_leaves = 0
            leaf_names = []
            for child in node.children:
                n, l, names = count_nodes(child)
                total_nodes += n
                total_leaves += l
                leaf_names.extend(names)
            return total_nodes, total_leaves, leaf_names

        n_nodes, n_leaves, leaf_names = count_nodes(root)

        if len(set(leaf_names)) != len(leaf_names):
            raise ValueError("Tree has duplicate leaf names")

        return cls(
            root=root,
            n_nodes=n_nodes,
            n_leaves=n_leaves,
            leaf_names=leaf_names
        )

    def postorder(self) -> list[TreeNode]:
        """
        Return nodes in post-order traversal (leaves to root).

        Returns
        -------
        list[TreeNode]
            Nodes in post-order
        """
        result = []

        def traverse(node: TreeNode) -> None:
            for child in node.children:
                traverse(child)
            result.append(node)

        traverse(self.root)
        return result

    def preorder(self) -> list[TreeNode]:
        """Return nodes in pre-order traversal (root to leaves)."""
        result = []
        stack = [self.root]
        while stack:
            node = stack.pop()
            result.append(node)
            stack.extend(reversed(node.children))
        return result

    def branch_nodes(self) -> list[TreeNode]:
        """
        Nodes owning a branch, in post-order.

        This is the order in which branch lengths appear in parameter vectors.
        """
        return [node for node in self.postorder() if node.parent is not None]

    @property
    def n_branches(self) -> int:
        return self.n_nodes - 1

    def get_branches(self) -> list[tuple[TreeNode, TreeNode]]:
        """
        Get all branches as (parent, child) pairs.

        Returns
        -------
        list[tuple[TreeNode, TreeNode]]
            List of (parent, child) tuples for each branch
        """
        return [(node.parent, node) for node in self.branch_nodes()]

    def branch_lengths(self) -> np.ndarray:
        """Branch lengths in branch_nodes() order."""
        return np.array([node.branch_length for node in self.branch_nodes()])

    def set_branch_lengths(self, lengths) -> None:
        nodes = self.branch_nodes()
        if len(lengths) != len(nodes):
            raise ValueError(
                f"Expected {len(nodes)} branch lengths, got {len(lengths)}"
            )
        for node, length in zip(nodes, lengths):
            node.branch_length = float(length)

    def has_unset_lengths(self) -> bool:
        return any(node.branch_length < 0.0 for node in self.branch_nodes())

    def randomize_unset_branch_lengths(
        self, rng: Optional[np.random.Generator] = None, mean: float = 0.1
    ) -> int:
        """
        Replace unset (negative) branch lengths by exponential random draws.

        Parameters
        ----------
        rng : numpy.random.Generator, optional
            Random number generator (a fresh default generator if None)
        mean : float
            Mean of the exponential distribution

        Returns
        -------
        int
            Number of branch lengths replaced
        """
        if rng is None:
            rng = np.random.default_rng()
        n_replaced = 0
        for node in self.branch_nodes():
            if node.branch_length < 0.0:
                node.branch_length = float(rng.exponential(mean))
                n_replaced += 1
        return n_replaced

    def scale(self, factor: float) -> None:
        """Multiply every branch length by factor."""
        for node in self.branch_nodes():
            node.branch_length *= factor

    @property
    def total_length(self) -> float:
        return float(sum(node.branch_length for node in self.branch_nodes()))

    def to_newick(self, precision: int = 6) -> str:
        """Write the tree as a Newick string."""

        def write(node: TreeNode) -> str:
            text = ''
            if node.children:
                text = '(' + ','.join(write(child) for child in node.children) + ')'
            if node.name:
                text += node.name
            if node.parent is not None and node.branch_length >= 0.0:
                text += f":{node.branch_length:.{precision}f}"
            return text

        return write(self.root) + ';'

    def copy(self) -> "Tree":
        """Independent copy with the same topology and branch lengths."""
        return Tree.from_newick(self.to_newick(precision=17))
