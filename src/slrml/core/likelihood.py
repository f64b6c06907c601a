"""
Likelihood calculation for phylogenetic models.

This module implements Felsenstein's pruning algorithm with deferred
rescaling of partial likelihoods, and a backward (pre-order) pass giving
the analytic derivative of every site pattern's log-likelihood with respect
to every branch length and model parameter from a single pair of traversals.

Partial likelihoods are stored per node as (n_patterns, n_states) arrays.
For a node with branch transition matrix P, the vector propagated to its
parent is ``plik @ P.T``, indexed by the parent's state.
"""

from dataclasses import dataclass

import numpy as np

from ..io.patterns import GAP, SitePatterns
from ..io.trees import Tree
from ..models.base import SubstitutionModel
from .matrix import mult_transpose

# Levels of the tree multiplied into a partial likelihood vector before it is
# rescaled.
RESCALE_EVERY = 20

BRANCH_OPTIONS = ("variable", "proportional", "fixed")


class TreeBuffers:
    """
    Per-node working storage for one likelihood engine.

    Attributes
    ----------
    plik : ndarray, shape (n_nodes, n_patterns, n_states)
        Forward partial likelihoods (data below the node given its state)
    mid : ndarray, shape (n_nodes, n_patterns, n_states)
        Forward partials propagated along the node's branch
    back : ndarray, shape (n_nodes, n_patterns, n_states)
        Backward partials (data outside the node's subtree given the
        parent's state)
    scale, bscale : ndarray, shape (n_nodes, n_patterns)
        Log of all rescaling divisors applied to plik / back
    count, bcount : ndarray, shape (n_nodes,)
        Tree levels accumulated since the last rescale; reset to zero
        exactly when a rescale is applied
    pmat : ndarray, shape (n_nodes, n_states, n_states)
        Transition matrix of each node's branch from the last forward pass
    """

    def __init__(self, n_nodes: int, n_patterns: int, n_states: int):
        self.plik = np.ones((n_nodes, n_patterns, n_states))
        self.mid = np.ones((n_nodes, n_patterns, n_states))
        self.back = np.ones((n_nodes, n_patterns, n_states))
        self.scale = np.zeros((n_nodes, n_patterns))
        self.bscale = np.zeros((n_nodes, n_patterns))
        self.count = np.zeros(n_nodes, dtype=np.int64)
        self.bcount = np.zeros(n_nodes, dtype=np.int64)
        self.pmat = np.zeros((n_nodes, n_states, n_states))


@dataclass
class LikelihoodResult:
    """
    Outcome of a forward pass.

    Attributes
    ----------
    site_likelihood : ndarray, shape (n_patterns,)
        Root partials weighted by equilibrium frequencies (scaled)
    log_scale : ndarray, shape (n_patterns,)
        Log-scale accumulated at the root; the pattern likelihood is
        site_likelihood * exp(log_scale)
    pattern_log_likelihood : ndarray, shape (n_patterns,)
        Log-likelihood of each pattern, -inf where the calculation failed
    failed : ndarray of bool, shape (n_patterns,)
        Patterns whose likelihood was non-positive or non-finite
    log_likelihood : float
        Weighted sum over patterns plus trivial single-observation columns,
        -inf if any pattern failed
    """

    site_likelihood: np.ndarray
    log_scale: np.ndarray
    pattern_log_likelihood: np.ndarray
    failed: np.ndarray
    log_likelihood: float

    @property
    def ok(self) -> bool:
        return not bool(np.any(self.failed))

    @property
    def n_failed(self) -> int:
        return int(np.count_nonzero(self.failed))


class LikelihoodEngine:
    """
    Compute phylogenetic likelihoods and gradients by tree pruning.

    The engine owns its buffers; the tree's branch lengths and the model's
    parameters are read at every evaluation, so callers update those and
    call ``evaluate`` again. Evaluations must not interleave with parameter
    updates, and an engine must not be shared between threads.

    Parameters
    ----------
    tree : Tree
        Phylogenetic tree. Leaf names must match the pattern species names.
    patterns : SitePatterns
        Compressed alignment
    model : SubstitutionModel
        Substitution model with the same number of states as the patterns
    rescale_every : int
        Number of tree levels between rescalings of partial likelihoods
    """

    def __init__(
        self,
        tree: Tree,
        patterns: SitePatterns,
        model: SubstitutionModel,
        rescale_every: int = RESCALE_EVERY,
    ):
        if patterns.n_states != model.n_states:
            raise ValueError(
                f"Patterns have {patterns.n_states} states but model has {model.n_states}"
            )
        if len(patterns.names) != tree.n_leaves:
            raise ValueError(
                f"Alignment has {len(patterns.names)} sequences but tree has "
                f"{tree.n_leaves} leaves"
            )
        alignment_names_set = set(patterns.names)
        tree_names_set = set(tree.leaf_names)
        if alignment_names_set != tree_names_set:
            raise ValueError(
                "Alignment and tree have different species. "
                f"In alignment but not tree: {alignment_names_set - tree_names_set}. "
                f"In tree but not alignment: {tree_names_set - alignment_names_set}"
            )
        if rescale_every < 0:
            raise ValueError("rescale_every must be non-negative")

        self.tree = tree
        self.patterns = patterns
        self.model = model
        self.rescale_every = rescale_every

        self.postorder = tree.postorder()
        self.preorder = tree.preorder()
        self.branch_nodes = tree.branch_nodes()
        self.row = {node.id: k for k, node in enumerate(self.postorder)}
        self.root_row = self.row[tree.root.id]

        self.n_states = model.n_states
        self.n_patterns = patterns.n_patterns
        self.buffers = TreeBuffers(len(self.postorder), self.n_patterns, self.n_states)

        self._leaf_partials = {}
        for node in self.postorder:
            if node.is_leaf:
                self._leaf_partials[self.row[node.id]] = self._leaf_vector(
                    patterns.leaf_states(node.name)
                )

        trivial_states = patterns.single_observation_states()
        self._trivial_states = trivial_states
        self._result = None
        self._backward_done = False

    def _leaf_vector(self, states: np.ndarray) -> np.ndarray:
        """One-hot partials for observed states, all ones for gaps."""
        plik = np.zeros((len(states), self.n_states))
        observed = states != GAP
        plik[np.flatnonzero(observed), states[observed]] = 1.0
        plik[~observed, :] = 1.0
        return plik

    @property
    def n_params(self) -> int:
        """Branch lengths followed by model parameters."""
        return len(self.branch_nodes) + self.model.n_params

    @property
    def result(self) -> LikelihoodResult:
        if self._result is None:
            return self.evaluate()
        return self._result

    @staticmethod
    def _rescale(vectors: np.ndarray, log_scale: np.ndarray) -> None:
        """Divide each pattern's vector by its maximum, accumulating the log."""
        largest = vectors.max(axis=1)
        largest = np.where(np.isfinite(largest) & (largest > 0.0), largest, 1.0)
        vectors /= largest[:, np.newaxis]
        log_scale += np.log(largest)

    def evaluate(self) -> LikelihoodResult:
        """
        Forward (post-order) pass.

        Returns
        -------
        LikelihoodResult
            Per-pattern likelihoods, log-scales and the total log-likelihood

        Raises
        ------
        ValueError
            If a branch length is unset (negative)
        """
        buf = self.buffers
        model = self.model

        for node in self.postorder:
            k = self.row[node.id]
            if node.is_leaf:
                buf.plik[k] = self._leaf_partials[k]
                buf.scale[k] = 0.0
                buf.count[k] = 0
            else:
                children = [self.row[child.id] for child in node.children]
                np.prod(buf.mid[children], axis=0, out=buf.plik[k])
                buf.scale[k] = buf.scale[children].sum(axis=0)
                buf.count[k] = int(np.sum(buf.count[children] + 1))
                if buf.count[k] > self.rescale_every:
                    self._rescale(buf.plik[k], buf.scale[k])
                    buf.count[k] = 0

            if node.parent is not None:
                if node.branch_length < 0.0:
                    raise ValueError(
                        f"Branch above node {node.name or node.id} has unset length"
                    )
                buf.pmat[k] = model.transition_matrix(node.branch_length)
                mult_transpose(buf.plik[k], buf.pmat[k], out=buf.mid[k])

        root_plik = buf.plik[self.root_row]
        root_plik[~np.isfinite(root_plik) | (root_plik < 0.0)] = 0.0

        site_likelihood = root_plik @ model.pi
        log_scale = buf.scale[self.root_row].copy()
        failed = ~(np.isfinite(site_likelihood) & (site_likelihood > 0.0))

        safe = np.where(failed, 1.0, site_likelihood)
        pattern_log_likelihood = np.where(failed, -np.inf, np.log(safe) + log_scale)

        if np.any(failed):
            log_likelihood = -np.inf
        else:
            log_likelihood = float(self.patterns.weights @ pattern_log_likelihood)
            log_likelihood += float(np.sum(np.log(model.pi[self._trivial_states])))

        self._result = LikelihoodResult(
            site_likelihood=site_likelihood,
            log_scale=log_scale,
            pattern_log_likelihood=pattern_log_likelihood,
            failed=failed,
            log_likelihood=log_likelihood,
        )
        self._backward_done = False
        return self._result

    def backward(self) -> None:
        """
        Backward (pre-order) pass.

        Fills, for every non-root node, the product of the likelihoods of all
        other subtrees as seen from the node's parent. Relies on the
        transition matrices and propagated partials of the last forward pass.
        """
        if self._result is None:
            self.evaluate()
        buf = self.buffers

        for node in self.preorder:
            parent = node.parent
            if parent is None:
                continue
            k = self.row[node.id]
            p = self.row[parent.id]

            if parent.parent is None:
                # No information beyond the root
                buf.back[k] = 1.0
                buf.bscale[k] = 0.0
                buf.bcount[k] = 0
            else:
                mult_transpose(buf.back[p], buf.pmat[p], out=buf.back[k])
                buf.bscale[k] = buf.bscale[p]
                buf.bcount[k] = buf.bcount[p]

            for sibling in parent.children:
                if sibling is node:
                    continue
                s = self.row[sibling.id]
                buf.back[k] *= buf.mid[s]
                buf.bscale[k] += buf.scale[s]
                buf.bcount[k] += buf.count[s]

            buf.bcount[k] += 1
            if buf.bcount[k] > self.rescale_every:
                self._rescale(buf.back[k], buf.bscale[k])
                buf.bcount[k] = 0

        self._backward_done = True

    def _branch_contribution(self, k: int, dP: np.ndarray, factor: np.ndarray) -> np.ndarray:
        """Per-pattern sum_s pi_s back[k,s] (plik[k] @ dP.T)[s] times factor."""
        buf = self.buffers
        propagated = mult_transpose(buf.plik[k], dP)
        return np.einsum('ps,ps,s->p', buf.back[k], propagated, self.model.pi) * factor

    def gradient(self) -> np.ndarray:
        """
        Derivatives of each pattern's log-likelihood.

        Returns
        -------
        ndarray, shape (n_branches + n_model_params, n_patterns)
            Rows follow ``tree.branch_nodes()`` order, then the model's
            parameters. Failed patterns have zero derivatives.
        """
        result = self.result
        if not self._backward_done:
            self.backward()

        buf = self.buffers
        model = self.model
        n_branches = len(self.branch_nodes)
        grad = np.zeros((n_branches + model.n_params, self.n_patterns))

        site_likelihood = np.where(result.failed, 1.0, result.site_likelihood)

        for b, node in enumerate(self.branch_nodes):
            k = self.row[node.id]
            t = node.branch_length
            with np.errstate(over='ignore', invalid='ignore'):
                factor = np.exp(buf.scale[k] + buf.bscale[k] - result.log_scale) / site_likelihood

            grad[b] = self._branch_contribution(k, model.transition_matrix_dt(t), factor)
            for i in range(model.n_params):
                grad[n_branches + i] += self._branch_contribution(
                    k, model.transition_matrix_dparam(t, i), factor
                )

        grad[:, result.failed] = 0.0
        grad[~np.isfinite(grad)] = 0.0
        return grad

    def log_likelihood_gradient(self) -> np.ndarray:
        """Gradient of the total log-likelihood (pattern weights applied)."""
        return self.gradient() @ self.patterns.weights


class TreeLikelihoodObjective:
    """
    Negated log-likelihood of a tree and model as a differentiable objective.

    The parameter vector holds the branch lengths (``branches="variable"``),
    a single factor multiplying the initial branch lengths
    (``"proportional"``) or nothing (``"fixed"``), followed by the model's
    shape parameters.

    Parameters
    ----------
    engine : LikelihoodEngine
        Engine bound to the tree, patterns and model
    branches : str
        One of "variable", "proportional", "fixed"
    """

    def __init__(self, engine: LikelihoodEngine, branches: str = "variable"):
        if branches not in BRANCH_OPTIONS:
            raise ValueError(f"branches must be one of {BRANCH_OPTIONS}, got {branches!r}")
        self.engine = engine
        self.tree = engine.tree
        self.model = engine.model
        self.branches = branches
        self.branch_nodes = engine.branch_nodes
        self._base_lengths = np.array([node.branch_length for node in self.branch_nodes])
        self._last_x = None
        self.n_evaluations = 0
        self.n_gradients = 0

    @property
    def n_branch_params(self) -> int:
        if self.branches == "variable":
            return len(self.branch_nodes)
        if self.branches == "proportional":
            return 1
        return 0

    @property
    def n_params(self) -> int:
        return self.n_branch_params + self.model.n_params

    @property
    def param_names(self) -> list[str]:
        if self.branches == "variable":
            names = [f"branch_{node.name or node.id}" for node in self.branch_nodes]
        elif self.branches == "proportional":
            names = ["tree_scale"]
        else:
            names = []
        return names + list(self.model.param_names)

    def x0(self) -> np.ndarray:
        """Current parameter values."""
        if self.branches == "variable":
            lengths = [node.branch_length for node in self.branch_nodes]
        elif self.branches == "proportional":
            lengths = [1.0]
        else:
            lengths = []
        return np.concatenate([np.asarray(lengths, dtype=float), self.model.params])

    def bounds(self, lower: float = 1e-8, upper: float = 50.0) -> tuple[np.ndarray, np.ndarray]:
        return np.full(self.n_params, lower), np.full(self.n_params, upper)

    def apply(self, x: np.ndarray) -> None:
        """Write a parameter vector into the tree and model."""
        x = np.asarray(x, dtype=float)
        if x.shape != (self.n_params,):
            raise ValueError(f"Expected {self.n_params} parameters, got {x.shape}")
        nb = self.n_branch_params
        if self.branches == "variable":
            for node, length in zip(self.branch_nodes, x[:nb]):
                node.branch_length = float(length)
        elif self.branches == "proportional":
            for node, length in zip(self.branch_nodes, self._base_lengths * x[0]):
                node.branch_length = float(length)
        self.model.set_params(x[nb:])

    def _forward(self, x: np.ndarray) -> LikelihoodResult:
        x = np.asarray(x, dtype=float)
        if self._last_x is None or not np.array_equal(x, self._last_x):
            self.apply(x)
            self.engine.evaluate()
            self.n_evaluations += 1
            self._last_x = x.copy()
        return self.engine.result

    def invalidate(self) -> None:
        """Forget the cached point (after the tree or model changed elsewhere)."""
        self._last_x = None

    def evaluate(self, x: np.ndarray) -> float:
        """Negated log-likelihood, +inf when the likelihood calculation failed."""
        result = self._forward(x)
        if not np.isfinite(result.log_likelihood):
            return np.inf
        return -result.log_likelihood

    def gradient(self, x: np.ndarray) -> np.ndarray:
        """Gradient of the negated log-likelihood."""
        self._forward(x)
        self.n_gradients += 1
        full = self.engine.log_likelihood_gradient()

        n_branches = len(self.branch_nodes)
        branch_grad = full[:n_branches]
        if self.branches == "variable":
            head = branch_grad
        elif self.branches == "proportional":
            head = np.array([branch_grad @ self._base_lengths])
        else:
            head = np.empty(0)
        return -np.concatenate([head, full[n_branches:]])
