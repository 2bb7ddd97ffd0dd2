"""
Conditional likelihood arrays of a tree likelihood.

One object holds, for every node of one tree, the post-order ("down") and
pre-order ("up") arrays of shape (n_patterns, n_classes, n_states), their
per-pattern log scaling factors and validity flags. Arrays are allocated
once and overwritten in place on recomputation; they are never shared
between two likelihood objects.
"""

from enum import Enum

import numpy as np

from ..exceptions import StructuralError
from ..io.sequences import state_vectors
from ..io.trees import Tree
from ..patterns import SitePatterns


class NodeStatus(Enum):
    """Cache state of a node."""

    STALE = "stale"
    POSTFIX = "postfix"
    PREFIX = "prefix"


class TreeLikelihoodData:
    """
    Per-node conditional likelihood arrays.

    ``down[n][p, c, a]`` is the probability of the data below node ``n`` for
    pattern ``p`` in rate class ``c`` given state ``a`` at ``n``.

    ``up[n][p, c, a]`` is the probability of all the data outside the
    subtree of ``n``, jointly with state ``a`` at the parent of ``n``. It
    includes the root frequencies, so that the likelihood at the branch
    above ``n`` is ``sum_a up[n][a] sum_b P_n[a, b] down[n][b]`` for any
    model, reversible or not.

    Parameters
    ----------
    tree : Tree
        Tree whose leaves all appear in ``patterns``
    patterns : SitePatterns
        Compressed data
    n_classes : int
        Number of rate classes
    n_states : int
        Number of character states
    """

    def __init__(self, tree: Tree, patterns: SitePatterns, n_classes: int, n_states: int):
        self.n_patterns = patterns.n_patterns
        self.n_classes = n_classes
        self.n_states = n_states
        shape = (self.n_patterns, n_classes, n_states)

        table = state_vectors(patterns.seqtype)
        if table.shape[1] != n_states:
            raise StructuralError(
                f"Data have {table.shape[1]} states, the process has {n_states}"
            )

        self.down: dict[int, np.ndarray] = {}
        self.up: dict[int, np.ndarray] = {}
        self.down_log: dict[int, np.ndarray] = {}
        self.up_log: dict[int, np.ndarray] = {}
        self.down_valid: dict[int, bool] = {}
        self.up_valid: dict[int, bool] = {}
        self.leaves: set[int] = set()

        for node in tree.nodes():
            self.down_log[node.id] = np.zeros(self.n_patterns)
            if node.is_leaf:
                codes = patterns.row_of(node.name).astype(np.int64)
                leaf = table[codes + 1]
                self.down[node.id] = np.repeat(leaf[:, np.newaxis, :], n_classes, axis=1)
                self.down_valid[node.id] = True
                self.leaves.add(node.id)
            else:
                self.down[node.id] = np.ones(shape)
                self.down_valid[node.id] = False
            if not node.is_root:
                self.up[node.id] = np.ones(shape)
                self.up_log[node.id] = np.zeros(self.n_patterns)
                self.up_valid[node.id] = False

    def status(self, node_id: int) -> NodeStatus:
        """
        STALE when the post-order array must be recomputed, PREFIX when both
        arrays are current (the root has no pre-order array), POSTFIX
        otherwise.
        """
        if not self.down_valid[node_id]:
            return NodeStatus.STALE
        if self.up_valid.get(node_id, True):
            return NodeStatus.PREFIX
        return NodeStatus.POSTFIX

    def invalidate_down(self, node_id: int) -> None:
        if node_id not in self.leaves:
            self.down_valid[node_id] = False

    def invalidate_up(self, node_id: int) -> None:
        if node_id in self.up_valid:
            self.up_valid[node_id] = False

    def invalidate_all(self) -> None:
        for node_id in self.down_valid:
            self.invalidate_down(node_id)
        for node_id in self.up_valid:
            self.up_valid[node_id] = False

    def rescale(self, array: np.ndarray, log_factors: np.ndarray) -> None:
        """
        Divide each pattern of ``array`` by its largest entry in place and add
        the log of that entry to ``log_factors``.

        Patterns whose entries are all zero (or not finite) are left untouched
        so that the problem shows up in the site likelihoods.
        """
        scale = array.reshape(self.n_patterns, -1).max(axis=1)
        usable = np.isfinite(scale) & (scale > 0)
        scale = np.where(usable, scale, 1.0)
        array /= scale[:, np.newaxis, np.newaxis]
        log_factors += np.log(scale)
