"""
Double-recursive tree likelihood.

A post-order pass computes, for every node, the likelihood of the data
below it given each state at the node; the root combines these with the root
frequencies and the rate-class probabilities. A pre-order pass then
computes, for every node, the likelihood of everything outside its subtree,
so that the likelihood and its branch-length derivatives can be evaluated on
any branch without re-rooting the tree.

Both passes are lazy: a parameter change only marks the arrays that depend
on it, and the next query recomputes exactly those.
"""

import logging
from typing import Callable, Optional, Sequence, Union

import numpy as np

from ..exceptions import (
    AlphabetMismatchError,
    DimensionError,
    NumericalIssue,
    NumericalLikelihoodError,
    ParameterError,
    StructuralError,
)
from ..io.sequences import Alignment
from ..io.trees import Tree, TreeNode
from ..patterns import SitePatterns
from ..process import ProcessChange, SubstitutionProcess, is_branch_parameter
from .likelihood_data import NodeStatus, TreeLikelihoodData

logger = logging.getLogger(__name__)

Listener = Callable[[NumericalIssue], None]


def compute_likelihood_from_arrays(
    inputs: Sequence[np.ndarray],
    tprobs: Sequence[np.ndarray],
    out: np.ndarray,
    reset: bool = True,
) -> np.ndarray:
    """
    Product over children of the sum over child states.

    ``out[p, c, a] *= prod_i sum_b tprobs[i][c, a, b] * inputs[i][p, c, b]``

    Parameters
    ----------
    inputs : sequence of ndarray, shape (n_patterns, n_classes, n_states)
        Conditional likelihoods of the children
    tprobs : sequence of ndarray, shape (n_classes, n_states, n_states)
        Transition matrices of the branches leading to the children
    out : ndarray, shape (n_patterns, n_classes, n_states)
        Accumulator, written in place
    reset : bool
        Start from the multiplicative identity (ones) instead of the current
        content of ``out``

    Returns
    -------
    ndarray
        ``out``
    """
    if len(inputs) != len(tprobs):
        raise DimensionError(f"{len(inputs)} arrays given with {len(tprobs)} transition matrices")
    if reset:
        out.fill(1.0)
    for array, P in zip(inputs, tprobs):
        if array.shape != out.shape or P.shape != (out.shape[1], out.shape[2], out.shape[2]):
            raise DimensionError(
                f"Incompatible shapes: array {array.shape}, matrices {P.shape}, output {out.shape}"
            )
        out *= np.einsum("cab,pcb->pca", P, array)
    return out


def compute_likelihood_from_arrays_rooted(
    inputs: Sequence[np.ndarray],
    tprobs: Sequence[np.ndarray],
    root_input: np.ndarray,
    root_tprob: Optional[np.ndarray],
    out: np.ndarray,
    reset: bool = True,
) -> np.ndarray:
    """
    Same as :func:`compute_likelihood_from_arrays` with one neighbour on the
    root side.

    The root-side array is propagated from the far end of ``root_tprob`` to
    the near end, i.e. ``sum_b root_input[p, c, b] * root_tprob[c, b, a]``.
    This is the only correct direction for non-reversible models. When
    ``root_tprob`` is None, ``root_input`` already sits at the node (root
    frequencies, for instance) and is multiplied in as is.
    """
    compute_likelihood_from_arrays(inputs, tprobs, out, reset)
    if root_tprob is None:
        out *= root_input
    else:
        out *= np.einsum("pcb,cba->pca", root_input, root_tprob)
    return out


def find_numerical_issue(
    values: np.ndarray, node_id: Optional[int] = None, allow_zero: bool = False
) -> Optional[NumericalIssue]:
    """
    Describe the first kind of invalid likelihood in ``values``, if any.

    ``values`` has site patterns on its first axis. Conditional arrays at
    inner nodes may hold exact zeros (states incompatible with the leaves),
    so ``allow_zero`` only flags NaN, infinite and negative entries.
    """
    values = np.asarray(values)
    checks = [
        ("nan", np.isnan(values)),
        ("infinite", np.isinf(values)),
        ("negative", values < 0),
    ]
    if not allow_zero:
        checks.append(("zero", values == 0))
    for kind, mask in checks:
        if mask.any():
            if mask.ndim > 1:
                mask = mask.reshape(mask.shape[0], -1).any(axis=1)
            return NumericalIssue(kind, node_id, np.flatnonzero(mask).tolist())
    return None


def report_numerical_issue(issue: NumericalIssue, listeners: Sequence[Listener]) -> None:
    """Log the issue, hand it to every listener, then raise it."""
    logger.warning("Numerical problem: %s", issue.describe())
    for listener in listeners:
        listener(issue)
    raise NumericalLikelihoodError(issue)


def finite_difference(
    evaluate: Callable[[float], float],
    value: float,
    lower: float = -np.inf,
    upper: float = np.inf,
    step: float = 1e-5,
) -> tuple[float, float]:
    """
    First and second derivatives of ``evaluate`` at ``value`` from three points.

    Central differences are used away from the bounds and one-sided ones at
    a bound.
    """
    h = step * max(1.0, abs(value))
    if value - h >= lower and value + h <= upper:
        points = (value - h, value, value + h)
    elif value + 2 * h <= upper:
        points = (value, value + h, value + 2 * h)
    else:
        points = (value - 2 * h, value - h, value)

    f = [evaluate(t) for t in points]
    d1 = d2 = 0.0
    for i, t_i in enumerate(points):
        t_j, t_k = (t for j, t in enumerate(points) if j != i)
        denom = (t_i - t_j) * (t_i - t_k)
        d1 += f[i] * ((value - t_j) + (value - t_k)) / denom
        d2 += f[i] * 2.0 / denom
    return d1, d2


class TreeLikelihood:
    """
    Likelihood of site patterns on a tree under a substitution process.

    Parameters
    ----------
    tree : Tree
        Tree the process was built on
    data : SitePatterns or Alignment
        Data; an alignment is compressed into patterns restricted to the
        tree's leaves
    process : SubstitutionProcess
        Fully set-up substitution process on ``tree``
    require_unrooted : bool
        Refuse trees whose root has exactly two children

    Raises
    ------
    StructuralError
        Process on another tree, orphan nodes, missing leaf sequences or a
        rooted tree when an unrooted one is required
    AlphabetMismatchError
        Data and process use different alphabets

    Examples
    --------
    >>> tree = Tree.from_newick("((A:0.1,B:0.2):0.05,C:0.3,D:0.1);")
    >>> process = homogeneous_process(HKY85(kappa=2.0), tree)
    >>> lik = TreeLikelihood(tree, alignment, process)
    >>> lik.get_log_likelihood()
    >>> lik.get_first_order_derivative("BrLen1")
    """

    def __init__(
        self,
        tree: Tree,
        data: Union[SitePatterns, Alignment],
        process: SubstitutionProcess,
        require_unrooted: bool = False,
    ):
        if require_unrooted and tree.is_rooted:
            raise StructuralError(
                "An unrooted tree is required but the root has two children; use Tree.unroot()"
            )
        if process.tree is not tree:
            raise StructuralError("The substitution process was built on a different tree")
        process.is_fully_set_up()

        if isinstance(data, Alignment):
            data = SitePatterns(data, names=tree.leaf_names)
        if data.seqtype != process.seqtype:
            raise AlphabetMismatchError(
                f"Data are {data.seqtype} but the process models {process.seqtype}"
            )
        missing = set(tree.leaf_names) - set(data.names)
        if missing:
            raise StructuralError(f"No sequence for leaves: {sorted(missing)}")

        self.tree = tree
        self.patterns = data
        self.process = process
        self.data = TreeLikelihoodData(tree, data, process.n_classes, process.n_states)
        self._listeners: list[Listener] = []
        self._pattern_log: Optional[np.ndarray] = None
        self._class_likelihoods: Optional[np.ndarray] = None

        logger.info(
            "Tree likelihood: %d leaves, %d patterns (%d sites), %d rate class(es), %d states",
            tree.n_leaves, data.n_patterns, data.n_sites, process.n_classes, process.n_states,
        )

    # ------------------------------------------------------------------
    # Listeners

    def add_listener(self, listener: Listener) -> None:
        """Register a callable receiving a :class:`NumericalIssue` before each numerical error."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners.remove(listener)

    def _check(self, values: np.ndarray, node_id: Optional[int] = None, allow_zero: bool = False) -> None:
        issue = find_numerical_issue(values, node_id, allow_zero)
        if issue is not None:
            report_numerical_issue(issue, self._listeners)

    # ------------------------------------------------------------------
    # Post-order pass

    def compute_tree_likelihood(self) -> None:
        """Recompute the stale post-order arrays, then the site likelihoods."""
        recomputed = []
        for node in self.tree.postorder():
            if not self.data.down_valid[node.id]:
                self._compute_down(node)
                recomputed.append(node.id)
        if recomputed:
            logger.debug("Post-order pass recomputed nodes %s", recomputed)
        if self._pattern_log is None:
            self._compute_root()

    def _compute_down(self, node: TreeNode) -> None:
        d = self.data
        out = d.down[node.id]
        compute_likelihood_from_arrays(
            [d.down[c.id] for c in node.children],
            [self.process.get_transition_probabilities(c.id) for c in node.children],
            out,
        )
        self._check(out, node.id, allow_zero=True)
        log_factors = d.down_log[node.id]
        log_factors.fill(0.0)
        for child in node.children:
            log_factors += d.down_log[child.id]
        d.rescale(out, log_factors)
        d.down_valid[node.id] = True

    def _class_weights(self) -> np.ndarray:
        weights = self.process.class_probabilities
        if weights.shape != (self.data.n_classes,):
            raise DimensionError(
                f"Process has {len(weights)} rate classes, arrays were built for {self.data.n_classes}"
            )
        return weights

    def _compute_root(self) -> None:
        root_id = self.tree.root.id
        per_class = self.data.down[root_id] @ self.process.root_frequencies
        site = per_class @ self._class_weights()
        self._check(site)
        self._class_likelihoods = per_class
        self._pattern_log = np.log(site) + self.data.down_log[root_id]

    # ------------------------------------------------------------------
    # Pre-order pass

    def compute_up_arrays(self) -> None:
        """Recompute the stale pre-order (complementary) arrays."""
        self.compute_tree_likelihood()
        d = self.data
        pi = self.process.root_frequencies
        recomputed = []
        for node in self.tree.preorder():
            if node.is_root or d.up_valid[node.id]:
                continue
            parent = node.parent
            siblings = node.siblings()
            out = d.up[node.id]
            log_factors = d.up_log[node.id]
            inputs = [d.down[s.id] for s in siblings]
            tprobs = [self.process.get_transition_probabilities(s.id) for s in siblings]
            if parent.is_root:
                compute_likelihood_from_arrays_rooted(inputs, tprobs, pi, None, out)
                log_factors.fill(0.0)
            else:
                compute_likelihood_from_arrays_rooted(
                    inputs, tprobs, d.up[parent.id],
                    self.process.get_transition_probabilities(parent.id), out,
                )
                log_factors[:] = d.up_log[parent.id]
            for sibling in siblings:
                log_factors += d.down_log[sibling.id]
            self._check(out, node.id, allow_zero=True)
            d.rescale(out, log_factors)
            d.up_valid[node.id] = True
            recomputed.append(node.id)
        if recomputed:
            logger.debug("Pre-order pass recomputed nodes %s", recomputed)

    def _branch_node(self, node_id: int) -> TreeNode:
        node = self.tree.get_node(node_id)
        if node.is_root:
            raise StructuralError("The root node has no branch")
        return node

    def _at_branch(self, node_id: int, matrices: np.ndarray) -> np.ndarray:
        """Scaled per-class likelihoods with ``matrices`` on branch ``node_id``."""
        return np.einsum(
            "pca,cab,pcb->pc", self.data.up[node_id], matrices, self.data.down[node_id]
        )

    def get_log_likelihood_at_branch(self, node_id: int) -> float:
        """Log-likelihood computed on the branch above ``node_id`` instead of at the root."""
        self._branch_node(node_id)
        self.compute_up_arrays()
        site = self._at_branch(node_id, self.process.get_transition_probabilities(node_id)) @ self._class_weights()
        self._check(site, node_id)
        log = np.log(site) + self.data.up_log[node_id] + self.data.down_log[node_id]
        return float(np.dot(self.patterns.weights, log))

    def get_branch_derivative_ratios(self, node_id: int) -> tuple[np.ndarray, np.ndarray]:
        """
        Per-pattern ``dL/L`` and ``d2L/L`` with respect to the length of the
        branch above ``node_id``.
        """
        self._branch_node(node_id)
        self.compute_up_arrays()
        weights = self._class_weights()
        likelihood = self._at_branch(node_id, self.process.get_transition_probabilities(node_id)) @ weights
        self._check(likelihood, node_id)
        d1 = self._at_branch(node_id, self.process.get_transition_probabilities_d1(node_id)) @ weights
        d2 = self._at_branch(node_id, self.process.get_transition_probabilities_d2(node_id)) @ weights
        return d1 / likelihood, d2 / likelihood

    # ------------------------------------------------------------------
    # Likelihood values

    @property
    def n_sites(self) -> int:
        return self.patterns.n_sites

    @property
    def n_patterns(self) -> int:
        return self.patterns.n_patterns

    def _check_pattern(self, pattern_index: int) -> None:
        if not 0 <= pattern_index < self.n_patterns:
            raise DimensionError(
                f"Pattern index {pattern_index} out of range [0, {self.n_patterns - 1}]"
            )

    def get_log_likelihood_per_pattern(self) -> np.ndarray:
        self.compute_tree_likelihood()
        return self._pattern_log.copy()

    def get_log_likelihood(self) -> float:
        """Sum over patterns of weight times log-likelihood."""
        return float(np.dot(self.patterns.weights, self.get_log_likelihood_per_pattern()))

    def get_likelihood(self) -> float:
        """Likelihood of the whole alignment (underflows to 0 for long alignments)."""
        return float(np.exp(self.get_log_likelihood()))

    def get_log_likelihood_for_a_site(self, pattern_index: int) -> float:
        """Log-likelihood of one site pattern."""
        self._check_pattern(pattern_index)
        self.compute_tree_likelihood()
        return float(self._pattern_log[pattern_index])

    def get_log_likelihood_per_site(self) -> np.ndarray:
        """Log-likelihood of every original site, in alignment order."""
        return self.patterns.expand(self.get_log_likelihood_per_pattern())

    def get_likelihood_per_site(self) -> np.ndarray:
        return np.exp(self.get_log_likelihood_per_site())

    def get_likelihood_for_a_site_for_a_rate_class(self, pattern_index: int, class_index: int) -> float:
        """Likelihood of a pattern conditional on one rate class (not weighted by its probability)."""
        self._check_pattern(pattern_index)
        if not 0 <= class_index < self.data.n_classes:
            raise DimensionError(
                f"Rate class {class_index} out of range [0, {self.data.n_classes - 1}]"
            )
        self.compute_tree_likelihood()
        scale = self.data.down_log[self.tree.root.id][pattern_index]
        return float(self._class_likelihoods[pattern_index, class_index] * np.exp(scale))

    # ------------------------------------------------------------------
    # Posterior probabilities

    def get_posterior_rate_class_probabilities(self) -> np.ndarray:
        """Posterior probability of each rate class, shape (n_patterns, n_classes)."""
        self.compute_tree_likelihood()
        joint = self._class_likelihoods * self._class_weights()
        return joint / joint.sum(axis=1, keepdims=True)

    def get_posterior_state_probabilities(self, node_id: int) -> np.ndarray:
        """
        Posterior probability of each state at a node.

        Parameters
        ----------
        node_id : int
            Any node, the root included

        Returns
        -------
        np.ndarray, shape (n_patterns, n_states)
            Rows sum to 1
        """
        node = self.tree.get_node(node_id)
        down = self.data.down[node_id]
        if node.is_root:
            self.compute_tree_likelihood()
            joint = down * self.process.root_frequencies
        else:
            self.compute_up_arrays()
            above = np.einsum(
                "pcb,cba->pca", self.data.up[node_id],
                self.process.get_transition_probabilities(node_id),
            )
            joint = above * down
        joint = np.einsum("pca,c->pa", joint, self._class_weights())
        return joint / joint.sum(axis=1, keepdims=True)

    # ------------------------------------------------------------------
    # Derivatives

    def get_first_order_derivative(self, name: str) -> float:
        """
        First derivative of the log-likelihood.

        Analytic for branch lengths (``BrLen{id}``), central finite
        differences for every other parameter.
        """
        self._require_parameter(name)
        if is_branch_parameter(name):
            ratio1, _ = self.get_branch_derivative_ratios(self._branch_of(name))
            return float(np.dot(self.patterns.weights, ratio1))
        return self._numerical_derivatives(name)[0]

    def get_second_order_derivative(self, name: str) -> float:
        """Second derivative of the log-likelihood (see :meth:`get_first_order_derivative`)."""
        self._require_parameter(name)
        if is_branch_parameter(name):
            ratio1, ratio2 = self.get_branch_derivative_ratios(self._branch_of(name))
            return float(np.dot(self.patterns.weights, ratio2 - ratio1 ** 2))
        return self._numerical_derivatives(name)[1]

    @staticmethod
    def _branch_of(name: str) -> int:
        return int(name[len("BrLen"):])

    def _require_parameter(self, name: str) -> None:
        if name not in self.process.parameters:
            raise ParameterError(f"Unknown parameter '{name}'")

    def _numerical_derivatives(self, name: str) -> tuple[float, float]:
        parameter = self.process.parameters[name]
        original = parameter.value

        def evaluate(value: float) -> float:
            self.set_parameters({name: value})
            return self.get_log_likelihood()

        try:
            return finite_difference(evaluate, original, parameter.lower, parameter.upper)
        finally:
            self.set_parameters({name: original})

    # ------------------------------------------------------------------
    # Parameters

    def get_parameters(self) -> dict[str, float]:
        """Independent parameters of the process."""
        return self.process.get_parameters()

    def get_branch_length_parameters(self) -> dict[str, float]:
        return self.process.get_branch_length_parameters()

    def get_parameter_bounds(self, name: str) -> tuple[float, float]:
        parameter = self.process.parameters[name]
        return parameter.lower, parameter.upper

    def set_parameters(self, values) -> None:
        """Set parameter values by name and invalidate the arrays that depend on them."""
        self._apply_change(self.process.set_parameters(values))

    def fire_parameter_changed(self, names) -> None:
        """Propagate values already written into the process parameters."""
        self._apply_change(self.process.fire_parameter_changed(names))

    def _apply_change(self, change: ProcessChange) -> None:
        if not change:
            return
        d = self.data
        self._pattern_log = None
        self._class_likelihoods = None
        if change.rate_classes:
            d.invalidate_all()
            return
        if change.root_frequencies:
            for node_id in list(d.up_valid):
                d.invalidate_up(node_id)
        for node_id in change.nodes:
            ancestors = self.tree.ancestors(node_id)
            on_path = {node_id}
            for ancestor in ancestors:
                d.invalidate_down(ancestor.id)
                on_path.add(ancestor.id)
            for other in list(d.up_valid):
                if other not in on_path:
                    d.invalidate_up(other)

    def node_status(self, node_id: int) -> NodeStatus:
        self.tree.get_node(node_id)
        return self.data.status(node_id)

    def __repr__(self) -> str:
        return (
            f"TreeLikelihood(n_leaves={self.tree.n_leaves}, n_patterns={self.n_patterns}, "
            f"process={self.process!r})"
        )
