"""
Substitution processes: which model acts on which branch, under which rates.

A :class:`SubstitutionProcess` ties together a tree, one or more branch
models, a distribution of rates across sites and the state frequencies at the
root. It owns the branch-length parameters and serves transition probability
matrices (and their derivatives) for every (branch, rate class) pair from
flat arena arrays. Cached matrices are invalidated by bumping a per-node
generation counter; they are only recomputed when next requested.

Two variants exist, selected by ``kind``:

- ``"homogeneous"``: one model shared by every branch; model parameters keep
  their own names (``kappa``).
- ``"nonhomogeneous"``: any number of models, each attached to a set of
  branches; model parameters are suffixed with the 1-based model index
  (``kappa_1``, ``kappa_2``) and may be aliased so that several models share
  a value.
"""

import logging
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import TYPE_CHECKING, Iterable, Mapping, Optional, Sequence

import numpy as np

from .distributions import ConstantDistribution, DiscreteDistribution
from .exceptions import (
    AlphabetMismatchError,
    DimensionError,
    ParameterError,
    StructuralError,
)
from .io.trees import Tree
from .parameters import AliasTable, Parameter, ParameterList

if TYPE_CHECKING:
    from .models.base import BranchModel

logger = logging.getLogger(__name__)

HOMOGENEOUS = "homogeneous"
NONHOMOGENEOUS = "nonhomogeneous"

BRANCH_PREFIX = "BrLen"

_P, _DP, _D2P = 0, 1, 2


def branch_parameter_name(node_id: int) -> str:
    return f"{BRANCH_PREFIX}{node_id}"


def is_branch_parameter(name: str) -> bool:
    return name.startswith(BRANCH_PREFIX) and name[len(BRANCH_PREFIX):].isdigit()


@dataclass(frozen=True)
class ParameterHandle:
    """
    Resolved owner of a process parameter.

    Attributes
    ----------
    owner : str
        'branch', 'rate' or 'model'
    target : int
        Node id for branch lengths, model index for model parameters
    local_name : str
        Name of the parameter inside its owner
    """

    owner: str
    target: int
    local_name: str


@dataclass
class ProcessChange:
    """What a parameter change invalidated."""

    nodes: set[int] = field(default_factory=set)
    root_frequencies: bool = False
    rate_classes: bool = False

    def __bool__(self) -> bool:
        return bool(self.nodes) or self.root_frequencies or self.rate_classes


class SubstitutionProcess:
    """
    Mapping from branches to substitution models with rate heterogeneity.

    Parameters
    ----------
    tree : Tree
        Tree whose branches receive models. Branch lengths are read once and
        then owned by the process as ``BrLen{id}`` parameters.
    rate_distribution : DiscreteDistribution, optional
        Rates across sites (a single class of rate 1 when omitted)
    root_frequencies : array-like, optional
        State frequencies at the root. When omitted the equilibrium
        frequencies of the first model are used.
    kind : str
        'homogeneous' or 'nonhomogeneous'
    """

    def __init__(
        self,
        tree: Tree,
        rate_distribution: Optional[DiscreteDistribution] = None,
        root_frequencies: Optional[np.ndarray] = None,
        kind: str = NONHOMOGENEOUS,
    ):
        if kind not in (HOMOGENEOUS, NONHOMOGENEOUS):
            raise StructuralError(f"Unknown process kind: {kind}")
        self.kind = kind
        self.tree = tree
        self.rate_distribution = rate_distribution if rate_distribution is not None else ConstantDistribution()
        self.models: list["BranchModel"] = []
        self._node_to_model: dict[int, int] = {}
        self._model_to_nodes: dict[int, list[int]] = {}
        self._fixed_root_frequencies = None
        if root_frequencies is not None:
            self._fixed_root_frequencies = np.asarray(root_frequencies, dtype=float)

        self.parameters = ParameterList()
        self.aliases = AliasTable()
        self._handles: dict[str, ParameterHandle] = {}

        for node_id, length in tree.branch_lengths().items():
            self._add_parameter(
                Parameter(branch_parameter_name(node_id), length, 0.0, np.inf),
                ParameterHandle("branch", node_id, "length"),
            )
        for p in self.rate_distribution.parameters:
            self._add_parameter(p.renamed(p.name), ParameterHandle("rate", -1, p.name))

        self._allocate()

    # ------------------------------------------------------------------
    # Construction

    def _add_parameter(self, parameter: Parameter, handle: ParameterHandle) -> None:
        self.parameters.add(parameter)
        self._handles[parameter.name] = handle

    def _model_parameter_name(self, local_name: str, model_index: int) -> str:
        if self.kind == HOMOGENEOUS:
            return local_name
        return f"{local_name}_{model_index + 1}"

    def _allocate(self) -> None:
        self._slot = {node_id: i for i, node_id in enumerate(self.tree.node_ids())}
        n_slots = len(self._slot)
        K = self.rate_distribution.n_classes
        self._arena = None
        self._arena_shape = (3, n_slots, K)
        self._generation = np.zeros(n_slots, dtype=np.int64)
        self._computed = np.full((3, n_slots), -1, dtype=np.int64)

    def _ensure_arena(self) -> np.ndarray:
        if self._arena is None:
            n = self.n_states
            self._arena = np.zeros(self._arena_shape + (n, n))
        return self._arena

    def add_model(self, model: "BranchModel", node_ids: Sequence[int]) -> int:
        """
        Attach a model to a set of branches.

        Parameters
        ----------
        model : BranchModel
            Model instance (owned by the process from now on)
        node_ids : sequence of int
            Ids of the nodes whose parent branch uses this model

        Returns
        -------
        int
            Index of the new model

        Raises
        ------
        AlphabetMismatchError
            If the model's alphabet or state count differs from the models
            already in the process
        StructuralError
            If a second model is added to a homogeneous process
        """
        if self.models:
            first = self.models[0]
            if model.seqtype != first.seqtype:
                raise AlphabetMismatchError(
                    f"Cannot add a {model.seqtype} model to a process of {first.seqtype} models"
                )
            if model.n_states != first.n_states:
                raise AlphabetMismatchError(
                    f"Cannot add a model with {model.n_states} states to a process "
                    f"with {first.n_states} states"
                )
            if self.kind == HOMOGENEOUS:
                raise StructuralError("A homogeneous process holds exactly one model")
        if self._fixed_root_frequencies is not None and self._fixed_root_frequencies.shape != (model.n_states,):
            raise DimensionError(
                f"Root frequencies have shape {self._fixed_root_frequencies.shape}, "
                f"expected ({model.n_states},)"
            )

        self.models.append(model)
        index = len(self.models) - 1
        self._model_to_nodes[index] = []
        for node_id in node_ids:
            self._assign(index, node_id)

        for p in model.parameters:
            self._add_parameter(
                p.renamed(self._model_parameter_name(p.name, index)),
                ParameterHandle("model", index, p.name),
            )

        logger.debug("Model %d (%s) attached to nodes %s", index + 1, model.name, list(node_ids))
        return index

    def _assign(self, model_index: int, node_id: int) -> None:
        previous = self._node_to_model.get(node_id)
        if previous is not None:
            self._model_to_nodes[previous].remove(node_id)
        self._node_to_model[node_id] = model_index
        self._model_to_nodes[model_index].append(node_id)
        self._invalidate_nodes([node_id])

    def set_model_to_node(self, model_index: int, node_id: int) -> None:
        """Attach an existing model to one more branch (moving it if needed)."""
        if not 0 <= model_index < len(self.models):
            raise DimensionError(
                f"Model index {model_index} out of range [0, {len(self.models) - 1}]"
            )
        self._assign(model_index, node_id)

    def alias_parameters(self, source: str, target: str) -> None:
        """
        Make parameter ``target`` always equal to ``source``.

        The target takes the source's current value immediately.
        """
        if source not in self.parameters or target not in self.parameters:
            missing = source if source not in self.parameters else target
            raise ParameterError(f"Unknown parameter '{missing}'")
        self.aliases.alias(source, target)
        value = self.parameters.get_value(source)
        if self.parameters.set_value(target, value):
            self.fire_parameter_changed([target])

    # ------------------------------------------------------------------
    # Accessors

    @property
    def n_models(self) -> int:
        return len(self.models)

    @property
    def n_states(self) -> int:
        if not self.models:
            raise StructuralError("The process has no model")
        return self.models[0].n_states

    @property
    def seqtype(self) -> str:
        if not self.models:
            raise StructuralError("The process has no model")
        return self.models[0].seqtype

    @property
    def n_classes(self) -> int:
        return self.rate_distribution.n_classes

    @property
    def class_probabilities(self) -> np.ndarray:
        return self.rate_distribution.probabilities

    @property
    def class_rates(self) -> np.ndarray:
        return self.rate_distribution.rates

    @property
    def root_frequencies(self) -> np.ndarray:
        if self._fixed_root_frequencies is not None:
            return self._fixed_root_frequencies
        return self.models[0].frequencies if self.models else None

    def _check_class(self, class_index: Optional[int]) -> None:
        if class_index is not None and not 0 <= class_index < self.n_classes:
            raise DimensionError(
                f"Rate class {class_index} out of range [0, {self.n_classes - 1}]"
            )

    def get_model_index(self, node_id: int) -> int:
        try:
            return self._node_to_model[node_id]
        except KeyError:
            raise StructuralError(f"Node {node_id} has no model associated") from None

    def get_model(self, node_id: int, class_index: Optional[int] = None) -> "BranchModel":
        """Model acting on the branch above ``node_id`` (the same for every rate class)."""
        self._check_class(class_index)
        return self.models[self.get_model_index(node_id)]

    def get_nodes_with_model(self, model_index: int) -> list[int]:
        if not 0 <= model_index < len(self.models):
            raise DimensionError(f"Model index {model_index} out of range")
        return list(self._model_to_nodes[model_index])

    def branch_length(self, node_id: int) -> float:
        return self.parameters.get_value(branch_parameter_name(node_id))

    def list_model_names(self) -> list[str]:
        return [
            f"Model {i + 1}: {model.name} attached to nodes {sorted(self._model_to_nodes[i])}"
            for i, model in enumerate(self.models)
        ]

    def get_parameters(self, independent: bool = True) -> dict[str, float]:
        """Current parameter values, restricted to alias representatives by default."""
        return {
            p.name: p.value
            for p in self.parameters
            if not independent or self.aliases.is_independent(p.name)
        }

    def get_branch_length_parameters(self) -> dict[str, float]:
        return {name: v for name, v in self.get_parameters().items() if is_branch_parameter(name)}

    def get_substitution_model_parameters(self, independent: bool = True) -> dict[str, float]:
        return {
            name: v for name, v in self.get_parameters(independent).items()
            if self._handles[name].owner == "model"
        }

    def get_rate_distribution_parameters(self) -> dict[str, float]:
        return {
            name: v for name, v in self.get_parameters().items()
            if self._handles[name].owner == "rate"
        }

    # ------------------------------------------------------------------
    # Validation

    def check_orphan_nodes(self, throw: bool = True) -> bool:
        """Every non-root node must have a model."""
        for node_id in self.tree.branch_ids():
            if node_id not in self._node_to_model:
                if throw:
                    raise StructuralError(f"Node {node_id} in tree has no model associated")
                return False
        return True

    def check_unknown_nodes(self, throw: bool = True) -> bool:
        """Every node a model is attached to must exist and must not be the root."""
        root_id = self.tree.root.id
        for nodes in self._model_to_nodes.values():
            for node_id in nodes:
                if node_id == root_id or not self.tree.has_node(node_id):
                    if throw:
                        raise StructuralError(
                            f"Node {node_id} is not found in tree or is the root node"
                        )
                    return False
        return True

    def is_fully_set_up(self, throw: bool = True) -> bool:
        return self.check_orphan_nodes(throw) and self.check_unknown_nodes(throw)

    # ------------------------------------------------------------------
    # Parameter changes

    def set_parameters(self, values: Mapping[str, float]) -> ProcessChange:
        """
        Set parameter values by name and propagate them.

        Setting any member of an alias group sets the whole group.

        Raises
        ------
        ParameterError
            If a name is unknown or a value is out of bounds
        """
        changed = []
        for name, value in values.items():
            if name not in self.parameters:
                raise ParameterError(f"Unknown parameter '{name}'")
            for member in self.aliases.group(name):
                if self.parameters.set_value(member, value):
                    changed.append(member)
        return self.fire_parameter_changed(changed)

    def fire_parameter_changed(self, names: Iterable[str]) -> ProcessChange:
        """
        Propagate changed parameter values to their owners.

        Updates the rate distribution and the models whose parameters
        changed, and marks the transition matrices of the affected branches
        as stale. Nothing is recomputed here.

        Returns
        -------
        ProcessChange
            The nodes whose matrices became stale and whether the root
            frequencies or rate classes changed
        """
        change = ProcessChange()
        rate_values = {}
        model_values: dict[int, dict[str, float]] = {}

        for name in names:
            handle = self._handles.get(name)
            if handle is None:
                continue
            value = self.parameters.get_value(name)
            if handle.owner == "branch":
                self.tree.set_branch_length(handle.target, value)
                change.nodes.add(handle.target)
            elif handle.owner == "rate":
                rate_values[handle.local_name] = value
            else:
                model_values.setdefault(handle.target, {})[handle.local_name] = value

        if rate_values and self.rate_distribution.set_parameters(rate_values):
            change.rate_classes = True
            change.nodes.update(self._slot)

        for index, values in model_values.items():
            tracks_root = index == 0 and self._fixed_root_frequencies is None
            before = self.models[index].frequencies.copy() if tracks_root else None
            if self.models[index].set_parameters(values):
                change.nodes.update(self._model_to_nodes[index])
                if tracks_root and not np.array_equal(before, self.models[index].frequencies):
                    change.root_frequencies = True

        change.nodes.discard(self.tree.root.id)
        self._invalidate_nodes(change.nodes)
        if change:
            logger.debug("Parameter change invalidated %d branch(es)", len(change.nodes))
        return change

    def _invalidate_nodes(self, node_ids: Iterable[int]) -> None:
        for node_id in node_ids:
            slot = self._slot.get(node_id)
            if slot is not None:
                self._generation[slot] += 1

    # ------------------------------------------------------------------
    # Transition probabilities

    def _matrices(self, which: int, node_id: int) -> np.ndarray:
        slot = self._slot.get(node_id)
        if slot is None or node_id == self.tree.root.id:
            raise StructuralError(f"Node {node_id} has no branch in this tree")
        arena = self._ensure_arena()
        if self._computed[which, slot] != self._generation[slot]:
            model = self.get_model(node_id)
            t = self.branch_length(node_id)
            for k, rate in enumerate(self.rate_distribution.rates):
                if which == _P:
                    arena[which, slot, k] = model.pij_t(rate * t)
                elif which == _DP:
                    arena[which, slot, k] = rate * model.dpij_t(rate * t)
                else:
                    arena[which, slot, k] = rate * rate * model.d2pij_t(rate * t)
            self._computed[which, slot] = self._generation[slot]
        return arena[which, slot]

    def get_transition_probabilities(self, node_id: int, class_index: Optional[int] = None) -> np.ndarray:
        """
        P(rate_k * t) for the branch above ``node_id``.

        Returns an (N, N) matrix for one class, or a (K, N, N) array for all
        classes when ``class_index`` is None.
        """
        self._check_class(class_index)
        matrices = self._matrices(_P, node_id)
        return matrices if class_index is None else matrices[class_index]

    def get_transition_probabilities_d1(self, node_id: int, class_index: Optional[int] = None) -> np.ndarray:
        """First derivative with respect to the branch length."""
        self._check_class(class_index)
        matrices = self._matrices(_DP, node_id)
        return matrices if class_index is None else matrices[class_index]

    def get_transition_probabilities_d2(self, node_id: int, class_index: Optional[int] = None) -> np.ndarray:
        """Second derivative with respect to the branch length."""
        self._check_class(class_index)
        matrices = self._matrices(_D2P, node_id)
        return matrices if class_index is None else matrices[class_index]

    def is_stale(self, node_id: int) -> bool:
        slot = self._slot[node_id]
        return self._computed[_P, slot] != self._generation[slot]

    def __repr__(self) -> str:
        return (
            f"SubstitutionProcess(kind={self.kind!r}, n_models={self.n_models}, "
            f"n_classes={self.n_classes})"
        )


def homogeneous_process(
    model: "BranchModel",
    tree: Tree,
    rate_distribution: Optional[DiscreteDistribution] = None,
    root_frequencies: Optional[np.ndarray] = None,
) -> SubstitutionProcess:
    """
    Build a process where one model acts on every branch.

    Examples
    --------
    >>> tree = Tree.from_newick("((A:0.1,B:0.2):0.05,C:0.3,D:0.1);")
    >>> process = homogeneous_process(HKY85(kappa=2.0), tree, GammaDiscreteDistribution(4, 0.5))
    >>> sorted(process.get_substitution_model_parameters())
    ['kappa']
    """
    process = SubstitutionProcess(tree, rate_distribution, root_frequencies, kind=HOMOGENEOUS)
    process.add_model(model, tree.branch_ids())
    process.is_fully_set_up()
    logger.info(
        "Homogeneous %s process on %d branches, %d rate class(es)",
        model.name, len(tree.branch_ids()), process.n_classes,
    )
    return process


def _shared_names(model: "BranchModel", global_parameters: Sequence[str]) -> list[str]:
    """Expand ``*`` wildcards and validate names against ``model``."""
    local_names = model.parameters.names()
    shared = []
    for pattern in global_parameters:
        if "*" in pattern:
            shared.extend(n for n in local_names if fnmatchcase(n, pattern) and n not in shared)
        elif pattern not in local_names:
            raise ParameterError(f"Parameter '{pattern}' is not valid for model {model.name}")
        elif pattern not in shared:
            shared.append(pattern)
    return shared


def _grouped_process(
    model: "BranchModel",
    tree: Tree,
    groups: Sequence[Sequence[int]],
    rate_distribution: Optional[DiscreteDistribution],
    root_frequencies: Optional[np.ndarray],
    global_parameters: Sequence[str],
) -> SubstitutionProcess:
    shared = _shared_names(model, global_parameters)
    process = SubstitutionProcess(tree, rate_distribution, root_frequencies, kind=NONHOMOGENEOUS)
    for node_ids in groups:
        process.add_model(model.copy(), node_ids)

    for name in shared:
        for k in range(2, len(groups) + 1):
            process.alias_parameters(f"{name}_1", f"{name}_{k}")

    process.is_fully_set_up()
    logger.info(
        "Non-homogeneous %s process: %d models, shared parameters %s",
        model.name, process.n_models, shared or "none",
    )
    return process


def nonhomogeneous_process(
    model: "BranchModel",
    tree: Tree,
    rate_distribution: Optional[DiscreteDistribution] = None,
    root_frequencies: Optional[np.ndarray] = None,
    global_parameters: Sequence[str] = (),
) -> SubstitutionProcess:
    """
    Build a process with one copy of ``model`` per branch.

    Parameters named in ``global_parameters`` (``*`` wildcards allowed) are
    aliased across all branches; all others are branch-specific.

    Examples
    --------
    >>> process = nonhomogeneous_process(CodonModel(), tree, global_parameters=["kappa"])
    >>> # kappa_1 is shared by every branch, omega_1 .. omega_n are independent
    """
    groups = [[node_id] for node_id in sorted(tree.branch_ids())]
    return _grouped_process(model, tree, groups, rate_distribution, root_frequencies, global_parameters)


def labelled_process(
    model: "BranchModel",
    tree: Tree,
    rate_distribution: Optional[DiscreteDistribution] = None,
    root_frequencies: Optional[np.ndarray] = None,
    global_parameters: Sequence[str] = (),
) -> SubstitutionProcess:
    """
    Build a process with one copy of ``model`` per Newick branch label.

    Unlabelled branches share the first model; each distinct label
    (``#1``, ``#2``, ...) gets the next model, in sorted label order. Model
    parameters are suffixed by model number as in any non-homogeneous process
    (``kappa_1`` for the background, ``kappa_2`` for ``#1``).

    Raises
    ------
    StructuralError
        If no branch carries a label

    Examples
    --------
    >>> tree = Tree.from_newick("((A:0.1,B:0.2)#1:0.05,C:0.3,D:0.4);")
    >>> process = labelled_process(HKY85(), tree, global_parameters=["kappa"])
    >>> process.get_model_index(1)
    1
    """
    background = []
    labelled: dict[str, list[int]] = {}
    for node_id in sorted(tree.branch_ids()):
        label = tree.get_node(node_id).label
        if label is None:
            background.append(node_id)
        else:
            labelled.setdefault(label, []).append(node_id)
    if not labelled:
        raise StructuralError("No branch carries a '#' label")

    groups = ([background] if background else []) + [labelled[label] for label in sorted(labelled)]
    logger.debug("Branch groups by label: background %s, %s", background, labelled)
    return _grouped_process(model, tree, groups, rate_distribution, root_frequencies, global_parameters)
