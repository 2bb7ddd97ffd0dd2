"""
Hidden Markov model over sites whose emissions are site likelihoods.

Each hidden state is an independent per-site likelihood source (a tree
likelihood, a mixture, ...). Along the alignment the active source switches
according to a Markov chain, which models regimes that are autocorrelated
along the sequence (covarion-like or rate-autocorrelation models).
"""

import logging
from typing import Optional, Sequence

import numpy as np

from .core.likelihood import Listener, find_numerical_issue, report_numerical_issue
from .core.matrix import stationary_distribution
from .core.mixture import split_component_name
from .exceptions import DimensionError, ParameterError
from .parameters import ParameterList, Simplex

logger = logging.getLogger(__name__)


class HmmTransitionMatrix:
    """
    Row-stochastic transition matrix between hidden states.

    Each row is a :class:`Simplex` whose parameters are named
    ``HMM.row{i}.theta{j}`` (both 1-based).

    Parameters
    ----------
    n_states : int
        Number of hidden states
    matrix : array-like, shape (n_states, n_states), optional
        Initial matrix (uniform rows when omitted)
    initial : array-like, shape (n_states,), optional
        Fixed distribution of the first hidden state. When omitted the
        stationary distribution of the matrix is used.
    """

    def __init__(self, n_states: int, matrix=None, initial=None):
        if n_states < 1:
            raise DimensionError(f"An HMM needs at least one hidden state, got {n_states}")
        self.n_states = n_states
        if matrix is None:
            matrix = np.full((n_states, n_states), 1.0 / n_states)
        matrix = np.asarray(matrix, dtype=float)
        if matrix.shape != (n_states, n_states):
            raise DimensionError(f"Transition matrix has shape {matrix.shape}, expected ({n_states}, {n_states})")

        self.rows = [Simplex(row, prefix=f"HMM.row{i + 1}.") for i, row in enumerate(matrix)]
        self.parameters = ParameterList()
        for row in self.rows:
            for p in row.parameters:
                self.parameters.add(p)

        self.fixed_initial = None
        if initial is not None:
            initial = np.asarray(initial, dtype=float)
            if initial.shape != (n_states,) or not np.isclose(initial.sum(), 1.0):
                raise DimensionError("Initial probabilities must be a vector of n_states summing to 1")
            self.fixed_initial = initial

    @property
    def matrix(self) -> np.ndarray:
        return np.array([row.probabilities for row in self.rows])

    @property
    def initial(self) -> np.ndarray:
        if self.fixed_initial is not None:
            return self.fixed_initial
        T = self.matrix
        if self.n_states == 1:
            return np.ones(1)
        if np.allclose(T, np.eye(self.n_states)):
            # Every distribution is stationary for the identity
            return np.full(self.n_states, 1.0 / self.n_states)
        return stationary_distribution(T - np.eye(self.n_states))

    def set_parameters(self, values) -> list[str]:
        return self.parameters.match_values(values)

    def __repr__(self) -> str:
        return f"HmmTransitionMatrix(n_states={self.n_states})"


class HmmOfAlignedLikelihoods:
    """
    Forward-backward over per-site emissions of several likelihood sources.

    Parameters
    ----------
    sources : sequence
        Objects with ``n_sites``, ``get_log_likelihood_per_site()``,
        ``get_parameters()`` and ``set_parameters(mapping)``, all defined
        over the same sites in the same order
    transition : HmmTransitionMatrix, optional
        Transition matrix (uniform when omitted)

    Notes
    -----
    Source parameters are exposed as ``L{k}.name`` (1-based ``k``) and the
    transition parameters as ``HMM.row{i}.theta{j}``. Changing a transition
    parameter only invalidates the forward/backward tables; changing a
    source parameter also reloads that source's emissions.
    """

    def __init__(self, sources: Sequence, transition: Optional[HmmTransitionMatrix] = None):
        if not sources:
            raise DimensionError("An HMM needs at least one likelihood source")
        n_sites = sources[0].n_sites
        for k, source in enumerate(sources):
            if source.n_sites != n_sites:
                raise DimensionError(
                    f"Source {k + 1} has {source.n_sites} sites, source 1 has {n_sites}"
                )
        if transition is None:
            transition = HmmTransitionMatrix(len(sources))
        if transition.n_states != len(sources):
            raise DimensionError(
                f"Transition matrix has {transition.n_states} states for {len(sources)} sources"
            )

        self.sources = list(sources)
        self.transition = transition
        self.n_sites = n_sites
        self.n_hidden = len(sources)
        self._listeners: list[Listener] = []

        self._log_emissions: Optional[np.ndarray] = None
        self._forward: Optional[np.ndarray] = None
        self._backward: Optional[np.ndarray] = None
        self._log_scales: Optional[np.ndarray] = None
        logger.info("HMM over %d sites with %d hidden states", n_sites, self.n_hidden)

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Tables

    def _emissions(self) -> np.ndarray:
        """Log emissions, shape (n_sites, n_hidden)."""
        if self._log_emissions is None:
            self._log_emissions = np.column_stack(
                [source.get_log_likelihood_per_site() for source in self.sources]
            )
        return self._log_emissions

    def _compute_forward(self) -> None:
        if self._forward is not None:
            return
        log_e = self._emissions()
        shift = log_e.max(axis=1, keepdims=True)
        emissions = np.exp(log_e - shift)
        T = self.transition.matrix

        alpha = np.empty((self.n_sites, self.n_hidden))
        scales = np.empty(self.n_sites)
        initial = self.transition.initial
        for t in range(self.n_sites):
            if t == 0:
                alpha[t] = initial * emissions[t]
            else:
                alpha[t] = (alpha[t - 1] @ T) * emissions[t]
            scales[t] = alpha[t].sum()
            if not np.isfinite(scales[t]) or scales[t] <= 0:
                issue = find_numerical_issue(np.array([scales[t]]))
                issue.patterns = [t]
                report_numerical_issue(issue, self._listeners)
            alpha[t] /= scales[t]

        self._forward = alpha
        self._log_scales = np.log(scales) + shift[:, 0]

    def _compute_backward(self) -> None:
        if self._backward is not None:
            return
        self._compute_forward()
        log_e = self._emissions()
        emissions = np.exp(log_e - log_e.max(axis=1, keepdims=True))
        scales = np.exp(self._log_scales - log_e.max(axis=1))
        T = self.transition.matrix

        beta = np.empty((self.n_sites, self.n_hidden))
        if self.n_sites:
            beta[-1] = 1.0
        for t in range(self.n_sites - 2, -1, -1):
            beta[t] = T @ (emissions[t + 1] * beta[t + 1]) / scales[t + 1]
        self._backward = beta

    # ------------------------------------------------------------------
    # Results

    def get_log_likelihood_per_site(self) -> np.ndarray:
        """
        log p(x_t | x_1 .. x_{t-1}) for every site; these sum to the total
        log-likelihood.
        """
        self._compute_forward()
        return self._log_scales.copy()

    def get_log_likelihood(self) -> float:
        return float(self.get_log_likelihood_per_site().sum())

    def get_likelihood_per_site(self) -> np.ndarray:
        return np.exp(self.get_log_likelihood_per_site())

    def get_posterior_probabilities(self) -> np.ndarray:
        """Posterior probability of each hidden state, shape (n_sites, n_hidden)."""
        self._compute_backward()
        joint = self._forward * self._backward
        return joint / joint.sum(axis=1, keepdims=True)

    def get_viterbi_path(self) -> np.ndarray:
        """Most probable sequence of hidden states (0-based indices)."""
        log_e = self._emissions()
        with np.errstate(divide="ignore"):
            log_T = np.log(self.transition.matrix)
            log_pi = np.log(self.transition.initial)

        path = np.zeros(self.n_sites, dtype=np.int64)
        if self.n_sites == 0:
            return path
        score = log_pi + log_e[0]
        backpointers = np.zeros((self.n_sites, self.n_hidden), dtype=np.int64)
        for t in range(1, self.n_sites):
            candidates = score[:, np.newaxis] + log_T
            backpointers[t] = candidates.argmax(axis=0)
            score = candidates.max(axis=0) + log_e[t]
        path[-1] = int(score.argmax())
        for t in range(self.n_sites - 1, 0, -1):
            path[t - 1] = backpointers[t, path[t]]
        return path

    # ------------------------------------------------------------------
    # Parameters

    def get_parameters(self) -> dict[str, float]:
        values = self.transition.parameters.values()
        for k, source in enumerate(self.sources):
            for name, value in source.get_parameters().items():
                values[f"L{k + 1}.{name}"] = value
        return values

    def _invalidate_tables(self) -> None:
        self._forward = None
        self._backward = None
        self._log_scales = None

    def set_parameters(self, values) -> None:
        transition_values = {}
        source_values: dict[int, dict[str, float]] = {}
        for name, value in values.items():
            if name in self.transition.parameters:
                transition_values[name] = value
                continue
            index, local = split_component_name(name)
            if index is None or not 0 <= index < self.n_hidden:
                raise ParameterError(f"Unknown parameter '{name}'")
            source_values.setdefault(index, {})[local] = value

        if transition_values and self.transition.set_parameters(transition_values):
            self._invalidate_tables()
        for index, local_values in source_values.items():
            self.sources[index].set_parameters(local_values)
            self._log_emissions = None
            self._invalidate_tables()

    def fire_parameter_changed(self, names) -> None:
        """Invalidate after parameter values were changed in place."""
        names = list(names)
        if any(name in self.transition.parameters for name in names):
            self._invalidate_tables()
        touched = {split_component_name(name)[0] for name in names} - {None}
        for index in touched:
            local = [split_component_name(n)[1] for n in names if split_component_name(n)[0] == index]
            self.sources[index].fire_parameter_changed(local)
        if touched:
            self._log_emissions = None
            self._invalidate_tables()
