"""
Simulation under a substitution process.

:class:`ProcessSequenceSimulator` draws sequences from the transition
matrices of a process (one rate class per site). :func:`simulate_substitution_counts`
simulates full continuous-time histories instead, and records every
substitution on every branch.
"""

import logging
from typing import Optional

import numpy as np

from ..io.trees import TreeNode
from ..process import SubstitutionProcess
from .base import SequenceSimulator

logger = logging.getLogger(__name__)


def _sample_rows(rng: np.random.Generator, probabilities: np.ndarray, rows: np.ndarray) -> np.ndarray:
    """Draw one state per site from ``probabilities[rows[i]]`` by inverse CDF."""
    cumulative = np.cumsum(probabilities, axis=1)[rows]
    u = rng.random(len(rows)) * cumulative[:, -1]
    return (cumulative < u[:, np.newaxis]).sum(axis=1)


class ProcessSequenceSimulator(SequenceSimulator):
    """
    Simulate sequences with the transition matrices of a process.

    Every site is assigned a rate class once; the root state is drawn from
    the root frequencies and each branch applies ``P(rate * t)`` of its own
    model.

    Parameters
    ----------
    process : SubstitutionProcess
        Fully set-up process (its tree is used)
    n_sites : int
        Number of sites
    seed : int, optional
        Random seed

    Examples
    --------
    >>> sim = ProcessSequenceSimulator(homogeneous_process(JC69(), tree), 1000, seed=1)
    >>> alignment = sim.simulate_alignment()
    """

    def __init__(self, process: SubstitutionProcess, n_sites: int, seed: Optional[int] = None):
        super().__init__(process.tree, n_sites, seed)
        process.is_fully_set_up()
        self.process = process
        self.seqtype = process.seqtype
        self.site_classes = self.rng.choice(
            process.n_classes, size=n_sites, p=process.class_probabilities
        )

    def _generate_ancestral_sequence(self) -> np.ndarray:
        pi = self.process.root_frequencies
        return self.rng.choice(len(pi), size=self.n_sites, p=pi)

    def _evolve_sequence(self, parent_seq: np.ndarray, node: TreeNode) -> np.ndarray:
        child_seq = np.empty(self.n_sites, dtype=np.int64)
        matrices = self.process.get_transition_probabilities(node.id)
        for k in range(self.process.n_classes):
            sites = np.flatnonzero(self.site_classes == k)
            if len(sites):
                child_seq[sites] = _sample_rows(self.rng, matrices[k], parent_seq[sites])
        return child_seq

    def get_parameters(self) -> dict:
        return {
            "n_sites": self.n_sites,
            "models": self.process.list_model_names(),
            "parameters": self.process.get_parameters(),
        }


def simulate_substitution_counts(
    process: SubstitutionProcess,
    n_sites: int,
    seed: Optional[int] = None,
) -> dict[int, np.ndarray]:
    """
    Simulate substitution histories for independent sites and count events.

    Each site draws a rate class and a root state, then follows a
    continuous-time path along every branch (exponential waiting times,
    jumps proportional to the off-diagonal rates). All sites are advanced
    together.

    Parameters
    ----------
    process : SubstitutionProcess
        Fully set-up process
    n_sites : int
        Number of independent site histories
    seed : int, optional
        Random seed

    Returns
    -------
    dict
        Branch id -> (n_states, n_states) matrix where entry (i, j) is the
        number of i -> j substitutions summed over sites. Dividing the total
        of a matrix by ``n_sites`` estimates the expected number of
        substitutions on the branch.
    """
    process.is_fully_set_up()
    rng = np.random.default_rng(seed)
    rates = process.class_rates[rng.choice(process.n_classes, size=n_sites, p=process.class_probabilities)]
    pi = process.root_frequencies

    states = {process.tree.root.id: rng.choice(len(pi), size=n_sites, p=pi)}
    counts = {}
    for node in process.tree.preorder():
        if node.parent is None:
            continue
        Q = process.get_model(node.id).generator()
        final, branch_counts = _simulate_branch(
            rng, Q, states[node.parent.id], rates * process.branch_length(node.id)
        )
        states[node.id] = final
        counts[node.id] = branch_counts

    logger.debug("Simulated %d site histories on %d branches", n_sites, len(counts))
    return counts


def _simulate_branch(rng: np.random.Generator, Q: np.ndarray, start: np.ndarray,
                     durations: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Gillespie simulation of all sites along one branch (time already scaled by rate)."""
    n = Q.shape[0]
    exit_rates = -np.diag(Q)
    jumps = np.where(np.eye(n, dtype=bool), 0.0, Q)
    jumps /= np.where(exit_rates > 0, exit_rates, 1.0)[:, np.newaxis]

    state = start.copy()
    remaining = durations.astype(float)
    counts = np.zeros((n, n), dtype=np.int64)
    active = np.flatnonzero((remaining > 0) & (exit_rates[state] > 0))
    while len(active):
        current = state[active]
        waits = rng.exponential(1.0 / exit_rates[current])
        jumped = waits < remaining[active]
        active = active[jumped]
        if not len(active):
            break
        current = current[jumped]
        remaining[active] -= waits[jumped]
        new = _sample_rows(rng, jumps, current)
        np.add.at(counts, (current, new), 1)
        state[active] = new
        active = active[exit_rates[new] > 0]
    return state, counts
