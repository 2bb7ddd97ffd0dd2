"""
Standard reversible models for nucleotides (and the equal-rates model for any
alphabet).

States follow the alignment encoding T, C, A, G, so frequency vectors are
given in that order.
"""

from typing import Optional

import numpy as np

from ..core.matrix import create_reversible_Q
from ..exceptions import DimensionError
from ..io.sequences import NUCLEOTIDE_TO_INDEX, n_states_for
from ..parameters import Parameter, ParameterList
from .base import BranchModel

_T, _C, _A, _G = (NUCLEOTIDE_TO_INDEX[n] for n in "TCAG")


def _check_frequencies(freqs, n_states: int) -> np.ndarray:
    if freqs is None:
        return np.full(n_states, 1.0 / n_states)
    freqs = np.asarray(freqs, dtype=float)
    if freqs.shape != (n_states,):
        raise DimensionError(f"Expected {n_states} frequencies, got shape {freqs.shape}")
    if np.any(freqs <= 0):
        raise DimensionError("Equilibrium frequencies must be strictly positive")
    return freqs / freqs.sum()


def is_transition_pair(i: int, j: int) -> bool:
    """Check if two nucleotide indices form a transition (A<->G or C<->T)."""
    return {i, j} in ({_A, _G}, {_C, _T})


class Equiprobable(BranchModel):
    """
    Equal rates between all states with uniform frequencies (JC69 for DNA).

    Parameters
    ----------
    seqtype : str
        Alphabet ('dna', 'aa' or 'codon')
    """

    name = "Equiprobable"

    def __init__(self, seqtype: str = "dna"):
        super().__init__(seqtype)

    def _build_generator(self):
        n = n_states_for(self.seqtype)
        pi = np.full(n, 1.0 / n)
        return create_reversible_Q(np.ones((n, n)), pi), pi


class JC69(Equiprobable):
    """Jukes-Cantor (1969) nucleotide model."""

    name = "JC69"

    def __init__(self):
        super().__init__("dna")


class HKY85(BranchModel):
    """
    Hasegawa-Kishino-Yano (1985) model.

    Parameters
    ----------
    kappa : float
        Transition/transversion rate ratio
    frequencies : array-like, shape (4,), optional
        Equilibrium frequencies in T, C, A, G order (uniform when omitted,
        giving K80)
    """

    name = "HKY85"

    def __init__(self, kappa: float = 2.0, frequencies: Optional[np.ndarray] = None):
        super().__init__("dna", ParameterList([Parameter("kappa", kappa, 1e-6, 1e4)]))
        self.fixed_frequencies = _check_frequencies(frequencies, 4)

    def _build_generator(self):
        kappa = self.parameters.get_value("kappa")
        S = np.ones((4, 4))
        for i in range(4):
            for j in range(4):
                if i != j and is_transition_pair(i, j):
                    S[i, j] = kappa
        pi = self.fixed_frequencies
        return create_reversible_Q(S, pi), pi


class GTR(BranchModel):
    """
    General time-reversible model.

    Exchangeabilities relative to A<->G (fixed to 1):
    ``a``: C<->T, ``b``: A<->T, ``c``: G<->T, ``d``: A<->C, ``e``: C<->G.

    Parameters
    ----------
    a, b, c, d, e : float
        Relative exchangeabilities
    frequencies : array-like, shape (4,), optional
        Equilibrium frequencies in T, C, A, G order
    """

    name = "GTR"

    def __init__(self, a: float = 1.0, b: float = 1.0, c: float = 1.0, d: float = 1.0,
                 e: float = 1.0, frequencies: Optional[np.ndarray] = None):
        super().__init__(
            "dna",
            ParameterList(
                Parameter(name, value, 1e-6, 1e4)
                for name, value in zip("abcde", (a, b, c, d, e))
            ),
        )
        self.fixed_frequencies = _check_frequencies(frequencies, 4)

    def _build_generator(self):
        get = self.parameters.get_value
        S = np.zeros((4, 4))
        pairs = {
            (_C, _T): get("a"),
            (_A, _T): get("b"),
            (_G, _T): get("c"),
            (_A, _C): get("d"),
            (_C, _G): get("e"),
            (_A, _G): 1.0,
        }
        for (i, j), value in pairs.items():
            S[i, j] = S[j, i] = value
        pi = self.fixed_frequencies
        return create_reversible_Q(S, pi), pi
