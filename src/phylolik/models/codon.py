"""
Codon substitution model (Goldman-Yang style, one kappa and one omega).

Used to give branch models parameters that are naturally shared across
branches (``kappa``) or branch-specific (``omega``).
"""

from functools import lru_cache
from typing import Optional

import numpy as np

from ..core.matrix import create_reversible_Q
from ..exceptions import StructuralError
from ..io.sequences import CODONS, GENETIC_CODE, NUCLEOTIDE_TO_INDEX, Alignment
from ..parameters import Parameter, ParameterList
from .base import BranchModel
from .nucleotide import _check_frequencies


def compute_codon_frequencies_f3x4(alignment: Alignment) -> np.ndarray:
    """
    Compute F3X4 codon frequencies from alignment.

    F3X4 estimates codon frequencies from the nucleotide frequencies
    at each of the three codon positions.

    Parameters
    ----------
    alignment : Alignment
        Codon alignment

    Returns
    -------
    np.ndarray, shape (61,)
        Codon frequencies
    """
    if alignment.seqtype != "codon":
        raise StructuralError("F3X4 requires codon alignment")

    nuc_counts = np.zeros((3, 4))
    codes = alignment.sequences.ravel()
    valid = codes[(codes >= 0) & (codes < len(CODONS))]
    for codon_idx, count in zip(*np.unique(valid, return_counts=True)):
        for pos, nuc in enumerate(CODONS[codon_idx]):
            nuc_counts[pos, NUCLEOTIDE_TO_INDEX[nuc]] += count

    # Pseudo-count keeps unobserved nucleotides from zeroing codon frequencies
    nuc_counts += 0.5
    pi_nuc = nuc_counts / nuc_counts.sum(axis=1, keepdims=True)

    pi_codon = np.array([
        pi_nuc[0, NUCLEOTIDE_TO_INDEX[c[0]]]
        * pi_nuc[1, NUCLEOTIDE_TO_INDEX[c[1]]]
        * pi_nuc[2, NUCLEOTIDE_TO_INDEX[c[2]]]
        for c in CODONS
    ])
    return pi_codon / pi_codon.sum()


def is_transition(nuc1: str, nuc2: str) -> bool:
    """Check if nucleotide change is a transition (A<->G or C<->T)."""
    return {nuc1, nuc2} in ({'A', 'G'}, {'C', 'T'})


def is_synonymous(codon1: str, codon2: str) -> bool:
    """Check if two codons code for the same amino acid."""
    return GENETIC_CODE[codon1] == GENETIC_CODE[codon2]


@lru_cache(maxsize=1)
def _codon_pair_classes() -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Boolean masks over codon pairs: single-nucleotide neighbours,
    transitions among them, and non-synonymous changes among them.
    """
    n = len(CODONS)
    neighbour = np.zeros((n, n), dtype=bool)
    transition = np.zeros((n, n), dtype=bool)
    nonsynonymous = np.zeros((n, n), dtype=bool)

    for i, codon_i in enumerate(CODONS):
        for j, codon_j in enumerate(CODONS):
            diffs = [k for k in range(3) if codon_i[k] != codon_j[k]]
            if len(diffs) != 1:
                continue
            neighbour[i, j] = True
            pos = diffs[0]
            transition[i, j] = is_transition(codon_i[pos], codon_j[pos])
            nonsynonymous[i, j] = not is_synonymous(codon_i, codon_j)

    return neighbour, transition, nonsynonymous


def build_codon_Q_matrix(kappa: float, omega: float, pi: np.ndarray,
                         normalization_factor: Optional[float] = None) -> np.ndarray:
    """
    Build a codon rate matrix Q for given kappa, omega, and pi.

    Parameters
    ----------
    kappa : float
        Transition/transversion ratio
    omega : float
        dN/dS ratio
    pi : np.ndarray, shape (61,)
        Codon frequencies
    normalization_factor : float, optional
        Divide by this factor instead of normalising Q to rate 1. Used when
        several matrices must share one time scale.

    Returns
    -------
    np.ndarray, shape (61, 61)
        Rate matrix Q
    """
    neighbour, transition, nonsynonymous = _codon_pair_classes()

    S = neighbour.astype(float)
    S[transition] *= kappa
    S[nonsynonymous] *= omega

    if normalization_factor is not None:
        return create_reversible_Q(S, pi, normalize=False) / normalization_factor
    return create_reversible_Q(S, pi, normalize=True)


class CodonModel(BranchModel):
    """
    Codon model with one dN/dS ratio.

    The substitution rate between codons depends on:
    - kappa (transition/transversion ratio)
    - omega (non-synonymous/synonymous ratio)
    - codon frequencies (pi)

    Parameters
    ----------
    kappa : float
        Transition/transversion rate ratio (default 2.0)
    omega : float
        dN/dS ratio (default 0.4)
    frequencies : np.ndarray, shape (61,), optional
        Codon equilibrium frequencies. If None, uniform frequencies are used.
    """

    name = "Codon"

    def __init__(self, kappa: float = 2.0, omega: float = 0.4,
                 frequencies: Optional[np.ndarray] = None):
        super().__init__(
            "codon",
            ParameterList([
                Parameter("kappa", kappa, 1e-6, 999.0),
                Parameter("omega", omega, 1e-6, 999.0),
            ]),
        )
        self.fixed_frequencies = _check_frequencies(frequencies, len(CODONS))

    def _build_generator(self):
        Q = build_codon_Q_matrix(
            self.parameters.get_value("kappa"),
            self.parameters.get_value("omega"),
            self.fixed_frequencies,
        )
        return Q, self.fixed_frequencies
