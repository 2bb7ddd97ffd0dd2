"""
Branch models: functions from branch length to transition probabilities.

A branch model owns a rate matrix (generator) Q and its equilibrium
frequencies, and maps a time ``t`` to ``P(t) = exp(Qt)`` together with the
first and second derivatives with respect to ``t``. How Q is derived from
biological parameters is left to subclasses.
"""

import copy
from typing import Mapping, Optional

import numpy as np

from ..core.matrix import (
    check_detailed_balance,
    check_generator,
    eigen_decompose_rev,
    expected_rate,
    matrix_exponential,
    stationary_distribution,
)
from ..exceptions import DimensionError
from ..io.sequences import n_states_for
from ..parameters import ParameterList


class BranchModel:
    """
    Base class of substitution models attached to branches.

    Subclasses implement :meth:`_build_generator` and declare their
    parameters in ``self.parameters``. The generator and its spectral
    decomposition are rebuilt lazily after a parameter change.

    Parameters
    ----------
    seqtype : str
        Alphabet of the model ('dna', 'aa' or 'codon')
    parameters : ParameterList, optional
        Independent parameters of the model
    """

    name = "BranchModel"

    def __init__(self, seqtype: str, parameters: Optional[ParameterList] = None):
        self.seqtype = seqtype
        self.n_states = n_states_for(seqtype)
        self.parameters = parameters if parameters is not None else ParameterList()
        self._Q: Optional[np.ndarray] = None
        self._pi: Optional[np.ndarray] = None
        self._eigen = None
        self._reversible: Optional[bool] = None

    def _build_generator(self) -> tuple[np.ndarray, np.ndarray]:
        """Return (Q, pi) for the current parameter values."""
        raise NotImplementedError

    def _update(self) -> None:
        if self._Q is not None:
            return
        Q, pi = self._build_generator()
        Q = np.asarray(Q, dtype=float)
        pi = np.asarray(pi, dtype=float)
        if Q.shape != (self.n_states, self.n_states):
            raise DimensionError(
                f"{self.name}: generator has shape {Q.shape}, "
                f"expected ({self.n_states}, {self.n_states})"
            )
        if pi.shape != (self.n_states,):
            raise DimensionError(f"{self.name}: frequencies have shape {pi.shape}")
        self._Q = Q
        self._pi = pi
        self._reversible = bool(np.all(pi > 0) and check_detailed_balance(Q, pi, rtol=1e-8))
        self._eigen = eigen_decompose_rev(Q, pi) if self._reversible else None

    def invalidate(self) -> None:
        """Forget the cached generator; it is rebuilt on next access."""
        self._Q = None
        self._pi = None
        self._eigen = None
        self._reversible = None

    def generator(self) -> np.ndarray:
        self._update()
        return self._Q

    @property
    def frequencies(self) -> np.ndarray:
        self._update()
        return self._pi

    @property
    def is_reversible(self) -> bool:
        self._update()
        return self._reversible

    def rate(self) -> float:
        """Expected substitution rate at equilibrium."""
        return expected_rate(self.generator(), self.frequencies)

    def pij_t(self, t: float) -> np.ndarray:
        """
        Transition probability matrix P(t).

        Rounding noise below zero is clipped to 0. :meth:`dpij_t` and
        :meth:`d2pij_t` are the unclipped derivatives, which differ from the
        derivatives of the clipped matrix only at rounding level.
        """
        self._update()
        if self._eigen is not None:
            eigenvalues, U, V = self._eigen
            P = (U * np.exp(eigenvalues * t)) @ V
        else:
            P = matrix_exponential(self._Q, t)
        np.maximum(P, 0.0, out=P)
        return P

    def dpij_t(self, t: float) -> np.ndarray:
        """First derivative dP(t)/dt."""
        self._update()
        if self._eigen is not None:
            eigenvalues, U, V = self._eigen
            return (U * (eigenvalues * np.exp(eigenvalues * t))) @ V
        return self._Q @ matrix_exponential(self._Q, t)

    def d2pij_t(self, t: float) -> np.ndarray:
        """Second derivative d²P(t)/dt²."""
        self._update()
        if self._eigen is not None:
            eigenvalues, U, V = self._eigen
            return (U * (eigenvalues ** 2 * np.exp(eigenvalues * t))) @ V
        return self._Q @ self._Q @ matrix_exponential(self._Q, t)

    def get_parameter_value(self, name: str) -> float:
        return self.parameters.get_value(name)

    def set_parameters(self, values: Mapping[str, float]) -> list[str]:
        """
        Update the parameters named in ``values`` (others are ignored).

        Returns
        -------
        list[str]
            Names whose value changed
        """
        changed = self.parameters.match_values(values)
        if changed:
            self.invalidate()
        return changed

    def copy(self) -> "BranchModel":
        clone = copy.deepcopy(self)
        clone.invalidate()
        return clone

    def __repr__(self) -> str:
        params = ", ".join(f"{p.name}={p.value:.4g}" for p in self.parameters)
        return f"{self.name}({params})"


class GeneratorModel(BranchModel):
    """
    Model defined directly by a user-supplied rate matrix.

    The matrix may be non-reversible; when ``frequencies`` are omitted the
    stationary distribution of Q is used.

    Parameters
    ----------
    Q : ndarray, shape (n, n)
        Rate matrix with zero row sums
    seqtype : str
        Alphabet of the model
    frequencies : ndarray, optional
        Equilibrium frequencies
    normalize : bool
        Scale Q to one expected substitution per unit time
    """

    name = "Generator"

    def __init__(self, Q: np.ndarray, seqtype: str = "dna", frequencies: Optional[np.ndarray] = None,
                 normalize: bool = False):
        super().__init__(seqtype)
        Q = np.array(Q, dtype=float)
        check_generator(Q)
        pi = stationary_distribution(Q) if frequencies is None else np.asarray(frequencies, dtype=float)
        if normalize:
            Q = Q / expected_rate(Q, pi)
        self._user_Q = Q
        self._user_pi = pi

    def _build_generator(self) -> tuple[np.ndarray, np.ndarray]:
        return self._user_Q, self._user_pi
