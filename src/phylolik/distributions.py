"""
Discrete distributions of evolutionary rates across sites.

Every distribution exposes ``rates`` and ``probabilities`` arrays of equal
length (the rate classes) and a :class:`ParameterList` of its free
parameters.
"""

from typing import Mapping, Optional

import numpy as np
from scipy.stats import gamma

from .exceptions import DimensionError
from .parameters import Parameter, ParameterList


class DiscreteDistribution:
    """Base class of rate-class distributions."""

    name = "Discrete"

    def __init__(self, parameters: Optional[ParameterList] = None):
        self.parameters = parameters if parameters is not None else ParameterList()
        self._rates: Optional[np.ndarray] = None
        self._probs: Optional[np.ndarray] = None

    def _discretize(self) -> tuple[np.ndarray, np.ndarray]:
        raise NotImplementedError

    def _update(self) -> None:
        if self._rates is None:
            self._rates, self._probs = self._discretize()

    @property
    def rates(self) -> np.ndarray:
        self._update()
        return self._rates

    @property
    def probabilities(self) -> np.ndarray:
        self._update()
        return self._probs

    @property
    def n_classes(self) -> int:
        return len(self.rates)

    def mean(self) -> float:
        return float(np.dot(self.rates, self.probabilities))

    def set_parameters(self, values: Mapping[str, float]) -> list[str]:
        """Update known parameters; return the names that changed."""
        changed = self.parameters.match_values(values)
        if changed:
            self._rates = self._probs = None
        return changed

    def __repr__(self) -> str:
        classes = ", ".join(f"{r:.4g}:{p:.4g}" for r, p in zip(self.rates, self.probabilities))
        return f"{self.name}([{classes}])"


class ConstantDistribution(DiscreteDistribution):
    """Single rate class (rate homogeneity across sites)."""

    name = "Constant"

    def __init__(self, rate: float = 1.0):
        super().__init__()
        self.rate = float(rate)

    def _discretize(self):
        return np.array([self.rate]), np.array([1.0])


class UserDiscreteDistribution(DiscreteDistribution):
    """
    Fixed user-specified rate classes.

    Parameters
    ----------
    rates : array-like
        Rate of each class (non-negative)
    probabilities : array-like
        Probability of each class (sums to 1)
    """

    name = "User"

    def __init__(self, rates, probabilities):
        super().__init__()
        rates = np.asarray(rates, dtype=float)
        probs = np.asarray(probabilities, dtype=float)
        if rates.ndim != 1 or rates.shape != probs.shape or len(rates) == 0:
            raise DimensionError(
                f"rates and probabilities must be non-empty vectors of equal length, "
                f"got {rates.shape} and {probs.shape}"
            )
        if np.any(rates < 0) or np.any(probs < 0) or not np.isclose(probs.sum(), 1.0):
            raise DimensionError("Rates must be non-negative and probabilities must sum to 1")
        self._fixed = (rates, probs / probs.sum())

    def _discretize(self):
        return self._fixed


class GammaDiscreteDistribution(DiscreteDistribution):
    """
    Gamma distribution of mean 1 discretised into equiprobable classes.

    Each class rate is the mean of the gamma density over its quantile
    interval (Yang 1994).

    Parameters
    ----------
    n_classes : int
        Number of rate classes
    alpha : float
        Shape parameter (parameter name ``Gamma.alpha``)
    """

    name = "Gamma"

    def __init__(self, n_classes: int = 4, alpha: float = 1.0):
        if n_classes < 1:
            raise DimensionError(f"n_classes must be positive, got {n_classes}")
        super().__init__(ParameterList([Parameter("Gamma.alpha", alpha, 1e-4, 500.0)]))
        self.k = int(n_classes)

    def _discretize(self):
        alpha = self.parameters.get_value("Gamma.alpha")
        K = self.k
        probs = np.full(K, 1.0 / K)
        if K == 1:
            return np.array([1.0]), probs

        cuts = gamma.ppf(np.arange(1, K) / K, a=alpha, scale=1.0 / alpha)
        # Mean of a gamma over [lo, hi] uses the cdf of shape alpha + 1
        upper_cdf = gamma.cdf(cuts, a=alpha + 1.0, scale=1.0 / alpha)
        cdf = np.concatenate(([0.0], upper_cdf, [1.0]))
        rates = K * np.diff(cdf)
        # Renormalise rounding so that the mean rate stays exactly 1
        rates /= np.dot(rates, probs)
        return rates, probs


class InvariantMixedDistribution(DiscreteDistribution):
    """
    Adds a class of invariant sites (rate 0) to another distribution.

    The other classes are rescaled by 1 / (1 - p) so that the mean rate is
    unchanged.

    Parameters
    ----------
    distribution : DiscreteDistribution
        Distribution of the variable sites
    p_inv : float
        Proportion of invariant sites (parameter name ``InvariantMixed.p``)
    """

    name = "InvariantMixed"

    def __init__(self, distribution: DiscreteDistribution, p_inv: float = 0.1):
        params = ParameterList([Parameter("InvariantMixed.p", p_inv, 0.0, 1.0 - 1e-6)])
        for p in distribution.parameters:
            params.add(p)
        super().__init__(params)
        self.distribution = distribution

    def set_parameters(self, values: Mapping[str, float]) -> list[str]:
        changed = super().set_parameters(values)
        if changed:
            self.distribution._rates = self.distribution._probs = None
        return changed

    def _discretize(self):
        p = self.parameters.get_value("InvariantMixed.p")
        rates = np.concatenate(([0.0], self.distribution.rates / (1.0 - p)))
        probs = np.concatenate(([p], (1.0 - p) * self.distribution.probabilities))
        return rates, probs
