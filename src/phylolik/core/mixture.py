"""
Mixture of tree likelihoods over the same site patterns.

The per-site likelihood of the mixture is the probability-weighted average
of the per-site likelihoods of its components; branch-length derivatives are
averaged the same way. Component parameters are exposed under the prefix
``L{k}.`` (1-based), and an unprefixed name reaches every component that has
it. The mixture weights are the ``Mixture.theta{i}`` stick-breaking
parameters.
"""

import logging
from typing import Sequence

import numpy as np
from scipy.special import logsumexp

from ..exceptions import DimensionError, ParameterError
from ..parameters import Simplex
from ..process import is_branch_parameter
from .likelihood import (
    Listener,
    TreeLikelihood,
    finite_difference,
    find_numerical_issue,
    report_numerical_issue,
)

logger = logging.getLogger(__name__)

MIXTURE_PREFIX = "Mixture."


def split_component_name(name: str) -> tuple[int | None, str]:
    """'L2.kappa' -> (1, 'kappa'); 'kappa' -> (None, 'kappa')."""
    head, dot, tail = name.partition(".")
    if dot and head.startswith("L") and head[1:].isdigit():
        return int(head[1:]) - 1, tail
    return None, name


def same_site_patterns(first, second) -> bool:
    """True when two pattern sets compress the same columns in the same way."""
    return (
        first.names == second.names
        and np.array_equal(first.patterns, second.patterns)
        and np.array_equal(first.weights, second.weights)
        and np.array_equal(first.indices, second.indices)
    )


class MixtureTreeLikelihood:
    """
    Weighted average of several tree likelihoods.

    Parameters
    ----------
    likelihoods : sequence of TreeLikelihood
        Components computed on the same site patterns
    probabilities : sequence of float
        Weight of each component (sums to 1)

    Raises
    ------
    DimensionError
        If the components disagree on the patterns or the number of weights
        is wrong
    """

    def __init__(self, likelihoods: Sequence[TreeLikelihood], probabilities: Sequence[float]):
        if not likelihoods:
            raise DimensionError("A mixture needs at least one component")
        if len(probabilities) != len(likelihoods):
            raise DimensionError(
                f"{len(probabilities)} probabilities given for {len(likelihoods)} components"
            )
        reference = likelihoods[0].patterns
        for lik in likelihoods[1:]:
            if not same_site_patterns(lik.patterns, reference):
                raise DimensionError("All mixture components must share the same site patterns")

        self.likelihoods = list(likelihoods)
        self.patterns = reference
        self.simplex = Simplex(probabilities, prefix=MIXTURE_PREFIX)
        self._listeners: list[Listener] = []
        logger.info("Mixture of %d tree likelihoods", len(self.likelihoods))

    @property
    def probabilities(self) -> np.ndarray:
        return self.simplex.probabilities

    @property
    def n_sites(self) -> int:
        return self.patterns.n_sites

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)
        for lik in self.likelihoods:
            lik.add_listener(listener)

    # ------------------------------------------------------------------
    # Likelihood values

    def _component_logs(self) -> np.ndarray:
        """Shape (n_components, n_patterns)."""
        return np.array([lik.get_log_likelihood_per_pattern() for lik in self.likelihoods])

    def get_log_likelihood_per_pattern(self) -> np.ndarray:
        with np.errstate(divide="ignore"):
            log_weights = np.log(self.probabilities)
        result = logsumexp(self._component_logs() + log_weights[:, np.newaxis], axis=0)
        finite = np.isfinite(result)
        if not finite.all():
            issue = find_numerical_issue(np.where(finite, 1.0, np.exp(result)))
            report_numerical_issue(issue, self._listeners)
        return result

    def get_log_likelihood(self) -> float:
        return float(np.dot(self.patterns.weights, self.get_log_likelihood_per_pattern()))

    def get_log_likelihood_per_site(self) -> np.ndarray:
        return self.patterns.expand(self.get_log_likelihood_per_pattern())

    def get_likelihood_per_site(self) -> np.ndarray:
        return np.exp(self.get_log_likelihood_per_site())

    def get_posterior_component_probabilities(self) -> np.ndarray:
        """Posterior probability of each component per pattern, shape (n_patterns, n_components)."""
        with np.errstate(divide="ignore"):
            joint = self._component_logs() + np.log(self.probabilities)[:, np.newaxis]
        return np.exp(joint - logsumexp(joint, axis=0)).T

    # ------------------------------------------------------------------
    # Parameters

    def get_parameters(self) -> dict[str, float]:
        values = self.simplex.parameters.values()
        for k, lik in enumerate(self.likelihoods):
            for name, value in lik.get_parameters().items():
                values[f"L{k + 1}.{name}"] = value
        return values

    def _targets(self, name: str) -> list[tuple[TreeLikelihood, str]]:
        index, local = split_component_name(name)
        if index is not None:
            if not 0 <= index < len(self.likelihoods):
                raise ParameterError(f"No mixture component for parameter '{name}'")
            candidates = [self.likelihoods[index]]
        else:
            candidates = self.likelihoods
        targets = [(lik, local) for lik in candidates if local in lik.process.parameters]
        if not targets:
            raise ParameterError(f"Unknown parameter '{name}'")
        return targets

    def set_parameters(self, values) -> None:
        for name, value in values.items():
            if name in self.simplex.parameters:
                self.simplex.parameters.set_value(name, value)
                continue
            for lik, local in self._targets(name):
                lik.set_parameters({local: value})

    def fire_parameter_changed(self, names) -> None:
        for name in names:
            if name in self.simplex.parameters:
                continue
            for lik, local in self._targets(name):
                lik.fire_parameter_changed([local])

    def _bounds(self, name: str) -> tuple[float, float]:
        if name in self.simplex.parameters:
            p = self.simplex.parameters[name]
            return p.lower, p.upper
        lik, local = self._targets(name)[0]
        return lik.get_parameter_bounds(local)

    # ------------------------------------------------------------------
    # Derivatives

    def _branch_ratios(self, name: str) -> tuple[np.ndarray, np.ndarray]:
        """Per-pattern dL/L and d2L/L of the mixture for a branch length."""
        targets = {id(lik): lik for lik, _ in self._targets(name)}
        local = split_component_name(name)[1]
        node_id = int(local[len("BrLen"):])

        logs = self._component_logs()
        shift = logs.max(axis=0)
        scaled = self.probabilities[:, np.newaxis] * np.exp(logs - shift)
        total = scaled.sum(axis=0)

        d1 = np.zeros(self.patterns.n_patterns)
        d2 = np.zeros(self.patterns.n_patterns)
        for k, lik in enumerate(self.likelihoods):
            if id(lik) not in targets:
                continue
            ratio1, ratio2 = lik.get_branch_derivative_ratios(node_id)
            d1 += scaled[k] * ratio1
            d2 += scaled[k] * ratio2
        return d1 / total, d2 / total

    def get_first_order_derivative(self, name: str) -> float:
        if is_branch_parameter(split_component_name(name)[1]):
            ratio1, _ = self._branch_ratios(name)
            return float(np.dot(self.patterns.weights, ratio1))
        return self._numerical_derivatives(name)[0]

    def get_second_order_derivative(self, name: str) -> float:
        if is_branch_parameter(split_component_name(name)[1]):
            ratio1, ratio2 = self._branch_ratios(name)
            return float(np.dot(self.patterns.weights, ratio2 - ratio1 ** 2))
        return self._numerical_derivatives(name)[1]

    def _numerical_derivatives(self, name: str) -> tuple[float, float]:
        if name in self.simplex.parameters:
            saved = None
            original = self.simplex.parameters.get_value(name)
        else:
            saved = [(lik, local, lik.process.parameters.get_value(local))
                     for lik, local in self._targets(name)]
            distinct = {value for _, _, value in saved}
            if len(distinct) > 1:
                raise ParameterError(
                    f"Parameter '{name}' differs between components ({sorted(distinct)}); "
                    f"use the component prefix L{{k}}. to differentiate it"
                )
            original = saved[0][2]
        lower, upper = self._bounds(name)

        def evaluate(value: float) -> float:
            self.set_parameters({name: value})
            return self.get_log_likelihood()

        try:
            return finite_difference(evaluate, original, lower, upper)
        finally:
            if saved is None:
                self.simplex.parameters.set_value(name, original)
            else:
                for lik, local, value in saved:
                    lik.set_parameters({local: value})
