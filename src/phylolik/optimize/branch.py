"""
Branch-length optimization on top of a likelihood object.

The likelihood engine only exposes values and derivatives; this module turns
them into an objective for ``scipy.optimize.minimize``. Steps that make the
likelihood invalid are rejected with a large penalty instead of aborting the
search.
"""

import logging
from typing import Optional, Sequence

import numpy as np
from scipy.optimize import OptimizeResult, minimize

from ..core.mixture import split_component_name
from ..exceptions import NumericalIssue, NumericalLikelihoodError
from ..process import is_branch_parameter

logger = logging.getLogger(__name__)

PENALTY = 1e10


class LikelihoodObjective:
    """
    Negative log-likelihood as a function of a parameter vector.

    Parameters
    ----------
    likelihood : TreeLikelihood or MixtureTreeLikelihood
        Object with ``get_log_likelihood``, ``set_parameters``,
        ``get_parameters``, ``get_first_order_derivative`` and
        ``add_listener``
    names : sequence of str, optional
        Parameters in vector order (all branch lengths by default)
    log_space : bool
        Work with log-transformed values, which keeps branch lengths positive

    Attributes
    ----------
    history : list[dict]
        One entry (parameter values and log-likelihood) per accepted evaluation
    issues : list[NumericalIssue]
        Numerical problems reported during the search
    n_rejected : int
        Number of evaluations that returned the penalty
    """

    def __init__(self, likelihood, names: Optional[Sequence[str]] = None, log_space: bool = True):
        self.likelihood = likelihood
        if names is None:
            names = [
                n for n in likelihood.get_parameters()
                if is_branch_parameter(split_component_name(n)[1])
            ]
        self.names = list(names)
        self.log_space = log_space
        self.history: list[dict] = []
        self.issues: list[NumericalIssue] = []
        self.n_rejected = 0
        likelihood.add_listener(self.issues.append)

    def to_values(self, x: np.ndarray) -> dict[str, float]:
        x = np.asarray(x, dtype=float)
        values = np.exp(x) if self.log_space else x
        return dict(zip(self.names, values))

    def initial_vector(self) -> np.ndarray:
        current = self.likelihood.get_parameters()
        values = np.array([current[name] for name in self.names])
        if self.log_space:
            return np.log(np.maximum(values, 1e-6))
        return values

    def __call__(self, x: np.ndarray) -> float:
        values = self.to_values(x)
        try:
            self.likelihood.set_parameters(values)
            log_likelihood = self.likelihood.get_log_likelihood()
        except NumericalLikelihoodError as e:
            self.n_rejected += 1
            logger.debug("Rejected step: %s", e)
            return PENALTY

        self.history.append({**values, "log_likelihood": log_likelihood})
        if len(self.history) % 10 == 0:
            logger.debug("Evaluation %d: lnL=%.6f", len(self.history), log_likelihood)
        return -log_likelihood

    def gradient(self, x: np.ndarray) -> np.ndarray:
        """Gradient of the negative log-likelihood with respect to ``x``."""
        values = self.to_values(x)
        try:
            self.likelihood.set_parameters(values)
            grad = np.array([self.likelihood.get_first_order_derivative(n) for n in self.names])
        except NumericalLikelihoodError:
            return np.zeros(len(self.names))
        if self.log_space:
            # Chain rule for x = log(value)
            grad *= np.array([values[n] for n in self.names])
        return -grad


def optimize_branch_lengths(
    likelihood,
    method: str = "L-BFGS-B",
    maxiter: int = 500,
    min_length: float = 1e-6,
    max_length: float = 50.0,
) -> OptimizeResult:
    """
    Maximize the likelihood over all branch lengths.

    Branch lengths are optimized in log space with analytic gradients. The
    best branch lengths found are left set in ``likelihood``.

    Parameters
    ----------
    likelihood : TreeLikelihood
        Likelihood to optimize (modified in place)
    method : str, default='L-BFGS-B'
        Any bounded gradient method of ``scipy.optimize.minimize``
    maxiter : int, default=500
        Maximum number of iterations
    min_length, max_length : float
        Bounds on branch lengths

    Returns
    -------
    OptimizeResult
        SciPy result; ``-result.fun`` is the final log-likelihood
    """
    objective = LikelihoodObjective(likelihood)
    x0 = np.clip(objective.initial_vector(), np.log(min_length), np.log(max_length))
    bounds = [(np.log(min_length), np.log(max_length))] * len(objective.names)

    logger.info(
        "Optimizing %d branch lengths (%s, max %d iterations)",
        len(objective.names), method, maxiter,
    )
    result = minimize(
        objective,
        x0,
        jac=objective.gradient,
        method=method,
        bounds=bounds,
        options={"maxiter": maxiter, "disp": False},
    )
    if not result.success:
        logger.warning("Optimization did not converge: %s", result.message)

    likelihood.set_parameters(objective.to_values(result.x))
    logger.info(
        "Optimization complete: lnL=%.6f after %d iterations (%d rejected steps)",
        -result.fun, result.nit, objective.n_rejected,
    )
    return result
