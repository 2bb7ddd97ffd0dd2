"""
Core algorithms of the likelihood engine.

- **Matrix operations**: matrix exponential, eigendecomposition of
  reversible generators, stationary distributions
- **Likelihood**: the double-recursive (post-order / pre-order) algorithm
  over the conditional likelihood arrays
- **Mixtures**: weighted averages of tree likelihoods
"""

from phylolik.core.likelihood import (
    TreeLikelihood,
    compute_likelihood_from_arrays,
    compute_likelihood_from_arrays_rooted,
)
from phylolik.core.likelihood_data import NodeStatus, TreeLikelihoodData
from phylolik.core.matrix import eigen_decompose_rev, matrix_exponential
from phylolik.core.mixture import MixtureTreeLikelihood

__all__ = [
    "TreeLikelihood",
    "TreeLikelihoodData",
    "NodeStatus",
    "MixtureTreeLikelihood",
    "compute_likelihood_from_arrays",
    "compute_likelihood_from_arrays_rooted",
    "matrix_exponential",
    "eigen_decompose_rev",
]
