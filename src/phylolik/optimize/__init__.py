"""
Optimization hooks for maximum likelihood estimation.

The optimizers themselves come from :mod:`scipy.optimize`; this package only
adapts a likelihood object to them:

- **LikelihoodObjective**: negative log-likelihood and gradient of a
  parameter vector, rejecting numerically invalid steps
- **optimize_branch_lengths**: L-BFGS-B over all branch lengths
"""

from phylolik.optimize.branch import LikelihoodObjective, optimize_branch_lengths

__all__ = [
    "LikelihoodObjective",
    "optimize_branch_lengths",
]
