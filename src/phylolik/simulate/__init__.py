"""
Sequence simulation under substitution processes.

Useful for:
- Checking that a model's generator and its transition matrices agree
- Generating test datasets
- Validating parameter estimation

Available simulators:
- ProcessSequenceSimulator: sequences drawn from transition matrices
- simulate_substitution_counts: continuous-time histories with per-branch
  substitution counts
"""

from .base import SequenceSimulator
from .substitution import ProcessSequenceSimulator, simulate_substitution_counts

__all__ = [
    'SequenceSimulator',
    'ProcessSequenceSimulator',
    'simulate_substitution_counts',
]
