"""
Exception hierarchy for tree likelihood computations.

Three families of errors are distinguished:

- **Structural errors**: malformed trees, branches without a model, alphabet
  mismatches. Raised at construction or validation time.
- **Dimension errors**: mismatched matrix or vector sizes, invalid indices.
  Checked at the boundary of every public operation.
- **Numerical errors**: a likelihood that is zero, negative or not finite.
  Published to listeners first, then raised as a distinct class so that an
  optimizer can reject the step instead of aborting the run.
"""

from dataclasses import dataclass, field
from typing import Optional


class PhyloLikelihoodError(Exception):
    """Base class of all errors raised by phylolik."""


class StructuralError(PhyloLikelihoodError, ValueError):
    """Malformed tree, data or model assignment."""


class AlphabetMismatchError(StructuralError):
    """Two components disagree on the alphabet or on the number of states."""


class DimensionError(PhyloLikelihoodError, ValueError):
    """Array shape, class count or index out of range."""


class ParameterError(PhyloLikelihoodError, KeyError):
    """Unknown parameter name or value outside the parameter's bounds."""

    def __str__(self) -> str:
        # KeyError quotes its argument, which garbles longer messages
        return str(self.args[0]) if self.args else ""


@dataclass
class NumericalIssue:
    """
    Description of an invalid likelihood value.

    Attributes
    ----------
    kind : str
        One of 'zero', 'negative', 'nan', 'infinite'
    node_id : int, optional
        Node at which the value was detected (None for the site likelihoods)
    patterns : list[int]
        Indices of the offending site patterns
    """

    kind: str
    node_id: Optional[int] = None
    patterns: list[int] = field(default_factory=list)

    def describe(self) -> str:
        where = "site likelihoods" if self.node_id is None else f"node {self.node_id}"
        shown = ", ".join(str(p) for p in self.patterns[:5])
        if len(self.patterns) > 5:
            shown += ", ..."
        return f"{self.kind} likelihood at {where} (patterns {shown})"


class NumericalLikelihoodError(PhyloLikelihoodError, ArithmeticError):
    """Likelihood evaluated to zero, a negative number, NaN or infinity."""

    def __init__(self, issue: NumericalIssue):
        super().__init__(issue.describe())
        self.issue = issue
