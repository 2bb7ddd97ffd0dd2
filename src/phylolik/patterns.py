"""
Compression of alignment columns into weighted site patterns.

Columns are compared as whole integer vectors. Sorting the column indices
with a stable lexicographic sort puts identical columns next to each other,
so a single pass merging adjacent duplicates yields the unique patterns, the
number of sites each one stands for, and the pattern of every original site.
"""

import logging
from typing import Optional, Sequence

import numpy as np

from .exceptions import DimensionError, StructuralError
from .io.sequences import Alignment

logger = logging.getLogger(__name__)


class SitePatterns:
    """
    Unique alignment columns with their multiplicities.

    Parameters
    ----------
    alignment : Alignment
        Source alignment
    names : sequence of str, optional
        Restrict the patterns to these sequences. Only names also present in
        the alignment are kept, in alignment order.

    Attributes
    ----------
    names : list[str]
        Sequence names, one per row of ``patterns``
    patterns : ndarray, shape (n_leaves, n_patterns)
        Encoded unique columns
    weights : ndarray, shape (n_patterns,)
        Number of original sites per pattern
    indices : ndarray, shape (n_sites,)
        Pattern index of every original site
    owns_columns : bool
        True when the columns were copied out of a restricted alignment
    """

    def __init__(self, alignment: Alignment, names: Optional[Sequence[str]] = None):
        if alignment.n_species == 0:
            raise StructuralError("Cannot compress an alignment without sequences")

        self.seqtype = alignment.seqtype
        columns = np.asarray(alignment.sequences)
        if columns.ndim != 2 or columns.shape[0] != len(alignment.names):
            raise StructuralError("Alignment sequences must all have the same length")

        if names is None:
            self.names = list(alignment.names)
            self.owns_columns = False
        else:
            wanted = set(names)
            rows = [i for i, name in enumerate(alignment.names) if name in wanted]
            if not rows:
                raise StructuralError("None of the requested sequences is in the alignment")
            self.names = [alignment.names[i] for i in rows]
            columns = columns[rows].copy()
            self.owns_columns = True

        self.n_sites = columns.shape[1]
        self._compress(columns)
        logger.info(
            "Compressed %d sites of %d sequences into %d patterns",
            self.n_sites, len(self.names), self.n_patterns,
        )

    def _compress(self, columns: np.ndarray) -> None:
        n_rows, n_sites = columns.shape
        if n_sites == 0:
            self.patterns = np.empty((n_rows, 0), dtype=columns.dtype)
            self.weights = np.empty(0, dtype=np.int64)
            self.indices = np.empty(0, dtype=np.int64)
            self._order = np.empty(0, dtype=np.int64)
            self._starts = np.zeros(1, dtype=np.int64)
            return

        # lexsort is stable and uses its last key as the primary one
        order = np.lexsort(columns[::-1])
        ordered = columns[:, order]
        is_new = np.ones(n_sites, dtype=bool)
        is_new[1:] = np.any(ordered[:, 1:] != ordered[:, :-1], axis=0)

        starts = np.flatnonzero(is_new)
        self.patterns = ordered[:, starts]
        self.weights = np.diff(np.append(starts, n_sites))
        self.indices = np.empty(n_sites, dtype=np.int64)
        self.indices[order] = np.cumsum(is_new) - 1
        self._order = order
        self._starts = np.append(starts, n_sites)

    @property
    def n_patterns(self) -> int:
        return self.patterns.shape[1]

    @property
    def n_leaves(self) -> int:
        return len(self.names)

    def row_of(self, name: str) -> np.ndarray:
        """Encoded pattern row of one sequence."""
        try:
            return self.patterns[self.names.index(name)]
        except ValueError:
            raise StructuralError(f"Sequence '{name}' not in the site patterns") from None

    def get_sites(self) -> Alignment:
        """
        Unique columns as an alignment (one site per pattern).

        Raises
        ------
        StructuralError
            If there are no patterns
        """
        if self.n_patterns == 0:
            raise StructuralError("No site patterns: the alignment is empty")
        return Alignment(
            names=list(self.names),
            sequences=self.patterns.copy(),
            n_species=self.n_leaves,
            n_sites=self.n_patterns,
            seqtype=self.seqtype,
        )

    def original_positions(self, pattern: int) -> np.ndarray:
        """Sorted original site indices that collapse onto ``pattern``."""
        if not 0 <= pattern < self.n_patterns:
            raise DimensionError(f"Pattern index {pattern} out of range [0, {self.n_patterns - 1}]")
        return np.sort(self._order[self._starts[pattern]:self._starts[pattern + 1]])

    def expand(self, values: np.ndarray) -> np.ndarray:
        """
        Map per-pattern values back to original sites.

        The pattern axis must be the first one.
        """
        values = np.asarray(values)
        if values.shape[0] != self.n_patterns:
            raise DimensionError(
                f"Expected {self.n_patterns} per-pattern values, got {values.shape[0]}"
            )
        return values[self.indices]

    def to_alignment(self) -> Alignment:
        """Rebuild the (possibly restricted) alignment the patterns came from."""
        return Alignment(
            names=list(self.names),
            sequences=self.expand(self.patterns.T).T.copy(),
            n_species=self.n_leaves,
            n_sites=self.n_sites,
            seqtype=self.seqtype,
        )

    def __repr__(self) -> str:
        return (
            f"SitePatterns(n_leaves={self.n_leaves}, n_sites={self.n_sites}, "
            f"n_patterns={self.n_patterns})"
        )
