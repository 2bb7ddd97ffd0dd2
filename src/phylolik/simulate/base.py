"""
Base class for sequence simulators.
"""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np

from ..exceptions import StructuralError
from ..io.sequences import Alignment
from ..io.trees import Tree, TreeNode


class SequenceSimulator(ABC):
    """
    Abstract base class for sequence simulators.

    Subclasses draw the root sequence and evolve a sequence along one
    branch; this class walks the tree from the root to the tips.

    Parameters
    ----------
    tree : Tree
        Tree with branch lengths
    n_sites : int
        Number of sites to simulate
    seed : int, optional
        Random seed for reproducibility

    Attributes
    ----------
    rng : numpy.random.Generator
        Random number generator (seeded for reproducibility)
    """

    seqtype = "dna"

    def __init__(self, tree: Tree, n_sites: int, seed: Optional[int] = None):
        if n_sites < 0:
            raise StructuralError(f"Number of sites must be non-negative, got {n_sites}")
        self.tree = tree
        self.n_sites = n_sites
        self.rng = np.random.default_rng(seed)

    @abstractmethod
    def _generate_ancestral_sequence(self) -> np.ndarray:
        """
        Generate sequence at root node.

        Returns
        -------
        np.ndarray
            Ancestral sequence (array of state indices)
        """

    @abstractmethod
    def _evolve_sequence(self, parent_seq: np.ndarray, node: TreeNode) -> np.ndarray:
        """
        Evolve a sequence along the branch above ``node``.

        Parameters
        ----------
        parent_seq : np.ndarray
            Sequence at the parent of ``node``
        node : TreeNode
            Node at the lower end of the branch

        Returns
        -------
        np.ndarray
            Sequence at ``node``
        """

    def simulate(self, ancestral: bool = False) -> dict[str, np.ndarray]:
        """
        Simulate sequences on the tree.

        Parameters
        ----------
        ancestral : bool
            Also return internal node sequences, keyed by node id

        Returns
        -------
        dict
            Mapping from leaf name to sequence array (state indices)
        """
        sequences = {self.tree.root.id: self._generate_ancestral_sequence()}
        for node in self.tree.preorder():
            if node.parent is not None:
                sequences[node.id] = self._evolve_sequence(sequences[node.parent.id], node)

        result = {}
        for node in self.tree.preorder():
            if node.is_leaf:
                result[node.name if node.name else str(node.id)] = sequences[node.id]
            elif ancestral:
                result[str(node.id)] = sequences[node.id]
        return result

    def simulate_alignment(self) -> Alignment:
        """Simulate leaf sequences and return them as an alignment."""
        sequences = self.simulate()
        names = list(sequences)
        matrix = np.array([sequences[n] for n in names], dtype=np.int16).reshape(len(names), self.n_sites)
        return Alignment(
            names=names,
            sequences=matrix,
            n_species=len(names),
            n_sites=self.n_sites,
            seqtype=self.seqtype,
        )

    @abstractmethod
    def get_parameters(self) -> dict:
        """
        Get simulation parameters for output metadata.

        Returns
        -------
        dict
            Dictionary of model parameters
        """
