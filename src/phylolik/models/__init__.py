"""
Substitution models attached to tree branches.

Each model maps a branch length to a transition probability matrix and its
first and second derivatives. Parameterisations provided here:

- **Generic**: any user rate matrix, reversible or not (``GeneratorModel``)
- **Nucleotide**: JC69, HKY85, GTR
- **Any alphabet**: equal rates (``Equiprobable``)
- **Codon**: one kappa and one omega (``CodonModel``)
"""

from phylolik.models.base import BranchModel, GeneratorModel
from phylolik.models.codon import (
    CodonModel,
    build_codon_Q_matrix,
    compute_codon_frequencies_f3x4,
)
from phylolik.models.nucleotide import GTR, HKY85, JC69, Equiprobable

__all__ = [
    "BranchModel",
    "GeneratorModel",
    "Equiprobable",
    "JC69",
    "HKY85",
    "GTR",
    "CodonModel",
    "build_codon_Q_matrix",
    "compute_codon_frequencies_f3x4",
]
