"""
phylolik: likelihood of sequence alignments on phylogenetic trees.

A Python engine for the double-recursive (Felsenstein pruning plus pre-order)
likelihood algorithm, with exact cache invalidation, analytic branch-length
derivatives, rate heterogeneity, non-homogeneous processes, mixtures of tree
likelihoods and hidden Markov models over aligned likelihoods.

Quick Start
-----------
Evaluate an alignment on a tree:

>>> from phylolik import compute_likelihood
>>> result = compute_likelihood("alignment.fasta", "tree.nwk", model="HKY85")
>>> print(result.summary())

Build the pieces yourself:

>>> from phylolik import Alignment, Tree, SitePatterns, TreeLikelihood
>>> from phylolik import HKY85, GammaDiscreteDistribution, homogeneous_process
>>> tree = Tree.from_newick("((A:0.1,B:0.2):0.05,C:0.3,D:0.4);")
>>> process = homogeneous_process(HKY85(kappa=2.0), tree, GammaDiscreteDistribution(4, 0.5))
>>> likelihood = TreeLikelihood(tree, SitePatterns(Alignment.from_fasta("aln.fasta")), process)
>>> likelihood.get_log_likelihood()
"""

__version__ = "0.1.0"

# High-level API (simple interface)
from .api import LikelihoodResult, compute_likelihood

# I/O classes
from .io.sequences import Alignment
from .io.trees import Tree
from .patterns import SitePatterns

# Models and processes
from .models import GTR, HKY85, JC69, BranchModel, CodonModel, Equiprobable, GeneratorModel
from .distributions import (
    ConstantDistribution,
    GammaDiscreteDistribution,
    InvariantMixedDistribution,
    UserDiscreteDistribution,
)
from .process import SubstitutionProcess, homogeneous_process, labelled_process, nonhomogeneous_process

# Likelihood engines
from .core.likelihood import TreeLikelihood
from .core.mixture import MixtureTreeLikelihood
from .hmm import HmmOfAlignedLikelihoods, HmmTransitionMatrix

# Errors
from .exceptions import (
    AlphabetMismatchError,
    DimensionError,
    NumericalLikelihoodError,
    ParameterError,
    PhyloLikelihoodError,
    StructuralError,
)

__all__ = [
    # Simple API - Start here!
    "compute_likelihood",
    "LikelihoodResult",

    # I/O
    "Alignment",
    "Tree",
    "SitePatterns",

    # Models and processes
    "BranchModel",
    "GeneratorModel",
    "Equiprobable",
    "JC69",
    "HKY85",
    "GTR",
    "CodonModel",
    "ConstantDistribution",
    "GammaDiscreteDistribution",
    "InvariantMixedDistribution",
    "UserDiscreteDistribution",
    "SubstitutionProcess",
    "homogeneous_process",
    "labelled_process",
    "nonhomogeneous_process",

    # Likelihood engines
    "TreeLikelihood",
    "MixtureTreeLikelihood",
    "HmmOfAlignedLikelihoods",
    "HmmTransitionMatrix",

    # Errors
    "PhyloLikelihoodError",
    "StructuralError",
    "AlphabetMismatchError",
    "DimensionError",
    "ParameterError",
    "NumericalLikelihoodError",

    # Version
    "__version__",
]
