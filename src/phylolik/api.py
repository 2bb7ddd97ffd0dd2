"""
High-level API for phylolik.

This module provides a simplified interface for evaluating the likelihood of
an alignment on a tree, with automatic file format detection and a unified
result object.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np

from .core.likelihood import TreeLikelihood
from .distributions import ConstantDistribution, GammaDiscreteDistribution
from .exceptions import StructuralError
from .io.sequences import Alignment, n_states_for
from .io.trees import Tree
from .models import GTR, HKY85, JC69, CodonModel, Equiprobable, compute_codon_frequencies_f3x4
from .models.base import BranchModel
from .optimize import optimize_branch_lengths
from .patterns import SitePatterns
from .process import homogeneous_process

logger = logging.getLogger(__name__)

MODELS = ("JC69", "HKY85", "GTR", "EQUAL", "CODON")


@dataclass
class LikelihoodResult:
    """
    Result of a likelihood evaluation.

    Attributes
    ----------
    model_name : str
        Name of the substitution model
    lnL : float
        Log-likelihood
    n_sites : int
        Number of alignment columns
    n_patterns : int
        Number of distinct site patterns
    params : dict
        Parameter values (branch lengths, model and rate parameters)
    tree : Tree
        Tree (with optimized branch lengths when requested)
    per_site : ndarray, optional
        Log-likelihood of every site
    optimized : bool
        Whether branch lengths were optimized

    Examples
    --------
    >>> result = compute_likelihood("alignment.fasta", "tree.nwk", model="HKY85")
    >>> print(result.summary())
    >>> result.to_json("results.json")
    """

    model_name: str
    lnL: float
    n_sites: int
    n_patterns: int
    params: dict[str, float]
    tree: Tree
    per_site: Optional[np.ndarray] = None
    optimized: bool = False
    convergence_info: dict[str, Any] = field(default_factory=dict)

    def summary(self) -> str:
        """Human-readable summary."""
        lines = []
        lines.append("=" * 70)
        lines.append(f"MODEL: {self.model_name}")
        lines.append("=" * 70)
        lines.append("")
        lines.append(f"Log-likelihood:       {self.lnL:.6f}")
        lines.append(f"Sites / patterns:     {self.n_sites} / {self.n_patterns}")
        lines.append(f"Branch lengths:       {'optimized' if self.optimized else 'fixed'}")
        lines.append("")
        lines.append("PARAMETERS:")
        for name, value in self.params.items():
            lines.append(f"  {name} = {value:.6f}")
        lines.append("")
        lines.append("TREE:")
        lines.append(f"  {self.tree.to_newick()}")
        lines.append("")
        lines.append("=" * 70)
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        """
        Export results as a dictionary (JSON-serializable).

        The tree is exported as a Newick string.
        """
        result = {
            'model_name': self.model_name,
            'lnL': float(self.lnL),
            'n_sites': int(self.n_sites),
            'n_patterns': int(self.n_patterns),
            'params': {k: float(v) for k, v in self.params.items()},
            'tree': self.tree.to_newick(),
            'optimized': self.optimized,
            'convergence_info': self.convergence_info,
        }
        if self.per_site is not None:
            result['per_site'] = [float(v) for v in self.per_site]
        return result

    def to_json(self, filepath: Optional[str] = None, indent: int = 2) -> str:
        """Export results as JSON, optionally writing them to ``filepath``."""
        json_str = json.dumps(self.to_dict(), indent=indent)
        if filepath:
            with open(filepath, 'w') as f:
                f.write(json_str)
        return json_str

    def __str__(self) -> str:
        return self.summary()

    def __repr__(self) -> str:
        return f"LikelihoodResult(model='{self.model_name}', lnL={self.lnL:.2f})"


# =============================================================================
# Loading helpers
# =============================================================================

def load_alignment(alignment: Union[str, Path, Alignment], seqtype: str) -> Alignment:
    """Load an alignment from a FASTA or PHYLIP file (auto-detected)."""
    if isinstance(alignment, Alignment):
        return alignment
    path = Path(alignment)
    if not path.exists():
        raise FileNotFoundError(f"Alignment file not found: {path}")
    return Alignment.read(path, seqtype=seqtype)


def load_tree(tree: Union[str, Path, Tree]) -> Tree:
    """Load a tree from a Newick file or string."""
    if isinstance(tree, Tree):
        return tree
    path = Path(str(tree))
    if path.exists():
        newick_str = path.read_text().strip()
    else:
        newick_str = str(tree)
    return Tree.from_newick(newick_str)


def empirical_frequencies(alignment: Alignment) -> np.ndarray:
    """
    State frequencies observed in an alignment.

    F3X4 for codons; plain counts of resolved states otherwise. A
    pseudo-count of 0.5 per state keeps every frequency positive.
    """
    if alignment.seqtype == "codon":
        return compute_codon_frequencies_f3x4(alignment)
    n = n_states_for(alignment.seqtype)
    codes = alignment.sequences.ravel()
    counts = np.bincount(codes[(codes >= 0) & (codes < n)], minlength=n).astype(float)
    counts += 0.5
    return counts / counts.sum()


def build_model(
    name: str,
    seqtype: str = "dna",
    kappa: float = 2.0,
    omega: float = 0.4,
    frequencies: Optional[np.ndarray] = None,
) -> BranchModel:
    """
    Create a branch model by name.

    Parameters
    ----------
    name : str
        One of JC69, HKY85, GTR (DNA), EQUAL (any alphabet) or CODON
        (case-insensitive)
    seqtype : str
        Alphabet of the data
    kappa, omega : float
        Initial values where the model has them
    frequencies : ndarray, optional
        Equilibrium frequencies (uniform when omitted)
    """
    name = name.upper()
    if name not in MODELS:
        raise StructuralError(f"Unknown model: '{name}'. Valid models are: {', '.join(MODELS)}")
    if name in ("JC69", "HKY85", "GTR") and seqtype != "dna":
        raise StructuralError(f"Model {name} requires DNA data, got {seqtype}")
    if name == "CODON" and seqtype != "codon":
        raise StructuralError(f"Model CODON requires codon data, got {seqtype}")

    if name == "JC69":
        return JC69()
    if name == "HKY85":
        return HKY85(kappa=kappa, frequencies=frequencies)
    if name == "GTR":
        return GTR(frequencies=frequencies)
    if name == "CODON":
        return CodonModel(kappa=kappa, omega=omega, frequencies=frequencies)
    return Equiprobable(seqtype)


def compute_likelihood(
    alignment: Union[str, Path, Alignment],
    tree: Union[str, Path, Tree],
    model: str = "HKY85",
    seqtype: str = "dna",
    kappa: float = 2.0,
    omega: float = 0.4,
    gamma_classes: int = 1,
    alpha: float = 1.0,
    empirical: bool = True,
    optimize: bool = False,
    maxiter: int = 500,
    per_site: bool = False,
) -> LikelihoodResult:
    """
    Log-likelihood of an alignment on a tree under a homogeneous model.

    Parameters
    ----------
    alignment : str, Path, or Alignment
        Alignment or path to a FASTA / PHYLIP file
    tree : str, Path, or Tree
        Tree, path to a Newick file or Newick string
    model : str
        Model name (see :func:`build_model`)
    seqtype : str
        'dna', 'aa' or 'codon'
    kappa, omega : float
        Model parameters where applicable
    gamma_classes : int
        Number of discrete gamma rate classes (1 for no rate variation)
    alpha : float
        Gamma shape parameter
    empirical : bool
        Use observed state frequencies instead of uniform ones
    optimize : bool
        Optimize branch lengths before reporting
    maxiter : int
        Maximum optimizer iterations
    per_site : bool
        Include the per-site log-likelihoods in the result

    Returns
    -------
    LikelihoodResult

    Examples
    --------
    >>> result = compute_likelihood("aln.fasta", "tree.nwk", model="GTR", gamma_classes=4, alpha=0.5)
    >>> result.lnL
    """
    align = load_alignment(alignment, seqtype)
    tree_obj = load_tree(tree)

    frequencies = empirical_frequencies(align) if empirical else None
    branch_model = build_model(model, align.seqtype, kappa=kappa, omega=omega, frequencies=frequencies)
    rates = GammaDiscreteDistribution(gamma_classes, alpha) if gamma_classes > 1 else ConstantDistribution()

    process = homogeneous_process(branch_model, tree_obj, rates)
    patterns = SitePatterns(align, names=tree_obj.leaf_names)
    likelihood = TreeLikelihood(tree_obj, patterns, process)

    convergence_info = {}
    if optimize:
        result = optimize_branch_lengths(likelihood, maxiter=maxiter)
        convergence_info = {
            'success': bool(result.success),
            'message': str(result.message),
            'iterations': int(result.nit),
        }

    return LikelihoodResult(
        model_name=branch_model.name,
        lnL=likelihood.get_log_likelihood(),
        n_sites=patterns.n_sites,
        n_patterns=patterns.n_patterns,
        params=likelihood.get_parameters(),
        tree=tree_obj,
        per_site=likelihood.get_log_likelihood_per_site() if per_site else None,
        optimized=optimize,
        convergence_info=convergence_info,
    )
