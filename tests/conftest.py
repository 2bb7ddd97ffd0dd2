"""
Pytest configuration and shared fixtures.
"""

import pytest
from typer.testing import CliRunner

from phylolik.io.sequences import Alignment
from phylolik.io.trees import Tree


QUARTET_NEWICK = "((A:0.1,B:0.2):0.05,C:0.3,D:0.4);"

QUARTET_SEQUENCES = {
    "A": "ACGTACGTTAGCAAGTNACG",
    "B": "ACGTACGATAGCAAGTTACG",
    "C": "ACTTACGTTAGGAAGCTACR",
    "D": "GCTTACCTTAGGTAGCTACA",
}


@pytest.fixture
def cli_runner():
    """CLI test runner for Typer apps."""
    return CliRunner()


@pytest.fixture
def quartet_tree():
    """Unrooted four-taxon tree; node ids: root 0, (A,B) 1, A 2, B 3, C 4, D 5."""
    return Tree.from_newick(QUARTET_NEWICK)


@pytest.fixture
def quartet_alignment():
    """Twenty DNA sites with repeated columns and ambiguity codes."""
    return Alignment.from_dict(QUARTET_SEQUENCES, seqtype="dna")


@pytest.fixture
def quartet_files(tmp_path):
    """FASTA and Newick files of the quartet dataset."""
    fasta = tmp_path / "quartet.fasta"
    fasta.write_text("".join(f">{name}\n{seq}\n" for name, seq in QUARTET_SEQUENCES.items()))
    tree = tmp_path / "quartet.nwk"
    tree.write_text(QUARTET_NEWICK + "\n")
    return {"alignment": fasta, "tree": tree}
