"""Main CLI application for phylolik."""

import logging
from enum import Enum
from pathlib import Path
from typing import Optional

import typer

app = typer.Typer(
    name="phylolik",
    help="Phylogenetic likelihood of alignments on trees",
    no_args_is_help=True,
)


class ModelName(str, Enum):
    """Substitution model."""
    JC69 = "JC69"
    HKY85 = "HKY85"
    GTR = "GTR"
    EQUAL = "EQUAL"
    CODON = "CODON"


class SeqType(str, Enum):
    """Sequence alphabet."""
    DNA = "dna"
    AA = "aa"
    CODON = "codon"


class OutputFormat(str, Enum):
    """Output format."""
    TEXT = "text"
    JSON = "json"


def configure_logging(verbose: bool, quiet: bool) -> None:
    """Route library logging to stderr at the level chosen on the command line."""
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", force=True)


@app.command()
def loglik(
    alignment: Path = typer.Option(
        ...,
        "--alignment", "-s",
        help="Alignment file (FASTA or PHYLIP)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    tree: Path = typer.Option(
        ...,
        "--tree", "-t",
        help="Tree file (Newick format with branch lengths)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    seqtype: SeqType = typer.Option(
        SeqType.DNA,
        "--seqtype",
        help="Sequence alphabet",
    ),
    model: ModelName = typer.Option(
        ModelName.HKY85,
        "--model", "-m",
        help="Substitution model",
        case_sensitive=False,
    ),
    kappa: float = typer.Option(
        2.0,
        "--kappa",
        help="Transition/transversion ratio (HKY85, CODON)",
        min=0.0,
    ),
    omega: float = typer.Option(
        0.4,
        "--omega",
        help="dN/dS ratio (CODON)",
        min=0.0,
    ),
    gamma: int = typer.Option(
        1,
        "--gamma",
        help="Number of discrete gamma rate classes (1 = no rate variation)",
        min=1,
    ),
    alpha: float = typer.Option(
        1.0,
        "--alpha",
        help="Gamma shape parameter",
        min=0.0,
    ),
    optimize: bool = typer.Option(
        False,
        "--optimize",
        help="Optimize branch lengths before reporting",
    ),
    per_site: bool = typer.Option(
        False,
        "--per-site",
        help="Report the log-likelihood of every site",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Output file (default: stdout)",
    ),
    format: OutputFormat = typer.Option(
        OutputFormat.TEXT,
        "--format",
        help="Output format",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show progress and cache activity",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Minimal output",
    ),
):
    """
    Compute the log-likelihood of an alignment on a tree.

    Example:
        phylolik loglik -s alignment.fasta -t tree.nwk
        phylolik loglik -s alignment.fasta -t tree.nwk -m GTR --gamma 4 --alpha 0.5 --format json
    """
    from .commands.loglik import run_loglik

    configure_logging(verbose, quiet)
    run_loglik(
        alignment=alignment,
        tree=tree,
        seqtype=seqtype.value,
        model=model.value,
        kappa=kappa,
        omega=omega,
        gamma=gamma,
        alpha=alpha,
        optimize=optimize,
        per_site=per_site,
        output=output,
        format=format.value,
    )


@app.command()
def patterns(
    alignment: Path = typer.Option(
        ...,
        "--alignment", "-s",
        help="Alignment file (FASTA or PHYLIP)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    seqtype: SeqType = typer.Option(
        SeqType.DNA,
        "--seqtype",
        help="Sequence alphabet",
    ),
    format: OutputFormat = typer.Option(
        OutputFormat.TEXT,
        "--format",
        help="Output format",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show progress",
    ),
):
    """
    Compress an alignment into site patterns and report their weights.

    Example:
        phylolik patterns -s alignment.fasta
    """
    from .commands.patterns import run_patterns

    configure_logging(verbose, False)
    run_patterns(alignment=alignment, seqtype=seqtype.value, format=format.value)


@app.command()
def simulate(
    tree: Path = typer.Option(
        ...,
        "--tree", "-t",
        help="Tree file (Newick format with branch lengths)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    output: Path = typer.Option(
        ...,
        "--output", "-o",
        help="Output FASTA file",
    ),
    length: int = typer.Option(
        ...,
        "--length", "-l",
        help="Number of sites",
        min=1,
    ),
    model: ModelName = typer.Option(
        ModelName.HKY85,
        "--model", "-m",
        help="Substitution model",
        case_sensitive=False,
    ),
    seqtype: SeqType = typer.Option(
        SeqType.DNA,
        "--seqtype",
        help="Sequence alphabet",
    ),
    kappa: float = typer.Option(2.0, "--kappa", help="Transition/transversion ratio", min=0.0),
    omega: float = typer.Option(0.4, "--omega", help="dN/dS ratio (CODON)", min=0.0),
    gamma: int = typer.Option(1, "--gamma", help="Number of discrete gamma rate classes", min=1),
    alpha: float = typer.Option(1.0, "--alpha", help="Gamma shape parameter", min=0.0),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        help="Random seed for reproducibility",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Suppress progress messages",
    ),
):
    """
    Simulate an alignment on a tree under a homogeneous model.

    Example:
        phylolik simulate -t tree.nwk -o sim.fasta -l 1000 -m GTR --seed 42
    """
    from .commands.simulate import run_simulate

    configure_logging(False, quiet)
    run_simulate(
        tree=tree,
        output=output,
        length=length,
        model=model.value,
        seqtype=seqtype.value,
        kappa=kappa,
        omega=omega,
        gamma=gamma,
        alpha=alpha,
        seed=seed,
        quiet=quiet,
    )


if __name__ == "__main__":
    app()
