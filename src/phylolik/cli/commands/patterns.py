"""Site pattern command implementation."""

import json
from pathlib import Path

import typer

from phylolik.exceptions import PhyloLikelihoodError
from phylolik.io.sequences import Alignment
from phylolik.patterns import SitePatterns


def run_patterns(alignment: Path, seqtype: str, format: str):
    """Compress the alignment and report the patterns."""
    try:
        aln = Alignment.read(alignment, seqtype=seqtype)
        site_patterns = SitePatterns(aln)
    except (PhyloLikelihoodError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if format == "json":
        typer.echo(json.dumps({
            'n_sequences': site_patterns.n_leaves,
            'n_sites': site_patterns.n_sites,
            'n_patterns': site_patterns.n_patterns,
            'weights': [int(w) for w in site_patterns.weights],
            'indices': [int(i) for i in site_patterns.indices],
        }, indent=2))
        return

    typer.echo(f"Sequences: {site_patterns.n_leaves}")
    typer.echo(f"Sites:     {site_patterns.n_sites}")
    typer.echo(f"Patterns:  {site_patterns.n_patterns}")
    if site_patterns.n_patterns:
        sites = site_patterns.get_sites()
        typer.echo("")
        typer.echo("Pattern\tWeight\tColumn")
        for p in range(site_patterns.n_patterns):
            column = sites.decode(sites.sequences[:, p])
            typer.echo(f"{p + 1}\t{site_patterns.weights[p]}\t{column}")
