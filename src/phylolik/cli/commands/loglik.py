"""Log-likelihood command implementation."""

import json
from pathlib import Path
from typing import Optional

import typer

from phylolik.api import compute_likelihood
from phylolik.exceptions import PhyloLikelihoodError


def run_loglik(
    alignment: Path,
    tree: Path,
    seqtype: str,
    model: str,
    kappa: float,
    omega: float,
    gamma: int,
    alpha: float,
    optimize: bool,
    per_site: bool,
    output: Optional[Path],
    format: str,
):
    """Evaluate the likelihood and print or write the result."""
    try:
        result = compute_likelihood(
            alignment,
            tree,
            model=model,
            seqtype=seqtype,
            kappa=kappa,
            omega=omega,
            gamma_classes=gamma,
            alpha=alpha,
            optimize=optimize,
            per_site=per_site,
        )
    except (PhyloLikelihoodError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    if format == "json":
        text = json.dumps(result.to_dict(), indent=2)
    else:
        text = result.summary()
        if per_site:
            lines = ["", "SITE LOG-LIKELIHOODS:"]
            lines.extend(f"  {i + 1}\t{value:.6f}" for i, value in enumerate(result.per_site))
            text += "\n".join(lines)

    if output:
        output.write_text(text + "\n")
    else:
        typer.echo(text)
