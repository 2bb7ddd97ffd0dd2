"""Simulate command implementation."""

import json
from pathlib import Path
from typing import Optional

import numpy as np
import typer

from phylolik.api import load_tree, build_model
from phylolik.distributions import ConstantDistribution, GammaDiscreteDistribution
from phylolik.exceptions import PhyloLikelihoodError
from phylolik.process import homogeneous_process
from phylolik.simulate import ProcessSequenceSimulator


def run_simulate(
    tree: Path,
    output: Path,
    length: int,
    model: str,
    seqtype: str,
    kappa: float,
    omega: float,
    gamma: int,
    alpha: float,
    seed: Optional[int],
    quiet: bool,
):
    """Simulate one alignment and write it as FASTA, with a parameter file beside it."""
    try:
        tree_obj = load_tree(tree)
        branch_model = build_model(model, seqtype, kappa=kappa, omega=omega)
        rates = GammaDiscreteDistribution(gamma, alpha) if gamma > 1 else ConstantDistribution()
        process = homogeneous_process(branch_model, tree_obj, rates)
        simulator = ProcessSequenceSimulator(process, length, seed=seed)
        alignment = simulator.simulate_alignment()
        alignment.to_fasta(output)
    except (PhyloLikelihoodError, OSError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    params = simulator.get_parameters()
    params['seed'] = seed
    params['site_classes'] = np.bincount(simulator.site_classes, minlength=process.n_classes).tolist()
    params_path = output.parent / f"{output.stem}.params.json"
    with open(params_path, 'w') as f:
        json.dump(params, f, indent=2)

    if not quiet:
        typer.echo(f"Simulated {alignment.n_species} sequences x {length} sites -> {output}")
        typer.echo(f"Parameters -> {params_path}")
