"""Main CLI application for slrml."""

import typer
from pathlib import Path
from typing import Optional
from enum import Enum

from ..analysis.sitewise import DEFAULT_LDIFF

app = typer.Typer(
    name="slrml",
    help="Sitewise likelihood ratio tests for selection on codon alignments",
    no_args_is_help=True,
)


class OutputFormat(str, Enum):
    """Output format."""
    TEXT = "text"
    JSON = "json"
    TSV = "tsv"


class CodonFrequencies(str, Enum):
    """Codon frequency estimator."""
    F1X4 = "f1x4"
    F3X4 = "f3x4"
    F61 = "f61"


class BranchOption(str, Enum):
    """Treatment of branch lengths in the global fit."""
    VARIABLE = "variable"
    PROPORTIONAL = "proportional"
    FIXED = "fixed"


@app.command()
def fit(
    alignment: Path = typer.Option(
        ...,
        "--alignment", "-s",
        help="Codon alignment file (FASTA or PHYLIP)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    tree: Path = typer.Option(
        ...,
        "--tree", "-t",
        help="Phylogenetic tree file (Newick format)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    kappa: float = typer.Option(
        2.0,
        "--kappa",
        help="Initial transition/transversion ratio (negative for random)",
    ),
    omega: float = typer.Option(
        0.1,
        "--omega",
        help="Initial dN/dS ratio (negative for random)",
    ),
    codon_freq: CodonFrequencies = typer.Option(
        CodonFrequencies.F3X4,
        "--codon-freq",
        help="Codon frequency estimator",
    ),
    branches: BranchOption = typer.Option(
        BranchOption.VARIABLE,
        "--branches",
        help="Estimate every branch length, one tree scale, or none",
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        help="Random seed for unset starting values",
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
        help="Show optimization progress",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Minimal output",
    ),
):
    """
    Fit the codon model (kappa, omega, branch lengths) by maximum likelihood.

    Example:
        slrml fit -s alignment.fasta -t tree.nwk
        slrml fit -s alignment.fasta -t tree.nwk --branches proportional --format json
    """
    from .commands.fit import run_fit

    run_fit(
        alignment=alignment,
        tree=tree,
        kappa=kappa,
        omega=omega,
        codon_freq=codon_freq.value,
        branches=branches.value,
        seed=seed,
        output=output,
        format=format.value,
        verbose=verbose,
        quiet=quiet,
    )


@app.command()
def sitewise(
    alignment: Path = typer.Option(
        ...,
        "--alignment", "-s",
        help="Codon alignment file (FASTA or PHYLIP)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    tree: Path = typer.Option(
        ...,
        "--tree", "-t",
        help="Phylogenetic tree file (Newick format)",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    kappa: float = typer.Option(
        2.0,
        "--kappa",
        help="Initial transition/transversion ratio (negative for random)",
    ),
    omega: float = typer.Option(
        0.1,
        "--omega",
        help="Initial dN/dS ratio (negative for random)",
    ),
    codon_freq: CodonFrequencies = typer.Option(
        CodonFrequencies.F3X4,
        "--codon-freq",
        help="Codon frequency estimator",
    ),
    branches: BranchOption = typer.Option(
        BranchOption.VARIABLE,
        "--branches",
        help="Estimate every branch length, one tree scale, or none",
    ),
    no_reoptimise: bool = typer.Option(
        False,
        "--no-reoptimise",
        help="Use the given kappa, omega and branch lengths without fitting",
    ),
    positive_only: bool = typer.Option(
        False,
        "--positive-only",
        help="Only test for positive selection (omega >= 1)",
    ),
    ldiff: float = typer.Option(
        DEFAULT_LDIFF,
        "--ldiff",
        help="Log-likelihood difference for support intervals (0 to skip)",
        min=0.0,
    ),
    seed: Optional[int] = typer.Option(
        None,
        "--seed",
        help="Random seed for unset starting values",
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
        help="Show optimization progress",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet", "-q",
        help="Minimal output",
    ),
):
    """
    Estimate omega at every site and test it against neutral evolution.

    Example:
        slrml sitewise -s alignment.fasta -t tree.nwk --format tsv -o sites.tsv
        slrml sitewise -s alignment.fasta -t tree.nwk --positive-only
    """
    from .commands.sitewise import run_sitewise

    run_sitewise(
        alignment=alignment,
        tree=tree,
        kappa=kappa,
        omega=omega,
        codon_freq=codon_freq.value,
        branches=branches.value,
        reoptimise=not no_reoptimise,
        positive_only=positive_only,
        ldiff=ldiff,
        seed=seed,
        output=output,
        format=format.value,
        verbose=verbose,
        quiet=quiet,
    )


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
