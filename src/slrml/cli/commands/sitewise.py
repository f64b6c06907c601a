"""Sitewise command implementation."""

import sys
from contextlib import redirect_stdout
from pathlib import Path
from typing import Optional

from slrml import sitewise
from .fit import load_inputs, write_result


def run_sitewise(
    alignment: Path,
    tree: Path,
    kappa: float,
    omega: float,
    codon_freq: str,
    branches: str,
    reoptimise: bool,
    positive_only: bool,
    ldiff: float,
    seed: Optional[int],
    output: Optional[Path],
    format: str,
    verbose: bool,
    quiet: bool,
):
    """Run the sitewise likelihood ratio analysis."""
    aln, tree_obj = load_inputs(alignment, tree)

    if not quiet:
        print("Sitewise Likelihood Ratio Tests", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print(f"Alignment: {alignment} ({aln.n_species} species, {aln.n_sites} codons)", file=sys.stderr)
        print(f"Tree:      {tree}", file=sys.stderr)
        if positive_only:
            print("Testing for positive selection only", file=sys.stderr)
        print(file=sys.stderr)

    try:
        with redirect_stdout(sys.stderr):
            result = sitewise(
                aln,
                tree_obj,
                kappa=kappa,
                omega=omega,
                codon_freq=codon_freq,
                branches=branches,
                reoptimise=reoptimise,
                positive_only=positive_only,
                ldiff=ldiff,
                seed=seed,
                verbose=1 if verbose else 0,
            )
    except ValueError as e:
        print("Error: Sitewise analysis failed", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    write_result(result, output, format, quiet)
