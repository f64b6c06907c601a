"""Fit command implementation."""

import sys
from contextlib import redirect_stdout
from pathlib import Path
from typing import Optional

from slrml import fit_model
from slrml.api import load_alignment, load_tree


def write_result(result, output: Optional[Path], format: str, quiet: bool):
    """Write a result object in the requested format to a file or stdout."""
    if format == "json":
        output_text = result.to_json()
    elif format == "tsv":
        output_text = result.to_tsv()
    else:  # text
        output_text = result.summary()

    if output:
        with open(output, 'w') as f:
            f.write(output_text)
        if not quiet:
            print(f"\nResults written to {output}", file=sys.stderr)
    else:
        print(output_text)


def load_inputs(alignment: Path, tree: Path):
    """Load the alignment and tree, exiting with an error message on failure."""
    try:
        aln = load_alignment(alignment)
    except (OSError, ValueError) as e:
        print(f"Error: Could not load alignment from {alignment}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        tree_obj = load_tree(tree)
    except (OSError, ValueError) as e:
        print(f"Error: Could not load tree from {tree}", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    return aln, tree_obj


def run_fit(
    alignment: Path,
    tree: Path,
    kappa: float,
    omega: float,
    codon_freq: str,
    branches: str,
    seed: Optional[int],
    output: Optional[Path],
    format: str,
    verbose: bool,
    quiet: bool,
):
    """Fit the codon model."""
    aln, tree_obj = load_inputs(alignment, tree)

    if not quiet:
        print("Fitting codon model", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print(f"Alignment: {alignment} ({aln.n_species} species, {aln.n_sites} codons)", file=sys.stderr)
        print(f"Tree:      {tree}", file=sys.stderr)
        print(file=sys.stderr)

    # Progress goes to stderr so stdout carries only the result
    try:
        with redirect_stdout(sys.stderr):
            result = fit_model(
                aln,
                tree_obj,
                kappa=kappa,
                omega=omega,
                codon_freq=codon_freq,
                branches=branches,
                seed=seed,
                verbose=2 if verbose else 0,
            )
    except ValueError as e:
        print("Error: Model fitting failed", file=sys.stderr)
        print(f"Details: {e}", file=sys.stderr)
        sys.exit(1)

    write_result(result, output, format, quiet)
