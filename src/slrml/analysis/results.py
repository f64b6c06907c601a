"""
Result objects for model fits and sitewise selection analyses.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import json

import numpy as np

from ..io.trees import Tree

# Site classifications, indexed by SitewiseResult.site_type
SITE_ALL_GAPS = 0
SITE_SINGLE_CHAR = 1
SITE_SYNONYMOUS = 2
SITE_VARIABLE = 3
SITE_CONSTANT = 4

SITE_NOTES = ("All gaps", "Single char", "Synonymous", "", "Constant")

SIGNIFICANCE_LEVELS = (0.05, 0.01)


def _write(text: str, filepath: Optional[str]) -> str:
    if filepath:
        with open(filepath, 'w') as f:
            f.write(text)
    return text


@dataclass
class FitResult:
    """
    Maximum likelihood fit of the codon model to the whole alignment.

    Attributes
    ----------
    lnL : float
        Log-likelihood at the optimum
    kappa : float
        Transition/transversion ratio
    omega : float
        dN/dS ratio
    tree : Tree
        Tree with fitted branch lengths
    pi : np.ndarray
        Codon frequencies used
    branches : str
        How branch lengths were treated ("variable", "proportional", "fixed")
    converged : bool
        Whether the optimizer converged
    n_eval : int
        Number of likelihood evaluations
    diagnostics : list[str]
        Optimizer flag string for every step
    optimized : bool
        False if the starting values were used without optimization
    """

    lnL: float
    kappa: float
    omega: float
    tree: Tree
    pi: np.ndarray
    branches: str = "variable"
    converged: bool = True
    n_eval: int = 0
    diagnostics: List[str] = field(default_factory=list)
    optimized: bool = True

    def tree_statistics(self) -> Dict[str, float]:
        lengths = self.tree.branch_lengths()
        return {
            'length': float(lengths.sum()),
            'mean': float(lengths.mean()),
            'min': float(lengths.min()),
            'max': float(lengths.max()),
        }

    def summary(self) -> str:
        """
        Generate a formatted summary of the fit.

        Returns
        -------
        str
            Multi-line formatted summary
        """
        stats = self.tree_statistics()
        lines = []
        lines.append("=" * 70)
        lines.append("CODON MODEL FIT")
        lines.append("=" * 70)
        lines.append("")
        if not self.converged:
            lines.append("⚠ WARNING: Optimization may not have converged properly")
            lines.append("")
        lines.append(f"Log-likelihood: {self.lnL:.6f}")
        lines.append("")
        lines.append("PARAMETERS:")
        lines.append(f"  kappa (ts/tv) = {self.kappa:.6f}")
        lines.append(f"  omega (dN/dS) = {self.omega:.6f}")
        lines.append("")
        lines.append("TREE:")
        lines.append(f"  {self.tree.n_leaves} sequences, {self.tree.n_branches} branches ({self.branches})")
        lines.append(
            f"  Tree length = {stats['length']:4.2f}, average branch length = {stats['mean']:4.2f} "
            f"(min={stats['min']:4.2f}, max={stats['max']:4.2f})"
        )
        lines.append(f"  {self.tree.to_newick()}")
        if self.optimized:
            lines.append("")
            lines.append(f"Likelihood evaluations: {self.n_eval}")
        lines.append("")
        lines.append("=" * 70)
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """
        Export results as a dictionary.

        The tree is written as a Newick string to keep the dictionary
        JSON-serializable.
        """
        return {
            'lnL': float(self.lnL),
            'kappa': float(self.kappa),
            'omega': float(self.omega),
            'tree': self.tree.to_newick(),
            'tree_statistics': self.tree_statistics(),
            'branches': self.branches,
            'converged': bool(self.converged),
            'optimized': bool(self.optimized),
            'n_eval': int(self.n_eval),
            'diagnostics': list(self.diagnostics),
        }

    def to_json(self, filepath: Optional[str] = None, indent: int = 2) -> str:
        """
        Export results as JSON.

        Parameters
        ----------
        filepath : str, optional
            If provided, write JSON to this file
        indent : int, default=2
            Indentation level for pretty printing
        """
        return _write(json.dumps(self.to_dict(), indent=indent), filepath)

    def to_tsv(self, filepath: Optional[str] = None) -> str:
        """Parameter estimates as a two-column table."""
        rows = [("lnL", self.lnL), ("kappa", self.kappa), ("omega", self.omega)]
        text = "Parameter\tValue\n" + "".join(f"{name}\t{value:.6f}\n" for name, value in rows)
        return _write(text, filepath)

    def __str__(self) -> str:
        return self.summary()

    def __repr__(self) -> str:
        return f"FitResult(lnL={self.lnL:.2f}, kappa={self.kappa:.4f}, omega={self.omega:.4f})"


@dataclass
class SitewiseResult:
    """
    Per-site estimates of selection and tests against neutral evolution.

    All per-site arrays have one entry per alignment column.

    Attributes
    ----------
    kappa, omega : float
        Global parameters the site estimates are conditioned on
    tree_scale : float
        Factor applied to the fitted tree so branch lengths are measured
        relative to neutral evolution
    lnL_neutral : np.ndarray
        Log-likelihood of each site at omega = 1
    lnL_max : np.ndarray
        Maximized log-likelihood of each site
    omega_site : np.ndarray
        Estimated omega of each site
    lower, upper : np.ndarray
        Support interval of each site's omega (NaN when not computed)
    site_type : np.ndarray
        Site classification, an index into SITE_NOTES
    lrt : np.ndarray
        Likelihood ratio statistic against omega = 1
    pvalue : np.ndarray
        P-value of the statistic
    adjusted_pvalue : np.ndarray
        Bonferroni-adjusted p-value
    positive_only : bool
        Whether omega was restricted to [1, inf)
    ldiff : float
        Log-likelihood difference defining the support interval
    """

    kappa: float
    omega: float
    tree_scale: float
    lnL_neutral: np.ndarray
    lnL_max: np.ndarray
    omega_site: np.ndarray
    lower: np.ndarray
    upper: np.ndarray
    site_type: np.ndarray
    lrt: np.ndarray
    pvalue: np.ndarray
    adjusted_pvalue: np.ndarray
    positive_only: bool = False
    ldiff: float = 3.841459
    fit: Optional[FitResult] = None

    @property
    def n_sites(self) -> int:
        return len(self.omega_site)

    @property
    def has_support(self) -> bool:
        return self.ldiff > 0.0

    @property
    def notes(self) -> List[str]:
        return [SITE_NOTES[t] for t in self.site_type]

    @property
    def markers(self) -> List[str]:
        """
        Significance markers for each site.

        Four characters: p <= 0.05, p <= 0.01, adjusted p <= 0.05 and
        adjusted p <= 0.01, each shown as '+' when omega > 1 and '-'
        otherwise, or blank when not significant.
        """
        markers = []
        for omega, p, p_adj in zip(self.omega_site, self.pvalue, self.adjusted_pvalue):
            sign = '+' if omega > 1.0 else '-'
            chars = [sign if value <= alpha else ' '
                     for value in (p, p_adj) for alpha in SIGNIFICANCE_LEVELS]
            markers.append(''.join(chars))
        return markers

    def selected_sites(self, alpha: float = 0.05, adjusted: bool = True, positive: bool = True) -> np.ndarray:
        """
        1-based positions of sites significant at level alpha.

        Parameters
        ----------
        alpha : float
            Significance level
        adjusted : bool
            Use Bonferroni-adjusted p-values
        positive : bool
            Positively selected (omega > 1) if True, conserved (omega < 1)
            otherwise
        """
        pvalues = self.adjusted_pvalue if adjusted else self.pvalue
        direction = self.omega_site > 1.0 if positive else self.omega_site < 1.0
        return np.flatnonzero(direction & (pvalues <= alpha)) + 1

    def count_table(self) -> Dict[str, Dict[str, int]]:
        """Cumulative numbers of selected and conserved sites per significance level."""
        table = {}
        for name, positive in (('positive', True), ('conserved', False)):
            table[name] = {
                '99% corrected': len(self.selected_sites(0.01, True, positive)),
                '95% corrected': len(self.selected_sites(0.05, True, positive)),
                '99%': len(self.selected_sites(0.01, False, positive)),
                '95%': len(self.selected_sites(0.05, False, positive)),
            }
        return table

    def summary(self) -> str:
        """
        Generate a formatted summary of the sitewise analysis.

        Returns
        -------
        str
            Multi-line formatted summary
        """
        table = self.count_table()
        lines = []
        if self.fit is not None:
            lines.append(self.fit.summary())
            lines.append("")
        lines.append("=" * 70)
        lines.append("SITEWISE LIKELIHOOD RATIO TESTS")
        lines.append("=" * 70)
        lines.append("")
        lines.append(f"kappa = {self.kappa:.6f}, omega = {self.omega:.6f}")
        lines.append(f"Tree scaled to neutral evolution, factor = {self.tree_scale:.4f}")
        lines.append(f"Sites: {self.n_sites}")
        if self.positive_only:
            lines.append("Testing for positive selection only (omega >= 1)")
        lines.append("")
        lines.append("POSITIVELY SELECTED SITES (cumulative):")
        for level, count in table['positive'].items():
            lines.append(f"  {level:<15s} {count:5d}")
        if not self.positive_only:
            lines.append("")
            lines.append("CONSERVED SITES (cumulative):")
            for level, count in table['conserved'].items():
                lines.append(f"  {level:<15s} {count:5d}")
        lines.append("")
        lines.append("=" * 70)
        return "\n".join(lines)

    def to_records(self) -> List[Dict[str, Any]]:
        """One dictionary per site."""
        records = []
        notes = self.notes
        markers = self.markers
        for i in range(self.n_sites):
            record = {
                'site': i + 1,
                'lnL_neutral': float(self.lnL_neutral[i]),
                'lnL_max': float(self.lnL_max[i]),
                'omega': float(self.omega_site[i]),
            }
            if self.has_support:
                record['lower'] = float(self.lower[i])
                record['upper'] = float(self.upper[i])
            record.update({
                'lrt': float(self.lrt[i]),
                'pvalue': float(self.pvalue[i]),
                'adjusted_pvalue': float(self.adjusted_pvalue[i]),
                'result': markers[i],
                'note': notes[i],
            })
            records.append(record)
        return records

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kappa': float(self.kappa),
            'omega': float(self.omega),
            'tree_scale': float(self.tree_scale),
            'positive_only': bool(self.positive_only),
            'ldiff': float(self.ldiff),
            'fit': self.fit.to_dict() if self.fit is not None else None,
            'counts': self.count_table(),
            'sites': self.to_records(),
        }

    def to_json(self, filepath: Optional[str] = None, indent: int = 2) -> str:
        """
        Export results as JSON.

        Parameters
        ----------
        filepath : str, optional
            If provided, write JSON to this file
        indent : int, default=2
            Indentation level for pretty printing
        """
        return _write(json.dumps(self.to_dict(), indent=indent), filepath)

    def to_tsv(self, filepath: Optional[str] = None) -> str:
        """
        Export the per-site table as tab-separated text.

        Columns: Site, Neutral, Optimal, Omega, [Lower, Upper,] LrtStat,
        Pvalue, AdjPvalue, Result, Note.
        """
        header = ["Site", "Neutral", "Optimal", "Omega"]
        if self.has_support:
            header += ["Lower", "Upper"]
        header += ["LrtStat", "Pvalue", "AdjPvalue", "Result", "Note"]

        lines = ["\t".join(header)]
        notes = self.notes
        markers = self.markers
        for i in range(self.n_sites):
            fields = [
                f"{i + 1}",
                f"{self.lnL_neutral[i]:.2f}",
                f"{self.lnL_max[i]:.2f}",
                f"{self.omega_site[i]:.4f}",
            ]
            if self.has_support:
                fields += [f"{self.lower[i]:.4f}", f"{self.upper[i]:.4f}"]
            fields += [
                f"{self.lrt[i]:.4f}",
                f"{self.pvalue[i]:.4e}",
                f"{self.adjusted_pvalue[i]:.4e}",
                markers[i],
                notes[i],
            ]
            lines.append("\t".join(fields))
        return _write("\n".join(lines) + "\n", filepath)

    def __str__(self) -> str:
        return self.summary()

    def __repr__(self) -> str:
        return (
            f"SitewiseResult(n_sites={self.n_sites}, "
            f"positive={len(self.selected_sites(0.05, False, True))})"
        )
