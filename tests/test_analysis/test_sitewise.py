"""
Tests for the sitewise estimation of selection.
"""

import numpy as np
import pytest

from slrml.analysis.results import (
    SITE_ALL_GAPS,
    SITE_CONSTANT,
    SITE_SINGLE_CHAR,
    SITE_SYNONYMOUS,
    SITE_VARIABLE,
)
from slrml.analysis.sitewise import (
    OMEGA_MAX,
    SitewiseEstimator,
    calculate_selection,
    classify_column,
    create_grid,
    neutral_scale_factor,
)
from slrml.io.sequences import CODON_TO_INDEX
from slrml.models.codon import CodonModel, compute_codon_frequencies_f3x4

EXPECTED_TYPES = [
    SITE_CONSTANT, SITE_SYNONYMOUS, SITE_VARIABLE, SITE_SYNONYMOUS, SITE_SYNONYMOUS,
    SITE_SYNONYMOUS, SITE_SYNONYMOUS, SITE_SINGLE_CHAR, SITE_CONSTANT, SITE_VARIABLE,
    SITE_VARIABLE, SITE_SYNONYMOUS, SITE_SYNONYMOUS, SITE_ALL_GAPS,
]


@pytest.fixture
def primate_selection(primate_tree, primate_patterns):
    pi = compute_codon_frequencies_f3x4(primate_patterns)
    return calculate_selection(primate_tree, primate_patterns, kappa=2.0, omega=0.3, pi=pi)


class TestGrid:
    """Test the starting-value grid."""

    def test_grid_end_points(self):
        grid = create_grid()

        assert len(grid) == 50
        assert grid[0] == 0.0
        assert grid[-1] == pytest.approx(50.0)
        assert np.all(np.diff(grid) > 0)

    def test_grid_dense_near_zero(self):
        grid = create_grid()
        assert grid[1] - grid[0] < grid[-1] - grid[-2]
        assert grid[1] < 0.01

    def test_positive_grid(self):
        grid = create_grid(20, positive=True)

        assert len(grid) == 20
        assert grid[0] == 1.0
        assert grid[-1] == pytest.approx(50.0)

    def test_too_short(self):
        with pytest.raises(ValueError, match="at least two"):
            create_grid(1)


class TestHelpers:
    """Test site classification and tree scaling."""

    def test_classify_column(self):
        atg = CODON_TO_INDEX["ATG"]
        ctg, ttg, aaa = CODON_TO_INDEX["CTG"], CODON_TO_INDEX["TTG"], CODON_TO_INDEX["AAA"]

        assert classify_column(np.array([atg, atg, atg])) == SITE_CONSTANT
        assert classify_column(np.array([ctg, ttg, ctg])) == SITE_SYNONYMOUS
        assert classify_column(np.array([ctg, aaa])) == SITE_VARIABLE

    def test_neutral_scale_factor(self):
        pi = np.full(61, 1.0 / 61)
        assert neutral_scale_factor(2.0, 1.0, pi) == pytest.approx(1.0)
        # Fewer substitutions at omega < 1, so neutral branch lengths are longer
        assert neutral_scale_factor(2.0, 0.2, pi) > 1.0

    def test_estimator_bounds(self, primate_tree, primate_patterns):
        model = CodonModel(kappa=2.0, omega=1.0, normalization=1.0)
        positive = SitewiseEstimator(primate_tree, primate_patterns, model, positive_only=True)
        both = SitewiseEstimator(primate_tree, primate_patterns, model)

        assert (positive.lower_bound, positive.upper_bound) == (1.0, OMEGA_MAX)
        assert (both.lower_bound, both.upper_bound) == (0.0, OMEGA_MAX)

    def test_grid_objective(self, primate_tree, primate_patterns):
        """Test that the grid pass matches one-pattern evaluations."""
        model = CodonModel(kappa=2.0, omega=1.0, normalization=1.0)
        estimator = SitewiseEstimator(primate_tree, primate_patterns, model)
        grid = np.array([0.5, 1.0, 2.0])
        values = estimator.grid_objective(grid)

        assert values.shape == (primate_patterns.n_patterns, 3)
        fun = estimator.single_pattern_objective(2)
        for j, omega in enumerate(grid):
            assert fun(omega) == pytest.approx(values[2, j], rel=1e-10)


class TestCalculateSelection:
    """Test the per-site analysis."""

    def test_site_types(self, primate_selection):
        assert primate_selection.n_sites == 14
        np.testing.assert_array_equal(primate_selection.site_type, EXPECTED_TYPES)

    def test_identical_columns_identical_results(self, primate_selection):
        """Test that repeated columns get the same estimate."""
        for values in (
            primate_selection.omega_site,
            primate_selection.lnL_max,
            primate_selection.lnL_neutral,
            primate_selection.pvalue,
        ):
            assert values[1] == values[12]

    def test_trivial_sites(self, primate_selection, primate_patterns):
        pi = compute_codon_frequencies_f3x4(primate_patterns)
        res = primate_selection

        # All gaps
        assert res.lnL_neutral[13] == 0.0
        assert res.lnL_max[13] == 0.0
        assert res.omega_site[13] == 1.0
        assert res.pvalue[13] == 1.0
        assert res.adjusted_pvalue[13] == 1.0
        assert (res.lower[13], res.upper[13]) == (0.0, OMEGA_MAX)

        # Single observed codon
        assert res.lnL_neutral[7] == pytest.approx(np.log(pi[CODON_TO_INDEX["AAA"]]))
        assert res.lnL_max[7] == res.lnL_neutral[7]
        assert res.lrt[7] == 0.0
        assert res.adjusted_pvalue[7] == 1.0

    def test_estimates_are_maxima(self, primate_selection):
        res = primate_selection
        informative = np.array([t not in (SITE_ALL_GAPS, SITE_SINGLE_CHAR) for t in res.site_type])

        assert np.all(res.lnL_max[informative] >= res.lnL_neutral[informative] - 1e-6)
        assert np.all(res.omega_site >= 0.0)
        assert np.all(res.omega_site <= OMEGA_MAX)
        assert np.all(res.lower[informative] <= res.omega_site[informative] + 1e-8)
        assert np.all(res.upper[informative] >= res.omega_site[informative] - 1e-8)

    def test_estimate_beats_grid(self, primate_tree, primate_patterns, primate_selection):
        """Test that no grid value has a higher likelihood than the estimate."""
        pi = compute_codon_frequencies_f3x4(primate_patterns)
        fitted = CodonModel(kappa=2.0, omega=0.3, pi=pi)
        tree = primate_tree.copy()
        tree.scale(primate_selection.tree_scale)
        model = CodonModel(kappa=2.0, omega=1.0, pi=pi, normalization=fitted.rate_scale_at(1.0))
        estimator = SitewiseEstimator(tree, primate_patterns, model)
        grid_values = estimator.grid_objective(create_grid())

        for site in (2, 9, 10):
            pid = primate_patterns.index[site]
            assert primate_selection.lnL_max[site] >= -grid_values[pid].min() - 1e-6

    def test_conserved_constant_site(self, primate_selection):
        """Test that a constant column favours omega below one."""
        assert primate_selection.omega_site[0] < 1.0

    def test_bonferroni_counts_informative_sites(self, primate_selection):
        res = primate_selection
        tested = np.array([i not in (7, 13) for i in range(14)])
        expected = np.minimum(1.0, res.pvalue * 12)

        np.testing.assert_allclose(res.adjusted_pvalue[tested], expected[tested])

    def test_positive_only(self, primate_tree, primate_patterns):
        pi = compute_codon_frequencies_f3x4(primate_patterns)
        res = calculate_selection(
            primate_tree, primate_patterns, kappa=2.0, omega=0.3, pi=pi, positive_only=True
        )
        informative = res.site_type != SITE_ALL_GAPS

        assert res.positive_only
        assert np.all(res.omega_site[informative] >= 1.0)
        assert np.all(res.pvalue <= 1.0)

    def test_without_support(self, primate_tree, primate_patterns):
        pi = compute_codon_frequencies_f3x4(primate_patterns)
        res = calculate_selection(primate_tree, primate_patterns, kappa=2.0, omega=0.3, pi=pi, ldiff=0.0)

        assert not res.has_support
        assert np.all(np.isnan(res.lower))
        assert np.all(np.isnan(res.upper))

    def test_input_tree_unchanged(self, primate_tree, primate_patterns):
        before = primate_tree.branch_lengths().copy()
        pi = compute_codon_frequencies_f3x4(primate_patterns)
        calculate_selection(primate_tree, primate_patterns, kappa=2.0, omega=0.3, pi=pi, ldiff=0.0)
        np.testing.assert_array_equal(primate_tree.branch_lengths(), before)

    def test_invalid_arguments(self, primate_tree, primate_patterns, dna_patterns):
        pi = compute_codon_frequencies_f3x4(primate_patterns)
        with pytest.raises(ValueError, match="non-negative"):
            calculate_selection(primate_tree, primate_patterns, kappa=-1.0, omega=0.3, pi=pi)
        with pytest.raises(ValueError, match="ldiff"):
            calculate_selection(primate_tree, primate_patterns, kappa=2.0, omega=0.3, pi=pi, ldiff=-1.0)
        with pytest.raises(ValueError, match="codon alignment"):
            calculate_selection(primate_tree, dna_patterns, kappa=2.0, omega=0.3, pi=pi)

    def test_verbose_progress(self, primate_tree, primate_patterns, capsys):
        pi = compute_codon_frequencies_f3x4(primate_patterns)
        calculate_selection(
            primate_tree, primate_patterns, kappa=2.0, omega=0.3, pi=pi, ldiff=0.0, verbose=True
        )
        out = capsys.readouterr().out
        assert "Scaling tree to neutral evolution" in out
        assert "." * 14 in out
