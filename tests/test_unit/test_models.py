"""
Unit tests for matrix operations and substitution models.
"""

import numpy as np
import pytest

from slrml.core.matrix import (
    check_detailed_balance,
    create_reversible_Q,
    eigen_decompose_rev,
    expected_rate,
    invert_matrix,
    matrix_exponential,
    mult_transpose,
)
from slrml.io.sequences import CODON_TO_INDEX, N_CODONS
from slrml.models.codon import (
    CodonModel,
    codon_change_masks,
    compute_codon_frequencies_f1x4,
    compute_codon_frequencies_f3x4,
    compute_codon_frequencies_f61,
    is_synonymous,
    is_transition,
)
from slrml.models.nucleotide import HKY85Model, JC69Model


class TestMatrixOperations:
    """Test dense matrix helpers."""

    def test_jc69_analytical(self):
        """Test matrix exponential against the analytical JC69 solution."""
        Q = create_reversible_Q(np.ones((4, 4)), np.full(4, 0.25))
        t = 0.3
        P = matrix_exponential(Q, t)

        e_term = np.exp(-4.0 * t / 3.0)
        np.testing.assert_allclose(np.diag(P), 0.25 + 0.75 * e_term)
        assert P[0, 1] == pytest.approx(0.25 - 0.25 * e_term)

    def test_reversible_Q(self):
        pi = np.array([0.1, 0.2, 0.3, 0.4])
        rates = np.array([
            [0, 1, 2, 1],
            [1, 0, 1, 3],
            [2, 1, 0, 1],
            [1, 3, 1, 0],
        ], dtype=float)
        Q = create_reversible_Q(rates, pi)

        np.testing.assert_allclose(Q.sum(axis=1), 0.0, atol=1e-14)
        assert expected_rate(Q, pi) == pytest.approx(1.0)
        assert check_detailed_balance(Q, pi)

    def test_eigen_decomposition(self):
        pi = np.array([0.1, 0.2, 0.3, 0.4])
        Q = HKY85Model(kappa=3.0, pi=pi).rate_matrix()
        eigenvalues, U, V = eigen_decompose_rev(Q, pi)

        np.testing.assert_allclose(U @ np.diag(eigenvalues) @ V, Q, atol=1e-12)
        np.testing.assert_allclose(U @ V, np.eye(4), atol=1e-12)

    def test_mult_transpose(self):
        rng = np.random.default_rng(0)
        A = rng.random((5, 4))
        B = rng.random((4, 4))
        out = np.empty((5, 4))

        result = mult_transpose(A, B, out=out)
        assert result is out
        np.testing.assert_allclose(out, A @ B.T)

    def test_invert_in_place(self):
        A = np.array([[2.0, 1.0], [1.0, 3.0]])
        expected = np.linalg.inv(A)
        invert_matrix(A)
        np.testing.assert_allclose(A, expected)

    def test_invert_singular(self):
        with pytest.raises(np.linalg.LinAlgError):
            invert_matrix(np.ones((3, 3)))


class TestNucleotideModels:
    """Test JC69 and HKY85."""

    def test_jc69_transition_matrix(self):
        model = JC69Model()
        P = model.transition_matrix(0.2)

        np.testing.assert_allclose(P.sum(axis=1), 1.0)
        np.testing.assert_allclose(P, matrix_exponential(model.rate_matrix(), 0.2), atol=1e-12)

    def test_hky_normalized(self):
        model = HKY85Model(kappa=4.0, pi=np.array([0.1, 0.2, 0.3, 0.4]))
        assert expected_rate(model.rate_matrix(), model.pi) == pytest.approx(1.0)
        assert check_detailed_balance(model.rate_matrix(), model.pi)

    def test_fixed_normalization(self):
        model = HKY85Model(kappa=4.0, normalization=2.0)
        np.testing.assert_allclose(model.rate_matrix(), model.unnormalized_rate_matrix() / 2.0)

    def test_invalid_frequencies(self):
        with pytest.raises(ValueError, match="positive"):
            HKY85Model(pi=np.array([0.5, 0.5, 0.0, 0.0]))
        with pytest.raises(ValueError, match="length 4"):
            HKY85Model(pi=np.ones(3))

    def test_set_params_clears_cache(self):
        model = HKY85Model(kappa=2.0)
        Q1 = model.rate_matrix().copy()
        model.set_param(0, 5.0)
        assert not np.allclose(Q1, model.rate_matrix())


class TestModelDerivatives:
    """Compare analytic derivatives with central differences."""

    h = 1e-6

    def _models(self):
        rng = np.random.default_rng(3)
        pi4 = rng.dirichlet(np.ones(4))
        pi61 = rng.dirichlet(np.ones(N_CODONS) * 5)
        return [
            HKY85Model(kappa=2.5, pi=pi4),
            HKY85Model(kappa=2.5, pi=pi4, normalization=1.7),
            CodonModel(kappa=2.0, omega=0.4, pi=pi61),
            CodonModel(kappa=2.0, omega=0.4, pi=pi61, normalization=3.0),
        ]

    def test_rate_matrix_derivative(self):
        for model in self._models():
            for i in range(model.n_params):
                value = model.params[i]
                model.set_param(i, value + self.h)
                Q_plus = model.rate_matrix().copy()
                model.set_param(i, value - self.h)
                Q_minus = model.rate_matrix().copy()
                model.set_param(i, value)

                numeric = (Q_plus - Q_minus) / (2 * self.h)
                np.testing.assert_allclose(
                    model.rate_matrix_derivative(i), numeric, rtol=1e-5, atol=1e-8
                )

    def test_transition_matrix_dparam(self):
        t = 0.35
        for model in self._models():
            for i in range(model.n_params):
                value = model.params[i]
                model.set_param(i, value + self.h)
                P_plus = model.transition_matrix(t)
                model.set_param(i, value - self.h)
                P_minus = model.transition_matrix(t)
                model.set_param(i, value)

                numeric = (P_plus - P_minus) / (2 * self.h)
                np.testing.assert_allclose(
                    model.transition_matrix_dparam(t, i), numeric, rtol=1e-4, atol=1e-7
                )

    def test_transition_matrix_dt(self):
        t = 0.35
        for model in self._models():
            numeric = (model.transition_matrix(t + self.h) - model.transition_matrix(t - self.h)) / (2 * self.h)
            np.testing.assert_allclose(model.transition_matrix_dt(t), numeric, rtol=1e-4, atol=1e-7)


class TestCodonModel:
    """Test the codon model and frequency estimators."""

    def test_change_classification(self):
        assert is_transition("A", "G")
        assert is_transition("T", "C")
        assert not is_transition("A", "C")
        assert is_synonymous("CTG", "TTG")
        assert not is_synonymous("AAA", "AGA")

        single, transition, nonsynonymous = codon_change_masks()
        ttt, ttc, atg = CODON_TO_INDEX["TTT"], CODON_TO_INDEX["TTC"], CODON_TO_INDEX["ATG"]
        assert single[ttt, ttc] == 1.0
        assert transition[ttt, ttc] == 1.0
        assert nonsynonymous[ttt, ttc] == 0.0
        assert single[ttt, atg] == 0.0

    def test_rate_matrix(self):
        model = CodonModel(kappa=2.0, omega=0.5)
        Q = model.rate_matrix()

        assert Q.shape == (61, 61)
        np.testing.assert_allclose(Q.sum(axis=1), 0.0, atol=1e-12)
        assert check_detailed_balance(Q, model.pi)
        assert expected_rate(Q, model.pi) == pytest.approx(1.0)

        # TTT -> TTC synonymous transition, TTT -> TTA non-synonymous transversion
        ttt, ttc, tta = CODON_TO_INDEX["TTT"], CODON_TO_INDEX["TTC"], CODON_TO_INDEX["TTA"]
        assert Q[ttt, ttc] / Q[ttt, tta] == pytest.approx(2.0 / 0.5)

    def test_rate_scale_at(self):
        model = CodonModel(kappa=2.0, omega=0.2)
        other = CodonModel(kappa=2.0, omega=1.0)
        assert model.rate_scale_at(1.0) == pytest.approx(other.rate_scale())
        assert model.rate_scale_at(1.0) > model.rate_scale()

    def test_properties(self):
        model = CodonModel(kappa=3.0, omega=0.7)
        assert model.kappa == 3.0
        assert model.omega == 0.7
        assert model.get_param("omega") == 0.7
        assert "omega=0.7" in repr(model)

    def test_f3x4(self, primate_patterns):
        pi = compute_codon_frequencies_f3x4(primate_patterns)

        assert pi.shape == (61,)
        assert pi.sum() == pytest.approx(1.0)
        assert np.all(pi > 0)
        # ATG is in every sequence; a codon of unobserved nucleotides is rarer
        assert pi[CODON_TO_INDEX["ATG"]] > pi[CODON_TO_INDEX["TGT"]]

    def test_f1x4(self, primate_patterns):
        """Test that F1X4 uses one nucleotide distribution for every position."""
        pi = compute_codon_frequencies_f1x4(primate_patterns)

        assert pi.shape == (61,)
        assert pi.sum() == pytest.approx(1.0)
        assert np.all(pi > 0)
        # Codons that are permutations of each other get the same frequency
        assert pi[CODON_TO_INDEX["ATG"]] == pytest.approx(pi[CODON_TO_INDEX["GTA"]])
        assert pi[CODON_TO_INDEX["CAG"]] == pytest.approx(pi[CODON_TO_INDEX["GAC"]])
        assert not np.allclose(pi, compute_codon_frequencies_f3x4(primate_patterns))

    def test_f61(self, primate_patterns):
        pi = compute_codon_frequencies_f61(primate_patterns)

        assert pi.sum() == pytest.approx(1.0)
        assert np.all(pi > 0)
        assert pi[CODON_TO_INDEX["ATG"]] > pi[CODON_TO_INDEX["TAT"]]

    def test_frequencies_need_codons(self, dna_patterns):
        with pytest.raises(ValueError, match="codon alignment"):
            compute_codon_frequencies_f3x4(dna_patterns)
