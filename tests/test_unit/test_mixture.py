"""
Unit tests for mixtures of tree likelihoods.
"""

import numpy as np
import pytest

from phylolik.core.likelihood import TreeLikelihood
from phylolik.core.mixture import MixtureTreeLikelihood, split_component_name
from phylolik.exceptions import DimensionError, ParameterError
from phylolik.io.sequences import Alignment
from phylolik.io.trees import Tree
from phylolik.models import HKY85, JC69
from phylolik.process import homogeneous_process

QUARTET_NEWICK = "((A:0.1,B:0.2):0.05,C:0.3,D:0.4);"


def component(alignment, model):
    tree = Tree.from_newick(QUARTET_NEWICK)
    return TreeLikelihood(tree, alignment, homogeneous_process(model, tree))


@pytest.fixture
def mixture(quartet_alignment):
    return MixtureTreeLikelihood(
        [component(quartet_alignment, HKY85(kappa=4.0)), component(quartet_alignment, JC69())],
        [0.3, 0.7],
    )


class TestComponentNames:

    def test_split(self):
        assert split_component_name("L2.kappa") == (1, "kappa")
        assert split_component_name("kappa") == (None, "kappa")
        assert split_component_name("Mixture.theta1") == (None, "Mixture.theta1")
        assert split_component_name("L1.Gamma.alpha") == (0, "Gamma.alpha")


class TestMixtureValues:

    def test_weighted_average(self, mixture):
        logs = [lik.get_log_likelihood_per_pattern() for lik in mixture.likelihoods]
        expected = np.log(0.3 * np.exp(logs[0]) + 0.7 * np.exp(logs[1]))

        np.testing.assert_allclose(mixture.get_log_likelihood_per_pattern(), expected)
        assert mixture.get_log_likelihood() == pytest.approx(
            np.dot(mixture.patterns.weights, expected)
        )
        assert mixture.get_log_likelihood_per_site().shape == (mixture.n_sites,)

    def test_single_component_is_identity(self, quartet_alignment):
        lik = component(quartet_alignment, HKY85(kappa=4.0))
        mixture = MixtureTreeLikelihood([lik], [1.0])
        assert mixture.get_log_likelihood() == pytest.approx(lik.get_log_likelihood())

    def test_posterior_components(self, mixture):
        post = mixture.get_posterior_component_probabilities()
        assert post.shape == (mixture.patterns.n_patterns, 2)
        np.testing.assert_allclose(post.sum(axis=1), 1.0)

    def test_mismatched_patterns(self, quartet_alignment):
        other = Alignment.from_dict({n: "ACGTT" for n in "ABCD"})
        with pytest.raises(DimensionError, match="same site patterns"):
            MixtureTreeLikelihood(
                [component(quartet_alignment, JC69()), component(other, JC69())], [0.5, 0.5]
            )

    def test_same_shape_different_data(self):
        first = Alignment.from_dict({n: "AC" for n in "ABCD"})
        second = Alignment.from_dict({"A": "GT", "B": "GT", "C": "GT", "D": "TT"})
        with pytest.raises(DimensionError, match="same site patterns"):
            MixtureTreeLikelihood(
                [component(first, JC69()), component(second, JC69())], [0.5, 0.5]
            )

    def test_wrong_number_of_probabilities(self, quartet_alignment):
        with pytest.raises(DimensionError):
            MixtureTreeLikelihood([component(quartet_alignment, JC69())], [0.5, 0.5])


class TestMixtureParameters:

    def test_names(self, mixture):
        params = mixture.get_parameters()
        assert params["Mixture.theta1"] == pytest.approx(0.3)
        assert params["L1.kappa"] == 4.0
        assert "L2.BrLen4" in params
        assert "L2.kappa" not in params

    def test_weights(self, mixture):
        mixture.set_parameters({"Mixture.theta1": 0.6})
        np.testing.assert_allclose(mixture.probabilities, [0.6, 0.4])

    def test_unprefixed_name_reaches_all_components(self, mixture):
        mixture.set_parameters({"BrLen4": 0.6})
        for lik in mixture.likelihoods:
            assert lik.get_parameters()["BrLen4"] == 0.6

    def test_prefixed_name_reaches_one_component(self, mixture):
        mixture.set_parameters({"L2.BrLen4": 0.9})
        assert mixture.likelihoods[0].get_parameters()["BrLen4"] == 0.3
        assert mixture.likelihoods[1].get_parameters()["BrLen4"] == 0.9

    def test_unknown(self, mixture):
        with pytest.raises(ParameterError):
            mixture.set_parameters({"omega": 1.0})
        with pytest.raises(ParameterError):
            mixture.set_parameters({"L3.BrLen1": 0.1})
        with pytest.raises(ParameterError):
            mixture.set_parameters({"L2.kappa": 1.0})


class TestMixtureDerivatives:

    @pytest.mark.parametrize("name", ["BrLen4", "L1.BrLen2"])
    def test_branch_derivative(self, mixture, name):
        original = mixture.get_parameters()[name if name.startswith("L") else f"L1.{name}"]
        h = 1e-6

        def lnl(t):
            mixture.set_parameters({name: t})
            return mixture.get_log_likelihood()

        numerical = (lnl(original + h) - lnl(original - h)) / (2 * h)
        lnl(original)
        assert mixture.get_first_order_derivative(name) == pytest.approx(numerical, rel=1e-5, abs=1e-6)

    def test_branch_second_derivative(self, mixture):
        h = 1e-4

        def lnl(t):
            mixture.set_parameters({"BrLen5": t})
            return mixture.get_log_likelihood()

        numerical = (lnl(0.4 + h) - 2 * lnl(0.4) + lnl(0.4 - h)) / h ** 2
        assert mixture.get_second_order_derivative("BrLen5") == pytest.approx(numerical, rel=1e-3, abs=1e-4)

    def test_weight_derivative(self, mixture):
        """d lnL / d theta1 = sum w (L1 - L2) / (theta1 L1 + (1 - theta1) L2)."""
        L1, L2 = (np.exp(lik.get_log_likelihood_per_pattern()) for lik in mixture.likelihoods)
        expected = np.dot(mixture.patterns.weights, (L1 - L2) / (0.3 * L1 + 0.7 * L2))

        assert mixture.get_first_order_derivative("Mixture.theta1") == pytest.approx(expected, rel=1e-5)
        assert mixture.probabilities[0] == pytest.approx(0.3)


class TestSharedNameDerivatives:

    @pytest.fixture
    def two_kappas(self, quartet_alignment):
        return MixtureTreeLikelihood(
            [component(quartet_alignment, HKY85(kappa=2.0)), component(quartet_alignment, HKY85(kappa=5.0))],
            [0.4, 0.6],
        )

    def kappas(self, mixture):
        return [lik.get_parameters()["kappa"] for lik in mixture.likelihoods]

    def test_differing_values_are_rejected(self, two_kappas):
        before = two_kappas.get_log_likelihood()
        with pytest.raises(ParameterError, match="differs between components"):
            two_kappas.get_first_order_derivative("kappa")

        assert self.kappas(two_kappas) == [2.0, 5.0]
        assert two_kappas.get_log_likelihood() == pytest.approx(before, rel=1e-12)

    def test_prefixed_derivative_leaves_other_component(self, two_kappas):
        before = two_kappas.get_log_likelihood()
        two_kappas.get_first_order_derivative("L2.kappa")
        two_kappas.get_second_order_derivative("L2.kappa")

        assert self.kappas(two_kappas) == [2.0, 5.0]
        assert two_kappas.get_log_likelihood() == pytest.approx(before, rel=1e-12)

    def test_shared_value_restored_everywhere(self, two_kappas):
        two_kappas.set_parameters({"kappa": 3.0})
        h = 1e-5

        def lnl(kappa):
            two_kappas.set_parameters({"kappa": kappa})
            return two_kappas.get_log_likelihood()

        numerical = (lnl(3.0 + h) - lnl(3.0 - h)) / (2 * h)
        lnl(3.0)

        assert two_kappas.get_first_order_derivative("kappa") == pytest.approx(numerical, rel=1e-4, abs=1e-5)
        assert self.kappas(two_kappas) == [3.0, 3.0]
