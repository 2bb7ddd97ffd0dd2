"""
Unit tests for parameters, aliases and rate distributions.
"""

import numpy as np
import pytest

from phylolik.distributions import (
    ConstantDistribution,
    GammaDiscreteDistribution,
    InvariantMixedDistribution,
    UserDiscreteDistribution,
)
from phylolik.exceptions import DimensionError, ParameterError
from phylolik.parameters import AliasTable, Parameter, ParameterList, Simplex


class TestParameterList:
    """Named, bounded parameters."""

    def test_bounds_enforced(self):
        p = Parameter("kappa", 2.0, 0.0, 10.0)
        with pytest.raises(ParameterError, match="outside"):
            p.set(11.0)
        with pytest.raises(ParameterError):
            Parameter("x", -1.0, 0.0)

    def test_set_reports_change(self):
        p = Parameter("kappa", 2.0)
        assert p.set(3.0)
        assert not p.set(3.0)

    def test_duplicate_and_unknown(self):
        params = ParameterList([Parameter("a", 1.0)])
        with pytest.raises(ParameterError, match="Duplicate"):
            params.add(Parameter("a", 2.0))
        with pytest.raises(ParameterError, match="Unknown"):
            params["b"]

    def test_match_values_ignores_unknown(self):
        params = ParameterList([Parameter("a", 1.0), Parameter("b", 2.0)])
        changed = params.match_values({"a": 1.0, "b": 5.0, "c": 0.0})
        assert changed == ["b"]
        assert params.values() == {"a": 1.0, "b": 5.0}


class TestAliasTable:
    """Alias groups."""

    def test_groups_merge(self):
        aliases = AliasTable()
        aliases.alias("k_1", "k_2")
        aliases.alias("k_1", "k_3")

        assert aliases.group("k_3") == ["k_1", "k_2", "k_3"]
        assert aliases.is_independent("k_1")
        assert not aliases.is_independent("k_2")

    def test_alias_of_group(self):
        """Aliasing two groups merges them under the source's representative."""
        aliases = AliasTable()
        aliases.alias("a", "b")
        aliases.alias("c", "d")
        aliases.alias("a", "c")

        assert sorted(aliases.group("d")) == ["a", "b", "c", "d"]
        assert aliases.representative("d") == "a"

    def test_unaliased_name(self):
        aliases = AliasTable()
        assert aliases.group("x") == ["x"]
        assert aliases.is_independent("x")


class TestSimplex:
    """Stick-breaking parametrisation of probability vectors."""

    def test_round_trip(self):
        simplex = Simplex([0.2, 0.3, 0.5], prefix="Mix.")
        np.testing.assert_allclose(simplex.probabilities, [0.2, 0.3, 0.5])
        assert simplex.parameters.names() == ["Mix.theta1", "Mix.theta2"]
        assert simplex.parameters.get_value("Mix.theta2") == pytest.approx(0.375)

    def test_set_theta(self):
        simplex = Simplex([0.5, 0.5])
        simplex.parameters.set_value("theta1", 0.9)
        np.testing.assert_allclose(simplex.probabilities, [0.9, 0.1])

    def test_invalid(self):
        with pytest.raises(DimensionError):
            Simplex([0.5, 0.6])
        with pytest.raises(DimensionError):
            Simplex([])


class TestDistributions:
    """Discrete distributions of rates across sites."""

    def test_constant(self):
        dist = ConstantDistribution()
        np.testing.assert_array_equal(dist.rates, [1.0])
        np.testing.assert_array_equal(dist.probabilities, [1.0])
        assert len(dist.parameters) == 0

    def test_gamma_mean_one(self):
        dist = GammaDiscreteDistribution(4, alpha=0.5)
        assert dist.n_classes == 4
        np.testing.assert_allclose(dist.probabilities, 0.25)
        assert dist.mean() == pytest.approx(1.0)
        assert np.all(np.diff(dist.rates) > 0)

    def test_gamma_known_rates(self):
        """Mean-of-class rates for alpha = 0.5, four classes (Yang 1994)."""
        dist = GammaDiscreteDistribution(4, alpha=0.5)
        np.testing.assert_allclose(
            dist.rates, [0.0334, 0.2519, 0.8203, 2.8944], atol=5e-4
        )

    def test_gamma_alpha_change(self):
        dist = GammaDiscreteDistribution(4, alpha=0.5)
        before = dist.rates.copy()
        assert dist.set_parameters({"Gamma.alpha": 2.0}) == ["Gamma.alpha"]
        assert not np.allclose(dist.rates, before)
        assert dist.mean() == pytest.approx(1.0)

    def test_invariant_mixed(self):
        dist = InvariantMixedDistribution(GammaDiscreteDistribution(4, 1.0), p_inv=0.2)

        assert dist.n_classes == 5
        assert dist.rates[0] == 0.0
        assert dist.probabilities[0] == pytest.approx(0.2)
        assert dist.mean() == pytest.approx(1.0)
        assert set(dist.parameters.names()) == {"InvariantMixed.p", "Gamma.alpha"}

    def test_invariant_mixed_propagates_alpha(self):
        inner = GammaDiscreteDistribution(4, 1.0)
        dist = InvariantMixedDistribution(inner, p_inv=0.2)
        dist.set_parameters({"Gamma.alpha": 0.3})
        np.testing.assert_allclose(
            dist.rates[1:], GammaDiscreteDistribution(4, 0.3).rates / 0.8
        )

    def test_user(self):
        dist = UserDiscreteDistribution([0.5, 1.5], [0.5, 0.5])
        assert dist.mean() == pytest.approx(1.0)
        with pytest.raises(DimensionError):
            UserDiscreteDistribution([1.0], [0.5, 0.5])
