"""
Unit tests for substitution processes.
"""

import numpy as np
import pytest

from phylolik.core.likelihood import TreeLikelihood
from phylolik.distributions import GammaDiscreteDistribution
from phylolik.exceptions import AlphabetMismatchError, DimensionError, ParameterError, StructuralError
from phylolik.io.trees import Tree
from phylolik.models import HKY85, JC69, CodonModel, Equiprobable
from phylolik.process import (
    SubstitutionProcess,
    branch_parameter_name,
    homogeneous_process,
    is_branch_parameter,
    labelled_process,
    nonhomogeneous_process,
)


class TestParameterNames:

    def test_branch_names(self):
        assert branch_parameter_name(3) == "BrLen3"
        assert is_branch_parameter("BrLen12")
        assert not is_branch_parameter("BrLenX")
        assert not is_branch_parameter("kappa")


class TestHomogeneousProcess:
    """One model on every branch."""

    def test_parameters(self, quartet_tree):
        process = homogeneous_process(HKY85(kappa=2.0), quartet_tree, GammaDiscreteDistribution(4, 0.5))
        params = process.get_parameters()

        assert set(process.get_branch_length_parameters()) == {f"BrLen{i}" for i in range(1, 6)}
        assert params["BrLen5"] == pytest.approx(0.4)
        assert process.get_substitution_model_parameters() == {"kappa": 2.0}
        assert process.get_rate_distribution_parameters() == {"Gamma.alpha": 0.5}

    def test_matrices_per_class(self, quartet_tree):
        rates = GammaDiscreteDistribution(4, 0.5)
        model = HKY85(kappa=2.0)
        process = homogeneous_process(model, quartet_tree, rates)

        P = process.get_transition_probabilities(4)
        assert P.shape == (4, 4, 4)
        for k, rate in enumerate(rates.rates):
            np.testing.assert_allclose(P[k], model.pij_t(rate * 0.3))
        np.testing.assert_allclose(process.get_transition_probabilities(4, 2), P[2])

    def test_derivatives_scaled_by_rate(self, quartet_tree):
        rates = GammaDiscreteDistribution(2, 1.0)
        model = JC69()
        process = homogeneous_process(model, quartet_tree, rates)

        r = rates.rates[1]
        np.testing.assert_allclose(process.get_transition_probabilities_d1(2, 1), r * model.dpij_t(r * 0.1))
        np.testing.assert_allclose(process.get_transition_probabilities_d2(2, 1), r * r * model.d2pij_t(r * 0.1))

    def test_second_model_rejected(self, quartet_tree):
        process = homogeneous_process(JC69(), quartet_tree)
        with pytest.raises(StructuralError, match="exactly one model"):
            process.add_model(JC69(), [])

    def test_branch_length_change(self, quartet_tree):
        process = homogeneous_process(JC69(), quartet_tree)
        process.get_transition_probabilities(2)
        before = process.get_transition_probabilities(3, 0).copy()

        change = process.set_parameters({"BrLen3": 0.5})

        assert change.nodes == {3}
        assert not change.root_frequencies
        assert process.is_stale(3)
        assert not process.is_stale(2)
        assert quartet_tree.get_node(3).branch_length == 0.5
        assert not np.allclose(process.get_transition_probabilities(3, 0), before)
        assert not process.is_stale(3)

    def test_unchanged_value_is_no_change(self, quartet_tree):
        process = homogeneous_process(JC69(), quartet_tree)
        assert not process.set_parameters({"BrLen3": 0.2})

    def test_model_change_stales_all_branches(self, quartet_tree):
        process = homogeneous_process(HKY85(), quartet_tree)
        change = process.set_parameters({"kappa": 4.0})
        assert change.nodes == {1, 2, 3, 4, 5}
        # HKY85 frequencies are fixed, so the root distribution is unchanged
        assert not change.root_frequencies

    def test_rate_change(self, quartet_tree):
        process = homogeneous_process(JC69(), quartet_tree, GammaDiscreteDistribution(4, 0.5))
        change = process.set_parameters({"Gamma.alpha": 1.5})
        assert change.rate_classes
        assert 0 not in change.nodes

    def test_unknown_parameter(self, quartet_tree):
        process = homogeneous_process(JC69(), quartet_tree)
        with pytest.raises(ParameterError, match="Unknown parameter"):
            process.set_parameters({"omega": 1.0})
        with pytest.raises(ParameterError):
            process.set_parameters({"BrLen1": -0.1})

    def test_class_index_out_of_range(self, quartet_tree):
        process = homogeneous_process(JC69(), quartet_tree)
        with pytest.raises(DimensionError):
            process.get_transition_probabilities(2, 1)

    def test_root_has_no_branch(self, quartet_tree):
        process = homogeneous_process(JC69(), quartet_tree)
        with pytest.raises(StructuralError):
            process.get_transition_probabilities(0)

    def test_root_frequencies(self, quartet_tree):
        fixed = np.array([0.4, 0.3, 0.2, 0.1])
        process = homogeneous_process(JC69(), quartet_tree, root_frequencies=fixed)
        np.testing.assert_array_equal(process.root_frequencies, fixed)

        with pytest.raises(DimensionError):
            homogeneous_process(JC69(), quartet_tree, root_frequencies=np.ones(3) / 3)


class TestNonHomogeneousProcess:
    """Several models attached to sets of branches."""

    def test_orphan_nodes(self, quartet_tree):
        process = SubstitutionProcess(quartet_tree)
        process.add_model(JC69(), [1, 2, 3])

        assert not process.is_fully_set_up(throw=False)
        with pytest.raises(StructuralError, match="no model"):
            process.check_orphan_nodes()

        process.add_model(HKY85(), [4, 5])
        assert process.is_fully_set_up()
        assert process.get_model_index(5) == 1
        assert process.get_nodes_with_model(1) == [4, 5]

    def test_unknown_nodes(self, quartet_tree):
        process = SubstitutionProcess(quartet_tree)
        process.add_model(JC69(), [1, 2, 3, 4, 5, 42])
        with pytest.raises(StructuralError, match="not found in tree"):
            process.check_unknown_nodes()

    def test_model_on_root_rejected(self, quartet_tree):
        process = SubstitutionProcess(quartet_tree)
        process.add_model(JC69(), [0, 1, 2, 3, 4, 5])
        assert not process.check_unknown_nodes(throw=False)

    def test_alphabet_mismatch(self, quartet_tree):
        process = SubstitutionProcess(quartet_tree)
        process.add_model(JC69(), [1, 2, 3])
        with pytest.raises(AlphabetMismatchError):
            process.add_model(Equiprobable("aa"), [4, 5])
        with pytest.raises(AlphabetMismatchError):
            process.add_model(CodonModel(), [4, 5])

    def test_suffixed_parameter_names(self, quartet_tree):
        process = SubstitutionProcess(quartet_tree)
        process.add_model(HKY85(kappa=2.0), [1, 2, 3])
        process.add_model(HKY85(kappa=3.0), [4, 5])

        assert process.get_substitution_model_parameters() == {"kappa_1": 2.0, "kappa_2": 3.0}

        change = process.set_parameters({"kappa_2": 6.0})
        assert change.nodes == {4, 5}

    def test_set_model_to_node(self, quartet_tree):
        process = SubstitutionProcess(quartet_tree)
        process.add_model(JC69(), [1, 2, 3, 4])
        process.add_model(HKY85(), [5])
        process.set_model_to_node(1, 4)

        assert process.get_nodes_with_model(1) == [5, 4]
        assert process.get_nodes_with_model(0) == [1, 2, 3]
        with pytest.raises(DimensionError):
            process.set_model_to_node(2, 4)

    def test_alias_sets_whole_group(self, quartet_tree):
        process = SubstitutionProcess(quartet_tree)
        process.add_model(HKY85(kappa=2.0), [1, 2, 3])
        process.add_model(HKY85(kappa=3.0), [4, 5])
        process.alias_parameters("kappa_1", "kappa_2")

        assert process.get_parameters(independent=False)["kappa_2"] == 2.0
        assert "kappa_2" not in process.get_parameters()

        change = process.set_parameters({"kappa_2": 5.0})
        assert process.models[0].get_parameter_value("kappa") == 5.0
        assert process.models[1].get_parameter_value("kappa") == 5.0
        assert change.nodes == {1, 2, 3, 4, 5}

    def test_nonhomogeneous_factory(self, quartet_tree):
        process = nonhomogeneous_process(CodonModel(kappa=2.0, omega=0.5), quartet_tree,
                                         global_parameters=["kappa"])

        assert process.n_models == 5
        model_params = process.get_substitution_model_parameters()
        assert "kappa_1" in model_params
        assert "kappa_3" not in model_params
        assert {f"omega_{k}" for k in range(1, 6)} <= set(model_params)

        process.set_parameters({"kappa_1": 4.0})
        assert all(m.get_parameter_value("kappa") == 4.0 for m in process.models)

    def test_factory_wildcard(self, quartet_tree):
        process = nonhomogeneous_process(CodonModel(), quartet_tree, global_parameters=["*"])
        assert set(process.get_substitution_model_parameters()) == {"kappa_1", "omega_1"}

    def test_factory_unknown_global(self, quartet_tree):
        with pytest.raises(ParameterError, match="not valid"):
            nonhomogeneous_process(HKY85(), quartet_tree, global_parameters=["omega"])

    def test_list_model_names(self, quartet_tree):
        process = homogeneous_process(HKY85(), quartet_tree)
        assert process.list_model_names() == ["Model 1: HKY85 attached to nodes [1, 2, 3, 4, 5]"]


class TestLabelledProcess:
    """One model per Newick branch label."""

    LABELLED = "((A:0.1,B:0.2)#1:0.05,C#2:0.3,D:0.4);"

    def test_groups_by_label(self):
        tree = Tree.from_newick(self.LABELLED)
        process = labelled_process(HKY85(kappa=2.0), tree)

        assert process.n_models == 3
        assert process.get_nodes_with_model(0) == [2, 3, 5]
        assert process.get_nodes_with_model(1) == [1]
        assert process.get_nodes_with_model(2) == [4]
        assert set(process.get_substitution_model_parameters()) == {"kappa_1", "kappa_2", "kappa_3"}

    def test_shared_parameter(self):
        tree = Tree.from_newick(self.LABELLED)
        process = labelled_process(HKY85(), tree, global_parameters=["kappa"])

        assert set(process.get_substitution_model_parameters()) == {"kappa_1"}
        change = process.set_parameters({"kappa_1": 6.0})
        assert change.nodes == {1, 2, 3, 4, 5}

    def test_label_only_changes_its_branches(self):
        tree = Tree.from_newick(self.LABELLED)
        process = labelled_process(HKY85(), tree)

        change = process.set_parameters({"kappa_2": 6.0})
        assert change.nodes == {1}

    def test_equal_values_match_homogeneous(self, quartet_alignment):
        labelled_tree = Tree.from_newick(self.LABELLED)
        plain_tree = Tree.from_newick(self.LABELLED)
        labelled = TreeLikelihood(labelled_tree, quartet_alignment, labelled_process(HKY85(kappa=3.0), labelled_tree))
        plain = TreeLikelihood(plain_tree, quartet_alignment, homogeneous_process(HKY85(kappa=3.0), plain_tree))

        assert labelled.get_log_likelihood() == pytest.approx(plain.get_log_likelihood(), rel=1e-12)
        labelled.set_parameters({"kappa_2": 8.0})
        assert labelled.get_log_likelihood() != pytest.approx(plain.get_log_likelihood(), rel=1e-8)

    def test_requires_labels(self, quartet_tree):
        with pytest.raises(StructuralError, match="label"):
            labelled_process(HKY85(), quartet_tree)
