"""
Unit tests for branch-length optimization.
"""

import numpy as np
import pytest

from phylolik.core.likelihood import TreeLikelihood
from phylolik.core.mixture import MixtureTreeLikelihood
from phylolik.io.trees import Tree
from phylolik.models import HKY85, JC69, GeneratorModel
from phylolik.optimize import LikelihoodObjective, optimize_branch_lengths
from phylolik.optimize.branch import PENALTY
from phylolik.process import homogeneous_process
from phylolik.simulate import ProcessSequenceSimulator

TRUE_NEWICK = "((A:0.1,B:0.2):0.05,C:0.3,D:0.4);"


@pytest.fixture(scope="module")
def simulated_alignment():
    tree = Tree.from_newick(TRUE_NEWICK)
    process = homogeneous_process(HKY85(kappa=3.0), tree)
    return ProcessSequenceSimulator(process, 3000, seed=11).simulate_alignment()


class TestLikelihoodObjective:

    def test_default_names_are_branch_lengths(self, quartet_tree, quartet_alignment):
        lik = TreeLikelihood(quartet_tree, quartet_alignment, homogeneous_process(HKY85(), quartet_tree))
        objective = LikelihoodObjective(lik)

        assert objective.names == [f"BrLen{i}" for i in range(1, 6)]
        np.testing.assert_allclose(np.exp(objective.initial_vector()), [0.05, 0.1, 0.2, 0.3, 0.4])

    def test_value_and_gradient(self, quartet_tree, quartet_alignment):
        lik = TreeLikelihood(quartet_tree, quartet_alignment, homogeneous_process(HKY85(), quartet_tree))
        objective = LikelihoodObjective(lik)
        x = objective.initial_vector()

        assert objective(x) == pytest.approx(-lik.get_log_likelihood())
        assert len(objective.history) == 1

        h = 1e-6
        grad = objective.gradient(x)
        for i in range(len(x)):
            step = np.zeros_like(x)
            step[i] = h
            numerical = (objective(x + step) - objective(x - step)) / (2 * h)
            assert grad[i] == pytest.approx(numerical, rel=1e-4, abs=1e-6)

    def test_rejected_step(self, quartet_tree, quartet_alignment):
        frozen = GeneratorModel(np.zeros((4, 4)), frequencies=np.array([1.0, 0.0, 0.0, 0.0]))
        lik = TreeLikelihood(quartet_tree, quartet_alignment, homogeneous_process(frozen, quartet_tree))
        objective = LikelihoodObjective(lik)

        assert objective(objective.initial_vector()) == PENALTY
        assert objective.n_rejected == 1
        assert len(objective.issues) == 1
        assert objective.history == []


class TestOptimizeBranchLengths:

    def test_improves_and_recovers_lengths(self, simulated_alignment):
        start = Tree.from_newick("((A:0.5,B:0.5):0.5,C:0.5,D:0.5);")
        lik = TreeLikelihood(start, simulated_alignment, homogeneous_process(HKY85(kappa=3.0), start))
        before = lik.get_log_likelihood()

        result = optimize_branch_lengths(lik)

        assert result.success
        assert lik.get_log_likelihood() > before
        assert lik.get_log_likelihood() == pytest.approx(-result.fun)
        estimated = lik.get_branch_length_parameters()
        truth = Tree.from_newick(TRUE_NEWICK).branch_lengths()
        for node_id, length in truth.items():
            assert estimated[f"BrLen{node_id}"] == pytest.approx(length, abs=0.05)

    def test_gradient_vanishes_at_optimum(self, simulated_alignment):
        tree = Tree.from_newick(TRUE_NEWICK)
        lik = TreeLikelihood(tree, simulated_alignment, homogeneous_process(HKY85(kappa=3.0), tree))
        optimize_branch_lengths(lik)

        for name in lik.get_branch_length_parameters():
            assert abs(lik.get_first_order_derivative(name)) < 1.0
            assert lik.get_second_order_derivative(name) < 0

    def test_mixture(self, simulated_alignment):
        components = []
        for model in (HKY85(kappa=3.0), JC69()):
            tree = Tree.from_newick(TRUE_NEWICK)
            components.append(TreeLikelihood(tree, simulated_alignment, homogeneous_process(model, tree)))
        mixture = MixtureTreeLikelihood(components, [0.5, 0.5])
        before = mixture.get_log_likelihood()

        optimize_branch_lengths(mixture)

        assert mixture.get_log_likelihood() >= before
