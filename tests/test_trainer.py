"""
test_trainer.py
~~~~~~~~~~~~~~~

Tests for batch gradient descent and its stopping rules.
"""

import math
import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from digitnet.config import Architecture, TrainingConfig
from digitnet.cost import cost
from digitnet.dataset import load_dataset_from_text
from digitnet.network import classify
from digitnet.trainer import TrainingStatus, train
from digitnet.weights import initialize_weights


@pytest.fixture
def dataset():
    """Two opposite 4-pixel patterns."""
    return load_dataset_from_text("0000:0\n1111:1\n", input_size=4, num_classes=2)


@pytest.fixture
def architecture():
    return Architecture(input_size=4, hidden_size=3, num_classes=2)


@pytest.mark.integration
class TestTrainingOutcomes:
    """Each terminal status."""

    def test_converges_on_separable_data(self, dataset, architecture):
        """Test that a small problem converges and is learned."""
        config = TrainingConfig(
            lambda_=0.0,
            alpha=0.5,
            max_iterations=100000,
            convergence_threshold=1e-6,
            seed=1
        )
        result = train(dataset, config, architecture)

        assert result.status is TrainingStatus.CONVERGED
        assert result.succeeded
        assert result.iterations < config.max_iterations
        assert result.final_cost < 0.05
        assert classify([0, 0, 0, 0], result.weights) == 0
        assert classify([1, 1, 1, 1], result.weights) == 1

    def test_diverges_with_huge_learning_rate(self, dataset, architecture):
        """Test that a runaway cost stops the run instead of raising."""
        config = TrainingConfig(lambda_=1.0, alpha=100.0, max_iterations=1000, seed=1)
        result = train(dataset, config, architecture)

        assert result.status is TrainingStatus.DIVERGED
        assert not result.succeeded
        assert result.iterations < 10

    def test_iteration_cap(self, dataset, architecture):
        """Test that the run stops after max_iterations updates."""
        config = TrainingConfig(
            alpha=0.001, max_iterations=3, convergence_threshold=1e-12, seed=1
        )
        result = train(dataset, config, architecture)

        assert result.status is TrainingStatus.MAX_ITERATIONS_REACHED
        assert result.iterations == 3
        assert math.isclose(
            result.final_cost, cost(dataset, result.weights, config.lambda_)
        )

    def test_cancellation(self, dataset, architecture):
        """Test that the cancellation check ends the run between iterations."""
        calls = []

        def should_cancel():
            calls.append(1)
            return len(calls) > 5

        config = TrainingConfig(max_iterations=1000, convergence_threshold=1e-12)
        result = train(dataset, config, architecture, should_cancel=should_cancel)

        assert result.status is TrainingStatus.CANCELLED
        assert result.iterations == 5

    def test_cost_decreases(self, dataset, architecture):
        """Test that a few small steps lower the cost."""
        config = TrainingConfig(alpha=0.1, max_iterations=20,
                                convergence_threshold=1e-12, seed=3)
        initial = initialize_weights(architecture, seed=3)
        result = train(dataset, config, initial_weights=initial)

        assert result.final_cost < cost(dataset, initial, config.lambda_)


@pytest.mark.unit
class TestTrainingInputs:
    """Argument handling and side effects."""

    def test_initial_weights_not_modified(self, dataset, architecture):
        """Test that training works on a copy of the starting weights."""
        initial = initialize_weights(architecture, seed=9)
        before = initial.copy()
        config = TrainingConfig(alpha=0.5, max_iterations=10, convergence_threshold=1e-12)

        train(dataset, config, initial_weights=initial)
        assert initial.allclose(before, rtol=0, atol=0)

    def test_seed_is_reproducible(self, dataset, architecture):
        """Test that the same seed gives the same trained weights."""
        config = TrainingConfig(alpha=0.5, max_iterations=25,
                                convergence_threshold=1e-12, seed=5)
        first = train(dataset, config, architecture)
        second = train(dataset, config, architecture)
        assert first.weights.allclose(second.weights, rtol=0, atol=0)

    def test_default_architecture_from_dataset(self, dataset):
        """Test that the network is sized from the dataset when not given."""
        config = TrainingConfig(max_iterations=1, convergence_threshold=1e-12)
        result = train(dataset, config)

        architecture = result.weights.architecture
        assert architecture.input_size == 4
        assert architecture.num_classes == 2

    def test_empty_dataset(self, architecture):
        """Test that training on nothing is an error."""
        empty = load_dataset_from_text("", input_size=4, num_classes=2)
        with pytest.raises(ValueError):
            train(empty, TrainingConfig(), architecture)


@pytest.mark.unit
class TestProgressReporting:
    """Callback and cooperative yield hooks."""

    def test_callback_and_yield(self, dataset, architecture):
        """Test periodic reports, the final report and per-iteration yields."""
        reports = []
        yields = []
        config = TrainingConfig(
            alpha=0.001,
            max_iterations=6,
            convergence_threshold=1e-12,
            report_every=2
        )

        train(
            dataset, config, architecture,
            callback=reports.append,
            yield_func=lambda: yields.append(1)
        )

        assert [r['iteration'] for r in reports] == [2, 4, 6, 6]
        assert [r['final'] for r in reports] == [False, False, False, True]
        assert reports[-1]['status'] == 'max_iterations_reached'
        assert reports[0]['status'] is None
        assert all(r['max_iterations'] == 6 for r in reports)
        assert len(yields) == 6


@pytest.mark.unit
class TestTrainingConfig:
    """Validation of training settings."""

    @pytest.mark.parametrize('kwargs', [
        {'lambda_': -0.1},
        {'alpha': 0.0},
        {'max_iterations': 0},
        {'convergence_threshold': 0.0},
        {'growth_threshold': 1.0},
        {'init_epsilon': -1.0},
        {'report_every': 0},
    ])
    def test_invalid_values(self, kwargs):
        """Test that out-of-range settings are rejected."""
        with pytest.raises(ValueError):
            TrainingConfig(**kwargs)

    def test_from_dict(self):
        """Test building a config from a request body."""
        config = TrainingConfig.from_dict(
            {'lambda': 0.5, 'alpha': 0.01, 'max_iterations': 10, 'unknown': 'x'}
        )
        assert config.lambda_ == 0.5
        assert config.alpha == 0.01
        assert config.max_iterations == 10

    def test_architecture_validation(self):
        """Test that layer sizes must be positive integers."""
        with pytest.raises(ValueError):
            Architecture(0, 3, 2)
        with pytest.raises(ValueError):
            Architecture(4, 2.5, 2)
