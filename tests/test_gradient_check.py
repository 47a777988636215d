"""
test_gradient_check.py
~~~~~~~~~~~~~~~~~~~~~~

Unit tests for the finite-difference gradient estimate.
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from digitnet.config import Architecture
from digitnet.cost import cost_and_gradient
from digitnet.dataset import load_dataset_from_text
from digitnet.gradient_check import gradient_check, max_gradient_difference
from digitnet.matrix import Matrix
from digitnet.weights import WeightSet, initialize_weights


@pytest.fixture
def dataset():
    return load_dataset_from_text(
        "110011:0\n001100:1\n111000:1\n000111:0\n", input_size=6, num_classes=2
    )


@pytest.fixture
def weights():
    """Random 6-4-2 weights."""
    return initialize_weights(Architecture(6, 4, 2), epsilon=0.3, seed=2024)


@pytest.mark.unit
class TestGradientCheck:
    """Estimating dJ/dtheta entry by entry."""

    def test_limited_block(self, dataset, weights):
        """Test that only the top-left max_dims x max_dims block is estimated."""
        estimate = gradient_check(dataset, weights, 1.0, max_dims=3)

        hidden = estimate.theta_hidden.to_array()
        assert hidden.shape == (4, 7)
        assert not np.any(np.isnan(hidden[:3, :3]))
        assert np.all(np.isnan(hidden[3:, :]))
        assert np.all(np.isnan(hidden[:, 3:]))

        output = estimate.theta_output.to_array()
        assert output.shape == (2, 5)
        assert not np.any(np.isnan(output[:, :3]))
        assert np.all(np.isnan(output[:, 3:]))

    def test_agrees_with_backprop(self, dataset, weights):
        """Test the checked entries against back-propagation."""
        _, analytic = cost_and_gradient(dataset, weights, 1.0)
        estimate = gradient_check(dataset, weights, 1.0)

        assert max_gradient_difference(analytic, estimate) < 1e-6

    def test_weights_restored(self, dataset, weights):
        """Test that perturbations don't leak into the caller's weights."""
        before = weights.copy()
        gradient_check(dataset, weights, 0.5, max_dims=None)
        assert weights.allclose(before, rtol=0, atol=0)

    def test_detects_wrong_gradient(self, dataset, weights):
        """Test that a corrupted gradient shows up as a large difference."""
        _, analytic = cost_and_gradient(dataset, weights, 1.0)
        analytic.theta_output.set(1, 2, analytic.theta_output.get(1, 2) + 0.01)
        estimate = gradient_check(dataset, weights, 1.0)

        assert max_gradient_difference(analytic, estimate) > 1e-3

    def test_invalid_arguments(self, dataset, weights):
        """Test that a non-positive epsilon or max_dims is rejected."""
        with pytest.raises(ValueError):
            gradient_check(dataset, weights, 1.0, epsilon=0.0)
        with pytest.raises(ValueError):
            gradient_check(dataset, weights, 1.0, max_dims=0)

    def test_difference_skips_unchecked_entries(self):
        """Test that NaN entries of the estimate are ignored."""
        analytic = WeightSet(Matrix.from_array([[1.0, 2.0]]),
                             Matrix.from_array([[3.0, 4.0]]))
        estimate = WeightSet(Matrix.from_array([[1.5, np.nan]]),
                             Matrix.from_array([[np.nan, np.nan]]))
        assert max_gradient_difference(analytic, estimate) == 0.5
