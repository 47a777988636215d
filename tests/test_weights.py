"""
test_weights.py
~~~~~~~~~~~~~~~

Unit tests for weight initialization and the weight-file format.
"""

import io
import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from digitnet.config import Architecture
from digitnet.errors import DimensionMismatchError, MalformedWeightFileError
from digitnet.matrix import Matrix
from digitnet.weights import (
    WeightSet,
    initialize_weights,
    load_weights,
    save_weights,
    weights_from_text,
    weights_to_text
)


@pytest.fixture
def architecture():
    """Small 3-input, 2-hidden, 2-class network."""
    return Architecture(input_size=3, hidden_size=2, num_classes=2)


@pytest.fixture
def weights(architecture):
    """Random weights with a fixed seed."""
    return initialize_weights(architecture, seed=7)


@pytest.mark.unit
class TestInitialization:
    """Random initialization."""

    def test_shapes_include_bias_column(self, weights):
        """Test that both matrices carry a bias column."""
        assert weights.theta_hidden.shape == (2, 4)
        assert weights.theta_output.shape == (2, 3)

    def test_values_within_epsilon(self, architecture):
        """Test that entries are drawn from [-epsilon, epsilon]."""
        weights = initialize_weights(architecture, epsilon=0.12, seed=3)
        for theta in weights.matrices():
            assert np.all(np.abs(theta.to_array()) <= 0.12)

    def test_seed_is_reproducible(self, architecture):
        """Test that the same seed yields the same weights."""
        first = initialize_weights(architecture, seed=42)
        second = initialize_weights(architecture, seed=42)
        assert first.allclose(second, rtol=0, atol=0)

    def test_architecture_roundtrip(self, weights, architecture):
        """Test that the weights report the architecture they were built for."""
        assert weights.architecture == architecture
        weights.check_architecture(architecture)

    def test_check_architecture_mismatch(self, weights):
        """Test that a different architecture is rejected."""
        with pytest.raises(DimensionMismatchError):
            weights.check_architecture(Architecture(3, 4, 2))

    def test_incompatible_matrices(self):
        """Test that the output layer must match the hidden size plus bias."""
        with pytest.raises(DimensionMismatchError):
            WeightSet(Matrix(2, 4), Matrix(2, 2))

    def test_copy_is_independent(self, weights):
        """Test that changing a copy leaves the original alone."""
        duplicate = weights.copy()
        duplicate.theta_hidden.set(0, 0, 99.0)
        assert weights.theta_hidden.get(0, 0) != 99.0


@pytest.mark.unit
class TestWeightFile:
    """Saving and loading weight files."""

    def test_layout(self):
        """Test hidden block, blank line, output block."""
        weights = WeightSet(
            Matrix.from_array([[0.5, 1.0]]),
            Matrix.from_array([[-1.0, 2.0], [0.0, 0.25]])
        )
        assert weights_to_text(weights) == "0.5 1\n\n-1 2\n0 0.25\n"

    @pytest.mark.parametrize('sizes', [(1, 1, 1), (3, 2, 2), (4, 3, 2), (16, 8, 10)])
    def test_saved_weights_load_exactly(self, sizes):
        """Test that a saved file restores every value bit for bit."""
        architecture = Architecture(*sizes)
        weights = initialize_weights(architecture, epsilon=2.5, seed=sum(sizes))
        sink = io.StringIO()
        save_weights(weights, sink)
        sink.seek(0)

        restored = load_weights(sink, architecture)
        assert restored.theta_hidden == weights.theta_hidden
        assert restored.theta_output == weights.theta_output

    def test_trailing_blank_lines_ignored(self, weights, architecture):
        """Test that extra blank lines at the end are tolerated."""
        text = weights_to_text(weights) + "\n\n"
        assert weights_from_text(text, architecture).allclose(weights)

    def test_missing_output_block(self, weights, architecture):
        """Test that a file with only the hidden block is rejected."""
        with pytest.raises(MalformedWeightFileError):
            weights_from_text(weights.theta_hidden.to_text(), architecture)

    def test_extra_block(self, weights, architecture):
        """Test that a third block is rejected with its line number."""
        text = weights_to_text(weights) + "\n1 2 3\n"
        with pytest.raises(MalformedWeightFileError) as exc_info:
            weights_from_text(text, architecture)
        # 2 hidden rows, blank, 2 output rows, blank, then the extra row
        assert exc_info.value.line_number == 7

    def test_wrong_shape(self, weights):
        """Test that weights for another architecture are rejected."""
        text = weights_to_text(weights)
        with pytest.raises(MalformedWeightFileError) as exc_info:
            weights_from_text(text, Architecture(4, 2, 2))
        assert exc_info.value.line_number == 1

    def test_non_numeric_value(self, architecture):
        """Test that a bad number inside a block is rejected."""
        text = "0 0 0 0\n0 0 zero 0\n\n0 0 0\n0 0 0\n"
        with pytest.raises(MalformedWeightFileError) as exc_info:
            weights_from_text(text, architecture)
        assert 'line 2' in str(exc_info.value)

    @pytest.mark.parametrize('token', ['nan', 'inf', '1e400'])
    def test_non_finite_value(self, token):
        """Test that a weight file with a non-finite entry is rejected."""
        text = f"{token} 0\n\n0 0\n"
        with pytest.raises(MalformedWeightFileError) as exc_info:
            weights_from_text(text, Architecture(1, 1, 1))
        assert 'line 1' in str(exc_info.value)
