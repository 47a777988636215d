"""
test_matrix.py
~~~~~~~~~~~~~~

Unit tests for the Matrix container and its text format.
"""

import os
import sys

import numpy as np
import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from digitnet.errors import (
    DimensionMismatchError,
    MalformedMatrixError,
    OutOfBoundsError
)
from digitnet.matrix import Matrix


@pytest.fixture
def square():
    """A 2x2 matrix [[1, 2], [3, 4]]."""
    return Matrix.from_array([[1.0, 2.0], [3.0, 4.0]])


@pytest.mark.unit
class TestMatrixBasics:
    """Construction and element access."""

    def test_new_matrix_is_zero(self):
        """Test that a new matrix has the requested shape and zero entries."""
        m = Matrix(3, 4)
        assert m.shape == (3, 4)
        assert m.rows == 3
        assert m.cols == 4
        assert m.total() == 0.0

    def test_invalid_shape_rejected(self):
        """Test that non-positive dimensions raise ValueError."""
        with pytest.raises(ValueError):
            Matrix(0, 3)
        with pytest.raises(ValueError):
            Matrix(2, -1)

    def test_get_and_set(self):
        """Test that set() changes exactly one entry."""
        m = Matrix(2, 3)
        m.set(1, 2, 7.5)
        assert m.get(1, 2) == 7.5
        assert m.total() == 7.5

    @pytest.mark.parametrize('row,col', [(2, 0), (0, 3), (-1, 0), (0, -1)])
    def test_out_of_bounds(self, row, col):
        """Test that indices outside the shape raise OutOfBoundsError."""
        m = Matrix(2, 3)
        with pytest.raises(OutOfBoundsError):
            m.get(row, col)
        with pytest.raises(OutOfBoundsError):
            m.set(row, col, 1.0)

    def test_from_array_copies(self):
        """Test that from_array doesn't alias the source array."""
        source = np.zeros((2, 2))
        m = Matrix.from_array(source)
        source[0, 0] = 5.0
        assert m.get(0, 0) == 0.0

    def test_from_array_rejects_vectors(self):
        """Test that a 1-D array is not accepted as a matrix."""
        with pytest.raises(DimensionMismatchError):
            Matrix.from_array([1.0, 2.0])

    def test_column(self):
        """Test building a column vector."""
        v = Matrix.column([1, 0, 1])
        assert v.shape == (3, 1)
        assert v.get(2, 0) == 1.0


@pytest.mark.unit
class TestMatrixArithmetic:
    """Products, sums and shape checks."""

    def test_multiply(self, square):
        """Test a hand-computed matrix product."""
        result = square.multiply(Matrix.column([5.0, 6.0]))
        assert result.shape == (2, 1)
        assert result.get(0, 0) == 17.0
        assert result.get(1, 0) == 39.0

    def test_multiply_operator(self, square):
        """Test that @ is the matrix product."""
        assert (square @ square) == Matrix.from_array([[7.0, 10.0], [15.0, 22.0]])

    def test_multiply_dimension_mismatch(self, square):
        """Test that A.cols != B.rows raises DimensionMismatchError."""
        with pytest.raises(DimensionMismatchError):
            square.multiply(Matrix(3, 1))

    def test_add_and_subtract(self, square):
        """Test elementwise addition and subtraction."""
        ones = Matrix.from_array(np.ones((2, 2)))
        assert square.add(ones) == Matrix.from_array([[2.0, 3.0], [4.0, 5.0]])
        assert square.subtract(ones) == Matrix.from_array([[0.0, 1.0], [2.0, 3.0]])

    def test_add_shape_mismatch(self, square):
        """Test that adding different shapes never broadcasts."""
        with pytest.raises(DimensionMismatchError):
            square.add(Matrix(2, 1))
        with pytest.raises(DimensionMismatchError):
            square.subtract(Matrix(1, 2))
        with pytest.raises(DimensionMismatchError):
            square.hadamard(Matrix(3, 3))

    def test_transpose_leaves_original(self):
        """Test that transpose returns a new matrix with swapped shape."""
        m = Matrix.from_array([[1.0, 2.0, 3.0]])
        t = m.transpose()
        assert t.shape == (3, 1)
        assert t.get(2, 0) == 3.0
        assert m.shape == (1, 3)

    def test_operations_do_not_mutate_inputs(self, square):
        """Test that arithmetic returns new matrices."""
        before = square.copy()
        square.add(square)
        square.scale(3.0)
        square.apply(np.exp)
        square.with_bias_row()
        assert square == before

    def test_bias_helpers(self, square):
        """Test adding a bias row and masking the bias column."""
        biased = square.with_bias_row()
        assert biased.shape == (3, 2)
        assert biased.get(0, 0) == 1.0
        assert biased.without_first_row() == square

        masked = square.without_bias_column()
        assert masked.get(0, 0) == 0.0
        assert masked.get(1, 0) == 0.0
        assert masked.get(1, 1) == 4.0

    def test_sum_squares(self, square):
        """Test sum of squares with and without the first column."""
        assert square.sum_squares() == 30.0
        assert square.sum_squares(skip_first_column=True) == 20.0

    def test_argmax_row_ties_go_low(self):
        """Test that equal maxima resolve to the lowest index."""
        assert Matrix.column([0.2, 0.9, 0.9]).argmax_row() == 1
        assert Matrix.column([0.5, 0.5]).argmax_row() == 0


@pytest.mark.unit
class TestMatrixSerialization:
    """Text format round-trips and malformed input."""

    def test_round_trip_is_exact(self):
        """Test that writing and re-reading reproduces every bit."""
        rng = np.random.default_rng(7)
        m = Matrix.from_array(rng.normal(size=(4, 5)) * 1e3)
        m.set(0, 0, 1.0 / 3.0)
        m.set(1, 1, -2.5e-300)

        restored = Matrix.from_text(m.to_text())
        assert restored == m

    def test_text_layout(self):
        """Test one row per line with space-separated columns."""
        m = Matrix.from_array([[1.0, -0.5], [0.0, 2.0]])
        assert m.to_text() == "1 -0.5\n0 2\n"

    def test_parse_rows_keeps_caller_line_numbers(self):
        """Test that errors report the line numbers the caller supplied."""
        with pytest.raises(MalformedMatrixError) as exc_info:
            Matrix.parse_rows([(12, "1 2"), (13, "3 x")])
        assert exc_info.value.line_number == 13

    @pytest.mark.parametrize('token', ['nan', 'inf', '-inf', '1e400'])
    def test_non_finite_rejected(self, token):
        """Test that NaN and infinite entries raise MalformedMatrixError."""
        with pytest.raises(MalformedMatrixError) as exc_info:
            Matrix.from_text(f"1 2\n3 {token}\n")
        assert exc_info.value.line_number == 2

    def test_ragged_rows_rejected(self):
        """Test that rows of different lengths raise MalformedMatrixError."""
        with pytest.raises(MalformedMatrixError) as exc_info:
            Matrix.from_text("1 2\n3\n")
        assert exc_info.value.line_number == 2
        assert "line 2" in str(exc_info.value)

    def test_non_numeric_rejected(self):
        """Test that a non-numeric entry raises MalformedMatrixError."""
        with pytest.raises(MalformedMatrixError):
            Matrix.from_text("1 two\n")

    def test_empty_rejected(self):
        """Test that an empty block raises MalformedMatrixError."""
        with pytest.raises(MalformedMatrixError):
            Matrix.from_text("\n\n")
