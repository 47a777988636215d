"""
matrix.py
~~~~~~~~~

Minimal 2-D numeric container backed by a numpy array.

Shapes are fixed at creation; entries are mutable. Every operation that
combines two matrices checks shapes first and raises
``DimensionMismatchError`` instead of broadcasting, truncating or padding.
"""

import math
from typing import Callable, Iterable, List, Sequence, TextIO, Tuple

import numpy as np

from digitnet.errors import (
    DimensionMismatchError,
    MalformedMatrixError,
    OutOfBoundsError
)


# 17 significant digits round-trip any IEEE-754 double exactly
NUMBER_FORMAT = '.17g'


class Matrix:
    """
    A rows x cols matrix of doubles.

    Args:
        rows: Number of rows (positive)
        cols: Number of columns (positive)
    """

    def __init__(self, rows: int, cols: int):
        if not isinstance(rows, (int, np.integer)) or rows < 1:
            raise ValueError(f"rows must be a positive integer, got {rows!r}")
        if not isinstance(cols, (int, np.integer)) or cols < 1:
            raise ValueError(f"cols must be a positive integer, got {cols!r}")
        self._data = np.zeros((int(rows), int(cols)), dtype=np.float64)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_array(cls, array) -> 'Matrix':
        """
        Build a matrix from any 2-D array-like. The data is copied.

        Raises:
            DimensionMismatchError: If the input is not two-dimensional
        """
        values = np.array(array, dtype=np.float64)
        if values.ndim != 2:
            raise DimensionMismatchError(
                f"Expected a 2-D array, got {values.ndim} dimension(s)"
            )
        matrix = cls(*values.shape)
        matrix._data[...] = values
        return matrix

    @classmethod
    def column(cls, values: Iterable[float]) -> 'Matrix':
        """Build an n x 1 column vector."""
        values = np.asarray(list(values), dtype=np.float64)
        return cls.from_array(values.reshape(-1, 1))

    # ------------------------------------------------------------------
    # Shape and element access
    # ------------------------------------------------------------------

    @property
    def rows(self) -> int:
        return self._data.shape[0]

    @property
    def cols(self) -> int:
        return self._data.shape[1]

    @property
    def shape(self) -> Tuple[int, int]:
        return self._data.shape

    def _check_index(self, row: int, col: int) -> None:
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise OutOfBoundsError(
                f"Index ({row}, {col}) outside {self.rows} x {self.cols} matrix"
            )

    def get(self, row: int, col: int) -> float:
        """Return the entry at (row, col)."""
        self._check_index(row, col)
        return float(self._data[row, col])

    def set(self, row: int, col: int, value: float) -> None:
        """Overwrite the entry at (row, col)."""
        self._check_index(row, col)
        self._data[row, col] = value

    def to_array(self) -> np.ndarray:
        """Return a copy of the entries as a numpy array."""
        return self._data.copy()

    def copy(self) -> 'Matrix':
        return Matrix.from_array(self._data)

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def _require_same_shape(self, other: 'Matrix', operation: str) -> None:
        if self.shape != other.shape:
            raise DimensionMismatchError(
                f"Cannot {operation} {self.rows} x {self.cols} and "
                f"{other.rows} x {other.cols} matrices"
            )

    def multiply(self, other: 'Matrix') -> 'Matrix':
        """
        Matrix product ``self x other``.

        Raises:
            DimensionMismatchError: Unless ``self.cols == other.rows``
        """
        if self.cols != other.rows:
            raise DimensionMismatchError(
                f"Cannot multiply {self.rows} x {self.cols} by "
                f"{other.rows} x {other.cols}"
            )
        return Matrix.from_array(self._data @ other._data)

    def add(self, other: 'Matrix') -> 'Matrix':
        self._require_same_shape(other, 'add')
        return Matrix.from_array(self._data + other._data)

    def subtract(self, other: 'Matrix') -> 'Matrix':
        self._require_same_shape(other, 'subtract')
        return Matrix.from_array(self._data - other._data)

    def hadamard(self, other: 'Matrix') -> 'Matrix':
        """Elementwise product."""
        self._require_same_shape(other, 'multiply elementwise')
        return Matrix.from_array(self._data * other._data)

    def scale(self, factor: float) -> 'Matrix':
        return Matrix.from_array(self._data * factor)

    def transpose(self) -> 'Matrix':
        return Matrix.from_array(self._data.T)

    def apply(self, func: Callable[[np.ndarray], np.ndarray]) -> 'Matrix':
        """
        Apply an elementwise function.

        Args:
            func: Vectorized function taking and returning an ndarray of
                the same shape (a numpy ufunc or equivalent)
        """
        return Matrix.from_array(func(self._data))

    __matmul__ = multiply
    __add__ = add
    __sub__ = subtract

    def __mul__(self, factor: float) -> 'Matrix':
        return self.scale(factor)

    __rmul__ = __mul__

    # ------------------------------------------------------------------
    # Helpers used by the network
    # ------------------------------------------------------------------

    def with_bias_row(self) -> 'Matrix':
        """Return a copy with a row of ones prepended."""
        ones = np.ones((1, self.cols), dtype=np.float64)
        return Matrix.from_array(np.vstack([ones, self._data]))

    def without_first_row(self) -> 'Matrix':
        if self.rows < 2:
            raise DimensionMismatchError(
                "Cannot drop the only row of a matrix"
            )
        return Matrix.from_array(self._data[1:, :])

    def without_bias_column(self) -> 'Matrix':
        """Return a copy with the first column set to zero."""
        values = self._data.copy()
        values[:, 0] = 0.0
        return Matrix.from_array(values)

    def sum_squares(self, skip_first_column: bool = False) -> float:
        """Sum of squared entries, optionally ignoring column 0."""
        values = self._data[:, 1:] if skip_first_column else self._data
        return float(np.sum(values * values))

    def total(self) -> float:
        return float(np.sum(self._data))

    def argmax_row(self) -> int:
        """
        Row index of the largest entry of a column vector.

        Ties resolve to the lowest index.
        """
        if self.cols != 1:
            raise DimensionMismatchError(
                f"argmax_row expects a column vector, got {self.rows} x {self.cols}"
            )
        return int(np.argmax(self._data[:, 0]))

    def allclose(
        self,
        other: 'Matrix',
        rtol: float = 1e-9,
        atol: float = 1e-12
    ) -> bool:
        return (
            self.shape == other.shape and
            bool(np.allclose(self._data, other._data, rtol=rtol, atol=atol))
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.shape == other.shape and bool(
            np.array_equal(self._data, other._data)
        )

    __hash__ = None

    def __repr__(self) -> str:
        return f"Matrix({self.rows}x{self.cols})"

    # ------------------------------------------------------------------
    # Text serialization
    # ------------------------------------------------------------------

    def to_lines(self) -> List[str]:
        return [
            ' '.join(format(float(value), NUMBER_FORMAT) for value in row)
            for row in self._data
        ]

    def to_text(self) -> str:
        """One row per line, columns separated by single spaces."""
        return '\n'.join(self.to_lines()) + '\n'

    def write(self, sink: TextIO) -> None:
        sink.write(self.to_text())

    @classmethod
    def parse_rows(
        cls,
        numbered_rows: Sequence[Tuple[int, str]]
    ) -> 'Matrix':
        """
        Parse a block of row lines.

        Args:
            numbered_rows: (line_number, text) pairs, one per matrix row

        Raises:
            MalformedMatrixError: If the block is empty, a value is not a
                finite number, or the rows have different lengths
        """
        if not numbered_rows:
            raise MalformedMatrixError("Matrix block contains no rows")

        values = []
        width = None
        for line_number, text in numbered_rows:
            tokens = text.split()
            try:
                row = [float(token) for token in tokens]
            except ValueError as e:
                raise MalformedMatrixError(
                    f"non-numeric entry ({e})", line_number
                ) from e
            for token, value in zip(tokens, row):
                if not math.isfinite(value):
                    raise MalformedMatrixError(
                        f"non-finite entry '{token}'", line_number
                    )
            if width is None:
                width = len(row)
            elif len(row) != width:
                raise MalformedMatrixError(
                    f"row has {len(row)} entries, expected {width}",
                    line_number
                )
            values.append(row)

        return cls.from_array(values)

    @classmethod
    def from_text(cls, text: str) -> 'Matrix':
        rows = [
            (line_number, line)
            for line_number, line in enumerate(text.splitlines(), start=1)
            if line.strip()
        ]
        return cls.parse_rows(rows)
