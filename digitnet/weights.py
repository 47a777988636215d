"""
weights.py
~~~~~~~~~~

The pair of weight matrices that defines a network, random
initialization, and the two-block text weight-file format.

File layout::

    <hidden-layer weights, one row per line>

    <output-layer weights, one row per line>

The bias weight of every unit is the first column of its row.
"""

import io
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, TextIO, Tuple

import numpy as np

from digitnet.config import Architecture, DEFAULT_INIT_EPSILON
from digitnet.errors import (
    DimensionMismatchError,
    MalformedMatrixError,
    MalformedWeightFileError
)
from digitnet.matrix import Matrix

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WeightSet:
    """
    Hidden-layer and output-layer weight matrices.

    Shapes are ``[hidden, input + 1]`` and ``[classes, hidden + 1]``.
    The matrices themselves stay mutable; the pairing does not change.
    """

    theta_hidden: Matrix
    theta_output: Matrix

    def __post_init__(self):
        if self.theta_hidden.cols < 2:
            raise DimensionMismatchError(
                "Hidden-layer weights need a bias column and at least one input"
            )
        if self.theta_output.cols != self.theta_hidden.rows + 1:
            raise DimensionMismatchError(
                f"Output-layer weights have {self.theta_output.cols} columns, "
                f"expected {self.theta_hidden.rows + 1} "
                f"(hidden size + bias)"
            )

    @property
    def architecture(self) -> Architecture:
        return Architecture(
            input_size=self.theta_hidden.cols - 1,
            hidden_size=self.theta_hidden.rows,
            num_classes=self.theta_output.rows
        )

    def matrices(self) -> Tuple[Matrix, Matrix]:
        return (self.theta_hidden, self.theta_output)

    def copy(self) -> 'WeightSet':
        return WeightSet(self.theta_hidden.copy(), self.theta_output.copy())

    def check_architecture(self, architecture: Architecture) -> None:
        """
        Raises:
            DimensionMismatchError: If the shapes don't match the architecture
        """
        if self.theta_hidden.shape != architecture.hidden_shape:
            raise DimensionMismatchError(
                f"Hidden-layer weights are {self.theta_hidden.shape}, "
                f"expected {architecture.hidden_shape}"
            )
        if self.theta_output.shape != architecture.output_shape:
            raise DimensionMismatchError(
                f"Output-layer weights are {self.theta_output.shape}, "
                f"expected {architecture.output_shape}"
            )

    def allclose(self, other: 'WeightSet', rtol: float = 1e-9, atol: float = 1e-12) -> bool:
        return (
            self.theta_hidden.allclose(other.theta_hidden, rtol, atol) and
            self.theta_output.allclose(other.theta_output, rtol, atol)
        )


def random_matrix(
    rows: int,
    cols: int,
    rng: np.random.Generator,
    epsilon: float = DEFAULT_INIT_EPSILON
) -> Matrix:
    """Matrix with entries drawn uniformly from [-epsilon, epsilon]."""
    return Matrix.from_array(rng.uniform(-epsilon, epsilon, size=(rows, cols)))


def initialize_weights(
    architecture: Architecture,
    rng: Optional[np.random.Generator] = None,
    epsilon: float = DEFAULT_INIT_EPSILON,
    seed: Optional[int] = None
) -> WeightSet:
    """
    Create small random weights for a network.

    Args:
        architecture: Layer sizes
        rng: Generator to draw from; takes precedence over ``seed``
        epsilon: Half-width of the uniform initialization interval
        seed: Seed for a fresh generator when ``rng`` is not given

    Returns:
        WeightSet: Weights with the architecture's shapes

    Raises:
        ValueError: If epsilon is not positive
    """
    if epsilon <= 0:
        raise ValueError(f"epsilon must be positive, got {epsilon}")
    if rng is None:
        rng = np.random.default_rng(seed)
    return WeightSet(
        theta_hidden=random_matrix(*architecture.hidden_shape, rng, epsilon),
        theta_output=random_matrix(*architecture.output_shape, rng, epsilon)
    )


def save_weights(weights: WeightSet, sink: TextIO) -> None:
    """
    Write both weight matrices, hidden layer first, separated by a blank line.

    Example:
        >>> with open('thetas.txt', 'w') as f:
        ...     save_weights(weights, f)
    """
    weights.theta_hidden.write(sink)
    sink.write('\n')
    weights.theta_output.write(sink)


def weights_to_text(weights: WeightSet) -> str:
    buffer = io.StringIO()
    save_weights(weights, buffer)
    return buffer.getvalue()


def _split_blocks(lines: Iterable[str]) -> List[List[Tuple[int, str]]]:
    """Group non-blank lines into blocks separated by blank lines."""
    blocks = []
    current = []
    for line_number, line in enumerate(lines, start=1):
        if line.strip():
            current.append((line_number, line))
        elif current:
            blocks.append(current)
            current = []
    if current:
        blocks.append(current)
    return blocks


def load_weights(source: Iterable[str], architecture: Architecture) -> WeightSet:
    """
    Read a weight file written by ``save_weights``.

    Args:
        source: Text stream (or iterable of lines)
        architecture: Layer sizes the weights must match

    Returns:
        WeightSet: The hidden-layer and output-layer weights

    Raises:
        MalformedWeightFileError: If a block is missing or malformed, there
            are extra blocks, or the shapes don't match the architecture
    """
    blocks = _split_blocks(source)
    if len(blocks) < 2:
        raise MalformedWeightFileError(
            f"expected 2 matrix blocks, found {len(blocks)}"
        )
    if len(blocks) > 2:
        raise MalformedWeightFileError(
            "unexpected data after the output-layer weights",
            blocks[2][0][0]
        )

    matrices = []
    for name, block in zip(('hidden-layer', 'output-layer'), blocks):
        try:
            matrices.append(Matrix.parse_rows(block))
        except MalformedMatrixError as e:
            raise MalformedWeightFileError(
                f"{name} weights: {e}"
            ) from e

    theta_hidden, theta_output = matrices
    expected = (
        ('hidden-layer', theta_hidden, architecture.hidden_shape, blocks[0]),
        ('output-layer', theta_output, architecture.output_shape, blocks[1])
    )
    for name, matrix, shape, block in expected:
        if matrix.shape != shape:
            raise MalformedWeightFileError(
                f"{name} weights are {matrix.rows} x {matrix.cols}, "
                f"expected {shape[0]} x {shape[1]}",
                block[0][0]
            )

    logger.debug(
        f"Loaded weights {theta_hidden.shape} and {theta_output.shape}"
    )
    return WeightSet(theta_hidden, theta_output)


def weights_from_text(text: str, architecture: Architecture) -> WeightSet:
    return load_weights(text.splitlines(), architecture)
