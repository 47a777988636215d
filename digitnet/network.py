"""
network.py
~~~~~~~~~~

Forward propagation and classification for the one-hidden-layer network.

Inputs arrive without a bias unit. A constant 1 is prepended to the input
and to the hidden activation before each weight multiplication, matching
the bias weight stored in column 0 of each weight matrix.
"""

from dataclasses import dataclass
from typing import Sequence, Tuple, Union

import numpy as np

from digitnet.dataset import Dataset
from digitnet.errors import DimensionMismatchError
from digitnet.matrix import Matrix
from digitnet.weights import WeightSet

# Beyond this magnitude the logistic function is saturated
LOGISTIC_CLAMP = 30.0


def logistic(x: np.ndarray) -> np.ndarray:
    """
    Elementwise ``1 / (1 + e^-x)``.

    The argument is clamped to [-30, 30], so the result always lies
    strictly inside (0, 1) and ``exp`` never overflows.
    """
    x = np.clip(x, -LOGISTIC_CLAMP, LOGISTIC_CLAMP)
    return 1.0 / (1.0 + np.exp(-x))


def logistic_gradient(activation: np.ndarray) -> np.ndarray:
    """Derivative of the logistic function, given its output."""
    return activation * (1.0 - activation)


@dataclass(frozen=True)
class ActivationTrace:
    """
    Intermediate values of one forward pass, kept for back-propagation.

    Each matrix has one column per example.
    """

    biased_input: Matrix
    hidden_activation: Matrix
    biased_hidden: Matrix


def _as_column(inputs: Union[Matrix, Sequence[float]]) -> Matrix:
    if isinstance(inputs, Matrix):
        return inputs
    return Matrix.column(inputs)


def propagate(inputs: Matrix, weights: WeightSet) -> Tuple[Matrix, ActivationTrace]:
    """
    Forward propagation over a batch.

    Args:
        inputs: input_size x m matrix, one example per column, no bias row
        weights: Network weights

    Returns:
        (output, trace): num_classes x m output activations and the trace

    Raises:
        DimensionMismatchError: If the input size doesn't match the weights
    """
    if inputs.rows != weights.theta_hidden.cols - 1:
        raise DimensionMismatchError(
            f"Input has {inputs.rows} entries, network expects "
            f"{weights.theta_hidden.cols - 1}"
        )

    biased_input = inputs.with_bias_row()
    hidden_activation = weights.theta_hidden.multiply(biased_input).apply(logistic)
    biased_hidden = hidden_activation.with_bias_row()
    output = weights.theta_output.multiply(biased_hidden).apply(logistic)

    return output, ActivationTrace(biased_input, hidden_activation, biased_hidden)


def forward(
    inputs: Union[Matrix, Sequence[float]],
    weights: WeightSet
) -> Tuple[Matrix, ActivationTrace]:
    """
    Compute the network output for one input vector.

    Args:
        inputs: input_size x 1 column vector (or a flat sequence), no bias
        weights: Network weights

    Returns:
        (output, trace): num_classes x 1 output activations and the
        intermediate biased-input, hidden-activation and biased-hidden
        vectors
    """
    vector = _as_column(inputs)
    if vector.cols != 1:
        raise DimensionMismatchError(
            f"Expected a column vector, got {vector.rows} x {vector.cols}"
        )
    return propagate(vector, weights)


def classify(inputs: Union[Matrix, Sequence[float]], weights: WeightSet) -> int:
    """
    Return the index of the largest output. Ties go to the lowest index.
    """
    output, _ = forward(inputs, weights)
    return output.argmax_row()


def is_valid_hypothesis(output: Matrix) -> bool:
    """True if every output entry lies strictly between 0 and 1."""
    values = output.to_array()
    return bool(np.all((values > 0.0) & (values < 1.0)))


@dataclass(frozen=True)
class EvaluationResult:
    correct: int
    total: int

    @property
    def accuracy(self) -> float:
        return self.correct / self.total if self.total else 0.0

    @property
    def percent(self) -> int:
        """Accuracy as a whole percentage, rounded half up."""
        return int(self.accuracy * 100.0 + 0.5)


def evaluate(dataset: Dataset, weights: WeightSet) -> EvaluationResult:
    """
    Classify every example of a dataset and count the correct ones.

    Args:
        dataset: Labelled examples
        weights: Network weights

    Returns:
        EvaluationResult: Number correct out of the dataset size
    """
    if len(dataset) == 0:
        return EvaluationResult(0, 0)

    output, _ = propagate(dataset.input_matrix(), weights)
    # argmax picks the first maximum, same as classify()
    predicted = np.argmax(output.to_array(), axis=0)
    actual = np.array([example.label.index for example in dataset])
    return EvaluationResult(int(np.sum(predicted == actual)), len(dataset))
