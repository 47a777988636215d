"""
cost.py
~~~~~~~

Regularized cross-entropy cost J(theta) and its gradient by
back-propagation.

    J = -(1/m) sum [y log h + (1 - y) log(1 - h)]
        + (lambda / 2m) sum theta^2            (bias columns excluded)

The cost and the gradient are sums over examples plus a shared
regularization term, so a caller may split a dataset, compute the data
terms of each part and add them up.
"""

from typing import Tuple

import numpy as np

from digitnet.dataset import Dataset
from digitnet.errors import DimensionMismatchError
from digitnet.matrix import Matrix
from digitnet.network import logistic_gradient, propagate
from digitnet.weights import WeightSet


def _check_inputs(dataset: Dataset, weights: WeightSet, lambda_: float) -> None:
    if len(dataset) == 0:
        raise ValueError("Cannot compute the cost of an empty dataset")
    if lambda_ < 0:
        raise ValueError(f"lambda must be non-negative, got {lambda_}")
    architecture = weights.architecture
    if dataset.input_size != architecture.input_size:
        raise DimensionMismatchError(
            f"Dataset input size {dataset.input_size} does not match "
            f"network input size {architecture.input_size}"
        )
    if dataset.num_classes != architecture.num_classes:
        raise DimensionMismatchError(
            f"Dataset has {dataset.num_classes} classes, network has "
            f"{architecture.num_classes} outputs"
        )


def regularization_term(weights: WeightSet, lambda_: float, m: int) -> float:
    """(lambda / 2m) times the sum of squared non-bias weights."""
    if lambda_ == 0:
        return 0.0
    squares = sum(
        theta.sum_squares(skip_first_column=True)
        for theta in weights.matrices()
    )
    return lambda_ / (2.0 * m) * squares


def _cross_entropy(output: Matrix, labels: Matrix) -> float:
    """Unregularized cost summed over examples and classes (not averaged)."""
    h = output.to_array()
    y = labels.to_array()
    return float(-np.sum(y * np.log(h) + (1.0 - y) * np.log(1.0 - h)))


def cost(dataset: Dataset, weights: WeightSet, lambda_: float) -> float:
    """
    Compute J(theta) without the gradient.

    Args:
        dataset: Training examples
        weights: Network weights
        lambda_: Regularization strength

    Returns:
        float: The regularized cost
    """
    _check_inputs(dataset, weights, lambda_)
    m = len(dataset)
    output, _ = propagate(dataset.input_matrix(), weights)
    return _cross_entropy(output, dataset.label_matrix()) / m + \
        regularization_term(weights, lambda_, m)


def cost_and_gradient(
    dataset: Dataset,
    weights: WeightSet,
    lambda_: float
) -> Tuple[float, WeightSet]:
    """
    Compute J(theta) and its gradient by back-propagation.

    Every example is propagated forward; the output error ``h - y`` is
    pushed back through the output-layer weights (bias row dropped) and
    scaled by the logistic derivative of the hidden activation. Outer
    products of each layer's error with its biased input are summed over
    the examples, averaged, and ``(lambda/m) * theta`` is added to every
    entry except the bias column.

    Args:
        dataset: Training examples
        weights: Network weights (not modified)
        lambda_: Regularization strength

    Returns:
        (cost, gradients): The cost and a WeightSet of partial derivatives
        with the same shapes as ``weights``

    Raises:
        ValueError: If the dataset is empty or lambda is negative
        DimensionMismatchError: If the dataset doesn't fit the network
    """
    _check_inputs(dataset, weights, lambda_)
    m = len(dataset)

    labels = dataset.label_matrix()
    output, trace = propagate(dataset.input_matrix(), weights)

    j = _cross_entropy(output, labels) / m + regularization_term(weights, lambda_, m)

    # Output-layer error, one column per example
    output_error = output.subtract(labels)

    # Hidden-layer error: drop the bias row after back-propagating
    hidden_error = weights.theta_output.transpose().multiply(output_error) \
        .without_first_row() \
        .hadamard(trace.hidden_activation.apply(logistic_gradient))

    # Summing over columns of (error x activation^T) accumulates the
    # per-example outer products
    output_delta = output_error.multiply(trace.biased_hidden.transpose())
    hidden_delta = hidden_error.multiply(trace.biased_input.transpose())

    gradients = []
    for delta, theta in ((hidden_delta, weights.theta_hidden),
                         (output_delta, weights.theta_output)):
        gradient = delta.scale(1.0 / m)
        if lambda_ != 0:
            gradient = gradient.add(theta.without_bias_column().scale(lambda_ / m))
        gradients.append(gradient)

    return j, WeightSet(*gradients)
