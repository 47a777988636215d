"""
gradient_check.py
~~~~~~~~~~~~~~~~~

Finite-difference estimate of the cost gradient, used to validate
back-propagation. Far too slow for training: every checked entry costs
two full cost evaluations.
"""

import logging
from typing import Optional

import numpy as np

from digitnet.config import GRADIENT_CHECKING_EPSILON, MAX_DIMENSION_GRADIENT_CHECKING
from digitnet.cost import cost
from digitnet.dataset import Dataset
from digitnet.matrix import Matrix
from digitnet.weights import WeightSet

logger = logging.getLogger(__name__)


def _estimate_matrix(
    dataset: Dataset,
    weights: WeightSet,
    which: int,
    lambda_: float,
    epsilon: float,
    max_dims: Optional[int]
) -> Matrix:
    target = weights.matrices()[which]
    rows = target.rows if max_dims is None else min(target.rows, max_dims)
    cols = target.cols if max_dims is None else min(target.cols, max_dims)

    estimate = Matrix.from_array(np.full(target.shape, np.nan))
    for row in range(rows):
        for col in range(cols):
            original = target.get(row, col)

            plus = weights.copy()
            plus.matrices()[which].set(row, col, original + epsilon)
            minus = weights.copy()
            minus.matrices()[which].set(row, col, original - epsilon)

            estimate.set(
                row, col,
                (cost(dataset, plus, lambda_) - cost(dataset, minus, lambda_))
                / (2.0 * epsilon)
            )

    logger.debug(f"Estimated {rows * cols} partial(s) of a {target.shape} matrix")
    return estimate


def gradient_check(
    dataset: Dataset,
    weights: WeightSet,
    lambda_: float,
    epsilon: float = GRADIENT_CHECKING_EPSILON,
    max_dims: Optional[int] = MAX_DIMENSION_GRADIENT_CHECKING
) -> WeightSet:
    """
    Estimate dJ/dtheta as ``(J(theta + eps) - J(theta - eps)) / 2eps``,
    one entry at a time.

    Args:
        dataset: Training examples
        weights: Network weights (not modified)
        lambda_: Regularization strength
        epsilon: Perturbation size
        max_dims: Only entries with row and column below this are checked;
            None checks every entry

    Returns:
        WeightSet: Estimates shaped like ``weights``; entries outside the
        checked block are NaN
    """
    if epsilon <= 0:
        raise ValueError(f"epsilon must be positive, got {epsilon}")
    if max_dims is not None and max_dims < 1:
        raise ValueError(f"max_dims must be positive or None, got {max_dims}")

    return WeightSet(
        _estimate_matrix(dataset, weights, 0, lambda_, epsilon, max_dims),
        _estimate_matrix(dataset, weights, 1, lambda_, epsilon, max_dims)
    )


def max_gradient_difference(analytic: WeightSet, estimate: WeightSet) -> float:
    """
    Largest absolute difference between two gradients over the entries
    the estimate covers (NaN entries are skipped).
    """
    worst = 0.0
    for exact, approx in zip(analytic.matrices(), estimate.matrices()):
        approx_values = approx.to_array()
        checked = ~np.isnan(approx_values)
        if np.any(checked):
            difference = np.abs(exact.to_array()[checked] - approx_values[checked])
            worst = max(worst, float(difference.max()))
    return worst
