"""
trainer.py
~~~~~~~~~~

Batch gradient descent for the one-hidden-layer network.

Each iteration computes the cost and gradient on the full dataset, checks
the stopping rules, then updates ``theta := theta - alpha * grad``.
A run ends in exactly one terminal status:

- ``CONVERGED``: the cost changed by less than the convergence threshold
- ``DIVERGED``: the cost rose above ``growth_threshold`` times the best
  cost seen (or stopped being finite)
- ``MAX_ITERATIONS_REACHED``: the iteration cap was hit
- ``CANCELLED``: the caller's cancellation check returned True
"""

import enum
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import numpy as np

from digitnet.config import Architecture, DEFAULT_HIDDEN_SIZE, TrainingConfig
from digitnet.cost import cost, cost_and_gradient
from digitnet.dataset import Dataset
from digitnet.weights import WeightSet, initialize_weights

logger = logging.getLogger(__name__)


class TrainingStatus(enum.Enum):
    CONVERGED = 'converged'
    DIVERGED = 'diverged'
    MAX_ITERATIONS_REACHED = 'max_iterations_reached'
    CANCELLED = 'cancelled'


@dataclass(frozen=True)
class TrainingResult:
    """
    Outcome of a training run.

    Args:
        weights: Weights when the run stopped
        status: Terminal status
        final_cost: Cost of ``weights``
        iterations: Number of cost/gradient evaluations performed
    """

    weights: WeightSet
    status: TrainingStatus
    final_cost: float
    iterations: int

    @property
    def succeeded(self) -> bool:
        return self.status in (
            TrainingStatus.CONVERGED,
            TrainingStatus.MAX_ITERATIONS_REACHED
        )


def _descend(weights: WeightSet, gradients: WeightSet, alpha: float) -> WeightSet:
    return WeightSet(
        weights.theta_hidden.subtract(gradients.theta_hidden.scale(alpha)),
        weights.theta_output.subtract(gradients.theta_output.scale(alpha))
    )


def train(
    dataset: Dataset,
    config: Optional[TrainingConfig] = None,
    architecture: Optional[Architecture] = None,
    initial_weights: Optional[WeightSet] = None,
    rng: Optional[np.random.Generator] = None,
    callback: Optional[Callable[[Dict[str, Any]], None]] = None,
    yield_func: Optional[Callable[[], None]] = None,
    should_cancel: Optional[Callable[[], bool]] = None
) -> TrainingResult:
    """
    Train a network on a dataset with batch gradient descent.

    Args:
        dataset: Training examples (not modified)
        config: Learning rate, regularization and stopping settings
        architecture: Layer sizes; defaults to the dataset's input size and
            class count with the default hidden size
        initial_weights: Start from these weights instead of random ones
        rng: Generator for weight initialization; defaults to one seeded
            with ``config.seed``
        callback: Called with a progress dict every ``config.report_every``
            iterations and once at the end
        yield_func: Called once per iteration so a cooperative scheduler
            can run other tasks
        should_cancel: Checked before every iteration; returning True ends
            the run with ``CANCELLED``

    Returns:
        TrainingResult: Final weights, terminal status, final cost and
        iteration count

    Example:
        >>> result = train(dataset, TrainingConfig(alpha=0.5, lambda_=0.0))
        >>> result.status
        <TrainingStatus.CONVERGED: 'converged'>
    """
    if config is None:
        config = TrainingConfig()
    if len(dataset) == 0:
        raise ValueError("Cannot train on an empty dataset")

    if initial_weights is not None:
        weights = initial_weights.copy()
    else:
        if architecture is None:
            architecture = Architecture(
                input_size=dataset.input_size,
                hidden_size=DEFAULT_HIDDEN_SIZE,
                num_classes=dataset.num_classes
            )
        if rng is None:
            rng = np.random.default_rng(config.seed)
        weights = initialize_weights(architecture, rng, config.init_epsilon)

    logger.info(
        f"Training on {len(dataset)} example(s): architecture "
        f"{weights.architecture.to_dict()}, alpha={config.alpha}, "
        f"lambda={config.lambda_}, max_iterations={config.max_iterations}"
    )

    start_time = time.time()
    best_cost = math.inf
    previous_cost = None
    current_cost = None
    status = None
    iteration = 0

    def report(final: bool = False) -> None:
        if callback is None:
            return
        callback({
            'iteration': iteration,
            'max_iterations': config.max_iterations,
            'cost': current_cost,
            'best_cost': best_cost,
            'elapsed_time': time.time() - start_time,
            'status': status.value if status else None,
            'final': final
        })

    while iteration < config.max_iterations:
        if should_cancel is not None and should_cancel():
            status = TrainingStatus.CANCELLED
            break

        current_cost, gradients = cost_and_gradient(dataset, weights, config.lambda_)
        iteration += 1

        if not math.isfinite(current_cost) or \
                current_cost > config.growth_threshold * best_cost:
            status = TrainingStatus.DIVERGED
            break
        best_cost = min(best_cost, current_cost)

        if previous_cost is not None and \
                abs(previous_cost - current_cost) < config.convergence_threshold:
            status = TrainingStatus.CONVERGED
            break
        previous_cost = current_cost

        weights = _descend(weights, gradients, config.alpha)

        if iteration % config.report_every == 0:
            logger.debug(f"Iteration {iteration}: cost {current_cost:.6f}")
            report()
        if yield_func is not None:
            yield_func()
    else:
        status = TrainingStatus.MAX_ITERATIONS_REACHED

    # The last update (or a cancellation before any iteration) leaves the
    # weights ahead of the last computed cost
    if status in (TrainingStatus.MAX_ITERATIONS_REACHED, TrainingStatus.CANCELLED):
        current_cost = cost(dataset, weights, config.lambda_)

    if status is TrainingStatus.DIVERGED:
        logger.warning(
            f"Training diverged at iteration {iteration}: cost {current_cost} "
            f"exceeds {config.growth_threshold} x best cost {best_cost}"
        )
    else:
        logger.info(
            f"Training finished after {iteration} iteration(s): "
            f"{status.value}, cost {current_cost:.6f}"
        )

    report(final=True)
    return TrainingResult(weights, status, current_cost, iteration)
