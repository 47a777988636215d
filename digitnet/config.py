"""
config.py
~~~~~~~~~

Architecture constants and immutable training/gradient-check settings.
"""

import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional, Tuple

# Defaults for the 16x16 pixel digit classifier
DEFAULT_INPUT_SIZE = 256
DEFAULT_HIDDEN_SIZE = 256
DEFAULT_NUM_CLASSES = 10

DEFAULT_SEED = 478978392
DEFAULT_LAMBDA = 1.0
DEFAULT_ALPHA = 0.001
DEFAULT_MAX_ITERATIONS = 5000000
DEFAULT_CONVERGENCE_THRESHOLD = 0.0001
# Stop if the cost grows this many times above the best cost seen
DEFAULT_GROWTH_THRESHOLD = 5.0
DEFAULT_INIT_EPSILON = 1.0

GRADIENT_CHECKING_EPSILON = 0.0001
MAX_DIMENSION_GRADIENT_CHECKING = 10


@dataclass(frozen=True)
class Architecture:
    """
    Layer sizes of the network.

    Args:
        input_size: Number of input units, not counting the bias unit
        hidden_size: Number of hidden units, not counting the bias unit
        num_classes: Number of output units
    """

    input_size: int = DEFAULT_INPUT_SIZE
    hidden_size: int = DEFAULT_HIDDEN_SIZE
    num_classes: int = DEFAULT_NUM_CLASSES

    def __post_init__(self):
        for field in fields(self):
            value = getattr(self, field.name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValueError(
                    f"{field.name} must be a positive integer, got {value!r}"
                )

    @property
    def hidden_shape(self) -> Tuple[int, int]:
        """Shape of the hidden-layer weights, bias column included."""
        return (self.hidden_size, self.input_size + 1)

    @property
    def output_shape(self) -> Tuple[int, int]:
        """Shape of the output-layer weights, bias column included."""
        return (self.num_classes, self.hidden_size + 1)

    def to_dict(self) -> Dict[str, int]:
        return {
            'input_size': self.input_size,
            'hidden_size': self.hidden_size,
            'num_classes': self.num_classes
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'Architecture':
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class TrainingConfig:
    """
    Settings for one gradient-descent run.

    Args:
        lambda_: Regularization strength (>= 0)
        alpha: Learning rate (> 0)
        max_iterations: Iteration cap
        convergence_threshold: Stop when the cost changes by less than this
            between consecutive iterations
        growth_threshold: Stop as diverged when the cost exceeds this
            multiple of the best cost seen
        init_epsilon: Initial weights are drawn from [-init_epsilon, init_epsilon]
        seed: Seed for weight initialization
        report_every: Progress callback period, in iterations
    """

    lambda_: float = DEFAULT_LAMBDA
    alpha: float = DEFAULT_ALPHA
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    convergence_threshold: float = DEFAULT_CONVERGENCE_THRESHOLD
    growth_threshold: float = DEFAULT_GROWTH_THRESHOLD
    init_epsilon: float = DEFAULT_INIT_EPSILON
    seed: Optional[int] = DEFAULT_SEED
    report_every: int = 100

    def __post_init__(self):
        if self.lambda_ < 0:
            raise ValueError(f"lambda must be non-negative, got {self.lambda_}")
        if self.alpha <= 0:
            raise ValueError(f"alpha must be positive, got {self.alpha}")
        if not isinstance(self.max_iterations, int) or self.max_iterations < 1:
            raise ValueError(
                f"max_iterations must be a positive integer, "
                f"got {self.max_iterations!r}"
            )
        if self.convergence_threshold <= 0:
            raise ValueError(
                f"convergence_threshold must be positive, "
                f"got {self.convergence_threshold}"
            )
        if self.growth_threshold <= 1:
            raise ValueError(
                f"growth_threshold must be greater than 1, "
                f"got {self.growth_threshold}"
            )
        if self.init_epsilon <= 0:
            raise ValueError(
                f"init_epsilon must be positive, got {self.init_epsilon}"
            )
        if not isinstance(self.report_every, int) or self.report_every < 1:
            raise ValueError(
                f"report_every must be a positive integer, "
                f"got {self.report_every!r}"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> 'TrainingConfig':
        """
        Build a config from a request body or CLI mapping.

        ``lambda`` is accepted as an alias of ``lambda_``; unknown keys
        are ignored.
        """
        data = dict(data)
        if 'lambda' in data:
            data['lambda_'] = data.pop('lambda')
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class GradientCheckConfig:
    """
    Args:
        epsilon: Finite-difference step
        max_dims: Check only the top-left max_dims x max_dims block of each
            weight matrix; None checks every entry
    """

    epsilon: float = GRADIENT_CHECKING_EPSILON
    max_dims: Optional[int] = MAX_DIMENSION_GRADIENT_CHECKING

    def __post_init__(self):
        if self.epsilon <= 0:
            raise ValueError(f"epsilon must be positive, got {self.epsilon}")
        if self.max_dims is not None and self.max_dims < 1:
            raise ValueError(
                f"max_dims must be positive or None, got {self.max_dims}"
            )


def model_dir_from_env() -> str:
    """Directory holding the SQLite model store."""
    return os.getenv('DIGITNET_MODEL_DIR', 'models')


def autostart_from_env() -> bool:
    """Whether the API server reloads networks and starts cleanup on import."""
    return os.getenv('DIGITNET_AUTOSTART', '1') != '0'
