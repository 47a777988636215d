#!/usr/bin/env python3
"""
Train, check, and evaluate a digit classifier from the command line.

Usage:
    python scripts/train_network.py train data/training.txt thetas.txt
    python scripts/train_network.py check data/training.txt
    python scripts/train_network.py evaluate data/test.txt thetas.txt
    python scripts/train_network.py classify thetas.txt 0011...0100

The train command will:
1. Load the training file
2. Run gradient descent until convergence, divergence, or the iteration cap
3. Write the weight matrices to the output file
"""

import argparse
import os
import sys
import time
from typing import Any, Dict, List, Optional

# Allow running from a checkout without installing the package
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from digitnet.config import Architecture, GradientCheckConfig, TrainingConfig
from digitnet.cost import cost_and_gradient
from digitnet.dataset import Dataset, load_dataset, parse_input_vector
from digitnet.errors import DigitNetError
from digitnet.gradient_check import gradient_check, max_gradient_difference
from digitnet.network import classify, evaluate
from digitnet.trainer import TrainingStatus, train
from digitnet.weights import initialize_weights, load_weights, save_weights

# Largest analytic/numeric gradient difference accepted by the check command
GRADIENT_TOLERANCE = 1e-4


def read_dataset(path: str, architecture: Architecture) -> Dataset:
    """Load a training or classification file."""
    print(f"📂 Loading records from: {path}")
    with open(path) as f:
        dataset = load_dataset(f, architecture.input_size, architecture.num_classes)
    print(f"✅ Loaded {len(dataset)} record(s)")
    return dataset


def print_progress(data: Dict[str, Any]) -> None:
    """Training callback: one line per report period."""
    if data['final']:
        return
    print(
        f"   - iteration {data['iteration']}/{data['max_iterations']}: "
        f"cost {data['cost']:.6f} ({data['elapsed_time']:.1f}s)"
    )


def command_train(args: argparse.Namespace, architecture: Architecture) -> int:
    dataset = read_dataset(args.training_file, architecture)
    config = TrainingConfig(
        lambda_=args.lambda_,
        alpha=args.alpha,
        max_iterations=args.max_iterations,
        seed=args.seed,
        report_every=args.report_every
    )

    print(f"\n🧠 Training {architecture} (alpha={config.alpha}, lambda={config.lambda_})")
    start = time.time()
    result = train(dataset, config, architecture, callback=print_progress)
    elapsed = time.time() - start

    print(
        f"\n🏁 {result.status.value} after {result.iterations} iteration(s) "
        f"in {elapsed:.1f}s, final cost {result.final_cost:.6f}"
    )
    if result.status is TrainingStatus.DIVERGED:
        print("❌ Training diverged; try a smaller learning rate. Weights not saved.")
        return 1

    accuracy = evaluate(dataset, result.weights)
    print(f"📊 Training accuracy: {accuracy.correct}/{accuracy.total} ({accuracy.percent}%)")

    print(f"\n💾 Writing weights to: {args.weights_file}")
    with open(args.weights_file, 'w') as f:
        save_weights(result.weights, f)
    print("✅ Saved")
    return 0


def command_check(args: argparse.Namespace, architecture: Architecture) -> int:
    dataset = read_dataset(args.training_file, architecture)
    check_config = GradientCheckConfig(epsilon=args.epsilon, max_dims=args.max_dims)
    weights = initialize_weights(architecture, seed=args.seed)

    print("\n🔍 Comparing back-propagation with finite differences...")
    _, analytic = cost_and_gradient(dataset, weights, args.lambda_)
    estimate = gradient_check(
        dataset, weights, args.lambda_, check_config.epsilon, check_config.max_dims
    )
    difference = max_gradient_difference(analytic, estimate)
    print(f"   - largest difference: {difference:.3e}")

    if difference > GRADIENT_TOLERANCE:
        print(f"❌ Gradient check failed (tolerance {GRADIENT_TOLERANCE})")
        return 1
    print("✅ Gradient check passed")
    return 0


def command_evaluate(args: argparse.Namespace, architecture: Architecture) -> int:
    dataset = read_dataset(args.data_file, architecture)
    with open(args.weights_file) as f:
        weights = load_weights(f, architecture)

    result = evaluate(dataset, weights)
    print(f"\n{result.correct} vectors out of {result.total} classified correctly!")
    print(f"Percent correctly classified: {result.percent}")
    return 0


def command_classify(args: argparse.Namespace, architecture: Architecture) -> int:
    with open(args.weights_file) as f:
        weights = load_weights(f, architecture)
    inputs = parse_input_vector(args.vector, architecture.input_size)
    print(f"Classified as: {classify(inputs, weights)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    defaults = TrainingConfig()
    check_defaults = GradientCheckConfig()
    arch_defaults = Architecture()

    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument('--input-size', type=int, default=arch_defaults.input_size)
    parser.add_argument('--hidden-size', type=int, default=arch_defaults.hidden_size)
    parser.add_argument('--num-classes', type=int, default=arch_defaults.num_classes)
    subparsers = parser.add_subparsers(dest='command', required=True)

    train_parser = subparsers.add_parser('train', help='train and save weights')
    train_parser.add_argument('training_file')
    train_parser.add_argument('weights_file')
    train_parser.add_argument('--lambda', dest='lambda_', type=float, default=defaults.lambda_)
    train_parser.add_argument('--alpha', type=float, default=defaults.alpha)
    train_parser.add_argument('--max-iterations', type=int, default=defaults.max_iterations)
    train_parser.add_argument('--seed', type=int, default=defaults.seed)
    train_parser.add_argument('--report-every', type=int, default=1000)
    train_parser.set_defaults(handler=command_train)

    check_parser = subparsers.add_parser('check', help='validate back-propagation')
    check_parser.add_argument('training_file')
    check_parser.add_argument('--lambda', dest='lambda_', type=float, default=defaults.lambda_)
    check_parser.add_argument('--epsilon', type=float, default=check_defaults.epsilon)
    check_parser.add_argument('--max-dims', type=int, default=check_defaults.max_dims)
    check_parser.add_argument('--seed', type=int, default=defaults.seed)
    check_parser.set_defaults(handler=command_check)

    evaluate_parser = subparsers.add_parser('evaluate', help='classify a labelled file')
    evaluate_parser.add_argument('data_file')
    evaluate_parser.add_argument('weights_file')
    evaluate_parser.set_defaults(handler=command_evaluate)

    classify_parser = subparsers.add_parser('classify', help='classify one vector')
    classify_parser.add_argument('weights_file')
    classify_parser.add_argument('vector')
    classify_parser.set_defaults(handler=command_classify)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        architecture = Architecture(args.input_size, args.hidden_size, args.num_classes)
        return args.handler(args, architecture)
    except (DigitNetError, ValueError, OSError) as e:
        print(f"\n❌ Error: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
