"""
digitnet package
~~~~~~~~~~~~~~~~

One-hidden-layer neural network for classifying binary pixel vectors
into digit classes. Contains the matrix container, training-file loader,
forward propagation, cost/gradient engine, gradient checker, trainer,
weight persistence, and API server.
"""

__version__ = "1.0.0"
