"""
dataset.py
~~~~~~~~~~

Training/classification file loader.

Each record is ``<binary digits>:<class index>``. Blank lines and lines
starting with ``#`` are ignored. Input vectors are stored without a bias
unit; the network adds it during forward propagation.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional, Sequence, TextIO, Tuple

import numpy as np

from digitnet.config import DEFAULT_INPUT_SIZE, DEFAULT_NUM_CLASSES
from digitnet.errors import MalformedRecordError
from digitnet.matrix import Matrix

logger = logging.getLogger(__name__)

COMMENT_PREFIX = '#'
RECORD_SEPARATOR = ':'


@dataclass(frozen=True)
class Label:
    """
    A class label.

    The class index and its one-hot vector are two views of the same value;
    only the index is stored.
    """

    index: int
    num_classes: int

    def __post_init__(self):
        if not 0 <= self.index < self.num_classes:
            raise ValueError(
                f"Class index {self.index} outside [0, {self.num_classes})"
            )

    def one_hot(self) -> Matrix:
        """num_classes x 1 vector with a single 1 at the class index."""
        vector = Matrix(self.num_classes, 1)
        vector.set(self.index, 0, 1.0)
        return vector

    @classmethod
    def from_one_hot(cls, vector: Matrix) -> 'Label':
        """Recover the label from a one-hot column vector."""
        values = vector.to_array()
        if vector.cols != 1 or np.count_nonzero(values) != 1 or values.max() != 1.0:
            raise ValueError("Vector is not a one-hot column vector")
        return cls(vector.argmax_row(), vector.rows)


@dataclass(frozen=True)
class TrainingExample:
    """An input vector of 0/1 entries (no bias unit) and its label."""

    inputs: Tuple[int, ...]
    label: Label

    def input_vector(self) -> Matrix:
        return Matrix.column(self.inputs)


class Dataset(Sequence):
    """
    Ordered, immutable collection of training examples.

    Args:
        examples: The examples, all with the same input dimension
        input_size: Input dimension
        num_classes: Number of classes
    """

    def __init__(
        self,
        examples: Iterable[TrainingExample],
        input_size: int = DEFAULT_INPUT_SIZE,
        num_classes: int = DEFAULT_NUM_CLASSES
    ):
        self._examples = tuple(examples)
        self.input_size = input_size
        self.num_classes = num_classes
        for example in self._examples:
            if len(example.inputs) != input_size:
                raise ValueError(
                    f"Example has {len(example.inputs)} inputs, "
                    f"expected {input_size}"
                )
            if example.label.num_classes != num_classes:
                raise ValueError(
                    f"Example label has {example.label.num_classes} classes, "
                    f"expected {num_classes}"
                )

    def __len__(self) -> int:
        return len(self._examples)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return Dataset(self._examples[index], self.input_size, self.num_classes)
        return self._examples[index]

    def __iter__(self) -> Iterator[TrainingExample]:
        return iter(self._examples)

    def __repr__(self) -> str:
        return (
            f"Dataset({len(self)} examples, input_size={self.input_size}, "
            f"num_classes={self.num_classes})"
        )

    def input_matrix(self) -> Matrix:
        """input_size x m matrix, one example per column."""
        values = np.array([example.inputs for example in self._examples],
                          dtype=np.float64)
        return Matrix.from_array(values.reshape(len(self), self.input_size).T)

    def label_matrix(self) -> Matrix:
        """num_classes x m matrix of one-hot labels, one example per column."""
        values = np.zeros((self.num_classes, len(self)), dtype=np.float64)
        for column, example in enumerate(self._examples):
            values[example.label.index, column] = 1.0
        return Matrix.from_array(values)


def parse_input_vector(
    text: str,
    input_size: int = DEFAULT_INPUT_SIZE,
    line_number: Optional[int] = None
) -> Tuple[int, ...]:
    """
    Parse a string of '0'/'1' characters into an input vector.

    Raises:
        MalformedRecordError: On a wrong length or a non-binary character
    """
    text = text.strip()
    if len(text) != input_size:
        raise MalformedRecordError(
            f"expected {input_size} binary digits, got {len(text)}",
            line_number
        )
    for position, char in enumerate(text):
        if char not in '01':
            raise MalformedRecordError(
                f"invalid character {char!r} at position {position}",
                line_number
            )
    return tuple(1 if char == '1' else 0 for char in text)


def parse_label(
    text: str,
    num_classes: int = DEFAULT_NUM_CLASSES,
    line_number: Optional[int] = None
) -> Label:
    """
    Parse a class index.

    Raises:
        MalformedRecordError: If the text is not an integer in range
    """
    text = text.strip()
    if not (text.isascii() and text.isdigit()):
        raise MalformedRecordError(
            f"label {text!r} is not a non-negative integer", line_number
        )
    index = int(text)
    if not 0 <= index < num_classes:
        raise MalformedRecordError(
            f"label {index} outside [0, {num_classes})", line_number
        )
    return Label(index, num_classes)


def parse_record(
    line: str,
    input_size: int = DEFAULT_INPUT_SIZE,
    num_classes: int = DEFAULT_NUM_CLASSES,
    line_number: Optional[int] = None
) -> TrainingExample:
    """Parse one ``<digits>:<label>`` record."""
    digits, separator, label = line.strip().partition(RECORD_SEPARATOR)
    if not separator:
        raise MalformedRecordError(
            f"missing '{RECORD_SEPARATOR}' separator", line_number
        )
    return TrainingExample(
        inputs=parse_input_vector(digits, input_size, line_number),
        label=parse_label(label, num_classes, line_number)
    )


def load_dataset(
    stream: Iterable[str],
    input_size: int = DEFAULT_INPUT_SIZE,
    num_classes: int = DEFAULT_NUM_CLASSES
) -> Dataset:
    """
    Load a dataset from a text stream (or any iterable of lines).

    Args:
        stream: Lines of a training or classification file
        input_size: Required number of binary digits per record
        num_classes: Number of classes; labels must be below this

    Returns:
        Dataset: The records in file order

    Raises:
        MalformedRecordError: On the first bad record, with its line number

    Example:
        >>> with open('training.txt') as f:
        ...     dataset = load_dataset(f)
    """
    examples = []
    for line_number, line in enumerate(stream, start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith(COMMENT_PREFIX):
            continue
        examples.append(
            parse_record(stripped, input_size, num_classes, line_number)
        )

    logger.debug(f"Parsed {len(examples)} record(s)")
    return Dataset(examples, input_size, num_classes)


def load_dataset_from_text(
    text: str,
    input_size: int = DEFAULT_INPUT_SIZE,
    num_classes: int = DEFAULT_NUM_CLASSES
) -> Dataset:
    return load_dataset(text.splitlines(), input_size, num_classes)


def format_record(inputs: Sequence[int], label: int) -> str:
    """Format an input vector and class index as a record line."""
    digits = ''.join('1' if value else '0' for value in inputs)
    return f"{digits}{RECORD_SEPARATOR}{int(label)}"


def write_record(sink: TextIO, inputs: Sequence[int], label: int) -> None:
    """
    Append one record to a training file.

    The record is surrounded by blank lines so it stays separate from
    whatever the file already holds.
    """
    sink.write('\n' + format_record(inputs, label) + '\n\n')
