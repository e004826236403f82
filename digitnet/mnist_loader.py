"""
mnist_loader.py
~~~~~~~~~~~~~~~

Reading MNIST-style CSV rows into training labels.

Each row is ``label,pixel_0,...,pixel_{N-1}`` where ``label`` is the digit
and each pixel is an integer in [0, 255]. Pixels are normalized into
[0.01, 1.0] so no input is exactly zero.
"""

import logging
from typing import IO, Iterable, List, Sequence, Tuple

import numpy as np

from digitnet.config import INPUT_SIZE, OUTPUT_SIZE
from digitnet.matrix import Matrix
from digitnet.network import TrainingLabel

logger = logging.getLogger(__name__)

MAX_PIXEL = 255


def normalize_pixel(pixel: int) -> float:
    """
    Scale a pixel in [0, 255] into [0.01, 1.0].

    Args:
        pixel: Raw pixel intensity

    Returns:
        float: ``pixel / 255 * 0.99 + 0.01``
    """
    return (pixel / 255.0) * 0.99 + 0.01


def parse_row(
    line: str,
    input_size: int = INPUT_SIZE,
    output_size: int = OUTPUT_SIZE
) -> TrainingLabel:
    """
    Parse one CSV row into a training label.

    Args:
        line: ``label,pixel_0,...`` with exactly ``input_size`` pixels
        input_size: Number of pixels expected
        output_size: Number of classes

    Returns:
        TrainingLabel: The parsed example

    Raises:
        ValueError: If a token is not an integer, the label or a pixel is
            out of range, or the pixel count is wrong
    """
    tokens = line.strip().split(',')
    if len(tokens) != input_size + 1:
        raise ValueError(
            f"Expected a label and {input_size} pixels, got {len(tokens)} values"
        )

    try:
        values = [int(token) for token in tokens]
    except ValueError as e:
        raise ValueError(f"Row contains a non-integer value: {e}") from None

    class_index = values[0]
    if not 0 <= class_index < output_size:
        raise ValueError(f"Label {class_index} is outside [0, {output_size})")

    input_vector = pixels_to_input(values[1:], input_size)
    return TrainingLabel.from_class_index(class_index, input_vector, output_size)


def pixels_to_input(pixels: Sequence[int], input_size: int = INPUT_SIZE) -> Matrix:
    """
    Turn raw pixels into a normalized ``input_size x 1`` input vector.

    Raises:
        ValueError: If the pixel count is wrong or a pixel is not an
            integer in [0, 255]
    """
    if len(pixels) != input_size:
        raise ValueError(f"Expected {input_size} pixels, got {len(pixels)}")

    for position, pixel in enumerate(pixels):
        if isinstance(pixel, bool) or not isinstance(pixel, (int, np.integer)):
            raise ValueError(f"Pixel {position} is not an integer: {pixel!r}")
        if not 0 <= pixel <= MAX_PIXEL:
            raise ValueError(
                f"Pixel {position} has value {pixel}, expected [0, {MAX_PIXEL}]"
            )

    return Matrix.column_vector(normalize_pixel(pixel) for pixel in pixels)


def parse_training_set(
    lines: Iterable[str],
    input_size: int = INPUT_SIZE,
    output_size: int = OUTPUT_SIZE
) -> List[TrainingLabel]:
    """
    Parse every non-blank line into a training label, keeping their order.

    Raises:
        ValueError: If a line is malformed; the message names its line number
    """
    training_set = []

    for line_number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            training_set.append(parse_row(line, input_size, output_size))
        except ValueError as e:
            raise ValueError(f"Line {line_number}: {e}") from e

    logger.debug(f"Parsed {len(training_set)} training labels")
    return training_set


def load_csv(
    path: str,
    input_size: int = INPUT_SIZE,
    output_size: int = OUTPUT_SIZE
) -> List[TrainingLabel]:
    """Parse the CSV file at ``path``."""
    with open(path, 'r', encoding='utf-8') as f:
        training_set = parse_training_set(f, input_size, output_size)

    logger.info(f"Loaded {len(training_set)} rows from {path}")
    return training_set


def to_pixel_values(images: np.ndarray) -> np.ndarray:
    """
    Convert an image array to integer pixels in [0, 255].

    Float arrays are assumed to hold intensities in [0, 1] (the layout of
    ``mnist.npz``) and are rescaled; integer arrays are used as they are.
    """
    images = np.asarray(images)
    if np.issubdtype(images.dtype, np.floating):
        images = np.rint(np.clip(images, 0.0, 1.0) * MAX_PIXEL)
    return images.astype(np.int64).reshape(len(images), -1)


def write_csv_rows(
    images: np.ndarray,
    labels: Sequence[int],
    stream: IO[str]
) -> int:
    """
    Write images and labels as ``label,pixel_0,...`` rows.

    Args:
        images: Array of shape (count, pixels) or (count, height, width)
        labels: One digit per image
        stream: Text stream to write to

    Returns:
        int: Number of rows written

    Raises:
        ValueError: If there are not as many labels as images
    """
    pixels = to_pixel_values(images)
    labels = np.asarray(labels).astype(np.int64).reshape(-1)
    if len(pixels) != len(labels):
        raise ValueError(
            f"Got {len(pixels)} images but {len(labels)} labels"
        )

    for label, row in zip(labels, pixels):
        stream.write(f"{int(label)},{','.join(str(int(p)) for p in row)}\n")

    return len(labels)


def load_npz(path: str, split: str = 'test') -> Tuple[np.ndarray, np.ndarray]:
    """
    Load one split (``train``, ``val`` or ``test``) of an ``mnist.npz`` archive.

    The archive uses the keys ``<split>_images`` and ``<split>_labels``.

    Raises:
        ValueError: If the split is unknown
        KeyError: If the archive does not contain the split
    """
    if split not in ('train', 'val', 'test'):
        raise ValueError(f"Unknown split {split!r}, expected train, val or test")

    with np.load(path) as data:
        images = data[f'{split}_images']
        labels = data[f'{split}_labels']

    logger.info(f"Loaded {len(labels)} {split} images from {path}")
    return images, labels
