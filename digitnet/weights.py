"""
weights.py
~~~~~~~~~~

Plain-text format for network weights.

Matrices are written one after the other in row-major order. Every entry is
the shortest decimal string that round-trips the double (``repr(float)``)
followed by a single space, and a newline separates consecutive matrices::

    0.25 -0.5 0.125 0.75
    -0.375 0.5

Reading splits the text on the single space character and consumes exactly as
many tokens as the expected shapes require; anything after that is ignored.
Every consumed token must parse as a float, so a doubled space is an error.
"""

import logging
from typing import Iterator, List, Sequence, Tuple

import numpy as np

from digitnet.errors import PersistenceError
from digitnet.matrix import Matrix

logger = logging.getLogger(__name__)


def dumps(matrices: Sequence[Matrix]) -> str:
    """
    Serialize matrices to the weight text format.

    Args:
        matrices: Matrices to write, in order

    Returns:
        str: The serialized weights
    """
    return '\n'.join(
        ''.join(f"{value!r} " for value in matrix.entries())
        for matrix in matrices
    )


def loads(text: str, shapes: Sequence[Tuple[int, int]]) -> List[Matrix]:
    """
    Parse weight text into new matrices of the given shapes.

    Args:
        text: Serialized weights
        shapes: (rows, cols) of each matrix, in the order they were written

    Returns:
        list: One new Matrix per shape

    Raises:
        PersistenceError: If a token is not a float or the text ends early
    """
    tokens = _tokens(text)
    matrices = []

    for index, (rows, cols) in enumerate(shapes):
        values = np.empty((rows, cols), dtype=np.float64)
        for i in range(rows):
            for j in range(cols):
                try:
                    token = next(tokens)
                except StopIteration:
                    raise PersistenceError(
                        f"Weights ended early: matrix {index} ({rows}x{cols}) "
                        f"is missing entry ({i}, {j})"
                    ) from None
                try:
                    values[i, j] = float(token)
                except ValueError:
                    raise PersistenceError(
                        f"Unparsable weight {token.strip()!r} at entry ({i}, {j}) "
                        f"of matrix {index}"
                    ) from None
        matrices.append(Matrix(rows, cols, values))

    return matrices


def dump(path: str, matrices: Sequence[Matrix]) -> None:
    """
    Write matrices to ``path`` in the weight text format.

    Raises:
        PersistenceError: If the file cannot be written
    """
    text = dumps(matrices)
    try:
        with open(path, 'w', encoding='utf-8') as f:
            f.write(text)
    except OSError as e:
        raise PersistenceError(f"Unable to write weights to {path}: {e}") from e

    logger.debug(f"Wrote {len(matrices)} weight matrices to {path}")


def load(path: str, shapes: Sequence[Tuple[int, int]]) -> List[Matrix]:
    """
    Read matrices of the given shapes from ``path``.

    Raises:
        PersistenceError: If the file cannot be read or parsed
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise PersistenceError(f"Unable to read weights from {path}: {e}") from e

    return loads(text, shapes)


def _tokens(text: str) -> Iterator[str]:
    # The newline between matrices stays attached to the next token, which
    # float() accepts. An empty token means a doubled separator.
    return iter(text.split(' '))
