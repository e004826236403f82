"""
matrix.py
~~~~~~~~~

Dense, fixed-shape matrix of double-precision floats.

A ``Matrix`` is created with a number of rows and columns that never change
afterwards. Every arithmetic operation leaves its operands untouched and
returns a new ``Matrix``; the only mutator is ``set`` (``m[i, j] = v``).
Shapes are validated before any arithmetic: incompatible operands raise
``DimensionMismatchError`` and out-of-range indices raise ``IndexError``.
"""

import numbers
import operator
from typing import Callable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from digitnet.errors import DimensionMismatchError


class Matrix:
    """
    Matrix of ``rows`` x ``cols`` float64 entries backed by a numpy array.

    Operators:
        ``a + b``, ``a - b``  elementwise, identical shapes
        ``a * b``             Hadamard product when ``b`` is a Matrix
        ``a * k``, ``k * a``  scalar multiplication
        ``a @ b``             matrix product (``N x K`` by ``K x M``)
        ``-a``                negation
    """

    # Keep numpy scalars from broadcasting into the matrix; they defer to
    # __rmul__ and friends instead.
    __array_ufunc__ = None

    def __init__(self, rows: int, cols: int, values=None):
        """
        Create a matrix.

        Args:
            rows: Number of rows (positive)
            cols: Number of columns (positive)
            values: Nested sequence or numpy array of shape (rows, cols).
                Zeros when omitted.

        Raises:
            ValueError: If a dimension is not a positive integer
            DimensionMismatchError: If ``values`` does not have the shape
                (rows, cols)
        """
        for name, size in (('rows', rows), ('cols', cols)):
            if isinstance(size, bool) or not isinstance(size, numbers.Integral) or size < 1:
                raise ValueError(f"{name} must be a positive integer, got {size!r}")

        self._rows = int(rows)
        self._cols = int(cols)

        if values is None:
            self._data = np.zeros((self._rows, self._cols), dtype=np.float64)
        else:
            self._data = _to_array(values, self._rows, self._cols)

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def _wrap(cls, array: np.ndarray) -> 'Matrix':
        """Adopt a freshly computed 2-D float64 array without copying it."""
        result = cls.__new__(cls)
        result._rows, result._cols = array.shape
        result._data = array
        return result

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[float]]) -> 'Matrix':
        """
        Build a matrix from a list of rows.

        Raises:
            ValueError: If there are no rows or the first row is empty
            DimensionMismatchError: If the rows are not all the same length
        """
        rows = [list(row) for row in rows]
        if not rows or not rows[0]:
            raise ValueError("Cannot build a matrix from empty rows")
        return cls(len(rows), len(rows[0]), rows)

    @classmethod
    def column_vector(cls, values: Sequence[float]) -> 'Matrix':
        """Build an ``N x 1`` matrix from a flat sequence of ``N`` values."""
        values = [float(value) for value in values]
        if not values:
            raise ValueError("Cannot build a column vector from no values")
        return cls(len(values), 1, [[value] for value in values])

    @classmethod
    def random_uniform(
        cls,
        rows: int,
        cols: int,
        low: float = -1.0,
        high: float = 1.0,
        rng: Optional[np.random.Generator] = None
    ) -> 'Matrix':
        """
        Build a matrix of independent draws from ``U[low, high]``.

        An entry that comes out as exactly ``0.0`` is bumped to ``0.01`` so
        that no weight starts dead.

        Args:
            rows: Number of rows
            cols: Number of columns
            low: Lower bound of the distribution
            high: Upper bound of the distribution
            rng: Optional generator, for reproducible draws

        Returns:
            Matrix: The random matrix
        """
        if low > high:
            raise ValueError(f"low ({low}) must not exceed high ({high})")

        result = cls(rows, cols)
        generator = rng if rng is not None else np.random.default_rng()
        values = generator.uniform(low, high, size=(result.rows, result.cols))
        values[values == 0.0] += 0.01
        result._data = values.astype(np.float64)
        return result

    # ------------------------------------------------------------------
    # Shape and element access
    # ------------------------------------------------------------------

    @property
    def rows(self) -> int:
        return self._rows

    @property
    def cols(self) -> int:
        return self._cols

    @property
    def shape(self) -> Tuple[int, int]:
        return self._rows, self._cols

    def _check_index(self, row: int, col: int) -> Tuple[int, int]:
        row = operator.index(row)
        col = operator.index(col)
        if not 0 <= row < self._rows or not 0 <= col < self._cols:
            raise IndexError(
                f"Index ({row}, {col}) is out of range for a "
                f"{self._rows}x{self._cols} matrix"
            )
        return row, col

    def get(self, row: int, col: int) -> float:
        row, col = self._check_index(row, col)
        return float(self._data[row, col])

    def set(self, row: int, col: int, value: float) -> None:
        row, col = self._check_index(row, col)
        self._data[row, col] = float(value)

    def __getitem__(self, key: Tuple[int, int]) -> float:
        row, col = _split_key(key)
        return self.get(row, col)

    def __setitem__(self, key: Tuple[int, int], value: float) -> None:
        row, col = _split_key(key)
        self.set(row, col, value)

    def entries(self) -> Iterator[float]:
        """Yield every entry in row-major order."""
        for value in self._data.flat:
            yield float(value)

    def to_list(self) -> List[List[float]]:
        return self._data.tolist()

    def to_numpy(self) -> np.ndarray:
        """Return a copy of the entries as a ``(rows, cols)`` array."""
        return self._data.copy()

    def copy(self) -> 'Matrix':
        return Matrix._wrap(self._data.copy())

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def _require_same_shape(self, other: 'Matrix', operation: str) -> None:
        if not isinstance(other, Matrix):
            raise TypeError(f"Cannot {operation} a Matrix and {type(other).__name__}")
        if other.shape != self.shape:
            raise DimensionMismatchError(
                f"Cannot {operation} a {self._rows}x{self._cols} matrix "
                f"and a {other.rows}x{other.cols} matrix"
            )

    def transpose(self) -> 'Matrix':
        """Return the ``cols x rows`` matrix with ``result[j, i] == self[i, j]``."""
        return Matrix._wrap(self._data.T.copy())

    @property
    def T(self) -> 'Matrix':
        return self.transpose()

    def add(self, other: 'Matrix') -> 'Matrix':
        self._require_same_shape(other, 'add')
        return Matrix._wrap(self._data + other._data)

    def subtract(self, other: 'Matrix') -> 'Matrix':
        self._require_same_shape(other, 'subtract')
        return Matrix._wrap(self._data - other._data)

    def hadamard(self, other: 'Matrix') -> 'Matrix':
        """Elementwise product of two matrices of the same shape."""
        self._require_same_shape(other, 'take the Hadamard product of')
        return Matrix._wrap(self._data * other._data)

    def scale(self, scalar: float) -> 'Matrix':
        return Matrix._wrap(self._data * float(scalar))

    def negate(self) -> 'Matrix':
        return self.scale(-1.0)

    def multiply(self, other: 'Matrix') -> 'Matrix':
        """
        Matrix product of ``self`` (N x K) and ``other`` (K x M).

        Returns:
            Matrix: A new N x M matrix

        Raises:
            DimensionMismatchError: If the inner dimensions differ
        """
        if not isinstance(other, Matrix):
            raise TypeError(f"Cannot multiply a Matrix by {type(other).__name__}")
        if self._cols != other.rows:
            raise DimensionMismatchError(
                f"Cannot multiply a {self._rows}x{self._cols} matrix "
                f"by a {other.rows}x{other.cols} matrix"
            )
        return Matrix._wrap(np.dot(self._data, other._data))

    def apply(self, func: Callable[[np.ndarray], np.ndarray]) -> 'Matrix':
        """Map a vectorized function over every entry, keeping the shape."""
        values = np.asarray(func(self._data.copy()), dtype=np.float64)
        if values.shape != self.shape:
            raise DimensionMismatchError(
                f"Function changed the shape from {self.shape} to {values.shape}"
            )
        return Matrix._wrap(values)

    def allclose(self, other: 'Matrix', rtol: float = 1e-9, atol: float = 1e-12) -> bool:
        if not isinstance(other, Matrix) or other.shape != self.shape:
            return False
        return bool(np.allclose(self._data, other._data, rtol=rtol, atol=atol))

    def __add__(self, other):
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.add(other)

    def __sub__(self, other):
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.subtract(other)

    def __mul__(self, other):
        if isinstance(other, Matrix):
            return self.hadamard(other)
        if isinstance(other, numbers.Real):
            return self.scale(other)
        return NotImplemented

    def __rmul__(self, other):
        if isinstance(other, numbers.Real):
            return self.scale(other)
        return NotImplemented

    def __matmul__(self, other):
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.multiply(other)

    def __neg__(self) -> 'Matrix':
        return self.negate()

    def __eq__(self, other) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.shape == other.shape and bool(np.array_equal(self._data, other._data))

    # ------------------------------------------------------------------
    # Printing
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        cells = [[repr(float(value)) for value in row] for row in self._data]
        width = max(len(cell) for row in cells for cell in row)
        return '\n'.join(
            ' '.join(cell.rjust(width) for cell in row)
            for row in cells
        )

    def __repr__(self) -> str:
        return f"Matrix(rows={self._rows}, cols={self._cols})"


def _split_key(key) -> Tuple[int, int]:
    if not isinstance(key, tuple) or len(key) != 2:
        raise TypeError("Matrix indices must be a (row, col) pair")
    return key


def _to_array(values, rows: int, cols: int) -> np.ndarray:
    """Copy ``values`` into a new float64 array, checking it is rows x cols."""
    if isinstance(values, Matrix):
        values = values.to_numpy()

    if not isinstance(values, np.ndarray):
        values = [list(row) for row in values]
        if len(values) != rows or any(len(row) != cols for row in values):
            lengths = sorted({len(row) for row in values})
            raise DimensionMismatchError(
                f"Expected {rows} rows of {cols} entries, got {len(values)} "
                f"rows of length(s) {lengths}"
            )

    array = np.array(values, dtype=np.float64)
    if array.shape != (rows, cols):
        raise DimensionMismatchError(
            f"Expected shape ({rows}, {cols}), got {array.shape}"
        )
    return array
