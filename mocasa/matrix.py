from __future__ import annotations
from typing import Callable, List, Sequence

import numpy as np


class Matrix:
    """Dense row-major matrix of floats backed by a 2D numpy array.

    Rows index data points (or endophenotypes), columns index traits.
    Row access is bounds-checked so that an off-by-one surfaces as an
    IndexError instead of numpy's silent negative indexing.
    """

    __slots__ = ("elements",)

    def __init__(self, n_rows: int, n_cols: int, elements) -> None:
        arr = np.asarray(elements, dtype=float)
        if arr.size != n_rows * n_cols:
            raise ValueError(
                f"Matrix of {n_rows}x{n_cols} needs {n_rows * n_cols} elements, got {arr.size}."
            )
        self.elements = arr.reshape(n_rows, n_cols)

    @classmethod
    def fill(cls, n_rows: int, n_cols: int, f: Callable[[int, int], float]) -> "Matrix":
        values = [f(i_row, i_col) for i_row in range(n_rows) for i_col in range(n_cols)]
        return cls(n_rows, n_cols, values)

    @classmethod
    def zeros(cls, n_rows: int, n_cols: int) -> "Matrix":
        return cls(n_rows, n_cols, np.zeros(n_rows * n_cols))

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "Matrix":
        arr = np.asarray(arr, dtype=float)
        return cls(arr.shape[0], arr.shape[1], arr)

    @property
    def n_rows(self) -> int:
        return self.elements.shape[0]

    @property
    def n_cols(self) -> int:
        return self.elements.shape[1]

    def _check_row(self, i_row: int) -> None:
        if not 0 <= i_row < self.n_rows:
            raise IndexError(f"Row {i_row} out of bounds for matrix with {self.n_rows} rows.")

    def __getitem__(self, key):
        if isinstance(key, tuple):
            i_row, i_col = key
            self._check_row(i_row)
            if not 0 <= i_col < self.n_cols:
                raise IndexError(f"Column {i_col} out of bounds for matrix with {self.n_cols} columns.")
            return float(self.elements[i_row, i_col])
        self._check_row(key)
        return self.elements[key]

    def __setitem__(self, key, value) -> None:
        i_row, i_col = key
        self._check_row(i_row)
        self.elements[i_row, i_col] = value

    def only_cols(self, is_cols: Sequence[bool]) -> "Matrix":
        mask = np.asarray(is_cols, dtype=bool)
        return Matrix.from_array(self.elements[:, mask])

    def to_list(self) -> List[float]:
        return [float(x) for x in self.elements.ravel()]

    def copy(self) -> "Matrix":
        return Matrix.from_array(self.elements.copy())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return self.elements.shape == other.elements.shape and bool(np.array_equal(self.elements, other.elements))

    def __repr__(self) -> str:
        return f"Matrix({self.n_rows}, {self.n_cols}, {self.to_list()})"
