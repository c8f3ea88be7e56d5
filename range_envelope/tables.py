"""
Numeric observation tables shared by the fitter and the projector.

Every container type (data frames, raster stacks, point collections) is
reduced to an ObservationTable before it reaches the envelope.
"""

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

import numpy as np

from .errors import ShapeMismatch
from .validation import check_numeric, check_unique_names, resolve_query


@dataclass(frozen=True)
class ObservationTable:
    """
    Named numeric variables, one row per observation.

    Missing values are NaN. Response tables use the same shape, with one
    binary column per response (e.g. one per species).
    """

    names: tuple[str, ...]
    values: np.ndarray  # (n_rows, n_vars) float64

    def __post_init__(self):
        names = tuple(str(name) for name in self.names)
        values = np.asarray(self.values, dtype=np.float64)
        if values.ndim != 2:
            raise ShapeMismatch(f"Expected a 2D array of observations, got shape {values.shape}")
        if values.shape[1] != len(names):
            raise ShapeMismatch(
                f"Got {len(names)} variable names for {values.shape[1]} columns"
            )
        check_unique_names(names)
        object.__setattr__(self, "names", names)
        object.__setattr__(self, "values", values)

    @classmethod
    def from_columns(
        cls,
        columns: Mapping[str, Sequence[float]],
        n_rows: Optional[int] = None,
    ) -> "ObservationTable":
        """
        Build a table from a mapping of variable name to values.

        Args:
            columns: Variable name -> sequence of numbers (None/NaN for missing)
            n_rows: Row count, only needed when `columns` is empty

        Returns:
            ObservationTable with columns in mapping order
        """
        arrays = []
        for name, column in columns.items():
            array = np.asarray(column)
            if array.dtype == object:
                # None marks a missing value in plain Python sequences
                array = np.array([np.nan if v is None else v for v in array.ravel()])
            if array.ndim != 1:
                raise ShapeMismatch(f"Variable '{name}' is not one-dimensional")
            check_numeric(name, array)
            arrays.append(array.astype(np.float64))

        lengths = {len(a) for a in arrays}
        if len(lengths) > 1:
            raise ShapeMismatch(f"Variables have different lengths: {sorted(lengths)}")
        if arrays:
            n_rows = lengths.pop()
        elif n_rows is None:
            n_rows = 0

        values = np.column_stack(arrays) if arrays else np.empty((n_rows, 0))
        return cls(names=tuple(columns.keys()), values=values)

    @property
    def n_rows(self) -> int:
        return self.values.shape[0]

    def column(self, name: str) -> np.ndarray:
        return self.values[:, self.names.index(name)]

    def select(self, names: Sequence[str]) -> "ObservationTable":
        """Subset and reorder columns to `names`."""
        idx = resolve_query(self.names, names)
        return ObservationTable(names=tuple(names), values=self.values[:, idx])

    def rows(self, mask: np.ndarray) -> "ObservationTable":
        return ObservationTable(names=self.names, values=self.values[mask])
