"""
Input checks run before fitting or projecting an envelope.
"""

import math
from collections import Counter
from numbers import Real
from typing import Sequence

import numpy as np

from .errors import (
    InvalidParameter,
    ShapeMismatch,
    UnsupportedVariableType,
    VariableMismatch,
    VariableOrderConflict,
)


def check_quant(quant: float) -> float:
    """
    Check the trim fraction.

    Args:
        quant: Fraction of the most extreme values dropped at each tail

    Returns:
        quant as a float
    """
    if isinstance(quant, bool) or not isinstance(quant, Real):
        raise InvalidParameter(f"quant must be a real number, got {quant!r}")
    quant = float(quant)
    if math.isnan(quant) or not 0 <= quant < 0.5:
        raise InvalidParameter(f"quant should be a value between 0 and 0.5, got {quant}")
    return quant


def check_unique_names(names: Sequence[str]) -> None:
    duplicated = [name for name, count in Counter(names).items() if count > 1]
    if duplicated:
        raise VariableOrderConflict(f"Duplicated variable names: {duplicated}")


def check_numeric(name: str, values: np.ndarray) -> None:
    """Reject variables whose values are not on an ordered numeric scale."""
    dtype = np.asarray(values).dtype
    if dtype != bool and not np.issubdtype(dtype, np.number):
        raise UnsupportedVariableType(
            f"Variable '{name}' has dtype {dtype}; the envelope does not handle factorial variables"
        )


def check_row_counts(n_response: int, n_explanatory: int) -> None:
    if n_response != n_explanatory:
        raise ShapeMismatch(
            f"Response and Explanatory variables have not the same number of rows "
            f"({n_response} != {n_explanatory})"
        )


def resolve_query(query_names: Sequence[str], names: Sequence[str]) -> list[int]:
    """
    Match the query variables against the fitted variables by name.

    Args:
        query_names: Variable names of the query table
        names: Variable names the envelope needs

    Returns:
        Column indices into the query, in the order of `names`
    """
    check_unique_names(query_names)
    check_unique_names(names)

    missing = [name for name in names if name not in query_names]
    if missing:
        raise VariableMismatch(f"Query data is missing explanatory variables: {missing}")

    position = {name: i for i, name in enumerate(query_names)}
    return [position[name] for name in names]
