"""
Envelope fitting: per-variable trimmed quantile bounds at presence sites.
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd

from .errors import InsufficientData, ShapeMismatch
from .tables import ObservationTable
from .validation import check_quant, check_row_counts

logger = logging.getLogger(__name__)


# Fraction of the most extreme presence values dropped at each tail
DEFAULT_QUANT = 0.025


@dataclass(frozen=True)
class Envelope:
    """Rectilinear envelope: one [lower, upper] interval per variable."""

    names: tuple[str, ...]
    lower: np.ndarray
    upper: np.ndarray
    quant: float
    n_presences: int

    def __len__(self) -> int:
        return len(self.names)

    def interval(self, name: str) -> tuple[float, float]:
        i = self.names.index(name)
        return float(self.lower[i]), float(self.upper[i])

    def drop(self, name: str) -> "Envelope":
        """Envelope without the given variable."""
        keep = [i for i, n in enumerate(self.names) if n != name]
        return Envelope(
            names=tuple(self.names[i] for i in keep),
            lower=self.lower[keep],
            upper=self.upper[keep],
            quant=self.quant,
            n_presences=self.n_presences,
        )

    def to_frame(self) -> pd.DataFrame:
        """Bounds as a DataFrame indexed by variable name."""
        return pd.DataFrame(
            {"lower": self.lower, "upper": self.upper},
            index=pd.Index(self.names, name="variable"),
        )


def presence_mask(response: np.ndarray) -> np.ndarray:
    """Rows where the response equals 1. Missing responses are not presences."""
    response = np.asarray(response, dtype=np.float64)
    with np.errstate(invalid="ignore"):
        return response == 1


def trimmed_bounds(values: np.ndarray, quant: float) -> tuple[float, float]:
    """
    Linear-interpolation quantiles at `quant` and `1 - quant`, ignoring NaN.

    A single value gives equal bounds; no values give NaN bounds.
    """
    values = values[~np.isnan(values)]
    if values.size == 0:
        return np.nan, np.nan
    low, high = np.quantile(values, [quant, 1 - quant], method="linear")
    return float(low), float(high)


def fit_envelope(
    observations: ObservationTable,
    response: np.ndarray,
    quant: float = DEFAULT_QUANT,
) -> Envelope:
    """
    Fit the envelope of one response column.

    Args:
        observations: Explanatory variables, one row per site
        response: Presence (1) / absence (0) / missing (NaN) per site
        quant: Fraction of extreme values dropped at each tail, in [0, 0.5)

    Returns:
        Envelope with one interval per variable, in column order
    """
    quant = check_quant(quant)
    response = np.asarray(response, dtype=np.float64)
    if response.ndim != 1:
        raise ShapeMismatch(f"Expected a single response column, got shape {response.shape}")
    check_row_counts(len(response), observations.n_rows)

    occ = presence_mask(response)
    n_presences = int(occ.sum())
    if n_presences == 0:
        raise InsufficientData("No presence rows (response == 1) to fit the envelope on")

    presences = observations.values[occ]
    lower = np.empty(len(observations.names))
    upper = np.empty(len(observations.names))
    for j, name in enumerate(observations.names):
        lower[j], upper[j] = trimmed_bounds(presences[:, j], quant)
        if np.isnan(lower[j]):
            logger.warning(f"Variable '{name}' has no values at presence sites; its bounds are missing")

    return Envelope(
        names=observations.names,
        lower=lower,
        upper=upper,
        quant=quant,
        n_presences=n_presences,
    )
