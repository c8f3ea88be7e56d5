"""
Projection of a fitted envelope onto query data.
"""

import numpy as np

from .envelope import Envelope
from .tables import ObservationTable


def project(query: ObservationTable, envelope: Envelope) -> np.ndarray:
    """
    Classify query rows as inside (1) or outside (0) the envelope.

    A row is suitable only if every variable lies within its interval,
    bounds included. A missing query value or a missing bound for any
    tested variable makes the row's result missing (NaN) instead of 0.

    Args:
        query: Query observations; must contain every envelope variable
        envelope: Envelope from fit_envelope

    Returns:
        Float array of 1.0 / 0.0 / NaN, one value per query row
    """
    query = query.select(envelope.names)

    suitable = np.ones(query.n_rows, dtype=bool)
    unknown = np.zeros(query.n_rows, dtype=bool)
    for j in range(len(envelope)):
        values = query.values[:, j]
        low, high = envelope.lower[j], envelope.upper[j]
        if np.isnan(low) or np.isnan(high):
            unknown[:] = True
            continue
        missing = np.isnan(values)
        with np.errstate(invalid="ignore"):
            inside = (values >= low) & (values <= high)
        suitable &= inside | missing
        unknown |= missing

    out = suitable.astype(np.float64)
    out[unknown] = np.nan
    return out


def count_suitable(predictions: np.ndarray) -> dict[str, int]:
    """Tally suitable / unsuitable / missing predictions."""
    predictions = np.asarray(predictions, dtype=np.float64)
    missing = np.isnan(predictions)
    return {
        "suitable": int((predictions[~missing] == 1).sum()),
        "unsuitable": int((predictions[~missing] == 0).sum()),
        "missing": int(missing.sum()),
    }
