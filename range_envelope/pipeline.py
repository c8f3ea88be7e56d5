"""
Main entry point: fit one envelope per response and project it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from tqdm import tqdm

from .envelope import DEFAULT_QUANT, Envelope, fit_envelope, presence_mask
from .errors import InsufficientData
from .projection import count_suitable, project
from .sources import align_sources, as_source
from .tables import ObservationTable
from .validation import check_quant

logger = logging.getLogger(__name__)


@dataclass
class SREResult:
    """
    Result of a surface range envelope run.

    Holds either the predictions, in the container type of the query data,
    or the fitted envelopes when bounds were requested.
    """

    response_names: tuple[str, ...]
    quant: float
    predictions: Optional[Any] = None
    bounds: Optional[dict[str, Envelope]] = None

    @property
    def mode(self) -> str:
        return "bounds" if self.bounds is not None else "predictions"

    def bounds_frame(self) -> pd.DataFrame:
        """All envelopes as one DataFrame indexed by (response, variable)."""
        if self.bounds is None:
            raise ValueError("Result holds predictions; run with return_bounds=True for bounds")
        return pd.concat(
            {name: envelope.to_frame() for name, envelope in self.bounds.items()},
            names=["response"],
        )


def _fit_and_project(
    observations: ObservationTable,
    response: np.ndarray,
    quant: float,
    query: Optional[ObservationTable],
) -> tuple[Envelope, Optional[np.ndarray]]:
    envelope = fit_envelope(observations, response, quant)
    if query is None:
        return envelope, None
    return envelope, project(query, envelope)


def sre(
    response: Any,
    explanatory: Any,
    new_data: Any = None,
    quant: float = DEFAULT_QUANT,
    return_bounds: bool = False,
    n_jobs: Optional[int] = 1,
) -> SREResult:
    """
    Run a rectilinear surface range envelope (BIOCLIM).

    Each response column (e.g. each species) gets its own envelope from the
    trimmed quantiles of the explanatory variables at its presence sites.
    Query sites inside every interval are predicted suitable (1), sites
    outside at least one interval unsuitable (0).

    Args:
        response: Presence/absence data; vector, table, raster or point source
        explanatory: Environmental variables at the response sites
        new_data: Data to predict on (default: the explanatory data)
        quant: Fraction of the most extreme values dropped at each tail.
            0.025 drops 2.5% at each end, 5% of the data in total.
        return_bounds: Return the fitted bounds instead of predictions
        n_jobs: Number of joblib workers across responses

    Returns:
        SREResult with predictions or bounds
    """
    quant = check_quant(quant)
    explanatory_src = as_source(explanatory)
    responses, observations = align_sources(as_source(response, prefix="response"), explanatory_src)

    query = None
    query_src = explanatory_src if new_data is None else as_source(new_data)
    if not return_bounds:
        query = query_src.load().select(observations.names)

    if not responses.names:
        raise InsufficientData("No response columns given")
    for name in responses.names:
        if not presence_mask(responses.column(name)).any():
            raise InsufficientData(f"No presences for response '{name}'")

    names = responses.names
    logger.info(
        f"Fitting {len(names)} envelope(s) on {len(observations.names)} variables, "
        f"{observations.n_rows} sites, quant={quant}"
    )

    if n_jobs == 1:
        fitted = [
            _fit_and_project(observations, responses.column(name), quant, query)
            for name in tqdm(names, desc="Fitting envelopes", disable=len(names) < 2)
        ]
    else:
        fitted = Parallel(n_jobs=n_jobs)(
            delayed(_fit_and_project)(observations, responses.column(name), quant, query)
            for name in names
        )

    if return_bounds:
        bounds = {name: envelope for name, (envelope, _) in zip(names, fitted)}
        return SREResult(response_names=names, quant=quant, bounds=bounds)

    columns = [predictions for _, predictions in fitted]
    for name, predictions in zip(names, columns):
        counts = count_suitable(predictions)
        logger.info(
            f"  {name}: {counts['suitable']:,} suitable, {counts['unsuitable']:,} unsuitable, "
            f"{counts['missing']:,} missing"
        )

    table = ObservationTable(names=names, values=np.column_stack(columns))
    return SREResult(response_names=names, quant=quant, predictions=query_src.assemble(table))
