"""
Surface range envelope as a scikit-learn style estimator.
"""

from pathlib import Path
from typing import Any

import joblib
import numpy as np
import pandas as pd
from sklearn.base import BaseEstimator, ClassifierMixin

from .envelope import DEFAULT_QUANT, fit_envelope
from .errors import InsufficientData
from .projection import project
from .sources import load_observations, load_responses
from .validation import check_quant, check_row_counts


class SurfaceRangeEnvelope(ClassifierMixin, BaseEstimator):
    """
    Rectilinear envelope classifier (BIOCLIM).

    Predictions are binary: 1 inside every per-variable interval, 0 outside
    at least one, NaN where a needed value is missing. There is no
    probability output.
    """

    def __init__(self, quant: float = DEFAULT_QUANT):
        """
        Initialize the envelope.

        Args:
            quant: Fraction of the most extreme presence values dropped at each tail
        """
        self.quant = quant

    def fit(self, X: Any, y: Any) -> "SurfaceRangeEnvelope":
        """
        Fit one envelope per response column.

        Args:
            X: Explanatory variables (DataFrame, mapping or matrix)
            y: Presence (1) / absence (0) vector, or a table with one column per response

        Returns:
            self
        """
        quant = check_quant(self.quant)
        observations = load_observations(X)
        responses = load_responses(y)
        check_row_counts(responses.n_rows, observations.n_rows)
        if not responses.names:
            raise InsufficientData("No response columns given")

        self.envelopes_ = {
            name: fit_envelope(observations, responses.column(name), quant)
            for name in responses.names
        }
        self.feature_names_in_ = np.asarray(observations.names, dtype=object)
        self.n_features_in_ = len(observations.names)
        self.response_names_ = responses.names
        self.classes_ = np.array([0, 1])
        return self

    def predict(self, X: Any) -> np.ndarray:
        """
        Predict suitability.

        Args:
            X: Query data with (at least) the fitted variables

        Returns:
            Array of shape (n_samples,) for one response, (n_samples, n_responses) otherwise
        """
        if not hasattr(self, "envelopes_"):
            raise RuntimeError("Model has not been trained yet")

        query = load_observations(X)
        predictions = np.column_stack([project(query, envelope) for envelope in self.envelopes_.values()])
        if predictions.shape[1] == 1:
            return predictions[:, 0]
        return predictions

    def bounds(self) -> pd.DataFrame:
        """Fitted bounds indexed by (response, variable)."""
        if not hasattr(self, "envelopes_"):
            raise RuntimeError("Model has not been trained yet")
        return pd.concat(
            {name: envelope.to_frame() for name, envelope in self.envelopes_.items()},
            names=["response"],
        )

    def save(self, path: str | Path) -> None:
        """Save the fitted envelopes to disk."""
        if not hasattr(self, "envelopes_"):
            raise RuntimeError("Model has not been trained yet")

        save_data = {
            "quant": self.quant,
            "envelopes": self.envelopes_,
            "feature_names": list(self.feature_names_in_),
            "response_names": self.response_names_,
        }
        joblib.dump(save_data, path)

    @classmethod
    def load(cls, path: str | Path) -> "SurfaceRangeEnvelope":
        """Load fitted envelopes from disk."""
        data = joblib.load(path)

        model = cls(quant=data["quant"])
        model.envelopes_ = data["envelopes"]
        model.feature_names_in_ = np.asarray(data["feature_names"], dtype=object)
        model.n_features_in_ = len(data["feature_names"])
        model.response_names_ = tuple(data["response_names"])
        model.classes_ = np.array([0, 1])

        return model
