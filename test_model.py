"""
Tests for the SurfaceRangeEnvelope estimator.
"""

import numpy as np
import pandas as pd
import pytest
from sklearn.base import clone

from range_envelope import InsufficientData, InvalidParameter, SurfaceRangeEnvelope, VariableMismatch


@pytest.fixture
def training_data():
    X = pd.DataFrame({
        "temp": [1.0, 2.0, 3.0, 4.0, 5.0, 10.0],
        "rain": [10.0, 20.0, 30.0, 40.0, 50.0, 0.0],
    })
    y = np.array([1, 1, 1, 1, 1, 0])
    return X, y


class TestSurfaceRangeEnvelope:

    def test_fit_predict(self, training_data):
        X, y = training_data
        model = SurfaceRangeEnvelope(quant=0).fit(X, y)

        assert list(model.feature_names_in_) == ["temp", "rain"]
        assert model.n_features_in_ == 2
        assert model.response_names_ == ("response1",)
        assert model.predict(X).tolist() == [1, 1, 1, 1, 1, 0]

    def test_bounds(self, training_data):
        X, y = training_data
        bounds = SurfaceRangeEnvelope(quant=0).fit(X, y).bounds()
        assert bounds.loc[("response1", "temp")].tolist() == [1.0, 5.0]
        assert bounds.loc[("response1", "rain")].tolist() == [10.0, 50.0]

    def test_multiple_responses(self, training_data):
        X, _ = training_data
        y = pd.DataFrame({"gulo": [1, 1, 0, 0, 0, 0], "lynx": [0, 0, 0, 0, 1, 1]})
        predictions = SurfaceRangeEnvelope(quant=0).fit(X, y).predict(X)
        assert predictions.shape == (6, 2)
        assert predictions[:, 0].tolist() == [1, 1, 0, 0, 0, 0]
        assert predictions[:, 1].tolist() == [0, 0, 0, 0, 1, 1]

    def test_predict_needs_fitted_variables(self, training_data):
        X, y = training_data
        model = SurfaceRangeEnvelope(quant=0).fit(X, y)
        with pytest.raises(VariableMismatch):
            model.predict(X[["temp"]])

    def test_unfitted(self, training_data):
        X, _ = training_data
        with pytest.raises(RuntimeError):
            SurfaceRangeEnvelope().predict(X)

    def test_invalid_quant(self, training_data):
        X, y = training_data
        with pytest.raises(InvalidParameter):
            SurfaceRangeEnvelope(quant=0.6).fit(X, y)

    def test_no_presences(self, training_data):
        X, _ = training_data
        with pytest.raises(InsufficientData):
            SurfaceRangeEnvelope().fit(X, np.zeros(6))

    def test_params(self):
        model = SurfaceRangeEnvelope(quant=0.05)
        assert model.get_params() == {"quant": 0.05}
        assert clone(model).quant == 0.05

    def test_save_load(self, training_data, tmp_path):
        X, y = training_data
        model = SurfaceRangeEnvelope(quant=0.1).fit(X, y)
        path = tmp_path / "envelope.joblib"
        model.save(path)

        loaded = SurfaceRangeEnvelope.load(path)
        assert loaded.quant == 0.1
        assert list(loaded.feature_names_in_) == ["temp", "rain"]
        np.testing.assert_array_equal(loaded.predict(X), model.predict(X))
