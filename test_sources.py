"""
Tests for reading and rebuilding tables, rasters and point collections.
"""

import json

import numpy as np
import pandas as pd
import pytest
import rasterio
from rasterio.crs import CRS
from rasterio.transform import from_origin

from range_envelope import (
    ObservationTable,
    PointSource,
    RasterSource,
    ShapeMismatch,
    TableSource,
    UnsupportedVariableType,
    VariableOrderConflict,
    load_observations,
    load_responses,
)
from range_envelope.sources import align_sources, assemble_output


TEMP = np.arange(12, dtype=float).reshape(3, 4)
RAIN = 100 - TEMP


def write_tif(path, data, nodata=None, description=None):
    with rasterio.open(
        path, "w",
        driver="GTiff",
        height=data.shape[0],
        width=data.shape[1],
        count=1,
        dtype=data.dtype,
        crs="EPSG:4326",
        transform=from_origin(0, 3, 1, 1),
        nodata=nodata,
    ) as dst:
        dst.write(data, 1)
        if description:
            dst.set_band_description(1, description)


class TestTableSource:

    def test_dataframe(self):
        frame = pd.DataFrame({"temp": [1.0, 2.0], "rain": [10, None]})
        obs = load_observations(frame)
        assert obs.names == ("temp", "rain")
        assert obs.values[0].tolist() == [1.0, 10.0]
        assert np.isnan(obs.values[1, 1])

    def test_matrix_gets_default_names(self):
        obs = load_observations(np.array([[1, 2, 3], [4, 5, 6]]))
        assert obs.names == ("var1", "var2", "var3")
        assert obs.n_rows == 2

    def test_vector_response(self):
        responses = load_responses([1, 0, 1])
        assert responses.names == ("response1",)
        assert responses.column("response1").tolist() == [1.0, 0.0, 1.0]

    def test_named_series(self):
        responses = load_responses(pd.Series([1, 0], name="Gulo gulo"))
        assert responses.names == ("Gulo gulo",)

    def test_mapping(self):
        obs = load_observations({"a": [1, 2], "b": [3, 4]})
        assert obs.column("b").tolist() == [3.0, 4.0]

    def test_mapping_lengths_must_match(self):
        with pytest.raises(ShapeMismatch):
            load_observations({"a": [1, 2], "b": [3]})

    def test_nullable_integers(self):
        frame = pd.DataFrame({"species": pd.array([1, None, 0], dtype="Int64")})
        responses = load_responses(frame)
        assert np.isnan(responses.values[1, 0])

    @pytest.mark.parametrize("column", [
        pd.Series(["a", "b"], dtype="category"),
        pd.Series(["forest", "tundra"]),
    ])
    def test_rejects_factors(self, column):
        frame = pd.DataFrame({"temp": [1.0, 2.0], "habitat": column})
        with pytest.raises(UnsupportedVariableType):
            load_observations(frame)

    def test_all_missing_column(self):
        obs = load_observations({"x": [2.0], "y": [None]})
        assert obs.names == ("x", "y")
        assert obs.values[0, 0] == 2.0
        assert np.isnan(obs.values[0, 1])

    def test_object_matrix_with_missing(self):
        obs = load_observations(np.array([[2, None], [2, 2]], dtype=object))
        assert obs.names == ("var1", "var2")
        assert np.isnan(obs.values[0, 1])
        assert obs.values[1].tolist() == [2.0, 2.0]

    def test_rejects_strings_mixed_with_missing(self):
        with pytest.raises(UnsupportedVariableType):
            load_observations({"habitat": ["forest", None]})

    def test_duplicate_columns(self):
        frame = pd.DataFrame([[1, 2]], columns=["x", "x"])
        with pytest.raises(VariableOrderConflict):
            load_observations(frame)

    def test_assemble_keeps_index(self):
        source = TableSource(pd.DataFrame({"x": [1, 2]}, index=["site_a", "site_b"]))
        single = source.assemble(ObservationTable(names=("sp1",), values=np.array([[1.0], [0.0]])))
        assert isinstance(single, pd.Series)
        assert single.name == "sp1"
        assert list(single.index) == ["site_a", "site_b"]

        both = assemble_output(
            ObservationTable(names=("sp1", "sp2"), values=np.array([[1.0, 0.0], [0.0, 1.0]])),
            source,
        )
        assert list(both.columns) == ["sp1", "sp2"]
        assert both.loc["site_b", "sp2"] == 1.0


class TestRasterSource:

    def test_load_is_row_major(self):
        raster = RasterSource(np.stack([TEMP, RAIN]), ["temp", "rain"])
        obs = raster.load()
        assert obs.n_rows == 12
        assert obs.column("temp").tolist() == list(range(12))
        assert obs.column("rain")[5] == 95

    def test_nodata_is_missing(self):
        layer = TEMP.copy()
        layer[0, 0] = -9999
        obs = RasterSource(layer, ["temp"], nodata=-9999).load()
        assert np.isnan(obs.values[0, 0])
        assert obs.values[1, 0] == 1

    def test_rejects_non_numeric_layers(self):
        raster = RasterSource(np.array([["a", "b"]]), ["habitat"])
        with pytest.raises(UnsupportedVariableType):
            raster.load()

    def test_sample_at_points(self):
        raster = RasterSource(np.stack([TEMP, RAIN]), ["temp", "rain"])
        obs = raster.sample_at_points([(1.5, 1.5), (3.5, 2.5), (10.0, 10.0)])
        assert obs.values[0].tolist() == [5.0, 95.0]
        assert obs.values[1].tolist() == [3.0, 97.0]
        assert np.all(np.isnan(obs.values[2]))

    def test_bounds(self):
        raster = RasterSource(TEMP, ["temp"])
        assert raster.bounds == pytest.approx((0, 0, 4, 3))

    def test_from_files(self, tmp_path):
        temp = TEMP.astype(np.float32)
        temp[2, 3] = -9999
        write_tif(tmp_path / "bio1.tif", temp, nodata=-9999)
        write_tif(tmp_path / "b.tif", RAIN.astype(np.float32), description="bio12")

        raster = RasterSource.from_files([tmp_path / "bio1.tif", tmp_path / "b.tif"])
        assert raster.names == ("bio1", "bio12")
        assert raster.shape == (3, 4)
        assert raster.crs.to_epsg() == 4326
        obs = raster.load()
        assert np.isnan(obs.column("bio1")[11])
        assert obs.column("bio12")[0] == 100

    def test_from_files_needs_same_grid(self, tmp_path):
        write_tif(tmp_path / "a.tif", TEMP)
        write_tif(tmp_path / "b.tif", np.zeros((2, 2)))
        with pytest.raises(ShapeMismatch):
            RasterSource.from_files([tmp_path / "a.tif", tmp_path / "b.tif"])

    def test_assemble_and_save(self, tmp_path):
        raster = RasterSource(TEMP, ["temp"], crs=CRS.from_epsg(4326))
        values = (TEMP.ravel() > 5).astype(float)
        values[0] = np.nan
        prediction = raster.assemble(ObservationTable(names=("gulo",), values=values[:, np.newaxis]))

        assert prediction.array.shape == (3, 4)
        assert prediction.array[1, 2] == 1.0
        assert np.isnan(prediction.array[0, 0])

        path = prediction.save(tmp_path / "out" / "gulo.tif")
        with rasterio.open(path) as src:
            assert src.count == 1
            assert src.descriptions == ("gulo",)
            data = src.read(1)
        assert np.isnan(data[0, 0])
        assert data[2, 3] == 1.0

        geojson = prediction.to_geojson()
        assert len(geojson["features"]) == 6
        assert geojson["features"][0]["geometry"]["coordinates"] == [2.5, 1.5]


class TestPointSource:

    def features(self):
        return [
            {"type": "Feature", "properties": {"temp": 1, "sp": 1},
             "geometry": {"type": "Point", "coordinates": [0.5, 0.5]}},
            {"type": "Feature", "properties": {"temp": None, "sp": 0},
             "geometry": {"type": "Point", "coordinates": [1.5, 2.5]}},
        ]

    def test_load_properties(self):
        obs = PointSource(self.features()).load()
        assert obs.names == ("temp", "sp")
        assert np.isnan(obs.values[1, 0])

    def test_selected_fields(self):
        source = PointSource(self.features(), fields=["sp"])
        assert source.load().names == ("sp",)
        assert source.coordinates == [(0.5, 0.5), (1.5, 2.5)]

    def test_from_geojson(self, tmp_path):
        path = tmp_path / "points.geojson"
        path.write_text(json.dumps({"type": "FeatureCollection", "features": self.features()}))
        assert PointSource.from_geojson(path).load().n_rows == 2

    def test_presences(self):
        source = PointSource.presences([(1.0, 2.0), (3.0, 4.0)], "Gulo gulo")
        obs = source.load()
        assert obs.names == ("Gulo gulo",)
        assert obs.column("Gulo gulo").tolist() == [1.0, 1.0]

    def test_from_occurrences(self):
        occurrences = [
            {"gbifID": 1, "decimalLongitude": 1.0, "decimalLatitude": -1.0, "eventDate": "2020-06-01"},
            {"gbifID": 2, "decimalLatitude": None},
            {"gbifID": 3, "decimalLongitude": 3.0, "decimalLatitude": -3.0},
        ]
        source = PointSource.from_occurrences(occurrences, "Gulo gulo")

        assert source.coordinates == [(1.0, -1.0), (3.0, -3.0)]
        obs = source.load()
        assert obs.names == ("Gulo gulo",)
        assert obs.column("Gulo gulo").tolist() == [1.0, 1.0]

        geojson = source.to_geojson("gulo_gulo_occurrences")
        assert geojson["name"] == "gulo_gulo_occurrences"
        assert geojson["features"][0]["properties"]["gbifID"] == 1
        assert geojson["features"][0]["properties"]["eventDate"] == "2020-06-01"
        assert geojson["features"][1]["geometry"]["coordinates"] == [3.0, -3.0]

    def test_assemble(self):
        source = PointSource(self.features())
        out = source.assemble(ObservationTable(names=("sp_pred",), values=np.array([[1.0], [np.nan]])))
        assert out["type"] == "FeatureCollection"
        assert out["features"][0]["properties"]["sp_pred"] == 1
        assert out["features"][1]["properties"]["sp_pred"] is None
        assert out["features"][1]["properties"]["sp"] == 0

    def test_rejects_non_points(self):
        source = PointSource([{"type": "Feature", "properties": {},
                               "geometry": {"type": "Polygon", "coordinates": []}}])
        with pytest.raises(UnsupportedVariableType):
            source.coordinates


class TestAlignSources:

    def test_points_over_raster(self):
        raster = RasterSource(np.stack([TEMP, RAIN]), ["temp", "rain"])
        points = PointSource.presences([(1.5, 1.5), (0.5, 0.5)], "sp")
        responses, obs = align_sources(points, raster)
        assert responses.n_rows == obs.n_rows == 2
        assert obs.column("temp").tolist() == [5.0, 8.0]

    def test_points_in_one_cell_count_once(self):
        raster = RasterSource(np.arange(16, dtype=float).reshape(4, 4), ["x"], transform=from_origin(0, 4, 1, 1))
        points = PointSource.presences([(0.5, 3.5), (0.2, 3.8), (0.9, 3.1), (3.5, 0.5), (9.0, 9.0)], "sp")
        responses, obs = align_sources(points, raster)
        assert obs.column("x").tolist() == [0.0, 15.0]
        assert responses.column("sp").tolist() == [1.0, 1.0]

    def test_presence_wins_within_a_cell(self):
        raster = RasterSource(TEMP, ["temp"])
        points = PointSource([
            {"type": "Feature", "properties": {"sp": 0},
             "geometry": {"type": "Point", "coordinates": [1.5, 1.5]}},
            {"type": "Feature", "properties": {"sp": 1},
             "geometry": {"type": "Point", "coordinates": [1.4, 1.6]}},
            {"type": "Feature", "properties": {"sp": 0},
             "geometry": {"type": "Point", "coordinates": [0.5, 0.5]}},
            {"type": "Feature", "properties": {"sp": None},
             "geometry": {"type": "Point", "coordinates": [3.5, 2.5]}},
        ])
        responses, obs = align_sources(points, raster)
        assert obs.column("temp").tolist() == [3.0, 5.0, 8.0]
        sp = responses.column("sp")
        assert np.isnan(sp[0])
        assert sp[1:].tolist() == [1.0, 0.0]

    def test_raster_response_needs_raster_explanatory(self):
        response = RasterSource(np.ones((3, 4)), ["sp"])
        with pytest.raises(UnsupportedVariableType):
            align_sources(response, TableSource({"temp": range(12)}))

    def test_raster_shapes_must_match(self):
        response = RasterSource(np.ones((2, 2)), ["sp"])
        with pytest.raises(ShapeMismatch):
            align_sources(response, RasterSource(TEMP, ["temp"]))

    def test_table_rows_must_match(self):
        with pytest.raises(ShapeMismatch):
            align_sources(TableSource([1, 0]), TableSource({"temp": [1, 2, 3]}))
