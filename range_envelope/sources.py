"""
Observation sources: data frames, raster stacks and point collections.

Each source turns its container into an ObservationTable for the envelope
and turns prediction tables back into the same kind of container. Nothing
past this module looks at container types.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from numbers import Real
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

import numpy as np
import pandas as pd
import rasterio
import rasterio.transform
from rasterio.crs import CRS

from .errors import ShapeMismatch, UnsupportedVariableType, VariableOrderConflict
from .tables import ObservationTable
from .validation import check_row_counts

logger = logging.getLogger(__name__)

# GBIF record fields kept on presence points built from occurrences
OCCURRENCE_PROPERTIES = ("gbifID", "eventDate", "datasetName", "coordinateUncertaintyInMeters")


class ObservationSource(ABC):
    """A container that can be read as, and rebuilt from, an observation table."""

    @abstractmethod
    def load(self) -> ObservationTable:
        """Read the container as named numeric columns."""

    @abstractmethod
    def assemble(self, predictions: ObservationTable) -> Any:
        """Rebuild predictions (one column per response) in this container's shape."""


class TableSource(ObservationSource):
    """
    Tabular data: a DataFrame, Series, mapping of columns, matrix or vector.

    Unnamed columns are called `{prefix}1`, `{prefix}2`, ...
    """

    def __init__(self, data: Any, names: Optional[Sequence[str]] = None, prefix: str = "var"):
        self.data = data
        self.names = names
        self.prefix = prefix
        self._frame: Optional[pd.DataFrame] = None

    @property
    def frame(self) -> pd.DataFrame:
        if self._frame is None:
            self._frame = self._to_frame()
        return self._frame

    def _to_frame(self) -> pd.DataFrame:
        data = self.data
        if isinstance(data, pd.DataFrame):
            frame = data
        elif isinstance(data, pd.Series):
            frame = data.to_frame(name=data.name if data.name is not None else f"{self.prefix}1")
        elif isinstance(data, Mapping):
            lengths = {len(column) for column in data.values()}
            if len(lengths) > 1:
                raise ShapeMismatch(f"Columns have different lengths: {sorted(lengths)}")
            frame = pd.DataFrame({name: list(column) for name, column in data.items()})
        else:
            array = np.asarray(data)
            if array.ndim == 1:
                array = array[:, np.newaxis]
            if array.ndim != 2:
                raise ShapeMismatch(f"Expected a vector or a matrix, got shape {array.shape}")
            columns = [f"{self.prefix}{i + 1}" for i in range(array.shape[1])]
            frame = pd.DataFrame(array, columns=columns)

        if self.names is not None:
            if len(self.names) != frame.shape[1]:
                raise ShapeMismatch(f"Got {len(self.names)} names for {frame.shape[1]} columns")
            frame = frame.set_axis(list(self.names), axis=1)
        return frame

    def load(self) -> ObservationTable:
        frame = self.frame
        names = [str(name) for name in frame.columns]
        if len(set(names)) != len(names):
            raise VariableOrderConflict(f"Duplicated column names: {names}")

        columns = [_numeric_column(name, frame.iloc[:, j]) for j, name in enumerate(names)]
        values = np.column_stack(columns) if columns else np.empty((len(frame), 0))
        return ObservationTable(names=tuple(names), values=values)

    def assemble(self, predictions: ObservationTable) -> pd.Series | pd.DataFrame:
        index = self.frame.index
        if len(predictions.names) == 1:
            return pd.Series(predictions.values[:, 0], index=index, name=predictions.names[0])
        return pd.DataFrame(predictions.values, index=index, columns=list(predictions.names))


def _numeric_column(name: str, column: pd.Series) -> np.ndarray:
    """
    Column values as float64 with NaN for missing.

    Object columns (e.g. numbers mixed with None) are accepted when every
    non-missing value is a number.
    """
    dtype = column.dtype
    if dtype == object:
        missing = column.isna()
        present = column[~missing]
        if not all(isinstance(v, Real) for v in present):
            raise UnsupportedVariableType(
                f"Column '{name}' holds non-numeric values; the envelope does not handle factorial variables"
            )
        column = pd.to_numeric(column.where(~missing, np.nan), errors="raise")
    elif isinstance(dtype, pd.CategoricalDtype) or not (
        pd.api.types.is_numeric_dtype(dtype) or pd.api.types.is_bool_dtype(dtype)
    ):
        raise UnsupportedVariableType(
            f"Column '{name}' has dtype {dtype}; the envelope does not handle factorial variables"
        )
    return column.to_numpy(dtype=np.float64, na_value=np.nan)


@dataclass
class RasterPrediction:
    """Prediction layers on the grid of the query raster."""

    data: np.ndarray  # (n_responses, H, W) of 1.0 / 0.0 / NaN
    names: tuple[str, ...]
    transform: rasterio.transform.Affine
    crs: Optional[CRS] = None

    @property
    def array(self) -> np.ndarray:
        """Single (H, W) layer for one response, the full stack otherwise."""
        return self.data[0] if len(self.names) == 1 else self.data

    def layer(self, name: str) -> np.ndarray:
        return self.data[self.names.index(name)]

    def save(self, path: str | Path) -> Path:
        """Save the prediction layers as a float32 GeoTIFF, one band per response."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        n_layers, height, width = self.data.shape

        with rasterio.open(
            path, "w",
            driver="GTiff",
            height=height,
            width=width,
            count=n_layers,
            dtype=np.float32,
            crs=self.crs,
            transform=self.transform,
            nodata=np.nan,
            compress="lzw",
        ) as dst:
            dst.write(self.data.astype(np.float32))
            for i, name in enumerate(self.names):
                dst.set_band_description(i + 1, name)
        logger.info(f"Saved suitability raster: {path}")
        return path

    def to_geojson(self, name: Optional[str] = None, max_points: Optional[int] = None) -> dict:
        """Suitable cells of one response as a GeoJSON FeatureCollection of cell centres."""
        name = name or self.names[0]
        rows, cols = np.where(self.layer(name) == 1)
        if max_points is not None and len(rows) > max_points:
            rows, cols = rows[:max_points], cols[:max_points]

        features = []
        for row, col in zip(rows, cols):
            lon, lat = rasterio.transform.xy(self.transform, row, col)
            features.append({
                "type": "Feature",
                "properties": {name: 1},
                "geometry": {"type": "Point", "coordinates": [float(lon), float(lat)]},
            })

        return {
            "type": "FeatureCollection",
            "name": f"{name.replace(' ', '_')}_suitable",
            "features": features,
        }


class RasterSource(ObservationSource):
    """
    Stack of same-shape raster layers, one variable per layer.

    Cells are read row-major, so a (H, W) grid gives H * W observations.
    """

    def __init__(
        self,
        layers: np.ndarray,
        names: Sequence[str],
        transform: Optional[rasterio.transform.Affine] = None,
        crs: Optional[CRS] = None,
        nodata: Optional[float] = None,
    ):
        layers = np.asarray(layers)
        if layers.ndim == 2:
            layers = layers[np.newaxis]
        if layers.ndim != 3:
            raise ShapeMismatch(f"Expected layers of shape (n, H, W), got {layers.shape}")
        if len(names) != layers.shape[0]:
            raise ShapeMismatch(f"Got {len(names)} names for {layers.shape[0]} layers")

        self.layers = layers
        self.names = tuple(names)
        if transform is None:
            transform = rasterio.transform.from_origin(0, layers.shape[1], 1, 1)
        self.transform = transform
        self.crs = crs
        self.nodata = nodata

    @classmethod
    def from_files(cls, paths: Sequence[str | Path]) -> "RasterSource":
        """
        Read layers from raster files, one variable per band.

        Bands are named by their description, else by the file stem
        (suffixed with the band number for multi-band files).
        """
        layers, names = [], []
        transform = crs = None
        shape = None
        for path in paths:
            path = Path(path)
            with rasterio.open(path) as src:
                if shape is None:
                    shape, transform, crs = src.shape, src.transform, src.crs
                elif src.shape != shape or src.transform != transform:
                    raise ShapeMismatch(f"{path} is not on the same grid as {paths[0]}")

                data = src.read().astype(np.float64)
                if src.nodata is not None:
                    data[data == src.nodata] = np.nan
                for i in range(src.count):
                    description = src.descriptions[i]
                    if description:
                        names.append(description)
                    elif src.count == 1:
                        names.append(path.stem)
                    else:
                        names.append(f"{path.stem}_{i + 1}")
                    layers.append(data[i])
            logger.info(f"Loaded raster layer(s) from {path}")

        if not layers:
            raise ShapeMismatch("No raster layers given")
        return cls(np.stack(layers), names, transform=transform, crs=crs)

    @property
    def shape(self) -> tuple[int, int]:
        return self.layers.shape[1], self.layers.shape[2]

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """(min_lon, min_lat, max_lon, max_lat) of the grid."""
        height, width = self.shape
        return rasterio.transform.array_bounds(height, width, self.transform)

    def _check_numeric(self) -> None:
        dtype = self.layers.dtype
        if dtype != bool and not np.issubdtype(dtype, np.number):
            raise UnsupportedVariableType(f"Raster layers have dtype {dtype}; only numeric layers are supported")

    def _values(self) -> np.ndarray:
        self._check_numeric()
        values = self.layers.astype(np.float64)
        if self.nodata is not None and not np.isnan(self.nodata):
            values[values == self.nodata] = np.nan
        return values

    def load(self) -> ObservationTable:
        values = self._values()
        return ObservationTable(names=self.names, values=values.reshape(len(self.names), -1).T)

    def cell_index(self, points: Sequence[tuple[float, float]]) -> np.ndarray:
        """
        Flat row-major cell index of each (lon, lat) point, -1 outside the grid.
        """
        height, width = self.shape
        if not len(points):
            return np.empty(0, dtype=np.int64)

        xs = [p[0] for p in points]
        ys = [p[1] for p in points]
        rows, cols = rasterio.transform.rowcol(self.transform, xs, ys)
        rows, cols = np.asarray(rows, dtype=np.int64), np.asarray(cols, dtype=np.int64)
        inside = (rows >= 0) & (rows < height) & (cols >= 0) & (cols < width)

        n_outside = int((~inside).sum())
        if n_outside > 0:
            logger.warning(f"{n_outside} points outside raster coverage")
        return np.where(inside, rows * width + cols, -1)

    def sample_at_points(self, points: Sequence[tuple[float, float]]) -> ObservationTable:
        """
        Sample every layer at (lon, lat) points, one row per point.

        Points outside the grid get missing values.
        """
        cells = self.cell_index(points)
        values = self._values().reshape(len(self.names), -1)
        samples = np.full((len(cells), len(self.names)), np.nan)
        inside = cells >= 0
        samples[inside] = values[:, cells[inside]].T
        return ObservationTable(names=self.names, values=samples)

    def cells_at_points(
        self,
        points: Sequence[tuple[float, float]],
        responses: ObservationTable,
    ) -> tuple[ObservationTable, ObservationTable]:
        """
        Collapse point responses onto the raster cells they fall in.

        A cell counts once however many points it holds: it is a presence
        for a response if any of its points is, an absence if it only holds
        absences. Points outside the grid are dropped.

        Returns:
            Tuple of (responses, observations), one row per occupied cell
        """
        cells = self.cell_index(points)
        inside = cells >= 0
        occupied = np.unique(cells[inside])
        position = np.searchsorted(occupied, cells[inside])

        point_values = responses.values[inside]
        cell_values = np.full((len(occupied), len(responses.names)), np.nan)
        for j in range(len(responses.names)):
            column = point_values[:, j]
            present = column == 1
            absent = ~np.isnan(column) & ~present
            cell_values[position[absent], j] = 0
            cell_values[position[present], j] = 1

        values = self._values().reshape(len(self.names), -1)
        logger.info(f"{int(inside.sum())} points fall in {len(occupied)} raster cells")
        return (
            ObservationTable(names=responses.names, values=cell_values),
            ObservationTable(names=self.names, values=values[:, occupied].T),
        )

    def assemble(self, predictions: ObservationTable) -> RasterPrediction:
        height, width = self.shape
        data = predictions.values.T.reshape(len(predictions.names), height, width)
        return RasterPrediction(data=data, names=predictions.names, transform=self.transform, crs=self.crs)


class PointSource(ObservationSource):
    """
    Point features with numeric attributes, GeoJSON style.

    Args:
        features: GeoJSON Point features
        fields: Properties to read as variables (default: all, in first-seen order)
    """

    def __init__(self, features: list[dict], fields: Optional[Sequence[str]] = None):
        self.features = features
        if fields is None:
            fields = []
            for feature in features:
                for key in feature.get("properties") or {}:
                    if key not in fields:
                        fields.append(key)
        self.fields = list(fields)

    @classmethod
    def from_geojson(cls, path: str | Path, fields: Optional[Sequence[str]] = None) -> "PointSource":
        with open(path) as f:
            collection = json.load(f)
        return cls(collection["features"], fields=fields)

    @classmethod
    def presences(cls, coordinates: Sequence[tuple[float, float]], name: str) -> "PointSource":
        """Points that are all presences of one response called `name`."""
        features = [
            {
                "type": "Feature",
                "properties": {name: 1},
                "geometry": {"type": "Point", "coordinates": [lon, lat]},
            }
            for lon, lat in coordinates
        ]
        return cls(features, fields=[name])

    @classmethod
    def from_occurrences(cls, occurrences: list[dict], species_name: str) -> "PointSource":
        """
        Presence points from GBIF occurrence records.

        Records without coordinates are skipped. The GBIF record metadata is
        kept as feature properties but only `species_name` is read as a variable.

        Args:
            occurrences: GBIF occurrence dictionaries
            species_name: Name of the response variable

        Returns:
            PointSource with one presence per georeferenced record
        """
        features = []
        for record in occurrences:
            lon, lat = record.get("decimalLongitude"), record.get("decimalLatitude")
            if lon is None or lat is None:
                continue
            properties = {species_name: 1}
            for key in OCCURRENCE_PROPERTIES:
                properties[key] = record.get(key)
            features.append({
                "type": "Feature",
                "properties": properties,
                "geometry": {"type": "Point", "coordinates": [lon, lat]},
            })

        n_skipped = len(occurrences) - len(features)
        if n_skipped:
            logger.info(f"Skipped {n_skipped} occurrences without coordinates")
        return cls(features, fields=[species_name])

    def to_geojson(self, name: Optional[str] = None) -> dict:
        collection = {"type": "FeatureCollection", "features": self.features}
        if name is not None:
            collection["name"] = name
        return collection

    @property
    def coordinates(self) -> list[tuple[float, float]]:
        coords = []
        for feature in self.features:
            geometry = feature.get("geometry") or {}
            if geometry.get("type") != "Point":
                raise UnsupportedVariableType(f"Only Point geometries are supported, got {geometry.get('type')}")
            lon, lat = geometry["coordinates"][:2]
            coords.append((float(lon), float(lat)))
        return coords

    def load(self) -> ObservationTable:
        columns = {
            field: [(f.get("properties") or {}).get(field) for f in self.features]
            for field in self.fields
        }
        return ObservationTable.from_columns(columns, n_rows=len(self.features))

    def assemble(self, predictions: ObservationTable) -> dict:
        features = []
        for feature, row in zip(self.features, predictions.values):
            properties = dict(feature.get("properties") or {})
            for name, value in zip(predictions.names, row):
                properties[name] = None if np.isnan(value) else int(value)
            features.append({**feature, "properties": properties})
        return {"type": "FeatureCollection", "features": features}


def as_source(data: Any, prefix: str = "var") -> ObservationSource:
    if isinstance(data, ObservationSource):
        return data
    return TableSource(data, prefix=prefix)


def load_observations(data: Any) -> ObservationTable:
    """Read explanatory or query data from any supported container."""
    return as_source(data).load()


def load_responses(data: Any) -> ObservationTable:
    """Read one or more response columns (vectors are named response1, ...)."""
    return as_source(data, prefix="response").load()


def assemble_output(predictions: ObservationTable, data: Any) -> Any:
    """Rebuild predictions in the container type of the query data."""
    return as_source(data).assemble(predictions)


def align_sources(
    response: ObservationSource,
    explanatory: ObservationSource,
) -> tuple[ObservationTable, ObservationTable]:
    """
    Read response and explanatory data as tables with matching rows.

    Points over a raster stack are collapsed onto the cells they fall in, so
    each occupied cell is one observation; rasters are matched cell by cell.

    Returns:
        Tuple of (responses, observations)
    """
    if isinstance(response, RasterSource):
        if not isinstance(explanatory, RasterSource):
            raise UnsupportedVariableType(
                "If the response is a raster then the explanatory variables must also be one"
            )
        if response.shape != explanatory.shape:
            raise ShapeMismatch(
                f"Response raster {response.shape} and explanatory rasters {explanatory.shape} differ in shape"
            )
        return response.load(), explanatory.load()

    responses = response.load()
    if isinstance(explanatory, RasterSource):
        if not isinstance(response, PointSource):
            raise UnsupportedVariableType(
                "Raster explanatory variables need a raster or point response"
            )
        return explanatory.cells_at_points(response.coordinates, responses)

    observations = explanatory.load()

    check_row_counts(responses.n_rows, observations.n_rows)
    return responses, observations
