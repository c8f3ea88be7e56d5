"""
Surface Range Envelope

Rectilinear environmental envelope (BIOCLIM) for species distribution
modelling: per-variable trimmed quantile bounds at presence sites, and a
binary inside/outside prediction for new sites.
"""

from .errors import (
    SREError,
    InvalidParameter,
    ShapeMismatch,
    VariableMismatch,
    VariableOrderConflict,
    UnsupportedVariableType,
    InsufficientData,
)
from .tables import ObservationTable
from .envelope import DEFAULT_QUANT, Envelope, fit_envelope
from .projection import project
from .sources import (
    ObservationSource,
    TableSource,
    RasterSource,
    RasterPrediction,
    PointSource,
    load_observations,
    load_responses,
    assemble_output,
)
from .pipeline import SREResult, sre
from .model import SurfaceRangeEnvelope

__all__ = [
    'SREError',
    'InvalidParameter',
    'ShapeMismatch',
    'VariableMismatch',
    'VariableOrderConflict',
    'UnsupportedVariableType',
    'InsufficientData',
    'ObservationTable',
    'DEFAULT_QUANT',
    'Envelope',
    'fit_envelope',
    'project',
    'ObservationSource',
    'TableSource',
    'RasterSource',
    'RasterPrediction',
    'PointSource',
    'load_observations',
    'load_responses',
    'assemble_output',
    'SREResult',
    'sre',
    'SurfaceRangeEnvelope',
]
