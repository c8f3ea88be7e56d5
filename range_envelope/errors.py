"""
Errors raised by the surface range envelope.
"""


class SREError(ValueError):
    """Base class for invalid inputs to the envelope."""


class InvalidParameter(SREError):
    """The trim fraction is not a real number in [0, 0.5)."""


class ShapeMismatch(SREError):
    """Response and explanatory data do not describe the same sites."""


class VariableMismatch(SREError):
    """Query data lacks variables the envelope was fitted on."""


class VariableOrderConflict(SREError):
    """Variable names are duplicated, so columns cannot be matched by name."""


class UnsupportedVariableType(SREError):
    """A variable is categorical or otherwise not ordered numeric."""


class InsufficientData(SREError):
    """A response column has no presence rows to fit an envelope on."""
