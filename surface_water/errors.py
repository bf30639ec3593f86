"""
Error taxonomy for the surface water pipeline.

Fatal conditions (CRS mismatch, invalid parameters) are exceptions checked
once at pipeline entry. Per-image problems (missing bands) are raised by the
single-image transforms and caught by the stack-level ones, which drop the
offending image and continue. An empty stack is not an error at all: it is
reported through the EmptyStackResult warning category and propagates as an
all-invalid raster.
"""


class SurfaceWaterError(Exception):
    """Base class for all pipeline errors."""


class CRSMismatch(SurfaceWaterError, ValueError):
    """Stack and area of interest are in different coordinate reference systems."""


class BandMappingIncomplete(SurfaceWaterError, KeyError):
    """An image lacks a band required by its sensor band map."""

    def __init__(self, missing, sensor=None):
        self.missing = list(missing)
        self.sensor = sensor
        super().__init__(f"{sensor or 'image'} is missing bands {self.missing}")

    def __str__(self):
        return self.args[0]


class UnknownSensor(SurfaceWaterError, KeyError):
    """No band map is registered for the requested sensor generation."""

    def __str__(self):
        return self.args[0]


class InvalidParameter(SurfaceWaterError, ValueError):
    """A classification parameter is outside its domain."""


class EmptyStackResult(UserWarning):
    """A reduction ran over zero observations and produced an all-invalid raster."""
