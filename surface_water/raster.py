"""
Raster data model.

This module handles:
- Area of interest geometry with its CRS
- Single-scene rasters as xarray Datasets (dims y, x; scalar time coord)
- RasterStack, an immutable per-sensor collection of scenes
"""

from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterator, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import xarray as xr
from pyproj import CRS, Transformer
from shapely import geometry as sgeom
from shapely.geometry.base import BaseGeometry
from shapely.ops import transform as shapely_transform


@dataclass(frozen=True)
class AreaOfInterest:
    """
    Analysis footprint.

    Parameters
    ----------
    geometry : shapely geometry
        Polygon (or multipolygon) in ``crs`` coordinates
    crs : str
        Coordinate reference system of the geometry
    """

    geometry: BaseGeometry
    crs: str = "EPSG:4326"

    @classmethod
    def from_bbox(cls, bbox: Sequence[float], crs: str = "EPSG:4326") -> 'AreaOfInterest':
        """Build from [xmin, ymin, xmax, ymax]."""
        return cls(sgeom.box(*bbox), crs)

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        return self.geometry.bounds

    def same_crs(self, crs: str) -> bool:
        return CRS.from_user_input(self.crs) == CRS.from_user_input(crs)

    def to_crs(self, crs: str) -> 'AreaOfInterest':
        """Reproject the geometry into another CRS."""
        if self.same_crs(crs):
            return self
        transformer = Transformer.from_crs(self.crs, crs, always_xy=True)
        return AreaOfInterest(shapely_transform(transformer.transform, self.geometry), crs)


# Landsat reflective bands
DEFAULT_RESOLUTION = 30.0


def pixel_size(
    x: np.ndarray,
    y: np.ndarray,
    resolution: Optional[float] = None
) -> Tuple[float, float]:
    """
    Pixel width and height from coordinate spacing.

    A one-pixel axis takes the spacing of the other axis; a single-pixel
    grid falls back to ``resolution`` (DEFAULT_RESOLUTION if not given).
    """
    dx = abs(float(x[1] - x[0])) if len(x) > 1 else None
    dy = abs(float(y[1] - y[0])) if len(y) > 1 else None
    fallback = resolution if resolution is not None else DEFAULT_RESOLUTION
    dx = dx if dx is not None else (dy if dy is not None else fallback)
    dy = dy if dy is not None else dx
    return dx, dy


def _grid_bounds(
    x: np.ndarray,
    y: np.ndarray,
    resolution: Optional[float] = None
) -> Tuple[float, float, float, float]:
    # Pixel coordinates are centres; pad by half a pixel
    dx, dy = pixel_size(x, y, resolution)
    return (
        float(np.min(x)) - dx / 2, float(np.min(y)) - dy / 2,
        float(np.max(x)) + dx / 2, float(np.max(y)) + dy / 2,
    )


def make_scene(
    bands: Dict[str, np.ndarray],
    time,
    x: Sequence[float],
    y: Sequence[float],
    sensor: Optional[str] = None,
    footprint: Optional[BaseGeometry] = None,
    resolution: Optional[float] = None
) -> xr.Dataset:
    """
    Build a single-scene raster.

    Parameters
    ----------
    bands : dict
        {band_name: 2-D array shaped (len(y), len(x))}. NaN marks invalid
        pixels.
    time : str, datetime or np.datetime64
        Capture timestamp
    x, y : sequence of float
        Pixel centre coordinates
    sensor : str, optional
        Sensor generation tag, e.g. 'LANDSAT_8'
    footprint : shapely geometry, optional
        Scene footprint. Defaults to the grid bounds.
    resolution : float, optional
        Pixel size for grids one pixel wide or tall, where it cannot be
        read from the coordinates

    Returns
    -------
    xr.Dataset
        Scene with dims (y, x), a scalar ``time`` coordinate and
        ``footprint``/``sensor`` attrs
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)

    if footprint is None:
        footprint = sgeom.box(*_grid_bounds(x, y, resolution))

    data_vars = {
        name: (('y', 'x'), np.asarray(values, dtype=float))
        for name, values in bands.items()
    }
    return xr.Dataset(
        data_vars,
        coords={'y': y, 'x': x, 'time': pd.Timestamp(time).to_datetime64()},
        attrs={'footprint': footprint, 'sensor': sensor, 'resolution': resolution},
    )


def scene_time(image: xr.Dataset) -> np.datetime64:
    return image['time'].values.astype('datetime64[ns]')[()]


def scene_footprint(image: xr.Dataset) -> BaseGeometry:
    footprint = image.attrs.get('footprint')
    if footprint is None:
        footprint = sgeom.box(*_grid_bounds(
            image['x'].values, image['y'].values, image.attrs.get('resolution')
        ))
    return footprint


def validity_mask(image: xr.Dataset) -> xr.DataArray:
    """True where every band holds a value."""
    valid = None
    for name in image.data_vars:
        band_valid = image[name].notnull()
        valid = band_valid if valid is None else valid & band_valid
    return valid


@dataclass(frozen=True)
class RasterStack:
    """
    Immutable collection of scenes from one sensor generation.

    Ordering carries no meaning. Transforms return new stacks.

    Parameters
    ----------
    images : tuple of xr.Dataset
        Scenes built with :func:`make_scene` or loaded from a catalog
    crs : str
        CRS shared by every scene
    sensor : str, optional
        Sensor generation tag; None for stacks already in canonical bands
    """

    images: Tuple[xr.Dataset, ...]
    crs: str
    sensor: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, 'images', tuple(self.images))

    def __len__(self) -> int:
        return len(self.images)

    def __iter__(self) -> Iterator[xr.Dataset]:
        return iter(self.images)

    @property
    def times(self):
        return [scene_time(image) for image in self.images]

    def with_images(self, images) -> 'RasterStack':
        return replace(self, images=tuple(images))

    def map(self, fn: Callable[[xr.Dataset], xr.Dataset]) -> 'RasterStack':
        return self.with_images(fn(image) for image in self.images)

    def filter(self, predicate: Callable[[xr.Dataset], bool]) -> 'RasterStack':
        return self.with_images(image for image in self.images if predicate(image))
