import numpy as np
import pytest
import xarray as xr

from surface_water import AreaOfInterest, RasterStack, make_scene
from surface_water.sensors import SENSOR_BAND_MAPS, STD_NAMES

CRS = "EPSG:32633"
X0, Y0, RES = 500000.0, 4000000.0, 30.0

# Bright-water pixel: MNDWI = (50 - 10) / 60, NDVI = 0
WATER_PIXEL = {
    'blue2': 10.0, 'blue': 10.0, 'green': 50.0, 'red': 10.0,
    'nir': 10.0, 'swir1': 10.0, 'swir2': 10.0,
}


def grid(shape):
    ny, nx = shape
    x = X0 + RES * (np.arange(nx) + 0.5)
    y = Y0 - RES * (np.arange(ny) + 0.5)
    return x, y


def _band_arrays(values, shape):
    return {
        name: np.broadcast_to(np.asarray(values[name], dtype=float), shape).copy()
        for name in STD_NAMES
    }


@pytest.fixture
def crs():
    return CRS


@pytest.fixture
def canonical_scene():
    """Factory for scenes already in canonical band names."""
    def _make(time, shape=(1, 1), **overrides):
        values = dict(WATER_PIXEL, **overrides)
        x, y = grid(shape)
        return make_scene(_band_arrays(values, shape), time, x, y)
    return _make


@pytest.fixture
def landsat_scene():
    """Factory for scenes in a sensor's native band ids."""
    def _make(time, sensor='LANDSAT_8', shape=(1, 1), drop=(), **overrides):
        values = dict(WATER_PIXEL, **overrides)
        canonical = _band_arrays(values, shape)
        band_map = SENSOR_BAND_MAPS[sensor]
        bands = {
            native: canonical[name]
            for name, native in band_map.mapping.items()
            if native not in drop
        }
        x, y = grid(shape)
        return make_scene(bands, time, x, y, sensor=sensor)
    return _make


@pytest.fixture
def make_stack():
    def _make(images, sensor=None, crs=CRS):
        return RasterStack(tuple(images), crs, sensor)
    return _make


@pytest.fixture
def make_aoi():
    def _make(shape=(1, 1)):
        ny, nx = shape
        return AreaOfInterest.from_bbox([X0, Y0 - RES * ny, X0 + RES * nx, Y0], CRS)
    return _make


@pytest.fixture
def aoi(make_aoi):
    return make_aoi()


@pytest.fixture
def make_hand():
    def _make(value=10.0, shape=(1, 1)):
        x, y = grid(shape)
        return xr.DataArray(
            np.full(shape, value, dtype=float),
            dims=('y', 'x'),
            coords={'y': y, 'x': x},
            name='hand',
        )
    return _make


@pytest.fixture
def hand(make_hand):
    return make_hand()


@pytest.fixture
def canonical_cube():
    """Factory for a (time, y, x) cube with canonical bands."""
    def _make(times, values_per_time=None, shape=(1, 1)):
        x, y = grid(shape)
        images = []
        for i, t in enumerate(times):
            values = dict(WATER_PIXEL)
            if values_per_time is not None:
                values.update(values_per_time[i])
            images.append(make_scene(_band_arrays(values, shape), t, x, y))
        return xr.concat(images, dim='time', combine_attrs='drop')
    return _make
