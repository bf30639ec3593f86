"""
Preprocessing of per-sensor Landsat stacks.

This module handles:
- Stack filtering by area of interest and inclusive date range
- Cloud suppression with a simple spectral cloud score
- Fringe removal for Landsat 5/7 scan-edge artifacts
- Merging of harmonized per-sensor stacks into one time cube
"""

import logging
from typing import Optional, Sequence

import dask.array as da
import numpy as np
import pandas as pd
import rioxarray  # noqa: F401  (registers the .rio accessor)
import xarray as xr

from .config import ClassificationParameters
from .engine import (
    filter_bounds,
    filter_date,
    normalized_difference,
    reduce_neighborhood,
    update_mask,
)
from .errors import CRSMismatch, InvalidParameter
from .raster import AreaOfInterest, RasterStack, scene_time, validity_mask
from .sensors import STD_NAMES, SensorBandMap, get_band_map, harmonize_stack

logger = logging.getLogger(__name__)


# 41x41 scan-fringe kernel: 279 unit cells along a diagonal band
FRINGE_KERNEL = np.array([
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
    [0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0],
], dtype=np.uint8)

# Every kernel cell must be valid for a pixel to survive defringing
FRINGE_COUNT_THRESHOLD = 279
# Kernel half-width in pixels; scenes need this much context around the AOI
FRINGE_RADIUS = FRINGE_KERNEL.shape[0] // 2


# --------------------------------------------------------------------
# Stack filtering
# --------------------------------------------------------------------

def filter_images(
    stack: RasterStack,
    aoi: AreaOfInterest,
    date_start,
    date_end
) -> RasterStack:
    """
    Select scenes intersecting the area of interest within [start, end].

    The end date is inclusive: the upper bound is advanced by one day.

    Parameters
    ----------
    stack : RasterStack
        Raw per-sensor stack
    aoi : AreaOfInterest
        Analysis footprint, in the stack's CRS
    date_start, date_end : date
        Closed date interval

    Returns
    -------
    RasterStack
        Filtered stack

    Raises
    ------
    CRSMismatch
        If the stack and the area of interest use different CRSs
    """
    if not aoi.same_crs(stack.crs):
        raise CRSMismatch(f"Stack CRS {stack.crs} does not match area of interest CRS {aoi.crs}")

    end_exclusive = pd.Timestamp(date_end) + pd.Timedelta(days=1)
    filtered = filter_date(filter_bounds(stack, aoi), date_start, end_exclusive)
    logger.info(
        f"{stack.sensor or 'stack'}: {len(filtered)}/{len(stack)} scenes "
        f"between {date_start} and {date_end}"
    )
    return filtered


# --------------------------------------------------------------------
# Cloud suppression
# --------------------------------------------------------------------

def _rescale(values: xr.DataArray, low: float, high: float) -> xr.DataArray:
    return ((values - low) / (high - low)).clip(0, 1)


def simple_cloud_score(
    image: xr.Dataset,
    band_map: Optional[SensorBandMap] = None
) -> xr.DataArray:
    """
    Per-pixel cloud likelihood in [0, 100].

    The score is the minimum of several clamped indicators: bright blue,
    bright visible, bright infrared, cold thermal (when a thermal band is
    present) and a low snow index. The rescale ranges are tuned for
    top-of-atmosphere reflectance; scenes from ``data_loader`` are
    Collection 2 surface reflectance, which scores slightly lower over
    bright targets.

    Parameters
    ----------
    image : xr.Dataset
        Scene with native (``band_map`` given) or canonical band names
    band_map : SensorBandMap, optional
        Band map used to resolve canonical names to native ids

    Returns
    -------
    xr.DataArray
        Cloud score, NaN where the input is invalid

    Raises
    ------
    KeyError
        If a required band is missing
    """
    def native(name):
        return band_map.native(name) if band_map is not None else name

    def band(name):
        return image[native(name)]

    blue, green, red = band('blue'), band('green'), band('red')
    nir, swir1, swir2 = band('nir'), band('swir1'), band('swir2')

    score = _rescale(blue, 0.1, 0.3)
    score = np.fmin(score, _rescale(red + green + blue, 0.2, 0.8))
    score = np.fmin(score, _rescale(nir + swir1 + swir2, 0.3, 0.8))

    if band_map is not None and band_map.thermal_band in image.data_vars:
        score = np.fmin(score, _rescale(image[band_map.thermal_band], 300, 290))

    ndsi = normalized_difference(image, native('green'), native('swir1'))
    score = np.fmin(score, _rescale(ndsi, 0.8, 0.6))

    # fmin ignores NaN, so invalid inputs are restored explicitly
    valid = blue.notnull() & green.notnull() & red.notnull() & nir.notnull() \
        & swir1.notnull() & swir2.notnull()
    return (score * 100).where(valid)


def bust_clouds(stack: RasterStack, threshold: float) -> RasterStack:
    """
    Mask pixels whose cloud score is at or above ``threshold``.

    A threshold of 0 disables suppression and returns the stack unchanged.
    Images lacking a band needed for scoring pass through untouched.
    """
    if threshold < 0:
        raise InvalidParameter(f"cloud score threshold must be >= 0, got {threshold}")
    if threshold == 0:
        return stack

    band_map = get_band_map(stack.sensor) if stack.sensor else None

    def suppress(image):
        try:
            score = simple_cloud_score(image, band_map)
        except KeyError as e:
            logger.debug(f"No cloud score for image at {scene_time(image)}: {e}")
            return image
        return update_mask(image, score < threshold)

    return stack.map(suppress)


# --------------------------------------------------------------------
# Fringe removal
# --------------------------------------------------------------------

def defringe_image(image: xr.Dataset) -> xr.Dataset:
    """
    Mask pixels near scan-fringe edges.

    A pixel is kept only if every cell of FRINGE_KERNEL around it is
    valid. Cells beyond the grid edge count as invalid.
    """
    valid_count = reduce_neighborhood(validity_mask(image), FRINGE_KERNEL)
    return update_mask(image, valid_count >= FRINGE_COUNT_THRESHOLD)


def defringe_stack(stack: RasterStack) -> RasterStack:
    return stack.map(defringe_image)


# --------------------------------------------------------------------
# Stack merging
# --------------------------------------------------------------------

def _empty_cube(like, crs: Optional[str]) -> xr.Dataset:
    shape = (0, like.sizes['y'], like.sizes['x'])
    cube = xr.Dataset(
        {
            name: (('time', 'y', 'x'), da.full(shape, np.nan, dtype=np.float64))
            for name in STD_NAMES
        },
        coords={
            'time': np.array([], dtype='datetime64[ns]'),
            'y': like['y'].values,
            'x': like['x'].values,
        },
    )
    return cube.rio.write_crs(crs) if crs else cube


def merge_stacks(stacks: Sequence[RasterStack], like=None) -> xr.Dataset:
    """
    Merge harmonized stacks into a single time cube.

    Parameters
    ----------
    stacks : sequence of RasterStack
        Harmonized stacks sharing a CRS
    like : xr.Dataset or xr.DataArray, optional
        Reference grid for the empty cube returned when no scene remains

    Returns
    -------
    xr.Dataset
        Cube with dims (time, y, x), sorted by time, chunked as a single
        block along time
    """
    images = [image for stack in stacks for image in stack]
    crs = stacks[0].crs if stacks else None

    if not images:
        if like is None:
            raise ValueError("No scenes to merge and no reference grid given")
        logger.info("No scenes left after preprocessing; building an empty cube")
        return _empty_cube(like, crs)

    cube = xr.concat(images, dim='time', join='outer', combine_attrs='drop').sortby('time')
    cube = cube.chunk({'time': -1})
    if crs:
        cube = cube.rio.write_crs(crs)

    logger.info(f"Merged {len(images)} scenes from {len(stacks)} stacks")
    return cube


def preprocess_stack(
    stack: RasterStack,
    aoi: AreaOfInterest,
    params: ClassificationParameters
) -> RasterStack:
    """
    Filter, cloud-mask, harmonize and (optionally) defringe one sensor stack.
    """
    stack = filter_images(stack, aoi, params.date_start, params.date_end)

    if params.cloud_suppression_enabled:
        stack = bust_clouds(stack, params.cloud_score_threshold)

    stack = harmonize_stack(stack)

    if params.defringe_enabled and stack.sensor and get_band_map(stack.sensor).defringe:
        stack = defringe_stack(stack)

    return stack
