"""
Raster execution engine.

The operations the classification pipeline needs, expressed over xarray
objects backed by dask. Laziness is part of the contract:

- Pixel operations (select/rename, masking, neighbourhood and percentile
  reductions, band algebra, clipping) only build a dask graph. They never
  read pixel values.
- Stack filters (bounds and date) work on scene metadata only.
- Nothing is evaluated until :func:`compute` (or ``.compute()`` on a
  result) runs, and then all requested outputs are evaluated in a single
  ``dask.compute`` call so a failure anywhere fails the whole call.

Independent branches of the graph (for example the twelve monthly
classifications) are evaluated in parallel by whichever dask scheduler is
active.
"""

from datetime import date, datetime
from typing import Sequence, Union

import dask
import numpy as np
import pandas as pd
import shapely
import xarray as xr
from scipy import ndimage

from .raster import AreaOfInterest, RasterStack, scene_footprint, scene_time

DateLike = Union[str, date, datetime, np.datetime64]


def _as_datetime64(value: DateLike) -> np.datetime64:
    return pd.Timestamp(value).to_datetime64()


# --------------------------------------------------------------------
# Stack (metadata) operations
# --------------------------------------------------------------------

def filter_bounds(stack: RasterStack, aoi: AreaOfInterest) -> RasterStack:
    """Keep scenes whose footprint intersects the area of interest."""
    return stack.filter(lambda image: scene_footprint(image).intersects(aoi.geometry))


def filter_date(stack: RasterStack, start: DateLike, end: DateLike) -> RasterStack:
    """Keep scenes captured in the half-open interval [start, end)."""
    start64 = _as_datetime64(start)
    end64 = _as_datetime64(end)
    return stack.filter(lambda image: start64 <= scene_time(image) < end64)


# --------------------------------------------------------------------
# Pixel operations
# --------------------------------------------------------------------

def select_and_rename(
    image: xr.Dataset,
    source_names: Sequence[str],
    target_names: Sequence[str]
) -> xr.Dataset:
    """Select ``source_names`` and rename them positionally to ``target_names``."""
    if len(source_names) != len(target_names):
        raise ValueError("source_names and target_names differ in length")
    return xr.Dataset(
        {target: image[source] for source, target in zip(source_names, target_names)},
        attrs=dict(image.attrs),
    )


def update_mask(raster, valid: xr.DataArray):
    """Invalidate (set NaN) every pixel where ``valid`` is False."""
    return raster.where(valid)


def _correlate(data: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    # Leading (non-spatial) dims get a unit kernel axis
    weights = kernel.reshape((1,) * (data.ndim - kernel.ndim) + kernel.shape)
    return ndimage.correlate(data, weights, mode='constant', cval=0.0)


def reduce_neighborhood(mask: xr.DataArray, kernel) -> xr.DataArray:
    """
    Weighted neighbourhood sum of a mask.

    The kernel is centred on each pixel. Cells beyond the grid edge count
    as zero.

    Parameters
    ----------
    mask : xr.DataArray
        Boolean or numeric raster with dims (..., y, x)
    kernel : array-like
        2-D weights with odd side lengths

    Returns
    -------
    xr.DataArray
        float32 neighbourhood sums, same shape as ``mask``
    """
    kernel = np.asarray(kernel, dtype=np.float32)
    data = mask.astype(np.float32)
    if data.chunks is not None:
        data = data.chunk({'y': -1, 'x': -1})

    return xr.apply_ufunc(
        _correlate,
        data,
        kwargs={'kernel': kernel},
        input_core_dims=[['y', 'x']],
        output_core_dims=[['y', 'x']],
        dask='parallelized',
        output_dtypes=[np.float32],
    )


def reduce_percentile(cube: xr.Dataset, percentile: float) -> xr.Dataset:
    """
    Per-pixel, per-band percentile over the time dimension.

    NaN observations are skipped; pixels with no valid observation stay
    NaN. Linear interpolation between order statistics.
    """
    reduced = cube.chunk({'time': -1}).quantile(percentile / 100.0, dim='time', skipna=True)
    return reduced.drop_vars('quantile')


def normalized_difference(raster: xr.Dataset, band_a: str, band_b: str) -> xr.DataArray:
    """
    (a - b) / (a + b), clipped to [-1, 1].

    A zero denominator yields NaN.
    """
    a = raster[band_a]
    b = raster[band_b]
    total = a + b
    nd = (a - b) / total.where(total != 0)
    return nd.clip(-1, 1)


def clip(raster, aoi: AreaOfInterest):
    """Invalidate pixels whose centre lies outside the area of interest."""
    xx, yy = np.meshgrid(raster['x'].values, raster['y'].values)
    inside = xr.DataArray(
        shapely.intersects_xy(aoi.geometry, xx, yy),
        dims=('y', 'x'),
        coords={'y': raster['y'].values, 'x': raster['x'].values},
    )
    return raster.where(inside)


def compute(*objs):
    """Evaluate lazy results together in one pass."""
    return dask.compute(*objs)
