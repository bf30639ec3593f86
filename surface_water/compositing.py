"""
Percentile compositing of a merged Landsat time cube.
"""

import logging
import warnings
from typing import Optional

import dask.array as da
import numpy as np
import xarray as xr

from .engine import clip, reduce_percentile
from .errors import EmptyStackResult, InvalidParameter
from .raster import AreaOfInterest

logger = logging.getLogger(__name__)


def _empty_composite(cube: xr.Dataset) -> xr.Dataset:
    shape = (cube.sizes['y'], cube.sizes['x'])
    return xr.Dataset(
        {name: (('y', 'x'), da.full(shape, np.nan, dtype=np.float64)) for name in cube.data_vars},
        coords={'y': cube['y'].values, 'x': cube['x'].values},
    )


def percentile_composite(
    cube: xr.Dataset,
    percentile: float,
    aoi: Optional[AreaOfInterest] = None
) -> xr.Dataset:
    """
    Reduce a time cube to its per-pixel, per-band percentile.

    Parameters
    ----------
    cube : xr.Dataset
        Merged cube with dims (time, y, x) and canonical bands
    percentile : float
        Percentile in [0, 100]
    aoi : AreaOfInterest, optional
        Pixels outside the area are invalidated

    Returns
    -------
    xr.Dataset
        Lazy composite with attrs ``percentile`` and ``n_observations``.
        Pixels without valid observations are NaN; a cube with no scenes
        yields an all-NaN composite and an EmptyStackResult warning.
    """
    if not 0 <= percentile <= 100:
        raise InvalidParameter(f"percentile must be in [0, 100], got {percentile}")

    n_obs = cube.sizes.get('time', 0)

    if n_obs == 0:
        warnings.warn(
            f"No observations for the {percentile:g}th percentile composite",
            EmptyStackResult,
            stacklevel=2,
        )
        composite = _empty_composite(cube)
    else:
        composite = reduce_percentile(cube, percentile)

    if aoi is not None:
        composite = clip(composite, aoi)

    composite.attrs['percentile'] = percentile
    composite.attrs['n_observations'] = n_obs
    logger.debug(f"Percentile {percentile:g} composite over {n_obs} scenes")

    return composite
