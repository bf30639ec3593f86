"""
Surface water classification.

This module handles:
- Combination of water, vegetation and elevation masks
- The ClassificationResult bundle for one run
- Per-run classification from a merged time cube
"""

import logging
from dataclasses import dataclass, fields, replace
from typing import Optional

import dask
import numpy as np
import xarray as xr

from .compositing import percentile_composite
from .config import ClassificationParameters, DEFAULT_PARAMETERS
from .indices import compute_mndwi, compute_ndvi, elevation_mask, threshold_mask
from .raster import AreaOfInterest

logger = logging.getLogger(__name__)

NO_WATER = 0
TEMPORARY_WATER = 1
PERMANENT_WATER = 2


def clean_water_mask(
    water: xr.DataArray,
    vegetation: xr.DataArray,
    elevation: xr.DataArray
) -> xr.DataArray:
    """
    water AND NOT vegetation AND NOT elevation.

    NaN wherever any input mask is NaN.
    """
    valid = water.notnull() & vegetation.notnull() & elevation.notnull()
    clean = ((water == 1) & (vegetation == 0) & (elevation == 0)).astype('float32')
    return clean.where(valid)


def combine_water(permanent_clean: xr.DataArray, temporary_clean: xr.DataArray) -> xr.DataArray:
    """
    Final classified raster: permanent + temporary, with 0 masked out.

    Valid pixels are 1 (one regime) or 2 (both regimes).
    """
    total = permanent_clean + temporary_clean
    water = total.where(total > 0)
    water.name = 'water'
    return water


def align_hand(hand: xr.DataArray, like: xr.Dataset) -> xr.DataArray:
    """Resample the HAND raster onto a composite grid (nearest neighbour)."""
    same_grid = (
        np.array_equal(hand['x'].values, like['x'].values)
        and np.array_equal(hand['y'].values, like['y'].values)
    )
    if same_grid:
        return hand
    return hand.interp_like(like, method='nearest')


@dataclass(frozen=True)
class ClassificationResult:
    """
    Everything produced by one classification run.

    Index rasters and the masks derived from them are kept side by side.
    All fields are lazy until :meth:`compute` is called.
    """

    composite_permanent: xr.Dataset
    composite_temporary: xr.Dataset
    mndwi_permanent: xr.DataArray
    mndwi_temporary: xr.DataArray
    ndvi_permanent: xr.DataArray
    ndvi_temporary: xr.DataArray
    mask_water_permanent: xr.DataArray
    mask_water_temporary: xr.DataArray
    mask_ndvi_permanent: xr.DataArray
    mask_ndvi_temporary: xr.DataArray
    mask_hand: xr.DataArray
    water_permanent_clean: xr.DataArray
    water_temporary_clean: xr.DataArray
    water: xr.DataArray

    @property
    def n_observations(self) -> int:
        return self.composite_permanent.attrs.get('n_observations', 0)

    def compute(self) -> 'ClassificationResult':
        """Evaluate every field in one pass and return an eager copy."""
        names = [f.name for f in fields(self)]
        values = dask.compute(*(getattr(self, name) for name in names))
        return replace(self, **dict(zip(names, values)))

    def has_data(self) -> bool:
        """True if any composite pixel holds a value."""
        return any(
            bool(band.notnull().any()) for band in self.composite_permanent.data_vars.values()
        )


def classify(
    cube: xr.Dataset,
    hand: xr.DataArray,
    params: ClassificationParameters = DEFAULT_PARAMETERS,
    aoi: Optional[AreaOfInterest] = None
) -> ClassificationResult:
    """
    Classify surface water from a merged, preprocessed cube.

    Parameters
    ----------
    cube : xr.Dataset
        Time cube with canonical bands
    hand : xr.DataArray
        Height above nearest drainage on (or resampled to) the cube grid
    params : ClassificationParameters
        Percentiles and thresholds
    aoi : AreaOfInterest, optional
        Clip composites to this area

    Returns
    -------
    ClassificationResult
        Lazy result
    """
    composite_permanent = percentile_composite(cube, params.percentile_permanent, aoi)
    composite_temporary = percentile_composite(cube, params.percentile_temporary, aoi)

    mndwi_permanent = compute_mndwi(composite_permanent)
    mndwi_temporary = compute_mndwi(composite_temporary)
    ndvi_permanent = compute_ndvi(composite_permanent)
    ndvi_temporary = compute_ndvi(composite_temporary)

    mask_water_permanent = threshold_mask(mndwi_permanent, params.water_index_threshold)
    mask_water_temporary = threshold_mask(mndwi_temporary, params.water_index_threshold)
    mask_ndvi_permanent = threshold_mask(ndvi_permanent, params.vegetation_index_threshold)
    mask_ndvi_temporary = threshold_mask(ndvi_temporary, params.vegetation_index_threshold)
    mask_hand = elevation_mask(align_hand(hand, composite_permanent), params.elevation_threshold)

    water_permanent_clean = clean_water_mask(mask_water_permanent, mask_ndvi_permanent, mask_hand)
    water_temporary_clean = clean_water_mask(mask_water_temporary, mask_ndvi_temporary, mask_hand)

    return ClassificationResult(
        composite_permanent=composite_permanent,
        composite_temporary=composite_temporary,
        mndwi_permanent=mndwi_permanent,
        mndwi_temporary=mndwi_temporary,
        ndvi_permanent=ndvi_permanent,
        ndvi_temporary=ndvi_temporary,
        mask_water_permanent=mask_water_permanent,
        mask_water_temporary=mask_water_temporary,
        mask_ndvi_permanent=mask_ndvi_permanent,
        mask_ndvi_temporary=mask_ndvi_temporary,
        mask_hand=mask_hand,
        water_permanent_clean=water_permanent_clean,
        water_temporary_clean=water_temporary_clean,
        water=combine_water(water_permanent_clean, water_temporary_clean),
    )
