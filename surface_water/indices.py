"""
Spectral indices and threshold masks.

Masks are float rasters: 1 where the source exceeds its threshold, 0 where
it does not, NaN where the source is invalid. Each mask records the name of
its source raster and the threshold in its attrs.
"""

import numpy as np
import xarray as xr

from .engine import normalized_difference


def compute_mndwi(composite: xr.Dataset) -> xr.DataArray:
    """Modified Normalized Difference Water Index, (green - swir1) / (green + swir1)."""
    mndwi = normalized_difference(composite, 'green', 'swir1')
    mndwi.name = 'mndwi'
    return mndwi


def compute_ndvi(composite: xr.Dataset) -> xr.DataArray:
    """Normalized Difference Vegetation Index, (nir - red) / (nir + red)."""
    ndvi = normalized_difference(composite, 'nir', 'red')
    ndvi.name = 'ndvi'
    return ndvi


def threshold_mask(source: xr.DataArray, threshold: float) -> xr.DataArray:
    """
    Strict greater-than threshold.

    A value exactly equal to the threshold is 0.

    Parameters
    ----------
    source : xr.DataArray
        Index or elevation raster
    threshold : float
        Threshold value

    Returns
    -------
    xr.DataArray
        1.0 / 0.0 mask, NaN where ``source`` is NaN
    """
    mask = xr.where(source.notnull(), (source > threshold).astype(np.float32), np.nan)
    mask.name = f'{source.name or "source"}_mask'
    mask.attrs = {'source': source.name, 'threshold': float(threshold)}
    return mask


def elevation_mask(hand: xr.DataArray, threshold: float) -> xr.DataArray:
    """1 where height above nearest drainage exceeds ``threshold``."""
    if hand.name is None:
        hand = hand.rename('hand')
    return threshold_mask(hand, threshold)
