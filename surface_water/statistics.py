"""
Summary statistics for classified water rasters.

This module handles:
- IoU between water extents
- Pixel counts and areas per water class
- Monthly water summary tables
"""

from typing import Dict, Optional

import numpy as np
import pandas as pd
import xarray as xr

from .classification import ClassificationResult, PERMANENT_WATER, TEMPORARY_WATER
from .temporal import MONTH_NAMES
from .raster import pixel_size


def water_extent(water) -> np.ndarray:
    """Boolean extent of a classified raster (any valid pixel is water)."""
    values = water.values if isinstance(water, xr.DataArray) else np.asarray(water, dtype=float)
    return np.isfinite(values) & (values > 0)


def compute_iou(water1, water2) -> float:
    """
    Compute Intersection over Union between two water extents.

    IoU = |A ∩ B| / |A ∪ B|

    Parameters
    ----------
    water1, water2 : xr.DataArray or np.ndarray
        Classified rasters (NaN = no water) or boolean masks

    Returns
    -------
    float
        IoU score in [0, 1]
    """
    extent1 = water_extent(water1)
    extent2 = water_extent(water2)

    intersection = np.logical_and(extent1, extent2).sum()
    union = np.logical_or(extent1, extent2).sum()

    if union == 0:
        # Both extents empty - consider as perfect match
        return 1.0

    return float(intersection / union)


def pixel_area(raster: xr.DataArray, resolution: Optional[float] = None) -> float:
    """
    Area of one pixel in squared CRS units, from coordinate spacing.

    Single-pixel rasters use ``resolution`` (30 m Landsat pixels by default).
    """
    dx, dy = pixel_size(raster['x'].values, raster['y'].values, resolution)
    return dx * dy


def water_class_counts(water: xr.DataArray) -> Dict[str, int]:
    """
    Count pixels per water class.

    Returns
    -------
    dict
        {'temporary': n, 'permanent': n, 'water': n}
    """
    values = np.asarray(water.values, dtype=float)
    temporary = int(np.sum(values == TEMPORARY_WATER))
    permanent = int(np.sum(values == PERMANENT_WATER))
    return {'temporary': temporary, 'permanent': permanent, 'water': temporary + permanent}


def water_area(water: xr.DataArray, area_per_pixel: Optional[float] = None) -> Dict[str, float]:
    """Water area per class in squared CRS units (m² for projected grids)."""
    if area_per_pixel is None:
        area_per_pixel = pixel_area(water)
    counts = water_class_counts(water)
    return {name: n * area_per_pixel for name, n in counts.items()}


def monthly_water_summary(
    monthly: Dict[int, ClassificationResult],
    reference: Optional[ClassificationResult] = None
) -> pd.DataFrame:
    """
    Summarise monthly classifications.

    Parameters
    ----------
    monthly : dict
        {month: ClassificationResult}, computed
    reference : ClassificationResult, optional
        Full-period result; adds an IoU column against it

    Returns
    -------
    pd.DataFrame
        One row per month
    """
    rows = []
    for month in sorted(monthly):
        result = monthly[month]
        counts = water_class_counts(result.water)
        row = {
            'month': month,
            'month_name': MONTH_NAMES[month],
            'n_observations': result.n_observations,
            'temporary_pixels': counts['temporary'],
            'permanent_pixels': counts['permanent'],
            'water_pixels': counts['water'],
            'water_area': counts['water'] * pixel_area(result.water),
            'has_data': result.has_data(),
        }
        if reference is not None:
            row['iou_with_full_period'] = compute_iou(result.water, reference.water)
        rows.append(row)

    return pd.DataFrame(rows)
