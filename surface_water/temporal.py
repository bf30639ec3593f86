"""
Monthly decomposition of a classification run.
"""

import calendar
import logging
from typing import Dict, Optional

import numpy as np
import xarray as xr

from .classification import ClassificationResult, classify
from .config import ClassificationParameters, DEFAULT_PARAMETERS
from .raster import AreaOfInterest

logger = logging.getLogger(__name__)

MONTHS = tuple(range(1, 13))
MONTH_NAMES = {month: calendar.month_name[month] for month in MONTHS}


def select_month(cube: xr.Dataset, month: int) -> xr.Dataset:
    """Observations captured in calendar ``month`` of any year."""
    if month not in MONTHS:
        raise ValueError(f"month must be in 1..12, got {month}")
    months = cube['time'].dt.month.values
    return cube.isel(time=np.flatnonzero(months == month))


def classify_monthly(
    cube: xr.Dataset,
    hand: xr.DataArray,
    params: ClassificationParameters = DEFAULT_PARAMETERS,
    aoi: Optional[AreaOfInterest] = None
) -> Dict[int, ClassificationResult]:
    """
    Classify each calendar month separately.

    Months without observations yield an all-invalid result rather than
    an error. The twelve results share no state and are evaluated in
    parallel when computed together.

    Parameters
    ----------
    cube : xr.Dataset
        Merged, preprocessed cube
    hand : xr.DataArray
        Height above nearest drainage
    params : ClassificationParameters
        Run configuration
    aoi : AreaOfInterest, optional
        Clip composites to this area

    Returns
    -------
    dict
        {month: ClassificationResult} for months 1..12
    """
    results = {}
    for month in MONTHS:
        subset = select_month(cube, month)
        logger.debug(f"{MONTH_NAMES[month]}: {subset.sizes['time']} scenes")
        results[month] = classify(subset, hand, params, aoi)

    populated = [MONTH_NAMES[m] for m, r in results.items() if r.n_observations > 0]
    logger.info(f"Monthly classification: data in {len(populated)} months {populated}")
    return results
