"""
End-to-end surface water tool.

Checks inputs once, preprocesses every per-sensor stack, merges them into
one cube and classifies the full period (and each month on request). The
returned results are lazy; ``SurfaceWaterResults.compute`` evaluates all of
them in a single pass.
"""

import logging
from dataclasses import dataclass, fields, replace
from typing import Dict, List, Optional, Sequence

import dask
import xarray as xr

from .classification import ClassificationResult, classify
from .config import ClassificationParameters, DEFAULT_PARAMETERS
from .errors import CRSMismatch
from .preprocessing import merge_stacks, preprocess_stack
from .raster import AreaOfInterest, RasterStack
from .temporal import classify_monthly

logger = logging.getLogger(__name__)

RESULT_FIELDS = [f.name for f in fields(ClassificationResult)]


def _compute_results(results: List[ClassificationResult]) -> List[ClassificationResult]:
    flat = [getattr(result, name) for result in results for name in RESULT_FIELDS]
    values = dask.compute(*flat)

    n = len(RESULT_FIELDS)
    return [
        replace(result, **dict(zip(RESULT_FIELDS, values[i * n:(i + 1) * n])))
        for i, result in enumerate(results)
    ]


@dataclass(frozen=True)
class SurfaceWaterResults:
    """
    Output of :func:`run_surface_water_tool`.

    Parameters
    ----------
    cube : xr.Dataset
        Merged, preprocessed time cube
    result : ClassificationResult
        Full-period classification
    monthly : dict, optional
        {month (1-12): ClassificationResult} when monthly mode was requested
    """

    cube: xr.Dataset
    result: ClassificationResult
    monthly: Optional[Dict[int, ClassificationResult]] = None

    def compute(self) -> 'SurfaceWaterResults':
        """Evaluate the full-period and every monthly result together."""
        months = list(self.monthly) if self.monthly is not None else []
        computed = _compute_results([self.result] + [self.monthly[m] for m in months])

        monthly = dict(zip(months, computed[1:])) if self.monthly is not None else None
        return replace(self, result=computed[0], monthly=monthly)


def check_inputs(stacks: Sequence[RasterStack], aoi: AreaOfInterest) -> None:
    """Raise CRSMismatch if any stack is not in the CRS of ``aoi``."""
    for stack in stacks:
        if not aoi.same_crs(stack.crs):
            raise CRSMismatch(
                f"{stack.sensor or 'Stack'} CRS {stack.crs} does not match "
                f"area of interest CRS {aoi.crs}"
            )


def run_surface_water_tool(
    stacks: Sequence[RasterStack],
    aoi: AreaOfInterest,
    hand: xr.DataArray,
    params: ClassificationParameters = DEFAULT_PARAMETERS
) -> SurfaceWaterResults:
    """
    Run the surface water tool over per-sensor Landsat stacks.

    Parameters
    ----------
    stacks : sequence of RasterStack
        One raw stack per sensor generation, all in the CRS of ``aoi``
    aoi : AreaOfInterest
        Analysis footprint
    hand : xr.DataArray
        Height above nearest drainage raster
    params : ClassificationParameters
        Run configuration

    Returns
    -------
    SurfaceWaterResults
        Lazy results; call ``.compute()`` to evaluate

    Raises
    ------
    CRSMismatch
        If any stack is not in the CRS of ``aoi``
    """
    check_inputs(stacks, aoi)

    logger.info(
        f"Surface water tool: {params.date_start} to {params.date_end}, "
        f"percentiles {params.percentile_temporary:g}/{params.percentile_permanent:g}, "
        f"monthly={params.do_monthly}"
    )

    processed = [preprocess_stack(stack, aoi, params) for stack in stacks]
    cube = merge_stacks(processed, like=hand)

    result = classify(cube, hand, params, aoi)
    monthly = classify_monthly(cube, hand, params, aoi) if params.do_monthly else None

    return SurfaceWaterResults(cube=cube, result=result, monthly=monthly)
