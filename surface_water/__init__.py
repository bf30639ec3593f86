"""
Surface Water Tool: Landsat Temporary and Permanent Surface Water Mapping
=========================================================================

Modules:
    config: Immutable classification parameters and YAML loading
    raster: Area of interest, scenes and per-sensor raster stacks
    engine: Lazy raster operations (dask/xarray)
    sensors: Landsat band maps and band harmonization
    preprocessing: Stack filtering, cloud suppression, defringing, merging
    compositing: Percentile composites
    indices: MNDWI/NDVI and threshold masks
    classification: Mask combination and ClassificationResult
    temporal: Monthly decomposition
    pipeline: End-to-end surface water tool
    data_loader: Landsat STAC access and HAND loading
    statistics: Water counts, areas and IoU
    visualization: Plotting utilities
"""

from .errors import (
    SurfaceWaterError,
    CRSMismatch,
    BandMappingIncomplete,
    UnknownSensor,
    InvalidParameter,
    EmptyStackResult,
)

from .logging_utils import setup_logging, get_logger

from .config import (
    ClassificationParameters,
    DEFAULT_PARAMETERS,
    load_parameters,
)

from .raster import AreaOfInterest, RasterStack, make_scene

from .sensors import (
    STD_NAMES,
    SensorBandMap,
    SENSOR_BAND_MAPS,
    get_band_map,
    harmonize_image,
    harmonize_stack,
)

from .preprocessing import (
    FRINGE_KERNEL,
    filter_images,
    simple_cloud_score,
    bust_clouds,
    defringe_image,
    defringe_stack,
    merge_stacks,
    preprocess_stack,
)

from .compositing import percentile_composite

from .indices import compute_mndwi, compute_ndvi, threshold_mask, elevation_mask

from .classification import (
    ClassificationResult,
    clean_water_mask,
    combine_water,
    classify,
)

from .temporal import classify_monthly, select_month

from .pipeline import SurfaceWaterResults, run_surface_water_tool

from .statistics import (
    compute_iou,
    water_class_counts,
    water_area,
    monthly_water_summary,
)

__version__ = "0.1.0"
