"""
Data loading utilities for Landsat Collection 2 imagery.

This module handles:
- STAC catalog connection and Landsat scene search
- Area of interest loading from vector files
- Bounding box reprojection
- A shared target grid around the area of interest
- Lazy single-scene loading with native band ids
- Per-sensor RasterStack formation
- Height above nearest drainage (HAND) raster loading

Scenes come from the Collection 2 Level-2 surface reflectance collection.
"""

import logging
import os
from collections import defaultdict
from typing import Dict, List, Optional, Union

import dask
import numpy as np
import pandas as pd
import rioxarray
from rioxarray.exceptions import RioXarrayError
import xarray as xr
from pyproj import Transformer
from shapely.geometry import shape
from tqdm import tqdm
import pystac_client

from .preprocessing import FRINGE_RADIUS
from .raster import DEFAULT_RESOLUTION, AreaOfInterest, RasterStack
from .sensors import SENSOR_BAND_MAPS, get_band_map

logger = logging.getLogger(__name__)

LANDSAT_STAC_URL = "https://landsatlook.usgs.gov/stac-server"
LANDSAT_COLLECTION = "landsat-c2l2-sr"

# Collection 2 Level-2 scale factors
SR_SCALE, SR_OFFSET = 0.0000275, -0.2
ST_SCALE, ST_OFFSET = 0.00341802, 149.0

DEFAULT_CHUNKS = {'x': 1024, 'y': 1024}


def connect_stac_catalog(catalog_url: str = LANDSAT_STAC_URL):
    """
    Connect to a Landsat STAC catalog.

    Parameters
    ----------
    catalog_url : str
        STAC catalog endpoint URL

    Returns
    -------
    pystac_client.Client
        Connected STAC client
    """
    return pystac_client.Client.open(catalog_url)


def search_landsat(
    catalog,
    bbox: List[float],
    start_date: str,
    end_date: str,
    collection: str = LANDSAT_COLLECTION,
    platforms: Optional[List[str]] = None
) -> List[Dict]:
    """
    Search for Landsat scenes in the catalog.

    Parameters
    ----------
    catalog : pystac_client.Client
        Connected STAC client
    bbox : list
        Bounding box [west, south, east, north] in EPSG:4326
    start_date, end_date : str
        Date range in ISO format, both inclusive
    collection : str
        STAC collection name
    platforms : list, optional
        Restrict to these platforms, e.g. ['landsat-8']

    Returns
    -------
    list
        List of STAC item dictionaries
    """
    query = {'platform': {'in': platforms}} if platforms else None
    search = catalog.search(
        collections=[collection],
        bbox=bbox,
        datetime=[start_date, end_date],
        query=query,
    )
    items = list(search.items_as_dicts())
    logger.info(f"Found {len(items)} {collection} items between {start_date} and {end_date}")
    return items


def load_aoi(path: str, target_crs: Optional[str] = None) -> AreaOfInterest:
    """
    Read an area of interest from a shapefile or GeoJSON.

    All features are dissolved into one geometry.
    """
    import geopandas as gpd
    from shapely.validation import make_valid

    gdf = gpd.read_file(path)
    gdf['geometry'] = gdf['geometry'].apply(
        lambda g: make_valid(g) if g is not None and not g.is_valid else g
    )

    if target_crs and gdf.crs and str(gdf.crs) != target_crs:
        gdf = gdf.to_crs(target_crs)

    crs = gdf.crs.to_string() if gdf.crs else "EPSG:4326"
    return AreaOfInterest(gdf.geometry.union_all(), crs)


def reproject_bbox(
    bbox: List[float],
    src_crs: str = "EPSG:4326",
    dst_crs: str = "EPSG:32633"
) -> List[float]:
    """
    Transform bounding box between coordinate reference systems.

    Box edges are densified so curved edges in ``dst_crs`` stay inside
    the result.

    Parameters
    ----------
    bbox : list
        Bounding box [xmin, ymin, xmax, ymax]
    src_crs, dst_crs : str
        Source and destination CRS

    Returns
    -------
    list
        Transformed bounding box [xmin, ymin, xmax, ymax]
    """
    transformer = Transformer.from_crs(src_crs, dst_crs, always_xy=True)
    return list(transformer.transform_bounds(*bbox, densify_pts=21))


def aoi_grid(
    aoi: AreaOfInterest,
    crs: str,
    resolution: float = DEFAULT_RESOLUTION,
    margin: int = FRINGE_RADIUS
) -> xr.DataArray:
    """
    Target grid shared by every scene of a run.

    Parameters
    ----------
    aoi : AreaOfInterest
        Area to cover
    crs : str
        Grid CRS
    resolution : float
        Pixel size in ``crs`` units
    margin : int
        Extra pixels around the AOI. The default leaves room for the full
        fringe kernel, so defringing sees real scene edges only.

    Returns
    -------
    xr.DataArray
        Zero-filled (y, x) template snapped to multiples of ``resolution``
    """
    xmin, ymin, xmax, ymax = aoi.to_crs(crs).bounds
    pad = margin * resolution
    xmin = np.floor((xmin - pad) / resolution) * resolution
    ymin = np.floor((ymin - pad) / resolution) * resolution
    xmax = np.ceil((xmax + pad) / resolution) * resolution
    ymax = np.ceil((ymax + pad) / resolution) * resolution

    nx = int(round((xmax - xmin) / resolution))
    ny = int(round((ymax - ymin) / resolution))
    x = xmin + resolution * (np.arange(nx) + 0.5)
    y = ymax - resolution * (np.arange(ny) + 0.5)

    grid = xr.DataArray(
        np.zeros((ny, nx), dtype='float32'),
        dims=('y', 'x'),
        coords={'y': y, 'x': x},
    )
    return grid.rio.write_crs(crs)


def sensor_from_item(item_dict: Dict) -> str:
    """Sensor generation tag ('LANDSAT_8', ...) of a STAC item."""
    platform = item_dict['properties'].get('platform', '')
    sensor = platform.upper().replace('-', '_')
    if sensor == 'LANDSAT_9':
        # OLI-2 shares the OLI band layout
        sensor = 'LANDSAT_8'
    return get_band_map(sensor).sensor


def item_crs(item_dict: Dict) -> str:
    props = item_dict['properties']
    if 'proj:code' in props:
        return props['proj:code']
    return f"EPSG:{props['proj:epsg']}"


def asset_hrefs_by_band(item_dict: Dict, thermal_band: Optional[str] = None) -> Dict[str, str]:
    """
    Map native band ids (B1..B10) to asset hrefs.

    Band ids are read from ``eo:bands`` names with the Collection 2
    'SR_'/'ST_' prefixes removed. When ``thermal_band`` is given, the
    surface temperature band is filed under that id instead, since
    Collection 2 names the Landsat 7 thermal band 'ST_B6' rather than
    'B6_VCID_1'.
    """
    hrefs = {}
    for asset in item_dict['assets'].values():
        for band in asset.get('eo:bands', []):
            name = band.get('name', '')
            if name.startswith('SR_'):
                hrefs[name[3:]] = asset['href']
            elif name.startswith('ST_'):
                hrefs[thermal_band or name[3:]] = asset['href']
    return hrefs


def _scale_band(data: xr.DataArray, band: str, thermal_band: Optional[str]) -> xr.DataArray:
    if band == thermal_band:
        return data * ST_SCALE + ST_OFFSET
    return data * SR_SCALE + SR_OFFSET


def _onto_grid(data: xr.DataArray, src_crs: str, grid: xr.DataArray) -> xr.DataArray:
    """Crop a band to the grid and resample it onto the grid's pixels."""
    pad = 2 * max(abs(r) for r in data.rio.resolution())
    xmin, ymin, xmax, ymax = reproject_bbox(list(grid.rio.bounds()), grid.rio.crs.to_wkt(), src_crs)
    data = data.rio.clip_box(xmin - pad, ymin - pad, xmax + pad, ymax + pad)

    if grid.rio.crs == data.rio.crs:
        # Same projection: lazy nearest-pixel reindexing
        dx = abs(float(grid['x'][1] - grid['x'][0]))
        return data.reindex_like(grid, method='nearest', tolerance=dx)
    data = data.rio.reproject_match(grid)
    return data.assign_coords(x=grid['x'].values, y=grid['y'].values)


def load_single_scene(
    item_dict: Dict,
    aoi: AreaOfInterest,
    grid: Optional[xr.DataArray] = None,
    chunks: Optional[Dict[str, int]] = None
) -> xr.Dataset:
    """
    Lazily load a single Landsat scene onto a target grid.

    Parameters
    ----------
    item_dict : dict
        STAC item dictionary
    aoi : AreaOfInterest
        Area of interest
    grid : xr.DataArray, optional
        Target grid from :func:`aoi_grid`. Defaults to a grid around
        ``aoi`` in the scene CRS.
    chunks : dict, optional
        Dask chunk sizes

    Returns
    -------
    xr.Dataset
        Scene on ``grid`` with native band ids, scaled to reflectance
        (thermal bands to Kelvin), a scalar ``time`` coordinate and
        ``footprint``/``sensor`` attrs
    """
    band_map = get_band_map(sensor_from_item(item_dict))
    hrefs = asset_hrefs_by_band(item_dict, band_map.thermal_band)
    wanted = list(dict.fromkeys(band_map.native_bands + (band_map.thermal_band,)))

    src_crs = item_crs(item_dict)
    if grid is None:
        grid = aoi_grid(aoi, src_crs)
    crs = grid.rio.crs.to_string()

    bands = {}
    for band in wanted:
        if band not in hrefs:
            continue
        data = rioxarray.open_rasterio(
            hrefs[band], chunks=chunks or DEFAULT_CHUNKS, masked=True
        ).squeeze('band', drop=True)
        data = _onto_grid(data, src_crs, grid)
        bands[band] = _scale_band(data, band, band_map.thermal_band)

    footprint = AreaOfInterest(shape(item_dict['geometry'])).to_crs(crs).geometry

    scene = xr.Dataset(bands)
    scene = scene.drop_vars('spatial_ref', errors='ignore')
    scene = scene.assign_coords(time=pd.Timestamp(item_dict['properties']['datetime']).to_datetime64())
    scene.attrs = {'footprint': footprint, 'sensor': band_map.sensor, 'id': item_dict.get('id')}
    return scene


def _load_or_skip(item_dict, aoi, grid, chunks):
    try:
        return load_single_scene(item_dict, aoi, grid, chunks)
    except (OSError, KeyError, ValueError, RioXarrayError) as e:
        logger.warning(f"Failed to load {item_dict.get('id')}: {e}")
        return None


def build_stacks(
    items: List[Dict],
    aoi: AreaOfInterest,
    dst_crs: Optional[str] = None,
    chunks: Optional[Dict[str, int]] = None,
    parallel: bool = True,
    show_progress: bool = False,
    resolution: float = DEFAULT_RESOLUTION
) -> List[RasterStack]:
    """
    Build one RasterStack per sensor generation from STAC items.

    Every scene is placed on one grid around ``aoi`` (see :func:`aoi_grid`),
    so scenes from different UTM zones line up pixel for pixel.

    Parameters
    ----------
    items : list
        List of STAC item dictionaries
    aoi : AreaOfInterest
        Crop area
    dst_crs : str, optional
        Common CRS for all scenes. Defaults to the first item's CRS.
    chunks : dict, optional
        Dask chunk sizes for each band
    parallel : bool
        Whether to open scenes with Dask parallelism
    show_progress : bool
        Show a progress bar when loading sequentially
    resolution : float
        Grid pixel size in ``dst_crs`` units

    Returns
    -------
    list of RasterStack
        Stacks ordered as in SENSOR_BAND_MAPS; sensors without scenes are
        omitted
    """
    if not items:
        return []

    crs = dst_crs or item_crs(items[0])
    grid = aoi_grid(aoi, crs, resolution)

    if parallel:
        delayed_results = [
            dask.delayed(_load_or_skip)(item, aoi, grid, chunks)
            for item in items
        ]
        results = dask.compute(*delayed_results)
    else:
        iterator = tqdm(items, desc="Loading scenes") if show_progress else items
        results = [_load_or_skip(item, aoi, grid, chunks) for item in iterator]

    by_sensor = defaultdict(list)
    for scene in results:
        if scene is not None:
            by_sensor[scene.attrs['sensor']].append(scene)

    stacks = [
        RasterStack(tuple(by_sensor[sensor]), crs, sensor)
        for sensor in SENSOR_BAND_MAPS
        if by_sensor[sensor]
    ]
    logger.info(
        f"Loaded {sum(len(s) for s in stacks)}/{len(items)} scenes into "
        f"{len(stacks)} sensor stacks ({crs})"
    )
    return stacks


def load_hand(path: Union[str, os.PathLike], like: Optional[xr.Dataset] = None) -> xr.DataArray:
    """
    Load a height above nearest drainage raster.

    Parameters
    ----------
    path : str or PathLike
        GeoTIFF (or any GDAL-readable raster) with HAND in metres
    like : xr.Dataset or xr.DataArray, optional
        Reproject and resample onto this grid (must carry a CRS)

    Returns
    -------
    xr.DataArray
        HAND with dims (y, x); nodata as NaN
    """
    hand = rioxarray.open_rasterio(path, masked=True, chunks=True).squeeze('band', drop=True)
    if like is not None:
        hand = hand.rio.reproject_match(like)
    return hand.rename('hand')
