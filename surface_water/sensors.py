"""
Band harmonization across Landsat sensor generations.

One SensorBandMap per supported generation maps native band identifiers
onto the canonical band set STD_NAMES.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import xarray as xr

from .engine import select_and_rename
from .errors import BandMappingIncomplete, UnknownSensor
from .raster import RasterStack

logger = logging.getLogger(__name__)


STD_NAMES = ('blue2', 'blue', 'green', 'red', 'nir', 'swir1', 'swir2')

# TM/ETM+ have a single blue band; it fills both blue slots
LC457_BANDS = ('B1', 'B1', 'B2', 'B3', 'B4', 'B5', 'B7')
LC8_BANDS = ('B1', 'B2', 'B3', 'B4', 'B5', 'B6', 'B7')


@dataclass(frozen=True)
class SensorBandMap:
    """
    Native-to-canonical band mapping for one sensor generation.

    Parameters
    ----------
    sensor : str
        Sensor generation tag
    native_bands : tuple of str
        Native band ids, positionally aligned with STD_NAMES
    thermal_band : str, optional
        Native thermal band id (used by the cloud score only)
    defringe : bool
        Whether scenes from this sensor need fringe removal
    """

    sensor: str
    native_bands: Tuple[str, ...]
    thermal_band: Optional[str] = None
    defringe: bool = False

    @property
    def mapping(self) -> Dict[str, str]:
        return dict(zip(STD_NAMES, self.native_bands))

    def native(self, name: str) -> str:
        return self.mapping[name]


SENSOR_BAND_MAPS = {
    'LANDSAT_4': SensorBandMap('LANDSAT_4', LC457_BANDS, thermal_band='B6'),
    'LANDSAT_5': SensorBandMap('LANDSAT_5', LC457_BANDS, thermal_band='B6', defringe=True),
    'LANDSAT_7': SensorBandMap('LANDSAT_7', LC457_BANDS, thermal_band='B6_VCID_1', defringe=True),
    'LANDSAT_8': SensorBandMap('LANDSAT_8', LC8_BANDS, thermal_band='B10'),
}


def get_band_map(sensor: str) -> SensorBandMap:
    """Look up the band map for a sensor tag such as 'LANDSAT_7'."""
    try:
        return SENSOR_BAND_MAPS[sensor.upper()]
    except (KeyError, AttributeError):
        raise UnknownSensor(
            f"No band map for sensor {sensor!r}; expected one of {sorted(SENSOR_BAND_MAPS)}"
        ) from None


def harmonize_image(image: xr.Dataset, band_map: Optional[SensorBandMap]) -> xr.Dataset:
    """
    Rename an image's native bands to STD_NAMES.

    An image that already exposes every canonical band is returned with
    just those bands, so harmonizing twice is a no-op.

    Raises
    ------
    BandMappingIncomplete
        If a band required by the map is missing
    """
    if all(name in image.data_vars for name in STD_NAMES):
        return image[list(STD_NAMES)]

    if band_map is None:
        missing = [name for name in STD_NAMES if name not in image.data_vars]
        raise BandMappingIncomplete(missing)

    missing = sorted({band for band in band_map.native_bands if band not in image.data_vars})
    if missing:
        raise BandMappingIncomplete(missing, band_map.sensor)

    return select_and_rename(image, band_map.native_bands, STD_NAMES)


def harmonize_stack(stack: RasterStack) -> RasterStack:
    """
    Harmonize every image of a stack.

    Images with incomplete band sets are dropped with a warning; the rest
    of the stack continues.
    """
    band_map = get_band_map(stack.sensor) if stack.sensor else None

    harmonized = []
    for image in stack:
        try:
            harmonized.append(harmonize_image(image, band_map))
        except BandMappingIncomplete as e:
            logger.warning(f"Skipping image at {image['time'].values}: {e}")

    return stack.with_images(harmonized)
