"""
Classification parameters.

A single immutable ClassificationParameters value is passed through the
whole call chain; there is no module-level or session state. Parameters can
be built directly, from a plain mapping (accepting the short names used by
the web parameter panel), or from a YAML file.
"""

import logging
import math
from dataclasses import dataclass, asdict, fields
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Mapping, Union

import yaml

from .errors import InvalidParameter

logger = logging.getLogger(__name__)


DEFAULT_DATE_START = '2019-04-01'
DEFAULT_DATE_END = '2019-06-30'
DEFAULT_PERCENTILE_PERMANENT = 40.0
DEFAULT_PERCENTILE_TEMPORARY = 8.0
DEFAULT_WATER_THRESHOLD = 0.3
DEFAULT_VEGETATION_THRESHOLD = 0.6
DEFAULT_ELEVATION_THRESHOLD = 50.0
DEFAULT_CLOUD_THRESHOLD = 80.0

# Short names used by the web parameter panel
PARAMETER_ALIASES = {
    'do_months': 'do_monthly',
    'pcnt_perm': 'percentile_permanent',
    'pcnt_temp': 'percentile_temporary',
    'pctn_temp': 'percentile_temporary',
    'water_thresh': 'water_index_threshold',
    'veg_thresh': 'vegetation_index_threshold',
    'ndvi_thresh': 'vegetation_index_threshold',
    'hand_thresh': 'elevation_threshold',
    'cloud_thresh': 'cloud_score_threshold',
    'defringe': 'defringe_enabled',
}


def _parse_date(value: Any, name: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise InvalidParameter(f"{name} must be an ISO date (YYYY-MM-DD), got {value!r}")


def _parse_number(value: Any, name: str) -> float:
    if isinstance(value, bool):
        raise InvalidParameter(f"{name} must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidParameter(f"{name} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise InvalidParameter(f"{name} must be finite, got {value!r}")
    return number


def _check_range(value: float, name: str, low: float, high: float) -> None:
    if not low <= value <= high:
        raise InvalidParameter(f"{name} must be in [{low:g}, {high:g}], got {value:g}")


@dataclass(frozen=True)
class ClassificationParameters:
    """
    Immutable configuration for one run of the surface water classification.

    Parameters
    ----------
    date_start, date_end : date or str
        Closed analysis window; ISO strings are parsed. The end date is
        inclusive.
    do_monthly : bool
        Also produce one classification per calendar month
    percentile_permanent, percentile_temporary : float
        Percentiles (0-100) for the permanent and temporary composites
    water_index_threshold : float
        MNDWI threshold, strict greater-than
    vegetation_index_threshold : float
        NDVI threshold, strict greater-than
    elevation_threshold : float
        HAND threshold in metres above which pixels are excluded
    cloud_score_threshold : float
        Cloud score (0-100) at or above which pixels are masked; 0 disables
        cloud suppression
    defringe_enabled : bool
        Remove scan fringes from Landsat 5/7 imagery
    """

    date_start: date = DEFAULT_DATE_START
    date_end: date = DEFAULT_DATE_END
    do_monthly: bool = False
    percentile_permanent: float = DEFAULT_PERCENTILE_PERMANENT
    percentile_temporary: float = DEFAULT_PERCENTILE_TEMPORARY
    water_index_threshold: float = DEFAULT_WATER_THRESHOLD
    vegetation_index_threshold: float = DEFAULT_VEGETATION_THRESHOLD
    elevation_threshold: float = DEFAULT_ELEVATION_THRESHOLD
    cloud_score_threshold: float = DEFAULT_CLOUD_THRESHOLD
    defringe_enabled: bool = True

    def __post_init__(self):
        # Normalise inputs in place; the instance is frozen afterwards
        set_ = object.__setattr__
        set_(self, 'date_start', _parse_date(self.date_start, 'date_start'))
        set_(self, 'date_end', _parse_date(self.date_end, 'date_end'))

        for name in ('percentile_permanent', 'percentile_temporary',
                     'water_index_threshold', 'vegetation_index_threshold',
                     'elevation_threshold', 'cloud_score_threshold'):
            set_(self, name, _parse_number(getattr(self, name), name))

        for name in ('do_monthly', 'defringe_enabled'):
            if not isinstance(getattr(self, name), bool):
                raise InvalidParameter(f"{name} must be a bool, got {getattr(self, name)!r}")

        if self.date_end < self.date_start:
            raise InvalidParameter(
                f"date_end ({self.date_end}) is before date_start ({self.date_start})"
            )

        _check_range(self.percentile_permanent, 'percentile_permanent', 0, 100)
        _check_range(self.percentile_temporary, 'percentile_temporary', 0, 100)
        _check_range(self.water_index_threshold, 'water_index_threshold', -1, 1)
        _check_range(self.vegetation_index_threshold, 'vegetation_index_threshold', -1, 1)
        _check_range(self.cloud_score_threshold, 'cloud_score_threshold', 0, 100)

    @property
    def cloud_suppression_enabled(self) -> bool:
        return self.cloud_score_threshold > 0

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> 'ClassificationParameters':
        """
        Build parameters from a mapping.

        Both the field names and the short names of the web parameter panel
        (``pcnt_perm``, ``hand_thresh``, ...) are accepted. Unknown keys
        raise InvalidParameter.
        """
        known = {f.name for f in fields(cls)}
        kwargs = {}
        for key, value in values.items():
            name = PARAMETER_ALIASES.get(key, key)
            if name not in known:
                raise InvalidParameter(f"Unknown parameter: {key}")
            if name in kwargs:
                raise InvalidParameter(f"Parameter given twice: {name}")
            kwargs[name] = value
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        """Plain-value representation, dates as ISO strings."""
        values = asdict(self)
        values['date_start'] = self.date_start.isoformat()
        values['date_end'] = self.date_end.isoformat()
        return values


DEFAULT_PARAMETERS = ClassificationParameters()


def load_parameters(config_path: Union[str, Path]) -> ClassificationParameters:
    """
    Load classification parameters from a YAML file.

    The parameters may sit at the top level of the document or under a
    ``classification`` section. Missing keys take their defaults.

    Parameters
    ----------
    config_path : str or Path
        Path to the YAML file

    Returns
    -------
    ClassificationParameters
    """
    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    with open(config_file, 'r', encoding='utf-8') as f:
        document = yaml.safe_load(f) or {}

    if not isinstance(document, dict):
        raise InvalidParameter(f"{config_file} must contain a mapping")

    section = document.get('classification', document)
    params = ClassificationParameters.from_dict(section)
    logger.info(f"Loaded classification parameters from {config_file}")
    return params
