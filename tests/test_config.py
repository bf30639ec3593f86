import dataclasses
from datetime import date

import pytest

from surface_water.config import (
    ClassificationParameters,
    DEFAULT_PARAMETERS,
    load_parameters,
)
from surface_water.errors import InvalidParameter, SurfaceWaterError


def test_defaults():
    params = DEFAULT_PARAMETERS
    assert params.date_start == date(2019, 4, 1)
    assert params.date_end == date(2019, 6, 30)
    assert params.do_monthly is False
    assert params.percentile_permanent == 40
    assert params.percentile_temporary == 8
    assert params.water_index_threshold == 0.3
    assert params.vegetation_index_threshold == 0.6
    assert params.elevation_threshold == 50
    assert params.cloud_score_threshold == 80
    assert params.defringe_enabled is True
    assert params.cloud_suppression_enabled


def test_iso_strings_are_parsed():
    params = ClassificationParameters(date_start='2020-01-15', date_end='2020-02-01')
    assert params.date_start == date(2020, 1, 15)
    assert params.date_end == date(2020, 2, 1)


def test_parameters_are_immutable():
    with pytest.raises(dataclasses.FrozenInstanceError):
        DEFAULT_PARAMETERS.percentile_permanent = 50


def test_zero_cloud_threshold_disables_suppression():
    assert not ClassificationParameters(cloud_score_threshold=0).cloud_suppression_enabled


@pytest.mark.parametrize('kwargs', [
    {'percentile_permanent': 101},
    {'percentile_temporary': -1},
    {'water_index_threshold': 1.5},
    {'vegetation_index_threshold': -2},
    {'cloud_score_threshold': -5},
    {'elevation_threshold': float('nan')},
    {'percentile_permanent': 'forty'},
    {'do_monthly': 'yes'},
    {'defringe_enabled': 1},
    {'date_start': '2019-13-01'},
    {'date_start': '2019-07-01', 'date_end': '2019-06-30'},
])
def test_invalid_parameters_rejected(kwargs):
    with pytest.raises(InvalidParameter):
        ClassificationParameters(**kwargs)


def test_invalid_parameter_is_value_error():
    with pytest.raises(ValueError):
        ClassificationParameters(percentile_permanent=200)
    assert issubclass(InvalidParameter, SurfaceWaterError)


def test_single_day_window_allowed():
    params = ClassificationParameters(date_start='2019-05-01', date_end='2019-05-01')
    assert params.date_start == params.date_end


def test_from_dict_accepts_short_names():
    params = ClassificationParameters.from_dict({
        'date_start': '2018-01-01',
        'date_end': '2018-12-31',
        'do_months': True,
        'pcnt_perm': 50,
        'pcnt_temp': 10,
        'water_thresh': 0.2,
        'veg_thresh': 0.5,
        'hand_thresh': 30,
        'cloud_thresh': 0,
        'defringe': False,
    })
    assert params.do_monthly is True
    assert params.percentile_permanent == 50
    assert params.percentile_temporary == 10
    assert params.water_index_threshold == 0.2
    assert params.vegetation_index_threshold == 0.5
    assert params.elevation_threshold == 30
    assert params.cloud_score_threshold == 0
    assert params.defringe_enabled is False


def test_from_dict_rejects_unknown_and_duplicate_keys():
    with pytest.raises(InvalidParameter, match='Unknown parameter'):
        ClassificationParameters.from_dict({'pcnt_median': 50})
    with pytest.raises(InvalidParameter, match='given twice'):
        ClassificationParameters.from_dict({'pcnt_perm': 50, 'percentile_permanent': 40})


def test_to_dict_uses_iso_dates():
    values = DEFAULT_PARAMETERS.to_dict()
    assert values['date_start'] == '2019-04-01'
    assert values['date_end'] == '2019-06-30'
    assert ClassificationParameters.from_dict(values) == DEFAULT_PARAMETERS


def test_load_parameters_from_section(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text(
        "classification:\n"
        "  date_start: '2017-03-01'\n"
        "  date_end: '2017-10-31'\n"
        "  do_months: true\n"
        "  hand_thresh: 25\n"
    )
    params = load_parameters(path)
    assert params.date_start == date(2017, 3, 1)
    assert params.do_monthly is True
    assert params.elevation_threshold == 25
    assert params.percentile_permanent == 40


def test_load_parameters_top_level(tmp_path):
    path = tmp_path / 'config.yaml'
    path.write_text("percentile_temporary: 12\n")
    assert load_parameters(path).percentile_temporary == 12


def test_load_parameters_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_parameters(tmp_path / 'missing.yaml')
