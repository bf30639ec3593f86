import warnings

import numpy as np
import pytest

from surface_water.config import ClassificationParameters
from surface_water.errors import EmptyStackResult
from surface_water.temporal import MONTH_NAMES, classify_monthly, select_month


def test_select_month_ignores_year(canonical_cube):
    cube = canonical_cube(['2018-03-05', '2019-03-20', '2019-04-02', '2020-03-11'])
    march = select_month(cube, 3)
    assert march.sizes['time'] == 3
    assert select_month(cube, 7).sizes['time'] == 0
    with pytest.raises(ValueError):
        select_month(cube, 13)


def test_month_names():
    assert MONTH_NAMES[1] == 'January'
    assert MONTH_NAMES[12] == 'December'


def test_classify_monthly_twelve_independent_results(canonical_cube, hand, aoi):
    cube = canonical_cube(['2019-03-05', '2019-03-21', '2019-08-14'])
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', EmptyStackResult)
        monthly = classify_monthly(cube, hand, ClassificationParameters(), aoi)

    assert sorted(monthly) == list(range(1, 13))
    assert monthly[3].n_observations == 2
    assert monthly[8].n_observations == 1
    assert monthly[1].n_observations == 0

    assert monthly[3].compute().water.item() == 2
    assert monthly[8].compute().has_data()
    empty = monthly[1].compute()
    assert not empty.has_data()
    assert np.isnan(empty.water.item())


def test_empty_month_warns(canonical_cube, hand):
    cube = canonical_cube(['2019-03-05'])
    with pytest.warns(EmptyStackResult):
        classify_monthly(cube, hand)
