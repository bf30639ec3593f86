import warnings

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import pytest
import xarray as xr

from surface_water.classification import classify
from surface_water.errors import EmptyStackResult
from surface_water.statistics import monthly_water_summary
from surface_water.temporal import classify_monthly
from surface_water.visualization import (
    composite_rgb,
    plot_monthly_summary,
    plot_monthly_water,
    plot_percentile_composite,
    plot_water_classes,
)


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close('all')


@pytest.fixture
def monthly(canonical_cube, hand, aoi):
    cube = canonical_cube(['2019-03-05', '2019-03-21', '2019-08-14'])
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', EmptyStackResult)
        return {m: r.compute() for m, r in classify_monthly(cube, hand, aoi=aoi).items()}


def test_plot_water_classes_saves(tmp_path):
    water = xr.DataArray(
        np.array([[1.0, 2.0], [np.nan, 2.0]]),
        dims=('y', 'x'),
        coords={'y': [3999985.0, 3999955.0], 'x': [500015.0, 500045.0]},
    )
    out = tmp_path / 'maps' / 'water.png'
    fig = plot_water_classes(water, output_path=str(out))
    assert out.exists()
    assert fig.axes[0].get_title() == 'Surface Water'


def test_plot_monthly_water_marks_empty_months(monthly, tmp_path):
    out = tmp_path / 'monthly.png'
    fig = plot_monthly_water(monthly, output_path=str(out))
    assert out.exists()
    texts = [t.get_text() for ax in fig.axes[:12] for t in ax.texts]
    assert texts.count('no data') == 10


def test_composite_rgb_stretch(canonical_cube, hand, aoi):
    result = classify(canonical_cube(['2019-05-01', '2019-05-07']), hand, aoi=aoi).compute()
    rgb = composite_rgb(result.composite_permanent)
    assert rgb.shape == (1, 1, 3)
    assert ((rgb >= 0) & (rgb <= 1)).all()

    fig = plot_percentile_composite(result.composite_permanent)
    assert fig.axes[0].get_title() == '40th Percentile Composite'


def test_plot_monthly_summary(monthly, tmp_path):
    summary = monthly_water_summary(monthly)
    out = tmp_path / 'summary.png'
    plot_monthly_summary(summary, output_path=str(out))
    assert out.exists()

    fig = plot_monthly_summary(summary, value='n_observations')
    assert fig.axes[0].get_ylabel() == 'N observations'


def test_percentile_composite_title_formats_fractional_percentile(canonical_cube, hand, aoi):
    result = classify(canonical_cube(['2019-05-01', '2019-05-07']), hand, aoi=aoi).compute()
    composite = result.composite_permanent.assign_attrs(percentile=7.5)
    fig = plot_percentile_composite(composite)
    assert fig.axes[0].get_title() == '7.5th Percentile Composite'
