"""
Visualization utilities for surface water results.

This module handles:
- Temporary/permanent water class maps
- Monthly water map grids
- False-colour percentile composites
- Monthly water summary charts
"""

import logging
import os
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt
import matplotlib.patches as mpatches
from matplotlib.colors import BoundaryNorm, ListedColormap
import seaborn as sns
import xarray as xr

from .classification import ClassificationResult
from .temporal import MONTH_NAMES

logger = logging.getLogger(__name__)


WATER_COLORS = {
    'temporary': '#9999ff',   # Light blue
    'permanent': '#00008b',   # Dark blue
}
WATER_CMAP = ListedColormap([WATER_COLORS['temporary'], WATER_COLORS['permanent']])
WATER_NORM = BoundaryNorm([0.5, 1.5, 2.5], WATER_CMAP.N)

# Landsat false colour (SWIR1/NIR/green) stretch
COMPOSITE_BANDS = ('swir1', 'nir', 'green')
COMPOSITE_STRETCH = {'min': 0.06, 'max': 0.5, 'gamma': 1.5}


def _save(fig: plt.Figure, output_path: Optional[str]) -> None:
    if output_path:
        os.makedirs(os.path.dirname(output_path) or '.', exist_ok=True)
        fig.savefig(output_path, dpi=300, bbox_inches='tight')
        logger.info(f"Saved: {output_path}")


def _legend_handles():
    return [
        mpatches.Patch(color=WATER_COLORS['temporary'], label='Temporary water'),
        mpatches.Patch(color=WATER_COLORS['permanent'], label='Permanent water'),
    ]


def _extent(raster: xr.DataArray) -> Tuple[float, float, float, float]:
    x = raster['x'].values
    y = raster['y'].values
    return (float(x.min()), float(x.max()), float(y.min()), float(y.max()))


def plot_water_classes(
    water: xr.DataArray,
    title: str = "Surface Water",
    ax: Optional[plt.Axes] = None,
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (8, 8)
) -> plt.Figure:
    """
    Plot a classified water raster.

    Parameters
    ----------
    water : xr.DataArray
        Classified raster (1 = temporary, 2 = permanent, NaN = no water)
    title : str
        Plot title
    ax : plt.Axes, optional
        Draw into an existing axes
    output_path : str, optional
        Path to save figure
    figsize : tuple
        Figure size (width, height), when a new figure is created

    Returns
    -------
    plt.Figure
        The generated figure
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.figure

    values = np.asarray(water.values, dtype=float)
    ax.imshow(
        np.ma.masked_invalid(values),
        cmap=WATER_CMAP,
        norm=WATER_NORM,
        extent=_extent(water),
        interpolation='nearest',
        origin='upper' if water['y'].values[0] > water['y'].values[-1] else 'lower',
    )
    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.legend(handles=_legend_handles(), loc='lower right', fontsize=8)

    _save(fig, output_path)
    return fig


def plot_monthly_water(
    monthly: Dict[int, ClassificationResult],
    title: str = "Surface Water by Month",
    output_path: Optional[str] = None
) -> plt.Figure:
    """
    Plot the twelve monthly water maps in a 3x4 grid.

    Months without observations are labelled 'no data'.
    """
    fig, axes = plt.subplots(3, 4, figsize=(16, 12))

    for idx, month in enumerate(range(1, 13)):
        ax = axes[idx // 4, idx % 4]
        result = monthly.get(month)

        if result is None or result.n_observations == 0:
            ax.set_title(MONTH_NAMES[month], fontsize=11, fontweight='bold')
            ax.text(0.5, 0.5, 'no data', transform=ax.transAxes,
                    ha='center', va='center', fontsize=10, color='gray')
            ax.axis('off')
            continue

        plot_water_classes(result.water, title=MONTH_NAMES[month], ax=ax)
        ax.get_legend().remove()
        ax.text(0.02, 0.98, f'n={result.n_observations}', transform=ax.transAxes,
                fontsize=9, verticalalignment='top',
                bbox=dict(boxstyle='round', facecolor='white', alpha=0.8))
        ax.axis('off')

    fig.legend(handles=_legend_handles(), loc='lower center', ncol=2, fontsize=10)
    fig.suptitle(title, fontsize=14, fontweight='bold')
    plt.tight_layout(rect=(0, 0.04, 1, 1))

    _save(fig, output_path)
    return fig


def composite_rgb(
    composite: xr.Dataset,
    bands: Sequence[str] = COMPOSITE_BANDS,
    vmin: float = COMPOSITE_STRETCH['min'],
    vmax: float = COMPOSITE_STRETCH['max'],
    gamma: float = COMPOSITE_STRETCH['gamma']
) -> np.ndarray:
    """Stretch three composite bands to an (y, x, 3) RGB array in [0, 1]."""
    rgb = np.stack([np.asarray(composite[b].values, dtype=float) for b in bands], axis=-1)
    rgb = np.clip((rgb - vmin) / (vmax - vmin), 0, 1) ** (1 / gamma)
    return np.nan_to_num(rgb, nan=0.0)


def plot_percentile_composite(
    composite: xr.Dataset,
    title: Optional[str] = None,
    bands: Sequence[str] = COMPOSITE_BANDS,
    ax: Optional[plt.Axes] = None,
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (8, 8)
) -> plt.Figure:
    """Plot a percentile composite in false colour (SWIR1/NIR/green by default)."""
    if ax is None:
        fig, ax = plt.subplots(figsize=figsize)
    else:
        fig = ax.figure

    if title is None:
        percentile = composite.attrs.get('percentile')
        title = f"{percentile:g}th Percentile Composite" if percentile is not None \
            else "Percentile Composite"

    ax.imshow(composite_rgb(composite, bands), extent=_extent(composite[bands[0]]))
    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.axis('off')

    _save(fig, output_path)
    return fig


def plot_monthly_summary(
    summary: pd.DataFrame,
    value: str = 'water_pixels',
    title: str = "Monthly Water Extent",
    output_path: Optional[str] = None,
    figsize: Tuple[int, int] = (10, 5)
) -> plt.Figure:
    """
    Bar chart of temporary and permanent water per month.

    Parameters
    ----------
    summary : pd.DataFrame
        Output of statistics.monthly_water_summary
    value : str
        'water_pixels' plots temporary and permanent counts side by side;
        any other column is plotted as a single series
    """
    fig, ax = plt.subplots(figsize=figsize)

    if value == 'water_pixels':
        long = summary.melt(
            id_vars=['month_name'],
            value_vars=['temporary_pixels', 'permanent_pixels'],
            var_name='class',
            value_name='pixels',
        )
        long['class'] = long['class'].str.replace('_pixels', '')
        sns.barplot(
            data=long, x='month_name', y='pixels', hue='class',
            palette=WATER_COLORS, ax=ax
        )
        ax.set_ylabel('Pixels', fontsize=10)
    else:
        sns.barplot(data=summary, x='month_name', y=value, color=WATER_COLORS['permanent'], ax=ax)
        ax.set_ylabel(value.replace('_', ' ').capitalize(), fontsize=10)

    ax.set_xlabel('')
    ax.set_title(title, fontsize=12, fontweight='bold')
    ax.tick_params(axis='x', rotation=45)
    plt.tight_layout()

    _save(fig, output_path)
    return fig
