"""
Diagnostic plots of converted site data.

Three plot types are available for each record set:

- ``annual``: average monthly cycle
- ``diurnal``: average diurnal cycle by season
- ``timeseries``: 14-day running mean
"""
from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402

from fluxlsm.config import PLOT_TYPES  # noqa: E402
from fluxlsm.dataset import ConversionResult  # noqa: E402
from fluxlsm.format.registry import EVAL, MET  # noqa: E402
from fluxlsm.utils import logger_check  # noqa: E402

SEASONS = {
    "DJF": (12, 1, 2),
    "MAM": (3, 4, 5),
    "JJA": (6, 7, 8),
    "SON": (9, 10, 11),
}
MONTH_LABELS = ["J", "F", "M", "A", "M", "J", "J", "A", "S", "O", "N", "D"]


def _panel_grid(n: int, ncols: int = 3):
    nrows = max(1, math.ceil(n / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(4 * ncols, 3 * nrows), squeeze=False)
    flat = axes.ravel()
    for ax in flat[n:]:
        ax.set_visible(False)
    return fig, flat[:n]


def _finish(fig, title: str, output_path: Optional[Path], print_plot: bool) -> None:
    fig.suptitle(title)
    fig.tight_layout()
    if output_path:
        fig.savefig(output_path, dpi=100)
    if print_plot:
        plt.show()
    plt.close(fig)


def plot_annual_cycle(
    df: pd.DataFrame,
    units: Dict[str, str],
    title: str = "",
    output_path: Optional[Path] = None,
    print_plot: bool = False,
):
    """
    Plot the average monthly cycle of every column.

    Parameters
    ----------
    df : pd.DataFrame
        Variables indexed by time.
    units : dict
        Column name to unit label.
    title : str
        Figure title.
    output_path : Path, optional
        Where to save the figure.
    print_plot : bool
        Show the figure interactively.
    """
    fig, axes = _panel_grid(len(df.columns))
    monthly = df.groupby(df.index.month).mean()
    for ax, col in zip(axes, df.columns):
        ax.plot(monthly.index, monthly[col], marker="o", color="tab:blue")
        ax.set_xticks(range(1, 13))
        ax.set_xticklabels(MONTH_LABELS)
        ax.set_title(col)
        ax.set_ylabel(units.get(col, ""))
        ax.grid(True, alpha=0.3)
    _finish(fig, title, output_path, print_plot)
    return fig


def plot_diurnal_cycle(
    df: pd.DataFrame,
    units: Dict[str, str],
    title: str = "",
    output_path: Optional[Path] = None,
    print_plot: bool = False,
):
    """Plot the average diurnal cycle of every column, one line per season."""
    fig, axes = _panel_grid(len(df.columns))
    hours = df.index.hour + df.index.minute / 60.0
    for ax, col in zip(axes, df.columns):
        for season, months in SEASONS.items():
            in_season = np.isin(df.index.month, months)
            if not in_season.any():
                continue
            cycle = df.loc[in_season, col].groupby(hours[in_season]).mean()
            ax.plot(cycle.index, cycle.values, label=season)
        ax.set_xlim(0, 24)
        ax.set_title(col)
        ax.set_ylabel(units.get(col, ""))
        ax.set_xlabel("Hour")
        ax.grid(True, alpha=0.3)
    if len(axes):
        axes[0].legend(fontsize="small")
    _finish(fig, title, output_path, print_plot)
    return fig


def plot_timeseries(
    df: pd.DataFrame,
    units: Dict[str, str],
    step_seconds: int,
    window_days: int = 14,
    title: str = "",
    output_path: Optional[Path] = None,
    print_plot: bool = False,
):
    """Plot a centred running mean of every column over `window_days`."""
    window = max(1, int(window_days * 86400 // step_seconds))
    smoothed = df.rolling(window, center=True, min_periods=window // 2 or 1).mean()
    fig, axes = _panel_grid(len(df.columns), ncols=1)
    fig.set_size_inches(10, 2.2 * len(df.columns) + 1)
    for ax, col in zip(axes, df.columns):
        ax.plot(smoothed.index, smoothed[col], color="tab:blue", lw=0.8)
        ax.set_ylabel(f"{col}\n({units.get(col, '')})")
        ax.grid(True, alpha=0.3)
    _finish(fig, title, output_path, print_plot)
    return fig


def plot_conversion_result(
    result: ConversionResult,
    plot_types: Iterable[str],
    output_dir: Union[str, Path],
    print_plot: bool = False,
    logger: Optional[logging.Logger] = None,
) -> List[Path]:
    """
    Produce the requested plots for both record sets of a site.

    Returns
    -------
    list of Path
        Written PNG files, ``<site>_<y0>-<y1>_<type>_<Met|Flux>.png``.
    """
    logger = logger_check(logger)
    plot_types = list(plot_types)
    unknown = [p for p in plot_types if p not in PLOT_TYPES]
    if unknown:
        raise ValueError(f"Unknown plot type(s) {unknown}; expected {PLOT_TYPES}")

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    years = result.years
    written = []
    for category, label in ((MET, "Met"), (EVAL, "Flux")):
        records = result.records(category)
        if not records:
            continue
        df = result.to_frame(category)
        units = {name: rec.units for name, rec in records.items()}
        stem = f"{result.site_code}_{years[0]}-{years[-1]}"
        for plot_type in plot_types:
            path = output_dir / f"{stem}_{plot_type}_{label}.png"
            title = f"{result.site_code} {label} {plot_type}"
            if plot_type == "annual":
                plot_annual_cycle(df, units, title, path, print_plot)
            elif plot_type == "diurnal":
                plot_diurnal_cycle(df, units, title, path, print_plot)
            else:
                plot_timeseries(df, units, result.time_axis.step_seconds,
                                title=title, output_path=path, print_plot=print_plot)
            logger.debug(f"  Saved {plot_type} plot to {path}")
            written.append(path)
    return written


__all__ = [
    "plot_annual_cycle",
    "plot_diurnal_cycle",
    "plot_timeseries",
    "plot_conversion_result",
]
