"""
Gap-filling of essential meteorological variables from ERA-Interim.

FLUXNET2015 releases ship ERA-Interim meteorology downscaled to each site
(``*_ERA`` columns). Missing steps of an essential variable are replaced by
the reanalysis value resampled to the site time step, and flagged with a
gap-fill tier. A filled step is never flagged as measured.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from fluxlsm.config import ConversionConfig
from fluxlsm.dataset import SiteDataset
from fluxlsm.errors import InconsistentTimeStep, MissingAuxiliarySource
from fluxlsm.format import units
from fluxlsm.format.transformers.timestamps import infer_time_step
from fluxlsm.format.transformers.validation import check_range
from fluxlsm.qaqc.flags import QCFlag
from fluxlsm.utils import logger_check


def resample_auxiliary(
    series: pd.Series,
    target_index: pd.DatetimeIndex,
    step_seconds: int,
    method: str,
) -> pd.Series:
    """
    Resample an auxiliary series onto the site time axis.

    Parameters
    ----------
    series : pd.Series
        Auxiliary values indexed by period start, in source units.
    target_index : pd.DatetimeIndex
        Site time axis.
    step_seconds : int
        Site time step.
    method : str
        'mean' or 'sum'.

    Returns
    -------
    pd.Series
        Values aligned with `target_index`; NaN where the auxiliary
        source does not cover a step.

    Notes
    -----
    A finer auxiliary series is averaged (or summed, requiring every
    sub-step) over each site step. A coarser series gives each site step
    its covering sample; sums are split evenly over the site steps.
    """
    if method not in ("mean", "sum"):
        raise ValueError(f"Cannot resample with method '{method}'")
    series = series.sort_index()
    aux_step = infer_time_step(series.index) if len(series) > 1 else step_seconds

    if aux_step == step_seconds:
        return series.reindex(target_index)

    if aux_step < step_seconds:
        if step_seconds % aux_step:
            raise InconsistentTimeStep(
                f"Auxiliary step {aux_step} s does not divide the site step {step_seconds} s"
            )
        resampler = series.resample(pd.Timedelta(seconds=step_seconds), origin=target_index[0])
        if method == "sum":
            out = resampler.sum(min_count=step_seconds // aux_step)
        else:
            out = resampler.mean()
        return out.reindex(target_index)

    if aux_step % step_seconds:
        raise InconsistentTimeStep(
            f"Site step {step_seconds} s does not divide the auxiliary step {aux_step} s"
        )
    out = series.reindex(
        target_index, method="ffill",
        tolerance=pd.Timedelta(seconds=aux_step - step_seconds),
    )
    if method == "sum":
        out = out / (aux_step // step_seconds)
    return out


def check_reanalysis_available(tasks: Iterable) -> None:
    """
    Batch pre-flight: every site must have a reanalysis file.

    Parameters
    ----------
    tasks : iterable of SiteTask
        Located sites.

    Raises
    ------
    MissingAuxiliarySource
        Listing every site without an existing reanalysis file.
    """
    missing = [
        t.site_code for t in tasks
        if t.reanalysis_file is None or not t.reanalysis_file.exists()
    ]
    if missing:
        raise MissingAuxiliarySource(missing)


@dataclass
class GapFillReport:
    """
    Outcome of gap-filling one site.

    Attributes
    ----------
    dataset : SiteDataset
        Copy of the input with filled values and rewritten flags.
    filled : dict
        Output name to number of filled steps.
    unfilled : dict
        Output name to number of target steps the reanalysis could not fill.
    skipped : dict
        Output name to the reason the variable was not filled.
    tier : QCFlag
        Flag given to filled steps.
    """

    dataset: SiteDataset
    filled: Dict[str, int] = field(default_factory=dict)
    unfilled: Dict[str, int] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)
    tier: QCFlag = QCFlag.MEDIUM_GAPFILL

    @property
    def n_filled(self) -> int:
        return sum(self.filled.values())


class GapFillSubstitutor:
    """
    Fill essential meteorological gaps from a reanalysis table.

    Parameters
    ----------
    config : ConversionConfig
        Supplies the flag tier for filled steps, whether poor-quality
        gap-filled steps are replaced, and the out-of-range action.
    logger : logging.Logger, optional
        Logger instance.
    """

    def __init__(self, config: ConversionConfig, logger: Optional[logging.Logger] = None):
        self.config = config
        self.logger = logger_check(logger)

    def targets(self, flags: pd.Series) -> pd.Series:
        """Steps to replace: missing, plus poor gap-fill when configured."""
        target = flags == int(QCFlag.MISSING)
        if self.config.replace_poor_gapfill:
            target |= flags == int(QCFlag.POOR_GAPFILL)
        return target

    def fill(
        self,
        dataset: SiteDataset,
        reanalysis: pd.DataFrame,
        retained: Optional[List[str]] = None,
    ) -> GapFillReport:
        """
        Fill every eligible variable of `dataset`.

        Parameters
        ----------
        dataset : SiteDataset
            Mapped site data; not modified.
        reanalysis : pd.DataFrame
            ``*_ERA`` columns in source units indexed by period start.
        retained : list of str, optional
            Variables kept by QC evaluation; others are not filled.

        Returns
        -------
        GapFillReport
        """
        tier = QCFlag(self.config.reanalysis_tier)
        out = dataset.copy()
        report = GapFillReport(dataset=out, tier=tier)
        context = {n: out.data[n].to_numpy() for n in ("Tair", "PSurf") if n in out.data}

        for name in out.variables:
            spec = out.specs[name]
            if not spec.gapfill_eligible:
                continue
            if retained is not None and name not in retained:
                continue
            if spec.substitute_source not in reanalysis.columns:
                report.skipped[name] = f"{spec.substitute_source} not in reanalysis"
                self.logger.warning(f"{name}: {report.skipped[name]}")
                continue

            target = self.targets(out.flags[name])
            if not target.any():
                report.filled[name] = 0
                continue

            aux = resample_auxiliary(
                reanalysis[spec.substitute_source], out.data.index,
                out.step_seconds, spec.aggregate_method,
            )
            aux_values = units.convert(aux.to_numpy(), spec, out.step_seconds, context)
            aux_values = np.where(target.to_numpy(), aux_values, np.nan)
            aux_values, oor = check_range(aux_values, spec, how=self.config.out_of_range)
            if oor.any():
                out.out_of_range[name] = out.out_of_range.get(name, 0) + int(oor.sum())

            fill_mask = ~np.isnan(aux_values)
            values = out.data[name].to_numpy(copy=True)
            values[fill_mask] = aux_values[fill_mask]
            out.data[name] = values
            flags = out.flags[name].to_numpy(copy=True)
            flags[fill_mask] = int(tier)
            out.flags[name] = flags
            if name in out.range_flags.columns:
                range_flags = out.range_flags[name].to_numpy(copy=True)
                range_flags[fill_mask] = oor[fill_mask]
                out.range_flags[name] = range_flags

            report.filled[name] = int(fill_mask.sum())
            report.unfilled[name] = int(target.sum()) - report.filled[name]
            self.logger.info(
                f"  {name}: {report.filled[name]:,} steps filled from "
                f"{spec.substitute_source} ({report.unfilled[name]:,} not covered)"
            )
        return report


__all__ = [
    "GapFillReport",
    "GapFillSubstitutor",
    "resample_auxiliary",
    "check_reanalysis_available",
]
