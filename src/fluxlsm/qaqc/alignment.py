"""
Resolve a site record onto one contiguous output time axis.

The axis covers the longest run of consecutive acceptable years and keeps
the site's native time step.
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from fluxlsm.dataset import SiteDataset, TimeAxis
from fluxlsm.errors import InconsistentTimeStep, InsufficientContiguousYears
from fluxlsm.qaqc.flags import QCFlag
from fluxlsm.utils import logger_check


def longest_contiguous_run(years: Iterable[int]) -> List[int]:
    """
    Longest run of consecutive years.

    Ties resolve to the most recent run.

    Examples
    --------
    >>> longest_contiguous_run([2001, 2002, 2004, 2005, 2006])
    [2004, 2005, 2006]
    """
    years = sorted(set(int(y) for y in years))
    best: List[int] = []
    run: List[int] = []
    for year in years:
        if run and year != run[-1] + 1:
            run = []
        run.append(year)
        if len(run) >= len(best):
            best = list(run)
    return best


class TemporalAligner:
    """
    Trim a site to its longest acceptable run of years.

    Parameters
    ----------
    min_consecutive_years : int
        Required length of the run.
    logger : logging.Logger, optional
        Logger instance.
    """

    def __init__(self, min_consecutive_years: int = 1, logger: Optional[logging.Logger] = None):
        self.min_consecutive_years = int(min_consecutive_years)
        self.logger = logger_check(logger)

    def resolve(self, years: Iterable[int]) -> List[int]:
        """
        Return the retained run of years.

        Raises
        ------
        InsufficientContiguousYears
            If the longest run is shorter than ``min_consecutive_years``.
        """
        years = sorted(set(int(y) for y in years))
        run = longest_contiguous_run(years)
        if len(run) < self.min_consecutive_years:
            raise InsufficientContiguousYears(run, self.min_consecutive_years)
        trimmed = [y for y in years if y not in run]
        if trimmed:
            self.logger.info(f"  Trimmed years {trimmed}; keeping {run[0]}-{run[-1]}")
        return run

    def axis_for(self, run: List[int], step_seconds: int) -> TimeAxis:
        """Axis from 1 January of the first year to the end of the last."""
        return TimeAxis.for_years(run[0], run[-1], step_seconds)

    def apply(self, dataset: SiteDataset, axis: TimeAxis) -> SiteDataset:
        """
        Reindex values and flags of `dataset` onto `axis`.

        Steps absent from the record become NaN with a ``MISSING`` flag
        and are never out of range.

        Raises
        ------
        InconsistentTimeStep
            If the dataset step differs from the axis step or a sequence
            does not end up with ``axis.n_steps`` values.
        """
        if dataset.step_seconds != axis.step_seconds:
            raise InconsistentTimeStep(
                f"Site step {dataset.step_seconds} s differs from axis step {axis.step_seconds} s"
            )
        index = axis.index()
        out = dataset.copy()
        out.data = dataset.data.reindex(index)
        out.flags = (
            dataset.flags.reindex(index)
            .fillna(int(QCFlag.MISSING))
            .astype("int64")
        )
        out.range_flags = dataset.range_flags.reindex(index, fill_value=False).astype(bool)
        if not out.passthrough.empty:
            out.passthrough = dataset.passthrough.reindex(index)
        out.expected_steps = axis.n_steps

        for frame in (out.data, out.flags, out.range_flags):
            for name in frame.columns:
                if len(frame[name]) != axis.n_steps:
                    raise InconsistentTimeStep(
                        f"{name} has {len(frame[name])} steps, expected {axis.n_steps}"
                    )
        return out


__all__ = [
    "TemporalAligner",
    "longest_contiguous_run",
]
