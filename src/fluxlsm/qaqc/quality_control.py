"""
Data-quality evaluation of mapped site variables.

Each variable's QC flags are counted against the full expected number of
time steps, so steps absent from the record count as missing. A
:class:`~fluxlsm.config.ThresholdPolicy` then decides whether the variable
is retained:

1. more than ``missing_max`` percent missing drops the variable;
2. otherwise, if ``gapfill_all_max`` is set, more than that percent
   gap-filled (all tiers) drops it and the per-tier limits are ignored;
3. otherwise any exceeded per-tier limit drops it;
4. evaluation variables are always retained when ``include_all_eval``.

Dropping an essential meteorological variable fails the whole site.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from fluxlsm.config import ThresholdPolicy
from fluxlsm.dataset import SiteDataset
from fluxlsm.errors import EssentialVariableDropped, EvaluationVariableDropped
from fluxlsm.format.registry import EVAL, MET
from fluxlsm.qaqc.flags import QCFlag, count_flags
from fluxlsm.utils import logger_check


@dataclass(frozen=True)
class QCStats:
    """Flag counts for one variable over `n_expected` steps."""

    n_expected: int
    n_measured: int
    n_good: int
    n_med: int
    n_poor: int
    n_missing: int

    def _pct(self, n: int) -> float:
        return 100.0 * n / self.n_expected

    @property
    def pct_missing(self) -> float:
        return self._pct(self.n_missing)

    @property
    def pct_gapfill_good(self) -> float:
        return self._pct(self.n_good)

    @property
    def pct_gapfill_med(self) -> float:
        return self._pct(self.n_med)

    @property
    def pct_gapfill_poor(self) -> float:
        return self._pct(self.n_poor)

    @property
    def pct_gapfill_all(self) -> float:
        return self._pct(self.n_good + self.n_med + self.n_poor)

    def pct_for(self, flag: QCFlag) -> float:
        return {
            QCFlag.MEASURED: self._pct(self.n_measured),
            QCFlag.GOOD_GAPFILL: self.pct_gapfill_good,
            QCFlag.MEDIUM_GAPFILL: self.pct_gapfill_med,
            QCFlag.POOR_GAPFILL: self.pct_gapfill_poor,
            QCFlag.MISSING: self.pct_missing,
        }[QCFlag(flag)]

    def to_dict(self) -> dict:
        return {
            "n_expected": self.n_expected,
            "pct_missing": self.pct_missing,
            "pct_gapfill_good": self.pct_gapfill_good,
            "pct_gapfill_med": self.pct_gapfill_med,
            "pct_gapfill_poor": self.pct_gapfill_poor,
            "pct_gapfill_all": self.pct_gapfill_all,
        }


def summarize_flags(flags, n_expected: Optional[int] = None) -> QCStats:
    """
    Count QC flags against the expected number of steps.

    Parameters
    ----------
    flags : array-like
        Per-step :class:`QCFlag` values.
    n_expected : int, optional
        Number of steps the record should hold. Defaults to ``len(flags)``.
        Steps beyond the sequence are counted as missing.

    Returns
    -------
    QCStats
    """
    arr = np.asarray(flags)
    if n_expected is None:
        n_expected = len(arr)
    if n_expected <= 0:
        raise ValueError("n_expected must be positive")
    if len(arr) > n_expected:
        raise ValueError(f"{len(arr)} flags exceed the {n_expected} expected steps")

    counts = count_flags(arr)
    n_present = sum(counts[f] for f in QCFlag if f != QCFlag.MISSING)
    return QCStats(
        n_expected=int(n_expected),
        n_measured=counts[QCFlag.MEASURED],
        n_good=counts[QCFlag.GOOD_GAPFILL],
        n_med=counts[QCFlag.MEDIUM_GAPFILL],
        n_poor=counts[QCFlag.POOR_GAPFILL],
        n_missing=int(n_expected) - n_present,
    )


def decide(stats: QCStats, policy: ThresholdPolicy, category: str) -> Tuple[bool, str]:
    """
    Apply the retention rules to one variable.

    Returns
    -------
    tuple
        ``(retained, reason)``; the reason is empty for a plain retention.
    """
    if category == EVAL and policy.include_all_eval:
        return True, "evaluation variables always included"

    if stats.pct_missing > policy.missing_max:
        return False, f"{stats.pct_missing:.1f}% missing exceeds {policy.missing_max:g}%"

    if policy.gapfill_all_max is not None:
        if stats.pct_gapfill_all > policy.gapfill_all_max:
            return False, (
                f"{stats.pct_gapfill_all:.1f}% gap-filled exceeds "
                f"{policy.gapfill_all_max:g}%"
            )
        return True, ""

    for flag, limit in policy.tier_thresholds.items():
        pct = stats.pct_for(flag)
        if pct > limit:
            tier = flag.name.replace("_GAPFILL", "").lower()
            return False, f"{pct:.1f}% {tier}-quality gap-filled exceeds {limit:g}%"
    return True, ""


@dataclass
class QCEvaluation:
    """
    Outcome of evaluating every variable of a site.

    Attributes
    ----------
    stats : dict
        Output name to :class:`QCStats`.
    retained : list
        Retained output names in registry order.
    dropped : dict
        Output name to drop reason, for soft drops.
    soft_drops : list
        :class:`EvaluationVariableDropped` instances for the report.
    """

    stats: Dict[str, QCStats] = field(default_factory=dict)
    retained: List[str] = field(default_factory=list)
    dropped: Dict[str, str] = field(default_factory=dict)
    soft_drops: List[EvaluationVariableDropped] = field(default_factory=list)


class QualityControlEvaluator:
    """
    Decide variable retention for a site.

    Parameters
    ----------
    policy : ThresholdPolicy
        Retention thresholds.
    logger : logging.Logger, optional
        Logger instance.
    """

    def __init__(self, policy: ThresholdPolicy, logger: Optional[logging.Logger] = None):
        self.policy = policy
        self.logger = logger_check(logger)

    def evaluate(self, dataset: SiteDataset) -> QCEvaluation:
        """
        Evaluate every mapped variable over the whole record.

        Raises
        ------
        EssentialVariableDropped
            If an essential meteorological variable is absent from the input
            or fails the thresholds.
        """
        result = QCEvaluation()
        for name, spec in dataset.specs.items():
            if name in dataset.absent:
                if spec.is_essential_met:
                    raise EssentialVariableDropped(name, f"{spec.source_name} not present in input")
                continue
            if name not in dataset.data.columns:
                continue

            stats = summarize_flags(dataset.flags[name].to_numpy(), dataset.expected_steps)
            result.stats[name] = stats
            retained, reason = decide(stats, self.policy, spec.category)
            if retained:
                result.retained.append(name)
                self.logger.debug(f"{name}: retained ({stats.pct_missing:.1f}% missing)")
                continue

            if spec.is_essential_met:
                raise EssentialVariableDropped(name, reason)
            result.dropped[name] = reason
            result.soft_drops.append(EvaluationVariableDropped(name, reason))
            self.logger.warning(f"{name}: dropped ({reason})")

        preferred = [
            n for n in result.retained
            if dataset.specs[n].is_preferred_eval
        ]
        if not preferred:
            self.logger.warning(f"{dataset.site_code}: no preferred evaluation variable retained")
        return result

    def yearly_stats(self, dataset: SiteDataset, names: Optional[Iterable[str]] = None) -> pd.DataFrame:
        """
        Per calendar year QC statistics.

        Each year is measured against its full number of steps, so a
        partially covered year counts its absent steps as missing.

        Returns
        -------
        pd.DataFrame
            One row per (year, variable) with the :class:`QCStats`
            percentages and the retention decision.
        """
        names = list(dataset.variables if names is None else names)
        step = pd.Timedelta(seconds=dataset.step_seconds)
        rows = []
        for year in dataset.years():
            start = pd.Timestamp(year=year, month=1, day=1)
            end = pd.Timestamp(year=year + 1, month=1, day=1)
            n_expected = int((end - start) / step)
            in_year = (dataset.flags.index >= start) & (dataset.flags.index < end)
            for name in names:
                stats = summarize_flags(dataset.flags.loc[in_year, name].to_numpy(), n_expected)
                retained, reason = decide(stats, self.policy, dataset.specs[name].category)
                rows.append({"year": year, "variable": name, **stats.to_dict(),
                             "acceptable": retained, "reason": reason})
        return pd.DataFrame(rows)

    def acceptable_years(self, dataset: SiteDataset, names: Optional[Iterable[str]] = None) -> List[int]:
        """
        Years in which every essential meteorological variable passes.

        Parameters
        ----------
        dataset : SiteDataset
            Site data, usually after gap-filling.
        names : iterable of str, optional
            Variables to check; defaults to the essential meteorological
            variables present.
        """
        if names is None:
            names = [n for n in dataset.of_category(MET) if dataset.specs[n].is_essential_met]
        names = list(names)
        if not names:
            return dataset.years()
        table = self.yearly_stats(dataset, names)
        if table.empty:
            return []
        ok = table.groupby("year")["acceptable"].all()
        years = [int(y) for y, passed in ok.items() if passed]
        rejected = [int(y) for y, passed in ok.items() if not passed]
        if rejected:
            self.logger.info(f"{dataset.site_code}: years failing QC {rejected}")
        return years


__all__ = [
    "QCStats",
    "QCEvaluation",
    "QualityControlEvaluator",
    "summarize_flags",
    "decide",
]
