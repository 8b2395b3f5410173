"""
Containers passed between the stages of a site conversion.

Classes
-------
TimeAxis : Regular output time axis (start, step, count)
RawSiteData : Parsed input spreadsheet, source column names
SiteDataset : Mapped and converted variables with QC flags
VariableRecord : One output variable with its flags and metadata
VariableReport : Retention decision and statistics for one variable
ConversionResult : Forcing and evaluation record sets for one site
SiteStatus : Per-site outcome reported by a batch
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from fluxlsm.format.registry import EVAL, MET, VariableSpec


class SiteStatus(str, Enum):
    SUCCESS = "success"
    SOFT_DEGRADED = "soft-degraded"
    FAILED = "failed"


@dataclass(frozen=True)
class TimeAxis:
    """
    Regularly spaced time axis.

    Attributes
    ----------
    start : pd.Timestamp
        Start of the first averaging period.
    step_seconds : int
        Step length in seconds.
    n_steps : int
        Number of steps.
    """

    start: pd.Timestamp
    step_seconds: int
    n_steps: int

    @classmethod
    def for_years(cls, first_year: int, last_year: int, step_seconds: int) -> "TimeAxis":
        """Axis from 1 January of `first_year` up to 1 January after `last_year`."""
        start = pd.Timestamp(year=int(first_year), month=1, day=1)
        end = pd.Timestamp(year=int(last_year) + 1, month=1, day=1)
        n_steps = int((end - start).total_seconds() // step_seconds)
        return cls(start=start, step_seconds=int(step_seconds), n_steps=n_steps)

    @property
    def end(self) -> pd.Timestamp:
        """Exclusive end of the axis."""
        return self.start + pd.Timedelta(seconds=self.step_seconds * self.n_steps)

    @property
    def years(self) -> List[int]:
        return list(range(self.start.year, (self.end - pd.Timedelta(seconds=1)).year + 1))

    def index(self) -> pd.DatetimeIndex:
        return pd.date_range(
            self.start, periods=self.n_steps,
            freq=pd.Timedelta(seconds=self.step_seconds), name="time",
        )

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "step_seconds": self.step_seconds,
            "n_steps": self.n_steps,
        }


@dataclass
class RawSiteData:
    """
    A site spreadsheet as read from disk.

    ``data`` holds the source columns on a regular grid covering whole
    calendar years; steps absent from the file are NaN.
    """

    data: pd.DataFrame
    step_seconds: int
    expected_steps: int
    source_file: Optional[Path] = None

    @property
    def columns(self) -> List[str]:
        return list(self.data.columns)


@dataclass
class SiteDataset:
    """
    Site variables mapped onto the output vocabulary.

    Attributes
    ----------
    site_code : str
        FLUXNET site identifier.
    version_tag : str
        Dataset release version, e.g. '1-3'.
    data : pd.DataFrame
        Converted values, one column per output variable, indexed by
        period start.
    flags : pd.DataFrame
        Integer QC flags aligned with `data`.
    specs : dict
        Output name to :class:`VariableSpec`, in registry order.
    step_seconds : int
        Native time step.
    expected_steps : int
        Number of steps the record should contain.
    passthrough : pd.DataFrame
        Source columns that matched no registry entry, unconverted.
    out_of_range : dict
        Output name to the number of out-of-range values.
    range_flags : pd.DataFrame
        Boolean per-step out-of-range mask aligned with `data`.
    conversion_failures : dict
        Output name to the reason a non-essential variable could not be
        converted or was rejected for out-of-range values.
    absent : list
        Output names whose source column is not in the input.
    """

    site_code: str
    version_tag: str
    data: pd.DataFrame
    flags: pd.DataFrame
    specs: Dict[str, VariableSpec]
    step_seconds: int
    expected_steps: int
    passthrough: pd.DataFrame = field(default_factory=pd.DataFrame)
    out_of_range: Dict[str, int] = field(default_factory=dict)
    range_flags: pd.DataFrame = field(default_factory=pd.DataFrame)
    conversion_failures: Dict[str, str] = field(default_factory=dict)
    absent: List[str] = field(default_factory=list)

    @property
    def variables(self) -> List[str]:
        return [name for name in self.specs if name in self.data.columns]

    def of_category(self, category: str) -> List[str]:
        return [n for n in self.variables if self.specs[n].category == category]

    def years(self) -> List[int]:
        return sorted(set(int(y) for y in self.data.index.year))

    def copy(self) -> "SiteDataset":
        return SiteDataset(
            site_code=self.site_code,
            version_tag=self.version_tag,
            data=self.data.copy(),
            flags=self.flags.copy(),
            specs=dict(self.specs),
            step_seconds=self.step_seconds,
            expected_steps=self.expected_steps,
            passthrough=self.passthrough.copy(),
            out_of_range=dict(self.out_of_range),
            range_flags=self.range_flags.copy(),
            conversion_failures=dict(self.conversion_failures),
            absent=list(self.absent),
        )

    def drop(self, names) -> None:
        names = [n for n in names if n in self.data.columns]
        self.data = self.data.drop(columns=names)
        self.flags = self.flags.drop(columns=names)
        self.range_flags = self.range_flags.drop(
            columns=[n for n in names if n in self.range_flags.columns]
        )


@dataclass
class VariableRecord:
    """
    One output variable: values, flags and descriptive metadata.

    ``out_of_range`` marks the steps whose value fell outside the
    registry bounds.
    """

    name: str
    values: np.ndarray
    flags: np.ndarray
    units: str
    long_name: str
    standard_name: Optional[str]
    source_name: str
    category: str
    out_of_range: Optional[np.ndarray] = None

    def __post_init__(self):
        if self.out_of_range is None:
            self.out_of_range = np.zeros(len(self.values), dtype=bool)
        else:
            self.out_of_range = np.asarray(self.out_of_range, dtype=bool)

    @classmethod
    def from_spec(cls, spec: VariableSpec, values, flags, out_of_range=None) -> "VariableRecord":
        return cls(
            name=spec.output_name,
            values=np.asarray(values, dtype=float),
            flags=np.asarray(flags, dtype="int64"),
            units=spec.output_unit,
            long_name=spec.long_name,
            standard_name=spec.standard_name,
            source_name=spec.source_name,
            category=spec.category,
            out_of_range=out_of_range,
        )


@dataclass
class VariableReport:
    """Retention decision and QC statistics for one variable."""

    output_name: str
    source_name: str
    category: str
    status: str
    reason: str = ""
    pct_missing: float = float("nan")
    pct_gapfill_good: float = float("nan")
    pct_gapfill_med: float = float("nan")
    pct_gapfill_poor: float = float("nan")
    pct_gapfill_all: float = float("nan")
    n_out_of_range: int = 0
    n_filled: int = 0

    # statuses that make a site soft-degraded
    DEGRADING = ("dropped", "conversion_failed")

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ConversionResult:
    """
    Output of a successful site conversion.

    ``forcing`` and ``evaluation`` map output names to
    :class:`VariableRecord` in registry order; every record has exactly
    ``time_axis.n_steps`` values.
    """

    site_code: str
    version_tag: str
    forcing: Dict[str, VariableRecord]
    evaluation: Dict[str, VariableRecord]
    time_axis: TimeAxis
    report: List[VariableReport]
    passthrough: List[str] = field(default_factory=list)

    @property
    def status(self) -> SiteStatus:
        if any(r.status in VariableReport.DEGRADING for r in self.report):
            return SiteStatus.SOFT_DEGRADED
        return SiteStatus.SUCCESS

    @property
    def years(self) -> List[int]:
        return self.time_axis.years

    def records(self, category: str) -> Dict[str, VariableRecord]:
        if category == MET:
            return self.forcing
        if category == EVAL:
            return self.evaluation
        raise ValueError(f"Unknown category '{category}'")

    def to_frame(self, category: str) -> pd.DataFrame:
        """Values of one record set as a DataFrame indexed by time."""
        records = self.records(category)
        return pd.DataFrame(
            {name: rec.values for name, rec in records.items()},
            index=self.time_axis.index(),
        )

    def report_frame(self) -> pd.DataFrame:
        """Per-variable report as a DataFrame."""
        return pd.DataFrame([r.to_dict() for r in self.report])


__all__ = [
    "SiteStatus",
    "TimeAxis",
    "RawSiteData",
    "SiteDataset",
    "VariableRecord",
    "VariableReport",
    "ConversionResult",
]
