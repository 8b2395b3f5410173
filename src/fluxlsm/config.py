"""
Immutable configuration values for site conversion.

A :class:`ConversionConfig` (holding a :class:`ThresholdPolicy`) is built once
per batch and passed to every site conversion. Both are frozen dataclasses so
they can be shared by worker processes without locking.

Examples
--------
    >>> policy = ThresholdPolicy(missing_max=15, gapfill_all_max=20,
    ...                          min_consecutive_years=2)
    >>> config = ConversionConfig(policy=policy, met_gapfill='ERAinterim')
    >>> config = ConversionConfig.from_yaml('config/conversion.yml')
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Optional, Tuple, Union

from fluxlsm.qaqc.flags import QCFlag
from fluxlsm.utils import load_yaml


PLOT_TYPES = ("annual", "diurnal", "timeseries")
OUT_OF_RANGE_ACTIONS = ("flag", "mask", "raise")
GAPFILL_SOURCES = ("ERAinterim",)


@dataclass(frozen=True)
class ThresholdPolicy:
    """
    Data-quality thresholds deciding whether a variable is kept.

    All thresholds are percentages of the expected number of time steps.

    Attributes
    ----------
    missing_max : float
        Maximum percent missing. Always checked.
    gapfill_all_max : float or None
        Maximum percent gap-filled, all quality tiers combined. When set the
        per-tier thresholds are ignored.
    gapfill_good_max, gapfill_med_max, gapfill_poor_max : float or None
        Maximum percent gap-filled in each quality tier.
    min_consecutive_years : int
        Minimum number of consecutive acceptable years.
    include_all_eval : bool
        Keep every evaluation variable regardless of gaps.
    """

    missing_max: float
    gapfill_all_max: Optional[float] = None
    gapfill_good_max: Optional[float] = None
    gapfill_med_max: Optional[float] = None
    gapfill_poor_max: Optional[float] = None
    min_consecutive_years: int = 1
    include_all_eval: bool = True

    def __post_init__(self):
        if self.missing_max is None:
            raise ValueError("missing_max must be set")
        for name in ("missing_max", "gapfill_all_max", "gapfill_good_max",
                     "gapfill_med_max", "gapfill_poor_max"):
            value = getattr(self, name)
            if value is not None and not 0 <= value <= 100:
                raise ValueError(f"{name} must be a percentage in [0, 100], got {value}")
        if int(self.min_consecutive_years) < 1:
            raise ValueError("min_consecutive_years must be at least 1")

    @property
    def tier_thresholds(self) -> dict:
        """Per-tier thresholds that are set, keyed by the flag they apply to."""
        tiers = {
            QCFlag.GOOD_GAPFILL: self.gapfill_good_max,
            QCFlag.MEDIUM_GAPFILL: self.gapfill_med_max,
            QCFlag.POOR_GAPFILL: self.gapfill_poor_max,
        }
        return {flag: value for flag, value in tiers.items() if value is not None}


@dataclass(frozen=True)
class ConversionConfig:
    """
    Configuration for converting one or more sites.

    Attributes
    ----------
    policy : ThresholdPolicy
        QC thresholds.
    met_gapfill : str or None
        Reanalysis source used to fill meteorological gaps ('ERAinterim'),
        or None to disable gap-filling.
    reanalysis_tier : QCFlag
        Flag given to steps filled from the reanalysis.
    replace_poor_gapfill : bool
        Also replace steps already flagged as poor-quality gap-fill.
    out_of_range : str
        Action for values outside the physical bounds: 'flag', 'mask' or 'raise'.
    plots : tuple of str
        Plot types to produce after a successful conversion.
    datasetname : str
        Dataset name used to locate files and name outputs.
    subset : str
        Dataset release subset ('FULLSET' or 'SUBSET').
    resolutions : tuple of str
        Native resolutions accepted when locating site files.
    n_workers : int
        Number of worker processes for batch conversion.
    registry_csv : Path or None
        Replacement variable table; the bundled table is used when None.
    site_config_dir : Path or None
        Directory of ``<site>.ini`` metadata files.
    limit_vars : tuple of str or None
        Restrict conversion to these output variables (essential
        meteorological variables are always converted).
    """

    policy: ThresholdPolicy = field(default_factory=lambda: ThresholdPolicy(missing_max=15))
    met_gapfill: Optional[str] = None
    reanalysis_tier: QCFlag = QCFlag.MEDIUM_GAPFILL
    replace_poor_gapfill: bool = False
    out_of_range: str = "flag"
    plots: Tuple[str, ...] = ()
    datasetname: str = "FLUXNET2015"
    subset: str = "FULLSET"
    resolutions: Tuple[str, ...] = ("HH", "HR")
    n_workers: int = 1
    registry_csv: Optional[Path] = None
    site_config_dir: Optional[Path] = None
    limit_vars: Optional[Tuple[str, ...]] = None

    def __post_init__(self):
        if self.met_gapfill is not None and self.met_gapfill not in GAPFILL_SOURCES:
            raise ValueError(
                f"Unknown met_gapfill source '{self.met_gapfill}'; "
                f"expected one of {GAPFILL_SOURCES} or None"
            )
        if self.out_of_range not in OUT_OF_RANGE_ACTIONS:
            raise ValueError(f"out_of_range must be one of {OUT_OF_RANGE_ACTIONS}")
        bad = [p for p in self.plots if p not in PLOT_TYPES]
        if bad:
            raise ValueError(f"Unknown plot type(s) {bad}; expected {PLOT_TYPES}")
        tier = QCFlag(self.reanalysis_tier)
        if not tier.is_gapfill:
            raise ValueError("reanalysis_tier must be a gap-fill tier")
        object.__setattr__(self, "reanalysis_tier", tier)
        if self.n_workers < 1:
            raise ValueError("n_workers must be at least 1")

    @property
    def gapfill_enabled(self) -> bool:
        return self.met_gapfill is not None

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        d = asdict(self)
        d['reanalysis_tier'] = self.reanalysis_tier.name
        for key in ('registry_csv', 'site_config_dir'):
            if d[key] is not None:
                d[key] = str(d[key])
        d['plots'] = list(self.plots)
        d['resolutions'] = list(self.resolutions)
        if self.limit_vars is not None:
            d['limit_vars'] = list(self.limit_vars)
        return d

    @classmethod
    def from_dict(cls, options: dict) -> "ConversionConfig":
        """
        Build a configuration from a plain dictionary (e.g. parsed YAML).

        Threshold keys may sit under a ``thresholds`` mapping or at the top
        level; unknown keys raise ``TypeError``.
        """
        options = dict(options)
        thresholds = dict(options.pop('thresholds', {}) or {})
        for key in ('missing_max', 'gapfill_all_max', 'gapfill_good_max',
                    'gapfill_med_max', 'gapfill_poor_max',
                    'min_consecutive_years', 'include_all_eval'):
            if key in options:
                thresholds[key] = options.pop(key)
        if thresholds:
            options['policy'] = ThresholdPolicy(**thresholds)

        if 'reanalysis_tier' in options and isinstance(options['reanalysis_tier'], str):
            options['reanalysis_tier'] = QCFlag[options['reanalysis_tier'].upper()]
        for key in ('plots', 'resolutions', 'limit_vars'):
            if options.get(key) is not None:
                options[key] = tuple(options[key])
        for key in ('registry_csv', 'site_config_dir'):
            if options.get(key) is not None:
                options[key] = Path(options[key])
        return cls(**options)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ConversionConfig":
        """Load a configuration from a YAML file."""
        return cls.from_dict(load_yaml(path))


__all__ = [
    "ThresholdPolicy",
    "ConversionConfig",
    "PLOT_TYPES",
    "OUT_OF_RANGE_ACTIONS",
]
