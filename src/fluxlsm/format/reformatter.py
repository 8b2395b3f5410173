"""
This module provides the Reformatter class, which maps FLUXNET2015 source
columns onto the output vocabulary: unit conversion, physical-bounds checks
and QC-flag derivation.
"""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np
import pandas as pd

from fluxlsm.dataset import RawSiteData, SiteDataset
from fluxlsm.errors import ConversionInputMissing, OutOfRangeValue, UnsupportedUnitConversion
from fluxlsm.format import units
from fluxlsm.format.registry import VariableRegistry, VariableSpec
from fluxlsm.format.transformers.validation import REPORT_COLUMNS, apply_physical_limits
from fluxlsm.qaqc.flags import flags_from_source
from fluxlsm.utils import logger_check


class Reformatter:
    """
    Map a raw FLUXNET2015 table onto registry variables.

    Parameters
    ----------
    registry : VariableRegistry
        Variables to convert, in output order.
    out_of_range : str, optional
        Action for values outside the registry bounds: 'flag' (default),
        'mask' or 'raise'.
    logger : logging.Logger, optional
        A logger for tracking the reformatting process.

    Attributes
    ----------
    limits_report : pd.DataFrame or None
        Out-of-range counts from the last call to :meth:`process`.
    """

    def __init__(
        self,
        registry: VariableRegistry,
        out_of_range: str = "flag",
        logger: logging.Logger | None = None,
    ):
        self.logger = logger_check(logger)
        self.registry = registry
        self.out_of_range = out_of_range
        self.limits_report: Optional[pd.DataFrame] = None

    def split_columns(self, columns) -> Tuple[List[str], List[str]]:
        """
        Separate QC companions from source columns that match no variable.

        Returns
        -------
        tuple of list
            ``(qc_columns, unmatched_columns)``, both in input order.
        """
        known = set(self.registry.source_names())
        present = set(columns)
        qc_cols, unmatched = [], []
        for col in columns:
            if col in known:
                continue
            if col.endswith("_QC") and col[:-3] in present:
                qc_cols.append(col)
            else:
                unmatched.append(col)
        return qc_cols, unmatched

    def process(
        self, raw: RawSiteData, site_code: str, version_tag: str
    ) -> SiteDataset:
        """
        Convert every registry variable present in `raw`.

        Each variable is range-checked as soon as it is converted.
        Variables whose transform needs companion variables (specific
        humidity from relative humidity) are converted after the others so
        that checked air temperature and pressure are available.

        Parameters
        ----------
        raw : RawSiteData
            The site table as read from disk.
        site_code : str
            Site identifier.
        version_tag : str
            Dataset release version.

        Returns
        -------
        SiteDataset
            Converted values, flags and per-step out-of-range masks.

        Raises
        ------
        UnsupportedUnitConversion, ConversionInputMissing
            If an essential meteorological variable cannot be converted.
        OutOfRangeValue
            If ``out_of_range='raise'`` and an essential meteorological
            variable has a value outside its bounds. Other variables with
            out-of-range values are rejected and reported instead.
        """
        df = raw.data
        self.logger.info("Starting reformat (%s rows)", len(df))

        qc_cols, unmatched = self.split_columns(df.columns)
        self.logger.debug(f"{len(qc_cols)} QC columns found")
        if unmatched:
            self.logger.debug(f"{len(unmatched)} unmatched columns passed through: {unmatched}")

        specs = list(self.registry)
        ordered = [s for s in specs if not self._needs_context(s)]
        ordered += [s for s in specs if s not in ordered]

        converted: Dict[str, np.ndarray] = {}
        range_masks: Dict[str, np.ndarray] = {}
        reports: List[pd.DataFrame] = []
        failures: Dict[str, str] = {}
        absent: List[str] = []
        for spec in ordered:
            name = spec.output_name
            if spec.source_name not in df.columns:
                absent.append(name)
                continue
            try:
                values = units.convert(
                    df[spec.source_name].to_numpy(dtype=float),
                    spec,
                    step_seconds=raw.step_seconds,
                    context=converted,
                )
            except (UnsupportedUnitConversion, ConversionInputMissing) as e:
                if spec.is_essential_met:
                    raise
                failures[name] = str(e)
                self.logger.warning(f"{name} not converted: {e}")
                continue

            try:
                checked, oor, report = apply_physical_limits(
                    pd.DataFrame({name: values}, index=df.index), [spec], how=self.out_of_range
                )
            except OutOfRangeValue as e:
                if spec.is_essential_met:
                    raise
                failures[name] = str(e)
                self.logger.warning(f"{name} rejected: {e}")
                continue
            converted[name] = checked[name].to_numpy()
            range_masks[name] = oor[name].to_numpy()
            reports.append(report)

        self.limits_report = (
            pd.concat(reports, ignore_index=True)
            .sort_values(["n_flagged", "column"], ascending=[False, True])
            .reset_index(drop=True)
            if reports else pd.DataFrame(columns=REPORT_COLUMNS)
        )
        out_of_range = {
            row.column: int(row.n_flagged) for row in self.limits_report.itertuples()
        }
        for name, n in out_of_range.items():
            if n:
                verb = "masked" if self.out_of_range == "mask" else "flagged"
                self.logger.warning(f"{name}: {n:,} values outside physical bounds {verb}")

        names = [s.output_name for s in specs if s.output_name in converted]
        data = pd.DataFrame({n: converted[n] for n in names}, index=df.index, columns=names)
        range_flags = pd.DataFrame(
            {n: range_masks[n] for n in names}, index=df.index, columns=names, dtype=bool
        )
        flags = pd.DataFrame(
            {
                name: flags_from_source(data[name], self._qc_codes(df, self.registry.get(name)))
                for name in names
            },
            index=df.index,
            columns=names,
        )

        self.logger.info(
            "Done; %s variables mapped, %s absent, %s unmatched",
            len(names), len(absent), len(unmatched),
        )
        return SiteDataset(
            site_code=site_code,
            version_tag=version_tag,
            data=data,
            flags=flags,
            specs={s.output_name: s for s in specs},
            step_seconds=raw.step_seconds,
            expected_steps=raw.expected_steps,
            passthrough=df[unmatched].copy(),
            out_of_range=out_of_range,
            range_flags=range_flags,
            conversion_failures=failures,
            absent=[s.output_name for s in specs if s.output_name in absent],
        )

    @staticmethod
    def _needs_context(spec: VariableSpec) -> bool:
        try:
            transform = units.get_transform(spec.source_unit, spec.output_unit)
        except UnsupportedUnitConversion:
            return False
        return bool(transform.needs_context)

    @staticmethod
    def _qc_codes(df: pd.DataFrame, spec: VariableSpec) -> pd.Series | None:
        if spec.qc_column in df.columns:
            return df[spec.qc_column]
        return None


__all__ = ["Reformatter"]
