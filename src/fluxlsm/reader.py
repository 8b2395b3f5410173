"""
This module provides the FluxnetDataProcessor class for reading FLUXNET2015
site and ERA-Interim CSV files into pandas DataFrames.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import numpy as np
import pandas as pd

from fluxlsm.dataset import RawSiteData, TimeAxis
from fluxlsm.format.transformers.timestamps import fix_timestamps, infer_time_step
from fluxlsm.qaqc.flags import MISSING_VALUE
from fluxlsm.utils import logger_check


class FluxnetDataProcessor:
    """
    Read FLUXNET2015 CSV output into a tidy DataFrame.

    Parameters
    ----------
    logger : logging.Logger
        Logger to use.
    """

    _HEADER_PREFIX = "TIMESTAMP_START"
    NA_VALUES = [str(MISSING_VALUE), "NAN", "NaN", "nan", np.nan, float(MISSING_VALUE)]

    def __init__(
        self,
        logger: logging.Logger = None,  # type: ignore
    ):
        self.logger = logger_check(logger)

    def to_dataframe(self, file: Union[str, Path]) -> pd.DataFrame:
        """Return parsed CSV as pandas DataFrame, -9999 read as NaN."""
        file = Path(file)
        self._check_header(file)
        self.logger.debug("Reading %s", file)
        df = pd.read_csv(file, na_values=self.NA_VALUES)
        return df

    def _check_header(self, file: Path) -> None:
        """
        Examine the first line to confirm a FLUXNET2015 column header.

        FLUXNET2015 files start with the TIMESTAMP_START (or TIMESTAMP
        for daily and coarser files) column label.
        """
        with file.open("r") as fp:
            first_line = fp.readline().strip().replace('"', "").split(",")
        if first_line[0] not in (self._HEADER_PREFIX, "TIMESTAMP"):
            raise RuntimeError(f"Header line not recognized: {first_line[:3]}")
        self.logger.debug(f"Header row detected with {len(first_line)} columns")

    def read_site(self, file: Union[str, Path]) -> RawSiteData:
        """
        Read a site file onto a regular grid covering whole years.

        Parameters
        ----------
        file : str or Path
            FLUXNET2015 site CSV.

        Returns
        -------
        RawSiteData
            Source columns indexed by period start. Steps absent from the
            file are NaN and count towards ``expected_steps``.

        Raises
        ------
        InconsistentTimeStep
            If the file mixes time-step resolutions.
        """
        df = fix_timestamps(self.to_dataframe(file), self.logger)
        step = infer_time_step(df.index, period_seconds=df.attrs.get("period_seconds"))
        axis = TimeAxis.for_years(df.index[0].year, df.index[-1].year, step)
        grid = axis.index().rename(df.index.name)
        n_read = len(df)
        df = df.reindex(grid)
        self.logger.info(
            f"  Read {n_read:,} records at {step // 60} min "
            f"({axis.years[0]}-{axis.years[-1]}, {axis.n_steps:,} expected)"
        )
        return RawSiteData(
            data=df,
            step_seconds=step,
            expected_steps=axis.n_steps,
            source_file=Path(file),
        )

    def read_reanalysis(self, file: Union[str, Path]) -> pd.DataFrame:
        """
        Read an ERA-Interim companion file.

        Returns
        -------
        pd.DataFrame
            ``*_ERA`` columns indexed by period start, at their native
            resolution.
        """
        df = fix_timestamps(self.to_dataframe(file), self.logger)
        era_cols = [c for c in df.columns if str(c).endswith("_ERA")]
        if not era_cols:
            self.logger.warning(f"No *_ERA columns in {Path(file).name}")
        return df[era_cols].astype(float)


def read_site_file(
    file: Union[str, Path],
    logger: Optional[logging.Logger] = None,
) -> RawSiteData:
    """Convenience wrapper around :meth:`FluxnetDataProcessor.read_site`."""
    return FluxnetDataProcessor(logger=logger).read_site(file)


__all__ = [
    "FluxnetDataProcessor",
    "read_site_file",
]
