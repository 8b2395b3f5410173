"""
Quality-control flag vocabulary shared by every processing stage.

FLUXNET2015 ``_QC`` columns use 0 (measured), 1 (good-quality gap-fill),
2 (medium) and 3 (poor). Missing steps use the package-wide missing value.
"""
from enum import IntEnum

import numpy as np
import pandas as pd


MISSING_VALUE: int = -9999


class QCFlag(IntEnum):
    MEASURED = 0
    GOOD_GAPFILL = 1
    MEDIUM_GAPFILL = 2
    POOR_GAPFILL = 3
    MISSING = MISSING_VALUE

    @property
    def is_gapfill(self) -> bool:
        return self in GAPFILL_TIERS


GAPFILL_TIERS = (QCFlag.GOOD_GAPFILL, QCFlag.MEDIUM_GAPFILL, QCFlag.POOR_GAPFILL)


def flags_from_source(values: pd.Series, qc_codes: pd.Series | None = None) -> pd.Series:
    """
    Derive per-step QC flags from a source variable and its ``_QC`` column.

    Parameters
    ----------
    values : pd.Series
        Source values (NaN where missing).
    qc_codes : pd.Series, optional
        FLUXNET2015 QC codes aligned with `values`. When None the flag is
        derived from value presence alone.

    Returns
    -------
    pd.Series
        Integer flags aligned with `values`.
    """
    flags = pd.Series(int(QCFlag.MEASURED), index=values.index, dtype="int64")
    if qc_codes is not None:
        codes = pd.to_numeric(qc_codes, errors="coerce").reindex(values.index)
        known = codes.isin([0, 1, 2, 3])
        flags = flags.where(~known, codes.where(known, 0).astype("int64"))
        flags = flags.where(codes.isna() | known, int(QCFlag.POOR_GAPFILL))
    flags = flags.where(values.notna(), int(QCFlag.MISSING))
    return flags


def count_flags(flags: np.ndarray | pd.Series) -> dict:
    """Count occurrences of every :class:`QCFlag` value."""
    arr = np.asarray(flags)
    return {flag: int(np.count_nonzero(arr == flag)) for flag in QCFlag}


__all__ = [
    "MISSING_VALUE",
    "QCFlag",
    "GAPFILL_TIERS",
    "flags_from_source",
    "count_flags",
]
