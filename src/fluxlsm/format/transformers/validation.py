"""
Physical-bounds validation of converted variables.

Bounds come from the variable registry (``valid_min``/``valid_max`` in output
units). Values outside them are flagged ``out_of_range``; depending on the
configured action they are kept, masked to NaN, or rejected.
"""

from typing import Iterable, Tuple

import numpy as np
import pandas as pd

from fluxlsm.errors import OutOfRangeValue
from fluxlsm.format.registry import VariableSpec

HOW_CHOICES = ("flag", "mask", "raise")
REPORT_COLUMNS = ["column", "min", "max", "n_below", "n_above", "n_flagged", "pct_flagged"]


def check_range(
    values,
    spec: VariableSpec,
    how: str = "flag",
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Check converted values against the registry bounds of `spec`.

    Parameters
    ----------
    values : array-like
        Values in ``spec.output_unit``.
    spec : VariableSpec
        Registry row supplying ``valid_min`` and ``valid_max``.
    how : str, optional
        'flag' (default) keeps the values, 'mask' sets them to NaN and
        'raise' raises :class:`~fluxlsm.errors.OutOfRangeValue`.

    Returns
    -------
    tuple of np.ndarray
        The (possibly masked) values and a boolean out-of-range mask.
        NaN values are never out of range.
    """
    if how not in HOW_CHOICES:
        raise ValueError(f"how must be one of {HOW_CHOICES}")

    arr = np.asarray(values, dtype=float).copy()
    present = ~np.isnan(arr)
    oor = np.zeros(arr.shape, dtype=bool)
    oor[present] = (arr[present] < spec.valid_min) | (arr[present] > spec.valid_max)

    n_oor = int(oor.sum())
    if n_oor and how == "raise":
        raise OutOfRangeValue(spec.output_name, n_oor, spec.valid_min, spec.valid_max)
    if how == "mask":
        arr[oor] = np.nan
    return arr, oor


def apply_physical_limits(
    df: pd.DataFrame,
    specs: Iterable[VariableSpec],
    how: str = "flag",
) -> tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]:
    """
    Apply registry bounds to every output column of a DataFrame.

    Parameters
    ----------
    df : pd.DataFrame
        Converted data, columns named by output variable.
    specs : iterable of VariableSpec
        Registry rows; rows whose output column is absent are skipped.
    how : str, optional
        Action passed to :func:`check_range`.

    Returns
    -------
    tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame]
        A tuple containing:
        - The DataFrame with bounds applied.
        - A boolean mask of out-of-range values.
        - A report with the number of flagged values for each column.
    """
    out = df.copy()
    mask_df = pd.DataFrame(False, index=out.index, columns=out.columns)
    records = []

    for spec in specs:
        col = spec.output_name
        if col not in out.columns:
            continue
        ser = pd.to_numeric(out[col], errors="coerce")
        values, oor = check_range(ser.to_numpy(), spec, how=how)
        out[col] = values
        mask_df[col] = oor
        n_present = int(ser.notna().sum())
        n_below = int((ser < spec.valid_min).sum())
        n_above = int((ser > spec.valid_max).sum())
        records.append(
            {
                "column": col,
                "min": spec.valid_min,
                "max": spec.valid_max,
                "n_below": n_below,
                "n_above": n_above,
                "n_flagged": int(oor.sum()),
                "pct_flagged": (oor.sum() / n_present * 100.0) if n_present else 0.0,
            }
        )
    report = pd.DataFrame.from_records(
        records, columns=REPORT_COLUMNS
    ).sort_values(["n_flagged", "column"], ascending=[False, True])
    return out, mask_df, report


__all__ = [
    "check_range",
    "apply_physical_limits",
]
