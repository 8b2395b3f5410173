"""
Timestamp transformation functions for the reformatter pipeline.

FLUXNET2015 files carry ``TIMESTAMP_START`` and ``TIMESTAMP_END`` columns
formatted ``%Y%m%d%H%M``. Every record is indexed by the start of its
averaging period.
"""

import logging

import numpy as np
import pandas as pd

from fluxlsm.errors import InconsistentTimeStep

TS_FORMAT = "%Y%m%d%H%M"
TIMESTAMP_COLUMNS = ("TIMESTAMP_START", "TIMESTAMP_END", "TIMESTAMP")


def infer_datetime_col(df: pd.DataFrame, logger: logging.Logger) -> str | None:
    """
    Infer the name of the period-start timestamp column in a DataFrame.

    Parameters
    ----------
    df : pd.DataFrame
        The DataFrame to search for a timestamp column.
    logger : logging.Logger
        The logger to use for warning messages.

    Returns
    -------
    str or None
        The name of the timestamp column, or None if there is none.
    """
    datetime_col_options = ["TIMESTAMP_START", "TIMESTAMP"]
    datetime_col_options += [col.lower() for col in datetime_col_options]
    for cand in datetime_col_options:
        if cand in df.columns:
            return cand
    logger.warning("No TIMESTAMP_START column in dataframe")
    return None


def fix_timestamps(df: pd.DataFrame, logger: logging.Logger) -> pd.DataFrame:
    """
    Parse the period-start timestamp and index the frame by it.

    Rows whose timestamp cannot be parsed are dropped, duplicated
    timestamps keep their first row and the result is sorted. When a
    ``TIMESTAMP_END`` column is present every averaging period must have
    the same length; that length is stored in ``df.attrs['period_seconds']``.

    Parameters
    ----------
    df : pd.DataFrame
        The input DataFrame with a ``TIMESTAMP_START`` column.
    logger : logging.Logger
        The logger for tracking progress and warnings.

    Returns
    -------
    pd.DataFrame
        The DataFrame indexed by a ``DATETIME_START`` DatetimeIndex, with
        the raw timestamp columns removed.

    Raises
    ------
    ValueError
        If no timestamp column is present.
    InconsistentTimeStep
        If the averaging periods differ in length.
    """
    ts_col = infer_datetime_col(df, logger)
    if ts_col is None:
        raise ValueError("Input has no TIMESTAMP_START column")

    df = df.copy()
    logger.debug(f"TS col {ts_col}")
    df["DATETIME_START"] = _parse_stamps(df[ts_col])
    logger.debug(f"Len of unfixed timestamps {len(df)}")
    df = df.dropna(subset=["DATETIME_START"])
    logger.debug(f"Len of fixed timestamps {len(df)}")

    period_seconds = None
    end_cols = [c for c in df.columns if c.upper() == "TIMESTAMP_END"]
    if end_cols:
        lengths = (_parse_stamps(df[end_cols[0]]) - df["DATETIME_START"]).dropna()
        distinct = sorted(set(int(s) for s in lengths.dt.total_seconds()))
        if len(distinct) > 1:
            raise InconsistentTimeStep(
                f"Averaging periods of different lengths {distinct} s in one record"
            )
        if distinct:
            period_seconds = distinct[0]

    drop = [c for c in df.columns if c.upper() in TIMESTAMP_COLUMNS]
    df = (
        df.drop(columns=drop)
        .drop_duplicates(subset=["DATETIME_START"])
        .set_index("DATETIME_START")
        .sort_index()
    )
    df.attrs["period_seconds"] = period_seconds
    return df


def _parse_stamps(column: pd.Series) -> pd.Series:
    stamps = pd.to_numeric(column, errors="coerce").astype("Int64").astype(str)
    return pd.to_datetime(stamps, format=TS_FORMAT, errors="coerce")


def infer_time_step(index: pd.DatetimeIndex, period_seconds: int | None = None) -> int:
    """
    Return the native time step of a sorted DatetimeIndex in seconds.

    The native step is the most frequent spacing between timestamps (ties
    go to the coarser spacing). Isolated gaps of whole multiples of the
    step are missing rows. Any spacing finer than the step, a spacing that
    is not a multiple of it, or a sustained stretch (a day or more) of
    regular coarser spacing means the resolution changes within the record.

    Parameters
    ----------
    index : pd.DatetimeIndex
        Sorted period starts.
    period_seconds : int, optional
        Averaging period length read from ``TIMESTAMP_END``; must equal
        the inferred step when given.

    Raises
    ------
    InconsistentTimeStep
        If the index has fewer than two entries or a mixed resolution.
    """
    if len(index) < 2:
        raise InconsistentTimeStep("Cannot infer a time step from fewer than two timestamps")
    seconds = np.diff(index.values).astype("timedelta64[s]").astype("int64")
    if (seconds <= 0).any():
        raise InconsistentTimeStep("Timestamps are not strictly increasing")

    counts = pd.Series(seconds).value_counts()
    step = int(counts[counts == counts.max()].index.max())

    finer = sorted(set(int(s) for s in seconds[seconds < step]))
    if finer:
        raise InconsistentTimeStep(
            f"Time steps {finer} s are finer than the native step {step} s"
        )
    if (seconds % step).any():
        odd = sorted(set(int(s) for s in seconds[seconds % step != 0]))
        raise InconsistentTimeStep(
            f"Time steps {odd} s are not multiples of the native step {step} s"
        )

    # consecutive identical coarse spacings form one run
    run_id = np.cumsum(np.r_[True, seconds[1:] != seconds[:-1]])
    coarse = seconds > step
    if coarse.any():
        runs = (
            pd.DataFrame({"run": run_id[coarse], "seconds": seconds[coarse]})
            .groupby("run")["seconds"]
            .agg(["size", "sum", "first"])
        )
        sustained = runs[(runs["size"] > 1) & (runs["sum"] >= 86400)]
        if not sustained.empty:
            first = sustained.iloc[0]
            start = index[int(np.argmax(run_id == sustained.index[0]))]
            raise InconsistentTimeStep(
                f"Spacing changes from {step} s to {int(first['first'])} s "
                f"for {int(first['size'])} steps from {start}"
            )

    years = index.year[1:]
    yearly = pd.Series(seconds, index=years).groupby(level=0).agg(lambda s: s.mode().iloc[0])
    if yearly.nunique() > 1:
        detail = ", ".join(f"{y}: {int(s)} s" for y, s in yearly.items())
        raise InconsistentTimeStep(f"Native time step differs between years ({detail})")

    if period_seconds is not None and int(period_seconds) != step:
        raise InconsistentTimeStep(
            f"Averaging period {period_seconds} s differs from the timestamp spacing {step} s"
        )
    return step


def regularize(df: pd.DataFrame, step_seconds: int) -> pd.DataFrame:
    """Reindex a time-indexed frame onto a gap-free grid of `step_seconds`."""
    grid = pd.date_range(
        df.index[0], df.index[-1], freq=pd.Timedelta(seconds=step_seconds),
        name=df.index.name,
    )
    return df.reindex(grid)


def timestamp_reset(df: pd.DataFrame, minutes: int = 30) -> pd.DataFrame:
    """
    Rebuild TIMESTAMP_START and TIMESTAMP_END columns from the index.

    Parameters
    ----------
    df : pd.DataFrame
        The input DataFrame indexed by period start.
    minutes : int, optional
        Length of the averaging period. Defaults to 30.

    Returns
    -------
    pd.DataFrame
        The DataFrame with integer ``TIMESTAMP_START``/``TIMESTAMP_END``.
    """
    df = df.copy()
    df["TIMESTAMP_START"] = df.index.strftime(TS_FORMAT).astype("int64")
    df["TIMESTAMP_END"] = (
        (df.index + pd.Timedelta(minutes=minutes)).strftime(TS_FORMAT).astype("int64")
    )
    return df


__all__ = [
    "infer_datetime_col",
    "fix_timestamps",
    "infer_time_step",
    "regularize",
    "timestamp_reset",
]
