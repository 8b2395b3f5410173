"""Synthetic FLUXNET2015 site tables shared by the test modules."""
from pathlib import Path

import numpy as np
import pandas as pd

from fluxlsm.config import ConversionConfig, ThresholdPolicy
from fluxlsm.dataset import RawSiteData, TimeAxis
from fluxlsm.format.transformers.timestamps import timestamp_reset

SITE = "AU-Tst"

QC_COLUMNS = [
    "TA_F", "SW_IN_F", "LW_IN_F", "VPD_F", "PA_F", "P_F", "WS_F",
    "H_F_MDS", "LE_F_MDS", "NEE_VUT_REF",
]


def make_site_frame(years=(2003, 2004), step_seconds=1800):
    """Fully measured site table indexed by period start."""
    index = TimeAxis.for_years(years[0], years[-1], step_seconds).index()
    hour = np.asarray(index.hour + index.minute / 60.0)
    doy = np.asarray(index.dayofyear)
    n = len(index)

    ta = 15 + 10 * np.sin(2 * np.pi * (doy - 100) / 365.0) + 4 * np.sin(2 * np.pi * (hour - 9) / 24.0)
    sw = np.clip(800 * np.sin(np.pi * (hour - 6) / 12.0), 0, None)
    rain = np.where(np.arange(n) % 50 == 0, 0.2, 0.0)

    df = pd.DataFrame(
        {
            "TA_F": ta,
            "SW_IN_F": sw,
            "LW_IN_F": 300 + 2 * (ta - 15),
            "VPD_F": 5 + 0.3 * ta,
            "PA_F": np.full(n, 101.3),
            "P_F": rain,
            "WS_F": 3 + np.sin(2 * np.pi * hour / 24.0),
            "RH": np.full(n, 60.0),
            "NETRAD": 0.7 * sw - 50,
            "H_F_MDS": 0.3 * sw,
            "LE_F_MDS": 0.4 * sw,
            "NEE_VUT_REF": 2 - 0.01 * sw,
            "GPP_NT_VUT_REF": 0.01 * sw,
            "CUSTOM_SENSOR": np.ones(n),
        },
        index=index,
    )
    for col in QC_COLUMNS:
        df[f"{col}_QC"] = 0
    return df


def knock_out(df, column, fraction, seed=0, qc_code=None):
    """
    Blank `fraction` of `column`. With `qc_code` the values stay and the
    ``_QC`` column is set to that code instead.
    """
    df = df.copy()
    rng = np.random.default_rng(seed)
    n = int(round(fraction * len(df)))
    rows = rng.choice(len(df), size=n, replace=False)
    if qc_code is None:
        df.iloc[rows, df.columns.get_loc(column)] = np.nan
    else:
        df.iloc[rows, df.columns.get_loc(f"{column}_QC")] = qc_code
    return df


def make_raw(df, step_seconds=1800):
    return RawSiteData(data=df, step_seconds=step_seconds, expected_steps=len(df))


def make_era_frame(years=(2003, 2004), step_seconds=1800):
    """ERA-Interim companion table in source units."""
    site = make_site_frame(years, step_seconds)
    return pd.DataFrame(
        {
            "TA_ERA": site["TA_F"] + 0.5,
            "SW_IN_ERA": site["SW_IN_F"],
            "LW_IN_ERA": site["LW_IN_F"],
            "VPD_ERA": site["VPD_F"],
            "PA_ERA": site["PA_F"],
            "P_ERA": site["P_F"],
            "WS_ERA": site["WS_F"],
        },
        index=site.index,
    )


def site_file_name(site=SITE, years=(2003, 2004), res="HH", subset="FULLSET", version="1-3"):
    return f"FLX_{site}_FLUXNET2015_{subset}_{res}_{years[0]}-{years[-1]}_{version}.csv"


def era_file_name(site=SITE, years=(2003, 2004), res="HH", version="1-3"):
    return f"FLX_{site}_FLUXNET2015_ERAI_{res}_{years[0]}-{years[-1]}_{version}.csv"


def write_fluxnet_csv(df, path, step_seconds=1800):
    """Write `df` as a FLUXNET2015 CSV with -9999 for missing values."""
    out = timestamp_reset(df, minutes=step_seconds // 60)
    cols = ["TIMESTAMP_START", "TIMESTAMP_END"] + [c for c in df.columns]
    out = out[cols].fillna(-9999)
    out.to_csv(Path(path), index=False)
    return Path(path)


def default_config(**kwargs):
    policy = kwargs.pop(
        "policy",
        ThresholdPolicy(missing_max=15, gapfill_all_max=20, min_consecutive_years=1),
    )
    return ConversionConfig(policy=policy, **kwargs)
