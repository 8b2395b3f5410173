"""
Write a ConversionResult to NetCDF.

Each site produces two files, one for meteorological forcing and one for
evaluation fluxes, laid out on a single-cell ``(time, y, x)`` grid.
"""
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import numpy as np
import xarray as xr

from fluxlsm import __version__
from fluxlsm.dataset import ConversionResult, VariableRecord
from fluxlsm.format.registry import EVAL, MET
from fluxlsm.qaqc.flags import MISSING_VALUE
from fluxlsm.utils import logger_check

FILE_SUFFIX = {MET: "Met", EVAL: "Flux"}


def output_filename(result: ConversionResult, category: str, datasetname: str = "FLUXNET2015") -> str:
    """``<site>_<startyear>-<endyear>_<dataset>_<version>_<Met|Flux>.nc``"""
    years = result.years
    return (
        f"{result.site_code}_{years[0]}-{years[-1]}_{datasetname}_"
        f"{result.version_tag}_{FILE_SUFFIX[category]}.nc"
    )


def _grid(values: np.ndarray) -> np.ndarray:
    return np.asarray(values).reshape(-1, 1, 1)


def build_dataset(
    result: ConversionResult,
    category: str,
    site_info: Optional[Dict] = None,
    datasetname: str = "FLUXNET2015",
) -> xr.Dataset:
    """
    Build the xarray Dataset for one record set.

    Parameters
    ----------
    result : ConversionResult
        Converted site.
    category : str
        'Met' for the forcing file, 'Eval' for the flux file.
    site_info : dict, optional
        Site metadata as returned by :func:`fluxlsm.utils.read_site_config`.
    datasetname : str
        Dataset name recorded in the global attributes.
    """
    records: Dict[str, VariableRecord] = result.records(category)
    axis = result.time_axis
    coords = {"time": axis.index().values, "y": [1.0], "x": [1.0]}

    data_vars = {}
    for name, rec in records.items():
        attrs = {"units": rec.units, "long_name": rec.long_name, "source_variable": rec.source_name}
        if rec.standard_name:
            attrs["standard_name"] = rec.standard_name
        data_vars[name] = (("time", "y", "x"), _grid(rec.values.astype("float32")), attrs)
        data_vars[f"{name}_qc"] = (
            ("time", "y", "x"),
            _grid(rec.flags.astype("int16")),
            {
                "long_name": f"{rec.long_name} quality control flag",
                "flag_values": "0, 1, 2, 3",
                "flag_meanings": "measured good_gapfill medium_gapfill poor_gapfill",
            },
        )
        if rec.out_of_range.any():
            data_vars[f"{name}_out_of_range"] = (
                ("time", "y", "x"),
                _grid(rec.out_of_range.astype("int8")),
                {
                    "long_name": f"{rec.long_name} outside physical bounds",
                    "flag_values": "0, 1",
                    "flag_meanings": "within_bounds out_of_range",
                },
            )

    if site_info:
        data_vars["latitude"] = (("y", "x"), [[float(site_info["site_lat"])]],
                                 {"units": "degrees_north", "standard_name": "latitude"})
        data_vars["longitude"] = (("y", "x"), [[float(site_info["site_lon"])]],
                                  {"units": "degrees_east", "standard_name": "longitude"})
        data_vars["elevation"] = (("y", "x"), [[float(site_info["site_elevation"])]],
                                  {"units": "m", "long_name": "Site elevation above sea level"})

    ds = xr.Dataset(data_vars=data_vars, coords=coords)
    ds["time"].attrs["long_name"] = "Start of averaging period"

    ds.attrs["site_code"] = result.site_code
    ds.attrs["dataset"] = datasetname
    ds.attrs["dataset_version"] = result.version_tag
    ds.attrs["time_step_seconds"] = axis.step_seconds
    ds.attrs["time_coverage_start"] = axis.start.strftime("%Y-%m-%d %H:%M:%S")
    ds.attrs["time_coverage_end"] = axis.end.strftime("%Y-%m-%d %H:%M:%S")
    ds.attrs["date_created"] = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    ds.attrs["source"] = f"fluxlsm {__version__}"
    if site_info:
        ds.attrs["site_name"] = site_info.get("site_name", "")
        if site_info.get("igbp"):
            ds.attrs["IGBP_vegetation_type"] = site_info["igbp"]
    return ds


def write_netcdf_file(ds: xr.Dataset, fpath_out: Union[str, Path]) -> Path:
    """Write `ds` with compressed float32 values and int16 flags."""
    fpath_out = Path(fpath_out)
    encoding = {}
    for var in ds.data_vars:
        if var.endswith("_qc"):
            encoding[var] = {"dtype": "int16", "_FillValue": MISSING_VALUE, "zlib": True}
        elif var.endswith("_out_of_range"):
            encoding[var] = {"dtype": "int8", "zlib": True}
        else:
            encoding[var] = {"dtype": "float32", "_FillValue": float(MISSING_VALUE),
                             "zlib": True, "complevel": 4}
    start = str(ds.attrs.get("time_coverage_start", ""))
    encoding["time"] = {"units": f"seconds since {start}", "calendar": "standard",
                        "dtype": "float64"}
    ds.to_netcdf(fpath_out, format="NETCDF4", engine="netcdf4", mode="w", encoding=encoding)
    return fpath_out


def write_conversion_result(
    result: ConversionResult,
    output_dir: Union[str, Path],
    site_info: Optional[Dict] = None,
    datasetname: str = "FLUXNET2015",
    logger: Optional[logging.Logger] = None,
) -> Tuple[Path, Path]:
    """
    Write the forcing and evaluation files of a site.

    Returns
    -------
    tuple of Path
        ``(met_path, flux_path)``.
    """
    logger = logger_check(logger)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = []
    for category in (MET, EVAL):
        ds = build_dataset(result, category, site_info=site_info, datasetname=datasetname)
        path = write_netcdf_file(ds, output_dir / output_filename(result, category, datasetname))
        logger.info(f"  Saved {len(result.records(category))} variables to {path}")
        paths.append(path)
    return paths[0], paths[1]


__all__ = [
    "build_dataset",
    "output_filename",
    "write_netcdf_file",
    "write_conversion_result",
]
