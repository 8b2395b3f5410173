"""
Locate FLUXNET2015 site files and their ERA-Interim companions on disk.

Site files follow the release naming convention::

    FLX_<site>_<dataset>_<FULLSET|SUBSET>_<HH|HR>_<yyyy>-<yyyy>_<v>-<r>.csv

and the ERA-Interim downscaled meteorology shipped with the release::

    FLX_<site>_<dataset>_ERAI_<HH|HR>_<yyyy>-<yyyy>_<v>-<r>.csv
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from fluxlsm.utils import logger_check

_NAME_RE = re.compile(
    r"^FLX_(?P<site>[A-Z]{2}-[A-Za-z0-9]{3})_(?P<dataset>[A-Za-z0-9]+)_"
    r"(?P<subset>[A-Z]+)_(?P<res>HH|HR|DD|WW|MM|YY)_"
    r"(?P<first>\d{4})-(?P<last>\d{4})_(?P<version>\d+-\d+)\.csv$"
)


@dataclass(frozen=True)
class SiteTask:
    """Resolved inputs for converting one site."""

    site_code: str
    input_file: Path
    version_tag: str
    reanalysis_file: Optional[Path] = None

    def to_dict(self) -> dict:
        return {
            "site_code": self.site_code,
            "input_file": str(self.input_file),
            "version_tag": self.version_tag,
            "reanalysis_file": None if self.reanalysis_file is None else str(self.reanalysis_file),
        }


def parse_fluxnet_name(path: Union[str, Path]) -> Dict[str, str]:
    """
    Split a FLUXNET2015 file name into its parts.

    Raises
    ------
    ValueError
        If the name does not follow the release convention.
    """
    name = Path(path).name
    match = _NAME_RE.match(name)
    if match is None:
        raise ValueError(f"Not a FLUXNET2015 file name: {name}")
    return match.groupdict()


def get_path_site_code(path: Union[str, Path]) -> str:
    """Site code of a FLUXNET2015 file, e.g. 'AU-How'."""
    return parse_fluxnet_name(path)["site"]


def get_fluxnet_version_no(path: Union[str, Path]) -> str:
    """Release version of a FLUXNET2015 file, e.g. '1-3'."""
    return parse_fluxnet_name(path)["version"]


def get_path_resolution(path: Union[str, Path]) -> str:
    """Native resolution code of a FLUXNET2015 file ('HH' or 'HR')."""
    return parse_fluxnet_name(path)["res"]


def get_fluxnet_files(
    in_path: Union[str, Path],
    site_code: Optional[str] = None,
    datasetname: str = "FLUXNET2015",
    subset: str = "FULLSET",
    resolutions: Iterable[str] = ("HH", "HR"),
) -> List[Path]:
    """
    List site files in `in_path` for a dataset and subset.

    Parameters
    ----------
    in_path : str or Path
        Directory searched (not recursively).
    site_code : str, optional
        Restrict to one site.
    datasetname : str
        Dataset name, e.g. 'FLUXNET2015'.
    subset : str
        'FULLSET' or 'SUBSET'.
    resolutions : iterable of str
        Accepted native resolutions.

    Returns
    -------
    list of Path
        Matching files sorted by name. If a site appears at more than
        one resolution the first listed resolution wins.
    """
    resolutions = tuple(resolutions)
    by_site: Dict[str, Path] = {}
    for path in sorted(Path(in_path).glob("FLX_*.csv")):
        try:
            parts = parse_fluxnet_name(path)
        except ValueError:
            continue
        if parts["dataset"] != datasetname or parts["subset"] != subset:
            continue
        if parts["res"] not in resolutions:
            continue
        if site_code is not None and parts["site"] != site_code:
            continue
        current = by_site.get(parts["site"])
        if current is None or (
            resolutions.index(parts["res"]) < resolutions.index(get_path_resolution(current))
        ):
            by_site[parts["site"]] = path
    return [by_site[site] for site in sorted(by_site)]


def get_fluxnet_erai_files(
    era_path: Union[str, Path],
    site_code: str,
    datasetname: str = "FLUXNET2015",
) -> List[Path]:
    """List ERA-Interim files for `site_code` in `era_path`."""
    pattern = f"FLX_{site_code}_{datasetname}_ERAI_*.csv"
    return sorted(Path(era_path).glob(pattern))


def locate_sites(
    in_path: Union[str, Path],
    era_path: Optional[Union[str, Path]] = None,
    datasetname: str = "FLUXNET2015",
    subset: str = "FULLSET",
    resolutions: Iterable[str] = ("HH", "HR"),
    logger: Optional[logging.Logger] = None,
) -> List[SiteTask]:
    """
    Build one :class:`SiteTask` per site file found in `in_path`.

    When `era_path` is given each task carries the first matching
    ERA-Interim file, or None if the site has none.
    """
    logger = logger_check(logger)
    tasks = []
    for path in get_fluxnet_files(in_path, datasetname=datasetname,
                                  subset=subset, resolutions=resolutions):
        site_code = get_path_site_code(path)
        era_file = None
        if era_path is not None:
            era_files = get_fluxnet_erai_files(era_path, site_code, datasetname)
            if len(era_files) > 1:
                logger.warning(f"{site_code}: {len(era_files)} ERA files found, using {era_files[0].name}")
            era_file = era_files[0] if era_files else None
        tasks.append(
            SiteTask(
                site_code=site_code,
                input_file=path,
                version_tag=get_fluxnet_version_no(path),
                reanalysis_file=era_file,
            )
        )
    logger.info(f"Located {len(tasks)} {datasetname} {subset} site files in {in_path}")
    return tasks


__all__ = [
    "SiteTask",
    "parse_fluxnet_name",
    "get_path_site_code",
    "get_fluxnet_version_no",
    "get_path_resolution",
    "get_fluxnet_files",
    "get_fluxnet_erai_files",
    "locate_sites",
]
