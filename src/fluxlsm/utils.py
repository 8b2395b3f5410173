"""
Utility functions for the fluxlsm package.
"""
import logging
import configparser
from pathlib import Path
from typing import Dict
import yaml


def load_yaml(path: Path | str) -> Dict:
    """
    Load a YAML file and return its contents as a dictionary.

    Parameters
    ----------
    path : Path or str
        The path to the YAML file.

    Returns
    -------
    dict
        The contents of the YAML file as a dictionary.

    Raises
    ------
    FileNotFoundError
        If the specified file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open() as fp:
        return yaml.safe_load(fp) or {}


def logger_check(logger: logging.Logger | None) -> logging.Logger:
    """
    Initialize and return a logger instance if none is provided.

    Parameters
    ----------
    logger : logging.Logger or None
        An existing logger instance.

    Returns
    -------
    logging.Logger
        A configured logger instance.
    """
    if logger is None:
        logger = logging.getLogger("fluxlsm")
        logger.setLevel(logging.WARNING)
        if not logger.handlers:
            ch = logging.StreamHandler()
            ch.setFormatter(
                logging.Formatter(
                    fmt="%(levelname)s [%(asctime)s] %(name)s – %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )
            logger.addHandler(ch)
    return logger


# ============================================================================
# Site Metadata Functions
# ============================================================================


def read_site_config(
    site_code: str,
    config_dir: Path | str,
) -> Dict[str, float | str]:
    """
    Read site metadata from an .ini file named ``<site_code>.ini``.

    Parameters
    ----------
    site_code : str
        The FLUXNET site code (e.g., 'AU-How', 'US-Ha1').
    config_dir : Path or str
        Directory containing the .ini files.

    Returns
    -------
    dict
        Dictionary with keys:
        - 'site_lat': float - Tower latitude
        - 'site_lon': float - Tower longitude
        - 'site_elevation': float - Tower elevation in meters
        - 'site_name': str - Full site name
        - 'igbp': str - IGBP vegetation class ('' if not given)
        - 'site_code': str - Site identifier

    Raises
    ------
    FileNotFoundError
        If the .ini file for the site is not found.
    KeyError
        If required metadata fields are missing.

    Examples
    --------
    >>> config = read_site_config('AU-How', 'site_configs')
    >>> config['site_lat']
    -12.4943
    """
    config_dir = Path(config_dir)
    ini_file = config_dir / f"{site_code}.ini"

    if not ini_file.exists():
        available_sites = [f.stem for f in sorted(config_dir.glob("*.ini"))]
        raise FileNotFoundError(
            f"Configuration file not found: {ini_file}\n"
            f"Available sites: {', '.join(available_sites)}"
        )

    parser = configparser.ConfigParser()
    parser.read(ini_file)

    try:
        metadata = parser['METADATA']
        return {
            'site_lat': float(metadata['station_latitude']),
            'site_lon': float(metadata['station_longitude']),
            'site_elevation': float(metadata['station_elevation']),
            'site_name': metadata['site_name'],
            'igbp': metadata.get('igbp', ''),
            'site_code': site_code,
        }
    except KeyError as e:
        raise KeyError(
            f"Missing required metadata field in {ini_file}: {e}"
        ) from e
    except ValueError as e:
        raise ValueError(
            f"Invalid numeric value in {ini_file}: {e}"
        ) from e


def get_all_site_configs(
    config_dir: Path | str,
) -> Dict[str, Dict[str, float | str]]:
    """
    Read all site metadata files in a directory.

    Unreadable files are logged and skipped.
    """
    config_dir = Path(config_dir)
    all_configs = {}

    for ini_file in sorted(config_dir.glob("*.ini")):
        site_code = ini_file.stem
        try:
            all_configs[site_code] = read_site_config(site_code, config_dir)
        except (KeyError, ValueError) as e:
            logging.getLogger("fluxlsm").warning(
                f"Could not read config for {site_code}: {e}"
            )

    return all_configs


__all__ = [
    'load_yaml',
    'logger_check',
    'read_site_config',
    'get_all_site_configs',
]
