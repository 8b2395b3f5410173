"""
fluxlsm: convert FLUXNET2015 flux-tower data for land surface models.

This package reads FLUXNET2015 site spreadsheets, maps their columns onto
the variable names and units used by land surface models, screens each
variable against quality thresholds, optionally gap-fills essential
meteorology from ERA-Interim, and writes per-site NetCDF forcing and
evaluation files.

The main components of the package are:
- `FluxnetDataProcessor`: For reading site and reanalysis files.
- `Reformatter`: For mapping and converting columns to the output vocabulary.
- `QualityControlEvaluator`: For retention decisions and acceptable years.
- `GapFillSubstitutor`: For filling essential meteorology from reanalysis.
- `TemporalAligner`: For trimming a site to its longest run of years.
- `Pipeline`: For converting batches of sites end to end.
"""
__version__ = "0.1.0"

from .config import ConversionConfig, ThresholdPolicy
from .dataset import ConversionResult, SiteStatus, TimeAxis
from .errors import FluxConversionError
from .format.registry import VariableRegistry, load_registry
from .reader import FluxnetDataProcessor
from .format.reformatter import Reformatter
from .qaqc.quality_control import QualityControlEvaluator
from .qaqc.gapfill import GapFillSubstitutor
from .qaqc.alignment import TemporalAligner
from .qaqc.flags import MISSING_VALUE, QCFlag
from .format import units
from .format import writer
from .format.transformers import timestamps, validation
from .pipeline import Pipeline, SiteResult, convert_site, batch_process

__all__ = [
    "ConversionConfig",
    "ThresholdPolicy",
    "ConversionResult",
    "SiteStatus",
    "TimeAxis",
    "FluxConversionError",
    "VariableRegistry",
    "load_registry",
    "FluxnetDataProcessor",
    "Reformatter",
    "QualityControlEvaluator",
    "GapFillSubstitutor",
    "TemporalAligner",
    "MISSING_VALUE",
    "QCFlag",
    "units",
    "writer",
    "timestamps",
    "validation",
    "Pipeline",
    "SiteResult",
    "convert_site",
    "batch_process",
]
