"""
Complete pipeline for converting FLUXNET2015 site data with fluxlsm.

This module sequences the conversion of one site through
``Loaded -> Mapped -> QCEvaluated -> GapFilled -> Aligned -> Emitted`` and
runs batches of independent sites, optionally in a process pool.

Classes
-------
Pipeline : Main orchestration class for site conversion
SiteConversion : State machine converting one site in memory
SiteResult : Container for per-site outcome and metadata
SiteState : Conversion states

Functions
---------
convert_site : Convert one parsed site table to a ConversionResult
batch_process : Convenience function to convert every site in a directory

Examples
--------
Basic usage:

    >>> from fluxlsm.pipeline import Pipeline
    >>> from fluxlsm.config import ConversionConfig
    >>>
    >>> config = ConversionConfig(
    ...     policy=ThresholdPolicy(missing_max=15, gapfill_all_max=20,
    ...                            min_consecutive_years=2),
    ...     met_gapfill='ERAinterim',
    ...     plots=('annual', 'diurnal', 'timeseries'),
    ... )
    >>> pipeline = Pipeline(config=config)
    >>> results = pipeline.batch_process(
    ...     input_dir='./Inputs',
    ...     output_dir='./Outputs',
    ...     reanalysis_dir='./ERA_inputs',
    ... )

Command-line usage:

    $ python -m fluxlsm.pipeline --input Inputs/ --output Outputs/ --era ERA_inputs/
    $ python -m fluxlsm.pipeline --config config/conversion.yml --input Inputs/ --output Outputs/
"""

from __future__ import annotations

import argparse
import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from fluxlsm.config import ConversionConfig
from fluxlsm.dataset import (
    ConversionResult,
    RawSiteData,
    SiteDataset,
    SiteStatus,
    TimeAxis,
    VariableRecord,
    VariableReport,
)
from fluxlsm.errors import FluxConversionError, MissingAuxiliarySource
from fluxlsm.format.reformatter import Reformatter
from fluxlsm.format.registry import EVAL, MET, VariableRegistry, load_registry
from fluxlsm.format.writer import output_filename, write_conversion_result
from fluxlsm.locator import (
    SiteTask,
    get_fluxnet_erai_files,
    get_fluxnet_version_no,
    get_path_site_code,
    locate_sites,
)
from fluxlsm.qaqc.alignment import TemporalAligner
from fluxlsm.qaqc.gapfill import GapFillReport, GapFillSubstitutor, check_reanalysis_available
from fluxlsm.qaqc.quality_control import QCEvaluation, QualityControlEvaluator, summarize_flags
from fluxlsm.reader import FluxnetDataProcessor
from fluxlsm.report import summary
from fluxlsm.report.plots import plot_conversion_result
from fluxlsm.utils import logger_check, read_site_config


class SiteState(str, Enum):
    LOADED = "Loaded"
    MAPPED = "Mapped"
    QC_EVALUATED = "QCEvaluated"
    GAP_FILLED = "GapFilled"
    ALIGNED = "Aligned"
    EMITTED = "Emitted"
    FAILED = "Failed"


# =============================================================================
# Per-site conversion
# =============================================================================

class SiteConversion:
    """
    Convert one parsed site table.

    The conversion is pure: nothing is read or written. ``state`` records
    progress; on failure it becomes ``FAILED`` and ``failed_after`` holds
    the last state reached.

    Parameters
    ----------
    raw : RawSiteData
        Parsed site spreadsheet.
    site_code : str
        Site identifier.
    version_tag : str
        Dataset release version.
    config : ConversionConfig
        Conversion options.
    registry : VariableRegistry
        Variables to convert.
    reanalysis : pd.DataFrame, optional
        ERA-Interim table; required when gap-filling is enabled.
    logger : logging.Logger, optional
        Logger instance.
    """

    def __init__(
        self,
        raw: RawSiteData,
        site_code: str,
        version_tag: str,
        config: ConversionConfig,
        registry: VariableRegistry,
        reanalysis: Optional[pd.DataFrame] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.raw = raw
        self.site_code = site_code
        self.version_tag = version_tag
        self.config = config
        self.registry = registry
        self.reanalysis = reanalysis
        self.logger = logger_check(logger)
        self.state = SiteState.LOADED
        self.failed_after: Optional[SiteState] = None
        self.history: List[SiteState] = [SiteState.LOADED]

    def _advance(self, state: SiteState) -> None:
        self.state = state
        self.history.append(state)
        self.logger.debug(f"{self.site_code}: {state.value}")

    def run(self) -> ConversionResult:
        """
        Run every conversion stage.

        Raises
        ------
        FluxConversionError
            Any site-level failure; no partial result is returned.
        """
        try:
            return self._run()
        except Exception:
            self.failed_after = self.state
            self.state = SiteState.FAILED
            self.history.append(SiteState.FAILED)
            raise

    def _run(self) -> ConversionResult:
        policy = self.config.policy

        mapped = Reformatter(
            self.registry, out_of_range=self.config.out_of_range, logger=self.logger
        ).process(self.raw, self.site_code, self.version_tag)
        self._advance(SiteState.MAPPED)

        evaluator = QualityControlEvaluator(policy, logger=self.logger)
        evaluation = evaluator.evaluate(mapped)
        self._advance(SiteState.QC_EVALUATED)

        dataset = mapped
        fill_report = None
        if self.config.gapfill_enabled:
            if self.reanalysis is None:
                raise MissingAuxiliarySource([self.site_code])
            fill_report = GapFillSubstitutor(self.config, logger=self.logger).fill(
                mapped, self.reanalysis, retained=evaluation.retained
            )
            dataset = fill_report.dataset
            self._advance(SiteState.GAP_FILLED)

        essential = [
            n for n in evaluation.retained if dataset.specs[n].is_essential_met
        ]
        aligner = TemporalAligner(policy.min_consecutive_years, logger=self.logger)
        run = aligner.resolve(evaluator.acceptable_years(dataset, essential))
        axis = aligner.axis_for(run, dataset.step_seconds)
        aligned = aligner.apply(dataset, axis)
        self._advance(SiteState.ALIGNED)

        result = self._emit(aligned, axis, evaluation, fill_report)
        self._advance(SiteState.EMITTED)
        return result

    def _emit(
        self,
        aligned: SiteDataset,
        axis: TimeAxis,
        evaluation: QCEvaluation,
        fill_report: Optional[GapFillReport],
    ) -> ConversionResult:
        forcing: Dict[str, VariableRecord] = {}
        evaluation_records: Dict[str, VariableRecord] = {}
        report: List[VariableReport] = []
        filled = fill_report.filled if fill_report else {}

        for name, spec in aligned.specs.items():
            row = VariableReport(
                output_name=name,
                source_name=spec.source_name,
                category=spec.category,
                status="retained",
                n_out_of_range=aligned.out_of_range.get(name, 0),
                n_filled=filled.get(name, 0),
            )
            if name in aligned.absent:
                row.status, row.reason = "absent", f"{spec.source_name} not in input"
            elif name in aligned.conversion_failures:
                row.status, row.reason = "conversion_failed", aligned.conversion_failures[name]
            elif name in evaluation.dropped:
                row.status, row.reason = "dropped", evaluation.dropped[name]
                self._fill_stats(row, evaluation.stats[name])
            else:
                oor = aligned.range_flags[name].to_numpy() if name in aligned.range_flags else None
                record = VariableRecord.from_spec(
                    spec, aligned.data[name].to_numpy(), aligned.flags[name].to_numpy(), oor
                )
                target = forcing if spec.category == MET else evaluation_records
                target[name] = record
                self._fill_stats(row, summarize_flags(record.flags, axis.n_steps))
            report.append(row)

        for col in aligned.passthrough.columns:
            report.append(VariableReport(
                output_name="", source_name=str(col), category="",
                status="unmatched", reason="no registry entry; passed through unconverted",
            ))

        result = ConversionResult(
            site_code=self.site_code,
            version_tag=self.version_tag,
            forcing=forcing,
            evaluation=evaluation_records,
            time_axis=axis,
            report=report,
            passthrough=[str(c) for c in aligned.passthrough.columns],
        )
        for name, rec in {**forcing, **evaluation_records}.items():
            if len(rec.values) != axis.n_steps or len(rec.flags) != axis.n_steps:
                raise FluxConversionError(f"{name} does not match the {axis.n_steps}-step axis")
        if not evaluation_records:
            self.logger.warning(f"{self.site_code}: no evaluation variables retained")
        return result

    @staticmethod
    def _fill_stats(row: VariableReport, stats) -> None:
        row.pct_missing = stats.pct_missing
        row.pct_gapfill_good = stats.pct_gapfill_good
        row.pct_gapfill_med = stats.pct_gapfill_med
        row.pct_gapfill_poor = stats.pct_gapfill_poor
        row.pct_gapfill_all = stats.pct_gapfill_all


def convert_site(
    raw: RawSiteData,
    site_code: str,
    version_tag: str,
    config: ConversionConfig,
    registry: VariableRegistry,
    reanalysis: Optional[pd.DataFrame] = None,
    logger: Optional[logging.Logger] = None,
) -> ConversionResult:
    """
    Convert one parsed site table.

    Returns
    -------
    ConversionResult
        Forcing and evaluation record sets on the aligned time axis.

    Raises
    ------
    FluxConversionError
        On any site-level failure.
    """
    return SiteConversion(
        raw, site_code, version_tag, config, registry,
        reanalysis=reanalysis, logger=logger,
    ).run()


# =============================================================================
# Result Container
# =============================================================================

@dataclass
class SiteResult:
    """
    Container for one site's outcome.

    Attributes
    ----------
    site_code : str
        Site identifier.
    status : SiteStatus
        success, soft-degraded or failed.
    state : str
        Final conversion state.
    failed_after : str or None
        Last state reached before a failure.
    input_file : Path
        Site spreadsheet.
    output_files : list of Path
        Written NetCDF files (empty for a failed site).
    plot_files : list of Path
        Written plots.
    years : list of int
        Years in the output.
    n_forcing, n_evaluation : int
        Number of variables in each output file.
    dropped : list of str
        Variables removed by QC.
    error_type, error_message : str or None
        Failure details.
    processing_time : float
        Processing time in seconds.
    report : list of dict
        Per-variable report rows.
    """

    site_code: str
    status: SiteStatus
    state: str
    input_file: Path
    failed_after: Optional[str] = None
    output_files: List[Path] = field(default_factory=list)
    plot_files: List[Path] = field(default_factory=list)
    years: List[int] = field(default_factory=list)
    n_forcing: int = 0
    n_evaluation: int = 0
    dropped: List[str] = field(default_factory=list)
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    processing_time: float = 0.0
    report: List[Dict] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status is not SiteStatus.FAILED

    def to_dict(self) -> dict:
        """Convert result to a JSON-serialisable dictionary."""
        return {
            "site_code": self.site_code,
            "status": SiteStatus(self.status).value,
            "state": self.state,
            "failed_after": self.failed_after,
            "input_file": str(self.input_file),
            "output_files": [str(p) for p in self.output_files],
            "plot_files": [str(p) for p in self.plot_files],
            "years": list(self.years),
            "n_forcing": self.n_forcing,
            "n_evaluation": self.n_evaluation,
            "dropped": list(self.dropped),
            "error_type": self.error_type,
            "error_message": self.error_message,
            "processing_time": self.processing_time,
            "report": [
                {k: (None if isinstance(v, float) and v != v else v) for k, v in row.items()}
                for row in self.report
            ],
        }

    def summary(self) -> str:
        """Generate a human-readable summary."""
        lines = [
            f"Conversion Result: {SiteStatus(self.status).value.upper()}",
            f"Site: {self.site_code}",
            f"Input: {self.input_file}",
            f"State: {self.state}",
            f"Time: {self.processing_time:.2f}s",
        ]
        if self.years:
            lines.append(f"Years: {self.years[0]}-{self.years[-1]}")
            lines.append(f"Variables: {self.n_forcing} forcing, {self.n_evaluation} evaluation")
        if self.dropped:
            lines.append(f"Dropped: {', '.join(self.dropped)}")
        if self.error_message:
            lines.append(f"Error: [{self.error_type}] {self.error_message}")
        return "\n".join(lines)


# =============================================================================
# Main Pipeline Class
# =============================================================================

class Pipeline:
    """
    Main orchestration class for FLUXNET2015 site conversion.

    Parameters
    ----------
    config : ConversionConfig, optional
        Conversion settings.
    registry : VariableRegistry, optional
        Variable table; loaded from ``config.registry_csv`` (or the bundled
        table) and restricted to ``config.limit_vars`` when omitted.
    logger : logging.Logger, optional
        Logger instance for tracking progress.
    """

    def __init__(
        self,
        config: Optional[ConversionConfig] = None,
        registry: Optional[VariableRegistry] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ConversionConfig()
        self.logger = logger_check(logger)
        self.registry = registry if registry is not None else self._load_registry()
        self.reader = FluxnetDataProcessor(logger=self.logger)

        self.logger.info("Pipeline initialized")
        self.logger.debug(f"Configuration: {self.config.to_dict()}")

    def _load_registry(self) -> VariableRegistry:
        registry = load_registry(self.config.registry_csv)
        if self.config.limit_vars:
            registry = registry.subset(self.config.limit_vars)
        return registry

    def process_site(
        self,
        task: SiteTask,
        output_dir: Union[str, Path],
    ) -> SiteResult:
        """
        Convert one site and write its output files.

        Site-level errors are caught here and reported in the result; no
        output file is left behind for a failed site.

        Parameters
        ----------
        task : SiteTask
            Site file, version and optional reanalysis file.
        output_dir : str or Path
            Directory for output files.

        Returns
        -------
        SiteResult
        """
        start_time = datetime.now()
        output_dir = Path(output_dir)
        site_code = task.site_code
        self.logger.info(f"Processing {site_code}: {task.input_file.name}")

        conversion: Optional[SiteConversion] = None
        result: Optional[ConversionResult] = None
        try:
            # Step 1: Read inputs
            self.logger.info("Step 1/5: Reading site data...")
            raw = self.reader.read_site(task.input_file)
            reanalysis = None
            if self.config.gapfill_enabled:
                if task.reanalysis_file is None:
                    raise MissingAuxiliarySource([site_code])
                reanalysis = self.reader.read_reanalysis(task.reanalysis_file)

            # Step 2: Convert
            self.logger.info("Step 2/5: Converting, evaluating and aligning...")
            conversion = SiteConversion(
                raw, site_code, task.version_tag, self.config, self.registry,
                reanalysis=reanalysis, logger=self.logger,
            )
            result = conversion.run()

            # Step 3: Write NetCDF
            self.logger.info("Step 3/5: Writing NetCDF files...")
            site_info = self._site_info(site_code)
            output_files = list(write_conversion_result(
                result, output_dir, site_info=site_info,
                datasetname=self.config.datasetname, logger=self.logger,
            ))

            # Step 4: Save variable report
            self.logger.info("Step 4/5: Saving variable report...")
            self._save_report(result, output_dir)

            # Step 5: Plots
            plot_files = []
            if self.config.plots:
                self.logger.info("Step 5/5: Generating plots...")
                plot_files = self._generate_plots(result, output_dir)
            else:
                self.logger.info("Step 5/5: Skipping plots")

            status = result.status
            processing_time = (datetime.now() - start_time).total_seconds()
            if status is SiteStatus.SOFT_DEGRADED:
                self.logger.warning(f"{site_code}: converted with dropped variables")
            self.logger.info(f"✓ Conversion complete: {processing_time:.2f}s")

            return SiteResult(
                site_code=site_code,
                status=status,
                state=conversion.state.value,
                input_file=task.input_file,
                output_files=output_files,
                plot_files=plot_files,
                years=result.years,
                n_forcing=len(result.forcing),
                n_evaluation=len(result.evaluation),
                dropped=[r.output_name for r in result.report if r.status == "dropped"],
                processing_time=processing_time,
                report=[r.to_dict() for r in result.report],
            )

        except Exception as e:
            processing_time = (datetime.now() - start_time).total_seconds()
            expected = isinstance(e, FluxConversionError)
            self.logger.error(f"✗ {site_code} failed: {e}", exc_info=not expected)
            if result is not None:
                self._remove_outputs(result, output_dir)
            failed_after = None
            if conversion is not None and conversion.failed_after is not None:
                failed_after = conversion.failed_after.value
            elif conversion is not None:
                failed_after = conversion.state.value

            return SiteResult(
                site_code=site_code,
                status=SiteStatus.FAILED,
                state=SiteState.FAILED.value,
                input_file=task.input_file,
                failed_after=failed_after,
                error_type=type(e).__name__,
                error_message=str(e),
                processing_time=processing_time,
            )

    def process_file(
        self,
        input_file: Union[str, Path],
        output_dir: Union[str, Path],
        reanalysis_file: Optional[Union[str, Path]] = None,
    ) -> SiteResult:
        """Convert a single FLUXNET2015 file, taking site and version from its name."""
        input_file = Path(input_file)
        task = SiteTask(
            site_code=get_path_site_code(input_file),
            input_file=input_file,
            version_tag=get_fluxnet_version_no(input_file),
            reanalysis_file=None if reanalysis_file is None else Path(reanalysis_file),
        )
        return self.process_site(task, output_dir)

    def batch_process(
        self,
        input_dir: Union[str, Path],
        output_dir: Union[str, Path],
        reanalysis_dir: Optional[Union[str, Path]] = None,
    ) -> List[SiteResult]:
        """
        Convert every site file in a directory.

        Parameters
        ----------
        input_dir : str or Path
            Directory containing FLUXNET2015 site files.
        output_dir : str or Path
            Directory for output files.
        reanalysis_dir : str or Path, optional
            Directory containing ERA-Interim files; required when
            gap-filling is enabled.

        Returns
        -------
        list of SiteResult
            Results for all sites, sorted by site code.

        Raises
        ------
        MissingAuxiliarySource
            If gap-filling is enabled and any site lacks a reanalysis file.
            Raised before any site is processed.
        """
        input_dir = Path(input_dir)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        tasks = locate_sites(
            input_dir,
            reanalysis_dir if self.config.gapfill_enabled else None,
            datasetname=self.config.datasetname,
            subset=self.config.subset,
            resolutions=self.config.resolutions,
            logger=self.logger,
        )
        if not tasks:
            self.logger.warning(f"No {self.config.datasetname} {self.config.subset} files found in {input_dir}")
            return []

        if self.config.gapfill_enabled:
            if reanalysis_dir is None:
                raise MissingAuxiliarySource([t.site_code for t in tasks])
            check_reanalysis_available(tasks)

        self.logger.info(f"Found {len(tasks)} sites to process")

        if self.config.n_workers > 1 and len(tasks) > 1:
            results = self._run_parallel(tasks, output_dir)
        else:
            results = []
            for i, task in enumerate(tasks, 1):
                self.logger.info(f"\n{'='*60}")
                self.logger.info(f"Site {i}/{len(tasks)}: {task.site_code}")
                self.logger.info(f"{'='*60}")
                results.append(self.process_site(task, output_dir))

        results = sorted(results, key=lambda r: r.site_code)
        self._log_batch_summary(results)
        self._save_batch_summary(results, output_dir)
        return results

    # -------------------------------------------------------------------------
    # Private Helper Methods
    # -------------------------------------------------------------------------

    def _run_parallel(self, tasks: List[SiteTask], output_dir: Path) -> List[SiteResult]:
        """Dispatch sites to a process pool; results arrive in any order."""
        n_workers = min(self.config.n_workers, len(tasks))
        self.logger.info(f"Converting {len(tasks)} sites with {n_workers} workers")
        results = []
        with ProcessPoolExecutor(max_workers=n_workers) as executor:
            futures = {
                executor.submit(_process_site_worker, self.config, self.registry, task, output_dir): task
                for task in tasks
            }
            for future in as_completed(futures):
                task = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    # worker process died before returning a result
                    self.logger.error(f"✗ {task.site_code} worker failed: {e}")
                    result = SiteResult(
                        site_code=task.site_code,
                        status=SiteStatus.FAILED,
                        state=SiteState.FAILED.value,
                        input_file=task.input_file,
                        error_type=type(e).__name__,
                        error_message=str(e),
                    )
                self.logger.info(f"  {result.site_code}: {SiteStatus(result.status).value}")
                results.append(result)
        return results

    def _site_info(self, site_code: str) -> Optional[Dict]:
        if self.config.site_config_dir is None:
            return None
        try:
            return read_site_config(site_code, self.config.site_config_dir)
        except (FileNotFoundError, KeyError, ValueError) as e:
            self.logger.warning(f"Could not load metadata for {site_code}: {e}")
            return None

    def _save_report(self, result: ConversionResult, output_dir: Path) -> Path:
        report_dir = output_dir / "reports"
        report_dir.mkdir(parents=True, exist_ok=True)
        years = result.years
        path = report_dir / f"{result.site_code}_{years[0]}-{years[-1]}_variables.csv"
        summary.variable_report_table(result).to_csv(path, index=False)
        self.logger.debug(f"  Saved variable report to {path}")
        return path

    def _generate_plots(self, result: ConversionResult, output_dir: Path) -> List[Path]:
        """Plot failures are logged and never change the site status."""
        plot_dir = output_dir / "plots" / result.site_code
        try:
            return plot_conversion_result(result, self.config.plots, plot_dir, logger=self.logger)
        except Exception as e:
            self.logger.warning(f"  Plotting failed for {result.site_code}: {e}")
            return []

    def _remove_outputs(self, result: ConversionResult, output_dir: Path) -> None:
        for category in (MET, EVAL):
            path = output_dir / output_filename(result, category, self.config.datasetname)
            if path.exists():
                path.unlink()
                self.logger.debug(f"  Removed partial output {path}")

    def _log_batch_summary(self, results: List[SiteResult]) -> None:
        """Log summary statistics for batch processing."""
        summary.log_batch_summary(results, self.logger)

    def _save_batch_summary(self, results: List[SiteResult], output_dir: Path) -> None:
        """Save batch summary to JSON and CSV files."""
        json_path, csv_path = summary.save_batch_summary(
            results, output_dir, config=self.config.to_dict()
        )
        self.logger.info(f"\nBatch summary saved to {json_path} and {csv_path.name}")


def _process_site_worker(
    config: ConversionConfig,
    registry: VariableRegistry,
    task: SiteTask,
    output_dir: Path,
) -> SiteResult:
    """Worker entry point; runs one site to completion in a child process."""
    pipeline = Pipeline(config=config, registry=registry)
    return pipeline.process_site(task, output_dir)


# =============================================================================
# Convenience Functions
# =============================================================================

def batch_process(
    input_dir: Union[str, Path],
    output_dir: Union[str, Path],
    reanalysis_dir: Optional[Union[str, Path]] = None,
    **kwargs
) -> List[SiteResult]:
    """
    Convenience function for batch processing.

    Parameters
    ----------
    input_dir : str or Path
        Input directory.
    output_dir : str or Path
        Output directory.
    reanalysis_dir : str or Path, optional
        ERA-Interim directory.
    **kwargs
        Additional arguments passed to Pipeline constructor.

    Returns
    -------
    list of SiteResult
        Results for all sites.
    """
    pipeline = Pipeline(**kwargs)
    return pipeline.batch_process(input_dir, output_dir, reanalysis_dir)


# =============================================================================
# Command-Line Interface
# =============================================================================

def build_config(args: argparse.Namespace) -> ConversionConfig:
    """Combine an optional YAML file with command-line overrides."""
    config = ConversionConfig.from_yaml(args.config) if args.config else ConversionConfig()

    thresholds = {}
    for arg, key in (("missing", "missing_max"), ("gapfill_all", "gapfill_all_max"),
                     ("gapfill_good", "gapfill_good_max"), ("gapfill_med", "gapfill_med_max"),
                     ("gapfill_poor", "gapfill_poor_max"), ("min_yrs", "min_consecutive_years")):
        value = getattr(args, arg)
        if value is not None:
            thresholds[key] = value
    if args.exclude_bad_eval:
        thresholds["include_all_eval"] = False
    if thresholds:
        config = replace(config, policy=replace(config.policy, **thresholds))

    overrides = {}
    if args.met_gapfill is not None:
        overrides["met_gapfill"] = None if args.met_gapfill == "none" else args.met_gapfill
    if args.plot is not None:
        overrides["plots"] = tuple(args.plot)
    if args.workers is not None:
        overrides["n_workers"] = args.workers
    if args.subset is not None:
        overrides["subset"] = args.subset
    if args.site_config_dir is not None:
        overrides["site_config_dir"] = Path(args.site_config_dir)
    if overrides:
        config = replace(config, **overrides)
    return config


def main():
    """Command-line interface for the pipeline."""
    parser = argparse.ArgumentParser(
        description='Convert FLUXNET2015 site data to land-surface-model NetCDF',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Convert every FULLSET site with ERA-Interim gap-filling
  python -m fluxlsm.pipeline --input Inputs/ --output Outputs/ --era ERA_inputs/ \\
      --met-gapfill ERAinterim --missing 15 --gapfill-all 20 --min-yrs 2

  # Use a YAML configuration and four worker processes
  python -m fluxlsm.pipeline --config config/conversion.yml \\
      --input Inputs/ --output Outputs/ --era ERA_inputs/ --workers 4

  # Convert a single site file
  python -m fluxlsm.pipeline --input Inputs/FLX_AU-How_FLUXNET2015_FULLSET_HH_2001-2014_1-3.csv \\
      --output Outputs/
        """
    )

    # Input/output
    parser.add_argument('--input', '-i', required=True,
                        help='Input site file or directory')
    parser.add_argument('--output', '-o', required=True,
                        help='Output directory')
    parser.add_argument('--era', '-e',
                        help='Directory (or file, with a single input file) of ERA-Interim data')
    parser.add_argument('--config', '-c',
                        help='YAML configuration file')

    # Thresholds
    parser.add_argument('--missing', type=float, help='Max. percent missing')
    parser.add_argument('--gapfill-all', type=float, help='Max. percent gap-filled (all tiers)')
    parser.add_argument('--gapfill-good', type=float, help='Max. percent good-quality gap-filled')
    parser.add_argument('--gapfill-med', type=float, help='Max. percent medium-quality gap-filled')
    parser.add_argument('--gapfill-poor', type=float, help='Max. percent poor-quality gap-filled')
    parser.add_argument('--min-yrs', type=int, help='Min. number of consecutive years')
    parser.add_argument('--exclude-bad-eval', action='store_true',
                        help='Apply thresholds to evaluation variables too')

    # Options
    parser.add_argument('--met-gapfill', choices=['ERAinterim', 'none'],
                        help='Gap-fill essential met variables from ERA-Interim')
    parser.add_argument('--plot', nargs='*', choices=['annual', 'diurnal', 'timeseries'],
                        help='Plots to produce')
    parser.add_argument('--subset', choices=['FULLSET', 'SUBSET'],
                        help='FLUXNET2015 release subset')
    parser.add_argument('--workers', '-w', type=int, help='Number of worker processes')
    parser.add_argument('--site-config-dir', help='Directory of <site>.ini metadata files')

    # Logging
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output (DEBUG level)')
    parser.add_argument('--quiet', '-q', action='store_true',
                        help='Quiet output (WARNING level only)')

    args = parser.parse_args()

    # Set up logging
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(levelname)s [%(asctime)s] %(name)s – %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    logger = logging.getLogger("fluxlsm")
    logger.setLevel(level)

    config = build_config(args)
    pipeline = Pipeline(config=config, logger=logger)

    input_path = Path(args.input)
    output_path = Path(args.output)

    if input_path.is_dir():
        results = pipeline.batch_process(
            input_dir=input_path,
            output_dir=output_path,
            reanalysis_dir=args.era,
        )
        failed = [r for r in results if not r.success]
        return 1 if failed or not results else 0

    era_file = None
    if args.era:
        era_path = Path(args.era)
        if era_path.is_dir():
            matches = get_fluxnet_erai_files(era_path, get_path_site_code(input_path),
                                             config.datasetname)
            era_file = matches[0] if matches else None
        else:
            era_file = era_path
    result = pipeline.process_file(input_path, output_path, reanalysis_file=era_file)
    print("\n" + result.summary())
    return 0 if result.success else 1


if __name__ == '__main__':
    raise SystemExit(main())
