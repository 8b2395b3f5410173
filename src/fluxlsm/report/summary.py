"""
Status tables for single sites and whole batches.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import pandas as pd

from fluxlsm.dataset import ConversionResult, SiteStatus

BATCH_COLUMNS = [
    "site_code", "status", "state", "years", "n_forcing", "n_evaluation",
    "n_dropped", "error_type", "error_message", "processing_time",
]


def variable_report_table(result: ConversionResult) -> pd.DataFrame:
    """Per-variable retention table of one site, with the site code first."""
    df = result.report_frame()
    df.insert(0, "site_code", result.site_code)
    return df


def batch_summary_table(results: Iterable) -> pd.DataFrame:
    """
    One row per site.

    Parameters
    ----------
    results : iterable of SiteResult
        Per-site outcomes.
    """
    rows = []
    for r in results:
        rows.append({
            "site_code": r.site_code,
            "status": SiteStatus(r.status).value,
            "state": r.state,
            "years": "" if not r.years else f"{r.years[0]}-{r.years[-1]}",
            "n_forcing": r.n_forcing,
            "n_evaluation": r.n_evaluation,
            "n_dropped": len(r.dropped),
            "error_type": r.error_type or "",
            "error_message": r.error_message or "",
            "processing_time": round(r.processing_time, 3),
        })
    return pd.DataFrame(rows, columns=BATCH_COLUMNS)


def status_counts(results: Iterable) -> Dict[str, int]:
    counts = {s.value: 0 for s in SiteStatus}
    for r in results:
        counts[SiteStatus(r.status).value] += 1
    return counts


def log_batch_summary(results: List, logger: logging.Logger) -> None:
    """Log summary statistics for batch processing."""
    n_total = len(results)
    if n_total == 0:
        logger.warning("No sites processed")
        return
    counts = status_counts(results)
    total_time = sum(r.processing_time for r in results)

    logger.info(f"\n{'='*60}")
    logger.info("BATCH CONVERSION SUMMARY")
    logger.info(f"{'='*60}")
    logger.info(f"Total sites:    {n_total}")
    logger.info(f"Successful:     {counts['success']} ({counts['success']/n_total*100:.1f}%)")
    logger.info(f"Soft-degraded:  {counts['soft-degraded']}")
    logger.info(f"Failed:         {counts['failed']}")
    logger.info(f"Total time:     {total_time:.2f}s")
    logger.info(f"{'='*60}")

    if counts["failed"] > 0:
        logger.warning("\nFailed sites:")
        for r in results:
            if SiteStatus(r.status) is SiteStatus.FAILED:
                logger.warning(f"  {r.site_code}: [{r.error_type}] {r.error_message}")


def save_batch_summary(
    results: List,
    output_dir: Path,
    config: Optional[dict] = None,
) -> Tuple[Path, Path]:
    """
    Save the batch summary as JSON (full detail) and CSV (status table).

    Returns
    -------
    tuple of Path
        ``(json_path, csv_path)``.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    counts = status_counts(results)
    summary = {
        "timestamp": datetime.now().isoformat(),
        "config": config or {},
        "n_total": len(results),
        "n_success": counts["success"],
        "n_soft_degraded": counts["soft-degraded"],
        "n_failed": counts["failed"],
        "results": [r.to_dict() for r in results],
    }
    json_path = output_dir / "batch_summary.json"
    with open(json_path, "w") as f:
        json.dump(summary, f, indent=2)

    csv_path = output_dir / "batch_summary.csv"
    batch_summary_table(results).to_csv(csv_path, index=False)
    return json_path, csv_path


__all__ = [
    "variable_report_table",
    "batch_summary_table",
    "status_counts",
    "log_batch_summary",
    "save_batch_summary",
]
