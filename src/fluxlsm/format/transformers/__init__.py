"""
Data transformation functions for the reformatter pipeline.

This package contains modular transformation functions organized by category:
- timestamps: Timestamp parsing and native time-step detection
- validation: Physical-bounds checks against the variable registry
"""

from .timestamps import (
    infer_datetime_col,
    fix_timestamps,
    infer_time_step,
    regularize,
    timestamp_reset,
)

from .validation import (
    check_range,
    apply_physical_limits,
)

__all__ = [
    # Timestamp functions
    "infer_datetime_col",
    "fix_timestamps",
    "infer_time_step",
    "regularize",
    "timestamp_reset",

    # Validation functions
    "check_range",
    "apply_physical_limits",
]
