"""
Exception types raised while converting flux-tower site records.

Variable-level errors (unit conversion, out-of-range values) only escalate to
a site failure when the affected variable is an essential meteorological
forcing. Site-level errors are caught by :class:`fluxlsm.pipeline.Pipeline`
and reported per site; :class:`MissingAuxiliarySource` aborts a batch before
any site is processed.
"""
from __future__ import annotations

from typing import Iterable, Optional


class FluxConversionError(Exception):
    """Base class for all conversion errors."""


class UnsupportedUnitConversion(FluxConversionError):
    """No transform is registered for a ``(source_unit, output_unit)`` pair."""

    def __init__(self, source_unit: str, output_unit: str, variable: Optional[str] = None):
        self.source_unit = source_unit
        self.output_unit = output_unit
        self.variable = variable
        where = f" for {variable}" if variable else ""
        super().__init__(
            f"No unit conversion from '{source_unit}' to '{output_unit}'{where}"
        )


class ConversionInputMissing(FluxConversionError):
    """A unit transform needs the time step or companion variables it was not given."""


class OutOfRangeValue(FluxConversionError):
    """Converted values fall outside the variable's physical bounds."""

    def __init__(self, variable: str, n_flagged: int, valid_min: float, valid_max: float):
        self.variable = variable
        self.n_flagged = n_flagged
        self.valid_min = valid_min
        self.valid_max = valid_max
        super().__init__(
            f"{variable}: {n_flagged} values outside [{valid_min}, {valid_max}]"
        )


class EssentialVariableDropped(FluxConversionError):
    """An essential meteorological variable failed QC or is absent; the site is unusable."""

    def __init__(self, variable: str, reason: str):
        self.variable = variable
        self.reason = reason
        super().__init__(f"Essential variable {variable} dropped: {reason}")


class EvaluationVariableDropped(FluxConversionError):
    """
    A non-essential variable was removed by the QC thresholds.

    Instances are collected in the site report rather than raised.
    """

    def __init__(self, variable: str, reason: str):
        self.variable = variable
        self.reason = reason
        super().__init__(f"Variable {variable} dropped: {reason}")


class MissingAuxiliarySource(FluxConversionError):
    """Gap-filling was requested but no reanalysis file resolves for one or more sites."""

    def __init__(self, site_codes: Iterable[str]):
        self.site_codes = sorted(site_codes)
        super().__init__(
            "No reanalysis file found for site(s): " + ", ".join(self.site_codes)
        )


class InconsistentTimeStep(FluxConversionError):
    """The site record does not have a single native time step."""


class InsufficientContiguousYears(FluxConversionError):
    """The longest run of acceptable consecutive years is shorter than required."""

    def __init__(self, run: Iterable[int], required: int):
        self.run = list(run)
        self.required = required
        if self.run:
            found = f"{self.run[0]}-{self.run[-1]} ({len(self.run)} yr)"
        else:
            found = "no acceptable years"
        super().__init__(
            f"Longest run of acceptable years is {found}; {required} required"
        )


__all__ = [
    "FluxConversionError",
    "UnsupportedUnitConversion",
    "ConversionInputMissing",
    "OutOfRangeValue",
    "EssentialVariableDropped",
    "EvaluationVariableDropped",
    "MissingAuxiliarySource",
    "InconsistentTimeStep",
    "InsufficientContiguousYears",
]
