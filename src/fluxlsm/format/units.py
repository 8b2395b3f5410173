"""
Unit conversion from FLUXNET2015 source units to the output vocabulary.

Each supported ``(source_unit, output_unit)`` pair has exactly one
deterministic transform and its inverse. Pairs not listed here are rejected
with :class:`~fluxlsm.errors.UnsupportedUnitConversion`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Tuple

import numpy as np

from fluxlsm.errors import ConversionInputMissing, UnsupportedUnitConversion
from fluxlsm.format.registry import VariableSpec


KELVIN_OFFSET = 273.15
REFERENCE_PRESSURE_PA = 101325.0

# specific gas constants for dry air and water vapour [J kg-1 K-1]
RD = 287.05
RV = 461.52
EPSILON = RD / RV

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnitTransform:
    """
    A forward transform and its inverse.

    ``forward`` and ``inverse`` take ``(values, step_seconds, context)``.
    """

    name: str
    forward: Callable
    inverse: Callable
    needs_step: bool = False
    needs_context: Tuple[str, ...] = ()


def _identity(values, step_seconds=None, context=None):
    return values


def _offset(delta: float) -> Tuple[Callable, Callable]:
    return (lambda v, s=None, c=None: v + delta,
            lambda v, s=None, c=None: v - delta)


def _scale(factor: float) -> Tuple[Callable, Callable]:
    return (lambda v, s=None, c=None: v * factor,
            lambda v, s=None, c=None: v / factor)


def _per_step_to_rate(values, step_seconds, context=None):
    return values / step_seconds


def _rate_to_per_step(values, step_seconds, context=None):
    return values * step_seconds


def saturation_vapour_pressure(temp_k, pressure_pa):
    """
    Saturation vapour pressure [Pa] over water or ice.

    Buck (1981) with the enhancement factor, as used by Weedon et al. (2010).
    """
    temp_c = np.asarray(temp_k, dtype=float) - KELVIN_OFFSET
    pressure_pa = np.asarray(pressure_pa, dtype=float)

    # values when over:    water,    ice
    a = np.where(temp_c > 0.0, 6.1121, 6.1115)
    b = np.where(temp_c > 0.0, 18.729, 23.036)
    c = np.where(temp_c > 0.0, 257.87, 279.82)
    d = np.where(temp_c > 0.0, 227.3, 333.7)
    x = np.where(temp_c > 0.0, 0.00072, 0.00022)
    y = np.where(temp_c > 0.0, 3.2e-6, 3.83e-6)
    z = np.where(temp_c > 0.0, 5.9e-10, 6.4e-10)

    esat = a * np.exp(((b - temp_c / d) * temp_c) / (temp_c + c))
    enhancement = 1.0 + x + pressure_pa / 100.0 * (y + z * temp_c ** 2)
    return esat * enhancement * 100.0


def saturation_specific_humidity(esat, pressure_pa):
    """Specific humidity at saturation [kg/kg]."""
    return (EPSILON * esat) / (pressure_pa - (1.0 - EPSILON) * esat)


def _humidity_inputs(context):
    temp = context["Tair"]
    pressure = context.get("PSurf")
    if pressure is None:
        logger.warning(
            "PSurf unavailable for humidity conversion; using %.0f Pa", REFERENCE_PRESSURE_PA
        )
        pressure = np.full(np.shape(temp), REFERENCE_PRESSURE_PA)
    else:
        pressure = np.where(np.isnan(pressure), REFERENCE_PRESSURE_PA, pressure)
    return np.asarray(temp, dtype=float), np.asarray(pressure, dtype=float)


def rh_to_qair(rh, step_seconds=None, context=None):
    """Relative humidity [%] to specific humidity [kg/kg]."""
    temp, pressure = _humidity_inputs(context)
    qsat = saturation_specific_humidity(saturation_vapour_pressure(temp, pressure), pressure)
    return qsat * np.asarray(rh, dtype=float) / 100.0


def qair_to_rh(qair, step_seconds=None, context=None):
    """Specific humidity [kg/kg] to relative humidity [%]."""
    temp, pressure = _humidity_inputs(context)
    qsat = saturation_specific_humidity(saturation_vapour_pressure(temp, pressure), pressure)
    return 100.0 * np.asarray(qair, dtype=float) / qsat


_IDENTITY_PAIRS = [
    ("W m-2", "W/m^2"),
    ("m s-1", "m/s"),
    ("umolCO2 mol-1", "ppmv"),
    ("umolCO2 m-2 s-1", "umol/m^2/s"),
    ("umolPhoton m-2 s-1", "umol/m^2/s"),
    ("decimal degree", "degrees"),
]


def _build_transforms() -> Dict[Tuple[str, str], UnitTransform]:
    table = {
        pair: UnitTransform(f"{pair[0]} -> {pair[1]}", _identity, _identity)
        for pair in _IDENTITY_PAIRS
    }
    fwd, inv = _offset(KELVIN_OFFSET)
    table[("deg C", "K")] = UnitTransform("celsius to kelvin", fwd, inv)
    fwd, inv = _scale(1000.0)
    table[("kPa", "Pa")] = UnitTransform("kPa to Pa", fwd, inv)
    fwd, inv = _scale(100.0)
    table[("hPa", "Pa")] = UnitTransform("hPa to Pa", fwd, inv)
    fwd, inv = _scale(0.01)
    table[("%", "m^3/m^3")] = UnitTransform("percent to fraction", fwd, inv)
    table[("mm", "kg/m^2/s")] = UnitTransform(
        "depth per step to rate", _per_step_to_rate, _rate_to_per_step, needs_step=True
    )
    table[("%", "kg/kg")] = UnitTransform(
        "relative to specific humidity", rh_to_qair, qair_to_rh, needs_context=("Tair",)
    )
    return table


UNIT_TRANSFORMS: Dict[Tuple[str, str], UnitTransform] = _build_transforms()


def get_transform(source_unit: str, output_unit: str,
                  variable: Optional[str] = None) -> UnitTransform:
    """
    Return the transform registered for a unit pair.

    Raises
    ------
    UnsupportedUnitConversion
        If the pair is not registered.
    """
    if source_unit == output_unit:
        return UnitTransform(f"{source_unit} (unchanged)", _identity, _identity)
    try:
        return UNIT_TRANSFORMS[(source_unit, output_unit)]
    except KeyError:
        raise UnsupportedUnitConversion(source_unit, output_unit, variable) from None


def _apply(direction: str, values, spec: VariableSpec,
           step_seconds: Optional[float], context: Optional[Mapping]):
    transform = get_transform(spec.source_unit, spec.output_unit, spec.output_name)
    if transform.needs_step and not step_seconds:
        raise ConversionInputMissing(
            f"{spec.output_name}: converting {spec.source_unit} needs the time step"
        )
    missing = [k for k in transform.needs_context if context is None or context.get(k) is None]
    if missing:
        raise ConversionInputMissing(
            f"{spec.output_name}: converting {spec.source_unit} to {spec.output_unit} "
            f"needs {', '.join(missing)}"
        )
    arr = np.asarray(values, dtype=float)
    func = transform.forward if direction == "forward" else transform.inverse
    return np.asarray(func(arr, step_seconds, context), dtype=float)


def convert(values, spec: VariableSpec, step_seconds: Optional[float] = None,
            context: Optional[Mapping] = None) -> np.ndarray:
    """
    Convert source values to the spec's output unit.

    Parameters
    ----------
    values : array-like
        Values in ``spec.source_unit``.
    spec : VariableSpec
        Registry row declaring the unit pair.
    step_seconds : float, optional
        Native time step; required for per-step accumulations.
    context : mapping, optional
        Companion variables already in output units (``Tair`` [K],
        ``PSurf`` [Pa]) for humidity conversions.

    Returns
    -------
    np.ndarray
        Values in ``spec.output_unit``.
    """
    return _apply("forward", values, spec, step_seconds, context)


def invert(values, spec: VariableSpec, step_seconds: Optional[float] = None,
           context: Optional[Mapping] = None) -> np.ndarray:
    """Convert output-unit values back to the source unit."""
    return _apply("inverse", values, spec, step_seconds, context)


__all__ = [
    "UnitTransform",
    "UNIT_TRANSFORMS",
    "get_transform",
    "convert",
    "invert",
    "rh_to_qair",
    "qair_to_rh",
    "saturation_vapour_pressure",
    "saturation_specific_humidity",
]
