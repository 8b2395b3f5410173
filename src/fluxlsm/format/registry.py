"""
Variable registry mapping FLUXNET2015 source variables onto the output vocabulary.

The registry is a table (``fluxlsm/data/fluxnet2015_variables.csv``) with one
row per ``(source_name, output_name)`` pair. A source column may appear in
more than one row; relative humidity, for example, produces both ``RH`` and
``Qair``.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

import pandas as pd


MET = "Met"
EVAL = "Eval"
CATEGORIES = (MET, EVAL)
AGGREGATE_METHODS = ("mean", "sum", "none")

REGISTRY_COLUMNS = [
    "source_name", "source_unit", "source_kind", "output_name", "output_unit",
    "long_name", "standard_name", "valid_min", "valid_max", "essential_met",
    "preferred_eval", "category", "substitute_source", "aggregate_method",
]


@dataclass(frozen=True)
class VariableSpec:
    """One row of the variable registry."""

    source_name: str
    source_unit: str
    source_kind: str
    output_name: str
    output_unit: str
    long_name: str
    standard_name: Optional[str]
    valid_min: float
    valid_max: float
    is_essential_met: bool
    is_preferred_eval: bool
    category: str
    substitute_source: Optional[str]
    aggregate_method: str

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source_name, self.output_name)

    @property
    def qc_column(self) -> str:
        """Name of the FLUXNET2015 QC column that accompanies the source column."""
        return f"{self.source_name}_QC"

    @property
    def gapfill_eligible(self) -> bool:
        return (
            self.is_essential_met
            and self.substitute_source is not None
            and self.aggregate_method != "none"
        )


def _optional_str(value) -> Optional[str]:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    value = str(value).strip()
    return value or None


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().upper() in {"TRUE", "T", "YES", "1"}
    return bool(value)


class VariableRegistry:
    """
    Immutable, ordered collection of :class:`VariableSpec` rows.

    Parameters
    ----------
    specs : iterable of VariableSpec
        Registry rows, in output order.
    """

    def __init__(self, specs):
        self._specs: Tuple[VariableSpec, ...] = tuple(specs)
        keys = [s.key for s in self._specs]
        dupes = sorted({k for k in keys if keys.count(k) > 1})
        if dupes:
            raise ValueError(f"Duplicate (source, output) pairs in registry: {dupes}")
        outputs = [s.output_name for s in self._specs]
        dup_out = sorted({o for o in outputs if outputs.count(o) > 1})
        if dup_out:
            raise ValueError(f"Duplicate output names in registry: {dup_out}")
        for spec in self._specs:
            _validate_spec(spec)

    def __iter__(self) -> Iterator[VariableSpec]:
        return iter(self._specs)

    def __len__(self) -> int:
        return len(self._specs)

    def __repr__(self) -> str:
        return f"VariableRegistry({len(self._specs)} variables)"

    def lookup(self, source_name: str) -> List[VariableSpec]:
        """Return every spec fed by `source_name` (zero, one or two entries)."""
        return [s for s in self._specs if s.source_name == source_name]

    def get(self, output_name: str) -> VariableSpec:
        """Return the spec producing `output_name`."""
        for spec in self._specs:
            if spec.output_name == output_name:
                return spec
        raise KeyError(output_name)

    def all_of_category(self, category: str) -> List[VariableSpec]:
        if category not in CATEGORIES:
            raise ValueError(f"category must be one of {CATEGORIES}")
        return [s for s in self._specs if s.category == category]

    def essential_met(self) -> List[VariableSpec]:
        return [s for s in self._specs if s.is_essential_met]

    def source_names(self) -> List[str]:
        """Unique source column names in table order."""
        seen = []
        for spec in self._specs:
            if spec.source_name not in seen:
                seen.append(spec.source_name)
        return seen

    def output_names(self) -> List[str]:
        return [s.output_name for s in self._specs]

    def subset(self, output_names) -> "VariableRegistry":
        """Registry restricted to `output_names` plus all essential met variables."""
        wanted = set(output_names)
        unknown = wanted - set(self.output_names())
        if unknown:
            raise KeyError(f"Unknown output variable(s): {sorted(unknown)}")
        return VariableRegistry(
            s for s in self._specs if s.output_name in wanted or s.is_essential_met
        )

    def to_dataframe(self) -> pd.DataFrame:
        rows = []
        for s in self._specs:
            rows.append({
                "source_name": s.source_name,
                "source_unit": s.source_unit,
                "source_kind": s.source_kind,
                "output_name": s.output_name,
                "output_unit": s.output_unit,
                "long_name": s.long_name,
                "standard_name": s.standard_name,
                "valid_min": s.valid_min,
                "valid_max": s.valid_max,
                "essential_met": s.is_essential_met,
                "preferred_eval": s.is_preferred_eval,
                "category": s.category,
                "substitute_source": s.substitute_source,
                "aggregate_method": s.aggregate_method,
            })
        return pd.DataFrame(rows, columns=REGISTRY_COLUMNS)


def _validate_spec(spec: VariableSpec) -> None:
    where = f"registry row {spec.source_name}->{spec.output_name}"
    if not spec.valid_min <= spec.valid_max:
        raise ValueError(f"{where}: valid_min {spec.valid_min} > valid_max {spec.valid_max}")
    if spec.category not in CATEGORIES:
        raise ValueError(f"{where}: unknown category '{spec.category}'")
    if spec.aggregate_method not in AGGREGATE_METHODS:
        raise ValueError(f"{where}: unknown aggregate method '{spec.aggregate_method}'")
    if spec.is_essential_met and spec.category != MET:
        raise ValueError(f"{where}: essential variables must be meteorological")
    if spec.source_kind not in ("numeric", "integer"):
        raise ValueError(f"{where}: unknown source kind '{spec.source_kind}'")


def registry_from_dataframe(df: pd.DataFrame) -> VariableRegistry:
    """Build a registry from a table with the :data:`REGISTRY_COLUMNS` columns."""
    missing = [c for c in REGISTRY_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Registry table is missing columns: {missing}")

    specs = []
    for row in df.itertuples(index=False):
        specs.append(
            VariableSpec(
                source_name=str(row.source_name).strip(),
                source_unit=str(row.source_unit).strip(),
                source_kind=str(row.source_kind).strip(),
                output_name=str(row.output_name).strip(),
                output_unit=str(row.output_unit).strip(),
                long_name=str(row.long_name).strip(),
                standard_name=_optional_str(row.standard_name),
                valid_min=float(row.valid_min),
                valid_max=float(row.valid_max),
                is_essential_met=_as_bool(row.essential_met),
                is_preferred_eval=_as_bool(row.preferred_eval),
                category=str(row.category).strip(),
                substitute_source=_optional_str(row.substitute_source),
                aggregate_method=str(row.aggregate_method).strip(),
            )
        )
    return VariableRegistry(specs)


def load_registry(path: Union[str, Path, None] = None) -> VariableRegistry:
    """
    Load the variable registry.

    Parameters
    ----------
    path : str or Path, optional
        CSV file with the registry columns. Defaults to the bundled
        FLUXNET2015 table.

    Returns
    -------
    VariableRegistry
    """
    if path is None:
        source = resources.files("fluxlsm").joinpath("data/fluxnet2015_variables.csv")
        with resources.as_file(source) as csv_path:
            df = pd.read_csv(csv_path, keep_default_na=False, na_values=[""])
    else:
        df = pd.read_csv(Path(path), keep_default_na=False, na_values=[""])
    return registry_from_dataframe(df)


__all__ = [
    "MET",
    "EVAL",
    "VariableSpec",
    "VariableRegistry",
    "load_registry",
    "registry_from_dataframe",
]
