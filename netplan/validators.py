"""
Input Validation Module

Validates column mappings before rows are read, and the planning workbook
sheets before planning runs.
"""

import pandas as pd
from typing import Any, Dict, List, Optional, Sequence, Union

from .config import (
    FACILITY_REQUIRED_COLUMNS,
    FORECAST_REQUIRED_COLUMNS,
    VALID_FORECAST_TYPES,
    MappingKind,
    parse_mapping_kind,
    parse_solver,
)
from .errors import MappingInvalidError
from .models import CapacityColumns, CostColumns, DemandColumns

Mapping = Union[DemandColumns, CostColumns, CapacityColumns, Dict[str, Any]]

_MAPPING_TYPES = {
    MappingKind.DEMAND: DemandColumns,
    MappingKind.COST: CostColumns,
    MappingKind.CAPACITY: CapacityColumns,
}


# ============================================================================
# COLUMN MAPPINGS
# ============================================================================

def coerce_mapping(mapping: Mapping, kind) -> Union[DemandColumns, CostColumns, CapacityColumns]:
    """Accept a mapping dataclass or a plain dict for the given kind."""
    kind = parse_mapping_kind(kind)
    cls = _MAPPING_TYPES[kind]
    if isinstance(mapping, cls):
        return mapping
    if isinstance(mapping, dict):
        return cls.from_dict(mapping)
    raise ValueError(f"Expected {cls.__name__} or dict for {kind.value} mapping, got {type(mapping).__name__}")


def _index_ok(index: Optional[int], width: int) -> bool:
    return isinstance(index, int) and not isinstance(index, bool) and 0 <= index < width


def _check_index(errors: List[str], index: Optional[int], width: int, label: str, required: bool) -> None:
    if index is None:
        if required:
            errors.append(f"Invalid {label} column")
        return
    if not _index_ok(index, width):
        errors.append(f"Invalid {label} column")


def validate_mapping(headers: Sequence, mapping: Mapping, kind) -> List[str]:
    """
    Check a column mapping against a header row.

    Args:
        headers: Header row (only its width is used for range checks)
        mapping: DemandColumns / CostColumns / CapacityColumns or equivalent dict
        kind: 'demand', 'cost' or 'capacity'

    Returns:
        List of error strings; empty when the mapping is usable
    """
    kind = parse_mapping_kind(kind)
    try:
        mapping = coerce_mapping(mapping, kind)
    except ValueError as exc:
        return [str(exc)]

    width = len(headers) if headers is not None else 0
    errors: List[str] = []

    if kind == MappingKind.DEMAND:
        _check_index(errors, mapping.destination, width, "destination", required=True)
        _check_index(errors, mapping.demand, width, "demand", required=True)
        _check_index(errors, mapping.year, width, "year", required=False)

    elif kind == MappingKind.COST:
        _check_index(errors, mapping.origin, width, "origin", required=True)
        _check_index(errors, mapping.destination, width, "destination", required=True)
        for label in ("cost", "cost_per_mile", "distance", "cost_per_cwt", "weight"):
            _check_index(errors, getattr(mapping, label), width, label.replace("_", " "), required=False)
        if not (mapping.has_direct_cost() or mapping.has_mileage_cost() or mapping.has_cwt_cost()):
            errors.append("Must specify either direct cost, cost per mile + distance, or cost per CWT + weight")

    else:
        _check_index(errors, mapping.facility, width, "facility", required=True)
        _check_index(errors, mapping.capacity, width, "capacity", required=True)
        _check_index(errors, mapping.utilization, width, "utilization", required=False)

    return errors


def require_valid_mapping(headers: Sequence, mapping: Mapping, kind):
    """
    Validate and return the coerced mapping.

    Raises:
        MappingInvalidError: If validate_mapping reports any error
    """
    kind = parse_mapping_kind(kind)
    errors = validate_mapping(headers, mapping, kind)
    if errors:
        raise MappingInvalidError(errors, kind=kind.value)
    return coerce_mapping(mapping, kind)


# ============================================================================
# WORKBOOK SHEETS
# ============================================================================

def validate_inputs(dfs: Dict[str, pd.DataFrame]) -> None:
    """
    Run all validations on planning workbook sheets.

    Raises ValueError with descriptive message on failure.
    """
    _validate_facilities(dfs["facilities"])
    _validate_growth_forecasts(dfs["growth_forecasts"])
    _validate_run_settings(dfs["run_settings"])


def _validate_facilities(df: pd.DataFrame) -> None:
    """Validate facilities sheet."""
    _check_required_columns(df, FACILITY_REQUIRED_COLUMNS, "facilities")

    if df["name"].duplicated().any():
        dupes = df[df["name"].duplicated()]["name"].tolist()
        raise ValueError(f"Duplicate facility names: {dupes}")

    if df["name"].isna().any() or (df["name"].astype(str).str.strip() == "").any():
        raise ValueError("Facility names must be non-empty")

    capacity = pd.to_numeric(df["capacity_units"], errors="coerce")
    if capacity.isna().any():
        raise ValueError("capacity_units must be numeric for every facility")
    if (capacity < 0).any():
        raise ValueError("capacity_units must be non-negative")

    for col in ("square_feet", "lease_rate_per_sqft", "operating_cost_per_sqft"):
        if col in df.columns:
            values = pd.to_numeric(df[col], errors="coerce").dropna()
            if (values < 0).any():
                raise ValueError(f"{col} must be non-negative")

    if "force_start_year" in df.columns and "force_end_year" in df.columns:
        start = pd.to_numeric(df["force_start_year"], errors="coerce")
        end = pd.to_numeric(df["force_end_year"], errors="coerce")
        both = start.notna() & end.notna()
        if (end[both] < start[both]).any():
            bad = df[both & (end < start)]["name"].tolist()
            raise ValueError(f"force_end_year precedes force_start_year for facilities: {bad}")


def _validate_growth_forecasts(df: pd.DataFrame) -> None:
    """Validate growth_forecasts sheet."""
    _check_required_columns(df, FORECAST_REQUIRED_COLUMNS, "growth_forecasts")

    years = pd.to_numeric(df["year_number"], errors="coerce")
    if years.isna().any():
        raise ValueError("year_number must be numeric for every forecast row")
    if (years < 1).any():
        raise ValueError("year_number must be >= 1 (year 0 is the base year)")
    if years.duplicated().any():
        dupes = sorted(years[years.duplicated()].astype(int).unique().tolist())
        raise ValueError(f"Duplicate forecast year_number values: {dupes}")

    absolute = None
    for col in ("absolute_demand", "absolute_units"):
        if col in df.columns:
            values = pd.to_numeric(df[col], errors="coerce")
            absolute = values if absolute is None else absolute.fillna(values)
    if absolute is not None and (absolute.dropna() < 0).any():
        raise ValueError("absolute_demand must be non-negative")

    if "growth_rate" in df.columns:
        rates = pd.to_numeric(df["growth_rate"], errors="coerce").dropna()
        if (rates <= -100).any():
            raise ValueError("growth_rate must be greater than -100 percent")

    if "forecast_type" in df.columns:
        types = set(df["forecast_type"].dropna().astype(str).str.lower().str.strip())
        invalid = types - VALID_FORECAST_TYPES
        if invalid:
            raise ValueError(f"Invalid forecast_type values: {invalid}. Must be one of {VALID_FORECAST_TYPES}")


def _validate_run_settings(df: pd.DataFrame) -> None:
    """Validate run_settings sheet."""
    if "key" not in df.columns or "value" not in df.columns:
        raise ValueError("run_settings must have 'key' and 'value' columns")

    settings = {str(k).strip().lower(): v for k, v in zip(df["key"], df["value"])}

    if "utilization_target" in settings and not pd.isna(settings["utilization_target"]):
        target = float(settings["utilization_target"])
        if not 0 < target <= 100:
            raise ValueError(f"utilization_target must be in (0, 1] or a percentage in (1, 100], got {target}")

    if "project_duration_years" in settings and not pd.isna(settings["project_duration_years"]):
        if int(settings["project_duration_years"]) < 1:
            raise ValueError("project_duration_years must be >= 1")

    if "solver" in settings and not pd.isna(settings["solver"]):
        parse_solver(settings["solver"])


def _check_required_columns(df: pd.DataFrame, required: list, sheet_name: str) -> None:
    """Check that all required columns are present."""
    missing = set(required) - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns in {sheet_name}: {sorted(missing)}")
