"""
Input/Output Loader Module

Handles loading planning workbooks and CSV tables, extracting rows from
shape-varying spreadsheet payloads, and parsing facility/forecast records and
planning parameters.
"""

import json
import math
import numpy as np
import pandas as pd
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from .capacity_planner import CapacityPlanningParams
from .config import (
    OPTIONAL_SHEETS,
    REQUIRED_SHEETS,
    ForecastType,
    PlannerDefaults,
)
from .models import Facility, GrowthForecast
from .utils import to_number, to_text

# Sheets read as raw array-of-arrays for the data mapper
RAW_SHEETS = {"demand", "costs", "capacity"}


# ============================================================================
# ROW SOURCES
# ============================================================================

@dataclass(frozen=True)
class FlatRows:
    rows: List[List[Any]]


@dataclass(frozen=True)
class SheetedRows:
    sheets: Dict[str, List[List[Any]]]


@dataclass(frozen=True)
class UnknownRows:
    raw: Any


RowSource = Union[FlatRows, SheetedRows, UnknownRows]


@dataclass(frozen=True)
class ExtractionError:
    reason: str
    detail: str = ""


@dataclass(frozen=True)
class ExtractionResult:
    rows: Optional[List[List[Any]]] = None
    error: Optional[ExtractionError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _is_row(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _is_table(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and all(_is_row(r) for r in value)


def _is_records(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and len(value) > 0 and all(isinstance(r, dict) for r in value)


def _records_to_rows(records: Sequence[Dict[str, Any]]) -> List[List[Any]]:
    header: List[str] = []
    for record in records:
        for key in record:
            if key not in header:
                header.append(key)
    return [list(header)] + [[record.get(key) for key in header] for record in records]


def _frame_to_rows(df: pd.DataFrame, include_header: bool = True) -> List[List[Any]]:
    body = df.astype(object).where(pd.notna(df), None).values.tolist()
    if include_header:
        return [list(df.columns)] + body
    return body


def classify_row_source(raw: Any) -> RowSource:
    """
    Classify a spreadsheet payload.

    Recognized shapes:
        - list of rows (lists or tuples)             -> FlatRows
        - list of record dicts                       -> FlatRows (header from keys)
        - DataFrame                                  -> FlatRows (header from columns)
        - {"data": <any flat shape>}                 -> FlatRows
        - {sheet_name: <flat shape>, ...}            -> SheetedRows
        - anything else                              -> UnknownRows
    """
    if isinstance(raw, pd.DataFrame):
        return FlatRows(_frame_to_rows(raw))
    if _is_table(raw):
        return FlatRows([list(r) for r in raw])
    if _is_records(raw):
        return FlatRows(_records_to_rows(raw))

    if isinstance(raw, dict) and raw:
        if "data" in raw:
            inner = classify_row_source(raw["data"])
            if isinstance(inner, FlatRows):
                return inner
        sheets: Dict[str, List[List[Any]]] = {}
        for name, value in raw.items():
            inner = classify_row_source(value)
            if not isinstance(inner, FlatRows):
                return UnknownRows(raw)
            sheets[str(name)] = inner.rows
        return SheetedRows(sheets)

    return UnknownRows(raw)


def extract_rows(raw: Any, sheet_name: Optional[str] = None) -> ExtractionResult:
    """
    Pull array-of-arrays rows out of any supported payload.

    For sheeted payloads the named sheet is used, else the first non-empty
    sheet. Never raises; failures come back as an ExtractionError.
    """
    source = raw if isinstance(raw, (FlatRows, SheetedRows, UnknownRows)) else classify_row_source(raw)

    if isinstance(source, FlatRows):
        return ExtractionResult(rows=source.rows)

    if isinstance(source, SheetedRows):
        if sheet_name is not None:
            if sheet_name not in source.sheets:
                return ExtractionResult(error=ExtractionError(
                    "sheet_not_found",
                    f"Sheet '{sheet_name}' not in {sorted(source.sheets)}"
                ))
            return ExtractionResult(rows=source.sheets[sheet_name])
        for rows in source.sheets.values():
            if rows:
                return ExtractionResult(rows=rows)
        return ExtractionResult(error=ExtractionError("empty_source", "Every sheet is empty"))

    return ExtractionResult(error=ExtractionError(
        "unrecognized_shape",
        f"Cannot extract rows from {type(source.raw).__name__}"
    ))


# ============================================================================
# FILE READING
# ============================================================================

def read_table(path: Path, sheet_name: Optional[str] = None) -> List[List[Any]]:
    """
    Read a CSV or Excel sheet as raw array-of-arrays (no header inference).

    Empty cells become None.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".csv":
        df = pd.read_csv(path, header=None, dtype=object, skip_blank_lines=True)
    elif suffix in (".xlsx", ".xlsm", ".xls"):
        df = pd.read_excel(path, sheet_name=sheet_name if sheet_name is not None else 0, header=None)
    else:
        raise ValueError(f"Unsupported table format: {suffix}. Expected .csv or .xlsx")

    return _frame_to_rows(df, include_header=False)


def read_row_source(path: Path) -> RowSource:
    """Read a CSV as FlatRows or every sheet of a workbook as SheetedRows."""
    path = Path(path)
    if path.suffix.lower() == ".csv":
        return FlatRows(read_table(path))
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")
    frames = pd.read_excel(path, sheet_name=None, header=None)
    return SheetedRows({name: _frame_to_rows(df, include_header=False) for name, df in frames.items()})


def load_workbook(path: Path) -> Dict[str, Any]:
    """
    Load all planning sheets from an Excel workbook.

    Args:
        path: Path to Excel file

    Returns:
        Dictionary mapping sheet names to DataFrames; the demand, costs and
        capacity sheets are returned as raw array-of-arrays rows
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Input file not found: {path}")

    xlsx = pd.ExcelFile(path)
    available_sheets = set(xlsx.sheet_names)

    missing = set(REQUIRED_SHEETS) - available_sheets
    if missing:
        raise ValueError(f"Missing required sheets: {sorted(missing)}")

    sheets = REQUIRED_SHEETS + [s for s in OPTIONAL_SHEETS if s in available_sheets]
    dfs: Dict[str, Any] = {}
    for sheet in sheets:
        if sheet in RAW_SHEETS:
            raw = pd.read_excel(xlsx, sheet_name=sheet, header=None)
            dfs[sheet] = _frame_to_rows(raw, include_header=False)
        else:
            df = pd.read_excel(xlsx, sheet_name=sheet)
            dfs[sheet] = _clean_column_names(df)

    return dfs


def _clean_column_names(df: pd.DataFrame) -> pd.DataFrame:
    """Standardize column names to lowercase with underscores."""
    df.columns = [str(c).strip().lower().replace(" ", "_") for c in df.columns]
    return df


def parse_bool(value) -> bool:
    """Parse boolean from various Excel formats."""
    if value is None:
        return False
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    if isinstance(value, (int, float, np.integer, np.floating)):
        if math.isnan(float(value)):
            return False
        return bool(value)
    if isinstance(value, str):
        return value.strip().upper() in ("TRUE", "YES", "1", "T", "Y")
    return False


def params_to_dict(df: pd.DataFrame) -> Dict:
    """
    Convert parameter sheet (key/value format) to dictionary.

    Expected columns: key, value
    """
    if "key" not in df.columns or "value" not in df.columns:
        raise ValueError("Parameter sheet must have 'key' and 'value' columns")

    result = {}
    for _, row in df.iterrows():
        key = str(row["key"]).strip().lower()
        value = row["value"]

        if isinstance(value, str) and value.strip().upper() in ("TRUE", "FALSE", "YES", "NO"):
            value = value.strip().upper() in ("TRUE", "YES")

        result[key] = value

    return result


# ============================================================================
# RECORDS
# ============================================================================

def _optional_int(value) -> Optional[int]:
    number = to_number(value)
    return int(number) if number is not None else None


def facility_from_record(record: Dict[str, Any]) -> Facility:
    """Build a Facility from a sheet row or JSON object."""
    name = to_text(record.get("name"))
    if not name:
        raise ValueError(f"Facility record has no name: {record}")

    capacity = to_number(record.get("capacity_units"))
    if capacity is None:
        capacity = to_number(record.get("capacity")) or 0.0

    return Facility(
        name=name,
        capacity_units=capacity,
        id=to_text(record.get("id")) or None,
        city=to_text(record.get("city")),
        state=to_text(record.get("state")),
        zip_code=to_text(record.get("zip_code")),
        square_feet=to_number(record.get("square_feet")) or 0.0,
        is_forced=parse_bool(record.get("is_forced")),
        force_start_year=_optional_int(record.get("force_start_year")),
        force_end_year=_optional_int(record.get("force_end_year")),
        allow_expansion=parse_bool(record.get("allow_expansion")),
        lease_rate_per_sqft=to_number(record.get("lease_rate_per_sqft")),
        operating_cost_per_sqft=to_number(record.get("operating_cost_per_sqft")),
        utilization_target=to_number(record.get("utilization_target")),
        fixed_cost_override=to_number(record.get("fixed_cost")),
        cost_per_unit_override=to_number(record.get("cost_per_unit")),
    )


def _parse_forecast_type(value) -> ForecastType:
    text = to_text(value).lower()
    for forecast_type in ForecastType:
        if forecast_type.value == text:
            return forecast_type
    return ForecastType.FORECAST


def forecast_from_record(record: Dict[str, Any]) -> GrowthForecast:
    """Build a GrowthForecast; ``absolute_units`` is accepted for ``absolute_demand``."""
    year_number = _optional_int(record.get("year_number"))
    if year_number is None:
        raise ValueError(f"Forecast record has no year_number: {record}")

    absolute = to_number(record.get("absolute_demand"))
    if absolute is None:
        absolute = to_number(record.get("absolute_units"))

    is_actual = parse_bool(record.get("is_actual_data"))
    forecast_type = _parse_forecast_type(record.get("forecast_type"))
    if is_actual and record.get("forecast_type") is None:
        forecast_type = ForecastType.ACTUAL

    return GrowthForecast(
        year_number=year_number,
        growth_rate=to_number(record.get("growth_rate")),
        absolute_demand=absolute,
        confidence_level=to_number(record.get("confidence_level")),
        forecast_type=forecast_type,
        is_actual_data=is_actual,
        notes=to_text(record.get("notes")),
    )


def _frame_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    clean = df.astype(object).where(pd.notna(df), None)
    return clean.to_dict("records")


def load_facilities(df: pd.DataFrame) -> List[Facility]:
    """Parse the facilities sheet."""
    return [facility_from_record(r) for r in _frame_records(df)]


def load_growth_forecasts(df: pd.DataFrame) -> List[GrowthForecast]:
    """Parse the growth_forecasts sheet, ordered by year_number."""
    forecasts = [forecast_from_record(r) for r in _frame_records(df)]
    return sorted(forecasts, key=lambda f: f.year_number)


# ============================================================================
# PLANNING PARAMETERS (JSON CONTRACT)
# ============================================================================

_PARAM_ALIASES = {
    "base_capacity": ("base_capacity", "baseCapacity"),
    "growth_forecasts": ("growth_forecasts", "growthForecasts"),
    "facilities": ("facilities",),
    "project_duration_years": ("project_duration_years", "projectDurationYears"),
    "utilization_target": ("utilization_target", "utilizationTarget"),
    "base_year": ("base_year", "baseYear"),
    "lease_term_years": ("lease_term_years", "facility_lease_years", "leaseTermYears"),
}


def _lookup(data: Dict[str, Any], field_name: str, default=None):
    for alias in _PARAM_ALIASES[field_name]:
        if alias in data and data[alias] is not None:
            return data[alias]
    return default


def planning_params_from_json(data: Union[str, bytes, Dict[str, Any]]) -> CapacityPlanningParams:
    """
    Parse a CapacityPlanningParams-shaped JSON object.

    Accepts snake_case or camelCase keys.

    Example:
        >>> params = planning_params_from_json(
        ...     '{"baseCapacity": 10000, "growthForecasts": [{"year_number": 1, "growth_rate": 10}],'
        ...     ' "facilities": [], "project_duration_years": 1, "utilization_target": 0.85}'
        ... )
        >>> params.base_capacity
        10000.0
    """
    if isinstance(data, (str, bytes)):
        data = json.loads(data)
    if not isinstance(data, dict):
        raise ValueError(f"Planning parameters must be a JSON object, got {type(data).__name__}")

    base_capacity = to_number(_lookup(data, "base_capacity", 0))
    if base_capacity is None:
        raise ValueError("base_capacity must be numeric")

    forecasts = sorted(
        (forecast_from_record(r) for r in _lookup(data, "growth_forecasts", [])),
        key=lambda f: f.year_number
    )
    facilities = [facility_from_record(r) for r in _lookup(data, "facilities", [])]
    base_year = _optional_int(_lookup(data, "base_year"))

    return CapacityPlanningParams(
        base_capacity=base_capacity,
        growth_forecasts=forecasts,
        facilities=facilities,
        project_duration_years=int(_lookup(data, "project_duration_years", len(forecasts) or 5)),
        utilization_target=float(_lookup(data, "utilization_target", PlannerDefaults.DEFAULT_UTILIZATION_TARGET)),
        base_year=base_year,
        lease_term_years=int(_lookup(data, "lease_term_years", PlannerDefaults.LEASE_TERM_YEARS)),
    )
