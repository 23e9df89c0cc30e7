"""Tests for workbook and mapping validation."""

import pandas as pd
import pytest

from netplan.errors import MappingInvalidError
from netplan.models import CostColumns
from netplan.validators import require_valid_mapping, validate_inputs, validate_mapping


def test_valid_workbook_passes(planning_sheets):
    validate_inputs(planning_sheets)


def test_duplicate_facility_names(planning_sheets):
    planning_sheets["facilities"] = pd.DataFrame({"name": ["A", "A"], "capacity_units": [1, 2]})
    with pytest.raises(ValueError, match="Duplicate facility names"):
        validate_inputs(planning_sheets)


def test_missing_facility_columns(planning_sheets):
    planning_sheets["facilities"] = pd.DataFrame({"name": ["A"]})
    with pytest.raises(ValueError, match="Missing required columns in facilities"):
        validate_inputs(planning_sheets)


def test_negative_capacity(planning_sheets):
    planning_sheets["facilities"] = pd.DataFrame({"name": ["A"], "capacity_units": [-5]})
    with pytest.raises(ValueError, match="non-negative"):
        validate_inputs(planning_sheets)


def test_force_window_order(planning_sheets):
    planning_sheets["facilities"] = pd.DataFrame({
        "name": ["A"], "capacity_units": [5], "force_start_year": [2028], "force_end_year": [2026],
    })
    with pytest.raises(ValueError, match="force_end_year precedes"):
        validate_inputs(planning_sheets)


@pytest.mark.parametrize("years,message", [
    ([0, 1], "year_number must be >= 1"),
    ([1, 1], "Duplicate forecast year_number"),
])
def test_forecast_years(planning_sheets, years, message):
    planning_sheets["growth_forecasts"] = pd.DataFrame({"year_number": years, "growth_rate": [5.0, 5.0]})
    with pytest.raises(ValueError, match=message):
        validate_inputs(planning_sheets)


def test_invalid_forecast_type(planning_sheets):
    planning_sheets["growth_forecasts"] = pd.DataFrame({"year_number": [1], "forecast_type": ["guess"]})
    with pytest.raises(ValueError, match="Invalid forecast_type"):
        validate_inputs(planning_sheets)


@pytest.mark.parametrize("key,value", [
    ("utilization_target", 150),
    ("project_duration_years", 0),
    ("solver", "simplex"),
])
def test_invalid_run_settings(planning_sheets, key, value):
    planning_sheets["run_settings"] = pd.DataFrame({"key": [key], "value": [value]})
    with pytest.raises(ValueError):
        validate_inputs(planning_sheets)


def test_require_valid_mapping_returns_dataclass():
    mapping = require_valid_mapping(["Origin", "Destination", "Cost"], {"origin": 0, "destination": 1, "cost": 2}, "cost")
    assert mapping == CostColumns(origin=0, destination=1, cost=2)


def test_half_specified_cost_method_is_invalid():
    headers = ["Origin", "Destination", "Per Mile"]
    errors = validate_mapping(headers, CostColumns(origin=0, destination=1, cost_per_mile=2), "cost")
    assert errors == ["Must specify either direct cost, cost per mile + distance, or cost per CWT + weight"]
    with pytest.raises(MappingInvalidError):
        require_valid_mapping(headers, CostColumns(origin=0, destination=1, cost_per_mile=2), "cost")


def test_unknown_mapping_kind():
    with pytest.raises(ValueError):
        validate_mapping([], {}, "inventory")
