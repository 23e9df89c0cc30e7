"""Tests for the data mapper: demand, cost and capacity tables from raw rows."""

import math

import pytest

from netplan.data_mapper import (
    RowStats,
    base_capacity_from,
    map_capacity_aoa,
    map_cost_aoa,
    map_cost_matrix_wide,
    map_demand_aoa,
    scale_demand_from_baseline,
    suggest_column_mapping,
    validate_mapping,
)
from netplan.errors import InsufficientInputError, MappingInvalidError
from netplan.models import CapacityColumns, CostColumns, DemandColumns


COST_MAPPING = CostColumns(origin=0, destination=1, cost=2)


# ============================================================================
# DEMAND
# ============================================================================

class TestMapDemand:

    def test_sums_duplicates_and_skips_bad_rows(self, demand_rows):
        stats = RowStats()
        demand = map_demand_aoa(demand_rows, DemandColumns(destination=0, demand=1), stats)

        assert demand.base == {"X": 15.0, "W": 1200.0}
        assert all(v >= 0 for v in demand.base.values())
        assert stats.rows_read == 6
        assert stats.rows_skipped == 3
        assert stats.reasons == {"empty_destination": 1, "non_numeric_demand": 1, "negative_demand": 1}

    def test_partitions_by_year(self):
        rows = [
            ["Destination", "Demand", "Year"],
            ["X", 10, 2026],
            ["X", 20, 2027],
            ["Y", 5, 2026],
            ["Y", 5, "next year"],
        ]
        stats = RowStats()
        demand = map_demand_aoa(rows, {"destination": 0, "demand": 1, "year": 2}, stats)

        assert demand.base is None
        assert demand.by_year == {2026: {"X": 10.0, "Y": 5.0}, 2027: {"X": 20.0}}
        assert demand.years() == [2026, 2027]
        assert demand.total(2026) == 15.0
        assert stats.reasons["non_numeric_year"] == 1

    def test_headerless_rows_are_all_data(self):
        demand = map_demand_aoa([["X", 10], ["Y", 4]], DemandColumns(destination=0, demand=1))
        assert demand.base == {"X": 10.0, "Y": 4.0}

    def test_invalid_mapping_raises_before_reading(self, demand_rows):
        with pytest.raises(MappingInvalidError) as excinfo:
            map_demand_aoa(demand_rows, DemandColumns(destination=0, demand=5))
        assert excinfo.value.code.value == "mapping_invalid"
        assert "Invalid demand column" in excinfo.value.errors

    def test_empty_rows(self):
        assert map_demand_aoa([], DemandColumns(destination=0, demand=1)).base == {}


def test_scale_demand_from_baseline():
    assert scale_demand_from_baseline({"X": 1.0, "Y": 3.0}, 100.0) == {"X": 25.0, "Y": 75.0}
    assert scale_demand_from_baseline({"X": 0.0, "Y": 0.0}, 10.0) == {"X": 5.0, "Y": 5.0}
    with pytest.raises(ValueError):
        scale_demand_from_baseline({"X": 1.0}, -1.0)


# ============================================================================
# COSTS
# ============================================================================

class TestMapCost:

    def test_duplicate_lane_last_row_wins(self, cost_rows):
        matrix = map_cost_aoa(cost_rows, COST_MAPPING)
        assert matrix.unit_cost("A", "X") == 7.0

    def test_unobserved_lanes_are_infinite(self, cost_rows):
        matrix = map_cost_aoa(cost_rows, COST_MAPPING)
        assert matrix.rows == ["A", "B"]
        assert matrix.cols == ["X", "Y"]
        assert math.isinf(matrix.unit_cost("A", "Y"))
        assert math.isinf(matrix.unit_cost("C", "X"))

    def test_mileage_cost(self):
        rows = [["Origin", "Destination", "Per Mile", "Miles"], ["A", "X", 2.5, 100]]
        matrix = map_cost_aoa(rows, CostColumns(origin=0, destination=1, cost_per_mile=2, distance=3))
        assert matrix.unit_cost("A", "X") == pytest.approx(250.0)

    def test_cwt_cost(self):
        rows = [["Origin", "Destination", "CWT", "Weight"], ["A", "X", 30, 500]]
        matrix = map_cost_aoa(rows, CostColumns(origin=0, destination=1, cost_per_cwt=2, weight=3))
        assert matrix.unit_cost("A", "X") == pytest.approx(150.0)

    def test_falls_back_when_direct_cost_missing(self):
        rows = [
            ["Origin", "Destination", "Cost", "Per Mile", "Miles"],
            ["A", "X", "n/a", 2, 10],
            ["A", "Y", "$1,250", 2, 10],
        ]
        mapping = CostColumns(origin=0, destination=1, cost=2, cost_per_mile=3, distance=4)
        matrix = map_cost_aoa(rows, mapping)
        assert matrix.unit_cost("A", "X") == pytest.approx(20.0)
        assert matrix.unit_cost("A", "Y") == pytest.approx(1250.0)

    def test_skips_unusable_rows(self):
        rows = [
            ["Origin", "Destination", "Cost"],
            ["", "X", 1],
            ["A", "", 1],
            ["A", "X", "free"],
            ["A", "Y", -2],
            ["A", "Z", 4],
        ]
        stats = RowStats()
        matrix = map_cost_aoa(rows, COST_MAPPING, stats)

        assert matrix.cols == ["Z"]
        assert stats.rows_used == 1
        assert stats.reasons == {
            "empty_origin": 1,
            "empty_destination": 1,
            "no_computable_cost": 1,
            "negative_cost": 1,
        }
        assert stats.to_dict()["code"] == "row_skipped"

    def test_mapping_without_cost_method(self, cost_rows):
        with pytest.raises(MappingInvalidError) as excinfo:
            map_cost_aoa(cost_rows, CostColumns(origin=0, destination=1))
        assert any("Must specify either direct cost" in e for e in excinfo.value.errors)

    def test_matrix_is_read_only(self, cost_rows):
        matrix = map_cost_aoa(cost_rows, COST_MAPPING)
        with pytest.raises(ValueError):
            matrix.cost[0, 0] = 1.0

    def test_copy_and_frame(self, cost_rows):
        matrix = map_cost_aoa(cost_rows, COST_MAPPING)
        clone = matrix.copy()
        assert clone.cost.flags.writeable is False
        assert clone.cost is not matrix.cost

        frame = matrix.to_frame()
        assert list(frame.index) == ["A", "B"]
        assert frame.loc["B", "Y"] == 3.0
        assert matrix.finite_origins("X") == ["A"]


def test_map_cost_matrix_wide():
    rows = [
        [None, "X", "Y"],
        ["A", 1, "n/a"],
        ["B", 2, 3],
        ["", 9, 9],
    ]
    stats = RowStats()
    matrix = map_cost_matrix_wide(rows, stats)

    assert matrix.rows == ["A", "B"]
    assert matrix.cols == ["X", "Y"]
    assert math.isinf(matrix.unit_cost("A", "Y"))
    assert matrix.unit_cost("B", "Y") == 3.0
    assert stats.rows_skipped == 1


# ============================================================================
# CAPACITY
# ============================================================================

class TestMapCapacity:

    def test_utilization_only_applied_within_unit_interval(self):
        rows = [
            ["Facility", "Capacity", "Utilization"],
            ["DC1", 1000, 1.2],
            ["DC2", 1000, 0.8],
            ["DC3", 1000, 0],
            ["DC4", 1000, None],
        ]
        capacity = map_capacity_aoa(rows, CapacityColumns(facility=0, capacity=1, utilization=2))
        assert capacity == {"DC1": 1000.0, "DC2": 800.0, "DC3": 1000.0, "DC4": 1000.0}

    def test_last_row_wins(self):
        rows = [["Facility", "Capacity"], ["DC1", 500], ["DC1", 700]]
        assert map_capacity_aoa(rows, {"facility": 0, "capacity": 1}) == {"DC1": 700.0}

    def test_base_capacity_from(self):
        assert base_capacity_from({"DC1": 500.0, "DC2": 250.0}) == 750.0
        with pytest.raises(InsufficientInputError):
            base_capacity_from(None)


# ============================================================================
# SUGGESTION AND VALIDATION
# ============================================================================

def test_suggest_column_mapping_for_cost_sheet():
    suggestion = suggest_column_mapping(["Origin", "Destination", "Cost per mile", "Distance"])

    assert suggestion.cost == CostColumns(origin=0, destination=1, cost_per_mile=2, distance=3)
    assert suggestion.demand is None
    assert suggestion.capacity is None


def test_suggest_column_mapping_for_capacity_sheet():
    suggestion = suggest_column_mapping(["Warehouse", "Max Capacity", "Util %"])
    assert suggestion.capacity == CapacityColumns(facility=0, capacity=1, utilization=2)


def test_validate_mapping_reports_every_problem():
    errors = validate_mapping(["Destination"], {"destination": 0, "demand": 3, "year": 7}, "demand")
    assert errors == ["Invalid demand column", "Invalid year column"]
    assert validate_mapping(["Destination", "Demand"], DemandColumns(0, 1), "demand") == []
