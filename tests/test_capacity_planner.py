"""Tests for year-by-year capacity planning."""

import pytest

from netplan.capacity_planner import (
    CapacityPlanningParams,
    normalize_utilization_target,
    plan_capacity,
)
from netplan.config import ActionType
from netplan.errors import InsufficientInputError
from netplan.models import Facility, GrowthForecast


def _plan(base=10000.0, forecasts=None, facilities=None, years=1, target=0.85):
    return plan_capacity(CapacityPlanningParams(
        base_capacity=base,
        growth_forecasts=forecasts or [],
        facilities=facilities or [],
        project_duration_years=years,
        utilization_target=target,
        base_year=2025,
    ))


def test_base_year_is_first_result():
    plan = _plan(years=0)
    assert len(plan.yearly_results) == 1
    base = plan.yearly_results[0]
    assert (base.year, base.year_number) == (2025, 0)
    assert base.required_capacity == base.available_capacity == 10000.0
    assert base.recommended_facilities == []


def test_growth_rate_projection_and_gap(ten_percent_forecast):
    plan = _plan(forecasts=ten_percent_forecast)
    year = plan.yearly_results[1]

    assert year.year == 2026
    assert year.required_capacity == pytest.approx(11000.0)
    assert year.capacity_gap == pytest.approx(1000.0)
    assert sum(a.capacity_units for a in year.recommended_facilities) >= 1000.0


def test_absolute_demand_overrides_growth_rate():
    forecasts = [GrowthForecast(year_number=1, growth_rate=50.0, absolute_demand=12345.0)]
    plan = _plan(forecasts=forecasts)
    assert plan.yearly_results[1].required_capacity == 12345.0


def test_missing_forecast_uses_default_growth():
    plan = _plan(years=2)
    assert plan.yearly_results[1].required_capacity == pytest.approx(10500.0)
    assert plan.yearly_results[2].required_capacity == pytest.approx(11025.0)


def test_total_investment_is_sum_of_action_costs(ten_percent_forecast):
    forecasts = ten_percent_forecast + [GrowthForecast(year_number=2, growth_rate=20.0)]
    plan = _plan(forecasts=forecasts, years=3)

    action_costs = sum(
        a.estimated_cost for r in plan.yearly_results for a in r.recommended_facilities
    )
    assert plan.total_investment == pytest.approx(action_costs)
    assert plan.total_investment > 0


def test_zero_base_and_no_facilities_is_insufficient_input():
    with pytest.raises(InsufficientInputError) as excinfo:
        _plan(base=0.0)
    assert excinfo.value.code.value == "insufficient_input"


def test_new_facility_rounded_to_thousands(ten_percent_forecast):
    plan = _plan(forecasts=ten_percent_forecast)
    actions = plan.yearly_results[1].recommended_facilities

    assert len(actions) == 1
    action = actions[0]
    assert action.type == ActionType.NEW
    assert action.name == "New Facility 2026"
    # 11000 / 0.85 - 10000 = 2941 units short
    assert action.capacity_units == 3000.0
    assert action.square_feet == 30000.0
    assert action.estimated_cost == pytest.approx(30000.0 * 12.0 * 7)


def test_expansion_preferred_over_new_facility(ten_percent_forecast, expandable_facility):
    plan = _plan(forecasts=ten_percent_forecast, facilities=[expandable_facility], target=1.0)
    actions = plan.yearly_results[1].recommended_facilities

    assert [a.type for a in actions] == [ActionType.EXPANSION]
    assert actions[0].capacity_units == pytest.approx(1000.0)
    assert actions[0].square_feet == pytest.approx(10000.0)
    assert actions[0].estimated_cost == pytest.approx(10000.0 * 5.0 * 7)


def test_expansion_capped_at_half_of_capacity(ten_percent_forecast):
    small = Facility(name="DC2", capacity_units=1000, allow_expansion=True)
    plan = _plan(forecasts=ten_percent_forecast, facilities=[small], target=1.0)
    actions = plan.yearly_results[1].recommended_facilities

    assert [a.type for a in actions] == [ActionType.EXPANSION, ActionType.NEW]
    assert actions[0].capacity_units == pytest.approx(500.0)
    assert actions[1].capacity_units == 1000.0


def test_forced_facility_opens_in_its_start_year():
    forced = Facility(
        name="F1", capacity_units=5000, square_feet=50000,
        lease_rate_per_sqft=4.0, is_forced=True, force_start_year=2027,
    )
    forecasts = [GrowthForecast(year_number=1, growth_rate=0.0), GrowthForecast(year_number=2, growth_rate=0.0)]
    plan = _plan(forecasts=forecasts, facilities=[forced], years=2, target=1.0)

    assert plan.yearly_results[1].recommended_facilities == []
    year_2027 = plan.yearly_results[2]
    assert [a.type for a in year_2027.recommended_facilities] == [ActionType.EXISTING]
    assert year_2027.available_capacity == 15000.0
    assert year_2027.recommended_facilities[0].estimated_cost == pytest.approx(50000 * 4.0 * 7)


def test_forced_facility_leaves_after_its_end_year():
    forced = Facility(name="F2", capacity_units=2000, is_forced=True, force_end_year=2026)
    forecasts = [GrowthForecast(year_number=1, growth_rate=0.0), GrowthForecast(year_number=2, growth_rate=0.0)]
    plan = _plan(forecasts=forecasts, facilities=[forced], years=2, target=1.0)

    year_2027 = plan.yearly_results[2]
    assert year_2027.closed_facilities == ["F2"]
    assert year_2027.capacity_gap == pytest.approx(2000.0)
    assert year_2027.capacity_added >= 2000.0


def test_score_is_bounded(ten_percent_forecast):
    plan = _plan(forecasts=ten_percent_forecast, years=3)
    assert 0.0 <= plan.optimization_score <= 100.0


@pytest.mark.parametrize("value,expected", [(0.85, 0.85), (85, 0.85), (1, 1.0), (None, 0.85)])
def test_normalize_utilization_target(value, expected):
    assert normalize_utilization_target(value) == pytest.approx(expected)


@pytest.mark.parametrize("value", [0, -0.5, 150])
def test_normalize_utilization_target_rejects_out_of_range(value):
    with pytest.raises(ValueError):
        normalize_utilization_target(value)
