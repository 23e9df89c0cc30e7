"""
Capacity Planner Module

Year-by-year capacity plan: projects required capacity from growth forecasts,
compares it with available capacity and recommends facility actions
(forced openings, expansions of existing facilities, new facilities).

Key Rules:
    - Year 0 is the base year: required = available = base capacity, no actions
    - An absolute forecast overrides the growth-rate projection for its year
    - Years without a forecast grow at the default rate
    - Expansions are tried cheapest cost_per_unit first, each facility capped at
      a share of its capacity over the whole horizon
    - Whatever remains is covered by one new facility rounded up to whole
      thousands of units
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional

from .config import ActionType, OptimizationConstants, PlannerDefaults
from .errors import InsufficientInputError
from .models import (
    CapacityPlan,
    Facility,
    FacilityAction,
    GrowthForecast,
    YearlyCapacityResult,
)
from .utils import clamp, round_up_to, safe_divide

logger = logging.getLogger(__name__)


@dataclass
class CapacityPlanningParams:
    base_capacity: float
    growth_forecasts: List[GrowthForecast] = field(default_factory=list)
    facilities: List[Facility] = field(default_factory=list)
    project_duration_years: int = 5
    utilization_target: float = PlannerDefaults.DEFAULT_UTILIZATION_TARGET
    base_year: Optional[int] = None
    lease_term_years: int = PlannerDefaults.LEASE_TERM_YEARS


def normalize_utilization_target(value: float) -> float:
    """
    Read a utilization target as a fraction in (0, 1].

    Values in (1, 100] are treated as percentages.

    Raises:
        ValueError: If the value cannot be read as a valid target
    """
    if value is None:
        return PlannerDefaults.DEFAULT_UTILIZATION_TARGET
    value = float(value)
    if 1 < value <= 100:
        value = value / 100.0
    if not 0 < value <= 1:
        raise ValueError(f"utilization_target must be in (0, 1] or a percentage in (1, 100], got {value}")
    return value


def reference_cost_per_unit(lease_term_years: int) -> float:
    """Cost per unit of a new facility; the yardstick for investment efficiency."""
    return PlannerDefaults.SQFT_PER_UNIT * PlannerDefaults.NEW_FACILITY_LEASE_RATE_PER_SQFT * lease_term_years


def _forced_opening_action(facility: Facility, lease_term_years: int) -> FacilityAction:
    lease_rate = facility.lease_rate_per_sqft
    if lease_rate is None:
        lease_rate = PlannerDefaults.DEFAULT_LEASE_RATE_PER_SQFT
    square_feet = float(facility.square_feet or 0.0)
    return FacilityAction(
        name=facility.name,
        type=ActionType.EXISTING,
        capacity_units=float(facility.capacity_units),
        square_feet=square_feet,
        estimated_cost=square_feet * lease_rate * lease_term_years,
        facility_id=facility.id,
    )


def _expansion_action(facility: Facility, units: float, lease_term_years: int) -> FacilityAction:
    if facility.square_feet and facility.capacity_units > 0:
        square_feet = units / facility.capacity_units * facility.square_feet
    else:
        square_feet = units * PlannerDefaults.SQFT_PER_UNIT

    lease_rate = facility.lease_rate_per_sqft
    if lease_rate is None:
        lease_rate = PlannerDefaults.DEFAULT_LEASE_RATE_PER_SQFT

    return FacilityAction(
        name=facility.name,
        type=ActionType.EXPANSION,
        capacity_units=units,
        square_feet=square_feet,
        estimated_cost=square_feet * lease_rate * lease_term_years,
        facility_id=facility.id,
    )


def _new_facility_action(shortfall: float, year: int, lease_term_years: int) -> FacilityAction:
    units = round_up_to(shortfall, PlannerDefaults.NEW_FACILITY_ROUNDING_UNITS)
    square_feet = units * PlannerDefaults.SQFT_PER_UNIT
    return FacilityAction(
        name=f"New Facility {year}",
        type=ActionType.NEW,
        capacity_units=units,
        square_feet=square_feet,
        estimated_cost=square_feet * PlannerDefaults.NEW_FACILITY_LEASE_RATE_PER_SQFT * lease_term_years,
    )


def _project_required(previous: float, forecast: Optional[GrowthForecast]) -> float:
    if forecast is not None and forecast.absolute_demand is not None:
        return float(forecast.absolute_demand)
    rate = PlannerDefaults.DEFAULT_GROWTH_RATE_PCT
    if forecast is not None and forecast.growth_rate is not None:
        rate = float(forecast.growth_rate)
    return previous * (1 + rate / 100.0)


def _close_shortfall(
        shortfall: float,
        year: int,
        network: List[Facility],
        expanded: Dict[str, float],
        lease_term_years: int
) -> List[FacilityAction]:
    """Expansions first (cheapest cost_per_unit, then name), then one new facility."""
    eps = OptimizationConstants.EPSILON
    actions: List[FacilityAction] = []
    remaining = shortfall

    candidates = sorted(
        (f for f in network if f.allow_expansion and f.capacity_units > 0),
        key=lambda f: (f.cost_per_unit, f.name)
    )
    for facility in candidates:
        if remaining <= eps:
            break
        room = PlannerDefaults.MAX_EXPANSION_SHARE * facility.capacity_units - expanded.get(facility.name, 0.0)
        if room <= eps:
            continue
        units = min(room, remaining)
        actions.append(_expansion_action(facility, units, lease_term_years))
        expanded[facility.name] = expanded.get(facility.name, 0.0) + units
        remaining -= units

    if remaining > eps:
        actions.append(_new_facility_action(remaining, year, lease_term_years))

    return actions


def score_plan(
        yearly_results: List[YearlyCapacityResult],
        total_investment: float,
        utilization_target: float,
        lease_term_years: int = PlannerDefaults.LEASE_TERM_YEARS
) -> float:
    """
    Composite score in [0, 100].

    Utilization adherence (closeness of mean utilization to target) and
    investment efficiency (cost per unit added against a new facility's cost
    per unit) are weighted 70/30.
    """
    if not yearly_results:
        return 0.0

    average_utilization = sum(r.utilization_rate for r in yearly_results) / len(yearly_results)
    adherence = clamp(1 - abs(average_utilization - utilization_target) / utilization_target, 0.0, 1.0)

    capacity_added = sum(r.capacity_added for r in yearly_results)
    investment_per_unit = safe_divide(total_investment, capacity_added, default=0.0)
    efficiency = 1.0 / (1.0 + investment_per_unit / reference_cost_per_unit(lease_term_years))

    score = 100.0 * (
        PlannerDefaults.UTILIZATION_WEIGHT * adherence
        + PlannerDefaults.INVESTMENT_WEIGHT * efficiency
    )
    return round(clamp(score, 0.0, 100.0), 2)


def plan_capacity(params: CapacityPlanningParams) -> CapacityPlan:
    """
    Build the year-by-year capacity plan.

    Args:
        params: Base capacity, forecasts, facility pool and horizon

    Returns:
        CapacityPlan with one YearlyCapacityResult per year (base year included)

    Raises:
        InsufficientInputError: If base capacity is zero and no facilities are supplied
        ValueError: If numeric parameters are out of range
    """
    if params.base_capacity is None or params.base_capacity < 0:
        raise ValueError(f"base_capacity must be non-negative, got {params.base_capacity}")
    if params.base_capacity == 0 and not params.facilities:
        raise InsufficientInputError(
            "Cannot plan capacity: base capacity is zero and no facilities were supplied",
            details={"base_capacity": params.base_capacity, "facilities": 0},
        )
    if params.project_duration_years < 0:
        raise ValueError(f"project_duration_years must be non-negative, got {params.project_duration_years}")
    if params.lease_term_years <= 0:
        raise ValueError(f"lease_term_years must be positive, got {params.lease_term_years}")

    target = normalize_utilization_target(params.utilization_target)
    base_year = params.base_year if params.base_year is not None else date.today().year
    lease_term = params.lease_term_years
    forecasts = {int(f.year_number): f for f in params.growth_forecasts}

    base = float(params.base_capacity)
    yearly_results = [YearlyCapacityResult(
        year=base_year,
        year_number=0,
        required_capacity=base,
        available_capacity=base,
        capacity_gap=0.0,
        utilization_rate=safe_divide(base, base, default=0.0),
    )]

    facilities = sorted(params.facilities, key=lambda f: f.name)
    network = [f for f in facilities if not f.is_forced or f.is_active_in(base_year, base_year)]
    expanded: Dict[str, float] = {}

    required = base
    available = base

    for year_number in range(1, params.project_duration_years + 1):
        year = base_year + year_number
        required = _project_required(required, forecasts.get(year_number))
        actions: List[FacilityAction] = []
        closed: List[str] = []

        for facility in facilities:
            if facility.is_forced and facility.opens_in(year, base_year):
                actions.append(_forced_opening_action(facility, lease_term))
                network.append(facility)
                available += facility.capacity_units

        for facility in list(network):
            if facility.is_forced and facility.closes_after(year):
                network.remove(facility)
                closed.append(facility.name)
                available -= facility.capacity_units
        available = max(available, 0.0)

        gap = required - available
        utilization = safe_divide(required, available, default=float("inf") if required > 0 else 0.0)

        if gap > OptimizationConstants.EPSILON or utilization > target:
            shortfall = required / target - available
            growth = _close_shortfall(shortfall, year, network, expanded, lease_term)
            actions.extend(growth)
            available += sum(a.capacity_units for a in growth)

        result = YearlyCapacityResult(
            year=year,
            year_number=year_number,
            required_capacity=required,
            available_capacity=available,
            capacity_gap=gap,
            utilization_rate=safe_divide(required, available, default=0.0),
            recommended_facilities=actions,
            closed_facilities=closed,
        )
        yearly_results.append(result)
        logger.debug(
            "year %d: required=%.1f available=%.1f gap=%.1f actions=%d",
            year, required, available, gap, len(actions)
        )

    total_investment = float(sum(r.investment for r in yearly_results))
    score = score_plan(yearly_results, total_investment, target, lease_term)

    logger.info(
        "capacity plan: %d years, %d actions, investment %.0f, score %.1f",
        len(yearly_results) - 1,
        sum(len(r.recommended_facilities) for r in yearly_results),
        total_investment,
        score,
    )
    return CapacityPlan(yearly_results=yearly_results, total_investment=total_investment, optimization_score=score)
