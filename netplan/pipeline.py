"""
Scenario pipeline: one run of capacity planning, network optimization and
result aggregation for a single scenario.
"""

import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

import pandas as pd

from .capacity_planner import CapacityPlanningParams, normalize_utilization_target, plan_capacity
from .config import RunSettings, parse_solver
from .data_mapper import (
    RowStats,
    map_capacity_aoa,
    map_cost_aoa,
    map_demand_aoa,
    suggest_column_mapping,
)
from .errors import MappingInvalidError
from .io_loader import load_facilities, load_growth_forecasts, params_to_dict, parse_bool
from .market import MarketRateBook
from .models import (
    CapacityAnalysisResult,
    CapacityMap,
    CostMatrix,
    DemandData,
    Facility,
    GrowthForecast,
    NetworkSolution,
    OptimizationResult,
)
from .optimizer import SearchBudget, optimize_network_by_year
from .reporting import build_capacity_analysis, build_optimization_result
from .validators import validate_inputs

logger = logging.getLogger(__name__)


@dataclass
class ScenarioInputs:
    scenario_id: str
    demand: DemandData
    cost_matrix: CostMatrix
    capacity: CapacityMap = field(default_factory=dict)
    facilities: List[Facility] = field(default_factory=list)
    growth_forecasts: List[GrowthForecast] = field(default_factory=list)
    settings: RunSettings = field(default_factory=RunSettings)
    base_capacity: Optional[float] = None
    row_stats: Dict[str, RowStats] = field(default_factory=dict)

    def resolved_base_capacity(self) -> float:
        """
        Explicit base capacity, else mapped capacity, else facility capacity.

        Forced facilities outside their window in the base year are left out
        either way; the planner adds them in their opening year.
        """
        if self.base_capacity is not None:
            return float(self.base_capacity)
        base_year = self.settings.base_year
        inactive = {
            f.name for f in self.facilities
            if f.is_forced and not f.is_active_in(base_year, base_year)
        }
        if self.capacity:
            return float(sum(v for name, v in self.capacity.items() if name not in inactive))
        return float(sum(f.capacity_units for f in self.facilities if f.name not in inactive))


@dataclass
class ScenarioOutcome:
    scenario_id: str
    capacity_analysis: CapacityAnalysisResult
    solutions: List[NetworkSolution]
    optimization_result: OptimizationResult
    row_stats: Dict[str, RowStats] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario_id": self.scenario_id,
            "capacity_analysis": self.capacity_analysis.to_dict(),
            "optimization_result": self.optimization_result.to_dict(),
            "row_stats": {name: stats.to_dict() for name, stats in self.row_stats.items()},
        }


# ============================================================================
# SETTINGS
# ============================================================================

def run_settings_from_dict(values: Dict[str, Any]) -> RunSettings:
    """
    Build RunSettings from a key/value dict, ignoring unknown keys.

    ``facility_lease_years`` is accepted for ``lease_term_years``.
    """
    values = {k: v for k, v in values.items() if v is not None and not (isinstance(v, float) and pd.isna(v))}
    if "facility_lease_years" in values and "lease_term_years" not in values:
        values["lease_term_years"] = values["facility_lease_years"]

    settings = RunSettings()
    casts = {
        "scenario_id": str,
        "base_year": int,
        "project_duration_years": int,
        "utilization_target": float,
        "lease_term_years": int,
        "split_sourcing": parse_bool,
        "time_limit_seconds": float,
        "baseline_transport_cost": float,
    }
    for f in fields(RunSettings):
        if f.name not in values:
            continue
        if f.name == "solver":
            settings.solver = parse_solver(values["solver"]).value
        else:
            setattr(settings, f.name, casts[f.name](values[f.name]))
    return settings


# ============================================================================
# INPUT ASSEMBLY
# ============================================================================

def _mapping_for(rows, kind: str, mapping):
    if mapping is not None:
        return mapping
    suggestion = suggest_column_mapping(rows[0] if rows else [])
    chosen = getattr(suggestion, kind)
    if chosen is None:
        raise MappingInvalidError([f"No {kind} columns recognized in header row"], kind=kind)
    return chosen


def scenario_from_workbook(
        dfs: Dict[str, Any],
        scenario_id: Optional[str] = None,
        demand_mapping=None,
        cost_mapping=None,
        capacity_mapping=None
) -> ScenarioInputs:
    """
    Build ScenarioInputs from a loaded planning workbook.

    Raw sheets use the given mappings, or the suggested ones when omitted.
    """
    validate_inputs(dfs)
    settings_dict = params_to_dict(dfs["run_settings"])
    settings = run_settings_from_dict(settings_dict)
    if scenario_id:
        settings.scenario_id = scenario_id

    stats = {"demand": RowStats(), "costs": RowStats(), "capacity": RowStats()}
    demand_rows = dfs["demand"]
    cost_rows = dfs["costs"]
    demand = map_demand_aoa(demand_rows, _mapping_for(demand_rows, "demand", demand_mapping), stats["demand"])
    cost_matrix = map_cost_aoa(cost_rows, _mapping_for(cost_rows, "cost", cost_mapping), stats["costs"])

    capacity: CapacityMap = {}
    capacity_rows = dfs.get("capacity")
    if capacity_rows:
        capacity = map_capacity_aoa(
            capacity_rows, _mapping_for(capacity_rows, "capacity", capacity_mapping), stats["capacity"]
        )

    base_capacity = settings_dict.get("base_capacity")
    if base_capacity is not None and pd.isna(base_capacity):
        base_capacity = None

    return ScenarioInputs(
        scenario_id=settings.scenario_id,
        demand=demand,
        cost_matrix=cost_matrix,
        capacity=capacity,
        facilities=load_facilities(dfs["facilities"]),
        growth_forecasts=load_growth_forecasts(dfs["growth_forecasts"]),
        settings=settings,
        base_capacity=float(base_capacity) if base_capacity is not None else None,
        row_stats=stats,
    )


# ============================================================================
# RUN
# ============================================================================

def run_scenario(
        inputs: ScenarioInputs,
        budget: Optional[SearchBudget] = None,
        market: Optional[MarketRateBook] = None
) -> ScenarioOutcome:
    """
    Plan capacity, optimize the network per year and aggregate the results.

    Raises:
        InsufficientInputError: If there is neither base capacity nor facilities
    """
    settings = inputs.settings
    facilities = inputs.facilities
    if market is not None:
        facilities = market.fill_facility_rates(facilities)

    params = CapacityPlanningParams(
        base_capacity=inputs.resolved_base_capacity(),
        growth_forecasts=inputs.growth_forecasts,
        facilities=facilities,
        project_duration_years=settings.project_duration_years,
        utilization_target=settings.utilization_target,
        base_year=settings.base_year,
        lease_term_years=settings.lease_term_years,
    )
    plan = plan_capacity(params)
    analysis = build_capacity_analysis(
        plan,
        scenario_id=inputs.scenario_id,
        base_year=settings.base_year,
        project_duration_years=settings.project_duration_years,
        utilization_target=normalize_utilization_target(params.utilization_target),
    )

    solutions = optimize_network_by_year(
        inputs.cost_matrix,
        inputs.demand,
        capacity=inputs.capacity,
        facilities=facilities,
        solver=settings.solver,
        split_sourcing=settings.split_sourcing,
        time_limit_seconds=settings.time_limit_seconds,
        budget=budget,
    )

    baseline = settings.baseline_transport_cost or None
    result = build_optimization_result(solutions, baseline_cost=baseline, capacity_analysis=analysis)
    logger.info(
        "scenario %s: investment %.0f, network cost %.2f, status %s",
        inputs.scenario_id, analysis.total_investment_required, result.total_cost, result.status
    )

    return ScenarioOutcome(
        scenario_id=inputs.scenario_id,
        capacity_analysis=analysis,
        solutions=solutions,
        optimization_result=result,
        row_stats=inputs.row_stats,
    )


def run_scenario_payload(inputs: ScenarioInputs, budget: SearchBudget) -> Dict[str, Any]:
    """Runner entry point: run a scenario and return its JSON-ready payload."""
    return run_scenario(inputs, budget=budget).to_dict()
