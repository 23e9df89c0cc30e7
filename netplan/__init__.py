"""
Network Planning Package

Capacity planning and facility/transport assignment for a distribution network.
"""

from .config import ActionType, SolveStatus, RunSettings
from .data_mapper import map_capacity_aoa, map_cost_aoa, map_demand_aoa, suggest_column_mapping
from .capacity_planner import CapacityPlanningParams, plan_capacity
from .optimizer import NetworkProblem, SearchBudget, optimize_network_by_year, solve_network_optimization
from .reporting import build_capacity_analysis, build_optimization_result
from .pipeline import run_scenario, scenario_from_workbook

__version__ = "1.0.0"

__all__ = [
    "ActionType",
    "SolveStatus",
    "RunSettings",
    "map_demand_aoa",
    "map_cost_aoa",
    "map_capacity_aoa",
    "suggest_column_mapping",
    "CapacityPlanningParams",
    "plan_capacity",
    "NetworkProblem",
    "SearchBudget",
    "solve_network_optimization",
    "optimize_network_by_year",
    "build_capacity_analysis",
    "build_optimization_result",
    "run_scenario",
    "scenario_from_workbook",
]
