"""
Reporting Module

Pure reductions over capacity plans and network solutions: summary metrics,
recommendation strings, pandas frames, and the results workbook.

Key Functions:
- summarize_capacity_plan: peak, facility count, utilization, investment per unit
- build_capacity_analysis: CapacityAnalysisResult for one scenario
- facility_metrics / assignments_to_frame / yearly_results_to_frame: frames
- build_optimization_result: OptimizationResult across solved years
- write_results_workbook: Excel output
"""

import pandas as pd
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from .config import (
    ActionType,
    DestinationStatus,
    SolveStatus,
)
from .models import (
    CapacityAnalysisResult,
    CapacityMap,
    CapacityPlan,
    CapacitySummary,
    NetworkSolution,
    OptimizationResult,
    YearlyCapacityResult,
)
from .utils import (
    clamp,
    format_currency,
    format_number,
    format_percentage,
    safe_divide,
)


# ============================================================================
# CAPACITY PLAN SUMMARY
# ============================================================================

def summarize_capacity_plan(
        yearly_results: List[YearlyCapacityResult],
        total_investment: float
) -> CapacitySummary:
    """
    Reduce yearly results to summary metrics.

    investment_per_unit is total investment over peak required capacity,
    defined as 0 when the peak is 0.
    """
    if not yearly_results:
        return CapacitySummary(0.0, 0, 0.0, 0.0)

    peak = max(r.required_capacity for r in yearly_results)
    recommended = sum(
        1 for r in yearly_results for a in r.recommended_facilities
        if a.type != ActionType.EXISTING
    )
    average_utilization = sum(r.utilization_rate for r in yearly_results) / len(yearly_results)

    return CapacitySummary(
        peak_capacity_required=peak,
        total_facilities_recommended=recommended,
        average_utilization=average_utilization,
        investment_per_unit=safe_divide(total_investment, peak, default=0.0),
    )


def build_capacity_recommendations(
        yearly_results: List[YearlyCapacityResult],
        summary: CapacitySummary,
        utilization_target: float
) -> List[str]:
    """Human-readable lines derived only from the numbers passed in."""
    lines = []

    for result in yearly_results:
        for action in result.recommended_facilities:
            if action.type == ActionType.EXPANSION:
                lines.append(
                    f"{result.year}: expand {action.name} by {format_number(action.capacity_units)} units "
                    f"({format_number(action.square_feet)} sq ft, {format_currency(action.estimated_cost)})"
                )
            elif action.type == ActionType.NEW:
                lines.append(
                    f"{result.year}: open {action.name} with {format_number(action.capacity_units)} units "
                    f"({format_number(action.square_feet)} sq ft, {format_currency(action.estimated_cost)})"
                )
            else:
                lines.append(
                    f"{result.year}: bring {action.name} online as scheduled "
                    f"({format_number(action.capacity_units)} units, {format_currency(action.estimated_cost)})"
                )
        for name in result.closed_facilities:
            lines.append(f"{result.year}: {name} leaves the network as scheduled")

    if summary.total_facilities_recommended == 0:
        lines.append("Current capacity covers projected demand; no expansion or new facility is needed")

    if summary.average_utilization > utilization_target:
        lines.append(
            f"Average utilization {format_percentage(summary.average_utilization)} exceeds the "
            f"{format_percentage(utilization_target)} target"
        )
    elif summary.average_utilization < utilization_target * 0.8:
        lines.append(
            f"Average utilization {format_percentage(summary.average_utilization)} is well below the "
            f"{format_percentage(utilization_target)} target; consider consolidating capacity"
        )

    lines.append(
        f"Peak requirement {format_number(summary.peak_capacity_required)} units; "
        f"investment {format_currency(summary.investment_per_unit, decimals=2)} per unit of peak capacity"
    )
    return lines


def build_capacity_analysis(
        plan: CapacityPlan,
        scenario_id: str,
        base_year: int,
        project_duration_years: int,
        utilization_target: float,
        analysis_date: Optional[str] = None
) -> CapacityAnalysisResult:
    """Wrap a CapacityPlan into the CapacityAnalysisResult handed to persistence."""
    summary = summarize_capacity_plan(plan.yearly_results, plan.total_investment)
    return CapacityAnalysisResult(
        scenario_id=scenario_id,
        analysis_date=analysis_date or datetime.now().isoformat(timespec="seconds"),
        base_year=base_year,
        project_duration_years=project_duration_years,
        yearly_results=plan.yearly_results,
        total_investment_required=plan.total_investment,
        summary=summary,
        optimization_score=plan.optimization_score,
        recommendations=build_capacity_recommendations(plan.yearly_results, summary, utilization_target),
    )


# ============================================================================
# FRAMES
# ============================================================================

def yearly_results_to_frame(yearly_results: List[YearlyCapacityResult]) -> pd.DataFrame:
    rows = []
    for r in yearly_results:
        rows.append({
            "year": r.year,
            "year_number": r.year_number,
            "required_capacity": r.required_capacity,
            "available_capacity": r.available_capacity,
            "capacity_gap": r.capacity_gap,
            "utilization_rate": r.utilization_rate,
            "capacity_added": r.capacity_added,
            "investment": r.investment,
            "actions": len(r.recommended_facilities),
            "closed_facilities": ", ".join(r.closed_facilities),
        })
    return pd.DataFrame(rows)


def actions_to_frame(yearly_results: List[YearlyCapacityResult]) -> pd.DataFrame:
    rows = []
    for r in yearly_results:
        for a in r.recommended_facilities:
            row = a.to_dict()
            row["year"] = r.year
            rows.append(row)
    columns = ["year", "name", "type", "capacity_units", "square_feet", "estimated_cost", "facility_id"]
    return pd.DataFrame(rows, columns=columns)


def assignments_to_frame(solutions: List[NetworkSolution]) -> pd.DataFrame:
    rows = []
    for s in solutions:
        for a in s.assignments:
            row = a.to_dict()
            row["year"] = s.year
            rows.append(row)
    columns = ["year", "facility", "destination", "demand", "unit_cost", "cost"]
    return pd.DataFrame(rows, columns=columns)


def unassigned_to_frame(solutions: List[NetworkSolution]) -> pd.DataFrame:
    rows = []
    for s in solutions:
        for u in s.unassigned:
            row = u.to_dict()
            row["year"] = s.year
            rows.append(row)
    return pd.DataFrame(rows, columns=["year", "destination", "demand", "status"])


def facility_metrics(
        solution: NetworkSolution,
        capacity: Optional[CapacityMap] = None,
        fixed_costs: Optional[Dict[str, float]] = None
) -> pd.DataFrame:
    """
    Per-facility load, utilization and cost for one solution.

    Utilization is left empty for facilities without a capacity entry.
    """
    capacity = capacity or {}
    fixed_costs = fixed_costs or {}
    rows = []
    for facility in solution.open_facilities:
        served = [a for a in solution.assignments if a.facility == facility]
        load = sum(a.demand for a in served)
        cap = capacity.get(facility)
        rows.append({
            "year": solution.year,
            "facility": facility,
            "capacity": cap,
            "assigned_demand": load,
            "utilization": safe_divide(load, cap, default=0.0) if cap is not None else None,
            "destinations": len(served),
            "transport_cost": sum(a.cost for a in served),
            "fixed_cost": fixed_costs.get(facility, 0.0),
        })
    columns = ["year", "facility", "capacity", "assigned_demand", "utilization",
               "destinations", "transport_cost", "fixed_cost"]
    return pd.DataFrame(rows, columns=columns)


# ============================================================================
# OPTIMIZATION RESULT
# ============================================================================

_STATUS_SEVERITY = [
    SolveStatus.CANCELLED.value,
    SolveStatus.TIME_LIMIT_REACHED.value,
    SolveStatus.INFEASIBLE.value,
    SolveStatus.FEASIBLE.value,
    SolveStatus.OPTIMAL.value,
    SolveStatus.NO_DEMAND.value,
]


def combined_status(solutions: List[NetworkSolution]) -> str:
    """Most severe status across solved years."""
    if not solutions:
        return SolveStatus.NO_DEMAND.value
    statuses = {s.status for s in solutions}
    for status in _STATUS_SEVERITY:
        if status in statuses:
            return status
    return sorted(statuses)[0]


def build_optimization_recommendations(
        solutions: List[NetworkSolution],
        cost_savings: float,
        baseline_cost: Optional[float]
) -> List[str]:
    lines = []
    for s in solutions:
        label = f"{s.year}: " if s.year is not None else ""
        lines.append(
            f"{label}serve demand from {len(s.open_facilities)} facilities "
            f"({', '.join(s.open_facilities) or 'none'}) at {format_currency(s.total_cost)}"
        )
        no_route = s.unassigned_with_status(DestinationStatus.NO_FEASIBLE_ROUTE.value)
        if no_route:
            names = ", ".join(u.destination for u in no_route[:10])
            lines.append(f"{label}{len(no_route)} destinations have no feasible route: {names}")
        idle = s.unassigned_with_status(DestinationStatus.NO_OPEN_FACILITY.value)
        if idle:
            names = ", ".join(u.destination for u in idle[:10])
            lines.append(f"{label}{len(idle)} zero-demand destinations are only reachable from closed facilities: {names}")
        short = s.unassigned_with_status(DestinationStatus.INSUFFICIENT_CAPACITY.value)
        if short:
            units = sum(u.demand for u in short)
            lines.append(f"{label}{format_number(units)} units unplaced for lack of capacity; add capacity")
        if s.status in (SolveStatus.TIME_LIMIT_REACHED.value, SolveStatus.CANCELLED.value):
            lines.append(
                f"{label}search stopped early ({s.status}); best known cost {format_currency(s.total_cost)}, "
                f"gap {format_percentage(s.optimality_gap or 0.0)}"
            )

    if baseline_cost is not None:
        if cost_savings > 0:
            lines.append(f"Saves {format_currency(cost_savings)} against the baseline network")
        else:
            lines.append(f"Costs {format_currency(-cost_savings)} more than the baseline network")
    return lines


def build_optimization_result(
        solutions: List[NetworkSolution],
        baseline_cost: Optional[float] = None,
        capacity_analysis: Optional[CapacityAnalysisResult] = None
) -> OptimizationResult:
    """
    Aggregate solved years into an OptimizationResult.

    efficiency_score is 100 x (sum of lower bounds / total cost), i.e. one
    minus the overall optimality gap, on a 0-100 scale.
    """
    total_cost = float(sum(s.total_cost for s in solutions))
    lower_bound = float(sum(s.lower_bound or 0.0 for s in solutions))
    cost_savings = float(baseline_cost - total_cost) if baseline_cost is not None else 0.0
    efficiency = 100.0 * clamp(safe_divide(lower_bound, total_cost, default=1.0), 0.0, 1.0)

    results_data = {
        "solutions": [s.to_dict() for s in solutions],
        "capacity_analysis": capacity_analysis.to_dict() if capacity_analysis is not None else None,
        "baseline_cost": baseline_cost,
    }

    return OptimizationResult(
        total_cost=total_cost,
        cost_savings=cost_savings,
        efficiency_score=round(efficiency, 2),
        results_data=results_data,
        recommendations=build_optimization_recommendations(solutions, cost_savings, baseline_cost),
        solver_used=solutions[0].solver_used if solutions else "",
        status=combined_status(solutions),
    )


# ============================================================================
# WORKBOOK OUTPUT
# ============================================================================

def write_results_workbook(
        path: Path,
        analysis: Optional[CapacityAnalysisResult],
        solutions: List[NetworkSolution],
        result: Optional[OptimizationResult] = None,
        capacity: Optional[CapacityMap] = None,
        fixed_costs: Optional[Dict[str, float]] = None
) -> Path:
    """Write summary, capacity plan and network sheets to one Excel file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    summary_rows = []
    if analysis is not None:
        summary_rows += [
            {"metric": "scenario_id", "value": analysis.scenario_id},
            {"metric": "analysis_date", "value": analysis.analysis_date},
            {"metric": "total_investment_required", "value": analysis.total_investment_required},
            {"metric": "optimization_score", "value": analysis.optimization_score},
        ]
        summary_rows += [{"metric": k, "value": v} for k, v in analysis.summary.to_dict().items()]
    if result is not None:
        summary_rows += [
            {"metric": "total_cost", "value": result.total_cost},
            {"metric": "cost_savings", "value": result.cost_savings},
            {"metric": "efficiency_score", "value": result.efficiency_score},
            {"metric": "solver_used", "value": result.solver_used},
            {"metric": "status", "value": result.status},
        ]

    recommendations = []
    if analysis is not None:
        recommendations += analysis.recommendations
    if result is not None:
        recommendations += result.recommendations

    facility_frames = [facility_metrics(s, capacity, fixed_costs) for s in solutions]

    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        pd.DataFrame(summary_rows, columns=["metric", "value"]).to_excel(writer, sheet_name="summary", index=False)
        if analysis is not None:
            yearly_results_to_frame(analysis.yearly_results).to_excel(writer, sheet_name="capacity_plan", index=False)
            actions_to_frame(analysis.yearly_results).to_excel(writer, sheet_name="capacity_actions", index=False)
        assignments_to_frame(solutions).to_excel(writer, sheet_name="assignments", index=False)
        if facility_frames:
            pd.concat(facility_frames, ignore_index=True).to_excel(writer, sheet_name="facilities", index=False)
        unassigned_to_frame(solutions).to_excel(writer, sheet_name="unassigned", index=False)
        pd.DataFrame({"recommendation": recommendations}).to_excel(writer, sheet_name="recommendations", index=False)

    return path
