"""
Exact Network Optimization Module

CP-SAT model of the facility assignment problem, behind the same
NetworkSolver interface as the greedy heuristic.

Model:
    - open[f] boolean per candidate facility, forced facilities fixed to 1
    - single sourcing: x[f, d] boolean per finite route, one per destination
    - split sourcing: y[f, d] integer share of scaled demand per finite route
    - unserved[d] slack, so capacity shortfalls surface per destination
      instead of as infeasibility
    - capacity: assigned scaled demand <= scaled capacity * open[f]

Objective units are cost x COST_SCALE_FACTOR x DEMAND_SCALE_FACTOR. Unserved
penalties are sized so that serving a destination is always cheaper than
leaving it out:
    - single sourcing: one penalty per destination above the cost of any
      complete network
    - split sourcing: a per-destination shortfall flag carrying the total fixed
      cost, plus a per-unit penalty above any chain of route swaps

Results are rebuilt from the float inputs, so reported costs carry no rounding.
When the scaled model does not fit in safe integers the heuristic solves the
problem instead and the result is labelled accordingly.
"""

import logging
import time
from typing import Dict, List, Tuple

from ortools.sat.python import cp_model

from .config import (
    DestinationStatus,
    OptimizationConstants,
    SolverUsed,
    SolveStatus,
)
from .models import NetworkSolution, UnassignedDestination
from .optimizer import (
    INF,
    GreedyHeuristicSolver,
    NetworkProblem,
    NetworkSolver,
    SearchBudget,
    build_solution,
    place_zero_demand,
)

logger = logging.getLogger(__name__)

MAX_SAFE_INT = 2 ** 53


class CostScaleError(ValueError):
    """A scaled cost does not fit in the solver's integer range."""


def safe_int_cost(value: float, context: str = "") -> int:
    """Convert float to int with overflow check."""
    int_val = int(round(value))
    if abs(int_val) > MAX_SAFE_INT:
        raise CostScaleError(f"Cost overflow in {context}: {value:,.0f}")
    return int_val


STATUS_NAMES = {
    cp_model.OPTIMAL: "OPTIMAL",
    cp_model.FEASIBLE: "FEASIBLE",
    cp_model.INFEASIBLE: "INFEASIBLE",
    cp_model.MODEL_INVALID: "MODEL_INVALID",
    cp_model.UNKNOWN: "UNKNOWN",
}


class _CancelOnFlag(cp_model.CpSolverSolutionCallback):
    """Stops the search at the next incumbent once the budget is cancelled."""

    def __init__(self, budget: SearchBudget):
        super().__init__()
        self._budget = budget
        self.solutions = 0

    def on_solution_callback(self):
        self.solutions += 1
        if self._budget.cancelled:
            self.StopSearch()


class CpSatSolver(NetworkSolver):
    """OR-Tools CP-SAT strategy labelled ``solver_used="exact"``."""

    name = SolverUsed.EXACT.value

    def __init__(self, num_workers: int = OptimizationConstants.NUM_SOLVER_WORKERS):
        self.num_workers = num_workers

    def solve(self, problem: NetworkProblem, budget: SearchBudget) -> NetworkSolution:
        started = time.perf_counter()
        budget.start()

        forced = sorted(problem.forced)
        unassigned: List[UnassignedDestination] = []
        served: Dict[str, List[str]] = {}
        zero_demand: List[str] = []

        for destination in sorted(problem.demand):
            routable = problem.routable_facilities(destination)
            if not routable:
                unassigned.append(UnassignedDestination(
                    destination, problem.demand[destination], DestinationStatus.NO_FEASIBLE_ROUTE.value))
            elif problem.demand[destination] <= 0:
                zero_demand.append(destination)
            else:
                served[destination] = routable

        if not problem.demand:
            return build_solution(problem, {}, forced, unassigned,
                                  SolveStatus.NO_DEMAND.value, self.name, 0, started)

        if budget.expired():
            for destination in served:
                unassigned.append(UnassignedDestination(destination, problem.demand[destination], budget.reason))
            pieces: Dict[str, Dict[str, float]] = {}
            place_zero_demand(problem, pieces, forced, zero_demand, unassigned)
            return build_solution(problem, pieces, forced, unassigned, budget.reason, self.name, 0, started)

        try:
            model, handles = self._build_model(problem, served)
        except CostScaleError as exc:
            logger.warning("exact model does not fit integer scaling (%s); solving with the heuristic", exc)
            return GreedyHeuristicSolver().solve(problem, budget)

        solver = cp_model.CpSolver()
        time_limit = min(budget.remaining(), OptimizationConstants.MAX_SOLVER_TIME_SECONDS)
        solver.parameters.max_time_in_seconds = float(max(time_limit, 0.01))
        solver.parameters.num_workers = self.num_workers

        callback = _CancelOnFlag(budget)
        status = solver.Solve(model, callback)
        status_msg = STATUS_NAMES.get(status, f"Status_{status}")
        is_open, flow, unserved, scaled_demand = handles
        logger.info(
            "CP-SAT %s in %.2fs (%d vars, %d incumbents)",
            status_msg, solver.WallTime(), len(flow) + len(is_open), callback.solutions
        )

        if status not in (cp_model.OPTIMAL, cp_model.FEASIBLE):
            reason = budget.reason if budget.expired() or status == cp_model.UNKNOWN else SolveStatus.INFEASIBLE.value
            fallback = DestinationStatus.INSUFFICIENT_CAPACITY.value if reason == SolveStatus.INFEASIBLE.value else reason
            for destination in served:
                unassigned.append(UnassignedDestination(destination, problem.demand[destination], fallback))
            pieces = {}
            place_zero_demand(problem, pieces, forced, zero_demand, unassigned)
            return build_solution(problem, pieces, forced, unassigned, reason, self.name, 0, started)

        pieces = {}
        for (f, d), var in flow.items():
            value = solver.Value(var)
            if not value:
                continue
            if problem.split_sourcing:
                amount = problem.demand[d] * value / scaled_demand[d]
            else:
                amount = problem.demand[d]
            pieces.setdefault(d, {})[f] = amount

        for d, var in unserved.items():
            value = solver.Value(var)
            if not value:
                continue
            left = problem.demand[d] if not problem.split_sourcing \
                else problem.demand[d] * value / scaled_demand[d]
            unassigned.append(UnassignedDestination(d, left, DestinationStatus.INSUFFICIENT_CAPACITY.value))

        open_facilities = sorted(
            f for f in is_open
            if solver.Value(is_open[f]) and (f in forced or any(f in p for p in pieces.values()))
        )
        place_zero_demand(problem, pieces, open_facilities, zero_demand, unassigned)

        if status == cp_model.OPTIMAL:
            result_status = SolveStatus.OPTIMAL.value
        else:
            result_status = SolveStatus.CANCELLED.value if budget.cancelled \
                else SolveStatus.TIME_LIMIT_REACHED.value

        return build_solution(
            problem, pieces, open_facilities, unassigned,
            result_status, self.name, callback.solutions, started
        )

    # ------------------------------------------------------------------
    # model
    # ------------------------------------------------------------------

    @staticmethod
    def _build_model(problem: NetworkProblem, served: Dict[str, List[str]]) -> Tuple[cp_model.CpModel, tuple]:
        """
        Build the CP-SAT model.

        Raises:
            CostScaleError: If any scaled coefficient or bound exceeds MAX_SAFE_INT
        """
        cost_scale = OptimizationConstants.COST_SCALE_FACTOR
        demand_scale = OptimizationConstants.DEMAND_SCALE_FACTOR
        dollar = cost_scale * demand_scale
        candidates = problem.candidates

        scaled_demand = {d: max(1, safe_int_cost(problem.demand[d] * demand_scale, d)) for d in served}
        total_scaled = sum(scaled_demand.values())

        worst_route = max(
            (problem.unit_cost(f, d) for d, fs in served.items() for f in fs),
            default=0.0
        )
        total_fixed = sum(problem.fixed_cost_of(f) for f in candidates)
        total_demand = sum(problem.demand[d] for d in served)

        network_bound = safe_int_cost((total_fixed + worst_route * total_demand) * dollar + 1, "network bound")
        shortfall_flag_penalty = safe_int_cost(total_fixed * dollar + 1, "shortfall penalty")
        unit_penalty = safe_int_cost(worst_route * cost_scale * (len(candidates) + 1) + 1, "unit penalty")
        if problem.split_sourcing:
            safe_int_cost(float(unit_penalty) * total_scaled, "unserved bound")

        model = cp_model.CpModel()
        is_open = {f: model.NewBoolVar(f"open_{f}") for f in candidates}
        for f in problem.forced:
            if f in is_open:
                model.Add(is_open[f] == 1)

        objective = []
        for f in candidates:
            fixed = problem.fixed_cost_of(f)
            if fixed:
                objective.append(safe_int_cost(fixed * dollar, f"fixed {f}") * is_open[f])

        load_terms: Dict[str, list] = {f: [] for f in candidates}
        flow: Dict[tuple, cp_model.IntVar] = {}
        unserved: Dict[str, cp_model.IntVar] = {}

        for d, routable in served.items():
            dem = scaled_demand[d]
            parts = []
            if problem.split_sourcing:
                unserved[d] = model.NewIntVar(0, dem, f"unserved_{d}")
                short = model.NewBoolVar(f"short_{d}")
                model.Add(unserved[d] <= dem * short)
                for f in routable:
                    var = model.NewIntVar(0, dem, f"y_{f}_{d}")
                    model.Add(var <= dem * is_open[f])
                    flow[(f, d)] = var
                    parts.append(var)
                    load_terms[f].append(var)
                    coef = safe_int_cost(problem.unit_cost(f, d) * cost_scale, f"route {f}->{d}")
                    objective.append(coef * var)
                model.Add(sum(parts) + unserved[d] == dem)
                objective.append(unit_penalty * unserved[d])
                objective.append(shortfall_flag_penalty * short)
            else:
                unserved[d] = model.NewBoolVar(f"unserved_{d}")
                for f in routable:
                    var = model.NewBoolVar(f"x_{f}_{d}")
                    model.AddImplication(var, is_open[f])
                    flow[(f, d)] = var
                    parts.append(var)
                    load_terms[f].append(dem * var)
                    coef = safe_int_cost(problem.demand[d] * problem.unit_cost(f, d) * dollar, f"route {f}->{d}")
                    objective.append(coef * var)
                model.Add(sum(parts) + unserved[d] == 1)
                objective.append(network_bound * unserved[d])

        for f, terms in load_terms.items():
            if not terms:
                continue
            capacity = problem.capacity_of(f)
            cap_scaled = total_scaled if capacity == INF else min(total_scaled, safe_int_cost(capacity * demand_scale, f))
            model.Add(sum(terms) <= cap_scaled * is_open[f])

        model.Minimize(sum(objective))
        return model, (is_open, flow, unserved, scaled_demand)
