"""
Network Optimizer Module

Assigns destination demand to facilities and decides which facilities to
open, minimizing fixed plus transport cost under capacity limits.

The reference strategy is a greedy construction followed by local
improvement. It is labelled ``solver_used="heuristic"`` in every result and
makes no optimality claim beyond the reported lower bound and gap. A CP-SAT
model (``milp.CpSatSolver``) implements the same interface as ``"exact"``.

Search is time-boxed through a SearchBudget: the deadline and cancellation
flag are checked once per destination in the construction loop and once per
improvement pass. On expiry the incumbent is returned with status
``time_limit_reached`` (or ``cancelled``).
"""

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .config import (
    DestinationStatus,
    OptimizationConstants,
    SolverUsed,
    SolveStatus,
    ValidationTolerances,
    parse_solver,
)
from .models import (
    Assignment,
    CapacityMap,
    CostMatrix,
    DemandData,
    DemandMap,
    Facility,
    NetworkSolution,
    UnassignedDestination,
)
from .utils import safe_divide

logger = logging.getLogger(__name__)

INF = float("inf")


# ============================================================================
# PROBLEM
# ============================================================================

@dataclass
class NetworkProblem:
    cost_matrix: CostMatrix
    demand: DemandMap
    capacity: CapacityMap = field(default_factory=dict)
    facilities: List[Facility] = field(default_factory=list)
    forced_open: List[str] = field(default_factory=list)
    split_sourcing: bool = False
    time_limit_seconds: Optional[float] = OptimizationConstants.DEFAULT_TIME_LIMIT_SECONDS
    max_improvement_passes: int = OptimizationConstants.MAX_IMPROVEMENT_PASSES

    def __post_init__(self):
        negative = sorted(d for d, v in self.demand.items() if v < 0 or math.isnan(v))
        if negative:
            raise ValueError(f"Demand must be non-negative; invalid destinations: {negative[:10]}")
        self._facility_by_name = {f.name: f for f in self.facilities}

    @property
    def destinations(self) -> List[str]:
        return list(self.demand)

    @property
    def candidates(self) -> List[str]:
        """Facilities that may be opened: cost-matrix origins, then other known facilities."""
        names = list(self.cost_matrix.rows)
        for f in self.facilities:
            if f.name not in names:
                names.append(f.name)
        for name in self.forced_open:
            if name not in names:
                names.append(name)
        return names

    @property
    def forced(self) -> List[str]:
        names = [f.name for f in self.facilities if f.is_forced]
        for name in self.forced_open:
            if name not in names:
                names.append(name)
        return sorted(names)

    def capacity_of(self, name: str) -> float:
        if name in self.capacity:
            return float(self.capacity[name])
        facility = self._facility_by_name.get(name)
        if facility is not None:
            return float(facility.capacity_units)
        return INF

    def fixed_cost_of(self, name: str) -> float:
        facility = self._facility_by_name.get(name)
        return facility.fixed_cost if facility is not None else 0.0

    def unit_cost(self, facility: str, destination: str) -> float:
        return self.cost_matrix.unit_cost(facility, destination)

    def routable_facilities(self, destination: str) -> List[str]:
        return self.cost_matrix.finite_origins(destination)

    def lower_bound_for(self, placed: Dict[str, float]) -> float:
        """Placed demand at its cheapest finite route plus fixed cost of forced facilities."""
        bound = sum(self.fixed_cost_of(f) for f in self.forced)
        for destination, amount in placed.items():
            costs = [self.unit_cost(f, destination) for f in self.routable_facilities(destination)]
            if costs:
                bound += amount * min(costs)
        return bound


# ============================================================================
# SEARCH BUDGET
# ============================================================================

class SearchBudget:
    """
    Deadline plus cooperative cancellation flag.

    The deadline is fixed on the first ``start()``; later calls are no-ops so
    one budget can span several solves.
    """

    def __init__(
            self,
            time_limit_seconds: Optional[float] = None,
            cancel_event: Optional[threading.Event] = None,
            clock: Callable[[], float] = time.monotonic
    ):
        self.time_limit_seconds = time_limit_seconds
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()
        self._clock = clock
        self._deadline: Optional[float] = None

    def start(self) -> "SearchBudget":
        if self._deadline is None and self.time_limit_seconds is not None:
            self._deadline = self._clock() + self.time_limit_seconds
        return self

    def cancel(self) -> None:
        self.cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def remaining(self) -> float:
        if self._deadline is None:
            return INF
        return max(0.0, self._deadline - self._clock())

    def expired(self) -> bool:
        if self.cancelled:
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    @property
    def reason(self) -> str:
        if self.cancelled:
            return SolveStatus.CANCELLED.value
        return SolveStatus.TIME_LIMIT_REACHED.value


# ============================================================================
# SOLVER INTERFACE
# ============================================================================

class NetworkSolver(ABC):
    """Strategy interface shared by the heuristic and exact solvers."""

    name: str = ""

    @abstractmethod
    def solve(self, problem: NetworkProblem, budget: SearchBudget) -> NetworkSolution:
        raise NotImplementedError


def build_solution(
        problem: NetworkProblem,
        pieces: Dict[str, Dict[str, float]],
        open_facilities: List[str],
        unassigned: List[UnassignedDestination],
        status: str,
        solver_used: str,
        iterations: int,
        started: float
) -> NetworkSolution:
    """
    Assemble a NetworkSolution from destination -> {facility: amount} pieces.

    Assignments are ordered by destination then facility.
    """
    assignments = []
    placed: Dict[str, float] = {}
    for destination in sorted(pieces):
        for facility in sorted(pieces[destination]):
            amount = pieces[destination][facility]
            assignments.append(Assignment(
                facility=facility,
                destination=destination,
                demand=amount,
                unit_cost=problem.unit_cost(facility, destination),
            ))
            placed[destination] = placed.get(destination, 0.0) + amount

    open_sorted = sorted(open_facilities)
    fixed_cost = float(sum(problem.fixed_cost_of(f) for f in open_sorted))
    transport_cost = float(sum(a.cost for a in assignments))
    total_cost = fixed_cost + transport_cost

    lower_bound = problem.lower_bound_for(placed)
    gap = max(0.0, safe_divide(total_cost - lower_bound, total_cost, default=0.0))

    capacity_short = any(u.status == DestinationStatus.INSUFFICIENT_CAPACITY.value for u in unassigned)
    if status == SolveStatus.FEASIBLE.value and gap <= OptimizationConstants.EPSILON and not capacity_short:
        status = SolveStatus.OPTIMAL.value

    return NetworkSolution(
        assignments=assignments,
        open_facilities=open_sorted,
        unassigned=sorted(unassigned, key=lambda u: u.destination),
        fixed_cost=fixed_cost,
        transport_cost=transport_cost,
        total_cost=total_cost,
        status=status,
        solver_used=solver_used,
        iterations=iterations,
        solve_time_seconds=time.perf_counter() - started,
        lower_bound=lower_bound,
        optimality_gap=gap,
    )


def place_zero_demand(
        problem: NetworkProblem,
        pieces: Dict[str, Dict[str, float]],
        open_facilities: List[str],
        destinations: List[str],
        unassigned: List[UnassignedDestination]
) -> None:
    """
    Attach zero-demand destinations to their cheapest open facility.

    A destination whose finite routes all lead to facilities left closed is
    reported ``no_open_facility``; opening one for zero demand is never worth
    its fixed cost.
    """
    for destination in destinations:
        homes = [f for f in problem.routable_facilities(destination) if f in open_facilities]
        if homes:
            home = min(homes, key=lambda f: (problem.unit_cost(f, destination), f))
            pieces.setdefault(destination, {})[home] = 0.0
        else:
            unassigned.append(UnassignedDestination(
                destination, 0.0, DestinationStatus.NO_OPEN_FACILITY.value))


# ============================================================================
# GREEDY HEURISTIC
# ============================================================================

class _Incumbent:
    """Mutable search state: open set, loads and per-destination pieces."""

    def __init__(self, problem: NetworkProblem):
        self.problem = problem
        self.open: List[str] = []
        self.load: Dict[str, float] = {}
        self.pieces: Dict[str, Dict[str, float]] = {}

    def open_facility(self, name: str) -> None:
        if name not in self.open:
            self.open.append(name)
            self.load.setdefault(name, 0.0)

    def close_facility(self, name: str) -> None:
        self.open.remove(name)
        self.load.pop(name, None)

    def free(self, name: str) -> float:
        return self.problem.capacity_of(name) - self.load.get(name, 0.0)

    def place(self, destination: str, facility: str, amount: float) -> None:
        self.load[facility] = self.load.get(facility, 0.0) + amount
        dest_pieces = self.pieces.setdefault(destination, {})
        dest_pieces[facility] = dest_pieces.get(facility, 0.0) + amount

    def remove(self, destination: str, facility: str) -> float:
        amount = self.pieces[destination].pop(facility)
        self.load[facility] -= amount
        if not self.pieces[destination]:
            del self.pieces[destination]
        return amount

    def served_by(self, facility: str) -> List[Tuple[str, float]]:
        return [
            (destination, pieces[facility])
            for destination, pieces in sorted(self.pieces.items())
            if facility in pieces
        ]


class GreedyHeuristicSolver(NetworkSolver):
    """Greedy construction by descending demand, then local improvement passes."""

    name = SolverUsed.HEURISTIC.value

    def solve(self, problem: NetworkProblem, budget: SearchBudget) -> NetworkSolution:
        started = time.perf_counter()
        budget.start()
        eps = ValidationTolerances.CAPACITY_TOLERANCE
        state = _Incumbent(problem)
        unassigned: List[UnassignedDestination] = []
        iterations = 0
        status = SolveStatus.FEASIBLE.value

        for name in problem.forced:
            state.open_facility(name)

        order = sorted(problem.demand.items(), key=lambda item: (-item[1], item[0]))
        if not order:
            status = SolveStatus.NO_DEMAND.value
        zero_demand: List[str] = []

        for position, (destination, demand) in enumerate(order):
            if budget.expired():
                status = budget.reason
                for remaining_dest, remaining_demand in order[position:]:
                    if not problem.routable_facilities(remaining_dest):
                        unassigned.append(UnassignedDestination(
                            remaining_dest, remaining_demand, DestinationStatus.NO_FEASIBLE_ROUTE.value))
                    elif remaining_demand <= eps:
                        zero_demand.append(remaining_dest)
                    else:
                        unassigned.append(UnassignedDestination(remaining_dest, remaining_demand, status))
                logger.info("heuristic stopped during construction: %s", status)
                break
            iterations += 1

            routable = problem.routable_facilities(destination)
            if routable and demand <= eps:
                zero_demand.append(destination)
                continue
            if not routable:
                unassigned.append(UnassignedDestination(
                    destination, demand, DestinationStatus.NO_FEASIBLE_ROUTE.value))
                continue

            if problem.split_sourcing:
                leftover = self._assign_split(problem, state, destination, demand, routable, eps)
            else:
                leftover = self._assign_single(problem, state, destination, demand, routable, eps)

            if leftover > eps:
                unassigned.append(UnassignedDestination(
                    destination, leftover, DestinationStatus.INSUFFICIENT_CAPACITY.value))

        if status == SolveStatus.FEASIBLE.value:
            passes, improvement_status = self._improve(problem, state, budget, eps)
            iterations += passes
            status = improvement_status

        place_zero_demand(problem, state.pieces, state.open, zero_demand, unassigned)

        solution = build_solution(
            problem, state.pieces, state.open, unassigned,
            status, self.name, iterations, started
        )
        logger.info(
            "heuristic solve: status=%s open=%d assigned=%d unassigned=%d total=%.2f gap=%.4f",
            solution.status, len(solution.open_facilities), len(solution.assignments),
            len(solution.unassigned), solution.total_cost, solution.optimality_gap or 0.0
        )
        return solution

    # ------------------------------------------------------------------
    # construction
    # ------------------------------------------------------------------

    @staticmethod
    def _opening_rank(problem: NetworkProblem, name: str, destination: str) -> Tuple[float, float, str]:
        capacity = problem.capacity_of(name)
        per_unit = 0.0 if capacity == INF else safe_divide(problem.fixed_cost_of(name), capacity, default=INF)
        return per_unit, problem.unit_cost(name, destination), name

    def _assign_single(self, problem, state, destination, demand, routable, eps) -> float:
        def best_open() -> Optional[str]:
            fits = [f for f in routable if f in state.open and state.free(f) >= demand - eps]
            if not fits:
                return None
            return min(fits, key=lambda f: (problem.unit_cost(f, destination), f))

        choice = best_open()
        if choice is None:
            closed = [
                f for f in routable
                if f not in state.open and problem.capacity_of(f) >= demand - eps
            ]
            if closed:
                state.open_facility(min(closed, key=lambda f: self._opening_rank(problem, f, destination)))
                choice = best_open()

        if choice is None:
            return demand
        state.place(destination, choice, demand)
        return 0.0

    def _assign_split(self, problem, state, destination, demand, routable, eps) -> float:
        remaining = demand

        def fill_from_open() -> float:
            left = remaining
            for f in sorted((f for f in routable if f in state.open),
                            key=lambda f: (problem.unit_cost(f, destination), f)):
                if left <= eps:
                    break
                take = min(state.free(f), left)
                if take > eps:
                    state.place(destination, f, take)
                    left -= take
            return left

        remaining = fill_from_open()
        while remaining > eps:
            closed = [f for f in routable if f not in state.open and problem.capacity_of(f) > eps]
            if not closed:
                break
            state.open_facility(min(closed, key=lambda f: self._opening_rank(problem, f, destination)))
            remaining = fill_from_open()
        return max(remaining, 0.0)

    # ------------------------------------------------------------------
    # improvement
    # ------------------------------------------------------------------

    def _improve(self, problem, state, budget, eps) -> Tuple[int, str]:
        passes = 0
        while passes < problem.max_improvement_passes:
            if budget.expired():
                logger.info("heuristic stopped during improvement after %d passes: %s", passes, budget.reason)
                return passes, budget.reason
            passes += 1
            improved = self._reassign_pass(problem, state, eps)
            improved = self._close_pass(problem, state, eps) or improved
            improved = self._drop_empty(problem, state, eps) or improved
            if not improved:
                break
        return passes, SolveStatus.FEASIBLE.value

    def _reassign_pass(self, problem, state, eps) -> bool:
        improved = False
        for destination in sorted(state.pieces):
            for facility in sorted(state.pieces.get(destination, {})):
                amount = state.pieces[destination].get(facility)
                if amount is None:
                    continue
                current = problem.unit_cost(facility, destination)
                better = [
                    g for g in state.open
                    if g != facility
                    and problem.unit_cost(g, destination) < current - eps
                    and state.free(g) >= amount - eps
                ]
                if not better:
                    continue
                target = min(better, key=lambda g: (problem.unit_cost(g, destination), g))
                state.remove(destination, facility)
                state.place(destination, target, amount)
                improved = True
        return improved

    def _close_pass(self, problem, state, eps) -> bool:
        improved = False
        forced = set(problem.forced)
        for facility in sorted(state.open):
            if facility in forced or facility not in state.open:
                continue
            served = state.served_by(facility)
            if not served:
                continue

            trial_free = {g: state.free(g) for g in state.open if g != facility}
            moves = []
            saving = problem.fixed_cost_of(facility)
            for destination, amount in served:
                options = [
                    g for g in trial_free
                    if problem.unit_cost(g, destination) < INF and trial_free[g] >= amount - eps
                ]
                if not options:
                    moves = None
                    break
                target = min(options, key=lambda g: (problem.unit_cost(g, destination), g))
                trial_free[target] -= amount
                saving += amount * (problem.unit_cost(facility, destination) - problem.unit_cost(target, destination))
                moves.append((destination, amount, target))

            if moves is None or saving <= eps:
                continue

            for destination, amount, target in moves:
                state.remove(destination, facility)
                state.place(destination, target, amount)
            state.close_facility(facility)
            improved = True
            logger.debug("closed %s for saving %.2f", facility, saving)
        return improved

    def _drop_empty(self, problem, state, eps) -> bool:
        forced = set(problem.forced)
        empty = [
            f for f in state.open
            if f not in forced and not state.served_by(f)
        ]
        for facility in empty:
            state.close_facility(facility)
        return bool(empty)


# ============================================================================
# ENTRY POINTS
# ============================================================================

def get_solver(solver="heuristic") -> NetworkSolver:
    """Resolve a solver name ('heuristic' or 'exact') or pass an instance through."""
    if isinstance(solver, NetworkSolver):
        return solver
    kind = parse_solver(solver)
    if kind == SolverUsed.EXACT:
        from .milp import CpSatSolver
        return CpSatSolver()
    return GreedyHeuristicSolver()


def solve_network_optimization(
        problem: NetworkProblem,
        solver="heuristic",
        budget: Optional[SearchBudget] = None
) -> NetworkSolution:
    """
    Solve one facility assignment problem.

    Args:
        problem: Costs, demand, capacity and facility metadata
        solver: 'heuristic' (default), 'exact', or a NetworkSolver instance
        budget: Deadline and cancellation flag; defaults to the problem's time limit

    Returns:
        NetworkSolution with assignments, open set, unassigned report and costs
    """
    if budget is None:
        budget = SearchBudget(problem.time_limit_seconds)
    return get_solver(solver).solve(problem, budget)


def optimize_network_by_year(
        cost_matrix: CostMatrix,
        demand: DemandData,
        capacity: Optional[CapacityMap] = None,
        facilities: Optional[List[Facility]] = None,
        solver="heuristic",
        split_sourcing: bool = False,
        time_limit_seconds: Optional[float] = OptimizationConstants.DEFAULT_TIME_LIMIT_SECONDS,
        budget: Optional[SearchBudget] = None
) -> List[NetworkSolution]:
    """
    Solve each demand year in ascending order.

    Facilities opened in an earlier year stay open (forced) in later years,
    since their leases are already committed. Without yearly demand a single
    solve over the base demand is returned.
    """
    facilities = facilities or []
    capacity = capacity or {}
    budget = (budget or SearchBudget(time_limit_seconds)).start()

    years: List[Optional[int]] = demand.years() or [None]
    carried: List[str] = []
    solutions = []

    for year in years:
        problem = NetworkProblem(
            cost_matrix=cost_matrix,
            demand=demand.for_year(year),
            capacity=capacity,
            facilities=facilities,
            forced_open=list(carried),
            split_sourcing=split_sourcing,
            time_limit_seconds=time_limit_seconds,
        )
        solution = solve_network_optimization(problem, solver=solver, budget=budget)
        solution.year = year
        solutions.append(solution)
        carried = sorted(set(carried) | set(solution.open_facilities))
        logger.info("year %s solved: %s, total cost %.2f", year, solution.status, solution.total_cost)

    return solutions
