"""Tests for the greedy network heuristic, search budget and yearly solves."""

import numpy as np
import pytest

from netplan.models import CostMatrix, DemandData, Facility
from netplan.optimizer import (
    GreedyHeuristicSolver,
    NetworkProblem,
    SearchBudget,
    get_solver,
    optimize_network_by_year,
    solve_network_optimization,
)


def _loads(solution):
    loads = {}
    for a in solution.assignments:
        loads[a.facility] = loads.get(a.facility, 0.0) + a.demand
    return loads


# ============================================================================
# ASSIGNMENT
# ============================================================================

class TestGreedyHeuristic:

    def test_respects_capacity(self, two_site_problem):
        solution = solve_network_optimization(two_site_problem)
        for facility, load in _loads(solution).items():
            assert load <= two_site_problem.capacity[facility] + 1e-6

    def test_single_sourcing_assigns_each_routable_destination_once(self, two_site_problem):
        solution = solve_network_optimization(two_site_problem)
        destinations = [a.destination for a in solution.assignments]

        assert sorted(destinations) == ["X", "Y"]
        assert {(a.facility, a.destination) for a in solution.assignments} == {("A", "X"), ("B", "Y")}

    def test_unroutable_destination_reported_not_assigned(self, two_site_problem):
        solution = solve_network_optimization(two_site_problem)

        assert "W" not in {a.destination for a in solution.assignments}
        assert [(u.destination, u.status) for u in solution.unassigned] == [("W", "no_feasible_route")]

    def test_costs_and_status(self, two_site_problem):
        solution = solve_network_optimization(two_site_problem)

        assert solution.solver_used == "heuristic"
        assert solution.transport_cost == pytest.approx(110.0)
        assert solution.total_cost == pytest.approx(110.0)
        assert solution.lower_bound == pytest.approx(110.0)
        assert solution.status == "optimal"

    def test_deterministic(self, two_site_problem):
        first = solve_network_optimization(two_site_problem)
        second = solve_network_optimization(two_site_problem)

        assert [a.to_dict() for a in first.assignments] == [a.to_dict() for a in second.assignments]
        assert first.total_cost == second.total_cost
        assert first.open_facilities == second.open_facilities

    def test_insufficient_capacity_reported(self, two_site_matrix):
        problem = NetworkProblem(
            cost_matrix=two_site_matrix,
            demand={"X": 60.0},
            capacity={"A": 10.0, "B": 10.0},
        )
        solution = solve_network_optimization(problem)

        assert solution.assignments == []
        assert [(u.destination, u.status) for u in solution.unassigned] == [("X", "insufficient_capacity")]
        assert solution.status == "feasible"

    def test_split_sourcing_spreads_demand(self, two_site_matrix):
        problem = NetworkProblem(
            cost_matrix=two_site_matrix,
            demand={"X": 60.0},
            capacity={"A": 40.0, "B": 100.0},
            split_sourcing=True,
        )
        solution = solve_network_optimization(problem)
        pieces = {a.facility: a.demand for a in solution.assignments}

        assert pieces == pytest.approx({"A": 40.0, "B": 20.0})
        assert solution.unassigned == []

    def test_does_not_open_facility_that_costs_more_than_it_saves(self):
        matrix = CostMatrix(rows=["F1", "F2"], cols=["X", "Y"], cost=np.array([[1.0, 2.0], [2.0, 1.0]]))
        facilities = [
            Facility(name="F1", capacity_units=1000, fixed_cost_override=100.0),
            Facility(name="F2", capacity_units=1000, fixed_cost_override=100.0),
        ]
        problem = NetworkProblem(cost_matrix=matrix, demand={"X": 10.0, "Y": 10.0}, facilities=facilities)
        solution = solve_network_optimization(problem)

        assert solution.open_facilities == ["F1"]
        assert solution.fixed_cost == pytest.approx(100.0)
        assert solution.total_cost == pytest.approx(130.0)

    def test_forced_facility_stays_open(self, two_site_matrix):
        problem = NetworkProblem(
            cost_matrix=two_site_matrix,
            demand={"X": 10.0},
            capacity={"A": 100.0, "B": 100.0},
            forced_open=["B"],
        )
        solution = solve_network_optimization(problem)

        # B is already paid for, so it serves X before A is considered
        assert solution.open_facilities == ["B"]
        assert [(a.facility, a.destination) for a in solution.assignments] == [("B", "X")]

    def test_zero_demand_destination_rides_on_open_facility(self, two_site_matrix):
        problem = NetworkProblem(
            cost_matrix=two_site_matrix,
            demand={"X": 10.0, "Y": 0.0},
            capacity={"A": 100.0, "B": 100.0},
        )
        solution = solve_network_optimization(problem)

        assert solution.open_facilities == ["A"]
        assert {(a.facility, a.destination, a.demand) for a in solution.assignments} == {
            ("A", "X", 10.0), ("A", "Y", 0.0)
        }

    def test_zero_demand_destination_without_open_route(self):
        matrix = CostMatrix(rows=["A", "B"], cols=["X", "Z"], cost=np.array([[1.0, np.inf], [3.0, 4.0]]))
        problem = NetworkProblem(cost_matrix=matrix, demand={"X": 10.0, "Z": 0.0}, capacity={"A": 100.0, "B": 100.0})
        solution = solve_network_optimization(problem)

        assert solution.open_facilities == ["A"]
        assert [(a.facility, a.destination) for a in solution.assignments] == [("A", "X")]
        assert [(u.destination, u.status) for u in solution.unassigned] == [("Z", "no_open_facility")]

    def test_no_demand(self, two_site_matrix):
        solution = solve_network_optimization(NetworkProblem(cost_matrix=two_site_matrix, demand={}))
        assert solution.status == "no_demand"
        assert solution.assignments == []

    def test_negative_demand_rejected(self, two_site_matrix):
        with pytest.raises(ValueError, match="non-negative"):
            NetworkProblem(cost_matrix=two_site_matrix, demand={"X": -1.0})


# ============================================================================
# BUDGET
# ============================================================================

class TestSearchBudget:

    def test_deadline_returns_incumbent_with_status(self, two_site_problem, clock):
        budget = SearchBudget(time_limit_seconds=5, clock=clock).start()
        clock.advance(10)
        solution = GreedyHeuristicSolver().solve(two_site_problem, budget)

        assert solution.status == "time_limit_reached"
        assert solution.assignments == []
        assert {(u.destination, u.status) for u in solution.unassigned} == {
            ("X", "time_limit_reached"),
            ("Y", "time_limit_reached"),
            ("W", "no_feasible_route"),
        }

    def test_deadline_during_construction_keeps_placed_destinations(self, two_site_problem):
        ticks = iter(range(100))
        budget = SearchBudget(time_limit_seconds=2.5, clock=lambda: float(next(ticks)))
        solution = GreedyHeuristicSolver().solve(two_site_problem, budget)

        # X and Y are placed before the third check passes the deadline
        assert solution.status == "time_limit_reached"
        assert {(a.facility, a.destination) for a in solution.assignments} == {("A", "X"), ("B", "Y")}
        assert [(u.destination, u.status) for u in solution.unassigned] == [("W", "no_feasible_route")]

    def test_cancel(self, two_site_problem):
        budget = SearchBudget()
        budget.cancel()
        solution = solve_network_optimization(two_site_problem, budget=budget)
        assert solution.status == "cancelled"

    def test_start_is_idempotent(self, clock):
        budget = SearchBudget(time_limit_seconds=5, clock=clock).start()
        clock.advance(3)
        budget.start()
        assert budget.remaining() == pytest.approx(2.0)
        clock.advance(2)
        assert budget.expired()
        assert budget.reason == "time_limit_reached"

    def test_no_limit(self):
        budget = SearchBudget(time_limit_seconds=None).start()
        assert not budget.expired()
        assert budget.remaining() == float("inf")


def test_get_solver():
    assert isinstance(get_solver("greedy"), GreedyHeuristicSolver)
    solver = GreedyHeuristicSolver()
    assert get_solver(solver) is solver
    with pytest.raises(ValueError):
        get_solver("simplex")


# ============================================================================
# YEARLY SOLVES
# ============================================================================

def test_optimize_by_year_carries_open_facilities_forward(two_site_matrix):
    demand = DemandData(by_year={2027: {"X": 10.0, "Y": 10.0}, 2026: {"Y": 10.0}})
    solutions = optimize_network_by_year(
        two_site_matrix, demand, capacity={"A": 100.0, "B": 100.0}
    )

    assert [s.year for s in solutions] == [2026, 2027]
    assert solutions[0].open_facilities == ["B"]
    assert set(solutions[0].open_facilities) <= set(solutions[1].open_facilities)


def test_optimize_without_years_solves_base_demand(two_site_matrix):
    solutions = optimize_network_by_year(two_site_matrix, DemandData(base={"X": 5.0}))
    assert len(solutions) == 1
    assert solutions[0].year is None
    assert solutions[0].assignments[0].facility == "A"
