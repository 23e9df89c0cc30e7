"""Pytest configuration and shared fixtures."""

import math

import numpy as np
import pandas as pd
import pytest

from netplan.models import CostMatrix, Facility, GrowthForecast
from netplan.optimizer import NetworkProblem


INF = math.inf


class FakeClock:
    """Manually advanced clock for deadline and TTL tests."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def two_site_matrix():
    """A serves X cheaply, B serves Y cheaply; nobody reaches W."""
    return CostMatrix(
        rows=["A", "B"],
        cols=["X", "Y"],
        cost=np.array([
            [1.0, 2.0],
            [3.0, 1.0],
        ]),
    )


@pytest.fixture
def two_site_problem(two_site_matrix):
    """Single sourcing; A cannot take both X and Y."""
    return NetworkProblem(
        cost_matrix=two_site_matrix,
        demand={"X": 60.0, "Y": 50.0, "W": 5.0},
        capacity={"A": 100.0, "B": 100.0},
    )


@pytest.fixture
def cost_rows():
    return [
        ["Origin", "Destination", "Cost"],
        ["A", "X", 5],
        ["A", "X", 7],
        ["B", "Y", 3],
    ]


@pytest.fixture
def demand_rows():
    return [
        ["Destination", "Demand"],
        ["X", 10],
        ["X", 5],
        ["", 3],
        ["Y", "abc"],
        ["Z", -4],
        ["W", "1,200"],
    ]


@pytest.fixture
def expandable_facility():
    return Facility(
        name="DC1",
        capacity_units=10000,
        square_feet=100000,
        allow_expansion=True,
        lease_rate_per_sqft=5.0,
    )


@pytest.fixture
def ten_percent_forecast():
    return [GrowthForecast(year_number=1, growth_rate=10.0)]


@pytest.fixture
def planning_sheets():
    """In-memory planning workbook as returned by load_workbook."""
    return {
        "demand": [
            ["Destination", "Demand"],
            ["X", 60],
            ["Y", 50],
        ],
        "costs": [
            ["Origin", "Destination", "Cost"],
            ["A", "X", 1],
            ["A", "Y", 2],
            ["B", "X", 3],
            ["B", "Y", 1],
        ],
        "facilities": pd.DataFrame({
            "name": ["A", "B"],
            "capacity_units": [100, 100],
            "square_feet": [10000, 10000],
            "lease_rate_per_sqft": [0.0, 0.0],
            "allow_expansion": [True, False],
        }),
        "growth_forecasts": pd.DataFrame({
            "year_number": [1, 2],
            "growth_rate": [10.0, 10.0],
        }),
        "run_settings": pd.DataFrame({
            "key": ["scenario_id", "base_year", "project_duration_years", "utilization_target", "solver"],
            "value": ["base", 2025, 2, 0.85, "heuristic"],
        }),
    }
