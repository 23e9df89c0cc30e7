"""
Configuration Module

Dataclasses, enums, and constants for capacity planning and network optimization.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple


# =============================================================================
# ENUMS
# =============================================================================

class ActionType(Enum):
    EXISTING = "existing"
    EXPANSION = "expansion"
    NEW = "new"


class SolverUsed(Enum):
    HEURISTIC = "heuristic"
    EXACT = "exact"


class SolveStatus(Enum):
    OPTIMAL = "optimal"
    FEASIBLE = "feasible"
    TIME_LIMIT_REACHED = "time_limit_reached"
    CANCELLED = "cancelled"
    INFEASIBLE = "infeasible"
    NO_DEMAND = "no_demand"


class DestinationStatus(Enum):
    NO_FEASIBLE_ROUTE = "no_feasible_route"
    INSUFFICIENT_CAPACITY = "insufficient_capacity"
    NO_OPEN_FACILITY = "no_open_facility"
    TIME_LIMIT_REACHED = "time_limit_reached"
    CANCELLED = "cancelled"


class ErrorCode(Enum):
    ROW_SKIPPED = "row_skipped"
    NO_FEASIBLE_ROUTE = "no_feasible_route"
    INSUFFICIENT_INPUT = "insufficient_input"
    TIME_LIMIT_REACHED = "time_limit_reached"
    MAPPING_INVALID = "mapping_invalid"


class MappingKind(Enum):
    DEMAND = "demand"
    COST = "cost"
    CAPACITY = "capacity"


class RunState(Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ForecastType(Enum):
    ACTUAL = "actual"
    FORECAST = "forecast"
    LINEAR = "linear"


# =============================================================================
# DATACLASSES
# =============================================================================

@dataclass
class OptimizationConstants:
    MAX_SOLVER_TIME_SECONDS: int = 300
    DEFAULT_TIME_LIMIT_SECONDS: float = 30.0
    NUM_SOLVER_WORKERS: int = 8
    MAX_IMPROVEMENT_PASSES: int = 50
    COST_SCALE_FACTOR: int = 100
    DEMAND_SCALE_FACTOR: int = 1000
    EPSILON: float = 1e-9


@dataclass
class ValidationTolerances:
    CAPACITY_TOLERANCE: float = 1e-6


@dataclass
class PlannerDefaults:
    DEFAULT_GROWTH_RATE_PCT: float = 5.0
    DEFAULT_UTILIZATION_TARGET: float = 0.85
    MAX_EXPANSION_SHARE: float = 0.5
    SQFT_PER_UNIT: float = 10.0
    DEFAULT_LEASE_RATE_PER_SQFT: float = 10.0
    NEW_FACILITY_LEASE_RATE_PER_SQFT: float = 12.0
    NEW_FACILITY_ROUNDING_UNITS: int = 1000
    LEASE_TERM_YEARS: int = 7
    UTILIZATION_WEIGHT: float = 0.7
    INVESTMENT_WEIGHT: float = 0.3


@dataclass
class CacheSettings:
    DEFAULT_TTL_SECONDS: float = 5 * 60
    MARKET_RATE_TTL_SECONDS: float = 24 * 60 * 60


@dataclass
class MarketFallback:
    WAREHOUSE_LEASE_RATE_PER_SQFT: float = 6.0
    HOURLY_WAGE_RATE: float = 17.0
    FULLY_BURDENED_RATE: float = 22.95
    CONFIDENCE_SCORE: int = 25
    DATA_SOURCE: str = "fallback_error"


@dataclass
class RunnerSettings:
    MAX_WORKERS: int = 2
    RESULTS_DIR: str = "results"


@dataclass
class RunSettings:
    scenario_id: str = "default"
    base_year: int = 2025
    project_duration_years: int = 5
    utilization_target: float = PlannerDefaults.DEFAULT_UTILIZATION_TARGET
    lease_term_years: int = PlannerDefaults.LEASE_TERM_YEARS
    solver: str = SolverUsed.HEURISTIC.value
    split_sourcing: bool = False
    time_limit_seconds: float = OptimizationConstants.DEFAULT_TIME_LIMIT_SECONDS
    baseline_transport_cost: float = 0.0


# =============================================================================
# FILE TEMPLATES
# =============================================================================

OUTPUT_FILE_TEMPLATE = "network_plan_{scenario_id}_{run_id}.xlsx"
RESULT_FILE_TEMPLATE = "{timestamp}_{run_id}.json"
RESULT_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%f"


# =============================================================================
# WORKBOOK SCHEMA
# =============================================================================

REQUIRED_SHEETS = [
    "demand",
    "costs",
    "facilities",
    "growth_forecasts",
    "run_settings",
]

OPTIONAL_SHEETS = [
    "capacity",
]

FACILITY_REQUIRED_COLUMNS = [
    "name",
    "capacity_units",
]

FORECAST_REQUIRED_COLUMNS = [
    "year_number",
]

VALID_FORECAST_TYPES = {"actual", "forecast", "linear"}


# =============================================================================
# COLUMN CLASSIFICATION RULES
# =============================================================================

# Each role maps to (regex, weight) pairs evaluated against a normalized header.
# A header's score for a role is the highest matching weight.
COLUMN_RULES: Dict[str, List[Tuple[str, float]]] = {
    "destination": [
        (r"\bdestination\b", 1.0),
        (r"\bdest\b", 0.9),
        (r"\bto\b", 0.6),
        (r"\bcustomer\b", 0.6),
        (r"\bcity\b", 0.5),
        (r"\bmarket\b", 0.5),
        (r"\blocation\b", 0.4),
    ],
    "demand": [
        (r"\bdemand\b", 1.0),
        (r"\bvolume\b", 0.8),
        (r"\bunits\b", 0.7),
        (r"\bqty\b", 0.7),
        (r"\bquantity\b", 0.7),
        (r"\borders\b", 0.5),
    ],
    "year": [
        (r"\byear\b", 1.0),
        (r"\bperiod\b", 0.6),
        (r"\bdate\b", 0.4),
    ],
    "origin": [
        (r"\borigin\b", 1.0),
        (r"\bfrom\b", 0.8),
        (r"\bsource\b", 0.8),
        (r"\bshipper\b", 0.5),
    ],
    "cost": [
        (r"\bcost\b", 1.0),
        (r"\bcharge\b", 0.8),
        (r"\bfreight\b", 0.7),
        (r"\brate\b", 0.6),
        (r"\bprice\b", 0.6),
        (r"\bnet\b", 0.4),
    ],
    "cost_per_mile": [
        (r"\bper mile\b", 1.0),
        (r"\bmile rate\b", 1.0),
        (r"\bcpm\b", 0.9),
        (r"\brate per mi\b", 0.9),
    ],
    "distance": [
        (r"\bdistance\b", 1.0),
        (r"\bmiles\b", 0.9),
        (r"\bkm\b", 0.8),
        (r"\bmi\b", 0.6),
    ],
    "cost_per_cwt": [
        (r"\bcwt\b", 1.0),
        (r"\bper hundredweight\b", 1.0),
        (r"\bper 100 ?lbs?\b", 0.9),
    ],
    "weight": [
        (r"\bweight\b", 1.0),
        (r"\blbs?\b", 0.8),
        (r"\bpounds\b", 0.8),
    ],
    "facility": [
        (r"\bfacility\b", 1.0),
        (r"\bwarehouse\b", 0.9),
        (r"\bdc\b", 0.8),
        (r"\bsite\b", 0.6),
        (r"\blocation\b", 0.4),
    ],
    "capacity": [
        (r"\bcapacity\b", 1.0),
        (r"\bmax\b", 0.6),
        (r"\blimit\b", 0.6),
        (r"\bthroughput\b", 0.5),
    ],
    "utilization": [
        (r"\butilization\b", 1.0),
        (r"\butil\b", 0.9),
        (r"\bmax util", 1.0),
    ],
}

# Rule weight below which a header is not assigned to a role.
MIN_RULE_SCORE = 0.3

# Keywords whose presence in row 0 marks it as a header row.
HEADER_KEYWORDS = {
    "demand": ("dest", "demand", "year", "volume", "units"),
    "cost": ("origin", "destination", "cost", "rate", "distance", "miles"),
    "capacity": ("facility", "capacity", "warehouse", "utilization"),
}


# =============================================================================
# PARSING HELPERS
# =============================================================================

def parse_solver(value: str) -> SolverUsed:
    """Parse solver name to enum."""
    mapping = {
        "heuristic": SolverUsed.HEURISTIC,
        "greedy": SolverUsed.HEURISTIC,
        "exact": SolverUsed.EXACT,
        "cp_sat": SolverUsed.EXACT,
        "milp": SolverUsed.EXACT,
    }
    key = str(value).strip().lower()
    if key not in mapping:
        raise ValueError(f"Invalid solver: {value}. Must be one of {list(mapping.keys())}")
    return mapping[key]


def parse_mapping_kind(value) -> MappingKind:
    """Parse mapping kind string (or enum) to enum."""
    if isinstance(value, MappingKind):
        return value
    key = str(value).strip().lower()
    for kind in MappingKind:
        if kind.value == key:
            return kind
    raise ValueError(f"Invalid mapping kind: {value}. Must be one of {[k.value for k in MappingKind]}")
