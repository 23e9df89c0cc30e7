"""
Data Model Module

Canonical structures exchanged between the mapper, planner, optimizer and
reporting layers. Result types expose ``to_dict()`` returning JSON-safe data
(infinite costs render as None).
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

import numpy as np
import pandas as pd

from .config import ActionType, ForecastType
from .utils import finite_or_none, safe_divide

DemandMap = Dict[str, float]
CapacityMap = Dict[str, float]


# ============================================================================
# COLUMN MAPPINGS
# ============================================================================

def _mapping_from_dict(cls, data: Dict[str, Any]):
    known = {k: data.get(k) for k in cls.__dataclass_fields__}
    return cls(**known)


@dataclass
class DemandColumns:
    destination: Optional[int] = None
    demand: Optional[int] = None
    year: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DemandColumns":
        return _mapping_from_dict(cls, data)

    def to_dict(self) -> Dict[str, Optional[int]]:
        return {"destination": self.destination, "demand": self.demand, "year": self.year}


@dataclass
class CostColumns:
    origin: Optional[int] = None
    destination: Optional[int] = None
    cost: Optional[int] = None
    cost_per_mile: Optional[int] = None
    distance: Optional[int] = None
    cost_per_cwt: Optional[int] = None
    weight: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CostColumns":
        return _mapping_from_dict(cls, data)

    def has_direct_cost(self) -> bool:
        return self.cost is not None

    def has_mileage_cost(self) -> bool:
        return self.cost_per_mile is not None and self.distance is not None

    def has_cwt_cost(self) -> bool:
        return self.cost_per_cwt is not None and self.weight is not None

    def to_dict(self) -> Dict[str, Optional[int]]:
        return {
            "origin": self.origin,
            "destination": self.destination,
            "cost": self.cost,
            "cost_per_mile": self.cost_per_mile,
            "distance": self.distance,
            "cost_per_cwt": self.cost_per_cwt,
            "weight": self.weight,
        }


@dataclass
class CapacityColumns:
    facility: Optional[int] = None
    capacity: Optional[int] = None
    utilization: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CapacityColumns":
        return _mapping_from_dict(cls, data)

    def to_dict(self) -> Dict[str, Optional[int]]:
        return {"facility": self.facility, "capacity": self.capacity, "utilization": self.utilization}


@dataclass
class ColumnSuggestion:
    demand: Optional[DemandColumns] = None
    cost: Optional[CostColumns] = None
    capacity: Optional[CapacityColumns] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "demand": self.demand.to_dict() if self.demand else None,
            "cost": self.cost.to_dict() if self.cost else None,
            "capacity": self.capacity.to_dict() if self.capacity else None,
        }


# ============================================================================
# MAPPED INPUTS
# ============================================================================

@dataclass
class DemandData:
    """Demand per destination, either a single base map or partitioned by year."""
    base: Optional[DemandMap] = None
    by_year: Optional[Dict[int, DemandMap]] = None

    def for_year(self, year: Optional[int] = None) -> DemandMap:
        """Demand for a year, falling back to the base map."""
        if year is not None and self.by_year and year in self.by_year:
            return dict(self.by_year[year])
        if self.base is not None:
            return dict(self.base)
        if self.by_year:
            return dict(self.by_year[min(self.by_year)])
        return {}

    def years(self) -> List[int]:
        return sorted(self.by_year) if self.by_year else []

    def total(self, year: Optional[int] = None) -> float:
        return float(sum(self.for_year(year).values()))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base": dict(self.base) if self.base is not None else None,
            "by_year": {str(y): dict(m) for y, m in self.by_year.items()} if self.by_year else None,
        }


@dataclass
class CostMatrix:
    """
    Dense origin x destination unit-cost table.

    Unobserved routes hold ``numpy.inf``. Finite entries must be non-negative.
    The underlying array is read-only; use ``copy()`` for an independent matrix.
    """
    rows: List[str]
    cols: List[str]
    cost: np.ndarray

    def __post_init__(self):
        self.rows = list(self.rows)
        self.cols = list(self.cols)
        self.cost = np.array(self.cost, dtype=float)
        if self.cost.size == 0:
            self.cost = self.cost.reshape(len(self.rows), len(self.cols))

        if self.cost.shape != (len(self.rows), len(self.cols)):
            raise ValueError(
                f"Cost matrix shape {self.cost.shape} does not match "
                f"{len(self.rows)} origins x {len(self.cols)} destinations"
            )
        if np.isnan(self.cost).any():
            raise ValueError("Cost matrix contains NaN entries; use inf for missing routes")
        finite = np.isfinite(self.cost)
        if (self.cost[finite] < 0).any():
            raise ValueError("Cost matrix contains negative finite entries")
        if len(set(self.rows)) != len(self.rows) or len(set(self.cols)) != len(self.cols):
            raise ValueError("Cost matrix labels must be unique")

        self.cost.flags.writeable = False
        self._row_index = {name: i for i, name in enumerate(self.rows)}
        self._col_index = {name: j for j, name in enumerate(self.cols)}

    @classmethod
    def empty(cls) -> "CostMatrix":
        return cls(rows=[], cols=[], cost=np.zeros((0, 0)))

    def unit_cost(self, origin: str, destination: str) -> float:
        i = self._row_index.get(origin)
        j = self._col_index.get(destination)
        if i is None or j is None:
            return float("inf")
        return float(self.cost[i, j])

    def finite_origins(self, destination: str) -> List[str]:
        """Origins with a finite route to the destination, in row order."""
        j = self._col_index.get(destination)
        if j is None:
            return []
        column = self.cost[:, j]
        return [self.rows[i] for i in range(len(self.rows)) if np.isfinite(column[i])]

    def copy(self) -> "CostMatrix":
        return CostMatrix(rows=list(self.rows), cols=list(self.cols), cost=self.cost.copy())

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.cost, index=self.rows, columns=self.cols)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": list(self.rows),
            "cols": list(self.cols),
            "cost": [[finite_or_none(v) for v in row] for row in self.cost.tolist()],
        }


# ============================================================================
# FACILITIES AND FORECASTS
# ============================================================================

@dataclass
class Facility:
    name: str
    capacity_units: float = 0.0
    id: Optional[str] = None
    city: str = ""
    state: str = ""
    zip_code: str = ""
    square_feet: float = 0.0
    is_forced: bool = False
    force_start_year: Optional[int] = None
    force_end_year: Optional[int] = None
    allow_expansion: bool = False
    lease_rate_per_sqft: Optional[float] = None
    operating_cost_per_sqft: Optional[float] = None
    utilization_target: Optional[float] = None
    fixed_cost_override: Optional[float] = None
    cost_per_unit_override: Optional[float] = None

    @property
    def fixed_cost(self) -> float:
        """Annual fixed cost: square feet times lease plus operating rate."""
        if self.fixed_cost_override is not None:
            return float(self.fixed_cost_override)
        rate = (self.lease_rate_per_sqft or 0.0) + (self.operating_cost_per_sqft or 0.0)
        return float(self.square_feet or 0.0) * rate

    @property
    def cost_per_unit(self) -> float:
        if self.cost_per_unit_override is not None:
            return float(self.cost_per_unit_override)
        return safe_divide(self.fixed_cost, self.capacity_units, default=0.0)

    def is_active_in(self, year: int, base_year: Optional[int] = None) -> bool:
        """
        Whether the facility is in the network during a calendar year.

        A window start at or before ``base_year`` counts as already open.
        """
        start = self.force_start_year
        if start is not None and base_year is not None and start <= base_year:
            start = None
        if start is not None and year < start:
            return False
        if self.force_end_year is not None and year > self.force_end_year:
            return False
        return True

    def opens_in(self, year: int, base_year: int) -> bool:
        return self.force_start_year is not None and self.force_start_year > base_year \
            and self.force_start_year == year

    def closes_after(self, year: int) -> bool:
        return self.force_end_year is not None and self.force_end_year == year - 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "capacity_units": self.capacity_units,
            "square_feet": self.square_feet,
            "is_forced": self.is_forced,
            "force_start_year": self.force_start_year,
            "force_end_year": self.force_end_year,
            "allow_expansion": self.allow_expansion,
            "lease_rate_per_sqft": self.lease_rate_per_sqft,
            "operating_cost_per_sqft": self.operating_cost_per_sqft,
            "utilization_target": self.utilization_target,
            "fixed_cost": self.fixed_cost,
            "cost_per_unit": self.cost_per_unit,
        }


@dataclass
class GrowthForecast:
    year_number: int
    growth_rate: Optional[float] = None
    absolute_demand: Optional[float] = None
    confidence_level: Optional[float] = None
    forecast_type: ForecastType = ForecastType.FORECAST
    is_actual_data: bool = False
    notes: str = ""

    @property
    def absolute_units(self) -> Optional[float]:
        return self.absolute_demand

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year_number": self.year_number,
            "growth_rate": self.growth_rate,
            "absolute_demand": self.absolute_demand,
            "confidence_level": self.confidence_level,
            "forecast_type": self.forecast_type.value,
            "is_actual_data": self.is_actual_data,
            "notes": self.notes,
        }


# ============================================================================
# CAPACITY PLAN RESULTS
# ============================================================================

@dataclass
class FacilityAction:
    name: str
    type: ActionType
    capacity_units: float
    square_feet: float
    estimated_cost: float
    facility_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "capacity_units": self.capacity_units,
            "square_feet": self.square_feet,
            "estimated_cost": self.estimated_cost,
            "facility_id": self.facility_id,
        }


@dataclass
class YearlyCapacityResult:
    year: int
    year_number: int
    required_capacity: float
    available_capacity: float
    capacity_gap: float
    utilization_rate: float
    recommended_facilities: List[FacilityAction] = field(default_factory=list)
    closed_facilities: List[str] = field(default_factory=list)

    @property
    def capacity_added(self) -> float:
        return float(sum(a.capacity_units for a in self.recommended_facilities))

    @property
    def investment(self) -> float:
        return float(sum(a.estimated_cost for a in self.recommended_facilities))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year": self.year,
            "year_number": self.year_number,
            "required_capacity": self.required_capacity,
            "available_capacity": self.available_capacity,
            "capacity_gap": self.capacity_gap,
            "utilization_rate": finite_or_none(self.utilization_rate),
            "recommended_facilities": [a.to_dict() for a in self.recommended_facilities],
            "closed_facilities": list(self.closed_facilities),
        }


@dataclass
class CapacityPlan:
    yearly_results: List[YearlyCapacityResult]
    total_investment: float
    optimization_score: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "yearly_results": [r.to_dict() for r in self.yearly_results],
            "total_investment": self.total_investment,
            "optimization_score": self.optimization_score,
        }


@dataclass
class CapacitySummary:
    peak_capacity_required: float
    total_facilities_recommended: int
    average_utilization: float
    investment_per_unit: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "peak_capacity_required": self.peak_capacity_required,
            "total_facilities_recommended": self.total_facilities_recommended,
            "average_utilization": finite_or_none(self.average_utilization),
            "investment_per_unit": self.investment_per_unit,
        }


@dataclass
class CapacityAnalysisResult:
    scenario_id: str
    analysis_date: str
    base_year: int
    project_duration_years: int
    yearly_results: List[YearlyCapacityResult]
    total_investment_required: float
    summary: CapacitySummary
    optimization_score: float
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scenario_id": self.scenario_id,
            "analysis_date": self.analysis_date,
            "base_year": self.base_year,
            "project_duration_years": self.project_duration_years,
            "yearly_results": [r.to_dict() for r in self.yearly_results],
            "total_investment_required": self.total_investment_required,
            "summary": self.summary.to_dict(),
            "optimization_score": self.optimization_score,
            "recommendations": list(self.recommendations),
        }


# ============================================================================
# NETWORK OPTIMIZATION RESULTS
# ============================================================================

@dataclass
class Assignment:
    facility: str
    destination: str
    demand: float
    unit_cost: float

    @property
    def cost(self) -> float:
        return self.demand * self.unit_cost

    def to_dict(self) -> Dict[str, Any]:
        return {
            "facility": self.facility,
            "destination": self.destination,
            "demand": self.demand,
            "unit_cost": self.unit_cost,
            "cost": self.cost,
        }


@dataclass
class UnassignedDestination:
    destination: str
    demand: float
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {"destination": self.destination, "demand": self.demand, "status": self.status}


@dataclass
class NetworkSolution:
    assignments: List[Assignment]
    open_facilities: List[str]
    unassigned: List[UnassignedDestination]
    fixed_cost: float
    transport_cost: float
    total_cost: float
    status: str
    solver_used: str
    iterations: int = 0
    solve_time_seconds: float = 0.0
    lower_bound: Optional[float] = None
    optimality_gap: Optional[float] = None
    year: Optional[int] = None

    def unassigned_with_status(self, status: str) -> List[UnassignedDestination]:
        return [u for u in self.unassigned if u.status == status]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "year": self.year,
            "assignments": [a.to_dict() for a in self.assignments],
            "open_facilities": list(self.open_facilities),
            "unassigned": [u.to_dict() for u in self.unassigned],
            "fixed_cost": self.fixed_cost,
            "transport_cost": self.transport_cost,
            "total_cost": self.total_cost,
            "status": self.status,
            "solver_used": self.solver_used,
            "iterations": self.iterations,
            "solve_time_seconds": self.solve_time_seconds,
            "lower_bound": finite_or_none(self.lower_bound),
            "optimality_gap": finite_or_none(self.optimality_gap),
        }


@dataclass
class OptimizationResult:
    total_cost: float
    cost_savings: float
    efficiency_score: float
    results_data: Dict[str, Any]
    recommendations: List[str]
    solver_used: str
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_cost": self.total_cost,
            "cost_savings": self.cost_savings,
            "efficiency_score": self.efficiency_score,
            "results_data": self.results_data,
            "recommendations": list(self.recommendations),
            "solver_used": self.solver_used,
            "status": self.status,
        }
