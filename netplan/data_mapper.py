"""
Data Mapper Module

Turns raw array-of-arrays rows plus a column mapping into the canonical
DemandData, CostMatrix and CapacityMap structures.

Mappings are validated before any row is read. After that no single bad row
raises: it is skipped and counted in a RowStats.
"""

import logging
from collections import Counter, OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .columns import assign_roles, looks_like_header
from .config import HEADER_KEYWORDS, ErrorCode, MappingKind
from .errors import InsufficientInputError
from .models import (
    CapacityColumns,
    CapacityMap,
    ColumnSuggestion,
    CostColumns,
    CostMatrix,
    DemandColumns,
    DemandData,
    DemandMap,
)
from .utils import to_number, to_text
from .validators import require_valid_mapping, validate_mapping  # noqa: F401

logger = logging.getLogger(__name__)

Rows = Sequence[Sequence[Any]]


# ============================================================================
# ROW STATISTICS
# ============================================================================

@dataclass
class RowStats:
    """Counts of rows read and skipped while mapping one table."""
    rows_read: int = 0
    rows_skipped: int = 0
    reasons: Counter = field(default_factory=Counter)

    def read(self) -> None:
        self.rows_read += 1

    def skip(self, reason: str) -> None:
        self.rows_skipped += 1
        self.reasons[reason] += 1

    @property
    def rows_used(self) -> int:
        return self.rows_read - self.rows_skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": ErrorCode.ROW_SKIPPED.value,
            "rows_read": self.rows_read,
            "rows_skipped": self.rows_skipped,
            "reasons": dict(self.reasons),
        }


def _data_rows(rows: Rows, kind: MappingKind) -> Tuple[Sequence, Rows]:
    """Split off row 0 when it looks like a header row."""
    if not rows:
        return [], []
    first = rows[0]
    if looks_like_header(first, HEADER_KEYWORDS[kind.value]):
        return first, rows[1:]
    return first, rows


def _cell(row: Sequence, index: Optional[int]) -> Any:
    if index is None or index >= len(row):
        return None
    return row[index]


def _log_stats(kind: str, stats: RowStats) -> None:
    if stats.rows_skipped:
        logger.info(
            "%s mapping skipped %d of %d rows: %s",
            kind, stats.rows_skipped, stats.rows_read, dict(stats.reasons)
        )


# ============================================================================
# COLUMN SUGGESTION
# ============================================================================

_DEMAND_ROLES = ["destination", "demand", "year"]
_COST_ROLES = ["origin", "destination", "cost_per_mile", "cost_per_cwt", "distance", "weight", "cost"]
_CAPACITY_ROLES = ["facility", "capacity", "utilization"]


def suggest_column_mapping(headers: Sequence) -> ColumnSuggestion:
    """
    Suggest demand, cost and capacity mappings for a header row.

    Each mapping is filled role by role in priority order; a column taken by
    one role is not offered to a later role of the same mapping. A mapping is
    only suggested when its required roles were all found.

    Example:
        >>> s = suggest_column_mapping(["Origin", "Destination", "Cost"])
        >>> s.cost.origin, s.cost.destination, s.cost.cost
        (0, 1, 2)
    """
    headers = list(headers or [])
    suggestion = ColumnSuggestion()

    demand = assign_roles(headers, _DEMAND_ROLES)
    if demand["destination"] is not None and demand["demand"] is not None:
        suggestion.demand = DemandColumns(**demand)

    cost = CostColumns(**assign_roles(headers, _COST_ROLES))
    if cost.origin is not None and cost.destination is not None and (
            cost.has_direct_cost() or cost.has_mileage_cost() or cost.has_cwt_cost()):
        suggestion.cost = cost

    capacity = assign_roles(headers, _CAPACITY_ROLES)
    if capacity["facility"] is not None and capacity["capacity"] is not None:
        suggestion.capacity = CapacityColumns(**capacity)

    return suggestion


# ============================================================================
# DEMAND
# ============================================================================

def map_demand_aoa(rows: Rows, mapping, stats: Optional[RowStats] = None) -> DemandData:
    """
    Sum demand per destination, partitioned by year when a year column is mapped.

    Args:
        rows: Array-of-arrays, optionally with a header row
        mapping: DemandColumns or equivalent dict
        stats: Optional RowStats collecting skip counts

    Returns:
        DemandData with ``base`` (no year column) or ``by_year`` populated

    Raises:
        MappingInvalidError: If the mapping does not fit the table
    """
    stats = stats if stats is not None else RowStats()
    if not rows:
        return DemandData(base={}) if not _has_year(mapping) else DemandData(by_year={})

    header, data = _data_rows(rows, MappingKind.DEMAND)
    mapping = require_valid_mapping(header, mapping, MappingKind.DEMAND)

    base: Dict[str, float] = OrderedDict()
    by_year: Dict[int, Dict[str, float]] = {}

    for row in data:
        stats.read()
        destination = to_text(_cell(row, mapping.destination))
        if not destination:
            stats.skip("empty_destination")
            continue

        demand = to_number(_cell(row, mapping.demand))
        if demand is None:
            stats.skip("non_numeric_demand")
            continue
        if demand < 0:
            stats.skip("negative_demand")
            continue

        if mapping.year is None:
            base[destination] = base.get(destination, 0.0) + demand
            continue

        year = to_number(_cell(row, mapping.year))
        if year is None:
            stats.skip("non_numeric_year")
            continue
        bucket = by_year.setdefault(int(year), OrderedDict())
        bucket[destination] = bucket.get(destination, 0.0) + demand

    _log_stats("demand", stats)
    if mapping.year is None:
        return DemandData(base=dict(base))
    return DemandData(by_year={y: dict(by_year[y]) for y in sorted(by_year)})


def _has_year(mapping) -> bool:
    if isinstance(mapping, dict):
        return mapping.get("year") is not None
    return getattr(mapping, "year", None) is not None


def scale_demand_from_baseline(base: DemandMap, total_units: float) -> DemandMap:
    """
    Distribute a yearly total across destinations by baseline shares.

    When the baseline sums to zero the total is split evenly.
    """
    if total_units < 0:
        raise ValueError(f"total_units must be non-negative, got {total_units}")
    if not base:
        return {}
    baseline_total = float(sum(base.values()))
    if baseline_total <= 0:
        even = total_units / len(base)
        return {dest: even for dest in base}
    return {dest: total_units * value / baseline_total for dest, value in base.items()}


# ============================================================================
# COSTS
# ============================================================================

def _row_cost(row: Sequence, mapping: CostColumns) -> Optional[float]:
    """First computable cost: direct, then per-mile x distance, then CWT x weight / 100."""
    if mapping.has_direct_cost():
        direct = to_number(_cell(row, mapping.cost))
        if direct is not None:
            return direct

    if mapping.has_mileage_cost():
        per_mile = to_number(_cell(row, mapping.cost_per_mile))
        distance = to_number(_cell(row, mapping.distance))
        if per_mile is not None and distance is not None:
            return per_mile * distance

    if mapping.has_cwt_cost():
        cwt = to_number(_cell(row, mapping.cost_per_cwt))
        weight = to_number(_cell(row, mapping.weight))
        if cwt is not None and weight is not None:
            return cwt * weight / 100.0

    return None


def map_cost_aoa(rows: Rows, mapping, stats: Optional[RowStats] = None) -> CostMatrix:
    """
    Build a CostMatrix from one row per (origin, destination) lane.

    Duplicate lanes keep the last row processed. Origins and destinations are
    ordered by first appearance; lanes never observed are inf.

    Raises:
        MappingInvalidError: If the mapping does not fit the table or names no cost method
    """
    stats = stats if stats is not None else RowStats()
    if not rows:
        return CostMatrix.empty()

    header, data = _data_rows(rows, MappingKind.COST)
    mapping = require_valid_mapping(header, mapping, MappingKind.COST)

    origins: Dict[str, int] = OrderedDict()
    destinations: Dict[str, int] = OrderedDict()
    lanes: Dict[Tuple[str, str], float] = {}

    for row in data:
        stats.read()
        origin = to_text(_cell(row, mapping.origin))
        destination = to_text(_cell(row, mapping.destination))
        if not origin:
            stats.skip("empty_origin")
            continue
        if not destination:
            stats.skip("empty_destination")
            continue

        cost = _row_cost(row, mapping)
        if cost is None:
            stats.skip("no_computable_cost")
            continue
        if cost < 0:
            stats.skip("negative_cost")
            continue

        origins.setdefault(origin, len(origins))
        destinations.setdefault(destination, len(destinations))
        lanes[(origin, destination)] = cost

    matrix = np.full((len(origins), len(destinations)), np.inf)
    for (origin, destination), cost in lanes.items():
        matrix[origins[origin], destinations[destination]] = cost

    _log_stats("cost", stats)
    return CostMatrix(rows=list(origins), cols=list(destinations), cost=matrix)


def map_cost_matrix_wide(rows: Rows, stats: Optional[RowStats] = None) -> CostMatrix:
    """
    Parse a wide cost table: row 0 holds destinations, column 0 holds origins.

    Non-numeric or negative cells become inf. A repeated origin row replaces
    the earlier one.
    """
    stats = stats if stats is not None else RowStats()
    if not rows or len(rows[0]) < 2:
        return CostMatrix.empty()

    destinations: List[str] = []
    columns: List[int] = []
    for index, cell in enumerate(rows[0][1:], start=1):
        name = to_text(cell)
        if name and name not in destinations:
            destinations.append(name)
            columns.append(index)

    origin_rows: Dict[str, List[float]] = OrderedDict()
    for row in rows[1:]:
        stats.read()
        origin = to_text(_cell(row, 0))
        if not origin:
            stats.skip("empty_origin")
            continue
        values = []
        for index in columns:
            value = to_number(_cell(row, index))
            values.append(value if value is not None and value >= 0 else np.inf)
        origin_rows[origin] = values

    _log_stats("wide cost", stats)
    matrix = np.array(list(origin_rows.values()), dtype=float) if origin_rows \
        else np.zeros((0, len(destinations)))
    return CostMatrix(rows=list(origin_rows), cols=destinations, cost=matrix)


# ============================================================================
# CAPACITY
# ============================================================================

def map_capacity_aoa(rows: Rows, mapping, stats: Optional[RowStats] = None) -> CapacityMap:
    """
    Capacity units per facility; the last row for a facility wins.

    A utilization multiplier is applied only when it is finite and in (0, 1];
    any other utilization value leaves the raw capacity unchanged.

    Raises:
        MappingInvalidError: If the mapping does not fit the table
    """
    stats = stats if stats is not None else RowStats()
    if not rows:
        return {}

    header, data = _data_rows(rows, MappingKind.CAPACITY)
    mapping = require_valid_mapping(header, mapping, MappingKind.CAPACITY)

    capacity: CapacityMap = OrderedDict()
    for row in data:
        stats.read()
        facility = to_text(_cell(row, mapping.facility))
        if not facility:
            stats.skip("empty_facility")
            continue

        units = to_number(_cell(row, mapping.capacity))
        if units is None:
            stats.skip("non_numeric_capacity")
            continue
        if units < 0:
            stats.skip("negative_capacity")
            continue

        if mapping.utilization is not None:
            utilization = to_number(_cell(row, mapping.utilization))
            if utilization is not None and 0 < utilization <= 1:
                units *= utilization

        capacity[facility] = units

    _log_stats("capacity", stats)
    return dict(capacity)


def base_capacity_from(capacity: CapacityMap) -> float:
    """Sum of mapped facility capacity."""
    if capacity is None:
        raise InsufficientInputError("No capacity map supplied")
    return float(sum(capacity.values()))
