"""
Main Execution Script

Plans capacity and optimizes the facility network for one scenario workbook.

Usage:
    python run.py --input planning_input.xlsx --output_dir outputs/
"""

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path

from netplan.config import OUTPUT_FILE_TEMPLATE, RunnerSettings, parse_solver
from netplan.errors import PlanningError
from netplan.io_loader import load_workbook
from netplan.pipeline import run_scenario, scenario_from_workbook
from netplan.reporting import write_results_workbook
from netplan.runs import ResultStore, generate_run_id
from netplan.utils import format_currency, format_number, format_percentage


def main(
        input_path: str,
        output_dir: str,
        scenario_id: str = None,
        solver: str = None,
        time_limit: float = None,
        results_dir: str = RunnerSettings.RESULTS_DIR
) -> int:
    """
    Main entry point for network planning.

    Args:
        input_path: Path to input Excel file
        output_dir: Directory for the output workbook
        scenario_id: Overrides the scenario_id in run_settings
        solver: Overrides the solver in run_settings
        time_limit: Overrides time_limit_seconds in run_settings
        results_dir: Root of the JSON result store

    Returns:
        Exit code (0 for success)
    """
    start_time = datetime.now()

    print("=" * 70)
    print("NETWORK CAPACITY PLANNING & OPTIMIZATION")
    print("=" * 70)

    input_path = Path(input_path)
    output_dir = Path(output_dir)
    output_dir.mkdir(exist_ok=True, parents=True)

    print(f"\n Input: {input_path.name}")
    print(f" Output: {output_dir}")

    print(f"\n{'=' * 70}")
    print("LOADING INPUTS")
    print("=" * 70)

    try:
        dfs = load_workbook(input_path)
        print("Workbook loaded successfully")
    except (OSError, ValueError) as e:
        print(f"\n ERROR: Could not load workbook: {e}")
        return 1

    try:
        inputs = scenario_from_workbook(dfs, scenario_id=scenario_id)
        print("Input validation passed")
    except PlanningError as e:
        print(f"\n ERROR: [{e.code.value}] {e.reason}")
        for detail in e.details.get("errors", []):
            print(f"   - {detail}")
        return 1
    except ValueError as e:
        print(f"\n ERROR: Input validation failed: {e}")
        return 1

    settings = inputs.settings
    if solver:
        settings.solver = parse_solver(solver).value
    if time_limit is not None:
        settings.time_limit_seconds = time_limit

    for name, stats in inputs.row_stats.items():
        if stats.rows_read:
            print(f"  {name}: {stats.rows_used} rows used, {stats.rows_skipped} skipped")
            for reason, count in sorted(stats.reasons.items()):
                print(f"    skipped ({reason}): {count}")

    run_id = generate_run_id()

    print(f"\nConfiguration:")
    print(f"  Scenario: {inputs.scenario_id}")
    print(f"  Base year: {settings.base_year}, horizon: {settings.project_duration_years} years")
    print(f"  Utilization target: {settings.utilization_target}")
    print(f"  Solver: {settings.solver} ({'split' if settings.split_sourcing else 'single'} sourcing)")
    print(f"  Time limit: {settings.time_limit_seconds}s")
    print(f"  Run ID: {run_id}")

    print(f"\n{'=' * 70}")
    print("RUNNING SCENARIO")
    print("=" * 70)

    try:
        outcome = run_scenario(inputs)
    except PlanningError as e:
        print(f"\n ERROR: [{e.code.value}] {e.reason}")
        return 1

    analysis = outcome.capacity_analysis
    result = outcome.optimization_result

    print(f"\n1. Capacity plan:")
    print(f"  Total investment: {format_currency(analysis.total_investment_required)}")
    print(f"  Peak capacity required: {format_number(analysis.summary.peak_capacity_required)} units")
    print(f"  Facilities recommended: {analysis.summary.total_facilities_recommended}")
    print(f"  Optimization score: {analysis.optimization_score:.1f}")

    print(f"\n2. Network:")
    for solution in outcome.solutions:
        label = solution.year if solution.year is not None else "base"
        print(
            f"  {label}: {solution.status}, {len(solution.open_facilities)} facilities open, "
            f"cost {format_currency(solution.total_cost)}, "
            f"gap {format_percentage(solution.optimality_gap or 0.0)}"
        )
        if solution.unassigned:
            print(f"    {len(solution.unassigned)} destinations unassigned")

    print(f"\n3. Results:")
    print(f"  Total cost: {format_currency(result.total_cost)}")
    print(f"  Efficiency score: {result.efficiency_score:.1f}")
    print(f"  Status: {result.status}")

    output_path = output_dir / OUTPUT_FILE_TEMPLATE.format(scenario_id=inputs.scenario_id, run_id=run_id)
    fixed_costs = {f.name: f.fixed_cost for f in inputs.facilities}
    capacity = dict(inputs.capacity) or {f.name: f.capacity_units for f in inputs.facilities}
    write_results_workbook(output_path, analysis, outcome.solutions, result, capacity, fixed_costs)

    store = ResultStore(Path(results_dir))
    result_path = store.save(inputs.scenario_id, run_id, outcome.to_dict())

    elapsed = datetime.now() - start_time

    print(f"\n{'=' * 70}")
    print("PLANNING COMPLETE")
    print("=" * 70)
    print(f"Elapsed time: {elapsed}")
    print(f"\nOutput file: {output_path}")
    print(f"Result record: {result_path}")

    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Network Capacity Planning & Optimization")
    parser.add_argument("--input", required=True, help="Path to input Excel file")
    parser.add_argument("--output_dir", required=True, help="Path to output directory")
    parser.add_argument("--scenario_id", default=None, help="Scenario id (overrides run_settings)")
    parser.add_argument("--solver", default=None, help="heuristic or exact (overrides run_settings)")
    parser.add_argument("--time_limit", type=float, default=None, help="Search time limit in seconds")
    parser.add_argument("--results_dir", default=RunnerSettings.RESULTS_DIR, help="Result store directory")
    parser.add_argument("--verbose", action="store_true", help="Show engine log messages")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        exit_code = main(
            args.input, args.output_dir,
            scenario_id=args.scenario_id,
            solver=args.solver,
            time_limit=args.time_limit,
            results_dir=args.results_dir,
        )
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(1)
    except Exception as e:
        print(f"\nFATAL ERROR: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
