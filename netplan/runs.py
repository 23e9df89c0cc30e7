"""
Run management: background execution of scenario runs and the file-based
result store.

Store layout:
    {root}/
    ├── {scenario_id}/
    │   ├── 20250101T083000000000_20250101_083000_ab12cd34.json
    │   └── 20250102T061500000000_20250102_061500_ef56ab78.json
    └── ...

Each run writes exactly one new file; existing files are never rewritten.
The current result for a scenario is the file with the latest timestamp.
"""

import copy
import json
import logging
import os
import re
import threading
import uuid
from concurrent.futures import CancelledError, Future, ThreadPoolExecutor, TimeoutError
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .config import (
    RESULT_FILE_TEMPLATE,
    RESULT_TIMESTAMP_FORMAT,
    RunnerSettings,
    RunState,
)
from .errors import PlanningError
from .optimizer import SearchBudget

logger = logging.getLogger(__name__)


def generate_run_id(now: Optional[datetime] = None) -> str:
    """Unique run identifier: timestamp plus a random suffix."""
    now = now or datetime.now()
    return f"{now.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:8]}"


def _safe_dir_name(scenario_id: str) -> str:
    name = re.sub(r"[^A-Za-z0-9_.-]+", "_", str(scenario_id)).strip("._")
    if not name:
        raise ValueError(f"Invalid scenario_id: {scenario_id!r}")
    return name


def _json_default(value: Any):
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if hasattr(value, "item"):
        return value.item()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


# ============================================================================
# RESULT STORE
# ============================================================================

@dataclass(frozen=True)
class StoredRun:
    scenario_id: str
    run_id: str
    timestamp: datetime
    path: Path


class ResultStore:
    """
    One JSON file per run under ``{root}/{scenario_id}/``.

    Example:
        >>> store = ResultStore("results")
        >>> path = store.save("base", "run1", {"total_cost": 10.0})
        >>> store.latest("base")["payload"]["total_cost"]
        10.0
    """

    def __init__(self, root: Path = Path(RunnerSettings.RESULTS_DIR)):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _scenario_dir(self, scenario_id: str) -> Path:
        return self.root / _safe_dir_name(scenario_id)

    def save(
            self,
            scenario_id: str,
            run_id: str,
            payload: Dict[str, Any],
            timestamp: Optional[datetime] = None
    ) -> Path:
        """
        Write a new result file.

        The document is serialized before anything touches disk and lands
        under its final name only once fully written.

        Raises:
            FileExistsError: If a file for this timestamp and run id already exists
            TypeError: If the payload is not JSON serializable
        """
        timestamp = timestamp or datetime.now()
        directory = self._scenario_dir(scenario_id)
        file_name = RESULT_FILE_TEMPLATE.format(
            timestamp=timestamp.strftime(RESULT_TIMESTAMP_FORMAT),
            run_id=_safe_dir_name(run_id),
        )
        document = {
            "scenario_id": scenario_id,
            "run_id": run_id,
            "saved_at": timestamp.isoformat(),
            "payload": payload,
        }

        text = json.dumps(document, indent=2, default=_json_default)

        with self._lock:
            directory.mkdir(parents=True, exist_ok=True)
            path = directory / file_name
            if path.exists():
                raise FileExistsError(f"Result file already exists: {path}")
            tmp_path = directory / f".{file_name}.{uuid.uuid4().hex[:8]}.tmp"
            try:
                with open(tmp_path, "x", encoding="utf-8") as f:
                    f.write(text)
                os.replace(tmp_path, path)
            finally:
                if tmp_path.exists():
                    tmp_path.unlink()

        logger.info("saved run %s for scenario %s to %s", run_id, scenario_id, path)
        return path

    def load(self, path: Path) -> Dict[str, Any]:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    def list_runs(self, scenario_id: str) -> List[StoredRun]:
        """Stored runs for a scenario, oldest first."""
        directory = self._scenario_dir(scenario_id)
        if not directory.exists():
            return []

        runs = []
        for path in directory.glob("*.json"):
            stamp, _, run_id = path.stem.partition("_")
            try:
                timestamp = datetime.strptime(stamp, RESULT_TIMESTAMP_FORMAT)
            except ValueError:
                logger.warning("ignoring unrecognized result file %s", path)
                continue
            runs.append(StoredRun(scenario_id, run_id, timestamp, path))

        runs.sort(key=lambda r: (r.timestamp, r.run_id))
        return runs

    def latest(self, scenario_id: str) -> Optional[Dict[str, Any]]:
        """Current result for a scenario: latest timestamp wins, never merged."""
        runs = self.list_runs(scenario_id)
        if not runs:
            return None
        return self.load(runs[-1].path)

    def get(self, scenario_id: str, run_id: str) -> Optional[Dict[str, Any]]:
        for run in self.list_runs(scenario_id):
            if run.run_id == run_id:
                return self.load(run.path)
        return None


# ============================================================================
# RUNNER
# ============================================================================

@dataclass
class RunRecord:
    run_id: str
    scenario_id: str
    state: RunState = RunState.QUEUED
    submitted_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    result_path: Optional[Path] = None

    @property
    def done(self) -> bool:
        return self.state in (RunState.COMPLETED, RunState.FAILED, RunState.CANCELLED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "scenario_id": self.scenario_id,
            "state": self.state.value,
            "submitted_at": self.submitted_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "result_path": str(self.result_path) if self.result_path else None,
        }


# A run function takes (inputs, budget) and returns a JSON-ready result dict
RunFunction = Callable[[Any, SearchBudget], Dict[str, Any]]


class OptimizationRunner:
    """
    Runs scenarios on a thread pool and tracks their state for polling.

    Every submission gets a deep copy of its inputs and its own SearchBudget,
    so concurrent runs share nothing but the result store.
    """

    def __init__(
            self,
            run_fn: RunFunction,
            store: Optional[ResultStore] = None,
            max_workers: int = RunnerSettings.MAX_WORKERS,
            time_limit_seconds: Optional[float] = None
    ):
        self._run_fn = run_fn
        self._store = store
        self._time_limit = time_limit_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="netplan-run")
        self._records: Dict[str, RunRecord] = {}
        self._futures: Dict[str, Future] = {}
        self._budgets: Dict[str, SearchBudget] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "OptimizationRunner":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def submit(
            self,
            scenario_id: str,
            inputs: Any,
            run_id: Optional[str] = None,
            time_limit_seconds: Optional[float] = None
    ) -> str:
        """Queue a run and return its run id."""
        run_id = run_id or generate_run_id()
        limit = time_limit_seconds if time_limit_seconds is not None else self._time_limit
        budget = SearchBudget(limit)

        with self._lock:
            if run_id in self._records:
                raise ValueError(f"Duplicate run_id: {run_id}")
            self._records[run_id] = RunRecord(run_id=run_id, scenario_id=scenario_id)
            self._budgets[run_id] = budget
            self._futures[run_id] = self._executor.submit(
                self._execute, run_id, copy.deepcopy(inputs), budget
            )

        logger.info("queued run %s for scenario %s", run_id, scenario_id)
        return run_id

    def _update(self, run_id: str, **changes) -> RunRecord:
        with self._lock:
            record = replace(self._records[run_id], **changes)
            self._records[run_id] = record
            return record

    def _execute(self, run_id: str, inputs: Any, budget: SearchBudget) -> RunRecord:
        record = self._update(run_id, state=RunState.RUNNING, started_at=datetime.now())
        logger.info("run %s started", run_id)

        try:
            result = self._run_fn(inputs, budget)
        except PlanningError as exc:
            logger.warning("run %s failed: [%s] %s", run_id, exc.code.value, exc.reason)
            return self._update(
                run_id, state=RunState.FAILED, finished_at=datetime.now(),
                error_code=exc.code.value, error_message=exc.reason,
            )
        except Exception as exc:
            logger.exception("run %s raised an unexpected error", run_id)
            self._update(
                run_id, state=RunState.FAILED, finished_at=datetime.now(),
                error_code="internal_error", error_message=str(exc),
            )
            raise

        path = None
        if self._store is not None:
            try:
                path = self._store.save(record.scenario_id, run_id, result)
            except (OSError, TypeError, ValueError) as exc:
                logger.error("run %s could not be stored: %s", run_id, exc)
                return self._update(
                    run_id, state=RunState.FAILED, finished_at=datetime.now(),
                    error_code="storage_error", error_message=str(exc),
                )

        state = RunState.CANCELLED if budget.cancelled else RunState.COMPLETED
        logger.info("run %s finished: %s", run_id, state.value)
        return self._update(
            run_id, state=state, finished_at=datetime.now(), result=result, result_path=path,
        )

    def status(self, run_id: str) -> RunRecord:
        with self._lock:
            if run_id not in self._records:
                raise KeyError(f"Unknown run_id: {run_id}")
            return replace(self._records[run_id])

    def wait(self, run_id: str, timeout: Optional[float] = None) -> RunRecord:
        """Block until the run finishes (or the timeout passes) and return its record."""
        with self._lock:
            future = self._futures.get(run_id)
        if future is None:
            raise KeyError(f"Unknown run_id: {run_id}")
        try:
            future.exception(timeout=timeout)
        except (TimeoutError, CancelledError):
            logger.debug("wait on run %s returned before completion", run_id)
        return self.status(run_id)

    def cancel(self, run_id: str) -> bool:
        """
        Cancel a run.

        A queued run is dropped; a running one is asked to stop and returns
        its incumbent with status ``cancelled``.
        """
        with self._lock:
            future = self._futures.get(run_id)
            budget = self._budgets.get(run_id)
        if future is None:
            raise KeyError(f"Unknown run_id: {run_id}")

        if future.cancel():
            self._update(run_id, state=RunState.CANCELLED, finished_at=datetime.now())
            logger.info("run %s cancelled before start", run_id)
            return True
        if future.done():
            return False
        budget.cancel()
        logger.info("run %s asked to stop", run_id)
        return True

    def runs(self) -> List[RunRecord]:
        with self._lock:
            return [replace(r) for r in self._records.values()]

    def forget(self, run_id: str) -> RunRecord:
        """
        Drop a finished run from the runner and return its final record.

        Stored result files are untouched.

        Raises:
            KeyError: If the run id is unknown
            ValueError: If the run has not finished yet
        """
        with self._lock:
            record = self._records.get(run_id)
            if record is None:
                raise KeyError(f"Unknown run_id: {run_id}")
            future = self._futures.get(run_id)
            if not record.done or (future is not None and not future.done()):
                raise ValueError(f"Run {run_id} is still {record.state.value}")
            del self._records[run_id]
            self._futures.pop(run_id, None)
            self._budgets.pop(run_id, None)
        return record

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
