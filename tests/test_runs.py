"""Tests for the result store and the background run manager."""

import re
import threading
from datetime import datetime

import numpy as np
import pytest

from netplan.config import RunState
from netplan.errors import InsufficientInputError
from netplan.runs import OptimizationRunner, ResultStore, generate_run_id


# ============================================================================
# RESULT STORE
# ============================================================================

class TestResultStore:

    def test_latest_timestamp_wins(self, tmp_path):
        store = ResultStore(tmp_path)
        store.save("base", "run_b", {"total_cost": 2.0}, timestamp=datetime(2025, 1, 2, 8, 0))
        store.save("base", "run_a", {"total_cost": 1.0}, timestamp=datetime(2025, 1, 1, 8, 0))

        latest = store.latest("base")
        assert latest["run_id"] == "run_b"
        assert latest["payload"] == {"total_cost": 2.0}
        assert [r.run_id for r in store.list_runs("base")] == ["run_a", "run_b"]

    def test_runs_never_overwrite(self, tmp_path):
        store = ResultStore(tmp_path)
        stamp = datetime(2025, 1, 1, 8, 0)
        store.save("base", "run_a", {"v": 1}, timestamp=stamp)
        with pytest.raises(FileExistsError):
            store.save("base", "run_a", {"v": 2}, timestamp=stamp)
        assert store.get("base", "run_a")["payload"] == {"v": 1}

    def test_scenarios_are_isolated(self, tmp_path):
        store = ResultStore(tmp_path)
        store.save("north", "r1", {"v": 1})
        assert store.latest("south") is None
        assert store.get("north", "missing") is None

    def test_non_json_values_are_converted(self, tmp_path):
        store = ResultStore(tmp_path)
        stamp = datetime(2025, 3, 1, 12, 0)
        store.save("base", "r1", {"when": stamp, "count": np.int64(3)})
        payload = store.latest("base")["payload"]
        assert payload == {"when": "2025-03-01T12:00:00", "count": 3}

    def test_unsafe_scenario_id(self, tmp_path):
        store = ResultStore(tmp_path)
        path = store.save("../north east", "r1", {})
        assert path.parent.parent == tmp_path
        with pytest.raises(ValueError):
            store.save("///", "r1", {})

    def test_unserializable_payload_leaves_no_file(self, tmp_path):
        store = ResultStore(tmp_path)
        store.save("base", "good", {"v": 1}, timestamp=datetime(2025, 1, 1, 8, 0))
        with pytest.raises(TypeError):
            store.save("base", "bad", {"v": {1, 2}}, timestamp=datetime(2025, 1, 2, 8, 0))

        assert [p.name for p in (tmp_path / "base").iterdir()] == ["20250101T080000000000_good.json"]
        assert store.latest("base")["run_id"] == "good"


def test_generate_run_id():
    run_id = generate_run_id(datetime(2025, 6, 1, 9, 30, 0))
    assert re.fullmatch(r"20250601_093000_[0-9a-f]{8}", run_id)
    assert generate_run_id() != generate_run_id()


# ============================================================================
# RUNNER
# ============================================================================

class TestOptimizationRunner:

    def test_completed_run_is_stored(self, tmp_path):
        store = ResultStore(tmp_path)
        with OptimizationRunner(lambda inputs, budget: {"total": inputs["x"] * 2}, store=store) as runner:
            run_id = runner.submit("base", {"x": 21})
            record = runner.wait(run_id, timeout=10)

        assert record.state == RunState.COMPLETED
        assert record.result == {"total": 42}
        assert store.latest("base")["payload"] == {"total": 42}
        assert record.result_path.exists()

    def test_inputs_are_copied(self):
        original = {"rows": [1, 2]}

        def mutate(inputs, budget):
            inputs["rows"].append(3)
            return {"n": len(inputs["rows"])}

        with OptimizationRunner(mutate) as runner:
            record = runner.wait(runner.submit("base", original), timeout=10)

        assert record.result == {"n": 3}
        assert original == {"rows": [1, 2]}

    def test_planning_error_fails_with_code(self):
        def fail(inputs, budget):
            raise InsufficientInputError("nothing to plan")

        with OptimizationRunner(fail) as runner:
            record = runner.wait(runner.submit("base", {}), timeout=10)

        assert record.state == RunState.FAILED
        assert record.error_code == "insufficient_input"
        assert record.error_message == "nothing to plan"

    def test_unexpected_error_fails_as_internal(self):
        def crash(inputs, budget):
            raise RuntimeError("boom")

        with OptimizationRunner(crash) as runner:
            record = runner.wait(runner.submit("base", {}), timeout=10)

        assert record.state == RunState.FAILED
        assert record.error_code == "internal_error"

    def test_cancel_running(self):
        started = threading.Event()

        def slow(inputs, budget):
            started.set()
            budget.cancel_event.wait(10)
            return {"stopped": budget.cancelled}

        with OptimizationRunner(slow) as runner:
            run_id = runner.submit("base", {})
            assert started.wait(10)
            assert runner.cancel(run_id)
            record = runner.wait(run_id, timeout=10)

        assert record.state == RunState.CANCELLED
        assert record.result == {"stopped": True}

    def test_duplicate_and_unknown_run_ids(self):
        with OptimizationRunner(lambda inputs, budget: {}) as runner:
            runner.submit("base", {}, run_id="r1")
            with pytest.raises(ValueError):
                runner.submit("base", {}, run_id="r1")
            with pytest.raises(KeyError):
                runner.status("nope")
            runner.wait("r1", timeout=10)
            assert [r.run_id for r in runner.runs()] == ["r1"]

    def test_storage_failure_fails_the_run(self, tmp_path):
        store = ResultStore(tmp_path)
        with OptimizationRunner(lambda inputs, budget: {"bad": {1, 2}}, store=store) as runner:
            record = runner.wait(runner.submit("s1", {}), timeout=10)

        assert record.state == RunState.FAILED
        assert record.error_code == "storage_error"
        assert record.result_path is None
        assert store.latest("s1") is None
        assert list(tmp_path.glob("s1/*")) == []

    def test_forget_finished_run(self):
        release = threading.Event()

        def blocked(inputs, budget):
            release.wait(10)
            return {}

        with OptimizationRunner(blocked) as runner:
            run_id = runner.submit("base", {})
            with pytest.raises(ValueError):
                runner.forget(run_id)
            release.set()
            runner.wait(run_id, timeout=10)

            record = runner.forget(run_id)
            assert record.state == RunState.COMPLETED
            assert runner.runs() == []
            with pytest.raises(KeyError):
                runner.status(run_id)
            with pytest.raises(KeyError):
                runner.forget(run_id)
