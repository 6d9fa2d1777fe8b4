"""Tests for the per-run execution context."""

import threading

import pytest

from apiflow.orchestration.workflow_engine import ExecutionContext, MissingOutputError, reference
from apiflow.orchestration.workflow_engine.paths import PathNotFound


@pytest.fixture
def context():
    ctx = ExecutionContext(run_id="run-1")
    ctx.record_outputs("lookup", {"countryIds": ["AU-1", "NZ-1"], "meta": {"count": 2}})
    ctx.record_outputs(
        "zone",
        {"zoneId": "Z-1"},
        [MissingOutputError("zone", "name", "zone.name", "key 'name' not found")],
    )
    return ctx


class TestRecordOutputs:
    def test_keys_use_step_and_output(self, context):
        assert context["lookup.countryIds"] == ["AU-1", "NZ-1"]
        assert "zone.zoneId" in context
        assert "zone.name" not in context
        assert len(context) == 3

    def test_sequence_follows_completion(self, context):
        assert context.record_outputs("method", {}) == 2
        assert context.completion_order == ["lookup", "zone", "method"]

    def test_step_without_outputs_still_counts_as_completed(self):
        ctx = ExecutionContext()
        ctx.record_outputs("noop", {})
        assert ctx.has_step("noop")
        assert len(ctx) == 0


class TestResolve:
    def test_resolve_whole_value(self, context):
        assert context.resolve(reference("zone", "zoneId")) == "Z-1"

    def test_resolve_with_path(self, context):
        assert context.resolve(reference("lookup", "countryIds", "[-1]")) == "NZ-1"
        assert context.resolve(reference("lookup", "meta", "count")) == 2

    def test_missing_key(self, context):
        with pytest.raises(KeyError):
            context.resolve(reference("zone", "name"))

    def test_missing_path(self, context):
        with pytest.raises(PathNotFound):
            context.resolve(reference("lookup", "meta", "total"))

    def test_try_resolve(self, context):
        assert context.try_resolve(reference("zone", "zoneId")) == (True, "Z-1")
        assert context.try_resolve(reference("zone", "name")) == (False, None)
        assert context.try_resolve(reference("lookup", "meta", "total")) == (False, None)

    def test_missing_cause(self, context):
        cause = context.missing_cause("zone.name")
        assert isinstance(cause, MissingOutputError)
        assert cause.path == "zone.name"
        assert context.missing_cause("zone.zoneId") is None


class TestRemoveStep:
    def test_removes_only_that_step(self, context):
        removed = context.remove_step("lookup")

        assert sorted(removed) == ["lookup.countryIds", "lookup.meta"]
        assert context.keys() == ["zone.zoneId"]
        assert not context.has_step("lookup")
        assert context.completion_order == ["zone"]

    def test_removes_missing_causes(self, context):
        context.remove_step("zone")
        assert context.missing_cause("zone.name") is None

    def test_similar_prefix_is_kept(self):
        ctx = ExecutionContext()
        ctx.record_outputs("zone", {"id": 1})
        ctx.record_outputs("zone_extra", {"id": 2})
        ctx.remove_step("zone")
        assert ctx.keys() == ["zone_extra.id"]


class TestSnapshotAndFailures:
    def test_snapshot_is_a_deep_copy(self, context):
        snapshot = context.snapshot()
        snapshot["lookup.countryIds"].append("XX")
        assert context["lookup.countryIds"] == ["AU-1", "NZ-1"]

    def test_mark_failed(self, context):
        context.mark_failed("method")
        assert context.failed_steps == {"method"}
        assert not context.has_step("method")

    def test_set_and_get(self):
        ctx = ExecutionContext()
        ctx.set("seed.value", 42)
        assert ctx.get("seed.value") == 42
        assert ctx.get("seed.other", "default") == "default"

    def test_concurrent_writes(self):
        ctx = ExecutionContext()

        def write(n):
            ctx.record_outputs(f"step{n}", {"value": n})

        threads = [threading.Thread(target=write, args=(n,)) for n in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(ctx) == 20
        assert sorted(ctx.completion_order) == sorted(f"step{n}" for n in range(20))
