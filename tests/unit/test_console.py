"""Tests for console rendering."""

import io
import json
import logging

import pytest
from rich.console import Console
from rich.logging import RichHandler

from apiflow.orchestration.workflow_engine import (
    ExecutionResult,
    RollbackOutcome,
    RollbackStatus,
    StepResult,
    StepStatus,
    Violation,
    WorkflowStatus,
)
from apiflow.ui.console import ConsoleManager, FallbackProgressTracker, JsonProgressTracker


@pytest.fixture
def buffer():
    return io.StringIO()


@pytest.fixture
def rich_manager(buffer):
    return ConsoleManager(console=Console(file=buffer, width=160, color_system=None))


@pytest.fixture
def failed_result():
    return ExecutionResult(
        run_id="run-1",
        workflow_name="shipping-zone",
        status=WorkflowStatus.FAILED,
        order=["zone", "method"],
        step_results={
            "zone": StepResult(step_id="zone", status=StepStatus.ROLLED_BACK, outputs={"zoneId": "Z-1"}),
            "method": StepResult(step_id="method", status=StepStatus.FAILED, error=RuntimeError("HTTP 500")),
        },
        rollback_outcomes=[
            RollbackOutcome(step_id="zone", action_index=0, target="zoneDelete", status=RollbackStatus.COMPLETED)
        ],
        failed_step_id="method",
    )


class TestRichOutput:
    def test_valid_document(self, rich_manager, buffer):
        rich_manager.print_violations("flow", [])
        assert "flow is valid" in buffer.getvalue()

    def test_violations_table(self, rich_manager, buffer):
        rich_manager.print_violations("flow", [Violation("Duplicate step ID: a", "a"), Violation("No steps")])
        output = buffer.getvalue()
        assert "2 violations" in output
        assert "Duplicate step ID: a" in output

    def test_plan(self, rich_manager, buffer):
        rich_manager.print_plan(
            {
                "workflow": "flow",
                "order": ["a", "b"],
                "levels": [["a"], ["b"]],
                "dependencies": {"a": [], "b": ["a"]},
            }
        )
        assert "Execution plan: flow" in buffer.getvalue()

    def test_run_summary(self, rich_manager, buffer, failed_result):
        rich_manager.print_run_summary(failed_result)
        output = buffer.getvalue()
        assert "rolled_back" in output
        assert "HTTP 500" in output
        assert "zoneDelete" in output

    def test_error(self, rich_manager, buffer):
        rich_manager.print_error("boom")
        assert "ERROR: boom" in buffer.getvalue()

    def test_setup_logging_adds_one_rich_handler(self, rich_manager):
        logger = logging.getLogger("apiflow.console-test")
        try:
            rich_manager.setup_logging(logger)
            rich_manager.setup_logging(logger)
            assert sum(isinstance(h, RichHandler) for h in logger.handlers) == 1
            assert logger.level == logging.INFO
        finally:
            logger.handlers.clear()


class TestJsonOutput:
    """Test machine-readable output."""

    def test_violations_go_to_stdout(self, capsys):
        ConsoleManager(json_output=True).print_violations("flow", [Violation("bad", "a")])
        record = json.loads(capsys.readouterr().out)
        assert record["type"] == "validation"
        assert record["valid"] is False
        assert record["violations"] == [{"step_id": "a", "reason": "bad"}]

    def test_summary(self, capsys, failed_result):
        ConsoleManager(json_output=True).print_run_summary(failed_result)
        record = json.loads(capsys.readouterr().out)
        assert record["results"]["status"] == "failed"
        assert record["results"]["failed_step_id"] == "method"

    def test_stage_and_errors_go_to_stderr(self, capsys):
        manager = ConsoleManager(json_output=True)
        manager.print_stage("Running flow")
        manager.print_error("bad\x07 thing")
        captured = capsys.readouterr()
        assert captured.out == ""
        lines = [json.loads(line) for line in captured.err.splitlines()]
        assert [line["type"] for line in lines] == ["stage", "error"]
        assert lines[1]["message"] == "bad thing"

    def test_json_progress(self, capsys):
        with ConsoleManager(json_output=True).progress_context("Executing", total=2) as progress:
            assert isinstance(progress, JsonProgressTracker)
            progress.advance("zone")
        record = json.loads(capsys.readouterr().err)
        assert (record["step"], record["completed"], record["total"]) == ("zone", 1, 2)


class TestSanitizers:
    def test_long_strings_are_truncated(self):
        manager = ConsoleManager(json_output=True)
        assert len(manager._sanitize_string_field("x" * 1000)) == 500

    def test_non_finite_numbers(self):
        manager = ConsoleManager(json_output=True)
        assert manager._sanitize_json_value({"a": float("nan"), "b": float("inf")}) == {"a": 0.0, "b": 1e308}

    def test_depth_limit(self):
        manager = ConsoleManager(json_output=True)
        nested = value = {}
        for _ in range(15):
            value["next"] = {}
            value = value["next"]
        flattened = json.dumps(manager._sanitize_json_value(nested))
        assert "TRUNCATED" in flattened


def test_fallback_progress_when_not_a_tty(capsys, rich_manager):
    rich_manager.is_tty = False
    with rich_manager.progress_context("Executing", total=3) as progress:
        assert isinstance(progress, FallbackProgressTracker)
        progress.advance("zone")
    assert "Executing: 1/3 zone" in capsys.readouterr().err
