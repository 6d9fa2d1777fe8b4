"""Console management with Rich integration.

This module provides a ConsoleManager that adapts CLI output to:
- Rich-rendered tables, panels and progress bars when in a TTY
- JSON-only output for machine-readable logs (CI/CD)
- Plain-text fallback for non-TTY environments
"""

from __future__ import annotations

import json
import logging
import re
import sys
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

STATUS_STYLES = {
    "completed": "green",
    "failed": "red",
    "cancelled": "yellow",
    "skipped": "dim",
    "rolled_back": "magenta",
    "pending": "white",
    "running": "blue",
}


class ThreadSafeConsole:
    """Thread-safe wrapper around Rich Console."""

    def __init__(self, console: Console):
        self._console = console
        self._lock = threading.RLock()  # Reentrant lock for nested calls

    def print(self, *args, **kwargs):
        with self._lock:
            self._console.print(*args, **kwargs)

    def log(self, *args, **kwargs):
        with self._lock:
            self._console.log(*args, **kwargs)


class ConsoleManager:
    """Manages console output with Rich integration."""

    def __init__(self, verbose: bool = False, json_output: bool = False, console: Console | None = None):
        self.verbose = verbose
        self.json_output = json_output
        self._json_max_field_length = 500
        self._json_max_nesting_depth = 10
        self.is_tty = sys.stderr.isatty()

        if self.json_output:
            self.console = None
        else:
            self.console = ThreadSafeConsole(console or Console(stderr=True))

    def setup_logging(self, logger: logging.Logger) -> None:
        """Configure logging with Rich handler or plain formatter.

        Adds a handler and sets logger level based on `verbose`.
        """

        # Prevent duplicate handlers if called multiple times
        def _has_handler_of_type(h_type):
            return any(isinstance(h, h_type) for h in logger.handlers)

        if self.json_output:
            if not _has_handler_of_type(logging.StreamHandler):
                handler = logging.StreamHandler(sys.stderr)
                handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
                logger.addHandler(handler)
        else:
            if not _has_handler_of_type(RichHandler):
                handler = RichHandler(
                    console=self.console._console if self.console else None,
                    show_time=True,
                    show_path=self.verbose,
                    rich_tracebacks=True,
                )
                logger.addHandler(handler)
        logger.setLevel(logging.DEBUG if self.verbose else logging.INFO)

    @contextmanager
    def progress_context(self, description: str, total: int):
        """Yield a tracker whose ``advance(label)`` moves a step counter."""
        if self.json_output:
            yield JsonProgressTracker(description, total)
            return
        if not (self.is_tty and self.console is not None):
            yield FallbackProgressTracker(description, total)
            return

        progress = Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            TimeElapsedColumn(),
            console=self.console._console,
        )
        progress.start()
        try:
            task_id = progress.add_task(description, total=total)
            yield RichProgressTracker(progress, task_id)
        finally:
            progress.stop()

    def print_stage(self, stage: str, status: str = "starting") -> None:
        """Print stage information with appropriate renderer."""
        if self.json_output:
            self._emit({"type": "stage", "stage": stage, "status": status}, err=True)
        elif self.console:
            status_color = {
                "starting": "blue",
                "complete": "green",
                "error": "red",
                "warning": "yellow",
            }.get(status, "white")
            self.console.print(Panel(f"[bold]{stage}[/bold]", style=status_color, padding=(0, 1)))
        else:
            print(f"[{status.upper()}] {stage}", file=sys.stderr)

    def print_violations(self, document_name: str, violations: Iterable[Any]) -> None:
        """Print every structural problem of a document."""
        violations = list(violations)
        if self.json_output:
            self._emit(
                {
                    "type": "validation",
                    "workflow": document_name,
                    "valid": not violations,
                    "violations": [
                        {"step_id": getattr(v, "step_id", None), "reason": getattr(v, "reason", str(v))}
                        for v in violations
                    ],
                }
            )
            return

        if not violations:
            self._print(f"[green]✓[/green] {document_name} is valid")
            return

        table = Table(title=f"{document_name}: {len(violations)} violations")
        table.add_column("Step", style="cyan")
        table.add_column("Problem")
        for v in violations:
            table.add_row(getattr(v, "step_id", None) or "-", getattr(v, "reason", str(v)))
        self._print_table(table, [f"{getattr(v, 'step_id', None) or '-'}: {v}" for v in violations])

    def print_plan(self, plan: dict[str, Any]) -> None:
        """Print execution order, parallel generations and dependencies."""
        if self.json_output:
            self._emit({"type": "plan", **plan})
            return

        table = Table(title=f"Execution plan: {plan['workflow']}")
        table.add_column("#", justify="right")
        table.add_column("Step", style="cyan")
        table.add_column("Generation", justify="right")
        table.add_column("Depends on")

        generation_of = {
            step_id: level for level, members in enumerate(plan["levels"]) for step_id in members
        }
        lines = []
        for position, step_id in enumerate(plan["order"], start=1):
            deps = ", ".join(plan["dependencies"].get(step_id, [])) or "-"
            table.add_row(str(position), step_id, str(generation_of.get(step_id, "?")), deps)
            lines.append(f"{position}. {step_id} (after: {deps})")
        self._print_table(table, lines)

    def print_run_summary(self, result: Any) -> None:
        """Print per-step status table and any rollback outcomes of a run."""
        if self.json_output:
            self._emit({"type": "summary", "results": self._sanitize_json_value(result.to_dict())})
            return

        status = result.status.value
        table = Table(title=f"Run {result.run_id} ({result.workflow_name}): {status}")
        table.add_column("Step", style="cyan")
        table.add_column("Status", style="bold")
        table.add_column("Duration", justify="right")
        table.add_column("Detail")

        lines = []
        for step_id in result.order:
            step = result.step_results.get(step_id)
            if step is None:
                continue
            step_status = step.status.value
            style = STATUS_STYLES.get(step_status, "white")
            detail = str(step.error) if step.error else ", ".join(sorted(step.outputs))
            duration = f"{step.duration:.2f}s" if step.duration is not None else "-"
            table.add_row(step_id, f"[{style}]{step_status}[/{style}]", duration, detail)
            lines.append(f"{step_id}: {step_status} {detail}".rstrip())
        self._print_table(table, lines)

        if result.rollback_outcomes:
            rollback = Table(title="Rollback")
            rollback.add_column("Undoes", style="cyan")
            rollback.add_column("Action")
            rollback.add_column("Status", style="bold")
            rollback.add_column("Detail")
            rollback_lines = []
            for outcome in result.rollback_outcomes:
                style = STATUS_STYLES.get(outcome.status.value, "white")
                detail = str(outcome.error) if outcome.error else outcome.reason
                rollback.add_row(
                    outcome.step_id,
                    f"#{outcome.action_index} {outcome.target}",
                    f"[{style}]{outcome.status.value}[/{style}]",
                    detail,
                )
                rollback_lines.append(f"rollback {outcome.step_id} #{outcome.action_index}: {outcome.status.value}")
            self._print_table(rollback, rollback_lines)

    def print_error(self, message: str) -> None:
        if self.json_output:
            self._emit({"type": "error", "message": self._sanitize_string_field(message)}, err=True)
        elif self.console:
            self.console.print(f"[red]ERROR: {message}[/red]")
        else:
            print(f"ERROR: {message}", file=sys.stderr)

    def _print(self, markup: str) -> None:
        if self.console:
            self.console.print(markup)
        else:
            print(re.sub(r"\[/?[a-z ]+\]", "", markup), file=sys.stderr)

    def _print_table(self, table: Table, plain_lines: list[str]) -> None:
        if self.console:
            self.console.print(table)
        else:
            for line in plain_lines:
                print(line, file=sys.stderr)

    def _emit(self, payload: dict[str, Any], err: bool = False) -> None:
        record = {"timestamp": self._get_timestamp(), **payload}
        print(json.dumps(record, default=str), file=sys.stderr if err else sys.stdout)

    def _get_timestamp(self) -> str:
        """Get ISO timestamp for JSON output."""
        return datetime.now().isoformat()

    def _sanitize_json_value(self, value: Any, depth: int = 0) -> Any:
        """JSON value sanitization with depth limiting."""
        if depth > self._json_max_nesting_depth:
            return "[TRUNCATED: Max depth exceeded]"

        if isinstance(value, str):
            return self._sanitize_string_field(value)
        elif isinstance(value, bool):
            return value
        elif isinstance(value, (int, float)):
            return self._sanitize_numeric_field(value)
        elif isinstance(value, dict):
            return {str(k): self._sanitize_json_value(v, depth + 1) for k, v in value.items()}
        elif isinstance(value, (list, tuple)):
            return [self._sanitize_json_value(item, depth + 1) for item in value]
        elif value is None:
            return None
        return self._sanitize_string_field(str(value))

    def _sanitize_string_field(self, value: str) -> str:
        """Strip control characters and cap length."""
        value = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]", "", value)
        if len(value) > self._json_max_field_length:
            value = value[: self._json_max_field_length - 3] + "..."
        return value

    def _sanitize_numeric_field(self, value: float) -> float:
        # Non-finite floats are not valid JSON
        if value != value:
            return 0.0
        if value == float("inf"):
            return 1e308
        if value == float("-inf"):
            return -1e308
        return value


class RichProgressTracker:
    """Step counter backed by a Rich progress bar."""

    def __init__(self, progress: Progress, task_id: Any):
        self.progress = progress
        self.task_id = task_id
        self._lock = threading.Lock()

    def advance(self, label: str = "") -> None:
        with self._lock:
            self.progress.update(self.task_id, advance=1, description=label or None)


class JsonProgressTracker:
    """Step counter emitting JSON lines on stderr."""

    def __init__(self, description: str, total: int):
        self.description = description
        self.total = max(1, total)
        self.completed = 0
        self._lock = threading.Lock()

    def advance(self, label: str = "") -> None:
        with self._lock:
            self.completed += 1
            progress_data = {
                "timestamp": datetime.now().isoformat(),
                "type": "progress",
                "stage": self.description,
                "step": label,
                "completed": self.completed,
                "total": self.total,
            }
            print(json.dumps(progress_data), file=sys.stderr)


class FallbackProgressTracker:
    """Plain-text step counter for non-TTY environments."""

    def __init__(self, description: str, total: int):
        self.description = description
        self.total = max(1, total)
        self.completed = 0
        self._lock = threading.Lock()

    def advance(self, label: str = "") -> None:
        with self._lock:
            self.completed += 1
            print(f"{self.description}: {self.completed}/{self.total} {label}".rstrip(), file=sys.stderr)
