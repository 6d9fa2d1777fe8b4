"""
Workflow error taxonomy.

Every error raised by the engine derives from WorkflowError so callers can
catch a single base type. Validation errors are raised before any operation
is invoked; everything else happens during or after a run.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
    from .steps import ExecutionResult, RollbackOutcome


class WorkflowError(Exception):
    """Base class for all workflow engine errors."""


@dataclass(frozen=True)
class Violation:
    """A single structural problem found in a workflow document."""

    reason: str
    step_id: Optional[str] = None

    def __str__(self) -> str:
        if self.step_id:
            return f"[{self.step_id}] {self.reason}"
        return self.reason


class ValidationError(WorkflowError):
    """Workflow document is malformed.

    Carries every violation found, not just the first one, so a document
    author can fix all issues in one pass. ``cycles`` lists any dependency
    cycles among them, also when other violations are present.
    """

    def __init__(self, violations: List[Violation], cycles: Optional[List[List[str]]] = None):
        self.violations = list(violations)
        self.cycles = [list(c) for c in cycles or []]
        lines = "\n".join(f"  - {v}" for v in self.violations)
        super().__init__(f"Workflow document is invalid ({len(self.violations)} violations):\n{lines}")

    @property
    def reasons(self) -> List[str]:
        return [v.reason for v in self.violations]

    @property
    def step_ids(self) -> List[str]:
        return [v.step_id for v in self.violations if v.step_id]


class CyclicDependencyError(ValidationError):
    """Dependency graph has no valid topological order."""

    def __init__(self, cycles: List[List[str]]):
        violations = [
            Violation(reason=f"Dependency cycle between steps: {', '.join(cycle)}", step_id=cycle[0])
            for cycle in cycles
        ]
        super().__init__(violations, cycles)

    @property
    def cycle_members(self) -> List[str]:
        """Every step id taking part in any cycle, without duplicates."""
        members: List[str] = []
        for cycle in self.cycles:
            for step_id in cycle:
                if step_id not in members:
                    members.append(step_id)
        return members


class PathSyntaxError(ValueError):
    """An accessor path could not be parsed."""


class ResolutionError(WorkflowError):
    """A step input could not be resolved from the execution context."""

    def __init__(
        self,
        step_id: str,
        reason: str,
        reference: Optional[str] = None,
        input_name: Optional[str] = None,
    ):
        self.step_id = step_id
        self.reason = reason
        self.reference = reference
        self.input_name = input_name
        parts = []
        if input_name:
            parts.append(f"input '{input_name}'")
        if reference:
            parts.append(f"reference '{reference}'")
        detail = f" ({', '.join(parts)})" if parts else ""
        super().__init__(f"Cannot resolve inputs for step '{step_id}'{detail}: {reason}")


class MissingOutputError(WorkflowError):
    """A declared output was absent from the operation response."""

    def __init__(self, step_id: str, output_name: str, path: str, reason: str = ""):
        self.step_id = step_id
        self.output_name = output_name
        self.path = path
        self.reason = reason
        message = f"Output '{output_name}' of step '{step_id}' not found at path '{path}'"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class OperationError(WorkflowError):
    """The operation invoker reported a remote failure.

    Attributes:
        target: Operation target that failed
        status_code: Transport status code when available
        retriable: Whether a retry policy may attempt the call again
        details: Structured error payload returned by the remote side
    """

    def __init__(
        self,
        target: str,
        message: str,
        status_code: Optional[int] = None,
        retriable: bool = False,
        details: Any = None,
    ):
        self.target = target
        self.message = message
        self.status_code = status_code
        self.retriable = retriable
        self.details = details
        prefix = f"Operation '{target}' failed"
        if status_code is not None:
            prefix += f" with status {status_code}"
        super().__init__(f"{prefix}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target,
            "message": self.message,
            "status_code": self.status_code,
            "retriable": self.retriable,
            "details": self.details,
        }


class RollbackActionError(WorkflowError):
    """A compensating action failed during rollback."""

    def __init__(self, step_id: str, action_index: int, cause: Exception):
        self.step_id = step_id
        self.action_index = action_index
        self.cause = cause
        super().__init__(
            f"Rollback action #{action_index} for step '{step_id}' failed: {cause}"
        )


class WorkflowCancelledError(WorkflowError):
    """The run was cancelled between steps."""

    def __init__(self, run_id: str, next_step_id: Optional[str] = None):
        self.run_id = run_id
        self.next_step_id = next_step_id
        where = f" before step '{next_step_id}'" if next_step_id else ""
        super().__init__(f"Run {run_id} was cancelled{where}")


class WorkflowExecutionError(WorkflowError):
    """Aggregate failure of a workflow run.

    Holds the error that stopped forward progress, every rollback outcome,
    and the partial execution result so the caller can see exactly what ran,
    what failed and what was compensated.
    """

    def __init__(
        self,
        failed_step_id: Optional[str],
        error: Exception,
        rollback_outcomes: List["RollbackOutcome"],
        result: Optional["ExecutionResult"] = None,
    ):
        self.failed_step_id = failed_step_id
        self.error = error
        self.rollback_outcomes = list(rollback_outcomes)
        self.result = result

        failures = self.rollback_failures
        if failed_step_id:
            message = f"Workflow failed at step '{failed_step_id}': {error}"
        else:
            message = f"Workflow stopped: {error}"
        if self.rollback_outcomes:
            message += (
                f" (rollback: {len(self.rollback_outcomes)} actions, "
                f"{len(failures)} failed)"
            )
        super().__init__(message)

    @property
    def rollback_failures(self) -> List[RollbackActionError]:
        return [o.error for o in self.rollback_outcomes if o.error is not None]

    @property
    def fully_compensated(self) -> bool:
        """True when no rollback action failed."""
        return not self.rollback_failures
