"""
Workflow document models and run records.

Document models (OperationDescriptor, Step, RollbackAction, WorkflowDocument)
are frozen pydantic models: they are built once at load time and never
mutated during execution. Run records (StepResult, RollbackOutcome,
ExecutionResult) are plain dataclasses that accumulate while a run progresses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .errors import MissingOutputError, RollbackActionError
from .paths import parse_path
from .references import find_references, parse_reference


class WorkflowStatus(Enum):
    """Workflow run status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(Enum):
    """Individual step status."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ROLLED_BACK = "rolled_back"


class ExecutionMode(Enum):
    """Scheduling modes."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class RollbackStatus(Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class _DocumentModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class OperationDescriptor(_DocumentModel):
    """Protocol-agnostic template of one remote call."""

    target: str = Field(min_length=1)
    protocol: Optional[str] = None
    method: str = "POST"
    query: Optional[str] = None
    payload_template: Any = Field(
        default=None, validation_alias=_aliases("payload_template", "payloadTemplate", "payload")
    )
    response_root: Optional[str] = Field(
        default=None, validation_alias=_aliases("response_root", "responseRoot")
    )
    error_path: Optional[str] = Field(
        default=None, validation_alias=_aliases("error_path", "errorPath")
    )
    description: str = ""

    @field_validator("protocol")
    @classmethod
    def validate_protocol(cls, v):
        if v is None:
            return v
        v = v.lower()
        if v not in {"graphql", "rest"}:
            raise ValueError(f"Unsupported protocol '{v}' (expected 'graphql' or 'rest')")
        return v

    @field_validator("method")
    @classmethod
    def normalize_method(cls, v):
        return v.upper()

    @field_validator("response_root", "error_path")
    @classmethod
    def validate_paths(cls, v):
        if v is not None:
            parse_path(v)
        return v


class Condition(_DocumentModel):
    """Declarative predicate over the execution context.

    ``ref`` is a step reference such as ``{add_countries.added}``.
    """

    op: Literal["exists", "not_exists", "empty", "not_empty", "equals", "not_equals"]
    ref: str
    value: Any = None

    @field_validator("ref")
    @classmethod
    def validate_ref(cls, v):
        if parse_reference(v) is None:
            raise ValueError(f"Condition ref '{v}' is not a step reference like '{{step.output}}'")
        return v

    def evaluate(self, context) -> bool:
        """Evaluate against an ExecutionContext.

        An unresolvable reference counts as "does not exist".
        """
        found, value = context.try_resolve(parse_reference(self.ref))
        if self.op == "exists":
            return found
        if self.op == "not_exists":
            return not found
        if self.op == "empty":
            return not found or value in (None, "", [], {})
        if self.op == "not_empty":
            return found and value not in (None, "", [], {})
        if self.op == "equals":
            return found and value == self.value
        return not found or value != self.value


class Step(_DocumentModel):
    """One declared unit of remote work."""

    id: str = Field(min_length=1)
    name: Optional[str] = None
    description: str = ""
    operation: OperationDescriptor
    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Dict[str, str] = Field(default_factory=dict)
    required_inputs: List[str] = Field(
        default_factory=list, validation_alias=_aliases("required_inputs", "requiredInputs")
    )
    optional_inputs: List[str] = Field(
        default_factory=list, validation_alias=_aliases("optional_inputs", "optionalInputs")
    )
    depends_on: List[str] = Field(
        default_factory=list, validation_alias=_aliases("depends_on", "dependsOn")
    )

    @field_validator("outputs")
    @classmethod
    def validate_output_paths(cls, v):
        for path in v.values():
            parse_path(path)
        return v

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def references(self):
        """Every step reference found anywhere in this step's inputs."""
        return find_references(self.inputs)


class RollbackAction(_DocumentModel):
    """Compensating operation for a completed step."""

    target_operation: OperationDescriptor = Field(
        validation_alias=_aliases("target_operation", "targetOperation", "operation")
    )
    inputs: Dict[str, Any] = Field(default_factory=dict)
    condition: Optional[Condition] = None
    depends_on_step_id: Optional[str] = Field(
        default=None, validation_alias=_aliases("depends_on_step_id", "dependsOnStepId")
    )
    description: str = ""

    def references(self):
        refs = find_references(self.inputs)
        if self.condition is not None:
            refs.append(parse_reference(self.condition.ref))
        return refs


class WorkflowMetadata(_DocumentModel):
    name: str = Field(min_length=1)
    version: str = "1.0"
    target_system: Optional[str] = Field(
        default=None, validation_alias=_aliases("target_system", "targetSystem", "target")
    )
    description: str = ""


class WorkflowDocument(_DocumentModel):
    """Root workflow artifact.

    ``semantic_mappings`` and ``data_transformations`` are kept for reference
    but never executed.
    """

    metadata: WorkflowMetadata = Field(
        validation_alias=_aliases("metadata", "workflow_metadata")
    )
    steps: List[Step] = Field(validation_alias=_aliases("steps", "workflow_steps"))
    rollback_plan: Dict[str, List[RollbackAction]] = Field(
        default_factory=dict,
        validation_alias=_aliases("rollback_plan", "rollback_strategy", "rollbackPlan"),
    )
    semantic_mappings: Dict[str, Any] = Field(default_factory=dict)
    data_transformations: Any = None

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]

    def get_step(self, step_id: str) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def declaration_index(self, step_id: str) -> int:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        raise KeyError(step_id)

    def compensations_for(self, step_id: str) -> List[RollbackAction]:
        """Rollback actions that undo ``step_id``, in declared order.

        An action undoes the step named by its ``depends_on_step_id``, or the
        plan key it is listed under when that is not set.
        """
        actions = []
        for key, plan_actions in self.rollback_plan.items():
            for action in plan_actions:
                if (action.depends_on_step_id or key) == step_id:
                    actions.append(action)
        return actions


@dataclass
class StepResult:
    """Result of executing one step in one run."""

    step_id: str
    status: StepStatus = StepStatus.PENDING
    response: Any = None
    outputs: Dict[str, Any] = field(default_factory=dict)
    missing_outputs: List[MissingOutputError] = field(default_factory=list)
    inputs: Dict[str, Any] = field(default_factory=dict)
    error: Optional[Exception] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: Optional[float] = None
    sequence: Optional[int] = None

    def start(self) -> None:
        self.status = StepStatus.RUNNING
        self.start_time = datetime.now()

    def complete(self, error: Optional[Exception] = None) -> None:
        """Mark the step finished, failed when ``error`` is given."""
        self.end_time = datetime.now()
        if self.start_time:
            self.duration = (self.end_time - self.start_time).total_seconds()
        if error is not None:
            self.status = StepStatus.FAILED
            self.error = error
        else:
            self.status = StepStatus.COMPLETED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "status": self.status.value,
            "outputs": _jsonable(self.outputs),
            "missing_outputs": [
                {"output_name": e.output_name, "path": e.path, "reason": e.reason}
                for e in self.missing_outputs
            ],
            "error": _error_dict(self.error),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "sequence": self.sequence,
        }


@dataclass
class RollbackOutcome:
    """What happened to a single compensating action."""

    step_id: str
    action_index: int
    target: str
    status: RollbackStatus
    error: Optional[RollbackActionError] = None
    response: Any = None
    reason: str = ""

    @property
    def failed(self) -> bool:
        return self.status == RollbackStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "action_index": self.action_index,
            "target": self.target,
            "status": self.status.value,
            "error": str(self.error) if self.error else None,
            "reason": self.reason,
        }


@dataclass
class ExecutionResult:
    """Outcome of one workflow run."""

    run_id: str
    workflow_name: str
    status: WorkflowStatus
    mode: ExecutionMode = ExecutionMode.SEQUENTIAL
    order: List[str] = field(default_factory=list)
    step_results: Dict[str, StepResult] = field(default_factory=dict)
    context: Dict[str, Any] = field(default_factory=dict)
    rollback_outcomes: List[RollbackOutcome] = field(default_factory=list)
    failed_step_id: Optional[str] = None
    error: Optional[Exception] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == WorkflowStatus.COMPLETED

    @property
    def duration(self) -> Optional[float]:
        if not self.start_time or not self.end_time:
            return None
        return (self.end_time - self.start_time).total_seconds()

    @property
    def completion_order(self) -> List[str]:
        """Step ids that completed forward execution, in completion order."""
        done = [r for r in self.step_results.values() if r.sequence is not None]
        return [r.step_id for r in sorted(done, key=lambda r: r.sequence)]

    def step_statuses(self) -> Dict[str, StepStatus]:
        return {step_id: self.step_results[step_id].status for step_id in self.order if step_id in self.step_results}

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe audit record."""
        return {
            "run_id": self.run_id,
            "workflow_name": self.workflow_name,
            "status": self.status.value,
            "mode": self.mode.value,
            "order": list(self.order),
            "step_results": {k: v.to_dict() for k, v in self.step_results.items()},
            "context": _jsonable(self.context),
            "rollback_outcomes": [o.to_dict() for o in self.rollback_outcomes],
            "failed_step_id": self.failed_step_id,
            "error": _error_dict(self.error),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "metadata": _jsonable(self.metadata),
        }


def _error_dict(error: Optional[Exception]) -> Optional[Dict[str, Any]]:
    if error is None:
        return None
    return {"type": type(error).__name__, "message": str(error)}


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)
