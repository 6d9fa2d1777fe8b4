"""
Dependency-aware workflow execution engine.

This package contains the engine components:
- steps: Document models and run records
- paths / references: Output paths and step references
- validator / scheduler: Pre-run checks and dependency ordering
- executors: Step execution and rollback
- core: WorkflowExecutor
"""

from __future__ import annotations

# Export main public API
from .context import ExecutionContext
from .errors import (
    CyclicDependencyError,
    MissingOutputError,
    OperationError,
    PathSyntaxError,
    ResolutionError,
    RollbackActionError,
    ValidationError,
    Violation,
    WorkflowCancelledError,
    WorkflowError,
    WorkflowExecutionError,
)
from .references import LiteralValue, Reference, classify_value, literal, parse_reference, reference
from .scheduler import build_dependency_graph, describe_plan, execution_levels, execution_order
from .steps import (
    Condition,
    ExecutionMode,
    ExecutionResult,
    OperationDescriptor,
    RollbackAction,
    RollbackOutcome,
    RollbackStatus,
    Step,
    StepResult,
    StepStatus,
    WorkflowDocument,
    WorkflowMetadata,
    WorkflowStatus,
)
from .validator import collect_violations, is_valid, validate_document

from .core import CancellationToken, WorkflowExecutor

from .executors import RollbackExecutor, StepExecutor, extract_outputs

__all__ = [
    # Document models
    "Condition",
    "OperationDescriptor",
    "RollbackAction",
    "Step",
    "WorkflowDocument",
    "WorkflowMetadata",
    # Run records
    "ExecutionContext",
    "ExecutionMode",
    "ExecutionResult",
    "RollbackOutcome",
    "RollbackStatus",
    "StepResult",
    "StepStatus",
    "WorkflowStatus",
    # Values
    "LiteralValue",
    "Reference",
    "classify_value",
    "literal",
    "parse_reference",
    "reference",
    # Checks and ordering
    "build_dependency_graph",
    "collect_violations",
    "describe_plan",
    "execution_levels",
    "execution_order",
    "is_valid",
    "validate_document",
    # Core executor
    "CancellationToken",
    "WorkflowExecutor",
    # Executors
    "RollbackExecutor",
    "StepExecutor",
    "extract_outputs",
    # Errors
    "CyclicDependencyError",
    "MissingOutputError",
    "OperationError",
    "PathSyntaxError",
    "ResolutionError",
    "RollbackActionError",
    "ValidationError",
    "Violation",
    "WorkflowCancelledError",
    "WorkflowError",
    "WorkflowExecutionError",
]
