"""Workflow orchestration: loading, execution and run audit storage."""

from .loader import document_to_dict, dump_workflow, load_workflow, load_workflow_from_string, parse_workflow
from .state_manager import InMemoryRunStore, RunStateManager, SQLiteRunStore
from .workflow_engine import (
    CancellationToken,
    ExecutionMode,
    ExecutionResult,
    StepStatus,
    WorkflowDocument,
    WorkflowExecutor,
    WorkflowStatus,
)

__all__ = [
    "CancellationToken",
    "ExecutionMode",
    "ExecutionResult",
    # State management
    "InMemoryRunStore",
    "RunStateManager",
    "SQLiteRunStore",
    "StepStatus",
    "WorkflowDocument",
    # Core executor
    "WorkflowExecutor",
    "WorkflowStatus",
    # Loading
    "document_to_dict",
    "dump_workflow",
    "load_workflow",
    "load_workflow_from_string",
    "parse_workflow",
]
